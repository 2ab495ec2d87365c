"""Consent lifecycle engine for the patient-intake platform."""

__version__ = "1.0.0"
