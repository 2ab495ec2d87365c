from .consent import (
    ConsentCandidate,
    ConsentPolicy,
    ConsentRecord,
    ConsentStatus,
    ConsentStatusResult,
    RenewalHistoryEntry,
    RenewalUrgency,
    RenewedBy,
)
from .jobs import AutoRenewalReport, ExpiryWarningReport

# Define the public API of this module
__all__ = [
    "ConsentCandidate",
    "ConsentPolicy",
    "ConsentRecord",
    "ConsentStatus",
    "ConsentStatusResult",
    "RenewalHistoryEntry",
    "RenewalUrgency",
    "RenewedBy",
    "AutoRenewalReport",
    "ExpiryWarningReport",
]
