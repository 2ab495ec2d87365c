"""
Email Service

Notification gateway for consent lifecycle emails: expiry warnings,
renewal confirmations and withdrawal confirmations. Every send reports an
EmailResult instead of raising, so one failed delivery never aborts a batch.
"""

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from consent_engine.config import settings
from consent_engine.utils.dates import format_date, pluralize_days

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates" / "emails"


@dataclass
class EmailResult:
    success: bool
    subject: str = ""
    message_id: str | None = None
    error: str | None = None


def expiry_subject(organization_name: str, days_remaining: int) -> str:
    if days_remaining <= 7:
        return f"Urgent: Your consent with {organization_name} expires in {pluralize_days(days_remaining)}"
    if days_remaining <= 14:
        return f"Reminder: Your consent with {organization_name} expires soon"
    return f"Notice: Your consent with {organization_name} will expire in {pluralize_days(days_remaining)}"


class EmailService:
    """Service for sending emails with template support"""

    def __init__(self, template_dir: Path = TEMPLATE_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )

        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.smtp_from = settings.smtp_from
        self.smtp_use_tls = settings.smtp_use_tls
        self.smtp_timeout = settings.smtp_timeout_seconds

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> EmailResult:
        """
        Send an email using SMTP.

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_body: HTML email body
            text_body: Plain text email body (optional)

        Returns:
            EmailResult: success flag with the Message-ID, or the error
        """
        message_id = make_msgid(domain=self.smtp_from.rpartition("@")[2] or None)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.smtp_from
        msg["To"] = to_email
        msg["Message-ID"] = message_id

        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.smtp_timeout) as server:
                if self.smtp_use_tls:
                    server.starttls()
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            return EmailResult(success=False, subject=subject, error=str(e))

        logger.info("Sent email to %s: %s", to_email, subject)
        return EmailResult(success=True, subject=subject, message_id=message_id)

    async def _deliver(self, template_name: str, context: dict, to_email: str, subject: str, text_body: str) -> EmailResult:
        try:
            html_body = self.env.get_template(template_name).render(app_name=settings.app_name, **context)
        except TemplateError as e:
            logger.error("Failed to render %s: %s", template_name, e)
            return EmailResult(success=False, subject=subject, error=f"Template error: {e}")

        # smtplib blocks; keep it off the event loop
        return await asyncio.to_thread(self._send_email, to_email, subject, html_body, text_body)

    async def send_consent_expiry_email(
        self,
        patient_name: str,
        patient_email: str,
        organization_name: str,
        form_title: str,
        expires_at: datetime,
        days_remaining: int,
        renewal_url: str,
    ) -> EmailResult:
        """Send a staged consent expiry warning."""
        subject = expiry_subject(organization_name, days_remaining)
        expiry_date = format_date(expires_at)

        text_body = f"""
        Hello {patient_name},

        Your consent for {form_title} at {organization_name} expires in {pluralize_days(days_remaining)} on {expiry_date}.

        To continue receiving services, please renew your consent:
        {renewal_url}

        If you do nothing, your consent will expire and {organization_name} may no longer
        have access to your submitted information. You can withdraw consent at any time
        from your patient portal.

        The {settings.app_name} Team
        """

        return await self._deliver(
            "consent_expiry.html",
            {
                "patient_name": patient_name,
                "organization_name": organization_name,
                "form_title": form_title,
                "expiry_date": expiry_date,
                "days_text": pluralize_days(days_remaining),
                "urgent": days_remaining <= 7,
                "renewal_url": renewal_url,
            },
            patient_email,
            subject,
            text_body,
        )

    async def send_consent_renewed_email(
        self,
        patient_name: str,
        patient_email: str,
        organization_name: str,
        form_title: str,
        new_expires_at: datetime,
        duration_months: int,
        is_auto_renewal: bool,
    ) -> EmailResult:
        """Send a renewal confirmation."""
        subject = f"Consent Renewed: {form_title} at {organization_name}"
        expiry_date = format_date(new_expires_at)
        how = "automatically renewed" if is_auto_renewal else "renewed"
        months = f"{duration_months} month" if duration_months == 1 else f"{duration_months} months"

        text_body = f"""
        Hello {patient_name},

        Your consent for {form_title} at {organization_name} has been {how} for {months}.
        It is now valid until {expiry_date}.

        You can manage your consents at any time from your patient portal.

        The {settings.app_name} Team
        """

        return await self._deliver(
            "consent_renewed.html",
            {
                "patient_name": patient_name,
                "organization_name": organization_name,
                "form_title": form_title,
                "expiry_date": expiry_date,
                "months": months,
                "is_auto_renewal": is_auto_renewal,
            },
            patient_email,
            subject,
            text_body,
        )

    async def send_consent_withdrawn_email(
        self,
        patient_name: str,
        patient_email: str,
        organization_name: str,
        form_title: str,
        withdrawn_at: datetime,
    ) -> EmailResult:
        """Send a withdrawal confirmation."""
        subject = f"Consent Withdrawn: {form_title} at {organization_name}"
        withdrawn_date = format_date(withdrawn_at)

        text_body = f"""
        Hello {patient_name},

        This email confirms that your consent for {form_title} at {organization_name}
        was withdrawn on {withdrawn_date}.

        If you withdrew consent by mistake or wish to consent again, please contact
        {organization_name} directly.

        The {settings.app_name} Team
        """

        return await self._deliver(
            "consent_withdrawn.html",
            {
                "patient_name": patient_name,
                "organization_name": organization_name,
                "form_title": form_title,
                "withdrawn_date": withdrawn_date,
            },
            patient_email,
            subject,
            text_body,
        )


# Singleton instance
email_service = EmailService()
