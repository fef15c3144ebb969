"""
Email Service using Resend
Provides email functionality using MJML templates for responsive design
"""

import logging
from datetime import datetime
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import (
    consultation_report_template,
    notification_email_template,
    registration_invitation_template,
)
from .errors import DeliveryError

logger = logging.getLogger(__name__)


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns a dict-like result with 'html' and 'errors' keys
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise DeliveryError(f"Failed to compile MJML template: {str(e)}") from e


class EmailSender:
    """Sends transactional email through Resend"""

    def __init__(self, api_key: Optional[str] = RESEND_API_KEY, from_address: str = EMAIL_FROM_ADDRESS):
        self.api_key = api_key
        self.from_address = from_address

    async def send_email(self, to: Union[str, list[str]], subject: str, mjml_content: str) -> dict:
        """
        Send an email

        Args:
            to: Recipient email(s)
            subject: Email subject line
            mjml_content: MJML template content (will be compiled to HTML)

        Returns:
            Resend response dict

        Raises:
            DeliveryError: If the provider is not configured or rejects the message
        """
        if not self.api_key:
            logger.error("❌ No email service configured - RESEND_API_KEY missing")
            raise DeliveryError("Email service not configured")

        html_content = compile_mjml_to_html(mjml_content)
        recipients = [to] if isinstance(to, str) else to

        try:
            logger.info(f"📧 Sending email via Resend to: {to}")
            resend.api_key = self.api_key
            response = resend.Emails.send(
                {
                    "from": self.from_address,
                    "to": recipients,
                    "subject": subject,
                    "html": html_content,
                }
            )
            logger.info(f"✅ Email sent successfully: {response}")
            return response
        except Exception as e:
            logger.error(f"❌ Failed to send email to {to}: {e}")
            raise DeliveryError(f"Failed to send email: {e}") from e

    async def send_consultation_report(
        self,
        to: str,
        patient_name: str,
        doctor_name: str,
        organization_name: str,
        consultation_date: Optional[datetime],
        report_url: str,
        rating_url: str,
    ) -> dict:
        mjml_content = consultation_report_template(
            patient_name=patient_name,
            doctor_name=doctor_name,
            organization_name=organization_name,
            consultation_date=consultation_date,
            report_url=report_url,
            rating_url=rating_url,
        )
        return await self.send_email(
            to=to,
            subject=f"Informe Médico - {organization_name}",
            mjml_content=mjml_content,
        )

    async def send_registration_invitation(
        self, to: str, patient_name: str, organization_name: str, register_url: str
    ) -> dict:
        mjml_content = registration_invitation_template(patient_name, organization_name, register_url)
        return await self.send_email(
            to=to,
            subject=f"Invitación a registrarse - {organization_name}",
            mjml_content=mjml_content,
        )

    async def send_notification_email(
        self, to: str, recipient_name: str, title: str, message: str, action_url: Optional[str] = None
    ) -> dict:
        mjml_content = notification_email_template(recipient_name, title, message, action_url)
        return await self.send_email(to=to, subject=title, mjml_content=mjml_content)


def get_email_sender() -> EmailSender:
    """Dependency provider for the configured email sender"""
    return EmailSender()
