"""
SMTP email delivery
"""
import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional

from backoffice.config import get_settings
from backoffice.models.user import Role
from backoffice.services import email_templates

logger = logging.getLogger(__name__)


class EmailService:
    """Transactional email over SMTP. Send methods block; run them off the event loop."""

    def __init__(
        self,
        smtp_host: str = "smtp.gmail.com",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        from_email: str = "",
        from_name: str = "Reseller Back Office",
        client_url: str = "",
        consumer_url: str = "",
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.client_url = client_url
        self.consumer_url = consumer_url

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Send one email.

        Returns True when the SMTP server accepted it, False when SMTP is not
        configured or delivery failed. Never raises.
        """
        if not self.smtp_user or not self.smtp_password:
            logger.warning("Email not configured. SMTP credentials missing.")
            return False

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            if text_content:
                msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP Authentication failed. Check email credentials.")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {e}")
            return False
        except OSError as e:
            logger.error(f"Network error sending email: {e}")
            return False

    def _site_for(self, role: str) -> str:
        # Consumers never get the admin panel URL
        return self.consumer_url if role == Role.CONSUMER.value else self.client_url

    def send_welcome_email(self, to_email: str, full_name: str, password: str, role: str = "user") -> bool:
        subjects = {
            "consumer": "Your account has been created",
            "reseller": "Your reseller account has been created",
            "admin": f"Welcome Administrator: {full_name}",
        }
        html = email_templates.welcome(
            self.from_name, full_name, to_email, password, role, self._site_for(role)
        )
        return self.send_email(to_email, subjects.get(role, f"New User Created: {full_name}"), html)

    def send_password_reset_email(self, to_email: str, full_name: str, new_password: str, role: str = "user") -> bool:
        html = email_templates.password_reset(
            self.from_name, full_name, new_password, self._site_for(role)
        )
        return self.send_email(to_email, f"Password Reset: {full_name}", html)

    def send_trial_change_email(self, to_email: str, full_name: str, trial_expiry: str, status: str) -> bool:
        html = email_templates.trial_change(self.from_name, full_name, trial_expiry, status)
        return self.send_email(to_email, f"Trial Period Updated: {full_name}", html)

    def send_trial_extension_email(self, to_email: str, full_name: str, trial_expiry: str, extension_days: int) -> bool:
        html = email_templates.trial_extension(self.from_name, full_name, trial_expiry, extension_days)
        return self.send_email(to_email, f"Trial Extended: {full_name}", html)

    def send_invite_email(self, to_email: str, role: str, token: str, expire_days: int) -> bool:
        invite_url = f"{self._site_for(role).rstrip('/')}/signup?token={token}"
        html = email_templates.invite(self.from_name, role, invite_url, expire_days)
        return self.send_email(to_email, f"You're Invited to Join as {role.capitalize()}!", html)

    def send_invoice_created_email(
        self,
        to_email: str,
        full_name: str,
        invoice_number: str,
        issue_date: str,
        due_date: str,
        items: List[dict],
        subtotal,
        tax_total,
        total,
        created_by_name: str = "Admin",
        created_by_role: str = "admin",
    ) -> bool:
        html = email_templates.invoice_created(
            self.from_name, full_name, invoice_number, issue_date, due_date, items,
            subtotal, tax_total, total, created_by_name, created_by_role,
            self.consumer_url,
        )
        return self.send_email(to_email, f"Invoice Created: {invoice_number}", html)


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """FastAPI dependency returning the configured EmailService"""
    global _email_service
    if _email_service is None:
        settings = get_settings()
        _email_service = EmailService(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=settings.SMTP_PASSWORD,
            from_email=settings.SMTP_FROM_EMAIL,
            from_name=settings.SMTP_FROM_NAME,
            client_url=settings.CLIENT_URL,
            consumer_url=settings.CONSUMER_URL,
        )
    return _email_service
