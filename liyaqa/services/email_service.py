"""
Liyaqa - Email Service
Sends email via SendGrid when an API key is configured, otherwise SMTP
"""
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from flask import current_app
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To

logger = logging.getLogger(__name__)


class EmailService:
    """Email delivery service"""

    @property
    def sendgrid_key(self):
        return current_app.config.get('SENDGRID_API_KEY')

    @property
    def from_email(self):
        return current_app.config.get('FROM_EMAIL', 'noreply@liyaqa.com')

    @property
    def from_name(self):
        return current_app.config.get('FROM_NAME', 'Liyaqa')

    @property
    def smtp_host(self):
        return current_app.config.get('SMTP_HOST')

    @property
    def smtp_port(self):
        return int(current_app.config.get('SMTP_PORT', 587))

    @property
    def smtp_user(self):
        return current_app.config.get('SMTP_USER')

    @property
    def smtp_pass(self):
        return current_app.config.get('SMTP_PASS')

    @property
    def is_configured(self) -> bool:
        return bool(self.sendgrid_key or (self.smtp_host and self.smtp_user and self.smtp_pass))

    def send(self, to: str, subject: str, body: str, html: bool = False) -> tuple:
        """
        Send an email.

        Returns:
            (success, error_message)
        """
        if not to:
            return False, 'No recipient email address'
        if not self.is_configured:
            logger.warning(f"Email not configured. Would send to {to}: {subject}")
            return False, 'Email delivery is not configured'
        try:
            if self.sendgrid_key:
                return self._send_sendgrid(to, subject, body, html)
            return self._send_smtp(to, subject, body, html)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return False, str(e)

    def _send_sendgrid(self, to: str, subject: str, body: str, html: bool) -> tuple:
        message = Mail(
            from_email=Email(self.from_email, self.from_name),
            to_emails=To(to),
            subject=subject,
            plain_text_content=body if not html else None,
            html_content=body if html else None
        )

        sg = SendGridAPIClient(self.sendgrid_key)
        try:
            response = sg.send(message)
        except Exception as e:
            # python-http-client raises HTTPError subclasses for 4xx/5xx responses
            logger.error(f"SendGrid error sending to {to}: {e}")
            return False, str(e)

        if response.status_code in [200, 201, 202]:
            logger.info(f"Email sent to {to}: {subject}")
            return True, None
        logger.error(f"SendGrid error: {response.status_code}")
        return False, f"SendGrid returned {response.status_code}"

    def _send_smtp(self, to: str, subject: str, body: str, html: bool) -> tuple:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{self.from_name} <{self.from_email}>"
        msg['To'] = to
        msg.attach(MIMEText(body, 'html' if html else 'plain', 'utf-8'))

        with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
            server.starttls()
            server.login(self.smtp_user, self.smtp_pass)
            server.send_message(msg)

        logger.info(f"Email sent to {to}: {subject}")
        return True, None


email_service = EmailService()
