# ===== app/services/email/email_service.py =====
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional
import logging

from app.config.settings import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending emails via SMTP"""

    @staticmethod
    def _get_smtp_connection():
        """Create and return SMTP connection"""
        try:
            if settings.EMAIL_USE_TLS:
                server = smtplib.SMTP(settings.EMAIL_HOST, settings.EMAIL_PORT)
                server.starttls()
            else:
                server = smtplib.SMTP_SSL(settings.EMAIL_HOST, settings.EMAIL_PORT)

            if settings.EMAIL_USERNAME and settings.EMAIL_PASSWORD:
                server.login(settings.EMAIL_USERNAME, settings.EMAIL_PASSWORD)

            return server
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to connect to SMTP server: {e}")
            raise

    @staticmethod
    def send_email(
            to_email: str,
            subject: str,
            html_content: str,
            plain_text: Optional[str] = None,
            cc: Optional[List[str]] = None,
    ) -> bool:
        """
        Send an email using SMTP

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_content: HTML content of the email
            plain_text: Plain text version (fallback for non-HTML clients)
            cc: List of CC email addresses

        Returns:
            bool: True if email sent successfully
        """
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM_ADDRESS}>"
        msg['To'] = to_email

        if cc:
            msg['Cc'] = ', '.join(cc)

        if plain_text:
            msg.attach(MIMEText(plain_text, 'plain'))
        msg.attach(MIMEText(html_content, 'html'))

        recipients = [to_email] + list(cc or [])

        server = EmailService._get_smtp_connection()
        try:
            server.sendmail(settings.EMAIL_FROM_ADDRESS, recipients, msg.as_string())
        finally:
            server.quit()

        logger.info(f"Email sent: {subject!r}")
        return True

    @staticmethod
    def _layout(title: str, body_html: str) -> str:
        return f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="UTF-8"></head>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h1 style="font-size: 22px;">{title}</h1>
            {body_html}
            <p style="font-size: 12px; color: #999;">Sent by {settings.EMAIL_FROM_NAME}</p>
        </body>
        </html>
        """

    @staticmethod
    def send_booking_confirmation(
            to_email: str,
            visitor_name: str,
            business_name: str,
            appointment_type_name: str,
            start_local: str,
            timezone: str,
            cancellation_token: str,
    ) -> bool:
        """Confirmation sent to the visitor, with a self-service cancellation link"""
        cancel_url = f"{settings.FRONTEND_URL}/appointments/cancel?token={cancellation_token}"

        html_content = EmailService._layout(
            "Your appointment is confirmed",
            f"""
            <p>Hi {visitor_name},</p>
            <p>Your <strong>{appointment_type_name}</strong> with <strong>{business_name}</strong>
               is booked for <strong>{start_local}</strong> ({timezone}).</p>
            <p>Need to cancel? <a href="{cancel_url}">Cancel this appointment</a>.</p>
            """,
        )
        plain_text = (
            f"Hi {visitor_name},\n\n"
            f"Your {appointment_type_name} with {business_name} is booked for {start_local} ({timezone}).\n\n"
            f"Cancel: {cancel_url}\n"
        )
        return EmailService.send_email(
            to_email=to_email,
            subject=f"Confirmed: {appointment_type_name} with {business_name}",
            html_content=html_content,
            plain_text=plain_text,
        )

    @staticmethod
    def send_cancellation_notice(
            to_email: str,
            visitor_name: str,
            business_name: str,
            appointment_type_name: str,
            start_local: str,
            timezone: str,
            reason: Optional[str] = None,
    ) -> bool:
        reason_html = f"<p>Reason: {reason}</p>" if reason else ""
        html_content = EmailService._layout(
            "Your appointment was cancelled",
            f"""
            <p>Hi {visitor_name},</p>
            <p>Your <strong>{appointment_type_name}</strong> with <strong>{business_name}</strong>
               on <strong>{start_local}</strong> ({timezone}) has been cancelled.</p>
            {reason_html}
            """,
        )
        plain_text = (
            f"Hi {visitor_name},\n\n"
            f"Your {appointment_type_name} with {business_name} on {start_local} ({timezone}) "
            f"has been cancelled.\n"
            + (f"Reason: {reason}\n" if reason else "")
        )
        return EmailService.send_email(
            to_email=to_email,
            subject=f"Cancelled: {appointment_type_name} with {business_name}",
            html_content=html_content,
            plain_text=plain_text,
        )
