"""
Email delivery for authentication flows.

Mail failures never break the calling flow: senders report success or failure
and callers log it.
"""

import asyncio
import html
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

from authcore.config import SmtpSettings

logger = logging.getLogger(__name__)


@dataclass
class MailMessage:
    to: str
    from_addr: str
    subject: str
    html: str
    text: str
    reply_to: Optional[str] = None


@dataclass
class MailResult:
    success: bool
    message_id: Optional[str] = None


class Mailer(ABC):
    """Notification collaborator: send this HTML/text message."""

    @abstractmethod
    async def send(self, message: MailMessage) -> MailResult:
        ...


class SmtpMailer(Mailer):
    """Sends multipart mail over SMTP."""

    def __init__(self, smtp: SmtpSettings, sender_name: Optional[str] = None):
        self.smtp = smtp
        self.sender_name = sender_name

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return self.smtp.is_configured

    def build(self, message: MailMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{self.sender_name} <{message.from_addr}>" if self.sender_name else message.from_addr
        msg["To"] = message.to
        if message.reply_to:
            msg["Reply-To"] = message.reply_to
        msg["Message-ID"] = make_msgid()

        # Plain text first so clients prefer the HTML part
        if message.text:
            msg.attach(MIMEText(message.text, "plain"))
        msg.attach(MIMEText(message.html, "html"))
        return msg

    def send_sync(self, message: MailMessage) -> MailResult:
        if not self.is_configured:
            logger.warning("Email not configured - skipping send")
            logger.info(f"Would send email to {message.to}: {message.subject}")
            return MailResult(success=False)

        try:
            msg = self.build(message)
            with smtplib.SMTP(self.smtp.host, self.smtp.port) as server:
                if self.smtp.use_tls:
                    server.starttls()
                server.login(self.smtp.user, self.smtp.password)
                server.sendmail(message.from_addr, message.to, msg.as_string())

            logger.info(f"Email sent to {message.to}: {message.subject}")
            return MailResult(success=True, message_id=msg["Message-ID"])

        except Exception as e:
            logger.error(f"Failed to send email to {message.to}: {e}")
            return MailResult(success=False)

    async def send(self, message: MailMessage) -> MailResult:
        return await asyncio.to_thread(self.send_sync, message)


def render_password_reset_email(
    display_name: Optional[str],
    reset_url: str,
    app_name: str = "Global Goals Jam",
) -> tuple[str, str, str]:
    """
    Build the password reset email.

    Returns:
        (subject, html_body, text_body)
    """
    name = display_name or "there"
    safe_name = html.escape(name)
    safe_url = html.escape(reset_url, quote=True)
    safe_app = html.escape(app_name)

    html_body = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background: #00A651; padding: 24px; text-align: center; color: white; }}
            .button {{
                display: inline-block;
                padding: 14px 28px;
                background-color: #00A651;
                color: white !important;
                text-decoration: none;
                border-radius: 6px;
                margin: 20px 0;
                font-weight: 600;
            }}
            .footer {{ color: #999; font-size: 12px; margin-top: 30px; }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header"><h1>{safe_app}</h1></div>
            <h2>Reset Your Password</h2>
            <p>Hello {safe_name},</p>
            <p>We received a request to reset your password. Click the button below to set a new password:</p>
            <a href="{safe_url}" class="button">Reset Password</a>
            <p>Or copy this link into your browser:</p>
            <p style="word-break: break-all; color: #666;">{safe_url}</p>
            <p><strong>This link expires in 1 hour.</strong></p>
            <div class="footer">
                <p>If you didn't request this, please ignore this email. Your password will remain unchanged.</p>
                <p>&copy; {safe_app}</p>
            </div>
        </div>
    </body>
    </html>
    """

    text_body = f"""Reset Your Password

Hello {name},

We received a request to reset your password for {app_name}.

Click this link to set a new password:
{reset_url}

This link expires in 1 hour.

If you didn't request this, please ignore this email.

Best regards,
The {app_name} Team
"""

    return f"Reset Your {app_name} Password", html_body, text_body
