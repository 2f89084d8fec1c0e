"""
Email Service using Resend

Handles the account emails for the auth flows: verification, account setup
for invited users, password reset OTPs and confirmations.

Sending is best effort: every sender returns a bool and never raises, so a
mail outage cannot undo a state change that already happened.
"""

import asyncio
import logging
import re
from html import escape

import resend

from school_sms.core.config import settings

logger = logging.getLogger(__name__)

resend.api_key = settings.resend_api_key

VERIFICATION_EXPIRY_TEXT = "24 hours"
SETUP_EXPIRY_TEXT = "7 days"
OTP_EXPIRY_TEXT = "10 minutes"

_UNVERIFIED_DOMAIN = re.compile(r"domain is not verified", re.IGNORECASE)

_STYLE = """
        <style>
            body { font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }
            .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
            .header { color: #1a365d; margin-bottom: 24px; }
            .button { display: inline-block; background-color: #1a365d; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }
            .code { font-size: 32px; letter-spacing: 8px; font-weight: bold; color: #1a365d; background-color: #f3f4f6; padding: 16px 24px; border-radius: 8px; display: inline-block; }
            .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }
        </style>
"""


def _wrap(title: str, body: str, footer: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head>{_STYLE}</head>
    <body>
        <div class="container">
            <h1 class="header">{title}</h1>
            {body}
            <div class="footer">
                <p>{footer}</p>
                <p>School SMS - School Management System</p>
            </div>
        </div>
    </body>
    </html>
    """


def _link_block(url: str, label: str) -> str:
    return f"""
            <a href="{url}" class="button">{label}</a>

            <p>Or copy and paste this link into your browser:</p>
            <p style="word-break: break-all; color: #3b82f6;">{url}</p>
    """


async def _deliver(params: dict) -> str:
    # Run sync Resend call in thread pool to avoid blocking event loop
    email = await asyncio.to_thread(resend.Emails.send, params)
    return email["id"]


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
) -> bool:
    """
    Send an email using Resend.

    If the configured sender domain is rejected as unverified, the message is
    retried once from the fallback sender.

    Args:
        to_email: Recipient email address
        subject: Email subject line
        html_content: HTML content of the email

    Returns:
        True if email was sent successfully
    """
    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return True

    params = {
        "from": settings.email_from,
        "to": [to_email],
        "subject": subject,
        "html": html_content,
    }

    try:
        email_id = await _deliver(params)
        logger.info(f"Email sent successfully to {to_email}, id: {email_id}")
        return True
    except Exception as e:
        if not _UNVERIFIED_DOMAIN.search(str(e)):
            logger.error(f"Failed to send email to {to_email}: {e}")
            return False
        logger.warning(f"Sender domain not verified, retrying from {settings.email_fallback_from}")

    try:
        email_id = await _deliver({**params, "from": settings.email_fallback_from})
        logger.info(f"Email sent from fallback sender to {to_email}, id: {email_id}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email} from fallback sender: {e}")
        return False


class ResendNotifier:
    """Account notifications delivered through Resend."""

    async def send_verification_email(self, to_email: str, name: str, token: str) -> bool:
        """Send the email verification link to a self-registered user."""
        url = f"{settings.frontend_url}/verify-email?token={token}"
        body = f"""
            <p>Hello {escape(name)},</p>

            <p>Thanks for signing up. Please verify your email address by clicking the button below:</p>
            {_link_block(url, "Verify Email")}
            <p><strong>This link expires in {VERIFICATION_EXPIRY_TEXT}.</strong></p>
        """
        return await send_email(
            to_email=to_email,
            subject="Verify your email address",
            html_content=_wrap(
                "Verify Your Email",
                body,
                "If you didn't create an account, you can safely ignore this email.",
            ),
        )

    async def send_setup_email(self, to_email: str, name: str, role: str, token: str) -> bool:
        """Send an invited user the link to choose a password."""
        url = f"{settings.frontend_url}/complete-setup?token={token}"
        body = f"""
            <p>Hello {escape(name)},</p>

            <p>An account has been created for you as a <strong>{escape(role)}</strong>.
            Set your password to get started:</p>
            {_link_block(url, "Set Up Account")}
            <p><strong>This link expires in {SETUP_EXPIRY_TEXT}.</strong></p>
        """
        return await send_email(
            to_email=to_email,
            subject="You're invited to School SMS",
            html_content=_wrap(
                "Complete Your Account Setup",
                body,
                "If you weren't expecting this invitation, you can ignore this email.",
            ),
        )

    async def send_teacher_approved_email(self, to_email: str, name: str) -> bool:
        """Tell an already-verified teacher that an administrator approved them."""
        body = f"""
            <p>Hello {escape(name)},</p>

            <p>Your teacher account has been approved. You can now
            <a href="{settings.frontend_url}/login">log in</a>.</p>
        """
        return await send_email(
            to_email=to_email,
            subject="Your teacher account has been approved",
            html_content=_wrap("Account Approved", body, "Welcome aboard."),
        )

    async def send_otp_email(self, to_email: str, otp: str) -> bool:
        """Send a password reset code."""
        body = f"""
            <p>Use the code below to reset your password:</p>

            <p class="code">{otp}</p>

            <p><strong>This code expires in {OTP_EXPIRY_TEXT}.</strong></p>
        """
        return await send_email(
            to_email=to_email,
            subject="Your password reset code",
            html_content=_wrap(
                "Password Reset",
                body,
                "If you didn't request a password reset, you can safely ignore this email.",
            ),
        )

    async def send_password_reset_confirmation(self, to_email: str) -> bool:
        """Tell a user their password was changed."""
        body = f"""
            <p>Your password has been reset successfully.</p>

            <p>You can now <a href="{settings.frontend_url}/login">log in</a> with your new password.</p>
        """
        return await send_email(
            to_email=to_email,
            subject="Your password has been reset",
            html_content=_wrap(
                "Password Changed",
                body,
                "If you didn't make this change, contact your school administrator immediately.",
            ),
        )


notifier = ResendNotifier()


def get_notifier() -> ResendNotifier:
    """FastAPI dependency returning the process notifier."""
    return notifier
