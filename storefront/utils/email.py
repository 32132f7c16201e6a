import logging
from typing import Protocol

logger = logging.getLogger(__name__)

OTP_SUBJECTS = {
    "email-verification": "Verify Your Email",
    "password-reset":     "Reset Your Password",
}


class NotificationSender(Protocol):
    """Anything that can deliver an OTP to a user. Delivery failures raise."""

    async def send_otp(self, to_email: str, name: str, otp_code: str, purpose: str) -> None:
        ...


class ConsoleNotificationSender:
    """
    SMTP disabled: OTP printed to console for development.
    Replace with real provider (SendGrid / Resend / SMTP) when ready.
    """

    async def send_otp(self, to_email: str, name: str, otp_code: str, purpose: str) -> None:
        logger.info("=" * 60)
        logger.info(f"[OTP EMAIL]  To      : {to_email}")
        logger.info(f"[OTP EMAIL]  Name    : {name}")
        logger.info(f"[OTP EMAIL]  Subject : {OTP_SUBJECTS.get(purpose, purpose)}")
        logger.info(f"[OTP CODE]   >>>     : {otp_code}")
        logger.info("=" * 60)


console_sender = ConsoleNotificationSender()


def get_notification_sender() -> NotificationSender:
    """FastAPI dependency; override in tests to capture outgoing OTPs."""
    return console_sender
