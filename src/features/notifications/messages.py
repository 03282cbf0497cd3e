"""Message templates for credential lifecycle notifications."""

from dataclasses import dataclass
from datetime import timedelta

APP_SIGNATURE = "The Authflow Team"


@dataclass(frozen=True)
class Message:
    subject: str
    body: str


def _minutes(ttl: timedelta) -> int:
    return int(ttl.total_seconds() // 60)


def email_verification(client_url: str, token: str, first_name: str, ttl: timedelta) -> Message:
    link = f"{client_url}/verify-email?token={token}"
    hours = _minutes(ttl) // 60
    return Message(
        subject="Verify Your Email",
        body=(
            f"Hi {first_name},\n\n"
            f"Please verify your email address by clicking the link below:\n{link}\n\n"
            f"This link will expire in {hours} hours.\n\n"
            f"Best regards,\n{APP_SIGNATURE}"
        ),
    )


def password_reset(client_url: str, token: str, first_name: str, ttl: timedelta) -> Message:
    link = f"{client_url}/reset-password?token={token}"
    return Message(
        subject="Password Reset Request",
        body=(
            f"Hi {first_name},\n\n"
            f"You requested a password reset for your account.\n\n"
            f"Reset your password by clicking the link below:\n{link}\n\n"
            f"This link will expire in {_minutes(ttl)} minutes.\n\n"
            f"If you didn't request this reset, please ignore this email.\n\n"
            f"Best regards,\n{APP_SIGNATURE}"
        ),
    )


def magic_link(client_url: str, token: str, first_name: str, ttl: timedelta) -> Message:
    link = f"{client_url}/magic-link?token={token}"
    return Message(
        subject="Magic Link Login",
        body=(
            f"Hi {first_name},\n\n"
            f"Click this link to sign in:\n{link}\n\n"
            f"This link will expire in {_minutes(ttl)} minutes.\n\n"
            f"Best regards,\n{APP_SIGNATURE}"
        ),
    )


def phone_otp(code: str, ttl: timedelta) -> Message:
    return Message(
        subject="",
        body=(
            f"Your verification code is: {code}. This code will expire in {_minutes(ttl)} minutes. "
            "Do not share this code with anyone."
        ),
    )


def security_alert(first_name: str, event: str) -> Message:
    """Account security notice sent after sensitive changes."""
    details = {
        "password_changed": (
            "Your password was successfully changed.\n\nIf you didn't make this change, please contact us immediately."
        ),
        "2fa_enabled": "Two-factor authentication has been enabled on your account.",
        "2fa_disabled": (
            "Two-factor authentication has been disabled on your account.\n\n"
            "If you didn't make this change, please secure your account immediately."
        ),
    }.get(event, "There was a security-related change to your account.")
    return Message(
        subject="Security Alert",
        body=f"Hi {first_name},\n\n{details}\n\nBest regards,\n{APP_SIGNATURE}",
    )
