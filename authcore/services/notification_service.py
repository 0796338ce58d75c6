"""Outbound email notifications for OTP codes and account links."""

from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from functools import lru_cache
from typing import Protocol

from authcore.config import get_settings


class NotificationSender(Protocol):
    """Contract for identity notification delivery adapters."""

    async def send_otp_email(self, to_email: str, otp: int, expires_in_minutes: int) -> None:
        """Deliver a one-time passcode."""

    async def send_verification_link(
        self, to_email: str, link: str, expires_in_minutes: int
    ) -> None:
        """Deliver a signup verification link."""

    async def send_password_reset_link(
        self, to_email: str, link: str, expires_in_minutes: int
    ) -> None:
        """Deliver a password reset link."""


@dataclass(frozen=True)
class SmtpNotificationSender:
    """Plaintext SMTP sender (Mailhog in development)."""

    host: str
    port: int
    email_from: str

    async def send_otp_email(self, to_email: str, otp: int, expires_in_minutes: int) -> None:
        body = (
            f"Your one-time login code is {otp}. "
            f"It expires in {expires_in_minutes} minutes."
        )
        await self._send(to_email=to_email, subject="Your login code", body=body)

    async def send_verification_link(
        self, to_email: str, link: str, expires_in_minutes: int
    ) -> None:
        body = (
            f"Open this link to verify your account: {link}\n"
            f"The link expires in {expires_in_minutes} minutes."
        )
        await self._send(to_email=to_email, subject="Verify your email", body=body)

    async def send_password_reset_link(
        self, to_email: str, link: str, expires_in_minutes: int
    ) -> None:
        body = (
            f"Open this link to choose a new password: {link}\n"
            f"The link expires in {expires_in_minutes} minutes."
        )
        await self._send(to_email=to_email, subject="Reset your password", body=body)

    async def _send(self, to_email: str, subject: str, body: str) -> None:
        await asyncio.to_thread(self._send_blocking, to_email=to_email, subject=subject, body=body)

    def _send_blocking(self, to_email: str, subject: str, body: str) -> None:
        """Send plaintext email using stdlib SMTP client."""
        message = EmailMessage()
        message["From"] = self.email_from
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.send_message(message)


@lru_cache
def get_notification_sender() -> NotificationSender:
    """Create and cache the default SMTP sender."""
    settings = get_settings()
    return SmtpNotificationSender(
        host=settings.email.smtp_host,
        port=settings.email.smtp_port,
        email_from=settings.email.email_from,
    )
