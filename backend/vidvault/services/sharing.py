from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Sequence

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from vidvault.core.errors import MailDeliveryError, ValidationError
from vidvault.core.settings import Settings
from vidvault.db.models.video import Video

logger = logging.getLogger(__name__)

MAX_SENDER_NAME_LENGTH = 100
MAX_MESSAGE_LENGTH = 500

_email_adapter = TypeAdapter(EmailStr)


def parse_recipients(raw: str, *, max_recipients: int) -> list[str]:
    """Split a comma-separated address list, validate each address and the count."""
    emails = [e.strip() for e in (raw or "").split(",") if e.strip()]
    if not emails:
        raise ValidationError("At least one email address is required", field="emails")

    invalid: list[str] = []
    for email in emails:
        try:
            _email_adapter.validate_python(email)
        except PydanticValidationError:
            invalid.append(email)
    if invalid:
        raise ValidationError(f"Invalid email addresses: {', '.join(invalid)}", field="emails")

    if len(emails) > max_recipients:
        raise ValidationError(f"Maximum {max_recipients} email addresses allowed", field="emails")
    return emails


def validate_share_note(*, sender_name: str | None, message: str | None) -> None:
    if sender_name is not None and len(sender_name) > MAX_SENDER_NAME_LENGTH:
        raise ValidationError(
            f"sender_name must be at most {MAX_SENDER_NAME_LENGTH} characters", field="sender_name"
        )
    if message is not None and len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"message must be at most {MAX_MESSAGE_LENGTH} characters", field="message")


def build_share_message(
    *,
    video: Video,
    share_url: str,
    recipient: str,
    mail_from: str,
    sender_name: str | None = None,
    personal_message: str | None = None,
) -> EmailMessage:
    if sender_name:
        subject = f"{sender_name} shared a video with you: {video.title}"
    else:
        subject = f"A video has been shared with you: {video.title}"

    lines = [f"{sender_name or 'Someone'} shared a video with you.", "", video.title]
    if video.description:
        lines += ["", video.description]
    if video.formatted_duration:
        lines += ["", f"Duration: {video.formatted_duration}"]
    if personal_message:
        lines += ["", f"Message: {personal_message}"]
    lines += ["", f"Watch it here: {share_url}"]

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = mail_from
    msg["To"] = recipient
    msg.set_content("\n".join(lines))
    return msg


class Mailer:
    """Sends mail through SMTP; the blocking client runs in a worker thread."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _send_blocking(self, messages: Sequence[EmailMessage]) -> None:
        s = self.settings
        if not s.smtp_host:
            raise MailDeliveryError("SMTP is not configured (missing SMTP_HOST)")
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=30) as smtp:
            if s.smtp_use_tls:
                smtp.starttls()
            if s.smtp_username and s.smtp_password:
                smtp.login(s.smtp_username, s.smtp_password)
            for msg in messages:
                smtp.send_message(msg)

    async def send(self, messages: Sequence[EmailMessage]) -> None:
        try:
            await asyncio.to_thread(self._send_blocking, messages)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Share email delivery failed", extra={"extra_data": {"error": str(e)}})
            raise MailDeliveryError("Failed to send email. Please try again later.") from e


async def send_share_email(
    *,
    mailer: Mailer,
    video: Video,
    share_url: str,
    recipients: Sequence[str],
    mail_from: str,
    sender_name: str | None = None,
    personal_message: str | None = None,
) -> int:
    messages = [
        build_share_message(
            video=video,
            share_url=share_url,
            recipient=r,
            mail_from=mail_from,
            sender_name=sender_name,
            personal_message=personal_message,
        )
        for r in recipients
    ]
    await mailer.send(messages)
    logger.info(
        "Share email sent",
        extra={"extra_data": {"video_id": video.id, "recipients": len(messages)}},
    )
    return len(messages)
