from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formataddr
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo

from starlette.datastructures import UploadFile

from lushak.core.config import Settings, settings
from lushak.core.email import send_email
from lushak.core.errors import (
    DispatchError,
    FieldViolation,
    PayloadTooLargeError,
    ValidationError,
)
from lushak.schemas.contact import (
    ALLOWED_TYPES_MESSAGE,
    ContactSubmission,
    is_allowed_content_type,
)

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 64 * 1024


@dataclass
class ContactAttachment:
    """Attachment materialized in memory, ready for the mail transport."""

    filename: str
    content_type: str
    content: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.content)


def _format_timestamp(moment: datetime) -> str:
    # en-US style: 10/19/2026, 3:04:05 PM
    hour = moment.hour % 12 or 12
    return (
        f"{moment.month}/{moment.day}/{moment.year}, "
        f"{hour}:{moment:%M}:{moment:%S} {moment:%p}"
    )


class ContactService:
    """Service to validate, package and deliver contact emails."""

    def __init__(self, config: Settings = settings):
        self.config = config
        self.max_files = config.CONTACT_MAX_FILES
        self.max_total_bytes = config.CONTACT_MAX_TOTAL_BYTES

    def check_uploads(self, uploads: Sequence[UploadFile]) -> None:
        """Count and content-type checks, before any byte is read."""
        if len(uploads) > self.max_files:
            raise ValidationError(
                [FieldViolation("files", f"Maximum {self.max_files} files allowed")]
            )
        for upload in uploads:
            if not is_allowed_content_type(upload.content_type):
                logger.info(
                    "Rejected attachment type %s",
                    upload.content_type,
                    extra={"event_type": "contact_attachment_rejected"},
                )
                raise ValidationError([FieldViolation("files", ALLOWED_TYPES_MESSAGE)])

    async def read_attachments(self, uploads: Sequence[UploadFile]) -> List[ContactAttachment]:
        """Read uploads one at a time, stopping as soon as the byte cap is passed.

        The running total counts bytes actually read, not declared sizes.
        """
        attachments: List[ContactAttachment] = []
        total = 0
        for upload in uploads:
            chunks = []
            while True:
                chunk = await upload.read(READ_CHUNK_BYTES)
                if not chunk:
                    break
                total += len(chunk)
                if total > self.max_total_bytes:
                    attachments.clear()
                    logger.warning(
                        "Contact attachments exceed %d bytes, aborting",
                        self.max_total_bytes,
                        extra={"event_type": "contact_payload_too_large"},
                    )
                    raise PayloadTooLargeError()
                chunks.append(chunk)

            attachment = ContactAttachment(
                filename=upload.filename or "attachment",
                content_type=upload.content_type or "application/octet-stream",
                content=b"".join(chunks),
            )
            logger.info(
                "Contact attachment received filename=%s size=%s",
                attachment.filename,
                attachment.size_bytes,
            )
            attachments.append(attachment)
        return attachments

    def _render_text(self, submission: ContactSubmission, sent_at: str) -> str:
        lines = [
            f"Name: {submission.name}",
            f"Email: {submission.email}",
            f"Phone: {submission.phone or '-'}",
            f"Subject: {submission.subject}",
            f"Time: {sent_at}",
            "",
            submission.message,
        ]
        return "\n".join(lines)

    def _render_html(
        self,
        submission: ContactSubmission,
        attachments: Sequence[ContactAttachment],
        sent_at: str,
        year: int,
    ) -> str:
        esc = html.escape
        phone_row = (
            f'<div><span class="label">Phone:</span> {esc(submission.phone)}</div>'
            if submission.phone
            else ""
        )
        files_row = (
            f'<div><span class="label">Files:</span> {len(attachments)}</div>'
            if attachments
            else ""
        )
        files_block = ""
        if attachments:
            listing = "<br>".join(f"&bull; {esc(a.filename)}" for a in attachments)
            files_block = f"""
      <div class="files">
        <strong>Attached files:</strong><br>
        {listing}
      </div>"""
        message_html = "<br>".join(esc(line) for line in submission.message.splitlines())
        site = esc(self.config.SITE_NAME)

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0"/>
  <title>New Contact - {site}</title>
  <style>
    body {{ font-family: system-ui, sans-serif; margin:0; padding:0; background:#f8fafc; color:#1e293b; }}
    .container {{ max-width:600px; margin:32px auto; background:white; border-radius:12px; overflow:hidden; }}
    .header {{ background:linear-gradient(135deg,#1e40af,#3b82f6); color:white; padding:32px 24px; text-align:center; }}
    .header h1 {{ margin:0; font-size:28px; }}
    .content {{ padding:32px 24px; }}
    .info {{ background:#f1f5f9; padding:20px; border-radius:8px; margin:24px 0; }}
    .label {{ font-weight:600; color:#1e40af; display:inline-block; min-width:100px; }}
    .message {{ background:#f8fafc; padding:20px; border-radius:8px; border-left:4px solid #3b82f6; line-height:1.6; }}
    .files {{ margin-top:16px; font-size:14px; color:#475569; }}
    .footer {{ background:#f1f5f9; padding:20px; text-align:center; font-size:13px; color:#64748b; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>New Contact Message</h1></div>
    <div class="content">
      <p>You received a new message:</p>
      <div class="info">
        <div><span class="label">From:</span> {esc(submission.name)}</div>
        <div><span class="label">Email:</span> <a href="mailto:{esc(submission.email)}">{esc(submission.email)}</a></div>
        {phone_row}
        <div><span class="label">Subject:</span> {esc(submission.subject)}</div>
        <div><span class="label">Time:</span> {esc(sent_at)}</div>
        {files_row}
      </div>
      <div class="message">
        <strong>Message:</strong><br><br>
        {message_html}
      </div>{files_block}
    </div>
    <div class="footer">&copy; {year} {site}<br>Sent via website contact form</div>
  </div>
</body>
</html>"""

    def build_email_message(
        self,
        request_id: str,
        submission: ContactSubmission,
        attachments: Sequence[ContactAttachment] = (),
        sent_at: Optional[datetime] = None,
    ) -> EmailMessage:
        sent_at = (sent_at or datetime.now(timezone.utc)).astimezone(
            ZoneInfo(self.config.CONTACT_TIMEZONE)
        )
        timestamp = _format_timestamp(sent_at)

        msg = EmailMessage()
        if self.config.SMTP_USER:
            msg["From"] = formataddr(("Contact Form", self.config.SMTP_USER))
        if self.config.contact_recipient:
            msg["To"] = self.config.contact_recipient
        msg["Reply-To"] = submission.email
        msg["Subject"] = f"New Contact: {submission.subject} - {submission.name}"
        msg["X-Contact-Request-ID"] = request_id

        msg.set_content(self._render_text(submission, timestamp))
        msg.add_alternative(
            self._render_html(submission, attachments, timestamp, sent_at.year),
            subtype="html",
        )

        for attachment in attachments:
            maintype, subtype = ("application", "octet-stream")
            if "/" in attachment.content_type:
                maintype, subtype = attachment.content_type.split(";", 1)[0].strip().split("/", 1)
            msg.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype,
                filename=attachment.filename,
            )

        return msg

    async def send_contact_email(self, message: EmailMessage) -> None:
        try:
            if not self.config.SMTP_HOST:
                raise RuntimeError("SMTP not configured")
            await send_email(message, self.config)
        except Exception as exc:
            logger.error(
                "Contact email dispatch failed: %s",
                exc,
                extra={"event_type": "contact_dispatch_failed"},
            )
            raise DispatchError() from exc
