from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage

from lushak.core.config import Settings, settings

logger = logging.getLogger(__name__)

SMTP_SSL_PORT = 465


def _send_email_sync(message: EmailMessage, config: Settings = settings) -> None:
    if not config.SMTP_HOST:
        raise RuntimeError("SMTP_HOST is not configured")

    if config.SMTP_PORT == SMTP_SSL_PORT:
        server = smtplib.SMTP_SSL(
            config.SMTP_HOST, config.SMTP_PORT, timeout=config.SMTP_TIMEOUT
        )
    else:
        server = smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=config.SMTP_TIMEOUT)

    with server:
        if config.SMTP_PORT != SMTP_SSL_PORT:
            server.starttls()
        if config.SMTP_USER and config.SMTP_PASSWORD:
            server.login(config.SMTP_USER, config.SMTP_PASSWORD.get_secret_value())
        server.send_message(message)


async def send_email(message: EmailMessage, config: Settings = settings) -> None:
    """Hand a message to the SMTP relay once. Failures propagate to the caller."""
    await asyncio.to_thread(_send_email_sync, message, config)
    logger.info("Email accepted by SMTP relay %s", config.SMTP_HOST)
