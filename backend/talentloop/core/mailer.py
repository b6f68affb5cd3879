# backend/talentloop/core/mailer.py
from __future__ import annotations

import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Any

from fastapi.concurrency import run_in_threadpool
from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from talentloop.core.config import settings
from talentloop.core.logging import get_logger

logger = get_logger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
    undefined=StrictUndefined,
)


def render_template(name: str, **context: Any) -> str:
    base = {"app_name": settings.EMAIL_FROM_NAME, "support_url": settings.SUPPORT_URL}
    base.update(context)
    return _env.get_template(f"{name}.html").render(**base)


def _build_message(to_email: str, subject: str, html: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>"
    msg["To"] = to_email
    msg.set_content("This message requires an HTML-capable email client.")
    msg.add_alternative(html, subtype="html")
    return msg


def _send_smtp(msg: EmailMessage) -> None:
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS) as server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if settings.SMTP_USER:
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        server.send_message(msg)


async def send_email(to_email: str, subject: str, html: str) -> bool:
    """
    Deliver one HTML email. Returns False instead of raising on delivery errors.
    """
    if not settings.EMAIL_ENABLED:
        logger.info("email_disabled_skip", to=to_email, subject=subject)
        return False

    msg = _build_message(to_email, subject, html)
    try:
        await run_in_threadpool(_send_smtp, msg)
    except smtplib.SMTPAuthenticationError:
        logger.exception("smtp_auth_failed", host=settings.SMTP_HOST)
        return False
    except (smtplib.SMTPException, OSError):
        logger.exception("smtp_send_failed", to=to_email, host=settings.SMTP_HOST)
        return False

    logger.info("email_sent", to=to_email, subject=subject)
    return True
