"""
core/mailer.py -- Outgoing e-mail for password recovery.

Uses the standard library SMTP client. When SMTP_HOST is not configured
(local development, tests), messages are written to the log instead of being
sent so the reset flow can still be exercised end to end.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/, catalog/.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from urllib.parse import urlencode

from core.config import get_settings

logger = logging.getLogger("neoptica.mail")


class MailError(Exception):
    """Raised when the SMTP server rejects or cannot deliver a message."""


def send_mail(to: str, subject: str, body: str) -> None:
    cfg = get_settings()
    if not cfg.smtp_host:
        logger.info("SMTP not configured; mail to %s not sent (subject=%r)", to, subject)
        logger.debug("Mail body:\n%s", body)
        return

    msg = EmailMessage()
    msg["From"] = cfg.mail_from
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=15) as smtp:
            if cfg.smtp_use_tls:
                smtp.starttls()
            if cfg.smtp_user:
                smtp.login(cfg.smtp_user, cfg.smtp_password)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise MailError(f"Could not send mail to {to}: {exc}") from exc
    logger.info("Mail sent to %s (subject=%r)", to, subject)


def build_reset_link(email: str, token: str) -> str:
    cfg = get_settings()
    query = urlencode({"token": token, "email": email})
    return f"{cfg.frontend_url.rstrip('/')}/reset-password?{query}"


def send_password_reset(email: str, token: str) -> None:
    """Send the password-recovery message with a single-use reset link."""
    cfg = get_settings()
    link = build_reset_link(email, token)
    body = (
        "We received a request to reset your Neóptica password.\n\n"
        f"Open this link to choose a new password:\n{link}\n\n"
        f"The link expires in {cfg.reset_token_expire_hours} hours. "
        "If you did not request a reset, you can ignore this message.\n"
    )
    send_mail(email, "Password reset", body)
