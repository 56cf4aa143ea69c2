"""Email helper utilities."""

from __future__ import annotations

import smtplib, logging
from typing import Optional, Sequence
from email.message import EmailMessage

from .errors import DeliveryError
from .settings import EmailSettings


logger = logging.getLogger("snapreport.email")


def build_message(
    mail_from: str,
    mail_to: Sequence[str],
    subject: str,
    html_body: str,
    text_body: Optional[str] = None,
    mail_cc: Sequence[str] = (),
) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = mail_from
    msg["To"] = ", ".join(mail_to)
    if mail_cc:
        msg["Cc"] = ", ".join(mail_cc)
    msg["Subject"] = subject
    # Plain text part
    msg.set_content(text_body or "This report requires an HTML capable mail client.")
    msg.add_alternative(html_body, subtype="html")
    return msg


def send_email(
    config: EmailSettings,
    subject: str,
    html_body: str,
    text_body: Optional[str] = None,
) -> None:
    """Send the report as a multipart (plain + HTML) message.

    Any SMTP or socket failure is raised as ``DeliveryError``.
    """
    msg = build_message(
        config.mail_from, config.mail_to, subject, html_body, text_body, config.mail_cc
    )
    try:
        with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=config.smtp_timeout) as s:
            if config.smtp_use_tls:
                s.starttls()
            if config.smtp_user:
                s.login(config.smtp_user, config.smtp_pass)
            # send_message picks up To and Cc recipients from the headers
            s.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise DeliveryError(f"SMTP delivery via {config.smtp_host}:{config.smtp_port} failed: {e}") from e
    logger.debug(
        "Email sent to %s (cc %s)", ",".join(config.mail_to), ",".join(config.mail_cc) or "-"
    )
