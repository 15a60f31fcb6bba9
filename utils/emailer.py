import logging
import smtplib
from email.message import EmailMessage

from flask import current_app

from utils.blocklist import split_email

logger = logging.getLogger(__name__)

VERIFICATION_SUBJECT = "Verify your email address"


def verification_message(link: str) -> str:
    return (
        "Confirm your email address by opening the link below.\n\n"
        f"{link}\n\n"
        "If you did not request this, you can ignore this message."
    )


def _is_disposable_recipient(to_email: str) -> bool:
    service = current_app.extensions.get("security_service")
    if service is None:
        return False
    _, domain = split_email(to_email)
    return bool(domain) and service.email_validator.is_domain_blacklisted(domain)


def send_email(to_email: str, subject: str, body: str):
    """
    Returns (sent, error_message).
    """
    cfg = current_app.config
    host = cfg.get("SMTP_HOST")
    from_email = cfg.get("SMTP_FROM_EMAIL") or cfg.get("SMTP_USERNAME")

    if not host or not from_email:
        return False, "Email not configured"

    # Never mail throwaway inboxes, even for accounts created before a domain was listed
    if _is_disposable_recipient(to_email):
        logger.info("Refusing to mail disposable address %s", to_email)
        return False, "Disposable email domain"

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(host, cfg.get("SMTP_PORT", 587), timeout=10) as server:
            if cfg.get("SMTP_USE_TLS", True):
                server.starttls()
            if cfg.get("SMTP_USERNAME") and cfg.get("SMTP_PASSWORD"):
                server.login(cfg["SMTP_USERNAME"], cfg["SMTP_PASSWORD"])
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Sending mail to %s failed: %s", to_email, exc)
        return False, str(exc)
