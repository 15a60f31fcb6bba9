import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from urllib.parse import urlencode

from flask import current_app

from models import db
from models.user import User
from utils.emailer import VERIFICATION_SUBJECT, send_email, verification_message

logger = logging.getLogger(__name__)


class EmailNotVerified(Exception):
    pass


class VerificationEmailError(RuntimeError):
    pass


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def is_email_verified(user) -> bool:
    return getattr(user, "email_verified", False) is True


def require_email_verification(user) -> None:
    if not is_email_verified(user):
        raise EmailNotVerified(
            "Email verification required. Please check your inbox and verify your email address."
        )


def send_verification_email(user: User) -> str:
    """
    Issues a fresh one-time token, stores only its hash on the user and mails
    the link. Returns the RAW token.
    """
    if user is None:
        raise ValueError("User is required")

    raw_token = secrets.token_urlsafe(32)
    ttl = current_app.config.get("VERIFICATION_TOKEN_TTL_SECONDS", 24 * 60 * 60)

    user.verification_token_hash = _hash_token(raw_token)
    user.verification_expires_at = datetime.utcnow() + timedelta(seconds=ttl)
    db.session.commit()

    base_url = current_app.config.get("VERIFICATION_URL", "http://localhost:3000/verify-email")
    link = f"{base_url}?{urlencode({'token': raw_token})}"
    sent, error = send_email(user.email, VERIFICATION_SUBJECT, verification_message(link))
    if not sent:
        logger.error("Verification mail to user %s not sent: %s", user.id, error)
        raise VerificationEmailError("Failed to send verification email")

    return raw_token


def confirm_email_verification(raw_token: str):
    """
    Marks the owning user verified. Returns the user, or None for an unknown
    or expired token. Tokens are single-use.
    """
    if not raw_token:
        return None

    user = User.query.filter_by(verification_token_hash=_hash_token(raw_token)).first()
    if not user:
        return None

    expired = user.verification_expires_at is None or user.verification_expires_at <= datetime.utcnow()
    user.verification_token_hash = None
    user.verification_expires_at = None
    if not expired:
        user.email_verified = True
        user.email_verified_at = datetime.utcnow()
    db.session.commit()

    return None if expired else user
