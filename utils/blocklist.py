from typing import Tuple

DEFAULT_DISPOSABLE_DOMAINS = frozenset({
    "10minutemail.com",
    "guerrillamail.com",
    "mailinator.com",
    "tempmail.org",
    "yopmail.com",
    "33mail.com",
    "throwaway.email",
    "getnada.com",
    "temp-mail.org",
    "mohmal.com",
    "emailondeck.com",
    "tempail.com",
    "dispostable.com",
    "throwawaymail.com",
})


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def normalize_domain(value: str) -> str:
    return (value or "").strip().lower().rstrip(".")


def split_email(email: str) -> Tuple[str, str]:
    """
    Returns (local_part, domain); either may be empty.
    """
    parts = (email or "").split("@")
    local = parts[0]
    domain = parts[1] if len(parts) > 1 else ""
    return local, domain

