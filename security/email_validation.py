import re
import threading
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from utils.blocklist import DEFAULT_DISPOSABLE_DOMAINS, normalize_domain, split_email

_SHAPE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_ALL_DIGITS = re.compile(r"^\d+$")
_INVALID_LOCAL_CHARS = re.compile(r"[<>()\[\]\\,;:\s@\"]")

MAX_EMAIL_LENGTH = 254
MAX_LOCAL_LENGTH = 64
MAX_DOMAIN_LENGTH = 253

DEFAULT_SUSPICIOUS_TLDS = frozenset({"tk", "ml", "ga", "cf", "top", "click", "download"})

TRUSTED_DOMAINS = frozenset({
    "gmail.com",
    "outlook.com",
    "hotmail.com",
    "yahoo.com",
    "icloud.com",
    "protonmail.com",
})
_TRUSTED_SUFFIXES = (".edu", ".gov")
_PREMIUM_SUFFIXES = (".com", ".org", ".net")

# Score deductions per violation
_PENALTIES = {
    "format": 0.8,
    "too_long": 0.3,
    "local_too_long": 0.2,
    "numeric_local": 0.3,
    "consecutive_dots": 0.4,
    "invalid_chars": 0.4,
    "disposable": 0.9,
    "suspicious_tld": 0.3,
    "domain_too_long": 0.3,
    "invalid_tld": 0.5,
}


@dataclass
class EmailValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    score: float = 1.0
    disposable: bool = False


class EmailValidator:
    def __init__(self, disposable_domains: Optional[Iterable[str]] = None, suspicious_tlds: Optional[Iterable[str]] = None):
        domains = DEFAULT_DISPOSABLE_DOMAINS if disposable_domains is None else disposable_domains
        self._disposable = {normalize_domain(d) for d in domains}
        self._suspicious_tlds = set(DEFAULT_SUSPICIOUS_TLDS if suspicious_tlds is None else suspicious_tlds)
        self._lock = threading.Lock()

    def validate_email(self, email: str) -> EmailValidationResult:
        if not isinstance(email, str):
            return EmailValidationResult(False, ["Invalid email format"], 0.0)

        errors: List[str] = []
        score = 1.0
        disposable = False

        def fail(message: str, penalty: str):
            nonlocal score
            errors.append(message)
            score -= _PENALTIES[penalty]

        if not _SHAPE.match(email):
            fail("Invalid email format", "format")

        if len(email) > MAX_EMAIL_LENGTH:
            fail("Email address too long", "too_long")

        local, domain = split_email(email)
        if local:
            if len(local) > MAX_LOCAL_LENGTH:
                fail("Email username too long", "local_too_long")
            if _ALL_DIGITS.match(local):
                fail("Email username is only numbers", "numeric_local")
            if ".." in local:
                fail("Invalid characters in email", "consecutive_dots")
            if _INVALID_LOCAL_CHARS.search(local.replace('"', "")):
                fail("Email contains invalid characters", "invalid_chars")

        if domain:
            domain_lower = normalize_domain(domain)
            if self.is_domain_blacklisted(domain_lower):
                disposable = True
                fail("Disposable email addresses are not allowed", "disposable")

            tld = domain_lower.rsplit(".", 1)[-1] if "." in domain_lower else ""
            if tld in self._suspicious_tlds:
                fail("Email domain appears suspicious", "suspicious_tld")
            if len(domain) > MAX_DOMAIN_LENGTH:
                fail("Email domain too long", "domain_too_long")
            if len(tld) < 2:
                fail("Invalid email domain", "invalid_tld")

        score = max(0.0, round(score, 4))
        return EmailValidationResult(
            is_valid=not errors and score > 0.5,
            errors=errors,
            score=score,
            disposable=disposable,
        )

    def is_domain_blacklisted(self, domain: str) -> bool:
        with self._lock:
            return normalize_domain(domain) in self._disposable

    def add_disposable_domain(self, domain: str) -> None:
        with self._lock:
            self._disposable.add(normalize_domain(domain))

    def remove_disposable_domain(self, domain: str) -> None:
        with self._lock:
            self._disposable.discard(normalize_domain(domain))

    def disposable_domains(self) -> List[str]:
        with self._lock:
            return sorted(self._disposable)


def is_trusted_domain(domain: str) -> bool:
    return normalize_domain(domain) in TRUSTED_DOMAINS


def calculate_reputation_score(email: str) -> float:
    """
    0..1 trust estimate for the email's domain. 0.5 is neutral.
    """
    _, domain = split_email(email)
    domain = normalize_domain(domain)
    if not domain:
        return 0.0

    score = 0.5
    if domain in TRUSTED_DOMAINS or domain.endswith(_TRUSTED_SUFFIXES):
        score += 0.4
    if "corp" in domain or "company" in domain or "." not in domain:
        score += 0.2
    if domain.endswith(_PREMIUM_SUFFIXES):
        score += 0.1

    return min(round(score, 4), 1.0)
