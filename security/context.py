"""
Request-scoped inputs and outputs of the security pipeline.

SecurityContext is built once per request from untrusted client data and
validated here; everything downstream can rely on its types.
"""
import enum
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple


class SecurityAction(str, enum.Enum):
    LOGIN = "login"
    SIGNUP = "signup"
    PASSWORD_RESET = "password_reset"

    @property
    def event_type(self) -> str:
        return _EVENT_TYPES[self]


_EVENT_TYPES = {
    SecurityAction.LOGIN: "login_attempt",
    SecurityAction.SIGNUP: "signup_attempt",
    SecurityAction.PASSWORD_RESET: "password_reset",
}


class DenialKind(str, enum.Enum):
    RATE_LIMITED = "rate_limited"
    BOT_DETECTED = "bot_detected"
    INVALID_EMAIL = "invalid_email"
    DISPOSABLE_EMAIL = "disposable_email"
    LOW_REPUTATION_EMAIL = "low_reputation_email"
    HIGH_RISK_IP = "high_risk_ip"
    HIGH_THREAT_SCORE = "high_threat_score"
    SYSTEM_FAILURE = "system_failure"


class InvalidSecurityContext(ValueError):
    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


@dataclass(frozen=True)
class PointerSample:
    x: float
    y: float
    timestamp: float


@dataclass(frozen=True)
class InteractionSample:
    # Client timestamps in milliseconds
    start_time: float
    end_time: float
    text_length: int
    mouse_movements: Tuple[PointerSample, ...] = ()

    @property
    def duration_ms(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class SecurityContext:
    ip: str
    user_agent: str
    action: SecurityAction
    timestamp: float = field(default_factory=time.time)
    email: Optional[str] = None
    form_data: Optional[Mapping[str, Any]] = None
    interaction: Optional[InteractionSample] = None

    def __post_init__(self):
        if not isinstance(self.action, SecurityAction):
            object.__setattr__(self, "action", SecurityAction(self.action))

    @property
    def identifier(self) -> str:
        """Rate-limit key: the email when known, else the IP."""
        return self.email or self.ip

    @classmethod
    def from_payload(cls, payload: Any, ip: str, user_agent: str, timestamp: Optional[float] = None):
        if not isinstance(payload, dict):
            raise InvalidSecurityContext(["Request body must be a JSON object"])

        errors: List[str] = []

        try:
            action = SecurityAction(payload.get("action"))
        except ValueError:
            action = None
            errors.append("action must be one of: " + ", ".join(a.value for a in SecurityAction))

        email = payload.get("email")
        if email is not None:
            if not isinstance(email, str):
                errors.append("email must be a string")
            else:
                email = email.strip().lower() or None

        form_data = payload.get("form_data")
        if form_data is not None and not isinstance(form_data, dict):
            errors.append("form_data must be an object")

        interaction = None
        raw_interaction = payload.get("interaction")
        if raw_interaction is not None:
            try:
                interaction = _parse_interaction(raw_interaction)
            except (TypeError, ValueError, KeyError) as exc:
                errors.append(f"interaction is malformed: {exc}")

        if not isinstance(ip, str) or not ip:
            errors.append("client IP could not be determined")

        if errors:
            raise InvalidSecurityContext(errors)

        return cls(
            ip=ip,
            user_agent=user_agent or "",
            action=action,
            timestamp=timestamp if timestamp is not None else time.time(),
            email=email,
            form_data=form_data,
            interaction=interaction,
        )


def _number(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number")
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite")
    return float(value)


def _parse_interaction(raw) -> InteractionSample:
    if not isinstance(raw, dict):
        raise TypeError("expected an object")

    start = _number(raw["start_time"], "start_time")
    end = _number(raw["end_time"], "end_time")
    if end < start:
        raise ValueError("end_time is before start_time")

    text_length = raw.get("text_length", 0)
    if isinstance(text_length, bool) or not isinstance(text_length, int) or text_length < 0:
        raise ValueError("text_length must be a non-negative integer")

    movements = raw.get("mouse_movements") or []
    if not isinstance(movements, list):
        raise TypeError("mouse_movements must be a list")

    samples = tuple(
        PointerSample(
            x=_number(m["x"], "x"),
            y=_number(m["y"], "y"),
            timestamp=_number(m["timestamp"], "timestamp"),
        )
        for m in movements
    )
    return InteractionSample(start, end, text_length, samples)


@dataclass
class SecurityCheckResult:
    allowed: bool
    confidence: float
    reasons: List[str] = field(default_factory=list)
    actions: List[str] = field(default_factory=list)
    retry_after: Optional[int] = None
    requires_captcha: bool = False
    requires_email_verification: bool = False
    denial: Optional[DenialKind] = None

    @classmethod
    def allow(cls, confidence: float = 1.0, reasons=None, **kwargs):
        return cls(allowed=True, confidence=confidence, reasons=list(reasons or []), **kwargs)

    @classmethod
    def deny(cls, denial: DenialKind, reasons, confidence: float = 1.0, **kwargs):
        reasons = [r for r in (reasons or []) if r]
        if not reasons:
            reasons = [_FALLBACK_REASONS[denial]]
        return cls(allowed=False, confidence=confidence, reasons=reasons, denial=denial, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "confidence": round(self.confidence, 4),
            "reasons": list(self.reasons),
            "actions": list(self.actions),
            "retry_after": self.retry_after,
            "requires_captcha": self.requires_captcha,
            "requires_email_verification": self.requires_email_verification,
            "denial": self.denial.value if self.denial else None,
        }


_FALLBACK_REASONS = {
    DenialKind.RATE_LIMITED: "Too many attempts",
    DenialKind.BOT_DETECTED: "Automated activity detected",
    DenialKind.INVALID_EMAIL: "Invalid email address",
    DenialKind.DISPOSABLE_EMAIL: "Disposable email addresses are not allowed",
    DenialKind.LOW_REPUTATION_EMAIL: "Email domain has low reputation",
    DenialKind.HIGH_RISK_IP: "IP address flagged as high risk",
    DenialKind.HIGH_THREAT_SCORE: "Access denied due to high threat level",
    DenialKind.SYSTEM_FAILURE: "Security system temporarily unavailable",
}
