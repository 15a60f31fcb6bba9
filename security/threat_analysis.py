import logging
import statistics
import threading
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from security.ip_reputation import coarse_region

logger = logging.getLogger(__name__)

EVENT_TYPES = ("login_attempt", "signup_attempt", "password_reset", "suspicious_activity")
SEVERITIES = ("low", "medium", "high", "critical")

_AUTOMATION_KEYWORDS = ("bot", "crawler", "automation")


@dataclass
class ThreatEvent:
    id: str
    timestamp: float
    type: str
    severity: str
    source: str
    user_agent: str
    email: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self):
        return asdict(self)


@dataclass
class ThreatScore:
    overall: float
    factors: Dict[str, float]
    risks: List[str] = field(default_factory=list)


class ThreatAnalyzer:
    """
    Rolling per-email and per-IP event history with a 0-100 composite score.
    """

    def __init__(
        self,
        history_seconds: float = 24 * 60 * 60,
        analysis_window_seconds: float = 60 * 60,
        max_events_per_ip: int = 100,
        region_of: Callable[[str], Any] = coarse_region,
        clock: Callable[[], float] = time.time,
    ):
        self.history_seconds = history_seconds
        self.analysis_window_seconds = analysis_window_seconds
        self.max_events_per_ip = max_events_per_ip
        self.region_of = region_of
        self._clock = clock
        self._by_email: Dict[str, Deque[ThreatEvent]] = {}
        self._by_ip: Dict[str, Deque[ThreatEvent]] = {}
        self._lock = threading.Lock()

    def record_event(
        self,
        type: str,
        severity: str,
        source: str,
        user_agent: str,
        email: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> ThreatEvent:
        if type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {type}")
        if severity not in SEVERITIES:
            raise ValueError(f"Unknown severity: {severity}")

        event = ThreatEvent(
            id=uuid.uuid4().hex,
            timestamp=self._clock(),
            type=type,
            severity=severity,
            source=source,
            user_agent=user_agent or "",
            email=email,
            details=dict(details or {}),
        )

        with self._lock:
            if email:
                self._by_email.setdefault(email, deque(maxlen=self.max_events_per_ip)).append(event)
            # deque(maxlen) drops the oldest entry once the cap is reached
            self._by_ip.setdefault(source, deque(maxlen=self.max_events_per_ip)).append(event)

        return event

    def _recent(self, index: Dict[str, Deque[ThreatEvent]], key: Optional[str]) -> List[ThreatEvent]:
        if not key:
            return []
        cutoff = self._clock() - self.analysis_window_seconds
        with self._lock:
            events = list(index.get(key, ()))
        return [e for e in events if e.timestamp > cutoff]

    def analyze_threat(self, email: Optional[str], ip: str, user_agent: str, event_type: str) -> ThreatScore:
        risks: List[str] = []
        factors = {"location": 0.0, "frequency": 0.0, "behavior": 0.0, "device": 0.0}

        ip_events = self._recent(self._by_ip, ip)
        email_events = self._recent(self._by_email, email)

        # Frequency
        if len(ip_events) > 10:
            factors["frequency"] += 40
            risks.append("High frequency of requests from IP address")
        elif len(ip_events) > 5:
            factors["frequency"] += 20
            risks.append("Moderate frequency of requests from IP address")
        if len(email_events) > 5:
            factors["frequency"] += 30
            risks.append("Multiple attempts for this email")

        # Behavior: medium severity marks a shaky or failed attempt
        failed = [e for e in ip_events if e.severity == "medium"]
        if len(failed) > 3:
            factors["behavior"] += 50
            risks.append("Multiple failed authentication attempts")

        regularity = self._time_regularity(ip_events)
        if regularity:
            factors["behavior"] += regularity
            if regularity >= 40:
                risks.append("Automated, evenly spaced request timing")
            else:
                risks.append("Unusually regular request timing")

        # Location
        regions = {self.region_of(e.source) for e in email_events}
        regions.add(self.region_of(ip))
        if len(regions) > 3:
            factors["location"] += 30
            risks.append("Requests from multiple geographic locations")

        # Device
        factors["device"] = self._device_score(user_agent, ip_events, risks)

        overall = min(sum(factors.values()) / len(factors), 100.0)
        if overall > 0:
            logger.debug("Threat score %.1f for %s (%s): %s", overall, ip, event_type, factors)
        return ThreatScore(overall=overall, factors=factors, risks=risks)

    @staticmethod
    def _time_regularity(events: List[ThreatEvent]) -> int:
        if len(events) < 3:
            return 0
        stamps = sorted(e.timestamp for e in events)
        intervals = [b - a for a, b in zip(stamps, stamps[1:])]
        mean = sum(intervals) / len(intervals)
        if mean <= 0:
            # no measurable spacing, so no timing signal
            return 0
        cov = statistics.pstdev(intervals) / mean
        if cov < 0.1:
            return 40
        if cov < 0.3:
            return 20
        return 0

    @staticmethod
    def _device_score(user_agent: str, ip_events: List[ThreatEvent], risks: List[str]) -> float:
        user_agent = user_agent or ""
        score = 0.0

        if len({e.user_agent for e in ip_events}) > 3:
            score += 40
            risks.append("Frequent user agent switching from this IP")

        ua_lower = user_agent.lower()
        if any(word in ua_lower for word in _AUTOMATION_KEYWORDS):
            score += 60
            risks.append("Automation indicators in user agent")

        if "Mozilla" not in user_agent and "WebKit" not in user_agent:
            score += 30
            risks.append("Missing standard browser identifiers")

        return min(score, 100.0)

    def get_ip_threat_level(self, ip: str) -> str:
        score = self.analyze_threat(None, ip, "", "login_attempt").overall
        if score > 70:
            return "high"
        if score > 40:
            return "medium"
        return "low"

    def should_block_ip(self, ip: str) -> bool:
        return self.get_ip_threat_level(ip) == "high"

    def get_threat_stats(self) -> Dict[str, int]:
        cutoff = self._clock() - self.analysis_window_seconds
        with self._lock:
            snapshot = {ip: list(events) for ip, events in self._by_ip.items()}

        total = sum(len(events) for events in snapshot.values())
        recent = sum(1 for events in snapshot.values() for e in events if e.timestamp > cutoff)
        high_risk = sum(1 for ip in snapshot if self.get_ip_threat_level(ip) == "high")
        return {
            "total_events": total,
            "unique_ips": len(snapshot),
            "high_risk_ips": high_risk,
            "recent_events": recent,
        }

    def events_for_ip(self, ip: str) -> List[ThreatEvent]:
        with self._lock:
            return list(self._by_ip.get(ip, ()))

    def events_for_email(self, email: str) -> List[ThreatEvent]:
        with self._lock:
            return list(self._by_email.get(email, ()))

    def sweep(self) -> int:
        """
        Purge events older than the retention window from both indices.
        """
        cutoff = self._clock() - self.history_seconds
        removed = 0
        with self._lock:
            for index in (self._by_email, self._by_ip):
                for key in list(index):
                    events = index[key]
                    while events and events[0].timestamp <= cutoff:
                        events.popleft()
                        removed += 1
                    if not events:
                        del index[key]
        return removed

    def reset(self) -> None:
        with self._lock:
            self._by_email.clear()
            self._by_ip.clear()
