import logging
import re
import secrets
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence

from security.context import InteractionSample, PointerSample

logger = logging.getLogger(__name__)

_BOT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"bot", r"crawler", r"spider", r"scraper", r"automated", r"headless")
]
_BROWSER_TOKENS = ("Mozilla", "Chrome", "Safari")

# Sub-score above which a signal counts towards the bot verdict
SUSPICIOUS_SCORE = 0.5
# Slope difference under which three pointer samples are treated as collinear
COLLINEAR_EPSILON = 0.1
COLLINEAR_RATIO = 0.7

UA_WEIGHT = 0.4
TYPING_WEIGHT = 0.3
MOUSE_WEIGHT = 0.3


@dataclass(frozen=True)
class SubScore:
    suspicious: bool
    score: float


@dataclass
class BotDetectionResult:
    is_bot: bool
    confidence: float
    reasons: List[str] = field(default_factory=list)


def _sub_score(raw: float) -> SubScore:
    score = min(max(raw, 0.0), 1.0)
    return SubScore(suspicious=raw > SUSPICIOUS_SCORE, score=score)


def _slope(a: PointerSample, b: PointerSample) -> float:
    return (b.y - a.y) / ((b.x - a.x) or 1)


class BotDetector:
    def __init__(self, min_interaction_ms: float = 2000, max_typing_speed: float = 10, bot_threshold: float = 0.6):
        self.min_interaction_ms = min_interaction_ms
        self.max_typing_speed = max_typing_speed
        self.bot_threshold = bot_threshold

    def analyze_user_agent(self, user_agent: str) -> SubScore:
        user_agent = user_agent or ""
        suspicion = 0.0

        for pattern in _BOT_PATTERNS:
            if pattern.search(user_agent):
                suspicion += 0.8

        if not any(token in user_agent for token in _BROWSER_TOKENS):
            suspicion += 0.5

        if len(user_agent) < 20 or len(user_agent) > 500:
            suspicion += 0.3

        return _sub_score(suspicion)

    def analyze_typing_pattern(self, start_time: float, end_time: float, text_length: int) -> SubScore:
        total_ms = end_time - start_time
        if total_ms > 0:
            typing_speed = text_length / (total_ms / 1000)
        else:
            typing_speed = float("inf") if text_length else 0.0

        suspicion = 0.0
        if typing_speed > self.max_typing_speed:
            suspicion += 0.7
        if total_ms < self.min_interaction_ms:
            suspicion += 0.6
        # Moderate speed over a very short session has no human variance
        if typing_speed > 5 and total_ms < 5000:
            suspicion += 0.4

        return _sub_score(suspicion)

    def analyze_mouse_movement(self, movements: Sequence[PointerSample]) -> SubScore:
        if not movements:
            return SubScore(suspicious=True, score=0.9)

        suspicion = 0.0
        if len(movements) < 3:
            suspicion += 0.6

        triplets = len(movements) - 2
        if triplets > 0:
            collinear = sum(
                1
                for i in range(triplets)
                if abs(_slope(movements[i], movements[i + 1]) - _slope(movements[i + 1], movements[i + 2]))
                < COLLINEAR_EPSILON
            )
            if collinear / triplets > COLLINEAR_RATIO:
                suspicion += 0.5

        return _sub_score(suspicion)

    def detect_bot(self, user_agent: str, sample: InteractionSample) -> BotDetectionResult:
        reasons: List[str] = []
        total = 0.0

        ua = self.analyze_user_agent(user_agent)
        if ua.suspicious:
            reasons.append("Suspicious user agent detected")
            total += ua.score * UA_WEIGHT

        typing = self.analyze_typing_pattern(sample.start_time, sample.end_time, sample.text_length)
        if typing.suspicious:
            reasons.append("Unnatural typing pattern detected")
            total += typing.score * TYPING_WEIGHT

        mouse = self.analyze_mouse_movement(sample.mouse_movements)
        if mouse.suspicious:
            reasons.append("Suspicious mouse movement pattern")
            total += mouse.score * MOUSE_WEIGHT

        confidence = min(total, 1.0)
        is_bot = confidence > self.bot_threshold
        if is_bot:
            logger.info("Bot signature matched (confidence %.2f): %s", confidence, ", ".join(reasons))

        return BotDetectionResult(is_bot=is_bot, confidence=confidence, reasons=reasons if is_bot else [])


@dataclass(frozen=True)
class HoneypotSpec:
    field_name: str
    field_id: str

    def to_dict(self):
        return {"field_name": self.field_name, "field_id": self.field_id}


class HoneypotTrap:
    """
    Hidden form field that humans never fill in.
    """

    def __init__(self, field_name: str = "website_url"):
        self.field_name = field_name

    def create_honeypot(self) -> HoneypotSpec:
        return HoneypotSpec(field_name=self.field_name, field_id="honeypot_" + secrets.token_hex(5))

    def is_trapped(self, form_data: Optional[Mapping[str, Any]]) -> bool:
        if not form_data:
            return False
        value = form_data.get(self.field_name)
        if value is None:
            return False
        if isinstance(value, str):
            return value.strip() != ""
        return True
