import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from security.settings import setting

logger = logging.getLogger(__name__)

ACTIONS = ("login", "signup", "password_reset")


@dataclass
class RateLimitEntry:
    count: int
    window_reset_at: float
    blocked: bool = False
    blocked_until: Optional[float] = None

    def reset_at(self) -> float:
        if self.blocked and self.blocked_until is not None:
            return self.blocked_until
        return self.window_reset_at


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: Optional[int] = None


class RateLimiter:
    """
    Sliding-window attempt counter with block-on-exceed.

    One instance per action; identifiers are emails or IPs.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 15 * 60,
        block_seconds: float = 60 * 60,
        clock: Callable[[], float] = time.time,
        name: str = "login",
    ):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.block_seconds = block_seconds
        self.name = name
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def _fresh(self, now: float) -> RateLimitEntry:
        return RateLimitEntry(count=0, window_reset_at=now + self.window_seconds)

    def check_limit(self, identifier: str) -> RateLimitDecision:
        """
        Returns whether another attempt is allowed. Does not consume one.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(identifier)

            if entry and now > entry.reset_at():
                del self._entries[identifier]
                entry = None

            if entry and entry.blocked:
                return RateLimitDecision(False, max(math.ceil(entry.blocked_until - now), 1))

            current = entry or self._fresh(now)
            if current.count >= self.max_attempts:
                current.blocked = True
                current.blocked_until = now + self.block_seconds
                self._entries[identifier] = current
                logger.warning(
                    "%s rate limit: %s blocked for %ds after %d attempts",
                    self.name, identifier, self.block_seconds, current.count,
                )
                return RateLimitDecision(False, math.ceil(self.block_seconds))

        return RateLimitDecision(True)

    def record_attempt(self, identifier: str, success: bool = False) -> None:
        now = self._clock()
        with self._lock:
            if success:
                self._entries.pop(identifier, None)
                return

            entry = self._entries.get(identifier)
            if entry is None or (not entry.blocked and now > entry.window_reset_at):
                entry = self._fresh(now)
                self._entries[identifier] = entry
            entry.count += 1

    def get_attempt_count(self, identifier: str) -> int:
        with self._lock:
            entry = self._entries.get(identifier)
            return entry.count if entry else 0

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._entries.pop(identifier, None)

    def reset_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """
        Drop entries whose window has expired and which are not currently blocked.
        """
        now = self._clock()
        with self._lock:
            stale = [key for key, entry in list(self._entries.items()) if now > entry.reset_at()]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


def build_rate_limiters(config=None, clock: Callable[[], float] = time.time) -> Dict[str, RateLimiter]:
    """
    One independent limiter per action, policies read from config.
    """
    limiters = {}
    for action in ACTIONS:
        prefix = action.upper()
        limiters[action] = RateLimiter(
            max_attempts=int(setting(f"{prefix}_MAX_ATTEMPTS", config)),
            window_seconds=float(setting(f"{prefix}_WINDOW_SECONDS", config)),
            block_seconds=float(setting(f"{prefix}_BLOCK_SECONDS", config)),
            clock=clock,
            name=action,
        )
    return limiters
