import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import bcrypt

logger = logging.getLogger(__name__)

QUESTIONS: Tuple[Tuple[str, str], ...] = (
    ("What is 5 + 3?", "8"),
    ("What comes after 2 in counting?", "3"),
    ("How many sides does a triangle have?", "3"),
    ("What is 10 - 7?", "3"),
    ("What is the first letter of the alphabet?", "a"),
)


def _normalize_answer(answer: str) -> bytes:
    return answer.strip().lower().encode("utf-8")


def hash_answer(answer: str, rounds: int = 4) -> bytes:
    if not isinstance(answer, str) or not answer.strip():
        raise ValueError("Answer must be a non-empty string")
    return bcrypt.hashpw(_normalize_answer(answer), bcrypt.gensalt(rounds=rounds))


def check_answer(answer: str, answer_hash: bytes) -> bool:
    if not isinstance(answer, str) or not answer_hash:
        return False
    try:
        return bcrypt.checkpw(_normalize_answer(answer), answer_hash)
    except ValueError:
        return False


@dataclass(frozen=True)
class CaptchaChallenge:
    id: str
    question: str

    def to_dict(self):
        return {"id": self.id, "question": self.question}


class CaptchaStore:
    """
    Server-side answer store. Only a bcrypt hash of each answer is kept and
    every entry is consumed by the first verification attempt.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.time,
        hash_rounds: int = 4,
        max_pending: int = 10000,
    ):
        self.ttl_seconds = ttl_seconds
        self.hash_rounds = hash_rounds
        self.max_pending = max_pending
        self._clock = clock
        self._answers: Dict[str, Tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def generate_challenge(self) -> CaptchaChallenge:
        question, answer = secrets.choice(QUESTIONS)
        challenge_id = secrets.token_urlsafe(12)
        answer_hash = hash_answer(answer, self.hash_rounds)
        now = self._clock()
        with self._lock:
            self._drop_expired(now)
            while len(self._answers) >= self.max_pending:
                # insertion order: oldest first
                del self._answers[next(iter(self._answers))]
            self._answers[challenge_id] = (answer_hash, now + self.ttl_seconds)
        return CaptchaChallenge(id=challenge_id, question=question)

    def verify(self, challenge_id: str, answer: str) -> bool:
        with self._lock:
            stored = self._answers.pop(challenge_id, None)
        if stored is None:
            return False

        answer_hash, expires_at = stored
        if self._clock() > expires_at:
            logger.info("CAPTCHA %s answered after expiry", challenge_id)
            return False
        return check_answer(answer, answer_hash)

    def _drop_expired(self, now: float) -> int:
        expired = [cid for cid, (_, expires_at) in self._answers.items() if now > expires_at]
        for cid in expired:
            del self._answers[cid]
        return len(expired)

    def sweep(self) -> int:
        with self._lock:
            return self._drop_expired(self._clock())

    def reset(self) -> None:
        with self._lock:
            self._answers.clear()

    def __len__(self) -> int:
        return len(self._answers)
