import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable
from dataclasses import dataclass

from app.config import settings
from app.errors import RateLimited

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptPolicy:
    """Failed verification attempts allowed per key within a rolling window."""

    max_attempts: int
    window_seconds: int

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be a positive integer")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be a positive integer")

    @classmethod
    def from_settings(cls) -> "AttemptPolicy":
        return cls(
            max_attempts=settings.mfa_max_attempts,
            window_seconds=settings.mfa_attempt_window_seconds,
        )


class AttemptLimiter:
    """Sliding-window failure counter keyed by principal."""

    def __init__(
        self,
        policy: AttemptPolicy,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy
        self._clock = clock
        self._lock = threading.Lock()
        self._failures: dict[Hashable, deque[float]] = {}

    def _prune(self, key: Hashable, now: float) -> deque[float]:
        failures = self._failures.get(key)
        if failures is None:
            return deque()
        cutoff = now - self.policy.window_seconds
        while failures and failures[0] <= cutoff:
            failures.popleft()
        if not failures:
            self._failures.pop(key, None)
        return failures

    def check(self, key: Hashable) -> None:
        now = self._clock()
        with self._lock:
            failures = self._prune(key, now)
            if len(failures) >= self.policy.max_attempts:
                retry_after = failures[0] + self.policy.window_seconds - now
                logger.warning("Verification attempts exhausted for %s", key)
                raise RateLimited(retry_after=int(retry_after) + 1)

    def record_failure(self, key: Hashable) -> None:
        now = self._clock()
        with self._lock:
            self._prune(key, now)
            self._failures.setdefault(key, deque()).append(now)

    def reset(self, key: Hashable) -> None:
        with self._lock:
            self._failures.pop(key, None)

    def failures(self, key: Hashable) -> int:
        with self._lock:
            return len(self._prune(key, self._clock()))
