"""Circuit breaker for the language model endpoint.

After repeated failures the response generator stops calling out for a
cooldown period and answers with its fallback utterances straight away,
so a down provider costs the caller no dead air.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class CircuitBreaker:
    """closed -> open (after N consecutive failures) -> half-open (after cooldown)."""

    failure_threshold: int = 3
    cooldown_seconds: float = 30.0
    label: str = "language model"

    _consecutive_failures: int = field(default=0, init=False, repr=False)
    _opened_at: Optional[float] = field(default=None, init=False, repr=False)

    @property
    def is_open(self) -> bool:
        return self._consecutive_failures >= self.failure_threshold

    def should_try(self) -> bool:
        if not self.is_open:
            return True
        # Half-open: let one probe through once the cooldown has elapsed
        return self._opened_at is not None and (time.monotonic() - self._opened_at) >= self.cooldown_seconds

    def record_success(self) -> None:
        if self.is_open:
            logger.info("Circuit breaker CLOSED for %s", self.label)
        self._consecutive_failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self.is_open and self._opened_at is None:
            logger.warning(
                "Circuit breaker OPENED for %s after %d consecutive failures, skipping for %.0fs",
                self.label,
                self._consecutive_failures,
                self.cooldown_seconds,
            )
        if self.is_open:
            # Re-arm the cooldown on every failed half-open probe
            self._opened_at = time.monotonic()
