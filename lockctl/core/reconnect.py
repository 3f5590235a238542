"""Opt-in reconnection backoff after an unexpected link drop."""

from __future__ import annotations

import random

from lockctl.core.model import ReconnectSpec


class ReconnectPolicy:
    """Jittered exponential backoff bounded by a retry count."""

    def __init__(self, spec: ReconnectSpec, *, random_source: random.Random | None = None) -> None:
        if spec.initial_delay_s <= 0:
            raise ValueError(f"initial_delay_s must be > 0, got {spec.initial_delay_s}")
        if spec.backoff <= 1.0:
            raise ValueError(f"backoff must be > 1.0, got {spec.backoff}")
        if not 0.0 <= spec.jitter_ratio <= 1.0:
            raise ValueError(f"jitter_ratio must be between 0.0 and 1.0, got {spec.jitter_ratio}")
        self.spec = spec
        self._random = random_source or random.Random()
        self._attempt_count = 0

    @property
    def attempt_count(self) -> int:
        return self._attempt_count

    def reset(self) -> None:
        self._attempt_count = 0

    def get_delay(self, attempt: int) -> float:
        delay = min(self.spec.initial_delay_s * (self.spec.backoff**attempt), self.spec.max_delay_s)
        jitter = delay * self.spec.jitter_ratio * (self._random.random() * 2.0 - 1.0)
        return max(0.001, delay + jitter)

    def next_attempt(self) -> float | None:
        """Advance the attempt counter; None once retries are exhausted."""
        if self._attempt_count >= self.spec.max_retries:
            return None
        delay = self.get_delay(self._attempt_count)
        self._attempt_count += 1
        return delay
