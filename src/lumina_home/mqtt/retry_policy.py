"""Reconnect delay policy for the broker session."""

from __future__ import annotations

import random

from lumina_home.structs import BrokerConfig


class RetryPolicy:
    """Exponential backoff capped at ``max_delay_seconds``, with optional jitter.

    With ``max_delay_seconds == base_delay_seconds`` (the default configuration,
    5s/5s) every retry waits the same fixed period.
    """

    def __init__(
        self,
        base_delay_seconds: float = 5.0,
        max_delay_seconds: float = 5.0,
        jitter_factor: float = 0.0,
    ):
        """Initialize retry policy.

        Args:
            base_delay_seconds: Delay before the first retry
            max_delay_seconds: Cap on the delay; raised to the base delay if lower
            jitter_factor: Jitter as fraction of delay (0.1 = up to 10% extra)
        """
        if base_delay_seconds < 0 or jitter_factor < 0:
            msg = "retry delays and jitter must not be negative"
            raise ValueError(msg)
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max(max_delay_seconds, base_delay_seconds)
        self.jitter_factor = jitter_factor

    @classmethod
    def from_config(cls, config: BrokerConfig) -> RetryPolicy:
        return cls(
            base_delay_seconds=config.reconnect_delay,
            max_delay_seconds=config.reconnect_max_delay,
            jitter_factor=config.reconnect_jitter,
        )

    @property
    def is_fixed(self) -> bool:
        return self.max_delay_seconds == self.base_delay_seconds and self.jitter_factor == 0

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0 = first retry after a failure or drop)."""
        delay = min(self.base_delay_seconds * (2 ** min(max(attempt, 0), 32)), self.max_delay_seconds)
        if self.jitter_factor:
            delay += random.uniform(0, delay * self.jitter_factor)
        return delay

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(base_delay={self.base_delay_seconds}s, "
            f"max_delay={self.max_delay_seconds}s, "
            f"jitter_factor={self.jitter_factor})"
        )
