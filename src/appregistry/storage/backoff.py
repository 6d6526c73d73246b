"""
Exponential backoff with jitter for key-value transport retries.

Seeded jitter: pass a random.Random to compute_backoff_delay for
deterministic delays in tests.
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass
class BackoffConfig:
    """Configuration for exponential backoff."""

    base_delay_ms: int = 50
    max_delay_ms: int = 2000
    multiplier: float = 2.0
    jitter_factor: float = 0.5  # 0.5 = ±50% jitter
    max_retries: int = 3

    def __post_init__(self) -> None:
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be in [0, 1], got {self.jitter_factor}")


@dataclass
class BackoffState:
    """Retry count for one command; each command starts from a fresh state."""

    attempt: int = 0

    def record_error(self) -> None:
        self.attempt += 1

    def exhausted(self, config: BackoffConfig) -> bool:
        return self.attempt > config.max_retries


def compute_backoff_delay(
    config: BackoffConfig,
    state: BackoffState,
    *,
    rng: random.Random | None = None,
) -> int:
    """
    Compute backoff delay with exponential increase and jitter.

    Args:
        config: Backoff configuration.
        state: Current backoff state.
        rng: Optional seeded Random instance for deterministic jitter.

    Returns:
        Delay in milliseconds before next retry.
    """
    if state.attempt == 0:
        return 0

    delay = config.base_delay_ms * (config.multiplier ** (state.attempt - 1))

    jitter_min = 1.0 - config.jitter_factor
    jitter_max = 1.0 + config.jitter_factor
    source = rng if rng is not None else random
    delay = delay * source.uniform(jitter_min, jitter_max)

    return int(min(delay, config.max_delay_ms))
