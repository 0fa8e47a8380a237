"""Resend cooldowns derived from server-issued epoch timestamps.

The remaining time is recomputed from the absolute timestamp on every read,
never decremented locally, so drift cannot accumulate across resend cycles
and a countdown created after a restart shows the same value as before.
"""

import math

from auth.exceptions import RateLimitedError, ResendCooldownError
from utils.timezone import Clock, system_clock


class ResendCountdown:
    """Cooldown until a server-provided epoch second."""

    def __init__(self, clock: Clock = system_clock, available_at: int | None = None):
        self._clock = clock
        self._available_at = available_at

    @property
    def available_at(self) -> int | None:
        return self._available_at

    def start(self, available_at: int | None) -> None:
        """Count down to available_at (None clears the cooldown)."""
        self._available_at = int(available_at) if available_at is not None else None

    def start_default(self, cooldown_seconds: int) -> int:
        """Start a cooldown of cooldown_seconds from now; returns the target epoch."""
        target = math.ceil(self._clock()) + cooldown_seconds
        self._available_at = target
        return target

    def start_from_error(self, error: RateLimitedError, default_cooldown: int) -> int:
        """Start from whichever timing hint a 429 carried."""
        target = error.available_at(self._clock(), default_cooldown)
        self._available_at = target
        return target

    def reset(self) -> None:
        self._available_at = None

    def remaining(self) -> int:
        """Whole seconds until resend is allowed; 0 once available."""
        if self._available_at is None:
            return 0
        return max(0, math.ceil(self._available_at - self._clock()))

    def can_resend(self) -> bool:
        return self.remaining() == 0

    def ensure_can_resend(self) -> None:
        """
        Raises:
            ResendCooldownError: If the cooldown has not elapsed.
        """
        remaining = self.remaining()
        if remaining > 0:
            raise ResendCooldownError(remaining)

    def display(self) -> str:
        """Remaining time as m:ss."""
        remaining = self.remaining()
        return f"{remaining // 60}:{remaining % 60:02d}"
