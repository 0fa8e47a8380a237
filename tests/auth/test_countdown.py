"""Tests for ResendCountdown - cooldowns from absolute epoch seconds."""

import pytest

from auth.countdown import ResendCountdown
from auth.exceptions import RateLimitedError, ResendCooldownError
from conftest import START_EPOCH


NOW = int(START_EPOCH)


class TestRemaining:

    def test_no_cooldown_is_available(self, clock):
        countdown = ResendCountdown(clock)
        assert countdown.remaining() == 0
        assert countdown.can_resend() is True

    def test_decreases_as_clock_advances(self, clock):
        countdown = ResendCountdown(clock, available_at=NOW + 60)

        readings = []
        for _ in range(4):
            readings.append(countdown.remaining())
            clock.advance(15)

        assert readings == [60, 45, 30, 15]

    def test_available_exactly_at_target_epoch(self, clock):
        countdown = ResendCountdown(clock, available_at=NOW + 60)

        clock.advance(59.5)
        assert countdown.can_resend() is False
        assert countdown.remaining() == 1

        clock.advance(0.5)
        assert countdown.can_resend() is True
        assert countdown.remaining() == 0

    def test_never_negative(self, clock):
        countdown = ResendCountdown(clock, available_at=NOW - 100)
        assert countdown.remaining() == 0

    def test_restart_shows_same_value(self, clock):
        """A countdown rebuilt from the persisted epoch agrees with the original."""
        original = ResendCountdown(clock, available_at=NOW + 90)
        clock.advance(30)
        rebuilt = ResendCountdown(clock, available_at=original.available_at)
        assert rebuilt.remaining() == original.remaining() == 60


class TestStart:

    def test_start_and_reset(self, clock):
        countdown = ResendCountdown(clock)
        countdown.start(NOW + 10)
        assert countdown.remaining() == 10
        countdown.reset()
        assert countdown.available_at is None

    def test_start_none_clears(self, clock):
        countdown = ResendCountdown(clock, available_at=NOW + 10)
        countdown.start(None)
        assert countdown.can_resend() is True

    def test_start_default(self, clock):
        countdown = ResendCountdown(clock)
        assert countdown.start_default(30) == NOW + 30
        assert countdown.remaining() == 30

    def test_start_from_error_uses_hint(self, clock):
        countdown = ResendCountdown(clock)
        countdown.start_from_error(RateLimitedError(remaining_seconds=42), 30)
        assert countdown.remaining() == 42

    def test_start_from_error_without_hint_uses_default(self, clock):
        countdown = ResendCountdown(clock)
        countdown.start_from_error(RateLimitedError(), 30)
        assert countdown.remaining() == 30


class TestGuardAndDisplay:

    def test_ensure_can_resend_raises_with_remaining(self, clock):
        countdown = ResendCountdown(clock, available_at=NOW + 25)
        with pytest.raises(ResendCooldownError) as exc_info:
            countdown.ensure_can_resend()
        assert exc_info.value.remaining_seconds == 25

    def test_ensure_can_resend_passes_when_elapsed(self, clock):
        countdown = ResendCountdown(clock, available_at=NOW)
        countdown.ensure_can_resend()

    @pytest.mark.parametrize(
        "seconds, expected",
        [(0, "0:00"), (5, "0:05"), (60, "1:00"), (125, "2:05")],
    )
    def test_display(self, clock, seconds, expected):
        countdown = ResendCountdown(clock, available_at=NOW + seconds)
        assert countdown.display() == expected
