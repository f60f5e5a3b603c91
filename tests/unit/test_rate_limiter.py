"""Tests for the per-actor rate limiter."""

import pytest

from guardian_ai.security.rate_limiter import RateLimiter, RateLimitState


class TestRateLimitState:
    """Tests for RateLimitState dataclass."""

    def test_default_values(self):
        """Test default state values."""
        state = RateLimitState()
        assert state.message_timestamps == []
        assert state.last_warning is None

    def test_custom_values(self):
        """Test state with custom values."""
        timestamps = [1.0, 2.0, 3.0]
        state = RateLimitState(message_timestamps=timestamps, last_warning=5.0)
        assert state.message_timestamps == timestamps
        assert state.last_warning == 5.0


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_init_defaults(self):
        """Test default initialization."""
        limiter = RateLimiter()
        assert limiter._max_messages == 10
        assert limiter._window_seconds == 60.0
        assert limiter._warning_cooldown == 30.0

    @pytest.mark.parametrize(
        "kwargs", [{"max_messages": 0}, {"window_seconds": 0}, {"max_actors": 0}]
    )
    def test_init_invalid(self, kwargs):
        """Test non-positive limits are rejected."""
        with pytest.raises(ValueError):
            RateLimiter(**kwargs)

    def test_allow_first_message(self, clock):
        """Test first message is allowed."""
        limiter = RateLimiter(max_messages=5, clock=clock)
        allowed, warning = limiter.check("123")
        assert allowed is True
        assert warning is None

    def test_block_when_limit_reached(self, clock):
        """Test blocking when limit is reached."""
        limiter = RateLimiter(max_messages=3, clock=clock)

        # Send 3 messages (at limit)
        for _ in range(3):
            assert limiter.check("123")[0] is True

        # 4th message should be blocked
        allowed, warning = limiter.check("123")
        assert allowed is False
        assert warning is not None
        assert "too quickly" in warning

    def test_warning_cooldown(self, clock):
        """Test warning cooldown prevents spam."""
        limiter = RateLimiter(
            max_messages=2, window_seconds=600.0, warning_cooldown=30.0, clock=clock
        )

        # Fill up the limit
        limiter.check("123")
        limiter.check("123")

        # First blocked message gets warning
        _, warning1 = limiter.check("123")
        assert warning1 is not None

        # Second blocked message within cooldown doesn't get warning
        clock.advance(10)
        _, warning2 = limiter.check("123")
        assert warning2 is None

        # After the cooldown the warning comes back
        clock.advance(31)
        _, warning3 = limiter.check("123")
        assert warning3 is not None

    def test_separate_actor_limits(self, clock):
        """Test each actor has separate limits."""
        limiter = RateLimiter(max_messages=2, clock=clock)

        limiter.check("1")
        limiter.check("1")
        allowed1, _ = limiter.check("1")
        allowed2, _ = limiter.check("2")

        assert allowed1 is False
        assert allowed2 is True

    def test_window_expiry(self, clock):
        """Test old timestamps are cleaned up."""
        limiter = RateLimiter(max_messages=2, window_seconds=1.0, clock=clock)

        limiter.check("123")
        limiter.check("123")
        assert limiter.check("123")[0] is False

        clock.advance(1.1)

        allowed, _ = limiter.check("123")
        assert allowed is True

    def test_blocked_messages_do_not_extend_window(self, clock):
        """Test rejected messages are not counted."""
        limiter = RateLimiter(max_messages=1, window_seconds=10.0, clock=clock)
        limiter.check("123")
        for _ in range(5):
            clock.advance(1)
            limiter.check("123")
        clock.advance(5)
        assert limiter.check("123")[0] is True

    def test_prune_idle_actors(self, clock):
        """Test actors idle past the window and cooldown are forgotten."""
        limiter = RateLimiter(
            max_messages=5, window_seconds=10.0, warning_cooldown=5.0, clock=clock
        )
        limiter.check("old")
        clock.advance(8)
        limiter.check("recent")
        clock.advance(5)
        assert limiter.prune() == 1
        assert len(limiter) == 1
        assert limiter.prune() == 0

    def test_idle_actor_forgotten_on_next_write(self, clock):
        """Test stale actors are dropped without an explicit prune."""
        limiter = RateLimiter(
            max_messages=5, window_seconds=10.0, warning_cooldown=5.0, clock=clock
        )
        limiter.check("old")
        clock.advance(20)
        limiter.check("new")
        assert len(limiter) == 1

    def test_tracked_actors_bounded(self, clock):
        """Test the actor map never grows past max_actors."""
        limiter = RateLimiter(max_messages=5, max_actors=100, clock=clock)
        for i in range(5000):
            assert limiter.check(f"actor-{i}")[0] is True
        assert len(limiter) == 100
