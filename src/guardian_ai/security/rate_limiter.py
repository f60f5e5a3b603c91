"""Per-actor message rate limiting."""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from cachetools import TTLCache  # type: ignore[import-untyped]


@dataclass
class RateLimitState:
    """Track rate limit state for an actor."""

    message_timestamps: list[float] = field(default_factory=list)
    last_warning: float | None = None


class RateLimiter:
    """Sliding-window rate limiter keyed by actor id.

    Actor state lives in a ``TTLCache``: an actor silent for longer than
    both the window and the warning cooldown is forgotten, and at most
    ``max_actors`` actors are held at once.
    """

    def __init__(
        self,
        max_messages: int = 10,
        window_seconds: float = 60.0,
        warning_cooldown: float = 30.0,
        *,
        max_actors: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize rate limiter.

        Args:
            max_messages: Maximum messages allowed per window.
            window_seconds: Time window in seconds.
            warning_cooldown: Minimum time between warnings to one actor.
            max_actors: Upper bound on actors tracked at once.
            clock: Time source in seconds.
        """
        if max_messages < 1 or window_seconds <= 0 or max_actors < 1:
            raise ValueError("max_messages, window_seconds and max_actors must be positive")
        self._max_messages = max_messages
        self._window_seconds = window_seconds
        self._warning_cooldown = warning_cooldown
        self._clock = clock
        self._states: TTLCache[str, RateLimitState] = TTLCache(
            maxsize=max_actors, ttl=max(window_seconds, warning_cooldown), timer=clock
        )
        self._lock = threading.Lock()

    def check(self, actor_id: str) -> tuple[bool, str | None]:
        """Check if an actor is rate limited, counting the message if not.

        Args:
            actor_id: The platform's actor id.

        Returns:
            Tuple of (is_allowed, warning_message). The warning is only set
            once per cooldown period.
        """
        with self._lock:
            now = self._clock()
            state = self._states.get(actor_id) or RateLimitState()
            # Re-inserting refreshes the entry's expiry.
            self._states[actor_id] = state

            # Clean old timestamps
            state.message_timestamps = [
                ts for ts in state.message_timestamps if now - ts < self._window_seconds
            ]

            # Check limit
            if len(state.message_timestamps) >= self._max_messages:
                warning = None
                if state.last_warning is None or now - state.last_warning > self._warning_cooldown:
                    warning = (
                        "You're sending messages too quickly. "
                        "Please wait a moment before trying again."
                    )
                    state.last_warning = now
                return False, warning

            # Record this message
            state.message_timestamps.append(now)
            return True, None

    def prune(self) -> int:
        """Forget actors idle past the window and cooldown."""
        with self._lock:
            return len(self._states.expire())

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
