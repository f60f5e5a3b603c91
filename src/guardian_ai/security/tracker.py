"""Per-actor escalation tracking.

Attempt history lives in a fixed number of stripes. Each stripe has its own
lock and its own ``TTLCache``, so updates for one actor are atomic while
unrelated actors rarely contend. An entry expires ``decay_seconds`` after
its last attempt and the actor reads as a clean slate from then on.
"""

from __future__ import annotations

import math
import threading
import time
import zlib
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

from guardian_ai.logging import get_logger
from guardian_ai.security.models import ActorEscalationState, RiskLevel

log = get_logger("guardian_ai.security.tracker")

T = TypeVar("T")


class _ActorCache(TTLCache):  # type: ignore[misc]
    """TTLCache that logs capacity evictions."""

    def popitem(self) -> tuple[str, ActorEscalationState]:
        actor_id, state = super().popitem()
        log.info("escalation_evicted", actor_id=actor_id, attempts=state.attempt_count)
        return actor_id, state


class _Stripe:
    __slots__ = ("entries", "lock")

    def __init__(self, maxsize: int, ttl: float, timer: Callable[[], float]) -> None:
        self.lock = threading.Lock()
        self.entries: TTLCache[str, ActorEscalationState] = _ActorCache(
            maxsize=maxsize, ttl=ttl, timer=timer
        )


class EscalationTracker:
    """Bounded, time-decayed map of actor id to :class:`ActorEscalationState`.

    Args:
        decay_seconds: Inactivity after which an actor's attempts reset.
        max_actors: Upper bound on tracked actors, split evenly over stripes.
        stripes: Number of independent lock stripes.
        clock: Time source in seconds; injectable for tests.
    """

    def __init__(
        self,
        *,
        decay_seconds: float = 3600.0,
        max_actors: int = 10_000,
        stripes: int = 64,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if decay_seconds <= 0:
            raise ValueError("decay_seconds must be positive")
        if max_actors < 1 or stripes < 1:
            raise ValueError("max_actors and stripes must be at least 1")
        self._decay_seconds = decay_seconds
        count = min(stripes, max_actors)
        per_stripe = math.ceil(max_actors / count)
        self._stripes = tuple(_Stripe(per_stripe, decay_seconds, clock) for _ in range(count))
        self._clock = clock

    @property
    def decay_seconds(self) -> float:
        return self._decay_seconds

    def _stripe_for(self, actor_id: str) -> _Stripe:
        # Stable across processes, unlike hash() on str.
        return self._stripes[zlib.crc32(actor_id.encode("utf-8")) % len(self._stripes)]

    @staticmethod
    def _load(stripe: _Stripe, actor_id: str) -> ActorEscalationState:
        """Live state of *actor_id*. Caller holds ``stripe.lock``."""
        state = stripe.entries.get(actor_id)
        return state if state is not None else ActorEscalationState(actor_id=actor_id)

    def record_attempt(self, actor_id: str, risk_level: RiskLevel) -> ActorEscalationState:
        """Count one injection-classified message for *actor_id*."""
        stripe = self._stripe_for(actor_id)
        with stripe.lock:
            state = self._load(stripe, actor_id).bumped(self._clock(), risk_level)
            stripe.entries[actor_id] = state
            return state

    def current_state(self, actor_id: str) -> ActorEscalationState:
        """Snapshot of *actor_id*, decay applied. Never creates an entry."""
        stripe = self._stripe_for(actor_id)
        with stripe.lock:
            return self._load(stripe, actor_id)

    def decide_and_record(
        self,
        actor_id: str,
        *,
        risk_level: RiskLevel,
        is_injection: bool,
        decide: Callable[[ActorEscalationState], T],
    ) -> tuple[T, ActorEscalationState]:
        """Read, decide and commit as one step under the actor's lock.

        *decide* receives the state as it will be after this message (one
        more attempt if *is_injection*) and must be pure. The new state is
        only stored once *decide* has returned; if it raises, nothing is
        recorded.
        """
        stripe = self._stripe_for(actor_id)
        with stripe.lock:
            state = self._load(stripe, actor_id)
            if is_injection:
                state = state.bumped(self._clock(), risk_level)
            decision = decide(state)
            if is_injection:
                stripe.entries[actor_id] = state
            return decision, state

    def reset(self, actor_id: str) -> bool:
        """Administrative reset. Returns whether anything was cleared."""
        stripe = self._stripe_for(actor_id)
        with stripe.lock:
            removed = stripe.entries.pop(actor_id, None)
        if removed is not None:
            log.info("escalation_reset", actor_id=actor_id, attempts=removed.attempt_count)
        return removed is not None

    def sweep(self) -> int:
        """Drop every decayed entry. Returns how many were removed."""
        removed = 0
        for stripe in self._stripes:
            with stripe.lock:
                removed += len(stripe.entries.expire())
        if removed:
            log.debug("escalation_sweep", removed=removed)
        return removed

    def report(self, actor_id: str, *, escalation_ceiling: int = 2) -> dict[str, Any]:
        """Moderator-facing summary of an actor's recent attempts."""
        state = self.current_state(actor_id)
        escalated = state.attempt_count >= escalation_ceiling
        if state.attempt_count == 0:
            recommendation = "No action needed"
        elif escalated:
            recommendation = "Review recent messages; consider a timeout"
        else:
            recommendation = "Monitor"
        return {
            "actor_id": actor_id,
            "attempt_count": state.attempt_count,
            "first_attempt_at": state.first_attempt_at,
            "last_attempt_at": state.last_attempt_at,
            "last_risk_level": state.last_risk_level.value if state.last_risk_level else None,
            "escalated": escalated,
            "recommendation": recommendation,
        }

    def __len__(self) -> int:
        total = 0
        for stripe in self._stripes:
            with stripe.lock:
                total += len(stripe.entries)
        return total
