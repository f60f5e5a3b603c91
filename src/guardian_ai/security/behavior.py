"""Per-actor behavioural analysis.

Looks across an actor's recent messages rather than at one message:
the same text sent over and over, repeated social-engineering pressure,
and repeated probing for permissions. Findings are advisory. They add
reason codes and a security event to the verdict but never change its
action on their own.
"""

from __future__ import annotations

import re
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from cachetools import TTLCache  # type: ignore[import-untyped]

from guardian_ai.logging import get_logger
from guardian_ai.security.catalog import check_linear
from guardian_ai.security.signatures import bounded

log = get_logger("guardian_ai.security.behavior")

# Messages compared for repetition, and how much of each is kept.
RECENT_MESSAGES = 5
REPETITION_MIN = 3
FINGERPRINT_CHARS = 100


class BehaviorPattern(StrEnum):
    """Multi-message behaviours worth a moderator's attention."""

    REPETITIVE = "repetitive_content"
    SOCIAL_ENGINEERING = "social_engineering"
    PRIVILEGE_PROBING = "privilege_probing"


@dataclass(frozen=True)
class BehaviorRule:
    """Occurrences of *pattern* within *window_seconds* needed to report it."""

    pattern: BehaviorPattern
    threshold: int
    window_seconds: float


@dataclass(frozen=True)
class BehaviorFinding:
    pattern: BehaviorPattern
    count: int
    window_seconds: float


DEFAULT_RULES: tuple[BehaviorRule, ...] = (
    BehaviorRule(BehaviorPattern.REPETITIVE, threshold=3, window_seconds=60.0),
    BehaviorRule(BehaviorPattern.SOCIAL_ENGINEERING, threshold=2, window_seconds=300.0),
    BehaviorRule(BehaviorPattern.PRIVILEGE_PROBING, threshold=3, window_seconds=300.0),
)

_SOCIAL_ENGINEERING = [
    r"\b(?:please|just|only)\s+(?:this\s+once|one\s+time|help\s+me)\b",
    r"\b(?:urgent|emergency|important|critical)\s*[!:]",
    r"\b(?:i\s+need|you\s+must|you\s+have\s+to)\b",
    r"\b(?:don'?t\s+tell|keep\s+(?:this\s+)?secret|between\s+us)\b",
    r"\b(?:trust\s+me|believe\s+me|i\s+promise)\b",
]

_PRIVILEGE_PROBING = [
    r"\b(?:can\s+you|are\s+you\s+able\s+to|do\s+you\s+have)\s+(?:access|permissions?|admin)\b",
    r"\bwhat\s+(?:can\s+you\s+do|are\s+your\s+(?:capabilities|permissions))\b",
    r"\b(?:show|tell|give)\s+(?:me\s+)?(?:your|the)\s+(?:commands?|permissions?|access)\b",
    r"\b(?:bypass|circumvent|get\s+around|avoid)\s+(?:the\s+)?(?:rules?|restrictions?|security)\b",
]


def _compile(patterns: list[str]) -> tuple[re.Pattern[str], ...]:
    compiled = []
    for pattern in patterns:
        rewritten = bounded(pattern)
        check_linear(rewritten)
        compiled.append(re.compile(rewritten, re.IGNORECASE))
    return tuple(compiled)


_DETECTORS: dict[BehaviorPattern, tuple[re.Pattern[str], ...]] = {
    BehaviorPattern.SOCIAL_ENGINEERING: _compile(_SOCIAL_ENGINEERING),
    BehaviorPattern.PRIVILEGE_PROBING: _compile(_PRIVILEGE_PROBING),
}


@dataclass
class BehaviorState:
    """Recent messages and behaviour timestamps for one actor."""

    recent: deque[str] = field(default_factory=lambda: deque(maxlen=RECENT_MESSAGES))
    occurrences: dict[BehaviorPattern, list[float]] = field(default_factory=dict)


class BehaviorMonitor:
    """Track multi-message behaviour per actor.

    Args:
        rules: Threshold and window per behaviour.
        max_actors: Upper bound on actors tracked at once.
        clock: Time source in seconds.
    """

    def __init__(
        self,
        *,
        rules: tuple[BehaviorRule, ...] = DEFAULT_RULES,
        max_actors: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not rules:
            raise ValueError("at least one behaviour rule is required")
        if max_actors < 1:
            raise ValueError("max_actors must be at least 1")
        self._rules = {rule.pattern: rule for rule in rules}
        self._clock = clock
        self._states: TTLCache[str, BehaviorState] = TTLCache(
            maxsize=max_actors,
            ttl=max(rule.window_seconds for rule in rules),
            timer=clock,
        )
        self._lock = threading.Lock()

    def observe(self, actor_id: str, text: object) -> tuple[BehaviorFinding, ...]:
        """Record one message and return every behaviour over its threshold."""
        if not isinstance(text, str) or not text.strip():
            return ()

        content = text.strip().lower()
        seen = [
            pattern
            for pattern, detectors in _DETECTORS.items()
            if any(d.search(content) for d in detectors)
        ]

        with self._lock:
            now = self._clock()
            state = self._states.get(actor_id) or BehaviorState()
            self._states[actor_id] = state

            state.recent.append(content[:FINGERPRINT_CHARS])
            if len(state.recent) >= REPETITION_MIN and len(set(state.recent)) == 1:
                seen.append(BehaviorPattern.REPETITIVE)

            findings = []
            for pattern in seen:
                rule = self._rules.get(pattern)
                if rule is None:
                    continue
                stamps = [
                    ts
                    for ts in state.occurrences.get(pattern, [])
                    if now - ts < rule.window_seconds
                ]
                stamps.append(now)
                state.occurrences[pattern] = stamps
                if len(stamps) >= rule.threshold:
                    findings.append(BehaviorFinding(pattern, len(stamps), rule.window_seconds))

        if findings:
            log.info(
                "suspicious_behavior",
                actor_id=actor_id,
                patterns=[f.pattern.value for f in findings],
            )
        return tuple(findings)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
