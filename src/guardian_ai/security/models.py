"""Data models for the injection guard."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class GuardError(Exception):
    """Base class for guard errors."""


class PatternCompilationError(GuardError):
    """A signature failed to compile or is not provably linear-time."""


class OracleError(GuardError):
    """The external detection oracle failed or answered nonsense."""


class Category(StrEnum):
    """Categories of detection signatures."""

    OVERRIDE = "override"
    EXTRACTION = "extraction"
    ROLE_MANIPULATION = "role_manipulation"
    IDENTITY_SPOOFING = "identity_spoofing"
    GASLIGHTING = "gaslighting"
    EXFILTRATION = "exfiltration"
    CODE_INJECTION = "code_injection"
    FORMAT_MANIPULATION = "format_manipulation"
    ENCODED_PAYLOAD = "encoded_payload"


_RISK_ORDER = {"low": 0, "medium": 1, "high": 2, "critical": 3}


class RiskLevel(StrEnum):
    """Ordered risk classification: low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER[self.value]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank


class PolicyAction(StrEnum):
    """What happens to a message."""

    ALLOW = "allow"
    ALLOW_SANITIZED = "allow_sanitized"
    BLOCK = "block"
    BLOCK_AND_FLAG = "block_and_flag"

    @property
    def is_blocked(self) -> bool:
        return self in (PolicyAction.BLOCK, PolicyAction.BLOCK_AND_FLAG)


class OracleStatus(StrEnum):
    """Outcome of the second detection layer for one message."""

    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"
    CANCELLED = "cancelled"
    INVALID = "invalid"
    ABSENT = "absent"  # No oracle configured, or input never reached it
    DISABLED = "disabled"


class SecurityEventType(StrEnum):
    """Structured security event types handed to the event sink."""

    ORACLE_UNAVAILABLE = "oracle_unavailable"
    INJECTION_FLAGGED = "injection_flagged"
    INJECTION_BLOCKED = "injection_blocked"
    CRITICAL_ATTEMPT = "critical_attempt"
    ACTOR_ESCALATED = "actor_escalated"
    RATE_LIMITED = "rate_limited"
    SUSPICIOUS_BEHAVIOR = "suspicious_behavior"
    ACTOR_RESET = "actor_reset"


@dataclass(frozen=True)
class Signature:
    """One compiled detection signature.

    ``probe`` signatures are weak extraction hints: they feed the extraction
    score but are not counted as local matches.
    """

    id: str
    category: Category
    matcher: re.Pattern[str]
    label: str
    probe: bool = False


@dataclass(frozen=True)
class DetectionResult:
    """Per-message detection outcome. Never carries actor state."""

    matched_signature_ids: frozenset[str] = frozenset()
    extraction_score: int = 0
    is_injection: bool = False
    is_suspicious: bool = False
    risk_level: RiskLevel = RiskLevel.LOW
    categories: frozenset[Category] = frozenset()
    external_labels: tuple[str, ...] = ()
    oracle_status: OracleStatus = OracleStatus.ABSENT
    truncated: bool = False
    enabled: bool = True

    @classmethod
    def neutral(cls, *, enabled: bool = True) -> DetectionResult:
        """The low-risk default for empty, malformed or gated-off input."""
        return cls(
            enabled=enabled,
            oracle_status=OracleStatus.ABSENT if enabled else OracleStatus.DISABLED,
        )


@dataclass(frozen=True)
class ActorEscalationState:
    """Snapshot of an actor's injection history within the decay window."""

    actor_id: str
    attempt_count: int = 0
    first_attempt_at: float | None = None
    last_attempt_at: float | None = None
    last_risk_level: RiskLevel | None = None

    def bumped(self, now: float, risk_level: RiskLevel) -> ActorEscalationState:
        """Return the state after one more injection attempt at *now*."""
        return ActorEscalationState(
            actor_id=self.actor_id,
            attempt_count=self.attempt_count + 1,
            first_attempt_at=self.first_attempt_at if self.attempt_count else now,
            last_attempt_at=now,
            last_risk_level=risk_level,
        )


@dataclass(frozen=True)
class PolicyVerdict:
    """Final decision for one message."""

    action: PolicyAction
    sanitized_text: str | None = None
    reason_codes: tuple[str, ...] = ()
    detection: DetectionResult = field(default_factory=DetectionResult)
    escalation: ActorEscalationState | None = None
    refusal_message: str | None = None

    @property
    def blocked(self) -> bool:
        return self.action.is_blocked


@dataclass
class SecurityEvent:
    """Structured event handed to a :class:`SecurityEventSink`."""

    type: SecurityEventType
    actor_id: str | None
    room_id: str | None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
