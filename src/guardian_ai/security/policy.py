"""Policy decision: turn a detection result into an action.

Decision table over ``(risk level, attempts after this message)``:

==========  ==============================  ===============================
risk        attempts < threshold            attempts >= threshold
==========  ==============================  ===============================
low         ALLOW                           ALLOW
medium      ALLOW_SANITIZED                 ALLOW_SANITIZED
high        ALLOW_SANITIZED (first strike)  BLOCK (repeat offense)
critical    BLOCK_AND_FLAG                  BLOCK_AND_FLAG
==========  ==============================  ===============================

An actor at or above the escalation ceiling is blocked whatever the level
until their attempts decay. Critical stays BLOCK_AND_FLAG. The escalation
row is checked before the high row, so with the default thresholds (both 2)
a repeat high-risk message is reported as ``actor_escalated``;
``repeat_offense`` only appears when the block threshold is below the
ceiling.

The tracker is only written after the verdict is computed, inside the
actor's lock (see :meth:`EscalationTracker.decide_and_record`).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from guardian_ai.logging import get_logger
from guardian_ai.security.forensics import content_fingerprint, emit_safely
from guardian_ai.security.models import (
    ActorEscalationState,
    DetectionResult,
    PolicyAction,
    PolicyVerdict,
    RiskLevel,
    SecurityEvent,
    SecurityEventType,
)

if TYPE_CHECKING:
    from guardian_ai.config import GuardConfig
    from guardian_ai.security.forensics import SecurityEventSink
    from guardian_ai.security.sanitizer import Sanitizer
    from guardian_ai.security.tracker import EscalationTracker

log = get_logger("guardian_ai.security.policy")

# Reason codes
REASON_GUARD_DISABLED = "guard_disabled"
REASON_RATE_LIMITED = "rate_limited"
REASON_CRITICAL = "critical_risk"
REASON_ESCALATED = "actor_escalated"
REASON_REPEAT_OFFENSE = "repeat_offense"
REASON_FIRST_STRIKE = "first_strike"
REASON_FLAGGED = "flagged"
REASON_EXTRACTION_PROBE = "extraction_probe"
REASON_SUSPICIOUS = "suspicious"

RATE_LIMIT_REFUSAL = "Please slow down before sending more messages."


def refusal_message(attempts: int, risk_level: RiskLevel) -> str:
    """Generic reply for a blocked message.

    Never includes anything from the message or the catalog, so a blocked
    actor learns nothing about what tripped the filter.
    """
    if risk_level is RiskLevel.CRITICAL or attempts >= 5:
        return (
            "Multiple attempts to manipulate the assistant were detected. "
            "This activity has been logged, and further attempts may cost you "
            "access to AI features."
        )
    if risk_level is RiskLevel.HIGH or attempts >= 3:
        return (
            "That looks like an attempt to manipulate my instructions. "
            "I can't help with that, but I'm happy to help with something else."
        )
    return (
        "That message triggered my security filters. "
        "What would you actually like help with?"
    )


class PolicyEngine:
    """Decide ALLOW / ALLOW_SANITIZED / BLOCK / BLOCK_AND_FLAG per message."""

    def __init__(
        self,
        tracker: EscalationTracker,
        *,
        sanitizer: Sanitizer,
        high_block_threshold: int = 2,
        escalation_ceiling: int = 2,
        event_sink: SecurityEventSink | None = None,
    ) -> None:
        if high_block_threshold < 1 or escalation_ceiling < 1:
            raise ValueError("thresholds must be at least 1")
        self._tracker = tracker
        self._sanitizer = sanitizer
        self._high_block_threshold = high_block_threshold
        self._escalation_ceiling = escalation_ceiling
        self._event_sink = event_sink

    @classmethod
    def from_config(
        cls,
        config: GuardConfig,
        *,
        tracker: EscalationTracker,
        sanitizer: Sanitizer,
        event_sink: SecurityEventSink | None = None,
    ) -> PolicyEngine:
        return cls(
            tracker,
            sanitizer=sanitizer,
            high_block_threshold=config.high_block_threshold,
            escalation_ceiling=config.escalation_ceiling,
            event_sink=event_sink,
        )

    @property
    def escalation_ceiling(self) -> int:
        return self._escalation_ceiling

    def classify(
        self, detection: DetectionResult, state: ActorEscalationState
    ) -> tuple[PolicyAction, tuple[str, ...]]:
        """Pure decision over a detection and the post-message actor state."""
        level = detection.risk_level
        attempts = state.attempt_count
        escalated = attempts >= self._escalation_ceiling

        if level is RiskLevel.CRITICAL:
            reasons = (REASON_CRITICAL, REASON_ESCALATED) if escalated else (REASON_CRITICAL,)
            return PolicyAction.BLOCK_AND_FLAG, reasons
        if escalated:
            return PolicyAction.BLOCK, (REASON_ESCALATED,)
        if level is RiskLevel.LOW:
            return PolicyAction.ALLOW, ()
        if level is RiskLevel.MEDIUM:
            reason = REASON_EXTRACTION_PROBE if detection.extraction_score else REASON_SUSPICIOUS
            return PolicyAction.ALLOW_SANITIZED, (reason,)
        if attempts >= self._high_block_threshold:
            return PolicyAction.BLOCK, (REASON_REPEAT_OFFENSE,)
        return PolicyAction.ALLOW_SANITIZED, (REASON_FIRST_STRIKE, REASON_FLAGGED)

    def decide(
        self,
        detection: DetectionResult,
        *,
        actor_id: str,
        room_id: str | None = None,
        text: str = "",
    ) -> PolicyVerdict:
        """Decide, then commit the actor's attempt if this was an injection."""
        if not detection.enabled:
            return PolicyVerdict(
                action=PolicyAction.ALLOW,
                reason_codes=(REASON_GUARD_DISABLED,),
                detection=detection,
            )

        is_injection = detection.is_injection or detection.risk_level is RiskLevel.CRITICAL
        (action, reasons), state = self._tracker.decide_and_record(
            actor_id,
            risk_level=detection.risk_level,
            is_injection=is_injection,
            decide=lambda projected: self.classify(detection, projected),
        )

        verdict = PolicyVerdict(
            action=action,
            sanitized_text=(
                self._sanitizer.sanitize(text) if action is PolicyAction.ALLOW_SANITIZED else None
            ),
            reason_codes=reasons,
            detection=detection,
            escalation=state,
            refusal_message=(
                refusal_message(state.attempt_count, detection.risk_level)
                if action.is_blocked
                else None
            ),
        )
        crossed = is_injection and state.attempt_count == self._escalation_ceiling
        self._report(verdict, actor_id=actor_id, room_id=room_id, text=text, crossed=crossed)
        return verdict

    def _report(
        self,
        verdict: PolicyVerdict,
        *,
        actor_id: str,
        room_id: str | None,
        text: str,
        crossed: bool,
    ) -> None:
        if verdict.action is PolicyAction.ALLOW:
            return

        detection = verdict.detection
        attempts = verdict.escalation.attempt_count if verdict.escalation else 0
        details = {
            "action": verdict.action.value,
            "reasons": list(verdict.reason_codes),
            "risk_level": detection.risk_level.value,
            "attempt_count": attempts,
            "signatures": sorted(detection.matched_signature_ids),
            "categories": sorted(c.value for c in detection.categories),
            "external_labels": list(detection.external_labels),
            "oracle_status": detection.oracle_status.value,
            **content_fingerprint(text),
        }

        if verdict.action is PolicyAction.BLOCK_AND_FLAG:
            event_type = SecurityEventType.CRITICAL_ATTEMPT
        elif verdict.action is PolicyAction.BLOCK:
            event_type = SecurityEventType.INJECTION_BLOCKED
        elif REASON_FLAGGED in verdict.reason_codes:
            event_type = SecurityEventType.INJECTION_FLAGGED
        else:
            event_type = None

        if event_type is not None:
            log.info(
                "policy_verdict",
                actor_id=actor_id,
                action=verdict.action.value,
                risk_level=detection.risk_level.value,
                attempts=attempts,
            )
            emit_safely(
                self._event_sink,
                SecurityEvent(type=event_type, actor_id=actor_id, room_id=room_id, details=details),
            )
        if crossed:
            log.warning("actor_escalated", actor_id=actor_id, attempts=attempts)
            emit_safely(
                self._event_sink,
                SecurityEvent(
                    type=SecurityEventType.ACTOR_ESCALATED,
                    actor_id=actor_id,
                    room_id=room_id,
                    details={"attempt_count": attempts, "ceiling": self._escalation_ceiling},
                ),
            )
