"""Message screening pipeline.

enable gate -> behaviour monitor -> rate limiter -> dual-layer detection
-> policy (+ tracker) -> sanitizer. A rate-limited message still goes
through the catalog so injections are counted. Every actor goes through
the same path with the same thresholds. There is no owner or role bypass;
the only exemption is the enable gate, which turns the whole guard off
when no language-model credential is configured.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from guardian_ai.config import GuardConfig, Settings, get_settings
from guardian_ai.logging import get_logger
from guardian_ai.security.behavior import BehaviorFinding, BehaviorMonitor
from guardian_ai.security.catalog import default_catalog, hardening_catalog
from guardian_ai.security.detector import DualLayerDetector
from guardian_ai.security.forensics import StructlogEventSink, emit_safely
from guardian_ai.security.models import (
    DetectionResult,
    PolicyAction,
    PolicyVerdict,
    RiskLevel,
    SecurityEvent,
    SecurityEventType,
)
from guardian_ai.security.oracle import HardeningOracle, OllamaOracle
from guardian_ai.security.policy import (
    RATE_LIMIT_REFUSAL,
    REASON_GUARD_DISABLED,
    REASON_RATE_LIMITED,
    PolicyEngine,
)
from guardian_ai.security.rate_limiter import RateLimiter
from guardian_ai.security.sanitizer import Sanitizer
from guardian_ai.security.tracker import EscalationTracker

if TYPE_CHECKING:
    from guardian_ai.security.forensics import SecurityEventSink
    from guardian_ai.security.oracle import DetectionOracle

log = get_logger("guardian_ai.security.pipeline")


@dataclass(frozen=True)
class FieldScreening:
    """Result of screening a set of command options."""

    valid: bool
    fields: dict[str, Any] = field(default_factory=dict)
    detections: dict[str, DetectionResult] = field(default_factory=dict)
    flagged_fields: tuple[str, ...] = ()


class GuardPipeline:
    """Screen inbound messages before they reach the language model."""

    def __init__(
        self,
        *,
        detector: DualLayerDetector,
        policy: PolicyEngine,
        tracker: EscalationTracker,
        sanitizer: Sanitizer,
        rate_limiter: RateLimiter | None = None,
        behavior: BehaviorMonitor | None = None,
        event_sink: SecurityEventSink | None = None,
        enabled: bool = True,
    ) -> None:
        self._detector = detector
        self._policy = policy
        self._tracker = tracker
        self._sanitizer = sanitizer
        self._rate_limiter = rate_limiter
        self._behavior = behavior
        self._event_sink = event_sink
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def tracker(self) -> EscalationTracker:
        return self._tracker

    async def evaluate(
        self,
        text: object,
        *,
        actor_id: str,
        room_id: str | None = None,
    ) -> PolicyVerdict:
        """Screen one message from *actor_id*.

        Args:
            text: Raw message content. Anything that is not a non-empty
                string is treated as harmless.
            actor_id: Verified platform id of the sender. Never derived from
                the message itself.
            room_id: Guild, channel or room id, for events only.

        Returns:
            The :class:`PolicyVerdict`. Behaviour findings are appended to
            its reason codes without changing its action.
        """
        if not self._enabled:
            return PolicyVerdict(
                action=PolicyAction.ALLOW,
                reason_codes=(REASON_GUARD_DISABLED,),
                detection=DetectionResult.neutral(enabled=False),
            )

        findings = self._behavior.observe(actor_id, text) if self._behavior is not None else ()

        limited = False
        warning = None
        if self._rate_limiter is not None:
            allowed, warning = self._rate_limiter.check(actor_id)
            limited = not allowed

        if limited:
            verdict = self._rate_limited(text, actor_id=actor_id, room_id=room_id, warning=warning)
        else:
            detection = await self._detector.detect(text, actor_id=actor_id, room_id=room_id)
            verdict = self._policy.decide(
                detection,
                actor_id=actor_id,
                room_id=room_id,
                text=text if isinstance(text, str) else "",
            )
        if findings:
            verdict = self._with_behavior(verdict, findings, actor_id=actor_id, room_id=room_id)
        return verdict

    def _rate_limited(
        self,
        text: object,
        *,
        actor_id: str,
        room_id: str | None,
        warning: str | None,
    ) -> PolicyVerdict:
        """Block a message over the rate limit.

        The catalog still runs so that injections from a flooding actor are
        counted and critical ones are flagged; only the oracle is skipped.
        """
        log.info("rate_limited", actor_id=actor_id, room_id=room_id)
        if warning is not None:
            emit_safely(
                self._event_sink,
                SecurityEvent(
                    type=SecurityEventType.RATE_LIMITED,
                    actor_id=actor_id,
                    room_id=room_id,
                ),
            )

        detection = self._detector.detect_local(text)
        if not detection.is_injection and detection.risk_level is not RiskLevel.CRITICAL:
            return PolicyVerdict(
                action=PolicyAction.BLOCK,
                reason_codes=(REASON_RATE_LIMITED,),
                detection=detection,
                refusal_message=warning or RATE_LIMIT_REFUSAL,
            )

        verdict = self._policy.decide(
            detection,
            actor_id=actor_id,
            room_id=room_id,
            text=text if isinstance(text, str) else "",
        )
        if verdict.blocked:
            return replace(verdict, reason_codes=(*verdict.reason_codes, REASON_RATE_LIMITED))
        return replace(
            verdict,
            action=PolicyAction.BLOCK,
            sanitized_text=None,
            reason_codes=(REASON_RATE_LIMITED, *verdict.reason_codes),
            refusal_message=warning or RATE_LIMIT_REFUSAL,
        )

    def _with_behavior(
        self,
        verdict: PolicyVerdict,
        findings: tuple[BehaviorFinding, ...],
        *,
        actor_id: str,
        room_id: str | None,
    ) -> PolicyVerdict:
        emit_safely(
            self._event_sink,
            SecurityEvent(
                type=SecurityEventType.SUSPICIOUS_BEHAVIOR,
                actor_id=actor_id,
                room_id=room_id,
                details={
                    "patterns": {f.pattern.value: f.count for f in findings},
                    "action": verdict.action.value,
                },
            ),
        )
        codes = tuple(f.pattern.value for f in findings)
        return replace(verdict, reason_codes=(*verdict.reason_codes, *codes))

    async def screen_fields(
        self,
        fields: Mapping[str, Any],
        *,
        actor_id: str | None = None,
        room_id: str | None = None,
    ) -> FieldScreening:
        """Detect and sanitize every string option of a command.

        Non-string values pass through untouched. A single injection in any
        field makes the whole screening invalid. Screening does not count
        toward the actor's escalation.
        """
        if not self._enabled:
            return FieldScreening(valid=True, fields=dict(fields))

        cleaned: dict[str, Any] = {}
        detections: dict[str, DetectionResult] = {}
        flagged: list[str] = []
        for name, value in fields.items():
            if not isinstance(value, str):
                cleaned[name] = value
                continue
            detection = await self._detector.detect(value, actor_id=actor_id, room_id=room_id)
            detections[name] = detection
            cleaned[name] = self._sanitizer.sanitize(value)
            if detection.is_injection:
                flagged.append(name)

        if flagged:
            log.warning("command_fields_flagged", actor_id=actor_id, fields=flagged)
        return FieldScreening(
            valid=not flagged,
            fields=cleaned,
            detections=detections,
            flagged_fields=tuple(flagged),
        )

    def reset_actor(self, actor_id: str, *, moderator_id: str | None = None) -> bool:
        """Administrative reset of an actor's escalation."""
        cleared = self._tracker.reset(actor_id)
        if cleared:
            emit_safely(
                self._event_sink,
                SecurityEvent(
                    type=SecurityEventType.ACTOR_RESET,
                    actor_id=actor_id,
                    room_id=None,
                    details={"moderator_id": moderator_id},
                ),
            )
        return cleared

    def actor_report(self, actor_id: str) -> dict[str, Any]:
        """Summary of an actor's attempts, for moderators."""
        return self._tracker.report(actor_id, escalation_ceiling=self._policy.escalation_ceiling)

    async def aclose(self) -> None:
        await self._detector.aclose()


def _build_oracle(settings: Settings, config: GuardConfig) -> DetectionOracle | None:
    if settings.oracle_backend == "hardening":
        return HardeningOracle(hardening_catalog(max_input_chars=config.max_input_chars))
    if settings.oracle_backend == "ollama":
        return OllamaOracle.from_settings(settings)
    return None


def build_pipeline(
    settings: Settings | None = None,
    *,
    event_sink: SecurityEventSink | None = None,
    oracle: DetectionOracle | None = None,
) -> GuardPipeline:
    """Assemble a :class:`GuardPipeline` from settings.

    The catalogs are compiled here, once; a bad signature fails startup
    with :class:`~guardian_ai.security.models.PatternCompilationError`.
    """
    settings = settings or get_settings()
    config = settings.guard_config()
    sink = event_sink if event_sink is not None else StructlogEventSink()

    catalog = default_catalog(max_input_chars=config.max_input_chars)
    sanitizer = Sanitizer(catalog)
    tracker = EscalationTracker(
        decay_seconds=config.decay_seconds,
        max_actors=config.max_tracked_actors,
        stripes=config.tracker_stripes,
    )
    detector = DualLayerDetector(
        catalog,
        oracle=oracle if oracle is not None else _build_oracle(settings, config),
        oracle_timeout=config.oracle_timeout,
        event_sink=sink,
        extraction_threshold=config.extraction_threshold,
    )
    policy = PolicyEngine.from_config(config, tracker=tracker, sanitizer=sanitizer, event_sink=sink)
    rate_limiter = RateLimiter(
        max_messages=config.rate_limit_messages,
        window_seconds=config.rate_limit_window_seconds,
        warning_cooldown=config.rate_limit_warning_cooldown,
        max_actors=config.max_tracked_actors,
    )

    if not settings.guard_enabled:
        log.warning("guard_disabled", reason="no language-model credential configured")
    log.info(
        "guard_pipeline_built",
        enabled=settings.guard_enabled,
        oracle_backend=settings.oracle_backend,
        signatures=len(catalog),
    )
    return GuardPipeline(
        detector=detector,
        policy=policy,
        tracker=tracker,
        sanitizer=sanitizer,
        rate_limiter=rate_limiter,
        behavior=BehaviorMonitor(max_actors=config.max_tracked_actors),
        event_sink=sink,
        enabled=settings.guard_enabled,
    )
