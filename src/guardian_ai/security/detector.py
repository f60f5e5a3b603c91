"""Dual-layer detection: local catalog plus an optional oracle.

The local catalog always runs. The oracle runs as its own task under a
timeout; whatever goes wrong with it (timeout, exception, cancellation,
nonsense verdict) the detector answers from the local layer and reports
``oracle_unavailable``. The caller never sees an oracle failure.

Detection is stateless. It never touches the escalation tracker.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from pydantic import ValidationError

from guardian_ai.logging import get_logger
from guardian_ai.security.forensics import emit_safely
from guardian_ai.security.models import (
    Category,
    DetectionResult,
    OracleStatus,
    SecurityEvent,
    SecurityEventType,
)
from guardian_ai.security.oracle import OracleVerdict
from guardian_ai.security.scoring import DEFAULT_EXTRACTION_THRESHOLD, score_risk

if TYPE_CHECKING:
    from guardian_ai.security.catalog import CatalogMatch, PatternCatalog
    from guardian_ai.security.forensics import SecurityEventSink
    from guardian_ai.security.oracle import DetectionOracle

log = get_logger("guardian_ai.security.detector")

_CATEGORY_VALUES = {c.value for c in Category}


class DualLayerDetector:
    """Classify messages with the catalog and, when configured, an oracle."""

    def __init__(
        self,
        catalog: PatternCatalog,
        *,
        oracle: DetectionOracle | None = None,
        oracle_timeout: float = 2.0,
        event_sink: SecurityEventSink | None = None,
        extraction_threshold: int = DEFAULT_EXTRACTION_THRESHOLD,
    ) -> None:
        if oracle_timeout <= 0:
            raise ValueError("oracle_timeout must be positive")
        self._catalog = catalog
        self._oracle = oracle
        self._oracle_timeout = oracle_timeout
        self._event_sink = event_sink
        self._extraction_threshold = extraction_threshold

    @property
    def catalog(self) -> PatternCatalog:
        return self._catalog

    async def aclose(self) -> None:
        """Release oracle resources, if the oracle holds any."""
        close = getattr(self._oracle, "close", None)
        if close is not None:
            await close()

    def detect_local(self, text: object) -> DetectionResult:
        """Catalog-only detection. Synchronous, never calls the oracle."""
        if not isinstance(text, str) or not text.strip():
            return DetectionResult.neutral()
        return self._build(self._catalog.match(text), None, OracleStatus.ABSENT)

    async def detect(
        self,
        text: object,
        *,
        actor_id: str | None = None,
        room_id: str | None = None,
    ) -> DetectionResult:
        """Run both layers and merge their findings.

        Malformed input (not a string, empty, whitespace only) gets the
        neutral result without reaching the oracle.

        Raises:
            asyncio.CancelledError: if the caller is cancelled. The pending
                oracle call is cancelled first.
        """
        if not isinstance(text, str) or not text.strip():
            return DetectionResult.neutral()

        local = self._catalog.match(text)
        if self._oracle is None:
            return self._build(local, None, OracleStatus.ABSENT)

        verdict, status, error = await self._consult_oracle(
            self._oracle, text[: self._catalog.max_input_chars]
        )
        if status is not OracleStatus.OK:
            log.warning(
                "oracle_unavailable",
                status=status.value,
                error=error,
                actor_id=actor_id,
                room_id=room_id,
            )
            emit_safely(
                self._event_sink,
                SecurityEvent(
                    type=SecurityEventType.ORACLE_UNAVAILABLE,
                    actor_id=actor_id,
                    room_id=room_id,
                    details={"status": status.value, "error": error},
                ),
            )
        return self._build(local, verdict, status)

    async def _consult_oracle(
        self, oracle: DetectionOracle, text: str
    ) -> tuple[OracleVerdict | None, OracleStatus, str | None]:
        try:
            task = asyncio.ensure_future(oracle.detect(text))
        except Exception as e:
            return None, OracleStatus.ERROR, f"{type(e).__name__}: {e}"
        task.add_done_callback(_retrieve_outcome)
        try:
            done, _ = await asyncio.wait({task}, timeout=self._oracle_timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task not in done:
            task.cancel()
            return None, OracleStatus.TIMEOUT, f"no answer within {self._oracle_timeout}s"
        if task.cancelled():
            return None, OracleStatus.CANCELLED, "oracle task was cancelled"

        exc = task.exception()
        if isinstance(exc, ValidationError):
            return None, OracleStatus.INVALID, f"{exc.error_count()} validation error(s)"
        if exc is not None:
            return None, OracleStatus.ERROR, f"{type(exc).__name__}: {exc}"

        result = task.result()
        if isinstance(result, OracleVerdict):
            return result, OracleStatus.OK, None
        try:
            return OracleVerdict.model_validate(result), OracleStatus.OK, None
        except ValidationError as e:
            return None, OracleStatus.INVALID, f"{e.error_count()} validation error(s)"

    def _build(
        self,
        local: CatalogMatch,
        verdict: OracleVerdict | None,
        status: OracleStatus,
    ) -> DetectionResult:
        assessment = score_risk(
            local.local_match_count,
            local.extraction_score,
            verdict,
            extraction_threshold=self._extraction_threshold,
        )
        categories = set(local.categories)
        external_labels: list[str] = []
        if verdict is not None:
            for label in verdict.matched_pattern_labels:
                key = label.strip().lower()
                if key in _CATEGORY_VALUES:
                    categories.add(Category(key))
                elif label not in external_labels:
                    external_labels.append(label)

        return DetectionResult(
            matched_signature_ids=local.ids,
            extraction_score=local.extraction_score,
            is_injection=assessment.is_injection,
            is_suspicious=assessment.is_suspicious,
            risk_level=assessment.risk_level,
            categories=frozenset(categories),
            external_labels=tuple(external_labels),
            oracle_status=status,
            truncated=local.truncated,
        )


def _retrieve_outcome(task: asyncio.Future[OracleVerdict]) -> None:
    # Marks a late exception as retrieved once a timed-out task finishes.
    if not task.cancelled():
        task.exception()
