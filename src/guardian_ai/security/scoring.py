"""Risk scoring: combine local match counts with the oracle verdict.

Pure functions only. Same inputs, same assessment.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from guardian_ai.security.models import RiskLevel

if TYPE_CHECKING:
    from guardian_ai.security.oracle import OracleVerdict

DEFAULT_EXTRACTION_THRESHOLD = 2


@dataclass(frozen=True)
class RiskAssessment:
    """Outcome of :func:`score_risk`."""

    risk_level: RiskLevel
    is_injection: bool
    is_suspicious: bool
    extraction_attempt: bool
    local_level: RiskLevel


def local_risk(
    local_match_count: int,
    extraction_score: int,
    *,
    extraction_threshold: int = DEFAULT_EXTRACTION_THRESHOLD,
) -> RiskLevel:
    """Risk level from the local catalog alone."""
    extraction_attempt = extraction_score >= extraction_threshold
    if local_match_count >= 2 or (local_match_count >= 1 and extraction_attempt):
        return RiskLevel.CRITICAL
    if local_match_count >= 1:
        return RiskLevel.HIGH
    if extraction_attempt:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def score_risk(
    local_match_count: int,
    extraction_score: int,
    external: OracleVerdict | None = None,
    *,
    extraction_threshold: int = DEFAULT_EXTRACTION_THRESHOLD,
) -> RiskAssessment:
    """Classify one message.

    The external verdict can only raise the level; it never lowers what the
    local catalog found.

    Args:
        local_match_count: Non-probe signatures that matched.
        extraction_score: Extraction signatures (strong and probe) that matched.
        external: The oracle verdict, or ``None`` when running local-only.
        extraction_threshold: Score at which a message counts as an
            extraction attempt.
    """
    extraction_attempt = extraction_score >= extraction_threshold
    level = local_risk(
        local_match_count, extraction_score, extraction_threshold=extraction_threshold
    )
    final = level
    is_injection = local_match_count >= 1
    has_labels = False

    if external is not None:
        final = max(level, external.risk_level)
        is_injection = is_injection or external.should_block
        has_labels = bool(external.matched_pattern_labels)

    return RiskAssessment(
        risk_level=final,
        is_injection=is_injection,
        is_suspicious=is_injection or extraction_score >= 1 or has_labels,
        extraction_attempt=extraction_attempt,
        local_level=level,
    )
