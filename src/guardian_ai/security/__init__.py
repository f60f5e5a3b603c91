"""Prompt-injection guard.

Public API
----------
- :class:`GuardPipeline`, :func:`build_pipeline`: screen inbound messages
- :class:`BehaviorMonitor`: multi-message behaviour findings per actor
- :class:`PatternCatalog`: immutable, linear-time signature catalog
- :class:`DualLayerDetector`: catalog plus oracle, fail-degrade merge
- :class:`EscalationTracker`: per-actor attempt history with decay
- :class:`PolicyEngine`: ALLOW / ALLOW_SANITIZED / BLOCK / BLOCK_AND_FLAG
- :class:`Sanitizer`: idempotent markup and code-block redaction
"""

from guardian_ai.security.behavior import BehaviorFinding, BehaviorMonitor, BehaviorPattern
from guardian_ai.security.catalog import (
    PatternCatalog,
    check_linear,
    default_catalog,
    hardening_catalog,
)
from guardian_ai.security.detector import DualLayerDetector
from guardian_ai.security.forensics import SecurityEventSink, StructlogEventSink
from guardian_ai.security.models import (
    ActorEscalationState,
    Category,
    DetectionResult,
    GuardError,
    OracleError,
    OracleStatus,
    PatternCompilationError,
    PolicyAction,
    PolicyVerdict,
    RiskLevel,
    SecurityEvent,
    SecurityEventType,
    Signature,
)
from guardian_ai.security.oracle import (
    DetectionOracle,
    HardeningOracle,
    OllamaOracle,
    OracleVerdict,
)
from guardian_ai.security.pipeline import FieldScreening, GuardPipeline, build_pipeline
from guardian_ai.security.policy import PolicyEngine, refusal_message
from guardian_ai.security.rate_limiter import RateLimiter
from guardian_ai.security.sanitizer import Sanitizer
from guardian_ai.security.scoring import RiskAssessment, score_risk
from guardian_ai.security.tracker import EscalationTracker

__all__ = [
    "ActorEscalationState",
    "BehaviorFinding",
    "BehaviorMonitor",
    "BehaviorPattern",
    "Category",
    "DetectionOracle",
    "DetectionResult",
    "DualLayerDetector",
    "EscalationTracker",
    "FieldScreening",
    "GuardError",
    "GuardPipeline",
    "HardeningOracle",
    "OllamaOracle",
    "OracleError",
    "OracleStatus",
    "OracleVerdict",
    "PatternCatalog",
    "PatternCompilationError",
    "PolicyAction",
    "PolicyEngine",
    "PolicyVerdict",
    "RateLimiter",
    "RiskAssessment",
    "RiskLevel",
    "Sanitizer",
    "SecurityEvent",
    "SecurityEventSink",
    "SecurityEventType",
    "Signature",
    "StructlogEventSink",
    "build_pipeline",
    "check_linear",
    "default_catalog",
    "hardening_catalog",
    "refusal_message",
    "score_risk",
]
