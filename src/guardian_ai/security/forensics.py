"""Forensic logging for security events.

The guard hands raw events to a :class:`SecurityEventSink`. Redaction is the
sink's job: :class:`StructlogEventSink` scrubs secret-shaped substrings from
every detail before the record leaves the process. All events are logged at
WARNING so they land in the error log alongside other alerts.
"""

from __future__ import annotations

import hashlib
from typing import Any, Protocol, runtime_checkable

from guardian_ai.logging import get_logger, redact_secrets
from guardian_ai.security.models import SecurityEvent

log = get_logger("guardian_ai.security.forensics")

_PREVIEW_CHARS = 200


@runtime_checkable
class SecurityEventSink(Protocol):
    """Receives structured security events. Must not block."""

    def emit(self, event: SecurityEvent) -> None: ...


def content_fingerprint(text: str) -> dict[str, Any]:
    """Hash, length and a short preview of a message, for event details."""
    return {
        "content_hash": hashlib.sha256(text.encode("utf-8")).hexdigest(),
        "content_length": len(text),
        "content_preview": text[:_PREVIEW_CHARS],
    }


def _redact(value: Any) -> Any:  # noqa: ANN401
    if isinstance(value, str):
        return redact_secrets(value)
    if isinstance(value, dict):
        return {k: _redact(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        return [_redact(v) for v in value]
    return value


class StructlogEventSink:
    """Write security events to the structured log, redacted."""

    def __init__(self, event_name: str = "security_event") -> None:
        self._event_name = event_name

    def emit(self, event: SecurityEvent) -> None:
        log.warning(
            self._event_name,
            event_type=event.type.value,
            actor_id=event.actor_id,
            room_id=event.room_id,
            timestamp=event.timestamp.isoformat(),
            details=_redact(event.details),
        )


def emit_safely(sink: SecurityEventSink | None, event: SecurityEvent) -> None:
    """Hand *event* to *sink*; a failing sink never breaks the caller."""
    if sink is None:
        return
    try:
        sink.emit(event)
    except Exception:
        log.exception("security_event_sink_failed", event_type=event.type.value)
