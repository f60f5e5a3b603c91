"""Tests for security event forensics."""

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

from guardian_ai.security.forensics import (
    SecurityEventSink,
    StructlogEventSink,
    content_fingerprint,
    emit_safely,
)
from guardian_ai.security.models import SecurityEvent, SecurityEventType


def _event(**details) -> SecurityEvent:
    return SecurityEvent(
        type=SecurityEventType.INJECTION_BLOCKED,
        actor_id="u1",
        room_id="r1",
        details=details,
        timestamp=datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
    )


class TestContentFingerprint:
    def test_fields(self) -> None:
        fingerprint = content_fingerprint("abc")
        assert fingerprint == {
            "content_hash": "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad",
            "content_length": 3,
            "content_preview": "abc",
        }

    def test_preview_is_truncated(self) -> None:
        fingerprint = content_fingerprint("x" * 500)
        assert fingerprint["content_length"] == 500
        assert len(fingerprint["content_preview"]) == 200

    def test_empty(self) -> None:
        assert content_fingerprint("")["content_length"] == 0


class TestStructlogEventSink:
    def test_is_a_sink(self) -> None:
        assert isinstance(StructlogEventSink(), SecurityEventSink)

    def test_emits_redacted_warning(self) -> None:
        secret = "sk-" + "a" * 30
        with patch("guardian_ai.security.forensics.log") as mock_log:
            StructlogEventSink().emit(
                _event(content_preview=f"here is my key {secret}", signatures=["override.ignore"])
            )

        mock_log.warning.assert_called_once()
        args, kwargs = mock_log.warning.call_args
        assert args == ("security_event",)
        assert kwargs["event_type"] == "injection_blocked"
        assert kwargs["actor_id"] == "u1"
        assert kwargs["room_id"] == "r1"
        assert kwargs["timestamp"] == "2026-01-02T03:04:05+00:00"
        assert kwargs["details"]["content_preview"] == "here is my key [API_KEY_REDACTED]"
        assert kwargs["details"]["signatures"] == ["override.ignore"]

    def test_custom_event_name(self) -> None:
        with patch("guardian_ai.security.forensics.log") as mock_log:
            StructlogEventSink("guard_event").emit(_event())
        assert mock_log.warning.call_args.args == ("guard_event",)


class TestEmitSafely:
    def test_delivers(self, sink) -> None:
        event = _event()
        emit_safely(sink, event)
        assert sink.events == [event]

    def test_none_sink(self) -> None:
        emit_safely(None, _event())

    def test_failing_sink_is_logged_not_raised(self) -> None:
        sink = MagicMock()
        sink.emit.side_effect = RuntimeError("disk full")
        with patch("guardian_ai.security.forensics.log") as mock_log:
            emit_safely(sink, _event())
        mock_log.exception.assert_called_once()
        assert mock_log.exception.call_args.kwargs["event_type"] == "injection_blocked"
