"""Logging configuration for Guardian AI.

Every record passes through :func:`redact_processor` before rendering, so
secret-shaped substrings never reach the console or the log files.
"""

import atexit
import logging
import queue
import re
import sys
from collections.abc import MutableMapping
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from guardian_ai.config import get_settings

# (pattern, replacement) applied in order
_REDACTIONS: list[tuple[re.Pattern[str], str]] = [
    # Discord bot tokens
    (
        re.compile(r"[MN][A-Za-z\d]{23,28}\.[A-Za-z\d_-]{6}\.[A-Za-z\d_-]{27,}"),
        "[TOKEN_REDACTED]",
    ),
    # Provider keys (Groq, Anthropic, OpenAI)
    (re.compile(r"(?:gsk_|sk-ant-|sk-)[A-Za-z0-9_-]{20,}"), "[API_KEY_REDACTED]"),
    # key=value style secrets
    (
        re.compile(
            r"(?:api[_-]?key|apikey|api[_-]?secret|secret[_-]?key|password)\s{0,3}[:=]\s{0,3}"
            r"['\"]?[\w-]{8,}['\"]?",
            re.IGNORECASE,
        ),
        "[SECRET_REDACTED]",
    ),
    # Bearer tokens
    (re.compile(r"Bearer\s{1,3}[\w.~+/-]{8,}=*", re.IGNORECASE), "Bearer [REDACTED]"),
    # Webhook URLs
    (
        re.compile(
            r"https://(?:\w+\.)?discord(?:app)?\.com/api/webhooks/\d+/[\w-]+", re.IGNORECASE
        ),
        "[WEBHOOK_REDACTED]",
    ),
    # Long base64 blobs
    (re.compile(r"[A-Za-z0-9+/]{60,}={0,2}"), "[BASE64_REDACTED]"),
]

_SENSITIVE_KEY = re.compile(r"token|secret|password|api_?key|authorization", re.IGNORECASE)

_listener: QueueListener | None = None


class _RecordQueueHandler(QueueHandler):
    """Enqueue records untouched; structlog event dicts are rendered by the listener."""

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        return record


def redact_secrets(text: str) -> str:
    """Replace secret-shaped substrings in *text* with placeholders."""
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def _redact_value(value: Any) -> Any:  # noqa: ANN401
    if isinstance(value, str):
        return redact_secrets(value)
    if isinstance(value, dict):
        return {
            k: "[REDACTED]" if _SENSITIVE_KEY.search(str(k)) else _redact_value(v)
            for k, v in value.items()
        }
    if isinstance(value, list | tuple):
        return [_redact_value(v) for v in value]
    return value


def redact_processor(
    logger: Any,  # noqa: ANN401
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor that scrubs secrets from every event field."""
    for key in list(event_dict):
        if key != "event" and _SENSITIVE_KEY.search(key) and isinstance(event_dict[key], str):
            event_dict[key] = "[REDACTED]"
        else:
            event_dict[key] = _redact_value(event_dict[key])
    return event_dict


def setup_logging() -> None:
    """Configure structured logging with console and file outputs.

    Handlers sit behind a :class:`QueueHandler`; a listener thread does the
    actual writes so callers on the detection path never wait on I/O.
    """
    global _listener
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_to_file:
        try:
            log_dir = Path(settings.log_directory)
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            # Continue with console-only logging
            print(f"Warning: Could not create log directory: {e}", file=sys.stderr)
            settings.log_to_file = False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    handlers: list[logging.Handler] = [console_handler]

    file_handler = None
    if settings.log_to_file:
        try:
            file_handler = RotatingFileHandler(
                filename=settings.log_file_path,
                maxBytes=settings.log_file_max_bytes,
                backupCount=settings.log_file_backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(log_level)
            handlers.append(file_handler)
        except OSError as e:
            print(f"Warning: Could not setup file logging: {e}", file=sys.stderr)
            file_handler = None

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_processor,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Console: colored in dev, JSON in prod
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                (
                    structlog.dev.ConsoleRenderer(colors=True)  # type: ignore[list-item]
                    if settings.is_development
                    else structlog.processors.JSONRenderer()
                ),
            ]
        )
    )

    # File: always JSON for easy parsing
    if file_handler:
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(),
                ]
            )
        )

    if _listener is not None:
        _listener.stop()

    log_queue: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(_RecordQueueHandler(log_queue))
    root.setLevel(log_level)

    _listener = QueueListener(log_queue, *handlers, respect_handler_level=True)
    _listener.start()
    atexit.register(shutdown_logging)

    # Reduce noise from third-party packages
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def shutdown_logging() -> None:
    """Flush queued records and stop the listener thread."""
    global _listener
    if _listener is not None:
        _listener.stop()
        _listener = None


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
