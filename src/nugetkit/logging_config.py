"""
Logging setup for nugetkit.

Modules log with ``logging.getLogger(__name__)`` and pass context through
``extra={...}``. Every record is scrubbed before it is written:

- context fields that can hold an API key or password are dropped
- URLs lose their userinfo and query string (private feed passwords,
  search text), keeping scheme, host and path
- request and response bodies are replaced by a placeholder
- key material in free text (``X-NuGet-ApiKey: ...``, ``Bearer ...``,
  nuget.org ``oy2...`` keys) is masked

Usage:
    from nugetkit.logging_config import setup_logging

    setup_logging(level="info", json_format=True)
    logger = logging.getLogger(__name__)
    logger.info("Package pushed", extra={"status": 201, "url": url})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any, TextIO
from urllib.parse import urlsplit, urlunsplit

REDACTED = "[REDACTED]"

# Context field names dropped outright; compared lowercased with "-" as "_"
SECRET_FIELDS: frozenset[str] = frozenset(
    {
        "api_key",
        "apikey",
        "x_nuget_apikey",
        "auth",
        "authorization",
        "bearer",
        "cookie",
        "credential",
        "credentials",
        "password",
        "secret",
        "token",
    }
)

# Field names containing any of these are dropped too
SECRET_FRAGMENTS: tuple[str, ...] = ("api_key", "apikey", "password", "secret", "token", "credential", "authorization")

# Fields whose value is never written, only a placeholder
OPAQUE_FIELDS: dict[str, str] = {
    "body": "[BODY]",
    "payload": "[PAYLOAD]",
    "headers": "[HEADERS]",
    "params": "[PARAMS]",
}

MAX_LIST_ITEMS = 10
MAX_DEPTH = 3

_URL = re.compile(r"https?://[^\s\"'<>]+")

_TEXT_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(x-nuget-apikey|api[_-]?key)(\s*[=:]\s*)['\"]?[^\s'\",;]+['\"]?", re.I), rf"\1\2{REDACTED}"),
    (re.compile(r"\b(bearer|basic)\s+[\w\-.~+/]+=*", re.I), rf"\1 {REDACTED}"),
    # nuget.org API key format
    (re.compile(r"\boy2[a-z0-9]{43}\b"), REDACTED),
)

# Attributes every LogRecord has; anything else came in through extra=
_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def scrub_url(url: str) -> str:
    """Drop userinfo, query and fragment from a URL."""
    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
        port = parts.port
    except ValueError:
        return "[URL]"
    if ":" in host:
        host = f"[{host}]"
    netloc = f"{host}:{port}" if port else host
    return urlunsplit((parts.scheme, netloc, parts.path, "", ""))


def scrub_text(text: str) -> str:
    """Mask URLs and key material in free-form text."""
    if not text:
        return text
    text = _URL.sub(lambda m: scrub_url(m.group(0)), text)
    for pattern, replacement in _TEXT_RULES:
        text = pattern.sub(replacement, text)
    return text


def _is_secret(name: str) -> bool:
    name = name.lower().replace("-", "_")
    return name in SECRET_FIELDS or any(fragment in name for fragment in SECRET_FRAGMENTS)


def _scrub_value(value: Any, depth: int) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return scrub_text(value)
    if isinstance(value, dict):
        return scrub_fields(value, _depth=depth + 1)
    if isinstance(value, (list, tuple, set, frozenset)):
        if len(value) > MAX_LIST_ITEMS:
            return f"[{len(value)} items]"
        return [_scrub_value(item, depth) for item in value]
    return scrub_text(str(value))


def scrub_fields(fields: dict[str, Any], *, _depth: int = 0) -> dict[str, Any]:
    """Scrubbed copy of structured log context.

    Nested mappings are scrubbed recursively up to MAX_DEPTH levels.
    """
    if _depth > MAX_DEPTH:
        return {"_truncated": True}
    scrubbed: dict[str, Any] = {}
    for name, value in fields.items():
        if _is_secret(name):
            continue
        placeholder = OPAQUE_FIELDS.get(name.lower())
        scrubbed[name] = placeholder if placeholder is not None else _scrub_value(value, _depth)
    return scrubbed


class _ScrubbingFormatter(logging.Formatter):
    """Base for formatters that only ever emit scrubbed text and context."""

    def message(self, record: logging.LogRecord) -> str:
        return scrub_text(record.getMessage())

    def context(self, record: logging.LogRecord) -> dict[str, Any]:
        extra = {name: value for name, value in record.__dict__.items() if name not in _STANDARD_ATTRS}
        return scrub_fields(extra) if extra else {}

    def exception(self, record: logging.LogRecord) -> str | None:
        if not record.exc_info:
            return None
        return scrub_text(self.formatException(record.exc_info))


class JsonFormatter(_ScrubbingFormatter):
    """One JSON object per line.

    {"time": "2026-01-01T00:00:00.000+00:00", "level": "INFO", "logger": "nugetkit.cli", "message": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": self.message(record),
        }
        if record.levelno >= logging.WARNING:
            entry["location"] = f"{record.module}:{record.lineno}"
        entry.update(self.context(record))
        exception = self.exception(record)
        if exception:
            entry["exception"] = exception
        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(_ScrubbingFormatter):
    """Single-line text for terminals: ``level logger: message [k=v ...]``."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname.lower()} {record.name}: {self.message(record)}"
        context = self.context(record)
        if context:
            line += " [" + " ".join(f"{name}={value}" for name, value in context.items()) + "]"
        exception = self.exception(record)
        if exception:
            line += "\n" + exception
        return line


def setup_logging(
    *,
    level: int | str = logging.WARNING,
    json_format: bool = False,
    stream: TextIO | None = None,
) -> logging.Handler:
    """Route all logging to one scrubbing handler.

    Replaces any handlers already on the root logger, so calling it again
    reconfigures rather than duplicates output.

    Args:
        level: Root log level, as a number or a name in any case.
        json_format: Emit JSON lines instead of console text.
        stream: Destination (default stderr, keeping stdout for results).

    Returns:
        The installed handler.
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)

    # aiohttp logs every connection error at DEBUG/INFO; the transport reports them itself
    logging.getLogger("aiohttp").setLevel(max(root.level, logging.WARNING))
    return handler
