"""Structured JSON logging with level filtering, bound fields, and redaction.

What:
  Offer a small facade over a text stream so every mailwake component emits
  single-line JSON records with consistent fields and never leaks message
  content or credentials.

Why:
  The poller runs unattended inside a long-lived agent. Its logs are the only
  diagnostic channel (IMAP errors never reach the upstream consumer), so they
  must be grep-able and safe to ship to shared log storage.

How:
  :class:`JsonLogger` holds a target stream, a component label, a minimum
  level, and a mapping of bound fields. :meth:`JsonLogger.bind` derives child
  loggers that carry extra fields (for example the account name). Extras are
  scrubbed through a recursive redaction helper before ``json.dump``.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`, :data:`LEVELS`.

Invariants & Safety:
  - Every record carries ``ts``, ``lvl``, ``msg``, and ``component``.
  - Keys named ``subject``, ``body``, ``preview``, ``snippet``, or
    ``password`` are replaced with ``[redacted]`` even inside nested mappings.
  - Streams are flushed after every write.
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACTED = "[redacted]"

LEVELS: Dict[str, int] = {
    "TRACE": 5,
    "DEBUG": 10,
    "INFO": 20,
    "WARN": 30,
    "ERROR": 40,
}

_SENSITIVE_KEYS = frozenset({"subject", "body", "preview", "snippet", "password"})


@dataclass
class JsonLogger:
    """Structured JSON logger with automatic redaction.

    What:
      Emits one JSON object per line containing a timestamp, severity, the
      component tag, bound fields, and per-call extras.

    Why:
      A single implementation keeps the schema uniform across the IMAP client,
      account manager, and poller, and lets tests assert on parsed records.

    How:
      :meth:`log` merges the canonical payload with bound fields and redacted
      extras, then serialises it. Level helpers forward to :meth:`log`.
    """

    stream: Any = field(default_factory=lambda: sys.stdout)
    component: str = "mailwake"
    level: str = "INFO"
    fields: Dict[str, Any] = field(default_factory=dict)

    def enabled(self, level: str) -> bool:
        """Return whether records at ``level`` pass the configured minimum."""

        return LEVELS.get(level.upper(), 0) >= LEVELS.get(self.level.upper(), 0)

    def bind(self, **fields: Any) -> "JsonLogger":
        """Return a child logger that adds ``fields`` to every record.

        What:
          Produce a copy sharing the stream and level but carrying extra
          context such as ``email_account``.

        Why:
          Per-account clients are built once; binding the account name at
          construction avoids repeating it on every call site.

        How:
          Merge ``fields`` over the existing bound mapping and return a
          :func:`dataclasses.replace` copy.
        """

        merged = dict(self.fields)
        merged.update(fields)
        return replace(self, fields=merged)

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Emit a structured JSON log entry when ``level`` is enabled.

        Args:
          level: Severity name (``trace``, ``debug``, ``info``, ``warn``,
            ``error``); case-insensitive.
          message: Core log message.
          extra: Optional context dictionary, redacted recursively.
        """

        if not self.enabled(level):
            return
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if self.fields:
            payload.update(self._redact(self.fields))
        if extra:
            payload.update(self._redact(extra))
        json.dump(payload, self.stream, separators=(",", ":"), default=str)
        self.stream.write("\n")
        self.stream.flush()

    def trace(self, message: str, **kwargs: Any) -> None:
        self.log("TRACE", message, extra=kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log("DEBUG", message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log an informational message with structured context."""

        self.log("INFO", message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log a warning; used for contained per-account failures and reseeds."""

        self.log("WARN", message, extra=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log an error entry suitable for alerting."""

        self.log("ERROR", message, extra=kwargs)

    @staticmethod
    def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``data`` with sensitive keys masked recursively."""

        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key in _SENSITIVE_KEYS:
                result[key] = REDACTED
            elif isinstance(value, dict):
                result[key] = JsonLogger._redact(value)
            else:
                result[key] = value
        return result


def get_logger(component: str, *, level: str = "INFO", stream: Any = None) -> JsonLogger:
    """Construct a :class:`JsonLogger` for ``component``.

    Call sites go through this helper so the default stream and level stay
    defined in one place.
    """

    if level.upper() not in LEVELS:
        raise ValueError(f"Unknown log level {level!r}")
    if stream is None:
        return JsonLogger(component=component, level=level.upper())
    return JsonLogger(stream=stream, component=component, level=level.upper())
