"""Routeforge logging helpers with deterministic JSON emission and redaction.

What:
  Offer a tiny facade over Python streams so every routeforge component can
  emit JSON log lines with consistent fields and automatic removal of
  credentials that travel inside generation options.

Why:
  Generation options carry controller secrets and node credentials that must
  never reach shared log collectors. A structured layout keeps parsing trivial
  for operators grepping commit, render, and refresh events.

How:
  Provide a :class:`JsonLogger` dataclass that accepts a target stream and
  enforces uppercase severity levels. ``extra`` dictionaries are scrubbed via a
  recursive redaction helper before being serialised with ``json.dump``.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`.

Invariants & Safety:
  - The emitted log payload always includes an ISO8601 timestamp, severity, and
    component name so downstream tooling can index entries reliably.
  - Known sensitive keys (``secret``, ``password``, ``uuid``, ``private_key``)
    are replaced with ``[redacted]`` even inside nested dictionaries and lists.
  - Streams are flushed after every write.
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({"secret", "password", "uuid", "private_key", "pre_shared_key"})


@dataclass
class JsonLogger:
    """Structured JSON logger with automatic redaction.

    What:
      Encapsulates the logic required to emit single-line JSON log entries that
      include timestamps, severity, a component tag, and optional supplemental
      fields.

    Why:
      Centralising structured logging avoids duplicating the redaction logic and
      guarantees a uniform schema for test assertions.

    How:
      Stores the destination stream and component label, then exposes helper
      methods (:meth:`log`, :meth:`info`, :meth:`warning`, :meth:`error`) that
      merge a canonical payload with redacted extras.
    """

    stream: Any = field(default_factory=lambda: sys.stderr)
    component: str = "routeforge"

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Emit a structured JSON log entry.

        Args:
          level: Human-readable severity (e.g., ``"info"`` or ``"error"``).
          message: Core log message.
          extra: Optional context dictionary that will be redacted recursively.
        """

        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if extra:
            payload.update(self._redact(extra))
        json.dump(payload, self.stream, separators=(",", ":"), ensure_ascii=False, default=str)
        self.stream.write("\n")
        self.stream.flush()

    def info(self, message: str, **kwargs: Any) -> None:
        self.log("INFO", message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log("WARN", message, extra=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log("ERROR", message, extra=kwargs)

    def child(self, component: str) -> "JsonLogger":
        """Return a logger writing to the same stream under another component."""

        return JsonLogger(stream=self.stream, component=component)

    @staticmethod
    def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
        """Remove sensitive keys from a payload recursively.

        What:
          Produces a copy of ``data`` where predefined fields are replaced with
          a sentinel ``[redacted]`` string.

        Why:
          Generation options are logged for diagnostics and may embed node
          definitions. Redacting credential fields keeps secrets out of logs.

        How:
          Walks dictionaries and lists, applying the sentinel to known keys and
          recursing into nested containers while preserving structure.

        Args:
          data: Arbitrary metadata to sanitise.

        Returns:
          A copy of ``data`` with sensitive values masked.
        """

        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key in SENSITIVE_KEYS:
                result[key] = REDACTED
            else:
                result[key] = JsonLogger._redact_value(value)
        return result

    @staticmethod
    def _redact_value(value: Any) -> Any:
        if isinstance(value, dict):
            return JsonLogger._redact(value)
        if isinstance(value, (list, tuple)):
            return [JsonLogger._redact_value(item) for item in value]
        return value


def get_logger(component: str) -> JsonLogger:
    """Construct a :class:`JsonLogger` for the requested component.

    Args:
      component: Logical subsystem name to include in log payloads.

    Returns:
      Configured :class:`JsonLogger` instance writing to ``stderr`` so artifact
      text printed on ``stdout`` stays clean.
    """

    return JsonLogger(component=component)
