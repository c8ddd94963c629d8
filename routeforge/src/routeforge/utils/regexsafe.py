"""Regular expression helpers with soft timeouts for member filters.

What:
  Offer a thin wrapper around :func:`re.search` that enforces execution time
  limits, plus a helper that filters outbound tags through a group's
  ``member_filter`` pattern.

Why:
  Member filters are user-authored patterns evaluated against every known
  outbound tag at generation time. Python's backtracking engine can hang on a
  crafted pattern, and generation must stay fast and deterministic.

How:
  Execute the compiled regex inside a thread, join with a millisecond timeout,
  and capture either the resulting match or any thrown exception. When the
  thread exceeds the deadline, return a negative ``RegexResult``.

Interfaces:
  :class:`RegexResult`, :func:`search`, :func:`filter_tags`,
  :func:`pattern_error`.

Invariants & Safety:
  - A timed-out search counts as "no match"; it never raises.
  - Compilation errors propagate so callers can report the bad pattern.
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Iterable, List, Optional


@dataclass
class RegexResult:
    """Result container describing a regex search.

    Attributes:
      matched: Whether the pattern matched before the deadline.
      match: The underlying :class:`re.Match` when ``matched`` is true.
    """

    matched: bool
    match: Optional[re.Match[str]] = None


def search(pattern: str, text: str, *, timeout_ms: int = 50, flags: int = 0) -> RegexResult:
    """Search ``text`` with ``pattern`` while enforcing a soft timeout.

    What:
      Executes ``re.search`` using ``pattern`` against ``text`` and returns a
      :class:`RegexResult` capturing the match outcome.

    Why:
      Member filters are untrusted input; the helper bounds CPU usage so a
      pathological filter degrades into "no match" instead of a hung render.

    How:
      Compiles the regex with optional ``flags`` and runs the search inside a
      thread. If the thread completes in time, the matched state is returned.
      When the join times out, a negative ``RegexResult`` is returned.

    Args:
      pattern: Regular expression pattern string.
      text: Target text to scan.
      timeout_ms: Maximum runtime in milliseconds.
      flags: Optional :mod:`re` compilation flags.

    Returns:
      :class:`RegexResult` describing the outcome.

    Raises:
      re.error: When ``pattern`` does not compile.
    """

    if timeout_ms <= 1:
        return RegexResult(matched=False)
    compiled = re.compile(pattern, flags)
    result_container: dict[str, RegexResult] = {}
    error_container: dict[str, Exception] = {}

    def _target() -> None:
        try:
            match = compiled.search(text)
            result_container["result"] = RegexResult(matched=match is not None, match=match)
        except Exception as exc:  # pragma: no cover - bubble up
            error_container["error"] = exc

    thread = threading.Thread(target=_target, daemon=True)
    thread.start()
    thread.join(timeout_ms / 1000)
    if thread.is_alive():
        return RegexResult(matched=False)
    if "error" in error_container:
        raise error_container["error"]
    return result_container.get("result", RegexResult(matched=False))


def pattern_error(pattern: str) -> Optional[str]:
    """Return the compilation error of ``pattern``, or ``None`` when it compiles."""

    try:
        re.compile(pattern)
    except re.error as exc:
        return str(exc)
    return None


def filter_tags(pattern: str, tags: Iterable[str], *, timeout_ms: int = 50) -> List[str]:
    """Return the tags matched by ``pattern``, preserving input order.

    Args:
      pattern: Member filter expression.
      tags: Candidate outbound tags.
      timeout_ms: Per-tag search deadline.

    Returns:
      The subset of ``tags`` for which :func:`search` reports a match.
    """

    return [tag for tag in tags if search(pattern, tag, timeout_ms=timeout_ms).matched]
