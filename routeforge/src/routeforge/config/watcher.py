"""Artifact change detection helpers.

What:
  Provide predicates comparing the checksum of an artifact already on disk
  with the checksum of a freshly rendered one, returning both boolean change
  signals and human-readable reasons.

Why:
  Proxy cores reload whenever their configuration file is touched. Rendering
  is deterministic, so repeated generation without edits must not rewrite the
  file; centralising the comparison keeps generator and CLI in agreement on
  what counts as a change.

How:
  Reads the current artifact bytes (if any), hashes them with
  :func:`routeforge.utils.ids.checksum`, and compares against the rendered
  checksum in a fixed order.

Interfaces:
  ``artifact_checksum``, ``has_changed`` and ``change_reason``.

Invariants & Safety:
  - ``None`` values are handled gracefully to avoid crashes on bootstrap.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..utils.ids import checksum


def artifact_checksum(path: Path) -> Optional[str]:
    """Return the checksum of the artifact at ``path`` or ``None`` if absent."""

    try:
        return checksum(Path(path).read_bytes())
    except FileNotFoundError:
        return None


def has_changed(prev: Optional[str], new: Optional[str]) -> bool:
    """Check whether the rendered artifact differs from the one on disk.

    Args:
      prev: Checksum of the artifact currently on disk, if any.
      new: Checksum of the freshly rendered artifact.

    Returns:
      ``True`` when the checksums differ, ``False`` otherwise.
    """

    if new is None:
        return prev is not None
    return prev != new


def change_reason(prev: Optional[str], new: Optional[str]) -> str:
    """Explain why an artifact change was detected.

    Mirrors :func:`has_changed` while mapping each branch to a concise label
    used in generation logs and CLI output.

    Returns:
      One of ``missing``, ``bootstrap``, ``checksum change`` or ``unchanged``.
    """

    if new is None:
        return "missing"
    if prev is None:
        return "bootstrap"
    if prev != new:
        return "checksum change"
    return "unchanged"


__all__ = ["artifact_checksum", "has_changed", "change_reason"]
