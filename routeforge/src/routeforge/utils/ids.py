"""Stable checksums for routeforge templates and artifacts.

What:
  Wrap ``hashlib`` with a consistent ``sha256:`` prefix so the store, the
  generator, and the change detector agree on one checksum format.

Interfaces:
  :func:`checksum`.
"""
from __future__ import annotations

import hashlib
from typing import Union


def checksum(data: Union[bytes, str]) -> str:
    """Compute a namespaced SHA-256 digest for ``data``.

    Text is encoded as UTF-8 before hashing so a rendered artifact and the
    bytes written to disk share the same checksum.

    Args:
      data: Bytes or text to hash.

    Returns:
      Hex-encoded digest string prefixed with ``sha256:``.
    """

    if isinstance(data, str):
        data = data.encode("utf-8")
    return f"sha256:{hashlib.sha256(data).hexdigest()}"
