"""Remote-resource fetcher used by rule-set refresh.

What:
  Define the :class:`Fetcher` protocol and a :mod:`urllib.request` backed
  implementation that downloads rule-set bytes within a total deadline.

Why:
  Rule-set files are published on public hosts that may be slow or blocked.
  Each download must respect its own timeout so the refresh pool can report
  the item ``failed`` and move on, and an optional relay prefix lets operators
  route downloads through a mirror.

How:
  The response is read in chunks; the per-socket timeout comes from
  ``urlopen`` while the loop enforces the overall deadline. Any network or
  HTTP failure is converted into :class:`~routeforge.errors.FetchError`.

Interfaces:
  :class:`Fetcher`, :class:`FetchResult`, :class:`UrlFetcher`,
  :func:`apply_relay`.
"""
from __future__ import annotations

import http.client
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from ..errors import FetchError

_CHUNK = 64 * 1024
_USER_AGENT = "routeforge"


@dataclass(frozen=True)
class FetchResult:
    content: bytes
    size: int
    fetched_at: datetime


class Fetcher(Protocol):
    def fetch(self, url: str, timeout: float) -> FetchResult:
        """Download ``url`` within ``timeout`` seconds or raise ``FetchError``."""


def apply_relay(url: str, relay: Optional[str]) -> str:
    """Prefix ``url`` with ``relay`` following the ``https://relay/<url>`` form."""

    if not relay:
        return url
    return f"{relay.rstrip('/')}/{url}"


class UrlFetcher:
    """Fetch resources over HTTP(S) with :func:`urllib.request.urlopen`."""

    def __init__(self, *, relay: Optional[str] = None) -> None:
        self._relay = relay

    def fetch(self, url: str, timeout: float) -> FetchResult:
        target = apply_relay(url, self._relay)
        deadline = time.monotonic() + timeout
        request = urllib.request.Request(target, headers={"User-Agent": _USER_AGENT})
        chunks = []
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                while True:
                    if time.monotonic() > deadline:
                        raise FetchError(f"download of {url} exceeded {timeout}s")
                    chunk = response.read(_CHUNK)
                    if not chunk:
                        break
                    chunks.append(chunk)
        except urllib.error.HTTPError as exc:
            raise FetchError(f"HTTP {exc.code} fetching {url}") from exc
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as exc:
            raise FetchError(f"unable to fetch {url}: {exc}") from exc
        content = b"".join(chunks)
        return FetchResult(content=content, size=len(content), fetched_at=datetime.now(timezone.utc))


__all__ = ["Fetcher", "FetchResult", "UrlFetcher", "apply_relay"]
