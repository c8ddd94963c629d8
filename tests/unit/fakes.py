"""In-memory collaborators used by unit tests.

What:
  Provide drop-in replacements for the remote-resource fetcher and the
  proxy-core runner.

Why:
  Refresh and generation tests must exercise partial failures, timeouts, and
  rejected verdicts without network access or installed proxy cores.

How:
  :class:`FakeFetcher` serves canned bytes per URL, raises ``FetchError`` for
  URLs registered as failing, raises any exception registered in ``errors``,
  and can hold a URL until a test releases it.
  :class:`FakeCoreRunner` records every check and returns a configurable
  verdict.

Interfaces:
  :class:`FakeFetcher`, :class:`FakeCoreRunner`.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Set, Tuple

from routeforge.config.schema import EngineType
from routeforge.errors import FetchError
from routeforge.external.fetcher import FetchResult
from routeforge.external.runner import ExternalVerdict


class FakeFetcher:
    """Serve canned payloads keyed by URL."""

    def __init__(self) -> None:
        self.payloads: Dict[str, bytes] = {}
        self.failing: Set[str] = set()
        self.errors: Dict[str, Exception] = {}
        self.gates: Dict[str, threading.Event] = {}
        self.calls: List[Tuple[str, float]] = []
        self._lock = threading.Lock()

    def hold(self, url: str) -> threading.Event:
        """Block fetches of ``url`` until the returned event is set."""

        gate = threading.Event()
        self.gates[url] = gate
        return gate

    def fetch(self, url: str, timeout: float) -> FetchResult:
        with self._lock:
            self.calls.append((url, timeout))
        gate = self.gates.get(url)
        if gate is not None and not gate.wait(timeout=5):
            raise FetchError(f"download of {url} exceeded {timeout}s")
        if url in self.failing:
            raise FetchError(f"download of {url} exceeded {timeout}s")
        if url in self.errors:
            raise self.errors[url]
        content = self.payloads.get(url, f"payload for {url}".encode("utf-8"))
        return FetchResult(content=content, size=len(content), fetched_at=datetime.now(timezone.utc))


class FakeCoreRunner:
    """Record checks and answer with a preset verdict."""

    def __init__(self, accepted: bool = True, message: str = "configuration test is successful") -> None:
        self.verdict = ExternalVerdict(accepted=accepted, message=message)
        self.checked: List[Tuple[EngineType, Path]] = []
        self.engines: Set[EngineType] = set(EngineType)

    def available(self, engine: EngineType) -> bool:
        return EngineType(engine) in self.engines

    def check(self, engine: EngineType, path: Path) -> ExternalVerdict:
        self.checked.append((EngineType(engine), Path(path)))
        return self.verdict
