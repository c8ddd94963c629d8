"""Rule-set refresh with bounded concurrency and per-item status.

What:
  Download the remote rule-sets declared by an engine's template and store the
  bytes under the rule-set directory, reporting a ``pending``, ``downloading``,
  ``completed`` or ``failed`` status per rule-set.

Why:
  A bulk "update all" touches many independent hosts. One slow or broken URL
  must not fail the others, each fetch needs its own deadline, and an operator
  who starts a fresh bulk refresh should stop seeing results from the previous
  one.

How:
  Work is submitted to a shared :class:`~concurrent.futures.ThreadPoolExecutor`
  bounded by ``max_workers``. Every bulk request gets a batch id; starting a
  new batch for the same engine makes it current. Status updates from a batch
  that is no longer current still land in that batch's own report but are not
  surfaced through :meth:`RuleSetRefresher.status` or the ``on_update``
  callback. The template store is read once per request, so no store lock is
  held while downloading.

Interfaces:
  :class:`RuleSetRefresher`, :class:`RefreshBatch`, :class:`RefreshReport`,
  :class:`RuleSetStatus`, :class:`RefreshState`, :func:`rule_set_path`.

Invariants & Safety:
  - Fetch and write failures are isolated per rule-set and never cancel
    sibling downloads.
  - Rule-set files are replaced atomically.
"""
from __future__ import annotations

import itertools
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from ..config.loader import write_atomic
from ..config.schema import EngineType, RuleSet, RuleSetFormat, RuleSetSource
from ..config.template_store import TemplateStore
from ..errors import UnknownRuleSetError
from ..external.fetcher import Fetcher
from ..utils.logging import JsonLogger, get_logger


class RefreshState(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RuleSetStatus:
    """Latest known refresh state of one rule-set."""

    tag: str
    state: RefreshState = RefreshState.PENDING
    size: Optional[int] = None
    updated_at: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class RefreshReport:
    """Per rule-set statuses collected by one batch."""

    batch_id: int
    engine: EngineType
    statuses: Dict[str, RuleSetStatus] = field(default_factory=dict)
    superseded: bool = False

    def counts(self) -> Dict[str, int]:
        totals = {state.value: 0 for state in RefreshState}
        for status in self.statuses.values():
            totals[status.state.value] += 1
        return totals

    def tags_in(self, state: RefreshState) -> List[str]:
        return [tag for tag, status in self.statuses.items() if status.state is state]


StatusCallback = Callable[[RuleSetStatus], None]

_EXTENSIONS = {
    (EngineType.MIHOMO, RuleSetFormat.BINARY): "mrs",
    (EngineType.MIHOMO, RuleSetFormat.SOURCE): "yaml",
    (EngineType.SINGBOX, RuleSetFormat.BINARY): "srs",
    (EngineType.SINGBOX, RuleSetFormat.SOURCE): "json",
}


def rule_set_path(ruleset_dir: Path, engine: Union[EngineType, str], rule_set: RuleSet) -> Path:
    """Return the file holding the downloaded or local bytes of ``rule_set``.

    Relative ``path`` values resolve against ``<ruleset_dir>/<engine>``; without
    a path the file is ``<ruleset_dir>/<engine>/<tag>.<ext>``.
    """

    engine = EngineType(engine)
    base = Path(ruleset_dir) / engine.value
    if rule_set.path:
        path = Path(rule_set.path)
        return path if path.is_absolute() else base / path
    return base / f"{rule_set.tag}.{_EXTENSIONS[(engine, rule_set.format)]}"


class RefreshBatch:
    """Handle for a running refresh; :meth:`wait` returns its report."""

    def __init__(self, refresher: "RuleSetRefresher", report: RefreshReport, *, single: bool, on_update: Optional[StatusCallback]):
        self._refresher = refresher
        self.report = report
        self.single = single
        self.on_update = on_update
        self.futures: List[Future] = []

    @property
    def batch_id(self) -> int:
        return self.report.batch_id

    @property
    def superseded(self) -> bool:
        return self._refresher._is_superseded(self)

    def wait(self) -> RefreshReport:
        for future in self.futures:
            future.result()
        self.report.superseded = self.superseded
        return self.report


class RuleSetRefresher:
    """Download remote rule-sets for an engine's template."""

    def __init__(
        self,
        store: TemplateStore,
        fetcher: Fetcher,
        ruleset_dir: Path,
        *,
        max_workers: int = 5,
        timeout_s: float = 300.0,
        logger: Optional[JsonLogger] = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._ruleset_dir = Path(ruleset_dir)
        self._timeout_s = timeout_s
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="routeforge-refresh")
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._current: Dict[EngineType, int] = {}
        self._status: Dict[EngineType, Dict[str, RuleSetStatus]] = {}
        self._logger = logger or get_logger("routeforge.refresh")

    def target_path(self, engine: Union[EngineType, str], rule_set: RuleSet) -> Path:
        """Return where the downloaded bytes of ``rule_set`` are stored."""

        return rule_set_path(self._ruleset_dir, engine, rule_set)

    def status(self, engine: Union[EngineType, str]) -> Dict[str, RuleSetStatus]:
        """Return copies of the statuses known for ``engine``.

        Rule-sets declared by the template that no refresh has touched yet are
        reported from disk: ``completed`` with the file size and modification
        time when the file exists, ``pending`` otherwise.
        """

        engine = EngineType(engine)
        with self._lock:
            surfaced = {tag: replace(status) for tag, status in self._status.get(engine, {}).items()}
        statuses: Dict[str, RuleSetStatus] = {}
        for rule_set in self._store.get(engine).rule_sets:
            statuses[rule_set.tag] = surfaced.pop(rule_set.tag, None) or self._disk_status(engine, rule_set)
        statuses.update(surfaced)
        return statuses

    def start_all(self, engine: Union[EngineType, str], *, on_update: Optional[StatusCallback] = None) -> RefreshBatch:
        """Start refreshing every remote rule-set of ``engine``.

        The new batch supersedes any earlier bulk batch of the same engine.
        """

        engine = EngineType(engine)
        rule_sets = [
            rule_set
            for rule_set in self._store.get(engine).rule_sets
            if rule_set.source is RuleSetSource.REMOTE and rule_set.url
        ]
        with self._lock:
            report = RefreshReport(batch_id=next(self._ids), engine=engine)
            report.statuses = {rule_set.tag: RuleSetStatus(tag=rule_set.tag) for rule_set in rule_sets}
            previous = self._current.get(engine)
            self._current[engine] = report.batch_id
            self._status[engine] = {tag: replace(status) for tag, status in report.statuses.items()}
        batch = RefreshBatch(self, report, single=False, on_update=on_update)
        if previous is not None:
            self._logger.info("refresh batch superseded", engine=engine.value, batch=previous, by=report.batch_id)
        self._logger.info("refresh batch started", engine=engine.value, batch=report.batch_id, count=len(rule_sets))
        for rule_set in rule_sets:
            batch.futures.append(self._executor.submit(self._run_unit, batch, rule_set))
        return batch

    def refresh_all(self, engine: Union[EngineType, str], *, on_update: Optional[StatusCallback] = None) -> RefreshReport:
        """Refresh every remote rule-set and wait for the report."""

        report = self.start_all(engine, on_update=on_update).wait()
        self._logger.info("refresh batch finished", engine=report.engine.value, batch=report.batch_id, **report.counts())
        return report

    def refresh(self, engine: Union[EngineType, str], tag: str, *, on_update: Optional[StatusCallback] = None) -> RuleSetStatus:
        """Refresh a single rule-set, independent of any running batch.

        Raises:
          UnknownRuleSetError: When ``tag`` is not declared for ``engine``.
        """

        engine = EngineType(engine)
        rule_set = self._store.get(engine).rule_set(tag)
        if rule_set is None:
            raise UnknownRuleSetError(tag)
        with self._lock:
            report = RefreshReport(batch_id=next(self._ids), engine=engine, statuses={tag: RuleSetStatus(tag=tag)})
        batch = RefreshBatch(self, report, single=True, on_update=on_update)
        if rule_set.source is not RuleSetSource.REMOTE or not rule_set.url:
            self._update(batch, tag, state=RefreshState.FAILED, error=f"rule-set {tag!r} has no remote url")
        else:
            batch.futures.append(self._executor.submit(self._run_unit, batch, rule_set))
            batch.wait()
        return replace(report.statuses[tag])

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    # ---------------------------------------------------------------- private

    def _disk_status(self, engine: EngineType, rule_set: RuleSet) -> RuleSetStatus:
        try:
            stat = self.target_path(engine, rule_set).stat()
        except OSError:
            return RuleSetStatus(tag=rule_set.tag)
        return RuleSetStatus(
            tag=rule_set.tag,
            state=RefreshState.COMPLETED,
            size=stat.st_size,
            updated_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def _is_superseded(self, batch: RefreshBatch) -> bool:
        if batch.single:
            return False
        with self._lock:
            return self._current.get(batch.report.engine) != batch.batch_id

    def _run_unit(self, batch: RefreshBatch, rule_set: RuleSet) -> None:
        engine = batch.report.engine
        tag = rule_set.tag
        self._update(batch, tag, state=RefreshState.DOWNLOADING, error=None)
        try:
            result = self._fetcher.fetch(rule_set.url or "", self._timeout_s)
            write_atomic(self.target_path(engine, rule_set), result.content)
        except Exception as exc:
            # Any failure stays with this rule-set; siblings keep running.
            error = str(exc) or type(exc).__name__
            self._logger.warning("rule-set refresh failed", engine=engine.value, tag=tag, error=error)
            self._update(batch, tag, state=RefreshState.FAILED, error=error)
            return
        self._logger.info("rule-set refreshed", engine=engine.value, tag=tag, size=result.size)
        self._update(batch, tag, state=RefreshState.COMPLETED, size=result.size, updated_at=result.fetched_at)

    def _update(self, batch: RefreshBatch, tag: str, **changes) -> None:
        engine = batch.report.engine
        with self._lock:
            status = batch.report.statuses[tag]
            for key, value in changes.items():
                setattr(status, key, value)
            snapshot = replace(status)
            surfaced = batch.single or self._current.get(engine) == batch.batch_id
            if surfaced:
                self._status.setdefault(engine, {})[tag] = snapshot
        if surfaced and batch.on_update is not None:
            batch.on_update(snapshot)


__all__ = ["rule_set_path", "RuleSetRefresher", "RefreshBatch", "RefreshReport", "RuleSetStatus", "RefreshState"]
