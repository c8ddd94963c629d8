"""
Module: tests/unit/test_refresh.py

What:
    Verify rule-set refresh: isolated failures, per-item status, single
    refreshes, and supersession of an older bulk batch by a newer one.

Why:
    Remote rule-sets come from many independent hosts. One failing URL must
    not mark the others failed, and an operator who restarts a bulk refresh
    must only see the latest batch.

How:
    Drive :class:`RuleSetRefresher` with :class:`FakeFetcher`, which can fail
    or hold individual URLs, and inspect reports, surfaced statuses, and the
    files written under ``tmp_path``.

Invariants & Safety Rules:
    - Completed and failed counts always add up to the rule-sets requested.
    - Late updates from a superseded batch never reach the surfaced status or
      the batch callback.
"""

import http.client

import pytest

from routeforge.config.schema import ConditionKind, EngineType, RuleSet, RuleSetFormat
from routeforge.core.refresh import RefreshState, RuleSetRefresher
from routeforge.errors import UnknownRuleSetError
from routeforge.utils.logging import JsonLogger

MIHOMO = EngineType.MIHOMO
SINGBOX = EngineType.SINGBOX


def _url(tag):
    return f"https://rules.example/{tag}.mrs"


@pytest.fixture
def refresher(store, fetcher, tmp_path, log_stream):
    instance = RuleSetRefresher(
        store,
        fetcher,
        tmp_path / "rulesets",
        max_workers=3,
        timeout_s=7,
        logger=JsonLogger(stream=log_stream, component="test.refresh"),
    )
    yield instance
    instance.close()


def _declare(store, tags, **extra):
    store.apply_preset("mihomo-minimal")
    rule_sets = [RuleSet(tag=tag, url=_url(tag), **extra) for tag in tags]
    assert store.replace_rule_sets(MIHOMO, rule_sets).ok


def test_partial_failure_is_isolated(refresher, store, fetcher, tmp_path):
    """
    What:
        Five rule-sets with the third timing out yield four completed and one
        failed.

    Why:
        A bulk refresh is a set of independent units.
    """
    tags = [f"set-{index}" for index in range(1, 6)]
    _declare(store, tags)
    fetcher.failing.add(_url("set-3"))

    report = refresher.refresh_all(MIHOMO)

    assert report.counts() == {"pending": 0, "downloading": 0, "completed": 4, "failed": 1}
    assert report.tags_in(RefreshState.FAILED) == ["set-3"]
    assert "exceeded 7" in report.statuses["set-3"].error
    for tag in tags:
        path = tmp_path / "rulesets" / "mihomo" / f"{tag}.mrs"
        assert path.exists() is (tag != "set-3")
    assert report.statuses["set-1"].size == len(f"payload for {_url('set-1')}")
    surfaced = refresher.status(MIHOMO)
    assert surfaced["set-3"].state is RefreshState.FAILED
    assert surfaced["set-5"].state is RefreshState.COMPLETED


def test_unexpected_fetch_exception_fails_only_that_item(refresher, store, fetcher):
    """
    What:
        A fetcher raising something other than ``FetchError`` marks that
        rule-set failed and the batch report still comes back whole.
    """
    _declare(store, ["good", "broken"])
    fetcher.errors[_url("broken")] = http.client.IncompleteRead(b"", 1024)

    report = refresher.refresh_all(MIHOMO)

    assert report.tags_in(RefreshState.COMPLETED) == ["good"]
    assert report.tags_in(RefreshState.FAILED) == ["broken"]
    assert "IncompleteRead" in report.statuses["broken"].error
    assert refresher.status(MIHOMO)["broken"].state is RefreshState.FAILED


def test_failed_item_can_be_retried_alone(refresher, store, fetcher):
    _declare(store, ["ads", "media"])
    fetcher.failing.add(_url("ads"))
    refresher.refresh_all(MIHOMO)

    fetcher.failing.clear()
    calls_before = len(fetcher.calls)
    status = refresher.refresh(MIHOMO, "ads")

    assert status.state is RefreshState.COMPLETED
    assert [url for url, _ in fetcher.calls[calls_before:]] == [_url("ads")]
    assert refresher.status(MIHOMO)["ads"].state is RefreshState.COMPLETED


def test_updates_stream_through_callback(refresher, store):
    _declare(store, ["ads"])
    seen = []
    refresher.refresh_all(MIHOMO, on_update=lambda status: seen.append(status.state))
    assert seen == [RefreshState.DOWNLOADING, RefreshState.COMPLETED]


def test_new_batch_supersedes_previous(refresher, store, fetcher):
    """
    What:
        Results of a batch that finishes after a newer batch started are kept
        in its own report but not surfaced.

    Why:
        Operators watching refresh progress must see the latest request only.
    """
    _declare(store, ["ads"])
    gate = fetcher.hold(_url("ads"))
    old_updates, new_updates = [], []

    old = refresher.start_all(MIHOMO, on_update=lambda status: old_updates.append(status.state))
    new = refresher.start_all(MIHOMO, on_update=lambda status: new_updates.append(status.state))
    assert old.superseded and not new.superseded
    gate.set()

    old_report = old.wait()
    new_report = new.wait()
    assert old_report.superseded and not new_report.superseded
    assert old_report.batch_id < new_report.batch_id
    assert old_report.statuses["ads"].state is RefreshState.COMPLETED
    assert RefreshState.COMPLETED not in old_updates
    assert new_updates[-1] is RefreshState.COMPLETED
    assert refresher.status(MIHOMO)["ads"].state is RefreshState.COMPLETED


def test_single_refresh_does_not_supersede(refresher, store):
    _declare(store, ["ads", "media"])
    batch = refresher.start_all(MIHOMO)
    refresher.refresh(MIHOMO, "media")
    assert not batch.wait().superseded


def test_unknown_tag_raises(refresher, store):
    _declare(store, ["ads"])
    with pytest.raises(UnknownRuleSetError):
        refresher.refresh(MIHOMO, "missing")


def test_local_rule_sets_are_skipped(refresher, store, fetcher):
    store.apply_preset("mihomo-minimal")
    local = RuleSet(tag="local", source="local", path="/srv/local.mrs")
    remote = RuleSet(tag="remote", url=_url("remote"))
    assert store.replace_rule_sets(MIHOMO, [local, remote]).ok

    report = refresher.refresh_all(MIHOMO)
    assert list(report.statuses) == ["remote"]

    status = refresher.refresh(MIHOMO, "local")
    assert status.state is RefreshState.FAILED
    assert "no remote url" in status.error
    assert [url for url, _ in fetcher.calls] == [_url("remote")]


def test_target_paths(refresher, tmp_path):
    base = tmp_path / "rulesets"
    assert refresher.target_path(SINGBOX, RuleSet(tag="ads", url="u")) == base / "singbox" / "ads.srs"
    source = RuleSet(tag="ads", url="u", format=RuleSetFormat.SOURCE)
    assert refresher.target_path(MIHOMO, source) == base / "mihomo" / "ads.yaml"
    relative = RuleSet(tag="ads", url="u", path="./ruleset/ads.mrs")
    assert refresher.target_path(MIHOMO, relative) == base / "mihomo" / "ruleset" / "ads.mrs"
    absolute = RuleSet(tag="ads", url="u", path="/srv/ads.mrs")
    assert str(refresher.target_path(MIHOMO, absolute)) == "/srv/ads.mrs"


def test_status_reports_files_already_on_disk(refresher, store, fetcher):
    _declare(store, ["ads", "media"])
    target = refresher.target_path(MIHOMO, store.get(MIHOMO).rule_set("ads"))
    target.parent.mkdir(parents=True)
    target.write_bytes(b"cached rules")

    statuses = refresher.status(MIHOMO)

    assert list(statuses) == ["ads", "media"]
    assert statuses["ads"].state is RefreshState.COMPLETED
    assert statuses["ads"].size == len(b"cached rules")
    assert statuses["ads"].updated_at is not None
    assert statuses["media"].state is RefreshState.PENDING
    assert fetcher.calls == []


def test_refresh_leaves_template_untouched(refresher, store):
    _declare(store, ["ads"])
    rules = [
        {"kind": ConditionKind.RULE_SET.value, "payload": "ads", "target": "REJECT"},
        {"kind": "match", "target": "proxy"},
    ]
    assert store.replace_rules(MIHOMO, rules).ok
    before = store.get(MIHOMO)
    refresher.refresh_all(MIHOMO)
    assert store.get(MIHOMO) == before
