"""
Module: tests/unit/test_generator.py

What:
    Verify artifact rendering and generation: determinism, change-gated
    writes, and relaying of the proxy-core verdict.

Why:
    Proxy cores reload whenever their file is touched, and operators diff
    previews against deployed artifacts. Non-deterministic output or spurious
    rewrites would cause needless reloads and noisy diffs.

How:
    Build a :class:`Generator` on the ``store`` fixture with the fake runner
    and inspect results plus files under ``tmp_path``.

Invariants & Safety Rules:
    - Identical template and options render byte-identical text.
    - A rejected verdict is returned verbatim and does not roll back the
      template.
"""

import json

import pytest
import yaml

from routeforge.adapters import get_adapter
from routeforge.config.schema import ConditionKind, EngineType, GenerationOptions, Rule, RuleSet
from routeforge.core.generator import Generator
from routeforge.errors import ExternalVerdictFailure, GenerationError, ValidationCode
from routeforge.external.runner import ExternalVerdict
from routeforge.utils.logging import JsonLogger

MIHOMO = EngineType.MIHOMO
SINGBOX = EngineType.SINGBOX
OPTIONS = GenerationOptions(outbounds=["HK 01", "JP 01"])


@pytest.fixture
def generator(store, core_runner, tmp_path, log_stream):
    return Generator(
        store,
        tmp_path / "output",
        runner=core_runner,
        logger=JsonLogger(stream=log_stream, component="test.generator"),
    )


@pytest.mark.parametrize("engine", list(EngineType))
def test_render_is_deterministic(generator, engine):
    first = generator.render(engine, OPTIONS)
    second = generator.render(engine, OPTIONS)
    assert first.text == second.text
    assert first.checksum == second.checksum


def test_artifact_paths_are_per_engine(generator, tmp_path):
    assert generator.artifact_path(MIHOMO) == tmp_path / "output" / "mihomo" / "config.yaml"
    assert generator.artifact_path(SINGBOX) == tmp_path / "output" / "singbox" / "config.json"


def test_preview_does_not_write(generator):
    text = generator.preview(MIHOMO, OPTIONS)
    assert "MATCH,final" in text
    assert not generator.artifact_path(MIHOMO).exists()


def test_generate_writes_once_until_template_changes(generator, store):
    """
    What:
        The first generate writes, a repeat is unchanged, an edit rewrites.
    """
    first = generator.generate(MIHOMO, OPTIONS)
    assert first.changed and first.reason == "bootstrap"
    assert first.path.read_text(encoding="utf-8") == first.artifact.text
    mtime = first.path.stat().st_mtime_ns

    second = generator.generate(MIHOMO, OPTIONS)
    assert not second.changed and second.reason == "unchanged"
    assert first.path.stat().st_mtime_ns == mtime

    store.apply_preset("mihomo-minimal")
    third = generator.generate(MIHOMO, OPTIONS)
    assert third.changed and third.reason == "checksum change"
    assert yaml.safe_load(third.path.read_text(encoding="utf-8"))["rules"][-1] == "MATCH,proxy"


def test_accepted_verdict_is_returned(generator, core_runner):
    result = generator.generate(SINGBOX, OPTIONS)
    assert result.verdict.accepted
    assert core_runner.checked == [(SINGBOX, result.path)]


def test_rejected_verdict_is_relayed_verbatim(generator, core_runner, store):
    core_runner.verdict = ExternalVerdict(accepted=False, message="outbound not found: proxy")
    store.apply_preset("mihomo-minimal")
    before = store.get(MIHOMO)
    result = generator.generate(MIHOMO, OPTIONS)
    assert not result.verdict.accepted
    assert result.verdict.message == "outbound not found: proxy"
    assert store.get(MIHOMO) == before
    with pytest.raises(ExternalVerdictFailure) as excinfo:
        generator.generate(MIHOMO, OPTIONS, strict=True)
    assert excinfo.value.message == "outbound not found: proxy"


def test_check_skipped_when_disabled_or_unavailable(generator, core_runner):
    assert generator.generate(MIHOMO, OPTIONS, check=False).verdict is None
    core_runner.engines.clear()
    assert generator.generate(MIHOMO, OPTIONS).verdict is None
    assert core_runner.checked == []


def test_warnings_are_reported_and_logged(generator, store, log_stream):
    store.apply_preset("mihomo-minimal")
    store.replace_rule_sets(MIHOMO, [{"tag": "idle", "url": "https://example.com/idle.mrs"}])
    result = generator.generate(MIHOMO, OPTIONS)
    assert result.artifact.warnings == ["rule-set 'idle' is declared but no rule references it"]
    assert "generation warning" in log_stream.getvalue()


def test_invalid_stored_template_is_not_rendered(generator, store):
    path = store.path_for(MIHOMO)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump({"rules": [Rule(kind=ConditionKind.MATCH, target="ghost").model_dump(mode="json", exclude_defaults=True)]}),
        encoding="utf-8",
    )
    with pytest.raises(GenerationError) as excinfo:
        generator.render(MIHOMO)
    assert [error.code for error in excinfo.value.errors] == [ValidationCode.UNKNOWN_REFERENCE]
    assert not generator.artifact_path(MIHOMO).exists()


@pytest.fixture
def ruleset_generator(store, tmp_path, log_stream):
    return Generator(
        store,
        tmp_path / "output",
        ruleset_dir=tmp_path / "rulesets",
        logger=JsonLogger(stream=log_stream, component="test.generator"),
    )


def test_mihomo_providers_point_at_rule_set_directory(ruleset_generator, store, tmp_path):
    """
    What:
        A provider is ``http`` with its cache path under the rule-set
        directory until the file is downloaded, then a ``file`` provider.

    Why:
        Refreshed rule-sets must be the ones the proxy core reads.
    """
    store.apply_preset("mihomo-minimal")
    ads = RuleSet(tag="ads", url="https://rules.example/ads.mrs", path="./ruleset/ads.mrs", refresh_interval=86400)
    assert store.replace_rule_sets(MIHOMO, [ads]).ok
    target = tmp_path / "rulesets" / "mihomo" / "ruleset" / "ads.mrs"

    before = yaml.safe_load(ruleset_generator.preview(MIHOMO))["rule-providers"]["ads"]
    assert before == {
        "type": "http",
        "behavior": "domain",
        "format": "mrs",
        "url": "https://rules.example/ads.mrs",
        "path": str(target.absolute()),
        "interval": 86400,
    }

    target.parent.mkdir(parents=True)
    target.write_bytes(b"rules")
    after = yaml.safe_load(ruleset_generator.preview(MIHOMO))["rule-providers"]["ads"]
    assert after == {"type": "file", "behavior": "domain", "format": "mrs", "path": str(target.absolute())}


def test_downloaded_singbox_rule_set_is_local_and_imports_back(ruleset_generator, store, tmp_path):
    store.apply_preset("singbox-minimal")
    ads = RuleSet(tag="ads", url="https://rules.example/ads.srs", refresh_interval=86400)
    assert store.replace_rule_sets(SINGBOX, [ads]).ok
    target = tmp_path / "rulesets" / "singbox" / "ads.srs"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"rules")

    text = ruleset_generator.preview(SINGBOX)

    entry = json.loads(text)["route"]["rule_set"][0]
    assert entry == {"type": "local", "tag": "ads", "format": "binary", "path": str(target.absolute())}
    adapter = get_adapter(SINGBOX)
    restored = adapter.from_document(adapter.loads(text), reference=store.get(SINGBOX))
    assert restored.rule_sets == store.get(SINGBOX).rule_sets
