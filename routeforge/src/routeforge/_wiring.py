"""Helper utilities bridging the CLI with runtime subsystems.

What:
  Build the :class:`~routeforge.service.PolicyService` graph from a
  :class:`~routeforge.config.schema.RuntimeConfig` and resolve the small
  per-command inputs (engine choice, generation options, payload files).

Why:
  Isolating construction keeps the CLI commands concise and lets tests inject
  fake fetchers and runners without touching the commands themselves.

How:
  Pure functions that accept the runtime configuration and optional
  collaborator overrides. Options files are YAML (JSON being a subset) and are
  validated by the pydantic schema.

Interfaces:
  ``resolve_engine``, ``build_service``, ``load_options``, ``load_payload``.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import yaml

from .config.loader import ConfigLoadError
from .config.schema import EngineType, GenerationOptions, RuntimeConfig
from .config.template_store import TemplateStore
from .core.generator import Generator
from .core.refresh import RuleSetRefresher
from .external.fetcher import Fetcher, UrlFetcher
from .external.runner import CoreRunner, SubprocessCoreRunner
from .service import PolicyService


def resolve_engine(runtime: RuntimeConfig, override: Optional[str]) -> EngineType:
    """Return the engine named on the command line or the configured default."""

    if override:
        return EngineType(override)
    return runtime.default_engine


def build_service(
    runtime: RuntimeConfig,
    *,
    fetcher: Optional[Fetcher] = None,
    runner: Optional[CoreRunner] = None,
) -> PolicyService:
    """Instantiate the store, generator, and refresher for ``runtime``.

    Args:
      runtime: Validated runtime configuration.
      fetcher: Optional fetcher override; defaults to :class:`UrlFetcher`
        honouring the configured relay.
      runner: Optional runner override; defaults to
        :class:`SubprocessCoreRunner` with the configured binaries.

    Returns:
      A ready :class:`PolicyService`.
    """

    paths = runtime.paths
    store = TemplateStore(Path(paths.state_dir))
    if runner is None:
        runner = SubprocessCoreRunner(
            {EngineType.MIHOMO: runtime.cores.mihomo_path, EngineType.SINGBOX: runtime.cores.singbox_path},
            timeout_s=runtime.cores.check_timeout_s,
        )
    generator = Generator(store, Path(paths.output_dir), runner=runner, ruleset_dir=Path(paths.ruleset_dir))
    refresher = RuleSetRefresher(
        store,
        fetcher or UrlFetcher(relay=runtime.refresh.relay),
        Path(paths.ruleset_dir),
        max_workers=runtime.refresh.max_concurrent,
        timeout_s=runtime.refresh.timeout_s,
    )
    return PolicyService(store, generator, refresher)


def load_payload(path: Path) -> Any:
    """Parse a YAML or JSON payload file.

    Raises:
      ConfigLoadError: When the file is unreadable or not valid YAML.
    """

    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Unable to read {path}: {exc}") from exc
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"Invalid YAML in {path}: {exc}") from exc


def load_options(path: Optional[Path]) -> GenerationOptions:
    """Return generation options from ``path`` or the defaults when omitted."""

    if path is None:
        return GenerationOptions()
    payload = load_payload(path) or {}
    if not isinstance(payload, dict):
        raise ConfigLoadError(f"{path} must contain a mapping at the top-level")
    return GenerationOptions.model_validate(payload)


__all__ = ["resolve_engine", "build_service", "load_options", "load_payload"]
