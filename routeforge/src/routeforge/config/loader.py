"""Strict loaders and serializers for routeforge configuration documents.

What:
  Provide helpers to locate, parse, validate, and serialise the runtime
  configuration (``routeforge.yaml``) and the canonical per-engine template
  documents persisted by the template store.

Why:
  Configuration and templates live outside the application bundle and can be
  malformed or edited by hand. Centralising the parsing logic enforces
  consistent validation and hashing so that the store, generator, and CLI can
  trust the resulting models.

How:
  Resolve candidate file locations based on explicit parameters, environment
  variables, and defaults. Parse YAML payloads with PyYAML's safe loader,
  validate them using Pydantic models, and expose deterministic hashing to
  track template revisions. Writes go through a temporary sibling file and
  ``os.replace`` so readers never observe a partial document.

Interfaces:
  - :func:`load_runtime_config` / :func:`get_runtime_config` /
    :func:`reset_runtime_config`: Manage ``routeforge.yaml`` discovery and
    caching.
  - :func:`load_template` / :func:`dump_template`: Convert template YAML to and
    from :class:`~routeforge.config.schema.Template`.
  - :func:`write_atomic`: Replace a file's content atomically.
  - :class:`LoadedDocument`: Bundle parsed models with their raw text and
    checksums.

Invariants:
  - All external payloads must pass strict Pydantic validation before they are
    returned to callers.
  - The runtime configuration cache respects explicit reload requests and the
    precedence order of candidate paths.

Safety/Performance:
  - File operations avoid silent failures by converting OS errors into typed
    exceptions that include path context.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple, Union

import yaml

from ..utils.ids import checksum
from .schema import RuntimeConfig, SchemaError, Template


class ConfigLoadError(Exception):
    """Base error for configuration parsing or validation failures.

    What:
      Represent fatal issues encountered while reading or validating
      configuration documents.

    Why:
      Grouping failures under a single type allows callers to handle user input
      mistakes separately from infrastructure errors such as proxy-core
      invocation problems.
    """


class RuntimeConfigError(ConfigLoadError):
    """Error raised when ``routeforge.yaml`` cannot be loaded or validated."""


class TemplateLoadError(ConfigLoadError):
    """Error raised when a persisted template document is unreadable or invalid."""


@dataclass
class LoadedDocument:
    """Bundle parsed configuration models with their raw representation.

    Attributes:
      model: The validated Pydantic model.
      raw: The canonical text representation of the payload.
      checksum: SHA-256 checksum prefixed with ``sha256:`` for log correlation.
    """

    model: Any
    raw: str
    checksum: str


_CONFIG_ENV = "ROUTEFORGE_CONFIG_PATH"
_DEFAULT_LOCATIONS: Tuple[Path, ...] = (
    Path("routeforge.yaml"),
    Path("/etc/routeforge/config.yaml"),
)
_RUNTIME_CACHE: Optional[Tuple[Path, RuntimeConfig]] = None


def _candidate_paths(path: Optional[Path]) -> Iterable[Path]:
    """Yield configuration file locations in priority order.

    What:
      Produce the ordered list of paths that should be inspected for
      ``routeforge.yaml``.

    Why:
      Operators override the configuration path through a function argument,
      the ``ROUTEFORGE_CONFIG_PATH`` environment variable, or well-known
      defaults; this helper captures that precedence chain.

    Args:
      path: Explicit path requested by the caller, or ``None`` to rely on
        environment/defaults.

    Yields:
      Candidate paths ordered from most specific to least specific.
    """

    seen: set[Path] = set()
    if path is not None:
        candidate = path.expanduser()
        seen.add(candidate)
        yield candidate
    env_path = os.environ.get(_CONFIG_ENV)
    if env_path:
        candidate = Path(env_path).expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate
    for default in _DEFAULT_LOCATIONS:
        candidate = default.expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate


def _parse_yaml_mapping(text: str, source: Union[Path, str], error: type) -> dict[str, Any]:
    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise error(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(payload, dict):
        raise error(f"{source} must contain a mapping at the top-level")
    return payload


def _load_runtime_from_path(path: Path) -> RuntimeConfig:
    """Load and validate ``routeforge.yaml`` from a specific path.

    Raises:
      RuntimeConfigError: If the file cannot be read or fails validation.
    """

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise RuntimeConfigError(f"Configuration file missing: {path}") from exc
    except OSError as exc:  # pragma: no cover - filesystem surface
        raise RuntimeConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    payload = _parse_yaml_mapping(text, path, RuntimeConfigError)
    try:
        return RuntimeConfig.model_validate(payload)
    except SchemaError as exc:
        raise RuntimeConfigError(f"Invalid {path.name}: {exc}") from exc


def load_runtime_config(
    path: Optional[Path | str] = None,
    *,
    reload: bool = False,
) -> RuntimeConfig:
    """Resolve, parse, and cache the runtime configuration.

    What:
      Locate ``routeforge.yaml`` using the configured precedence chain, parse
      it, and return a validated :class:`RuntimeConfig` instance.

    Why:
      The CLI and the service wiring both require runtime settings; caching
      avoids repeated disk IO while ``reload`` enables deterministic refreshes
      during tests.

    How:
      Convert string paths to :class:`~pathlib.Path`, consult the global cache
      unless ``reload`` is requested, iterate through candidate paths until a
      readable file is found, and store the successful result for future calls.

    Args:
      path: Optional explicit location of the configuration file.
      reload: When ``True`` forces a fresh load bypassing the cache.

    Returns:
      The validated runtime configuration.

    Raises:
      RuntimeConfigError: If no suitable configuration file can be located or
      validated.
    """

    global _RUNTIME_CACHE

    requested_path = Path(path).expanduser() if isinstance(path, (str, Path)) else None
    if not reload and _RUNTIME_CACHE is not None:
        cached_path, cached_config = _RUNTIME_CACHE
        if requested_path is None or cached_path == requested_path:
            return cached_config

    errors: list[str] = []
    for candidate in _candidate_paths(requested_path):
        if not candidate.exists():
            errors.append(str(candidate))
            continue
        config = _load_runtime_from_path(candidate)
        _RUNTIME_CACHE = (candidate, config)
        return config

    searched = ", ".join(errors) if errors else "<none>"
    raise RuntimeConfigError(f"Unable to locate routeforge.yaml (searched: {searched})")


def get_runtime_config() -> RuntimeConfig:
    """Return the cached runtime configuration, loading it on demand."""

    return load_runtime_config()


def reset_runtime_config() -> None:
    """Clear the runtime configuration cache.

    Test suites and long-running processes use this to force a reload when
    configuration files change.
    """

    global _RUNTIME_CACHE
    _RUNTIME_CACHE = None


def dump_yaml(payload: Any) -> str:
    """Serialise ``payload`` with the project's canonical YAML settings."""

    return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True, default_flow_style=False)


def parse_template(text: str, source: Union[Path, str] = "<template>") -> Template:
    """Convert template YAML into a validated :class:`Template`.

    Raises:
      TemplateLoadError: If parsing fails or the document violates the schema.
    """

    payload = _parse_yaml_mapping(text, source, TemplateLoadError)
    try:
        return Template.model_validate(payload)
    except SchemaError as exc:
        raise TemplateLoadError(f"Invalid template {source}: {exc}") from exc


def load_template(source: bytes, origin: Union[Path, str] = "<template>") -> LoadedDocument:
    """Parse and validate a persisted template payload provided as bytes.

    The returned document carries the canonical re-serialisation, so two
    payloads that differ only in formatting share a checksum.
    """

    model = parse_template(source.decode("utf-8"), origin)
    text = dump_yaml(model.to_document())
    return LoadedDocument(model=model, raw=text, checksum=checksum(text))


def dump_template(model: Template) -> bytes:
    """Serialise a :class:`Template` into canonical YAML bytes."""

    return dump_yaml(model.to_document()).encode("utf-8")


def write_atomic(path: Path, data: bytes) -> None:
    """Replace ``path`` with ``data`` without exposing a partially written file.

    Raises:
      ConfigLoadError: When the directory cannot be created or written.
    """

    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as exc:
        raise ConfigLoadError(f"Unable to write {path}: {exc}") from exc


__all__ = [
    "ConfigLoadError",
    "RuntimeConfigError",
    "TemplateLoadError",
    "LoadedDocument",
    "load_runtime_config",
    "get_runtime_config",
    "reset_runtime_config",
    "dump_yaml",
    "parse_template",
    "load_template",
    "dump_template",
    "write_atomic",
]
