"""Routeforge command-line interface.

What:
  Provide a Typer-based entry point exposing the policy operations to
  operators: inspect and validate templates, replace collections, author rules
  in batches, apply presets, render or generate artifacts, and refresh
  rule-sets.

Why:
  Routers are administered over SSH and from cron jobs. A scriptable CLI with
  predictable exit codes lets operators drive the same validated core the
  editing surface uses.

How:
  A callback loads the runtime configuration once per invocation; commands
  build the service through :mod:`routeforge._wiring` and print plain text.
  Validation errors are printed one per line.

Interfaces:
  ``app`` (Typer application) and ``main``.

Invariants & Safety:
  - Exit codes follow shell expectations: ``0`` success, ``1`` validation
    failure, rejected verdict, or load error.
"""
from __future__ import annotations

import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

import typer

from . import _wiring
from .config.loader import ConfigLoadError, dump_yaml, load_runtime_config, parse_template
from .config.schema import ConditionKind, EngineType, Rule, RuntimeConfig, SchemaError
from .core.refresh import RuleSetStatus
from .core.validator import validate as validate_template
from .errors import (
    CoreRunnerError,
    DocumentError,
    GenerationError,
    UnknownPresetError,
    UnknownRuleSetError,
    ValidationError,
    format_errors,
)
from .service import PolicyService

app = typer.Typer(help="Routeforge proxy policy manager", no_args_is_help=True)

LOGGER = logging.getLogger("routeforge.cli")


class Collection(str, Enum):
    GROUPS = "groups"
    RULES = "rules"
    RULE_SETS = "rule-sets"


_ENGINE_OPTION = typer.Option(None, "--engine", "-e", help="Target engine; defaults to the configured engine")


def _fail(message: str) -> typer.Exit:
    typer.echo(message, err=True)
    return typer.Exit(code=1)


def _print_errors(errors: Iterable[ValidationError]) -> None:
    typer.echo(format_errors(errors))


def _runtime(ctx: typer.Context) -> RuntimeConfig:
    try:
        return load_runtime_config(ctx.obj)
    except ConfigLoadError as exc:
        LOGGER.error("runtime_load_failed: %s", exc)
        raise _fail(str(exc)) from exc


def _service(ctx: typer.Context) -> PolicyService:
    return _wiring.build_service(_runtime(ctx))


def _engine(ctx: typer.Context, engine: Optional[EngineType]) -> EngineType:
    return _wiring.resolve_engine(_runtime(ctx), engine.value if engine else None)


def _format_status(status: RuleSetStatus) -> str:
    parts = [status.tag, status.state.value]
    if status.size is not None:
        parts.append(f"{status.size}B")
    if status.error:
        parts.append(status.error)
    return "\t".join(parts)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to routeforge.yaml"),
) -> None:
    """Record the configuration path for the selected command."""

    ctx.obj = config


@app.command("show")
def show(ctx: typer.Context, engine: Optional[EngineType] = _ENGINE_OPTION) -> None:
    """Print the stored template of an engine as YAML."""

    target = _engine(ctx, engine)
    service = _service(ctx)
    typer.echo(dump_yaml(service.get_template(target).to_document()), nl=False)


@app.command("validate")
def validate(
    ctx: typer.Context,
    engine: Optional[EngineType] = _ENGINE_OPTION,
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Validate a template file instead of the store"),
) -> None:
    """Validate a template against an engine and list every violation."""

    target = _engine(ctx, engine)
    try:
        if file is not None:
            template = parse_template(file.read_text(encoding="utf-8"), file)
        else:
            template = _service(ctx).get_template(target)
    except (ConfigLoadError, OSError) as exc:
        raise _fail(str(exc)) from exc
    report = validate_template(template, target)
    if not report.ok:
        _print_errors(report.errors)
        raise typer.Exit(code=1)
    typer.echo(f"{target.value} template is valid")


@app.command("preview")
def preview(
    ctx: typer.Context,
    engine: Optional[EngineType] = _ENGINE_OPTION,
    options: Optional[Path] = typer.Option(None, "--options", "-o", help="Generation options file"),
) -> None:
    """Render the artifact without writing it."""

    target = _engine(ctx, engine)
    try:
        text = _service(ctx).preview(target, _wiring.load_options(options))
    except (ConfigLoadError, SchemaError) as exc:
        raise _fail(str(exc)) from exc
    except GenerationError as exc:
        _print_errors(exc.errors)
        raise _fail(str(exc)) from exc
    typer.echo(text, nl=False)


@app.command("generate")
def generate(
    ctx: typer.Context,
    engine: Optional[EngineType] = _ENGINE_OPTION,
    options: Optional[Path] = typer.Option(None, "--options", "-o", help="Generation options file"),
    check: bool = typer.Option(True, "--check/--no-check", help="Ask the proxy core to verify the artifact"),
) -> None:
    """Write the artifact for an engine and report the proxy-core verdict."""

    target = _engine(ctx, engine)
    try:
        result = _service(ctx).generate(target, _wiring.load_options(options), check=check)
    except (ConfigLoadError, SchemaError, CoreRunnerError) as exc:
        raise _fail(str(exc)) from exc
    except GenerationError as exc:
        _print_errors(exc.errors)
        raise _fail(str(exc)) from exc
    for warning in result.artifact.warnings:
        typer.echo(f"warning: {warning}")
    typer.echo(f"{result.path} ({result.reason})")
    if result.verdict is not None:
        if not result.verdict.accepted:
            typer.echo(f"rejected by {target.value}: {result.verdict.message}")
            raise typer.Exit(code=1)
        typer.echo(f"accepted by {target.value}")


@app.command("reset")
def reset(
    ctx: typer.Context,
    engine: Optional[EngineType] = _ENGINE_OPTION,
    keep_custom_rules: bool = typer.Option(False, "--keep-custom-rules", help="Keep rules not present in the defaults"),
) -> None:
    """Restore the default template of an engine."""

    target = _engine(ctx, engine)
    template = _service(ctx).reset_template(target, preserve_custom_rules=keep_custom_rules)
    typer.echo(f"{target.value} template reset ({len(template.groups)} groups, {len(template.rules)} rules)")


@app.command("presets")
def presets(ctx: typer.Context, engine: Optional[EngineType] = typer.Option(None, "--engine", "-e")) -> None:
    """List the built-in presets."""

    for preset in _service(ctx).list_presets(engine):
        typer.echo(f"{preset.id}\t{preset.engine.value}\t{preset.description}")


@app.command("apply-preset")
def apply_preset(ctx: typer.Context, preset_id: str = typer.Argument(..., help="Preset identifier")) -> None:
    """Replace an engine template with a preset."""

    try:
        _service(ctx).apply_preset(preset_id)
    except UnknownPresetError as exc:
        raise _fail(f"unknown preset: {preset_id}") from exc
    typer.echo(f"preset {preset_id} applied")


@app.command("replace")
def replace(
    ctx: typer.Context,
    collection: Collection = typer.Argument(..., help="Collection to replace"),
    file: Path = typer.Argument(..., help="YAML or JSON list holding the whole new collection"),
    engine: Optional[EngineType] = _ENGINE_OPTION,
) -> None:
    """Replace a whole collection after validating the resulting template."""

    target = _engine(ctx, engine)
    service = _service(ctx)
    try:
        payload = _wiring.load_payload(file)
        if not isinstance(payload, list):
            raise ConfigLoadError(f"{file} must contain a list")
        if collection is Collection.GROUPS:
            result = service.replace_groups(target, payload)
        elif collection is Collection.RULES:
            result = service.replace_rules(target, payload)
        else:
            result = service.replace_rule_sets(target, payload)
    except (ConfigLoadError, SchemaError) as exc:
        raise _fail(str(exc)) from exc
    if not result.ok:
        _print_errors(result.errors)
        raise typer.Exit(code=1)
    typer.echo(f"{collection.value} replaced for {target.value}")


@app.command("add-rules")
def add_rules(
    ctx: typer.Context,
    kind: ConditionKind = typer.Argument(..., help="Condition kind applied to every line"),
    source: str = typer.Argument("-", help="File with one payload per line, '-' for stdin"),
    target_tag: Optional[str] = typer.Option(None, "--target", "-t", help="Target group or sentinel"),
    no_resolve: bool = typer.Option(False, "--no-resolve", help="Set no-resolve on every rule"),
    engine: Optional[EngineType] = _ENGINE_OPTION,
) -> None:
    """Add one rule per payload line, keeping the match rule last."""

    target = _engine(ctx, engine)
    try:
        text = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
        draft = Rule(kind=kind, target=target_tag, no_resolve=no_resolve)
    except OSError as exc:
        raise _fail(f"Unable to read {source}: {exc}") from exc
    result = _service(ctx).add_rules(target, draft, text)
    if not result.ok:
        _print_errors(result.errors)
        raise typer.Exit(code=1)
    typer.echo(f"{len(result.template.rules)} rules in {target.value} template")


@app.command("import")
def import_document(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="Existing engine artifact to read back"),
    engine: Optional[EngineType] = _ENGINE_OPTION,
) -> None:
    """Replace an engine template with one read from an engine artifact."""

    target = _engine(ctx, engine)
    try:
        result = _service(ctx).import_document(target, file.read_text(encoding="utf-8"))
    except (DocumentError, OSError) as exc:
        raise _fail(str(exc)) from exc
    if not result.ok:
        _print_errors(result.errors)
        raise typer.Exit(code=1)
    typer.echo(f"{target.value} template imported from {file}")


@app.command("refresh")
def refresh(
    ctx: typer.Context,
    tag: Optional[str] = typer.Argument(None, help="Refresh a single rule-set"),
    engine: Optional[EngineType] = _ENGINE_OPTION,
) -> None:
    """Download remote rule-sets and print one status line per rule-set."""

    target = _engine(ctx, engine)
    service = _service(ctx)
    try:
        if tag is not None:
            statuses: List[RuleSetStatus] = [service.refresh_rule_set(target, tag)]
        else:
            statuses = list(service.refresh_all_rule_sets(target).statuses.values())
    except UnknownRuleSetError as exc:
        raise _fail(f"unknown rule-set: {tag}") from exc
    finally:
        service.close()
    for status in statuses:
        typer.echo(_format_status(status))


def main() -> None:
    """Console script entry point."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
