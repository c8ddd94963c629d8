"""Routeforge template persistence with validated, atomic commits.

What:
  Hold one policy :class:`~routeforge.config.schema.Template` per engine,
  persisted as canonical YAML under ``<state_dir>/templates/``, and expose the
  whole-collection replace, reset, and preset operations used by the editing
  surface.

Why:
  The persisted template is the source of truth from which every engine
  artifact is derived. A half-applied edit, or one that leaves a rule pointing
  at a deleted group, would propagate straight into a broken proxy-core
  configuration, so every change is validated against the complete resulting
  template and either committed whole or not at all.

How:
  Each engine owns a :class:`threading.Lock`. A replace builds the candidate
  template from the new collection plus the two untouched ones, validates it,
  and only then writes the YAML through :func:`write_atomic` and swaps the
  in-memory copy. Missing files are bootstrapped with the engine's default
  template on first access.

Interfaces:
  ``TemplateStore`` exposing ``get``, ``replace_groups``, ``replace_rules``,
  ``replace_rule_sets``, ``replace_template``, ``reset``, ``apply_preset``,
  ``checksum``, and ``delete``; :class:`ReplaceResult`.

Invariants & Safety:
  - A rejected replace leaves both the file and the in-memory template
    untouched.
  - Locks are held only for the in-memory validate-and-commit step plus the
    local file write; no network call happens under a lock.
  - Callers always receive deep copies, so mutating a returned template never
    alters store state.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError as _PydanticValidationError

from ..core.batch import insert_rules
from ..core.validator import validate
from ..errors import ValidationError
from ..utils.ids import checksum as _checksum
from ..utils.logging import JsonLogger, get_logger
from .defaults import default_template, get_preset
from .loader import dump_template, load_template, write_atomic
from .schema import EngineType, ProxyGroup, Rule, RuleSet, SchemaError, Template

_Model = TypeVar("_Model", bound=BaseModel)


@dataclass
class ReplaceResult:
    """Outcome of a replace operation.

    Attributes:
      ok: Whether the candidate template was committed.
      errors: Validation errors explaining a rejection.
      template: The committed template on success, the unchanged prior
        template on rejection.
    """

    ok: bool
    errors: List[ValidationError] = field(default_factory=list)
    template: Optional[Template] = None


def _coerce(model: Type[_Model], items: Iterable[Union[_Model, Dict[str, Any]]]) -> List[_Model]:
    result: List[_Model] = []
    for item in items:
        if isinstance(item, model):
            result.append(item)
            continue
        try:
            result.append(model.model_validate(item))
        except _PydanticValidationError as exc:
            raise SchemaError(str(exc)) from exc
    return result


class TemplateStore:
    """Filesystem-backed store holding one template per engine.

    What:
      Encapsulates template persistence and the validate-then-commit contract
      so callers interact with typed templates instead of raw YAML.

    Why:
      Centralising commits guarantees the referential invariants hold for
      every persisted template and gives a single place to serialise
      concurrent writers of the same engine.

    How:
      Lazily loads each engine's document on first access, keeps the parsed
      template in memory, and rewrites the file atomically on every commit.
    """

    def __init__(self, state_dir: Path, *, logger: Optional[JsonLogger] = None):
        """Create a store rooted at ``state_dir``.

        Args:
          state_dir: Runtime state directory; templates live in its
            ``templates`` subdirectory.
          logger: Optional structured logger, defaulting to the store component.
        """

        self._dir = Path(state_dir) / "templates"
        self._locks: Dict[EngineType, threading.Lock] = {engine: threading.Lock() for engine in EngineType}
        self._cache: Dict[EngineType, Template] = {}
        self._logger = logger or get_logger("routeforge.store")

    def path_for(self, engine: EngineType) -> Path:
        return self._dir / f"{EngineType(engine).value}.yaml"

    def get(self, engine: EngineType) -> Template:
        """Return a copy of the current template for ``engine``.

        The engine's default template is persisted first when no document
        exists yet.
        """

        engine = EngineType(engine)
        with self._locks[engine]:
            return self._load_locked(engine).model_copy(deep=True)

    def replace_groups(self, engine: EngineType, groups: Sequence[Union[ProxyGroup, Dict[str, Any]]]) -> ReplaceResult:
        return self._replace(engine, groups=_coerce(ProxyGroup, groups))

    def replace_rules(self, engine: EngineType, rules: Sequence[Union[Rule, Dict[str, Any]]]) -> ReplaceResult:
        return self._replace(engine, rules=_coerce(Rule, rules))

    def replace_rule_sets(self, engine: EngineType, rule_sets: Sequence[Union[RuleSet, Dict[str, Any]]]) -> ReplaceResult:
        return self._replace(engine, rule_sets=_coerce(RuleSet, rule_sets))

    def replace_template(self, engine: EngineType, template: Template) -> ReplaceResult:
        """Replace all three collections at once, under the same contract."""

        return self._replace(
            engine,
            groups=template.groups,
            rules=template.rules,
            rule_sets=template.rule_sets,
        )

    def reset(self, engine: EngineType, *, preserve_custom_rules: bool = False) -> Template:
        """Restore the built-in default template for ``engine``.

        Args:
          engine: Engine whose template is reset.
          preserve_custom_rules: Keep rules absent from the defaults, inserted
            before the terminal match rule. Custom rules that would not validate
            against the default groups and rule-sets are dropped and logged.

        Returns:
          The committed template.
        """

        engine = EngineType(engine)
        with self._locks[engine]:
            template = default_template(engine)
            if preserve_custom_rules:
                template = self._merge_custom_rules(engine, self._load_locked(engine), template)
            self._commit_locked(engine, template, event="template reset")
            return template.model_copy(deep=True)

    def apply_preset(self, preset_id: str) -> Template:
        """Replace the preset's engine template with the preset contents.

        Raises:
          UnknownPresetError: When ``preset_id`` is not registered.
        """

        preset = get_preset(preset_id)
        template = preset.build()
        with self._locks[preset.engine]:
            self._commit_locked(preset.engine, template, event="preset applied", preset=preset_id)
        return template.model_copy(deep=True)

    def checksum(self, engine: EngineType) -> str:
        """Return the checksum of the canonical YAML for ``engine``'s template."""

        return _checksum(dump_template(self.get(engine)))

    def delete(self, engine: EngineType) -> None:
        """Remove the persisted template; the next access recreates defaults."""

        engine = EngineType(engine)
        with self._locks[engine]:
            self._cache.pop(engine, None)
            self.path_for(engine).unlink(missing_ok=True)
            self._logger.info("template deleted", engine=engine.value)

    # ---------------------------------------------------------------- private

    def _replace(self, engine: EngineType, **collections: Any) -> ReplaceResult:
        engine = EngineType(engine)
        with self._locks[engine]:
            current = self._load_locked(engine)
            candidate = current.replace(**collections)
            report = validate(candidate, engine)
            if not report.ok:
                self._logger.warning(
                    "template change rejected",
                    engine=engine.value,
                    collections=sorted(collections),
                    errors=[str(error) for error in report.errors],
                )
                return ReplaceResult(ok=False, errors=report.errors, template=current.model_copy(deep=True))
            self._commit_locked(engine, candidate, event="template committed", collections=sorted(collections))
            return ReplaceResult(ok=True, template=candidate.model_copy(deep=True))

    def _merge_custom_rules(self, engine: EngineType, current: Template, defaults: Template) -> Template:
        custom = [rule for rule in current.rules if not rule.is_match_all and rule not in defaults.rules]
        kept: List[Rule] = []
        for rule in custom:
            trial = defaults.replace(rules=insert_rules(defaults.rules, kept + [rule]))
            if validate(trial, engine).ok:
                kept.append(rule)
            else:
                self._logger.warning("custom rule dropped on reset", engine=engine.value, rule=rule.model_dump(mode="json"))
        return defaults.replace(rules=insert_rules(defaults.rules, kept))

    def _load_locked(self, engine: EngineType) -> Template:
        cached = self._cache.get(engine)
        if cached is not None:
            return cached
        path = self.path_for(engine)
        try:
            document = load_template(path.read_bytes(), path)
        except FileNotFoundError:
            template = default_template(engine)
            self._commit_locked(engine, template, event="template bootstrapped")
            return template
        self._cache[engine] = document.model
        return document.model

    def _commit_locked(self, engine: EngineType, template: Template, *, event: str, **context: Any) -> None:
        payload = dump_template(template)
        write_atomic(self.path_for(engine), payload)
        self._cache[engine] = template
        self._logger.info(event, engine=engine.value, checksum=_checksum(payload), **context)


__all__ = ["TemplateStore", "ReplaceResult"]
