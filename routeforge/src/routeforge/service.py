"""Policy service exposing the logical operations of routeforge.

What:
  Bundle the template store, generator, and rule-set refresher behind one
  object offering get/replace/reset/preset, preview/generate, refresh, batch
  rule authoring, and import of existing engine documents.

Why:
  Callers (the CLI today, an HTTP binding tomorrow) should not know how the
  pieces are wired together. A single facade keeps transport concerns out of
  the core and gives tests a seam for fakes.

How:
  Every method delegates to the collaborator owning the concern and logs the
  outcome through :class:`~routeforge.utils.logging.JsonLogger`. Nothing here
  holds state beyond references to the collaborators.

Interfaces:
  :class:`PolicyService`.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union

from .adapters import get_adapter
from .config.defaults import Preset, list_presets
from .config.schema import EngineType, GenerationOptions, ProxyGroup, Rule, RuleSet, Template
from .config.template_store import ReplaceResult, TemplateStore
from .core.batch import expand_batch, insert_rules
from .core.generator import GenerationResult, Generator
from .core.refresh import RefreshReport, RuleSetRefresher, RuleSetStatus, StatusCallback
from .utils.logging import JsonLogger, get_logger

EngineRef = Union[EngineType, str]


class PolicyService:
    """Facade over the routeforge core used by every entry point."""

    def __init__(
        self,
        store: TemplateStore,
        generator: Generator,
        refresher: RuleSetRefresher,
        *,
        logger: Optional[JsonLogger] = None,
    ) -> None:
        self.store = store
        self.generator = generator
        self.refresher = refresher
        self._logger = logger or get_logger("routeforge.service")

    # Template editing

    def get_template(self, engine: EngineRef) -> Template:
        return self.store.get(EngineType(engine))

    def replace_groups(self, engine: EngineRef, groups: Sequence[Union[ProxyGroup, Dict[str, Any]]]) -> ReplaceResult:
        return self.store.replace_groups(EngineType(engine), groups)

    def replace_rules(self, engine: EngineRef, rules: Sequence[Union[Rule, Dict[str, Any]]]) -> ReplaceResult:
        return self.store.replace_rules(EngineType(engine), rules)

    def replace_rule_sets(self, engine: EngineRef, rule_sets: Sequence[Union[RuleSet, Dict[str, Any]]]) -> ReplaceResult:
        return self.store.replace_rule_sets(EngineType(engine), rule_sets)

    def add_rules(self, engine: EngineRef, draft: Rule, text: str) -> ReplaceResult:
        """Expand a multi-line payload into rules and add them before ``match``.

        The whole expanded batch is validated and committed as one replace.
        """

        engine = EngineType(engine)
        new_rules = expand_batch(draft, text, engine)
        current = self.store.get(engine)
        result = self.store.replace_rules(engine, insert_rules(current.rules, new_rules))
        self._logger.info("batch rules submitted", engine=engine.value, count=len(new_rules), ok=result.ok)
        return result

    def reset_template(self, engine: EngineRef, *, preserve_custom_rules: bool = False) -> Template:
        return self.store.reset(EngineType(engine), preserve_custom_rules=preserve_custom_rules)

    def list_presets(self, engine: Optional[EngineRef] = None) -> List[Preset]:
        return list_presets(EngineType(engine) if engine is not None else None)

    def apply_preset(self, preset_id: str) -> Template:
        return self.store.apply_preset(preset_id)

    def import_document(self, engine: EngineRef, text: str) -> ReplaceResult:
        """Read an engine artifact back and replace the stored template with it.

        The current template is the reference used to restore metadata the
        engine grammar cannot carry.

        Raises:
          DocumentError: When ``text`` is not a readable engine document.
        """

        engine = EngineType(engine)
        adapter = get_adapter(engine)
        template = adapter.from_document(adapter.loads(text), reference=self.store.get(engine))
        result = self.store.replace_template(engine, template)
        self._logger.info("engine document imported", engine=engine.value, ok=result.ok)
        return result

    # Artifacts

    def preview(self, engine: EngineRef, options: Optional[GenerationOptions] = None) -> str:
        return self.generator.preview(engine, options)

    def generate(
        self,
        engine: EngineRef,
        options: Optional[GenerationOptions] = None,
        *,
        check: bool = True,
        strict: bool = False,
    ) -> GenerationResult:
        return self.generator.generate(engine, options, check=check, strict=strict)

    # Rule-set refresh

    def refresh_rule_set(self, engine: EngineRef, tag: str, *, on_update: Optional[StatusCallback] = None) -> RuleSetStatus:
        return self.refresher.refresh(engine, tag, on_update=on_update)

    def refresh_all_rule_sets(self, engine: EngineRef, *, on_update: Optional[StatusCallback] = None) -> RefreshReport:
        return self.refresher.refresh_all(engine, on_update=on_update)

    def close(self) -> None:
        self.refresher.close()


__all__ = ["PolicyService"]
