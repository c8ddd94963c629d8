"""Render, preview, and generate proxy-core artifacts from stored templates.

What:
  Turn the persisted policy template of an engine into the engine's artifact
  text, write it to the output directory, and optionally hand it to the proxy
  core for an acceptance verdict.

Why:
  Preview and diff views are only meaningful when rendering is deterministic,
  and proxy cores reload on every file touch. Rendering is therefore a function of template, options, and
  which rule-set files are already downloaded, and generation writes the
  artifact only when its checksum moved.

How:
  :meth:`Generator.render` re-validates the stored template for the engine,
  resolves each rule-set to its file under the rule-set directory, asks
  the adapter registry for the engine document, serialises it, and checksums
  the text. Downloaded rule-sets are referenced as local files. :meth:`Generator.generate` compares against the file on
  disk through :mod:`routeforge.config.watcher`, writes atomically, and relays
  the runner verdict verbatim.

Interfaces:
  :class:`Generator`, :class:`RenderedArtifact`, :class:`GenerationResult`.

Invariants & Safety:
  - Rendering never mutates the store.
  - A rejected verdict never rolls back the committed template; the two layers
    are independent.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..adapters import get_adapter
from ..adapters.base import RuleSetFile
from ..config.loader import write_atomic
from ..config.schema import EngineType, GenerationOptions, Template
from ..config.template_store import TemplateStore
from ..config.watcher import artifact_checksum, change_reason, has_changed
from ..errors import ExternalVerdictFailure, GenerationError
from ..external.runner import CoreRunner, ExternalVerdict
from ..utils.ids import checksum
from ..utils.logging import JsonLogger, get_logger
from .refresh import rule_set_path
from .validator import validate


@dataclass
class RenderedArtifact:
    """Artifact text for one engine along with adapter warnings."""

    engine: EngineType
    text: str
    warnings: List[str] = field(default_factory=list)
    checksum: str = ""


@dataclass
class GenerationResult:
    """Outcome of :meth:`Generator.generate`.

    Attributes:
      artifact: Rendered artifact.
      path: File the artifact lives in.
      changed: Whether the file was rewritten.
      reason: ``bootstrap``, ``checksum change`` or ``unchanged``.
      verdict: Proxy-core verdict, ``None`` when no check ran.
    """

    artifact: RenderedArtifact
    path: Path
    changed: bool
    reason: str
    verdict: Optional[ExternalVerdict] = None


class Generator:
    """Compile stored templates into proxy-core artifacts."""

    def __init__(
        self,
        store: TemplateStore,
        output_dir: Path,
        *,
        runner: Optional[CoreRunner] = None,
        ruleset_dir: Optional[Path] = None,
        logger: Optional[JsonLogger] = None,
    ) -> None:
        self._store = store
        self._output_dir = Path(output_dir)
        self._ruleset_dir = Path(ruleset_dir) if ruleset_dir is not None else None
        self._runner = runner
        self._logger = logger or get_logger("routeforge.generator")

    def artifact_path(self, engine: Union[EngineType, str]) -> Path:
        return self._output_dir / EngineType(engine).value / get_adapter(engine).artifact_name

    def rule_set_files(self, engine: EngineType, template: Template) -> Optional[Dict[str, RuleSetFile]]:
        """Resolve where each rule-set of ``template`` lives under the rule-set directory.

        Paths are absolute so the proxy core finds them regardless of its
        working directory. Returns ``None`` when no rule-set directory is set.
        """

        if self._ruleset_dir is None:
            return None
        files: Dict[str, RuleSetFile] = {}
        for rule_set in template.rule_sets:
            path = rule_set_path(self._ruleset_dir, engine, rule_set).absolute()
            files[rule_set.tag] = RuleSetFile(path=str(path), exists=path.is_file())
        return files

    def render(self, engine: Union[EngineType, str], options: Optional[GenerationOptions] = None) -> RenderedArtifact:
        """Render the stored template of ``engine`` into artifact text.

        Raises:
          GenerationError: When the stored template does not validate for the
            engine or the adapter meets an unrepresentable construct.
        """

        engine = EngineType(engine)
        options = options or GenerationOptions()
        template = self._store.get(engine)
        report = validate(template, engine)
        if not report.ok:
            raise GenerationError(f"{engine.value} template is not valid for generation", report.errors)
        adapter = get_adapter(engine)
        output = adapter.to_document(template, options, self.rule_set_files(engine, template))
        text = adapter.dumps(output.document)
        return RenderedArtifact(engine=engine, text=text, warnings=list(output.warnings), checksum=checksum(text))

    def preview(self, engine: Union[EngineType, str], options: Optional[GenerationOptions] = None) -> str:
        return self.render(engine, options).text

    def generate(
        self,
        engine: Union[EngineType, str],
        options: Optional[GenerationOptions] = None,
        *,
        check: bool = True,
        strict: bool = False,
    ) -> GenerationResult:
        """Render, persist when changed, and check the artifact.

        Args:
          engine: Engine to generate for.
          options: Generation options; defaults apply when omitted.
          check: Hand the artifact to the configured runner.
          strict: Raise :class:`ExternalVerdictFailure` on a rejected verdict
            instead of returning it.

        Returns:
          The generation result carrying the verdict unchanged.
        """

        engine = EngineType(engine)
        artifact = self.render(engine, options)
        path = self.artifact_path(engine)
        previous = artifact_checksum(path)
        changed = has_changed(previous, artifact.checksum)
        reason = change_reason(previous, artifact.checksum)
        if changed:
            write_atomic(path, artifact.text.encode("utf-8"))
        for warning in artifact.warnings:
            self._logger.warning("generation warning", engine=engine.value, warning=warning)
        self._logger.info(
            "artifact generated",
            engine=engine.value,
            path=str(path),
            changed=changed,
            reason=reason,
            checksum=artifact.checksum,
        )

        verdict: Optional[ExternalVerdict] = None
        if check and self._runner is not None and self._runner.available(engine):
            verdict = self._runner.check(engine, path)
            if not verdict.accepted:
                self._logger.warning("artifact rejected by proxy core", engine=engine.value, verdict=verdict.message)
                if strict:
                    raise ExternalVerdictFailure(engine.value, verdict.message)
        return GenerationResult(artifact=artifact, path=path, changed=changed, reason=reason, verdict=verdict)


__all__ = ["Generator", "RenderedArtifact", "GenerationResult"]
