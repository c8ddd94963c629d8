"""Shared contract and helpers for engine adapters.

What:
  Describe the structural interface every engine adapter implements and hold
  the resolution helpers both adapters rely on: member list expansion for
  groups, enabled-group selection, and unused rule-set detection.

Why:
  Both grammars need identical answers to "which outbounds does this group
  point at once disabled groups are removed and ``use_all_outbounds`` is
  expanded". Computing that once keeps engine-specific code focused on syntax
  and guarantees both artifacts agree on membership.

How:
  :class:`EngineAdapter` is a :class:`typing.Protocol` so adapters stay plain
  classes without inheritance. :func:`resolve_members` walks a group's member
  list, spelling sentinels through a caller-provided mapping, and falls back to
  the direct sentinel when nothing remains.

Interfaces:
  :class:`EngineAdapter`, :class:`AdapterOutput`, :class:`RuleSetFile`, :func:`build_model`,
  :func:`enabled_groups`, :func:`resolve_members`, :func:`referenced_rule_sets`,
  :func:`unused_rule_set_warnings`, and the ``restore_*`` helpers used when
  reading a document back against a reference template.

Invariants & Safety:
  - Helpers never mutate the template or the options.
  - Member order follows the template order; expansion order follows the
    order of known outbounds.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Set, Type, TypeVar

from pydantic import BaseModel, ValidationError as _PydanticValidationError

from ..config.schema import (
    DIRECT,
    PROBING_KINDS,
    REJECT,
    ConditionKind,
    EngineType,
    GenerationOptions,
    GroupKind,
    ProxyGroup,
    Rule,
    RuleSet,
    RuleSetSource,
    Template,
    canonical_sentinel,
)
from ..errors import DocumentError
from ..utils.regexsafe import filter_tags

_ModelT = TypeVar("_ModelT", bound=BaseModel)


@dataclass
class AdapterOutput:
    """Engine document produced from a template plus non-fatal warnings."""

    document: Dict[str, Any]
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RuleSetFile:
    """On-disk location of a rule-set and whether a copy is already there."""

    path: str
    exists: bool = False


RuleSetFiles = Mapping[str, RuleSetFile]


class EngineAdapter(Protocol):
    """Protocol implemented by the per-engine translation strategies."""

    engine: EngineType
    artifact_name: str

    def to_document(
        self, template: Template, options: GenerationOptions, files: Optional[RuleSetFiles] = None
    ) -> AdapterOutput:
        """Compile ``template`` into the engine's document structure.

        ``files`` maps rule-set tags to their resolved files; a rule-set whose
        file exists is emitted as a local one pointing at that file.
        """

    def from_document(self, document: Mapping[str, Any], reference: Optional[Template] = None) -> Template:
        """Read an engine document back into the policy model."""

    def dumps(self, document: Mapping[str, Any]) -> str:
        """Serialise a document into artifact text."""

    def loads(self, text: str) -> Dict[str, Any]:
        """Parse artifact text into a document."""


def build_model(model: Type[_ModelT], label: str, **fields: Any) -> _ModelT:
    """Construct ``model`` from document fields, reporting bad values as :class:`DocumentError`."""

    try:
        return model(**fields)
    except _PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise DocumentError(f"{label} is malformed: {problems}") from exc


def enabled_groups(template: Template) -> List[ProxyGroup]:
    return [group for group in template.groups if group.enabled]


def resolve_members(
    group: ProxyGroup,
    template: Template,
    options: GenerationOptions,
    sentinels: Mapping[str, str],
) -> List[str]:
    """Return the concrete member list emitted for ``group``.

    Args:
      group: Group being compiled.
      template: Owning template, used to drop disabled group members.
      options: Generation options providing the known outbound tags.
      sentinels: Engine spelling for ``DIRECT`` and ``REJECT``.

    Returns:
      Ordered, de-duplicated member tags. Never empty: a group left without
      members points at the direct sentinel.
    """

    members: List[str] = []
    if group.use_all_outbounds:
        known = options.known_outbounds()
        if group.member_filter:
            members = filter_tags(group.member_filter, known) or known
        else:
            members = known
    else:
        enabled = {item.tag for item in template.groups if item.enabled}
        for member in group.members:
            sentinel = canonical_sentinel(member)
            if sentinel is not None:
                members.append(sentinels[sentinel])
            elif member in enabled:
                members.append(member)
    unique = list(dict.fromkeys(members))
    return unique or [sentinels[DIRECT]]


def referenced_rule_sets(template: Template) -> Set[str]:
    """Return every rule-set tag referenced by a rule, nested conditions included."""

    tags: Set[str] = set()
    for rule in template.rules:
        for condition in rule.iter_conditions():
            if condition.kind is ConditionKind.RULE_SET:
                tags.update(condition.payload)
    return tags


def unused_rule_set_warnings(template: Template) -> List[str]:
    used = referenced_rule_sets(template)
    return [
        f"rule-set '{rule_set.tag}' is declared but no rule references it"
        for rule_set in template.rule_sets
        if rule_set.tag not in used
    ]


_GROUP_METADATA = ("name", "description", "icon", "member_filter", "use_all_outbounds")
_GROUP_FILL = ("default_member", "test_url", "test_interval", "tolerance", "lazy", "hidden")


def _expected_members(group: ProxyGroup, template: Template) -> List[str]:
    identity = {DIRECT: DIRECT, REJECT: REJECT}
    enabled = {item.tag for item in template.groups if item.enabled}
    members = []
    for member in group.members:
        sentinel = canonical_sentinel(member)
        if sentinel is not None:
            members.append(identity[sentinel])
        elif member in enabled:
            members.append(member)
    return list(dict.fromkeys(members)) or [DIRECT]


def restore_groups(parsed: Sequence[ProxyGroup], reference: Optional[Template]) -> List[ProxyGroup]:
    """Merge metadata the engine grammar cannot carry back from ``reference``.

    What:
      Re-attaches presentation metadata, the ``urltest``/``fallback``
      distinction, ``use_all_outbounds`` intent, and disabled groups to groups
      read from an engine document.

    How:
      Groups are matched by tag. A parsed member list that equals what the
      reference group would have produced is replaced by the reference list,
      so pruned disabled members and the empty-group direct fallback round
      trip. Disabled reference groups are re-inserted at their reference
      position; groups unknown to the reference keep document order at the end.

    Args:
      parsed: Groups read from the engine document, members in model spelling.
      reference: Template previously rendered into that document, if known.

    Returns:
      Restored group list.
    """

    if reference is None:
        return list(parsed)
    by_tag = {group.tag: group for group in parsed}
    restored: Dict[str, ProxyGroup] = {}
    for group in parsed:
        ref = reference.group(group.tag)
        if ref is None:
            continue
        update: Dict[str, Any] = {name: getattr(ref, name) for name in _GROUP_METADATA}
        for name in _GROUP_FILL:
            if getattr(group, name) is None and getattr(ref, name) is not None:
                update[name] = getattr(ref, name)
        if group.kind is GroupKind.URLTEST and ref.kind in PROBING_KINDS:
            update["kind"] = ref.kind
        if ref.use_all_outbounds or group.members == _expected_members(ref, reference):
            update["members"] = list(ref.members)
        restored[group.tag] = group.model_copy(update=update)

    result: List[ProxyGroup] = []
    for ref in reference.groups:
        if ref.tag in restored:
            result.append(restored[ref.tag])
        elif not ref.enabled and ref.tag not in by_tag:
            result.append(ref.model_copy(deep=True))
    result.extend(group for group in parsed if group.tag not in restored)
    return result


def restore_rules(
    parsed: Sequence[Rule],
    reference: Optional[Template],
    carried: Sequence[str] = ("description",),
) -> List[Rule]:
    """Copy ``carried`` fields back from ``reference`` for rules left unchanged.

    Rules are matched by position; a rule counts as unchanged when it equals
    the reference rule on every field except the carried ones.
    """

    if reference is None:
        return list(parsed)
    result: List[Rule] = []
    for index, rule in enumerate(parsed):
        ref = reference.rules[index] if index < len(reference.rules) else None
        if ref is not None and _same_rule(rule, ref, carried):
            result.append(rule.model_copy(update={name: getattr(ref, name) for name in carried}))
        else:
            result.append(rule)
    return result


def _same_rule(left: Rule, right: Rule, carried: Sequence[str]) -> bool:
    def canonical(rule: Rule) -> Dict[str, Any]:
        data = rule.model_dump(exclude=set(carried))
        if rule.target is not None:
            data["target"] = canonical_sentinel(rule.target) or rule.target
        return data

    return canonical(left) == canonical(right)


def restore_rule_sets(
    parsed: Sequence[RuleSet],
    reference: Optional[Template],
    fields: Sequence[str] = ("description",),
) -> List[RuleSet]:
    """Copy ``fields`` back from ``reference`` for rule-sets matched by tag.

    Artifacts carry resolved file paths, so the reference ``path`` always wins.
    A local entry standing for a downloaded copy of a remote reference
    rule-set is read back as that remote rule-set.
    """

    if reference is None:
        return list(parsed)
    result: List[RuleSet] = []
    for rule_set in parsed:
        ref = reference.rule_set(rule_set.tag)
        if ref is None:
            result.append(rule_set)
            continue
        update = {name: getattr(ref, name) for name in fields}
        update["path"] = ref.path
        if rule_set.source is RuleSetSource.LOCAL and ref.source is RuleSetSource.REMOTE and not rule_set.url:
            for name in ("source", "url", "refresh_interval", "download_via"):
                update[name] = getattr(ref, name)
        result.append(rule_set.model_copy(update=update))
    return result


__all__ = [
    "AdapterOutput",
    "EngineAdapter",
    "RuleSetFile",
    "RuleSetFiles",
    "build_model",
    "enabled_groups",
    "resolve_members",
    "referenced_rule_sets",
    "unused_rule_set_warnings",
    "restore_groups",
    "restore_rules",
    "restore_rule_sets",
]
