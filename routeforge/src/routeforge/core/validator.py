"""Structural validation of policy templates before commit and generation.

What:
  Check a :class:`~routeforge.config.schema.Template` for referential
  integrity, tag uniqueness, match-all placement, group reference cycles, and
  (optionally) constructs a given engine grammar cannot express.

Why:
  A template that compiles into a proxy-core artifact with dangling outbound
  references or a reference loop either crashes the core or silently routes
  traffic somewhere unintended. The store refuses such templates outright, and
  the editing surface wants every problem at once rather than one per attempt.

How:
  Build lookup tables for groups and rule-sets, then walk groups, rules, and
  rule-sets once each while appending :class:`ValidationError` records. Cycle
  detection runs a colouring depth-first search over enabled group-to-group
  edges and reports each cycle once, rooted at its first tag in template
  order.

Interfaces:
  :class:`ValidationReport`, :func:`validate`.

Invariants & Safety:
  - Pure: the template is never mutated and no I/O is performed.
  - Exhaustive: all violations are collected in a single pass.
  - Error order follows template order so reports are stable across runs.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from ..config.schema import (
    ENGINE_B_ONLY_KINDS,
    LOGICAL_KINDS,
    MEMBERLESS_KINDS,
    NO_RESOLVE_KINDS,
    Condition,
    ConditionKind,
    EngineType,
    GroupKind,
    ProxyGroup,
    Rule,
    RuleSetBehavior,
    RuleSetFormat,
    RuleSetSource,
    Template,
    is_sentinel,
)
from ..errors import ValidationCode, ValidationError
from ..utils.regexsafe import pattern_error

_PORT_PATTERN = re.compile(r"^\d{1,5}(:\d{1,5})?$")
SINGBOX_GEOIP_VALUES = frozenset({"private", "lan"})


@dataclass
class ValidationReport:
    """Outcome of :func:`validate`.

    Attributes:
      errors: Violations in template order; empty when the template is valid.
    """

    errors: List[ValidationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def codes(self) -> List[ValidationCode]:
        return [error.code for error in self.errors]

    def add(self, code: ValidationCode, message: str, path: str) -> None:
        self.errors.append(ValidationError(code=code, message=message, path=path))


def validate(template: Template, engine: Optional[EngineType] = None) -> ValidationReport:
    """Validate ``template`` and return every violation found.

    Args:
      template: Policy model to inspect.
      engine: When provided, constructs unsupported by that engine are reported
        as ``UnsupportedConditionForEngine``.

    Returns:
      :class:`ValidationReport` whose ``ok`` flag is true when no violation was
      found.
    """

    report = ValidationReport()
    groups = _index_groups(template.groups, report)
    rule_set_tags = _index_rule_sets(template, report)
    enabled = {tag for tag, group in groups.items() if group.enabled}

    for index, group in enumerate(template.groups):
        _check_group(group, index, groups, report, engine)
    _check_cycles(template.groups, enabled, report)
    _check_rules(template.rules, groups, enabled, rule_set_tags, report, engine)
    for index, rule_set in enumerate(template.rule_sets):
        path = f"rule_sets[{index}]"
        if rule_set.source is RuleSetSource.REMOTE and not rule_set.url:
            report.add(ValidationCode.INVALID_VALUE, f"remote rule-set '{rule_set.tag}' needs a url", f"{path}.url")
        if rule_set.source is RuleSetSource.LOCAL and not rule_set.path:
            report.add(ValidationCode.INVALID_VALUE, f"local rule-set '{rule_set.tag}' needs a path", f"{path}.path")
        if (
            engine is EngineType.MIHOMO
            and rule_set.format is RuleSetFormat.BINARY
            and rule_set.behavior is RuleSetBehavior.CLASSICAL
        ):
            report.add(
                ValidationCode.UNSUPPORTED_CONDITION_FOR_ENGINE,
                f"mihomo binary rule-set '{rule_set.tag}' cannot hold classical rules",
                f"{path}.behavior",
            )
        if rule_set.download_via and not _resolves(rule_set.download_via, groups):
            report.add(
                ValidationCode.UNKNOWN_REFERENCE,
                f"download_via '{rule_set.download_via}' is not a group or sentinel",
                f"{path}.download_via",
            )
    return report


def _index_groups(groups: Sequence[ProxyGroup], report: ValidationReport) -> Dict[str, ProxyGroup]:
    index: Dict[str, ProxyGroup] = {}
    for position, group in enumerate(groups):
        path = f"groups[{position}].tag"
        if is_sentinel(group.tag):
            report.add(ValidationCode.DUPLICATE_TAG, f"group tag '{group.tag}' shadows a built-in outbound", path)
        elif group.tag in index:
            report.add(ValidationCode.DUPLICATE_TAG, f"group tag '{group.tag}' is already used", path)
        else:
            index[group.tag] = group
    return index


def _index_rule_sets(template: Template, report: ValidationReport) -> Set[str]:
    tags: Set[str] = set()
    for position, rule_set in enumerate(template.rule_sets):
        if rule_set.tag in tags:
            report.add(
                ValidationCode.DUPLICATE_TAG,
                f"rule-set tag '{rule_set.tag}' is already used",
                f"rule_sets[{position}].tag",
            )
        tags.add(rule_set.tag)
    return tags


def _resolves(reference: str, groups: Dict[str, ProxyGroup]) -> bool:
    return is_sentinel(reference) or reference in groups


def _check_group(
    group: ProxyGroup,
    index: int,
    groups: Dict[str, ProxyGroup],
    report: ValidationReport,
    engine: Optional[EngineType],
) -> None:
    path = f"groups[{index}]"
    for position, member in enumerate(group.members):
        if not _resolves(member, groups):
            report.add(
                ValidationCode.UNKNOWN_REFERENCE,
                f"group '{group.tag}' references unknown outbound '{member}'",
                f"{path}.members[{position}]",
            )
    if group.kind in MEMBERLESS_KINDS and (group.members or group.use_all_outbounds):
        report.add(ValidationCode.INVALID_VALUE, f"{group.kind.value} group '{group.tag}' takes no members", f"{path}.members")
    if group.default_member is not None:
        if group.kind is not GroupKind.SELECTOR:
            report.add(
                ValidationCode.INVALID_VALUE,
                f"default_member is only meaningful for selector groups ('{group.tag}')",
                f"{path}.default_member",
            )
        elif not group.use_all_outbounds and group.default_member not in group.members:
            report.add(
                ValidationCode.UNKNOWN_REFERENCE,
                f"default member '{group.default_member}' is not a member of '{group.tag}'",
                f"{path}.default_member",
            )
    if group.member_filter is not None:
        error = pattern_error(group.member_filter)
        if error is not None:
            report.add(ValidationCode.INVALID_VALUE, f"member_filter does not compile: {error}", f"{path}.member_filter")
    if engine is EngineType.SINGBOX and group.kind is GroupKind.LOAD_BALANCE:
        report.add(
            ValidationCode.UNSUPPORTED_CONDITION_FOR_ENGINE,
            f"group '{group.tag}' uses load-balance which singbox does not provide",
            f"{path}.kind",
        )


def _check_cycles(groups: Sequence[ProxyGroup], enabled: Set[str], report: ValidationReport) -> None:
    """Report each group reference cycle once.

    Disabled groups are excluded since they are never emitted and therefore
    cannot form a loop in the generated artifact.
    """

    positions = {group.tag: index for index, group in enumerate(groups) if group.tag in enabled}
    edges: Dict[str, List[str]] = {}
    for group in groups:
        if group.tag not in positions or group.use_all_outbounds:
            continue
        edges.setdefault(group.tag, [member for member in group.members if member in positions])

    white, grey, black = 0, 1, 2
    colour = {tag: white for tag in positions}
    reported: Set[frozenset] = set()

    def visit(tag: str, stack: List[str]) -> None:
        colour[tag] = grey
        stack.append(tag)
        for member in edges.get(tag, []):
            if colour[member] == grey:
                cycle = stack[stack.index(member):]
                key = frozenset(cycle)
                if key not in reported:
                    reported.add(key)
                    chain = " -> ".join(cycle + [member])
                    report.add(
                        ValidationCode.CYCLIC_GROUP_REFERENCE,
                        f"group reference cycle: {chain}",
                        f"groups[{positions[member]}].members",
                    )
            elif colour[member] == white:
                visit(member, stack)
        stack.pop()
        colour[tag] = black

    for group in groups:
        if group.tag in colour and colour[group.tag] == white:
            visit(group.tag, [])


def _check_rules(
    rules: Sequence[Rule],
    groups: Dict[str, ProxyGroup],
    enabled: Set[str],
    rule_set_tags: Set[str],
    report: ValidationReport,
    engine: Optional[EngineType],
) -> None:
    match_positions = [index for index, rule in enumerate(rules) if rule.is_match_all]
    for extra in match_positions[1:]:
        report.add(
            ValidationCode.MISSING_TERMINAL_MATCH_RULE,
            "only one match-all rule is allowed",
            f"rules[{extra}]",
        )
    if match_positions and match_positions[0] != len(rules) - 1:
        report.add(
            ValidationCode.MISSING_TERMINAL_MATCH_RULE,
            "the match-all rule must be the last rule",
            f"rules[{match_positions[0]}]",
        )

    for index, rule in enumerate(rules):
        path = f"rules[{index}]"
        if rule.kind is ConditionKind.DNS_HIJACK:
            if rule.target is not None:
                report.add(ValidationCode.INVALID_VALUE, "dns-hijack rules take no target", f"{path}.target")
        elif not rule.target:
            report.add(ValidationCode.INVALID_VALUE, "rule requires a target", f"{path}.target")
        elif is_sentinel(rule.target):
            pass
        elif rule.target not in groups:
            report.add(ValidationCode.UNKNOWN_REFERENCE, f"target '{rule.target}' is not a known group", f"{path}.target")
        elif rule.target not in enabled:
            report.add(
                ValidationCode.UNKNOWN_REFERENCE,
                f"target '{rule.target}' is disabled and will not be generated",
                f"{path}.target",
            )
        _check_condition(rule, path, rule_set_tags, report, engine, top_level=True)


def _check_condition(
    condition: Condition,
    path: str,
    rule_set_tags: Set[str],
    report: ValidationReport,
    engine: Optional[EngineType],
    *,
    top_level: bool = False,
) -> None:
    kind = condition.kind
    if engine is EngineType.MIHOMO and kind in ENGINE_B_ONLY_KINDS:
        report.add(
            ValidationCode.UNSUPPORTED_CONDITION_FOR_ENGINE,
            f"condition '{kind.value}' is not available for mihomo",
            f"{path}.kind",
        )
    if kind is ConditionKind.MATCH and not top_level:
        report.add(ValidationCode.INVALID_VALUE, "match cannot be nested in a logical condition", f"{path}.kind")
    if kind is ConditionKind.DNS_HIJACK and not top_level:
        report.add(ValidationCode.INVALID_VALUE, "dns-hijack cannot be nested in a logical condition", f"{path}.kind")

    if kind in LOGICAL_KINDS:
        if len(condition.conditions) < 2:
            report.add(ValidationCode.INVALID_VALUE, f"'{kind.value}' needs at least two conditions", f"{path}.conditions")
        if condition.payload:
            report.add(ValidationCode.INVALID_VALUE, f"'{kind.value}' takes no payload", f"{path}.payload")
        for position, child in enumerate(condition.conditions):
            _check_condition(child, f"{path}.conditions[{position}]", rule_set_tags, report, engine)
        return

    if condition.conditions:
        report.add(ValidationCode.INVALID_VALUE, f"'{kind.value}' takes no nested conditions", f"{path}.conditions")
    if kind in (ConditionKind.MATCH, ConditionKind.DNS_HIJACK):
        if condition.payload:
            report.add(ValidationCode.INVALID_VALUE, f"'{kind.value}' takes no payload", f"{path}.payload")
        return

    values = condition.payload
    if not values or any(not value.strip() for value in values):
        report.add(ValidationCode.INVALID_VALUE, f"'{kind.value}' needs non-empty payload values", f"{path}.payload")
    if engine is EngineType.MIHOMO and len(values) > 1:
        report.add(
            ValidationCode.UNSUPPORTED_CONDITION_FOR_ENGINE,
            "mihomo rule lines hold exactly one payload value",
            f"{path}.payload",
        )
    if condition.no_resolve and kind not in NO_RESOLVE_KINDS:
        report.add(ValidationCode.INVALID_VALUE, f"no_resolve does not apply to '{kind.value}'", f"{path}.no_resolve")
    if kind is ConditionKind.PORT:
        for position, value in enumerate(values):
            if not _valid_port(value):
                report.add(ValidationCode.INVALID_VALUE, f"'{value}' is not a port or port range", f"{path}.payload[{position}]")
    if kind is ConditionKind.RULE_SET:
        for position, value in enumerate(values):
            if value not in rule_set_tags:
                report.add(
                    ValidationCode.UNKNOWN_REFERENCE,
                    f"rule-set '{value}' is not declared",
                    f"{path}.payload[{position}]",
                )
    if engine is EngineType.SINGBOX and kind is ConditionKind.GEOIP:
        for position, value in enumerate(values):
            if value.lower() not in SINGBOX_GEOIP_VALUES:
                report.add(
                    ValidationCode.UNSUPPORTED_CONDITION_FOR_ENGINE,
                    f"singbox only matches geoip 'private'; use a rule-set for '{value}'",
                    f"{path}.payload[{position}]",
                )


def _valid_port(value: str) -> bool:
    if not _PORT_PATTERN.match(value):
        return False
    bounds = [int(part) for part in value.split(":")]
    if any(bound > 65535 for bound in bounds):
        return False
    return len(bounds) == 1 or bounds[0] <= bounds[1]


__all__ = ["ValidationReport", "validate", "SINGBOX_GEOIP_VALUES"]
