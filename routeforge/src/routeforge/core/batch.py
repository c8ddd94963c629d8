"""Multi-line rule authoring helpers.

The editing surface lets an operator paste many domains or CIDRs at once and
pick a single condition kind and target for all of them. Expansion into one
rule per line happens here, before validation, so the store only ever sees
ordinary whole-collection replaces.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from ..config.schema import ConditionKind, EngineType, Rule


def expand_batch(draft: Rule, text: str, engine: Optional[EngineType] = None) -> List[Rule]:
    """Return one rule per non-blank line of ``text`` shaped like ``draft``.

    Lines are stripped and lines starting with ``#`` are skipped. Rule-set
    drafts are not split unless ``engine`` is mihomo: sing-box rules may list
    several rule-sets, while a mihomo rule line references exactly one.

    Args:
      draft: Template rule providing kind, target, and flags.
      text: Raw multi-line payload.
      engine: Engine the rules are authored for, when known.

    Returns:
      Expanded rules in line order; empty when ``text`` holds no payload.
    """

    lines = [line.strip() for line in text.splitlines()]
    values = [line for line in lines if line and not line.startswith("#")]
    if not values:
        return []
    if draft.kind is ConditionKind.RULE_SET and engine is not EngineType.MIHOMO:
        return [draft.model_copy(update={"payload": values}, deep=True)]
    return [draft.model_copy(update={"payload": [value]}, deep=True) for value in values]


def insert_rules(existing: Sequence[Rule], new: Iterable[Rule]) -> List[Rule]:
    """Append ``new`` rules while keeping a terminal match-all rule last."""

    rules = list(existing)
    additions = list(new)
    if rules and rules[-1].is_match_all:
        return rules[:-1] + additions + rules[-1:]
    return rules + additions


__all__ = ["expand_batch", "insert_rules"]
