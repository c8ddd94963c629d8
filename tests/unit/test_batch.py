"""
Module: tests/unit/test_batch.py

What:
    Cover expansion of multi-line rule payloads and their insertion ahead of
    the match rule.
"""

from routeforge.config.schema import ConditionKind, EngineType, Rule
from routeforge.core.batch import expand_batch, insert_rules


def test_expand_one_rule_per_line():
    draft = Rule(kind=ConditionKind.DOMAIN_SUFFIX, target="proxy")
    rules = expand_batch(draft, "a.com\n\n  b.com  \n# comment\nc.com\n")
    assert [rule.payload for rule in rules] == [["a.com"], ["b.com"], ["c.com"]]
    assert {rule.target for rule in rules} == {"proxy"}


def test_no_resolve_carried_from_draft():
    draft = Rule(kind=ConditionKind.IP_CIDR, target="DIRECT", no_resolve=True)
    rules = expand_batch(draft, "10.0.0.0/8\n192.168.0.0/16")
    assert all(rule.no_resolve for rule in rules)


def test_rule_set_draft_is_not_split():
    draft = Rule(kind=ConditionKind.RULE_SET, target="media")
    rules = expand_batch(draft, "youtube\nnetflix\n")
    assert len(rules) == 1
    assert rules[0].payload == ["youtube", "netflix"]


def test_rule_set_draft_splits_for_mihomo():
    draft = Rule(kind=ConditionKind.RULE_SET, target="media")
    rules = expand_batch(draft, "youtube\nnetflix\n", EngineType.MIHOMO)
    assert [rule.payload for rule in rules] == [["youtube"], ["netflix"]]
    assert expand_batch(draft, "youtube\nnetflix\n", EngineType.SINGBOX)[0].payload == ["youtube", "netflix"]


def test_blank_text_expands_to_nothing():
    assert expand_batch(Rule(kind=ConditionKind.DOMAIN, target="proxy"), "\n  \n# only comments\n") == []


def test_insert_keeps_match_last():
    match = Rule(kind=ConditionKind.MATCH, target="proxy")
    first = Rule(kind=ConditionKind.DOMAIN, payload="a.com", target="proxy")
    new = [Rule(kind=ConditionKind.DOMAIN, payload="b.com", target="DIRECT")]
    assert insert_rules([first, match], new) == [first, new[0], match]
    assert insert_rules([first], new) == [first, new[0]]
    assert insert_rules([], new) == new
