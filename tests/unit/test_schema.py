"""
Module: tests/unit/test_schema.py

What:
    Check the pydantic policy model: payload coercion, unknown fields, and the
    canonical document produced for persistence.

Why:
    Templates arrive from YAML files and CLI payloads. Loose input must be
    normalised the same way every time or checksums and diffs drift.
"""

import pytest

from routeforge.config.schema import (
    ConditionKind,
    GenerationOptions,
    ProxyGroup,
    Rule,
    SchemaError,
    Template,
    canonical_sentinel,
)


def test_payload_is_coerced_to_list_of_strings():
    assert Rule(kind=ConditionKind.PORT, payload=443, target="proxy").payload == ["443"]
    assert Rule(kind=ConditionKind.DOMAIN, payload="a.com", target="proxy").payload == ["a.com"]
    assert Rule(kind=ConditionKind.MATCH, payload=None, target="proxy").payload == []


def test_template_rejects_unknown_fields():
    with pytest.raises(SchemaError):
        Template.model_validate({"groups": [{"tag": "proxy", "colour": "red"}]})


def test_canonical_document_omits_defaults():
    template = Template(
        groups=[ProxyGroup(tag="proxy", members=["DIRECT"])],
        rules=[Rule(kind=ConditionKind.MATCH, target="proxy")],
    )
    assert template.to_document() == {
        "groups": [{"tag": "proxy", "members": ["DIRECT"]}],
        "rules": [{"kind": "match", "target": "proxy"}],
    }


def test_replace_copies_collections():
    template = Template(groups=[ProxyGroup(tag="proxy", members=["DIRECT"])])
    copy = template.replace(rules=[Rule(kind=ConditionKind.MATCH, target="proxy")])
    copy.groups[0].members.append("REJECT")
    assert template.groups[0].members == ["DIRECT"]
    assert template.rules == []
    assert copy.match_rule() is not None


def test_sentinel_aliases():
    assert canonical_sentinel("direct") == "DIRECT"
    assert canonical_sentinel("block") == "REJECT"
    assert canonical_sentinel("proxy") is None


def test_known_outbounds_merge_nodes_and_extras():
    options = GenerationOptions(
        nodes=[{"name": "hk-1", "type": "ss"}, {"tag": "jp-1", "type": "vless"}, {"type": "anonymous"}],
        outbounds=["jp-1", "wg-home"],
    )
    assert options.known_outbounds() == ["hk-1", "jp-1", "wg-home"]


def test_generation_options_reject_bad_inbound_mode():
    with pytest.raises(SchemaError):
        GenerationOptions.model_validate({"inbound_mode": "redirect"})
