"""
Module: tests/unit/test_mihomo_adapter.py

What:
    Verify compilation of templates into mihomo documents and the read-back
    path used by ``import``.

Why:
    mihomo evaluates rule lines top to bottom; a reordered line, a misspelled
    sentinel, or a stray ``no-resolve`` changes routing without any error from
    the core. Read-back must also restore what the grammar loses so an
    imported artifact does not strip operator metadata.

How:
    Build templates in code, inspect the produced mapping, and round-trip the
    standard preset through ``dumps``/``loads``/``from_document``.

Invariants & Safety Rules:
    - Rule lines appear in template order, with ``MATCH`` last.
    - Constructs mihomo cannot express raise instead of being dropped.
"""

import pytest

from routeforge.adapters import MihomoAdapter
from routeforge.config.defaults import mihomo_standard
from routeforge.config.schema import (
    ConditionKind,
    GenerationOptions,
    GroupKind,
    ProxyGroup,
    Rule,
    RuleSet,
    Template,
)
from routeforge.errors import DocumentError, GenerationError, ValidationCode

ADAPTER = MihomoAdapter()


def _scenario() -> Template:
    return Template(
        groups=[
            ProxyGroup(tag="proxy", members=["auto", "DIRECT"]),
            ProxyGroup(tag="auto", kind=GroupKind.URLTEST, use_all_outbounds=True),
        ],
        rules=[
            Rule(kind=ConditionKind.DOMAIN_SUFFIX, payload="example.com", target="proxy"),
            Rule(kind=ConditionKind.MATCH, target="proxy"),
        ],
    )


def test_rules_compile_in_order_with_match_last():
    """
    What:
        The reference scenario yields one suffix line followed by ``MATCH``.

    Why:
        Line order is the routing semantics of mihomo.
    """
    document = ADAPTER.to_document(_scenario(), GenerationOptions(outbounds=["node-a"])).document
    assert document["rules"] == ["DOMAIN-SUFFIX,example.com,proxy", "MATCH,proxy"]


def test_groups_resolve_members_and_use_all():
    options = GenerationOptions(nodes=[{"name": "node-a", "type": "ss"}], outbounds=["node-b"])
    document = ADAPTER.to_document(_scenario(), options).document
    assert document["proxies"] == [{"name": "node-a", "type": "ss"}]
    assert document["proxy-groups"] == [
        {"name": "proxy", "type": "select", "proxies": ["auto", "DIRECT"]},
        {"name": "auto", "type": "url-test", "proxies": ["node-a", "node-b"]},
    ]


def test_no_resolve_only_for_supported_kinds():
    template = Template(
        groups=[ProxyGroup(tag="proxy", members=["DIRECT"])],
        rules=[
            Rule(kind=ConditionKind.IP_CIDR, payload="10.0.0.0/8", target="direct", no_resolve=True),
            Rule(kind=ConditionKind.DOMAIN, payload="a.com", target="block", no_resolve=True),
        ],
    )
    assert ADAPTER.to_document(template, GenerationOptions()).document["rules"] == [
        "IP-CIDR,10.0.0.0/8,DIRECT,no-resolve",
        "DOMAIN,a.com,REJECT",
    ]


def test_disabled_groups_are_pruned():
    template = Template(
        groups=[
            ProxyGroup(tag="proxy", members=["old", "DIRECT"]),
            ProxyGroup(tag="old", members=["DIRECT"], enabled=False),
            ProxyGroup(tag="empty", members=["old"]),
        ]
    )
    groups = ADAPTER.to_document(template, GenerationOptions()).document["proxy-groups"]
    assert [group["name"] for group in groups] == ["proxy", "empty"]
    assert groups[0]["proxies"] == ["DIRECT"]
    assert groups[1]["proxies"] == ["DIRECT"]


def test_member_filter_falls_back_to_all_outbounds():
    template = Template(
        groups=[
            ProxyGroup(tag="hk", use_all_outbounds=True, member_filter="^hk"),
            ProxyGroup(tag="us", use_all_outbounds=True, member_filter="^us"),
        ]
    )
    options = GenerationOptions(outbounds=["hk-1", "jp-1"])
    groups = ADAPTER.to_document(template, options).document["proxy-groups"]
    assert groups[0]["proxies"] == ["hk-1"]
    assert groups[1]["proxies"] == ["hk-1", "jp-1"]


def test_rule_providers_and_unused_warning():
    template = Template(
        groups=[ProxyGroup(tag="proxy", members=["DIRECT"])],
        rules=[Rule(kind=ConditionKind.RULE_SET, payload="ads", target="REJECT")],
        rule_sets=[
            RuleSet(tag="ads", url="https://example.com/ads.mrs", refresh_interval=86400, download_via="proxy"),
            RuleSet(tag="idle", url="https://example.com/idle.mrs"),
        ],
    )
    output = ADAPTER.to_document(template, GenerationOptions())
    assert output.document["rule-providers"]["ads"] == {
        "type": "http",
        "behavior": "domain",
        "format": "mrs",
        "url": "https://example.com/ads.mrs",
        "interval": 86400,
        "proxy": "proxy",
    }
    assert output.document["rules"] == ["RULE-SET,ads,REJECT"]
    assert output.warnings == ["rule-set 'idle' is declared but no rule references it"]


def test_listener_options():
    options = GenerationOptions(mixed_port=7893, allow_lan=True, secret="s3cret", external_controller=None)
    document = ADAPTER.to_document(Template(), options).document
    assert document["mixed-port"] == 7893
    assert document["allow-lan"] is True
    assert document["secret"] == "s3cret"
    assert "external-controller" not in document


@pytest.mark.parametrize(
    "rule",
    [
        Rule(kind=ConditionKind.PORT, payload="443", target="DIRECT"),
        Rule(kind=ConditionKind.DOMAIN, payload="a.com", target="DIRECT", invert=True),
        Rule(kind=ConditionKind.DOMAIN, payload=["a.com", "b.com"], target="DIRECT"),
    ],
)
def test_unrepresentable_rules_raise(rule):
    with pytest.raises(GenerationError) as excinfo:
        ADAPTER.to_document(Template(rules=[rule]), GenerationOptions())
    assert excinfo.value.errors[0].code is ValidationCode.UNSUPPORTED_CONDITION_FOR_ENGINE


def test_standard_preset_round_trips_with_reference():
    """
    What:
        The standard preset survives render, serialise, parse, and read-back.

    Why:
        Names, descriptions, and ``use_all_outbounds`` intent are not part of
        the mihomo grammar; the reference template must restore them.
    """
    template = mihomo_standard()
    options = GenerationOptions(outbounds=["HK 01", "JP 01", "US 01"])
    text = ADAPTER.dumps(ADAPTER.to_document(template, options).document)
    restored = ADAPTER.from_document(ADAPTER.loads(text), reference=template)
    assert restored == template


def test_scenario_round_trips_without_reference():
    options = GenerationOptions(outbounds=["node-a", "node-b"])
    document = ADAPTER.to_document(_scenario(), options).document
    assert ADAPTER.from_document(document) == _scenario()


def test_ip_cidr6_lines_read_as_ip_cidr():
    rule = ADAPTER.from_document({"rules": ["IP-CIDR6,fd00::/8,DIRECT,no-resolve"]}).rules[0]
    assert rule.kind is ConditionKind.IP_CIDR
    assert rule.payload == ["fd00::/8"]
    assert rule.no_resolve is True


@pytest.mark.parametrize(
    "document",
    [
        {"rules": ["PROCESS-NAME,curl,DIRECT"]},
        {"rules": ["DOMAIN,a.com"]},
        {"rules": ["DOMAIN,a.com,DIRECT,resolve"]},
        {"proxy-groups": [{"name": "chain", "type": "relay", "proxies": []}]},
        {"rule-providers": {"ads": {"type": "inline"}}},
    ],
)
def test_unreadable_documents_raise(document):
    with pytest.raises(DocumentError):
        ADAPTER.from_document(document)


def test_loads_requires_mapping():
    with pytest.raises(DocumentError):
        ADAPTER.loads("- a\n- b\n")
    with pytest.raises(DocumentError):
        ADAPTER.loads("rules: [unclosed\n")


@pytest.mark.parametrize(
    "document,message",
    [
        (
            {"proxy-groups": [{"name": "auto", "type": "url-test", "proxies": ["DIRECT"], "interval": "often"}]},
            "group 'auto' is malformed: test_interval",
        ),
        (
            {"proxy-groups": [{"name": "auto", "type": "url-test", "proxies": ["DIRECT"], "tolerance": -5}]},
            "group 'auto' is malformed: tolerance",
        ),
        (
            {"rule-providers": {"ads": {"type": "http", "url": "https://rules.example/ads.yaml", "interval": "daily"}}},
            "rule-provider 'ads' is malformed: refresh_interval",
        ),
    ],
)
def test_field_values_of_the_wrong_type_raise_document_error(document, message):
    with pytest.raises(DocumentError) as excinfo:
        ADAPTER.from_document(document)
    assert message in str(excinfo.value)
