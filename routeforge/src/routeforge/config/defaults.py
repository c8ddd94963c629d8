"""Built-in templates and presets for both engines.

What:
  Provide the default policy template used when an engine's template is first
  requested or reset, plus a small registry of named presets that replace a
  template wholesale.

Why:
  Operators start from a working split-routing policy (ads blocked, domestic
  traffic direct, streaming and AI services on dedicated selectors) rather than
  an empty template, and can return to a known state with one call.

How:
  Presets are declared as :class:`Preset` records holding a factory, so every
  call returns a fresh :class:`~routeforge.config.schema.Template` that callers
  may mutate freely. Engine A providers point at the MetaCubeX ``.mrs``
  rule-sets, engine B at the SagerNet ``.srs`` rule-sets.

Interfaces:
  :class:`Preset`, :func:`list_presets`, :func:`get_preset`,
  :func:`default_template`, :func:`standard_preset_id`.

Invariants & Safety:
  - Every preset validates cleanly for its own engine.
  - Factories never share mutable state between calls.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from ..errors import UnknownPresetError
from .schema import (
    DIRECT,
    REJECT,
    ConditionKind,
    EngineType,
    GroupKind,
    ProxyGroup,
    Rule,
    RuleSet,
    RuleSetBehavior,
    RuleSetFormat,
    Template,
)

PROBE_URL = "https://www.gstatic.com/generate_204"
PROBE_INTERVAL = 300
DAY = 86400

MIHOMO_RULES_BASE = "https://testingcf.jsdelivr.net/gh/MetaCubeX/meta-rules-dat@meta/geo"
MIHOMO_AI_RULES = "https://testingcf.jsdelivr.net/gh/QuixoticHeart/rule-set@ruleset/meta/domain/ai.mrs"
SINGBOX_GEOSITE_BASE = "https://raw.githubusercontent.com/SagerNet/sing-geosite/rule-set"
SINGBOX_GEOIP_BASE = "https://raw.githubusercontent.com/SagerNet/sing-geoip/rule-set"

REGION_FILTERS = {
    "hk": ("Hong Kong", "(?i)香港|沪港|呼港|中港|HKT|HKBN|HGC|WTT|CMI|穗港|广港|京港|🇭🇰|HK|Hongkong|Hong Kong|HongKong|HONG KONG"),
    "tw": ("Taiwan", "(?i)台湾|台灣|臺灣|台北|台中|新北|彰化|CHT|HINET|🇹🇼|TW|Taiwan|TAIWAN"),
    "jp": ("Japan", "(?i)日本|东京|東京|大阪|埼玉|京日|苏日|沪日|广日|上日|穗日|川日|中日|泉日|杭日|深日|🇯🇵|JP|Japan|JAPAN"),
    "sg": ("Singapore", "(?i)新加坡|狮城|獅城|沪新|京新|泉新|穗新|深新|杭新|广新|廣新|滬新|🇸🇬|SG|Singapore|SINGAPORE"),
    "us": ("United States", "(?i)美国|美國|京美|硅谷|凤凰城|洛杉矶|西雅图|圣何塞|芝加哥|哥伦布|纽约|广美|🇺🇸|US|USA|America|United States"),
}
REGIONS = list(REGION_FILTERS)


@dataclass(frozen=True)
class Preset:
    """Named template factory scoped to one engine."""

    id: str
    engine: EngineType
    description: str
    factory: Callable[[], Template]

    def build(self) -> Template:
        return self.factory()


def _selector(tag: str, name: str, members: Sequence[str], icon: Optional[str] = None, **extra) -> ProxyGroup:
    return ProxyGroup(tag=tag, name=name, icon=icon, kind=GroupKind.SELECTOR, members=list(members), **extra)


def _probing_group(tag: str, name: str, kind: GroupKind, *, engine: EngineType, **extra) -> ProxyGroup:
    params = dict(test_url=PROBE_URL, test_interval=PROBE_INTERVAL)
    if engine is EngineType.MIHOMO:
        params["lazy"] = True
    params.update(extra)
    return ProxyGroup(tag=tag, name=name, kind=kind, **params)


def _region_groups(engine: EngineType) -> List[ProxyGroup]:
    groups = []
    for tag, (label, pattern) in REGION_FILTERS.items():
        if engine is EngineType.MIHOMO:
            groups.append(
                _probing_group(
                    tag,
                    f"{label} nodes",
                    GroupKind.URLTEST,
                    engine=engine,
                    icon="flag",
                    tolerance=50,
                    member_filter=pattern,
                    use_all_outbounds=True,
                )
            )
        else:
            groups.append(
                ProxyGroup(
                    tag=tag,
                    name=f"{label} nodes",
                    icon="flag",
                    member_filter=pattern,
                    use_all_outbounds=True,
                )
            )
    groups.append(ProxyGroup(tag="others", name="Other nodes", icon="globe", use_all_outbounds=True))
    return groups


def _service_groups(engine: EngineType) -> List[ProxyGroup]:
    return [
        _probing_group(
            "auto",
            "Auto select",
            GroupKind.URLTEST,
            engine=engine,
            icon="zap",
            description="Lowest latency node",
            tolerance=50,
            use_all_outbounds=True,
        ),
        _probing_group(
            "fallback",
            "Failover",
            GroupKind.FALLBACK,
            engine=engine,
            icon="shield",
            description="First reachable region",
            members=REGIONS,
        ),
        _selector(
            "proxy",
            "Node select",
            ["auto", "fallback", *REGIONS, "others", DIRECT],
            icon="rocket",
            description="Default exit for proxied services",
        ),
        _selector("domestic", "Direct", [DIRECT, "proxy"], icon="target", description="Domestic and private traffic"),
        _selector(
            "ai",
            "AI services",
            ["proxy", "us", "jp", "sg", "tw", "auto"],
            icon="bot",
            default_member="us" if engine is EngineType.SINGBOX else None,
        ),
        _selector("media", "Streaming", ["proxy", *REGIONS, "auto"], icon="film"),
        _selector("social", "Social", ["proxy", "hk", "tw", "sg", "us", "auto"], icon="message-circle"),
        _selector("google", "Google", ["proxy", "hk", "tw", "jp", "us", "auto"], icon="search"),
        _selector("games", "Games", ["proxy", DIRECT, "hk", "tw", "jp"], icon="gamepad-2"),
        _selector("bilibili", "Bilibili", [DIRECT, "hk", "tw"], icon="tv"),
        _selector("microsoft", "Microsoft", [DIRECT, "proxy", "hk", "us"], icon="square"),
        _selector("apple", "Apple", [DIRECT, "proxy", "us"], icon="apple"),
        _selector("github", "GitHub", ["proxy", DIRECT, "auto"], icon="github"),
        _selector(
            "adblock",
            "Ad blocking",
            [REJECT, DIRECT],
            icon="ban",
            default_member=REJECT if engine is EngineType.SINGBOX else None,
        ),
        _selector("final", "Final", ["proxy", "auto", DIRECT], icon="fish", description="Traffic no rule matched"),
    ]


def _provider(tag: str, category: str, behavior: RuleSetBehavior, description: str, url: Optional[str] = None) -> RuleSet:
    kind = "geoip" if behavior is RuleSetBehavior.IPCIDR else "geosite"
    return RuleSet(
        tag=tag,
        format=RuleSetFormat.BINARY,
        behavior=behavior,
        url=url or f"{MIHOMO_RULES_BASE}/{kind}/{category}.mrs",
        path=f"./ruleset/{tag}.mrs",
        refresh_interval=DAY,
        description=description,
    )


def _rule(kind: ConditionKind, payload, target: str, description: Optional[str] = None, **extra) -> Rule:
    return Rule(kind=kind, payload=payload, target=target, description=description, **extra)


def _rule_set_rule(payload, target: str, description: Optional[str] = None, **extra) -> Rule:
    return _rule(ConditionKind.RULE_SET, payload, target, description, **extra)


def mihomo_standard() -> Template:
    domain, ipcidr = RuleSetBehavior.DOMAIN, RuleSetBehavior.IPCIDR
    rule_sets = [
        _provider("private-domain", "private", domain, "Private network domains"),
        _provider("private-ip", "private", ipcidr, "Private network addresses"),
        _provider("ads-domain", "category-ads-all", domain, "Advertising domains"),
        _provider("ai-domain", "ai", domain, "AI platform domains", url=MIHOMO_AI_RULES),
        _provider("telegram-domain", "telegram", domain, "Telegram domains"),
        _provider("telegram-ip", "telegram", ipcidr, "Telegram addresses"),
        _provider("twitter-domain", "twitter", domain, "Twitter domains"),
        _provider("youtube-domain", "youtube", domain, "YouTube domains"),
        _provider("netflix-domain", "netflix", domain, "Netflix domains"),
        _provider("spotify-domain", "spotify", domain, "Spotify domains"),
        _provider("bilibili-domain", "bilibili", domain, "Bilibili domains"),
        _provider("google-domain", "google", domain, "Google domains"),
        _provider("google-ip", "google", ipcidr, "Google addresses"),
        _provider("github-domain", "github", domain, "GitHub domains"),
        _provider("microsoft-domain", "microsoft", domain, "Microsoft domains"),
        _provider("apple-domain", "apple", domain, "Apple domains"),
        _provider("steam-domain", "steam", domain, "Steam domains"),
        _provider("cn-domain", "cn", domain, "Domestic domains"),
        _provider("geolocation-!cn", "geolocation-!cn", domain, "Foreign domains"),
    ]
    rules = [
        _rule_set_rule("private-domain", "domestic", "Private domains go direct"),
        _rule_set_rule("private-ip", "domestic", "Private addresses go direct", no_resolve=True),
        _rule_set_rule("ads-domain", "adblock"),
        _rule_set_rule("ai-domain", "ai"),
        _rule_set_rule("telegram-domain", "social"),
        _rule_set_rule("telegram-ip", "social", no_resolve=True),
        _rule_set_rule("twitter-domain", "social"),
        _rule_set_rule("youtube-domain", "media"),
        _rule_set_rule("netflix-domain", "media"),
        _rule_set_rule("spotify-domain", "media"),
        _rule_set_rule("bilibili-domain", "bilibili"),
        _rule_set_rule("google-domain", "google"),
        _rule_set_rule("google-ip", "google", no_resolve=True),
        _rule_set_rule("github-domain", "github"),
        _rule_set_rule("microsoft-domain", "microsoft"),
        _rule_set_rule("apple-domain", "apple"),
        _rule_set_rule("steam-domain", "games"),
        _rule_set_rule("cn-domain", "domestic"),
        _rule_set_rule("geolocation-!cn", "proxy"),
        _rule(ConditionKind.GEOIP, "LAN", "domestic", "LAN addresses go direct", no_resolve=True),
        _rule(ConditionKind.GEOIP, "CN", "domestic", "Domestic addresses go direct", no_resolve=True),
        _rule(ConditionKind.MATCH, None, "final"),
    ]
    groups = [
        _selector("GLOBAL", "Global", ["proxy", "auto", "fallback", *REGIONS, "others", DIRECT], icon="globe"),
        *_service_groups(EngineType.MIHOMO),
        *_region_groups(EngineType.MIHOMO),
    ]
    return Template(groups=groups, rules=rules, rule_sets=rule_sets)


def mihomo_minimal() -> Template:
    return Template(
        groups=[
            _selector("proxy", "Node select", ["auto", DIRECT], icon="rocket"),
            _probing_group("auto", "Auto select", GroupKind.URLTEST, engine=EngineType.MIHOMO, tolerance=50, use_all_outbounds=True),
        ],
        rules=[
            _rule(ConditionKind.GEOIP, "LAN", DIRECT, no_resolve=True),
            _rule(ConditionKind.MATCH, None, "proxy"),
        ],
    )


def _srs(tag: str) -> RuleSet:
    base = SINGBOX_GEOIP_BASE if tag.startswith("geoip-") else SINGBOX_GEOSITE_BASE
    behavior = RuleSetBehavior.IPCIDR if tag.startswith("geoip-") else RuleSetBehavior.DOMAIN
    return RuleSet(tag=tag, behavior=behavior, url=f"{base}/{tag}.srs", refresh_interval=DAY)


SINGBOX_RULE_SETS = [
    "geosite-category-ads-all",
    "geosite-openai",
    "geosite-anthropic",
    "geosite-google-gemini",
    "geosite-category-ai-!cn",
    "geosite-steam",
    "geosite-epicgames",
    "geosite-netflix",
    "geosite-youtube",
    "geosite-spotify",
    "geosite-telegram",
    "geosite-twitter",
    "geosite-facebook",
    "geosite-google",
    "geosite-github",
    "geosite-microsoft",
    "geosite-apple",
    "geosite-bilibili",
    "geosite-cn",
    "geoip-cn",
    "geosite-geolocation-!cn",
]


def singbox_standard() -> Template:
    rules = [
        Rule(kind=ConditionKind.DNS_HIJACK, description="Answer DNS queries locally"),
        _rule_set_rule("geosite-category-ads-all", "adblock"),
        _rule(ConditionKind.GEOIP, "private", DIRECT, "Private addresses go direct"),
        _rule_set_rule("geosite-cn", DIRECT),
        _rule_set_rule(
            ["geosite-openai", "geosite-anthropic", "geosite-google-gemini", "geosite-category-ai-!cn"], "ai"
        ),
        _rule_set_rule(["geosite-steam", "geosite-epicgames"], "games"),
        _rule_set_rule(["geosite-youtube", "geosite-netflix", "geosite-spotify"], "media"),
        _rule_set_rule(["geosite-telegram", "geosite-twitter", "geosite-facebook"], "social"),
        _rule_set_rule("geosite-google", "google"),
        _rule_set_rule("geosite-github", "github"),
        _rule_set_rule("geosite-microsoft", "microsoft"),
        _rule_set_rule("geosite-apple", "apple"),
        _rule_set_rule("geosite-bilibili", "bilibili"),
        _rule_set_rule("geoip-cn", DIRECT, "Domestic addresses go direct"),
        _rule_set_rule("geosite-geolocation-!cn", "final"),
        _rule(ConditionKind.MATCH, None, "final"),
    ]
    groups = [*_service_groups(EngineType.SINGBOX), *_region_groups(EngineType.SINGBOX)]
    return Template(groups=groups, rules=rules, rule_sets=[_srs(tag) for tag in SINGBOX_RULE_SETS])


def singbox_minimal() -> Template:
    return Template(
        groups=[
            _selector("proxy", "Node select", ["auto", DIRECT]),
            _probing_group("auto", "Auto select", GroupKind.URLTEST, engine=EngineType.SINGBOX, tolerance=50, use_all_outbounds=True),
        ],
        rules=[
            Rule(kind=ConditionKind.DNS_HIJACK),
            _rule(ConditionKind.GEOIP, "private", DIRECT),
            _rule(ConditionKind.MATCH, None, "proxy"),
        ],
    )


_PRESETS: Dict[str, Preset] = {
    preset.id: preset
    for preset in (
        Preset("mihomo-standard", EngineType.MIHOMO, "Split routing with service selectors", mihomo_standard),
        Preset("mihomo-minimal", EngineType.MIHOMO, "Single selector, LAN direct", mihomo_minimal),
        Preset("singbox-standard", EngineType.SINGBOX, "Split routing with service selectors", singbox_standard),
        Preset("singbox-minimal", EngineType.SINGBOX, "Single selector, private addresses direct", singbox_minimal),
    )
}


def list_presets(engine: Optional[EngineType] = None) -> List[Preset]:
    return [preset for preset in _PRESETS.values() if engine is None or preset.engine is engine]


def get_preset(preset_id: str) -> Preset:
    try:
        return _PRESETS[preset_id]
    except KeyError as exc:
        raise UnknownPresetError(preset_id) from exc


def standard_preset_id(engine: EngineType) -> str:
    return f"{EngineType(engine).value}-standard"


def default_template(engine: EngineType) -> Template:
    """Return a fresh copy of the built-in template for ``engine``."""

    return get_preset(standard_preset_id(engine)).build()


__all__ = [
    "Preset",
    "list_presets",
    "get_preset",
    "standard_preset_id",
    "default_template",
    "mihomo_standard",
    "mihomo_minimal",
    "singbox_standard",
    "singbox_minimal",
]
