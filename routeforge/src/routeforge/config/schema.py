"""Pydantic models describing routeforge policy templates and runtime settings."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as _PydanticValidationError
from pydantic import field_validator


class SchemaError(ValueError):
    """Raised when a document does not satisfy the policy or runtime schema."""


class EngineType(str, Enum):
    """Proxy-core engines a template can be rendered for."""

    MIHOMO = "mihomo"
    SINGBOX = "singbox"


class GroupKind(str, Enum):
    SELECTOR = "selector"
    URLTEST = "urltest"
    FALLBACK = "fallback"
    LOAD_BALANCE = "load-balance"
    DIRECT = "direct"
    BLOCK = "block"


class ConditionKind(str, Enum):
    """Fixed taxonomy of rule conditions understood by the adapters."""

    DOMAIN = "domain"
    DOMAIN_SUFFIX = "domain-suffix"
    DOMAIN_KEYWORD = "domain-keyword"
    IP_CIDR = "ip-cidr"
    GEOIP = "geoip"
    RULE_SET = "rule-set"
    PROTOCOL = "protocol"
    PORT = "port"
    DNS_HIJACK = "dns-hijack"
    AND = "and"
    OR = "or"
    MATCH = "match"


class RuleSetSource(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class RuleSetFormat(str, Enum):
    BINARY = "binary"
    SOURCE = "source"


class RuleSetBehavior(str, Enum):
    DOMAIN = "domain"
    IPCIDR = "ipcidr"
    CLASSICAL = "classical"


DIRECT = "DIRECT"
REJECT = "REJECT"
SENTINELS = frozenset({DIRECT, REJECT})
_SENTINEL_ALIASES = {"DIRECT": DIRECT, "direct": DIRECT, "REJECT": REJECT, "block": REJECT}

NO_RESOLVE_KINDS = frozenset({ConditionKind.IP_CIDR, ConditionKind.GEOIP, ConditionKind.RULE_SET})
LOGICAL_KINDS = frozenset({ConditionKind.AND, ConditionKind.OR})
ENGINE_B_ONLY_KINDS = frozenset(
    {
        ConditionKind.PROTOCOL,
        ConditionKind.PORT,
        ConditionKind.DNS_HIJACK,
        ConditionKind.AND,
        ConditionKind.OR,
    }
)
MEMBERLESS_KINDS = frozenset({GroupKind.DIRECT, GroupKind.BLOCK})
PROBING_KINDS = frozenset({GroupKind.URLTEST, GroupKind.FALLBACK})


def canonical_sentinel(reference: str) -> Optional[str]:
    """Return ``DIRECT``/``REJECT`` when ``reference`` names a sentinel, else ``None``."""

    return _SENTINEL_ALIASES.get(reference)


def is_sentinel(reference: str) -> bool:
    return reference in _SENTINEL_ALIASES


class ProxyGroup(BaseModel):
    """Named outbound that selects among member outbounds."""

    model_config = ConfigDict(extra="forbid")

    tag: str = Field(min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    kind: GroupKind = GroupKind.SELECTOR
    members: List[str] = Field(default_factory=list)
    enabled: bool = True
    default_member: Optional[str] = None
    test_url: Optional[str] = None
    test_interval: Optional[int] = Field(default=None, gt=0)
    tolerance: Optional[int] = Field(default=None, ge=0)
    lazy: Optional[bool] = None
    hidden: Optional[bool] = None
    member_filter: Optional[str] = None
    use_all_outbounds: bool = False


class Condition(BaseModel):
    """Match condition; ``and``/``or`` nodes carry nested ``conditions``."""

    model_config = ConfigDict(extra="forbid")

    kind: ConditionKind
    payload: List[str] = Field(default_factory=list)
    no_resolve: bool = False
    invert: bool = False
    conditions: List["Condition"] = Field(default_factory=list)

    @field_validator("payload", mode="before")
    @classmethod
    def _coerce_payload(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, (str, int)):
            return [str(value)]
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        raise SchemaError("payload expected string or list of strings")

    @property
    def is_match_all(self) -> bool:
        return self.kind is ConditionKind.MATCH

    def iter_conditions(self) -> Iterable["Condition"]:
        """Yield this condition and every nested condition depth first."""

        yield self
        for child in self.conditions:
            yield from child.iter_conditions()


class Rule(Condition):
    """Routing rule: a condition plus the outbound it routes to.

    ``dns-hijack`` rules carry no target; every other kind requires one.
    """

    target: Optional[str] = None
    description: Optional[str] = None


class RuleSet(BaseModel):
    """Externally maintained collection of match conditions."""

    model_config = ConfigDict(extra="forbid")

    tag: str = Field(min_length=1)
    source: RuleSetSource = RuleSetSource.REMOTE
    format: RuleSetFormat = RuleSetFormat.BINARY
    behavior: RuleSetBehavior = RuleSetBehavior.DOMAIN
    url: Optional[str] = None
    path: Optional[str] = None
    download_via: Optional[str] = None
    refresh_interval: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = None


class Template(BaseModel):
    """Engine-scoped policy: groups, ordered rules, and rule-sets."""

    model_config = ConfigDict(extra="forbid")

    groups: List[ProxyGroup] = Field(default_factory=list)
    rules: List[Rule] = Field(default_factory=list)
    rule_sets: List[RuleSet] = Field(default_factory=list)

    @classmethod
    def model_validate(cls, data: Any, **kwargs: Any) -> "Template":  # type: ignore[override]
        try:
            return super().model_validate(data, **kwargs)
        except _PydanticValidationError as exc:
            raise SchemaError(str(exc)) from exc

    def to_document(self) -> Dict[str, Any]:
        """Return the canonical mapping persisted by the template store."""

        return self.model_dump(mode="json", exclude_defaults=True)

    def group(self, tag: str) -> Optional[ProxyGroup]:
        for group in self.groups:
            if group.tag == tag:
                return group
        return None

    def rule_set(self, tag: str) -> Optional[RuleSet]:
        for rule_set in self.rule_sets:
            if rule_set.tag == tag:
                return rule_set
        return None

    def match_rule(self) -> Optional[Rule]:
        for rule in self.rules:
            if rule.is_match_all:
                return rule
        return None

    def replace(
        self,
        *,
        groups: Optional[Iterable[ProxyGroup]] = None,
        rules: Optional[Iterable[Rule]] = None,
        rule_sets: Optional[Iterable[RuleSet]] = None,
    ) -> "Template":
        """Return a copy with the given collections swapped in whole."""

        return Template(
            groups=[item.model_copy(deep=True) for item in (self.groups if groups is None else groups)],
            rules=[item.model_copy(deep=True) for item in (self.rules if rules is None else rules)],
            rule_sets=[
                item.model_copy(deep=True) for item in (self.rule_sets if rule_sets is None else rule_sets)
            ],
        )


class GenerationOptions(BaseModel):
    """Per-render settings supplied by the caller.

    ``nodes`` are node outbound definitions owned by the node-import layer.
    They are emitted verbatim; their ``name`` (engine A) or ``tag`` (engine B)
    joins ``outbounds`` as the set of known outbound tags.
    """

    model_config = ConfigDict(extra="forbid")

    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    outbounds: List[str] = Field(default_factory=list)
    mixed_port: int = Field(default=7890, gt=0, lt=65536)
    log_level: str = "info"
    allow_lan: bool = False
    mode: Literal["rule", "global", "direct"] = "rule"
    external_controller: Optional[str] = "127.0.0.1:9090"
    secret: Optional[str] = None
    inbound_mode: Literal["mixed", "tun"] = "mixed"
    sniff: bool = True
    clash_api: Optional[str] = "127.0.0.1:9090"

    @classmethod
    def model_validate(cls, data: Any, **kwargs: Any) -> "GenerationOptions":  # type: ignore[override]
        try:
            return super().model_validate(data, **kwargs)
        except _PydanticValidationError as exc:
            raise SchemaError(str(exc)) from exc

    def known_outbounds(self) -> List[str]:
        """Return node and extra outbound tags in order, without duplicates."""

        seen: Dict[str, None] = {}
        for node in self.nodes:
            tag = node.get("name") or node.get("tag")
            if isinstance(tag, str) and tag:
                seen.setdefault(tag, None)
        for tag in self.outbounds:
            seen.setdefault(tag, None)
        return list(seen)


class PathsConfig(BaseModel):
    """Filesystem layout used by the runtime."""

    model_config = ConfigDict(extra="forbid")

    state_dir: str = "/var/lib/routeforge"
    output_dir: str = "/var/lib/routeforge/output"
    ruleset_dir: str = "/var/lib/routeforge/rulesets"


class RefreshConfig(BaseModel):
    """Bounds applied to rule-set downloads."""

    model_config = ConfigDict(extra="forbid")

    max_concurrent: int = Field(default=5, gt=0)
    timeout_s: float = Field(default=300.0, gt=0)
    relay: Optional[str] = None


class CoresConfig(BaseModel):
    """Proxy-core binaries used to check generated artifacts.

    A missing path falls back to the binary found on ``PATH``; when neither
    exists the check is skipped for that engine.
    """

    model_config = ConfigDict(extra="forbid")

    mihomo_path: Optional[str] = None
    singbox_path: Optional[str] = None
    check_timeout_s: float = Field(default=30.0, gt=0)


class RuntimeConfig(BaseModel):
    """Root configuration loaded from ``routeforge.yaml``."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    default_engine: EngineType = EngineType.MIHOMO
    paths: PathsConfig = Field(default_factory=PathsConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    cores: CoresConfig = Field(default_factory=CoresConfig)

    @classmethod
    def model_validate(cls, data: Any, **kwargs: Any) -> "RuntimeConfig":  # type: ignore[override]
        try:
            return super().model_validate(data, **kwargs)
        except _PydanticValidationError as exc:
            raise SchemaError(str(exc)) from exc


Condition.model_rebuild()
Rule.model_rebuild()

__all__ = [
    "SchemaError",
    "EngineType",
    "GroupKind",
    "ConditionKind",
    "RuleSetSource",
    "RuleSetFormat",
    "RuleSetBehavior",
    "DIRECT",
    "REJECT",
    "SENTINELS",
    "NO_RESOLVE_KINDS",
    "LOGICAL_KINDS",
    "ENGINE_B_ONLY_KINDS",
    "MEMBERLESS_KINDS",
    "PROBING_KINDS",
    "canonical_sentinel",
    "is_sentinel",
    "ProxyGroup",
    "Condition",
    "Rule",
    "RuleSet",
    "Template",
    "GenerationOptions",
    "PathsConfig",
    "RefreshConfig",
    "CoresConfig",
    "RuntimeConfig",
]
