"""Engine-A adapter: policy templates to and from mihomo YAML documents.

What:
  Compile a :class:`~routeforge.config.schema.Template` into a mihomo
  configuration mapping (``proxy-groups``, ``rule-providers``, ``rules`` plus
  the listener settings from :class:`GenerationOptions`) and read such a
  mapping back into the policy model.

Why:
  mihomo evaluates ``rules`` strictly top to bottom and addresses every
  outbound by name. The adapter is the one place where the model's rule order
  and references are turned into that flat line grammar, so ordering and
  reference spelling must be exact here.

How:
  Groups are emitted in template order with members resolved through
  :func:`~routeforge.adapters.base.resolve_members`. Each rule becomes one
  ``TYPE,payload,target[,no-resolve]`` line, the match-all rule becomes
  ``MATCH,target``. Rule-sets become an ordered ``rule-providers`` mapping.
  Serialisation uses PyYAML ``safe_dump`` with insertion order preserved.

Interfaces:
  :class:`MihomoAdapter`.

Invariants & Safety:
  - Emitted rule lines follow template rule order exactly.
  - ``no-resolve`` is only appended for ip-cidr, geoip, and rule-set lines.
  - Constructs mihomo cannot express raise :class:`GenerationError`; they are
    never dropped silently.
"""
from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping, Optional

import yaml

from ..config.schema import (
    DIRECT,
    ENGINE_B_ONLY_KINDS,
    MEMBERLESS_KINDS,
    NO_RESOLVE_KINDS,
    REJECT,
    ConditionKind,
    EngineType,
    GenerationOptions,
    GroupKind,
    ProxyGroup,
    Rule,
    RuleSet,
    RuleSetBehavior,
    RuleSetFormat,
    RuleSetSource,
    Template,
    canonical_sentinel,
)
from ..errors import DocumentError, GenerationError, ValidationCode, ValidationError
from .base import (
    AdapterOutput,
    RuleSetFile,
    RuleSetFiles,
    build_model,
    enabled_groups,
    resolve_members,
    restore_groups,
    restore_rule_sets,
    restore_rules,
    unused_rule_set_warnings,
)

SENTINELS = {DIRECT: "DIRECT", REJECT: "REJECT"}

GROUP_TYPES = {
    GroupKind.SELECTOR: "select",
    GroupKind.URLTEST: "url-test",
    GroupKind.FALLBACK: "fallback",
    GroupKind.LOAD_BALANCE: "load-balance",
    GroupKind.DIRECT: "direct",
    GroupKind.BLOCK: "block",
}
GROUP_KINDS = {value: key for key, value in GROUP_TYPES.items()}

RULE_TYPES = {
    ConditionKind.DOMAIN: "DOMAIN",
    ConditionKind.DOMAIN_SUFFIX: "DOMAIN-SUFFIX",
    ConditionKind.DOMAIN_KEYWORD: "DOMAIN-KEYWORD",
    ConditionKind.IP_CIDR: "IP-CIDR",
    ConditionKind.GEOIP: "GEOIP",
    ConditionKind.RULE_SET: "RULE-SET",
    ConditionKind.MATCH: "MATCH",
}
RULE_KINDS = {value: key for key, value in RULE_TYPES.items()}
RULE_KINDS["IP-CIDR6"] = ConditionKind.IP_CIDR

NO_RESOLVE_TOKEN = "no-resolve"

PROVIDER_FORMATS = {RuleSetFormat.BINARY: "mrs", RuleSetFormat.SOURCE: "yaml"}
PROVIDER_EXTENSIONS = {"mrs": RuleSetFormat.BINARY, "yaml": RuleSetFormat.SOURCE, "text": RuleSetFormat.SOURCE}


class MihomoAdapter:
    """Stateless translator between templates and mihomo documents."""

    engine = EngineType.MIHOMO
    artifact_name = "config.yaml"

    def to_document(
        self, template: Template, options: GenerationOptions, files: Optional[RuleSetFiles] = None
    ) -> AdapterOutput:
        """Compile ``template`` into a mihomo configuration mapping.

        Args:
          template: Validated policy model scoped to mihomo.
          options: Listener settings and known node outbounds.
          files: Resolved rule-set files by tag. Providers point their
            ``path`` at them, and a provider whose file exists becomes a
            ``file`` provider.

        Returns:
          :class:`AdapterOutput` holding the mapping and unused rule-set
          warnings.

        Raises:
          GenerationError: When a rule uses a construct mihomo cannot express.
        """

        document: Dict[str, Any] = {
            "mixed-port": options.mixed_port,
            "allow-lan": options.allow_lan,
            "mode": options.mode,
            "log-level": options.log_level,
        }
        if options.external_controller:
            document["external-controller"] = options.external_controller
        if options.secret:
            document["secret"] = options.secret
        document["proxies"] = [copy.deepcopy(node) for node in options.nodes]
        document["proxy-groups"] = [
            self._group_entry(group, template, options) for group in enabled_groups(template)
        ]
        if template.rule_sets:
            document["rule-providers"] = {
                rule_set.tag: self._provider_entry(rule_set, (files or {}).get(rule_set.tag))
                for rule_set in template.rule_sets
            }
        document["rules"] = [self._rule_line(rule, index) for index, rule in enumerate(template.rules)]
        return AdapterOutput(document=document, warnings=unused_rule_set_warnings(template))

    def from_document(self, document: Mapping[str, Any], reference: Optional[Template] = None) -> Template:
        """Read a mihomo mapping back into the policy model.

        Node names are not part of the model; a group listing them is read back
        as ``use_all_outbounds`` unless ``reference`` says otherwise.

        Raises:
          DocumentError: When the mapping uses group types or rule types the
            model has no equivalent for.
        """

        if not isinstance(document, Mapping):
            raise DocumentError("mihomo document must be a mapping")
        raw_groups = document.get("proxy-groups") or []
        names = {entry.get("name") for entry in raw_groups if isinstance(entry, Mapping)}
        groups = [self._parse_group(entry, names) for entry in raw_groups]
        rules = [self._parse_rule(line) for line in document.get("rules") or []]
        providers = document.get("rule-providers") or {}
        if not isinstance(providers, Mapping):
            raise DocumentError("rule-providers must be a mapping")
        rule_sets = [self._parse_provider(tag, entry) for tag, entry in providers.items()]
        return Template(
            groups=restore_groups(groups, reference),
            rules=restore_rules(rules, reference),
            rule_sets=restore_rule_sets(rule_sets, reference),
        )

    def dumps(self, document: Mapping[str, Any]) -> str:
        return yaml.safe_dump(
            dict(document),
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
            width=4096,
        )

    def loads(self, text: str) -> Dict[str, Any]:
        try:
            loaded = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise DocumentError(f"invalid mihomo YAML: {exc}") from exc
        if not isinstance(loaded, dict):
            raise DocumentError("mihomo document must be a mapping")
        return loaded

    # ------------------------------------------------------------------ emit

    @staticmethod
    def _reference(value: str) -> str:
        sentinel = canonical_sentinel(value)
        return SENTINELS[sentinel] if sentinel else value

    def _group_entry(self, group: ProxyGroup, template: Template, options: GenerationOptions) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"name": group.tag, "type": GROUP_TYPES[group.kind]}
        if group.kind not in MEMBERLESS_KINDS:
            entry["proxies"] = resolve_members(group, template, options, SENTINELS)
        if group.test_url:
            entry["url"] = group.test_url
        if group.test_interval is not None:
            entry["interval"] = group.test_interval
        if group.tolerance is not None:
            entry["tolerance"] = group.tolerance
        if group.lazy is not None:
            entry["lazy"] = group.lazy
        if group.hidden is not None:
            entry["hidden"] = group.hidden
        if group.icon:
            entry["icon"] = group.icon
        return entry

    def _provider_entry(self, rule_set: RuleSet, file: Optional[RuleSetFile] = None) -> Dict[str, Any]:
        downloaded = file is not None and file.exists
        remote = rule_set.source is RuleSetSource.REMOTE and not downloaded
        entry: Dict[str, Any] = {
            "type": "http" if remote else "file",
            "behavior": rule_set.behavior.value,
            "format": PROVIDER_FORMATS[rule_set.format],
        }
        if remote and rule_set.url:
            entry["url"] = rule_set.url
        path = file.path if file is not None else rule_set.path
        if path:
            entry["path"] = path
        if not remote:
            return entry
        if rule_set.refresh_interval is not None:
            entry["interval"] = rule_set.refresh_interval
        if rule_set.download_via:
            entry["proxy"] = self._reference(rule_set.download_via)
        return entry

    def _rule_line(self, rule: Rule, index: int) -> str:
        path = f"rules[{index}]"
        if rule.kind in ENGINE_B_ONLY_KINDS:
            raise _unsupported(f"condition '{rule.kind.value}' is not available for mihomo", f"{path}.kind")
        if rule.invert:
            raise _unsupported("mihomo rule lines cannot be inverted", f"{path}.invert")
        if not rule.target:
            raise GenerationError(f"{path}: rule requires a target")
        target = self._reference(rule.target)
        if rule.kind is ConditionKind.MATCH:
            return f"MATCH,{target}"
        if len(rule.payload) != 1:
            raise _unsupported("mihomo rule lines hold exactly one payload value", f"{path}.payload")
        parts = [RULE_TYPES[rule.kind], rule.payload[0], target]
        if rule.no_resolve and rule.kind in NO_RESOLVE_KINDS:
            parts.append(NO_RESOLVE_TOKEN)
        return ",".join(parts)

    # ----------------------------------------------------------------- parse

    @staticmethod
    def _parse_group(entry: Any, names: set) -> ProxyGroup:
        if not isinstance(entry, Mapping) or not entry.get("name"):
            raise DocumentError("proxy-groups entries need a name")
        group_type = entry.get("type")
        if group_type not in GROUP_KINDS:
            raise DocumentError(f"group '{entry['name']}' has unsupported type '{group_type}'")
        proxies = [str(item) for item in entry.get("proxies") or []]
        known = [item for item in proxies if item in names or canonical_sentinel(item)]
        use_all = len(known) != len(proxies)
        members = [] if use_all else [canonical_sentinel(item) or item for item in proxies]
        return build_model(
            ProxyGroup,
            f"group '{entry['name']}'",
            tag=str(entry["name"]),
            kind=GROUP_KINDS[group_type],
            members=members,
            use_all_outbounds=use_all,
            test_url=entry.get("url"),
            test_interval=entry.get("interval"),
            tolerance=entry.get("tolerance"),
            lazy=entry.get("lazy"),
            hidden=entry.get("hidden"),
            icon=entry.get("icon"),
        )

    @staticmethod
    def _parse_rule(line: Any) -> Rule:
        if not isinstance(line, str):
            raise DocumentError(f"rule entry {line!r} is not a string")
        parts = [part.strip() for part in line.split(",")]
        kind = RULE_KINDS.get(parts[0].upper())
        if kind is None:
            raise DocumentError(f"rule type '{parts[0]}' is not supported")
        if kind is ConditionKind.MATCH:
            if len(parts) != 2:
                raise DocumentError(f"malformed MATCH rule: {line}")
            return Rule(kind=kind, target=canonical_sentinel(parts[1]) or parts[1])
        if len(parts) not in (3, 4) or (len(parts) == 4 and parts[3] != NO_RESOLVE_TOKEN):
            raise DocumentError(f"malformed rule line: {line}")
        return Rule(
            kind=kind,
            payload=[parts[1]],
            target=canonical_sentinel(parts[2]) or parts[2],
            no_resolve=len(parts) == 4,
        )

    @staticmethod
    def _parse_provider(tag: Any, entry: Any) -> RuleSet:
        if not isinstance(entry, Mapping):
            raise DocumentError(f"rule-provider '{tag}' must be a mapping")
        provider_type = entry.get("type", "http")
        if provider_type not in ("http", "file"):
            raise DocumentError(f"rule-provider '{tag}' has unsupported type '{provider_type}'")
        fmt = PROVIDER_EXTENSIONS.get(entry.get("format", "yaml"))
        if fmt is None:
            raise DocumentError(f"rule-provider '{tag}' has unsupported format '{entry.get('format')}'")
        try:
            behavior = RuleSetBehavior(entry.get("behavior", "domain"))
        except ValueError as exc:
            raise DocumentError(f"rule-provider '{tag}' has unsupported behavior") from exc
        proxy = entry.get("proxy")
        return build_model(
            RuleSet,
            f"rule-provider '{tag}'",
            tag=str(tag),
            source=RuleSetSource.REMOTE if provider_type == "http" else RuleSetSource.LOCAL,
            format=fmt,
            behavior=behavior,
            url=entry.get("url"),
            path=entry.get("path"),
            refresh_interval=entry.get("interval"),
            download_via=(canonical_sentinel(proxy) or proxy) if proxy else None,
        )


def _unsupported(message: str, path: str) -> GenerationError:
    error = ValidationError(ValidationCode.UNSUPPORTED_CONDITION_FOR_ENGINE, message, path)
    return GenerationError(str(error), [error])


__all__ = ["MihomoAdapter"]
