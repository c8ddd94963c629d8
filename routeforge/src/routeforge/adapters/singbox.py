"""Engine-B adapter: policy templates to and from sing-box JSON documents.

What:
  Compile a :class:`~routeforge.config.schema.Template` into a sing-box 1.12
  configuration (``outbounds``, ``route.rules``, ``route.rule_set``,
  ``route.final``) and read such a document back into the policy model.

Why:
  sing-box differs from the line grammar of engine A in three ways that matter
  for correctness: rules carry explicit actions, sibling fields inside one rule
  are combined by the engine rather than listed separately, and the catch-all
  outbound lives in ``route.final`` instead of the rule list. Getting any of
  these wrong silently reroutes traffic.

How:
  - Groups compile to ``selector`` or ``urltest`` outbounds; ``fallback`` also
    compiles to ``urltest`` and is only distinguishable through a reference
    template on the way back.
  - Each rule compiles to one rule object. ``and``/``or`` conditions become
    ``{"type": "logical", "mode": ..., "rules": [...]}`` nodes and the
    ``dns-hijack`` composite becomes a logical-or of port 53 and protocol dns
    with the ``hijack-dns`` action.
  - The match-all rule is lifted out of the rule list into ``route.final``.
  - Rule-sets compile into ``route.rule_set`` declarations with duration
    strings for refresh intervals.

Interfaces:
  :class:`SingboxAdapter`, :func:`format_duration`, :func:`parse_duration`.

Invariants & Safety:
  - Rule objects appear in template order; no match rule is ever emitted into
    ``route.rules``.
  - Built-in ``direct`` (and ``block`` when referenced) outbounds are appended
    after groups and node outbounds.
  - Unrepresentable constructs raise :class:`GenerationError`.
"""
from __future__ import annotations

import copy
import json
import re
from typing import Any, Dict, List, Mapping, Optional

from ..config.schema import (
    DIRECT,
    REJECT,
    Condition,
    ConditionKind,
    EngineType,
    GenerationOptions,
    GroupKind,
    ProxyGroup,
    Rule,
    RuleSet,
    RuleSetFormat,
    RuleSetSource,
    Template,
    canonical_sentinel,
)
from ..core.validator import SINGBOX_GEOIP_VALUES
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

SENTINELS = {DIRECT: "direct", REJECT: "block"}

GROUP_TYPES = {
    GroupKind.SELECTOR: "selector",
    GroupKind.URLTEST: "urltest",
    GroupKind.FALLBACK: "urltest",
    GroupKind.DIRECT: "direct",
    GroupKind.BLOCK: "block",
}
GROUP_OUTBOUND_TYPES = frozenset({"selector", "urltest"})

CONDITION_FIELDS = {
    ConditionKind.DOMAIN: "domain",
    ConditionKind.DOMAIN_SUFFIX: "domain_suffix",
    ConditionKind.DOMAIN_KEYWORD: "domain_keyword",
    ConditionKind.IP_CIDR: "ip_cidr",
    ConditionKind.RULE_SET: "rule_set",
    ConditionKind.PROTOCOL: "protocol",
}
FIELD_KINDS = {value: key for key, value in CONDITION_FIELDS.items()}
PORT_FIELDS = ("port", "port_range")
ACTION_KEYS = frozenset({"action", "outbound", "invert"})

DNS_HIJACK_RULES = [{"port": [53]}, {"protocol": ["dns"]}]

_DURATION_UNITS = (("d", 86400), ("h", 3600), ("m", 60), ("s", 1))
_DURATION_PATTERN = re.compile(r"(\d+)([dhms])")


def format_duration(seconds: int) -> str:
    """Render ``seconds`` using the largest whole unit (``1d``, ``12h``, ``5m``)."""

    for suffix, size in _DURATION_UNITS:
        if seconds % size == 0:
            return f"{seconds // size}{suffix}"
    return f"{seconds}s"


def parse_duration(value: Any) -> Optional[int]:
    """Parse a duration string such as ``1d`` or ``1h30m`` into seconds."""

    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text or not re.fullmatch(r"(?:\d+[dhms])+", text):
        raise DocumentError(f"unsupported duration '{value}'")
    units = dict(_DURATION_UNITS)
    return sum(int(amount) * units[unit] for amount, unit in _DURATION_PATTERN.findall(text))


class SingboxAdapter:
    """Stateless translator between templates and sing-box documents."""

    engine = EngineType.SINGBOX
    artifact_name = "config.json"

    def to_document(
        self, template: Template, options: GenerationOptions, files: Optional[RuleSetFiles] = None
    ) -> AdapterOutput:
        """Compile ``template`` into a sing-box configuration mapping.

        Args:
          template: Validated policy model scoped to sing-box.
          options: Inbound settings and known node outbounds.
          files: Resolved rule-set files by tag. A remote rule-set whose file
            exists is emitted as a ``local`` rule-set reading that file.

        Returns:
          :class:`AdapterOutput` holding the mapping and unused rule-set
          warnings.

        Raises:
          GenerationError: When the template uses constructs sing-box cannot
            express.
        """

        outbounds = [self._group_outbound(group, template, options) for group in enabled_groups(template)]
        outbounds.extend(copy.deepcopy(node) for node in options.nodes)

        rules: List[Dict[str, Any]] = []
        if options.sniff:
            rules.append({"action": "sniff"})
        final: Optional[str] = None
        for index, rule in enumerate(template.rules):
            if rule.is_match_all:
                final = self._reference(rule.target or DIRECT)
                continue
            rules.append(self._rule_object(rule, f"rules[{index}]"))

        route: Dict[str, Any] = {"rules": rules}
        if template.rule_sets:
            route["rule_set"] = [
                self._rule_set_entry(rule_set, (files or {}).get(rule_set.tag)) for rule_set in template.rule_sets
            ]
        if final is not None:
            route["final"] = final
        route["auto_detect_interface"] = True

        referenced = {member for outbound in outbounds for member in outbound.get("outbounds", [])}
        referenced.add(final)
        referenced.update(entry.get("download_detour") for entry in route.get("rule_set", []))
        outbounds.append({"type": "direct", "tag": SENTINELS[DIRECT]})
        if SENTINELS[REJECT] in referenced:
            outbounds.append({"type": "block", "tag": SENTINELS[REJECT]})

        document: Dict[str, Any] = {
            "log": {"level": options.log_level, "timestamp": True},
            "inbounds": [self._inbound(options)],
            "outbounds": outbounds,
            "route": route,
        }
        if options.clash_api:
            clash_api: Dict[str, Any] = {"external_controller": options.clash_api}
            if options.secret:
                clash_api["secret"] = options.secret
            document["experimental"] = {"clash_api": clash_api}
        return AdapterOutput(document=document, warnings=unused_rule_set_warnings(template))

    def from_document(self, document: Mapping[str, Any], reference: Optional[Template] = None) -> Template:
        """Read a sing-box mapping back into the policy model.

        The sniff preamble rule is skipped and ``route.final`` becomes the
        trailing match-all rule.

        Raises:
          DocumentError: When the document uses rule shapes or actions the
            model has no equivalent for.
        """

        if not isinstance(document, Mapping):
            raise DocumentError("sing-box document must be a mapping")
        raw_outbounds = [item for item in document.get("outbounds") or [] if isinstance(item, Mapping)]
        group_entries = [item for item in raw_outbounds if self._is_group_outbound(item)]
        names = {item.get("tag") for item in group_entries}
        groups = [self._parse_group(item, names) for item in group_entries]

        route = document.get("route") or {}
        rules: List[Rule] = []
        for raw in route.get("rules") or []:
            rule = self._parse_rule(raw)
            if rule is not None:
                rules.append(rule)
        final = route.get("final")
        if final:
            rules.append(Rule(kind=ConditionKind.MATCH, target=canonical_sentinel(final) or final))
        rule_sets = [self._parse_rule_set(item) for item in route.get("rule_set") or []]
        return Template(
            groups=restore_groups(groups, reference),
            rules=restore_rules(rules, reference, carried=("description", "no_resolve")),
            rule_sets=restore_rule_sets(rule_sets, reference, fields=("description", "behavior")),
        )

    def dumps(self, document: Mapping[str, Any]) -> str:
        return json.dumps(document, indent=2, ensure_ascii=False) + "\n"

    def loads(self, text: str) -> Dict[str, Any]:
        try:
            loaded = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DocumentError(f"invalid sing-box JSON: {exc}") from exc
        if not isinstance(loaded, dict):
            raise DocumentError("sing-box document must be an object")
        return loaded

    # ------------------------------------------------------------------ emit

    @staticmethod
    def _reference(value: str) -> str:
        sentinel = canonical_sentinel(value)
        return SENTINELS[sentinel] if sentinel else value

    @staticmethod
    def _inbound(options: GenerationOptions) -> Dict[str, Any]:
        if options.inbound_mode == "tun":
            return {
                "type": "tun",
                "tag": "tun-in",
                "address": ["172.19.0.1/30"],
                "auto_route": True,
                "strict_route": True,
            }
        return {
            "type": "mixed",
            "tag": "mixed-in",
            "listen": "0.0.0.0" if options.allow_lan else "127.0.0.1",
            "listen_port": options.mixed_port,
        }

    def _group_outbound(self, group: ProxyGroup, template: Template, options: GenerationOptions) -> Dict[str, Any]:
        if group.kind not in GROUP_TYPES:
            raise _unsupported(f"group '{group.tag}' uses {group.kind.value} which sing-box does not provide", "groups")
        entry: Dict[str, Any] = {"type": GROUP_TYPES[group.kind], "tag": group.tag}
        if group.kind in (GroupKind.DIRECT, GroupKind.BLOCK):
            return entry
        members = resolve_members(group, template, options, SENTINELS)
        entry["outbounds"] = members
        if group.kind is GroupKind.SELECTOR:
            if group.default_member:
                default = self._reference(group.default_member)
                if default in members:
                    entry["default"] = default
            return entry
        if group.test_url:
            entry["url"] = group.test_url
        if group.test_interval is not None:
            entry["interval"] = format_duration(group.test_interval)
        if group.tolerance is not None:
            entry["tolerance"] = group.tolerance
        return entry

    def _rule_object(self, rule: Rule, path: str) -> Dict[str, Any]:
        if rule.kind is ConditionKind.DNS_HIJACK:
            return {
                "type": "logical",
                "mode": "or",
                "rules": copy.deepcopy(DNS_HIJACK_RULES),
                "action": "hijack-dns",
            }
        entry = self._condition(rule, path)
        target = canonical_sentinel(rule.target or "")
        if target == REJECT:
            entry["action"] = "reject"
        else:
            entry["action"] = "route"
            entry["outbound"] = self._reference(rule.target or DIRECT)
        return entry

    def _condition(self, condition: Condition, path: str) -> Dict[str, Any]:
        kind = condition.kind
        entry: Dict[str, Any] = {}
        if kind in (ConditionKind.AND, ConditionKind.OR):
            entry["type"] = "logical"
            entry["mode"] = kind.value
            entry["rules"] = [
                self._condition(child, f"{path}.conditions[{index}]")
                for index, child in enumerate(condition.conditions)
            ]
        elif kind is ConditionKind.GEOIP:
            unsupported = [value for value in condition.payload if value.lower() not in SINGBOX_GEOIP_VALUES]
            if unsupported:
                raise _unsupported(f"geoip {unsupported} has no sing-box equivalent", f"{path}.payload")
            entry["ip_is_private"] = True
        elif kind is ConditionKind.PORT:
            ports = [int(value) for value in condition.payload if ":" not in value]
            ranges = [value for value in condition.payload if ":" in value]
            if ports:
                entry["port"] = ports
            if ranges:
                entry["port_range"] = ranges
        elif kind in CONDITION_FIELDS:
            entry[CONDITION_FIELDS[kind]] = list(condition.payload)
        else:
            raise _unsupported(f"condition '{kind.value}' cannot be nested or compiled here", f"{path}.kind")
        if condition.invert:
            entry["invert"] = True
        return entry

    def _rule_set_entry(self, rule_set: RuleSet, file: Optional[RuleSetFile] = None) -> Dict[str, Any]:
        remote = rule_set.source is RuleSetSource.REMOTE and not (file is not None and file.exists)
        entry: Dict[str, Any] = {
            "type": RuleSetSource.REMOTE.value if remote else RuleSetSource.LOCAL.value,
            "tag": rule_set.tag,
            "format": rule_set.format.value,
        }
        if remote:
            entry["url"] = rule_set.url
            if rule_set.download_via:
                entry["download_detour"] = self._reference(rule_set.download_via)
            if rule_set.refresh_interval is not None:
                entry["update_interval"] = format_duration(rule_set.refresh_interval)
        else:
            entry["path"] = file.path if file is not None else rule_set.path
        return entry

    # ----------------------------------------------------------------- parse

    @staticmethod
    def _is_group_outbound(entry: Mapping[str, Any]) -> bool:
        outbound_type = entry.get("type")
        if outbound_type in GROUP_OUTBOUND_TYPES:
            return True
        return outbound_type in ("direct", "block") and canonical_sentinel(str(entry.get("tag"))) is None

    @staticmethod
    def _parse_group(entry: Mapping[str, Any], names: set) -> ProxyGroup:
        tag = entry.get("tag")
        if not tag:
            raise DocumentError("outbound entries need a tag")
        outbound_type = entry["type"]
        if outbound_type in ("direct", "block"):
            return build_model(ProxyGroup, f"outbound '{tag}'", tag=tag, kind=GroupKind(outbound_type))
        members = [str(item) for item in entry.get("outbounds") or []]
        known = [item for item in members if item in names or canonical_sentinel(item)]
        use_all = len(known) != len(members)
        default = entry.get("default")
        return build_model(
            ProxyGroup,
            f"outbound '{tag}'",
            tag=tag,
            kind=GroupKind.SELECTOR if outbound_type == "selector" else GroupKind.URLTEST,
            members=[] if use_all else [canonical_sentinel(item) or item for item in members],
            use_all_outbounds=use_all,
            default_member=None if use_all or not default else canonical_sentinel(default) or default,
            test_url=entry.get("url"),
            test_interval=parse_duration(entry.get("interval")),
            tolerance=entry.get("tolerance"),
        )

    def _parse_rule(self, raw: Any) -> Optional[Rule]:
        if not isinstance(raw, Mapping):
            raise DocumentError(f"route rule {raw!r} is not an object")
        action = raw.get("action", "route")
        if action == "sniff":
            return None
        if action == "hijack-dns":
            if raw.get("type") == "logical" and raw.get("mode") == "or" and raw.get("rules") == DNS_HIJACK_RULES:
                return Rule(kind=ConditionKind.DNS_HIJACK)
            raise DocumentError("hijack-dns is only understood for the port 53 or protocol dns rule")
        if action == "reject":
            target = REJECT
        elif action == "route":
            outbound = raw.get("outbound")
            if not outbound:
                raise DocumentError("route rules need an outbound")
            target = canonical_sentinel(outbound) or outbound
        else:
            raise DocumentError(f"rule action '{action}' is not supported")
        condition = self._parse_condition({key: value for key, value in raw.items() if key not in ("action", "outbound")})
        return Rule(target=target, **condition.model_dump())

    def _parse_condition(self, raw: Mapping[str, Any]) -> Condition:
        invert = bool(raw.get("invert", False))
        if raw.get("type") == "logical":
            mode = raw.get("mode")
            if mode not in ("and", "or"):
                raise DocumentError(f"logical rule mode '{mode}' is not supported")
            children = [self._parse_condition(child) for child in raw.get("rules") or []]
            return Condition(kind=ConditionKind(mode), conditions=children, invert=invert)
        fields = [key for key in raw if key not in ACTION_KEYS and key != "type"]
        if fields and set(fields) <= set(PORT_FIELDS):
            payload = [str(port) for port in raw.get("port") or []] + list(raw.get("port_range") or [])
            return Condition(kind=ConditionKind.PORT, payload=payload, invert=invert)
        if len(fields) != 1:
            raise DocumentError(f"rule fields {sorted(fields)} must be expressed as a logical rule")
        field = fields[0]
        if field == "ip_is_private":
            return Condition(kind=ConditionKind.GEOIP, payload=["private"], invert=invert)
        if field not in FIELD_KINDS:
            raise DocumentError(f"rule field '{field}' is not supported")
        return Condition(kind=FIELD_KINDS[field], payload=raw[field], invert=invert)

    @staticmethod
    def _parse_rule_set(entry: Any) -> RuleSet:
        if not isinstance(entry, Mapping) or not entry.get("tag"):
            raise DocumentError("rule_set entries need a tag")
        try:
            source = RuleSetSource(entry.get("type", "remote"))
            fmt = RuleSetFormat(entry.get("format", "binary"))
        except ValueError as exc:
            raise DocumentError(f"rule_set '{entry['tag']}' has an unsupported type or format") from exc
        detour = entry.get("download_detour")
        return build_model(
            RuleSet,
            f"rule_set '{entry['tag']}'",
            tag=entry["tag"],
            source=source,
            format=fmt,
            url=entry.get("url"),
            path=entry.get("path"),
            download_via=(canonical_sentinel(detour) or detour) if detour else None,
            refresh_interval=parse_duration(entry.get("update_interval")),
        )


def _unsupported(message: str, path: str) -> GenerationError:
    error = ValidationError(ValidationCode.UNSUPPORTED_CONDITION_FOR_ENGINE, message, path)
    return GenerationError(str(error), [error])


__all__ = ["SingboxAdapter", "format_duration", "parse_duration"]
