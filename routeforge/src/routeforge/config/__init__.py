"""Routeforge configuration package.

What:
  Provide a cohesive import surface for the policy model, runtime
  configuration loading, and template serialisation helpers.

Why:
  Callers must go through the schema types so every user-provided YAML or JSON
  payload is strictly validated before it reaches the validator or adapters.

How:
  Re-export the loader helpers and pydantic schema classes forming the
  supported API. The template store and defaults are imported from their
  modules directly because they depend on the core package.

Interfaces:
  - load_template / dump_template / parse_template: Template YAML I/O.
  - get_runtime_config / load_runtime_config / reset_runtime_config: Resolve
    ``routeforge.yaml`` and expose a cached runtime configuration object.
  - Template / ProxyGroup / Rule / RuleSet / GenerationOptions /
    RuntimeConfig / EngineType / SchemaError: schema types.
"""

from .loader import (
    ConfigLoadError,
    RuntimeConfigError,
    TemplateLoadError,
    dump_template,
    get_runtime_config,
    load_runtime_config,
    load_template,
    parse_template,
    reset_runtime_config,
)
from .schema import (
    EngineType,
    GenerationOptions,
    ProxyGroup,
    Rule,
    RuleSet,
    RuntimeConfig,
    SchemaError,
    Template,
)

__all__ = [
    "ConfigLoadError",
    "RuntimeConfigError",
    "TemplateLoadError",
    "dump_template",
    "get_runtime_config",
    "load_runtime_config",
    "load_template",
    "parse_template",
    "reset_runtime_config",
    "EngineType",
    "GenerationOptions",
    "ProxyGroup",
    "Rule",
    "RuleSet",
    "RuntimeConfig",
    "SchemaError",
    "Template",
]
