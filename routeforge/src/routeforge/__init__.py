"""
Module: routeforge.__init__

What:
  Aggregate package exports for routeforge, the proxy policy manager that
  keeps one engine-neutral policy template per proxy core and compiles it into
  mihomo YAML or sing-box JSON.

Why:
  Centralising the exports keeps entry points stable while the internal layout
  evolves. Importers rely on these names to build CLI commands, load
  configuration schemas, and assemble the generation pipeline without touching
  private modules.

How:
  Provide an explicit ``__all__`` declaration that enumerates the public
  subpackages.

Interfaces:
  - adapters: Engine-specific translation strategies.
  - config: Policy model, runtime configuration, defaults, and template store.
  - core: Validator, batch authoring, generator, and rule-set refresh.
  - external: Proxy-core runner and remote-resource fetcher collaborators.
  - utils: Shared helpers for logging, checksums, and safe regexes.
"""

__all__ = [
    "adapters",
    "config",
    "core",
    "external",
    "utils",
]
