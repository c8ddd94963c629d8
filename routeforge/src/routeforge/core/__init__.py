"""Routeforge core: validation, batch authoring, generation, and refresh.

Submodules are imported directly (``routeforge.core.validator`` and so on);
the package itself stays import-free so the configuration layer can depend on
the validator without a cycle.
"""

__all__ = ["batch", "generator", "refresh", "validator"]
