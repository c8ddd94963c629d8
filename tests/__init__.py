"""Test package marker for the routeforge suites.

What:
  Marks ``tests`` as a package so pytest can import the shared fakes from
  ``tests.unit`` and keeps module names unique across ``unit`` and ``e2e``.

Invariants & Safety:
  - Importing ``tests`` has no side effects; fixtures live in ``conftest.py``.
"""
