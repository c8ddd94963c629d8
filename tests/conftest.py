"""Pytest configuration shared by every routeforge suite.

What:
  Establish project import paths and define fixtures that apply a canned
  runtime configuration to every test, plus a per-test configuration whose
  directories live under ``tmp_path``.

Why:
  The CLI tests execute the real ``routeforge`` package. To ensure imports
  resolve to the source tree rather than installed wheels, we prepend the
  ``routeforge/src`` directory to ``sys.path``. The autouse fixture keeps
  configuration state deterministic between tests.

How:
  Compute the project root relative to the file, inject the source directory
  into ``sys.path`` when available, and manage ``ROUTEFORGE_CONFIG_PATH`` while
  resetting the shared runtime cache before and after each test.

Interfaces:
  :func:`runtime_config` (autouse fixture), :func:`runtime_file`.

Invariants & Safety:
  - The autouse fixture always resets the runtime configuration to prevent
    tests from leaking state across modules.
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "routeforge" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest
import yaml

from routeforge.config.loader import reset_runtime_config

CONFIG_PATH = Path(__file__).resolve().parent / "data" / "config.yaml"


@pytest.fixture(autouse=True)
def runtime_config(monkeypatch: pytest.MonkeyPatch):
    """Apply the canned configuration file for every test.

    What:
      Sets ``ROUTEFORGE_CONFIG_PATH`` to the repository fixture and clears the
      runtime configuration cache before and after each test.

    Why:
      routeforge caches configuration globally. Without explicit resets, tests
      could interfere with each other or depend on execution order.
    """

    monkeypatch.setenv("ROUTEFORGE_CONFIG_PATH", str(CONFIG_PATH))
    reset_runtime_config()
    try:
        yield
    finally:
        reset_runtime_config()


@pytest.fixture
def runtime_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Write a runtime configuration rooted in ``tmp_path`` and select it.

    Returns:
      Path of the written ``routeforge.yaml``.
    """

    payload = {
        "version": 1,
        "default_engine": "mihomo",
        "paths": {
            "state_dir": str(tmp_path / "state"),
            "output_dir": str(tmp_path / "output"),
            "ruleset_dir": str(tmp_path / "rulesets"),
        },
        "refresh": {"max_concurrent": 2, "timeout_s": 5},
    }
    path = tmp_path / "routeforge.yaml"
    path.write_text(yaml.safe_dump(payload), encoding="utf-8")
    monkeypatch.setenv("ROUTEFORGE_CONFIG_PATH", str(path))
    reset_runtime_config()
    return path
