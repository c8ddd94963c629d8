"""Pytest fixtures for unit tests requiring stores and collaborator fakes.

What:
  Make ``tests/unit`` importable and expose fixtures building a template
  store in a temporary directory together with the in-memory fetcher and
  proxy-core runner fakes.

Why:
  Store, generator, and refresh tests all need isolated state directories and
  collaborators that never touch the network or spawn binaries.

Interfaces:
  :func:`store`, :func:`fetcher`, :func:`core_runner`, :func:`log_stream`.
"""

import io
import sys
from pathlib import Path

import pytest

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeCoreRunner, FakeFetcher

from routeforge.config.template_store import TemplateStore
from routeforge.utils.logging import JsonLogger


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def store(tmp_path: Path, log_stream: io.StringIO) -> TemplateStore:
    """Return a template store rooted in a fresh temporary directory."""

    return TemplateStore(tmp_path / "state", logger=JsonLogger(stream=log_stream, component="test.store"))


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def core_runner() -> FakeCoreRunner:
    return FakeCoreRunner()
