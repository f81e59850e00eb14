from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from docmine.cache.store import ResponseCache
from docmine.storage.connection import _clear_connection_cache
from docmine.storage.repository import PipelineStore
from tests.fakes import SleepRecorder


def _configure_state(monkeypatch, root: Path) -> Path:
    """Point every XDG root at ``root`` and drop DOCMINE_* overrides."""
    for key in list(os.environ):
        if key.startswith("DOCMINE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(root / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(root / "data"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(root / "cache"))
    return root


@pytest.fixture(autouse=True)
def state_env(tmp_path, monkeypatch):
    root = _configure_state(monkeypatch, tmp_path)
    yield root
    _clear_connection_cache()


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "data" / "docmine" / "docmine.db"


@pytest.fixture
def store(db_path) -> PipelineStore:
    return PipelineStore(db_path)


@pytest.fixture
def cache(tmp_path) -> ResponseCache:
    return ResponseCache(tmp_path / "cache" / "docmine" / "llm")


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()
