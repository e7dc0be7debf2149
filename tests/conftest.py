# tests/conftest.py
from __future__ import annotations

import pytest

from wayback_rewind.cache import ResultCache


@pytest.fixture(autouse=True)
def _no_live_llm(monkeypatch):
    """Tests never see a real key; individual tests patch one in when they need the live path."""
    monkeypatch.setattr("wayback_rewind.clients.llm_openai.OPENAI_API_KEY", None)


@pytest.fixture
def cache():
    return ResultCache()


@pytest.fixture
def client():
    """TestClient with a fresh ResultCache so tests don't share cached snapshots or insights."""
    from fastapi.testclient import TestClient
    from wayback_rewind.main import app

    app.state.result_cache = ResultCache()
    return TestClient(app)
