# tests/conftest.py
"""Shared fixtures."""

import pytest

from stackprobe.database import LocalSqliteStore
from stackprobe.models import BrowserSignals, NetworkRequest, NetworkResponse


@pytest.fixture
def store():
    """In-memory SQLite store."""
    db = LocalSqliteStore(db_url="sqlite:///:memory:")
    yield db
    db.close()


@pytest.fixture
def ai_signals():
    """Render signals for a page that streams from OpenAI through Helicone."""
    return BrowserSignals(
        url="https://chat.example.com",
        final_url="https://chat.example.com/",
        html="<html><body><div id='__next'></div></body></html>",
        window_hints={"__NEXT_DATA__": True},
        requests=[
            NetworkRequest(url="https://chat.example.com/_next/static/app.js", resource_type="script"),
            NetworkRequest(url="https://api.openai.com/v1/chat/completions", method="POST", resource_type="fetch"),
        ],
        responses=[
            NetworkResponse(
                url="https://api.openai.com/v1/chat/completions",
                status=200,
                content_type="text/event-stream",
                headers={"content-type": "text/event-stream", "helicone-id": "abc"},
            ),
        ],
        domains=["chat.example.com", "api.openai.com"],
        paths=["/_next/static/app.js", "/v1/chat/completions"],
    )
