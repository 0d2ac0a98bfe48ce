"""Global test fixtures for threadwise."""

from __future__ import annotations

import pytest

from threadwise import github_api, session
from threadwise.config import Config, set_config


@pytest.fixture(autouse=True)
def _default_config(monkeypatch):
    """Reset config and the active session before every test.

    A developer's own .threadwise.toml or THREADWISE_* variables must not
    leak into the suite.
    """
    monkeypatch.delenv("THREADWISE_REPO", raising=False)
    monkeypatch.delenv("THREADWISE_PR", raising=False)
    set_config(Config())
    session.set_session(None)
    session.set_target(None, None)
    yield
    set_config(Config())
    session.set_session(None)
    session.set_target(None, None)


@pytest.fixture
def gh_token(monkeypatch):
    """Provide a fake token so no ``gh`` subprocess is spawned."""
    github_api.reset_token()
    monkeypatch.setenv("GH_TOKEN", "tok_test")
    yield "tok_test"
    github_api.reset_token()
