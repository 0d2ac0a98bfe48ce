"""Tests for the per-pull-request review session."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from helpers.factories import BOT, bot_config, make_snapshot, review_comment, thread

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

from threadwise.models import Side
from threadwise.session import ReviewSession, get_session, load_session, set_session, set_target


class TestReviewSession:
    def test_endpoints(self):
        session = ReviewSession(make_snapshot(), bot_config())
        assert session.pulls_endpoint == "/repos/o/r/pulls/7"
        assert session.repo_endpoint == "/repos/o/r"
        assert session.pull_request.head_sha == "abc123"

    def test_index_and_identity_built_from_snapshot(self):
        session = ReviewSession(make_snapshot([review_comment(1)], [thread(1)]), bot_config())
        assert session.index.thread_for_root(1) is not None
        assert [c.id for c in session.index.roots_at("src/x.ts", 10, Side.RIGHT)] == [1]
        assert session.identity.login == BOT
        assert len(session.ledger) == 0


class TestLoadSession:
    async def test_passes_fetch_config(self, mocker: MockerFixture):
        fetch = mocker.patch("threadwise.session.fetch_snapshot", return_value=make_snapshot())
        config = bot_config()
        config = config.model_copy(update={"fetch": config.fetch.model_copy(update={"review_threads": False})})
        session = await load_session("o/r", 7, config)
        fetch.assert_awaited_once_with("o", "r", 7, review_threads=False)
        assert session.config is config


class TestGetSession:
    async def test_requires_a_pull_request(self):
        with pytest.raises(ValueError, match="No pull request configured"):
            await get_session()

    async def test_loads_once_from_target(self, mocker: MockerFixture):
        fetch = mocker.patch("threadwise.session.fetch_snapshot", return_value=make_snapshot())
        set_target("o/r", 7)
        first = await get_session()
        second = await get_session()
        assert first is second
        fetch.assert_awaited_once()

    async def test_loads_from_environment(self, mocker: MockerFixture, monkeypatch):
        fetch = mocker.patch("threadwise.session.fetch_snapshot", return_value=make_snapshot())
        monkeypatch.setenv("THREADWISE_REPO", "o/r")
        monkeypatch.setenv("THREADWISE_PR", "7")
        await get_session()
        assert fetch.await_args.args == ("o", "r", 7)

    async def test_installed_session_wins(self, mocker: MockerFixture):
        fetch = mocker.patch("threadwise.session.fetch_snapshot")
        installed = ReviewSession(make_snapshot(), bot_config())
        set_session(installed)
        assert await get_session() is installed
        fetch.assert_not_called()
