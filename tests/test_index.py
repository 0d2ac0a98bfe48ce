"""Tests for the location index builder."""

from __future__ import annotations

import pytest
from helpers.factories import BOT, at, bot_comment, issue_comment, review_comment, thread

from threadwise.index import build_location_index, build_threads_from_comments
from threadwise.models import LocationKey, Side


class TestFlatComments:
    def test_replies_excluded_from_location_index(self):
        index = build_location_index([
            bot_comment(1, minutes=0),
            review_comment(2, author="human", in_reply_to=1, minutes=5),
        ])
        assert [c.id for c in index.roots_at("src/x.ts", 10, Side.RIGHT)] == [1]

    def test_reply_folded_into_root_activity(self):
        index = build_location_index([
            bot_comment(1, minutes=0),
            review_comment(2, author="human", in_reply_to=1, minutes=5),
        ])
        activity = index.latest_activity(1)
        assert activity is not None
        assert activity.comment_id == 2
        assert activity.author == "human"
        assert activity.updated_at == at(5)

    def test_activity_is_max_over_root_and_replies(self):
        # Root edited after the reply was written
        index = build_location_index([
            review_comment(1, author="alice", minutes=30),
            review_comment(2, author="bob", in_reply_to=1, minutes=10),
        ])
        activity = index.latest_activity(1)
        assert activity is not None
        assert activity.comment_id == 1
        assert activity.updated_at == at(30)

    def test_equal_timestamps_latest_by_id(self):
        index = build_location_index([
            bot_comment(1, minutes=0),
            review_comment(2, author="alice", in_reply_to=1, minutes=0),
        ])
        activity = index.latest_activity(1)
        assert activity is not None
        assert activity.comment_id == 2
        assert activity.author == "alice"

    def test_reply_chain_followed_to_root(self):
        index = build_location_index([
            review_comment(1),
            review_comment(2, in_reply_to=1, minutes=1),
            review_comment(3, in_reply_to=2, minutes=2, author="carol"),
        ])
        assert index.root_id_of(3) == 1
        assert index.latest_activity(1).author == "carol"

    def test_reply_to_missing_parent_uses_link_target(self):
        index = build_location_index([review_comment(9, in_reply_to=4)])
        assert index.root_id_of(9) == 4
        assert index.latest_activity(4).comment_id == 9
        assert index.roots_at("src/x.ts", 10) == ()

    def test_roots_ordered_by_latest_activity(self):
        index = build_location_index([
            review_comment(1, minutes=0),
            review_comment(2, minutes=10),
            review_comment(3, in_reply_to=1, minutes=20),
        ])
        assert [c.id for c in index.roots_at("src/x.ts", 10, Side.RIGHT)] == [1, 2]

    def test_side_none_spans_both_sides(self):
        index = build_location_index([
            review_comment(1, side=Side.RIGHT),
            review_comment(2, side=Side.LEFT, minutes=1),
        ])
        assert {c.id for c in index.roots_at("src/x.ts", 10)} == {1, 2}
        assert [c.id for c in index.roots_at("src/x.ts", 10, Side.LEFT)] == [2]

    def test_issue_comments_not_located(self):
        index = build_location_index([issue_comment(100)])
        assert index.root_id_of(100) == 100
        assert index.comment(100) is not None
        assert index.roots_at("src/x.ts", 10) == ()

    def test_outdated_comment_without_line_not_located(self):
        index = build_location_index([review_comment(1, line=None)])
        assert index.root_id_of(1) == 1
        assert index.roots_at("src/x.ts", 10) == ()

    def test_accepts_iterators(self):
        index = build_location_index(iter([review_comment(1)]), iter([thread(1)]))
        assert index.roots_at("src/x.ts", 10)
        assert index.threads_at("src/x.ts", 10)


class TestClassifiedThreads:
    def test_lookup_by_location_id_node_and_root(self):
        t = thread(1, side=Side.LEFT)
        index = build_location_index([], [t])
        assert index.threads_at("src/x.ts", 10, Side.LEFT) == (t,)
        assert index.threads_at("src/x.ts", 10) == (t,)
        assert index.threads_at("src/x.ts", 10, Side.RIGHT) == ()
        assert index.thread_by_id(1) is t
        assert index.thread_by_node("PRRT_1") is t
        assert index.thread_for_root(1) is t
        assert index.has_threads

    def test_sideless_legacy_record_used_when_no_sided_match(self):
        legacy = thread(1, side=None)
        index = build_location_index([], [legacy])
        assert index.threads_at("src/x.ts", 10, Side.RIGHT) == (legacy,)

    def test_sided_record_preferred_over_legacy(self):
        legacy = thread(1, side=None)
        sided = thread(2, side=Side.RIGHT)
        index = build_location_index([], [legacy, sided])
        assert index.threads_at("src/x.ts", 10, Side.RIGHT) == (sided,)
        assert set(index.threads_at("src/x.ts", 10)) == {legacy, sided}

    def test_thread_without_line_reachable_by_id_only(self):
        t = thread(1, line=None, outdated=True)
        index = build_location_index([], [t])
        assert index.thread_by_id(1) is t
        assert index.threads_at("src/x.ts", 10) == ()

    def test_threads_without_root_id_all_listed(self):
        first = thread(None, node_id="PRRT_a")
        second = thread(None, node_id="PRRT_b", line=12)
        index = build_location_index([], [first, second])
        assert index.all_threads() == (first, second)
        assert index.thread_by_node("PRRT_b") is second
        assert index.thread_by_id(0) is None

    def test_last_actor_is_weaker_fallback(self):
        index = build_location_index([], [thread(50, last_actor=BOT, minutes=3)])
        activity = index.latest_activity(50)
        assert activity is not None
        assert activity.comment_id is None
        assert activity.author == BOT

    def test_flat_activity_beats_last_actor(self):
        index = build_location_index(
            [review_comment(1), review_comment(2, author="human", in_reply_to=1, minutes=9)],
            [thread(1, last_actor=BOT)],
        )
        assert index.latest_activity(1).author == "human"

    def test_empty_thread_list(self):
        index = build_location_index([review_comment(1)])
        assert not index.has_threads
        assert index.all_threads() == ()

    def test_views_are_read_only(self):
        index = build_location_index([review_comment(1)])
        with pytest.raises(TypeError):
            index._roots_by_key[LocationKey("src/x.ts", 11, Side.RIGHT)] = ()  # type: ignore[index]


class TestBuildThreadsFromComments:
    def test_one_thread_per_root(self):
        threads = build_threads_from_comments([
            bot_comment(1),
            review_comment(2, author="human", in_reply_to=1, minutes=4),
            review_comment(3, line=12, minutes=1),
            issue_comment(4),
        ])
        by_id = {t.id: t for t in threads}
        assert set(by_id) == {1, 3}
        assert by_id[1].last_actor == "human"
        assert by_id[1].root_author == BOT
        assert by_id[1].node_id is None
        assert not by_id[1].is_resolved
        assert by_id[3].line == 12
