"""Tests for thread resolution: which conversation a write belongs to."""

from __future__ import annotations

from helpers.factories import bot_comment, issue_comment, make_snapshot, review_comment, thread

from threadwise.index import build_location_index
from threadwise.models import Refusal, RefusalKind, Side
from threadwise.resolver import NewThread, ReplyTarget, WriteRequest, resolve_explicit, resolve_target


def _resolve(comments=(), threads=(), **request):
    snapshot = make_snapshot(comments, threads)
    index = build_location_index(snapshot.comments, snapshot.threads)
    default_side = request.pop("default_side", Side.RIGHT)
    request.setdefault("path", "src/x.ts")
    return resolve_target(index, snapshot, WriteRequest(**request), default_side=default_side)


class TestLocationValidation:
    def test_line_not_in_diff(self):
        decision = _resolve(line=99, side=Side.RIGHT)
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.INVALID_LOCATION
        assert "not part of the diff" in decision.message
        assert "diff first" in decision.message

    def test_wrong_side(self):
        decision = _resolve(path="src/gone.ts", line=21, side=Side.RIGHT)
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.INVALID_LOCATION

    def test_file_not_in_pull_request(self):
        decision = _resolve(path="README.md", line=1)
        assert isinstance(decision, Refusal)
        assert "not changed by this pull request" in decision.message

    def test_binary_file_has_no_diff(self):
        decision = _resolve(path="assets/logo.png", line=1)
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.INVALID_LOCATION
        assert "No diff is available" in decision.message

    def test_existing_thread_does_not_excuse_invalid_line(self):
        decision = _resolve([review_comment(1, line=99)], [thread(1, line=99)], line=99, side=Side.RIGHT)
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.INVALID_LOCATION


class TestNewThread:
    def test_empty_location(self):
        assert _resolve(line=12, side=Side.RIGHT) == NewThread(path="src/x.ts", line=12, side=Side.RIGHT)

    def test_side_defaults_to_right_when_addressable(self):
        assert _resolve(line=10) == NewThread(path="src/x.ts", line=10, side=Side.RIGHT)

    def test_configured_default_side(self):
        decision = _resolve(line=10, default_side=Side.LEFT)
        assert decision == NewThread(path="src/x.ts", line=10, side=Side.LEFT)

    def test_side_falls_back_to_left(self):
        assert _resolve(path="src/gone.ts", line=21) == NewThread(path="src/gone.ts", line=21, side=Side.LEFT)

    def test_omitted_line_uses_preferred_anchor(self):
        assert _resolve(path="src/a.ts") == NewThread(path="src/a.ts", line=1, side=Side.RIGHT)

    def test_omitted_line_without_patch(self):
        decision = _resolve(path="assets/logo.png")
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.INVALID_LOCATION

    def test_allow_new_thread_skips_existing(self):
        decision = _resolve([review_comment(1)], [thread(1)], line=10, side=Side.RIGHT, allow_new_thread=True)
        assert decision == NewThread(path="src/x.ts", line=10, side=Side.RIGHT)


class TestExplicitId:
    def test_node_id(self):
        decision = _resolve([review_comment(1)], [thread(1)], thread_id="PRRT_1")
        assert isinstance(decision, ReplyTarget)
        assert decision.root_comment_id == 1
        assert decision.source == "explicit"

    def test_numeric_string_is_an_id(self):
        decision = _resolve([review_comment(1)], [thread(1)], thread_id=" 1 ")
        assert isinstance(decision, ReplyTarget)
        assert decision.root_comment_id == 1

    def test_reply_id_maps_to_root(self):
        decision = _resolve([review_comment(1), review_comment(2, in_reply_to=1, minutes=1)], thread_id=2)
        assert isinstance(decision, ReplyTarget)
        assert decision.root_comment_id == 1
        assert decision.thread is None

    def test_skips_diff_validation(self):
        comments = [review_comment(1, path="src/old.ts", line=400)]
        decision = _resolve(comments, [thread(1, path="src/old.ts", line=400)], path="src/old.ts", line=400, thread_id=1)
        assert isinstance(decision, ReplyTarget)

    def test_unknown_node_id(self):
        decision = _resolve([review_comment(1)], [thread(1)], thread_id="PRRT_nope", line=10)
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.NOT_FOUND

    def test_unknown_numeric_id_never_redirected(self):
        # A valid location does not rescue an unknown explicit id
        decision = _resolve([review_comment(1)], line=10, side=Side.RIGHT, thread_id=404)
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.NOT_FOUND

    def test_thread_without_known_root(self):
        index = build_location_index([], [thread(None, node_id="PRRT_x", thread_id=77)])
        decision = resolve_explicit(index, "PRRT_x")
        assert isinstance(decision, Refusal)
        assert "no known root" in decision.message

    def test_top_level_comment(self):
        decision = _resolve([issue_comment(100)], thread_id=100)
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.NOT_FOUND
        assert "top-level" in decision.message


class TestClassifiedThreads:
    def test_two_sides_without_side_is_ambiguous(self):
        comments = [review_comment(1, line=11), review_comment(2, line=11, side=Side.LEFT, minutes=1)]
        threads = [thread(1, line=11), thread(2, line=11, side=Side.LEFT, resolved=True)]
        decision = _resolve(comments, threads, line=11)
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.AMBIGUOUS
        assert {c.node_id for c in decision.candidates} == {"PRRT_1", "PRRT_2"}
        assert "side=LEFT or side=RIGHT" in decision.message
        assert "resolved" in decision.message

    def test_side_narrows_to_one(self):
        comments = [review_comment(1, line=11), review_comment(2, line=11, side=Side.LEFT, minutes=1)]
        threads = [thread(1, line=11), thread(2, line=11, side=Side.LEFT)]
        decision = _resolve(comments, threads, line=11, side=Side.LEFT)
        assert isinstance(decision, ReplyTarget)
        assert decision.root_comment_id == 2
        assert decision.source == "thread"

    def test_two_threads_same_side_is_ambiguous(self):
        threads = [thread(1), thread(2, minutes=5)]
        decision = _resolve([review_comment(1), review_comment(2, minutes=5)], threads, line=10, side=Side.RIGHT)
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.AMBIGUOUS
        assert len(decision.candidates) == 2
        assert "side=LEFT" not in decision.message

    def test_one_thread_and_one_extra_root_is_not_ambiguous(self):
        comments = [review_comment(1), review_comment(5, side=Side.LEFT, minutes=1)]
        decision = _resolve(comments, [thread(1)], line=10)
        assert isinstance(decision, ReplyTarget)
        assert decision.root_comment_id == 1

    def test_one_thread_and_two_extra_roots_is_ambiguous(self):
        comments = [review_comment(1), review_comment(5, side=Side.LEFT, minutes=1), review_comment(6, side=Side.LEFT, minutes=2)]
        decision = _resolve(comments, [thread(1)], line=10)
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.AMBIGUOUS
        assert len(decision.candidates) == 3
        assert {c.source for c in decision.candidates} == {"thread", "comment"}

    def test_side_with_no_thread_falls_through_to_flat(self):
        comments = [review_comment(1), review_comment(5, side=Side.LEFT, minutes=1)]
        decision = _resolve(comments, [thread(1)], line=10, side=Side.LEFT)
        assert isinstance(decision, ReplyTarget)
        assert decision.root_comment_id == 5
        assert decision.source == "comment"

    def test_thread_replied_by_node_when_root_unknown(self):
        decision = _resolve([], [thread(None, node_id="PRRT_x", thread_id=77)], line=10, side=Side.RIGHT)
        assert isinstance(decision, ReplyTarget)
        assert decision.root_comment_id is None
        assert decision.node_id == "PRRT_x"

    def test_resolved_thread_is_still_a_reply_target(self):
        decision = _resolve([bot_comment(1)], [thread(1, resolved=True)], line=10, side=Side.RIGHT)
        assert isinstance(decision, ReplyTarget)
        assert decision.is_resolved


class TestFlatFallback:
    def test_two_roots_same_key_without_threads_is_ambiguous(self):
        comments = [review_comment(1, author="alice"), review_comment(2, author="bob", minutes=3)]
        decision = _resolve(comments, [], line=10, side=Side.RIGHT)
        assert isinstance(decision, Refusal)
        assert decision.kind == RefusalKind.AMBIGUOUS
        assert [c.comment_id for c in decision.candidates] == [2, 1]
        assert all(c.is_resolved is None for c in decision.candidates)
        assert "comment_id=1" in decision.message
        assert "comment_id=2" in decision.message

    def test_single_root(self):
        comments = [review_comment(1), review_comment(2, author="bob", in_reply_to=1, minutes=3)]
        decision = _resolve(comments, [], line=10, side=Side.RIGHT)
        assert isinstance(decision, ReplyTarget)
        assert decision.root_comment_id == 1
        assert decision.thread is None
        assert not decision.is_resolved
