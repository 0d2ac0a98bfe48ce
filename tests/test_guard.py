"""Tests for the duplicate-bot guard."""

from __future__ import annotations

from helpers.factories import BOT, MARKER, bot_comment, review_comment, thread

from threadwise.guard import check_created, check_duplicate
from threadwise.identity import BotIdentity
from threadwise.index import build_location_index
from threadwise.ledger import RunLedger
from threadwise.models import CommentKind, RefusalKind, Side
from threadwise.resolver import NewThread, ReplyTarget

IDENTITY = BotIdentity(login=BOT, marker=MARKER)


def _target(index, root_id):
    return ReplyTarget(root_comment_id=root_id, thread=index.thread_for_root(root_id))


class TestCheckDuplicate:
    def test_human_replied_last(self):
        index = build_location_index(
            [bot_comment(1, minutes=0), review_comment(2, author="human", in_reply_to=1, minutes=5)],
            [thread(1, last_actor="human", minutes=5)],
        )
        assert check_duplicate(index, _target(index, 1), IDENTITY) is None

    def test_human_reply_with_same_timestamp_as_root(self):
        index = build_location_index([bot_comment(1, minutes=0), review_comment(2, author="alice", in_reply_to=1, minutes=0)])
        assert check_duplicate(index, ReplyTarget(root_comment_id=1, source="comment"), IDENTITY) is None

    def test_bot_has_latest_word(self):
        index = build_location_index([bot_comment(1)], [thread(1, last_actor=BOT)])
        refusal = check_duplicate(index, _target(index, 1), IDENTITY)
        assert refusal is not None
        assert refusal.kind == RefusalKind.DUPLICATE
        assert refusal.suggested_comment_id == 1
        assert "update with comment_id=1" in refusal.message

    def test_bot_reply_after_human(self):
        index = build_location_index([
            review_comment(1, author="alice", minutes=0),
            bot_comment(2, in_reply_to=1, minutes=5),
        ])
        refusal = check_duplicate(index, _target(index, 1), IDENTITY)
        assert refusal is not None
        assert refusal.suggested_comment_id == 2

    def test_resolved_thread_may_be_reopened(self):
        index = build_location_index([bot_comment(1)], [thread(1, resolved=True, last_actor=BOT)])
        assert check_duplicate(index, _target(index, 1), IDENTITY) is None

    def test_flat_only_treated_as_unresolved(self):
        index = build_location_index([bot_comment(1)])
        refusal = check_duplicate(index, ReplyTarget(root_comment_id=1, source="comment"), IDENTITY)
        assert refusal is not None
        assert refusal.kind == RefusalKind.DUPLICATE

    def test_last_actor_fallback_has_no_comment_id(self):
        index = build_location_index([], [thread(50, last_actor=BOT)])
        refusal = check_duplicate(index, _target(index, 50), IDENTITY)
        assert refusal is not None
        assert refusal.suggested_comment_id is None
        assert "Wait for someone else" in refusal.message

    def test_thread_known_only_by_node(self):
        t = thread(None, node_id="PRRT_x", thread_id=77, last_actor=BOT)
        index = build_location_index([], [t])
        refusal = check_duplicate(index, ReplyTarget(thread=t), IDENTITY)
        assert refusal is not None
        assert refusal.kind == RefusalKind.DUPLICATE

    def test_other_bot_is_not_us(self):
        index = build_location_index([review_comment(1, author="codecov[bot]", author_type="Bot", body=f"x {MARKER}")])
        assert check_duplicate(index, _target(index, 1), IDENTITY) is None

    def test_marker_identity_without_login(self):
        identity = BotIdentity(login=None, marker=MARKER)
        index = build_location_index([review_comment(1, author="ci-user", body=f"Nit.\n\n{MARKER}")])
        refusal = check_duplicate(index, _target(index, 1), identity)
        assert refusal is not None
        assert refusal.suggested_comment_id == 1

    def test_reply_from_this_run_is_a_duplicate(self):
        index = build_location_index([review_comment(1)], [thread(1, resolved=True)])
        ledger = RunLedger()
        ledger.record_reply(1, 300)
        refusal = check_duplicate(index, _target(index, 1), IDENTITY, ledger)
        assert refusal is not None
        assert refusal.suggested_comment_id == 300
        assert "earlier in this review" in refusal.message

    def test_empty_ledger_changes_nothing(self):
        index = build_location_index([review_comment(1)])
        assert check_duplicate(index, _target(index, 1), IDENTITY, RunLedger()) is None


class TestCheckCreated:
    def test_no_ledger(self):
        assert check_created(NewThread(path="src/x.ts", line=10, side=Side.RIGHT), None) is None

    def test_same_location(self):
        ledger = RunLedger()
        ledger.record_created("src/x.ts", 10, Side.RIGHT, 100)
        refusal = check_created(NewThread(path="src/x.ts", line=10, side=Side.RIGHT), ledger)
        assert refusal is not None
        assert refusal.kind == RefusalKind.DUPLICATE
        assert refusal.suggested_comment_id == 100

    def test_other_side_is_a_different_location(self):
        ledger = RunLedger()
        ledger.record_created("src/x.ts", 10, Side.RIGHT, 100)
        assert check_created(NewThread(path="src/x.ts", line=10, side=Side.LEFT), ledger) is None


class TestRunLedger:
    def test_created_at_without_side(self):
        ledger = RunLedger()
        ledger.record_created("src/gone.ts", 21, Side.LEFT, 5)
        assert ledger.created_at("src/gone.ts", 21) == 5
        assert ledger.created_at("src/gone.ts", 21, Side.RIGHT) is None

    def test_kinds(self):
        ledger = RunLedger()
        ledger.record_reply(1, 2)
        ledger.record_kind(3, CommentKind.ISSUE)
        assert ledger.kind_of(2) == "review"
        assert ledger.kind_of(3) == "issue"
        assert ledger.kind_of(4) is None
        assert len(ledger) == 2
