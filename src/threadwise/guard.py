"""Duplicate-bot guard: never post twice in a row into the same conversation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from threadwise.identity import AuthorSignals, is_self
from threadwise.index import ThreadActivity
from threadwise.models import Refusal, RefusalKind

if TYPE_CHECKING:
    from threadwise.identity import BotIdentity
    from threadwise.index import LocationIndex
    from threadwise.ledger import RunLedger
    from threadwise.resolver import NewThread, ReplyTarget

logger = logging.getLogger(__name__)


def _duplicate(comment_id: int | None, detail: str) -> Refusal:
    if comment_id is not None:
        instruction = f"Use update with comment_id={comment_id} to revise it instead of posting again."
    else:
        instruction = "Wait for someone else to respond, or resolve the thread if the issue is addressed."
    return Refusal(
        kind=RefusalKind.DUPLICATE,
        message=f"{detail} {instruction}",
        suggested_comment_id=comment_id,
    )


def _latest(index: LocationIndex, target: ReplyTarget) -> ThreadActivity | None:
    if target.root_comment_id is not None:
        activity = index.latest_activity(target.root_comment_id)
        if activity is not None:
            return activity
    if target.thread is not None:
        return ThreadActivity(
            comment_id=None,
            author=target.thread.last_actor,
            updated_at=target.thread.last_updated_at,
        )
    return None


def check_duplicate(
    index: LocationIndex,
    target: ReplyTarget,
    identity: BotIdentity,
    ledger: RunLedger | None = None,
) -> Refusal | None:
    """Refuse a reply when this reviewer already has the latest word in an open thread.

    Resolved threads are exempt: replying there is a deliberate reopening.
    Threads known only from flat comments are treated as unresolved.
    """
    if ledger is not None and target.root_comment_id is not None:
        replied = ledger.latest_reply(target.root_comment_id)
        if replied is not None:
            logger.info("Refusing duplicate reply to %s: already replied this run (%d)", target.describe(), replied)
            return _duplicate(replied, f"You already replied to {target.describe()} earlier in this review (comment {replied}).")

    if target.is_resolved:
        return None

    activity = _latest(index, target)
    if activity is None:
        return None

    if not is_self(AuthorSignals(activity.author, activity.author_type, activity.body), identity):
        return None

    when = activity.updated_at.isoformat() if activity.updated_at else "an unknown time"
    logger.info("Refusing duplicate reply to %s: latest comment is ours", target.describe())
    return _duplicate(
        activity.comment_id,
        f"The latest comment in {target.describe()} is already yours ({activity.author} at {when}) and the thread is unresolved.",
    )


def check_created(target: NewThread, ledger: RunLedger | None) -> Refusal | None:
    """Refuse opening a second thread at a location this run already opened one at."""
    if ledger is None:
        return None
    created = ledger.created_at(target.path, target.line, target.side)
    if created is None:
        return None
    logger.info("Refusing second thread at %s:%d (%s); created %d this run", target.path, target.line, target.side, created)
    return _duplicate(
        created,
        f"You already opened a thread at {target.path}:{target.line} ({target.side.value}) in this review (comment {created}).",
    )
