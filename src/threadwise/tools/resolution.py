"""Resolution workflow: explain, then resolve.

Resolving is two remote calls with no transaction spanning them: the
explanation reply is posted first, then the ``resolveReviewThread`` mutation.
Each is reported as its own :class:`~threadwise.models.ResolveStep`.  When the
mutation fails (a token that may not resolve threads is typical for GitHub App
installations), the already-posted reply is kept and only the resolve step is
reported failed.  A later call for the same thread reuses that reply.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NamedTuple

from threadwise import github_api
from threadwise.github_api import GitHubError, GitHubPermissionError
from threadwise.identity import AuthorSignals, is_self
from threadwise.models import Refusal, RefusalKind, ResolveResult, ResolveStep, ReviewThread
from threadwise.resolver import ReplyTarget
from threadwise.tools.writes import call_write, post_reply

if TYPE_CHECKING:
    from threadwise.session import ReviewSession

logger = logging.getLogger(__name__)

_RESOLVE_THREAD_MUTATION = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) {
    thread { id isResolved }
  }
}
"""


class _ResolveTarget(NamedTuple):
    thread: ReviewThread | None
    root_id: int | None


def _find_target(session: ReviewSession, thread_id: str | int) -> _ResolveTarget | None:
    index = session.index
    ref = thread_id.strip() if isinstance(thread_id, str) else thread_id
    if isinstance(ref, str) and ref.isdigit():
        ref = int(ref)

    if isinstance(ref, str):
        thread = index.thread_by_node(ref)
        return _ResolveTarget(thread, thread.root_comment_id) if thread else None

    thread = index.thread_by_id(ref)
    if thread is not None:
        return _ResolveTarget(thread, thread.root_comment_id)
    root_id = index.root_id_of(ref)
    if root_id is None:
        return None
    return _ResolveTarget(index.thread_for_root(root_id), root_id)


def _root_is_ours(session: ReviewSession, target: _ResolveTarget) -> bool:
    root = session.index.comment(target.root_id) if target.root_id is not None else None
    if root is not None:
        signals = AuthorSignals(root.author, root.author_type, root.body)
    elif target.thread is not None and target.thread.root_author:
        signals = AuthorSignals(target.thread.root_author)
    else:
        return False
    return is_self(signals, session.identity)


def _refuse(thread_id: str | int, kind: RefusalKind, message: str) -> ResolveResult:
    logger.info("Resolve of %s refused (%s)", thread_id, kind)
    return ResolveResult(thread_id=str(thread_id), message=message, refusal=Refusal(kind=kind, message=message))


def check_resolvable(session: ReviewSession, thread_id: str | int, explanation: str) -> ResolveResult | _ResolveTarget:
    """Run every precondition; return the target or a refused result."""
    if not explanation or not explanation.strip():
        return _refuse(
            thread_id,
            RefusalKind.MISSING_BODY,
            "An explanation is required to resolve a thread. Say what changed and call resolve again.",
        )

    target = _find_target(session, thread_id)
    if target is None:
        return _refuse(
            thread_id,
            RefusalKind.NOT_FOUND,
            f"Thread {thread_id} was not found on this pull request. Call list_threads to see valid thread ids.",
        )

    if target.thread is not None and target.thread.is_resolved:
        return _refuse(thread_id, RefusalKind.ALREADY_RESOLVED, f"Thread {thread_id} is already resolved. Nothing to do.")

    if not _root_is_ours(session, target):
        return _refuse(
            thread_id,
            RefusalKind.NOT_OWN_THREAD,
            f"Thread {thread_id} was started by someone else. Reply with your explanation instead; "
            "only the thread's author should resolve it.",
        )

    if target.thread is None or not target.thread.node_id:
        return _refuse(
            thread_id,
            RefusalKind.NOT_RESOLVABLE,
            f"Thread {thread_id} is only known from flat comments and cannot be resolved through the API. "
            "Reply with your explanation instead.",
        )

    return target


async def resolve(session: ReviewSession, thread_id: str | int, explanation: str) -> ResolveResult:
    """Post *explanation* into the thread, then resolve it."""
    checked = check_resolvable(session, thread_id, explanation)
    if isinstance(checked, ResolveResult):
        return checked

    thread = checked.thread
    assert thread is not None and thread.node_id  # noqa: S101 - guaranteed by check_resolvable
    node_id = thread.node_id
    steps: list[ResolveStep] = []

    reply_id = session.ledger.explanation_for(node_id)
    if reply_id is not None:
        logger.info("Explanation %s already posted into %s; retrying the resolve step only", reply_id, node_id)
        steps.append(ResolveStep(name="reply", ok=True, detail=f"Explanation already posted: {reply_id}"))
    else:
        posted = await post_reply(session, ReplyTarget(root_comment_id=checked.root_id, thread=thread, source="explicit"), explanation)
        reply_id = posted.comment_id
        session.ledger.record_explanation(node_id, reply_id)
        steps.append(ResolveStep(name="reply", ok=True, detail=f"Explanation posted: {reply_id}"))

    try:
        result = await call_write(
            f"resolve thread {node_id}",
            lambda: github_api.graphql(_RESOLVE_THREAD_MUTATION, {"threadId": node_id}),
        )
    except GitHubPermissionError as exc:
        logger.warning("Not permitted to resolve %s; keeping explanation %s: %s", node_id, reply_id, exc)
        steps.append(ResolveStep(name="resolve", ok=False, detail=str(exc)))
        return ResolveResult(
            thread_id=str(thread_id),
            reply_comment_id=reply_id,
            resolved=False,
            steps=steps,
            message=(
                f"Explanation posted ({reply_id}) but this token may not resolve threads. "
                "Leave the thread for a maintainer to resolve."
            ),
        )
    except GitHubError as exc:
        logger.warning("Resolving %s failed after explanation %s was posted: %s", node_id, reply_id, exc)
        steps.append(ResolveStep(name="resolve", ok=False, detail=str(exc)))
        return ResolveResult(
            thread_id=str(thread_id),
            reply_comment_id=reply_id,
            resolved=False,
            steps=steps,
            message=(
                f"Explanation posted ({reply_id}) but resolving failed: {exc} "
                "Call resolve again to retry the resolve step; the explanation will not be posted twice."
            ),
        )

    resolved = bool(((result.get("data") or {}).get("resolveReviewThread") or {}).get("thread", {}).get("isResolved"))
    steps.append(ResolveStep(name="resolve", ok=resolved, detail="Thread resolved" if resolved else "GitHub did not report the thread resolved"))
    if resolved:
        logger.info("Resolved thread %s", node_id)
    else:
        logger.warning("resolveReviewThread returned without resolving %s", node_id)

    return ResolveResult(
        thread_id=str(thread_id),
        reply_comment_id=reply_id,
        resolved=resolved,
        steps=steps,
        message=f"Explanation posted ({reply_id}); thread {'resolved' if resolved else 'left open'}.",
    )
