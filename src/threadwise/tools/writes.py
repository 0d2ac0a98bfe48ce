"""Write router: ``comment``, ``suggest``, ``reply`` and ``update``.

Every write passes through the same pipeline before anything is sent:
diff validation, thread resolution, duplicate guard.  Exactly one remote
write is issued per accepted call; refusals come back as structured
:class:`~threadwise.models.WriteResult` objects instead of exceptions.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from threadwise import github_api
from threadwise.github_api import GitHubError, RateLimitError, is_not_found
from threadwise.guard import check_created, check_duplicate
from threadwise.identity import with_marker
from threadwise.models import CommentKind, Refusal, RefusalKind, Side, WriteAction, WriteResult
from threadwise.resolver import NewThread, ReplyTarget, WriteRequest, resolve_target

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from threadwise.session import ReviewSession

logger = logging.getLogger(__name__)

_REPLY_TO_THREAD_MUTATION = """
mutation($threadId: ID!, $body: String!) {
  addPullRequestReviewThreadReply(input: {
    pullRequestReviewThreadId: $threadId,
    body: $body
  }) {
    comment { databaseId }
  }
}
"""


async def call_write(description: str, call: Callable[[], Awaitable[Any]]) -> Any:
    """Issue one remote write, tagging rate-limit failures with what was attempted."""
    try:
        return await call()
    except RateLimitError as exc:
        logger.warning("Rate limited while trying to %s", description)
        msg = f"{exc} (while trying to {description}). Back off before retrying."
        raise RateLimitError(msg, status_code=exc.status_code) from exc


def wrap_suggestion(suggestion: str, comment: str | None = None) -> str:
    """Build a GitHub suggestion block, optionally preceded by a comment."""
    prefix = f"{comment.strip()}\n\n" if comment and comment.strip() else ""
    return f"{prefix}```suggestion\n{suggestion}\n```"


def _missing_body(what: str) -> WriteResult:
    return WriteResult.refused(
        Refusal(kind=RefusalKind.MISSING_BODY, message=f"The {what} is empty. Provide the text to post and call again.")
    )


# -- Remote writes -------------------------------------------------------------


async def post_reply(session: ReviewSession, target: ReplyTarget, body: str) -> WriteResult:
    body = with_marker(body, session.identity)

    if target.root_comment_id is not None:
        root_id = target.root_comment_id
        data = await call_write(
            f"reply to comment {root_id}",
            lambda: github_api.rest(f"{session.pulls_endpoint}/comments/{root_id}/replies", method="POST", body=body),
        )
        comment_id = data["id"]
        session.ledger.record_reply(root_id, comment_id)
    else:
        node_id = target.node_id
        result = await call_write(
            f"reply to thread {node_id}",
            lambda: github_api.graphql(_REPLY_TO_THREAD_MUTATION, {"threadId": node_id, "body": body}),
        )
        comment = result["data"]["addPullRequestReviewThreadReply"]["comment"]
        comment_id = comment["databaseId"]
        session.ledger.record_kind(comment_id, CommentKind.REVIEW)

    logger.info("Replied to %s with comment %s", target.describe(), comment_id)
    return WriteResult(
        action=WriteAction.REPLIED,
        comment_id=comment_id,
        kind=CommentKind.REVIEW,
        in_reply_to_id=target.root_comment_id,
        message=f"Reply posted to {target.describe()}: {comment_id}",
    )


async def _create_thread(session: ReviewSession, target: NewThread, body: str) -> WriteResult:
    body = with_marker(body, session.identity)
    data = await call_write(
        f"comment on {target.path}:{target.line}",
        lambda: github_api.rest(
            f"{session.pulls_endpoint}/comments",
            method="POST",
            body=body,
            commit_id=session.pull_request.head_sha,
            path=target.path,
            line=target.line,
            side=target.side.value,
        ),
    )
    comment_id = data["id"]
    session.ledger.record_created(target.path, target.line, target.side, comment_id)
    logger.info("Opened thread %d at %s:%d (%s)", comment_id, target.path, target.line, target.side.value)
    return WriteResult(
        action=WriteAction.CREATED,
        comment_id=comment_id,
        kind=CommentKind.REVIEW,
        message=f"Comment posted at {target.path}:{target.line} ({target.side.value}): {comment_id}",
    )


async def route_write(session: ReviewSession, request: WriteRequest, body: str) -> WriteResult:
    """Resolve where *body* belongs and issue at most one write."""
    decision = resolve_target(session.index, session.snapshot, request, default_side=session.config.review.default_side)

    if isinstance(decision, Refusal):
        logger.info("Write refused (%s): %s", decision.kind, decision.message.splitlines()[0])
        return WriteResult.refused(decision)

    if isinstance(decision, ReplyTarget):
        refusal = check_duplicate(session.index, decision, session.identity, session.ledger)
        if refusal is not None:
            return WriteResult.refused(refusal)
        return await post_reply(session, decision, body)

    refusal = check_created(decision, session.ledger)
    if refusal is not None:
        return WriteResult.refused(refusal)
    return await _create_thread(session, decision, body)


# -- Operations ----------------------------------------------------------------


async def comment(  # noqa: PLR0913
    session: ReviewSession,
    path: str,
    body: str,
    line: int | None = None,
    side: Side | None = None,
    thread_id: str | int | None = None,
    *,
    allow_new_thread: bool = False,
) -> WriteResult:
    """Post an inline comment, replying to an existing conversation when one is there."""
    if not body or not body.strip():
        return _missing_body("comment body")
    request = WriteRequest(path=path, line=line, side=side, thread_id=thread_id, allow_new_thread=allow_new_thread)
    return await route_write(session, request, body)


async def suggest(  # noqa: PLR0913
    session: ReviewSession,
    path: str,
    suggestion: str,
    line: int | None = None,
    side: Side | None = None,
    thread_id: str | int | None = None,
    comment: str | None = None,
    *,
    allow_new_thread: bool = False,
) -> WriteResult:
    """Post a suggestion block through the same pipeline as :func:`comment`."""
    if not session.config.review.suggestions:
        return WriteResult.refused(
            Refusal(
                kind=RefusalKind.DISABLED,
                message="Suggestions are disabled for this repository. Describe the change with comment instead.",
            )
        )
    # An empty suggestion is a valid "delete these lines" block
    request = WriteRequest(path=path, line=line, side=side, thread_id=thread_id, allow_new_thread=allow_new_thread)
    return await route_write(session, request, wrap_suggestion(suggestion, comment))


async def reply(session: ReviewSession, comment_id: int, body: str) -> WriteResult:
    """Reply to an explicit comment id without location lookup or ambiguity checks.

    Review comments are replied to at their conversation root; a top-level
    PR comment gets a new top-level comment that references it.
    """
    if not body or not body.strip():
        return _missing_body("reply body")

    known = session.index.comment(comment_id)
    if known is not None and known.kind == CommentKind.ISSUE:
        quoted = with_marker(f"In reply to {known.url or f'comment {comment_id}'}:\n\n{body}", session.identity)
        data = await call_write(
            f"answer top-level comment {comment_id}",
            lambda: github_api.rest(
                f"{session.repo_endpoint}/issues/{session.pull_request.number}/comments", method="POST", body=quoted
            ),
        )
        session.ledger.record_kind(data["id"], CommentKind.ISSUE)
        return WriteResult(
            action=WriteAction.REPLIED,
            comment_id=data["id"],
            kind=CommentKind.ISSUE,
            in_reply_to_id=comment_id,
            message=f"Top-level reply posted: {data['id']}",
        )

    root_id = session.index.root_id_of(comment_id) or comment_id
    return await post_reply(session, ReplyTarget(root_comment_id=root_id, source="explicit"), body)


def _kind_hint(session: ReviewSession, comment_id: int) -> CommentKind | None:
    known = session.index.comment(comment_id)
    if known is not None:
        return known.kind
    return session.ledger.kind_of(comment_id)


def _update_endpoint(session: ReviewSession, kind: CommentKind, comment_id: int) -> str:
    if kind == CommentKind.ISSUE:
        return f"{session.repo_endpoint}/issues/comments/{comment_id}"
    return f"{session.repo_endpoint}/pulls/comments/{comment_id}"


async def update(session: ReviewSession, comment_id: int, body: str) -> WriteResult:
    """Rewrite a comment's body in place.

    The resource kind is taken from the snapshot or this run's ledger and
    defaults to a review comment; a not-found or validation response retries
    once against the other kind.
    """
    if not body or not body.strip():
        return _missing_body("updated body")

    body = with_marker(body, session.identity)
    hint = _kind_hint(session, comment_id)
    first = hint or CommentKind.REVIEW
    second = CommentKind.ISSUE if first == CommentKind.REVIEW else CommentKind.REVIEW

    for kind in (first, second):
        endpoint = _update_endpoint(session, kind, comment_id)
        try:
            await call_write(f"update comment {comment_id}", lambda endpoint=endpoint: github_api.rest(endpoint, method="PATCH", body=body))
        except GitHubError as exc:
            if not is_not_found(exc):
                raise
            logger.info("Comment %d is not a %s comment (HTTP %d)", comment_id, kind, exc.status_code)
            continue
        if kind != first:
            logger.info("Comment %d updated as %s comment after %s attempt failed", comment_id, kind, first)
        session.ledger.record_kind(comment_id, kind)
        return WriteResult(
            action=WriteAction.UPDATED,
            comment_id=comment_id,
            kind=kind,
            message=f"Comment {comment_id} updated.",
        )

    return WriteResult.refused(
        Refusal(
            kind=RefusalKind.NOT_FOUND,
            message=(
                f"Comment {comment_id} was not found as a review comment or a top-level comment. "
                "Check the id with list_threads, or post a new comment instead."
            ),
        )
    )
