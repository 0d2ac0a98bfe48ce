"""FastMCP server for threadwise.

Exposes the write router to a reviewing agent.  Each tool acts on the single
pull request the server was started for; the snapshot is read on the first
tool call and reused for the rest of the run.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, Literal

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.lifespan import lifespan
from fastmcp.server.middleware.error_handling import ErrorHandlingMiddleware
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.server.middleware.ping import PingMiddleware
from fastmcp.server.middleware.timing import TimingMiddleware
from pydantic import Field

from threadwise.config import load_config, set_config
from threadwise.github_api import GitHubAuthError, GitHubError, GitHubPermissionError, RateLimitError
from threadwise.middleware import WriteSerializationMiddleware
from threadwise.models import ResolveResult, Side, ThreadOverview, WriteResult
from threadwise.session import get_session
from threadwise.tools import overview, resolution, writes

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)
write_serialization_middleware = WriteSerializationMiddleware()

SideParam = Annotated[Literal["LEFT", "RIGHT"] | None, Field(description="Diff side: RIGHT for added/context lines, LEFT for removed lines")]
ThreadIdParam = Annotated[
    str | int | None,
    Field(description="Existing thread to reply to: node id (PRRT_...), thread id, or any comment id in it"),
]


@lifespan
async def load_threadwise_config(server: FastMCP) -> AsyncIterator[dict[str, object] | None]:  # noqa: ARG001, RUF029
    """Load ``.threadwise.toml`` on server startup."""
    config, config_path = load_config()
    set_config(config, config_path=config_path)
    yield {}


mcp = FastMCP(
    "threadwise",
    lifespan=load_threadwise_config,
    instructions="""\
Comment placement for automated pull request reviews. Every write is validated
against the diff and routed into the right conversation so feedback is never
duplicated.

## Writing feedback

1. `comment` / `suggest` at a diff line. If a conversation already exists there,
   your text is posted as a reply to it automatically.
2. If the result is a refusal, read `refusal.message` and do what it says:
   - `invalid_location`: the line is not in the diff. Pick a line inside a hunk.
   - `ambiguous`: several conversations share the line. Retry with `side` or
     `thread_id` from the listed candidates.
   - `duplicate`: your own comment is already the latest word. Use `update`
     with the suggested `comment_id` instead of posting again.
3. `reply` to a comment id you already know; `update` to revise your own text.
4. `resolve` only your own threads, always with an explanation.

Call `list_threads` to see existing conversations before commenting on a busy file.
""",
)


def _recovery_error(exc: Exception, *, tool_name: str) -> str:
    """Build an actionable error message with recovery hints."""
    msg = str(exc)

    if isinstance(exc, GitHubAuthError):
        return f"{tool_name} failed: {msg} Not retryable until a token is configured."
    if isinstance(exc, RateLimitError):
        return f"{tool_name} failed: GitHub API rate limit hit. Wait 60 seconds and retry. ({msg})"
    if isinstance(exc, GitHubPermissionError):
        return f"{tool_name} failed: the token may not perform this action. {msg} Do not retry."
    if isinstance(exc, GitHubError) and exc.status_code >= 500:  # noqa: PLR2004
        return f"{tool_name} failed: GitHub server error. This may be transient; retry once. ({msg})"
    if isinstance(exc, ValueError):
        return f"{tool_name} failed: {msg}"
    return f"{tool_name} failed: {msg}."


mcp.add_middleware(ErrorHandlingMiddleware(include_traceback=True, transform_errors=True))
mcp.add_middleware(TimingMiddleware())
mcp.add_middleware(LoggingMiddleware(include_payloads=True, max_payload_length=500))
mcp.add_middleware(PingMiddleware(interval_ms=30_000))
mcp.add_middleware(write_serialization_middleware)


def _side(side: str | None) -> Side | None:
    return Side(side) if side else None


@mcp.tool(tags={"command"})
async def comment(  # noqa: PLR0913, PLR0917
    path: str,
    body: str,
    line: Annotated[int | None, Field(ge=1, description="Line number; omit to anchor at the first changed line")] = None,
    side: SideParam = None,
    thread_id: ThreadIdParam = None,
    allow_new_thread: bool = False,
) -> WriteResult:
    """Post an inline review comment on a diff line.

    Replies into the existing conversation at the line when there is exactly
    one; refuses when the line is not in the diff, when several conversations
    compete for it, or when your own comment is already the latest there.

    Args:
        path: File path relative to the repository root.
        body: Markdown body.
        line: Line number on the given side.
        side: LEFT or RIGHT. Required to disambiguate context lines with threads on both sides.
        thread_id: Reply into this thread instead of looking up the location.
        allow_new_thread: Start a separate thread even if one exists at the line.
    """
    try:
        session = await get_session()
        return await writes.comment(
            session, path, body, line=line, side=_side(side), thread_id=thread_id, allow_new_thread=allow_new_thread
        )
    except (GitHubError, ValueError) as exc:
        logger.exception("comment failed for %s:%s", path, line)
        raise ToolError(_recovery_error(exc, tool_name="comment")) from exc


@mcp.tool(tags={"command"})
async def suggest(  # noqa: PLR0913, PLR0917
    path: str,
    suggestion: Annotated[str, Field(description="Replacement code for the anchored line(s)")],
    line: Annotated[int | None, Field(ge=1, description="Line number; omit to anchor at the first changed line")] = None,
    side: SideParam = None,
    thread_id: ThreadIdParam = None,
    comment: Annotated[str | None, Field(description="Optional text shown above the suggestion")] = None,
    allow_new_thread: bool = False,
) -> WriteResult:
    """Post a GitHub suggestion block (single-hunk fix).

    Routed exactly like ``comment``.
    """
    try:
        session = await get_session()
        return await writes.suggest(
            session,
            path,
            suggestion,
            line=line,
            side=_side(side),
            thread_id=thread_id,
            comment=comment,
            allow_new_thread=allow_new_thread,
        )
    except (GitHubError, ValueError) as exc:
        logger.exception("suggest failed for %s:%s", path, line)
        raise ToolError(_recovery_error(exc, tool_name="suggest")) from exc


@mcp.tool(tags={"command"})
async def reply(
    comment_id: Annotated[int, Field(ge=1)],
    body: str,
) -> WriteResult:
    """Reply to a specific comment by id.

    Args:
        comment_id: Id of any comment in the conversation.
        body: Reply text.
    """
    try:
        session = await get_session()
        return await writes.reply(session, comment_id, body)
    except (GitHubError, ValueError) as exc:
        logger.exception("reply failed for comment %d", comment_id)
        raise ToolError(_recovery_error(exc, tool_name="reply")) from exc


@mcp.tool(tags={"command"})
async def update(
    comment_id: Annotated[int, Field(ge=1)],
    body: str,
) -> WriteResult:
    """Rewrite one of your own comments in place.

    Use this instead of posting again when a duplicate refusal names a comment id.
    """
    try:
        session = await get_session()
        return await writes.update(session, comment_id, body)
    except (GitHubError, ValueError) as exc:
        logger.exception("update failed for comment %d", comment_id)
        raise ToolError(_recovery_error(exc, tool_name="update")) from exc


@mcp.tool(tags={"command"})
async def resolve(
    thread_id: Annotated[str | int, Field(description="Thread node id (PRRT_...), thread id, or root comment id")],
    explanation: Annotated[str, Field(description="Why the thread is resolved; posted as a reply first")],
) -> ResolveResult:
    """Explain and resolve one of your own review threads.

    The explanation is always posted first.  If the token may not resolve
    threads, the explanation stays and ``resolved`` is false.
    """
    try:
        session = await get_session()
        return await resolution.resolve(session, thread_id, explanation)
    except (GitHubError, ValueError) as exc:
        logger.exception("resolve failed for %s", thread_id)
        raise ToolError(_recovery_error(exc, tool_name="resolve")) from exc


@mcp.tool(tags={"query"})
async def list_threads(
    path: Annotated[str | None, Field(description="Only list threads on this file")] = None,
) -> ThreadOverview:
    """List existing review conversations with ids, sides and state."""
    try:
        session = await get_session()
        return overview.list_threads(session, path=path)
    except (GitHubError, ValueError) as exc:
        logger.exception("list_threads failed")
        raise ToolError(_recovery_error(exc, tool_name="list_threads")) from exc
