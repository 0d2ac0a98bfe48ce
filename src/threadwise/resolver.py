"""Deciding which conversation a write belongs to.

Given a target location (or an explicit thread/comment id), the resolver
returns one of three decisions:

- :class:`ReplyTarget`: an existing conversation to reply to;
- :class:`NewThread`: a validated location to open a new thread at;
- :class:`~threadwise.models.Refusal`: invalid location, unknown id, or
  several conversations competing for the location.

Both the classified threads and the flat comment roots are consulted.  Relying
on only one source is a known cause of duplicate threads: classified threads
miss recent activity visible only in the flat list, and the flat list misses
resolved/outdated state.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from threadwise.diff import NO_DIFF, find_preferred_anchor, locate
from threadwise.models import Candidate, CommentKind, Refusal, RefusalKind, ReviewThread, Side

if TYPE_CHECKING:
    from threadwise.index import LocationIndex
    from threadwise.models import ExistingComment, ReviewSnapshot

logger = logging.getLogger(__name__)


class WriteRequest(BaseModel):
    """Where the caller wants to write."""

    path: str = ""
    line: int | None = None
    side: Side | None = None
    thread_id: str | int | None = Field(default=None, description="Explicit thread node id, thread id or comment id")
    allow_new_thread: bool = Field(default=False, description="Open a new thread even if one exists at the location")


class ReplyTarget(BaseModel):
    """An existing conversation the write should be appended to."""

    root_comment_id: int | None = Field(default=None, description="REST id to reply to")
    thread: ReviewThread | None = Field(default=None, description="Classified thread, when known")
    source: str = Field(default="thread", description="explicit, thread or comment")

    @property
    def node_id(self) -> str | None:
        return self.thread.node_id if self.thread else None

    @property
    def is_resolved(self) -> bool:
        return bool(self.thread and self.thread.is_resolved)

    def describe(self) -> str:
        if self.root_comment_id is not None:
            return f"comment {self.root_comment_id}"
        return f"thread {self.node_id}"


class NewThread(BaseModel):
    """A validated anchor for a new inline comment."""

    path: str
    line: int
    side: Side


Decision = ReplyTarget | NewThread | Refusal


# -- Candidate descriptions ----------------------------------------------------


def thread_candidate(thread: ReviewThread) -> Candidate:
    return Candidate(
        comment_id=thread.root_comment_id,
        thread_id=thread.id,
        node_id=thread.node_id,
        line=thread.line,
        side=thread.side,
        is_resolved=thread.is_resolved,
        is_outdated=thread.is_outdated,
        last_actor=thread.last_actor,
        last_updated_at=thread.last_updated_at,
        source="thread",
    )


def root_candidate(root: ExistingComment, index: LocationIndex) -> Candidate:
    activity = index.latest_activity(root.id)
    return Candidate(
        comment_id=root.id,
        line=root.line,
        side=root.side,
        last_actor=activity.author if activity else root.author,
        last_updated_at=activity.updated_at if activity else root.updated_at,
        source="comment",
    )


def _ambiguity(path: str, line: int, side: Side | None, candidates: list[Candidate]) -> Refusal:
    where = f"{path}:{line}" + (f" ({side.value})" if side else "")
    listing = "\n".join(f"- {c.describe()}" for c in candidates)
    hints = ["retry with one of the ids above as thread_id to reply to it"]
    if side is None:
        hints.append("supply side=LEFT or side=RIGHT to narrow the candidates")
    hints.append("pass allow_new_thread=true only if this is a genuinely separate topic")
    return Refusal(
        kind=RefusalKind.AMBIGUOUS,
        message=f"{len(candidates)} conversations already exist at {where}:\n{listing}\nTo continue: " + "; or ".join(hints) + ".",
        candidates=candidates,
    )


# -- Steps ---------------------------------------------------------------------


def _coerce_thread_ref(ref: str | int) -> str | int:
    if isinstance(ref, str) and ref.strip().isdigit():
        return int(ref.strip())
    return ref.strip() if isinstance(ref, str) else ref


def resolve_explicit(index: LocationIndex, ref: str | int) -> ReplyTarget | Refusal:
    """Resolve an explicit thread node id, thread id or comment id.

    Explicit intent is never overridden: an unknown id, or one without a known
    root comment, is refused rather than redirected.
    """
    ref = _coerce_thread_ref(ref)
    thread: ReviewThread | None = None
    root_id: int | None = None

    if isinstance(ref, str):
        thread = index.thread_by_node(ref)
        if thread is None:
            return Refusal(
                kind=RefusalKind.NOT_FOUND,
                message=f"Thread {ref} was not found on this pull request. Call list_threads to see valid thread ids.",
            )
        root_id = thread.root_comment_id
    else:
        thread = index.thread_by_id(ref)
        if thread is not None:
            root_id = thread.root_comment_id
        else:
            comment = index.comment(ref)
            if comment is not None and comment.kind == CommentKind.ISSUE:
                return Refusal(
                    kind=RefusalKind.NOT_FOUND,
                    message=(
                        f"Comment {ref} is a top-level PR comment, not part of an inline thread. "
                        "Use update to edit it, or comment on a diff line to start a thread."
                    ),
                )
            root_id = index.root_id_of(ref)
            if root_id is None:
                return Refusal(
                    kind=RefusalKind.NOT_FOUND,
                    message=f"No thread or review comment with id {ref} exists on this pull request. Call list_threads to see valid ids.",
                )
            thread = index.thread_for_root(root_id)

    if root_id is None:
        return Refusal(
            kind=RefusalKind.NOT_FOUND,
            message=(
                f"Thread {ref} has no known root comment, so a reply cannot be addressed to it. "
                "Pick another thread from list_threads or comment on the location without thread_id."
            ),
        )
    return ReplyTarget(root_comment_id=root_id, thread=thread, source="explicit")


def _invalid_location(snapshot: ReviewSnapshot, path: str, line: int | None, side: Side | None, reason: str | None) -> Refusal:
    in_pr, _ = snapshot.patch_for(path)
    if not in_pr:
        message = f"{path} is not changed by this pull request. Check the changed-file list before commenting."
    elif reason == NO_DIFF:
        message = (
            f"No diff is available for {path} (binary or too large), so inline comments cannot be anchored there. "
            "Mention it in the summary instead."
        )
    elif line is None:
        message = f"{path} has no addressable line in its diff. Mention it in the summary instead."
    else:
        where = f"line {line}" + (f" on side {side.value}" if side else "")
        message = (
            f"{where.capitalize()} is not part of the diff for {path}. "
            "Read the file's diff first and pick a line inside a hunk: added lines use side=RIGHT, "
            "removed lines use side=LEFT, unchanged context lines accept either."
        )
    return Refusal(kind=RefusalKind.INVALID_LOCATION, message=message)


def _thread_target(thread: ReviewThread) -> ReplyTarget | None:
    if thread.root_comment_id is None and not thread.node_id:
        return None
    return ReplyTarget(root_comment_id=thread.root_comment_id, thread=thread, source="thread")


def _match_classified(index: LocationIndex, path: str, line: int, side: Side | None) -> Decision | None:
    threads = index.threads_at(path, line, side)
    if not threads:
        return None

    if len(threads) > 1:
        return _ambiguity(path, line, side, [thread_candidate(t) for t in threads])

    thread = threads[0]
    if side is None:
        # A lone classified thread still competes with roots that no thread claims
        extras = [r for r in index.roots_at(path, line) if r.id != thread.root_comment_id and index.thread_for_root(r.id) is None]
        if len(extras) > 1:
            candidates = [thread_candidate(thread)] + [root_candidate(r, index) for r in extras]
            return _ambiguity(path, line, side, candidates)

    return _thread_target(thread)


def _match_flat(index: LocationIndex, path: str, line: int, side: Side | None) -> Decision | None:
    roots = index.roots_at(path, line, side)
    if not roots:
        return None
    if len(roots) > 1:
        return _ambiguity(path, line, side, [root_candidate(r, index) for r in roots])
    root = roots[0]
    return ReplyTarget(root_comment_id=root.id, thread=index.thread_for_root(root.id), source="comment")


def resolve_target(
    index: LocationIndex,
    snapshot: ReviewSnapshot,
    request: WriteRequest,
    *,
    default_side: Side = Side.RIGHT,
) -> Decision:
    """Decide where a ``comment``/``suggest`` write goes.

    Order: explicit id, diff validation, classified threads, flat comment
    roots, new thread.  With ``line=None`` the file's preferred anchor is used.
    """
    if request.thread_id is not None and str(request.thread_id).strip():
        return resolve_explicit(index, request.thread_id)

    path, line, side = request.path, request.line, request.side
    _, patch = snapshot.patch_for(path)

    if line is None:
        anchor = find_preferred_anchor(patch)
        if anchor is None:
            return _invalid_location(snapshot, path, None, side, NO_DIFF if not patch else None)
        line, side = anchor.line, anchor.side
        logger.info("No line given for %s; anchoring at %d (%s)", path, line, side.value)

    located = locate(patch, line, side)
    if not located.present:
        return _invalid_location(snapshot, path, line, side, located.reason)

    if not request.allow_new_thread:
        decision = _match_classified(index, path, line, side)
        if decision is None:
            decision = _match_flat(index, path, line, side)
        if decision is not None:
            return decision

    if side is None:
        side = default_side if default_side in located.sides else located.sides[0]
    return NewThread(path=path, line=line, side=side)
