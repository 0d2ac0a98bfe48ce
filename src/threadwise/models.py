"""Pydantic models for threadwise."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import StrEnum
from typing import Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field


class Side(StrEnum):
    """Side of a diff a review comment is anchored to."""

    LEFT = "LEFT"
    RIGHT = "RIGHT"


class CommentKind(StrEnum):
    """Remote resource kind of a comment id."""

    ISSUE = "issue"  # top-level PR conversation comment
    REVIEW = "review"  # comment anchored to a diff line


class LocationKey(NamedTuple):
    """Lookup key for anchored comments and threads. ``side=None`` means either side."""

    path: str
    line: int
    side: Side | None = None


# -- Snapshot (read once per session) ------------------------------------------


class ExistingComment(BaseModel):
    """A comment already present on the pull request."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(description="REST database id of the comment")
    author: str = Field(default="unknown", description="Login of the comment author")
    author_type: str | None = Field(default=None, description="Account kind reported by GitHub (User, Bot, ...)")
    body: str = Field(default="", description="Raw markdown body")
    url: str = Field(default="", description="html_url of the comment")
    kind: CommentKind = Field(description="Top-level (issue) or anchored (review) comment")
    path: str | None = Field(default=None, description="File path for anchored comments")
    line: int | None = Field(default=None, description="Line number for anchored comments")
    side: Side | None = Field(default=None, description="Diff side for anchored comments")
    in_reply_to_id: int | None = Field(default=None, description="Id of the comment this one replies to")
    updated_at: datetime = Field(description="Last update time")

    @property
    def is_reply(self) -> bool:
        return self.in_reply_to_id is not None

    @property
    def is_anchored(self) -> bool:
        return self.kind == CommentKind.REVIEW and bool(self.path) and self.line is not None


class ReviewThread(BaseModel):
    """A review thread as classified by GitHub (root comment plus replies)."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(description="Integer thread id (root comment id when nothing better is known)")
    node_id: str | None = Field(default=None, description="GraphQL node id (PRRT_...) required to resolve the thread")
    path: str = Field(description="File path the thread is anchored to")
    line: int | None = Field(default=None, description="Line number the thread is anchored to")
    side: Side | None = Field(default=None, description="Diff side; missing on some legacy records")
    is_outdated: bool = Field(default=False, description="Whether the anchored lines changed since the thread started")
    is_resolved: bool = Field(default=False, description="Whether the thread is resolved")
    last_updated_at: datetime | None = Field(default=None, description="Latest update time across all comments")
    last_actor: str = Field(default="unknown", description="Author of the most recently updated comment")
    root_comment_id: int | None = Field(default=None, description="REST id of the thread's root comment")
    root_author: str | None = Field(default=None, description="Author of the thread's root comment")
    url: str = Field(default="", description="URL of the root comment")


class ChangedFile(BaseModel):
    """A file changed by the pull request."""

    model_config = ConfigDict(frozen=True)

    filename: str = Field(description="Path relative to the repo root")
    status: str = Field(default="modified", description="added, modified, removed, renamed, ...")
    additions: int = Field(default=0)
    deletions: int = Field(default=0)
    changes: int = Field(default=0)
    patch: str | None = Field(default=None, description="Unified diff text; absent for binary or very large files")
    previous_filename: str | None = Field(default=None)


class PullRequestRef(BaseModel):
    """The pull request a session writes to."""

    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    number: int
    head_sha: str = Field(default="", description="Commit new inline comments are anchored to")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class ReviewSnapshot(BaseModel):
    """Everything read from GitHub at session start."""

    model_config = ConfigDict(frozen=True)

    pull_request: PullRequestRef
    comments: tuple[ExistingComment, ...] = ()
    threads: tuple[ReviewThread, ...] = ()
    files: tuple[ChangedFile, ...] = ()
    threads_available: bool = Field(default=True, description="False when classified threads could not be fetched")

    def patch_for(self, path: str) -> tuple[bool, str | None]:
        """Return ``(file_in_pr, patch)`` for *path*."""
        for f in self.files:
            if f.filename == path:
                return True, f.patch
        return False, None


# -- Decisions and results -----------------------------------------------------


class RefusalKind(StrEnum):
    """Why a write was not issued."""

    INVALID_LOCATION = "invalid_location"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    MISSING_BODY = "missing_body"
    ALREADY_RESOLVED = "already_resolved"
    NOT_OWN_THREAD = "not_own_thread"
    NOT_RESOLVABLE = "not_resolvable"
    DISABLED = "disabled"


class Candidate(BaseModel):
    """One thread or root comment competing for the same location."""

    comment_id: int | None = Field(default=None, description="Root comment id to reply to")
    thread_id: int | None = Field(default=None, description="Classified thread id, if any")
    node_id: str | None = Field(default=None, description="GraphQL thread id, if any")
    line: int | None = None
    side: Side | None = None
    is_resolved: bool | None = Field(default=None, description="None when only flat comment data is available")
    is_outdated: bool | None = None
    last_actor: str = "unknown"
    last_updated_at: datetime | None = None
    source: Literal["thread", "comment"] = "thread"

    def describe(self) -> str:
        ident = f"thread_id={self.node_id or self.thread_id}" if self.source == "thread" else f"comment_id={self.comment_id}"
        state = []
        if self.is_resolved is not None:
            state.append("resolved" if self.is_resolved else "unresolved")
        if self.is_outdated:
            state.append("outdated")
        when = self.last_updated_at.isoformat() if self.last_updated_at else "unknown time"
        side = self.side.value if self.side else "unknown side"
        return f"{ident} ({side}, {', '.join(state) or 'state unknown'}, last by {self.last_actor} at {when})"


class Refusal(BaseModel):
    """A non-fatal, actionable reason for not writing."""

    kind: RefusalKind
    message: str = Field(description="Instruction for the calling agent")
    candidates: list[Candidate] = Field(default_factory=list, description="Competing threads for ambiguity refusals")
    suggested_comment_id: int | None = Field(default=None, description="Comment to update instead, for duplicate refusals")


class WriteAction(StrEnum):
    CREATED = "created"
    REPLIED = "replied"
    UPDATED = "updated"


class WriteResult(BaseModel):
    """Outcome of ``comment``, ``suggest``, ``reply`` or ``update``."""

    action: WriteAction | None = Field(default=None, description="What was written; None when refused")
    comment_id: int | None = Field(default=None, description="Id of the created or updated comment")
    kind: CommentKind | None = Field(default=None, description="Resource kind of comment_id")
    in_reply_to_id: int | None = Field(default=None, description="Root comment replied to, for replies")
    message: str = Field(default="", description="Human-readable summary")
    refusal: Refusal | None = Field(default=None)

    @property
    def ok(self) -> bool:
        return self.refusal is None

    @classmethod
    def refused(cls, refusal: Refusal) -> WriteResult:
        return cls(message=refusal.message, refusal=refusal)


class ResolveStep(BaseModel):
    """One independently reported step of the resolve workflow."""

    name: Literal["reply", "resolve"]
    ok: bool
    detail: str = ""


class ResolveResult(BaseModel):
    """Outcome of ``resolve``."""

    thread_id: str = Field(description="Thread the request targeted")
    reply_comment_id: int | None = Field(default=None, description="Explanation reply, once posted")
    resolved: bool = Field(default=False, description="Whether the thread ended up resolved")
    steps: list[ResolveStep] = Field(default_factory=list)
    message: str = ""
    refusal: Refusal | None = None

    @property
    def ok(self) -> bool:
        return self.refusal is None and self.resolved


class ThreadOverview(BaseModel):
    """Read-only listing of the threads known at session start."""

    threads: list[Candidate] = Field(default_factory=list)
    source: Literal["threads", "comments"] = Field(description="Whether classified threads were available")
    message: str = ""
