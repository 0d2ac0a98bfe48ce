"""Read-only lookup views over one review snapshot.

Built once per session and passed explicitly into the resolver and the guard.
Nothing here is mutated after :func:`build_location_index` returns.
"""

from __future__ import annotations

import logging
from datetime import datetime  # noqa: TC003 - used at runtime in NamedTuple fields
from types import MappingProxyType
from typing import TYPE_CHECKING, NamedTuple

from threadwise.models import CommentKind, ExistingComment, LocationKey, ReviewThread

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from threadwise.models import Side

logger = logging.getLogger(__name__)


class ThreadActivity(NamedTuple):
    """Most recent comment in a conversation, keyed by its root id."""

    comment_id: int | None
    author: str
    updated_at: datetime | None
    author_type: str | None = None
    body: str | None = None


class LocationIndex:
    """Lookup structures derived from the flat comment list and the classified threads."""

    __slots__ = (
        "_activity",
        "_comments",
        "_last_actor",
        "_root_of",
        "_roots_by_key",
        "_roots_by_line",
        "_threads",
        "_threads_by_id",
        "_threads_by_key",
        "_threads_by_line",
        "_threads_by_node",
        "_threads_by_root",
    )

    def __init__(  # noqa: PLR0913
        self,
        *,
        comments: Mapping[int, ExistingComment],
        root_of: Mapping[int, int],
        roots_by_key: Mapping[LocationKey, tuple[ExistingComment, ...]],
        roots_by_line: Mapping[tuple[str, int], tuple[ExistingComment, ...]],
        activity: Mapping[int, ThreadActivity],
        last_actor: Mapping[int, ThreadActivity],
        threads_by_key: Mapping[LocationKey, tuple[ReviewThread, ...]],
        threads_by_line: Mapping[tuple[str, int], tuple[ReviewThread, ...]],
        threads: Iterable[ReviewThread],
        threads_by_id: Mapping[int, ReviewThread],
        threads_by_node: Mapping[str, ReviewThread],
        threads_by_root: Mapping[int, ReviewThread],
    ) -> None:
        self._comments = MappingProxyType(dict(comments))
        self._root_of = MappingProxyType(dict(root_of))
        self._roots_by_key = MappingProxyType(dict(roots_by_key))
        self._roots_by_line = MappingProxyType(dict(roots_by_line))
        self._activity = MappingProxyType(dict(activity))
        self._last_actor = MappingProxyType(dict(last_actor))
        self._threads_by_key = MappingProxyType(dict(threads_by_key))
        self._threads_by_line = MappingProxyType(dict(threads_by_line))
        self._threads = tuple(threads)
        self._threads_by_id = MappingProxyType(dict(threads_by_id))
        self._threads_by_node = MappingProxyType(dict(threads_by_node))
        self._threads_by_root = MappingProxyType(dict(threads_by_root))

    # -- comments ------------------------------------------------------------

    def comment(self, comment_id: int) -> ExistingComment | None:
        return self._comments.get(comment_id)

    def root_id_of(self, comment_id: int) -> int | None:
        """Return the root comment id of the conversation *comment_id* belongs to."""
        return self._root_of.get(comment_id)

    def roots_at(self, path: str, line: int, side: Side | None = None) -> tuple[ExistingComment, ...]:
        """Root comments at a location, most recently active first.

        With ``side=None`` roots on both sides (and roots without a side) are returned.
        """
        roots = self._roots_by_line.get((path, line), ()) if side is None else self._roots_by_key.get(LocationKey(path, line, side), ())
        return tuple(sorted(roots, key=self._activity_sort_key, reverse=True))

    def latest_activity(self, root_id: int) -> ThreadActivity | None:
        """Latest comment in the conversation rooted at *root_id*.

        Falls back to the classified thread's last actor, which carries no comment id.
        """
        return self._activity.get(root_id) or self._last_actor.get(root_id)

    def _activity_sort_key(self, root: ExistingComment) -> tuple[datetime, int]:
        activity = self._activity.get(root.id)
        when = activity.updated_at if activity and activity.updated_at else root.updated_at
        return when, root.id

    # -- classified threads --------------------------------------------------

    def threads_at(self, path: str, line: int, side: Side | None = None) -> tuple[ReviewThread, ...]:
        """Classified threads at a location.

        With a side, side-less legacy records are only returned when no record
        carries that side.
        """
        if side is None:
            return self._threads_by_line.get((path, line), ())
        sided = self._threads_by_key.get(LocationKey(path, line, side), ())
        if sided:
            return sided
        return self._threads_by_key.get(LocationKey(path, line, None), ())

    def thread_by_id(self, thread_id: int) -> ReviewThread | None:
        return self._threads_by_id.get(thread_id)

    def thread_by_node(self, node_id: str) -> ReviewThread | None:
        return self._threads_by_node.get(node_id)

    def thread_for_root(self, root_id: int) -> ReviewThread | None:
        return self._threads_by_root.get(root_id)

    @property
    def has_threads(self) -> bool:
        return bool(self._threads)

    def all_threads(self) -> tuple[ReviewThread, ...]:
        return self._threads


def _resolve_root(comment: ExistingComment, by_id: Mapping[int, ExistingComment]) -> int:
    """Follow ``in_reply_to_id`` links to the conversation root."""
    current = comment
    seen = {current.id}
    while current.in_reply_to_id is not None:
        parent = by_id.get(current.in_reply_to_id)
        if parent is None or parent.id in seen:
            # Parent not in the snapshot: the link target is the best root we know
            return current.in_reply_to_id
        seen.add(parent.id)
        current = parent
    return current.id


def build_location_index(
    comments: Iterable[ExistingComment],
    threads: Iterable[ReviewThread] = (),
) -> LocationIndex:
    """Build every lookup view from one snapshot."""
    by_id = {c.id: c for c in comments}
    threads = list(threads)
    anchored = [c for c in by_id.values() if c.kind == CommentKind.REVIEW]

    root_of: dict[int, int] = {c.id: c.id for c in by_id.values() if c.kind == CommentKind.ISSUE}
    activity: dict[int, ThreadActivity] = {}
    roots_by_key: dict[LocationKey, list[ExistingComment]] = {}
    roots_by_line: dict[tuple[str, int], list[ExistingComment]] = {}

    for comment in sorted(anchored, key=lambda c: (c.updated_at, c.id)):
        root_id = _resolve_root(comment, by_id)
        root_of[comment.id] = root_id

        current = activity.get(root_id)
        if current is None or current.updated_at is None or comment.updated_at >= current.updated_at:
            activity[root_id] = ThreadActivity(
                comment_id=comment.id,
                author=comment.author,
                updated_at=comment.updated_at,
                author_type=comment.author_type,
                body=comment.body,
            )

        if comment.is_reply or not comment.is_anchored:
            continue
        assert comment.path is not None and comment.line is not None  # noqa: S101 - narrowed by is_anchored
        roots_by_key.setdefault(LocationKey(comment.path, comment.line, comment.side), []).append(comment)
        roots_by_line.setdefault((comment.path, comment.line), []).append(comment)

    threads_by_key: dict[LocationKey, list[ReviewThread]] = {}
    threads_by_line: dict[tuple[str, int], list[ReviewThread]] = {}
    threads_by_id: dict[int, ReviewThread] = {}
    threads_by_node: dict[str, ReviewThread] = {}
    threads_by_root: dict[int, ReviewThread] = {}
    last_actor: dict[int, ThreadActivity] = {}

    for thread in threads:
        if thread.node_id:
            threads_by_node[thread.node_id] = thread
        # Threads without a root database id all carry id 0; they stay reachable by node id
        if thread.root_comment_id is not None:
            threads_by_id[thread.id] = thread
            threads_by_root[thread.root_comment_id] = thread
            last_actor[thread.root_comment_id] = ThreadActivity(
                comment_id=None,
                author=thread.last_actor,
                updated_at=thread.last_updated_at,
            )
        if thread.line is None:
            # Outdated threads can lose their line; they stay reachable by id only
            continue
        threads_by_key.setdefault(LocationKey(thread.path, thread.line, thread.side), []).append(thread)
        threads_by_line.setdefault((thread.path, thread.line), []).append(thread)

    logger.debug(
        "Indexed %d comments (%d anchored roots) and %d threads",
        len(by_id),
        sum(len(v) for v in roots_by_key.values()),
        len(threads),
    )

    return LocationIndex(
        comments=by_id,
        root_of=root_of,
        roots_by_key={k: tuple(v) for k, v in roots_by_key.items()},
        roots_by_line={k: tuple(v) for k, v in roots_by_line.items()},
        activity=activity,
        last_actor=last_actor,
        threads_by_key={k: tuple(v) for k, v in threads_by_key.items()},
        threads_by_line={k: tuple(v) for k, v in threads_by_line.items()},
        threads=threads,
        threads_by_id=threads_by_id,
        threads_by_node=threads_by_node,
        threads_by_root=threads_by_root,
    )


def build_threads_from_comments(comments: Iterable[ExistingComment]) -> list[ReviewThread]:
    """Synthesize thread records from flat review comments.

    Used when GitHub's classified thread list is unavailable.  The synthesized
    threads carry no node id and are never marked resolved or outdated.
    """
    comments = list(comments)
    index = build_location_index(comments)
    threads: list[ReviewThread] = []
    for comment in comments:
        if comment.kind != CommentKind.REVIEW or comment.is_reply or not comment.is_anchored:
            continue
        assert comment.path is not None  # noqa: S101 - narrowed by is_anchored
        last = index.latest_activity(comment.id)
        threads.append(
            ReviewThread(
                id=comment.id,
                path=comment.path,
                line=comment.line,
                side=comment.side,
                last_updated_at=last.updated_at if last else comment.updated_at,
                last_actor=last.author if last else comment.author,
                root_comment_id=comment.id,
                root_author=comment.author,
                url=comment.url,
            )
        )
    return threads
