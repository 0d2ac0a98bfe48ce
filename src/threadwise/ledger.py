"""Per-session record of what this run has written.

The snapshot indices are never refreshed mid-run, so writes issued earlier in
the same session are invisible to them.  The ledger fills that gap: it remembers
new threads by location, replies by root, resolve explanations by thread node,
and the resource kind of every id this run produced.
"""

from __future__ import annotations

from threadwise.models import CommentKind, LocationKey, Side


class RunLedger:
    """Append-only memory of writes issued in one session."""

    def __init__(self) -> None:
        self._created: dict[LocationKey, int] = {}
        self._replies: dict[int, int] = {}
        self._kinds: dict[int, CommentKind] = {}
        self._explanations: dict[str, int] = {}

    def record_created(self, path: str, line: int, side: Side, comment_id: int) -> None:
        self._created[LocationKey(path, line, side)] = comment_id
        self._kinds[comment_id] = CommentKind.REVIEW

    def record_reply(self, root_id: int, comment_id: int) -> None:
        self._replies[root_id] = comment_id
        self._kinds[comment_id] = CommentKind.REVIEW

    def record_kind(self, comment_id: int, kind: CommentKind) -> None:
        self._kinds[comment_id] = kind

    def record_explanation(self, node_id: str, comment_id: int) -> None:
        self._explanations[node_id] = comment_id

    def created_at(self, path: str, line: int, side: Side | None = None) -> int | None:
        """Id of a thread this run opened at the location, if any."""
        if side is not None:
            return self._created.get(LocationKey(path, line, side))
        for s in (Side.RIGHT, Side.LEFT):
            found = self._created.get(LocationKey(path, line, s))
            if found is not None:
                return found
        return None

    def latest_reply(self, root_id: int) -> int | None:
        return self._replies.get(root_id)

    def explanation_for(self, node_id: str) -> int | None:
        """Id of the resolve explanation this run already posted into the thread."""
        return self._explanations.get(node_id)

    def kind_of(self, comment_id: int) -> CommentKind | None:
        return self._kinds.get(comment_id)

    def __len__(self) -> int:
        return len(self._kinds)
