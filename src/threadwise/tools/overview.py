"""Read-only thread listing for disambiguation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from threadwise.index import build_threads_from_comments
from threadwise.models import ThreadOverview
from threadwise.resolver import thread_candidate

if TYPE_CHECKING:
    from threadwise.session import ReviewSession


def list_threads(session: ReviewSession, path: str | None = None) -> ThreadOverview:
    """List known threads, falling back to threads synthesized from flat comments."""
    if session.snapshot.threads_available:
        threads = list(session.index.all_threads())
        source = "threads"
        message = ""
    else:
        threads = build_threads_from_comments(session.snapshot.comments)
        source = "comments"
        message = (
            "Classified review threads are unavailable; threads were rebuilt from flat comments. "
            "Resolved and outdated state is unknown and these threads cannot be resolved."
        )

    if path:
        threads = [t for t in threads if t.path == path]
    threads.sort(key=lambda t: (t.path, t.line or 0, t.id))

    candidates = [thread_candidate(t) for t in threads]
    if source == "comments":
        candidates = [c.model_copy(update={"is_resolved": None, "is_outdated": None}) for c in candidates]
    return ThreadOverview(threads=candidates, source=source, message=message)
