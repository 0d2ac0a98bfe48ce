"""One review session per pull request.

A session owns the snapshot read at start, the location index built from it,
the reviewer identity and the run ledger.  The server loads it lazily on the
first tool call and keeps it for the lifetime of the process.
"""

from __future__ import annotations

import asyncio
import logging

from threadwise.config import Config, env_pr, env_repo, get_config
from threadwise.github_api import parse_repo
from threadwise.index import LocationIndex, build_location_index
from threadwise.ledger import RunLedger
from threadwise.models import PullRequestRef, ReviewSnapshot  # noqa: TC001 - attribute types
from threadwise.snapshot import fetch_snapshot

logger = logging.getLogger(__name__)


class ReviewSession:
    """Immutable snapshot views plus this run's write ledger."""

    def __init__(self, snapshot: ReviewSnapshot, config: Config | None = None) -> None:
        self.config = config or get_config()
        self.snapshot = snapshot
        self.index: LocationIndex = build_location_index(snapshot.comments, snapshot.threads)
        self.identity = self.config.bot_identity()
        self.ledger = RunLedger()

    @property
    def pull_request(self) -> PullRequestRef:
        return self.snapshot.pull_request

    @property
    def pulls_endpoint(self) -> str:
        pr = self.pull_request
        return f"/repos/{pr.owner}/{pr.repo}/pulls/{pr.number}"

    @property
    def repo_endpoint(self) -> str:
        pr = self.pull_request
        return f"/repos/{pr.owner}/{pr.repo}"


async def load_session(repo: str, pr_number: int, config: Config | None = None) -> ReviewSession:
    """Fetch the snapshot for ``repo#pr_number`` and build a session over it."""
    config = config or get_config()
    owner, repo_name = parse_repo(repo)
    snapshot = await fetch_snapshot(owner, repo_name, pr_number, review_threads=config.fetch.review_threads)
    return ReviewSession(snapshot, config)


# -- Active session ------------------------------------------------------------


class _SessionState:
    __slots__ = ("lock", "pr_number", "repo", "session")

    def __init__(self) -> None:
        self.session: ReviewSession | None = None
        self.repo: str | None = None
        self.pr_number: int | None = None
        self.lock = asyncio.Lock()


_state = _SessionState()


def set_target(repo: str | None, pr_number: int | None) -> None:
    """Set the pull request the next lazily loaded session reviews."""
    _state.repo = repo
    _state.pr_number = pr_number


def set_session(session: ReviewSession | None) -> None:
    """Install (or clear) the active session directly."""
    _state.session = session


async def get_session() -> ReviewSession:
    """Return the active session, loading it on first use.

    Raises:
        ValueError: If no pull request was configured via ``--repo``/``--pr``
            or ``THREADWISE_REPO``/``THREADWISE_PR``.
    """
    if _state.session is not None:
        return _state.session

    async with _state.lock:
        if _state.session is not None:
            return _state.session
        repo = _state.repo or env_repo()
        pr_number = _state.pr_number or env_pr()
        if not repo or not pr_number:
            msg = "No pull request configured. Pass --repo and --pr, or set THREADWISE_REPO and THREADWISE_PR."
            raise ValueError(msg)
        logger.info("Loading review session for %s#%d", repo, pr_number)
        _state.session = await load_session(repo, pr_number)
        return _state.session
