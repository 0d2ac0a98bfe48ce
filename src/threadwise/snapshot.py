"""Reading the pull request once at session start.

Four sources are combined into one frozen :class:`~threadwise.models.ReviewSnapshot`:
the pull request itself (head SHA), top-level and anchored comments (flat REST
lists), changed files with their patches, and the classified review threads
from GraphQL.  The classified threads are best-effort: permission and
not-found failures degrade to an empty list.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from threadwise import github_api
from threadwise.github_api import GitHubError, GitHubPermissionError, is_not_found
from threadwise.models import (
    ChangedFile,
    CommentKind,
    ExistingComment,
    PullRequestRef,
    ReviewSnapshot,
    ReviewThread,
    Side,
)

logger = logging.getLogger(__name__)

_THREADS_QUERY = """
query($owner: String!, $repo: String!, $pr: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $pr) {
      reviewThreads(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          isResolved
          isOutdated
          path
          line
          diffSide
          comments(first: 100) {
            nodes {
              databaseId
              author { login __typename }
              updatedAt
              url
            }
          }
        }
      }
    }
  }
}
"""

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _parse_side(value: str | None) -> Side | None:
    if not value:
        return None
    try:
        return Side(value.upper())
    except ValueError:
        return None


# -- Parsing -------------------------------------------------------------------


def parse_issue_comment(raw: dict[str, Any]) -> ExistingComment:
    user = raw.get("user") or {}
    return ExistingComment(
        id=raw["id"],
        author=user.get("login", "unknown"),
        author_type=user.get("type"),
        body=raw.get("body") or "",
        url=raw.get("html_url", ""),
        kind=CommentKind.ISSUE,
        updated_at=_parse_time(raw.get("updated_at") or raw.get("created_at")) or _EPOCH,
    )


def parse_review_comment(raw: dict[str, Any]) -> ExistingComment:
    user = raw.get("user") or {}
    return ExistingComment(
        id=raw["id"],
        author=user.get("login", "unknown"),
        author_type=user.get("type"),
        body=raw.get("body") or "",
        url=raw.get("html_url", ""),
        kind=CommentKind.REVIEW,
        path=raw.get("path"),
        # ``line`` is null once the comment is outdated; it is then not addressable
        line=raw.get("line"),
        side=_parse_side(raw.get("side")),
        in_reply_to_id=raw.get("in_reply_to_id"),
        updated_at=_parse_time(raw.get("updated_at") or raw.get("created_at")) or _EPOCH,
    )


def parse_changed_file(raw: dict[str, Any]) -> ChangedFile:
    return ChangedFile(
        filename=raw["filename"],
        status=raw.get("status", "modified"),
        additions=raw.get("additions", 0),
        deletions=raw.get("deletions", 0),
        changes=raw.get("changes", 0),
        patch=raw.get("patch"),
        previous_filename=raw.get("previous_filename"),
    )


def parse_thread(node: dict[str, Any]) -> ReviewThread | None:
    """Parse one GraphQL ``reviewThreads`` node; threads without comments are skipped."""
    comments = [c for c in node.get("comments", {}).get("nodes", []) if c]
    if not comments:
        return None

    root = comments[0]
    root_id = root.get("databaseId")
    latest = max(comments, key=lambda c: _parse_time(c.get("updatedAt")) or _EPOCH)
    latest_author = latest.get("author") or {}

    return ReviewThread(
        id=root_id if root_id is not None else 0,
        node_id=node.get("id"),
        path=node.get("path") or "",
        line=node.get("line"),
        side=_parse_side(node.get("diffSide")),
        is_outdated=bool(node.get("isOutdated")),
        is_resolved=bool(node.get("isResolved")),
        last_updated_at=_parse_time(latest.get("updatedAt")),
        last_actor=latest_author.get("login", "unknown"),
        root_comment_id=root_id,
        root_author=(root.get("author") or {}).get("login"),
        url=root.get("url", ""),
    )


# -- Fetching ------------------------------------------------------------------


async def fetch_review_threads(owner: str, repo: str, number: int) -> list[ReviewThread]:
    """Paginate through all classified review threads of a pull request."""
    threads: list[ReviewThread] = []
    cursor: str | None = None

    while True:
        variables: dict[str, Any] = {"owner": owner, "repo": repo, "pr": number}
        if cursor:
            variables["cursor"] = cursor

        result = await github_api.graphql(_THREADS_QUERY, variables)
        pr_data = (result.get("data") or {}).get("repository", {}).get("pullRequest")
        if pr_data is None:
            msg = f"Pull request {owner}/{repo}#{number} not found"
            raise GitHubError(msg, status_code=404)

        threads_data = pr_data.get("reviewThreads") or {}
        for node in threads_data.get("nodes") or []:
            thread = parse_thread(node)
            if thread is not None:
                threads.append(thread)

        page_info = threads_data.get("pageInfo") or {}
        if page_info.get("hasNextPage") and page_info.get("endCursor"):
            cursor = page_info["endCursor"]
        else:
            break

    return threads


async def _fetch_threads_best_effort(owner: str, repo: str, number: int) -> list[ReviewThread] | None:
    """Classified threads, or None when they are not available to this token."""
    try:
        return await fetch_review_threads(owner, repo, number)
    except GitHubPermissionError as exc:
        logger.warning("Review threads unavailable for %s/%s#%d (permission denied): %s", owner, repo, number, exc)
    except GitHubError as exc:
        if not is_not_found(exc):
            raise
        logger.warning("Review threads unavailable for %s/%s#%d (not found): %s", owner, repo, number, exc)
    return None


async def fetch_snapshot(owner: str, repo: str, number: int, *, review_threads: bool = True) -> ReviewSnapshot:
    """Read everything the write router needs, once.

    Raises:
        GitHubError: When the pull request, its comments or its files cannot be read.
    """
    base = f"/repos/{owner}/{repo}"
    pr_raw, issue_raw, review_raw, files_raw = await asyncio.gather(
        github_api.rest(f"{base}/pulls/{number}"),
        github_api.rest(f"{base}/issues/{number}/comments?per_page=100", paginate=True),
        github_api.rest(f"{base}/pulls/{number}/comments?per_page=100", paginate=True),
        github_api.rest(f"{base}/pulls/{number}/files?per_page=100", paginate=True),
    )

    threads: list[ReviewThread] | None = None
    if review_threads:
        threads = await _fetch_threads_best_effort(owner, repo, number)
    else:
        logger.info("Review thread fetch disabled by config; relying on flat comments")

    comments = [parse_issue_comment(c) for c in issue_raw] + [parse_review_comment(c) for c in review_raw]
    files = [parse_changed_file(f) for f in files_raw]

    snapshot = ReviewSnapshot(
        pull_request=PullRequestRef(
            owner=owner,
            repo=repo,
            number=number,
            head_sha=((pr_raw or {}).get("head") or {}).get("sha", ""),
        ),
        comments=tuple(comments),
        threads=tuple(threads or ()),
        files=tuple(files),
        threads_available=threads is not None,
    )
    logger.info(
        "Snapshot of %s/%s#%d: %d comments, %d threads%s, %d files",
        owner,
        repo,
        number,
        len(comments),
        len(snapshot.threads),
        "" if snapshot.threads_available else " (unavailable)",
        len(files),
    )
    return snapshot
