"""GitHub API client using httpx with token authentication.

Authentication priority (resolved once per process, then cached):
1. ``GH_TOKEN`` env var
2. ``GITHUB_TOKEN`` env var
3. ``gh auth token`` subprocess: reads local ``~/.config/gh/hosts.yml``, no network
4. Raises :exc:`GitHubAuthError`

Every failure is raised as a :exc:`GitHubError` subclass so callers can tell
rate limiting, permission denial and plain transport errors apart without
inspecting message text.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import subprocess  # noqa: S404
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_GITHUB_API_URL = "https://api.github.com"
_GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"

_token: str | None = None
_token_resolved: bool = False


# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------


class GitHubError(Exception):
    """Raised when a GitHub API call fails."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubAuthError(GitHubError):
    """Raised when GitHub authentication fails or no token is available."""

    def __init__(self, detail: str = "") -> None:
        msg = "GitHub token not found or rejected. Set GH_TOKEN or GITHUB_TOKEN env var, or run 'gh auth login'."
        if detail:
            msg = f"{detail}\n{msg}"
        super().__init__(msg, status_code=401)


class GitHubPermissionError(GitHubError):
    """Raised when the token is valid but not allowed to perform the call.

    Typical for GitHub App installation tokens ("Resource not accessible by
    integration") and for repositories that hide review-thread data.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=403)


class RateLimitError(GitHubError):
    """Raised when GitHub rejects a call because of primary or secondary rate limits."""

    def __init__(self, message: str = "GitHub API rate limit exceeded.", status_code: int = 403) -> None:
        super().__init__(message, status_code=status_code)


# ---------------------------------------------------------------------------
# Repo parsing
# ---------------------------------------------------------------------------


def parse_repo(repo: str) -> tuple[str, str]:
    """Parse an ``owner/repo`` string into a ``(owner, repo_name)`` tuple.

    Raises:
        GitHubError: If the string is not in ``owner/repo`` format.
    """
    owner, _, repo_name = repo.partition("/")
    if not owner or not repo_name:
        msg = f"Invalid repo format {repo!r}. Expected 'owner/repo'."
        raise GitHubError(msg)
    return owner, repo_name


# ---------------------------------------------------------------------------
# Token resolution
# ---------------------------------------------------------------------------


def _resolve_token_sync() -> str | None:
    """Resolve GitHub token synchronously. Safe to run in a thread."""
    token = os.environ.get("GH_TOKEN") or os.environ.get("GITHUB_TOKEN")
    if token:
        logger.debug("GitHub token resolved from env var")
        return token

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],  # noqa: S607
            capture_output=True,
            text=True,
            check=False,
            timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            logger.debug("GitHub token resolved from gh auth token")
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
        pass

    return None


async def get_token() -> str:
    """Return the GitHub token, resolving it lazily on first call.

    Raises:
        GitHubAuthError: If no token can be found.
    """
    global _token, _token_resolved  # noqa: PLW0603
    if not _token_resolved:
        _token = await asyncio.to_thread(_resolve_token_sync)
        _token_resolved = True
    if _token is None:
        raise GitHubAuthError
    return _token


def reset_token() -> None:
    """Reset cached token (for testing)."""
    global _token, _token_resolved  # noqa: PLW0603
    _token = None
    _token_resolved = False


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


async def _get_headers() -> dict[str, str]:
    """Build GitHub API request headers with resolved auth token."""
    token = await get_token()
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_HTTP_UNPROCESSABLE = 422
_HTTP_TOO_MANY_REQUESTS = 429


def is_rate_limit_message(message: str) -> bool:
    """Return True if an error message names a primary or secondary rate limit."""
    return "rate limit" in message.lower()


def _raise_for_status(response: httpx.Response) -> None:
    """Raise the appropriate :exc:`GitHubError` subclass for non-2xx responses."""
    if response.is_success:
        return

    if response.status_code == _HTTP_UNAUTHORIZED:
        raise GitHubAuthError

    try:
        body = response.json()
        msg = body.get("message", response.text)
    except Exception:
        msg = response.text

    if response.status_code == _HTTP_TOO_MANY_REQUESTS:
        raise RateLimitError(f"GitHub API rate limit exceeded: {msg}", status_code=_HTTP_TOO_MANY_REQUESTS)

    if response.status_code == _HTTP_FORBIDDEN:
        if is_rate_limit_message(msg):
            raise RateLimitError(f"GitHub API rate limit exceeded: {msg}")
        raise GitHubPermissionError(f"GitHub API access forbidden: {msg}")

    msg = f"GitHub API error {response.status_code}: {msg}"
    raise GitHubError(msg, status_code=response.status_code)


def _parse_next_link(link_header: str) -> str | None:
    """Parse a ``Link:`` header and return the ``next`` URL if present."""
    if not link_header:
        return None
    match = re.search(r'<([^>]+)>;\s*rel="next"', link_header)
    return match.group(1) if match else None


def _raise_for_graphql_errors(errors: list[dict[str, Any]]) -> None:
    """Classify GraphQL ``errors`` entries the same way as HTTP status codes."""
    messages = "; ".join(e.get("message", str(e)) for e in errors)
    types = {str(e.get("type", "")).upper() for e in errors}
    if "RATE_LIMITED" in types or is_rate_limit_message(messages):
        raise RateLimitError(f"GitHub GraphQL rate limit exceeded: {messages}")
    if "FORBIDDEN" in types or "not accessible by integration" in messages.lower():
        raise GitHubPermissionError(f"GraphQL error: {messages}")
    if "NOT_FOUND" in types:
        raise GitHubError(f"GraphQL error: {messages}", status_code=_HTTP_NOT_FOUND)
    raise GitHubError(f"GraphQL error: {messages}")


# ---------------------------------------------------------------------------
# GraphQL
# ---------------------------------------------------------------------------


async def graphql(query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
    """Execute a GitHub GraphQL query or mutation.

    Args:
        query: GraphQL query or mutation string.
        variables: Optional variables dict.

    Returns:
        Parsed JSON response dict (full envelope including ``data``).

    Raises:
        GitHubError: On GraphQL errors or HTTP failure.
        RateLimitError: When GitHub reports a rate limit.
        GitHubPermissionError: When the token may not access the resource.
    """
    is_mutation = query.strip().lower().startswith("mutation")
    headers = await _get_headers()
    payload: dict[str, Any] = {"query": query}
    if variables:
        payload["variables"] = variables

    logger.debug("GraphQL %s", "mutation" if is_mutation else "query")
    async with httpx.AsyncClient() as client:
        response = await client.post(_GITHUB_GRAPHQL_URL, headers=headers, json=payload)

    _raise_for_status(response)
    result: dict[str, Any] = response.json()

    errors = result.get("errors")
    if errors:
        _raise_for_graphql_errors(errors)

    return result


# ---------------------------------------------------------------------------
# REST
# ---------------------------------------------------------------------------


async def rest(
    endpoint: str,
    method: str = "GET",
    *,
    paginate: bool = False,
    **kwargs: Any,
) -> Any:
    """Execute a GitHub REST API call.

    Args:
        endpoint: REST API endpoint path (e.g. ``/repos/owner/repo/pulls``).
            Query parameters may be embedded directly in the path.
        method: HTTP method (default ``GET``).
        paginate: If ``True``, follow ``Link:`` headers to collect all pages.
            Returns a flat list combining all page results.
        **kwargs: Additional query parameters (GET) or JSON body fields (non-GET).

    Returns:
        Parsed JSON response, or a flat list when ``paginate=True``.

    Raises:
        GitHubError: On HTTP failure.
    """
    url = f"{_GITHUB_API_URL}{endpoint}"
    headers = await _get_headers()
    logger.debug("REST %s %s", method.upper(), endpoint)

    if paginate:
        return await _paginate_rest(url, headers, **kwargs)
    return await _single_rest(url, method, headers, **kwargs)


async def _single_rest(url: str, method: str, headers: dict[str, str], **kwargs: Any) -> Any:
    """Make a single REST request and return parsed JSON."""
    upper = method.upper()
    params = dict(kwargs) if upper == "GET" and kwargs else None
    json_body = dict(kwargs) if upper != "GET" and kwargs else None

    async with httpx.AsyncClient() as client:
        response = await client.request(method, url, headers=headers, params=params, json=json_body)

    _raise_for_status(response)
    if not response.content:
        return None
    return response.json()


async def _paginate_rest(url: str, headers: dict[str, str], **kwargs: Any) -> list[Any]:
    """Follow ``Link:`` headers to collect all pages into a flat list."""
    results: list[Any] = []
    next_url: str | None = url
    first = True

    async with httpx.AsyncClient() as client:
        while next_url:
            params = dict(kwargs) if first and kwargs else None
            response = await client.get(next_url, headers=headers, params=params)
            _raise_for_status(response)
            page = response.json()
            if isinstance(page, list):
                results.extend(page)
            elif page is not None:
                results.append(page)
            next_url = _parse_next_link(response.headers.get("link", ""))
            first = False

    return results


def is_not_found(exc: GitHubError) -> bool:
    """Return True for responses that mean "no such resource of this kind"."""
    return exc.status_code in {_HTTP_NOT_FOUND, _HTTP_UNPROCESSABLE}
