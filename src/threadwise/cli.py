"""CLI for threadwise, built on cyclopts (same framework as FastMCP's CLI)."""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Literal

import cyclopts

app = cyclopts.App(
    name="threadwise",
    help="threadwise: comment placement and thread reconciliation MCP server.",
)


@app.default
def serve(repo: str | None = None, pr: int | None = None) -> None:
    """Run the threadwise MCP server (default command).

    Parameters
    ----------
    repo
        Repository in ``owner/repo`` form. Defaults to ``THREADWISE_REPO``.
    pr
        Pull request number. Defaults to ``THREADWISE_PR``.
    """
    from threadwise.server import mcp  # noqa: PLC0415
    from threadwise.session import set_target  # noqa: PLC0415

    set_target(repo, pr)
    mcp.run()


@app.command
def check() -> None:
    """Validate configuration and GitHub authentication and print a summary."""
    from threadwise.config import ENV_PR, ENV_REPO, env_pr, env_repo, load_config  # noqa: PLC0415
    from threadwise.github_api import GitHubAuthError, get_token  # noqa: PLC0415

    print("threadwise check")
    print("=" * 40)

    try:
        config, path = load_config()
    except ValueError as exc:
        print(f"❌ Configuration error: {exc}")
        sys.exit(1)

    print(f"\n  Config file: {path or 'none (defaults)'}")
    print(f"  Identity login: {config.identity.login or 'auto ([bot] suffix)'}")
    print(f"  Marker: {config.identity.marker}")
    print(f"  Default side: {config.review.default_side.value}")
    print(f"  Suggestions: {'enabled' if config.review.suggestions else 'DISABLED'}")
    print(f"  Review threads: {'fetched' if config.fetch.review_threads else 'flat comments only'}")

    print("\n" + "-" * 40)
    try:
        pr = env_pr()
    except ValueError as exc:
        print(f"  ❌ {exc}")
        sys.exit(1)
    print(f"  {ENV_REPO} = {env_repo() or '(unset)'}")
    print(f"  {ENV_PR} = {pr or '(unset)'}")

    print("\n" + "-" * 40)
    print("Checking GitHub token...\n")
    try:
        token = asyncio.run(get_token())
    except GitHubAuthError as exc:
        print(f"  ❌ {exc}")
        sys.exit(1)
    source = "GH_TOKEN" if os.environ.get("GH_TOKEN") else "GITHUB_TOKEN" if os.environ.get("GITHUB_TOKEN") else "gh auth token"
    print(f"  ✅ Token found via {source} ({_mask(token)})")
    print()


@app.command
def locate(patch_file: Path, line: int, *, side: Literal["LEFT", "RIGHT"] | None = None) -> None:
    """Check whether a line is addressable in a unified diff.

    Parameters
    ----------
    patch_file
        File holding the unified diff of one file.
    line
        Line number to check.
    side
        LEFT or RIGHT; omit to accept either side.
    """
    from threadwise.diff import NO_DIFF, find_preferred_anchor  # noqa: PLC0415
    from threadwise.diff import locate as locate_line  # noqa: PLC0415
    from threadwise.models import Side  # noqa: PLC0415

    patch = patch_file.read_text(encoding="utf-8")
    result = locate_line(patch, line, Side(side) if side else None)
    if result.present:
        print(f"✅ line {line} is addressable on: {', '.join(s.value for s in result.sides)}")
    elif result.reason == NO_DIFF:
        print("❌ no diff available")
    else:
        print(f"❌ line {line} is not in the diff")

    anchor = find_preferred_anchor(patch)
    if anchor is not None:
        print(f"   preferred anchor: line {anchor.line} ({anchor.side.value})")
    if not result.present:
        sys.exit(1)


_MASK_MIN_LENGTH = 4


def _mask(value: str) -> str:
    if len(value) > _MASK_MIN_LENGTH:
        return value[:2] + "*" * (len(value) - _MASK_MIN_LENGTH) + value[-2:]
    return "****"
