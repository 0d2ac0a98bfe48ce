"""Recognising this reviewer's own comments.

GitHub does not always tell us reliably who wrote a comment, so identity is a
ranked chain of signals.  Each predicate returns ``True``/``False`` when it is
decisive and ``None`` to defer to the next one:

1. account kind: GitHub's ``user.type`` flag (``Bot``);
2. account name: the configured login, or the ``[bot]`` suffix convention;
3. marker: the marker string every body written by this reviewer carries.

The first decisive answer wins; if nothing decides, the author is not us.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import NamedTuple

BOT_SUFFIX = "[bot]"


class BotIdentity(NamedTuple):
    """How this reviewer shows up on GitHub."""

    login: str | None
    marker: str


class AuthorSignals(NamedTuple):
    """What we know about the author of one comment."""

    author: str
    author_type: str | None = None
    body: str | None = None


def _normalize_login(login: str) -> str:
    normalized = login.strip().lower()
    if normalized.endswith(BOT_SUFFIX):
        normalized = normalized[: -len(BOT_SUFFIX)]
    return normalized


def _by_account_kind(signals: AuthorSignals, identity: BotIdentity) -> bool | None:
    if not signals.author_type or signals.author_type.lower() != "bot":
        return None
    if identity.login:
        # Another app (codecov, dependabot, ...) is a bot too
        return _normalize_login(signals.author) == _normalize_login(identity.login)
    return True


def _by_account_name(signals: AuthorSignals, identity: BotIdentity) -> bool | None:
    if identity.login and _normalize_login(signals.author) == _normalize_login(identity.login):
        return True
    if not identity.login and signals.author.lower().endswith(BOT_SUFFIX):
        return True
    return None


def _by_marker(signals: AuthorSignals, identity: BotIdentity) -> bool | None:
    if signals.body is None or not identity.marker:
        return None
    return identity.marker in signals.body


IDENTITY_CHAIN: tuple[Callable[[AuthorSignals, BotIdentity], bool | None], ...] = (
    _by_account_kind,
    _by_account_name,
    _by_marker,
)


def is_self(signals: AuthorSignals, identity: BotIdentity) -> bool:
    """Return True if the comment described by *signals* was written by this reviewer."""
    for predicate in IDENTITY_CHAIN:
        decision = predicate(signals, identity)
        if decision is not None:
            return decision
    return False


def with_marker(body: str, identity: BotIdentity) -> str:
    """Append the identity marker to *body* unless it is already there."""
    if not identity.marker or identity.marker in body:
        return body
    return f"{body.rstrip()}\n\n{identity.marker}"
