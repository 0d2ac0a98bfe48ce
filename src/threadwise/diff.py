"""Unified-diff helpers for anchoring review comments.

GitHub only accepts inline comments on lines that appear in a file's patch
(the ``patch`` field from ``pulls/{pr}/files``).  Added lines are addressable
on the RIGHT side, removed lines on the LEFT side and unchanged context lines
on both, each at its own side's line number.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from threadwise.models import Side

_HUNK_RE = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? \+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@"
)

NO_DIFF = "no_diff"
NOT_IN_DIFF = "not_in_diff"


class DiffLine(NamedTuple):
    """One body line of a hunk with the line numbers it occupies."""

    kind: str  # "+", "-" or " "
    old_line: int | None
    new_line: int | None


class Anchor(NamedTuple):
    line: int
    side: Side


class LocateResult(NamedTuple):
    """Answer of :func:`locate`.

    ``sides`` lists every side the line is addressable on (in RIGHT, LEFT
    order), so a caller that passed ``side=None`` can pick one.
    """

    present: bool
    sides: tuple[Side, ...] = ()
    reason: str | None = None


def iter_diff_lines(patch: str) -> list[DiffLine]:
    """Walk hunk bodies keeping independent old/new counters."""
    lines: list[DiffLine] = []
    old_line: int | None = None
    new_line: int | None = None

    for raw in patch.splitlines():
        m = _HUNK_RE.match(raw)
        if m:
            old_line = int(m.group("old_start"))
            new_line = int(m.group("new_start"))
            continue

        if old_line is None or new_line is None:
            continue

        # A context line whose single space was stripped arrives empty
        prefix = raw[0] if raw else " "
        if prefix == "+":
            lines.append(DiffLine("+", None, new_line))
            new_line += 1
        elif prefix == "-":
            lines.append(DiffLine("-", old_line, None))
            old_line += 1
        elif prefix == " ":
            lines.append(DiffLine(" ", old_line, new_line))
            old_line += 1
            new_line += 1
        # "\ No newline at end of file" and stray text are not addressable

    return lines


def addressable_sides(patch: str, line: int) -> tuple[Side, ...]:
    """Return the sides on which *line* can carry an inline comment."""
    right = left = False
    for entry in iter_diff_lines(patch):
        if entry.new_line == line:
            right = True
        if entry.old_line == line:
            left = True
    sides: list[Side] = []
    if right:
        sides.append(Side.RIGHT)
    if left:
        sides.append(Side.LEFT)
    return tuple(sides)


def locate(patch: str | None, line: int, side: Side | None = None) -> LocateResult:
    """Check whether ``(line, side)`` exists in *patch*.

    ``side=None`` accepts either side.  A missing patch (binary or too-large
    file) always fails with reason :data:`NO_DIFF`; a line outside every hunk
    fails with :data:`NOT_IN_DIFF`.
    """
    if not patch:
        return LocateResult(present=False, reason=NO_DIFF)

    sides = addressable_sides(patch, line)
    if side is not None:
        sides = tuple(s for s in sides if s == side)
    if not sides:
        return LocateResult(present=False, reason=NOT_IN_DIFF)
    return LocateResult(present=True, sides=sides)


def find_preferred_anchor(patch: str | None) -> Anchor | None:
    """Pick a default anchor: first added line, else first context line, else first removed line."""
    if not patch:
        return None

    first_context: Anchor | None = None
    first_removed: Anchor | None = None
    for entry in iter_diff_lines(patch):
        if entry.kind == "+" and entry.new_line is not None:
            return Anchor(entry.new_line, Side.RIGHT)
        if entry.kind == " " and first_context is None and entry.new_line is not None:
            first_context = Anchor(entry.new_line, Side.RIGHT)
        elif entry.kind == "-" and first_removed is None and entry.old_line is not None:
            first_removed = Anchor(entry.old_line, Side.LEFT)

    return first_context or first_removed
