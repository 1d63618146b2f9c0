"""
Line-level diff between a document's current text and a rewrite.

The model returns a full replacement with no edit locations, so we
recover them here: which new lines were added, where old lines were
removed, and which added blocks were really moved from elsewhere.

Pure and deterministic. O(n*m) time and space in the line counts, which
is fine for single-file texts.
"""

import bisect
import re
from typing import List, Tuple

from .types import DiffResult, MovedSpan, RemovedSpan


_LINE_BREAK = re.compile(r"\r?\n")

# An added block only counts as moved if its origin is further than this
MOVE_MIN_DISTANCE = 1


def split_lines(text: str) -> List[str]:
    """Split text into lines. The empty string has no lines."""
    if not text:
        return []
    return _LINE_BREAK.split(text)


def compute_diff(old_text: str, new_text: str) -> DiffResult:
    """
    Compute added, removed and moved spans from `old_text` to `new_text`.

    Args:
        old_text: Current document text
        new_text: Candidate replacement text

    Returns:
        DiffResult in new-text line coordinates
    """
    old_lines = split_lines(old_text)
    new_lines = split_lines(new_text)

    if not old_lines and not new_lines:
        return DiffResult()

    if not old_lines:
        return DiffResult(added=[(0, len(new_lines) - 1)])

    if not new_lines:
        # Whole document vanished; nothing left to anchor to
        return DiffResult()

    added, removed = _walk_lcs(old_lines, new_lines)
    moved = _detect_moves(old_lines, new_lines, added)
    return DiffResult(added=added, removed=removed, moved=moved)


def _lcs_table(a: List[str], b: List[str]) -> List[List[int]]:
    """table[i][j] = LCS length of a[i:] and b[j:]."""
    n, m = len(a), len(b)
    table = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(n - 1, -1, -1):
        row, below = table[i], table[i + 1]
        for j in range(m - 1, -1, -1):
            if a[i] == b[j]:
                row[j] = below[j + 1] + 1
            else:
                row[j] = max(below[j], row[j + 1])
    return table


def _walk_lcs(
    a: List[str],
    b: List[str],
) -> Tuple[List[Tuple[int, int]], List[RemovedSpan]]:
    """
    Walk the LCS table from the start, collecting runs.

    Ties between deleting from `a` and inserting from `b` go to deletion.
    """
    table = _lcs_table(a, b)
    n, m = len(a), len(b)

    added: List[Tuple[int, int]] = []
    removed: List[RemovedSpan] = []
    add_start = -1
    del_count = 0
    i = j = 0

    while i < n and j < m:
        if a[i] == b[j]:
            if add_start != -1:
                added.append((add_start, j - 1))
                add_start = -1
            if del_count:
                removed.append(RemovedSpan(anchor=j, count=del_count))
                del_count = 0
            i += 1
            j += 1
        elif table[i + 1][j] >= table[i][j + 1]:
            del_count += 1
            i += 1
        else:
            if add_start == -1:
                add_start = j
            j += 1

    # Leftovers on either side once the other is exhausted
    del_count += n - i
    if j < m and add_start == -1:
        add_start = j

    if add_start != -1:
        added.append((add_start, m - 1))
    if del_count:
        removed.append(RemovedSpan(anchor=max(0, m - 1), count=del_count))

    return added, removed


def _detect_moves(
    old_lines: List[str],
    new_lines: List[str],
    added: List[Tuple[int, int]],
) -> List[MovedSpan]:
    """
    Flag added spans whose exact text already exists in the old text.

    Best effort: verbatim substring match, first occurrence wins.
    """
    if not added:
        return []

    old_joined = "\n".join(old_lines)

    # Offsets where each old line starts, for offset -> line lookup
    line_starts = [0]
    for index, char in enumerate(old_joined):
        if char == "\n":
            line_starts.append(index + 1)

    moved: List[MovedSpan] = []
    for start, end in added:
        block = "\n".join(new_lines[start:end + 1])
        if not block.strip():
            continue  # whitespace-only spans never count as moved

        found_at = old_joined.find(block)
        if found_at < 0:
            continue

        from_start = bisect.bisect_right(line_starts, found_at) - 1
        from_end = from_start + (end - start)
        if abs(from_start - start) > MOVE_MIN_DISTANCE:
            moved.append(MovedSpan(start=start, end=end, from_start=from_start, from_end=from_end))

    return moved
