"""Unified diff parser — hunks, line stats, and a jump-to-change hint.

Metadata lines (``diff --git``, ``index``, ``---``, ``+++``) are dropped
wherever they appear. Everything else inside an open hunk is kept verbatim.
"""

from __future__ import annotations

import re
from typing import List, Optional

from repomon.git.models import DiffStats, Hunk, LineType, ParsedDiff, classify_line

# --- Regex patterns for diff parsing ---

_HUNK_HEADER_RE = re.compile(
    r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@"
)
_METADATA_PREFIXES = ("diff --git", "index ", "---", "+++")


def _is_metadata(line: str) -> bool:
    return line.startswith(_METADATA_PREFIXES)


def split_lines(text: str) -> List[str]:
    """Split *text* on newlines only, dropping one trailing "\\r" per line.

    Other characters that ``str.splitlines`` treats as breaks (form feed,
    vertical tab, U+2028 and friends) stay inside the line. A final empty
    element left by a trailing newline is dropped.
    """
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


class DiffParser:
    """Parse unified diff text into a :class:`ParsedDiff`.

    Usage::

        parsed = DiffParser(diff_text).parse()
        if parsed is not None:
            print(parsed.stats.additions, parsed.first_changed_line)
    """

    def __init__(self, diff_text: Optional[str]) -> None:
        self._text = diff_text or ""
        self._lines = split_lines(self._text)

    def parse(self) -> Optional[ParsedDiff]:
        """Return the parsed diff, or None for empty input."""
        if not self._text:
            return None

        hunks = []
        current: Optional[Hunk] = None
        additions = 0
        deletions = 0
        first_added: Optional[int] = None
        first_removed_at: Optional[int] = None
        new_cursor = 0

        for raw_line in self._lines:
            # --- Hunk header ---
            hm = _HUNK_HEADER_RE.match(raw_line)
            if hm:
                current = Hunk(
                    header=raw_line,
                    old_start=int(hm.group(1)),
                    new_start=int(hm.group(3)),
                )
                hunks.append(current)
                new_cursor = current.new_start
                continue

            if current is None or _is_metadata(raw_line):
                continue

            current.lines.append(raw_line)
            kind = classify_line(raw_line)
            if kind is LineType.ADDED:
                additions += 1
                if first_added is None:
                    first_added = new_cursor
                new_cursor += 1
            elif kind is LineType.REMOVED:
                deletions += 1
                if first_removed_at is None:
                    # A deletion leaves the new-file cursor at the hunk start
                    first_removed_at = current.new_start
            elif kind is LineType.CONTEXT:
                new_cursor += 1

        first_changed = first_added if first_added is not None else first_removed_at
        return ParsedDiff(
            hunks=hunks,
            stats=DiffStats(additions=additions, deletions=deletions),
            first_changed_line=first_changed,
        )


def parse_diff(diff_text: Optional[str]) -> Optional[ParsedDiff]:
    """Parse *diff_text*; None or empty input gives None."""
    return DiffParser(diff_text).parse()


def diff_stats(diff_text: Optional[str]) -> DiffStats:
    """Return add/delete counts for *diff_text*, zero when it does not parse."""
    parsed = parse_diff(diff_text)
    return parsed.stats if parsed is not None else DiffStats()
