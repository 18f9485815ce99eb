"""
Human-readable rendering of stat records.
"""

import time
from typing import List, Sequence

from core.types import Stat, DMDIR, DMAPPEND, DMEXCL, DMTMP

TIME_FORMAT = "%m-%d-%Y %H:%M:%S %Z"

_TYPE_LETTERS = (
    (DMDIR, "d"),
    (DMAPPEND, "a"),
    (DMEXCL, "l"),
    (DMTMP, "t"),
)


def mode_string(mode: int) -> str:
    """drwxr-xr-x style rendering of a 9P mode word"""
    kind = "".join(letter for bit, letter in _TYPE_LETTERS if mode & bit) or "-"
    perms = ""
    for shift in (6, 3, 0):
        bits = (mode >> shift) & 0o7
        perms += ("r" if bits & 4 else "-") + ("w" if bits & 2 else "-") + ("x" if bits & 1 else "-")
    return kind + perms


def format_time(seconds: int) -> str:
    return time.strftime(TIME_FORMAT, time.localtime(seconds))


def stat_row(stat: Stat, mark_dirs: bool = False) -> List[str]:
    """Columns for one entry: mode, length, mtime, name"""
    name = stat.name
    if mark_dirs and stat.is_dir:
        name += "/"
    return [mode_string(stat.mode), str(stat.length), format_time(stat.mtime), name]


def render_table(rows: Sequence[Sequence[str]], padding: int = 8) -> str:
    """Left-aligned columns, each padded to its widest cell plus padding"""
    if not rows:
        return ""
    ncols = max(len(r) for r in rows)
    widths = [0] * ncols
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    lines = []
    for row in rows:
        cells = [cell.ljust(widths[i] + padding) for i, cell in enumerate(row[:-1])]
        cells.append(row[-1])
        lines.append("".join(cells))
    return "\n".join(lines) + "\n"
