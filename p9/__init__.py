"""
p9 — command-line front end for the ninep client.

    python -m p9 -a unix!/tmp/ns/fs stat /adir/afile
"""

from .config import Config
from .format import mode_string, render_table, stat_row

__all__ = ['Config', 'mode_string', 'render_table', 'stat_row']
