# Core value types for the 9P2000 wire protocol
from .types import (
    Qid,
    Stat,
    iter_stats,
    QTDIR,
    QTFILE,
    QTAPPEND,
    DMDIR,
    DMAPPEND,
    DMPERM,
)

__all__ = [
    'Qid',
    'Stat',
    'iter_stats',
    'QTDIR',
    'QTFILE',
    'QTAPPEND',
    'DMDIR',
    'DMAPPEND',
    'DMPERM',
]
