"""
Client-side fid bookkeeping.

Fids are chosen by the client. This table hands them out from a counter
that only moves forward, so a fid number is never reused within a
session even after it has been clunked.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from core.types import Qid
from .errors import UsageError
from .protocol import NOFID


@dataclass
class Fid:
    """File identifier and what the client knows about it"""
    fid: int
    path: str = ""
    qid: Optional[Qid] = None
    mode: Optional[int] = None     # Open mode, None until opened
    iounit: int = 0                # Effective transfer size once opened
    retired: bool = False

    @property
    def opened(self) -> bool:
        return self.mode is not None

    def __int__(self):
        return self.fid

    def __hash__(self):
        return hash(self.fid)


class FidTable:
    """
    Tracks allocated fids for one session.

    Not locked: the session drives it from a single event loop.
    """

    def __init__(self, first: int = 0):
        self._next = first
        self._live: Dict[int, Fid] = {}

    def allocate(self, path: str = "") -> Fid:
        """Allocate a new fid"""
        num = self._next
        if num == NOFID:
            raise UsageError("fid space exhausted")
        self._next += 1
        fid = Fid(num, path)
        self._live[num] = fid
        return fid

    def get(self, num: int) -> Fid:
        try:
            return self._live[num]
        except KeyError:
            raise UsageError(f"fid {num} is not live") from None

    def bind(self, fid: Fid, qid: Qid):
        """Record the qid the server bound to fid"""
        self._check_live(fid)
        fid.qid = qid

    def retire(self, fid: Fid):
        """Mark fid released; it is never handed out again"""
        self._check_live(fid)
        fid.retired = True
        del self._live[fid.fid]

    def outstanding(self) -> List[Fid]:
        """Live fids in allocation order"""
        return sorted(self._live.values(), key=lambda f: f.fid)

    def __contains__(self, fid: Fid) -> bool:
        return self._live.get(fid.fid) is fid

    def __len__(self):
        return len(self._live)

    def _check_live(self, fid: Fid):
        if fid.retired or fid not in self:
            raise UsageError(f"fid {fid.fid} already released")
