"""
Protocol trace ("chatty") output.

Each message kind has its own formatter, so a trace line always shows
the fields that message actually carries:

    → Twalk tag=1 fid=0 newfid=2 wnames=['adir', 'afile']
    ← Rwalk tag=1 qids=[(0000000000000002 0 0x80), (0000000000000003 0 0x00)]
"""

import logging
from functools import singledispatch

from .protocol import *

logger = logging.getLogger(__name__)


def _fid(fid: int) -> str:
    return "<nil>" if fid == NOFID else str(fid)


@singledispatch
def format_message(msg: Message) -> str:
    """One-line description of a 9P message"""
    return f"{type(msg).__name__} tag={msg.tag}"


@format_message.register
def _(msg: Tversion) -> str:
    return f"Tversion tag={msg.tag} msize={msg.msize} version={msg.version}"


@format_message.register
def _(msg: Rversion) -> str:
    return f"Rversion tag={msg.tag} msize={msg.msize} version={msg.version}"


@format_message.register
def _(msg: Tattach) -> str:
    return (f"Tattach tag={msg.tag} fid={msg.fid} afid={_fid(msg.afid)} "
            f"uname=\"{msg.uname}\" aname=\"{msg.aname}\"")


@format_message.register
def _(msg: Rattach) -> str:
    return f"Rattach tag={msg.tag} qid={msg.qid}"


@format_message.register
def _(msg: Rerror) -> str:
    return f"Rerror tag={msg.tag} ename=\"{msg.ename}\""


@format_message.register
def _(msg: Tflush) -> str:
    return f"Tflush tag={msg.tag} oldtag={msg.oldtag}"


@format_message.register
def _(msg: Twalk) -> str:
    return f"Twalk tag={msg.tag} fid={msg.fid} newfid={msg.newfid} wnames={msg.wnames}"


@format_message.register
def _(msg: Rwalk) -> str:
    qids = ", ".join(str(q) for q in msg.qids)
    return f"Rwalk tag={msg.tag} qids=[{qids}]"


@format_message.register
def _(msg: Topen) -> str:
    return f"Topen tag={msg.tag} fid={msg.fid} mode={msg.mode:#x}"


@format_message.register
def _(msg: Ropen) -> str:
    return f"Ropen tag={msg.tag} qid={msg.qid} iounit={msg.iounit}"


@format_message.register
def _(msg: Tcreate) -> str:
    return (f"Tcreate tag={msg.tag} fid={msg.fid} name=\"{msg.name}\" "
            f"perm={msg.perm:#o} mode={msg.mode:#x}")


@format_message.register
def _(msg: Rcreate) -> str:
    return f"Rcreate tag={msg.tag} qid={msg.qid} iounit={msg.iounit}"


@format_message.register
def _(msg: Tread) -> str:
    return f"Tread tag={msg.tag} fid={msg.fid} offset={msg.offset} count={msg.count}"


@format_message.register
def _(msg: Rread) -> str:
    return f"Rread tag={msg.tag} count={len(msg.data)}"


@format_message.register
def _(msg: Twrite) -> str:
    return f"Twrite tag={msg.tag} fid={msg.fid} offset={msg.offset} count={len(msg.data)}"


@format_message.register
def _(msg: Rwrite) -> str:
    return f"Rwrite tag={msg.tag} count={msg.count}"


@format_message.register(Tclunk)
@format_message.register(Tremove)
@format_message.register(Tstat)
def _(msg) -> str:
    return f"{type(msg).__name__} tag={msg.tag} fid={msg.fid}"


@format_message.register
def _(msg: Rstat) -> str:
    s = msg.stat
    return (f"Rstat tag={msg.tag} stat=('{s.name}' '{s.uid}' '{s.gid}' '{s.muid}' "
            f"q {s.qid} m {s.mode:#o} at {s.atime} mt {s.mtime} l {s.length})")


@format_message.register
def _(msg: Twstat) -> str:
    s = msg.stat
    return (f"Twstat tag={msg.tag} fid={msg.fid} stat=('{s.name}' '{s.uid}' '{s.gid}' "
            f"m {s.mode:#o} l {s.length})")


class Tracer:
    """
    Observer for a Dispatcher: logs every message sent and received.
    """

    def __init__(self, log: logging.Logger = logger, level: int = logging.DEBUG):
        self.log = log
        self.level = level

    def sent(self, msg: Message):
        if self.log.isEnabledFor(self.level):
            self.log.log(self.level, "→ %s", format_message(msg))

    def received(self, msg: Message):
        if self.log.isEnabledFor(self.level):
            self.log.log(self.level, "← %s", format_message(msg))
