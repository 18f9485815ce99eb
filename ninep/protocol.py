"""
9P2000 message kinds.

One dataclass per message, carrying that message's typed fields after
the tag. Each class is bound to its wire type with @message, which
also makes it findable by type for the decoder:

    Twalk(tag, fid, newfid, wnames)      ->  Rwalk(tag, qids)
    Tread(tag, fid, offset, count)       ->  Rread(tag, data)

Any request may instead be answered by Rerror(tag, ename).
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, Dict, List, Type

from core.types import Qid, Stat, OREAD, OWRITE, ORDWR, OEXEC, OTRUNC, ORCLOSE

VERSION9P = "9P2000"

NOFID = 0xFFFFFFFF   # afid when not authenticating
NOTAG = 0xFFFF       # tag of Tversion

# size[4] type[1] tag[2] fid[4] offset[8] count[4], rounded up
IOHDRSZ = 24

# Names per Twalk
MAXWELEM = 16

# size[4] type[1] tag[2]
HEADER_SIZE = 7


class MsgType(IntEnum):
    Tversion = 100
    Rversion = 101
    Tauth = 102
    Rauth = 103
    Tattach = 104
    Rattach = 105
    Rerror = 107
    Tflush = 108
    Rflush = 109
    Twalk = 110
    Rwalk = 111
    Topen = 112
    Ropen = 113
    Tcreate = 114
    Rcreate = 115
    Tread = 116
    Rread = 117
    Twrite = 118
    Rwrite = 119
    Tclunk = 120
    Rclunk = 121
    Tremove = 122
    Rremove = 123
    Tstat = 124
    Rstat = 125
    Twstat = 126
    Rwstat = 127


@dataclass
class Message:
    """
    Common head of every message.

    tag has no default, so every construction site states one; requests
    built with NOTAG get a real tag from the dispatcher when sent.
    """
    tag: int

    TYPE: ClassVar[MsgType]

    @classmethod
    def msg_type(cls) -> MsgType:
        return cls.TYPE


_BY_TYPE: Dict[MsgType, Type[Message]] = {}


def message(kind: MsgType):
    """Class decorator: make cls a dataclass carried as wire type kind"""
    def bind(cls):
        cls = dataclass(cls)
        cls.TYPE = kind
        _BY_TYPE[kind] = cls
        return cls
    return bind


def message_class(kind: MsgType) -> Type[Message]:
    return _BY_TYPE[kind]


# Session setup

@message(MsgType.Tversion)
class Tversion(Message):
    msize: int = 8192
    version: str = VERSION9P


@message(MsgType.Rversion)
class Rversion(Message):
    msize: int = 8192
    version: str = VERSION9P


@message(MsgType.Tattach)
class Tattach(Message):
    fid: int = 0
    afid: int = NOFID
    uname: str = ""
    aname: str = ""      # Tree to attach to


@message(MsgType.Rattach)
class Rattach(Message):
    qid: Qid = Qid()


@message(MsgType.Rerror)
class Rerror(Message):
    ename: str = ""


@message(MsgType.Tflush)
class Tflush(Message):
    oldtag: int = 0


@message(MsgType.Rflush)
class Rflush(Message):
    pass


# Namespace

@message(MsgType.Twalk)
class Twalk(Message):
    fid: int = 0
    newfid: int = 0
    wnames: List[str] = field(default_factory=list)


@message(MsgType.Rwalk)
class Rwalk(Message):
    """One qid per name walked; fewer than asked means the walk stopped"""
    qids: List[Qid] = field(default_factory=list)


@message(MsgType.Topen)
class Topen(Message):
    fid: int = 0
    mode: int = OREAD


@message(MsgType.Ropen)
class Ropen(Message):
    qid: Qid = Qid()
    iounit: int = 0      # 0: no advice, use msize - IOHDRSZ


@message(MsgType.Tcreate)
class Tcreate(Message):
    """Create name in directory fid; fid then refers to the new file, open"""
    fid: int = 0
    name: str = ""
    perm: int = 0
    mode: int = OREAD


@message(MsgType.Rcreate)
class Rcreate(Message):
    qid: Qid = Qid()
    iounit: int = 0


# Data

@message(MsgType.Tread)
class Tread(Message):
    fid: int = 0
    offset: int = 0
    count: int = 0


@message(MsgType.Rread)
class Rread(Message):
    data: bytes = b""


@message(MsgType.Twrite)
class Twrite(Message):
    fid: int = 0
    offset: int = 0
    data: bytes = b""


@message(MsgType.Rwrite)
class Rwrite(Message):
    count: int = 0


# Fid release

@message(MsgType.Tclunk)
class Tclunk(Message):
    fid: int = 0


@message(MsgType.Rclunk)
class Rclunk(Message):
    pass


@message(MsgType.Tremove)
class Tremove(Message):
    """Remove the file and release fid, whether or not the remove succeeds"""
    fid: int = 0


@message(MsgType.Rremove)
class Rremove(Message):
    pass


# Metadata

@message(MsgType.Tstat)
class Tstat(Message):
    fid: int = 0


@message(MsgType.Rstat)
class Rstat(Message):
    stat: Stat = Stat()


@message(MsgType.Twstat)
class Twstat(Message):
    fid: int = 0
    stat: Stat = Stat()


@message(MsgType.Rwstat)
class Rwstat(Message):
    pass


# Response class expected for each request class
RESPONSE_FOR: Dict[Type[Message], Type[Message]] = {
    Tversion: Rversion,
    Tattach: Rattach,
    Tflush: Rflush,
    Twalk: Rwalk,
    Topen: Ropen,
    Tcreate: Rcreate,
    Tread: Rread,
    Twrite: Rwrite,
    Tclunk: Rclunk,
    Tremove: Rremove,
    Tstat: Rstat,
    Twstat: Rwstat,
}

__all__ = [
    'VERSION9P', 'NOFID', 'NOTAG', 'IOHDRSZ', 'MAXWELEM', 'HEADER_SIZE',
    'OREAD', 'OWRITE', 'ORDWR', 'OEXEC', 'OTRUNC', 'ORCLOSE',
    'MsgType', 'Message', 'message_class',
    'Tversion', 'Rversion',
    'Tattach', 'Rattach',
    'Rerror',
    'Tflush', 'Rflush',
    'Twalk', 'Rwalk',
    'Topen', 'Ropen',
    'Tcreate', 'Rcreate',
    'Tread', 'Rread',
    'Twrite', 'Rwrite',
    'Tclunk', 'Rclunk',
    'Tremove', 'Rremove',
    'Tstat', 'Rstat',
    'Twstat', 'Rwstat',
    'RESPONSE_FOR',
]
