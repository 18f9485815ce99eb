# 9P2000 Client Implementation
from .protocol import (
    MsgType,
    Tversion, Rversion,
    Tattach, Rattach,
    Twalk, Rwalk,
    Topen, Ropen,
    Tread, Rread,
    Twrite, Rwrite,
    Tclunk, Rclunk,
    Tstat, Rstat,
    Tflush, Rflush,
    Tcreate, Rcreate,
    Tremove, Rremove,
    Twstat, Rwstat,
    Rerror,
    NOFID, NOTAG, IOHDRSZ, MAXWELEM, VERSION9P,
    OREAD, OWRITE, ORDWR, OEXEC, OTRUNC,
)
from .codec import Codec, decode_dir
from .errors import (
    Error,
    TransportError,
    P9Error,
    WalkError,
    DecodeError,
    UsageError,
    VersionError,
    ShortWriteError,
    TransactionTimeout,
)
from .dispatch import Dispatcher, TagPool
from .fids import Fid, FidTable
from .session import Session
from .client import Client, Output
from .dial import Address, parse_address, dial
from .trace import Tracer, format_message

__all__ = [
    'MsgType',
    'Tversion', 'Rversion',
    'Tattach', 'Rattach',
    'Twalk', 'Rwalk',
    'Topen', 'Ropen',
    'Tread', 'Rread',
    'Twrite', 'Rwrite',
    'Tclunk', 'Rclunk',
    'Tstat', 'Rstat',
    'Tflush', 'Rflush',
    'Tcreate', 'Rcreate',
    'Tremove', 'Rremove',
    'Twstat', 'Rwstat',
    'Rerror',
    'NOFID', 'NOTAG', 'IOHDRSZ', 'MAXWELEM', 'VERSION9P',
    'OREAD', 'OWRITE', 'ORDWR', 'OEXEC', 'OTRUNC',
    'Codec', 'decode_dir',
    'Error', 'TransportError', 'P9Error', 'WalkError', 'DecodeError',
    'UsageError', 'VersionError', 'ShortWriteError', 'TransactionTimeout',
    'Dispatcher', 'TagPool',
    'Fid', 'FidTable',
    'Session',
    'Client', 'Output',
    'Address', 'parse_address', 'dial',
    'Tracer', 'format_message',
]
