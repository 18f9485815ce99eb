"""
9P2000 wire format.

Every message travels as

    size[4] type[1] tag[2] body

where size counts itself. Integers are little-endian, a string is
len[2] followed by UTF-8, a qid is type[1] version[4] path[8]. Rstat and
Twstat wrap their stat record in one more n[2] length.

Each message kind has a body encoder and a body decoder, kept side by
side below. A decoder reads through a _Body cursor and returns the
message's fields in declaration order, after the tag.
"""

import struct
from typing import Callable, Dict, Iterator, Tuple, Type

from core.types import Qid, Stat, QID_SIZE, iter_stats
from .errors import DecodeError, UsageError
from .protocol import *

_HEADER = struct.Struct('<IBH')

_encoders: Dict[Type[Message], Callable[[Message], bytes]] = {}
_decoders: Dict[MsgType, Callable[["_Body"], tuple]] = {}


def _encodes(*classes):
    def register(func):
        for cls in classes:
            _encoders[cls] = func
        return func
    return register


def _decodes(*classes):
    def register(func):
        for cls in classes:
            _decoders[cls.msg_type()] = func
        return func
    return register


class _Body:
    """Read cursor over one message body; running off the end is a DecodeError"""

    def __init__(self, data: bytes, kind: MsgType):
        self.data = data
        self.kind = kind
        self.pos = 0

    def take(self, n: int) -> bytes:
        end = self.pos + n
        if end > len(self.data):
            raise DecodeError(
                f"{self.kind.name}: {n} bytes wanted at offset {self.pos}, "
                f"{len(self.data) - self.pos} left"
            )
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def fields(self, fmt: str) -> tuple:
        fmt = '<' + fmt
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))

    def uint(self, fmt: str) -> int:
        return self.fields(fmt)[0]

    def string(self) -> str:
        raw = self.take(self.uint('H'))
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodeError(f"{self.kind.name}: string is not UTF-8: {e}") from e

    def qid(self) -> Qid:
        return Qid.unpack(self.take(QID_SIZE))

    def wrapped_stat(self) -> Stat:
        raw = self.take(self.uint('H'))
        try:
            stat, _ = Stat.unpack(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise DecodeError(f"{self.kind.name}: bad stat: {e}") from e
        return stat


def _string(text: str) -> bytes:
    raw = text.encode('utf-8')
    if len(raw) > 0xFFFF:
        raise UsageError(f"string of {len(raw)} bytes does not fit a 9P length")
    return struct.pack('<H', len(raw)) + raw


def _wrapped_stat(stat: Stat) -> bytes:
    record = stat.pack()
    return struct.pack('<H', len(record)) + record


# -----------------------------------------------------------------------------
# Bodies
# -----------------------------------------------------------------------------

@_encodes(Tversion, Rversion)
def _(m):
    return struct.pack('<I', m.msize) + _string(m.version)


@_decodes(Tversion, Rversion)
def _(b):
    return b.uint('I'), b.string()


@_encodes(Tattach)
def _(m):
    return struct.pack('<II', m.fid, m.afid) + _string(m.uname) + _string(m.aname)


@_decodes(Tattach)
def _(b):
    fid, afid = b.fields('II')
    return fid, afid, b.string(), b.string()


@_encodes(Rattach)
def _(m):
    return m.qid.pack()


@_decodes(Rattach)
def _(b):
    return (b.qid(),)


@_encodes(Rerror)
def _(m):
    return _string(m.ename)


@_decodes(Rerror)
def _(b):
    return (b.string(),)


@_encodes(Tflush)
def _(m):
    return struct.pack('<H', m.oldtag)


@_decodes(Tflush)
def _(b):
    return (b.uint('H'),)


@_encodes(Twalk)
def _(m):
    return struct.pack('<IIH', m.fid, m.newfid, len(m.wnames)) + b''.join(
        _string(name) for name in m.wnames)


@_decodes(Twalk)
def _(b):
    fid, newfid, count = b.fields('IIH')
    return fid, newfid, [b.string() for _ in range(count)]


@_encodes(Rwalk)
def _(m):
    return struct.pack('<H', len(m.qids)) + b''.join(q.pack() for q in m.qids)


@_decodes(Rwalk)
def _(b):
    count = b.uint('H')
    if count > MAXWELEM:
        raise DecodeError(f"Rwalk carries {count} qids, at most {MAXWELEM} allowed")
    return ([b.qid() for _ in range(count)],)


@_encodes(Topen)
def _(m):
    return struct.pack('<IB', m.fid, m.mode)


@_decodes(Topen)
def _(b):
    return b.fields('IB')


@_encodes(Ropen, Rcreate)
def _(m):
    return m.qid.pack() + struct.pack('<I', m.iounit)


@_decodes(Ropen, Rcreate)
def _(b):
    return b.qid(), b.uint('I')


@_encodes(Tcreate)
def _(m):
    return struct.pack('<I', m.fid) + _string(m.name) + struct.pack('<IB', m.perm, m.mode)


@_decodes(Tcreate)
def _(b):
    fid = b.uint('I')
    name = b.string()
    return (fid, name) + b.fields('IB')


@_encodes(Tread)
def _(m):
    return struct.pack('<IQI', m.fid, m.offset, m.count)


@_decodes(Tread)
def _(b):
    return b.fields('IQI')


@_encodes(Rread)
def _(m):
    return struct.pack('<I', len(m.data)) + m.data


@_decodes(Rread)
def _(b):
    return (b.take(b.uint('I')),)


@_encodes(Twrite)
def _(m):
    return struct.pack('<IQI', m.fid, m.offset, len(m.data)) + m.data


@_decodes(Twrite)
def _(b):
    fid, offset, count = b.fields('IQI')
    return fid, offset, b.take(count)


@_encodes(Rwrite)
def _(m):
    return struct.pack('<I', m.count)


@_decodes(Rwrite)
def _(b):
    return (b.uint('I'),)


@_encodes(Tclunk, Tremove, Tstat)
def _(m):
    return struct.pack('<I', m.fid)


@_decodes(Tclunk, Tremove, Tstat)
def _(b):
    return (b.uint('I'),)


@_encodes(Rflush, Rclunk, Rremove, Rwstat)
def _(m):
    return b''


@_decodes(Rflush, Rclunk, Rremove, Rwstat)
def _(b):
    return ()


@_encodes(Rstat)
def _(m):
    return _wrapped_stat(m.stat)


@_decodes(Rstat)
def _(b):
    return (b.wrapped_stat(),)


@_encodes(Twstat)
def _(m):
    return struct.pack('<I', m.fid) + _wrapped_stat(m.stat)


@_decodes(Twstat)
def _(b):
    return b.uint('I'), b.wrapped_stat()


# -----------------------------------------------------------------------------
# Framing
# -----------------------------------------------------------------------------

class Codec:
    """
    Frames and unframes 9P2000 messages.

    msize bounds incoming frames. The session lowers it to the
    negotiated value once Rversion arrives.
    """

    def __init__(self, msize: int = 8192):
        self.msize = msize

    def encode(self, msg: Message) -> bytes:
        try:
            encoder = _encoders[type(msg)]
        except KeyError:
            raise ValueError(f"no wire encoding for {type(msg).__name__}") from None
        try:
            body = encoder(msg)
        except (struct.error, ValueError) as e:
            raise UsageError(f"cannot encode {type(msg).__name__}: {e}") from e
        return _HEADER.pack(_HEADER.size + len(body), msg.msg_type(), msg.tag) + body

    def frame_size(self, prefix: bytes) -> int:
        """Size announced by a frame's first four bytes, checked against msize"""
        if len(prefix) < 4:
            raise DecodeError(f"size prefix needs 4 bytes, have {len(prefix)}")
        size, = struct.unpack_from('<I', prefix)
        if size < HEADER_SIZE:
            raise DecodeError(f"frame of {size} bytes cannot hold a header")
        if size > self.msize:
            raise DecodeError(f"frame of {size} bytes exceeds msize {self.msize}")
        return size

    def decode(self, data: bytes) -> Tuple[Message, int]:
        """
        Decode the frame at the start of data.

        Returns (message, frame size). Short, malformed or unknown
        frames raise DecodeError.
        """
        if len(data) < HEADER_SIZE:
            raise DecodeError(f"header needs {HEADER_SIZE} bytes, have {len(data)}")
        size, type_byte, tag = _HEADER.unpack_from(data)
        if size < HEADER_SIZE:
            raise DecodeError(f"frame of {size} bytes cannot hold a header")
        if len(data) < size:
            raise DecodeError(f"frame of {size} bytes cut short at {len(data)}")

        try:
            kind = MsgType(type_byte)
        except ValueError:
            raise DecodeError(f"unknown message type {type_byte}") from None
        decoder = _decoders.get(kind)
        if decoder is None:
            raise DecodeError(f"{kind.name} is not spoken by this client")

        values = decoder(_Body(data[HEADER_SIZE:size], kind))
        return message_class(kind)(tag, *values), size


def decode_dir(data: bytes) -> Iterator[Stat]:
    """
    Stat records of a directory read, in order.

    An exhausted buffer ends the listing; a truncated trailing record
    raises DecodeError after the complete ones have been yielded.
    """
    records = iter_stats(data)
    while True:
        try:
            stat = next(records)
        except StopIteration:
            return
        except (ValueError, UnicodeDecodeError) as e:
            raise DecodeError(f"directory entry: {e}") from e
        yield stat
