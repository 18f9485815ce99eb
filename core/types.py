"""
Core types for the 9P2000 wire protocol.

Qid and Stat are the two structured values the server hands back to a
client. Both know how to pack themselves to, and unpack themselves from,
their little-endian wire form.
"""

from dataclasses import dataclass, replace
from typing import Iterator, Tuple
import struct

# Qid.type bits
QTDIR = 0x80      # Directory
QTAPPEND = 0x40   # Append-only
QTEXCL = 0x20     # Exclusive use
QTMOUNT = 0x10    # Mounted channel
QTAUTH = 0x08     # Authentication file
QTTMP = 0x04      # Not backed up
QTFILE = 0x00     # Regular file

# Stat.mode bits above the permissions
DMDIR = 0x80000000     # Directory
DMAPPEND = 0x40000000  # Append-only
DMEXCL = 0x20000000    # Exclusive use
DMMOUNT = 0x10000000   # Mounted channel
DMAUTH = 0x08000000    # Authentication file
DMTMP = 0x04000000     # Not backed up
DMPERM = 0o777         # Permission bits

# Topen/Tcreate mode: one of OREAD..OEXEC, optionally ORed with the rest
OREAD = 0
OWRITE = 1
ORDWR = 2
OEXEC = 3
OTRUNC = 0x10
ORCLOSE = 0x40

QID_SIZE = 13

# Fixed part of a stat record after its size[2] prefix:
# type[2] dev[4] qid[13] mode[4] atime[4] mtime[4] length[8]
_STAT_FIXED = struct.Struct('<HI13sIIIQ')


@dataclass(frozen=True)
class Qid:
    """
    Server's identity for a file: two fids with equal qids name the
    same file. path is unique within the server, version changes when
    the file does, type mirrors the high byte of the mode word.

    Issued by the server; the client never changes one.
    """
    type: int = QTFILE
    version: int = 0
    path: int = 0

    def pack(self) -> bytes:
        """type[1] version[4] path[8]"""
        return struct.pack('<BIQ', self.type, self.version, self.path)

    @classmethod
    def unpack(cls, data: bytes) -> 'Qid':
        """Inverse of pack; data may run past the qid"""
        if len(data) < QID_SIZE:
            raise ValueError(f"qid needs {QID_SIZE} bytes, have {len(data)}")
        type_, version, path = struct.unpack('<BIQ', data[:QID_SIZE])
        return cls(type_, version, path)

    @classmethod
    def size(cls) -> int:
        return QID_SIZE

    @property
    def is_dir(self) -> bool:
        return bool(self.type & QTDIR)

    def __str__(self):
        return f"({self.path:016x} {self.version} {self.type:#04x})"


def _pack_str(s: str) -> bytes:
    b = s.encode('utf-8')
    return struct.pack('<H', len(b)) + b


def _unpack_str(data: bytes, pos: int) -> Tuple[str, int]:
    if pos + 2 > len(data):
        raise ValueError(f"string length cut short at offset {pos}")
    slen = struct.unpack_from('<H', data, pos)[0]
    end = pos + 2 + slen
    if end > len(data):
        raise ValueError(f"string at offset {pos} needs {slen} bytes, have {len(data) - pos - 2}")
    return data[pos + 2:end].decode('utf-8'), end


@dataclass(frozen=True)
class Stat:
    """
    File metadata (stat structure, the "Dir record") in 9P.
    """
    type: int = 0           # Server type
    dev: int = 0            # Server subtype
    qid: Qid = Qid()        # Unique id
    mode: int = 0o644       # Permissions and flags
    atime: int = 0          # Last access time
    mtime: int = 0          # Last modification time
    length: int = 0         # File length
    name: str = ""          # File name
    uid: str = "none"       # Owner
    gid: str = "none"       # Group
    muid: str = "none"      # Last modifier

    @classmethod
    def dont_touch(cls) -> 'Stat':
        """
        Stat with every field set to the wstat "don't change" value:
        all bits set in integers, empty strings.

        For the serving side: a server compares an incoming Twstat
        against it to find the fields left alone. The client never sends
        it; Client.wstat overlays the current stat instead.
        """
        return cls(
            type=0xFFFF,
            dev=0xFFFFFFFF,
            qid=Qid(0xFF, 0xFFFFFFFF, 0xFFFFFFFFFFFFFFFF),
            mode=0xFFFFFFFF,
            atime=0xFFFFFFFF,
            mtime=0xFFFFFFFF,
            length=0xFFFFFFFFFFFFFFFF,
            name="", uid="", gid="", muid="",
        )

    def overlay(self, **changes) -> 'Stat':
        """Copy of this stat with only the named fields replaced"""
        return replace(self, **changes)

    @property
    def is_dir(self) -> bool:
        return bool(self.mode & DMDIR)

    @property
    def perm(self) -> int:
        return self.mode & DMPERM

    def pack(self) -> bytes:
        """size[2] then the record; size excludes itself"""
        body = _STAT_FIXED.pack(
            self.type, self.dev, self.qid.pack(),
            self.mode, self.atime, self.mtime, self.length,
        )
        body += _pack_str(self.name)
        body += _pack_str(self.uid)
        body += _pack_str(self.gid)
        body += _pack_str(self.muid)

        return struct.pack('<H', len(body)) + body

    @classmethod
    def unpack(cls, data: bytes, pos: int = 0) -> Tuple['Stat', int]:
        """
        Unpack stat from wire format starting at pos.

        Returns (stat, bytes_consumed). Raises ValueError when the record
        or any field inside it is cut short.
        """
        if pos + 2 > len(data):
            raise ValueError(f"stat size cut short at offset {pos}")
        size = struct.unpack_from('<H', data, pos)[0]
        end = pos + 2 + size
        if end > len(data):
            raise ValueError(f"stat at offset {pos} needs {size} bytes, have {len(data) - pos - 2}")

        # Fields are decoded from the record alone so they cannot run past it
        record = data[pos + 2:end]
        if len(record) < _STAT_FIXED.size:
            raise ValueError(f"stat record too short: {len(record)} bytes")

        type_, dev, qid_bytes, mode, atime, mtime, length = _STAT_FIXED.unpack_from(record, 0)
        p = _STAT_FIXED.size

        name, p = _unpack_str(record, p)
        uid, p = _unpack_str(record, p)
        gid, p = _unpack_str(record, p)
        muid, p = _unpack_str(record, p)

        stat = cls(type_, dev, Qid.unpack(qid_bytes), mode, atime, mtime,
                   length, name, uid, gid, muid)
        return stat, size + 2


def iter_stats(data: bytes) -> Iterator[Stat]:
    """
    Decode back-to-back stat records from a directory read buffer.

    Running out of buffer ends the iteration. A trailing record that is
    cut short raises ValueError after the complete records are yielded.
    """
    pos = 0
    while pos < len(data):
        stat, consumed = Stat.unpack(data, pos)
        yield stat
        pos += consumed
