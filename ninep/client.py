"""
ninep.client - Path-level 9P2000 client

Builds the everyday file operations out of Session transactions:
walk, open, chunked read and write, create, remove, stat, wstat and
directory listing. Every fid an operation allocates is clunked before
the operation returns, on success and on failure.

Usage:
    async with await Client.connect("unix!/tmp/ns/fs", "glenda", "/") as c:
        print((await c.stat("/adir/afile")).name)

        async for entry in c.ls("/adir"):
            print(entry.name)

        data = await c.read_file("/adir/afile")
        await c.write_file("/adir/afile", b"new contents")
"""

import asyncio
import io
import logging
import posixpath
from contextlib import asynccontextmanager
from dataclasses import fields
from enum import IntFlag
from typing import AsyncIterator, Callable, Iterable, Optional, Tuple, Union

from core.types import Qid, Stat, DMDIR, DMPERM, OREAD, OWRITE, ORDWR, OTRUNC
from .codec import decode_dir
from .dial import Address, dial
from .dispatch import Observer
from .errors import ShortWriteError, UsageError
from .fids import Fid
from .protocol import VERSION9P
from .session import Session, check_proposal

logger = logging.getLogger(__name__)

Sink = Callable[[bytes], object]
Source = Union[bytes, bytearray, memoryview, io.RawIOBase, io.BufferedIOBase]

# Stat fields a wstat may change
WSTAT_FIELDS = frozenset(f.name for f in fields(Stat)) - {"type", "dev", "qid"}


class Output(IntFlag):
    """Where chunked read results go"""
    STREAM = 1     # Hand each chunk to the sink as it arrives
    COLLECT = 2    # Return all bytes at end of data
    BOTH = 3


def split_path(path: str) -> list:
    """Path elements, with empty ones (leading, trailing, doubled /) dropped"""
    return [e for e in path.strip().split("/") if e]


def clean_path(path: str) -> str:
    return "/" + "/".join(split_path(path))


async def _call(func, *args):
    result = func(*args)
    if asyncio.iscoroutine(result):
        result = await result
    return result


class Client:
    """
    High-level client over one Session.

    The session is created by connect(), or handed in already attached.
    """

    def __init__(self, session: Session):
        if session.root is None:
            raise UsageError("session has no root fid; attach first")
        self.session = session

    @classmethod
    async def connect(
        cls,
        address: Union[str, Address],
        uname: str,
        aname: str = "",
        msize: int = 8192,
        version: str = VERSION9P,
        timeout: Optional[float] = None,
        observer: Optional[Observer] = None,
    ) -> "Client":
        """Dial, negotiate version and attach"""
        check_proposal(msize, version)
        reader, writer = await dial(address)
        try:
            session = Session(reader, writer, msize=msize, version=version,
                              timeout=timeout, observer=observer)
        except BaseException:
            writer.close()
            raise
        try:
            await session.version()
            await session.attach(uname, aname)
        except BaseException:
            await session.close()
            raise
        return cls(session)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        """Clunk everything still live and disconnect"""
        await self.session.close()

    @property
    def root(self) -> Fid:
        return self.session.root

    # -------------------------------------------------------------------------
    # Fids
    # -------------------------------------------------------------------------

    async def walk(self, path: str, base: Optional[Fid] = None) -> Fid:
        """
        Resolve path relative to base (default root) into a new fid.

        The caller owns the fid and must clunk it. "" and "/" clone base.
        """
        base = base or self.root
        if base is None:
            raise UsageError("client is closed")
        names = split_path(path)
        return await self.session.walk(base, names, path=clean_path(base.path + "/" + path))

    async def open(self, path: str, mode: int = OREAD) -> Fid:
        """Walk to path and open it; the caller must clunk the result"""
        fid = await self.walk(path)
        try:
            await self.session.open(fid, mode)
        except BaseException:
            await self.session.release_quietly(fid)
            raise
        return fid

    async def clunk(self, fid: Fid):
        await self.session.clunk(fid)

    @asynccontextmanager
    async def walked(self, path: str, base: Optional[Fid] = None) -> AsyncIterator[Fid]:
        """Fid for path, clunked when the block exits"""
        fid = await self.walk(path, base)
        try:
            yield fid
        except BaseException:
            await self.session.release_quietly(fid)
            raise
        if not fid.retired:
            await self.session.clunk(fid)

    @asynccontextmanager
    async def opened(self, path: str, mode: int = OREAD) -> AsyncIterator[Fid]:
        """Open fid for path, clunked when the block exits"""
        async with self.walked(path) as fid:
            await self.session.open(fid, mode)
            yield fid

    # -------------------------------------------------------------------------
    # Chunked transfer
    # -------------------------------------------------------------------------

    async def read(
        self,
        fid: Fid,
        sink: Optional[Sink] = None,
        output: Optional[Output] = None,
        offset: int = 0,
    ) -> bytes:
        """
        Read an open fid from offset to end of data, one iounit at a time.

        output selects STREAM (each chunk to sink), COLLECT (return all
        bytes) or BOTH. It defaults to STREAM when a sink is given,
        else COLLECT. A zero-byte Rread ends the loop.
        """
        if output is None:
            output = Output.STREAM if sink is not None else Output.COLLECT
        if output & Output.STREAM and sink is None:
            raise UsageError("streaming read needs a sink")

        count = fid.iounit or self.session.iounit()
        chunks = []
        while True:
            data = await self.session.read(fid, offset, count)
            if not data:
                break
            offset += len(data)

            if output & Output.COLLECT:
                chunks.append(data)
            if output & Output.STREAM:
                await _call(sink, data)

        return b"".join(chunks)

    async def write(self, fid: Fid, source: Source, offset: int = 0) -> int:
        """
        Write everything source yields to an open fid, one iounit at a time.

        source is bytes-like or has read(n) (which may be a coroutine).
        Returns the number of bytes written. A short write raises
        ShortWriteError; nothing is retried.
        """
        if isinstance(source, (bytes, bytearray, memoryview)):
            source = io.BytesIO(bytes(source))

        count = fid.iounit or self.session.iounit()
        total = 0
        while True:
            block = await _call(source.read, count)
            if not block:
                break
            if len(block) > count:
                raise UsageError(f"source returned {len(block)} bytes for read({count})")

            written = await self.session.write(fid, offset, block)
            if written != len(block):
                raise ShortWriteError(offset, len(block), written)
            offset += written
            total += written

        return total

    async def read_file(
        self,
        path: str,
        sink: Optional[Sink] = None,
        output: Optional[Output] = None,
    ) -> bytes:
        async with self.opened(path, OREAD) as fid:
            return await self.read(fid, sink, output)

    async def write_file(self, path: str, source: Source, mode: int = OWRITE | OTRUNC) -> int:
        async with self.opened(path, mode) as fid:
            return await self.write(fid, source)

    # -------------------------------------------------------------------------
    # Namespace changes
    # -------------------------------------------------------------------------

    async def create(self, path: str, perm: int = 0o644, mode: int = OWRITE) -> Fid:
        """
        Create path and return its open fid; the caller must clunk it.

        The parent directory is walked first (a clone of root when the
        parent is "/"), then Tcreate turns that fid into the new file.
        """
        parent, name = posixpath.split(clean_path(path))
        if not name:
            raise UsageError(f"cannot create {path!r}: no file name")

        fid = await self.walk(parent)
        try:
            await self.session.create(fid, name, perm, mode)
        except BaseException:
            await self.session.release_quietly(fid)
            raise
        return fid

    async def mkdir(self, path: str, perm: int = 0o755) -> Qid:
        """Create a directory; returns its qid"""
        fid = await self.create(path, perm | DMDIR, OREAD)
        qid = fid.qid
        await self.session.clunk(fid)
        return qid

    async def remove(self, path: str):
        """
        Remove path.

        Files are opened ORDWR first so the server checks write access;
        directories cannot be opened for writing and go straight to Tremove.
        Tremove releases the fid, so no Tclunk follows it.
        """
        fid = await self.walk(path)
        try:
            if not fid.qid.is_dir:
                await self.session.open(fid, ORDWR)
            await self.session.remove(fid)
        except BaseException:
            await self.session.release_quietly(fid)
            raise

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    async def stat(self, path: str) -> Stat:
        async with self.walked(path) as fid:
            return await self.session.stat(fid)

    async def wstat(self, path: str, **changes) -> Stat:
        """
        Change selected stat fields of path.

        The current stat is read first and only the named fields are
        replaced, so name, uid, gid and muid go back unchanged unless
        asked for. Returns the stat that was sent.
        """
        unknown = set(changes) - WSTAT_FIELDS
        if unknown:
            raise UsageError(f"cannot wstat {', '.join(sorted(unknown))}")
        if not changes:
            raise UsageError("wstat with nothing to change")

        async with self.walked(path) as fid:
            current = await self.session.stat(fid)
            updated = current.overlay(**changes)
            await self.session.wstat(fid, updated)
            return updated

    async def chmod(self, path: str, perm: int) -> Stat:
        """Set permission bits, keeping the type bits (DMDIR etc.)"""
        async with self.walked(path) as fid:
            current = await self.session.stat(fid)
            updated = current.overlay(mode=(current.mode & ~DMPERM) | (perm & DMPERM))
            await self.session.wstat(fid, updated)
            return updated

    async def ls(self, path: str) -> AsyncIterator[Stat]:
        """
        Entries of directory path in server order.

        For a plain file, yields the file's own stat.
        """
        async with self.walked(path) as fid:
            info = await self.session.stat(fid)
            if not info.is_dir:
                data = None
            else:
                await self.session.open(fid, OREAD)
                data = await self.read(fid, output=Output.COLLECT)

        if data is None:
            yield info
            return
        for entry in decode_dir(data):
            yield entry

    # -------------------------------------------------------------------------
    # Interactive
    # -------------------------------------------------------------------------

    async def probe(self, path: str, mode: int = OREAD) -> Tuple[Qid, int]:
        """Open and clunk path; returns (qid, iounit)"""
        async with self.opened(path, mode) as fid:
            return fid.qid, fid.iounit

    async def rdwr(self, path: str, lines: Iterable[bytes], sink: Sink):
        """
        Open path ORDWR; for each line write it and pass one read to sink.

        Suits ctl-style files that answer each command written to them.
        """
        async with self.opened(path, ORDWR) as fid:
            for line in lines:
                written = await self.session.write(fid, 0, line)
                if written != len(line):
                    raise ShortWriteError(0, len(line), written)
                reply = await self.session.read(fid, 0, fid.iounit)
                await _call(sink, reply)
