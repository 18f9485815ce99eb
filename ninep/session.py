"""
9P2000 client session.

A Session owns one connection: the negotiated msize and version, the
transaction dispatcher and the fid table. Every operation takes the
session explicitly; nothing is kept in module globals, so independent
sessions can coexist in one process.

    session = Session(reader, writer)
    await session.version()
    root = await session.attach("glenda", "/")
    fid = await session.walk(root, ["adir", "afile"])
    stat = await session.stat(fid)
    await session.close()          # clunks every fid still live
"""

import logging
from typing import List, Optional, Sequence, Tuple

from core.types import Qid, Stat, OTRUNC, ORCLOSE
from .codec import Codec
from .dispatch import Dispatcher, Observer
from .errors import DecodeError, Error, P9Error, UsageError, VersionError, WalkError
from .fids import Fid, FidTable
from .protocol import *

logger = logging.getLogger(__name__)


def check_proposal(msize: int, version: str):
    """Reject an msize or version no server could accept; raises UsageError"""
    if msize <= IOHDRSZ:
        raise UsageError(f"msize {msize} cannot carry an I/O header")
    if not version.startswith(VERSION9P):
        raise UsageError(f"unsupported protocol version {version!r}")


class Session:
    """
    One negotiated 9P2000 conversation with a file server.
    """

    def __init__(
        self,
        reader,
        writer,
        msize: int = 8192,
        version: str = VERSION9P,
        timeout: Optional[float] = None,
        observer: Optional[Observer] = None,
    ):
        """
        Args:
            reader, writer: asyncio stream pair already connected to the server
            msize: Message size to propose
            version: Protocol version to propose
            timeout: Seconds to wait for each response; None waits forever
            observer: Optional tracer told about every message
        """
        check_proposal(msize, version)
        self.msize = msize
        self.proposed_version = version
        self.version_string: Optional[str] = None
        self.timeout = timeout
        self.codec = Codec(msize)
        self.dispatcher = Dispatcher(reader, writer, self.codec, observer)
        self.fids = FidTable()
        self.root: Optional[Fid] = None
        self._closing = False
        self._closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    # -------------------------------------------------------------------------
    # Bootstrap
    # -------------------------------------------------------------------------

    async def version(self) -> Tuple[int, str]:
        """
        Negotiate protocol version and msize.

        Returns (msize, version) as agreed.
        """
        if self.version_string is not None:
            raise UsageError("version already negotiated")

        response = await self.dispatcher.rpc_inline(
            Tversion(NOTAG, self.msize, self.proposed_version)
        )

        if response.version != VERSION9P:
            raise VersionError(
                f"server answered version {response.version!r} to {self.proposed_version!r}"
            )
        msize = min(self.msize, response.msize)
        if msize <= IOHDRSZ:
            raise VersionError(f"server msize {response.msize} too small")

        self.msize = msize
        self.codec.msize = msize
        self.version_string = response.version
        self.dispatcher.start()

        logger.debug(f"Version negotiated: msize={self.msize}, version={self.version_string}")
        return self.msize, self.version_string

    async def attach(self, uname: str, aname: str = "") -> Fid:
        """Attach to the tree `aname` as `uname`; returns the root fid"""
        if self.version_string is None:
            raise UsageError("attach before version")

        fid = self.fids.allocate(path="/")
        try:
            response = await self._rpc(Tattach(NOTAG, fid.fid, NOFID, uname, aname))
        except BaseException:
            self.fids.retire(fid)
            raise

        self.fids.bind(fid, response.qid)
        if self.root is None:
            self.root = fid
        logger.debug(f"Attached: fid={fid.fid} uname={uname} aname={aname} qid={response.qid}")
        return fid

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def iounit(self, advised: int = 0) -> int:
        """Transfer size for an open fid: server advice, else msize less header"""
        if advised > 0:
            return min(advised, self.msize - IOHDRSZ)
        return self.msize - IOHDRSZ

    async def walk(self, fid: Fid, names: Sequence[str], path: Optional[str] = None) -> Fid:
        """
        Walk from fid through names into a newly allocated fid.

        An empty names list clones fid. More than MAXWELEM names are
        walked in batches. If the walk stops early, the new fid is
        released and WalkError names the element that failed.
        """
        self._check_live(fid)
        if fid.opened:
            raise UsageError(f"cannot walk from open fid {fid.fid}")
        names = list(names)
        for name in names:
            if not name or '/' in name:
                raise UsageError(f"invalid path element {name!r}")
        if path is None:
            path = fid.path.rstrip('/') + '/' + '/'.join(names) if names else fid.path

        newfid = self.fids.allocate(path)
        bound = False
        try:
            batches = [names[i:i + MAXWELEM] for i in range(0, len(names), MAXWELEM)] or [[]]
            source, depth = fid, 0
            for batch in batches:
                try:
                    response = await self._rpc(Twalk(NOTAG, source.fid, newfid.fid, batch))
                except P9Error as e:
                    if batch:
                        raise WalkError(path, depth, batch[0], e.ename) from e
                    raise

                walked = len(response.qids)
                if walked > len(batch):
                    raise DecodeError(f"Rwalk returned {walked} qids for {len(batch)} names")
                if walked < len(batch):
                    failed = depth + walked
                    raise WalkError(path, failed, names[failed])

                bound = True
                newfid.qid = response.qids[-1] if response.qids else fid.qid
                depth += walked
                source = newfid
        except BaseException:
            if bound:
                await self.release_quietly(newfid)
            else:
                # The server never created newfid; nothing to clunk
                self.fids.retire(newfid)
            raise

        return newfid

    async def open(self, fid: Fid, mode: int) -> Tuple[Qid, int]:
        """Open fid; returns (qid, iounit)"""
        self._check_live(fid)
        if fid.opened:
            raise UsageError(f"fid {fid.fid} already open")

        response = await self._rpc(Topen(NOTAG, fid.fid, mode))
        fid.mode = mode
        fid.qid = response.qid
        fid.iounit = self.iounit(response.iounit)
        return response.qid, fid.iounit

    async def create(self, fid: Fid, name: str, perm: int, mode: int) -> Tuple[Qid, int]:
        """
        Create name in the directory fid refers to.

        On success fid refers to the new file, opened with mode.
        Returns (qid, iounit).
        """
        self._check_live(fid)
        if fid.opened:
            raise UsageError(f"cannot create from open fid {fid.fid}")
        if not name or '/' in name or name in ('.', '..'):
            raise UsageError(f"invalid file name {name!r}")

        response = await self._rpc(Tcreate(NOTAG, fid.fid, name, perm, mode))
        fid.path = fid.path.rstrip('/') + '/' + name
        fid.mode = mode & ~(OTRUNC | ORCLOSE)
        fid.qid = response.qid
        fid.iounit = self.iounit(response.iounit)
        return response.qid, fid.iounit

    async def read(self, fid: Fid, offset: int, count: int) -> bytes:
        """One Tread; an empty result means end of data"""
        self._check_open(fid)
        if count < 0 or offset < 0:
            raise UsageError(f"bad read offset={offset} count={count}")
        if count > self.msize - IOHDRSZ:
            raise UsageError(f"read count {count} exceeds msize {self.msize}")

        response = await self._rpc(Tread(NOTAG, fid.fid, offset, count))
        if len(response.data) > count:
            raise DecodeError(f"Rread returned {len(response.data)} bytes for count {count}")
        return response.data

    async def write(self, fid: Fid, offset: int, data: bytes) -> int:
        """One Twrite; returns the count the server reports"""
        self._check_open(fid)
        if offset < 0:
            raise UsageError(f"bad write offset={offset}")
        if len(data) > self.msize - IOHDRSZ:
            raise UsageError(f"write of {len(data)} bytes exceeds msize {self.msize}")

        response = await self._rpc(Twrite(NOTAG, fid.fid, offset, bytes(data)))
        if response.count > len(data):
            raise DecodeError(f"Rwrite reports {response.count} bytes for {len(data)} sent")
        return response.count

    async def stat(self, fid: Fid) -> Stat:
        self._check_live(fid)
        response = await self._rpc(Tstat(NOTAG, fid.fid))
        return response.stat

    async def wstat(self, fid: Fid, stat: Stat):
        self._check_live(fid)
        await self._rpc(Twstat(NOTAG, fid.fid, stat))

    async def clunk(self, fid: Fid):
        """Release fid. The fid is gone afterwards even if the server objects."""
        self._check_live(fid)
        try:
            await self._rpc(Tclunk(NOTAG, fid.fid))
        finally:
            self.fids.retire(fid)
            if fid is self.root:
                self.root = None

    async def remove(self, fid: Fid):
        """Remove the file fid refers to; this also releases fid"""
        self._check_live(fid)
        try:
            await self._rpc(Tremove(NOTAG, fid.fid))
        finally:
            self.fids.retire(fid)
            if fid is self.root:
                self.root = None

    async def flush(self, tag: int):
        await self.dispatcher.flush(tag)

    async def release_quietly(self, fid: Fid):
        """Clunk fid on an error path, logging instead of raising"""
        if fid.retired:
            return
        try:
            await self.clunk(fid)
        except Error as e:
            logger.warning(f"Clunk of fid {fid.fid} ({fid.path}) failed: {e}")

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def close(self):
        """Clunk every fid still live, then close the connection"""
        if self._closing or self._closed:
            return
        self._closing = True

        outstanding: List[Fid] = self.fids.outstanding()
        # Root last, so fids walked from it go first
        outstanding.sort(key=lambda f: f is self.root)
        for fid in outstanding:
            if self.dispatcher.running:
                await self.release_quietly(fid)
            else:
                self.fids.retire(fid)

        self._closed = True
        await self.dispatcher.close()
        logger.debug("Session closed")

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _rpc(self, request: Message) -> Message:
        if self._closed:
            raise UsageError("session is closed")
        return await self.dispatcher.rpc(request, timeout=self.timeout)

    def _check_live(self, fid: Fid):
        if fid.retired or fid not in self.fids:
            raise UsageError(f"fid {fid.fid} already released")

    def _check_open(self, fid: Fid):
        self._check_live(fid)
        if not fid.opened:
            raise UsageError(f"fid {fid.fid} not open")
