"""
9P transaction dispatch.

Sends T-messages over an asyncio stream pair and matches each R-message
to the request that carries the same tag. A background reader task
demultiplexes responses, so several transactions may be in flight at
once even though the session usually waits for each one in turn.

A tag stays busy until its transaction has completed or has been
flushed. Only then does it go back to the pool.
"""

import asyncio
import logging
from typing import Dict, Optional, Protocol

from .codec import Codec
from .errors import DecodeError, Error, P9Error, TransactionTimeout, TransportError, UsageError
from .protocol import NOTAG, RESPONSE_FOR, Message, Rerror, Tflush

logger = logging.getLogger(__name__)


class Observer(Protocol):
    """Receives every message that crosses the wire"""

    def sent(self, msg: Message): ...

    def received(self, msg: Message): ...


class TagPool:
    """
    Allocator for transaction tags.

    Tags run from 0 to NOTAG-1 and are handed out round-robin, skipping
    any that are still busy.
    """

    def __init__(self, limit: int = NOTAG):
        self.limit = limit
        self._next = 0
        self._busy = set()

    def allocate(self) -> int:
        for _ in range(self.limit):
            tag = self._next
            self._next = (self._next + 1) % self.limit
            if tag not in self._busy:
                self._busy.add(tag)
                return tag
        raise UsageError(f"all {self.limit} tags are in flight")

    def release(self, tag: int):
        self._busy.discard(tag)

    def busy(self, tag: int) -> bool:
        return tag in self._busy

    def __len__(self):
        return len(self._busy)


class Dispatcher:
    """
    Tagged request/response transport for one 9P connection.

    Handles:
    - Tag allocation and release
    - Response routing to the waiting caller by tag
    - Flush of transactions that time out or are cancelled
    - Failing every waiter with TransportError when the stream breaks
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        codec: Optional[Codec] = None,
        observer: Optional[Observer] = None,
    ):
        self.reader = reader
        self.writer = writer
        self.codec = codec or Codec()
        self.observer = observer
        self.tags = TagPool()
        self._pending: Dict[int, asyncio.Future] = {}  # tag -> Future for response
        self._write_lock = asyncio.Lock()   # Serializes sends on the stream
        self._reader_task: Optional[asyncio.Task] = None
        self._failure: Optional[Exception] = None
        self._flushes = set()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self):
        """Start the background reader that demuxes responses by tag"""
        if self._reader_task is None:
            self._reader_task = asyncio.ensure_future(self._reader_loop())

    @property
    def running(self) -> bool:
        return self._reader_task is not None and self._failure is None

    async def close(self):
        """Stop the reader, fail any waiters and close the stream"""
        if self._failure is None:
            self._fail(TransportError("session closed"), quiet=True)

        for task in list(self._flushes):
            task.cancel()

        if self._reader_task and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass

        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Close: {e}")

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def rpc_inline(self, request: Message) -> Message:
        """
        Send request and read its response inline.

        Used only for Tversion, before the reader task starts.
        """
        if self._reader_task is not None:
            raise UsageError("inline transactions are only possible before start()")
        self._raise_if_failed()

        await self._send(request)
        try:
            response = await self._read_message()
        except (asyncio.IncompleteReadError, ConnectionError, OSError) as e:
            raise self._fail(TransportError(f"connection lost: {e}")) from e

        if self.observer:
            self.observer.received(response)
        if response.tag != request.tag:
            raise DecodeError(f"response tag {response.tag} does not match {request.tag}")
        return self._check(request, response)

    async def rpc(self, request: Message, timeout: Optional[float] = None) -> Message:
        """
        Send T-message and wait for the matching R-message.

        Rerror is raised as P9Error. With a timeout, an expired
        transaction is flushed and TransactionTimeout raised, unless the
        response beat the Rflush, in which case it is returned.
        """
        self._raise_if_failed()
        if self._reader_task is None:
            raise UsageError("dispatcher not started")

        tag = self.tags.allocate()
        request.tag = tag
        fut = asyncio.get_event_loop().create_future()
        self._pending[tag] = fut

        try:
            await self._send(request)
        except BaseException:
            self._finish(tag)
            raise

        try:
            if timeout is None:
                response = await asyncio.shield(fut)
            else:
                response = await asyncio.wait_for(asyncio.shield(fut), timeout)
        except asyncio.TimeoutError:
            await self.flush(tag)
            if fut.done() and not fut.cancelled() and fut.exception() is None:
                return self._check(request, fut.result())
            raise TransactionTimeout(type(request).__name__, tag, timeout) from None
        except asyncio.CancelledError:
            if fut.done():
                self._finish(tag)
            else:
                self._flush_in_background(tag)
            raise
        except BaseException:
            self._finish(tag)
            raise

        self._finish(tag)
        return self._check(request, response)

    async def flush(self, oldtag: int):
        """
        Cancel the transaction using oldtag.

        Returns once Rflush arrives; oldtag is free again afterwards and
        any late response to it has been discarded.
        """
        try:
            await self.rpc(Tflush(NOTAG, oldtag))
        finally:
            late = self._pending.pop(oldtag, None)
            if late is not None and not late.done():
                late.cancel()
            self.tags.release(oldtag)

    def in_flight(self) -> int:
        return len(self._pending)

    # -------------------------------------------------------------------------
    # Wire
    # -------------------------------------------------------------------------

    async def _send(self, request: Message):
        data = self.codec.encode(request)
        if len(data) > self.codec.msize:
            raise UsageError(
                f"{type(request).__name__} is {len(data)} bytes, msize is {self.codec.msize}"
            )

        if self.observer:
            self.observer.sent(request)

        async with self._write_lock:
            try:
                self.writer.write(data)
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                raise self._fail(TransportError(f"send failed: {e}")) from e

    async def _read_message(self) -> Message:
        prefix = await self.reader.readexactly(4)
        size = self.codec.frame_size(prefix)
        rest = await self.reader.readexactly(size - 4)
        msg, _ = self.codec.decode(prefix + rest)
        return msg

    async def _reader_loop(self):
        """Background task: read responses and dispatch by tag."""
        try:
            while True:
                msg = await self._read_message()

                if self.observer:
                    self.observer.received(msg)

                fut = self._pending.get(msg.tag)
                if fut is None or fut.done():
                    # Unsolicited, or late for a flushed request
                    logger.debug(f"Dropping {type(msg).__name__} for idle tag {msg.tag}")
                    continue
                fut.set_result(msg)
        except asyncio.IncompleteReadError as e:
            if e.partial:
                self._fail(TransportError(f"connection closed mid-message ({len(e.partial)} bytes)"))
            else:
                self._fail(TransportError("connection closed by server"))
        except (ConnectionError, OSError) as e:
            self._fail(TransportError(f"connection lost: {e}"))
        except DecodeError as e:
            logger.error(f"Undecodable response: {e}")
            self._fail(e)

    def _flush_in_background(self, tag: int):
        async def flush_quietly():
            try:
                await self.flush(tag)
            except Error as e:
                logger.debug(f"Flush of tag {tag} failed: {e}")

        task = asyncio.ensure_future(flush_quietly())
        self._flushes.add(task)
        task.add_done_callback(self._flushes.discard)

    def _finish(self, tag: int):
        self._pending.pop(tag, None)
        self.tags.release(tag)

    def _fail(self, error: Exception, quiet: bool = False) -> Exception:
        """Record a fatal error and hand it to every waiter"""
        if self._failure is None:
            self._failure = error
            if not quiet:
                logger.warning(f"Transport failed: {error}")
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(self._failure)
                # Waiters that were cancelled never retrieve it
                fut.exception()
        return error

    def _raise_if_failed(self):
        if self._failure is not None:
            raise self._failure

    @staticmethod
    def _check(request: Message, response: Message) -> Message:
        if isinstance(response, Rerror):
            raise P9Error(response.ename)
        expected = RESPONSE_FOR[type(request)]
        if not isinstance(response, expected):
            raise DecodeError(
                f"{type(request).__name__} answered by {type(response).__name__}"
            )
        return response
