"""
Tests for tagged transaction dispatch against hand-played servers
"""

import asyncio

import pytest

from core.types import Stat
from ninep.codec import Codec
from ninep.dial import dial
from ninep.dispatch import Dispatcher
from ninep.errors import DecodeError, P9Error, TransactionTimeout, TransportError, UsageError
from ninep.protocol import *

from tests.memfs import corrupt_frame

codec = Codec()


async def read_msg(reader) -> Message:
    prefix = await reader.readexactly(4)
    rest = await reader.readexactly(codec.frame_size(prefix) - 4)
    return codec.decode(prefix + rest)[0]


async def send_msg(writer, msg: Message):
    writer.write(codec.encode(msg))
    await writer.drain()


async def connect(address, observer=None) -> Dispatcher:
    reader, writer = await dial(address)
    dispatcher = Dispatcher(reader, writer, observer=observer)
    dispatcher.start()
    return dispatcher


class Recorder:
    def __init__(self):
        self.outgoing = []
        self.incoming = []

    def sent(self, msg):
        self.outgoing.append(msg)

    def received(self, msg):
        self.incoming.append(msg)


@pytest.mark.asyncio
async def test_responses_routed_by_tag(scripted):
    """Replies in reverse order still reach the right callers"""
    async def handler(reader, writer):
        first = await read_msg(reader)
        second = await read_msg(reader)
        for req in (second, first):
            await send_msg(writer, Rstat(req.tag, Stat(name=f"fid{req.fid}")))
        await reader.read()
        writer.close()

    dispatcher = await connect(await scripted(handler))
    try:
        one, two = await asyncio.gather(
            dispatcher.rpc(Tstat(NOTAG, 1)),
            dispatcher.rpc(Tstat(NOTAG, 2)),
        )
        assert one.stat.name == "fid1"
        assert two.stat.name == "fid2"
        assert one.tag != two.tag
        assert dispatcher.in_flight() == 0
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_rerror_raises_p9error(scripted):
    async def handler(reader, writer):
        req = await read_msg(reader)
        await send_msg(writer, Rerror(req.tag, "permission denied"))
        await reader.read()
        writer.close()

    dispatcher = await connect(await scripted(handler))
    try:
        with pytest.raises(P9Error) as err:
            await dispatcher.rpc(Tclunk(NOTAG, 3))
        assert err.value.ename == "permission denied"
        assert len(dispatcher.tags) == 0
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_wrong_response_kind(scripted):
    async def handler(reader, writer):
        req = await read_msg(reader)
        await send_msg(writer, Rclunk(req.tag))
        await reader.read()
        writer.close()

    dispatcher = await connect(await scripted(handler))
    try:
        with pytest.raises(DecodeError):
            await dispatcher.rpc(Tstat(NOTAG, 3))
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_timeout_flushes_and_frees_tag(scripted):
    seen = []

    async def handler(reader, writer):
        stalled = await read_msg(reader)
        flush = await read_msg(reader)
        seen.extend([stalled, flush])
        await send_msg(writer, Rflush(flush.tag))
        await reader.read()
        writer.close()

    dispatcher = await connect(await scripted(handler))
    try:
        with pytest.raises(TransactionTimeout) as err:
            await dispatcher.rpc(Tread(NOTAG, 1, 0, 10), timeout=0.05)

        stalled, flush = seen
        assert isinstance(flush, Tflush)
        assert flush.oldtag == stalled.tag
        assert err.value.tag == stalled.tag
        assert not dispatcher.tags.busy(stalled.tag)
        assert dispatcher.in_flight() == 0
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_response_before_rflush_is_kept(scripted):
    async def handler(reader, writer):
        stalled = await read_msg(reader)
        flush = await read_msg(reader)
        await send_msg(writer, Rread(stalled.tag, b"late"))
        await send_msg(writer, Rflush(flush.tag))
        await reader.read()
        writer.close()

    dispatcher = await connect(await scripted(handler))
    try:
        response = await dispatcher.rpc(Tread(NOTAG, 1, 0, 10), timeout=0.05)
        assert response.data == b"late"
        assert dispatcher.in_flight() == 0
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_cancelled_request_is_flushed(scripted):
    flushed = asyncio.Event()
    seen = []

    async def handler(reader, writer):
        stalled = await read_msg(reader)
        flush = await read_msg(reader)
        seen.extend([stalled, flush])
        await send_msg(writer, Rflush(flush.tag))
        flushed.set()
        await reader.read()
        writer.close()

    dispatcher = await connect(await scripted(handler))
    try:
        task = asyncio.ensure_future(dispatcher.rpc(Tread(NOTAG, 1, 0, 10)))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.wait_for(flushed.wait(), 2)
        for _ in range(50):
            if dispatcher.in_flight() == 0:
                break
            await asyncio.sleep(0.01)

        stalled, flush = seen
        assert flush.oldtag == stalled.tag
        assert dispatcher.in_flight() == 0
        assert not dispatcher.tags.busy(stalled.tag)
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_background_flush_survives_decode_failure(scripted):
    """A garbled reply to the Tflush ends the flush quietly"""
    async def handler(reader, writer):
        await read_msg(reader)
        flush = await read_msg(reader)
        writer.write(corrupt_frame(99, flush.tag))
        await writer.drain()
        await reader.read()
        writer.close()

    dispatcher = await connect(await scripted(handler))
    try:
        task = asyncio.ensure_future(dispatcher.rpc(Tread(NOTAG, 1, 0, 10)))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        flushes = list(dispatcher._flushes)
        assert len(flushes) == 1
        await asyncio.wait_for(asyncio.gather(*flushes), 2)
        assert not dispatcher.running
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_connection_loss_fails_waiters(scripted):
    async def handler(reader, writer):
        await read_msg(reader)
        writer.close()

    dispatcher = await connect(await scripted(handler))
    try:
        with pytest.raises(TransportError):
            await dispatcher.rpc(Tstat(NOTAG, 1))
        assert not dispatcher.running
        with pytest.raises(TransportError):
            await dispatcher.rpc(Tstat(NOTAG, 1))
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_oversized_request_rejected(scripted):
    async def handler(reader, writer):
        await reader.read()
        writer.close()

    dispatcher = await connect(await scripted(handler))
    dispatcher.codec.msize = 64
    try:
        with pytest.raises(UsageError):
            await dispatcher.rpc(Twrite(NOTAG, 1, 0, b"x" * 100))
        assert len(dispatcher.tags) == 0
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_observer_sees_both_directions(scripted):
    async def handler(reader, writer):
        req = await read_msg(reader)
        await send_msg(writer, Rclunk(req.tag))
        await reader.read()
        writer.close()

    recorder = Recorder()
    dispatcher = await connect(await scripted(handler), observer=recorder)
    try:
        await dispatcher.rpc(Tclunk(NOTAG, 4))
        assert [type(m) for m in recorder.outgoing] == [Tclunk]
        assert [type(m) for m in recorder.incoming] == [Rclunk]
    finally:
        await dispatcher.close()


@pytest.mark.asyncio
async def test_rpc_after_close(scripted):
    async def handler(reader, writer):
        await reader.read()
        writer.close()

    dispatcher = await connect(await scripted(handler))
    await dispatcher.close()
    with pytest.raises(TransportError):
        await dispatcher.rpc(Tclunk(NOTAG, 1))
