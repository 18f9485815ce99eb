"""
Shared fixtures: an in-memory 9P server and clients connected to it.
"""

import asyncio
import os
import tempfile

import pytest
import pytest_asyncio

from ninep.client import Client
from tests.memfs import MemFS, MemServer

AFILE = b"hello from afile\n"
BIG = bytes(range(256)) * 10          # 2560 bytes


def sample_fs() -> MemFS:
    fs = MemFS()
    fs.mkdir("/adir")
    fs.put("/adir/afile", AFILE)
    fs.put("/adir/bfile", b"b")
    fs.mkdir("/adir/sub")
    fs.put("/big", BIG)
    fs.put("/empty")
    return fs


@pytest.fixture
def fs():
    return sample_fs()


@pytest_asyncio.fixture
async def serve(fs):  # pylint: disable=redefined-outer-name
    """Factory: start a MemServer over fs with the given knobs"""
    servers = []

    async def start(**knobs) -> MemServer:
        server = MemServer(fs, **knobs)
        await server.start()
        servers.append(server)
        return server

    yield start

    for server in servers:
        await server.stop()


@pytest_asyncio.fixture
async def server(serve):  # pylint: disable=redefined-outer-name
    return await serve()


@pytest_asyncio.fixture
async def client(server):  # pylint: disable=redefined-outer-name
    c = await Client.connect(server.address, "glenda", "/")
    try:
        yield c
    finally:
        await c.close()


@pytest_asyncio.fixture
async def scripted():
    """
    Factory: a Unix socket whose peer runs the given coroutine.

    The handler gets (reader, writer) and plays the server by hand.
    Returns the dial string.
    """
    tmpdir = tempfile.TemporaryDirectory(prefix="np")
    servers = []

    async def start(handler) -> str:
        path = os.path.join(tmpdir.name, f"s{len(servers)}")
        servers.append(await asyncio.start_unix_server(handler, path=path))
        return f"unix!{path}"

    yield start

    for s in servers:
        s.close()
        await s.wait_closed()
    tmpdir.cleanup()
