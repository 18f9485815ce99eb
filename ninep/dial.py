"""
Dial strings.

    tcp!host!port     TCP to host on port
    host!port         same, protocol defaults to tcp
    host              tcp, default 9P port (564)
    host:port         tcp, colon form
    unix!/path/sock   Unix domain socket
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .errors import TransportError, UsageError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 564


@dataclass(frozen=True)
class Address:
    proto: str
    host: str                      # Socket path for unix
    port: Optional[int] = None

    def __str__(self):
        if self.proto == "unix":
            return f"unix!{self.host}"
        return f"{self.proto}!{self.host}!{self.port}"


def parse_address(text: str, default_port: int = DEFAULT_PORT) -> Address:
    """Parse a dial string into an Address"""
    text = text.strip()
    if not text:
        raise UsageError("empty address")

    if text.startswith("unix!"):
        path = text[len("unix!"):]
        if not path:
            raise UsageError(f"invalid address '{text}': missing socket path")
        return Address("unix", path)

    parts = text.split("!")
    if len(parts) == 3:
        proto, host, port = parts
    elif len(parts) == 2:
        if parts[0] in ("tcp", "net"):
            proto, host, port = parts[0], parts[1], None
        else:
            proto, (host, port) = "tcp", parts
    elif len(parts) == 1:
        proto, host, port = "tcp", text, None
        # host:port, but leave bare IPv6 literals alone
        if host.count(":") == 1:
            host, port = host.split(":")
    else:
        raise UsageError(f"invalid address '{text}'")

    if proto == "net":
        proto = "tcp"
    if proto != "tcp":
        raise UsageError(f"invalid address '{text}': unsupported protocol {proto!r}")
    if not host:
        raise UsageError(f"invalid address '{text}': missing host")

    if port is None or port == "":
        return Address(proto, host, default_port)
    try:
        port_num = int(port)
    except ValueError:
        raise UsageError(f"invalid address '{text}': bad port {port!r}") from None
    if not 0 < port_num < 65536:
        raise UsageError(f"invalid address '{text}': port {port_num} out of range")
    return Address(proto, host, port_num)


async def dial(address: Union[str, Address]) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Connect to a dial string; returns an asyncio stream pair"""
    addr = address if isinstance(address, Address) else parse_address(address)
    try:
        if addr.proto == "unix":
            reader, writer = await asyncio.open_unix_connection(addr.host)
        else:
            reader, writer = await asyncio.open_connection(addr.host, addr.port)
            # Disable Nagle; every transaction waits on a small reply
            sock = writer.get_extra_info("socket")
            if sock is not None:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    except OSError as e:
        raise TransportError(f"dial {addr}: {e}") from e

    logger.info(f"Connected to {addr}")
    return reader, writer
