"""
Exceptions raised by the 9P client.

    Error
    ├── TransportError       connection refused, reset or closed
    ├── P9Error              Rerror from the server
    │   └── WalkError        walk resolved fewer names than asked
    ├── DecodeError          malformed or truncated wire data
    ├── UsageError           bad arguments, caught before any I/O
    ├── VersionError         server refused our protocol version
    ├── ShortWriteError      server accepted fewer bytes than sent
    └── TransactionTimeout   no response in time; request was flushed
"""

from typing import Optional


class Error(Exception):
    """Base class for all 9P client errors"""


class TransportError(Error):
    """Connection to 9P server lost"""


class P9Error(Error):
    """Error from 9P server (Rerror message)"""

    def __init__(self, ename: str):
        super().__init__(ename)
        self.ename = ename


class WalkError(P9Error):
    """Walk stopped at element `depth` (0-based) of `path`"""

    def __init__(self, path: str, depth: int, name: str, ename: Optional[str] = None):
        self.path = path
        self.depth = depth
        self.name = name
        super().__init__(ename or f"walk {path!r}: '{name}' not found at depth {depth}")


class DecodeError(Error, ValueError):
    """Malformed or truncated 9P data"""


class UsageError(Error, ValueError):
    """Invalid operation arguments"""


class VersionError(Error):
    """Version negotiation failed"""


class ShortWriteError(Error):
    """Rwrite reported fewer bytes than the Twrite carried"""

    def __init__(self, offset: int, requested: int, written: int):
        super().__init__(
            f"short write at offset {offset}: wrote {written} of {requested} bytes"
        )
        self.offset = offset
        self.requested = requested
        self.written = written


class TransactionTimeout(Error):
    """A transaction did not complete in time and was flushed"""

    def __init__(self, request_name: str, tag: int, timeout: float):
        super().__init__(f"{request_name} tag={tag} timed out after {timeout}s")
        self.tag = tag
        self.timeout = timeout
