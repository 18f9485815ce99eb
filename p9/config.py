"""
Defaults for the 9p command, taken from the environment.

A .env file in the working directory is loaded first (python-dotenv),
then these variables are read:

    NINEP_ADDRESS   dial string, e.g. unix!/tmp/ns/fs or tcp!host!564
    NINEP_USER      user name to attach as
    NINEP_ANAME     tree to attach to (default /)
    NINEP_MSIZE     message size to propose (default 8192)
    NINEP_TIMEOUT   seconds to wait for each response (default: forever)

Command-line flags override all of them.
"""

import getpass
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from ninep.errors import UsageError

DEFAULT_MSIZE = 8192


def default_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "none"


@dataclass
class Config:
    address: Optional[str] = None
    uname: str = "none"
    aname: str = "/"
    msize: int = DEFAULT_MSIZE
    timeout: Optional[float] = None

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Config":
        if dotenv:
            load_dotenv()

        msize = os.getenv("NINEP_MSIZE")
        timeout = os.getenv("NINEP_TIMEOUT")
        return cls(
            address=os.getenv("NINEP_ADDRESS") or None,
            uname=os.getenv("NINEP_USER") or default_user(),
            aname=os.getenv("NINEP_ANAME", "/"),
            msize=_parse(int, "NINEP_MSIZE", msize) if msize else DEFAULT_MSIZE,
            timeout=_parse(float, "NINEP_TIMEOUT", timeout) if timeout else None,
        )


def _parse(kind, name: str, value: str):
    try:
        parsed = kind(value)
    except ValueError:
        raise UsageError(f"{name}={value!r} is not a valid {kind.__name__}") from None
    if parsed <= 0:
        raise UsageError(f"{name} must be positive, got {value!r}")
    return parsed
