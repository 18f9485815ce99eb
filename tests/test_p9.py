"""
Tests for the 9p command: formatting, configuration and main()
"""

import asyncio
import io
import sys
import types

import pytest

from core.types import Qid, Stat, DMDIR, DMAPPEND
from ninep.errors import UsageError
from p9 import __main__ as cli
from p9.config import Config
from p9.format import mode_string, render_table, stat_row

from tests.conftest import AFILE


def test_mode_string():
    assert mode_string(0o644) == "-rw-r--r--"
    assert mode_string(DMDIR | 0o755) == "drwxr-xr-x"
    assert mode_string(DMAPPEND | 0o600) == "arw-------"


def test_stat_row_marks_directories():
    d = Stat(qid=Qid(0x80, 0, 1), mode=DMDIR | 0o755, name="adir", length=0)
    f = Stat(mode=0o644, name="afile", length=12)
    assert stat_row(d, mark_dirs=True)[3] == "adir/"
    assert stat_row(d)[3] == "adir"
    assert stat_row(f, mark_dirs=True)[:2] == ["-rw-r--r--", "12"]


def test_render_table_aligns_columns():
    text = render_table([["a", "1", "x"], ["bbb", "22", "y"]], padding=2)
    assert text == "a    1   x\nbbb  22  y\n"
    assert render_table([]) == ""


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("NINEP_ADDRESS", "tcp!fs!564")
    monkeypatch.setenv("NINEP_USER", "glenda")
    monkeypatch.setenv("NINEP_MSIZE", "16384")
    monkeypatch.setenv("NINEP_TIMEOUT", "2.5")
    monkeypatch.delenv("NINEP_ANAME", raising=False)
    config = Config.from_env(dotenv=False)
    assert config.address == "tcp!fs!564"
    assert config.uname == "glenda"
    assert config.aname == "/"
    assert config.msize == 16384
    assert config.timeout == 2.5


@pytest.mark.parametrize("value", ["lots", "0", "-5"])
def test_config_bad_msize(monkeypatch, value):
    monkeypatch.setenv("NINEP_MSIZE", value)
    with pytest.raises(UsageError):
        Config.from_env(dotenv=False)


@pytest.fixture
def no_env(monkeypatch):
    for name in ("NINEP_ADDRESS", "NINEP_USER", "NINEP_ANAME", "NINEP_MSIZE", "NINEP_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli.Config, "from_env", classmethod(lambda cls: cls()))


class FakeStdout:
    """stdout with a bytes buffer, as the command writes both"""

    def __init__(self):
        self.buffer = io.BytesIO()
        self.text = io.StringIO()

    def write(self, s):
        return self.text.write(s)

    def flush(self):
        pass


def run_main(monkeypatch, argv, stdin=b""):
    """Run main() on a fresh thread's event loop; returns (code, stdout)"""
    out = FakeStdout()
    monkeypatch.setattr(sys, "stdout", out)
    monkeypatch.setattr(sys, "stdin", types.SimpleNamespace(buffer=io.BytesIO(stdin)))
    code = cli.main(argv)
    return code, out


async def in_thread(monkeypatch, argv, stdin=b""):
    return await asyncio.get_running_loop().run_in_executor(
        None, run_main, monkeypatch, argv, stdin)


def test_missing_address_is_usage_error(no_env, capsys):  # pylint: disable=unused-argument
    assert cli.main(["stat", "/"]) == 1
    assert "no server address" in capsys.readouterr().err


def test_bad_permission_rejected(capsys):
    with pytest.raises(SystemExit):
        cli.main(["-a", "x", "chmod", "999", "/f"])
    assert "invalid octal" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_stat_command(no_env, monkeypatch, server):  # pylint: disable=unused-argument
    code, out = await in_thread(monkeypatch, ["-a", server.address, "stat", "/adir/afile"])
    assert code == 0
    line = out.text.getvalue()
    assert line.startswith("-rw-rw-r--")
    assert line.rstrip("\n").endswith("afile")
    assert str(len(AFILE)) in line


@pytest.mark.asyncio
async def test_ls_command(no_env, monkeypatch, server):  # pylint: disable=unused-argument
    code, out = await in_thread(monkeypatch, ["-a", server.address, "ls", "/adir"])
    assert code == 0
    names = [line.split()[-1] for line in out.text.getvalue().splitlines()]
    assert names == ["afile", "bfile", "sub/"]


@pytest.mark.asyncio
async def test_read_command(no_env, monkeypatch, server):  # pylint: disable=unused-argument
    code, out = await in_thread(monkeypatch, ["-a", server.address, "read", "/adir/afile"])
    assert code == 0
    assert out.buffer.getvalue() == AFILE


@pytest.mark.asyncio
async def test_write_command(no_env, monkeypatch, fs, server):  # pylint: disable=unused-argument
    code, _ = await in_thread(monkeypatch, ["-a", server.address, "write", "/adir/bfile"],
                              stdin=b"replaced\n")
    assert code == 0
    assert bytes(fs.lookup("/adir/bfile").data) == b"replaced\n"


@pytest.mark.asyncio
async def test_create_and_rm_commands(no_env, monkeypatch, fs, server):  # pylint: disable=unused-argument
    code, _ = await in_thread(monkeypatch,
                              ["-a", server.address, "create", "-p", "600", "/adir", "made"])
    assert code == 0
    assert fs.lookup("/adir/made").mode == 0o600

    code, _ = await in_thread(monkeypatch, ["-a", server.address, "rm", "/adir/made"])
    assert code == 0
    assert "made" not in fs.lookup("/adir").children


@pytest.mark.asyncio
async def test_chmod_command(no_env, monkeypatch, fs, server):  # pylint: disable=unused-argument
    code, _ = await in_thread(monkeypatch, ["-a", server.address, "chmod", "640", "/adir/afile"])
    assert code == 0
    assert fs.lookup("/adir/afile").mode == 0o640


@pytest.mark.asyncio
async def test_error_exit_status(no_env, monkeypatch, server, capsys):  # pylint: disable=unused-argument
    code, _ = await in_thread(monkeypatch, ["-a", server.address, "stat", "/nowhere"])
    assert code == 1
    assert "Error" in capsys.readouterr().err
