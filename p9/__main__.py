"""
9p — talk to a 9P2000 file server from the command line

Usage:
    python -m p9 [-D] [-v] [-a address] [-A aname] [-u user] [-m msize] cmd args...

Commands:
    read PATH            copy file contents to stdout
    write PATH           replace file contents with stdin
    stat PATH            one line of metadata
    ls PATH...           list directories
    create PATH [NAME]   create a file (-p perm, default 0644)
    mkdir PATH           create a directory (-p perm, default 0755)
    rm PATH              remove a file or empty directory
    chmod MODE PATH      change permission bits (octal)
    open PATH            open and close, to check access
    rdwr PATH            write each stdin line, print each reply

Examples:
    python -m p9 -a 'unix!/tmp/ns.glenda/acme' ls /
    python -m p9 -a tcp!fileserver!564 -A / stat /adir/afile
    echo hello | python -m p9 -a fileserver write /tmp/greeting
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from core.types import OREAD, OWRITE
from ninep.client import Client
from ninep.errors import Error, UsageError
from ninep.trace import Tracer

from .config import Config
from .format import render_table, stat_row

logger = logging.getLogger("p9")


def parse_perm(text: str) -> int:
    try:
        perm = int(text, 8)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid octal permission '{text}'") from None
    if not 0 <= perm <= 0o777:
        raise argparse.ArgumentTypeError(f"permission '{text}' out of range")
    return perm


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="9p",
        description="9P2000 client — perform one file operation on a 9P server",
    )
    parser.add_argument('-D', dest='chatty', action='store_true',
                        help='Print every 9P message (debug logging)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable verbose logging')
    parser.add_argument('-n', dest='noauth', action='store_true',
                        help='No authentication (always the case)')
    parser.add_argument('-a', dest='address',
                        help='Server address: [proto!]host[!port] or unix!path '
                             '(default: $NINEP_ADDRESS)')
    parser.add_argument('-A', dest='aname',
                        help='Tree to attach (default: $NINEP_ANAME or /)')
    parser.add_argument('-u', dest='uname',
                        help='User name (default: $NINEP_USER or login name)')
    parser.add_argument('-m', dest='msize', type=int,
                        help='Message size to propose (default: 8192)')
    parser.add_argument('-t', dest='timeout', type=float,
                        help='Seconds to wait for each response')

    commands = parser.add_subparsers(dest='cmd', metavar='cmd')
    commands.required = True

    commands.add_parser('read', help='Copy file to stdout').add_argument('path')
    commands.add_parser('write', help='Copy stdin to file').add_argument('path')
    commands.add_parser('stat', help='Show metadata').add_argument('path')
    commands.add_parser('ls', help='List directory').add_argument('paths', nargs='+', metavar='path')

    create = commands.add_parser('create', help='Create file')
    create.add_argument('path')
    create.add_argument('name', nargs='?')
    create.add_argument('-p', dest='perm', type=parse_perm, default=0o644)

    mkdir = commands.add_parser('mkdir', help='Create directory')
    mkdir.add_argument('path')
    mkdir.add_argument('-p', dest='perm', type=parse_perm, default=0o755)

    commands.add_parser('rm', help='Remove file').add_argument('path')

    chmod = commands.add_parser('chmod', help='Change permission bits')
    chmod.add_argument('mode', type=parse_perm)
    chmod.add_argument('path')

    commands.add_parser('open', help='Open and close').add_argument('path')
    commands.add_parser('rdwr', help='Write lines, print replies').add_argument('path')

    return parser


# =============================================================================
# Commands
# =============================================================================

def _stdout_bytes(data: bytes):
    sys.stdout.buffer.write(data)
    sys.stdout.buffer.flush()


async def cmd_read(client: Client, args):
    await client.read_file(args.path, sink=_stdout_bytes)


async def cmd_write(client: Client, args):
    n = await client.write_file(args.path, sys.stdin.buffer)
    logger.info(f"Wrote {n} bytes to {args.path}")


async def cmd_stat(client: Client, args):
    stat = await client.stat(args.path)
    sys.stdout.write(render_table([stat_row(stat)]))


async def cmd_ls(client: Client, args):
    for path in args.paths:
        rows = [stat_row(entry, mark_dirs=True) async for entry in client.ls(path)]
        sys.stdout.write(render_table(rows))


async def cmd_create(client: Client, args):
    path = f"{args.path.rstrip('/')}/{args.name}" if args.name else args.path
    fid = await client.create(path, args.perm, OWRITE)
    await client.clunk(fid)


async def cmd_mkdir(client: Client, args):
    await client.mkdir(args.path, args.perm)


async def cmd_rm(client: Client, args):
    await client.remove(args.path)


async def cmd_chmod(client: Client, args):
    await client.chmod(args.path, args.mode)


async def cmd_open(client: Client, args):
    qid, iounit = await client.probe(args.path, OREAD)
    logger.info(f"Opened {args.path}: qid={qid} iounit={iounit}")


async def cmd_rdwr(client: Client, args):
    lines = iter(sys.stdin.buffer.readline, b"")
    await client.rdwr(args.path, lines, _stdout_bytes)


COMMANDS = {
    'read': cmd_read,
    'write': cmd_write,
    'stat': cmd_stat,
    'ls': cmd_ls,
    'create': cmd_create,
    'mkdir': cmd_mkdir,
    'rm': cmd_rm,
    'chmod': cmd_chmod,
    'open': cmd_open,
    'rdwr': cmd_rdwr,
}


async def run(args, config: Config):
    observer = Tracer() if args.chatty else None
    client = await Client.connect(
        config.address,
        config.uname,
        config.aname,
        msize=config.msize,
        timeout=config.timeout,
        observer=observer,
    )
    async with client:
        await COMMANDS[args.cmd](client, args)


def resolve_config(args) -> Config:
    """Environment defaults overridden by flags"""
    config = Config.from_env()
    if args.address:
        config.address = args.address
    if args.aname is not None:
        config.aname = args.aname
    if args.uname:
        config.uname = args.uname
    if args.msize is not None:
        if args.msize <= 0:
            raise UsageError(f"msize must be positive, got {args.msize}")
        config.msize = args.msize
    if args.timeout is not None:
        config.timeout = args.timeout if args.timeout > 0 else None
    if not config.address:
        raise UsageError("no server address; use -a or set NINEP_ADDRESS")
    return config


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging
    level = logging.WARNING
    if args.verbose:
        level = logging.INFO
    if args.chatty:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format='%(asctime)s %(name)s %(levelname)s %(message)s',
        datefmt='%H:%M:%S'
    )

    try:
        config = resolve_config(args)
        asyncio.run(run(args, config))
    except Error as e:
        print(f"Error, {args.cmd}: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == '__main__':
    sys.exit(main())
