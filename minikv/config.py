"""Command-line configuration of the server."""

from __future__ import annotations

import argparse
import re
from dataclasses import dataclass
from typing import Optional, Sequence

DEFAULT_PORT = 6379

_PORT_RE = re.compile(r"[+-]?[0-9]+")


@dataclass
class Config:
    """Server settings taken from the command line."""

    dir: str = ""
    dbfilename: str = ""
    port: int = DEFAULT_PORT
    master_host: str = ""
    master_port: int = 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(allow_abbrev=False)
    parser.add_argument(
        "-dir", "--dir", dest="dir", default="", help="Directory to store Redis data"
    )
    parser.add_argument(
        "-dbfilename",
        "--dbfilename",
        dest="dbfilename",
        default="",
        help="Name of the Redis database file",
    )
    parser.add_argument(
        "-port",
        "--port",
        dest="port",
        type=int,
        default=DEFAULT_PORT,
        help="Port to bind the Redis server to",
    )
    parser.add_argument(
        "-replicaof",
        "--replicaof",
        dest="replicaof",
        default="",
        help="Master server to replicate from (format: <host> <port>)",
    )
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> Config:
    """Parse command-line arguments into a Config.

    Raises ValueError when ``--replicaof`` is malformed.
    """
    args = _build_parser().parse_args(argv)
    config = Config(dir=args.dir, dbfilename=args.dbfilename, port=args.port)

    if args.replicaof:
        parts = args.replicaof.split()
        if len(parts) != 2:
            raise ValueError("replicaof must be in the format <host> <port>")
        host, port_text = parts
        if not _PORT_RE.fullmatch(port_text):
            raise ValueError("replicaof port must be a valid integer")
        config.master_host = host
        config.master_port = int(port_text)

    return config