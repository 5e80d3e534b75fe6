"""
Command-line shell for a keeper ensemble.

Commands map one-to-one onto KeeperClient operations:
- ls: List children of a node
- get: Print a node's data
- set: Write a node's data
- create: Create a node (--mode selects the create mode)
- rm: Delete a node (-r deletes the whole subtree)
- mkdir: Create a node and its missing ancestors
- stat: Print node metadata as JSON
- wait-deleted: Block until a node is deleted

Usage:
    keeper-cli --hosts zk1:2181 ls /
    keeper-cli mkdir /app/config
    keeper-cli create /app/workers/w- --mode ephemeral_sequential
    keeper-cli rm -r /app

Invariants:
    - Any KeeperError exits with code 1 and a message on stderr
    - --hosts/--driver default from KEEPER_* settings
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from typing import List, Optional, TextIO

from ..client import KeeperClient
from ..config import DriverBackend, KeeperSettings
from ..errors import KeeperError
from ..observability import setup_logging
from ..types import CreateMode

logger = logging.getLogger(__name__)


class KeeperCLI:
    """Command implementations over a connected client.

    Example:
        >>> cli = KeeperCLI(client)
        >>> cli.mkdir("/app/config")
        >>> cli.ls("/app")
    """

    def __init__(self, client: KeeperClient, out: Optional[TextIO] = None) -> None:
        self.client = client
        self.out = out or sys.stdout

    def _print(self, text: str) -> None:
        print(text, file=self.out)

    def ls(self, path: str) -> List[str]:
        children = sorted(self.client.children(path))
        for child in children:
            self._print(child)
        return children

    def get(self, path: str) -> bytes:
        data, _ = self.client.get(path)
        self._print(data.decode("utf-8", errors="replace"))
        return data

    def set(self, path: str, data: str, version: int = -1) -> None:
        stat = self.client.set(path, data, version=version)
        self._print(f"version {stat.version}")

    def create(self, path: str, data: str = "", mode: str = CreateMode.PERSISTENT.value) -> str:
        created = self.client.create(path, data, mode=mode)
        self._print(created)
        return created

    def rm(self, path: str, recursive: bool = False) -> None:
        if recursive:
            self.client.delete_subtree(path)
        else:
            self.client.delete(path)

    def mkdir(self, path: str) -> None:
        self.client.ensure_path(path)

    def stat(self, path: str) -> dict:
        """Print node metadata.

        A missing node is reported with exists=false, not as an error.
        """
        stat = self.client.stat(path)
        output = dataclasses.asdict(stat)
        self._print(json.dumps(output, indent=2, sort_keys=True))
        return output

    def wait_deleted(self, path: str) -> None:
        self.client.wait_until_deleted(path)
        self._print(f"{path} deleted")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(description="Keeper coordination service shell")
    parser.add_argument("--hosts", help="Comma-separated host:port list")
    parser.add_argument(
        "--driver",
        choices=[backend.value for backend in DriverBackend],
        help="Driver backend",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ls_parser = subparsers.add_parser("ls", help="List children")
    ls_parser.add_argument("path")

    get_parser = subparsers.add_parser("get", help="Print node data")
    get_parser.add_argument("path")

    set_parser = subparsers.add_parser("set", help="Write node data")
    set_parser.add_argument("path")
    set_parser.add_argument("data")
    set_parser.add_argument("--version", type=int, default=-1, help="Expected version")

    create_parser = subparsers.add_parser("create", help="Create a node")
    create_parser.add_argument("path")
    create_parser.add_argument("data", nargs="?", default="")
    create_parser.add_argument(
        "--mode",
        choices=[mode.value for mode in CreateMode],
        default=CreateMode.PERSISTENT.value,
        help="Create mode",
    )

    rm_parser = subparsers.add_parser("rm", help="Delete a node")
    rm_parser.add_argument("path")
    rm_parser.add_argument("-r", "--recursive", action="store_true", help="Delete the subtree")

    mkdir_parser = subparsers.add_parser("mkdir", help="Create a node and its ancestors")
    mkdir_parser.add_argument("path")

    stat_parser = subparsers.add_parser("stat", help="Print node metadata")
    stat_parser.add_argument("path")

    wait_parser = subparsers.add_parser("wait-deleted", help="Block until a node is deleted")
    wait_parser.add_argument("path")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point for keeper-cli."""
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.hosts:
        overrides["hosts"] = args.hosts
    if args.driver:
        overrides["driver"] = DriverBackend(args.driver)
    settings = KeeperSettings(**overrides)
    setup_logging(settings)

    try:
        with KeeperClient.from_settings(settings) as client:
            cli = KeeperCLI(client)
            if args.command == "ls":
                cli.ls(args.path)
            elif args.command == "get":
                cli.get(args.path)
            elif args.command == "set":
                cli.set(args.path, args.data, version=args.version)
            elif args.command == "create":
                cli.create(args.path, args.data, mode=args.mode)
            elif args.command == "rm":
                cli.rm(args.path, recursive=args.recursive)
            elif args.command == "mkdir":
                cli.mkdir(args.path)
            elif args.command == "stat":
                cli.stat(args.path)
            elif args.command == "wait-deleted":
                cli.wait_deleted(args.path)
    except (KeeperError, ValueError) as e:
        logger.debug("Command failed", extra={"command": args.command}, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
