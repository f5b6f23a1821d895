from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from typing import Sequence, TextIO

from .config import config
from .errors import ConsoleStreamError
from .logging_config import setup_logging
from .models import ConnectionStatus, StreamSnapshot
from .services.console_api import ConsoleApiClient
from .services.live_subscriber import LiveSubscriber
from .services.stream_coordinator import StreamCoordinator

STOP_STATUSES = {
    ConnectionStatus.CLOSED,
    ConnectionStatus.ERROR,
    ConnectionStatus.NO_PERMISSION,
}
SETTLED_STATUSES = STOP_STATUSES | {
    ConnectionStatus.BUFFERED,
    ConnectionStatus.LIVE,
    ConnectionStatus.LIVE_NO_BUFFER,
}
EXIT_CODES = {
    ConnectionStatus.CLOSED: 0,
    ConnectionStatus.ERROR: 1,
    ConnectionStatus.NO_PERMISSION: 2,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="console-stream",
        description="Tail and drive the console of a game server instance",
    )
    parser.add_argument("--base-url", default=config.STREAM.BASE_URL, help="REST API root")
    parser.add_argument("--ws-base-url", default=config.STREAM.WS_BASE_URL, help="Push channel root")
    parser.add_argument("--token", default=config.STREAM.TOKEN, help="Bearer token")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More diagnostics on stderr")
    parser.add_argument("--log-file", default=None, help="Also write diagnostics to a rotating file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    tail = subparsers.add_parser("tail", help="Follow the console of an instance")
    tail.add_argument("instance", help="Instance uuid")
    tail.add_argument(
        "--history",
        type=int,
        default=int(config.STREAM.INITIAL_PAGE_SIZE),
        help="Lines of history to load before following",
    )
    tail.add_argument(
        "--pages",
        type=int,
        default=0,
        help="Additional older pages to load once history has arrived",
    )

    send = subparsers.add_parser("send", help="Send a console command to an instance")
    send.add_argument("instance", help="Instance uuid")
    send.add_argument("words", nargs=argparse.REMAINDER, help="Command text")
    return parser


def _format_timestamp(timestamp_ms: int) -> str:
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M:%S")


class SnapshotPrinter:
    """Prints lines not shown yet and every status change."""

    def __init__(self, out: TextIO, err: TextIO) -> None:
        self._out = out
        self._err = err
        self._printed: set[int] = set()
        self._status: ConnectionStatus | None = None

    def render(self, snapshot: StreamSnapshot) -> None:
        if snapshot.status is not self._status:
            self._status = snapshot.status
            print(f"[{snapshot.status.value}] {snapshot.status_message}", file=self._err)
        for line in snapshot.log:
            if line.id in self._printed:
                continue
            self._printed.add(line.id)
            print(f"{_format_timestamp(line.timestamp)} {line.message}", file=self._out)
        self._out.flush()


async def _tail(args: argparse.Namespace) -> int:
    coordinator = StreamCoordinator(
        fetcher=ConsoleApiClient(args.base_url, token=args.token),
        subscriber=LiveSubscriber(args.ws_base_url, token=args.token),
        # Access is decided by the server; a refusal surfaces as no-permission
        can_access=lambda capability, resource_key: True,
        initial_page_size=max(1, args.history),
    )
    printer = SnapshotPrinter(sys.stdout, sys.stderr)
    settled = asyncio.Event()
    stopped = asyncio.Event()

    def _on_snapshot(snapshot: StreamSnapshot) -> None:
        printer.render(snapshot)
        if snapshot.status in SETTLED_STATUSES:
            settled.set()
        if snapshot.status in STOP_STATUSES:
            stopped.set()

    coordinator.subscribe(_on_snapshot)
    try:
        await coordinator.observe(args.instance)
        await settled.wait()
        for _ in range(max(0, args.pages)):
            if stopped.is_set() or await coordinator.fetch_older_page() == 0:
                break
        await stopped.wait()
        return EXIT_CODES.get(coordinator.status, 1)
    finally:
        await coordinator.close()


async def _send(args: argparse.Namespace) -> int:
    command = " ".join(args.words).strip()
    if not command:
        print("Empty command", file=sys.stderr)
        return 2
    await ConsoleApiClient(args.base_url, token=args.token).send_command(args.instance, command)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    argv_list = list(sys.argv[1:] if argv is None else argv)
    parsed = _build_parser().parse_args(argv_list)
    setup_logging(parsed.verbose, parsed.log_file)
    handler = _tail if parsed.command == "tail" else _send
    try:
        return asyncio.run(handler(parsed))
    except ConsoleStreamError as exc:
        print(json.dumps(exc.to_payload(), ensure_ascii=False, indent=2, default=str), file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
