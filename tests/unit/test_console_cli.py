import io

import pytest

from console_stream import cli
from console_stream.core_config import _ws_url_from_http
from console_stream.errors import AuthorizationError, NetworkError
from console_stream.models import ConnectionStatus, StreamSnapshot
from tests.common.stream_fakes import FakeConnector, FakeFetcher, make_line, wait_until


def test_snapshot_printer_prints_new_lines_and_status_changes():
    out, err = io.StringIO(), io.StringIO()
    printer = cli.SnapshotPrinter(out, err)
    first_line = make_line((1_700_000_000_000 << 22) | 1, "Starting server")
    second_line = make_line((1_700_000_001_000 << 22) | 1, "Done!")

    printer.render(StreamSnapshot("inst-1", 1, ConnectionStatus.LOADING))
    printer.render(StreamSnapshot("inst-1", 1, ConnectionStatus.BUFFERED, (first_line,)))
    printer.render(StreamSnapshot("inst-1", 1, ConnectionStatus.LIVE, (first_line, second_line)))
    printer.render(StreamSnapshot("inst-1", 1, ConnectionStatus.LIVE, (first_line, second_line)))

    assert out.getvalue().splitlines() == [
        "2023-11-14 22:13:20 Starting server",
        "2023-11-14 22:13:21 Done!",
    ]
    assert err.getvalue().splitlines() == [
        "[loading] Loading console...",
        "[buffered] History messages. No live updates",
        "[live] Console is live",
    ]


def test_snapshot_exposes_pagination_cursor():
    snapshot = StreamSnapshot("inst-1", 3, ConnectionStatus.LIVE, (make_line(4), make_line(9)))
    assert snapshot.oldest_id == 4
    assert snapshot.newest_id == 9
    assert len(snapshot) == 2
    empty = StreamSnapshot(None, 0, ConnectionStatus.LOADING)
    assert empty.oldest_id is None and empty.newest_id is None


def test_send_posts_joined_command(monkeypatch):
    sent = []

    async def fake_send(self, resource_key, command):
        sent.append((resource_key, command))

    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli.ConsoleApiClient, "send_command", fake_send)

    assert cli.main(["--token", "t", "send", "inst-1", "say", "hello", "world"]) == 0
    assert sent == [("inst-1", "say hello world")]


def test_send_rejects_empty_command(monkeypatch, capsys):
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    assert cli.main(["send", "inst-1"]) == 2
    assert "Empty command" in capsys.readouterr().err


def test_stream_errors_are_printed_as_payload(monkeypatch, capsys):
    async def failing_send(self, resource_key, command):
        raise NetworkError("POST failed", status_code=500, detail="boom")

    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli.ConsoleApiClient, "send_command", failing_send)

    assert cli.main(["send", "inst-1", "stop"]) == 2
    err = capsys.readouterr().err
    assert '"code": "network_error"' in err
    assert '"detail": "boom"' in err


def test_tail_parser_defaults():
    parsed = cli._build_parser().parse_args(["tail", "inst-1", "--pages", "2"])
    assert parsed.command == "tail"
    assert parsed.instance == "inst-1"
    assert parsed.pages == 2
    assert parsed.history > 0


@pytest.mark.parametrize(
    ("http_url", "ws_url"),
    [
        ("http://127.0.0.1:16662/api/v1", "ws://127.0.0.1:16662/api/v1"),
        ("https://console.example/api/v1", "wss://console.example/api/v1"),
        ("ws://already/ws", "ws://already/ws"),
    ],
)
def test_ws_url_derivation(http_url, ws_url):
    assert _ws_url_from_http(http_url) == ws_url


class _ClosingFetcher(FakeFetcher):
    """Ends the live channel once the older page has been served."""

    def __init__(self, connector: FakeConnector, close_after_before_id: int) -> None:
        super().__init__()
        self._connector = connector
        self._close_after = close_after_before_id

    async def fetch_page(self, resource_key, before_id=None, page_size=40):
        lines = await super().fetch_page(resource_key, before_id, page_size)
        if before_id == self._close_after:
            await wait_until(lambda: self._connector.sockets)
            self._connector.latest.push_line(9, "live line")
            self._connector.latest.end(1000)
        return lines


def _wire_fakes(monkeypatch, fetcher, connector):
    real_subscriber = cli.LiveSubscriber
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli, "ConsoleApiClient", lambda base_url, token=None: fetcher)
    monkeypatch.setattr(
        cli,
        "LiveSubscriber",
        lambda ws_base_url, token=None: real_subscriber(ws_base_url, token=token, connect=connector),
    )


def test_tail_prints_history_older_pages_and_live_lines(monkeypatch, capsys):
    connector = FakeConnector()
    fetcher = _ClosingFetcher(connector, close_after_before_id=5)
    fetcher.set_page(None, [make_line(n) for n in (5, 6, 7)])
    fetcher.set_page(5, [make_line(3), make_line(4)])
    _wire_fakes(monkeypatch, fetcher, connector)

    assert cli.main(["tail", "inst-1", "--history", "3", "--pages", "1"]) == 0

    captured = capsys.readouterr()
    printed = [line.split(" ", 2)[2] for line in captured.out.splitlines()]
    assert sorted(printed) == sorted(["line 3", "line 4", "line 5", "line 6", "line 7", "live line"])
    assert fetcher.calls == [("inst-1", None, 3), ("inst-1", 5, 40)]
    assert "[closed] Console is closed" in captured.err
    assert connector.sockets[0].closed is True


def test_tail_exits_with_no_permission_code_when_refused(monkeypatch, capsys):
    connector = FakeConnector()
    fetcher = FakeFetcher()
    fetcher.set_page(None, AuthorizationError("forbidden", status_code=403))
    _wire_fakes(monkeypatch, fetcher, connector)

    assert cli.main(["tail", "inst-1", "--pages", "2"]) == 2

    assert "[no-permission] No permission to access console" in capsys.readouterr().err
    assert len(fetcher.calls) == 1
