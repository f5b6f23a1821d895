import json

import httpx
import pytest

from console_stream.errors import AuthorizationError, NetworkError
from console_stream.services.console_api import ConsoleApiClient
from tests.common.stream_fakes import ids, make_envelope

BASE_URL = "http://console.test/api/v1"


def _client(handler, token="secret") -> ConsoleApiClient:
    return ConsoleApiClient(BASE_URL, token=token, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetch_page_requests_latest_lines():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(
            200,
            json=[
                make_envelope(7),
                make_envelope(5),
                make_envelope(8, outer_kind="UserEvent"),
                make_envelope(6),
            ],
        )

    lines = await _client(handler).fetch_page("inst-1", page_size=3)

    assert ids(lines) == [5, 6, 7]
    request = seen["request"]
    assert request.method == "GET"
    assert request.url.path == "/api/v1/instance/inst-1/console/buffer"
    assert request.url.params["count"] == "3"
    assert "before" not in request.url.params
    assert request.headers["authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_fetch_page_before_id_keeps_newest_strictly_older_lines():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=[make_envelope(n) for n in (1, 2, 3, 4, 5, 6)])

    lines = await _client(handler).fetch_page("inst-1", before_id=5, page_size=2)

    assert ids(lines) == [3, 4]
    assert seen["params"] == {"count": "2", "before": "5"}


@pytest.mark.asyncio
async def test_fetch_page_without_token_sends_no_authorization_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        return httpx.Response(200, json=[])

    assert await _client(handler, token="").fetch_page("inst-1") == []
    assert "authorization" not in seen["headers"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [401, 403])
async def test_fetch_page_refusal_raises_authorization_error(status_code):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"detail": "nope"})

    with pytest.raises(AuthorizationError) as exc_info:
        await _client(handler).fetch_page("inst-1")
    assert exc_info.value.status_code == status_code
    assert exc_info.value.detail == "nope"


@pytest.mark.asyncio
async def test_fetch_page_server_error_raises_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(NetworkError) as exc_info:
        await _client(handler).fetch_page("inst-1")
    assert exc_info.value.status_code == 502
    assert exc_info.value.detail == "bad gateway"


@pytest.mark.asyncio
async def test_fetch_page_connection_failure_raises_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        await _client(handler).fetch_page("inst-1")


@pytest.mark.asyncio
async def test_fetch_page_rejects_non_array_payload():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"lines": []})

    with pytest.raises(NetworkError):
        await _client(handler).fetch_page("inst-1")


@pytest.mark.asyncio
async def test_send_command_posts_json_string():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200)

    await _client(handler).send_command("inst-1", "say hello")

    request = seen["request"]
    assert request.method == "POST"
    assert request.url.path == "/api/v1/instance/inst-1/console"
    assert json.loads(request.content) == "say hello"
    assert request.headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_fetch_page_skips_envelopes_with_unparseable_snowflakes():
    bad = make_envelope(4)
    del bad["snowflake"]
    bad["snowflake_str"] = "٣"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[make_envelope(3), bad, make_envelope(5)])

    assert ids(await _client(handler).fetch_page("inst-1")) == [3, 5]
