from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from console_stream.config import config
from console_stream.errors import AuthorizationError, NetworkError
from console_stream.models import LogLine
from console_stream.runtime.decoder import decode_or_none

logger = logging.getLogger(__name__)

AUTH_FAILURE_STATUSES = {401, 403}


class ConsoleApiClient:
    """
    Request/response side of an instance console.

    `fetch_page` is the backfill source of a stream session; `send_command`
    submits console input and is not used by the stream itself.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url or config.STREAM.BASE_URL).rstrip("/")
        self._token = config.STREAM.TOKEN if token is None else token
        self._transport = transport

    async def fetch_page(
        self,
        resource_key: str,
        before_id: int | None = None,
        page_size: int = 40,
    ) -> list[LogLine]:
        """
        Fetch up to `page_size` console lines, oldest first.

        Without `before_id` the most recent lines are returned; with it, only
        lines strictly older than `before_id`.
        """
        params: dict[str, Any] = {"count": page_size}
        if before_id is not None:
            params["before"] = str(before_id)
        payload = await self._request_json(
            "GET",
            f"/instance/{resource_key}/console/buffer",
            params=params,
            timeout=None,
        )
        if not isinstance(payload, list):
            raise NetworkError("Console buffer returned non-array payload", detail=payload)

        lines = [line for line in (decode_or_none(item) for item in payload) if line is not None]
        if len(lines) < len(payload):
            logger.debug(
                "Skipped %s non-console envelopes in buffer of %s",
                len(payload) - len(lines),
                resource_key,
            )
        lines.sort(key=lambda line: line.id)
        if before_id is not None:
            lines = [line for line in lines if line.id < before_id]
        if page_size >= 0 and len(lines) > page_size:
            lines = lines[len(lines) - page_size:]
        return lines

    async def send_command(self, resource_key: str, command: str) -> None:
        await self._request_json(
            "POST",
            f"/instance/{resource_key}/console",
            content=json.dumps(command),
            timeout=float(config.STREAM.COMMAND_TIMEOUT_SEC),
        )

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        content: str | None = None,
        timeout: float | None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    params=params,
                    content=content,
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        if response.status_code in AUTH_FAILURE_STATUSES:
            raise AuthorizationError(
                f"{method} {path} was refused",
                status_code=response.status_code,
                detail=_extract_error_detail(response),
            )
        if response.status_code >= 400:
            raise NetworkError(
                f"{method} {path} failed with {response.status_code}",
                status_code=response.status_code,
                detail=_extract_error_detail(response),
            )
        if not response.content:
            return None
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise NetworkError(f"{method} {path} returned invalid JSON", detail=response.text) from exc


def _extract_error_detail(response: httpx.Response) -> Any:
    try:
        payload = response.json()
    except json.JSONDecodeError:
        return response.text
    if isinstance(payload, dict):
        detail = payload.get("detail")
        return detail if detail is not None else payload
    return payload
