from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode

from websockets.asyncio.client import connect as websockets_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from console_stream.config import config
from console_stream.errors import DecodeRejection, TransportError
from console_stream.runtime.contracts import ChannelListener
from console_stream.runtime.decoder import decode_frame

logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE_CODE = 1006

Connector = Callable[..., Awaitable[Any]]


@dataclass(eq=False)
class ChannelHandle:
    resource_key: str
    url: str
    listener: ChannelListener
    task: asyncio.Task | None = None
    websocket: Any = None
    closed: bool = False


class LiveSubscriber:
    """
    Push side of an instance console.

    Owns at most one channel at a time: opening a new one closes the previous
    handle first. After `close`, a handle never calls its listener again.
    """

    def __init__(
        self,
        ws_base_url: str | None = None,
        *,
        token: str | None = None,
        connect: Connector | None = None,
    ) -> None:
        self._ws_base_url = (ws_base_url or config.STREAM.WS_BASE_URL).rstrip("/")
        self._token = config.STREAM.TOKEN if token is None else token
        self._connect = connect or websockets_connect
        self._current: ChannelHandle | None = None

    @property
    def current(self) -> ChannelHandle | None:
        return self._current

    def channel_url(self, resource_key: str) -> str:
        url = f"{self._ws_base_url}/instance/{resource_key}/console/stream"
        if self._token:
            url = f"{url}?{urlencode({'token': f'Bearer {self._token}'})}"
        return url

    async def open(self, resource_key: str, listener: ChannelListener) -> ChannelHandle:
        if self._current is not None:
            await self.close(self._current)
        handle = ChannelHandle(
            resource_key=resource_key,
            url=self.channel_url(resource_key),
            listener=listener,
        )
        handle.task = asyncio.get_running_loop().create_task(
            self._pump(handle),
            name=f"console-stream:{resource_key}",
        )
        self._current = handle
        logger.info("Opening console channel for %s", resource_key)
        return handle

    async def close(self, handle: ChannelHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        if self._current is handle:
            self._current = None

        task = handle.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task})

        websocket = handle.websocket
        if websocket is not None:
            try:
                await websocket.close()
            except (OSError, WebSocketException) as exc:
                logger.debug("Closing console channel for %s raised %s", handle.resource_key, exc)
        logger.info("Closed console channel for %s", handle.resource_key)

    async def _pump(self, handle: ChannelHandle) -> None:
        try:
            websocket = await self._connect(
                handle.url,
                open_timeout=float(config.STREAM.OPEN_TIMEOUT_SEC),
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            self._report_error(handle, exc)
            return

        handle.websocket = websocket
        if handle.closed:
            await websocket.close()
            return
        self._notify(handle, "on_open")

        try:
            async for frame in websocket:
                self._deliver(handle, frame)
        except ConnectionClosed as exc:
            code = exc.rcvd.code if exc.rcvd is not None else ABNORMAL_CLOSURE_CODE
            self._notify(handle, "on_close", code)
            return
        except (OSError, WebSocketException) as exc:
            self._report_error(handle, exc)
            return
        self._notify(handle, "on_close", getattr(websocket, "close_code", None))

    def _deliver(self, handle: ChannelHandle, frame: str | bytes) -> None:
        try:
            line = decode_frame(frame)
        except DecodeRejection as exc:
            logger.debug("Dropped frame on %s: %s", handle.resource_key, exc.message)
            return
        self._notify(handle, "on_line", line)

    def _report_error(self, handle: ChannelHandle, exc: BaseException) -> None:
        logger.warning("Console channel for %s failed: %s", handle.resource_key, exc)
        error = TransportError(f"console channel failed: {exc}", detail=type(exc).__name__)
        error.__cause__ = exc
        self._notify(handle, "on_error", error)

    def _notify(self, handle: ChannelHandle, callback: str, *args: Any) -> None:
        if handle.closed:
            return
        try:
            getattr(handle.listener, callback)(*args)
        except Exception:
            logger.exception("Console channel listener %s failed for %s", callback, handle.resource_key)
