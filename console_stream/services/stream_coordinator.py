from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Coroutine, Any, Tuple

from console_stream.config import config
from console_stream.errors import AuthorizationError, NetworkError
from console_stream.models import ConnectionStatus, LogLine, StreamSnapshot
from console_stream.runtime.contracts import AuthorizationOracle, BackfillFetcher
from console_stream.runtime.merger import merge
from console_stream.runtime.statechart import StatusMachine, StreamEvent, close_event_for_code
from console_stream.services.live_subscriber import ChannelHandle, LiveSubscriber

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[StreamSnapshot], None]


@dataclass(eq=False)
class StreamSession:
    resource_key: str
    generation: int
    authorized: bool
    machine: StatusMachine = field(default_factory=StatusMachine)
    log: Tuple[LogLine, ...] = ()
    pending_pages: int = 0
    channel: ChannelHandle | None = None
    tasks: set[asyncio.Task] = field(default_factory=set)


class _SessionChannelListener:
    """Routes channel callbacks to the coordinator, stamped with a generation."""

    def __init__(self, coordinator: "StreamCoordinator", generation: int) -> None:
        self._coordinator = coordinator
        self._generation = generation

    def on_open(self) -> None:
        self._coordinator._handle_channel_event(self._generation, StreamEvent.CHANNEL_OPENED)

    def on_line(self, line: LogLine) -> None:
        self._coordinator._handle_channel_line(self._generation, line)

    def on_close(self, code: int | None) -> None:
        event = close_event_for_code(code, int(config.STREAM.NORMAL_CLOSURE_CODE))
        logger.info("Console channel closed with code %s", code)
        self._coordinator._handle_channel_event(self._generation, event)

    def on_error(self, error: BaseException) -> None:
        self._coordinator._handle_channel_event(self._generation, StreamEvent.CHANNEL_TRANSPORT_ERROR)


class StreamCoordinator:
    """
    Owns the canonical console log of one observed instance.

    `observe` binds the coordinator to a resource key. Each binding is a
    session with its own generation number; the live channel and every
    backfill request carry that generation, and results from an older
    generation are dropped instead of merged.

    Behavior:
    - Opens the push channel and the initial backfill concurrently.
    - Merges both sources into one log, strictly ascending by snowflake id.
    - Drives the status machine from whichever source settles first.
    - Tears the session down when the key or the authorization answer changes.
    """

    def __init__(
        self,
        *,
        fetcher: BackfillFetcher,
        subscriber: LiveSubscriber,
        can_access: AuthorizationOracle,
        capability: str | None = None,
        initial_page_size: int | None = None,
        page_size: int | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._subscriber = subscriber
        self._can_access = can_access
        self._capability = capability or config.STREAM.CAPABILITY
        self._initial_page_size = int(initial_page_size or config.STREAM.INITIAL_PAGE_SIZE)
        self._page_size = int(page_size or config.STREAM.PAGE_SIZE)
        self._session: StreamSession | None = None
        self._generation = 0
        self._listeners: list[SnapshotListener] = []
        self._lock = asyncio.Lock()

    @property
    def session(self) -> StreamSession | None:
        return self._session

    @property
    def status(self) -> ConnectionStatus:
        if self._session is None:
            return ConnectionStatus.LOADING
        return self._session.machine.state

    @property
    def log(self) -> Tuple[LogLine, ...]:
        return self._session.log if self._session is not None else ()

    def snapshot(self) -> StreamSnapshot:
        session = self._session
        if session is None:
            return StreamSnapshot(resource_key=None, generation=self._generation, status=self.status)
        return StreamSnapshot(
            resource_key=session.resource_key,
            generation=session.generation,
            status=session.machine.state,
            log=session.log,
            pending_pages=session.pending_pages,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def observe(self, resource_key: str) -> StreamSnapshot:
        async with self._lock:
            return await self._observe_unlocked(resource_key)

    async def _observe_unlocked(self, resource_key: str) -> StreamSnapshot:
        authorized = bool(self._can_access(self._capability, resource_key))
        session = self._session
        if (
            session is not None
            and session.resource_key == resource_key
            and session.authorized == authorized
        ):
            return self.snapshot()

        await self._teardown()
        self._generation += 1
        session = StreamSession(
            resource_key=resource_key,
            generation=self._generation,
            authorized=authorized,
        )
        self._session = session
        if not authorized:
            logger.info("Console access to %s denied", resource_key)
            self._notify()
            return self.snapshot()

        session.machine.apply(StreamEvent.SESSION_STARTED)
        logger.info("Observing console of %s (generation %s)", resource_key, session.generation)
        session.channel = await self._subscriber.open(
            resource_key,
            _SessionChannelListener(self, session.generation),
        )
        self._spawn(session, self._initial_backfill(session))
        self._notify()
        return self.snapshot()

    async def refresh_authorization(self) -> StreamSnapshot:
        """Re-ask the oracle for the current key; restart the session on change."""
        session = self._session
        if session is None:
            return self.snapshot()
        return await self.observe(session.resource_key)

    async def fetch_older_page(self, before_id: int | None = None, count: int | None = None) -> int:
        """
        Load lines older than `before_id` (default: the oldest loaded line).

        Returns the number of lines added to the log; 0 when the session
        changed while the request was in flight. NetworkError and
        AuthorizationError propagate to the caller.
        """
        session = self._session
        if session is None or not session.authorized:
            return 0
        if before_id is None and session.log:
            before_id = session.log[0].id
        page_size = int(count or self._page_size)

        try:
            lines = await self._fetch_tracked(session, before_id, page_size)
        except AuthorizationError:
            if self._is_current(session):
                await self._revoke(session)
            else:
                self._notify_owner(session)
            raise
        except NetworkError:
            self._notify_owner(session)
            raise

        if not self._is_current(session):
            logger.debug("Discarded stale page for %s", session.resource_key)
            self._notify_owner(session)
            return 0
        before = len(session.log)
        session.log = merge(session.log, lines)
        self._notify()
        return len(session.log) - before

    def request_older_page(
        self,
        before_id: int | None = None,
        count: int | None = None,
    ) -> asyncio.Task | None:
        """Fire-and-forget form of `fetch_older_page`, cancelled on teardown."""
        session = self._session
        if session is None or not session.authorized:
            return None
        return self._spawn(session, self._fetch_older_page_logged(before_id, count))

    async def close(self) -> None:
        async with self._lock:
            await self._teardown()
            self._session = None

    async def _fetch_tracked(
        self,
        session: StreamSession,
        before_id: int | None,
        page_size: int,
    ) -> list[LogLine]:
        session.pending_pages += 1
        self._notify()
        try:
            return await self._fetcher.fetch_page(session.resource_key, before_id, page_size)
        finally:
            session.pending_pages -= 1

    async def _fetch_older_page_logged(self, before_id: int | None, count: int | None) -> int:
        try:
            return await self.fetch_older_page(before_id, count)
        except (NetworkError, AuthorizationError) as exc:
            logger.warning("Console page request failed: %s", exc)
            return 0

    async def _initial_backfill(self, session: StreamSession) -> None:
        try:
            lines = await self._fetcher.fetch_page(
                session.resource_key,
                None,
                self._initial_page_size,
            )
        except AuthorizationError as exc:
            logger.warning("Console history of %s refused: %s", session.resource_key, exc)
            if self._is_current(session):
                await self._revoke(session)
            return
        except NetworkError as exc:
            logger.warning("Console history of %s unavailable: %s", session.resource_key, exc)
            return

        if not self._is_current(session):
            logger.debug("Discarded stale history for %s", session.resource_key)
            return
        session.log = merge(session.log, lines)
        session.machine.apply(StreamEvent.BACKFILL_SUCCEEDED)
        self._notify()

    async def _revoke(self, session: StreamSession) -> None:
        # observe() treats the next positive oracle answer as a change and restarts
        session.authorized = False
        session.machine.apply(StreamEvent.AUTH_REVOKED)
        channel = session.channel
        session.channel = None
        if channel is not None:
            await self._subscriber.close(channel)
        self._notify()

    def _handle_channel_event(self, generation: int, event: str) -> None:
        session = self._session
        if session is None or session.generation != generation:
            return
        if session.machine.apply(event):
            self._notify()

    def _handle_channel_line(self, generation: int, line: LogLine) -> None:
        session = self._session
        if session is None or session.generation != generation:
            return
        merged = merge(session.log, (line,))
        if merged is session.log:
            return
        session.log = merged
        self._notify()

    def _is_current(self, session: StreamSession) -> bool:
        return self._session is session and session.authorized

    def _notify_owner(self, session: StreamSession) -> None:
        # A revoked session is still the one subscribers see
        if self._session is session:
            self._notify()

    def _spawn(self, session: StreamSession, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        session.tasks.add(task)
        task.add_done_callback(session.tasks.discard)
        return task

    async def _teardown(self) -> None:
        session = self._session
        if session is None:
            return
        current = asyncio.current_task()
        pending = [task for task in session.tasks if task is not current and not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
        session.tasks.clear()
        channel = session.channel
        session.channel = None
        if channel is not None:
            await self._subscriber.close(channel)
        logger.info("Stopped observing console of %s", session.resource_key)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Console snapshot listener failed")
