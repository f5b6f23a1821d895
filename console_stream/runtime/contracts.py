from __future__ import annotations

from typing import Protocol, Sequence

from console_stream.models import LogLine


class BackfillFetcher(Protocol):
    async def fetch_page(
        self,
        resource_key: str,
        before_id: int | None = None,
        page_size: int = 40,
    ) -> Sequence[LogLine]:
        ...


class ChannelListener(Protocol):
    def on_open(self) -> None:
        ...

    def on_line(self, line: LogLine) -> None:
        ...

    def on_close(self, code: int | None) -> None:
        ...

    def on_error(self, error: BaseException) -> None:
        ...


class AuthorizationOracle(Protocol):
    def __call__(self, capability: str, resource_key: str) -> bool:
        ...
