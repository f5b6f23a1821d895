from __future__ import annotations

from typing import Any


class ConsoleStreamError(RuntimeError):
    code = "console_stream_error"

    def __init__(self, message: str, *, detail: Any = None):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload


class DecodeRejection(ConsoleStreamError):
    """Envelope is malformed or not console output. Callers drop it."""

    code = "decode_rejected"


class AuthorizationError(ConsoleStreamError):
    code = "authorization_failed"

    def __init__(self, message: str, *, status_code: int | None = None, detail: Any = None):
        self.status_code = status_code
        super().__init__(message, detail=detail)


class TransportError(ConsoleStreamError):
    code = "transport_error"


class NetworkError(ConsoleStreamError):
    code = "network_error"

    def __init__(self, message: str, *, status_code: int | None = None, detail: Any = None):
        self.status_code = status_code
        super().__init__(message, detail=detail)
