from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ForbiddenError(AppError):
    pass


class ConflictError(AppError):
    pass


class ValidationError(AppError):
    pass


class StoreError(AppError):
    """Backend conversation store unreachable or answered with a server error."""


class MalformedPayloadError(StoreError):
    pass


class SendFailedError(AppError):
    def __init__(self, detail: str = "", *, temp_id: str = "") -> None:
        super().__init__(detail)
        self.temp_id = temp_id


class SendTimeoutError(SendFailedError):
    pass


class SessionClosedError(AppError):
    pass


class ChannelError(AppError):
    """Realtime transport failure."""
