from __future__ import annotations


class BizzyError(Exception):
    """Base class for errors raised inside the turn pipeline."""


class ValidationError(BizzyError):
    """A required identifier (user id, message) is missing."""


class QuotaExceeded(BizzyError):
    def __init__(self, *, cap: int, used: int, kind: str = "query") -> None:
        super().__init__(f"monthly {kind} cap reached ({used}/{cap})")
        self.cap = int(cap)
        self.used = int(used)
        self.kind = kind


class ProviderError(BizzyError):
    """An external provider (embeddings, web search, language model) failed.

    Components catch this at their boundary and continue in degraded mode.
    """

    def __init__(self, provider: str, message: str, *, status: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status = status


class PersistenceError(BizzyError):
    """A thread/message/memory write failed. Logged and swallowed by the persister."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed{detail}")
        self.operation = operation
        self.cause = cause
