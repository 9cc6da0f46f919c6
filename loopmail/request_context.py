from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Protocol


class ErrorSink(Protocol):
    """What the dispatcher needs from whoever is handling the in-flight request."""
    def error(self, exc: BaseException) -> None: ...
    def abort_with_error(self, status_code: int, message: str) -> None: ...


@dataclass
class Abort:
    status_code: int
    message: str


@dataclass
class RequestContext:
    """
    Per-request error collector.
    `errors` keeps the underlying exceptions for server-side diagnostics;
    `abort` is the response the client should get instead of the handler's own.
    Only the first abort sticks.
    """
    errors: List[BaseException] = field(default_factory=list)
    abort: Optional[Abort] = None

    def error(self, exc: BaseException) -> None:
        self.errors.append(exc)

    def abort_with_error(self, status_code: int, message: str) -> None:
        if self.abort is None:
            self.abort = Abort(status_code=status_code, message=message)

    @property
    def aborted(self) -> bool:
        return self.abort is not None


class NullContext:
    """For callers without a request (CLI, scripts)."""
    def error(self, exc: BaseException) -> None:
        pass

    def abort_with_error(self, status_code: int, message: str) -> None:
        pass
