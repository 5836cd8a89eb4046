"""
Saga-scoped correlation and cancellation.

One SagaContext is created per consumed message and passed explicitly down
the call chain. Its ids are merged into every log record emitted for the
saga, and its cancellation signal interrupts fetch loops, sleeps and network calls.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional, TypeVar

from apps.ingestor.errors import SagaCancelledError

T = TypeVar("T")


@dataclass
class SagaContext:
    saga_id: str
    app_id: str = ""
    message_id: Optional[str] = None
    trace_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    _cancelled: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    cancel_reason: Optional[str] = None

    def log_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {"saga_id": self.saga_id, "trace_id": self.trace_id}
        if self.app_id:
            fields["app_id"] = self.app_id
        if self.message_id:
            fields["message_id"] = self.message_id
        return fields

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled.is_set():
            self.cancel_reason = reason
            self._cancelled.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise SagaCancelledError(f"saga {self.saga_id} cancelled: {self.cancel_reason}")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the saga is cancelled first.

        On cancellation the pending operation is cancelled and
        SagaCancelledError is raised, so network waits end with the saga.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        operation = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait({operation, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not operation.done():
                operation.cancel()
                await asyncio.gather(operation, return_exceptions=True)

        if operation.cancelled():
            self.raise_if_cancelled()
        return operation.result()

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, waking early with SagaCancelledError on cancellation."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()
