"""Cancellation handles: one cancel token per live operation kind."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Optional, TypeVar

from .errors import AbortedByUser
from .models import OperationKind
from .utils import new_id

log = logging.getLogger(__name__)

T = TypeVar("T")

USER_CANCEL_REASON = "cancelled by user"
SUPERSEDED_REASON = "superseded by a newer operation"


class CancelToken:
    """Cooperative cancellation flag for one operation.

    Stages poll it at their boundaries; inference calls race against it
    through :meth:`guard`. A deadline is just another source that calls
    :meth:`cancel`.
    """

    def __init__(self, operation_id: str, kind: OperationKind) -> None:
        self.operation_id = operation_id
        self.kind = kind
        self.reason: Optional[str] = None
        self._event = asyncio.Event()
        self._timer: Optional[asyncio.TimerHandle] = None

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "live"
        return f"<CancelToken {self.operation_id} {self.kind.value} {state}>"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = USER_CANCEL_REASON) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        self._clear_timer()
        log.info("Operation %s (%s) cancelled: %s", self.operation_id, self.kind.value, reason)

    def raise_if_cancelled(self, context: str = "operation") -> None:
        if self.cancelled:
            log.debug("Cancellation observed at %s (%s)", context, self.operation_id)
            raise AbortedByUser(self.reason or USER_CANCEL_REASON)

    async def wait(self) -> None:
        await self._event.wait()

    def add_deadline(self, seconds: float) -> None:
        """Cancel the token after *seconds* unless it finishes first.

        Must be called from inside the running event loop.
        """
        loop = asyncio.get_running_loop()
        self._clear_timer()
        self._timer = loop.call_later(
            seconds, self.cancel, f"deadline of {seconds:g}s exceeded"
        )

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable*, aborting it with AbortedByUser if the token fires.

        If the call completes in the same loop iteration as the cancel, its
        result is returned; callers re-check the token afterwards. An
        unstarted coroutine is closed when the token has already fired.
        """
        if self.cancelled and inspect.iscoroutine(awaitable):
            awaitable.close()
        self.raise_if_cancelled("before call")
        task: asyncio.Future[Any] = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _pending = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            log.debug("Aborted call for %s ended with %r", self.operation_id, exc)
        raise AbortedByUser(self.reason or USER_CANCEL_REASON)

    def dispose(self) -> None:
        self._clear_timer()

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class AbortCoordinator:
    """Issues and tracks cancel tokens; at most one live token per kind."""

    def __init__(self) -> None:
        self._live: dict[OperationKind, CancelToken] = {}
        self._by_id: dict[str, CancelToken] = {}

    def begin_operation(self, kind: OperationKind) -> tuple[str, CancelToken]:
        """Issue a token for a new operation, cancelling any live one of *kind*."""
        previous = self._live.get(kind)
        if previous is not None:
            previous.cancel(SUPERSEDED_REASON)
        operation_id = new_id("op")
        token = CancelToken(operation_id, kind)
        self._live[kind] = token
        self._by_id[operation_id] = token
        log.debug("Began %s operation %s", kind.value, operation_id)
        return operation_id, token

    def cancel(self, operation_id: str, reason: str = USER_CANCEL_REASON) -> bool:
        token = self._by_id.get(operation_id)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def cancel_kind(self, kind: OperationKind, reason: str = USER_CANCEL_REASON) -> bool:
        token = self._live.get(kind)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def is_cancelled(self, token: CancelToken) -> bool:
        return token.cancelled

    def active(self, kind: OperationKind) -> Optional[CancelToken]:
        return self._live.get(kind)

    def release(self, operation_id: str) -> None:
        """Forget the token of a finished operation."""
        token = self._by_id.pop(operation_id, None)
        if token is None:
            return
        token.dispose()
        if self._live.get(token.kind) is token:
            del self._live[token.kind]
