"""Queue for authorized calls that arrive while no usable token is available."""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from spid_client.oauth2.exceptions import (
    NotAuthorizedError,
    OAuth2Error,
    PendingQueueFullError,
)
from spid_client.oauth2.manager import TokenLifecycleManager
from spid_client.oauth2.models import AccessToken, LifecycleState, PendingOperation

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestQueueCoordinator:
    """
    Runs operations that need an access token, buffering them while one is
    being obtained.

    With a valid token an operation is dispatched at once. Otherwise it is
    appended to a FIFO queue and, when nothing is already underway, the
    manager is asked to start recovering a token. When the exchange settles
    the queue is drained as a whole: every operation is dispatched in arrival
    order on success, or failed with the same error instance on failure.

    Queue changes happen under the manager's lock, so an operation arriving
    during a drain is evaluated against the state the drain left behind.
    """

    def __init__(self, manager: TokenLifecycleManager, max_pending: int | None = None):
        """
        Initialize coordinator.

        Args:
            manager: Token lifecycle manager providing the token and lock
            max_pending: Upper bound on buffered operations (None: unbounded)
        """
        self.manager = manager
        self.max_pending = max_pending
        self._queue: deque[PendingOperation] = deque()
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self._unsubscribe = manager.subscribe(self._on_settled)

    @property
    def lock(self):
        return self.manager.lock

    @property
    def pending_count(self) -> int:
        with self.lock:
            return len(self._queue)

    def run_authorized(
        self, operation: Callable[[AccessToken], Awaitable[T]]
    ) -> asyncio.Future:
        """
        Run operation with a valid access token.

        Must be called from the event loop thread. Never blocks.

        Args:
            operation: Coroutine function receiving the token to use

        Returns:
            Future resolving with the operation's result, or failing with the
            operation's exception or an OAuth2Error
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        pending = PendingOperation(
            operation=operation, future=future, enqueued_at=self.manager._now()
        )

        with self.lock:
            if self._closed:
                future.set_exception(NotAuthorizedError("Client is closed"))
                return future

            state = self.manager.state
            if state is LifecycleState.AUTHORIZED:
                self._dispatch(pending, self.manager.current_token())
                return future

            if self.max_pending is not None and len(self._queue) >= self.max_pending:
                future.set_exception(
                    PendingQueueFullError(
                        f"{len(self._queue)} operations already waiting for a token",
                        context={"max_pending": self.max_pending},
                    )
                )
                return future

            if state is not LifecycleState.REFRESHING and not self.manager.awaiting_login:
                try:
                    flight = self.manager.start_recovery()
                except OAuth2Error as e:
                    future.set_exception(e)
                    return future
                if flight is None:
                    future.set_exception(
                        NotAuthorizedError("No access token and no way to obtain one; log in first")
                    )
                    return future

            self._queue.append(pending)
            queued = len(self._queue)

        logger.debug(
            f"Queued authorized operation ({queued} pending)",
            extra={"pending_count": queued, "lifecycle_state": state.value},
        )
        return future

    def _on_settled(self, token: AccessToken | None, error: OAuth2Error | None) -> None:
        # Called by the manager with the lock held
        batch, self._queue = self._queue, deque()
        if not batch:
            return

        if error is None and token is not None:
            logger.debug(
                f"Dispatching {len(batch)} queued operations",
                extra={"pending_count": len(batch)},
            )
            for pending in batch:
                self._dispatch(pending, token)
            return

        if error is None:
            error = NotAuthorizedError("No access token available")
        logger.info(
            f"Failing {len(batch)} queued operations: {error}",
            extra={"pending_count": len(batch)},
        )
        for pending in batch:
            if not pending.future.done():
                pending.future.set_exception(error)

    def _dispatch(self, pending: PendingOperation, token: AccessToken) -> None:
        if pending.future.done():
            # Cancelled by the caller while queued
            return
        task = asyncio.get_running_loop().create_task(self._execute(pending, token))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        pending.future.add_done_callback(lambda f: task.cancel() if f.cancelled() else None)

    async def _execute(self, pending: PendingOperation, token: AccessToken) -> None:
        future = pending.future
        if future.done():
            return
        try:
            result: Any = await pending.operation(token)
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)

    async def close(self) -> None:
        """Fail queued operations and cancel running ones."""
        error = NotAuthorizedError("Client is closed")
        with self.lock:
            self._closed = True
            batch, self._queue = self._queue, deque()
            for pending in batch:
                if not pending.future.done():
                    pending.future.set_exception(error)
            tasks = list(self._tasks)
        self._unsubscribe()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("RequestQueueCoordinator closed")


__all__ = ["RequestQueueCoordinator"]
