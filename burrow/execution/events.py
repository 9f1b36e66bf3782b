# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""In-process fan-out of persisted log lines to live observers."""
import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from loguru import logger

from burrow.models import LogLine, WorkloadType


LogSubscriber = Callable[[LogLine], None | Awaitable[None]]


@dataclass(frozen=True)
class _Subscription:
    callback: LogSubscriber
    workload_type: WorkloadType | None = None
    workload_id: int | None = None
    session_id: int | None = None

    def matches(self, line: LogLine) -> bool:
        if self.workload_type is not None and line.workload_type != self.workload_type:
            return False
        if self.workload_id is not None and line.workload_id != self.workload_id:
            return False
        if self.session_id is not None and line.session_id != self.session_id:
            return False
        return True


class LogBus:
    """Pub/sub bus for log lines, keyed by workload and session.

    Lines are published after they are persisted, so subscribers see them
    in line-number order. Exceptions in subscribers are logged but don't
    prevent other subscribers from receiving the line.

    Coroutine subscribers are scheduled as tasks; call :meth:`cleanup` to
    wait for them.
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []
        self._tasks: set[asyncio.Task[None]] = set()

    def subscribe(
        self,
        callback: LogSubscriber,
        *,
        workload_type: WorkloadType | None = None,
        workload_id: int | None = None,
        session_id: int | None = None,
    ) -> None:
        """Subscribe to lines, optionally filtered to one workload or session.

        Args:
            callback: Called with each matching line.
            workload_type: Only lines for this kind of workload.
            workload_id: Only lines for this workload.
            session_id: Only lines for this AI session.
        """
        self._subscriptions.append(
            _Subscription(callback, workload_type, workload_id, session_id)
        )

    def unsubscribe(self, callback: LogSubscriber) -> None:
        for subscription in [s for s in self._subscriptions if s.callback is callback]:
            with contextlib.suppress(ValueError):
                self._subscriptions.remove(subscription)

    def _handle_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                logger.error(
                    "Async log subscriber failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

    def publish(self, line: LogLine) -> None:
        """Deliver a line to every matching subscriber in registration order."""
        for subscription in self._subscriptions:
            if not subscription.matches(line):
                continue
            callback = subscription.callback
            try:
                result = callback(line)
            except Exception as exc:
                logger.exception(
                    "Log subscriber raised exception",
                    callback=getattr(callback, "__name__", repr(callback)),
                    execution_id=line.execution_id,
                    error=str(exc),
                )
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._handle_task_done)

    async def cleanup(self) -> None:
        """Wait for scheduled coroutine subscribers to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()
