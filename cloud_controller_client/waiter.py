import asyncio
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from cloud_controller_client.models import (
    Cancelled,
    Completed,
    Failed,
    OperationReference,
    OperationState,
    OperationStatus,
    TimedOut,
    WaitOutcome,
    WaitPolicy,
)

PollFn = Callable[[OperationReference], Awaitable[OperationStatus]]

# Remaining budget below this counts as spent
DEADLINE_EPSILON = 0.001


class AsyncOperationWaiter:
    """Waits for a remote long-running operation by polling it with exponential backoff.

    One call to `wait` handles one operation reference. Polls are strictly
    serial, the first one is made immediately, and the sleep between polls
    suspends only the calling task. Errors raised by the poll function are
    not caught here; retrying transport failures is left to the caller.
    """

    def __init__(
        self,
        on_status_change: Optional[Callable[[OperationStatus], Awaitable[Any]]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.on_status_change = on_status_change
        self.logger = logger
        self._clock = clock or (lambda: asyncio.get_running_loop().time())

    def _next_interval(self, interval: float, policy: WaitPolicy) -> float:
        return min(interval * policy.backoff_factor, policy.max_interval)

    async def _handle_status_change(
        self, status: OperationStatus, last_status: Optional[OperationStatus]
    ) -> None:
        """Invoke the status change callback if the state has changed"""
        if last_status is not None and last_status.state == status.state:
            return
        self.logger.debug(f"Operation state changed to {status.state.value}")
        if self.on_status_change is not None:
            await self.on_status_change(status)

    async def _pause(self, delay: float, cancel_event: Optional[asyncio.Event]) -> bool:
        """Sleep for `delay` seconds. Returns True if woken up by cancellation."""
        if cancel_event is None:
            await asyncio.sleep(delay)
            return False

        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait(
        self,
        reference: OperationReference,
        poll_fn: PollFn,
        policy: WaitPolicy,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WaitOutcome:
        """Poll `reference` until it succeeds, fails, times out or the wait is cancelled"""
        if not reference:
            raise ValueError("Operation reference must not be empty")

        start_time = self._clock()
        interval = policy.initial_interval
        last_status: Optional[OperationStatus] = None
        polls = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                return self._cancelled(reference, start_time, last_status, polls)

            status = await poll_fn(reference)
            polls += 1

            await self._handle_status_change(status, last_status)
            last_status = status
            elapsed = self._clock() - start_time

            if status.state == OperationState.succeeded:
                self.logger.info(
                    f"Operation {reference} completed after {polls} poll(s) in {elapsed:.2f}s"
                )
                return Completed(
                    reference=reference, status=status, elapsed=elapsed, polls=polls
                )

            if status.state == OperationState.failed:
                self.logger.warning(f"Operation {reference} failed: {status.error_detail}")
                return Failed(
                    reference=reference,
                    error_detail=status.error_detail,
                    status=status,
                    elapsed=elapsed,
                    polls=polls,
                )

            remaining = policy.overall_timeout - elapsed
            # Timers may fire up to the clock resolution early
            if remaining <= DEADLINE_EPSILON:
                self.logger.warning(
                    f"Operation {reference} still {status.state.value} after {elapsed:.2f}s, giving up"
                )
                return TimedOut(
                    reference=reference, elapsed=elapsed, last_status=status, polls=polls
                )

            # Never sleep past the deadline; the poll after waking is the last one
            delay = min(interval, remaining)
            self.logger.debug(
                f"Operation {reference} is {status.state.value}, waiting {delay:.2f}s before next poll"
            )
            if await self._pause(delay, cancel_event):
                return self._cancelled(reference, start_time, last_status, polls)

            interval = self._next_interval(interval, policy)

    def _cancelled(
        self,
        reference: OperationReference,
        start_time: float,
        last_status: Optional[OperationStatus],
        polls: int,
    ) -> Cancelled:
        elapsed = self._clock() - start_time
        self.logger.warning(f"Wait for operation {reference} cancelled after {polls} poll(s)")
        return Cancelled(
            reference=reference, elapsed=elapsed, last_status=last_status, polls=polls
        )
