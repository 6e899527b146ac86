"""
Auto-Dialer Timer
Schedules the next call after a call ends and forces completion of calls
nobody answers
"""
import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# Bounds offered by the settings UI; the timer itself accepts any non-negative value
DELAY_UI_BOUNDS_MS = (1000, 10000)
NO_ANSWER_UI_BOUNDS_MS = (15000, 60000)


class AutoDialerConfig(BaseModel):
    enabled: bool = False
    delay_between_calls: int = Field(default=3000, ge=0, alias="delayBetweenCalls")
    no_answer_timeout: int = Field(default=30000, ge=0, alias="noAnswerTimeout")

    model_config = {"populate_by_name": True}


class TimerState(str, Enum):
    IDLE = "idle"
    WAITING_NO_ANSWER = "waiting_no_answer"
    COMPLETING = "completing"
    DELAYING = "delaying"


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class AutoDialerTimer:
    """
    Idle -> WaitingNoAnswer -> (terminal status) -> Delaying -> next call
                            -> (timeout) -> Completing -> Delaying -> next call

    ``on_next_call`` returns truthy when a call was placed, which arms the
    no-answer timeout again. ``on_force_complete`` ends the unanswered call.
    Failures of either are passed to ``on_error`` and never retried.

    Disabling or closing cancels pending timers without running any of
    the callbacks. Re-enabling starts fresh; old timers never resume.
    """

    def __init__(
        self,
        on_next_call: Callable[[], Awaitable[Any]],
        on_force_complete: Optional[Callable[[], Awaitable[Any]]] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
        config: Optional[AutoDialerConfig] = None,
    ):
        self._on_next_call = on_next_call
        self._on_force_complete = on_force_complete
        self._on_error = on_error
        self.config = config or AutoDialerConfig()
        self.state = TimerState.IDLE
        self._timeout_task: Optional[asyncio.Task] = None
        self._delay_task: Optional[asyncio.Task] = None
        self._generation = 0
        self.forced_completions = 0
        self.next_call_requests = 0
        self.errors = 0

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def configure(self, config: AutoDialerConfig) -> None:
        was_enabled = self.config.enabled
        self.config = config
        if was_enabled and not config.enabled:
            logger.info("Auto-dialer disabled")
            self.cancel()

    def call_placed(self) -> None:
        """A call went out: arm the no-answer timeout"""
        if not self.enabled:
            return
        self._cancel_tasks()
        self.state = TimerState.WAITING_NO_ANSWER
        self._timeout_task = asyncio.create_task(self._no_answer_timeout(self._generation))

    def call_ended(self) -> None:
        """A terminal status arrived for the current call"""
        if self.state != TimerState.WAITING_NO_ANSWER:
            return
        self._cancel_tasks()
        self._complete()

    def cancel(self) -> None:
        """Drop pending timers and return to Idle without side effects"""
        self._generation += 1
        self._cancel_tasks()
        self.state = TimerState.IDLE

    async def close(self) -> None:
        tasks = [t for t in (self._timeout_task, self._delay_task) if t is not None]
        self.cancel()
        current = asyncio.current_task()
        for task in tasks:
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in (self._timeout_task, self._delay_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._timeout_task = None
        self._delay_task = None

    def _complete(self) -> None:
        if not self.enabled:
            self.state = TimerState.IDLE
            return
        self.state = TimerState.DELAYING
        self._delay_task = asyncio.create_task(self._delay_then_next(self._generation))

    def _report(self, error: Exception) -> None:
        self.errors += 1
        logger.error(f"Auto-dialer continuation failed: {error}")
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception as e:
                logger.error(f"Auto-dialer error handler failed: {e}")

    async def _no_answer_timeout(self, generation: int) -> None:
        await asyncio.sleep(self.config.no_answer_timeout / 1000)
        if generation != self._generation or self.state != TimerState.WAITING_NO_ANSWER:
            return

        self.state = TimerState.COMPLETING
        self.forced_completions += 1
        logger.info(f"No answer within {self.config.no_answer_timeout}ms, forcing completion")

        if self._on_force_complete is not None:
            try:
                await _maybe_await(self._on_force_complete())
            except Exception as e:
                self._report(e)

        if generation == self._generation:
            self._timeout_task = None
            self._complete()

    async def _delay_then_next(self, generation: int) -> None:
        await asyncio.sleep(self.config.delay_between_calls / 1000)
        if generation != self._generation or not self.enabled:
            return

        self.state = TimerState.IDLE
        self._delay_task = None
        self.next_call_requests += 1
        try:
            placed = await _maybe_await(self._on_next_call())
        except Exception as e:
            self._report(e)
            return

        if placed and generation == self._generation:
            self.call_placed()
