"""
Auto-Dialer Worker
Runs the auto-dialer loop for one dialing session outside the API process

Run as separate process:
    python -m crm_dialer.workers.auto_dialer_worker --session <id>
"""
import argparse
import asyncio
import logging
import os
import signal
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

from crm_dialer.core.runtime import DialerRuntime, build_runtime
from crm_dialer.domain.errors import PlacementFailure
from crm_dialer.domain.models.call_status import TERMINAL_PROVIDER_STATUSES
from crm_dialer.domain.models.dialer import TERMINAL_CALL_STATUSES
from crm_dialer.domain.models.results import Exhausted, Failed
from crm_dialer.domain.services.auto_dialer import AutoDialerConfig, AutoDialerTimer
from crm_dialer.domain.services.status_bridge import (
    StatusPoller,
    StatusSubscriber,
    call_status_channel,
)

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class AutoDialerWorker:
    """
    Places calls for one session back to back.

    Terminal status events arrive over Redis (``call.status.{session}``);
    without Redis the current call is polled instead. Either way the timer
    decides when the next call goes out.
    """

    def __init__(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        runtime: Optional[DialerRuntime] = None,
        config: Optional[AutoDialerConfig] = None,
        poll_interval_seconds: float = 0.5,
    ):
        self.session_id = session_id
        self.user_id = user_id
        self.runtime = runtime
        self.running = False
        self.current_call_id: Optional[str] = None
        self.current_call_sid: Optional[str] = None

        self.timer = AutoDialerTimer(
            on_next_call=self._place_next,
            on_force_complete=self._force_complete,
            on_error=self._on_error,
            config=config or AutoDialerConfig(enabled=True),
        )
        self.poller = StatusPoller(
            fetch=self._fetch_call_state,
            on_result=self._on_call_state,
            interval_seconds=poll_interval_seconds,
        )

        self._calls_placed = 0
        self._errors = 0

    async def initialize(self) -> None:
        if self.runtime is None:
            from crm_dialer.api.v1.dependencies import get_supabase
            self.runtime = await build_runtime(get_supabase())
            await self.runtime.start()
            cfg = self.runtime.config
            self.timer.configure(AutoDialerConfig(
                enabled=True,
                delay_between_calls=cfg.get("auto_dialer.delay_between_calls_ms", 3000),
                no_answer_timeout=cfg.get("auto_dialer.no_answer_timeout_ms", 30000),
            ))
            self.poller.interval_seconds = cfg.get("polling.status_interval_ms", 500) / 1000
        logger.info(f"Auto-dialer worker initialized for session {self.session_id}")

    async def _place_next(self) -> bool:
        result = await self.runtime.orchestrator.dial_next(self.session_id, self.user_id)

        if isinstance(result, Exhausted):
            logger.info(f"No more contacts for session {self.session_id}")
            self.current_call_id = None
            self.current_call_sid = None
            self.running = False
            return False

        if isinstance(result, Failed):
            raise PlacementFailure(result.error)

        self.current_call_id = result.call.id
        self.current_call_sid = result.call.twilio_call_sid
        self._calls_placed += 1
        if not self._subscribed:
            self.poller.start(result.call.id)
        return True

    async def _force_complete(self) -> None:
        if self.current_call_id:
            await self.runtime.orchestrator.end_call(self.current_call_id, provider_status="no-answer")

    def _on_error(self, error: Exception) -> None:
        self._errors += 1
        logger.error(f"Auto-dialer error in session {self.session_id}: {error}")

    @property
    def _subscribed(self) -> bool:
        return self.runtime is not None and self.runtime.publisher.enabled

    async def _fetch_call_state(self, call_id: str):
        return await self.runtime.orchestrator.get_call_state(call_id)

    def _on_call_state(self, state) -> None:
        if state is None:
            self.poller.set_subject(None)
            self.timer.call_ended()

    def handle_event(self, event: Dict[str, Any]) -> bool:
        """Feed one pub/sub event to the timer. Returns True if it ended the current call."""
        data = event.get("data") or {}
        status = data.get("status")
        matches = (
            (self.current_call_sid and data.get("callSid") == self.current_call_sid)
            or (self.current_call_id and data.get("callId") == self.current_call_id)
        )
        if not matches:
            return False
        if status in TERMINAL_PROVIDER_STATUSES or status in TERMINAL_CALL_STATUSES:
            self.timer.call_ended()
            return True
        return False

    async def _listen(self, ready: asyncio.Event) -> None:
        channel = call_status_channel(self.session_id)
        try:
            async with StatusSubscriber(self.runtime.publisher.client, channel) as subscriber:
                ready.set()
                async for event in subscriber.events():
                    self.handle_event(event)
        finally:
            ready.set()

    async def _check_still_live(self) -> None:
        """A call that ended before the listener saw it still moves the timer on"""
        if self.current_call_id and await self._fetch_call_state(self.current_call_id) is None:
            logger.info(f"Call {self.current_call_id} ended before its status event was seen")
            self.timer.call_ended()

    async def run(self) -> None:
        await self.initialize()
        self.running = True

        listener = None
        try:
            # Subscribe first so an early terminal event is not missed
            if self._subscribed:
                ready = asyncio.Event()
                listener = asyncio.create_task(self._listen(ready))
                await ready.wait()

            try:
                if await self._place_next():
                    self.timer.call_placed()
                    if self._subscribed:
                        await self._check_still_live()
            except Exception as e:
                self._on_error(e)
                self.running = False

            while self.running:
                await asyncio.sleep(self.poller.interval_seconds)
        finally:
            if listener is not None:
                listener.cancel()
                try:
                    await listener
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.error(f"Status listener failed: {e}")
            await self.shutdown()

    async def shutdown(self) -> None:
        logger.info("Shutting down Auto-Dialer Worker...")
        self.running = False
        await self.timer.close()
        await self.poller.stop()
        logger.info(
            f"Auto-Dialer Worker shutdown complete. "
            f"Calls placed: {self._calls_placed}, Errors: {self._errors}"
        )

    def get_stats(self) -> dict:
        return {
            "running": self.running,
            "session_id": self.session_id,
            "calls_placed": self._calls_placed,
            "errors": self._errors,
            "forced_completions": self.timer.forced_completions,
            "timer_state": self.timer.state.value,
        }


async def main():
    """Entry point for running the auto-dialer as separate process."""
    parser = argparse.ArgumentParser(description="Run the auto-dialer for one session")
    parser.add_argument("--session", default=os.getenv("DIALER_SESSION_ID", "auto-dialer"))
    parser.add_argument("--user", default=os.getenv("DIALER_USER_ID"))
    args = parser.parse_args()

    worker = AutoDialerWorker(session_id=args.session, user_id=args.user)
    loop = asyncio.get_event_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        worker.running = False
        worker.timer.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    finally:
        if worker.runtime is not None:
            await worker.runtime.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
