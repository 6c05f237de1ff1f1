"""Background recovery of expired INVALIDATED_RESET states."""
import asyncio
import logging
from datetime import datetime

from wavearbiter.core.data_store import FileDataStore
from wavearbiter.core.state_machine import TradingStateMachine
from wavearbiter.models import TradingState

logger = logging.getLogger(__name__)


class ResetSweeper:
    """Periodically returns expired INVALIDATED_RESET states to WAITING.

    The deadline lives in the persisted record, so recovery survives a
    restart; reads through the orchestrator also recover lazily. The sweeper
    runs as its own task and is not tied to any request.
    """

    def __init__(
        self,
        data_store: FileDataStore,
        interval_seconds: float = 1.0,
        reset_cooldown_seconds: float = 5.0,
    ):
        self.data_store = data_store
        self.interval_seconds = interval_seconds
        self.reset_cooldown_seconds = reset_cooldown_seconds
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def sweep(self, now: datetime | None = None) -> int:
        """Recover every expired record once.

        Returns:
            Number of records moved back to WAITING
        """
        now = now or datetime.now()
        recovered = 0
        for record in self.data_store.list_trading_states():
            if record.state != TradingState.INVALIDATED_RESET:
                continue
            machine = TradingStateMachine.from_record(record, self.reset_cooldown_seconds)
            if machine.recover_if_expired(now):
                self.data_store.save_trading_state(
                    machine.to_record(record.key, record.state_data, now=now)
                )
                recovered += 1
                logger.info(f"Auto-recovered {record.key} to WAITING")
        return recovered

    async def run(self) -> None:
        """Sweep until stopped."""
        self._running = True
        logger.info(f"Reset sweeper started (interval={self.interval_seconds}s)")
        try:
            while self._running:
                try:
                    self.sweep()
                except (OSError, ValueError, KeyError) as e:
                    logger.error(f"Reset sweep failed: {e}")
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Reset sweeper cancelled")
        finally:
            self._running = False

    def start(self) -> asyncio.Task:
        """Schedule the sweeper on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Stop the sweeper and wait for it to finish."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
