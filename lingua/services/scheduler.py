import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


def seconds_until_next(now: datetime, hour: int, minute: int) -> float:
    """Seconds from *now* to the next local ``hour:minute`` (a full day if it is exactly now)."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class DailySchedule:
    """Await *job* once a day at ``hour:minute`` local time.

    Runs as a single asyncio task owned by the app lifespan. Errors raised
    by the job are logged and the schedule keeps going.
    """

    def __init__(
        self,
        job: Callable[[], Awaitable[None]],
        *,
        hour: int,
        minute: int = 0,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.job = job
        self.hour = hour
        self.minute = minute
        self._clock = clock
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("Daily schedule armed for %02d:%02d", self.hour, self.minute)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _loop(self) -> None:
        while True:
            delay = seconds_until_next(self._clock(), self.hour, self.minute)
            await self._sleep(delay)
            try:
                await self.job()
            except Exception:
                logger.exception("Scheduled job failed")
