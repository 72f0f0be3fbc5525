from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, tzinfo

from app.core.config import settings
from app.core.local_time import attendance_tz, next_local_midnight, seconds_between, to_local
from app.schemas.common import Countdown

logger = logging.getLogger(__name__)


def time_until_midnight(now: datetime, tz: tzinfo | None = None) -> Countdown:
    midnight = next_local_midnight(now, tz)
    remaining = max(0, int(seconds_between(to_local(now, tz), midnight)))
    hours, rest = divmod(remaining, 3600)
    minutes, seconds = divmod(rest, 60)
    return Countdown(hours=hours, minutes=minutes, seconds=seconds)


@dataclass(frozen=True)
class RotationTick:
    current_date: str
    observed_date: str
    rotated: bool
    clamped: bool
    countdown: Countdown
    valid_until: datetime


class RotationClock:
    """Keeps a holder's displayed credential on the holder's local date.

    One asyncio task ticks every ``tick_seconds``; each tick runs to
    completion before the next sleep, so ``current_date`` has a single writer.
    Use as ``async with RotationClock(...)`` or pair ``start()`` with
    ``await stop()``.
    """

    def __init__(
        self,
        *,
        tz: tzinfo | None = None,
        tick_seconds: float | None = None,
        on_rotate: Callable[[str], None] | None = None,
        on_tick: Callable[[RotationTick], None] | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._tz = tz or attendance_tz()
        self._tick_seconds = max(0.001, float(tick_seconds or settings.credential_tick_seconds))
        self._on_rotate = on_rotate
        self._on_tick = on_tick
        self._now_fn = now_fn or (lambda: datetime.now(self._tz))
        self._current_date = self._today()
        self._task: asyncio.Task | None = None

    @property
    def current_date(self) -> str:
        return self._current_date

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _now(self) -> datetime:
        return to_local(self._now_fn(), self._tz)

    def _today(self) -> str:
        return self._now().date().isoformat()

    def tick(self) -> RotationTick:
        now = self._now()
        observed = now.date().isoformat()
        rotated = False
        clamped = False
        if observed > self._current_date:
            logger.info("Credential rotated: %s -> %s", self._current_date, observed)
            self._current_date = observed
            rotated = True
        elif observed < self._current_date:
            # Non-monotonic wall clock; keep showing the newer credential.
            logger.warning(
                "Ignoring clock read %s earlier than current credential date %s",
                observed,
                self._current_date,
            )
            clamped = True

        result = RotationTick(
            current_date=self._current_date,
            observed_date=observed,
            rotated=rotated,
            clamped=clamped,
            countdown=time_until_midnight(now, self._tz),
            valid_until=next_local_midnight(now, self._tz),
        )
        if rotated and self._on_rotate is not None:
            self._on_rotate(self._current_date)
        if self._on_tick is not None:
            self._on_tick(result)
        return result

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._tick_seconds)
                self.tick()
        except asyncio.CancelledError:
            logger.debug("Rotation clock loop cancelled")
            raise

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Rotation clock started (date=%s, tick_seconds=%s)", self._current_date, self._tick_seconds)

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Rotation clock stopped (date=%s)", self._current_date)

    async def __aenter__(self) -> RotationClock:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
