"""Process-wide ledger for metered YouTube Data API quota.

The ledger keeps the day's consumed units in memory and mirrors every
change to a durable store (see ``promoscan.repositories.quota_mirror``)
so separate process instances approximate one shared daily budget.

Two notions of "day" coexist:

- usage is bucketed by the UTC calendar date (``day_key``), which is also
  what the durable mirror is keyed on;
- ``resets_at`` reports the next *local* midnight, which is what end users
  are told. The two disagree by the local UTC offset; this is intentional
  and surfaced here rather than reconciled.

The budget is soft. ``check_budget`` followed later by ``consume`` is not
atomic across concurrent requests, and the mirror is eventually
consistent, so two requests (or two instances) can both pass a check for
the same headroom. ``safety_buffer`` is sized to absorb a few of those
overlaps before the upstream API starts rejecting calls.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from datetime import time as dt_time
from typing import Any

from promoscan.errors import QuotaExceededError
from promoscan.repositories.common import utc_now
from promoscan.repositories.quota_mirror import QuotaMirror
from promoscan.telemetry import TelemetryClient

LOGGER = logging.getLogger("promoscan.quota")

DEFAULT_DAILY_LIMIT = 10_000
DEFAULT_SAFETY_BUFFER = 500
DEFAULT_LOW_THRESHOLD = 1_000
DEFAULT_KEY_PREFIX = "yt_promo_quota"
DEFAULT_MIRROR_TTL_SECONDS = 86_400


@dataclass(frozen=True)
class QuotaState:
    day_key: str
    units_used: int


@dataclass(frozen=True)
class QuotaStatus:
    date_utc: str
    used: int
    remaining: int
    usable_remaining: int
    limit: int
    percent_used: int
    is_low: bool
    is_exhausted: bool
    resets_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BudgetCheck:
    allowed: bool
    usable_remaining: int
    status: QuotaStatus
    message: str | None = None


@dataclass(frozen=True)
class QuotaConsumed:
    new_total: int


@dataclass(frozen=True)
class QuotaRejected:
    cost: int
    status: QuotaStatus


ConsumeResult = QuotaConsumed | QuotaRejected


class QuotaLedger:
    def __init__(
        self,
        mirror: QuotaMirror,
        *,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        safety_buffer: int = DEFAULT_SAFETY_BUFFER,
        low_threshold: int = DEFAULT_LOW_THRESHOLD,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        mirror_ttl_seconds: int = DEFAULT_MIRROR_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._mirror = mirror
        self._daily_limit = max(1, daily_limit)
        self._safety_buffer = max(0, min(safety_buffer, self._daily_limit))
        self._low_threshold = max(0, low_threshold)
        self._key_prefix = key_prefix
        self._mirror_ttl_seconds = max(1, mirror_ttl_seconds)
        self._clock = clock
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._state = QuotaState(day_key=self._today(), units_used=0)
        self._hydrated_day: str | None = None
        self._pending_writes: set[asyncio.Task[None]] = set()

    @property
    def daily_limit(self) -> int:
        return self._daily_limit

    @property
    def safety_buffer(self) -> int:
        return self._safety_buffer

    @property
    def state(self) -> QuotaState:
        return self._current_state()

    def mirror_key(self, day_key: str | None = None) -> str:
        return f"{self._key_prefix}:{day_key or self._today()}"

    async def hydrate(self, *, force: bool = False) -> QuotaStatus:
        """Load today's usage from the durable mirror once per process-day."""
        state = self._current_state()
        if self._hydrated_day == state.day_key and not force:
            return self.status()

        mirrored = await self._mirror.get(self.mirror_key(state.day_key))
        mirrored_used = _mirrored_units(mirrored, day_key=state.day_key)

        # Another coroutine may have consumed while the mirror read was in flight.
        state = self._current_state()
        if mirrored_used > state.units_used:
            self._state = QuotaState(day_key=state.day_key, units_used=mirrored_used)
        self._hydrated_day = state.day_key
        LOGGER.debug(
            "quota hydrated day=%s mirrored_used=%s used=%s",
            state.day_key,
            mirrored_used,
            self._state.units_used,
        )
        return self.status()

    def status(self) -> QuotaStatus:
        state = self._current_state()
        used = state.units_used
        remaining = self._daily_limit - used
        usable_remaining = max(0, remaining - self._safety_buffer)
        return QuotaStatus(
            date_utc=state.day_key,
            used=used,
            remaining=remaining,
            usable_remaining=usable_remaining,
            limit=self._daily_limit,
            percent_used=round(used / self._daily_limit * 100),
            is_low=usable_remaining < self._low_threshold,
            is_exhausted=usable_remaining <= 0,
            resets_at=self._next_local_midnight().isoformat(),
        )

    def check_budget(self, cost: int) -> BudgetCheck:
        status = self.status()
        if status.usable_remaining < cost:
            return BudgetCheck(
                allowed=False,
                usable_remaining=status.usable_remaining,
                status=status,
                message=(
                    f"Insufficient API quota. Need {cost} units but only "
                    f"{status.usable_remaining} remaining. Quota resets at {status.resets_at}."
                ),
            )
        return BudgetCheck(
            allowed=True,
            usable_remaining=status.usable_remaining,
            status=status,
        )

    def require_budget(self, cost: int) -> QuotaStatus:
        check = self.check_budget(cost)
        if not check.allowed:
            raise QuotaExceededError(
                check.message or "Insufficient API quota.",
                status=check.status,
            )
        return check.status

    def try_consume(self, cost: int) -> ConsumeResult:
        if cost < 0:
            raise ValueError("quota cost must not be negative")

        state = self._current_state()
        usable_limit = self._daily_limit - self._safety_buffer
        if state.units_used + cost > usable_limit:
            status = self.status()
            LOGGER.warning(
                "quota rejected cost=%s used=%s usable_remaining=%s",
                cost,
                status.used,
                status.usable_remaining,
            )
            self._telemetry.emit(
                "quota.rejected",
                cost=cost,
                used=status.used,
                usable_remaining=status.usable_remaining,
            )
            return QuotaRejected(cost=cost, status=status)

        new_total = state.units_used + cost
        self._state = QuotaState(day_key=state.day_key, units_used=new_total)
        self._schedule_mirror_write(state.day_key)
        self._telemetry.emit("quota.consume", cost=cost, used=new_total)
        return QuotaConsumed(new_total=new_total)

    def consume(self, cost: int) -> int:
        result = self.try_consume(cost)
        if isinstance(result, QuotaRejected):
            raise QuotaExceededError(
                "Daily API limit reached. Please try again after the quota resets.",
                status=result.status,
            )
        return result.new_total

    async def flush(self) -> None:
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))

    def _current_state(self) -> QuotaState:
        today = self._today()
        if self._state.day_key != today:
            LOGGER.info("quota day rollover previous=%s current=%s", self._state.day_key, today)
            self._state = QuotaState(day_key=today, units_used=0)
        return self._state

    def _today(self) -> str:
        return self._clock().astimezone(UTC).date().isoformat()

    def _next_local_midnight(self) -> datetime:
        local_now = self._clock().astimezone()
        return datetime.combine(
            local_now.date() + timedelta(days=1),
            dt_time.min,
            tzinfo=local_now.tzinfo,
        )

    def _schedule_mirror_write(self, day_key: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.warning("quota mirror write skipped; no running event loop day=%s", day_key)
            return
        task = loop.create_task(self._write_mirror(day_key))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write_mirror(self, day_key: str) -> None:
        # Writes the latest total so a late write never rolls the mirror back.
        used = self._state.units_used if self._state.day_key == day_key else None
        if used is None:
            return
        try:
            stored = await self._mirror.set(
                self.mirror_key(day_key),
                {"date": day_key, "used": used},
                self._mirror_ttl_seconds,
            )
        except Exception as exc:
            LOGGER.error("quota mirror write raised day=%s used=%s error=%s", day_key, used, exc)
            stored = False
        if not stored:
            self._telemetry.emit("quota.mirror.write_failed", day=day_key, used=used)


def _mirrored_units(mirrored: dict[str, Any] | None, *, day_key: str) -> int:
    if mirrored is None or mirrored.get("date") != day_key:
        return 0
    raw_used = mirrored.get("used")
    if isinstance(raw_used, bool) or not isinstance(raw_used, int | float):
        return 0
    return max(0, int(raw_used))
