from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from promoscan.errors import QuotaExceededError
from promoscan.services.quota_ledger import QuotaConsumed, QuotaLedger, QuotaRejected


def test_status_reports_fresh_day(ledger: QuotaLedger) -> None:
    status = ledger.status()

    assert status.date_utc == "2026-03-15"
    assert status.used == 0
    assert status.remaining == 10_000
    assert status.usable_remaining == 9_500
    assert status.limit == 10_000
    assert status.percent_used == 0
    assert status.is_low is False
    assert status.is_exhausted is False


def test_consume_accumulates_usage(ledger: QuotaLedger) -> None:
    assert ledger.consume(100) == 100
    assert ledger.consume(1) == 101

    status = ledger.status()
    assert status.used == 101
    assert status.remaining == 9_899
    assert status.usable_remaining == 9_399
    assert status.percent_used == 1


def test_try_consume_returns_tagged_results(ledger: QuotaLedger) -> None:
    consumed = ledger.try_consume(9_400)
    assert consumed == QuotaConsumed(new_total=9_400)

    assert ledger.try_consume(100) == QuotaConsumed(new_total=9_500)

    rejected = ledger.try_consume(1)
    assert isinstance(rejected, QuotaRejected)
    assert rejected.cost == 1
    assert rejected.status.used == 9_500
    assert rejected.status.usable_remaining == 0
    assert rejected.status.is_exhausted is True
    assert ledger.status().used == 9_500


def test_rejected_consume_leaves_state_unchanged(ledger: QuotaLedger) -> None:
    ledger.consume(9_450)

    with pytest.raises(QuotaExceededError) as exc_info:
        ledger.consume(100)

    assert "Daily API limit reached" in str(exc_info.value)
    assert exc_info.value.status.used == 9_450
    assert ledger.status().used == 9_450


def test_negative_cost_is_rejected(ledger: QuotaLedger) -> None:
    with pytest.raises(ValueError):
        ledger.try_consume(-1)


def test_check_budget_reports_shortfall(ledger: QuotaLedger) -> None:
    ledger.consume(9_400)

    check = ledger.check_budget(200)

    assert check.allowed is False
    assert check.usable_remaining == 100
    assert check.message is not None
    assert "Need 200 units but only 100 remaining" in check.message
    assert check.status.resets_at in check.message
    assert ledger.status().used == 9_400


def test_check_budget_allows_exact_headroom(ledger: QuotaLedger) -> None:
    ledger.consume(9_300)

    check = ledger.check_budget(200)

    assert check.allowed is True
    assert check.message is None


def test_require_budget_raises_with_status(ledger: QuotaLedger) -> None:
    ledger.consume(9_000)

    with pytest.raises(QuotaExceededError) as exc_info:
        ledger.require_budget(600)

    assert exc_info.value.status.usable_remaining == 500


def test_is_low_below_threshold(ledger: QuotaLedger) -> None:
    ledger.consume(8_501)

    status = ledger.status()

    assert status.usable_remaining == 999
    assert status.is_low is True
    assert status.is_exhausted is False


def test_day_rollover_resets_usage(ledger: QuotaLedger, clock) -> None:
    ledger.consume(5_000)

    clock.advance(hours=13)

    status = ledger.status()
    assert status.date_utc == "2026-03-16"
    assert status.used == 0
    assert ledger.state.day_key == "2026-03-16"


def test_resets_at_is_next_local_midnight(ledger: QuotaLedger, clock) -> None:
    resets_at = datetime.fromisoformat(ledger.status().resets_at)

    local_now = clock().astimezone()
    assert resets_at > local_now
    assert (resets_at.hour, resets_at.minute, resets_at.second) == (0, 0, 0)
    assert (resets_at - local_now).total_seconds() <= 24 * 3600


def test_consume_writes_through_to_mirror(ledger: QuotaLedger, mirror) -> None:
    async def _run() -> None:
        ledger.consume(100)
        ledger.consume(1)
        await ledger.flush()

    asyncio.run(_run())

    assert mirror.values["yt_promo_quota:2026-03-15"] == {"date": "2026-03-15", "used": 101}
    assert mirror.ttls["yt_promo_quota:2026-03-15"] == 86_400


def test_hydrate_takes_larger_mirrored_value(ledger: QuotaLedger, mirror) -> None:
    mirror.values["yt_promo_quota:2026-03-15"] = {"date": "2026-03-15", "used": 4_200}

    status = asyncio.run(ledger.hydrate())

    assert status.used == 4_200


def test_hydrate_never_lowers_in_memory_usage(ledger: QuotaLedger, mirror) -> None:
    mirror.values["yt_promo_quota:2026-03-15"] = {"date": "2026-03-15", "used": 10}
    ledger.consume(50)

    status = asyncio.run(ledger.hydrate())

    assert status.used == 50


def test_hydrate_ignores_record_for_other_day(ledger: QuotaLedger, mirror) -> None:
    mirror.values["yt_promo_quota:2026-03-15"] = {"date": "2026-03-14", "used": 9_000}

    status = asyncio.run(ledger.hydrate())

    assert status.used == 0


def test_hydrate_reads_mirror_once_per_day(ledger: QuotaLedger, mirror, clock) -> None:
    mirror.values["yt_promo_quota:2026-03-15"] = {"date": "2026-03-15", "used": 100}
    asyncio.run(ledger.hydrate())

    mirror.values["yt_promo_quota:2026-03-15"] = {"date": "2026-03-15", "used": 900}
    assert asyncio.run(ledger.hydrate()).used == 100
    assert asyncio.run(ledger.hydrate(force=True)).used == 900

    clock.advance(days=1)
    mirror.values["yt_promo_quota:2026-03-16"] = {"date": "2026-03-16", "used": 7}
    assert asyncio.run(ledger.hydrate()).used == 7


def test_failed_mirror_write_keeps_in_memory_usage(
    ledger: QuotaLedger,
    mirror,
    telemetry_sink,
) -> None:
    mirror.fail_writes = True

    async def _run() -> int:
        total = ledger.consume(100)
        await ledger.flush()
        return total

    assert asyncio.run(_run()) == 100
    assert ledger.status().used == 100
    assert "quota.mirror.write_failed" in telemetry_sink.names()


def test_consume_and_reject_emit_telemetry(ledger: QuotaLedger, telemetry_sink) -> None:
    ledger.consume(9_500)
    ledger.try_consume(1)

    assert telemetry_sink.names() == ["quota.consume", "quota.rejected"]


def test_custom_limits_are_honored(mirror) -> None:
    ledger = QuotaLedger(
        mirror,
        daily_limit=1_000,
        safety_buffer=100,
        low_threshold=50,
        key_prefix="custom",
        clock=lambda: datetime(2026, 1, 2, 3, tzinfo=UTC),
    )

    assert ledger.mirror_key() == "custom:2026-01-02"
    assert ledger.try_consume(900) == QuotaConsumed(new_total=900)
    assert isinstance(ledger.try_consume(1), QuotaRejected)
    assert ledger.status().is_low is True
