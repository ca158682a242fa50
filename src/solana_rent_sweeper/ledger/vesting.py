"""Vested amount calculation for linear, cliff and step schedules."""

from __future__ import annotations

from datetime import datetime, timedelta

from ..datalake.schemas import VestingSchedule, VestingType
from ..utils.constants import STEP_MONTH_SECONDS, VESTING_RATIO_SCALE

_MILLISECOND = timedelta(milliseconds=1)
_STEP_MONTH = timedelta(seconds=STEP_MONTH_SECONDS)


def _linear(total: int, start: datetime, end: datetime, now: datetime) -> int:
    elapsed_ms = (now - start) // _MILLISECOND
    duration_ms = (end - start) // _MILLISECOND
    if duration_ms <= 0:
        return total
    ratio = elapsed_ms * VESTING_RATIO_SCALE // duration_ms
    return total * ratio // VESTING_RATIO_SCALE


def _step(total: int, start: datetime, end: datetime, now: datetime) -> int:
    total_months = (end - start) // _STEP_MONTH
    if total_months <= 0:
        # Schedules shorter than one step release everything at end_time.
        return 0
    months = (now - start) // _STEP_MONTH
    return min(total * months // total_months, total)


def vested_amount_at(schedule: VestingSchedule, now: datetime) -> int:
    """Return the cumulative amount releasable under ``schedule`` at ``now``.

    The result is non-decreasing in ``now``, bounded by ``total_amount`` and
    reaches it exactly at ``end_time``.
    """

    total = schedule.total_amount
    if now < schedule.start_time:
        return 0
    if schedule.cliff_time is not None and now < schedule.cliff_time:
        return 0
    if now >= schedule.end_time:
        return total
    if schedule.vesting_type is VestingType.CLIFF:
        # Without a cliff time the schedule degrades to linear release.
        if schedule.cliff_time is not None:
            return total
        return _linear(total, schedule.start_time, schedule.end_time, now)
    if schedule.vesting_type is VestingType.STEP:
        return _step(total, schedule.start_time, schedule.end_time, now)
    return _linear(total, schedule.start_time, schedule.end_time, now)


def claimable_amount(schedule: VestingSchedule, now: datetime) -> int:
    if schedule.is_revoked:
        return 0
    return max(vested_amount_at(schedule, now) - schedule.vested_amount, 0)


__all__ = ["claimable_amount", "vested_amount_at"]
