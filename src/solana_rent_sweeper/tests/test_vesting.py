from datetime import datetime, timedelta, timezone

from solana_rent_sweeper.datalake.schemas import VestingSchedule, VestingType
from solana_rent_sweeper.ledger.vesting import claimable_amount, vested_amount_at

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _schedule(
    vesting_type: VestingType,
    *,
    days: int = 100,
    total: int = 1_000_000_000,
    cliff_days: int | None = None,
    vested: int = 0,
) -> VestingSchedule:
    return VestingSchedule(
        id="v1",
        token_mint="mint",
        token_account="account",
        owner="owner",
        beneficiary="beneficiary",
        total_amount=total,
        vested_amount=vested,
        start_time=START,
        end_time=START + timedelta(days=days),
        cliff_time=START + timedelta(days=cliff_days) if cliff_days is not None else None,
        vesting_type=vesting_type,
        is_revocable=True,
        created_at=START,
        updated_at=START,
    )


def test_linear_quarter_way_through() -> None:
    schedule = _schedule(VestingType.LINEAR)
    vested = vested_amount_at(schedule, START + timedelta(days=25))
    assert abs(vested - 250_000_000) <= 1


def test_linear_bounds() -> None:
    schedule = _schedule(VestingType.LINEAR)
    assert vested_amount_at(schedule, START - timedelta(seconds=1)) == 0
    assert vested_amount_at(schedule, START) == 0
    assert vested_amount_at(schedule, schedule.end_time) == schedule.total_amount
    assert vested_amount_at(schedule, schedule.end_time + timedelta(days=400)) == schedule.total_amount


def test_linear_is_monotonic_and_bounded() -> None:
    schedule = _schedule(VestingType.LINEAR, total=987_654_321_987, days=37)
    previous = 0
    for hours in range(0, 37 * 24 + 5, 7):
        vested = vested_amount_at(schedule, START + timedelta(hours=hours))
        assert previous <= vested <= schedule.total_amount
        previous = vested


def test_cliff_is_binary() -> None:
    schedule = _schedule(VestingType.CLIFF, cliff_days=30)
    cliff = schedule.cliff_time
    assert vested_amount_at(schedule, cliff - timedelta(milliseconds=1)) == 0
    assert vested_amount_at(schedule, START + timedelta(days=10)) == 0
    assert vested_amount_at(schedule, cliff) == schedule.total_amount
    assert vested_amount_at(schedule, cliff + timedelta(days=1)) == schedule.total_amount


def test_linear_with_cliff_holds_until_cliff() -> None:
    schedule = _schedule(VestingType.LINEAR, cliff_days=50)
    assert vested_amount_at(schedule, START + timedelta(days=49)) == 0
    assert abs(vested_amount_at(schedule, START + timedelta(days=50)) - 500_000_000) <= 1


def test_step_releases_whole_months() -> None:
    schedule = _schedule(VestingType.STEP, days=120, total=1_200)
    assert vested_amount_at(schedule, START + timedelta(days=29)) == 0
    assert vested_amount_at(schedule, START + timedelta(days=30)) == 300
    assert vested_amount_at(schedule, START + timedelta(days=89)) == 600
    assert vested_amount_at(schedule, START + timedelta(days=90)) == 900
    assert vested_amount_at(schedule, START + timedelta(days=120)) == 1_200


def test_step_shorter_than_a_month_releases_at_end() -> None:
    schedule = _schedule(VestingType.STEP, days=10, total=500)
    assert vested_amount_at(schedule, START + timedelta(days=9)) == 0
    assert vested_amount_at(schedule, START + timedelta(days=10)) == 500


def test_claimable_subtracts_already_vested() -> None:
    schedule = _schedule(VestingType.LINEAR, vested=100_000_000)
    assert abs(claimable_amount(schedule, START + timedelta(days=25)) - 150_000_000) <= 1
    schedule.is_revoked = True
    assert claimable_amount(schedule, START + timedelta(days=25)) == 0
