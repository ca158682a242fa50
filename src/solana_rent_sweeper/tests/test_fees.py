import pytest

from solana_rent_sweeper.analytics.fees import FeeEngine
from solana_rent_sweeper.config.settings import FeeConfig


def test_split_floors_fee_and_never_leaks() -> None:
    engine = FeeEngine(FeeConfig(fee_rate=0.10))
    for gross in [0, 1, 9, 10, 11, 99, 2_039_280, 2_039_289, 10**18 + 7]:
        breakdown = engine.split(gross)
        assert breakdown.fee + breakdown.net == gross
        assert breakdown.fee == gross // 10


def test_split_matches_rent_example() -> None:
    breakdown = FeeEngine(FeeConfig()).split(2_039_280)
    assert breakdown.fee == 203_928
    assert breakdown.net == 1_835_352


def test_total_sums_per_account_fees() -> None:
    engine = FeeEngine(FeeConfig(fee_rate=0.10))
    total = engine.total([19, 19, 19])
    # floor per account (1 each) rather than floor of the sum (5)
    assert total.fee == 3
    assert total.gross == 57
    assert total.net == 54


def test_split_rejects_negative_gross() -> None:
    with pytest.raises(ValueError):
        FeeEngine(FeeConfig()).split(-1)


def test_fee_info_reports_percentage() -> None:
    info = FeeEngine(FeeConfig(fee_rate=0.1, fee_wallet="DHFvuPUG3nDbdr2uHwVGuEqSjwdL4iC6ESAErYAwhV2K")).info()
    assert info.fee_rate == pytest.approx(0.1)
    assert info.fee_percentage == pytest.approx(10.0)
    assert info.fee_wallet == "DHFvuPUG3nDbdr2uHwVGuEqSjwdL4iC6ESAErYAwhV2K"
