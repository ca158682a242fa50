"""Platform fee arithmetic shared by scans and transaction building."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, Optional

from ..config.settings import FeeConfig, get_app_config
from ..datalake.schemas import FeeBreakdown, FeeInfo


class FeeEngine:
    """Splits recovered lamports into ``fee = floor(gross * rate)`` and ``net = gross - fee``."""

    def __init__(self, config: Optional[FeeConfig] = None) -> None:
        self._config = config or get_app_config().fees
        # str() keeps 0.1 as exactly one tenth instead of its binary float expansion.
        self._rate = Decimal(str(self._config.fee_rate))

    @property
    def fee_rate(self) -> Decimal:
        return self._rate

    @property
    def fee_wallet(self) -> str:
        return self._config.fee_wallet

    def split(self, gross: int) -> FeeBreakdown:
        if gross < 0:
            raise ValueError("gross must be non-negative")
        fee = int((Decimal(gross) * self._rate).to_integral_value(rounding=ROUND_FLOOR))
        return FeeBreakdown(gross=gross, fee=fee, net=gross - fee)

    def total(self, grosses: Iterable[int]) -> FeeBreakdown:
        """Sum per-account splits so the total fee matches the per-account fees exactly."""

        gross = fee = 0
        for item in grosses:
            part = self.split(item)
            gross += part.gross
            fee += part.fee
        return FeeBreakdown(gross=gross, fee=fee, net=gross - fee)

    def info(self) -> FeeInfo:
        return FeeInfo(
            fee_rate=float(self._rate),
            fee_wallet=self._config.fee_wallet,
            fee_percentage=float(self._rate * 100),
        )


__all__ = ["FeeEngine"]
