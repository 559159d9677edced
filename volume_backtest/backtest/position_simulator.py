"""
Position Simulator - Long BTC / short altcoin basket bookkeeping

This module turns each bucket's selection into positions and P&L:
- Fixed BTC long leg sized once on the first bucket
- Short basket sized by market share and rebalanced every bucket
- Realized P&L on closes and reductions, weighted entry on increases
- Funding settlements accrued to cash for shorts held through a bucket
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from ..core.exceptions import ArithmeticGuardError
from ..core.logging import get_logger
from .models import (
    BtcPosition,
    FundingRateSample,
    MarketStats,
    RankedCandidate,
    ShortPosition,
    Snapshot,
)

logger = get_logger(__name__)

SKIPPED_ZERO_MARKET_SHARE = "zero_total_market_share"


def sample_funding_history(
    raw: Sequence[FundingRateSample],
    start: datetime,
    end: datetime,
    funding_interval_hours: int,
) -> List[FundingRateSample]:
    """
    Reduce raw settlements to one sample per sub-period of ``(start, end]``.

    The sub-period length is the shorter of the funding interval and the
    window. Each sample is the latest settlement at or before the end of
    its sub-period; sub-periods with no earlier settlement are skipped.

    Args:
        raw: Settlements in ascending funding_time order
        start: Window start (exclusive)
        end: Window end (inclusive)
        funding_interval_hours: Exchange funding interval

    Returns:
        Samples in sub-period order
    """
    window = end - start
    if window <= timedelta(0) or not raw:
        return []

    step = min(timedelta(hours=funding_interval_hours), window)
    periods = math.ceil(window / step)

    samples: List[FundingRateSample] = []
    index = 0
    latest: Optional[FundingRateSample] = None
    for k in range(1, periods + 1):
        period_end = min(start + step * k, end)
        while index < len(raw) and raw[index].funding_time <= period_end:
            latest = raw[index]
            index += 1
        if latest is not None:
            samples.append(latest)
    return samples


class ShortLeg:
    """
    A single open short position.
    """

    def __init__(self, symbol: str, quantity: float, entry_price: float, opened_at: datetime):
        self.symbol = symbol
        self.quantity = quantity
        self.entry_price = entry_price
        self.opened_at = opened_at
        self.funding_received = 0.0

    def pnl(self, price: float) -> float:
        return self.quantity * (self.entry_price - price)

    def resize(self, new_quantity: float, price: float) -> float:
        """
        Change the position size at ``price``.

        Returns:
            Realized P&L (non-zero only for reductions)
        """
        realized = 0.0
        if new_quantity < self.quantity:
            realized = (self.quantity - new_quantity) * (self.entry_price - price)
        elif new_quantity > self.quantity:
            added = new_quantity - self.quantity
            self.entry_price = (self.quantity * self.entry_price + added * price) / new_quantity
        self.quantity = new_quantity
        return realized

    def __repr__(self) -> str:
        return f"<ShortLeg({self.symbol}, qty={self.quantity:.6f}, entry={self.entry_price})>"


class PositionSimulator:
    """
    Stateful simulator for one backtest run.

    Cash starts at the short notional. Shorts contribute only their
    unrealized P&L to total value; closes, reductions and funding move
    money into cash.
    """

    def __init__(
        self,
        short_amount: float,
        btc_amount: float,
        btc_symbol: str = "BTCUSDT",
        funding_interval_hours: int = 8,
        granularity_hours: int = 8,
    ):
        """
        Initialize position simulator.

        Args:
            short_amount: Notional spread across the short basket each bucket
            btc_amount: Notional of the long BTC leg
            btc_symbol: Symbol of the long leg
            funding_interval_hours: Exchange funding interval
            granularity_hours: Bucket length
        """
        self.short_amount = short_amount
        self.btc_amount = btc_amount
        self.btc_symbol = btc_symbol
        self.funding_interval_hours = funding_interval_hours
        self.granularity = timedelta(hours=granularity_hours)

        self.cash = short_amount
        self.btc_quantity = 0.0
        self.btc_entry_price: Optional[float] = None

        self._shorts: Dict[str, ShortLeg] = {}
        self._last_prices: Dict[str, float] = {}

        # Statistics
        self.realized_pnl = 0.0
        self.funding_pnl = 0.0
        self.positions_opened = 0
        self.positions_closed = 0
        self.skipped_buckets = 0

    @property
    def open_symbols(self) -> List[str]:
        return list(self._shorts)

    def _price_of(self, symbol: str, prices: Dict[str, float]) -> Optional[float]:
        price = prices.get(symbol)
        if price is not None and price > 0:
            return price
        # Fall back to the last price seen for a symbol with no data this bucket
        return self._last_prices.get(symbol)

    def _accrue_funding(
        self,
        timestamp: datetime,
        prices: Dict[str, float],
        funding: Dict[str, Sequence[FundingRateSample]],
    ) -> None:
        window_start = timestamp - self.granularity
        for leg in self._shorts.values():
            current_price = self._price_of(leg.symbol, prices) or leg.entry_price
            for sample in funding.get(leg.symbol, []):
                if window_start < sample.funding_time <= timestamp:
                    mark_price = sample.mark_price if sample.mark_price is not None else current_price
                    amount = leg.quantity * mark_price * sample.funding_rate
                    leg.funding_received += amount
                    self.funding_pnl += amount
                    self.cash += amount

    def _close(self, symbol: str, price: float) -> None:
        leg = self._shorts.pop(symbol)
        realized = leg.pnl(price)
        self.cash += realized
        self.realized_pnl += realized
        self.positions_closed += 1
        logger.debug(f"Closed short {symbol} qty={leg.quantity:.6f} at {price}, realized {realized:.4f}")

    def close_all_positions(self, prices: Dict[str, float]) -> None:
        """Close every open short at its current (or last known) price."""
        for symbol in list(self._shorts):
            leg = self._shorts[symbol]
            self._close(symbol, self._price_of(symbol, prices) or leg.entry_price)

    def _target_quantities(self, selected: Sequence[RankedCandidate]) -> Dict[str, float]:
        total_market_share = sum(item.candidate.market_share for item in selected)
        if total_market_share <= 0:
            raise ArithmeticGuardError(
                f"Total market share is {total_market_share}, cannot size shorts",
                quantity="total_market_share",
            )

        targets: Dict[str, float] = {}
        for item in selected:
            notional = self.short_amount * item.candidate.market_share / total_market_share
            targets[item.symbol] = notional / item.candidate.price
        return targets

    def _rebalance(self, timestamp: datetime, targets: Dict[str, float], prices: Dict[str, float]) -> None:
        for symbol in [s for s in self._shorts if s not in targets]:
            self._close(symbol, self._price_of(symbol, prices) or self._shorts[symbol].entry_price)

        for symbol, quantity in targets.items():
            price = prices[symbol]
            leg = self._shorts.get(symbol)
            if leg is None:
                self._shorts[symbol] = ShortLeg(symbol, quantity, price, timestamp)
                self.positions_opened += 1
                continue

            realized = leg.resize(quantity, price)
            self.cash += realized
            self.realized_pnl += realized

    def step(
        self,
        timestamp: datetime,
        selected: Sequence[RankedCandidate],
        btc_price: float,
        prices: Optional[Dict[str, float]] = None,
        funding: Optional[Dict[str, Sequence[FundingRateSample]]] = None,
        market_stats: Optional[MarketStats] = None,
    ) -> Snapshot:
        """
        Advance the simulation by one bucket.

        Args:
            timestamp: Bucket timestamp
            selected: Ranked candidates to hold as shorts
            btc_price: BTC price at the bucket
            prices: Prices for the bucket, keyed by symbol
            funding: Raw funding settlements covering the previous and the next bucket
            market_stats: Market breadth figures to attach

        Returns:
            Snapshot of the portfolio after rebalancing
        """
        prices = dict(prices or {})
        for item in selected:
            prices[item.symbol] = item.candidate.price
        funding = funding or {}

        if self.btc_entry_price is None:
            if btc_price <= 0:
                raise ArithmeticGuardError(f"BTC price {btc_price} at {timestamp} cannot size the long leg",
                                           quantity="btc_price")
            self.btc_entry_price = btc_price
            self.btc_quantity = self.btc_amount / btc_price
            logger.debug(f"Opened BTC long {self.btc_quantity:.6f} at {btc_price}")

        # Shorts held since the previous bucket earn this window's funding
        self._accrue_funding(timestamp, prices, funding)

        skipped_reason: Optional[str] = None
        try:
            targets = self._target_quantities(selected)
        except ArithmeticGuardError as e:
            logger.warning(f"Skipping short sizing at {timestamp.isoformat()}: {e}")
            self.close_all_positions(prices)
            self.skipped_buckets += 1
            skipped_reason = SKIPPED_ZERO_MARKET_SHARE
        else:
            self._rebalance(timestamp, targets, prices)

        self._last_prices.update({symbol: price for symbol, price in prices.items() if price > 0})

        short_positions = self._report_shorts(timestamp, selected, prices, funding)
        btc_pnl = self.btc_quantity * (btc_price - self.btc_entry_price)
        total_value = (
            self.cash
            + self.btc_quantity * btc_price
            + sum(position.pnl for position in short_positions)
        )

        return Snapshot(
            timestamp=timestamp,
            total_value=total_value,
            cash_balance=self.cash,
            btc_position=BtcPosition(
                symbol=self.btc_symbol,
                quantity=self.btc_quantity,
                current_price=btc_price,
                entry_price=self.btc_entry_price,
                pnl=btc_pnl,
            ),
            short_positions=short_positions,
            skipped_reason=skipped_reason,
            market_stats=market_stats or MarketStats(),
        )

    def _report_shorts(
        self,
        timestamp: datetime,
        selected: Iterable[RankedCandidate],
        prices: Dict[str, float],
        funding: Dict[str, Sequence[FundingRateSample]],
    ) -> List[ShortPosition]:
        positions: List[ShortPosition] = []
        for item in selected:
            leg = self._shorts.get(item.symbol)
            if leg is None:
                continue
            price = prices[item.symbol]
            positions.append(
                ShortPosition(
                    symbol=item.symbol,
                    quantity=leg.quantity,
                    current_price=price,
                    entry_price=leg.entry_price,
                    pnl=leg.pnl(price),
                    market_share=item.candidate.market_share,
                    total_score=item.score.total_score,
                    rank=item.rank,
                    funding_rate_history=sample_funding_history(
                        funding.get(item.symbol, []),
                        timestamp,
                        timestamp + self.granularity,
                        self.funding_interval_hours,
                    ),
                )
            )
        return positions

    def get_statistics(self) -> Dict[str, float]:
        """Get run statistics."""
        return {
            "cash": self.cash,
            "realized_pnl": self.realized_pnl,
            "funding_pnl": self.funding_pnl,
            "positions_opened": self.positions_opened,
            "positions_closed": self.positions_closed,
            "open_positions": len(self._shorts),
            "skipped_buckets": self.skipped_buckets,
        }
