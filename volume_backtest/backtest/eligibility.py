"""
Symbol eligibility for volume backtests.

Discovers the tradable universe, applies the eligibility predicate at the
backtest start, and derives the parameter fingerprint that keys the
filter cache.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from ..core.config import BacktestSettings, RetrySettings
from ..core.exceptions import TRANSIENT_ERRORS
from ..core.logging import get_logger
from ..core.utils import (
    calculate_string_hash,
    canonical_json,
    chunk_list,
    format_datetime,
    measure_time,
    retry_from_settings,
)
from .models import BacktestParams, EligibilityResult

if TYPE_CHECKING:
    from ..market_data import MarketDataSource

logger = get_logger(__name__)

QUOTE_ASSETS = ["USDT", "USDC", "BTC", "ETH", "BNB", "BUSD", "FDUSD"]

LEVERAGED_TOKEN_PATTERN = re.compile(r"(UP|DOWN|BULL|BEAR)$")

REASON_STABLECOIN = "stablecoin pair"
REASON_NO_FUTURES = "no perpetual futures contract"
REASON_NO_DATA = "no market data at reference time"


def extract_base_asset(symbol: str, quote_assets: Iterable[str] = QUOTE_ASSETS) -> str:
    """
    Strip the quote asset from a trading pair symbol.

    Args:
        symbol: Pair symbol such as "ETHUSDT"
        quote_assets: Candidate quote suffixes

    Returns:
        Base asset, or the symbol unchanged when no quote suffix matches
    """
    for quote in sorted(quote_assets, key=len, reverse=True):
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[: -len(quote)]
    return symbol


def is_leveraged_token(base_asset: str) -> bool:
    """Check if a base asset is a leveraged token such as BTCUP or ETHBEAR."""
    match = LEVERAGED_TOKEN_PATTERN.search(base_asset)
    # Short bases like JUP only look like a suffix
    return match is not None and len(base_asset) >= len(match.group(1)) + 2


def fingerprint(params: BacktestParams) -> str:
    """
    Compute the filter cache key for a parameter set.

    Only the fields that change the eligible set take part, so runs that
    differ only in granularity, limit, or notionals share a cache entry.
    """
    return calculate_string_hash(canonical_json(filter_criteria(params)))


def filter_criteria(params: BacktestParams) -> Dict[str, Any]:
    """Eligibility-relevant parameters in canonical form."""
    return {
        "start_time": format_datetime(params.start_time),
        "end_time": format_datetime(params.end_time),
        "quote_asset": params.quote_asset,
        "min_volume_threshold": params.min_volume_threshold,
        "min_history_days": params.min_history_days,
        "require_futures": params.require_futures,
        "exclude_stablecoins": params.exclude_stablecoins,
        "symbols": sorted(params.symbols) if params.symbols is not None else None,
    }


class SymbolEligibilityFilter:
    """
    Discovers symbols and evaluates the eligibility predicate.

    The predicate runs against market data at ``params.start_time``, in
    batches of ``eligibility_batch_size`` symbols.
    """

    def __init__(
        self,
        market_data: "MarketDataSource",
        settings: Optional[BacktestSettings] = None,
        retry_settings: Optional[RetrySettings] = None,
    ) -> None:
        self.market_data = market_data
        self.settings = settings or BacktestSettings()
        self._stablecoins = set(self.settings.stablecoins)
        self._get_market_data = retry_from_settings(
            retry_settings or RetrySettings(), exceptions=TRANSIENT_ERRORS
        )(market_data.get_market_data)

    def fingerprint(self, params: BacktestParams) -> str:
        return fingerprint(params)

    def filter_criteria(self, params: BacktestParams) -> Dict[str, Any]:
        return filter_criteria(params)

    def is_stablecoin_pair(self, symbol: str) -> bool:
        return extract_base_asset(symbol) in self._stablecoins

    def discover_symbols(self, params: BacktestParams) -> List[str]:
        """
        Build the candidate universe for a run.

        Args:
            params: Backtest parameters

        Returns:
            Symbols in source discovery order
        """
        listed = self.market_data.list_symbols(params.quote_asset)

        symbols = [
            symbol for symbol in listed
            if not is_leveraged_token(extract_base_asset(symbol, [params.quote_asset]))
        ]
        leveraged = len(listed) - len(symbols)

        if params.symbols is not None:
            allowed = set(params.symbols)
            symbols = [symbol for symbol in symbols if symbol in allowed]

        symbols = [symbol for symbol in symbols if symbol != self.settings.btc_symbol]

        logger.info(
            f"Discovered {len(symbols)} {params.quote_asset} symbols "
            f"({len(listed)} listed, {leveraged} leveraged tokens dropped)"
        )
        return symbols

    def _reasons_for(self, symbol: str, point, params: BacktestParams) -> List[str]:
        reasons: List[str] = []

        if params.exclude_stablecoins and self.is_stablecoin_pair(symbol):
            reasons.append(REASON_STABLECOIN)

        if point is None:
            reasons.append(REASON_NO_DATA)
            return reasons

        if params.require_futures and not point.has_futures:
            reasons.append(REASON_NO_FUTURES)
        if point.history_length_days < params.min_history_days:
            reasons.append(f"insufficient history (< {params.min_history_days} days)")
        if point.volume_24h < params.min_volume_threshold:
            reasons.append(f"24h volume below {params.min_volume_threshold:g}")

        return reasons

    @measure_time(logger=logger, level="DEBUG", message="Eligibility evaluation finished")
    def evaluate(self, symbols: List[str], params: BacktestParams) -> EligibilityResult:
        """
        Apply the eligibility predicate to a discovered universe.

        Args:
            symbols: Discovered symbols
            params: Backtest parameters

        Returns:
            EligibilityResult with valid symbols in input order
        """
        valid: List[str] = []
        invalid: List[str] = []
        invalid_reasons: Dict[str, List[str]] = {}

        for batch_no, batch in enumerate(chunk_list(symbols, self.settings.eligibility_batch_size), start=1):
            points = self._get_market_data(params.start_time, batch)
            logger.debug(f"Eligibility batch {batch_no}: {len(batch)} symbols, {len(points)} with data")

            for symbol in batch:
                reasons = self._reasons_for(symbol, points.get(symbol), params)
                if reasons:
                    invalid.append(symbol)
                    invalid_reasons[symbol] = reasons
                else:
                    valid.append(symbol)

        reason_stats: Dict[str, int] = {}
        for reasons in invalid_reasons.values():
            for reason in reasons:
                reason_stats[reason] = reason_stats.get(reason, 0) + 1

        statistics = {
            "total_discovered": len(symbols),
            "valid_symbols": len(valid),
            "invalid_symbols": len(invalid),
            "valid_rate": round(len(valid) / len(symbols) * 100, 2) if symbols else 0.0,
            "reason_stats": reason_stats,
        }

        logger.info(
            f"Eligibility: {len(valid)}/{len(symbols)} symbols valid ({statistics['valid_rate']}%)"
        )
        for reason, count in sorted(reason_stats.items(), key=lambda item: -item[1]):
            logger.debug(f"  - {reason}: {count}")

        return EligibilityResult(
            valid=valid,
            invalid=invalid,
            invalid_reasons=invalid_reasons,
            statistics=statistics,
        )
