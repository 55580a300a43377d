"""
app/core/leaderboard.py - Rank portfolios by return and assign tiers
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from app.core.models import DEFAULT_SECTOR, LeaderboardEntry, Portfolio
from app.core.portfolio_calculator import (
    PortfolioMetrics,
    PositionMetrics,
    PriceMap,
    calculate_portfolio_metrics,
)

logger = logging.getLogger(__name__)

# (tier name, inclusive lower bound on return percent), highest first
DEFAULT_TIERS: Tuple[Tuple[str, float], ...] = (("S", 30.0), ("A", 15.0), ("B", 10.0))
DEFAULT_TIER = "C"

SORT_KEYS = {
    "return": lambda m: m.return_percent,
    "total_return": lambda m: m.total_return_percent,
    "day_change": lambda m: m.day_change_percent,
    "value": lambda m: m.total_value,
}


def calculate_tier(
    return_percent: float,
    thresholds: Optional[Sequence[Tuple[str, float]]] = None,
    default: str = DEFAULT_TIER,
) -> str:
    """First tier whose lower bound the return reaches"""
    for name, lower_bound in thresholds or DEFAULT_TIERS:
        if return_percent >= lower_bound:
            return name
    return default


def primary_sector(position_metrics: Iterable[PositionMetrics]) -> str:
    totals: dict = {}
    for metrics in position_metrics:
        totals[metrics.sector] = totals.get(metrics.sector, 0.0) + metrics.current_value

    best, best_value = DEFAULT_SECTOR, None
    for sector, value in totals.items():
        # strict comparison keeps the first-encountered sector on ties
        if best_value is None or value > best_value:
            best, best_value = sector, value
    return best


def primary_stock(position_metrics: Iterable[PositionMetrics]) -> str:
    best, best_value = "", None
    for metrics in position_metrics:
        if best_value is None or metrics.current_value > best_value:
            best, best_value = metrics.symbol, metrics.current_value
    return best


def build_leaderboard(
    portfolios: Iterable[Portfolio],
    current_prices: PriceMap,
    previous_closes: Optional[PriceMap] = None,
    historical_prices: Optional[PriceMap] = None,
    sort_key: str = "return",
    tiers: Optional[Sequence[Tuple[str, float]]] = None,
    default_tier: str = DEFAULT_TIER,
) -> List[LeaderboardEntry]:
    """
    Build ranked leaderboard entries

    Entries are sorted descending by ``sort_key`` with a stable sort, so
    equal values keep input order. Ranks are 1..N with no shared ranks.
    Inputs are never mutated; repeated calls give identical results.
    """
    if sort_key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key {sort_key!r}, expected one of {sorted(SORT_KEYS)}")

    scored: List[Tuple[Portfolio, PortfolioMetrics]] = []
    for portfolio in portfolios:
        metrics = calculate_portfolio_metrics(
            portfolio.positions,
            current_prices,
            previous_closes,
            historical_prices,
            total_invested=portfolio.total_invested,
        )
        scored.append((portfolio, metrics))

    key = SORT_KEYS[sort_key]
    scored.sort(key=lambda item: key(item[1]), reverse=True)

    entries = []
    for index, (portfolio, metrics) in enumerate(scored):
        entries.append(
            LeaderboardEntry(
                rank=index + 1,
                user_id=portfolio.user_id,
                username=portfolio.username,
                return_percent=metrics.return_percent,
                tier=calculate_tier(metrics.return_percent, tiers, default_tier),
                primary_sector=primary_sector(metrics.positions),
                primary_stock=primary_stock(metrics.positions),
                portfolio=portfolio.symbols,
                total_value=metrics.total_value,
                total_return_percent=metrics.total_return_percent,
                day_change_percent=metrics.day_change_percent,
            )
        )

    logger.debug(f"Built leaderboard with {len(entries)} entries sorted by {sort_key}")
    return entries


def filter_entries(
    entries: Iterable[LeaderboardEntry],
    query: Optional[str] = None,
    sector: Optional[str] = None,
    tier: Optional[str] = None,
) -> List[LeaderboardEntry]:
    """Filter by username/symbol substring, sector and tier. Ranks are kept"""
    result = list(entries)

    if query:
        needle = query.strip().lower()
        result = [
            e
            for e in result
            if needle in e.username.lower() or any(needle in s.lower() for s in e.portfolio)
        ]

    if sector and sector.lower() != "all":
        result = [e for e in result if e.primary_sector.lower() == sector.lower()]

    if tier:
        result = [e for e in result if e.tier.upper() == tier.upper()]

    return result


def paginate(entries: Sequence[LeaderboardEntry], page: int, page_size: int) -> List[LeaderboardEntry]:
    page = max(1, page)
    page_size = max(1, page_size)
    start = (page - 1) * page_size
    return list(entries[start : start + page_size])
