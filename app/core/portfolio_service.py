"""
app/core/portfolio_service.py - Portfolio reads, snapshots and leaderboard assembly
"""

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from app.core.exceptions import PortfolioNotFoundError
from app.core.leaderboard import DEFAULT_TIER, DEFAULT_TIERS, build_leaderboard
from app.core.models import LeaderboardEntry, Portfolio
from app.core.portfolio_calculator import (
    calculate_diversity_score,
    calculate_portfolio_metrics,
    calculate_sector_allocations,
)
from app.core.portfolio_manager import PortfolioManager
from app.core.price_service import PriceService


class PortfolioService:
    """
    Combines the portfolio store, the price service and the calculator

    Leaderboards are cached for ``leaderboard_ttl`` seconds per
    (date, sort key); saving a portfolio invalidates the cache.
    """

    def __init__(
        self,
        manager: PortfolioManager,
        price_service: PriceService,
        tiers: Optional[Sequence[Tuple[str, float]]] = None,
        default_tier: str = DEFAULT_TIER,
        leaderboard_ttl: float = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.manager = manager
        self.price_service = price_service
        self.tiers = list(tiers or DEFAULT_TIERS)
        self.default_tier = default_tier
        self.leaderboard_ttl = leaderboard_ttl
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self._leaderboard_cache: Dict[Tuple[Optional[str], str], Tuple[float, List[LeaderboardEntry]]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    def _price_maps(
        self, portfolios: Sequence[Portfolio], at: Optional[str] = None
    ) -> Tuple[Mapping, Mapping, Optional[Mapping]]:
        symbols: List[str] = []
        for portfolio in portfolios:
            symbols.extend(portfolio.symbols)

        if not symbols:
            return {}, {}, ({} if at else None)

        current = self.price_service.get_batch_current_prices(symbols)
        previous = self.price_service.get_batch_previous_closes(symbols)
        historical = self.price_service.get_batch_historical_prices(symbols, at) if at else None
        return current, previous, historical

    def _require(self, username: str) -> Portfolio:
        portfolio = self.manager.find(username)
        if portfolio is None:
            raise PortfolioNotFoundError(username)
        return portfolio

    # ------------------------------------------------------------------
    # Portfolios
    # ------------------------------------------------------------------

    def _portfolio_view(self, portfolio: Portfolio, current: Mapping, previous: Mapping) -> Dict[str, Any]:
        metrics = calculate_portfolio_metrics(
            portfolio.positions, current, previous, total_invested=portfolio.total_invested
        )
        data = portfolio.to_dict()
        data.update(
            {
                "total_value": metrics.total_value,
                "total_return": metrics.total_return,
                "total_return_percent": metrics.total_return_percent,
                "day_change": metrics.day_change,
                "day_change_percent": metrics.day_change_percent,
            }
        )
        for position, position_metrics in zip(data["positions"], metrics.positions):
            position["current_price"] = position_metrics.current_price
            position["current_value"] = position_metrics.current_value
            position["gain"] = position_metrics.gain
            position["gain_percent"] = position_metrics.gain_percent
        return data

    def get_portfolio(self, username: str) -> Dict[str, Any]:
        """Stored portfolio with live valuation; raises PortfolioNotFoundError"""
        portfolio = self._require(username)
        current, previous, _ = self._price_maps([portfolio])
        return self._portfolio_view(portfolio, current, previous)

    def get_all_portfolios(self) -> List[Dict[str, Any]]:
        portfolios = self.manager.find_all()
        current, previous, _ = self._price_maps(portfolios)
        return [self._portfolio_view(p, current, previous) for p in portfolios]

    def get_snapshot(self, username: str, at: Optional[str] = None) -> Dict[str, Any]:
        """
        Point-in-time view of one portfolio

        Args:
            username: Case-insensitive username
            at: Optional YYYY-MM-DD reference date for since-date performance

        Returns:
            Dict with totals, per-position metrics, sector allocations,
            diversity score and top/worst performers
        """
        portfolio = self._require(username)
        current, previous, historical = self._price_maps([portfolio], at)

        metrics = calculate_portfolio_metrics(
            portfolio.positions,
            current,
            previous,
            historical,
            total_invested=portfolio.total_invested,
        )

        snapshot = metrics.to_dict()
        snapshot.update(
            {
                "user_id": portfolio.user_id,
                "username": portfolio.username,
                "as_of": at or datetime.now().isoformat(),
                "sector_allocations": calculate_sector_allocations(metrics.positions),
                "diversity_score": calculate_diversity_score(list(portfolio.positions)),
            }
        )
        return snapshot

    def save_portfolio(self, payload: Mapping[str, Any]) -> Tuple[Portfolio, bool]:
        """Validate and upsert; raises PositionValidationError on bad input"""
        portfolio = Portfolio.from_dict(payload)
        created = self.manager.upsert(portfolio)
        self.invalidate_leaderboard()
        return portfolio, created

    # ------------------------------------------------------------------
    # Leaderboard
    # ------------------------------------------------------------------

    def get_leaderboard(self, at: Optional[str] = None, sort_key: str = "return") -> List[LeaderboardEntry]:
        """Full ranked leaderboard, served from cache while fresh"""
        key = (at, sort_key)
        now = self.clock()

        with self._lock:
            cached = self._leaderboard_cache.get(key)
        if cached and now - cached[0] < self.leaderboard_ttl:
            self.logger.debug(f"Leaderboard cache HIT for {key}")
            return list(cached[1])

        portfolios = self.manager.find_all()
        current, previous, historical = self._price_maps(portfolios, at)
        entries = build_leaderboard(
            portfolios,
            current,
            previous,
            historical,
            sort_key=sort_key,
            tiers=self.tiers,
            default_tier=self.default_tier,
        )

        with self._lock:
            self._leaderboard_cache[key] = (now, entries)

        self.logger.info(f"Built leaderboard with {len(entries)} traders")
        return list(entries)

    def get_leaderboard_entry(self, username: str, at: Optional[str] = None) -> LeaderboardEntry:
        for entry in self.get_leaderboard(at):
            if entry.username.lower() == username.strip().lower():
                return entry
        raise PortfolioNotFoundError(username)

    def invalidate_leaderboard(self) -> None:
        with self._lock:
            self._leaderboard_cache.clear()
