"""
app/core/__init__.py
Core business logic package
"""

from .price_cache import PriceCache
from .price_service import PriceService, fallback_price
from .portfolio_calculator import PortfolioMetrics, PositionMetrics, calculate_portfolio_metrics
from .leaderboard import build_leaderboard, calculate_tier
from .dcf import DCFInputs, DCFResult, compute_dcf

__all__ = [
    "PriceCache",
    "PriceService",
    "fallback_price",
    "PortfolioMetrics",
    "PositionMetrics",
    "calculate_portfolio_metrics",
    "build_leaderboard",
    "calculate_tier",
    "DCFInputs",
    "DCFResult",
    "compute_dcf",
]
