"""
app/core/portfolio_calculator.py - Portfolio valuation, day change and since-date performance
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from app.core.models import Position, PricePoint

PriceValue = Union[float, int, PricePoint]
PriceMap = Mapping[str, PriceValue]


@dataclass
class PositionMetrics:
    symbol: str
    shares: float
    avg_price: float
    sector: str
    current_price: float
    prior_close: float
    basis_price: float
    current_value: float
    invested_value: float
    gain: float
    gain_percent: float
    day_change_value: float
    day_change_percent: float
    since_date_return: float
    since_date_percent: float


@dataclass
class PortfolioMetrics:
    total_value: float
    total_invested: float
    total_return: float
    total_return_percent: float
    day_change: float
    day_change_percent: float
    return_percent: float
    since_date_return: Optional[float] = None
    since_date_percent: Optional[float] = None
    top_performer: Optional[str] = None
    worst_performer: Optional[str] = None
    positions: List[PositionMetrics] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _percent(numerator: float, denominator: float) -> float:
    return numerator / denominator * 100 if denominator else 0.0


def price_value(value: Optional[PriceValue]) -> Optional[float]:
    """Unwrap a PricePoint to its price; None and non-positive prices count as missing"""
    if value is None:
        return None
    price = value.price if isinstance(value, PricePoint) else float(value)
    return price if price > 0 else None


def _lookup(prices: Optional[PriceMap], symbol: str) -> Optional[float]:
    if not prices:
        return None
    return price_value(prices.get(symbol))


def calculate_position_metrics(
    position: Position,
    current_price: Optional[PriceValue] = None,
    previous_close: Optional[PriceValue] = None,
    historical_price: Optional[PriceValue] = None,
) -> PositionMetrics:
    """
    Value a single position

    Missing prices degrade gracefully: the current price falls back to the
    average cost, the prior close to the current price and the since-date
    basis to the average cost.
    """
    current = price_value(current_price)
    if current is None:
        current = position.avg_price

    prior = price_value(previous_close)
    if prior is None:
        prior = current

    basis = price_value(historical_price)
    if basis is None:
        basis = position.avg_price

    shares = position.shares
    current_value = shares * current
    invested_value = shares * position.avg_price
    gain = current_value - invested_value
    since_date_return = current_value - shares * basis

    return PositionMetrics(
        symbol=position.symbol,
        shares=shares,
        avg_price=position.avg_price,
        sector=position.sector,
        current_price=current,
        prior_close=prior,
        basis_price=basis,
        current_value=current_value,
        invested_value=invested_value,
        gain=gain,
        gain_percent=_percent(gain, invested_value),
        day_change_value=(current - prior) * shares,
        day_change_percent=_percent(current - prior, prior),
        since_date_return=since_date_return,
        since_date_percent=_percent(since_date_return, shares * basis),
    )


def calculate_portfolio_metrics(
    positions: Iterable[Position],
    current_prices: PriceMap,
    previous_closes: Optional[PriceMap] = None,
    historical_prices: Optional[PriceMap] = None,
    total_invested: Optional[float] = None,
) -> PortfolioMetrics:
    """
    Aggregate metrics for a set of positions

    Args:
        positions: Holdings in portfolio order
        current_prices: symbol -> price (float or PricePoint)
        previous_closes: symbol -> prior close, used for day change
        historical_prices: symbol -> close on a reference date. When given,
            ``return_percent`` is the since-date figure instead of lifetime return
        total_invested: Stored invested capital; defaults to the sum of cost bases

    Returns:
        PortfolioMetrics with per-position breakdown
    """
    position_metrics = [
        calculate_position_metrics(
            position,
            _lookup(current_prices, position.symbol),
            _lookup(previous_closes, position.symbol),
            _lookup(historical_prices, position.symbol),
        )
        for position in positions
    ]

    total_value = sum(m.current_value for m in position_metrics)
    if total_invested is None:
        total_invested = sum(m.invested_value for m in position_metrics)

    total_return = total_value - total_invested
    total_return_percent = _percent(total_return, total_invested)

    day_change = sum(m.day_change_value for m in position_metrics)
    prior_value = sum(m.prior_close * m.shares for m in position_metrics)
    day_change_percent = _percent(day_change, prior_value)

    since_date_return = None
    since_date_percent = None
    return_percent = total_return_percent

    if historical_prices is not None:
        since_date_return = sum(m.since_date_return for m in position_metrics)
        basis_value = sum(m.basis_price * m.shares for m in position_metrics)
        since_date_percent = _percent(since_date_return, basis_value)
        return_percent = since_date_percent

    held = [m for m in position_metrics if m.shares > 0]
    top = max(held, key=lambda m: m.gain_percent, default=None)
    worst = min(held, key=lambda m: m.gain_percent, default=None)

    return PortfolioMetrics(
        total_value=total_value,
        total_invested=float(total_invested),
        total_return=total_return,
        total_return_percent=total_return_percent,
        day_change=day_change,
        day_change_percent=day_change_percent,
        return_percent=return_percent,
        since_date_return=since_date_return,
        since_date_percent=since_date_percent,
        top_performer=top.symbol if top else None,
        worst_performer=worst.symbol if worst else None,
        positions=position_metrics,
    )


def calculate_sector_allocations(position_metrics: Iterable[PositionMetrics]) -> List[Dict[str, Any]]:
    """Current value per sector, largest first (ties keep first-seen order)"""
    totals: Dict[str, float] = {}
    for metrics in position_metrics:
        totals[metrics.sector] = totals.get(metrics.sector, 0.0) + metrics.current_value

    total_value = sum(totals.values())
    allocations = [
        {"sector": sector, "value": value, "percentage": _percent(value, total_value)}
        for sector, value in totals.items()
    ]
    return sorted(allocations, key=lambda a: a["value"], reverse=True)


def calculate_diversity_score(positions: List[Position]) -> int:
    """
    Diversity score from 0 to 100

    40 points scale with position count (20 positions is ideal), 60 points
    with how evenly cost basis is spread (1 - Herfindahl index).
    """
    if len(positions) <= 1:
        return 0

    position_score = min(len(positions) / 20, 1) * 40

    total = sum(p.invested for p in positions)
    if total <= 0:
        return round(position_score)

    herfindahl = sum((p.invested / total) ** 2 for p in positions)
    concentration_score = (1 - herfindahl) * 60

    return round(position_score + concentration_score)
