"""
app/core/models.py - Domain records shared by the price service, calculator and ranker
"""

import math
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional, Tuple

from app.core.exceptions import PositionValidationError

DEFAULT_SECTOR = "Other"


def normalize_symbol(symbol: Any) -> str:
    """Canonical ticker form: stripped and uppercase"""
    if not isinstance(symbol, str) or not symbol.strip():
        raise PositionValidationError("Invalid ticker")
    return symbol.strip().upper()


@dataclass(frozen=True)
class Position:
    symbol: str
    shares: float
    avg_price: float
    sector: str = DEFAULT_SECTOR
    date_purchased: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Position":
        """Build a validated position from a stored or submitted document

        Accepts both ``avg_price`` and the camelCase ``avgPrice`` key.
        """
        if not isinstance(data, Mapping):
            raise PositionValidationError("Position must be an object")

        symbol = normalize_symbol(data.get("symbol"))
        raw_avg = data.get("avg_price", data.get("avgPrice"))

        try:
            shares = float(data.get("shares"))  # type: ignore[arg-type]
            avg_price = float(raw_avg)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            raise PositionValidationError(
                f"Position {symbol} must have numeric shares and avg_price"
            )

        if not (math.isfinite(shares) and math.isfinite(avg_price)):
            raise PositionValidationError(
                f"Position {symbol}: shares and avg_price must be finite numbers"
            )

        if shares < 0:
            raise PositionValidationError(f"Position {symbol}: shares must be non-negative")
        if shares > 0 and avg_price <= 0:
            raise PositionValidationError(f"Position {symbol}: avg_price must be positive")

        sector = data.get("sector") or DEFAULT_SECTOR
        date_purchased = data.get("date_purchased", data.get("datePurchased"))

        return cls(
            symbol=symbol,
            shares=shares,
            avg_price=avg_price,
            sector=str(sector),
            date_purchased=date_purchased,
        )

    @property
    def invested(self) -> float:
        return self.shares * self.avg_price

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.date_purchased is None:
            data.pop("date_purchased")
        return data


@dataclass(frozen=True)
class Portfolio:
    user_id: str
    username: str
    positions: Tuple[Position, ...]
    total_invested: float

    @classmethod
    def create(
        cls,
        user_id: str,
        username: str,
        positions: List[Position],
        total_invested: Optional[float] = None,
    ) -> "Portfolio":
        """Fix total_invested at creation time when the caller does not supply it"""
        if total_invested is None:
            total_invested = sum(p.invested for p in positions)
        if not math.isfinite(total_invested):
            raise PositionValidationError("total_invested must be a finite number")
        return cls(
            user_id=user_id,
            username=username,
            positions=tuple(positions),
            total_invested=float(total_invested),
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Portfolio":
        user_id = data.get("user_id", data.get("userId"))
        username = data.get("username")

        if not user_id or not isinstance(user_id, str):
            raise PositionValidationError("Missing required field: user_id")
        if not username or not isinstance(username, str):
            raise PositionValidationError("Missing required field: username")

        raw_positions = data.get("positions")
        if not isinstance(raw_positions, list):
            raise PositionValidationError("positions must be a list")

        positions = [Position.from_dict(item) for item in raw_positions]

        total_invested = data.get("total_invested", data.get("totalInvested"))
        if total_invested is not None:
            try:
                total_invested = float(total_invested)
            except (TypeError, ValueError):
                raise PositionValidationError("total_invested must be numeric")
            if not math.isfinite(total_invested) or total_invested < 0:
                raise PositionValidationError("total_invested must be a finite non-negative number")

        return cls.create(user_id.strip(), username.strip(), positions, total_invested)

    @property
    def symbols(self) -> List[str]:
        return [p.symbol for p in self.positions]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "positions": [p.to_dict() for p in self.positions],
            "total_invested": self.total_invested,
        }


@dataclass(frozen=True)
class PricePoint:
    symbol: str
    date: str
    price: float
    timestamp: float
    source: str

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: float
    change: float
    change_percent: float
    previous_close: float
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PriceBar:
    symbol: str
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class LeaderboardEntry:
    rank: int
    user_id: str
    username: str
    return_percent: float
    tier: str
    primary_sector: str
    primary_stock: str
    portfolio: List[str] = field(default_factory=list)
    total_value: float = 0.0
    total_return_percent: float = 0.0
    day_change_percent: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "user_id": self.user_id,
            "username": self.username,
            "return": self.return_percent,
            "tier": self.tier,
            "primary_sector": self.primary_sector,
            "primary_stock": self.primary_stock,
            "portfolio": list(self.portfolio),
            "total_value": self.total_value,
            "total_return_percent": self.total_return_percent,
            "day_change_percent": self.day_change_percent,
        }
