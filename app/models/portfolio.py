"""
Portfolio document table

Tables:
- portfolios: one row per trader, positions embedded as a JSON list
"""

from typing import Any, Dict, List

from sqlalchemy import JSON, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.models import Portfolio, Position
from app.models.base import Base, TimestampMixin


class PortfolioRecord(Base, TimestampMixin):
    """Stored portfolio

    ``user_id`` is the upsert key. ``username`` lookups are case-insensitive
    and go through the lowercased ``username_key`` column, which is unique.
    """

    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    username: Mapped[str] = mapped_column(String(64))
    username_key: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    positions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    total_invested: Mapped[float] = mapped_column(Float, default=0.0)

    def to_domain(self) -> Portfolio:
        return Portfolio(
            user_id=self.user_id,
            username=self.username,
            positions=tuple(Position.from_dict(p) for p in self.positions or []),
            total_invested=float(self.total_invested or 0.0),
        )

    def update_from(self, portfolio: Portfolio) -> None:
        self.user_id = portfolio.user_id
        self.username = portfolio.username
        self.username_key = portfolio.username.lower()
        self.positions = [p.to_dict() for p in portfolio.positions]
        self.total_invested = portfolio.total_invested

    def __repr__(self) -> str:
        return f"<PortfolioRecord(user_id={self.user_id}, username={self.username})>"
