"""
app/core/portfolio_manager.py - Portfolio document store backed by SQLAlchemy
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import func, select

from app.core.exceptions import UsernameConflictError
from app.core.models import Portfolio, Position
from app.db import DatabaseManager
from app.models.portfolio import PortfolioRecord

SAMPLE_PORTFOLIOS: List[Dict] = [
    {
        "user_id": "matt",
        "username": "Matt",
        "total_invested": 10000,
        "positions": [
            {"symbol": "RKLB", "shares": 37, "avg_price": 26.55, "sector": "Aerospace"},
            {"symbol": "AMZN", "shares": 4, "avg_price": 216.10, "sector": "Technology"},
            {"symbol": "SOFI", "shares": 67, "avg_price": 14.90, "sector": "Financial"},
            {"symbol": "ASTS", "shares": 23, "avg_price": 41.91, "sector": "Aerospace"},
            {"symbol": "BRK.B", "shares": 2, "avg_price": 490.23, "sector": "Financial"},
        ],
    },
    {
        "user_id": "amit",
        "username": "Amit",
        "total_invested": 10000,
        "positions": [
            {"symbol": "PLTR", "shares": 7, "avg_price": 141.41, "sector": "Technology"},
            {"symbol": "HOOD", "shares": 13, "avg_price": 76.75, "sector": "Financial"},
            {"symbol": "TSLA", "shares": 3, "avg_price": 329.13, "sector": "Automotive"},
            {"symbol": "AMD", "shares": 7, "avg_price": 126.39, "sector": "Technology"},
            {"symbol": "JPM", "shares": 3, "avg_price": 270.36, "sector": "Financial"},
        ],
    },
]


class PortfolioManager:
    """Reads and writes portfolio documents keyed by user_id"""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.logger = logging.getLogger(__name__)

    def find(self, username: str) -> Optional[Portfolio]:
        """Case-insensitive lookup by username"""
        if not username:
            return None

        with self.db_manager.session_context() as session:
            record = session.scalars(
                select(PortfolioRecord).where(
                    PortfolioRecord.username_key == username.strip().lower()
                )
            ).first()
            return record.to_domain() if record else None

    def find_by_user_id(self, user_id: str) -> Optional[Portfolio]:
        with self.db_manager.session_context() as session:
            record = session.scalars(
                select(PortfolioRecord).where(PortfolioRecord.user_id == user_id)
            ).first()
            return record.to_domain() if record else None

    def find_all(self) -> List[Portfolio]:
        """All portfolios in insertion order"""
        with self.db_manager.session_context() as session:
            records = session.scalars(select(PortfolioRecord).order_by(PortfolioRecord.id)).all()
            return [record.to_domain() for record in records]

    def count(self) -> int:
        with self.db_manager.session_context() as session:
            return session.scalar(select(func.count()).select_from(PortfolioRecord)) or 0

    def upsert(self, portfolio: Portfolio) -> bool:
        """Insert or overwrite by user_id. Returns True when a new row was created

        Raises:
            UsernameConflictError: username is held by another user_id
        """
        with self.db_manager.session_context() as session:
            owner = session.scalars(
                select(PortfolioRecord.user_id).where(
                    PortfolioRecord.username_key == portfolio.username.lower()
                )
            ).first()
            if owner is not None and owner != portfolio.user_id:
                raise UsernameConflictError(portfolio.username, owner)

            record = session.scalars(
                select(PortfolioRecord).where(PortfolioRecord.user_id == portfolio.user_id)
            ).first()

            created = record is None
            if created:
                record = PortfolioRecord()
                session.add(record)

            record.update_from(portfolio)

        self.logger.info(
            f"{'Created' if created else 'Updated'} portfolio for {portfolio.username}"
        )
        return created

    def delete(self, user_id: str) -> bool:
        with self.db_manager.session_context() as session:
            record = session.scalars(
                select(PortfolioRecord).where(PortfolioRecord.user_id == user_id)
            ).first()
            if record is None:
                return False
            session.delete(record)

        self.logger.info(f"Deleted portfolio {user_id}")
        return True

    def get_all_symbols(self) -> List[str]:
        """Distinct symbols across every stored portfolio"""
        symbols: Dict[str, None] = {}
        for portfolio in self.find_all():
            for symbol in portfolio.symbols:
                symbols[symbol] = None
        return list(symbols)

    def initialize_samples(self) -> int:
        """Seed demo portfolios when the store is empty. Returns number created"""
        existing = self.count()
        if existing:
            self.logger.info(f"Found {existing} existing portfolios, skipping initialization")
            return 0

        for sample in SAMPLE_PORTFOLIOS:
            self.upsert(
                Portfolio.create(
                    sample["user_id"],
                    sample["username"],
                    [Position.from_dict(p) for p in sample["positions"]],
                    sample["total_invested"],
                )
            )

        self.logger.info(f"Initialized {len(SAMPLE_PORTFOLIOS)} sample portfolios")
        return len(SAMPLE_PORTFOLIOS)
