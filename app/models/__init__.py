"""
SQLAlchemy ORM models package

Provides data models for all database tables:
- Portfolio: PortfolioRecord
"""

from app.models.base import Base, TimestampMixin
from app.models.portfolio import PortfolioRecord

__all__ = [
    "Base",
    "TimestampMixin",
    "PortfolioRecord",
]
