"""
app/core/exceptions.py - Error types raised by the core services
"""

from typing import Optional


class LeaderboardError(Exception):
    """Base class for application errors"""


class MarketDataError(LeaderboardError):
    """Market data provider could not supply a usable price"""

    def __init__(self, message: str, symbol: Optional[str] = None):
        super().__init__(message)
        self.symbol = symbol


class ProviderHTTPError(MarketDataError):
    """Network failure, timeout or non-2xx response from the provider"""

    def __init__(
        self, message: str, symbol: Optional[str] = None, status_code: Optional[int] = None
    ):
        super().__init__(message, symbol)
        self.status_code = status_code


class MalformedResponseError(MarketDataError):
    """Provider payload did not have the expected shape"""


class NoDataError(MarketDataError):
    """Provider has no data for the symbol/date"""


class PortfolioNotFoundError(LeaderboardError):
    """No portfolio stored for the requested user"""

    def __init__(self, username: str):
        super().__init__(f"Portfolio not found for user: {username}")
        self.username = username


class PositionValidationError(LeaderboardError, ValueError):
    """Position or portfolio payload failed validation"""


class UsernameConflictError(LeaderboardError):
    """Username already belongs to a different user_id"""

    def __init__(self, username: str, user_id: str):
        super().__init__(f"Username already taken: {username}")
        self.username = username
        self.user_id = user_id
