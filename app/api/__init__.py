"""
app/api/__init__.py
API package initialization
"""

from .routes import api_bp
from .rate_limit import RateLimiter, rate_limited

__all__ = [
    "api_bp",
    "RateLimiter",
    "rate_limited",
]
