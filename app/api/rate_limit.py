"""
app/api/rate_limit.py
Per-client fixed-window request limiting for the API
"""

import logging
import math
import threading
import time
from datetime import datetime
from functools import wraps
from typing import Callable, Dict, Tuple

from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)

# Prune stale windows once the store grows past this many clients
CLEANUP_THRESHOLD = 10000


class RateLimiter:
    """
    Fixed-window counter keyed by client identifier

    Each client may make ``max_requests`` requests per ``window_seconds``.
    Thread-safe.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 900,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def hit(self, client: str) -> Tuple[bool, int, float]:
        """
        Count one request for ``client``

        Returns:
            (allowed, remaining, reset_at) where reset_at is an epoch timestamp
        """
        now = self.clock()

        with self._lock:
            if len(self._windows) > CLEANUP_THRESHOLD:
                self._cleanup(now)

            count, reset_at = self._windows.get(client, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + self.window_seconds

            if count >= self.max_requests:
                return False, 0, reset_at

            count += 1
            self._windows[client] = (count, reset_at)
            return True, self.max_requests - count, reset_at

    def _cleanup(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]
        logger.debug(f"Pruned {len(expired)} expired rate limit windows")

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def client_identifier() -> str:
    """First X-Forwarded-For address, then X-Real-IP, then the socket address"""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return request.remote_addr or "unknown"


def rate_limited(f):
    """
    Decorator enforcing the app's RateLimiter

    Usage:
        @rate_limited
        def my_route():
            return {'data': 'value'}
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        limiter = current_app.extensions.get("rate_limiter")
        if limiter is None:
            return f(*args, **kwargs)

        allowed, remaining, reset_at = limiter.hit(client_identifier())
        if not allowed:
            retry_after = max(0, math.ceil(reset_at - limiter.clock()))
            logger.warning(f"Rate limit exceeded for {client_identifier()}")
            response = jsonify(
                {
                    "error": "Too many requests, please try again later",
                    "timestamp": datetime.utcnow().isoformat(),
                }
            )
            response.status_code = 429
            response.headers["X-RateLimit-Remaining"] = "0"
            response.headers["X-RateLimit-Reset"] = str(int(reset_at))
            response.headers["Retry-After"] = str(retry_after)
            return response

        response = current_app.make_response(f(*args, **kwargs))
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(int(reset_at))
        return response

    return decorated_function
