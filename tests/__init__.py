"""
tests/__init__.py
Test package initialization with fixtures, mocks, and sample data
"""

import os
import sys
import tempfile
import unittest
from typing import Dict, List, Any, Optional
from unittest.mock import MagicMock

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)


class FakeClock:
    """Manually advanced clock for TTL tests"""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BaseTestCase(unittest.TestCase):
    """Base test case with a temporary SQLite file and an offline price service"""

    def setUp(self):
        """Set up test fixtures"""
        # Create temporary database file
        self.test_db = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
        self.test_db.close()
        self.test_db_path = self.test_db.name
        self.database_url = f"sqlite:///{self.test_db.name}"

        # Set test environment
        self._saved_env = {
            key: os.environ.get(key) for key in ("FLASK_ENV", "DATABASE_PATH", "POLYGON_API_KEY")
        }
        os.environ["FLASK_ENV"] = "testing"
        os.environ["DATABASE_PATH"] = self.test_db.name
        os.environ.pop("POLYGON_API_KEY", None)

        self.clock = FakeClock()
        self.price_service = self.create_price_service()

    def create_price_service(self, api_key: str = "", **kwargs):
        """Price service with a fake clock and no real sleeping"""
        from app.core.price_cache import PriceCache
        from app.core.price_service import PriceService

        cache = PriceCache(clock=self.clock)
        options = {"batch_delay": 0.0, "min_request_interval": 0.0, "sleep": MagicMock()}
        options.update(kwargs)
        return PriceService(cache, api_key=api_key, **options)

    def create_test_app(self, price_service=None):
        """Flask app bound to the temporary database"""
        from app import create_app

        app = create_app(
            "testing",
            database_url=self.database_url,
            price_service=price_service or self.price_service,
        )
        app.config["TESTING"] = True
        return app

    def tearDown(self):
        """Clean up test fixtures"""
        for key, value in self._saved_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

        # Clean up temporary database file
        if hasattr(self, "test_db") and self.test_db.name:
            try:
                if os.path.exists(self.test_db.name):
                    os.unlink(self.test_db.name)
            except OSError:
                pass


# ============================================================================
# SAMPLE DATA GENERATORS
# ============================================================================


class SampleDataGenerator:
    """Build sample portfolios and provider payloads for testing"""

    @staticmethod
    def position(
        symbol: str, shares: float, avg_price: float, sector: str = "Technology"
    ) -> Dict[str, Any]:
        return {"symbol": symbol, "shares": shares, "avg_price": avg_price, "sector": sector}

    @staticmethod
    def portfolio_payload(
        user_id: str,
        username: str,
        positions: List[Dict[str, Any]],
        total_invested: Optional[float] = None,
    ) -> Dict[str, Any]:
        payload = {"user_id": user_id, "username": username, "positions": positions}
        if total_invested is not None:
            payload["total_invested"] = total_invested
        return payload

    @staticmethod
    def sample_portfolios() -> List[Dict[str, Any]]:
        """Two traders: alice up 20%, bob up 10% at sample_prices()"""
        return [
            SampleDataGenerator.portfolio_payload(
                "u1",
                "alice",
                [
                    SampleDataGenerator.position("AAPL", 10, 100.0, "Technology"),
                    SampleDataGenerator.position("JPM", 5, 200.0, "Financial"),
                ],
            ),
            SampleDataGenerator.portfolio_payload(
                "u2",
                "bob",
                [SampleDataGenerator.position("XOM", 20, 50.0, "Energy")],
            ),
        ]

    @staticmethod
    def sample_prices() -> Dict[str, float]:
        return {"AAPL": 130.0, "JPM": 210.0, "XOM": 55.0}


# ============================================================================
# MOCK HELPERS
# ============================================================================


class ProviderMockHelper:
    """Helper for mocking market data provider HTTP responses"""

    @staticmethod
    def response(payload: Any, status_code: int = 200) -> MagicMock:
        mock_response = MagicMock()
        mock_response.status_code = status_code
        mock_response.ok = 200 <= status_code < 300
        mock_response.reason = "OK" if mock_response.ok else "Error"
        mock_response.json.return_value = payload
        return mock_response

    @staticmethod
    def last_trade(price: float) -> Dict[str, Any]:
        return {"status": "OK", "results": {"p": price, "t": 1700000000000}}

    @staticmethod
    def aggregate(close: float, timestamp: int = 1699920000000) -> Dict[str, Any]:
        return {
            "status": "OK",
            "resultsCount": 1,
            "results": [
                {"o": close, "h": close, "l": close, "c": close, "v": 1000, "t": timestamp}
            ],
        }

    @staticmethod
    def snapshot(prices: Dict[str, float]) -> Dict[str, Any]:
        return {
            "status": "OK",
            "results": [
                {"ticker": symbol, "session": {"price": price}} for symbol, price in prices.items()
            ],
        }

    @staticmethod
    def router(routes: Dict[str, Any]):
        """side_effect for session.get: first route whose key is in the URL wins"""

        def get(url, params=None, timeout=None):
            for fragment, result in routes.items():
                if fragment in url:
                    if isinstance(result, Exception):
                        raise result
                    return result
            return ProviderMockHelper.response({"status": "NOT_FOUND"}, 404)

        return get


def run_all_tests():
    """Run all tests in the test suite"""
    loader = unittest.TestLoader()
    suite = loader.discover("tests", pattern="test_*.py")

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return result.wasSuccessful()


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
