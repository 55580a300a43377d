"""
tests/test_portfolio_service.py
Test cases for the portfolio store and the leaderboard service
"""

import unittest
from unittest.mock import MagicMock

from tests import BaseTestCase, SampleDataGenerator
from app.core.exceptions import (
    PortfolioNotFoundError,
    PositionValidationError,
    UsernameConflictError,
)
from app.core.models import Portfolio, PricePoint
from app.core.portfolio_manager import SAMPLE_PORTFOLIOS, PortfolioManager
from app.core.portfolio_service import PortfolioService
from app.db import DatabaseManager


def price_map(prices, source="polygon"):
    return {s: PricePoint(s, "2024-01-02", p, 0.0, source) for s, p in prices.items()}


class TestPortfolioManager(BaseTestCase):
    """Test the SQLAlchemy-backed portfolio store"""

    def setUp(self):
        super().setUp()
        self.db_manager = DatabaseManager(self.database_url)
        self.db_manager.init_db()
        self.manager = PortfolioManager(self.db_manager)

    def tearDown(self):
        self.db_manager.close()
        super().tearDown()

    def test_upsert_creates_then_updates(self):
        payload = SampleDataGenerator.sample_portfolios()[0]
        portfolio = Portfolio.from_dict(payload)

        self.assertTrue(self.manager.upsert(portfolio))

        payload["positions"] = payload["positions"][:1]
        self.assertFalse(self.manager.upsert(Portfolio.from_dict(payload)))

        stored = self.manager.find_by_user_id("u1")
        self.assertEqual(stored.symbols, ["AAPL"])
        self.assertEqual(self.manager.count(), 1)

    def test_find_is_case_insensitive(self):
        self.manager.upsert(Portfolio.from_dict(SampleDataGenerator.sample_portfolios()[0]))

        found = self.manager.find("  ALICE ")
        self.assertIsNotNone(found)
        self.assertEqual(found.user_id, "u1")
        self.assertEqual(found.positions[1].sector, "Financial")

    def test_find_missing(self):
        self.assertIsNone(self.manager.find("nobody"))
        self.assertIsNone(self.manager.find(""))

    def test_find_all_in_insertion_order(self):
        for payload in SampleDataGenerator.sample_portfolios():
            self.manager.upsert(Portfolio.from_dict(payload))

        self.assertEqual([p.username for p in self.manager.find_all()], ["alice", "bob"])
        self.assertEqual(self.manager.get_all_symbols(), ["AAPL", "JPM", "XOM"])

    def test_delete(self):
        self.manager.upsert(Portfolio.from_dict(SampleDataGenerator.sample_portfolios()[1]))

        self.assertTrue(self.manager.delete("u2"))
        self.assertFalse(self.manager.delete("u2"))
        self.assertEqual(self.manager.count(), 0)

    def test_username_unique_across_users(self):
        alice = SampleDataGenerator.sample_portfolios()[0]
        self.manager.upsert(Portfolio.from_dict(alice))

        impostor = dict(alice, user_id="u9", username="Alice")
        with self.assertRaises(UsernameConflictError) as ctx:
            self.manager.upsert(Portfolio.from_dict(impostor))

        self.assertEqual(ctx.exception.user_id, "u1")
        self.assertEqual(self.manager.count(), 1)
        self.assertEqual(self.manager.find("alice").user_id, "u1")

    def test_same_user_may_change_username_case(self):
        alice = SampleDataGenerator.sample_portfolios()[0]
        self.manager.upsert(Portfolio.from_dict(alice))

        self.assertFalse(self.manager.upsert(Portfolio.from_dict(dict(alice, username="ALICE"))))
        self.assertEqual(self.manager.find("alice").username, "ALICE")

    def test_initialize_samples_once(self):
        self.assertEqual(self.manager.initialize_samples(), len(SAMPLE_PORTFOLIOS))
        self.assertEqual(self.manager.initialize_samples(), 0)
        self.assertEqual(self.manager.find("matt").total_invested, 10000.0)


class TestPortfolioService(BaseTestCase):
    """Test portfolio reads, snapshots and leaderboard assembly"""

    def setUp(self):
        super().setUp()
        self.db_manager = DatabaseManager(self.database_url)
        self.db_manager.init_db()
        self.manager = PortfolioManager(self.db_manager)

        prices = SampleDataGenerator.sample_prices()
        self.prices = MagicMock()
        self.prices.get_batch_current_prices.side_effect = lambda symbols: price_map(
            {s: prices[s] for s in symbols}
        )
        self.prices.get_batch_previous_closes.side_effect = lambda symbols: price_map(
            {s: prices[s] for s in symbols}
        )
        self.prices.get_batch_historical_prices.side_effect = lambda symbols, date: price_map(
            {s: 100.0 for s in symbols}
        )

        self.service = PortfolioService(self.manager, self.prices, clock=self.clock)
        for payload in SampleDataGenerator.sample_portfolios():
            self.service.save_portfolio(payload)

    def tearDown(self):
        self.db_manager.close()
        super().tearDown()

    def test_get_portfolio(self):
        data = self.service.get_portfolio("Alice")

        # 10 AAPL @100 -> 130, 5 JPM @200 -> 210
        self.assertEqual(data["total_invested"], 2000.0)
        self.assertEqual(data["total_value"], 2350.0)
        self.assertAlmostEqual(data["total_return_percent"], 17.5)
        self.assertEqual(data["positions"][0]["current_price"], 130.0)
        self.assertEqual(data["day_change"], 0.0)

    def test_get_portfolio_not_found(self):
        with self.assertRaises(PortfolioNotFoundError) as ctx:
            self.service.get_portfolio("nobody")
        self.assertEqual(ctx.exception.username, "nobody")

    def test_get_all_portfolios(self):
        portfolios = self.service.get_all_portfolios()
        self.assertEqual([p["username"] for p in portfolios], ["alice", "bob"])

    def test_save_portfolio_validates(self):
        with self.assertRaises(PositionValidationError):
            self.service.save_portfolio({"user_id": "u9", "username": "x", "positions": [{}]})

    def test_leaderboard(self):
        entries = self.service.get_leaderboard()

        self.assertEqual([e.username for e in entries], ["alice", "bob"])
        self.assertEqual([e.rank for e in entries], [1, 2])
        self.assertEqual(entries[0].tier, "A")
        self.assertEqual(entries[1].tier, "B")
        self.prices.get_batch_historical_prices.assert_not_called()

    def test_leaderboard_since_date(self):
        """Every symbol at 100 on the date: bob (50 -> 55 vs 100) ranks last"""
        entries = self.service.get_leaderboard(at="2024-01-02")

        self.prices.get_batch_historical_prices.assert_called_once()
        self.assertEqual(entries[0].username, "alice")
        self.assertAlmostEqual(entries[1].return_percent, -45.0)

    def test_leaderboard_is_cached(self):
        self.service.get_leaderboard()
        self.service.get_leaderboard()
        self.assertEqual(self.prices.get_batch_current_prices.call_count, 1)

        self.clock.advance(self.service.leaderboard_ttl)
        self.service.get_leaderboard()
        self.assertEqual(self.prices.get_batch_current_prices.call_count, 2)

    def test_save_invalidates_leaderboard(self):
        self.service.get_leaderboard()
        self.service.save_portfolio(
            SampleDataGenerator.portfolio_payload(
                "u3", "carol", [SampleDataGenerator.position("AAPL", 1, 50.0)]
            )
        )

        entries = self.service.get_leaderboard()
        self.assertEqual(entries[0].username, "carol")
        self.assertEqual(len(entries), 3)

    def test_leaderboard_entry(self):
        entry = self.service.get_leaderboard_entry("BOB")
        self.assertEqual(entry.rank, 2)

        with self.assertRaises(PortfolioNotFoundError):
            self.service.get_leaderboard_entry("nobody")

    def test_snapshot(self):
        snapshot = self.service.get_snapshot("alice", at="2024-01-02")

        self.assertEqual(snapshot["username"], "alice")
        self.assertEqual(snapshot["as_of"], "2024-01-02")
        self.assertEqual(snapshot["sector_allocations"][0]["sector"], "Technology")
        # basis 100 per share: (1300 + 1050) - 1500
        self.assertAlmostEqual(snapshot["since_date_return"], 850.0)
        self.assertIn("diversity_score", snapshot)

    def test_empty_store(self):
        self.manager.delete("u1")
        self.manager.delete("u2")
        self.service.invalidate_leaderboard()

        self.assertEqual(self.service.get_leaderboard(), [])


if __name__ == "__main__":
    unittest.main()
