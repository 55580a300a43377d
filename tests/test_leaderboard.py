"""
tests/test_leaderboard.py
Test cases for leaderboard ranking, tiers and filtering
"""

import unittest

from app.core.leaderboard import (
    DEFAULT_TIERS,
    build_leaderboard,
    calculate_tier,
    filter_entries,
    paginate,
    primary_sector,
    primary_stock,
)
from app.core.models import Portfolio, Position
from app.core.portfolio_calculator import calculate_portfolio_metrics


def make_portfolio(user_id, positions, username=None):
    return Portfolio.create(user_id, username or user_id, positions)


class TestTiers(unittest.TestCase):
    """Test the tier step function"""

    def test_default_scheme(self):
        self.assertEqual(DEFAULT_TIERS, (("S", 30.0), ("A", 15.0), ("B", 10.0)))

    def test_boundaries_are_inclusive(self):
        self.assertEqual(calculate_tier(30.0), "S")
        self.assertEqual(calculate_tier(15.0), "A")
        self.assertEqual(calculate_tier(10.0), "B")

    def test_between_boundaries(self):
        self.assertEqual(calculate_tier(29.99), "A")
        self.assertEqual(calculate_tier(14.99), "B")
        self.assertEqual(calculate_tier(9.99), "C")
        self.assertEqual(calculate_tier(-50.0), "C")

    def test_custom_thresholds(self):
        alternate = [("S", 40.0), ("A", 30.0), ("B", 20.0)]
        self.assertEqual(calculate_tier(35.0, alternate), "A")
        self.assertEqual(calculate_tier(19.0, alternate, default="D"), "D")


class TestPrimaryHoldings(unittest.TestCase):
    """Test primary sector and stock selection"""

    def metrics(self, positions, prices):
        return calculate_portfolio_metrics(positions, prices).positions

    def test_primary_sector_by_aggregate_value(self):
        positions = [
            Position("A", 1, 100.0, "Energy"),
            Position("B", 1, 60.0, "Technology"),
            Position("C", 1, 60.0, "Technology"),
        ]
        self.assertEqual(primary_sector(self.metrics(positions, {})), "Technology")

    def test_primary_sector_tie_keeps_first(self):
        positions = [Position("A", 1, 100.0, "Energy"), Position("B", 1, 100.0, "Technology")]
        self.assertEqual(primary_sector(self.metrics(positions, {})), "Energy")

    def test_primary_stock_uses_current_value(self):
        positions = [Position("A", 1, 100.0), Position("B", 1, 50.0)]
        self.assertEqual(primary_stock(self.metrics(positions, {"B": 200.0})), "B")

    def test_primary_stock_tie_keeps_first(self):
        positions = [Position("A", 2, 50.0), Position("B", 1, 100.0)]
        self.assertEqual(primary_stock(self.metrics(positions, {})), "A")

    def test_empty(self):
        self.assertEqual(primary_sector([]), "Other")
        self.assertEqual(primary_stock([]), "")


class TestBuildLeaderboard(unittest.TestCase):
    """Test ranking"""

    def test_two_traders_ranked_by_return(self):
        """20% ranks above 10%"""
        low = make_portfolio("low", [Position("L", 10, 100.0)])
        high = make_portfolio("high", [Position("H", 10, 100.0)])

        entries = build_leaderboard([low, high], {"L": 110.0, "H": 120.0})

        self.assertEqual([e.username for e in entries], ["high", "low"])
        self.assertEqual([e.rank for e in entries], [1, 2])
        self.assertAlmostEqual(entries[0].return_percent, 20.0)
        self.assertAlmostEqual(entries[1].return_percent, 10.0)
        self.assertEqual(entries[0].tier, "A")
        self.assertEqual(entries[1].tier, "B")

    def test_ranks_are_permutation(self):
        portfolios = [
            make_portfolio(f"u{i}", [Position(f"S{i}", 1, 100.0)]) for i in range(7)
        ]
        prices = {f"S{i}": 100.0 + i * 3 for i in range(7)}

        entries = build_leaderboard(portfolios, prices)

        self.assertEqual(sorted(e.rank for e in entries), list(range(1, 8)))
        returns = [e.return_percent for e in entries]
        self.assertEqual(returns, sorted(returns, reverse=True))

    def test_ties_keep_input_order(self):
        """Equal returns get consecutive ranks in input order"""
        portfolios = [
            make_portfolio("first", [Position("A", 1, 100.0)]),
            make_portfolio("second", [Position("B", 1, 100.0)]),
        ]
        entries = build_leaderboard(portfolios, {"A": 110.0, "B": 110.0})

        self.assertEqual([(e.rank, e.username) for e in entries], [(1, "first"), (2, "second")])

    def test_since_date_ranking(self):
        """Historical prices change the order"""
        early = make_portfolio("early", [Position("A", 10, 50.0)])
        late = make_portfolio("late", [Position("B", 10, 100.0)])
        prices = {"A": 100.0, "B": 110.0}

        lifetime = build_leaderboard([early, late], prices)
        since = build_leaderboard([early, late], prices, historical_prices={"A": 100.0, "B": 100.0})

        self.assertEqual(lifetime[0].username, "early")
        self.assertEqual(since[0].username, "late")
        self.assertAlmostEqual(since[0].return_percent, 10.0)
        self.assertAlmostEqual(since[0].total_return_percent, 10.0)
        self.assertAlmostEqual(since[1].return_percent, 0.0)

    def test_entry_fields(self):
        portfolio = make_portfolio(
            "u1",
            [Position("AAPL", 10, 100.0, "Technology"), Position("XOM", 1, 50.0, "Energy")],
            username="Alice",
        )
        entry = build_leaderboard([portfolio], {"AAPL": 130.0, "XOM": 60.0})[0]

        self.assertEqual(entry.user_id, "u1")
        self.assertEqual(entry.username, "Alice")
        self.assertEqual(entry.primary_sector, "Technology")
        self.assertEqual(entry.primary_stock, "AAPL")
        self.assertEqual(entry.portfolio, ["AAPL", "XOM"])
        self.assertEqual(entry.total_value, 1360.0)

        data = entry.to_dict()
        self.assertIn("return", data)
        self.assertEqual(data["rank"], 1)

    def test_stable_under_repeated_calls(self):
        portfolios = [
            make_portfolio("a", [Position("A", 1, 100.0)]),
            make_portfolio("b", [Position("B", 1, 100.0)]),
        ]
        prices = {"A": 105.0, "B": 140.0}

        first = build_leaderboard(portfolios, prices)
        second = build_leaderboard(portfolios, prices)

        self.assertEqual(first, second)
        self.assertEqual([p.user_id for p in portfolios], ["a", "b"])

    def test_custom_tiers(self):
        portfolio = make_portfolio("a", [Position("A", 1, 100.0)])
        entry = build_leaderboard(
            [portfolio], {"A": 135.0}, tiers=[("S", 40.0), ("A", 30.0)], default_tier="B"
        )[0]
        self.assertEqual(entry.tier, "A")

    def test_sort_by_value(self):
        small = make_portfolio("small", [Position("A", 1, 10.0)])
        big = make_portfolio("big", [Position("B", 100, 10.0)])

        entries = build_leaderboard([small, big], {"A": 20.0, "B": 11.0}, sort_key="value")
        self.assertEqual(entries[0].username, "big")

    def test_unknown_sort_key(self):
        with self.assertRaises(ValueError):
            build_leaderboard([], {}, sort_key="sharpe")

    def test_empty(self):
        self.assertEqual(build_leaderboard([], {}), [])


class TestFilterAndPaginate(unittest.TestCase):
    """Test API helpers"""

    def setUp(self):
        portfolios = [
            make_portfolio("u1", [Position("AAPL", 10, 100.0, "Technology")], "Alice"),
            make_portfolio("u2", [Position("XOM", 10, 100.0, "Energy")], "Bob"),
            make_portfolio("u3", [Position("JPM", 10, 100.0, "Financial")], "Carol"),
        ]
        self.entries = build_leaderboard(
            portfolios, {"AAPL": 140.0, "XOM": 112.0, "JPM": 101.0}
        )

    def test_filter_by_query_matches_username_or_symbol(self):
        self.assertEqual([e.username for e in filter_entries(self.entries, query="ali")], ["Alice"])
        self.assertEqual([e.username for e in filter_entries(self.entries, query="xom")], ["Bob"])

    def test_filter_keeps_global_rank(self):
        result = filter_entries(self.entries, sector="financial")
        self.assertEqual([(e.username, e.rank) for e in result], [("Carol", 3)])

    def test_filter_sector_all(self):
        self.assertEqual(len(filter_entries(self.entries, sector="All")), 3)

    def test_filter_by_tier(self):
        self.assertEqual([e.username for e in filter_entries(self.entries, tier="s")], ["Alice"])

    def test_paginate(self):
        self.assertEqual([e.rank for e in paginate(self.entries, 1, 2)], [1, 2])
        self.assertEqual([e.rank for e in paginate(self.entries, 2, 2)], [3])
        self.assertEqual(paginate(self.entries, 5, 2), [])


if __name__ == "__main__":
    unittest.main()
