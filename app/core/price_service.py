"""
app/core/price_service.py - Market data fetching with caching and fallback prices
"""

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date as date_type, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

import pandas as pd
import requests  # type: ignore
from requests.adapters import HTTPAdapter  # type: ignore
from urllib3.util.retry import Retry

from app.core.exceptions import (
    MalformedResponseError,
    MarketDataError,
    NoDataError,
    ProviderHTTPError,
)
from app.core.models import PriceBar, PricePoint, Quote, normalize_symbol
from app.core.price_cache import CURRENT, HISTORICAL, PREVIOUS, PriceCache

PROVIDER = "polygon"
SNAPSHOT_SOURCE = "polygon_snapshot"
FALLBACK_SOURCE = "fallback"

# Static anchors for fallback prices when the provider is unavailable
FALLBACK_BASE_PRICES: Dict[str, float] = {
    "AAPL": 195, "MSFT": 435, "GOOGL": 186, "AMZN": 178, "TSLA": 248,
    "META": 582, "NVDA": 145, "NFLX": 485, "PLTR": 65, "AMD": 142,
    "UNH": 618, "JPM": 180, "V": 275, "BRK.B": 455, "JNJ": 160,
    "RKLB": 18.5, "ASTS": 15.2, "SOFI": 10.45, "HOOD": 32,
    "MSTR": 425, "HIMS": 13.2, "NU": 12.8, "NOW": 1025, "MELI": 2150,
    "CELH": 85, "OSCR": 15.5, "EOG": 125, "BROS": 38, "ABCL": 12.75,
    "NBIS": 8.5, "GRAB": 3.25, "DUOL": 185, "AVGO": 850, "CRWD": 320,
    "CRM": 280, "PYPL": 75, "MU": 95, "SHOP": 65, "TTD": 95,
    "ASML": 750, "APP": 45, "COIN": 220, "TSM": 185, "ELF": 125,
    "ORCL": 115, "CSCO": 48, "LLY": 825, "NVO": 105, "TTWO": 165,
}
DEFAULT_FALLBACK_PRICE = 100.0

# (days back, multiplier, timespan) per chart range
TIME_RANGES: Dict[str, tuple] = {
    "1D": (1, 5, "minute"),
    "5D": (5, 15, "minute"),
    "1M": (30, 1, "day"),
    "3M": (90, 1, "day"),
    "6M": (180, 1, "day"),
    "1Y": (365, 1, "day"),
    "2Y": (730, 1, "week"),
    "5Y": (1825, 1, "week"),
}


def fallback_price(symbol: str, seed: Any = "") -> float:
    """Deterministic stand-in price: static base with up to +/-5% variation

    The same (symbol, seed) pair always yields the same price.
    """
    symbol = symbol.upper()
    base = FALLBACK_BASE_PRICES.get(symbol, DEFAULT_FALLBACK_PRICE)
    rng = random.Random(f"{symbol}:{seed}")
    variation = (rng.random() - 0.5) * 0.1
    return round(base * (1 + variation), 2)


class PriceService:
    """
    Polygon-style market data client
    Handles quotes, previous closes, historical closes and bars with
    TTL caching, batching, rate limiting and fallback prices
    """

    def __init__(
        self,
        cache: PriceCache,
        api_key: str = "",
        base_url: str = "https://api.polygon.io",
        timeout: float = 10.0,
        max_batch_size: int = 50,
        batch_delay: float = 0.2,
        max_workers: int = 5,
        max_retries: int = 3,
        fallback_seed: Any = "",
        min_request_interval: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cache = cache
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_batch_size = max(1, int(max_batch_size))
        self.batch_delay = batch_delay
        self.max_workers = max(1, int(max_workers))
        self.fallback_seed = fallback_seed
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

        if not self.api_key:
            self.logger.warning("Market data API key not set; using fallback prices")

        # Setup requests session with retry strategy
        self.session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        self.session.headers.update({"User-Agent": "leaderboard-app/1.0"})

        # Rate limiting
        self.last_request_time: Dict[str, float] = {}
        self.min_request_interval = min_request_interval

    @classmethod
    def from_config(cls, config, cache: Optional[PriceCache] = None) -> "PriceService":
        """Build a service and its cache from a Config class"""
        if cache is None:
            cache = PriceCache(ttls=config.CACHE_TTLS(), max_entries=config.CACHE_MAX_ENTRIES())
        return cls(
            cache=cache,
            api_key=config.POLYGON_API_KEY(),
            base_url=config.MARKET_DATA_BASE_URL(),
            timeout=config.REQUEST_TIMEOUT(),
            max_batch_size=config.MAX_BATCH_SIZE(),
            batch_delay=config.BATCH_DELAY(),
            max_workers=config.MAX_WORKERS(),
            max_retries=config.MAX_RETRIES(),
            fallback_seed=config.FALLBACK_SEED(),
        )

    # ------------------------------------------------------------------
    # Provider access
    # ------------------------------------------------------------------

    def _rate_limit(self, key: str) -> None:
        """Implement rate limiting"""
        now = time.time()
        if key in self.last_request_time:
            time_since_last = now - self.last_request_time[key]
            if time_since_last < self.min_request_interval:
                self.sleep(self.min_request_interval - time_since_last)
        self.last_request_time[key] = time.time()

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None, symbol: str = "") -> Dict:
        if not self.api_key:
            raise ProviderHTTPError("No API key available", symbol)

        self._rate_limit(symbol or path)

        query = dict(params or {})
        query["apiKey"] = self.api_key

        try:
            response = self.session.get(
                f"{self.base_url}{path}", params=query, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise ProviderHTTPError(f"Request failed: {e}", symbol)

        if not response.ok:
            raise ProviderHTTPError(
                f"HTTP {response.status_code}: {response.reason}",
                symbol,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            raise MalformedResponseError("Response is not valid JSON", symbol)

        if not isinstance(data, dict):
            raise MalformedResponseError("Response is not a JSON object", symbol)

        status = data.get("status")
        if status == "NOT_FOUND":
            raise NoDataError(f"No data for {symbol}", symbol)
        if status not in ("OK", "DELAYED"):
            raise MalformedResponseError(f"Invalid response status: {status}", symbol)

        return data

    @staticmethod
    def _positive_price(value: Any, symbol: str) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise MalformedResponseError("Price field missing or not numeric", symbol)
        if value <= 0:
            raise MalformedResponseError("Invalid price data received", symbol)
        return float(value)

    def _first_bar(self, data: Dict, symbol: str) -> Dict:
        results = data.get("results")
        if results is None or results == []:
            raise NoDataError(f"No price data available for {symbol}", symbol)
        if not isinstance(results, list) or not isinstance(results[0], dict):
            raise MalformedResponseError("Aggregate results have unexpected shape", symbol)
        return results[0]

    def fetch_last_trade(self, symbol: str) -> float:
        """Last trade price straight from the provider (no cache, no fallback)"""
        data = self._get_json(f"/v2/last/trade/{symbol}", symbol=symbol)
        results = data.get("results")
        if not isinstance(results, dict):
            raise MalformedResponseError("Last trade payload missing results", symbol)
        return self._positive_price(results.get("p"), symbol)

    def fetch_previous_bar(self, symbol: str) -> Dict:
        data = self._get_json(
            f"/v2/aggs/ticker/{symbol}/prev", {"adjusted": "true"}, symbol=symbol
        )
        bar = self._first_bar(data, symbol)
        self._positive_price(bar.get("c"), symbol)
        return bar

    def fetch_daily_bar(self, symbol: str, date: str) -> Dict:
        data = self._get_json(
            f"/v2/aggs/ticker/{symbol}/range/1/day/{date}/{date}",
            {"adjusted": "true", "limit": 1},
            symbol=symbol,
        )
        bar = self._first_bar(data, symbol)
        self._positive_price(bar.get("c"), symbol)
        return bar

    def fetch_snapshot_batch(self, symbols: List[str]) -> Dict[str, float]:
        """Multi-ticker snapshot; symbols without a usable price are omitted"""
        data = self._get_json(
            "/v3/snapshot",
            {"ticker.any_of": ",".join(symbols), "limit": len(symbols)},
            symbol=",".join(symbols),
        )
        results = data.get("results")
        if not isinstance(results, list):
            raise MalformedResponseError("Snapshot payload missing results")

        prices: Dict[str, float] = {}
        for item in results:
            if not isinstance(item, dict) or not isinstance(item.get("ticker"), str):
                self.logger.warning("Skipping snapshot item with unexpected shape")
                continue

            session = item.get("session") if isinstance(item.get("session"), dict) else {}
            last_trade = item.get("last_trade") if isinstance(item.get("last_trade"), dict) else {}
            price = session.get("price") or last_trade.get("price")

            if isinstance(price, (int, float)) and not isinstance(price, bool) and price > 0:
                prices[item["ticker"].upper()] = float(price)

        return prices

    def fetch_bars(
        self, symbol: str, from_date: str, to_date: str, multiplier: int = 1, timespan: str = "day"
    ) -> List[PriceBar]:
        data = self._get_json(
            f"/v2/aggs/ticker/{symbol}/range/{multiplier}/{timespan}/{from_date}/{to_date}",
            {"adjusted": "true", "sort": "asc", "limit": 50000},
            symbol=symbol,
        )
        results = data.get("results") or []
        if not isinstance(results, list):
            raise MalformedResponseError("Aggregate results have unexpected shape", symbol)

        bars = []
        for item in results:
            try:
                bars.append(
                    PriceBar(
                        symbol=symbol,
                        timestamp=int(item["t"]),
                        open=float(item["o"]),
                        high=float(item["h"]),
                        low=float(item["l"]),
                        close=float(item["c"]),
                        volume=float(item.get("v", 0)),
                    )
                )
            except (KeyError, TypeError, ValueError):
                self.logger.warning(f"Skipping malformed bar for {symbol}")
        return bars

    # ------------------------------------------------------------------
    # Points, caching and fallback
    # ------------------------------------------------------------------

    def _today(self) -> str:
        return date_type.today().isoformat()

    def _point(self, symbol: str, date: str, price: float, source: str) -> PricePoint:
        return PricePoint(
            symbol=symbol, date=date, price=price, timestamp=self.cache.clock(), source=source
        )

    def get_fallback_price(self, symbol: str, label: str = "current") -> PricePoint:
        """Fallback point; ``label`` is ``current``, ``previous`` or a date"""
        symbol = symbol.upper()
        price = fallback_price(symbol, f"{self.fallback_seed}:{label}")
        date = self._today() if label in ("current", "previous") else label
        return self._point(symbol, date, price, FALLBACK_SOURCE)

    def _cached_or_fetch(
        self,
        kind: str,
        symbol: str,
        date: str,
        fetch: Callable[[], PricePoint],
        use_fallback: bool,
        fallback_label: str,
    ) -> PricePoint:
        cached = self.cache.get(kind, symbol, date)
        if cached is not None:
            return cached

        try:
            point = fetch()
        except MarketDataError as e:
            if not use_fallback:
                raise
            self.logger.warning(f"Using fallback {kind} price for {symbol}: {e}")
            return self.get_fallback_price(symbol, fallback_label)

        self.cache.set(kind, symbol, date, point)
        return point

    def get_current_point(self, symbol: str, use_fallback: bool = True) -> PricePoint:
        symbol = normalize_symbol(symbol)

        def fetch() -> PricePoint:
            self.logger.info(f"Fetching current price for {symbol}")
            return self._point(symbol, self._today(), self.fetch_last_trade(symbol), PROVIDER)

        return self._cached_or_fetch(CURRENT, symbol, "current", fetch, use_fallback, "current")

    def get_previous_close(self, symbol: str, use_fallback: bool = True) -> PricePoint:
        symbol = normalize_symbol(symbol)

        def fetch() -> PricePoint:
            self.logger.info(f"Fetching previous close for {symbol}")
            bar = self.fetch_previous_bar(symbol)
            bar_date = self._bar_date(bar) or self._today()
            return self._point(symbol, bar_date, float(bar["c"]), PROVIDER)

        return self._cached_or_fetch(PREVIOUS, symbol, "previous", fetch, use_fallback, "previous")

    def get_historical_price(
        self, symbol: str, date: str, use_fallback: bool = True
    ) -> Optional[PricePoint]:
        """Daily close for ``date`` (YYYY-MM-DD)

        Returns None only when fallback is disabled and the provider has no
        bar for that date; other provider errors propagate in that mode.
        """
        symbol = normalize_symbol(symbol)
        date = self._validate_date(date)

        def fetch() -> PricePoint:
            self.logger.info(f"Fetching historical price for {symbol} on {date}")
            bar = self.fetch_daily_bar(symbol, date)
            return self._point(symbol, date, float(bar["c"]), PROVIDER)

        try:
            return self._cached_or_fetch(HISTORICAL, symbol, date, fetch, use_fallback, date)
        except NoDataError:
            return None

    def get_current_price(self, symbol: str, use_fallback: bool = True) -> Quote:
        """Current price with change against the previous close"""
        current = self.get_current_point(symbol, use_fallback)
        previous = self.get_previous_close(symbol, use_fallback)

        change = current.price - previous.price
        change_percent = (change / previous.price) * 100 if previous.price > 0 else 0.0
        source = FALLBACK_SOURCE if current.is_fallback or previous.is_fallback else current.source

        return Quote(
            symbol=current.symbol,
            price=current.price,
            change=change,
            change_percent=change_percent,
            previous_close=previous.price,
            source=source,
        )

    @staticmethod
    def _bar_date(bar: Dict) -> Optional[str]:
        ts = bar.get("t")
        if isinstance(ts, (int, float)) and not isinstance(ts, bool):
            return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).date().isoformat()
        return None

    @staticmethod
    def _validate_date(value: str) -> str:
        try:
            return datetime.strptime(value, "%Y-%m-%d").date().isoformat()
        except (TypeError, ValueError):
            raise ValueError(f"Invalid date {value!r}, expected YYYY-MM-DD")

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    @staticmethod
    def _unique(symbols: Iterable[str]) -> List[str]:
        return list(dict.fromkeys(normalize_symbol(s) for s in symbols))

    def _chunks(self, symbols: List[str]) -> List[List[str]]:
        size = self.max_batch_size
        return [symbols[i : i + size] for i in range(0, len(symbols), size)]

    def _fan_out(
        self, symbols: List[str], fetch_one: Callable[[str], PricePoint], label: str
    ) -> Dict[str, PricePoint]:
        """Fetch symbols concurrently; a failing symbol gets a fallback point"""
        results: Dict[str, PricePoint] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_symbol = {executor.submit(fetch_one, symbol): symbol for symbol in symbols}

            for future in as_completed(future_to_symbol):
                symbol = future_to_symbol[future]
                try:
                    results[symbol] = future.result()
                except Exception as e:
                    self.logger.error(f"Error fetching {symbol}: {e}")
                    results[symbol] = self.get_fallback_price(symbol, label)

        return results

    def _run_batch(
        self,
        kind: str,
        symbols: Iterable[str],
        date: str,
        fetch_chunk: Callable[[List[str]], Dict[str, PricePoint]],
    ) -> Dict[str, PricePoint]:
        unique = self._unique(symbols)
        results: Dict[str, PricePoint] = {}
        uncached: List[str] = []

        for symbol in unique:
            cached = self.cache.get(kind, symbol, date)
            if cached is not None:
                results[symbol] = cached
            else:
                uncached.append(symbol)

        self.logger.info(
            f"Batch {kind}: {len(results)} cached, fetching {len(uncached)} of {len(unique)}"
        )

        for index, chunk in enumerate(self._chunks(uncached)):
            if index > 0 and self.batch_delay > 0:
                # Stay under provider rate limits between chunks
                self.sleep(self.batch_delay)
            results.update(fetch_chunk(chunk))

        return {symbol: results[symbol] for symbol in unique}

    def _fetch_current_chunk(self, chunk: List[str]) -> Dict[str, PricePoint]:
        if not self.api_key:
            return {symbol: self.get_fallback_price(symbol) for symbol in chunk}

        try:
            prices = self.fetch_snapshot_batch(chunk)
        except MarketDataError as e:
            self.logger.error(f"Snapshot failed for {len(chunk)} symbols, fetching individually: {e}")
            return self._fan_out(chunk, self.get_current_point, "current")

        results: Dict[str, PricePoint] = {}
        for symbol in chunk:
            if symbol in prices:
                point = self._point(symbol, self._today(), prices[symbol], SNAPSHOT_SOURCE)
                self.cache.set(CURRENT, symbol, "current", point)
                results[symbol] = point
            else:
                self.logger.warning(f"No snapshot price for {symbol}, using fallback")
                results[symbol] = self.get_fallback_price(symbol)
        return results

    def get_batch_current_prices(self, symbols: Iterable[str]) -> Dict[str, PricePoint]:
        """Current prices for many symbols; every requested symbol gets a point"""
        return self._run_batch(CURRENT, symbols, "current", self._fetch_current_chunk)

    def get_batch_previous_closes(self, symbols: Iterable[str]) -> Dict[str, PricePoint]:
        return self._run_batch(
            PREVIOUS,
            symbols,
            "previous",
            lambda chunk: self._fan_out(chunk, self.get_previous_close, "previous"),
        )

    def get_batch_historical_prices(self, symbols: Iterable[str], date: str) -> Dict[str, PricePoint]:
        date = self._validate_date(date)

        def fetch_one(symbol: str) -> PricePoint:
            point = self.get_historical_price(symbol, date)
            return point if point is not None else self.get_fallback_price(symbol, date)

        return self._run_batch(
            HISTORICAL, symbols, date, lambda chunk: self._fan_out(chunk, fetch_one, date)
        )

    def prefetch(self, symbols: Iterable[str]) -> int:
        """Warm the current and previous-close caches. Returns symbol count"""
        unique = self._unique(symbols)
        if not unique:
            return 0
        self.logger.info(f"Prefetching {len(unique)} symbols")
        self.get_batch_current_prices(unique)
        self.get_batch_previous_closes(unique)
        return len(unique)

    # ------------------------------------------------------------------
    # Derived values and history
    # ------------------------------------------------------------------

    def calculate_day_change(self, symbol: str, shares: float) -> Dict[str, float]:
        current = self.get_current_point(symbol)
        prior = self.get_previous_close(symbol)

        price_diff = current.price - prior.price
        return {
            "day_change_percent": (price_diff / prior.price) * 100 if prior.price > 0 else 0.0,
            "day_change_value": price_diff * shares,
            "current_price": current.price,
            "prior_close_price": prior.price,
        }

    def get_price_range(self, symbol: str, from_date: str, to_date: Optional[str] = None) -> List[PriceBar]:
        symbol = normalize_symbol(symbol)
        from_date = self._validate_date(from_date)
        to_date = self._validate_date(to_date or from_date)

        try:
            return self.fetch_bars(symbol, from_date, to_date)
        except MarketDataError as e:
            self.logger.error(f"Failed to fetch price range for {symbol}: {e}")
            return []

    def get_price_history(
        self, symbol: str, time_range: str = "1M", end: Optional[date_type] = None
    ) -> pd.DataFrame:
        """
        OHLCV history for charting

        Args:
            symbol: Stock symbol
            time_range: One of 1D, 5D, 1M, 3M, 6M, 1Y, 2Y, 5Y
            end: Last day of the window (defaults to today)

        Returns:
            DataFrame indexed by Date with Open/High/Low/Close/Volume columns
        """
        if time_range not in TIME_RANGES:
            raise ValueError(f"Unsupported time range {time_range!r}")

        symbol = normalize_symbol(symbol)
        days, multiplier, timespan = TIME_RANGES[time_range]
        end = end or date_type.today()
        start = end - timedelta(days=days)

        try:
            bars = self.fetch_bars(symbol, start.isoformat(), end.isoformat(), multiplier, timespan)
        except MarketDataError as e:
            self.logger.error(f"Error retrieving history for {symbol}: {e}")
            return pd.DataFrame()

        if not bars:
            self.logger.warning(f"No history returned for {symbol}")
            return pd.DataFrame()

        data = pd.DataFrame(
            {
                "Open": [b.open for b in bars],
                "High": [b.high for b in bars],
                "Low": [b.low for b in bars],
                "Close": [b.close for b in bars],
                "Volume": [b.volume for b in bars],
            },
            index=pd.to_datetime([b.timestamp for b in bars], unit="ms"),
        )
        data.index.name = "Date"
        return self._clean_data(data)

    def _clean_data(self, data: pd.DataFrame) -> pd.DataFrame:
        """Clean and validate bars"""
        if data.empty:
            return data

        # Remove rows with all NaN values
        data = data.dropna(how="all")

        # Forward fill missing values (max 3 consecutive)
        data = data.ffill(limit=3)

        # Ensure positive prices and volumes
        for col in ["Open", "High", "Low", "Close"]:
            if col in data.columns:
                data = data[data[col] > 0]

        if "Volume" in data.columns:
            data = data[data["Volume"] >= 0]

        return data

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def close(self) -> None:
        """Close the HTTP session"""
        self.session.close()
