"""
app/api/routes.py - REST API endpoints for prices, portfolios, leaderboard and DCF with Flasgger documentation
"""

from flask import Blueprint, current_app, request, jsonify, Response
from datetime import datetime
import logging
from typing import Tuple

from app.api.rate_limit import rate_limited
from app.core.dcf import DCFInputs, compute_dcf
from app.core.exceptions import (
    PortfolioNotFoundError,
    PositionValidationError,
    UsernameConflictError,
)
from app.core.leaderboard import SORT_KEYS, filter_entries, paginate
from app.core.portfolio_service import PortfolioService
from app.core.price_service import TIME_RANGES, PriceService

api_bp = Blueprint("api", __name__)
logger = logging.getLogger(__name__)

MAX_BATCH_SYMBOLS = 200


def _price_service() -> PriceService:
    return current_app.extensions["price_service"]


def _portfolio_service() -> PortfolioService:
    return current_app.extensions["portfolio_service"]


def _config():
    return current_app.config["APP_CONFIG"]


def _error(message: str, status: int) -> Tuple[Response, int]:
    return jsonify({"error": message, "timestamp": datetime.now().isoformat()}), status


def _validate_date(value: str) -> str:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date().isoformat()
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date {value!r}, expected YYYY-MM-DD")


# ============================================================================
# HEALTH ENDPOINTS
# ============================================================================


@api_bp.route("/health", methods=["GET"])
def health_check() -> Tuple[Response, int]:
    """
    Get service health status
    ---
    tags:
      - health
    responses:
      200:
        description: Service healthy
        schema:
          type: object
          properties:
            status:
              type: string
              enum: ['healthy', 'degraded']
            timestamp:
              type: string
            database:
              type: string
            market_data:
              type: string
              enum: ['live', 'fallback']
            cache_size:
              type: integer
            version:
              type: string
      503:
        description: Database unavailable
    """
    db_manager = current_app.extensions["db_manager"]
    price_service = _price_service()

    connected = db_manager._test_connection()
    health_status = {
        "status": "healthy" if connected else "degraded",
        "timestamp": datetime.now().isoformat(),
        "database": "connected" if connected else "unavailable",
        "market_data": "live" if price_service.api_key else "fallback",
        "cache_size": len(price_service.cache),
        "version": "1.0.0",
    }
    return jsonify(health_status), 200 if connected else 503


# ============================================================================
# PRICE ENDPOINTS
# ============================================================================


@api_bp.route("/prices", methods=["GET"])
@rate_limited
def get_batch_prices() -> Tuple[Response, int]:
    """
    Get current prices for several symbols
    ---
    tags:
      - prices
    parameters:
      - name: symbols
        in: query
        type: string
        required: true
        description: Comma-separated symbols, e.g. AAPL,MSFT
    responses:
      200:
        description: Map of symbol to price point
      400:
        description: Missing or too many symbols
      429:
        description: Rate limit exceeded
    """
    try:
        raw = request.args.get("symbols", "", type=str)
        symbols = [s.strip() for s in raw.split(",") if s.strip()]

        if not symbols:
            return _error("symbols query parameter is required", 400)
        if len(symbols) > MAX_BATCH_SYMBOLS:
            return _error(f"At most {MAX_BATCH_SYMBOLS} symbols per request", 400)

        points = _price_service().get_batch_current_prices(symbols)
        return (
            jsonify(
                {
                    "prices": {symbol: point.to_dict() for symbol, point in points.items()},
                    "count": len(points),
                    "timestamp": datetime.now().isoformat(),
                }
            ),
            200,
        )

    except Exception as e:
        logger.error(f"Batch prices API error: {e}")
        return jsonify({"error": str(e)}), 500


@api_bp.route("/prices/<symbol>", methods=["GET"])
@rate_limited
def get_price(symbol: str) -> Tuple[Response, int]:
    """
    Get current quote for a symbol
    ---
    tags:
      - prices
    parameters:
      - name: symbol
        in: path
        type: string
        required: true
    responses:
      200:
        description: Quote with change against previous close
        schema:
          type: object
          properties:
            symbol:
              type: string
            price:
              type: number
            change:
              type: number
            change_percent:
              type: number
            previous_close:
              type: number
            source:
              type: string
      400:
        description: Invalid symbol
    """
    try:
        quote = _price_service().get_current_price(symbol)
        return jsonify(quote.to_dict()), 200

    except PositionValidationError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.error(f"Price API error for {symbol}: {e}")
        return jsonify({"error": str(e)}), 500


@api_bp.route("/prices/<symbol>/historical", methods=["GET"])
@rate_limited
def get_historical_price(symbol: str) -> Tuple[Response, int]:
    """
    Get the daily close for a symbol on a date
    ---
    tags:
      - prices
    parameters:
      - name: symbol
        in: path
        type: string
        required: true
      - name: date
        in: query
        type: string
        required: true
        description: YYYY-MM-DD
    responses:
      200:
        description: Price point
      400:
        description: Missing or invalid date
    """
    try:
        date = request.args.get("date", type=str)
        if not date:
            return _error("date query parameter is required", 400)

        point = _price_service().get_historical_price(symbol, _validate_date(date))
        return jsonify(point.to_dict()), 200

    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.error(f"Historical price API error for {symbol}: {e}")
        return jsonify({"error": str(e)}), 500


@api_bp.route("/stocks/<symbol>/history", methods=["GET"])
@rate_limited
def get_stock_history(symbol: str) -> Tuple[Response, int]:
    """
    Get OHLCV bars for charting
    ---
    tags:
      - prices
    parameters:
      - name: symbol
        in: path
        type: string
        required: true
      - name: range
        in: query
        type: string
        default: 1M
        enum: ['1D', '5D', '1M', '3M', '6M', '1Y', '2Y', '5Y']
    responses:
      200:
        description: Bars ordered oldest first
      400:
        description: Unsupported range
      404:
        description: No history available
    """
    try:
        time_range = request.args.get("range", "1M", type=str).upper()
        if time_range not in TIME_RANGES:
            return _error(f"Unsupported range {time_range}, expected one of {list(TIME_RANGES)}", 400)

        data = _price_service().get_price_history(symbol, time_range)
        if data.empty:
            return jsonify({"message": f"No history available for {symbol.upper()}"}), 404

        bars = [
            {
                "date": index.isoformat(),
                "open": float(row["Open"]),
                "high": float(row["High"]),
                "low": float(row["Low"]),
                "close": float(row["Close"]),
                "volume": float(row["Volume"]),
            }
            for index, row in data.iterrows()
        ]

        return (
            jsonify({"symbol": symbol.upper(), "range": time_range, "bars": bars, "count": len(bars)}),
            200,
        )

    except PositionValidationError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.error(f"History API error for {symbol}: {e}")
        return jsonify({"error": str(e)}), 500


# ============================================================================
# PORTFOLIO ENDPOINTS
# ============================================================================


@api_bp.route("/portfolio", methods=["GET"])
@rate_limited
def get_portfolio() -> Tuple[Response, int]:
    """
    Get one portfolio by username, or all portfolios
    ---
    tags:
      - portfolio
    parameters:
      - name: username
        in: query
        type: string
        description: Optional - case-insensitive username
    responses:
      200:
        description: Portfolio(s) with live valuation
      404:
        description: Portfolio not found
    """
    try:
        username = request.args.get("username", type=str)

        if username:
            return jsonify(_portfolio_service().get_portfolio(username)), 200

        portfolios = _portfolio_service().get_all_portfolios()
        return jsonify({"portfolios": portfolios, "count": len(portfolios)}), 200

    except PortfolioNotFoundError as e:
        return _error(str(e), 404)
    except Exception as e:
        logger.error(f"Portfolio API error: {e}")
        return jsonify({"error": str(e)}), 500


@api_bp.route("/portfolio", methods=["POST"])
@rate_limited
def save_portfolio() -> Tuple[Response, int]:
    """
    Create or replace a portfolio (keyed by user_id)
    ---
    tags:
      - portfolio
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          required: [user_id, username, positions]
          properties:
            user_id:
              type: string
            username:
              type: string
            total_invested:
              type: number
            positions:
              type: array
              items:
                type: object
                properties:
                  symbol:
                    type: string
                  shares:
                    type: number
                  avg_price:
                    type: number
                  sector:
                    type: string
    responses:
      200:
        description: Portfolio updated
      201:
        description: Portfolio created
      400:
        description: Invalid portfolio
      409:
        description: Username belongs to another user
    """
    try:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return _error("Request body must be a JSON object", 400)

        portfolio, created = _portfolio_service().save_portfolio(payload)
        return (
            jsonify(
                {
                    "success": True,
                    "created": created,
                    "portfolio": portfolio.to_dict(),
                    "timestamp": datetime.now().isoformat(),
                }
            ),
            201 if created else 200,
        )

    except PositionValidationError as e:
        return _error(str(e), 400)
    except UsernameConflictError as e:
        return _error(str(e), 409)
    except Exception as e:
        logger.error(f"Save portfolio API error: {e}")
        return jsonify({"error": str(e)}), 500


@api_bp.route("/portfolio/<username>/snapshot", methods=["GET"])
@rate_limited
def get_portfolio_snapshot(username: str) -> Tuple[Response, int]:
    """
    Get a portfolio snapshot with sector allocations
    ---
    tags:
      - portfolio
    parameters:
      - name: username
        in: path
        type: string
        required: true
      - name: at
        in: query
        type: string
        description: Optional YYYY-MM-DD for since-date performance
    responses:
      200:
        description: Snapshot
      400:
        description: Invalid date
      404:
        description: Portfolio not found
    """
    try:
        at = request.args.get("at", type=str)
        snapshot = _portfolio_service().get_snapshot(username, _validate_date(at) if at else None)
        return jsonify(snapshot), 200

    except PortfolioNotFoundError as e:
        return _error(str(e), 404)
    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.error(f"Snapshot API error for {username}: {e}")
        return jsonify({"error": str(e)}), 500


# ============================================================================
# LEADERBOARD ENDPOINTS
# ============================================================================


@api_bp.route("/leaderboard", methods=["GET"])
@rate_limited
def get_leaderboard() -> Tuple[Response, int]:
    """
    Get the ranked leaderboard
    ---
    tags:
      - leaderboard
    parameters:
      - name: sort
        in: query
        type: string
        default: return
        enum: ['return', 'total_return', 'day_change', 'value']
      - name: page
        in: query
        type: integer
        default: 1
      - name: pageSize
        in: query
        type: integer
        default: 25
      - name: q
        in: query
        type: string
        description: Username or symbol substring
      - name: sector
        in: query
        type: string
      - name: tier
        in: query
        type: string
      - name: at
        in: query
        type: string
        description: Optional YYYY-MM-DD; ranks by return since that date
    responses:
      200:
        description: Page of leaderboard entries
        schema:
          type: object
          properties:
            data:
              type: array
            page:
              type: integer
            pageSize:
              type: integer
            total:
              type: integer
            asOf:
              type: string
      400:
        description: Invalid parameter
    """
    try:
        config = _config()

        sort_key = request.args.get("sort", "return", type=str)
        if sort_key not in SORT_KEYS:
            return _error(f"Invalid sort {sort_key}, expected one of {sorted(SORT_KEYS)}", 400)

        page = max(1, request.args.get("page", 1, type=int))
        page_size = request.args.get("pageSize", config.DEFAULT_PAGE_SIZE(), type=int)
        page_size = min(max(1, page_size), config.MAX_PAGE_SIZE())

        at = request.args.get("at", type=str)
        at = _validate_date(at) if at else None

        entries = _portfolio_service().get_leaderboard(at=at, sort_key=sort_key)
        filtered = filter_entries(
            entries,
            query=request.args.get("q", type=str),
            sector=request.args.get("sector", type=str),
            tier=request.args.get("tier", type=str),
        )

        return (
            jsonify(
                {
                    "data": [e.to_dict() for e in paginate(filtered, page, page_size)],
                    "page": page,
                    "pageSize": page_size,
                    "total": len(filtered),
                    "asOf": at or datetime.now().isoformat(),
                }
            ),
            200,
        )

    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.error(f"Leaderboard API error: {e}")
        return jsonify({"error": str(e)}), 500


@api_bp.route("/leaderboard/<username>", methods=["GET"])
@rate_limited
def get_leaderboard_entry(username: str) -> Tuple[Response, int]:
    """
    Get one trader's leaderboard entry
    ---
    tags:
      - leaderboard
    parameters:
      - name: username
        in: path
        type: string
        required: true
    responses:
      200:
        description: Leaderboard entry with global rank
      404:
        description: Portfolio not found
    """
    try:
        entry = _portfolio_service().get_leaderboard_entry(username)
        return jsonify(entry.to_dict()), 200

    except PortfolioNotFoundError as e:
        return _error(str(e), 404)
    except Exception as e:
        logger.error(f"Leaderboard entry API error for {username}: {e}")
        return jsonify({"error": str(e)}), 500


# ============================================================================
# VALUATION ENDPOINTS
# ============================================================================


@api_bp.route("/dcf", methods=["POST"])
@rate_limited
def calculate_dcf() -> Tuple[Response, int]:
    """
    Estimate fair value with a discounted cash flow model
    ---
    tags:
      - valuation
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            current_price:
              type: number
              description: Market price to compare against
            target_revenue:
              type: number
            primary_margin:
              type: number
            commodity_price:
              type: number
            secondary_margin:
              type: number
            net_debt:
              type: number
            capex:
              type: number
            risk_free_rate:
              type: number
            risk_premium:
              type: number
            terminal_multiple:
              type: number
            shares_outstanding:
              type: number
    responses:
      200:
        description: Fair price with yearly breakdown
      400:
        description: Invalid inputs
    """
    try:
        payload = request.get_json(silent=True) or {}
        if not isinstance(payload, dict):
            return _error("Request body must be a JSON object", 400)

        try:
            current_price = float(payload.get("current_price", 0) or 0)
        except (TypeError, ValueError):
            return _error("current_price must be numeric", 400)

        inputs = DCFInputs.from_dict(payload, **_config().DCF_DEFAULTS())
        result = compute_dcf(inputs, current_price)

        return (
            jsonify(
                {
                    "inputs": inputs.to_dict(),
                    "current_price": current_price,
                    "result": result.to_dict(),
                }
            ),
            200,
        )

    except ValueError as e:
        return _error(str(e), 400)
    except Exception as e:
        logger.error(f"DCF API error: {e}")
        return jsonify({"error": str(e)}), 500


# ============================================================================
# CACHE ENDPOINTS
# ============================================================================


@api_bp.route("/cache/stats", methods=["GET"])
def get_cache_stats() -> Tuple[Response, int]:
    """
    Get price cache statistics
    ---
    tags:
      - cache
    responses:
      200:
        description: Cache size, hit/miss counts and oldest/newest keys
    """
    return jsonify(_price_service().get_cache_stats()), 200


@api_bp.route("/cache/clear", methods=["POST"])
def clear_cache() -> Tuple[Response, int]:
    """
    Clear the price and leaderboard caches
    ---
    tags:
      - cache
    responses:
      200:
        description: Caches cleared
    """
    _price_service().clear_cache()
    _portfolio_service().invalidate_leaderboard()
    logger.info("Caches cleared via API")
    return jsonify({"success": True, "timestamp": datetime.now().isoformat()}), 200
