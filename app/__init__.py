"""
app/__init__.py
Flask application factory with Flasgger OpenAPI support
"""

from flask import Flask
from flask_cors import CORS
from flasgger import Flasgger
import logging
from typing import Optional

from config.settings import DevelopmentConfig, ProductionConfig, TestingConfig, get_config

CONFIGS = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def create_app(
    config_name: Optional[str] = None,
    database_url: Optional[str] = None,
    price_service=None,
) -> Flask:
    """
    Application factory pattern

    Creates and configures Flask app with:
    - CORS support
    - Flasgger for OpenAPI/Swagger
    - Portfolio store, price service and leaderboard service
    - Per-client rate limiting
    - API blueprint for routes

    Args:
        config_name: development, production or testing (defaults to FLASK_ENV)
        database_url: SQLAlchemy URL overriding the configured database
        price_service: Prebuilt PriceService, mainly for tests
    """
    config_class = CONFIGS.get(config_name or "", None) or get_config()

    app = Flask(__name__)
    app.config.from_object(config_class)
    app.config["APP_CONFIG"] = config_class

    # Enable CORS for all API routes
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    # Configure Flask
    app.config["JSON_SORT_KEYS"] = False

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Services
    from app.api.rate_limit import RateLimiter
    from app.core.portfolio_manager import PortfolioManager
    from app.core.portfolio_service import PortfolioService
    from app.core.price_service import PriceService
    from app.db import DatabaseManager

    if database_url:
        db_manager = DatabaseManager(database_url, config_class)
    else:
        db_manager = DatabaseManager.from_config(config_class)
    db_manager.init_db()

    if price_service is None:
        price_service = PriceService.from_config(config_class)

    manager = PortfolioManager(db_manager)
    if config_class.SEED_SAMPLES() and not getattr(config_class, "TESTING", False):
        manager.initialize_samples()

    portfolio_service = PortfolioService(
        manager,
        price_service,
        tiers=config_class.TIER_THRESHOLDS(),
        default_tier=config_class.DEFAULT_TIER(),
        leaderboard_ttl=config_class.LEADERBOARD_CACHE_TTL(),
    )

    app.extensions["db_manager"] = db_manager
    app.extensions["price_service"] = price_service
    app.extensions["portfolio_manager"] = manager
    app.extensions["portfolio_service"] = portfolio_service

    if config_class.RATE_LIMIT_ENABLED():
        app.extensions["rate_limiter"] = RateLimiter(
            max_requests=config_class.RATE_LIMIT_REQUESTS(),
            window_seconds=config_class.RATE_LIMIT_WINDOW(),
        )

    # Initialize Flasgger for OpenAPI documentation and Swagger UI
    swagger_config = {
        "headers": [],
        "specs": [
            {
                "endpoint": "apispec",
                "route": "/apispec.json",
                "rule_filter": lambda rule: True,
                "model_filter": lambda tag: True,
            }
        ],
        "static_url_path": "/flasgger_static",
        "swagger_ui": True,
        "specs_route": "/api/docs",
        "uiversion": 3,
        "info": {
            "title": "Trading Leaderboard API",
            "version": "1.0.0",
            "description": (
                "Simulated portfolios, a ranked trader leaderboard, cached market "
                "prices and a discounted cash flow valuation calculator."
            ),
        },
        "schemes": ["http", "https"],
    }

    Flasgger(app, config=swagger_config)

    # Register API blueprint
    from app.api.routes import api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    return app
