"""
config/settings.py - Configuration management
"""

import os
import json
from typing import Dict, List, Any, Tuple, cast


class ConfigLegacy:
    """Base configuration class backed by config.json with built-in defaults"""

    # Load from environment or config file
    _config_data = None

    @classmethod
    def _load_config(cls) -> Dict:
        """Load configuration from file"""
        if cls._config_data is None:
            config_path = os.getenv("CONFIG_PATH", "config.json")
            try:
                with open(config_path, "r") as f:
                    cls._config_data = cls._merge(cls._get_default_config(), json.load(f))
            except FileNotFoundError:
                cls._config_data = cls._get_default_config()
        return cls._config_data

    @classmethod
    def _merge(cls, defaults: Dict, overrides: Dict) -> Dict:
        """Merge file values over defaults, one section deep"""
        merged = dict(defaults)
        for section, values in overrides.items():
            if isinstance(values, dict) and isinstance(merged.get(section), dict):
                merged[section] = {**merged[section], **values}
            else:
                merged[section] = values
        return merged

    @classmethod
    def _get_default_config(cls) -> Dict:
        """Default configuration"""
        return {
            "market_data": {
                "provider": "polygon",
                "base_url": "https://api.polygon.io",
                "request_timeout_seconds": 10,
                "max_batch_size": 50,
                "batch_delay_seconds": 0.2,
                "max_workers": 5,
                "max_retries": 3,
                "fallback_seed": "",
            },
            "cache": {
                "current_ttl_seconds": 300,
                "previous_close_ttl_seconds": 3600,
                "historical_ttl_seconds": 14 * 24 * 60 * 60,
                "max_entries": 10000,
                "sweep_interval_minutes": 15,
            },
            "leaderboard": {
                # Inclusive lower bounds, highest first
                "tiers": [["S", 30.0], ["A", 15.0], ["B", 10.0]],
                "default_tier": "C",
                "default_page_size": 25,
                "max_page_size": 100,
                "cache_ttl_seconds": 60,
            },
            "rate_limit": {
                "enabled": True,
                "requests": 100,
                "window_seconds": 15 * 60,
            },
            "dcf": {
                "target_revenue": 920.0,
                "base_revenue": 25.0,
                "primary_margin": 80.0,
                "commodity_price": 95000.0,
                "production_volume": 2200.0,
                "secondary_margin": 35.0,
                "net_debt": 787.0,
                "capex": 50.0,
                "risk_free_rate": 4.5,
                "risk_premium": 3.5,
                "terminal_multiple": 15.0,
                "shares_outstanding": 520.0,
                "tax_rate": 0.21,
                "ramp_schedule": [0.33, 0.66, 1.0, 1.0, 1.0],
                "start_year": 2026,
            },
            "data": {
                "database_path": "data/leaderboard.db",
                "seed_samples": True,
            },
            "api": {
                # Note: Development mode overrides host to 127.0.0.1 for security
                "host": "0.0.0.0",
                "port": 5000,
                "debug": False,
                "cors_enabled": True,
            },
        }

    # Configuration properties as class methods
    @classmethod
    def POLYGON_API_KEY(cls) -> str:
        return os.getenv("POLYGON_API_KEY", "")

    @classmethod
    def MARKET_DATA_BASE_URL(cls) -> str:
        return os.getenv(
            "MARKET_DATA_BASE_URL", cls._load_config()["market_data"]["base_url"]
        )

    @classmethod
    def REQUEST_TIMEOUT(cls) -> float:
        return float(cls._load_config()["market_data"]["request_timeout_seconds"])

    @classmethod
    def MAX_BATCH_SIZE(cls) -> int:
        return int(cls._load_config()["market_data"]["max_batch_size"])

    @classmethod
    def BATCH_DELAY(cls) -> float:
        return float(cls._load_config()["market_data"]["batch_delay_seconds"])

    @classmethod
    def MAX_WORKERS(cls) -> int:
        return int(cls._load_config()["market_data"]["max_workers"])

    @classmethod
    def MAX_RETRIES(cls) -> int:
        return int(cls._load_config()["market_data"]["max_retries"])

    @classmethod
    def FALLBACK_SEED(cls) -> str:
        return str(cls._load_config()["market_data"]["fallback_seed"])

    @classmethod
    def CACHE_TTLS(cls) -> Dict[str, float]:
        cache = cls._load_config()["cache"]
        return {
            "current": float(cache["current_ttl_seconds"]),
            "previous": float(cache["previous_close_ttl_seconds"]),
            "historical": float(cache["historical_ttl_seconds"]),
        }

    @classmethod
    def CACHE_MAX_ENTRIES(cls) -> int:
        return int(cls._load_config()["cache"]["max_entries"])

    @classmethod
    def CACHE_SWEEP_INTERVAL(cls) -> int:
        return int(cls._load_config()["cache"]["sweep_interval_minutes"])

    @classmethod
    def TIER_THRESHOLDS(cls) -> List[Tuple[str, float]]:
        tiers = cls._load_config()["leaderboard"]["tiers"]
        return [(str(name), float(bound)) for name, bound in tiers]

    @classmethod
    def DEFAULT_TIER(cls) -> str:
        return cast(str, cls._load_config()["leaderboard"]["default_tier"])

    @classmethod
    def DEFAULT_PAGE_SIZE(cls) -> int:
        return int(cls._load_config()["leaderboard"]["default_page_size"])

    @classmethod
    def MAX_PAGE_SIZE(cls) -> int:
        return int(cls._load_config()["leaderboard"]["max_page_size"])

    @classmethod
    def LEADERBOARD_CACHE_TTL(cls) -> float:
        return float(cls._load_config()["leaderboard"]["cache_ttl_seconds"])

    @classmethod
    def RATE_LIMIT_ENABLED(cls) -> bool:
        return cast(bool, cls._load_config()["rate_limit"]["enabled"])

    @classmethod
    def RATE_LIMIT_REQUESTS(cls) -> int:
        return int(cls._load_config()["rate_limit"]["requests"])

    @classmethod
    def RATE_LIMIT_WINDOW(cls) -> float:
        return float(cls._load_config()["rate_limit"]["window_seconds"])

    @classmethod
    def DCF_DEFAULTS(cls) -> Dict[str, Any]:
        return dict(cls._load_config()["dcf"])

    @classmethod
    def DATABASE_PATH(cls) -> str:
        return os.getenv("DATABASE_PATH", cls._load_config()["data"]["database_path"])

    @classmethod
    def SEED_SAMPLES(cls) -> bool:
        return cast(bool, cls._load_config()["data"]["seed_samples"])

    @classmethod
    def API_HOST(cls) -> str:
        return os.getenv("HOST", cls._load_config()["api"]["host"])

    @classmethod
    def API_PORT(cls) -> int:
        return int(os.getenv("PORT", cls._load_config()["api"]["port"]))

    @classmethod
    def get(cls, path: str, default: Any = None) -> Any:
        """Get configuration value by dot-separated path"""
        keys = path.split(".")
        value = cls._load_config()

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    @classmethod
    def validate_config(cls) -> List[str]:
        """Validate configuration and return list of issues"""
        issues = []
        config = cls._load_config()

        # Tier bounds must be strictly descending
        tiers = config.get("leaderboard", {}).get("tiers", [])
        bounds = [float(bound) for _, bound in tiers]
        if any(a <= b for a, b in zip(bounds, bounds[1:])):
            issues.append("Leaderboard tier thresholds must be strictly descending")

        names = [name for name, _ in tiers]
        if len(set(names)) != len(names):
            issues.append("Leaderboard tier names must be unique")

        # Cache TTLs
        for key, value in config.get("cache", {}).items():
            if key.endswith("_ttl_seconds") and float(value) <= 0:
                issues.append(f"Invalid cache.{key}: must be positive")

        # Provider batching
        market = config.get("market_data", {})
        if int(market.get("max_batch_size", 1)) < 1:
            issues.append("Invalid max_batch_size")
        if float(market.get("batch_delay_seconds", 0)) < 0:
            issues.append("Invalid batch_delay_seconds")

        # Rate limiting
        if int(config.get("rate_limit", {}).get("requests", 1)) < 1:
            issues.append("Invalid rate_limit.requests")

        if not os.getenv("POLYGON_API_KEY"):
            issues.append("POLYGON_API_KEY not set; fallback prices will be used")

        return issues

    @classmethod
    def reload(cls) -> None:
        """Drop the cached configuration"""
        cls._config_data = None


class Config(ConfigLegacy):
    """Configuration class with SQLAlchemy database support

    Database configuration via environment variables:
    - DATABASE_TYPE: sqlite (default), postgresql, or mysql
    - DATABASE_URL: full connection string (optional)
    - DB_USER, DB_PASSWORD, DB_HOST, DB_PORT, DB_NAME: individual params
    """

    DATABASE_TYPE: str = os.getenv("DATABASE_TYPE", "sqlite")
    DATABASE_URL: str | None = os.getenv("DATABASE_URL")

    # Connection pool settings (for PostgreSQL/MySQL)
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "20"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "40"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "3600"))

    # SQL debugging
    SQL_ECHO: bool = os.getenv("SQL_ECHO", "False").lower() == "true"


# Environment-specific configurations
class DevelopmentConfig(Config):
    """Development configuration"""

    DEBUG = True
    TESTING = False

    @classmethod
    def DATABASE_PATH(cls) -> str:
        return os.getenv("DATABASE_PATH", "data/dev_leaderboard.db")

    @classmethod
    def API_PORT(cls) -> int:
        return 5000


class ProductionConfig(Config):
    """Production configuration"""

    DEBUG = False
    TESTING = False

    @classmethod
    def API_PORT(cls) -> int:
        return int(os.getenv("PORT", 8080))


class TestingConfig(Config):
    """Testing configuration"""

    DEBUG = True
    TESTING = True

    @classmethod
    def DATABASE_PATH(cls) -> str:
        return os.getenv("DATABASE_PATH", "data/test_leaderboard.db")

    @classmethod
    def BATCH_DELAY(cls) -> float:
        return 0.0

    @classmethod
    def RATE_LIMIT_ENABLED(cls) -> bool:
        return False


def get_config() -> type[Config]:
    """Get configuration based on environment"""
    env = os.getenv("FLASK_ENV", "production")

    if env == "development":
        return DevelopmentConfig
    elif env == "testing":
        return TestingConfig
    else:
        return ProductionConfig
