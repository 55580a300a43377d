#!/usr/bin/env python3
"""
main.py - Main application entry point
"""

import os
import sys
import logging
import threading
import schedule
import time
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Add project root to Python path
project_root = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, project_root)

from app import create_app
from config.settings import get_config, Config


def setup_logging():
    """Setup application logging"""
    # Create logs directory
    os.makedirs("logs", exist_ok=True)

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler("logs/leaderboard.log", mode="a"),
        ],
    )

    return logging.getLogger(__name__)


def run_scheduled_tasks(app):
    """Run scheduled background tasks"""
    logger = logging.getLogger(__name__)
    price_service = app.extensions["price_service"]
    manager = app.extensions["portfolio_manager"]

    def sweep_cache():
        """Drop expired price cache entries"""
        try:
            removed = price_service.cache.sweep()
            logger.info(f"Scheduled cache sweep removed {removed} entries")
        except Exception as e:
            logger.error(f"Scheduled cache sweep failed: {e}")

    def prefetch_prices():
        """Warm prices for every stored portfolio symbol"""
        try:
            count = price_service.prefetch(manager.get_all_symbols())
            logger.info(f"Scheduled prefetch completed for {count} symbols")
        except Exception as e:
            logger.error(f"Scheduled prefetch failed: {e}")

    # Schedule tasks
    interval = Config.CACHE_SWEEP_INTERVAL()
    schedule.every(interval).minutes.do(sweep_cache)
    schedule.every(interval).minutes.do(prefetch_prices)

    # Run scheduler
    while True:
        schedule.run_pending()
        time.sleep(60)


def start_scheduler(app):
    """Start background scheduler"""
    logger = logging.getLogger(__name__)

    try:
        logger.info("Starting background scheduler")
        scheduler_thread = threading.Thread(
            target=run_scheduled_tasks, args=(app,), daemon=True
        )
        scheduler_thread.start()
        logger.info("Background scheduler started")

    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}")


def check_environment():
    """Check environment and configuration"""
    logger = logging.getLogger(__name__)

    try:
        # Check Python version
        if sys.version_info < (3, 10):
            logger.error("Python 3.10 or higher required")
            return False

        # Check required directories
        for directory in ["data", "logs"]:
            os.makedirs(directory, exist_ok=True)

        # Validate configuration
        config_issues = Config.validate_config()
        if config_issues:
            logger.warning("Configuration issues found:")
            for issue in config_issues:
                logger.warning(f"  - {issue}")

        logger.info("Environment check passed")
        return True

    except Exception as e:
        logger.error(f"Environment check failed: {e}")
        return False


def print_startup_info():
    """Print startup information"""
    logger = logging.getLogger(__name__)

    config = get_config()
    tiers = ", ".join(f"{name}>={bound:g}%" for name, bound in config.TIER_THRESHOLDS())

    startup_info = f"""
{'=' * 60}
>> Trading Leaderboard Starting
{'=' * 60}
Configuration: {config.__name__}
Database: {Config.DATABASE_URL or config.DATABASE_PATH()}
Market Data: {'live' if config.POLYGON_API_KEY() else 'fallback prices'}
Tiers: {tiers}, otherwise {config.DEFAULT_TIER()}
Cache Sweep Interval: {config.CACHE_SWEEP_INTERVAL()} minutes
Host: {config.API_HOST()}:{config.API_PORT()}
{'=' * 60}
    """

    print(startup_info)
    logger.info("Leaderboard startup initiated")


def main():
    """Main application function"""
    # Setup logging first
    logger = setup_logging()

    try:
        # Print startup information
        print_startup_info()

        # Check environment
        if not check_environment():
            logger.error("Environment check failed, aborting startup")
            return 1

        # Create Flask app (creates tables and services)
        app = create_app()
        config_class = get_config()

        # Start background scheduler
        start_scheduler(app)

        # Start Flask application
        if os.getenv("FLASK_ENV") == "development":
            # Development mode - restrict to localhost
            dev_host = "127.0.0.1"
            dev_port = config_class.API_PORT()
            logger.info(
                f"Starting Flask development server on {dev_host}:{dev_port} (localhost only)"
            )
            app.run(
                host=dev_host,
                port=dev_port,
                debug=True,
                use_reloader=False,  # Disable reloader to avoid scheduler conflicts
            )
        else:
            # Production mode
            logger.info(
                f"Starting Flask application on {config_class.API_HOST()}:{config_class.API_PORT()}"
            )
            app.run(host=config_class.API_HOST(), port=config_class.API_PORT(), debug=False)

        return 0

    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        return 0

    except Exception as e:
        logger.error(f"Application startup failed: {e}")
        return 1


def create_wsgi_app():
    """Create WSGI application for Gunicorn"""
    logger = setup_logging()

    try:
        if not check_environment():
            raise RuntimeError("Environment check failed")

        app = create_app()

        # Start background tasks
        start_scheduler(app)

        logger.info("WSGI application created successfully")
        return app

    except Exception as e:
        logger.error(f"WSGI application creation failed: {e}")
        raise


# WSGI entry point for Gunicorn
application = None


def get_wsgi_application():
    """Get WSGI application instance"""
    global application
    if application is None:
        application = create_wsgi_app()
    return application


if __name__ == "__main__":
    sys.exit(main())
