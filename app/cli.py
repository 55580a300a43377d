"""
CLI commands for the leaderboard service

Provides administrative commands for:
- Database initialization and sample data
- Listing and deleting portfolios
- Printing the leaderboard
- Price lookups and cache warming
- DCF valuation from the command line
"""

import sys
import logging
import click
from typing import Optional, Tuple

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _portfolio_manager():
    from app.core.portfolio_manager import PortfolioManager
    from app.db import DatabaseManager
    from config.settings import get_config

    db_manager = DatabaseManager.from_config(get_config())
    db_manager.init_db()
    return PortfolioManager(db_manager)


def _price_service():
    from app.core.price_service import PriceService
    from config.settings import get_config

    return PriceService.from_config(get_config())


@click.group()
def cli() -> None:
    """Trading Leaderboard CLI - Administrative commands"""
    pass


@cli.command()
def init_db() -> None:
    """
    Initialize the database schema

    Creates the portfolios table if it does not exist.
    """
    try:
        from app.db import DatabaseManager
        from config.settings import get_config

        click.echo("Initializing database...")

        db_manager = DatabaseManager.from_config(get_config())
        db_manager.init_db()
        click.echo("✓ Tables created")

        info = db_manager.get_database_info()
        click.echo(f"Database: {info['database_url']}")
        click.echo("\nDatabase initialized successfully!")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        logger.exception("Database initialization failed")
        sys.exit(1)


@cli.command()
def seed() -> None:
    """
    Load the demo portfolios when the store is empty
    """
    try:
        created = _portfolio_manager().initialize_samples()
        if created:
            click.echo(f"✓ Created {created} sample portfolios")
        else:
            click.echo("Portfolios already exist, nothing to seed.")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        logger.exception("Seeding failed")
        sys.exit(1)


@cli.command()
def list_portfolios() -> None:
    """
    List stored portfolios with their holdings
    """
    try:
        portfolios = _portfolio_manager().find_all()

        if not portfolios:
            click.echo("No portfolios found.")
            return

        click.echo("\n" + "=" * 60)
        click.echo("Portfolios")
        click.echo("=" * 60)

        for portfolio in portfolios:
            click.echo(
                f"User: {portfolio.username} ({portfolio.user_id}) | "
                f"Invested: ${portfolio.total_invested:,.2f} | "
                f"Holdings: {', '.join(portfolio.symbols) or '-'}"
            )

        click.echo("=" * 60 + "\n")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        logger.exception("List portfolios failed")
        sys.exit(1)


@cli.command()
@click.option("--user-id", prompt=True, help="user_id of the portfolio to delete")
@click.confirmation_option(
    prompt="Are you sure you want to delete this portfolio? This cannot be undone."
)
def delete_portfolio(user_id: str) -> None:
    """
    Delete a stored portfolio

    Use with caution - this operation cannot be undone.
    """
    try:
        if not _portfolio_manager().delete(user_id):
            click.echo(f"Portfolio '{user_id}' not found.", err=True)
            sys.exit(1)

        click.echo(f"✓ Portfolio '{user_id}' deleted successfully")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        logger.exception("Portfolio deletion failed")
        sys.exit(1)


@cli.command()
@click.option("--at", "at", default=None, help="Rank by return since this date (YYYY-MM-DD)")
@click.option(
    "--sort",
    "sort_key",
    default="return",
    type=click.Choice(["return", "total_return", "day_change", "value"]),
    help="Field to rank by",
)
def leaderboard(at: Optional[str], sort_key: str) -> None:
    """
    Print the ranked leaderboard
    """
    try:
        from app.core.portfolio_service import PortfolioService
        from config.settings import get_config

        config = get_config()
        service = PortfolioService(
            _portfolio_manager(),
            _price_service(),
            tiers=config.TIER_THRESHOLDS(),
            default_tier=config.DEFAULT_TIER(),
        )

        entries = service.get_leaderboard(at=at, sort_key=sort_key)
        if not entries:
            click.echo("No portfolios found.")
            return

        click.echo("\n" + "=" * 72)
        click.echo(f"Leaderboard{f' since {at}' if at else ''}")
        click.echo("=" * 72)

        for entry in entries:
            click.echo(
                f"#{entry.rank:<3} {entry.username:<16} {entry.return_percent:>8.2f}%  "
                f"Tier {entry.tier}  {entry.primary_sector:<14} {entry.primary_stock}"
            )

        click.echo("=" * 72 + "\n")

    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        logger.exception("Leaderboard failed")
        sys.exit(1)


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
def prices(symbols: Tuple[str, ...]) -> None:
    """
    Show current prices for SYMBOLS
    """
    try:
        service = _price_service()
        try:
            points = service.get_batch_current_prices(symbols)
        finally:
            service.close()

        for symbol, point in points.items():
            click.echo(f"{symbol:<8} ${point.price:>10,.2f}  ({point.source})")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        logger.exception("Price lookup failed")
        sys.exit(1)


@cli.command()
def prefetch() -> None:
    """
    Warm the price cache for every stored portfolio symbol
    """
    try:
        symbols = _portfolio_manager().get_all_symbols()
        if not symbols:
            click.echo("No portfolio symbols to prefetch.")
            return

        service = _price_service()
        try:
            count = service.prefetch(symbols)
            stats = service.get_cache_stats()
        finally:
            service.close()

        click.echo(f"✓ Prefetched {count} symbols ({stats['size']} cache entries)")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        logger.exception("Prefetch failed")
        sys.exit(1)


@cli.command()
@click.option("--current-price", type=float, required=True, help="Market price to compare against")
@click.option("--target-revenue", type=float, help="Terminal-year revenue ($M)")
@click.option("--primary-margin", type=float, help="Operating margin of the main stream (%)")
@click.option("--commodity-price", type=float, help="Unit price of the second stream ($)")
@click.option("--production-volume", type=float, help="Units produced per year")
@click.option("--secondary-margin", type=float, help="Operating margin of the second stream (%)")
@click.option("--net-debt", type=float, help="Net debt ($M)")
@click.option("--capex", type=float, help="Annual capital expenditure ($M)")
@click.option("--risk-free-rate", type=float, help="Risk-free rate (%)")
@click.option("--risk-premium", type=float, help="Equity risk premium (%)")
@click.option("--terminal-multiple", type=float, help="Exit multiple on final-year FCF")
@click.option("--shares-outstanding", type=float, help="Shares outstanding (millions)")
def dcf(current_price: float, **options) -> None:
    """
    Estimate fair value with the DCF model
    """
    try:
        from app.core.dcf import DCFInputs, compute_dcf
        from config.settings import get_config

        inputs = DCFInputs.from_dict(options, **get_config().DCF_DEFAULTS())
        result = compute_dcf(inputs, current_price)

        click.echo("\n" + "=" * 60)
        click.echo("DCF Valuation ($M)")
        click.echo("=" * 60)
        click.echo(f"{'Year':<8}{'Revenue':>14}{'Op Income':>14}{'FCF':>14}")
        for year, revenue, op_income, fcf in zip(
            result.years, result.revenues, result.op_income, result.fcf
        ):
            click.echo(f"{year:<8}{revenue:>14,.1f}{op_income:>14,.1f}{fcf:>14,.1f}")

        click.echo("-" * 60)
        click.echo(f"Enterprise value: ${result.enterprise_value:,.1f}M")
        click.echo(f"Equity value:     ${result.equity_value:,.1f}M")
        click.echo(f"Fair price:       ${result.fair_price:,.2f}")
        click.echo(f"vs market:        {result.delta_percent:+.1f}%")
        click.echo("=" * 60 + "\n")

    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
