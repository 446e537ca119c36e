"""
CLI for the commodity oracle.
Runs the API server, prepares the ledger database and performs one-off lookups.
"""
import asyncio
import json
import sys
from typing import Optional

import click
import structlog

from commodity_oracle.config import get_settings
from commodity_oracle.exceptions import OracleError
from commodity_oracle.utils.logging import setup_logging

logger = structlog.get_logger()


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# =============================================================================
# CLI GROUP
# =============================================================================

@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, debug: bool):
    """
    Commodity Oracle CLI.

    Live prices, forecasts, staking aggregates and allowance checks for
    African commodity prediction markets.
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug

    settings = get_settings()
    setup_logging("DEBUG" if debug else settings.log_level, settings.log_format)


def _run(coro_factory):
    """Build services, run one coroutine against them, and always close them."""
    from commodity_oracle.services.container import build_services

    async def _main():
        services = build_services()
        try:
            return await coro_factory(services)
        finally:
            await services.close()

    try:
        return asyncio.run(_main())
    except OracleError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# SERVER & DATABASE
# =============================================================================

@cli.command()
@click.option("--host", default="0.0.0.0", help="Bind address")
@click.option("--port", default=8000, type=int, help="Bind port")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: str, port: int, reload: bool):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    click.echo(f"Starting Commodity Oracle API on {host}:{port}")
    uvicorn.run(
        "commodity_oracle.main:get_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@cli.command("init-db")
def init_db():
    """Create ledger and prediction tables."""
    from commodity_oracle.database import DatabaseManager

    async def _init():
        db = DatabaseManager()
        try:
            await db.init_models()
        finally:
            await db.close()

    asyncio.run(_init())
    click.echo(click.style("✓ Database tables ready", fg="green"))


# =============================================================================
# LOOKUPS
# =============================================================================

@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@click.option("--region", "-r", default="AFRICA", help="AFRICA, LATAM or GLOBAL")
def price(symbols: tuple[str, ...], region: str):
    """
    Fetch current prices.

    Examples:

        commodity-oracle price COFFEE

        commodity-oracle price TEA COCOA --region LATAM
    """
    async def _lookup(services):
        results = await services.oracle.get_prices(list(symbols), region)
        return [r.model_dump(mode="json") for r in results]

    results = _run(_lookup)
    _echo_json(results)
    if any(r["error"] for r in results):
        sys.exit(1)


@cli.command()
@click.argument("symbol")
@click.option("--region", "-r", default="AFRICA")
@click.option("--horizon", "-h", default="7d", help="1d, 3d, 7d or 14d")
@click.option("--narrative/--no-narrative", default=True, help="Generate a narrative")
def predict(symbol: str, region: str, horizon: str, narrative: bool):
    """Forecast a commodity price."""
    async def _predict(services):
        prediction = await services.engine.predict(
            symbol, region, horizon, include_narrative=narrative
        )
        return prediction.model_dump(mode="json")

    _echo_json(_run(_predict))


@cli.command()
@click.option("--symbol", "-s", default=None, help="Filter by commodity")
@click.option("--region", "-r", default=None, help="Filter by region")
@click.option("--limit", "-n", default=10, type=click.IntRange(1, 100), help="Number of predictions")
def history(symbol: Optional[str], region: Optional[str], limit: int):
    """List recently stored predictions, newest first."""
    async def _recent(services):
        predictions = await services.engine.recent_predictions(symbol=symbol, region=region, limit=limit)
        return [p.model_dump(mode="json") for p in predictions]

    _echo_json(_run(_recent))


@cli.command()
def aggregate():
    """Show staking aggregate figures."""
    async def _aggregate(services):
        result = await services.ledger.get_aggregate()
        return result.model_dump(mode="json")

    result = _run(_aggregate)
    _echo_json(result)
    if result["source"] == "fallback":
        click.echo(click.style("⚠ Ledger unreachable, showing fallback figures", fg="yellow"), err=True)


@cli.command()
@click.argument("address")
def allowance(address: str):
    """Check whether ADDRESS must approve USDC before trading."""
    async def _check(services):
        status = await services.gatekeeper.check_default(address)
        return status.model_dump(mode="json")

    _echo_json(_run(_check))


def main():
    """Entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
