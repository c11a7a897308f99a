#!/usr/bin/env python3
"""Optimize a portfolio rebalance from a request file or a live strategy run.

Examples:
    # Optimize a camelCase JSON request
    python scripts/optimize_portfolio.py request examples/request.json

    # Momentum strategy end to end with Yahoo Finance prices
    python scripts/optimize_portfolio.py strategy momentum \\
        VTI VEA VWO TLT BWX BND PDBC GLDM --cash 10000 -p top_n=3

    # All-Weather with a held position
    python scripts/optimize_portfolio.py strategy allweather --cash 5000 \\
        --holding VTI=12
"""

import json
import sys
from pathlib import Path
from typing import Dict, Optional

import click
from rich.console import Console
from rich.table import Table

sys.path.append(".")

from momentum_rider.api.portfolio_api import PortfolioAPI
from momentum_rider.portfolio.base import Holding
from momentum_rider.portfolio.optimizer import PortfolioOptimizer
from momentum_rider.strategy import ALL_WEATHER_WEIGHTS
from momentum_rider.utils.config import load_settings
from momentum_rider.utils.exceptions import MomentumRiderError
from momentum_rider.utils.logging import setup_logging

console = Console()


def parse_params(param_list: tuple) -> Dict:
    """Parse key=value strings into a dictionary."""
    params = {}
    for param in param_list:
        if "=" not in param:
            continue
        key, value = param.split("=", 1)
        try:
            params[key] = int(value)
        except ValueError:
            try:
                params[key] = float(value)
            except ValueError:
                params[key] = value
    return params


def create_allocation_table(response: Dict) -> Table:
    """Render allocation lines from a response dict."""
    table = Table(title="Allocations", show_header=True, header_style="bold magenta")
    table.add_column("Ticker", style="cyan", no_wrap=True)
    table.add_column("Current", justify="right")
    table.add_column("Buy", justify="right", style="green")
    table.add_column("Final", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Target %", justify="right")
    table.add_column("Actual %", justify="right")
    table.add_column("Deviation", justify="right")
    table.add_column("OK", justify="center")

    for line in response["allocations"]:
        table.add_row(
            line["ticker"],
            str(line["currentShares"]),
            str(line["sharesToBuy"]),
            str(line["finalShares"]),
            f"${line['costOfPurchase']:,.2f}",
            f"{line['targetPercentage']:.2f}",
            f"{line['actualPercentage']:.2f}",
            f"{line['deviation']:+.2f}",
            "[green]yes[/green]" if line["toleranceCompliant"] else "[red]no[/red]",
        )
    return table


def create_summary_table(response: Dict) -> Table:
    """Render metrics and provenance from a response dict."""
    metrics = response["optimizationMetrics"]
    tolerance = response["toleranceMetrics"]

    table = Table(title="Summary", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    table.add_row("Solver Status", response["solverStatus"])
    table.add_row("Fallback Used", str(response["fallbackUsed"]))
    if response["fallbackUsed"]:
        table.add_row("Fallback Reason", response["fallbackReason"])
        table.add_row("Promotion Strategy", response["strategyUsed"])
    table.add_row("Available Budget", f"${metrics['availableBudget']:,.2f}")
    table.add_row("Budget Used", f"${metrics['totalBudgetUsed']:,.2f}")
    table.add_row("Unused", f"${metrics['unusedBudget']:,.2f} ({metrics['unusedPercentage']:.2f}%)")
    table.add_row("Compliance", f"{tolerance['complianceRate']:.1f}%")
    table.add_row("Quality Score", f"{tolerance['qualityScore']:.1f}")
    table.add_row("Time", f"{metrics['optimizationTime']:.1f} ms")
    return table


def render(response: Dict, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(response, indent=2))
        return

    console.print(create_allocation_table(response))

    if response["holdingsToSell"]:
        sells = Table(title="Liquidations", show_header=True, header_style="bold magenta")
        sells.add_column("Ticker", style="cyan")
        sells.add_column("Shares", justify="right", style="red")
        sells.add_column("Value", justify="right")
        for h in response["holdingsToSell"]:
            sells.add_row(h["ticker"], str(h["shares"]), f"${h['totalValue']:,.2f}")
        console.print(sells)

    console.print(create_summary_table(response))

    for rec in response["recommendations"]:
        console.print(f"[yellow]{rec['priority'].upper()}[/yellow] {rec['message']}")


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True), help="YAML settings file")
@click.option("--log-level", default=None, help="Logging level (default from settings)")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]):
    """Momentum Rider portfolio optimizer."""
    settings = load_settings(config_path)
    setup_logging(level=log_level or settings.get("logging.level", "INFO"))
    ctx.obj = settings


@cli.command()
@click.argument("request_file", type=click.Path(exists=True, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the raw response JSON")
@click.pass_obj
def request(settings, request_file: Path, as_json: bool):
    """Optimize a camelCase JSON request file."""
    try:
        payload = json.loads(request_file.read_text(encoding="utf-8"))
        response = PortfolioOptimizer.from_settings(settings).optimize_dict(payload)
    except (MomentumRiderError, json.JSONDecodeError) as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        sys.exit(1)

    render(response, as_json)


@cli.command()
@click.argument("strategy_name")
@click.argument("tickers", nargs=-1)
@click.option("--cash", type=float, required=True, help="Cash to deploy")
@click.option("--holding", "holdings", multiple=True, help="Held position (TICKER=SHARES)")
@click.option("--param", "-p", multiple=True, help="Strategy parameter (key=value)")
@click.option("--heuristic", default=None, help="Promotion strategy for the fallback cascade")
@click.option("--json", "as_json", is_flag=True, help="Print the raw response JSON")
@click.pass_obj
def strategy(
    settings,
    strategy_name: str,
    tickers: tuple,
    cash: float,
    holdings: tuple,
    param: tuple,
    heuristic: Optional[str],
    as_json: bool,
):
    """Run STRATEGY_NAME over TICKERS and optimize the resulting targets.

    Strategies: momentum, allweather, custom (custom takes -p TICKER=PCT).
    """
    params = parse_params(param)
    if strategy_name == "custom":
        params = {"allocations": params}

    universe = list(tickers) or list(ALL_WEATHER_WEIGHTS)
    api = PortfolioAPI(settings=settings)

    try:
        shares = {k: int(v) for k, v in parse_params(holdings).items()}
        prices = api.get_prices(list(shares)) if shares else {}
        current = [Holding(t, n, prices[t]) for t, n in shares.items()]

        result = api.rebalance(
            strategy_name,
            universe,
            available_cash=cash,
            current_holdings=current,
            params=params,
            optimization_strategy=heuristic,
        )
    except MomentumRiderError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        sys.exit(1)

    render(result.to_dict(), as_json)


if __name__ == "__main__":
    cli()
