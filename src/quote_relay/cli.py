"""Click-based CLI for quote-relay.

Thin wrapper around the pipeline. Every command builds one pipeline, runs
its requests through it, and closes it.
"""

from __future__ import annotations

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.table import Table

console = Console(stderr=True)
out = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from quote_relay.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


def _create_pipeline(config):
    from quote_relay.pipeline import build_pipeline

    return build_pipeline(config)


async def _fetch_all(pipeline, tickers: tuple[str, ...], priority: str) -> list:
    """Fetch every ticker concurrently; failures are returned, not raised."""
    return await asyncio.gather(
        *(pipeline.fetch_quote(ticker, priority) for ticker in tickers),
        return_exceptions=True,
    )


def _split_results(tickers: tuple[str, ...], results: list) -> tuple[list, dict[str, str]]:
    from quote_relay.core import QuoteRelayError

    quotes = []
    errors: dict[str, str] = {}
    for ticker, result in zip(tickers, results):
        if isinstance(result, QuoteRelayError):
            errors[ticker] = str(result)
        elif isinstance(result, BaseException):
            raise result
        else:
            quotes.append(result)
    return quotes, errors


def _fmt(value, spec: str = ",.2f") -> str:
    return "-" if value is None else format(value, spec)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="QUOTE_RELAY_CONFIG",
    default=None,
    help="Path to quote-relay.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="quote-relay")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """quote-relay: batched, cached market quotes from multiple providers."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# quote
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("tickers", nargs=-1, required=True)
@click.option(
    "--priority",
    "-p",
    type=click.Choice(["high", "normal", "low"], case_sensitive=False),
    default="normal",
    help="Queue priority for every requested ticker.",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@click.pass_context
def quote(
    ctx: click.Context,
    tickers: tuple[str, ...],
    priority: str,
    output_format: str,
) -> None:
    """Fetch quotes for TICKERS through the pipeline."""
    config = _load_config(ctx)

    async def _run():
        async with _create_pipeline(config) as pipeline:
            return await _fetch_all(pipeline, tickers, priority.lower())

    results = _run_async(_run())
    quotes, errors = _split_results(tickers, results)

    if output_format == "json":
        _output_quotes_json(quotes, errors)
    else:
        _output_quotes_table(quotes)
        for ticker, message in errors.items():
            console.print(f"[red]Error for {ticker}: {message}[/red]")

    if errors:
        ctx.exit(1)


def _output_quotes_table(quotes) -> None:
    table = Table(title="Quotes")
    table.add_column("Ticker", style="bold")
    table.add_column("Price", justify="right")
    table.add_column("Change %", justify="right")
    table.add_column("Prev Close", justify="right")
    table.add_column("Volume", justify="right")
    table.add_column("Source")

    for q in quotes:
        color = "green" if q.change_percent >= 0 else "red"
        table.add_row(
            q.ticker,
            _fmt(q.price),
            f"[{color}]{q.change_percent:+.2f}%[/{color}]",
            _fmt(q.previous_close),
            _fmt(q.volume, ","),
            q.source,
        )

    out.print(table)


def _output_quotes_json(quotes, errors: dict[str, str]) -> None:
    output = {
        "quotes": [q.model_dump(mode="json") for q in quotes],
        "errors": errors,
    }
    click.echo(json.dumps(output, indent=2, default=str))


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("tickers", nargs=-1, required=True)
@click.pass_context
def stats(ctx: click.Context, tickers: tuple[str, ...]) -> None:
    """Fetch TICKERS, then show dispatcher, cache and history statistics."""
    config = _load_config(ctx)

    async def _run():
        async with _create_pipeline(config) as pipeline:
            results = await _fetch_all(pipeline, tickers, "normal")
            return (
                results,
                pipeline.dispatcher_stats(),
                pipeline.cache_stats(),
                pipeline.history_stats(),
            )

    results, dispatcher, cache, history = _run_async(_run())
    _, errors = _split_results(tickers, results)
    for ticker, message in errors.items():
        console.print(f"[red]Error for {ticker}: {message}[/red]")

    table = Table(title="Pipeline Statistics")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Total requests", str(dispatcher.total_requests))
    table.add_row("Cache hits (dispatcher)", str(dispatcher.cache_hits))
    table.add_row("Batched requests", str(dispatcher.batched_requests))
    table.add_row("Batches", str(dispatcher.total_batches))
    table.add_row("Average batch size", f"{dispatcher.average_batch_size:.2f}")
    table.add_row("Upstream tickers", str(dispatcher.upstream_tickers))
    table.add_row("Failed", str(dispatcher.failed_requests))
    table.add_row("Timed out", str(dispatcher.timed_out_requests))
    table.add_row("Dropped", str(dispatcher.dropped_requests))
    table.add_section()
    table.add_row("Cache entries", f"{cache.total_entries}/{cache.max_entries}")
    table.add_row("Cache hit rate", f"{cache.hit_rate:.1%}")
    table.add_row("Cache evictions", str(cache.evictions))
    table.add_row("Average volatility", f"{cache.average_volatility:.4f}")
    table.add_row(
        "Priority distribution",
        ", ".join(f"{k}={v}" for k, v in cache.priority_distribution.items()),
    )
    table.add_section()
    table.add_row("History entries", f"{history.size}/{history.max_size}")

    out.print(table)


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@cli.command("config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective configuration as JSON."""
    config = _load_config(ctx)
    data = config.model_dump(mode="json")
    if data["providers"]["alpha_vantage"].get("api_key"):
        data["providers"]["alpha_vantage"]["api_key"] = "***"
    click.echo(json.dumps(data, indent=2))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
