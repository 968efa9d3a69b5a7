"""CLI for the RPC resilience layer."""

import asyncio
import json
import logging
from enum import StrEnum
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.traceback import install

from rpc_resilience.core.client import ResilientRPCClient
from rpc_resilience.data.loader import get_cache_settings, load_config
from rpc_resilience.logger import setup_logging
from rpc_resilience.rpc.cache import TTLCache
from rpc_resilience.rpc.errors import ResilienceError
from rpc_resilience.rpc.provider import to_int
from rpc_resilience.rpc.storage import FileSharedStore

# Install rich traceback handler
install(show_locals=True)

app = typer.Typer(
    name="rpc-resilience",
    help="Resilient JSON-RPC reads and diagnostics for EVM chains",
    add_completion=False,
)

console = Console()


class OutputFormat(StrEnum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"


def _build_client(chain: str, cache_dir: Path | None) -> ResilientRPCClient:
    try:
        return ResilientRPCClient.from_config(chain, cache_dir=cache_dir)
    except KeyError:
        console.print(f"[bold red]Unknown chain:[/bold red] {chain}")
        console.print("[dim]Run 'rpc-resilience list-chains' to see configured chains[/dim]")
        raise typer.Exit(code=1)


def _parse_params(params: str | None) -> list[Any]:
    if not params:
        return []
    try:
        parsed = json.loads(params)
    except json.JSONDecodeError as e:
        console.print(f"[bold red]PARAMS must be a JSON array:[/bold red] {e}")
        raise typer.Exit(code=2)
    return parsed if isinstance(parsed, list) else [parsed]


def _default_chain() -> str:
    return load_config().default_chain


@app.command()
def call(
    method: str = typer.Argument(..., help="JSON-RPC method (e.g. eth_blockNumber)"),
    params: str | None = typer.Argument(None, help="Method parameters as a JSON array"),
    chain: str | None = typer.Option(None, "--chain", "-c", help="Chain to query"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the read cache"),
    ttl: float | None = typer.Option(None, "--ttl", help="Cache time-to-live in seconds"),
    cache_dir: Path | None = typer.Option(None, "--cache-dir", help="Shared cache directory"),
    format: OutputFormat = typer.Option(
        OutputFormat.TABLE,
        "--format",
        "-f",
        help="Output format",
    ),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """
    Perform a cached, throttled and retried JSON-RPC read.

    Examples:

        # Latest block on the default chain
        rpc-resilience call eth_blockNumber

        # Contract read on polygon, bypassing the cache
        rpc-resilience call eth_call '[{"to": "0x...", "data": "0x..."}, "latest"]' --no-cache
    """
    setup_logging(logging.DEBUG if debug else logging.WARNING, console=Console(stderr=True))
    chain = chain or _default_chain()
    rpc_params = _parse_params(params)

    async def run() -> Any:
        async with _build_client(chain, cache_dir) as client:
            return await client.read(method, rpc_params, ttl=ttl, use_cache=not no_cache)

    try:
        result = asyncio.run(run())
    except ResilienceError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        if debug and e.detail:
            console.print(f"[dim]{e.detail}[/dim]")
        raise typer.Exit(code=1)

    if format == OutputFormat.JSON:
        console.print_json(data=result)
    else:
        _output_table(f"{method} on {chain}", result)


@app.command()
def gas_price(
    chain: str | None = typer.Option(None, "--chain", "-c", help="Chain to query"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """Show the gas price a transaction sent now would use."""
    setup_logging(logging.DEBUG if debug else logging.WARNING, console=Console(stderr=True))
    chain = chain or _default_chain()

    async def run():
        async with _build_client(chain, None) as client:
            return await client.gas_price_plan()

    plan = asyncio.run(run())

    table = Table(title=f"Gas price on {chain}", show_header=False, box=None)
    table.add_column("Label", style="bold")
    table.add_column("Value", style="bold green")
    if plan.gas_price is None:
        table.add_row("Gas price", "[yellow]unavailable, left to the signer[/yellow]")
    else:
        table.add_row("Gas price", f"{plan.gas_price / 1e9:,.2f} gwei")
        table.add_row("Wei", str(plan.gas_price))
    table.add_row("Source", str(plan.source))
    console.print(table)


@app.command()
def list_chains() -> None:
    """List configured chains and their RPC endpoints."""
    config = load_config()

    table = Table(title="Configured Chains", show_header=True, header_style="bold magenta")
    table.add_column("Chain", style="cyan")
    table.add_column("Chain ID", style="yellow", justify="right")
    table.add_column("RPC Endpoints", style="green")

    for name, chain_config in config.chains.items():
        label = f"{name} (default)" if name == config.default_chain else name
        table.add_row(label, str(chain_config.chain_id), "\n".join(chain_config.rpc_endpoints))

    console.print(table)


@app.command()
def cache_clear(
    cache_dir: Path | None = typer.Option(None, "--cache-dir", help="Shared cache directory"),
) -> None:
    """Remove every entry from the shared cache tier."""
    settings = get_cache_settings()
    directory = cache_dir or settings.directory
    if directory is None:
        console.print("[yellow]No shared cache directory configured[/yellow]")
        console.print("[dim]  Pass --cache-dir or set RPC_RESILIENCE_CACHE_DIR[/dim]")
        return

    store = FileSharedStore(directory)
    before = len(store.keys())
    TTLCache(shared_store=store, namespace=settings.namespace).clear()
    removed = before - len(store.keys())
    console.print(f"[green]✓ Cleared {removed} shared cache entries in {directory}[/green]")


def _output_table(title: str, result: Any) -> None:
    """Output an RPC result as a rich table."""
    if result is None:
        console.print("\n[yellow]No result[/yellow]")
        return

    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")

    if isinstance(result, dict):
        rows = [(str(key), value) for key, value in result.items()]
    elif isinstance(result, list):
        rows = [(str(index), value) for index, value in enumerate(result)]
    else:
        rows = [("result", result)]

    for field, value in rows:
        table.add_row(escape(field), escape(_format_value(value)))

    console.print(table)


def _format_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    text = str(value)
    # Show short hex quantities in decimal too
    if isinstance(value, str) and value.startswith("0x") and 2 < len(value) <= 18:
        try:
            return f"{text} ({to_int(value):,})"
        except ValueError:
            return text
    return text


def main() -> None:
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
