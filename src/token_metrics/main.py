"""
Main CLI application for token metrics.
"""

from .utils import (
    is_valid_ethereum_address,
    is_valid_method_selector,
    method_selector,
    normalize_address,
    parse_moralis_transfers,
    parse_moralis_transactions,
    parse_moralis_holders,
    format_number,
)
from .aggregators import (
    aggregate_cumulative_growth,
    aggregate_wallet_activity,
    aggregate_weekly_payments,
    classify_holders,
    format_for_pie_chart,
    format_for_bubble_chart,
    summarize_token_stats,
)
from .models import TokenInfo, TokenStats, HolderDistribution
from .storage import MetricsStore, row_to_dict
from typing import Any, Callable, List, Optional, Sequence, Tuple
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import csv
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.panel import Panel

from .config import Config
from .api_clients import MoralisClient, MoralisAPIError

# Logging setup
import logging
logger = logging.getLogger(__name__)


app = typer.Typer(
    name="token-metrics",
    help="Aggregate token transfer, wallet, payment and holder metrics from Moralis data."
)

console = Console()

Column = Tuple[str, Callable[[Any], str]]


def load_config() -> Config:
    """Load application configuration."""
    try:
        return Config.from_env()
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        console.print(
            "\n[yellow]Please create a .env file with your API key:[/yellow]")
        console.print("MORALIS_API_KEY=your_key_here")
        raise typer.Exit(1)


def resolve_address(token_input: str, config: Config) -> Tuple[Optional[str], Optional[str]]:
    """Map a contract address or configured symbol to (address, symbol)."""
    if is_valid_ethereum_address(token_input):
        return normalize_address(token_input), None

    symbol = token_input.upper()
    address = config.contracts.get(symbol)
    if not address:
        console.print(
            f"[red]Unknown token symbol {token_input}. Configure it in TOKEN_CONTRACTS or pass a contract address.[/red]")
        return None, symbol
    return address, symbol


def resolve_token(token_input: str, config: Config, client: MoralisClient) -> Optional[TokenInfo]:
    """Resolve a contract address or configured symbol to TokenInfo."""
    address, symbol = resolve_address(token_input, config)
    if not address:
        return None

    token_info = client.get_token_metadata(address)
    if symbol and token_info.symbol == "UNKNOWN":
        token_info.symbol = symbol
    return token_info


def fetch_with_progress(description: str, fetch: Callable[[], Any]) -> Any:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task(f"{description}...", total=None)
        result = fetch()
        progress.update(task, description=f"✓ {description}")
    return result


def display_rows_table(title: str, columns: Sequence[Column], rows: Sequence[Any]):
    """Display aggregate rows in a rich table."""
    if not rows:
        console.print("[yellow]No data found.[/yellow]")
        return

    table = Table(title=title)
    for index, (header, _) in enumerate(columns):
        table.add_column(header, style="cyan" if index == 0 else "green",
                         justify="left" if index == 0 else "right", no_wrap=True)

    for row in rows:
        table.add_row(*[render(row) for _, render in columns])

    console.print(table)


def export_to_csv(rows: Sequence[Any], filepath: str):
    """Export aggregate rows to CSV."""
    records = [row_to_dict(row) for row in rows]
    with open(filepath, 'w', newline='') as csvfile:
        if not records:
            return
        writer = csv.DictWriter(csvfile, fieldnames=list(records[0].keys()))
        writer.writeheader()
        for record in records:
            writer.writerow(record)


def export_to_json(rows: Sequence[Any], filepath: str, token_info: TokenInfo):
    """Export aggregate rows to JSON."""
    data = {
        'token_info': row_to_dict(token_info),
        'rows': [row_to_dict(row) for row in rows],
    }
    with open(filepath, 'w') as jsonfile:
        json.dump(data, jsonfile, indent=2, default=str)


def emit(rows: Sequence[Any], title: str, columns: Sequence[Column], token_info: TokenInfo,
         output_format: str, output_file: Optional[str]):
    """Display or export results."""
    if output_format == "table" or not output_file:
        display_rows_table(title, columns, rows)

    if output_file:
        if output_format == "csv":
            export_to_csv(rows, output_file)
            console.print(f"[green]Results exported to {output_file}[/green]")
        elif output_format == "json":
            export_to_json(rows, output_file, token_info)
            console.print(f"[green]Results exported to {output_file}[/green]")
        else:
            console.print(
                f"[yellow]Unsupported output format: {output_format}[/yellow]")


def setup_token(token: str) -> Tuple[Config, MoralisClient, TokenInfo]:
    config = load_config()
    client = MoralisClient(config)

    try:
        token_info = resolve_token(token, config, client)
    except MoralisAPIError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not token_info:
        console.print(f"[red]Could not resolve token: {token}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[cyan]Token: {token_info.name} ({token_info.symbol}) {token_info.contract_address}[/cyan]")
    return config, client, token_info


def fetch_or_exit(description: str, fetch: Callable[[], Any]) -> Any:
    try:
        return fetch_with_progress(description, fetch)
    except MoralisAPIError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def resolve_method_id(config: Config, method_id: Optional[str],
                      method_signature: Optional[str]) -> str:
    if method_signature:
        return method_selector(method_signature)
    selector = (method_id or config.payment_method_id).lower()
    if not is_valid_method_selector(selector):
        console.print(f"[red]Invalid method id: {selector}[/red]")
        raise typer.Exit(1)
    return selector


GROWTH_COLUMNS: List[Column] = [
    ("Date", lambda r: r.date.isoformat()),
    ("Daily Txs", lambda r: f"{r.daily_tx_count:,}"),
    ("Daily Amount", lambda r: format_number(r.daily_tx_amount)),
    ("Cumulative Txs", lambda r: f"{r.cumulative_tx_count:,}"),
    ("Cumulative Amount", lambda r: format_number(r.cumulative_tx_amount)),
]

WALLET_COLUMNS: List[Column] = [
    ("Date", lambda r: r.date.isoformat()),
    ("Unique Wallets", lambda r: f"{r.unique_wallet_count:,}"),
    ("New Wallets", lambda r: f"{r.new_wallets:,}"),
    ("Active Wallets", lambda r: f"{r.active_wallets:,}"),
]

PAYMENT_COLUMNS: List[Column] = [
    ("Week Start", lambda r: r.week_start_date.isoformat()),
    ("Total Paid", lambda r: format_number(r.total_payments_amount)),
    ("Payments", lambda r: f"{r.payment_count:,}"),
    ("Average", lambda r: format_number(r.average_payment)),
]

TIER_COLUMNS: List[Column] = [
    ("Tier", lambda r: r.category),
    ("Holders", lambda r: f"{r.count:,}"),
    ("Share of Holders", lambda r: f"{r.percentage:.2f}%"),
]

BUBBLE_COLUMNS: List[Column] = [
    ("Rank", lambda r: str(r.x + 1)),
    ("Address", lambda r: f"{r.address[:6]}...{r.address[-4:]}"),
    ("Balance", lambda r: format_number(r.balance)),
    ("Supply %", lambda r: f"{r.percentage:.4f}%"),
    ("Tier", lambda r: r.tier),
    ("Size", lambda r: f"{r.size:.1f}"),
]


def display_holder_summary(distribution: HolderDistribution, token_info: TokenInfo):
    tiers = distribution.distribution
    console.print(Panel(
        f"Total Holders: [green]{distribution.total_holders:,}[/green]\n"
        f"Total Supply Held: [green]{format_number(distribution.total_supply)} {token_info.symbol}[/green]\n"
        f"Whales: {tiers.whales}  Large: {tiers.large}  Medium: {tiers.medium}  Small: {tiers.small}",
        title="Holder Distribution",
        expand=False
    ))


@app.command()
def growth(
    token: str = typer.Argument(...,
                                help="Token symbol (from TOKEN_CONTRACTS) or contract address"),
    exclude_mint_burn: Optional[bool] = typer.Option(
        None, "--exclude-mint-burn/--include-mint-burn", help="Drop transfers from or to the zero address"),
    output_format: str = typer.Option(
        "table", "--format", "-f", help="Output format: table, csv, json"),
    output_file: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file path"),
):
    """Daily and cumulative transfer counts and volume."""
    config, client, token_info = setup_token(token)
    raw = fetch_or_exit("Fetching token transfers",
                        lambda: client.get_token_transfers(token_info.contract_address))

    transfers = parse_moralis_transfers(raw, token_info.decimals)
    exclude = config.exclude_mint_burn if exclude_mint_burn is None else exclude_mint_burn
    rows = aggregate_cumulative_growth(transfers, exclude_mint_burn=exclude)

    emit(rows, f"{token_info.symbol} Cumulative Growth", GROWTH_COLUMNS,
         token_info, output_format, output_file)


@app.command()
def wallets(
    token: str = typer.Argument(...,
                                help="Token symbol (from TOKEN_CONTRACTS) or contract address"),
    output_format: str = typer.Option(
        "table", "--format", "-f", help="Output format: table, csv, json"),
    output_file: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file path"),
):
    """Daily unique, new and active wallets."""
    config, client, token_info = setup_token(token)
    raw = fetch_or_exit("Fetching token transfers",
                        lambda: client.get_token_transfers(token_info.contract_address))

    rows = aggregate_wallet_activity(parse_moralis_transfers(raw, token_info.decimals))

    emit(rows, f"{token_info.symbol} Wallet Growth", WALLET_COLUMNS,
         token_info, output_format, output_file)


@app.command()
def payments(
    token: str = typer.Argument(...,
                                help="Token symbol (from TOKEN_CONTRACTS) or contract address"),
    method_id: Optional[str] = typer.Option(
        None, "--method-id", "-m", help="4-byte selector of payment calls, e.g. 0xa9059cbb"),
    method_signature: Optional[str] = typer.Option(
        None, "--method-signature", help="Payment function signature, e.g. 'transfer(address,uint256)'"),
    decimals: Optional[int] = typer.Option(
        None, "--decimals", "-d", help="Token decimals (defaults to the token metadata)"),
    output_format: str = typer.Option(
        "table", "--format", "-f", help="Output format: table, csv, json"),
    output_file: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file path"),
):
    """Weekly payment totals, counts and averages."""
    config, client, token_info = setup_token(token)
    selector = resolve_method_id(config, method_id, method_signature)
    raw = fetch_or_exit("Fetching contract transactions",
                        lambda: client.get_contract_transactions(token_info.contract_address))

    rows = aggregate_weekly_payments(
        parse_moralis_transactions(raw), selector,
        decimals=token_info.decimals if decimals is None else decimals)

    emit(rows, f"{token_info.symbol} Weekly Payments ({selector})", PAYMENT_COLUMNS,
         token_info, output_format, output_file)


@app.command()
def holders(
    token: str = typer.Argument(...,
                                help="Token symbol (from TOKEN_CONTRACTS) or contract address"),
    decimals: Optional[int] = typer.Option(
        None, "--decimals", "-d", help="Token decimals (defaults to the token metadata)"),
    bubbles: bool = typer.Option(
        False, "--bubbles", "-b", help="List individual holders instead of tier totals"),
    output_format: str = typer.Option(
        "table", "--format", "-f", help="Output format: table, csv, json"),
    output_file: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file path"),
):
    """Holder distribution by share of supply."""
    config, client, token_info = setup_token(token)
    raw = fetch_or_exit("Fetching token holders",
                        lambda: client.get_token_owners(token_info.contract_address))

    distribution = classify_holders(
        parse_moralis_holders(raw),
        token_info.decimals if decimals is None else decimals,
        config.tier_thresholds)
    display_holder_summary(distribution, token_info)

    if bubbles:
        rows = format_for_bubble_chart(distribution, config.tier_thresholds)
        emit(rows, f"{token_info.symbol} Holders", BUBBLE_COLUMNS,
             token_info, output_format, output_file)
    else:
        rows = format_for_pie_chart(distribution, config.tier_thresholds)
        emit(rows, f"{token_info.symbol} Holder Tiers", TIER_COLUMNS,
             token_info, output_format, output_file)


def sync_token(token_info: TokenInfo, client: MoralisClient, store: MetricsStore,
               config: Config) -> dict:
    """Fetch, aggregate and upsert every metric for one token."""
    address = token_info.contract_address

    transfers = parse_moralis_transfers(
        client.get_token_transfers(address), token_info.decimals)
    growth_rows = aggregate_cumulative_growth(
        transfers, exclude_mint_burn=config.exclude_mint_burn)
    wallet_rows = aggregate_wallet_activity(transfers)

    payment_rows = aggregate_weekly_payments(
        parse_moralis_transactions(client.get_contract_transactions(address)),
        config.payment_method_id, decimals=token_info.decimals)

    distribution = classify_holders(
        parse_moralis_holders(client.get_token_owners(address)),
        token_info.decimals, config.tier_thresholds)

    summary = {
        "cumulative_metrics": store.upsert_cumulative_metrics(address, growth_rows),
        "wallets": store.upsert_wallet_data(address, wallet_rows),
        "payments": store.upsert_payment_data(address, payment_rows),
        "holders": distribution.total_holders,
    }
    store.upsert_token_holders(address, distribution)
    store.save_token_info(token_info)
    store.mark_synced(address)
    return summary


@app.command()
def sync(
    tokens: Optional[List[str]] = typer.Argument(
        None, help="Token symbols or addresses (defaults to every TOKEN_CONTRACTS entry)"),
    store_path: Optional[str] = typer.Option(
        None, "--store", "-s", help="Metrics store file (defaults to STORE_PATH)"),
    force: bool = typer.Option(
        False, "--force", help="Sync even if the last sync is within the sync interval"),
):
    """Refresh and store all metrics for the configured tokens."""
    config = load_config()
    client = MoralisClient(config)
    store = MetricsStore(store_path or config.store_path)
    interval = timedelta(days=config.sync_interval_days)

    targets = tokens or list(config.contracts.keys())
    if not targets:
        console.print("[red]No tokens to sync. Pass tokens or set TOKEN_CONTRACTS.[/red]")
        raise typer.Exit(1)

    failed = []
    for token in targets:
        try:
            token_info = resolve_token(token, config, client)
            if not token_info:
                failed.append(token)
                continue

            if not force and not store.needs_sync(token_info.contract_address, interval):
                console.print(
                    f"[yellow]Skipping {token_info.symbol}: last sync at "
                    f"{store.last_sync(token_info.contract_address)}[/yellow]")
                continue

            summary = fetch_with_progress(
                f"Syncing {token_info.symbol}",
                lambda: sync_token(token_info, client, store, config))
        except MoralisAPIError as e:
            console.print(f"[red]Sync failed for {token}: {e}[/red]")
            failed.append(token)
            continue

        store.save()
        console.print(
            f"[green]{token_info.symbol}: {summary['cumulative_metrics']} days, "
            f"{summary['wallets']} wallet days, {summary['payments']} weeks, "
            f"{summary['holders']} holders[/green]")

    if failed:
        console.print(f"[red]Failed to sync: {', '.join(failed)}[/red]")
        raise typer.Exit(1)


def format_growth(value: Optional[Decimal]) -> str:
    if value is None:
        return "-"
    return f"+{value}%" if value >= 0 else f"{value}%"


STATS_COLUMNS: List[Column] = [
    ("Token", lambda s: s.symbol),
    ("Circulating", lambda s: format_number(s.circulating_supply)),
    ("Users", lambda s: f"{s.unique_users:,}"),
    ("User Growth", lambda s: format_growth(s.unique_users_growth)),
    ("Txs", lambda s: f"{s.transactions_processed:,}+"),
    ("Tx Growth", lambda s: format_growth(s.transactions_growth)),
]


def export_stats_to_json(rows: Sequence[TokenStats], filepath: str):
    """Export headline stats keyed by token symbol."""
    data = {
        'stats': {row.symbol.lower(): row_to_dict(row) for row in rows},
        'last_updated': datetime.now(timezone.utc).isoformat(),
    }
    with open(filepath, 'w') as jsonfile:
        json.dump(data, jsonfile, indent=2, default=str)


@app.command()
def stats(
    tokens: Optional[List[str]] = typer.Argument(
        None, help="Token symbols or addresses (defaults to every TOKEN_CONTRACTS entry)"),
    store_path: Optional[str] = typer.Option(
        None, "--store", "-s", help="Metrics store file (defaults to STORE_PATH)"),
    output_format: str = typer.Option(
        "table", "--format", "-f", help="Output format: table, csv, json"),
    output_file: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file path"),
):
    """Headline supply, user and transaction stats from the metrics store."""
    config = load_config()
    store = MetricsStore(store_path or config.store_path)

    targets = tokens or list(config.contracts.keys())
    if not targets:
        console.print("[red]No tokens given. Pass tokens or set TOKEN_CONTRACTS.[/red]")
        raise typer.Exit(1)

    rows = []
    for token in targets:
        address, symbol = resolve_address(token, config)
        if not address:
            continue

        token_info = store.get_token_info(address)
        if token_info is None and not store.has_metrics(address):
            console.print(
                f"[yellow]No stored metrics for {token}. Run: token-metrics sync {token}[/yellow]")
            continue
        if token_info is None:
            token_info = TokenInfo(name="Unknown Token", symbol=symbol or "UNKNOWN",
                                   contract_address=address, decimals=config.token_decimals)

        rows.append(summarize_token_stats(
            token_info,
            store.get_cumulative_metrics(address),
            store.get_wallet_data(address),
            last_sync_at=store.last_sync(address)))

    if not rows:
        console.print("[red]No stats available.[/red]")
        raise typer.Exit(1)

    if output_format == "table" or not output_file:
        display_rows_table("Token Stats", STATS_COLUMNS, rows)

    if output_file:
        if output_format == "csv":
            export_to_csv(rows, output_file)
            console.print(f"[green]Results exported to {output_file}[/green]")
        elif output_format == "json":
            export_stats_to_json(rows, output_file)
            console.print(f"[green]Results exported to {output_file}[/green]")
        else:
            console.print(
                f"[yellow]Unsupported output format: {output_format}[/yellow]")


@app.command()
def setup():
    """Setup the application by creating a .env file template."""
    env_content = """# Token Metrics Configuration

# Required: Moralis API Key (get from https://admin.moralis.io)
MORALIS_API_KEY=your_moralis_api_key_here

# Chain and tracked tokens
CHAIN=0x46f
TOKEN_CONTRACTS=LZAR=0x...,LUSD=0x...

# Aggregation Settings
PAYMENT_METHOD_ID=0xa9059cbb
EXCLUDE_MINT_BURN=false
WHALE_THRESHOLD=1
LARGE_THRESHOLD=0.1
MEDIUM_THRESHOLD=0.01

# API Settings
PAGE_LIMIT=100
RATE_LIMIT_DELAY=0.2

# Storage
STORE_PATH=token_metrics.json
SYNC_INTERVAL_DAYS=7
"""

    env_path = Path(".env")
    if env_path.exists():
        console.print("[yellow].env file already exists![/yellow]")
        if not typer.confirm("Overwrite existing .env file?"):
            return

    with open(env_path, 'w') as f:
        f.write(env_content)

    console.print(f"[green]Created .env file at {env_path.absolute()}[/green]")
    console.print(
        "\n[yellow]Please edit the .env file and add your API key:[/yellow]")
    console.print("1. Get a Moralis API key from https://admin.moralis.io")
    console.print(
        "2. Replace 'your_moralis_api_key_here' with your real key")
    console.print("3. List the tokens to track in TOKEN_CONTRACTS")
    console.print("4. Run: token-metrics sync")
    console.print("5. Run: token-metrics stats")


if __name__ == "__main__":
    app()
