"""
Account Engine CLI - query accounts, sync history and preview spends.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from pydantic import ValidationError

from acctengine.config import Settings
from acctengine.failover import AllEndpointsFailedError
from acctengine.storage import JsonStateStore
from acctengine.wallet.callbacks import LoggingCallbacks
from acctengine.wallet.engine import AccountEngine
from acctengine.wallet.models import SpendRequest, SpendTarget, TransactionRecord
from acctengine.wallet.spend import SpendError

app = typer.Typer(
    name="acct-engine",
    help="Account ledger wallet engine",
    add_completion=False,
)

NetworkOption = Annotated[
    str | None, typer.Option("--network", "-n", help="mainnet | testnet | betanet")
]
AlgodOption = Annotated[
    str | None,
    typer.Option("--algod", help="Node endpoints (comma-separated), overrides the preset"),
]
IndexerOption = Annotated[
    str | None,
    typer.Option("--indexer", help="Indexer endpoints (comma-separated), overrides the preset"),
]
DataDirOption = Annotated[
    Path | None, typer.Option("--data-dir", "-d", help="Directory for wallet state files")
]
LogLevelOption = Annotated[str | None, typer.Option("--log-level", "-l", help="Log level")]


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def build_settings(
    network: str | None = None,
    algod: str | None = None,
    indexer: str | None = None,
    data_dir: Path | None = None,
    log_level: str | None = None,
) -> Settings:
    """Settings from environment/.env, with command-line values taking priority."""
    overrides: dict[str, object] = {}
    if network:
        overrides["network"] = network
    if algod:
        overrides["algod_servers"] = algod
    if indexer:
        overrides["indexer_servers"] = indexer
    if data_dir:
        overrides["data_dir"] = data_dir
    if log_level:
        overrides["log_level"] = log_level
    return Settings(**overrides)


def load_settings(
    network: str | None,
    algod: str | None,
    indexer: str | None,
    data_dir: Path | None,
    log_level: str | None,
) -> Settings:
    try:
        settings = build_settings(network, algod, indexer, data_dir, log_level)
    except ValidationError as e:
        setup_logging(log_level or "INFO")
        logger.error(f"Invalid configuration: {e}")
        raise typer.Exit(1)
    setup_logging(settings.log_level)
    return settings


def format_transaction(tx: TransactionRecord) -> str:
    if tx.block_height:
        when = datetime.fromtimestamp(tx.date, UTC).strftime("%Y-%m-%d %H:%M:%S")
        status = f"round {tx.block_height}"
    else:
        when = "-"
        status = "unconfirmed"
    return (
        f"{when}  {tx.native_amount:>16} {tx.currency_code}  "
        f"fee {tx.network_fee:>8}  {status:<16} {tx.txid}"
    )


@app.command()
def params(
    network: NetworkOption = None,
    algod: AlgodOption = None,
    indexer: IndexerOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the suggested transaction parameters."""
    settings = load_settings(network, algod, indexer, None, log_level)
    asyncio.run(_run_params(settings))


async def _run_params(settings: Settings) -> None:
    engine = AccountEngine.from_settings("", settings, LoggingCallbacks())
    try:
        if not await engine.query_transaction_params():
            logger.error("Could not fetch transaction params from any node")
            raise typer.Exit(1)
        p = engine.suggested_params
        typer.echo(f"Network:      {p.genesis_id} ({p.genesis_hash})")
        typer.echo(f"Fee:          {p.fee} {'flat' if p.flat_fee else 'per byte'}")
        typer.echo(f"Minimum fee:  {max(p.min_fee, engine.network_info.minimum_tx_fee)}")
        typer.echo(f"Valid rounds: {p.first_round} - {p.last_round}")
    finally:
        await engine.close()


@app.command()
def balance(
    address: Annotated[str, typer.Argument(help="Account address")],
    network: NetworkOption = None,
    algod: AlgodOption = None,
    indexer: IndexerOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show an account's balance and the current round."""
    settings = load_settings(network, algod, indexer, None, log_level)
    asyncio.run(_run_balance(settings, address))


async def _run_balance(settings: Settings, address: str) -> None:
    engine = AccountEngine.from_settings(address, settings, LoggingCallbacks())
    try:
        try:
            info = await engine.fetch_account_info(address)
        except AllEndpointsFailedError as e:
            logger.error(str(e))
            raise typer.Exit(1)
        typer.echo(f"Balance: {info.amount} {engine.currency_code}")
        typer.echo(f"Round:   {info.round}")
    finally:
        await engine.close()


@app.command()
def history(
    address: Annotated[str, typer.Argument(help="Account address")],
    limit: Annotated[int, typer.Option("--limit", help="Number of transactions to show")] = 20,
    network: NetworkOption = None,
    algod: AlgodOption = None,
    indexer: IndexerOption = None,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Sync an account's transaction history and list the newest entries."""
    settings = load_settings(network, algod, indexer, data_dir, log_level)
    asyncio.run(_run_history(settings, address, limit))


async def _run_history(settings: Settings, address: str, limit: int) -> None:
    store = JsonStateStore(settings.data_dir / settings.network.value)
    engine = AccountEngine.from_settings(address, settings, LoggingCallbacks(), store=store)
    try:
        await engine.query_transactions()
        await engine.save_state()

        transactions = sorted(
            engine.state.transactions.values(),
            key=lambda tx: (tx.block_height == 0, tx.block_height, tx.date),
            reverse=True,
        )
        typer.echo(f"{len(transactions)} transaction(s) for {address}")
        for tx in transactions[:limit]:
            typer.echo(format_transaction(tx))
    finally:
        await engine.close()


@app.command("spend-preview")
def spend_preview(
    address: Annotated[str, typer.Argument(help="Sending account address")],
    to: Annotated[str, typer.Option("--to", "-t", help="Recipient address")],
    amount: Annotated[str, typer.Option("--amount", "-a", help="Amount in base units")],
    memo: Annotated[str | None, typer.Option("--memo", "-m", help="Note to attach")] = None,
    network: NetworkOption = None,
    algod: AlgodOption = None,
    indexer: IndexerOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Build an unsigned payment and show its fee, without signing."""
    settings = load_settings(network, algod, indexer, None, log_level)
    try:
        request = SpendRequest(
            spend_targets=[SpendTarget(public_address=to, native_amount=amount, memo=memo)]
        )
    except ValidationError as e:
        logger.error(f"Invalid spend: {e}")
        raise typer.Exit(1)
    asyncio.run(_run_spend_preview(settings, address, request))


async def _run_spend_preview(settings: Settings, address: str, request: SpendRequest) -> None:
    engine = AccountEngine.from_settings(address, settings, LoggingCallbacks())
    try:
        await engine.query_balance()
        if not await engine.query_transaction_params():
            logger.warning("Using default transaction params")
        try:
            unsigned = engine.make_spend(request)
        except SpendError as e:
            logger.error(f"Spend rejected: {e}")
            raise typer.Exit(1)
        typer.echo(f"Recipient:  {unsigned.recipient}")
        typer.echo(f"Fee:        {unsigned.network_fee} {unsigned.currency_code}")
        typer.echo(f"Net amount: {unsigned.native_amount} {unsigned.currency_code}")
        typer.echo(f"Payload:    {unsigned.encoded_tx}")
    finally:
        await engine.close()


@app.command()
def watch(
    address: Annotated[str, typer.Argument(help="Account address")],
    network: NetworkOption = None,
    algod: AlgodOption = None,
    indexer: IndexerOption = None,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Keep an account in sync until interrupted."""
    settings = load_settings(network, algod, indexer, data_dir, log_level)
    try:
        asyncio.run(_run_watch(settings, address))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


async def _run_watch(settings: Settings, address: str) -> None:
    store = JsonStateStore(settings.data_dir / settings.network.value)
    engine = AccountEngine.from_settings(address, settings, LoggingCallbacks(), store=store)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def shutdown_handler() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_handler)

    logger.info(f"Network: {settings.network.value}")
    logger.info(f"Node endpoints: {', '.join(engine.network_info.algod_servers)}")
    logger.info(f"Indexer endpoints: {', '.join(engine.network_info.indexer_servers)}")

    try:
        await engine.start_engine()
        await stop_event.wait()
    finally:
        await engine.close()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
