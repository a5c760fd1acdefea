"""
CLI entry point for the CKB relayer.
"""

import logging
from pathlib import Path
from typing import Optional

import structlog
import typer

from .batch_mint import build_batch_mint
from .ckb import CkbRpcClient
from .config import RelayerConfig
from .db import HeaderBuffer, HeightCursorStore, RelayerDatabase
from .detector import find_cross_transactions
from .encoder import encode_batch_mint
from .errors import RelayerError, RelayerHalted
from .muta import CkbHandlerService, MutaClient
from .relayer import CkbRelayer, flush_header_buffer
from .signer import MessageSigner


def configure_logging(json_logs: bool = False, level: str = "INFO") -> None:
    """Configure structlog for console or JSON output."""
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )


app = typer.Typer(
    name="ckb-relayer",
    help="CKB -> Muta crosschain deposit relayer",
    add_completion=False,
)

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to .env configuration file",
)


@app.callback()
def _setup(
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
    log_level: str = typer.Option("INFO", "--log-level", help="Minimum log level"),
) -> None:
    configure_logging(json_logs=json_logs, level=log_level)


def _open_state(config: RelayerConfig) -> tuple[RelayerDatabase, HeightCursorStore, HeaderBuffer]:
    db = RelayerDatabase(config.settings.database_url)
    return db, HeightCursorStore(db), HeaderBuffer(db)


def _build_service(config: RelayerConfig, signer: MessageSigner) -> CkbHandlerService:
    s = config.settings
    client = MutaClient(
        endpoint=s.muta_endpoint,
        signer=signer,
        chain_id=s.muta_chain_id,
        cycles_limit=s.muta_cycles_limit,
        cycles_price=s.muta_cycles_price,
        timeout_gap=s.muta_timeout_gap,
        receipt_timeout=s.muta_receipt_timeout_seconds,
        receipt_poll_interval=s.muta_receipt_poll_seconds,
        http_timeout=s.rpc_timeout_seconds,
    )
    return CkbHandlerService(client, service_name=s.handler_service_name)


def _load_signer(config: RelayerConfig) -> MessageSigner:
    try:
        return MessageSigner(config.settings.relayer_private_key)
    except RelayerError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def run(
    config_path: Optional[Path] = ConfigOption,
    once: bool = typer.Option(
        False,
        "--once",
        help="Run a single iteration and exit (useful for testing)",
    ),
) -> None:
    """
    Start the relayer: follow CKB and submit deposit batches to Muta.
    """
    config = RelayerConfig.from_env(config_path)
    signer = _load_signer(config)
    db, cursor, headers = _open_state(config)
    ckb = CkbRpcClient(config.settings.ckb_rpc_url, timeout=config.settings.rpc_timeout_seconds)
    service = _build_service(config, signer)

    relayer = CkbRelayer(
        config=config,
        ckb=ckb,
        service=service,
        signer=signer,
        cursor=cursor,
        headers=headers,
    )

    try:
        if once:
            typer.echo("Running in single-shot mode...")
            outcome = relayer.run_once()
            if outcome is None:
                typer.echo(f"Nothing relayed (next height: {relayer.next_height()})")
            else:
                typer.echo(
                    f"Relayed block {outcome.height}: "
                    f"{outcome.deposits} deposits of {outcome.transactions} txs"
                )
                if outcome.receipt:
                    typer.echo(f"✓ Muta tx: {outcome.receipt.tx_hash}")
        else:
            typer.echo("Running in continuous mode. Press Ctrl+C to stop.")
            try:
                relayer.run()
            except KeyboardInterrupt:
                typer.echo("\nStopping relayer...")
                relayer.stop()
            except RelayerHalted as e:
                typer.echo(f"✗ {e}", err=True)
                raise typer.Exit(code=1)
    finally:
        ckb.close()
        service.client.close()
        db.close()


@app.command()
def status(config_path: Optional[Path] = ConfigOption) -> None:
    """
    Show the stored cursor and header buffer.
    """
    config = RelayerConfig.from_env(config_path)
    db, cursor, headers = _open_state(config)

    try:
        current = cursor.get()
        typer.echo(f"Cursor: {current if current is not None else 'not set'}")
        typer.echo(
            f"Next height: {config.settings.ckb_start_height if current is None else current + 1}"
        )
        typer.echo(f"Buffered headers: {len(headers)}")
        span = headers.height_range()
        if span:
            typer.echo(f"  Heights: {span[0]} .. {span[1]}")
    finally:
        db.close()


@app.command()
def scan(
    height: int = typer.Argument(..., help="CKB block height to inspect"),
    config_path: Optional[Path] = ConfigOption,
    sign: bool = typer.Option(False, "--sign", help="Also sign the payload with the relayer key"),
) -> None:
    """
    Show the deposits and batch-mint payload for a block (without submitting).
    """
    config = RelayerConfig.from_env(config_path)
    ckb = CkbRpcClient(config.settings.ckb_rpc_url, timeout=config.settings.rpc_timeout_seconds)

    try:
        block = ckb.get_block_by_number(height)
        cross_txs = find_cross_transactions(block.transactions, config.target_lock)

        typer.echo(f"Block {height}: {len(block.transactions)} txs, {len(cross_txs)} deposits")
        if not cross_txs:
            return

        batch = build_batch_mint(cross_txs)
        typer.echo("")
        for instruction in batch:
            typer.echo(f"  Asset:    0x{instruction.asset_id.hex()}")
            typer.echo(f"  Receiver: 0x{instruction.receiver.hex()}")
            typer.echo(f"  Amount:   {instruction.amount}")
            typer.echo("")

        payload = encode_batch_mint(batch)
        typer.echo(f"Payload: 0x{payload.hex()}")

        if sign:
            message = _load_signer(config).sign(payload)
            typer.echo(f"Signature: 0x{message.signature.hex()}")
    except RelayerError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    finally:
        ckb.close()


@app.command("flush-headers")
def flush_headers(config_path: Optional[Path] = ConfigOption) -> None:
    """
    Send buffered headers to ckb_handler.update_headers and clear them.
    """
    config = RelayerConfig.from_env(config_path)
    signer = _load_signer(config)
    db, _, headers = _open_state(config)
    service = _build_service(config, signer)

    try:
        count = len(headers)
        receipt = flush_header_buffer(headers, service)
        if receipt is None:
            typer.echo("Header buffer is empty.")
            return
        typer.echo(f"✓ Flushed {count} headers in Muta tx {receipt.tx_hash}")
    except RelayerError as e:
        typer.echo(f"✗ Flush failed: {e}", err=True)
        raise typer.Exit(code=1)
    finally:
        service.client.close()
        db.close()


@app.command("reset-cursor")
def reset_cursor(
    height: int = typer.Argument(..., help="Height to record as last processed"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Overwrite the stored cursor (operator recovery).
    """
    config = RelayerConfig.from_env(config_path)
    db, cursor, _ = _open_state(config)

    try:
        previous = cursor.get()
        cursor.reset(height)
        typer.echo(f"Cursor moved from {previous} to {height}")
    except RelayerError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    finally:
        db.close()


@app.command()
def signer(config_path: Optional[Path] = ConfigOption) -> None:
    """Show the relayer public key and address."""
    config = RelayerConfig.from_env(config_path)
    key_holder = _load_signer(config)
    typer.echo(f"Public key (compressed): 0x{key_holder.compressed_public_key.hex()}")
    typer.echo(f"Address: {key_holder.address}")


@app.command()
def version() -> None:
    """Show the relayer version."""
    from ckb_relayer import __version__
    typer.echo(f"ckb-relayer v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
