"""
token-rescue command line.

Usage:
    token-rescue [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import quorum
from .backend import HttpRecoveryDataSource
from .balances import BalanceSnapshotter, RPCBalanceReader
from .config import get_config
from .contracts import LocalAccountSigner, TokenBackupsClient
from .errors import RescueError
from .executor import ExecutionState
from .links import build_rescue_link
from .logging_utils import setup_logging
from .poller import SignaturePoller
from .records import RecoveryRecord
from .rpc_client import ChainRPCClient
from .session import RecoverySession

console = Console()


def _format_deadline(deadline: Optional[int]) -> str:
    if deadline is None:
        return "[yellow]unknown[/yellow]"
    when = datetime.fromtimestamp(deadline, tz=timezone.utc)
    return f"{deadline} ({when.isoformat()})"


def _print_record(record: RecoveryRecord) -> None:
    status = quorum.evaluate(record)

    table = Table(title=f"Recovery {record.identifier}")
    table.add_column("Guardian", style="cyan")
    table.add_column("Signature")
    for sig in record.signatures:
        short = sig.signature[:18] + "..." if len(sig.signature) > 21 else sig.signature
        table.add_row(sig.address, short)
    console.print(table)

    console.print(f"Deadline: {_format_deadline(record.deadline)}")
    if status.ready:
        console.print("[green]Quorum reached, ready to recover[/green]")
    elif not status.needed_known:
        console.print("[yellow]Required signature count unknown[/yellow]")
    else:
        noun = "signer" if status.signatures_left == 1 else "signers"
        console.print(f"Waiting for [bold]{status.signatures_left}[/bold] {noun}")


@click.group()
@click.version_option(package_name="token-rescue", message="%(prog)s %(version)s")
@click.option("--api-url", envvar="TOKEN_RESCUE_API_BASE_URL", help="Signature service base URL")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, api_url: Optional[str], verbose: bool):
    """token-rescue - guardian-approved recovery of backed-up tokens."""
    ctx.ensure_object(dict)

    config = get_config()
    if api_url:
        config.backend.api_base_url = api_url

    setup_logging("DEBUG" if verbose else "WARNING")

    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("identifier")
@click.option("--base-url", default=None, help="Rescue site base URL")
@click.pass_context
def link(ctx, identifier: str, base_url: Optional[str]):
    """Print the rescue link guardians use to approve."""
    config = ctx.obj["config"]
    console.print(build_rescue_link(identifier, base_url or config.rescue_base_url))


@cli.command()
@click.argument("identifier")
@click.option("--needed", type=int, default=None, help="Signatures required")
@click.pass_context
def status(ctx, identifier: str, needed: Optional[int]):
    """Fetch the current guardian signatures once."""
    config = ctx.obj["config"]
    record = RecoveryRecord(identifier=identifier, signatures_needed=needed)

    async def run() -> None:
        source = HttpRecoveryDataSource(config.backend)
        try:
            record.apply_update(await source.fetch_recovery(identifier))
        finally:
            await source.close()

    try:
        asyncio.run(run())
    except RescueError as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)

    _print_record(record)


@cli.command()
@click.argument("identifier")
@click.option("--needed", type=int, required=True, help="Signatures required")
@click.option("--interval", type=float, default=None, help="Poll interval in seconds")
@click.pass_context
def watch(ctx, identifier: str, needed: int, interval: Optional[float]):
    """Poll until guardian quorum is reached (Ctrl-C to stop)."""
    config = ctx.obj["config"]
    if interval is not None:
        config.polling.poll_interval_seconds = interval
    record = RecoveryRecord(identifier=identifier, signatures_needed=needed)

    async def run() -> None:
        source = HttpRecoveryDataSource(config.backend)
        done = asyncio.Event()
        seen = {"count": -1}

        def on_update(rec: RecoveryRecord) -> None:
            if rec.signature_count != seen["count"]:
                seen["count"] = rec.signature_count
                left = quorum.signatures_left(rec)
                console.print(f"{rec.signature_count} signature(s), {left} left")
            if quorum.is_ready(rec):
                done.set()

        poller = SignaturePoller(record, source, config=config.polling)
        poller.add_observer(on_update)
        try:
            async with poller:
                await poller.poll_once()
                await done.wait()
        finally:
            await source.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")
        return

    _print_record(record)


@cli.command()
@click.argument("record_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--chain", default=None, help="Chain name (default from config)")
@click.option("--private-key", envvar="TOKEN_RESCUE_PRIVATE_KEY", required=True,
              help="Key paying for the recovery transaction")
@click.option("--wait/--no-wait", default=True, help="Wait for quorum before recovering")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def recover(ctx, record_file: str, chain: Optional[str], private_key: str, wait: bool, yes: bool):
    """Execute a recovery described by a JSON record file."""
    config = ctx.obj["config"]
    try:
        chain_config = config.get_chain_config(chain or config.default_chain)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--chain") from e

    try:
        with open(record_file) as f:
            record = RecoveryRecord.from_dict(json.load(f))
    except (KeyError, TypeError, ValueError) as e:
        console.print(f"[red]Error: invalid record file {escape(record_file)}: {escape(repr(e))}[/red]")
        ctx.exit(1)
        return

    async def run():
        source = HttpRecoveryDataSource(config.backend)
        rpc = ChainRPCClient(chain_config.rpc_url, timeout=config.http_timeout_seconds)
        snapshotter = BalanceSnapshotter(RPCBalanceReader(rpc))
        submitter = TokenBackupsClient(rpc, LocalAccountSigner(private_key), chain_config)
        try:
            async with RecoverySession(record, source, snapshotter, submitter, config=config) as session:
                console.print(f"Rescue link: {session.rescue_link}")
                while wait and session.status().state == ExecutionState.COLLECTING:
                    console.print(session.status().message)
                    await asyncio.sleep(config.polling.poll_interval_seconds)

                # Prompt off the event loop so polling keeps running
                if not yes and not await asyncio.to_thread(
                    click.confirm,
                    f"Recover {len(record.permitted_tokens)} token(s) "
                    f"to {record.recipient_address} on {chain_config.display_name}?",
                ):
                    return None
                return await session.recover()
        finally:
            await source.close()
            await rpc.close()

    try:
        receipt = asyncio.run(run())
    except RescueError as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)
        return

    if receipt is None:
        console.print("[yellow]Aborted[/yellow]")
        return

    console.print(f"[green]Recovered[/green] in {receipt.tx_hash}")
    if receipt.explorer_url:
        console.print(receipt.explorer_url)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
