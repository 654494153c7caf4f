"""
Threadbot CLI - Command line interface for delivery operations.

Usage:
    threadbot --help                Show all commands
    threadbot sweep morning         Run one morning delivery sweep
    threadbot cleanup               Prune verification and cooldown ledgers
    threadbot set-webhook           Register the shared Telegram webhook
    threadbot webhook-info          Show Telegram's view of the webhook
    threadbot delete-webhook        Stop Telegram from sending updates
    threadbot serve                 Start the API server
"""

import asyncio

import typer

from threadbot.models.prompt import PromptSlot

app = typer.Typer(
    name="threadbot",
    help="Threadbot CLI - prompt delivery and Telegram operations",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    typer.echo(f"  ⚠️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command()
def sweep(
    slot: PromptSlot = typer.Argument(..., help="morning or evening"),
):
    """Run one delivery sweep for a slot."""
    from threadbot.core.logging import setup_logging
    from threadbot.services.delivery import run_delivery_sweep

    setup_logging()
    result = asyncio.run(run_delivery_sweep(slot))

    typer.echo(
        f"\n{slot.value}: processed={result.processed} sent={result.sent} "
        f"failed={result.failed} skipped={result.skipped}"
    )
    for outcome in result.outcomes:
        if outcome.status == "sent":
            _print_success(outcome.user_id)
        elif outcome.status == "skipped":
            _print_warning(f"{outcome.user_id}: {outcome.reason}")
        else:
            _print_error(f"{outcome.user_id}: {outcome.reason}")


@app.command()
def cleanup():
    """Prune expired codes, stale attempts and old cooldowns."""
    from threadbot.core.database import AsyncSessionLocal
    from threadbot.core.logging import setup_logging
    from threadbot.services.cleanup import run_ledger_cleanup

    setup_logging()

    async def run():
        async with AsyncSessionLocal() as db:
            return await run_ledger_cleanup(db)

    result = asyncio.run(run())
    _print_success(
        f"expired_codes={result.expired_codes} used_codes={result.used_codes} "
        f"stale_attempts={result.stale_attempts} cooldowns={result.cooldowns}"
    )


@app.command("set-webhook")
def set_webhook():
    """Register {BASE_URL}/api/telegram/webhook with the configured secret."""
    from threadbot.config import get_settings
    from threadbot.services.bot_config_service import webhook_url
    from threadbot.services.telegram_service import (
        GatewayTransportError,
        InvalidWebhookSecretError,
        build_gateway,
    )

    url = webhook_url()
    try:
        response = asyncio.run(
            build_gateway().set_webhook(url, get_settings().telegram_webhook_secret)
        )
    except InvalidWebhookSecretError as e:
        _print_error(str(e))
        raise typer.Exit(1) from e
    except GatewayTransportError as e:
        _print_error(f"Could not reach Telegram: {e}")
        raise typer.Exit(1) from e

    if not response.ok:
        _print_error(f"Telegram rejected the webhook: {response.description}")
        raise typer.Exit(1)
    _print_success(f"Webhook set to {url}")


@app.command("webhook-info")
def webhook_info():
    """Show the webhook URL, pending updates and last error Telegram reports."""
    from threadbot.services.telegram_service import build_gateway

    response = asyncio.run(build_gateway().get_webhook_info())
    if not response.ok:
        _print_error(f"getWebhookInfo failed: {response.description}")
        raise typer.Exit(1)

    info = response.result or {}
    typer.echo(f"url: {info.get('url') or '(none)'}")
    typer.echo(f"pending_update_count: {info.get('pending_update_count', 0)}")
    if info.get("last_error_message"):
        _print_warning(f"last error: {info['last_error_message']}")


@app.command("delete-webhook")
def delete_webhook():
    """Remove the webhook so the bot stops receiving updates."""
    from threadbot.services.telegram_service import GatewayTransportError, build_gateway

    try:
        response = asyncio.run(build_gateway().delete_webhook())
    except GatewayTransportError as e:
        _print_error(f"Could not reach Telegram: {e}")
        raise typer.Exit(1) from e

    if not response.ok:
        _print_error(f"deleteWebhook failed: {response.description}")
        raise typer.Exit(1)
    _print_success("Webhook removed")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server."""
    import subprocess

    cmd = ["uvicorn", "threadbot.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
