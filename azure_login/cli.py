"""CLI entry point for azure-login."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, NoReturn

import click

from . import __version__
from .config import ConfigError, load_config
from .oauth import (
    AuthError,
    BindError,
    LoginFailedError,
    LoginManager,
    NotLoggedInError,
    TokenStoreError,
)
from .oauth.tokens import LoginInfo
from .output import OutputHandler

# Logger for CLI
logger = logging.getLogger("azlogin")


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, env_path: str | None, verbose: bool) -> None:
    """azure-login - Log in to Azure in the browser and keep the token fresh."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["output"] = OutputHandler(json_mode)

    # Configure logging based on verbosity
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_manager(ctx: click.Context) -> LoginManager | NoReturn:
    """Build a login manager from context, handling config errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        config = load_config(ctx.obj["env_path"])
    except ConfigError as e:
        output.error(e, help_text="Check the AZLOGIN_* environment variables.")
        raise SystemExit(1)  # Never reached due to sys.exit in output.error
    return LoginManager(config=config)


async def _run_login(
    manager: LoginManager,
    timeout: float | None,
    on_status: Callable[[str], None] | None,
) -> LoginInfo | None:
    """Run the login, treating an expired timeout as cancellation."""
    cancel = asyncio.Event()
    if timeout is not None:
        asyncio.get_running_loop().call_later(timeout, cancel.set)
    return await manager.login(cancel=cancel, on_status=on_status)


@main.command()
@click.option(
    "--timeout", "-t", type=float, default=None,
    help="Stop waiting for the browser after this many seconds",
)
@click.pass_context
def login(ctx: click.Context, timeout: float | None) -> None:
    """Log in to Azure with the default browser."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    try:
        login_info = asyncio.run(_run_login(manager, timeout, output.progress))
    except KeyboardInterrupt:
        login_info = None
    except BindError as e:
        output.error(e, help_text="Could not listen on a local port for the browser redirect.")
        return
    except LoginFailedError as e:
        output.error(e, help_text="Any previous login was left unchanged. Try 'azlogin login' again.")
        return
    except AuthError as e:
        output.error(e, help_text="Azure rejected the authorization code. Try 'azlogin login' again.")
        return

    if login_info is None:
        output.success({"logged_in": False, "cancelled": True}, "Login cancelled")
        return

    output.success(
        {
            "logged_in": True,
            "tenant_id": login_info.tenant_id,
            "expires_at": login_info.token.expiry.isoformat(),
        },
        f"Logged in to tenant {login_info.tenant_id}",
    )


@main.command()
@click.pass_context
def token(ctx: click.Context) -> None:
    """Print a valid access token, refreshing it if it has expired."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    try:
        access_token = asyncio.run(manager.get_valid_token())
    except NotLoggedInError as e:
        output.error(e, error_type="NotLoggedIn", help_text="Run 'azlogin login' first.")
        return
    except AuthError as e:
        output.error(e, help_text="Run 'azlogin login' to sign in again.")
        return
    except TokenStoreError as e:
        output.error(e, help_text="Run 'azlogin login' to store a new login.")
        return

    output.success(
        {
            "access_token": access_token.access_token,
            "token_type": access_token.token_type,
            "expires_at": access_token.expiry.isoformat(),
        },
        access_token.access_token,
    )


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the stored login without refreshing it."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    auth_status = manager.get_status()

    if ctx.obj["json_mode"]:
        output.success(auth_status.to_dict())
        return

    if auth_status.error:
        click.secho(f"Error: {auth_status.error}", fg="red")
    elif not auth_status.logged_in:
        click.secho("Not logged in", fg="yellow")
        click.echo("Run 'azlogin login' to log in.")
    else:
        click.secho("Logged in", fg="green", bold=True)
        click.echo(f"  Tenant:        {auth_status.tenant_id}")
        if auth_status.expired:
            click.secho("  Access token:  expired (refreshed on next use)", fg="yellow")
        else:
            click.echo(f"  Access token:  expires in {auth_status.expires_in_human}")
        click.echo(f"  Refresh token: {'yes' if auth_status.has_refresh_token else 'no'}")

    if not auth_status.using_keyring:
        click.secho(
            "Warning: OS keyring unavailable, tokens use fallback encryption.",
            fg="yellow",
        )
