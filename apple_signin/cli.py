"""
Sign in with Apple CLI

Operational helpers for checking a Sign in with Apple setup from a shell.
Credentials are read from the environment or a .env file.

Usage:
    apple-signin authorize-url     - Print the authorization redirect URL
    apple-signin client-secret     - Print a freshly signed client secret
    apple-signin verify TOKEN      - Verify an identity token
    apple-signin keys              - List Apple's published signing keys
"""
import asyncio
import logging
import sys

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from apple_signin import __version__
from apple_signin.auth.keys import CachePolicy, SigningKeyResolver
from apple_signin.config import get_settings
from apple_signin.context import CallbackContext
from apple_signin.driver import AppleDriver
from apple_signin.errors import AppleAuthError

console = Console()


def build_driver(ctx: CallbackContext | None = None) -> AppleDriver:
    """Build a driver from settings, exiting with a hint when unconfigured."""
    try:
        return AppleDriver.from_settings(ctx or CallbackContext())
    except ValueError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        console.print("\nAdd the missing values to your environment or .env:")
        console.print("[yellow]APPLE_APP_ID, APPLE_TEAM_ID, APPLE_CLIENT_ID, "
                      "APPLE_CLIENT_SECRET (or APPLE_CLIENT_SECRET_PATH), APPLE_CALLBACK_URL[/yellow]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="apple-signin")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging (same as DEBUG=true)")
def main(verbose: bool):
    """
    Sign in with Apple - inspect and exercise an Apple OAuth2 configuration.
    """
    load_dotenv()
    get_settings.cache_clear()
    try:
        settings = get_settings()
    except ValueError as e:
        console.print(f"[red]✗ Invalid configuration: {escape(str(e))}[/red]")
        sys.exit(1)
    debug = verbose or settings.DEBUG
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@main.command("authorize-url")
@click.option("--state", default=None, help="Use this state instead of a random one")
def authorize_url(state: str | None):
    """
    Print the URL that starts the authorization flow.

    Example:
        apple-signin authorize-url
    """
    ctx = CallbackContext()
    driver = build_driver(ctx)
    if state:
        url = driver.redirect_url(lambda request: request.param(driver.state_param, state))
    else:
        url = driver.redirect_url()

    console.print(Panel(url, title="Authorize URL", border_style="cyan"))
    console.print(f"State: [cyan]{state or ctx.stored_state}[/cyan]")


@main.command("client-secret")
def client_secret():
    """
    Print a freshly signed client secret.
    """
    driver = build_driver()
    try:
        secret = driver.signer.generate_client_secret()
    except AppleAuthError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        sys.exit(1)
    click.echo(secret)


@main.command()
@click.argument("token")
def verify(token: str):
    """
    Verify an identity token and show the resolved user.

    Example:
        apple-signin verify eyJraWQiOi...
    """
    driver = build_driver()

    async def run():
        try:
            return await driver.user_from_token(token)
        finally:
            await driver.close()
            await driver.verifier.resolver.close()

    try:
        user = asyncio.run(run())
    except AppleAuthError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        sys.exit(1)

    table = Table(title="Apple user")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("id", user.id)
    table.add_row("name", user.name or "[dim]-[/dim]")
    table.add_row("email", user.email or "[dim]-[/dim]")
    table.add_row("email_verification_state", user.email_verification_state.value)
    console.print(table)


@main.command()
def keys():
    """
    List the signing keys Apple currently publishes.
    """
    settings = get_settings()
    resolver = SigningKeyResolver(
        policy=CachePolicy(rate_limit=0),
        timeout=settings.APPLE_HTTP_TIMEOUT,
    )

    async def run():
        try:
            return await resolver.fetch_keys()
        finally:
            await resolver.close()

    try:
        fetched = asyncio.run(run())
    except AppleAuthError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        sys.exit(1)

    table = Table(title=resolver.jwks_url)
    table.add_column("Key ID", style="cyan")
    table.add_column("Algorithm")
    for kid, entry in fetched.items():
        table.add_row(kid, entry.algorithm or "-")
    console.print(table)


if __name__ == "__main__":
    main()
