import requests
from rich.table import Table

from signvault.logger import get_console
from signvault.src.apple.connect_api import ConnectApiClient
from signvault.src.apple.token_generator import (
    ConnectCredentials,
    TokenCache,
    TokenGenerator,
)
from signvault.src.core.errors import ConfigError, SignVaultError
from signvault.src.utils.config_loader import get_connect_settings, load_config

console = get_console()


def load_credentials(args) -> ConnectCredentials:
    """--credentials file first, then ASC_* environment, then config."""
    if args.credentials:
        return ConnectCredentials.from_file(args.credentials)
    try:
        return ConnectCredentials.from_environment()
    except ConfigError:
        settings = get_connect_settings(load_config())
        if not any(settings.values()):
            raise
        return ConnectCredentials.from_mapping(settings)


def run_token_command(args) -> int:
    try:
        token = TokenGenerator(load_credentials(args)).generate_token()
    except SignVaultError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1

    # Plain print so the token can be captured by shell substitution
    print(token.authorization_header if args.header else token.value)
    return 0


def run_apps_command(args) -> int:
    """List App Store Connect apps, which also proves the API key works"""
    try:
        tokens = TokenCache(TokenGenerator(load_credentials(args)))
        apps = ConnectApiClient(tokens).list_apps(limit=args.limit)
    except SignVaultError as e:
        console.print(f"[red]Error:[/] {e}")
        return 1
    except requests.RequestException as e:
        console.print(f"[red]App Store Connect request failed:[/] {e}")
        return 1

    table = Table(title="App Store Connect Apps")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Bundle ID")
    table.add_column("SKU")
    for app in apps:
        attributes = app.get("attributes", {})
        table.add_row(
            app.get("id", ""),
            attributes.get("name", ""),
            attributes.get("bundleId", ""),
            attributes.get("sku", ""),
        )
    console.print(table)
    return 0
