"""
sasforge Command-Line Interface

Issues SAS URIs and connection strings from a storage credential descriptor.

Author: sasforge Contributors
Date: 2026-10-19
"""

import sys
import asyncio
import logging
import uuid
from datetime import timedelta
from functools import wraps
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError

from sasforge import __version__
from sasforge.auth.authority import LocalDelegationAuthority
from sasforge.auth.delegation import DelegationKeyBroker
from sasforge.auth.descriptor import AccountIdentity
from sasforge.core.config_manager import ConfigManager, SasForgeConfig
from sasforge.core.logging_config import log_with_context, set_correlation_id, setup_logging
from sasforge.exceptions import SasError
from sasforge.sas.issuer import SasIssuer
from sasforge.sas.permissions import (
    AccountSasResourceType,
    AccountSasService,
    from_letters,
)

logger = logging.getLogger("sasforge.cli")

DEMO_CONTAINER = "demo"
DEMO_BLOB = "myfile.txt"
# Issued URIs go to stdout; keep routine INFO lines off the terminal.
DEFAULT_LOG_LEVEL = "WARNING"


def handle_errors(func):
    """Report sasforge errors as ``[ERROR]`` lines and exit 1."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SasError as e:
            details = e.to_dict()
            details.pop("message")
            log_with_context(logger, logging.ERROR, f"{func.__name__} failed: {e.message}", **details)
            click.echo(f"[ERROR] {e.error_code}: {e.message}", err=True)
            sys.exit(1)

    return wrapper


def _identity(config: SasForgeConfig, required=("AccountName", "AccountKey")) -> AccountIdentity:
    if not config.connection_string:
        raise click.UsageError(
            "No connection string. Use --connection-string, SASFORGE_CONNECTION_STRING "
            "or a config file."
        )
    return AccountIdentity.from_descriptor(config.connection_string, required=required)


def _issuer(config: SasForgeConfig, broker: Optional[DelegationKeyBroker] = None) -> SasIssuer:
    return SasIssuer(policy=config.policy.to_policy(), broker=broker)


def _local_broker(config: SasForgeConfig, identity: AccountIdentity) -> DelegationKeyBroker:
    authority = LocalDelegationAuthority(
        accounts=[identity.name], signed_version=config.policy.version
    )
    return DelegationKeyBroker(authority, key_lifetime=config.delegation.key_lifetime)


@click.group()
@click.version_option(version=__version__, prog_name="sasforge")
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file (YAML or JSON)",
)
@click.option(
    "--connection-string",
    envvar="SASFORGE_CONNECTION_STRING",
    help="Storage credential descriptor (AccountName=...;AccountKey=...)",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level [default: SASFORGE_LOG_LEVEL, the config file, or WARNING]",
)
@click.pass_context
def cli(ctx, config_file: Optional[Path], connection_string: Optional[str], log_level: Optional[str]):
    """
    sasforge - Shared Access Signature issuance

    Mint time-bounded, permission-scoped SAS URIs for storage accounts.
    """
    ctx.ensure_object(dict)
    setup_logging(level=(log_level or DEFAULT_LOG_LEVEL).upper(), format_type="text")

    overrides = {}
    if log_level:
        overrides["logging"] = {"level": log_level.upper()}
    if connection_string:
        overrides["connection_string"] = connection_string

    try:
        config = ConfigManager().load(
            config_file=str(config_file) if config_file else None,
            cli_overrides=overrides,
            defaults={"logging": {"level": DEFAULT_LOG_LEVEL}},
        )
    except ValidationError as e:
        click.echo(f"[ERROR] Invalid configuration: {e}", err=True)
        sys.exit(1)

    setup_logging(
        level=config.logging.level,
        format_type=config.logging.format,
        log_file=config.logging.file,
        rotation_size=config.logging.rotation_size,
        rotation_count=config.logging.rotation_count,
        module_levels=config.logging.module_levels,
    )
    set_correlation_id(str(uuid.uuid4()))
    ctx.obj["config"] = config


@cli.command()
@click.argument("container")
@click.argument("blob", required=False)
@click.option("--permissions", "-p", default="r", show_default=True, help="Permission letters")
@click.option("--hours", default=5.0, show_default=True, type=float, help="Validity in hours")
@click.pass_context
@handle_errors
def blob(ctx, container: str, blob: Optional[str], permissions: str, hours: float):
    """
    Shared-key SAS URI for a blob, or for a container when BLOB is omitted.

    Examples:
        sasforge blob demo myfile.txt
        sasforge blob demo --permissions rl --hours 1
    """
    config = ctx.obj["config"]
    uri = _issuer(config).blob_sas_uri(
        _identity(config), container, blob, permissions, timedelta(hours=hours)
    )
    click.echo(uri)


def _account_options(func):
    func = click.option("--hours", default=10.0, show_default=True, type=float, help="Validity in hours")(func)
    func = click.option("--permissions", "-p", default="rl", show_default=True, help="Permission letters")(func)
    func = click.option(
        "--resource-types", "-r", default="sco", show_default=True,
        help="Resource type letters (s=service, c=container, o=object)",
    )(func)
    return func


@cli.command()
@click.option("--services", "-s", default="b", show_default=True, help="Service letters (b, f, q, t)")
@_account_options
@click.pass_context
@handle_errors
def account(ctx, services: str, resource_types: str, permissions: str, hours: float):
    """
    Account SAS URI against the first selected service's endpoint.

    Examples:
        sasforge account
        sasforge account --services bt --permissions rwl
    """
    config = ctx.obj["config"]
    selected = from_letters(services, AccountSasService, "services")
    first = next((s for s in AccountSasService if s in selected), AccountSasService.BLOB)
    uri = _issuer(config).account_sas_uri(
        _identity(config),
        selected,
        from_letters(resource_types, AccountSasResourceType, "resource_types"),
        permissions,
        timedelta(hours=hours),
        service=first,
    )
    click.echo(uri)


@cli.command("connection-string")
@click.option("--services", "-s", default="bt", show_default=True, help="Service letters (b, f, q, t)")
@_account_options
@click.pass_context
@handle_errors
def connection_string(ctx, services: str, resource_types: str, permissions: str, hours: float):
    """
    Connection string for several services sharing one account SAS.

    Examples:
        sasforge connection-string
        sasforge connection-string --services bqt
    """
    config = ctx.obj["config"]
    result = _issuer(config).connection_string(
        _identity(config),
        from_letters(services, AccountSasService, "services"),
        from_letters(resource_types, AccountSasResourceType, "resource_types"),
        permissions,
        timedelta(hours=hours),
    )
    click.echo(result)


@cli.command()
@click.argument("container")
@click.argument("blob", required=False)
@click.option("--permissions", "-p", default="r", show_default=True, help="Permission letters")
@click.option(
    "--minutes", default=None, type=float,
    help="Validity in minutes (default: until the delegation key expires)",
)
@click.pass_context
@handle_errors
def delegated(ctx, container: str, blob: Optional[str], permissions: str, minutes: float):
    """
    Delegation-key SAS URI, signed with a key from the local authority.

    Examples:
        sasforge delegated demo myfile.txt
        sasforge delegated demo myfile.txt --minutes 2
    """
    config = ctx.obj["config"]
    identity = _identity(config, required=("AccountName",))
    issuer = _issuer(config, _local_broker(config, identity))
    uri = asyncio.run(
        issuer.delegated_blob_sas_uri(
            identity,
            container,
            blob,
            permissions,
            timedelta(minutes=minutes) if minutes is not None else None,
            timeout=config.delegation.fetch_timeout_seconds,
        )
    )
    click.echo(uri)


@cli.command()
@click.pass_context
@handle_errors
def demo(ctx):
    """
    Run the four issuance scenarios against the configured account.
    """
    config = ctx.obj["config"]
    identity = _identity(config)
    broker = _local_broker(config, identity)
    issuer = _issuer(config, broker)
    read_list = "rl"
    all_types = list(AccountSasResourceType)

    click.echo("Scenario #1: Blob SAS URI signed with the account key")
    click.echo(issuer.blob_sas_uri(identity, DEMO_CONTAINER, DEMO_BLOB, "r", timedelta(hours=5)))
    click.echo()

    click.echo("Scenario #2: Account SAS URI to list and download blobs")
    click.echo(
        issuer.account_sas_uri(
            identity, [AccountSasService.BLOB], all_types, read_list, timedelta(hours=10)
        )
    )
    click.echo()

    click.echo("Scenario #3: Blob SAS URI signed with a delegation key")
    click.echo(
        asyncio.run(
            issuer.delegated_blob_sas_uri(
                identity, DEMO_CONTAINER, DEMO_BLOB, "r"
            )
        )
    )
    click.echo()

    click.echo("Scenario #4: Connection string for multiple services")
    click.echo(
        issuer.connection_string(
            identity,
            [AccountSasService.BLOB, AccountSasService.TABLE],
            all_types,
            read_list,
            timedelta(hours=10),
        )
    )


@cli.command()
def version():
    """Show sasforge version."""
    click.echo(f"sasforge version {__version__}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
