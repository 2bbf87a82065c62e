#!/usr/bin/env python3
"""
raindrop-sync - Import Raindrop.io highlights into a Markdown vault

This tool pulls your Raindrop.io highlights, writes one note per article
into a local vault and archives the notes of bookmarks you trashed.
"""

import time
from datetime import datetime
from typing import Optional

import click
from loguru import logger
from beartype import beartype as typecheck

from ._version import VERSION
from .utils.deletion_detector import DELETION_STRATEGIES
from .utils.poller import SyncPoller
from .utils.raindrop_manager import RaindropManager
from .utils.sync import RaindropSync, SyncConfig, get_default_debug_log_path
from .utils.vault_manager import IMPORT_LOCATIONS

MISSING_TOKEN_HELP = (
    "Please configure your Raindrop.io API token: go to "
    "app.raindrop.io/settings/integrations, create an app, copy the test token "
    "and pass it with --api-token or the RAINDROP_API_TOKEN environment variable."
)


@typecheck
def setup_logging(verbose: bool, log_file: Optional[str] = None) -> None:
    """Send logs to a rotating debug file and to stderr."""
    logger.remove()  # Remove default handler

    logger.add(
        log_file or get_default_debug_log_path(),
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}",
        rotation="10 MB",
    )
    logger.add(
        lambda msg: click.echo(msg, err=True, nl=False),
        level="DEBUG" if verbose else "INFO",
        format="{time:HH:mm:ss} | {level} | {message}",
    )


@typecheck
def format_last_sync(iso_string: Optional[str]) -> str:
    """Human readable local time of the last sync."""
    if not iso_string:
        return "Never"
    try:
        return datetime.fromisoformat(iso_string).astimezone().strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return iso_string


def _require_token(config: SyncConfig) -> str:
    token = (config.api_token or "").strip()
    if not token:
        raise click.ClickException(MISSING_TOKEN_HELP)
    return token


@click.group()
@click.option(
    "--vault-path",
    envvar="RAINDROP_SYNC_VAULT",
    required=True,
    type=click.Path(file_okay=False),
    help="Root folder of the Markdown vault. Defaults to the RAINDROP_SYNC_VAULT environment variable.",
)
@click.option(
    "--api-token",
    envvar="RAINDROP_API_TOKEN",
    default=None,
    help="Raindrop.io API token. Defaults to the RAINDROP_API_TOKEN environment variable.",
)
@click.option(
    "--sync-state-path",
    default=None,
    help="Path to sync state file (default: uses platformdirs user data directory)",
)
@click.option(
    "--import-location",
    type=click.Choice(IMPORT_LOCATIONS),
    default="daily",
    show_default=True,
    help="File new articles under a dedicated folder or under today's daily note",
)
@click.option(
    "--sync-interval",
    type=click.IntRange(min=0),
    default=30,
    show_default=True,
    help="Minutes between automatic syncs in watch mode (0 disables them)",
)
@click.option(
    "--include-colors/--no-include-colors",
    default=True,
    help="Preserve highlight colors from Raindrop.io in the notes",
)
@click.option(
    "--deletion-strategy",
    type=click.Choice(sorted(DELETION_STRATEGIES)),
    default="trash",
    show_default=True,
    help="How removed bookmarks are detected: trashed bookmarks, or highlights that disappeared",
)
@click.option(
    "--forget-archived-highlights",
    is_flag=True,
    help="Forget the highlights of archived bookmarks so they are imported again if the bookmark is restored",
)
@click.option(
    "--namespace",
    default="raindrop-sync",
    show_default=True,
    help="Prefix of the keys in the sync state file",
)
@click.option(
    "--log-file",
    default=None,
    help="Debug log file (default: uses platformdirs user cache directory)",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable verbose logging output",
)
@click.version_option(version=VERSION)
@click.pass_context
def cli(
    ctx: click.Context,
    vault_path: str,
    api_token: Optional[str],
    sync_state_path: Optional[str],
    import_location: str,
    sync_interval: int,
    include_colors: bool,
    deletion_strategy: str,
    forget_archived_highlights: bool,
    namespace: str,
    log_file: Optional[str],
    verbose: bool,
) -> None:
    """Sync Raindrop.io highlights into a Markdown vault."""
    setup_logging(verbose, log_file)

    ctx.obj = SyncConfig(
        vault_path=vault_path,
        api_token=api_token,
        sync_state_path=sync_state_path,
        import_location=import_location,
        sync_interval_minutes=sync_interval,
        include_colors=include_colors,
        deletion_strategy=deletion_strategy,
        forget_archived_highlights=forget_archived_highlights,
        namespace=namespace,
    )
    logger.debug(f"Starting raindrop-sync v{VERSION}")
    logger.debug(
        f"Config: vault_path={vault_path}, import_location={import_location}, "
        f"deletion_strategy={deletion_strategy}, sync_interval={sync_interval}"
    )


@cli.command()
@click.option(
    "--debug",
    is_flag=True,
    help="Re-raise a failed sync for post-mortem debugging",
)
@click.pass_obj
def sync(config: SyncConfig, debug: bool) -> None:
    """Sync highlights once."""
    _require_token(config)

    click.echo("Syncing Raindrop highlights...")
    result = RaindropSync(config).perform_sync()

    if result.failed:
        if debug:
            result.raise_for_status()
        raise click.ClickException(result.summary())

    if result.skipped:
        click.echo(result.summary())
        return

    if result.errors:
        click.echo(f"Imported {result.imported} highlights with {len(result.errors)} error(s).")
        for error in result.errors:
            click.echo(f"  - {error}", err=True)
    else:
        click.echo(f"Imported {result.imported} new highlights.")

    if result.archived:
        click.echo(f"Archived {result.archived} article(s).")


@cli.command()
@click.option(
    "--sync-now/--no-sync-now",
    default=True,
    help="Run one sync right away instead of waiting for the first interval",
)
@click.pass_obj
def watch(config: SyncConfig, sync_now: bool) -> None:
    """Keep running and sync every --sync-interval minutes."""
    _require_token(config)
    if config.sync_interval_minutes <= 0:
        raise click.ClickException(
            "Automatic sync is disabled. Set --sync-interval to a positive number of minutes."
        )

    sync_manager = RaindropSync(config)
    with SyncPoller(sync_manager.perform_sync) as poller:
        if sync_now:
            poller.tick()
        poller.start(config.sync_interval_minutes)

        click.echo(
            f"Syncing every {config.sync_interval_minutes} minute(s). Press Ctrl+C to stop."
        )
        try:
            while poller.is_active:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Stopping automatic sync")


@cli.command("validate-token")
@click.pass_obj
def validate_token(config: SyncConfig) -> None:
    """Check that the API token is accepted by Raindrop.io."""
    token = _require_token(config)

    if RaindropManager().validate_token(token):
        click.echo("Raindrop.io token is valid!")
    else:
        raise click.ClickException(
            "Invalid token. Please check your Raindrop.io API token."
        )


@cli.command()
@click.pass_obj
def status(config: SyncConfig) -> None:
    """Show the token state and the outcome of the last sync."""
    info = RaindropSync(config).status()

    if info["token_configured"]:
        click.echo("Status: Token configured")
    else:
        click.echo("Status: No token set. Configure it with --api-token or RAINDROP_API_TOKEN.")
    click.echo(f"Last sync: {format_last_sync(info['last_sync_time'])}")
    click.echo(f"Imported highlights: {info['imported_highlights']}")
    if info["last_result"]:
        click.echo(f"Last result: {info['last_result']}")


if __name__ == "__main__":
    cli()
