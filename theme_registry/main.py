import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Optional

import click
from dotenv import load_dotenv

from theme_registry.application.export_service import DEFAULT_EXPORT_PATH, export_cache
from theme_registry.application.sync_service import SyncService
from theme_registry.infrastructure.config import DEFAULT_CONFIG_PATH, RegistryConfig, load_config
from theme_registry.infrastructure.git_publisher import GitPublisher

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )


@dataclass
class CliContext:
    config: RegistryConfig
    token: Optional[str]


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.option("--config", "-c", "config_path", default=DEFAULT_CONFIG_PATH, show_default=True,
              help="Path to configuration file")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--token", envvar="GITHUB_TOKEN", default=None,
              help="GitHub token (overrides GITHUB_TOKEN env var)")
@click.pass_context
def cli(ctx: click.Context, config_path: str, verbose: bool, token: Optional[str]) -> None:
    """Theme registry indexer: discovers Neovim colorschemes on GitHub and builds a JSON index."""
    config = load_config(config_path)
    configure_logging("DEBUG" if verbose else config.runtime.log_level)
    ctx.obj = CliContext(config=config, token=token)


@cli.command()
@click.pass_obj
def sync(obj: CliContext) -> None:
    """Sync themes from GitHub once."""
    try:
        stats = asyncio.run(SyncService(obj.config, token=obj.token).run_once())
    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        _fail(f"Sync failed: {e}")

    click.echo(stats.model_dump_json(indent=2))
    if stats.errors > 0:
        _fail(f"Sync completed with {stats.errors} errors")
    click.echo(f"Synced {stats.written} themes")


@cli.command()
@click.pass_obj
def watch(obj: CliContext) -> None:
    """Continuously sync themes (watch mode)."""
    try:
        asyncio.run(SyncService(obj.config, token=obj.token).run_loop())
    except KeyboardInterrupt:
        logger.info("Watch interrupted by user. Exiting gracefully.")
        return
    _fail("Watch loop exited unexpectedly")


@cli.command()
@click.pass_obj
def publish(obj: CliContext) -> None:
    """Sync themes and publish the artifacts with git."""
    config = obj.config
    if not config.publish.enabled:
        _fail("Publishing is disabled in config (publish.enabled=false)")

    try:
        stats = asyncio.run(SyncService(config, token=obj.token).run_once())
    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        _fail(f"Sync failed: {e}")

    if stats.errors > 0:
        _fail(f"Sync completed with {stats.errors} errors, skipping publish")

    try:
        GitPublisher(config.publish.git).publish([config.output.themes, config.output.manifest])
    except Exception as e:
        _fail(f"Git operations failed: {e}")
    click.echo(f"Published {stats.written} themes")


@cli.command()
@click.option("--output", "-o", "output_path", default=DEFAULT_EXPORT_PATH, show_default=True,
              help="Where to write the export")
@click.pass_obj
def export(obj: CliContext, output_path: str) -> None:
    """Export every cache record to JSON."""
    try:
        result = asyncio.run(export_cache(obj.config, output_path))
    except Exception as e:
        _fail(f"Export failed: {e}")
    click.echo(f"Exported {result.count} entries to {output_path}")


def main() -> None:
    # Load environment variables from .env file before click reads GITHUB_TOKEN
    load_dotenv()
    cli()


if __name__ == "__main__":
    main()
