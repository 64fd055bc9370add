"""Command line interface for cidstore.

Commands open a ``ContentService`` for the duration of one operation,
run it with ``asyncio.run`` and render results with rich.
"""

from __future__ import annotations

import asyncio
import json
import mimetypes
from pathlib import Path
from typing import Any, Awaitable, Callable, NoReturn, TypeVar

import click
from rich.console import Console
from rich.table import Table

from cidstore.config.config import ConfigManager, init_config
from cidstore.gateway.resolver import GatewayResolver
from cidstore.models import LogLevel
from cidstore.service import ContentService
from cidstore.utils.exceptions import CidStoreError, StorageConnectionError
from cidstore.utils.logging_config import get_logger, set_correlation_id, setup_logging

T = TypeVar("T")

logger = get_logger(__name__)


def _raise_cli_error(message: str) -> NoReturn:
    """Raise a ClickException with the given message."""
    raise click.ClickException(message) from None


def _config_manager(ctx: click.Context) -> ConfigManager:
    return ctx.obj["config_manager"]


def _run(coro_factory: Callable[[], Awaitable[T]]) -> T:
    """Run a coroutine under a fresh correlation id; map library errors to CLI errors."""

    async def _wrapped() -> T:
        set_correlation_id()
        return await coro_factory()

    try:
        return asyncio.run(_wrapped())
    except CidStoreError as e:
        logger.debug("Command failed", exc_info=e)
        _raise_cli_error(str(e))


def _render(content: Any) -> str:
    if isinstance(content, (dict, list)):
        return json.dumps(content, indent=2)
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return str(content)


def _to_bytes(content: Any) -> bytes:
    if isinstance(content, bytes):
        return content
    if isinstance(content, (dict, list)):
        return json.dumps(content, indent=2).encode("utf-8")
    return str(content).encode("utf-8")


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """cidstore - documents and files on IPFS."""
    ctx.ensure_object(dict)
    try:
        config_manager = init_config(config)
    except CidStoreError as e:
        _raise_cli_error(str(e))
    if verbose:
        config_manager.config.observability.log_level = LogLevel.DEBUG
        setup_logging(config_manager.config.observability)
    ctx.obj["config_manager"] = config_manager


@cli.command("health")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def health(ctx: click.Context, json_output: bool) -> None:
    """Check the connection to the IPFS node."""
    console = Console()
    cfg = _config_manager(ctx).config

    async def _health() -> dict[str, Any]:
        async with ContentService(cfg) as service:
            return await service.health()

    info = _run(_health)
    if json_output:
        click.echo(json.dumps(info, default=str))
        return

    table = Table(title="IPFS Connection")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("API URL", info["api_url"])
    table.add_row("State", info["state"])
    table.add_row("Backend", info.get("backend", "-"))
    version = info.get("version") or {}
    table.add_row("Version", str(version.get("Version", "-")))
    console.print(table)
    if not info["healthy"]:
        _raise_cli_error("IPFS node is not healthy")


@cli.command("upload")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--mime-type", type=str, help="MIME type recorded with the upload")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def upload(
    ctx: click.Context, path: Path, mime_type: str | None, json_output: bool
) -> None:
    """Add and pin a file."""
    console = Console()
    cfg = _config_manager(ctx).config
    mime = mime_type or mimetypes.guess_type(path.name)[0]

    async def _upload():
        async with ContentService(cfg) as service:
            return await service.store.upload_file(
                path.read_bytes(), file_name=path.name, mime_type=mime
            )

    result = _run(_upload)
    if json_output:
        click.echo(json.dumps({**result.model_dump(), "locator": result.locator}))
    else:
        console.print(f"[green]Uploaded:[/green] {result.cid}")
        console.print(f"[green]Locator:[/green] {result.locator}")


@cli.command("fetch")
@click.argument("locator", type=str)
@click.option(
    "--output", "-o", type=click.Path(path_type=Path), help="Output file path"
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def fetch(
    ctx: click.Context, locator: str, output: Path | None, json_output: bool
) -> None:
    """Fetch content by locator, from local storage or public gateways."""
    console = Console()
    cfg = _config_manager(ctx).config

    async def _fetch() -> Any:
        service = ContentService(cfg)
        try:
            try:
                await service.start()
            except StorageConnectionError as e:
                logger.warning("Local storage unavailable, using gateways only: %s", e)
                await service.resolver.start()
            return await service.resolver.fetch_content(locator)
        finally:
            await service.stop()

    content = _run(_fetch)
    if output:
        output.write_bytes(_to_bytes(content))
        if json_output:
            click.echo(json.dumps({"locator": locator, "saved_to": str(output)}))
        else:
            console.print(f"[green]Content saved to:[/green] {output}")
    elif json_output:
        click.echo(json.dumps({"locator": locator, "size": len(_to_bytes(content))}))
    else:
        click.echo(_render(content))


@cli.command("url")
@click.argument("locator", type=str)
@click.option("--gateway", "-g", type=str, help="Gateway URL prefix to use")
@click.pass_context
def url(ctx: click.Context, locator: str, gateway: str | None) -> None:
    """Print the HTTP gateway URL for a locator."""
    resolver = GatewayResolver(_config_manager(ctx).config.gateway)
    result = resolver.to_fetchable_url(locator, gateway)
    if not result:
        _raise_cli_error(f"Cannot resolve locator: {locator}")
    click.echo(result)


@cli.group("config")
def config_group() -> None:
    """Configuration commands."""


@config_group.command("show")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["toml", "json"]),
    default="toml",
    help="Output format",
)
@click.pass_context
def config_show(ctx: click.Context, fmt: str) -> None:
    """Print the effective configuration."""
    click.echo(_config_manager(ctx).export(fmt))


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
