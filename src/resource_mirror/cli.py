"""CLI for resource-mirror: query and watch remote resource collections."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

import click
import structlog

from resource_mirror import __version__
from resource_mirror.collection import Collection
from resource_mirror.config import CollectionConfig, LoggingConfig, load_config
from resource_mirror.core.logging import configure_logging
from resource_mirror.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _collection_options(fn):
    """Shared endpoint options for commands that build a collection."""
    decorators = [
        click.option(
            "--config",
            "config_path",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            help="TOML file with a [collection] table",
        ),
        click.option("--host", help="Server host, e.g. http://api.example.com"),
        click.option("--path", "base_path", help="Base path under the host, e.g. v1"),
        click.option("--type", "resource_type", help="Resource type, e.g. articles"),
        click.option("--query", help="Filter structure as JSON"),
        click.option("--fields", help="Field selection as JSON"),
        click.option("--sort", help="Comma-separated sort fields, highest priority first"),
        click.option("--offset", type=int, help="Page offset"),
        click.option("--limit", type=int, help="Page size"),
        click.option(
            "--param",
            "extra_params",
            multiple=True,
            help="Additional KEY=VALUE query parameter (repeatable)",
        ),
    ]
    for decorator in reversed(decorators):
        fn = decorator(fn)
    return fn


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Log level (default INFO, or [logging] in config)")
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"]),
    default=None,
    help="Console log format",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, log_format: str | None) -> None:
    """resource-mirror: in-memory mirrors of remote resource collections."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["log_format"] = log_format


@cli.command()
@_collection_options
@click.pass_context
def fetch(ctx: click.Context, **kwargs: Any) -> None:
    """Fetch one page of a collection and print it as JSON."""
    collection_config, options = _prepare(ctx, realtime=False, inclusive=False, **kwargs)
    errored = asyncio.run(_fetch_once(collection_config, options))
    if errored:
        sys.exit(1)


@cli.command()
@_collection_options
@click.option("--inclusive/--no-inclusive", default=True, help="Pull in newly created entities")
@click.pass_context
def watch(ctx: click.Context, inclusive: bool, **kwargs: Any) -> None:
    """Fetch a collection, then keep it live until interrupted."""
    collection_config, options = _prepare(ctx, realtime=True, inclusive=inclusive, **kwargs)
    asyncio.run(_watch(collection_config, options))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _prepare(
    ctx: click.Context,
    *,
    realtime: bool,
    inclusive: bool,
    config_path: Path | None,
    host: str | None,
    base_path: str | None,
    resource_type: str | None,
    query: str | None,
    fields: str | None,
    sort: str | None,
    offset: int | None,
    limit: int | None,
    extra_params: tuple[str, ...],
) -> tuple[CollectionConfig, dict[str, Any]]:
    """Resolve the collection config, configure logging, and build fetch options."""
    logging_config = LoggingConfig()
    values: dict[str, Any] = {}

    try:
        if config_path is not None:
            mirror_config = load_config(config_path)
            logging_config = mirror_config.logging
            values = mirror_config.collection.model_dump()

        for key, value in (("host", host), ("path", base_path), ("type", resource_type)):
            if value is not None:
                values[key] = value
        missing = [key for key in ("host", "path", "type") if not values.get(key)]
        if missing:
            raise ConfigurationError(f"Missing required option(s): {', '.join(missing)}")

        values["realtime"] = realtime
        if realtime:
            values["inclusive"] = inclusive
        collection_config = CollectionConfig(**values)
    except (ConfigurationError, ValueError) as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(2)

    configure_logging(
        level=ctx.obj.get("log_level") or logging_config.level,
        fmt=ctx.obj.get("log_format") or logging_config.format,
        log_file=logging_config.log_file,
    )

    options: dict[str, Any] = {}
    try:
        if query is not None:
            options["query"] = json.loads(query)
        if fields is not None:
            options["fields"] = json.loads(fields)
    except json.JSONDecodeError as exc:
        click.echo(f"Invalid JSON option: {exc}", err=True)
        sys.exit(2)
    if sort:
        options["sort"] = [name.strip() for name in sort.split(",") if name.strip()]
    if offset is not None or limit is not None:
        options["page"] = {"offset": offset, "limit": limit}
    for item in extra_params:
        key, sep, value = item.partition("=")
        if not sep or not key:
            click.echo(f"Invalid --param {item!r}; expected KEY=VALUE", err=True)
            sys.exit(2)
        options[key] = value

    return collection_config, options


def _snapshot(collection: Collection) -> dict[str, Any]:
    return {
        "uri": collection.uri,
        "type": collection.type,
        "meta": {
            "offset": collection.offset,
            "limit": collection.limit,
            "total": collection.total,
        },
        "errors": collection.errors,
        "data": [entity.to_dict() for entity in collection.entries],
    }


async def _fetch_once(config: CollectionConfig, options: dict[str, Any]) -> int:
    async with Collection.from_config(config) as collection:
        await collection.fetch(options)
        click.echo(json.dumps(_snapshot(collection), indent=2, default=str))
        return collection.errored


async def _watch(config: CollectionConfig, options: dict[str, Any]) -> None:
    loop = asyncio.get_event_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        click.echo("\nShutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    async with Collection.from_config(config) as collection:
        await collection.fetch(options)
        structlog.contextvars.bind_contextvars(collection=collection.uri)
        click.echo(f"Watching {collection.uri} ({len(collection)} entities)")

        seen = set(collection.index)
        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=1.0)
            except TimeoutError:
                pass
            current = set(collection.index)
            for entity_id in sorted(current - seen):
                logger.info("+ %s", entity_id)
            for entity_id in sorted(seen - current):
                logger.info("- %s", entity_id)
            seen = current


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
