"""Command-line interface for library sync and misclassification scans."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from typing import Any

import click
from qdrant_client.async_qdrant_client import AsyncQdrantClient

from .common.types import ITEM_TYPES
from .curation.scan import DEFAULT_SCAN_BATCH_SIZE, LibraryScanOrchestrator
from .jellyfin import DEFAULT_PAGE_SIZE, DEFAULT_TIMEOUT, JellyfinClient
from .storage.qdrant import DEFAULT_COLLECTION_PREFIX, QdrantItemStore
from .sync import LibrarySync

logger = logging.getLogger("metafin.cli")


@dataclasses.dataclass
class StoreOptions:
    qdrant_url: str | None
    qdrant_api_key: str | None
    qdrant_host: str | None
    qdrant_port: int
    qdrant_https: bool
    collection_prefix: str

    def build_client(self) -> AsyncQdrantClient:
        location = self.qdrant_url
        if location is None and self.qdrant_host is None:
            location = ":memory:"
        return AsyncQdrantClient(
            location=location,
            api_key=self.qdrant_api_key,
            host=self.qdrant_host,
            port=self.qdrant_port,
            https=self.qdrant_https,
        )


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


async def _scan(
    store: QdrantItemStore,
    *,
    library_id: str | None,
    item_types: tuple[str, ...],
    batch_size: int,
) -> dict[str, Any]:
    orchestrator = LibraryScanOrchestrator(store, batch_size=batch_size)
    result = await orchestrator.scan(library_id=library_id, item_types=list(item_types) or None)
    return result.model_dump(mode="json")


@click.group()
@click.option(
    "--qdrant-url",
    envvar="QDRANT_URL",
    show_envvar=True,
    required=False,
    help="Qdrant URL or path (in-memory when unset)",
)
@click.option(
    "--qdrant-api-key",
    envvar="QDRANT_API_KEY",
    show_envvar=True,
    required=False,
    help="Qdrant API key",
)
@click.option(
    "--qdrant-host",
    envvar="QDRANT_HOST",
    show_envvar=True,
    required=False,
    help="Qdrant host",
)
@click.option(
    "--qdrant-port",
    envvar="QDRANT_PORT",
    show_envvar=True,
    type=int,
    default=6333,
    show_default=True,
    help="Qdrant HTTP port",
)
@click.option(
    "--qdrant-https/--no-qdrant-https",
    envvar="QDRANT_HTTPS",
    show_envvar=True,
    default=False,
    show_default=True,
    help="Use HTTPS when connecting to Qdrant",
)
@click.option(
    "--collection-prefix",
    envvar="QDRANT_COLLECTION_PREFIX",
    show_envvar=True,
    default=DEFAULT_COLLECTION_PREFIX,
    show_default=True,
    help="Prefix for metafin's Qdrant collections",
)
@click.option(
    "--log-level",
    envvar="LOG_LEVEL",
    show_envvar=True,
    type=click.Choice(["critical", "error", "warning", "info", "debug", "notset"], case_sensitive=False),
    default="info",
    show_default=True,
    help="Logging verbosity",
)
@click.pass_context
def main(
    ctx: click.Context,
    qdrant_url: str | None,
    qdrant_api_key: str | None,
    qdrant_host: str | None,
    qdrant_port: int,
    qdrant_https: bool,
    collection_prefix: str,
    log_level: str,
) -> None:
    """Curate Jellyfin metadata stored in Qdrant."""

    logging.basicConfig(level=getattr(logging, log_level.upper(), logging.INFO))
    ctx.obj = StoreOptions(
        qdrant_url=qdrant_url,
        qdrant_api_key=qdrant_api_key,
        qdrant_host=qdrant_host,
        qdrant_port=qdrant_port,
        qdrant_https=qdrant_https,
        collection_prefix=collection_prefix,
    )


@main.command()
@click.option(
    "--jellyfin-url",
    envvar="JELLYFIN_URL",
    show_envvar=True,
    required=True,
    help="Jellyfin base URL",
)
@click.option(
    "--jellyfin-api-key",
    envvar="JELLYFIN_API_KEY",
    show_envvar=True,
    required=True,
    help="Jellyfin API key",
)
@click.option(
    "--jellyfin-timeout",
    envvar="JELLYFIN_TIMEOUT",
    show_envvar=True,
    type=float,
    default=DEFAULT_TIMEOUT,
    show_default=True,
    help="Timeout in seconds for Jellyfin requests",
)
@click.option(
    "--page-size",
    envvar="JELLYFIN_PAGE_SIZE",
    show_envvar=True,
    type=click.IntRange(min=1),
    default=DEFAULT_PAGE_SIZE,
    show_default=True,
    help="Items fetched per Jellyfin request",
)
@click.option(
    "--library",
    "libraries",
    multiple=True,
    help="Jellyfin library id to sync (repeatable; all libraries when omitted)",
)
@click.option(
    "--scan/--no-scan",
    default=False,
    show_default=True,
    help="Run a misclassification scan after syncing",
)
@click.option(
    "--scan-batch-size",
    envvar="SCAN_BATCH_SIZE",
    show_envvar=True,
    type=click.IntRange(min=1),
    default=DEFAULT_SCAN_BATCH_SIZE,
    show_default=True,
    help="Items analysed per scan batch",
)
@click.pass_obj
def sync(
    options: StoreOptions,
    jellyfin_url: str,
    jellyfin_api_key: str,
    jellyfin_timeout: float,
    page_size: int,
    libraries: tuple[str, ...],
    scan: bool,
    scan_batch_size: int,
) -> None:
    """Pull Jellyfin libraries and items into the store."""

    async def _run() -> dict[str, Any]:
        client = options.build_client()
        jellyfin = JellyfinClient(
            jellyfin_url, jellyfin_api_key, timeout=jellyfin_timeout, page_size=page_size
        )
        try:
            store = QdrantItemStore(client, collection_prefix=options.collection_prefix)
            result = await LibrarySync(jellyfin, store, page_size=page_size).run(
                list(libraries) or None
            )
            output: dict[str, Any] = {"sync": dataclasses.asdict(result)}
            if scan:
                output["scan"] = await _scan(
                    store, library_id=None, item_types=(), batch_size=scan_batch_size
                )
            return output
        finally:
            await jellyfin.aclose()
            await client.close()

    _echo_json(asyncio.run(_run()))


@main.command("scan")
@click.option("--library", "library_id", help="Local library id to scan")
@click.option(
    "--type",
    "item_types",
    multiple=True,
    type=click.Choice(ITEM_TYPES),
    help="Item type to scan (repeatable)",
)
@click.option(
    "--batch-size",
    envvar="SCAN_BATCH_SIZE",
    show_envvar=True,
    type=click.IntRange(min=1),
    default=DEFAULT_SCAN_BATCH_SIZE,
    show_default=True,
    help="Items analysed per batch",
)
@click.pass_obj
def scan_command(
    options: StoreOptions,
    library_id: str | None,
    item_types: tuple[str, ...],
    batch_size: int,
) -> None:
    """Flag misclassified items and print scan statistics as JSON."""

    async def _run() -> dict[str, Any]:
        client = options.build_client()
        try:
            store = QdrantItemStore(client, collection_prefix=options.collection_prefix)
            return await _scan(
                store, library_id=library_id, item_types=item_types, batch_size=batch_size
            )
        finally:
            await client.close()

    _echo_json(asyncio.run(_run()))


if __name__ == "__main__":
    main()
