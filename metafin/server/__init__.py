"""FastMCP server exposing metafin curation tools and REST routes."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, TYPE_CHECKING

from fastmcp.server import FastMCP
from qdrant_client.async_qdrant_client import AsyncQdrantClient

from ..config import Settings
from ..curation.misclassification import MisclassificationService
from ..curation.scan import LibraryScanOrchestrator
from ..jellyfin import JellyfinClient
from ..operations.jobs import JobRunner
from ..operations.runner import BulkOperationRunner
from ..operations.service import BulkOperationService
from ..operations.tokens import PreviewTokenStore
from ..providers import ProviderRegistry, TVMazeProvider
from ..storage import ItemStore, JobStore
from ..storage.memory import InMemoryItemStore, InMemoryJobStore, utcnow
from ..storage.qdrant import QdrantItemStore, QdrantJobStore
from ..sync import LibrarySync
from .rest import register_rest_routes
from .tools.curation import register_curation_tools
from .tools.operations import register_operation_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "metafin"


class MetafinServer(FastMCP):
    """FastMCP server wired to the metafin stores and services."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        item_store: ItemStore | None = None,
        job_store: JobStore | None = None,
        qdrant_client: AsyncQdrantClient | None = None,
        jellyfin: JellyfinClient | None = None,
        providers: ProviderRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings or Settings()
        self._qdrant_client = qdrant_client
        if self.settings.storage_backend == "qdrant" and (item_store is None or job_store is None):
            client = self.qdrant_client
            prefix = self.settings.qdrant_collection_prefix
            item_store = item_store or QdrantItemStore(client, collection_prefix=prefix)
            job_store = job_store or QdrantJobStore(
                client, collection_prefix=prefix, clock=clock
            )
        self.item_store: ItemStore = item_store or InMemoryItemStore()
        self.job_store: JobStore = job_store or InMemoryJobStore(clock=clock)
        self.jellyfin = jellyfin if jellyfin is not None else self._build_jellyfin_client()
        self.provider_registry = providers if providers is not None else self._build_providers()

        class _ServerLifespan:
            def __init__(self, metafin_server: "MetafinServer") -> None:
                self._metafin_server = metafin_server

            async def __aenter__(self) -> None:
                return None

            async def __aexit__(self, exc_type, exc, tb) -> None:
                await self._metafin_server.close()

        def _lifespan(app: FastMCP) -> _ServerLifespan:
            return _ServerLifespan(self)

        super().__init__(name=SERVER_NAME, lifespan=_lifespan)

        self.token_store = PreviewTokenStore(
            ttl=timedelta(seconds=self.settings.preview_token_ttl_seconds), clock=clock
        )
        self.job_runner = JobRunner(max_concurrent_jobs=self.settings.max_concurrent_jobs)
        self.bulk_runner = BulkOperationRunner(
            item_store=self.item_store,
            job_store=self.job_store,
            sink=self.jellyfin,
            batch_size=self.settings.bulk_batch_size,
            batch_delay=self.settings.bulk_batch_delay,
            clock=clock,
        )
        self.operation_service = BulkOperationService(
            item_store=self.item_store,
            job_store=self.job_store,
            token_store=self.token_store,
            runner=self.bulk_runner,
            job_runner=self.job_runner,
            clock=clock,
        )
        self.misclassification_service = MisclassificationService(self.item_store)
        self.scanner = LibraryScanOrchestrator(
            self.item_store, batch_size=self.settings.scan_batch_size
        )
        self.library_sync = (
            LibrarySync(
                self.jellyfin,
                self.item_store,
                page_size=self.settings.jellyfin_page_size,
                clock=clock,
            )
            if self.jellyfin is not None
            else None
        )

    @property
    def settings(self) -> Settings:  # type: ignore[override]
        return self._settings

    @property
    def qdrant_client(self) -> AsyncQdrantClient:
        if self._qdrant_client is None:
            self._qdrant_client = build_qdrant_client(self.settings)
        return self._qdrant_client

    def _build_jellyfin_client(self) -> JellyfinClient | None:
        if not self.settings.jellyfin_url or not self.settings.jellyfin_api_key:
            logger.info("Jellyfin is not configured; changes stay local.")
            return None
        return JellyfinClient(
            str(self.settings.jellyfin_url),
            self.settings.jellyfin_api_key,
            timeout=self.settings.jellyfin_timeout,
            page_size=self.settings.jellyfin_page_size,
        )

    def _build_providers(self) -> ProviderRegistry:
        limits = self.settings.provider_rate_limits
        return ProviderRegistry(
            [TVMazeProvider(rate_limit=limits.get("tvmaze", 2))],
        )

    async def close(self) -> None:
        await self.job_runner.shutdown()
        if self.library_sync is not None:
            self.library_sync.cancel()
        if self.jellyfin is not None:
            await self.jellyfin.aclose()
        await self.provider_registry.aclose()
        if self._qdrant_client is not None:
            await self._qdrant_client.close()


def build_qdrant_client(settings: Settings) -> AsyncQdrantClient:
    """Construct a Qdrant client from *settings*; in-memory when unset."""

    location = settings.qdrant_url
    host = settings.qdrant_host
    if location is None and host is None:
        location = ":memory:"
    return AsyncQdrantClient(
        location=location,
        api_key=settings.qdrant_api_key,
        host=host,
        port=settings.qdrant_port,
        https=settings.qdrant_https,
    )


def build_server(settings: Settings | None = None, **kwargs: Any) -> MetafinServer:
    """Create a server and register every tool and REST route on it."""

    metafin_server = MetafinServer(settings=settings, **kwargs)
    register_operation_tools(metafin_server)
    register_curation_tools(metafin_server)
    register_rest_routes(metafin_server)
    return metafin_server


settings = Settings()
server = build_server(settings)


def main(argv: list[str] | None = None) -> None:
    """Entry point retained for ``python -m metafin.server``."""

    from .cli import main as cli_main

    cli_main(argv)


if __name__ == "__main__":
    main()


if TYPE_CHECKING:
    from .cli import RunConfig as RunConfig


def __getattr__(name: str) -> Any:
    if name == "RunConfig":
        from .cli import RunConfig as _RunConfig

        return _RunConfig
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "MetafinServer",
    "RunConfig",
    "build_qdrant_client",
    "build_server",
    "main",
    "server",
    "settings",
]
