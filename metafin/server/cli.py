"""Command line interface for :mod:`metafin.server`."""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass

import pydantic

from ..common.errors import ValidationError
from ..config import Settings
from . import MetafinServer, build_server, server, settings


metafin_server: MetafinServer = server

TRANSPORTS = ("stdio", "sse", "streamable-http")
LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "notset")

# argparse destination -> settings environment alias
SETTINGS_OPTIONS: dict[str, str] = {
    "storage_backend": "STORAGE_BACKEND",
    "qdrant_url": "QDRANT_URL",
    "qdrant_collection_prefix": "QDRANT_COLLECTION_PREFIX",
    "jellyfin_url": "JELLYFIN_URL",
    "jellyfin_api_key": "JELLYFIN_API_KEY",
    "max_concurrent_jobs": "MAX_CONCURRENT_JOBS",
    "scan_batch_size": "SCAN_BATCH_SIZE",
    "bulk_batch_size": "BULK_BATCH_SIZE",
    "preview_token_ttl": "PREVIEW_TOKEN_TTL_SECONDS",
}


@dataclass
class RunConfig:
    """Runtime configuration for FastMCP transport servers."""

    host: str | None = None
    port: int | None = None
    path: str | None = None

    def to_kwargs(self) -> dict[str, object]:
        """Return keyword arguments compatible with ``FastMCP.run``."""

        kwargs: dict[str, object] = {}
        if self.host is not None:
            kwargs["host"] = self.host
        if self.port is not None:
            kwargs["port"] = self.port
        if self.path:
            kwargs["path"] = self.path
        return kwargs


def _resolve_log_level(cli_value: str | None) -> str:
    """Return the desired log level name based on CLI or environment input."""

    if cli_value:
        return cli_value
    env_value = os.getenv("LOG_LEVEL")
    if env_value:
        return env_value.lower()
    return settings.log_level.lower()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the metafin MCP server")
    parser.add_argument(
        "--log-level",
        type=str.lower,
        choices=LOG_LEVELS,
        help="Logging verbosity (env: LOG_LEVEL)",
    )

    transport = parser.add_argument_group("transport")
    transport.add_argument("--bind", help="Host address to bind to")
    transport.add_argument("--port", type=int, help="Port to listen on")
    transport.add_argument(
        "--transport", choices=TRANSPORTS, default="stdio", help="Transport protocol to use"
    )
    transport.add_argument("--mount", help="Mount path for HTTP transports")

    runtime = parser.add_argument_group(
        "runtime", "Override the matching environment settings for this run"
    )
    runtime.add_argument(
        "--storage-backend",
        choices=["memory", "qdrant"],
        help="Where items and jobs are stored (env: STORAGE_BACKEND)",
    )
    runtime.add_argument("--qdrant-url", help="Qdrant URL or ':memory:' (env: QDRANT_URL)")
    runtime.add_argument(
        "--qdrant-collection-prefix",
        help="Prefix for metafin's Qdrant collections (env: QDRANT_COLLECTION_PREFIX)",
    )
    runtime.add_argument("--jellyfin-url", help="Jellyfin server URL (env: JELLYFIN_URL)")
    runtime.add_argument("--jellyfin-api-key", help="Jellyfin API key (env: JELLYFIN_API_KEY)")
    runtime.add_argument(
        "--max-concurrent-jobs",
        type=int,
        help="Bulk jobs allowed to run at once (env: MAX_CONCURRENT_JOBS)",
    )
    runtime.add_argument(
        "--scan-batch-size",
        type=int,
        help="Items analysed per scan batch (env: SCAN_BATCH_SIZE)",
    )
    runtime.add_argument(
        "--bulk-batch-size",
        type=int,
        help="Items applied per bulk-operation batch (env: BULK_BATCH_SIZE)",
    )
    runtime.add_argument(
        "--preview-token-ttl",
        type=int,
        metavar="SECONDS",
        help="Lifetime of preview tokens (env: PREVIEW_TOKEN_TTL_SECONDS)",
    )
    return parser


def _run_config(parser: argparse.ArgumentParser, args: argparse.Namespace) -> tuple[str, RunConfig]:
    """Merge transport options with ``MCP_*`` environment variables.

    Environment variables win over command line flags.
    """

    transport = os.getenv("MCP_TRANSPORT") or args.transport
    if transport not in TRANSPORTS:
        parser.error(
            "transport must be one of stdio, sse, or streamable-http (via --transport or MCP_TRANSPORT)"
        )

    env_host = os.getenv("MCP_HOST")
    if env_host is None:
        env_host = os.getenv("MCP_BIND")
    host = env_host or args.bind

    env_port = os.getenv("MCP_PORT")
    port: int | None = args.port
    if env_port is not None:
        try:
            port = int(env_port)
        except ValueError:
            parser.error("MCP_PORT must be an integer")

    mount = os.getenv("MCP_MOUNT") or args.mount

    if transport == "stdio":
        if mount:
            parser.error("--mount or MCP_MOUNT is not allowed when transport is stdio")
        return transport, RunConfig()
    if host is None or port is None:
        parser.error("--bind/--port or MCP_HOST/MCP_PORT are required when transport is not stdio")
    return transport, RunConfig(host=host, port=port, path=mount or None)


def _settings_overrides(args: argparse.Namespace) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for dest, alias in SETTINGS_OPTIONS.items():
        value = getattr(args, dest)
        if value is not None:
            overrides[alias] = value
    return overrides


def _server_for(parser: argparse.ArgumentParser, args: argparse.Namespace) -> MetafinServer:
    """Return the module server, or a fresh one when runtime options are given."""

    overrides = _settings_overrides(args)
    if not overrides:
        return metafin_server
    try:
        runtime_settings = Settings(**overrides)
    except pydantic.ValidationError as exc:
        parser.error(ValidationError.from_pydantic(exc).message)
    logging.getLogger("metafin.server").info(
        "Building server with overrides for %s.", ", ".join(sorted(overrides))
    )
    return build_server(runtime_settings)


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for running the metafin MCP server."""

    parser = _build_parser()
    args = parser.parse_args(argv)
    transport, run_config = _run_config(parser, args)

    log_level_name = _resolve_log_level(args.log_level)
    logging.basicConfig(level=getattr(logging, log_level_name.upper(), logging.INFO))

    _server_for(parser, args).run(transport=transport, **run_config.to_kwargs())


__all__ = [
    "RunConfig",
    "SETTINGS_OPTIONS",
    "main",
    "server",
    "MetafinServer",
    "metafin_server",
    "settings",
]
