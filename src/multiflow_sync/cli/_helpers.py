"""Shared CLI helpers for configuration, clients, and output formatting."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

import typer

from multiflow_sync.api.client import ApiClient
from multiflow_sync.utils.config import Config, get_config

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Clients opened during a command, closed before the loop shuts down.
_active_clients: list[ApiClient] = []


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async CLI command, closing any API sessions it opened."""

    async def _with_cleanup() -> T:
        try:
            return await coro
        finally:
            for client in _active_clients:
                try:
                    await client.close()
                except Exception:
                    logger.debug("Failed to close API client during cleanup", exc_info=True)
            _active_clients.clear()
            await asyncio.sleep(0)

    return asyncio.run(_with_cleanup())


async def get_client(config: Config | None = None, *, user_id: str | None = None) -> ApiClient:
    """Open an API client from configuration."""
    config = config or get_config()
    client = ApiClient(
        config.api_url,
        api_key=config.api_key,
        user_id=user_id,
        timeout=config.request_timeout,
    )
    await client.connect()
    _active_clients.append(client)
    return client


def configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result in appropriate format."""
    if as_json:
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    if data.get("error"):
        typer.secho(f"Error: {data['error']}", fg=typer.colors.RED)
    elif "message" in data:
        typer.secho(data["message"], fg=typer.colors.GREEN)

    for key, value in data.items():
        if key in ("error", "message") or value is None:
            continue
        typer.secho(f"  {key}: {value}", fg=typer.colors.BRIGHT_BLACK)
