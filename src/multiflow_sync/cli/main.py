"""multiflow-sync CLI main entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Annotated, Any

import typer

from multiflow_sync.cli._helpers import configure_logging, get_client, output_result, run_async
from multiflow_sync.conversation.actions import ConversationActions
from multiflow_sync.conversation.models import ConversationSnapshot
from multiflow_sync.conversation.reconciler import ConversationStateReconciler, api_fetcher
from multiflow_sync.errors import MultiflowError, PayloadValidationError
from multiflow_sync.realtime.channel import RealtimeChannel, conversation_room
from multiflow_sync.sync.connection import ConnectionMonitor
from multiflow_sync.sync.executor import RetryableOperationExecutor
from multiflow_sync.sync.payloads import build_payload
from multiflow_sync.sync.protocol import SyncKind
from multiflow_sync.sync.queue import SyncQueue
from multiflow_sync.sync.status import SyncStatusTracker
from multiflow_sync.utils.config import get_config

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="mfsync",
    help="multiflow-sync - sync, health and conversation tools for the Multiflow API",
    no_args_is_help=True,
)


@app.callback()
def _root(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log debug output to stderr")
    ] = False,
) -> None:
    configure_logging(verbose)


@app.command()
def health(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Probe the API and report whether it is reachable.

    Exits with status 1 when the API is offline.

    Examples:
        mfsync health
        mfsync health --json
    """

    async def _health() -> dict[str, Any]:
        config = get_config()
        client = await get_client(config)
        monitor = ConnectionMonitor.from_config(client, config, root_fallback=True)
        state = await monitor.probe()
        return {
            "api_url": config.api_url,
            "online": state.is_online,
            "last_checked": state.last_checked_at,
            "error": state.last_error,
        }

    result = run_async(_health())
    if result["online"]:
        result["message"] = "API is online"
    output_result(result, json_output)
    if not result["online"]:
        raise typer.Exit(1)


@app.command("force-sector")
def force_sector(
    sector_id: Annotated[str, typer.Argument(help="Sector id to resync")],
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Ask the server to resync one sector immediately.

    Examples:
        mfsync force-sector 64f1c0ffee
    """

    async def _force() -> dict[str, Any]:
        config = get_config()
        client = await get_client(config)
        monitor = ConnectionMonitor.from_config(client, config)
        tracker = SyncStatusTracker(client, monitor)
        result = await tracker.force_sync_sector(sector_id)
        return {
            "status": str(tracker.status),
            "result": result,
            "error": tracker.error,
        }

    data = run_async(_force())
    if data["error"] is None:
        data["message"] = f"Sector {sector_id} resynced"
    output_result(data, json_output)
    if data["error"] is not None:
        raise typer.Exit(1)


async def _queue_one(kind: SyncKind, record: dict[str, Any]) -> dict[str, Any]:
    config = get_config()
    client = await get_client(config)
    monitor = ConnectionMonitor.from_config(client, config)
    queue = SyncQueue.from_config(client, monitor, config)
    await queue.start()
    try:
        future = queue.enqueue(kind, record)
        try:
            result = await future
        except MultiflowError as e:
            return {"error": str(e)}
        return {"message": f"{kind.value} synced", "result": result}
    finally:
        await queue.stop()


def _run_sync(kind: SyncKind, record: dict[str, Any], json_output: bool) -> None:
    try:
        build_payload(kind, record)
    except PayloadValidationError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(2) from e

    data = run_async(_queue_one(kind, record))
    output_result(data, json_output)
    if data.get("error"):
        raise typer.Exit(1)


@app.command("sync-user")
def sync_user(
    uid: Annotated[str, typer.Argument(help="Firebase uid of the user")],
    email: Annotated[str, typer.Option("--email", "-e", help="User email")],
    name: Annotated[str, typer.Option("--name", "-n", help="Display name")] = "",
    role: Annotated[str, typer.Option("--role", "-r", help="Role (agent is sent as attendant)")] = "",
    sector: Annotated[str, typer.Option("--sector", "-s", help="Sector id")] = "",
    sector_name: Annotated[str, typer.Option("--sector-name", help="Sector display name")] = "",
    inactive: Annotated[bool, typer.Option("--inactive", help="Mark the user inactive")] = False,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Push one user profile through the background queue, with retries.

    Examples:
        mfsync sync-user abc123 --email ana@example.com --role agent --sector s1
    """
    record = {
        "firebaseUid": uid,
        "email": email,
        "displayName": name,
        "role": role,
        "sector": sector,
        "sectorName": sector_name,
        "isActive": not inactive,
    }
    _run_sync(SyncKind.USER, record, json_output)


@app.command("sync-sector")
def sync_sector(
    sector_id: Annotated[str, typer.Argument(help="Sector id")],
    name: Annotated[str, typer.Option("--name", "-n", help="Sector name")],
    description: Annotated[str, typer.Option("--description", "-d", help="Description")] = "",
    manager: Annotated[str, typer.Option("--manager", "-m", help="Responsible user")] = "",
    inactive: Annotated[bool, typer.Option("--inactive", help="Mark the sector inactive")] = False,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Push one sector through the background queue, with retries.

    Examples:
        mfsync sync-sector s1 --name Suporte
    """
    record = {
        "_id": sector_id,
        "nome": name,
        "descricao": description,
        "responsavel": manager,
        "ativo": not inactive,
    }
    _run_sync(SyncKind.SECTOR, record, json_output)


# ========== Conversations ==========


def _snapshot_summary(snapshot: ConversationSnapshot) -> dict[str, Any]:
    last = snapshot.messages[-1] if snapshot.messages else None
    return {
        "conversation_id": snapshot.id,
        "status": str(snapshot.status),
        "sector_id": snapshot.sector_id,
        "archived": snapshot.archived,
        "messages": len(snapshot.messages),
        "last_message": f"[{last.sender}] {last.body}" if last else None,
    }


@app.command()
def conversation(
    conversation_id: Annotated[str, typer.Argument(help="Conversation id")],
    user: Annotated[str, typer.Option("--user", "-u", help="Attendant uid the conversation belongs to")],
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Load one conversation, retrying "not found" and network errors like an open chat.

    Examples:
        mfsync conversation 65a0c0ffee --user abc123
    """

    async def _load() -> dict[str, Any]:
        config = get_config()
        client = await get_client(config, user_id=user)
        settled: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()

        def settle(data: dict[str, Any]) -> None:
            if not settled.done():
                settled.set_result(data)

        reconciler = ConversationStateReconciler.from_config(
            api_fetcher(client),
            config,
            on_snapshot=lambda snapshot: settle(_snapshot_summary(snapshot)),
            on_gone=lambda cid: settle({"error": f"Conversation {cid} not found"}),
            on_error=lambda e: settle({"error": str(e)}),
            poll_interval=0,
        )
        await reconciler.open(conversation_id)
        try:
            return await settled
        finally:
            await reconciler.close()

    data = run_async(_load())
    output_result(data, json_output)
    if data.get("error"):
        raise typer.Exit(1)


@app.command()
def send(
    conversation_id: Annotated[str, typer.Argument(help="Conversation id")],
    text: Annotated[str, typer.Argument(help="Message text")],
    user: Annotated[str, typer.Option("--user", "-u", help="Attendant uid sending the message")],
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Send a message as an attendant, with a few quick retries.

    Examples:
        mfsync send 65a0c0ffee "Olá, em que posso ajudar?" --user abc123
    """

    async def _send() -> dict[str, Any]:
        config = get_config()
        client = await get_client(config, user_id=user)
        actions = ConversationActions(client, RetryableOperationExecutor.from_config(config))
        outcome = await actions.send_message(conversation_id, text)
        if outcome.ok:
            return {"message": "Message sent", "message_id": outcome.message.id}
        return {
            "error": str(outcome.error),
            "attempts": outcome.error.attempts if outcome.error else None,
        }

    try:
        data = run_async(_send())
    except PayloadValidationError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(2) from e

    output_result(data, json_output)
    if data.get("error"):
        raise typer.Exit(1)


@app.command()
def watch(
    conversation_id: Annotated[str, typer.Argument(help="Conversation id")],
    user: Annotated[str, typer.Option("--user", "-u", help="Attendant uid the conversation belongs to")],
    seconds: Annotated[float, typer.Option("--seconds", "-s", help="How long to follow the conversation")] = 60.0,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Follow a conversation, printing it again whenever it changes.

    Push events from the realtime channel trigger refreshes; polling keeps
    going when the channel cannot connect.

    Examples:
        mfsync watch 65a0c0ffee --user abc123 --seconds 120
    """

    async def _watch() -> dict[str, Any]:
        config = get_config()
        client = await get_client(config, user_id=user)
        gone = asyncio.Event()
        updates = 0

        def show(snapshot: ConversationSnapshot) -> None:
            nonlocal updates
            updates += 1
            output_result(_snapshot_summary(snapshot), json_output)

        reconciler = ConversationStateReconciler.from_config(
            api_fetcher(client),
            config,
            on_snapshot=show,
            on_gone=lambda _: gone.set(),
        )
        channel = RealtimeChannel.from_config(config, user_id=user)
        channel.on("*", reconciler.handle_event)
        await channel.join(conversation_room(conversation_id))

        pump: asyncio.Task[None] | None = None
        try:
            try:
                await channel.connect()
                pump = asyncio.create_task(channel.run_forever(), name="realtime-pump")
            except ConnectionError as e:
                logger.warning("Realtime channel unavailable, polling only: %s", e)

            await reconciler.open(conversation_id)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(gone.wait(), timeout=seconds)
        finally:
            await reconciler.close()
            if pump is not None:
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump
            await channel.disconnect()

        if gone.is_set():
            return {"error": f"Conversation {conversation_id} not found", "updates": updates}
        return {"message": f"Stopped watching {conversation_id}", "updates": updates}

    data = run_async(_watch())
    output_result(data, json_output)
    if data.get("error"):
        raise typer.Exit(1)


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
