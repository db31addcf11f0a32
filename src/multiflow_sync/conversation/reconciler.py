"""Keeps the currently open conversation in step with the remote service."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from multiflow_sync.conversation.models import ConversationSnapshot
from multiflow_sync.errors import ConversationNotFoundError

if TYPE_CHECKING:
    from multiflow_sync.api.client import ApiClient
    from multiflow_sync.realtime.channel import RealtimeEvent
    from multiflow_sync.utils.config import Config

logger = logging.getLogger(__name__)

ConversationFetcher = Callable[[str], Awaitable[ConversationSnapshot]]

# Push events that mean the open conversation changed server-side
REFRESH_EVENT_TYPES = frozenset({"new_message", "conversation_updated"})


class ReconcilerState(StrEnum):
    """Fetch state of the open conversation."""

    IDLE = "idle"
    FETCHING = "fetching"
    LOADED = "loaded"
    NOT_FOUND = "not_found"
    ERROR = "error"


def api_fetcher(client: ApiClient) -> ConversationFetcher:
    """Build a fetcher that loads snapshots through ``client``."""

    async def fetch(conversation_id: str) -> ConversationSnapshot:
        data = await client.get_conversation(conversation_id)
        return ConversationSnapshot.from_dict(data)

    return fetch


class ConversationStateReconciler:
    """
    Merges push notifications, polling and manual refresh into fetches of
    the single open conversation.

    Triggers are debounced through one pending timer handle and at most one
    fetch runs at a time; a trigger arriving mid-fetch yields exactly one
    follow-up fetch. Each open/close bumps a generation number and results
    from an older generation are dropped, so a slow fetch can never overwrite
    the conversation the user switched to.

    A successful fetch replaces the snapshot wholesale. "Not found" answers
    are counted separately from network errors and only after
    ``not_found_threshold`` consecutive ones is the conversation declared
    gone.
    """

    def __init__(
        self,
        fetcher: ConversationFetcher,
        *,
        on_snapshot: Callable[[ConversationSnapshot], Any] | None = None,
        on_gone: Callable[[str], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
        poll_interval: float = 30.0,
        debounce_delay: float = 0.3,
        not_found_threshold: int = 3,
        not_found_retry_delay: float = 1.0,
        max_fetch_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self._fetcher = fetcher
        self._on_snapshot = on_snapshot
        self._on_gone = on_gone
        self._on_error = on_error
        self._poll_interval = poll_interval
        self._debounce_delay = debounce_delay
        self._not_found_threshold = not_found_threshold
        self._not_found_retry_delay = not_found_retry_delay
        self._max_fetch_retries = max_fetch_retries
        self._retry_delay = retry_delay

        self._conversation_id: str | None = None
        self._generation = 0
        self._state = ReconcilerState.IDLE
        self._snapshot: ConversationSnapshot | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._inflight: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._dirty = False
        self._not_found_count = 0
        self._error_count = 0
        self._fetch_count = 0

    @classmethod
    def from_config(
        cls,
        fetcher: ConversationFetcher,
        config: Config | None = None,
        **kwargs: Any,
    ) -> ConversationStateReconciler:
        """Build a reconciler with the configured poll, debounce and not-found settings.

        ``kwargs`` (callbacks, retry delays) are passed through unchanged.
        """
        from multiflow_sync.utils.config import get_config

        config = config or get_config()
        kwargs.setdefault("poll_interval", config.poll_interval)
        kwargs.setdefault("debounce_delay", config.debounce_delay)
        kwargs.setdefault("not_found_threshold", config.not_found_threshold)
        return cls(fetcher, **kwargs)

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def state(self) -> ReconcilerState:
        return self._state

    @property
    def snapshot(self) -> ConversationSnapshot | None:
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def fetch_count(self) -> int:
        """Number of fetches started since construction."""
        return self._fetch_count

    @property
    def not_found_count(self) -> int:
        return self._not_found_count

    def is_current(self, conversation_id: str, generation: int | None = None) -> bool:
        """Whether ``conversation_id`` (at ``generation``) is still the open one."""
        if conversation_id != self._conversation_id:
            return False
        return generation is None or generation == self._generation

    async def open(self, conversation_id: str) -> None:
        """Switch to ``conversation_id``: fetch now and start polling."""
        await self.close()
        self._generation += 1
        self._conversation_id = conversation_id
        self._state = ReconcilerState.IDLE
        logger.debug("Opened conversation %s (generation %d)", conversation_id, self._generation)

        self._schedule_fetch(0)
        if self._poll_interval > 0:
            self._poll_task = asyncio.create_task(
                self._poll(self._generation), name=f"poll-{conversation_id}"
            )

    async def close(self) -> None:
        """Stop every timer for the open conversation and forget it."""
        if self._conversation_id is None:
            return

        self._generation += 1
        self._cancel_timer()
        if self._poll_task:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None

        # A fetch still in flight finishes on its own; its generation is stale.
        self._inflight = None
        self._conversation_id = None
        self._snapshot = None
        self._state = ReconcilerState.IDLE
        self._dirty = False
        self._not_found_count = 0
        self._error_count = 0

    def refresh(self) -> None:
        """Manual refresh requested by the user."""
        if self._conversation_id is None or self._state == ReconcilerState.NOT_FOUND:
            return
        self._schedule_fetch(self._debounce_delay)

    def refresh_if_open(self, conversation_id: str) -> bool:
        """Refresh when ``conversation_id`` is the open conversation."""
        if not self.is_current(conversation_id):
            return False
        self.refresh()
        return True

    def handle_event(self, event: RealtimeEvent | dict[str, Any]) -> bool:
        """Feed a push notification; returns True when it triggered a fetch."""
        if isinstance(event, dict):
            event_type = event.get("type")
            conversation_id = event.get("conversation_id") or event.get("conversationId")
        else:
            event_type = event.type
            conversation_id = event.conversation_id

        if event_type not in REFRESH_EVENT_TYPES or not conversation_id:
            return False
        if not self.is_current(str(conversation_id)):
            return False

        self.refresh()
        return True

    # ── Scheduling ───────────────────────────────────────────────────

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_fetch(self, delay: float) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._on_timer, self._generation)

    def _on_timer(self, generation: int) -> None:
        self._timer = None
        if generation != self._generation or self._conversation_id is None:
            return
        if self._inflight is not None and not self._inflight.done():
            self._dirty = True
            return
        self._inflight = asyncio.create_task(self._fetch(generation, self._conversation_id))

    async def _poll(self, generation: int) -> None:
        while generation == self._generation:
            await asyncio.sleep(self._poll_interval)
            if generation != self._generation or self._state == ReconcilerState.NOT_FOUND:
                return
            self._schedule_fetch(0)

    # ── Fetching ─────────────────────────────────────────────────────

    async def _fetch(self, generation: int, conversation_id: str) -> None:
        previous_state = self._state
        self._state = ReconcilerState.FETCHING
        self._fetch_count += 1

        try:
            snapshot = await self._fetcher(conversation_id)
        except asyncio.CancelledError:
            raise
        except ConversationNotFoundError:
            if generation == self._generation:
                await self._handle_not_found(conversation_id, previous_state)
        except Exception as e:
            if generation == self._generation:
                await self._handle_error(e, previous_state)
        else:
            if generation != self._generation:
                logger.debug("Discarding stale snapshot for %s", conversation_id)
            else:
                self._not_found_count = 0
                self._error_count = 0
                self._snapshot = snapshot
                self._state = ReconcilerState.LOADED
                await self._invoke(self._on_snapshot, snapshot)
        finally:
            if generation == self._generation:
                self._inflight = None
                if self._dirty and self._state != ReconcilerState.NOT_FOUND:
                    self._dirty = False
                    self._schedule_fetch(0)

    async def _handle_not_found(self, conversation_id: str, previous: ReconcilerState) -> None:
        self._not_found_count += 1
        if self._not_found_count < self._not_found_threshold:
            logger.debug(
                "Conversation %s not found (%d/%d), checking again",
                conversation_id,
                self._not_found_count,
                self._not_found_threshold,
            )
            self._state = previous
            self._schedule_fetch(self._not_found_retry_delay)
            return

        logger.info("Conversation %s no longer exists", conversation_id)
        self._state = ReconcilerState.NOT_FOUND
        self._dirty = False
        self._cancel_timer()
        if self._poll_task and self._poll_task is not asyncio.current_task():
            self._poll_task.cancel()
        self._poll_task = None
        await self._invoke(self._on_gone, conversation_id)

    async def _handle_error(self, error: Exception, previous: ReconcilerState) -> None:
        # Only an unbroken run of not-found answers counts toward "gone".
        self._not_found_count = 0
        self._error_count += 1
        if self._error_count < self._max_fetch_retries:
            logger.debug("Fetch failed (%d/%d): %s", self._error_count, self._max_fetch_retries, error)
            self._state = previous
            self._schedule_fetch(self._retry_delay * self._error_count)
            return

        logger.warning("Giving up refreshing conversation after %d errors: %s", self._error_count, error)
        self._error_count = 0
        self._state = ReconcilerState.ERROR
        await self._invoke(self._on_error, error)

    async def _invoke(self, callback: Callable[[Any], Any] | None, arg: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(arg)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            logger.warning("Reconciler callback raised", exc_info=True)
