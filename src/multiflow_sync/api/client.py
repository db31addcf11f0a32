"""HTTP client for the remote multiflow service."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from multiflow_sync.errors import ApiError, ConversationNotFoundError
from multiflow_sync.sync.protocol import SyncKind

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str | None] | str | None]


class ApiClient:
    """
    aiohttp-based client for the REST side of the remote service.

    Every request carries ``Authorization: Bearer <token>`` (left empty when
    no token is available, the call still goes out) and ``X-API-Key``.

    Usage:
        async with ApiClient("https://host/api", api_key="k") as client:
            ok = await client.check_health()
            echoed = await client.sync_user(payload)
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        token_provider: TokenProvider | None = None,
        user_id: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Base URL of the remote API (e.g., "https://host/api")
            api_key: Fixed API key sent as ``X-API-Key``
            token_provider: Callable returning the current bearer token (sync or async)
            user_id: Default user for user-scoped conversation endpoints
            timeout: Default request timeout in seconds
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._token_provider = token_provider
        self._user_id = user_id
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def set_user(self, user_id: str | None) -> None:
        """Set the default user for conversation endpoints."""
        self._user_id = user_id

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    async def connect(self) -> None:
        """Create the underlying HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> ApiClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _get_token(self) -> str | None:
        if self._token_provider is None:
            return None
        try:
            token = self._token_provider()
            if inspect.isawaitable(token):
                token = await token
        except Exception:
            logger.warning("Token provider failed, continuing without bearer token", exc_info=True)
            return None
        return token or None

    async def _get_headers(self) -> dict[str, str]:
        token = await self._get_token()
        if not token:
            logger.debug("No auth token available, sending API key only")
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}" if token else "",
            "X-API-Key": self._api_key,
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Make an HTTP request and return the decoded JSON body."""
        if not self._session:
            await self.connect()

        assert self._session is not None

        url = f"{self._base_url}{path}"
        headers = await self._get_headers()
        extra: dict[str, Any] = {}
        if timeout:
            extra["timeout"] = aiohttp.ClientTimeout(total=timeout)

        try:
            async with self._session.request(
                method,
                url,
                json=json_data,
                params=params,
                headers=headers,
                **extra,
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise ApiError(
                        f"Server error ({response.status}) on {method} {path}: {text}",
                        status_code=response.status,
                        body=text,
                    )
                if response.status == 204:
                    return {}
                data = await response.json(content_type=None)
                return data if isinstance(data, dict) else {"data": data}
        except TimeoutError as e:
            raise ApiError(f"Timeout on {method} {path}", timeout=True) from e
        except aiohttp.ClientError as e:
            raise ApiError(f"Connection error on {method} {path}: {e}") from e

    async def _get_status(self, path: str, *, timeout: float) -> int:
        """GET ``path`` and return the status code without raising on 4xx/5xx."""
        if not self._session:
            await self.connect()

        assert self._session is not None

        headers = await self._get_headers()
        try:
            async with self._session.get(
                f"{self._base_url}{path}",
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                return response.status
        except TimeoutError as e:
            raise ApiError(f"Timeout on GET {path}", timeout=True) from e
        except aiohttp.ClientError as e:
            raise ApiError(f"Connection error on GET {path}: {e}") from e

    # ========== Health ==========

    async def check_health(self, timeout: float = 5.0) -> bool:
        """Return True when ``GET /health`` answers 200."""
        return await self._get_status("/health", timeout=timeout) == 200

    async def check_root(self, timeout: float = 5.0) -> bool:
        """Return True when the API root answers with anything below 500."""
        return await self._get_status("", timeout=timeout) < 500

    # ========== Sync ==========

    @staticmethod
    def _check_sync_result(result: dict[str, Any], operation: str) -> dict[str, Any]:
        """Reject a 2xx reply whose body reports a failed sync."""
        if result.get("success") is False or result.get("error"):
            reason = result.get("error") or "unknown error"
            raise ApiError(f"{operation} rejected by server: {reason}", body=str(reason))
        return result

    async def sync_user(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Propagate a user profile."""
        logger.debug("Syncing user %s", payload.get("firebaseUid"))
        result = await self._request("POST", "/sync/user", json_data=payload)
        return self._check_sync_result(result, "sync_user")

    async def sync_sector(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Propagate a sector."""
        logger.debug("Syncing sector %s", payload.get("_id"))
        result = await self._request("POST", "/sync/sector", json_data=payload)
        return self._check_sync_result(result, "sync_sector")

    async def sync(self, kind: SyncKind, payload: dict[str, Any]) -> dict[str, Any]:
        """Dispatch to the sync endpoint for ``kind``."""
        if kind == SyncKind.USER:
            return await self.sync_user(payload)
        if kind == SyncKind.SECTOR:
            return await self.sync_sector(payload)
        raise ValueError(f"Unknown sync kind: {kind}")

    async def force_sync_sector(self, sector_id: str) -> dict[str, Any]:
        """Force an immediate resync of one sector."""
        result = await self._request("POST", f"/sync/sector/{sector_id}/force", json_data={})
        return self._check_sync_result(result, "force_sync_sector")

    # ========== Conversations ==========

    def _require_user(self, user_id: str | None) -> str:
        uid = user_id or self._user_id
        if not uid:
            raise ValueError("No user id set for conversation endpoints")
        return uid

    @staticmethod
    def _unwrap(result: dict[str, Any], operation: str) -> dict[str, Any]:
        """Unwrap the ``{success, data, error}`` envelope used by the API."""
        if result.get("success") is False:
            raise ApiError(f"{operation} failed: {result.get('error') or 'unknown error'}")
        data = result.get("data", result)
        return data if isinstance(data, dict) else {"data": data}

    async def get_conversation(
        self,
        conversation_id: str,
        *,
        user_id: str | None = None,
        include_messages: bool = True,
    ) -> dict[str, Any]:
        """Fetch one conversation document.

        Raises:
            ConversationNotFoundError: when the service answers 404.
        """
        uid = self._require_user(user_id)
        params = {"incluirMensagens": "true"} if include_messages else None
        try:
            result = await self._request(
                "GET", f"/users/{uid}/conversas/{conversation_id}", params=params
            )
        except ApiError as e:
            if e.status_code == 404:
                raise ConversationNotFoundError(conversation_id) from e
            raise
        return self._unwrap(result, "get_conversation")

    async def send_message(
        self,
        conversation_id: str,
        body: str,
        *,
        user_id: str | None = None,
        message_type: str = "texto",
    ) -> dict[str, Any]:
        """Post an attendant message to a conversation."""
        uid = self._require_user(user_id)
        result = await self._request(
            "POST",
            f"/users/{uid}/conversas/{conversation_id}/mensagens",
            json_data={"conteudo": body.strip(), "tipo": message_type},
        )
        return self._unwrap(result, "send_message")

    async def transfer_conversation(self, conversation_id: str, sector_id: str) -> dict[str, Any]:
        """Move a conversation to another sector."""
        result = await self._request(
            "POST",
            f"/conversas/{conversation_id}/transferir",
            json_data={"setorId": sector_id},
        )
        return self._unwrap(result, "transfer_conversation")

    async def finalize_conversation(
        self, conversation_id: str, *, user_id: str | None = None
    ) -> dict[str, Any]:
        uid = self._require_user(user_id)
        result = await self._request(
            "PUT", f"/users/{uid}/conversas/{conversation_id}/finalizar", json_data={}
        )
        return self._unwrap(result, "finalize_conversation")

    async def archive_conversation(
        self, conversation_id: str, *, user_id: str | None = None
    ) -> dict[str, Any]:
        uid = self._require_user(user_id)
        result = await self._request(
            "PUT", f"/users/{uid}/conversas/{conversation_id}/arquivo", json_data={}
        )
        return self._unwrap(result, "archive_conversation")

    async def unarchive_conversation(
        self, conversation_id: str, *, user_id: str | None = None
    ) -> dict[str, Any]:
        uid = self._require_user(user_id)
        result = await self._request(
            "PUT", f"/users/{uid}/conversas/{conversation_id}/desarquivar", json_data={}
        )
        return self._unwrap(result, "unarchive_conversation")
