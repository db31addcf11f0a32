"""Tests for api/client.py: aiohttp-based REST client."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from multiflow_sync.api.client import ApiClient
from multiflow_sync.errors import ApiError, ConversationNotFoundError
from multiflow_sync.sync.protocol import SyncKind


def _response(status: int = 200, body: Any = None, text: str = "") -> AsyncMock:
    response = AsyncMock()
    response.status = status
    response.json = AsyncMock(return_value=body if body is not None else {})
    response.text = AsyncMock(return_value=text)
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=False)
    return response


def _client_with(response: AsyncMock, **kwargs: Any) -> tuple[ApiClient, AsyncMock]:
    client = ApiClient("http://localhost:3000/api", api_key="k-1", **kwargs)
    session = AsyncMock()
    session.closed = False
    session.request = MagicMock(return_value=response)
    session.get = MagicMock(return_value=response)
    client._session = session
    return client, session


# ─────────── Init / lifecycle ───────────


class TestApiClientInit:
    def test_trailing_slash_stripped(self) -> None:
        client = ApiClient("http://localhost:3000/api/")
        assert client.base_url == "http://localhost:3000/api"
        assert client.is_connected is False

    def test_set_user(self) -> None:
        client = ApiClient("http://x", user_id="u1")
        client.set_user("u2")
        assert client.user_id == "u2"

    @pytest.mark.asyncio
    async def test_context_manager(self) -> None:
        with patch("aiohttp.ClientSession") as mock_cls:
            mock_session = AsyncMock()
            mock_cls.return_value = mock_session

            async with ApiClient("http://x") as client:
                assert client._session is mock_session

            mock_session.close.assert_awaited_once()
            assert client._session is None


# ─────────── Headers ───────────


class TestApiClientHeaders:
    @pytest.mark.asyncio
    async def test_without_token(self) -> None:
        client = ApiClient("http://x", api_key="k-1")
        headers = await client._get_headers()
        assert headers["Authorization"] == ""
        assert headers["X-API-Key"] == "k-1"
        assert headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_sync_token_provider(self) -> None:
        client = ApiClient("http://x", token_provider=lambda: "tok")
        headers = await client._get_headers()
        assert headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_async_token_provider(self) -> None:
        client = ApiClient("http://x", token_provider=AsyncMock(return_value="tok-2"))
        headers = await client._get_headers()
        assert headers["Authorization"] == "Bearer tok-2"

    @pytest.mark.asyncio
    async def test_failing_token_provider_still_sends(self) -> None:
        def broken() -> str:
            raise RuntimeError("auth sdk not ready")

        client = ApiClient("http://x", token_provider=broken)
        headers = await client._get_headers()
        assert headers["Authorization"] == ""


# ─────────── _request ───────────


class TestApiClientRequest:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        client, session = _client_with(_response(200, {"ok": True}))

        result = await client._request("GET", "/test")

        assert result == {"ok": True}
        args = session.request.call_args
        assert args.args == ("GET", "http://localhost:3000/api/test")
        assert "timeout" not in args.kwargs

    @pytest.mark.asyncio
    async def test_per_call_timeout(self) -> None:
        client, session = _client_with(_response(200, {}))

        await client._request("GET", "/test", timeout=2.0)

        assert session.request.call_args.kwargs["timeout"].total == 2.0

    @pytest.mark.asyncio
    async def test_list_body_wrapped(self) -> None:
        client, _ = _client_with(_response(200, [1, 2]))
        assert await client._request("GET", "/test") == {"data": [1, 2]}

    @pytest.mark.asyncio
    async def test_no_content(self) -> None:
        client, _ = _client_with(_response(204))
        assert await client._request("DELETE", "/test") == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 404, 500])
    async def test_error_status(self, status: int) -> None:
        client, _ = _client_with(_response(status, text="nope"))

        with pytest.raises(ApiError) as exc_info:
            await client._request("POST", "/sync/user", json_data={})

        assert exc_info.value.status_code == status
        assert exc_info.value.body == "nope"

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        client, session = _client_with(_response())
        session.request = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))

        with pytest.raises(ApiError) as exc_info:
            await client._request("GET", "/test")

        assert exc_info.value.status_code is None
        assert exc_info.value.timeout is False

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        client, session = _client_with(_response())
        session.request = MagicMock(side_effect=TimeoutError())

        with pytest.raises(ApiError) as exc_info:
            await client._request("GET", "/test")

        assert exc_info.value.timeout is True


# ─────────── Health / sync ───────────


class TestApiClientHealthAndSync:
    @pytest.mark.asyncio
    async def test_health_ok(self) -> None:
        client, session = _client_with(_response(200))
        assert await client.check_health(timeout=1.0) is True
        assert session.get.call_args.args[0] == "http://localhost:3000/api/health"

    @pytest.mark.asyncio
    async def test_health_not_ok(self) -> None:
        client, _ = _client_with(_response(503))
        assert await client.check_health() is False

    @pytest.mark.asyncio
    async def test_root_fallback_accepts_4xx(self) -> None:
        client, session = _client_with(_response(404))
        assert await client.check_root() is True
        assert session.get.call_args.args[0] == "http://localhost:3000/api"

    @pytest.mark.asyncio
    async def test_sync_dispatch(self) -> None:
        client, session = _client_with(_response(200, {"success": True}))

        await client.sync(SyncKind.USER, {"firebaseUid": "u1"})
        assert session.request.call_args.args[1].endswith("/sync/user")

        await client.sync(SyncKind.SECTOR, {"_id": "s1"})
        assert session.request.call_args.args[1].endswith("/sync/sector")
        assert session.request.call_args.kwargs["json"] == {"_id": "s1"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body", [{"success": False, "error": "db write failed"}, {"error": "db write failed"}]
    )
    async def test_sync_rejected_in_body(self, body: dict[str, Any]) -> None:
        client, _ = _client_with(_response(200, body))

        with pytest.raises(ApiError, match="db write failed") as exc_info:
            await client.sync(SyncKind.USER, {"firebaseUid": "u1"})

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_force_sync_rejected_in_body(self) -> None:
        client, _ = _client_with(_response(200, {"success": False}))

        with pytest.raises(ApiError, match="unknown error"):
            await client.force_sync_sector("s1")

    @pytest.mark.asyncio
    async def test_force_sync_sector(self) -> None:
        client, session = _client_with(_response(200, {"success": True}))

        await client.force_sync_sector("s1")

        assert session.request.call_args.args == ("POST", "http://localhost:3000/api/sync/sector/s1/force")


# ─────────── Conversations ───────────


class TestApiClientConversations:
    @pytest.mark.asyncio
    async def test_get_conversation_unwraps(self) -> None:
        client, session = _client_with(
            _response(200, {"success": True, "data": {"_id": "c1"}}), user_id="u1"
        )

        result = await client.get_conversation("c1")

        assert result == {"_id": "c1"}
        kwargs = session.request.call_args.kwargs
        assert kwargs["params"] == {"incluirMensagens": "true"}
        assert session.request.call_args.args[1].endswith("/users/u1/conversas/c1")

    @pytest.mark.asyncio
    async def test_get_conversation_404(self) -> None:
        client, _ = _client_with(_response(404, text="not found"), user_id="u1")

        with pytest.raises(ConversationNotFoundError) as exc_info:
            await client.get_conversation("c1")
        assert exc_info.value.conversation_id == "c1"

    @pytest.mark.asyncio
    async def test_envelope_failure(self) -> None:
        client, _ = _client_with(_response(200, {"success": False, "error": "locked"}), user_id="u1")

        with pytest.raises(ApiError, match="locked"):
            await client.finalize_conversation("c1")

    @pytest.mark.asyncio
    async def test_requires_user(self) -> None:
        client, _ = _client_with(_response(200))
        with pytest.raises(ValueError):
            await client.archive_conversation("c1")

    @pytest.mark.asyncio
    async def test_send_message_body(self) -> None:
        client, session = _client_with(_response(200, {"_id": "m1"}), user_id="u1")

        await client.send_message("c1", " Olá ")

        assert session.request.call_args.kwargs["json"] == {"conteudo": "Olá", "tipo": "texto"}
        assert session.request.call_args.args[1].endswith("/users/u1/conversas/c1/mensagens")

    @pytest.mark.asyncio
    async def test_transfer_and_archive_paths(self) -> None:
        client, session = _client_with(_response(200, {}), user_id="u1")

        await client.transfer_conversation("c1", "s2")
        assert session.request.call_args.args == ("POST", "http://localhost:3000/api/conversas/c1/transferir")
        assert session.request.call_args.kwargs["json"] == {"setorId": "s2"}

        await client.archive_conversation("c1")
        assert session.request.call_args.args[1].endswith("/users/u1/conversas/c1/arquivo")

        await client.unarchive_conversation("c1")
        assert session.request.call_args.args[1].endswith("/users/u1/conversas/c1/desarquivar")
