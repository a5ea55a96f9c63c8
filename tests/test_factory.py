"""Tests for client selection and the direct-connection fallback."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ttt.core import factory
from ttt.core.interfaces import StoreClient
from ttt.core.store import DirectStoreClient
from ttt.daemon.client import DaemonClient
from ttt.errors import ConnectionClosedError, NotFoundError, OperationTimeoutError


class TestGetClient:
    """Tests for get_client()."""

    @pytest.mark.asyncio
    async def test_daemon_disabled_uses_direct_client(self, settings, store) -> None:
        with patch.object(factory, "get_direct_client", AsyncMock(return_value=store)) as direct, \
                patch.object(DaemonClient, "connect", AsyncMock()) as daemon_connect:
            client = await factory.get_client(settings)

        assert client is store
        direct.assert_awaited_once()
        daemon_connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_prefers_daemon(self, settings, store) -> None:
        settings.daemon_enabled = True
        with patch.object(factory, "get_direct_client", AsyncMock(return_value=store)) as direct, \
                patch.object(DaemonClient, "connect", AsyncMock()):
            client = await factory.get_client(settings)

        assert isinstance(client, DaemonClient)
        direct.assert_not_called()

    @pytest.mark.asyncio
    async def test_falls_back_when_daemon_unavailable(self, settings, store) -> None:
        settings.daemon_enabled = True
        with patch.object(factory, "get_direct_client", AsyncMock(return_value=store)), \
                patch.object(DaemonClient, "connect", AsyncMock(side_effect=OperationTimeoutError("Daemon spawn timeout"))):
            client = await factory.get_client(settings)

        assert client is store


class TestRunWithClient:
    """Tests for run_with_client()."""

    @pytest.mark.asyncio
    async def test_runs_operation_and_disconnects(self, settings, store) -> None:
        store.disconnect = AsyncMock()
        with patch.object(factory, "get_client", AsyncMock(return_value=store)):
            lists = await factory.run_with_client(lambda client: client.get_lists(), settings)

        assert len(lists) == 2
        store.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_directly_when_daemon_connection_drops(self, settings, store) -> None:
        proxy = MagicMock(spec=StoreClient)
        proxy.get_lists = AsyncMock(side_effect=ConnectionClosedError("Daemon connection closed"))
        proxy.disconnect = AsyncMock()
        store.disconnect = AsyncMock()

        with patch.object(factory, "get_client", AsyncMock(return_value=proxy)), \
                patch.object(factory, "get_direct_client", AsyncMock(return_value=store)):
            lists = await factory.run_with_client(lambda client: client.get_lists(), settings)

        assert len(lists) == 2
        proxy.disconnect.assert_awaited_once()
        store.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_direct_connection_errors_propagate(self, settings, store) -> None:
        store.get_lists = AsyncMock(side_effect=ConnectionClosedError("gone"))
        with patch.object(factory, "get_client", AsyncMock(return_value=store)):
            with pytest.raises(ConnectionClosedError):
                await factory.run_with_client(lambda client: client.get_lists(), settings)

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, settings, store) -> None:
        proxy = MagicMock(spec=StoreClient)
        proxy.delete_todo = AsyncMock(side_effect=NotFoundError("Todo not found: x"))
        proxy.disconnect = AsyncMock()
        direct = AsyncMock()

        with patch.object(factory, "get_client", AsyncMock(return_value=proxy)), \
                patch.object(factory, "get_direct_client", direct):
            with pytest.raises(NotFoundError):
                await factory.run_with_client(lambda client: client.delete_todo("x"), settings)

        direct.assert_not_called()
