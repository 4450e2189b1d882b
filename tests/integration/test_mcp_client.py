"""
Integration tests for the MCP client connection lifecycle.

Every test runs against the in-memory fake server from ``conftest.py``, so the
full path from ``connect()`` through ``open_client`` and the tool call pipeline
is exercised without spawning processes or opening sockets.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from mcp.types import CallToolResult

from toolhub.exceptions import CloseError, ConfigurationError, TransportPolicyError
from toolhub.mcp.client import MCPClient, MCPClientOptions, create_mcp_client
from toolhub.mcp.debounce import Debounce
from toolhub.schema import ConnectionState, MCPStdioConfig, ServerStatus
from tests.base import MCPTestCase


class TestMCPClientConnect(MCPTestCase):
    """Tests for establishing connections."""

    @pytest.mark.asyncio
    async def test_connect_discovers_tools(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)

        handle = await client.connect()

        assert handle is not None
        assert client.is_connected
        assert client.state == ConnectionState.CONNECTED
        assert client.error is None
        assert [tool.name for tool in client.tool_info] == ["echo", "ping"]
        assert set(client.tools) == {"echo", "ping"}
        fake_server.stdio_client.assert_called_once()

        await client.close()

    @pytest.mark.asyncio
    async def test_sse_connect_passes_headers(self, fake_server, sse_config):
        client = self.create_client(sse_config)

        await client.connect()

        fake_server.sse_client.assert_called_once_with(
            "http://localhost:8931/sse", headers={"Authorization": "Bearer test"}
        )
        fake_server.stdio_client.assert_not_called()
        assert client.is_connected

        await client.close()

    @pytest.mark.asyncio
    async def test_concurrent_connects_share_one_handshake(
        self, fake_server, stdio_config
    ):
        fake_server.handshake_delay = 0.05
        client = self.create_client(stdio_config)

        handles = await asyncio.gather(*(client.connect() for _ in range(5)))

        assert fake_server.handshakes == 1
        assert all(handle is handles[0] for handle in handles)
        assert handles[0] is not None

        await client.close()

    @pytest.mark.asyncio
    async def test_concurrent_connects_share_failure(self, fake_server, stdio_config):
        fake_server.handshake_delay = 0.05
        fake_server.handshake_error = RuntimeError("handshake refused")
        client = self.create_client(stdio_config)

        handles = await asyncio.gather(*(client.connect() for _ in range(3)))

        assert handles == [None, None, None]
        assert fake_server.handshakes == 1
        assert isinstance(client.error, RuntimeError)

    @pytest.mark.asyncio
    async def test_connect_when_connected_is_noop(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)

        first = await client.connect()
        second = await client.connect()

        assert first is second
        assert fake_server.handshakes == 1

        await client.close()

    @pytest.mark.asyncio
    async def test_connect_failure_is_recorded_not_raised(
        self, fake_server, stdio_config
    ):
        fake_server.handshake_error = ConnectionError("server exited")
        client = self.create_client(stdio_config)

        handle = await client.connect()

        assert handle is None
        assert client.state == ConnectionState.DISCONNECTED
        assert str(client.error) == "server exited"
        assert client.tool_info == []
        assert client.tools == {}
        assert client.get_info().error == "server exited"

    @pytest.mark.asyncio
    async def test_successful_connect_clears_previous_error(
        self, fake_server, stdio_config
    ):
        fake_server.handshake_error = ConnectionError("server exited")
        client = self.create_client(stdio_config)
        await client.connect()
        assert client.error is not None

        fake_server.handshake_error = None
        await client.connect()

        assert client.is_connected
        assert client.error is None

        await client.close()

    @pytest.mark.asyncio
    async def test_stdio_refused_when_network_only(self, fake_server, stdio_config):
        client = self.create_client(
            stdio_config,
            options=MCPClientOptions(auto_disconnect_seconds=0, network_only=True),
        )

        handle = await client.connect()

        assert handle is None
        assert isinstance(client.error, TransportPolicyError)
        assert str(client.error) == "Stdio transport is not supported"
        fake_server.stdio_client.assert_not_called()
        assert fake_server.handshakes == 0

    @pytest.mark.asyncio
    async def test_sse_allowed_when_network_only(self, fake_server, sse_config):
        client = self.create_client(
            sse_config,
            options=MCPClientOptions(auto_disconnect_seconds=0, network_only=True),
        )

        await client.connect()

        assert client.is_connected
        await client.close()

    @pytest.mark.asyncio
    async def test_cancelled_connect_resets_state(self, fake_server, stdio_config):
        fake_server.handshake_delay = 1.0
        client = self.create_client(stdio_config)

        task = asyncio.create_task(client.connect())
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert client.state == ConnectionState.DISCONNECTED
        assert client.get_info().status == ServerStatus.DISCONNECTED
        assert client.error is None

        # Let the cancelled owner task unwind the transport
        await asyncio.sleep(0.01)
        assert fake_server.closes == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "list_tools",
        [
            AsyncMock(return_value=None),
            AsyncMock(side_effect=RuntimeError("stream closed")),
        ],
    )
    async def test_broken_tool_listing_closes_half_open_connection(
        self, fake_server, stdio_config, list_tools
    ):
        fake_server.session.list_tools = list_tools
        client = self.create_client(stdio_config)

        handle = await client.connect()

        assert handle is None
        assert client.state == ConnectionState.DISCONNECTED
        assert client.error is not None
        assert client.tools == {}
        assert client.tool_info == []
        assert fake_server.handshakes == 1
        assert fake_server.closes == 1

    @pytest.mark.asyncio
    async def test_lost_session_reconnects(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)
        handle = await client.connect()

        # The session ends underneath the client, as when the server exits
        handle.abort()
        await asyncio.sleep(0.01)

        assert handle.closed
        assert not client.is_connected
        assert client.get_info().status == ServerStatus.DISCONNECTED

        result = await client.call_tool("echo", {"text": "again"})

        assert self.result_text(result) == "again"
        assert client.is_connected
        assert fake_server.handshakes == 2
        await client.close()
        assert fake_server.closes == 2

    @pytest.mark.asyncio
    async def test_async_context_manager(self, fake_server, stdio_config):
        async with self.create_client(stdio_config) as client:
            assert client.is_connected

        assert not client.is_connected
        assert fake_server.closes == 1


class TestMCPClientConfig:
    """Tests for constructing clients from raw configuration."""

    def test_raw_mapping_is_parsed(self):
        client = MCPClient("files", {"command": "npx", "args": ["server-files"]})

        assert isinstance(client.config, MCPStdioConfig)
        assert client.config.args == ["server-files"]
        assert client.state == ConnectionState.DISCONNECTED

    def test_malformed_config_raises(self):
        with pytest.raises(ConfigurationError):
            MCPClient("broken", {"args": ["no-command"]})

    def test_factory_creates_client(self, stdio_config, client_options):
        client = create_mcp_client("files", stdio_config, client_options)

        assert isinstance(client, MCPClient)
        assert client.name == "files"
        assert client.config is stdio_config


class TestMCPClientDisconnect(MCPTestCase):
    """Tests for tearing connections down."""

    @pytest.mark.asyncio
    async def test_disconnect_closes_transport(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)
        await client.connect()

        await client.disconnect()

        assert client.state == ConnectionState.DISCONNECTED
        assert client.tool_info == []
        assert client.tools == {}
        assert fake_server.closes == 1

    @pytest.mark.asyncio
    async def test_disconnect_when_disconnected_is_noop(
        self, fake_server, stdio_config
    ):
        client = self.create_client(stdio_config)

        await client.disconnect()

        assert client.error is None
        assert fake_server.closes == 0

    @pytest.mark.asyncio
    async def test_disconnect_waits_for_inflight_connect(
        self, fake_server, stdio_config
    ):
        fake_server.handshake_delay = 0.05
        client = self.create_client(stdio_config)

        connect_task = asyncio.create_task(client.connect())
        await asyncio.sleep(0.01)
        assert client.get_info().status == ServerStatus.LOADING

        await client.disconnect()
        handle = await connect_task

        # The connect completed first and was then torn down
        assert handle is not None
        assert handle.closed
        assert client.state == ConnectionState.DISCONNECTED
        assert fake_server.handshakes == 1
        assert fake_server.closes == 1

    @pytest.mark.asyncio
    async def test_close_error_is_recorded(self, fake_server, stdio_config):
        fake_server.close_error = RuntimeError("pipe broken")
        client = self.create_client(stdio_config)
        await client.connect()

        await client.disconnect()

        assert client.state == ConnectionState.DISCONNECTED
        assert isinstance(client.error, CloseError)
        assert "pipe broken" in str(client.error)
        assert client.error.server_name == client.name

    @pytest.mark.asyncio
    async def test_reconnect_after_disconnect(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)
        await client.connect()
        await client.disconnect()

        await client.connect()

        assert client.is_connected
        assert fake_server.handshakes == 2
        await client.close()


class TestMCPClientAutoDisconnect(MCPTestCase):
    """Tests for the idle disconnect timer."""

    @pytest.mark.asyncio
    async def test_idle_disconnect_fires(self, fake_server, stdio_config):
        client = self.create_client(
            stdio_config,
            options=MCPClientOptions(auto_disconnect_seconds=0.05, network_only=False),
        )
        await client.connect()
        assert client.is_connected

        disconnected = await self.wait_for_condition(
            lambda: client.state == ConnectionState.DISCONNECTED and fake_server.closes
        )

        assert disconnected
        assert fake_server.closes == 1
        assert client.tools == {}

    @pytest.mark.asyncio
    async def test_tool_calls_rearm_idle_timer(self, fake_server, stdio_config):
        client = self.create_client(
            stdio_config,
            options=MCPClientOptions(auto_disconnect_seconds=0.2, network_only=False),
        )
        await client.connect()

        for _ in range(3):
            await asyncio.sleep(0.1)
            await client.call_tool("echo", {"text": "keepalive"})

        assert client.is_connected
        assert fake_server.handshakes == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_failed_call_rearms_idle_timer(self, fake_server, stdio_config):
        debounce = Debounce()
        client = self.create_client(
            stdio_config,
            options=MCPClientOptions(auto_disconnect_seconds=5, network_only=False),
            disconnect_debounce=debounce,
        )
        await client.connect()
        debounce.cancel()
        fake_server.session.call_tool = AsyncMock(side_effect=RuntimeError("boom"))

        result = await client.call_tool("echo", {"text": "hi"})

        assert result.isError
        assert debounce.pending
        await client.close()

    @pytest.mark.asyncio
    async def test_close_cancels_idle_timer(self, fake_server, stdio_config):
        debounce = Debounce()
        client = self.create_client(
            stdio_config,
            options=MCPClientOptions(auto_disconnect_seconds=5, network_only=False),
            disconnect_debounce=debounce,
        )
        await client.connect()
        assert debounce.pending

        await client.close()

        assert not debounce.pending

    @pytest.mark.asyncio
    async def test_negative_delay_disables_timer(self, fake_server, stdio_config):
        debounce = Debounce()
        client = self.create_client(
            stdio_config,
            options=MCPClientOptions(auto_disconnect_seconds=-1, network_only=False),
            disconnect_debounce=debounce,
        )

        await client.connect()
        await asyncio.sleep(0.05)

        assert not debounce.pending
        assert client.is_connected
        await client.close()

    @pytest.mark.asyncio
    async def test_no_timer_when_disabled(self, fake_server, stdio_config):
        debounce = Debounce()
        client = self.create_client(stdio_config, disconnect_debounce=debounce)

        await client.connect()

        assert not debounce.pending
        await client.close()


class TestMCPClientCallTool(MCPTestCase):
    """Tests for the fail-safe tool call pipeline."""

    @pytest.mark.asyncio
    async def test_call_tool_connects_implicitly(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)

        result = await client.call_tool("echo", {"text": "hi"})

        assert isinstance(result, CallToolResult)
        assert not result.isError
        assert self.result_text(result) == "hi"
        assert client.is_connected
        fake_server.session.call_tool.assert_awaited_once_with("echo", {"text": "hi"})
        await client.close()

    @pytest.mark.asyncio
    async def test_remote_error_passes_through(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)

        result = await client.call_tool("missing")

        assert result.isError
        assert self.result_text(result) == "unknown tool: missing"
        await client.close()

    @pytest.mark.asyncio
    async def test_connect_failure_becomes_error_result(
        self, fake_server, stdio_config
    ):
        fake_server.handshake_error = ConnectionError("server exited")
        client = self.create_client(stdio_config)

        result = await client.call_tool("echo", {"text": "hi"})

        error = self.assert_error_result(result, "MCPConnectionError")
        assert client.name in error["message"]
        assert "server exited" in error["message"]
        fake_server.session.call_tool.assert_not_called()

    @pytest.mark.asyncio
    async def test_policy_failure_becomes_error_result(
        self, fake_server, stdio_config
    ):
        client = self.create_client(
            stdio_config,
            options=MCPClientOptions(auto_disconnect_seconds=0, network_only=True),
        )

        result = await client.call_tool("echo", {"text": "hi"})

        error = self.assert_error_result(result, "MCPConnectionError")
        assert "Stdio transport is not supported" in error["message"]

    @pytest.mark.asyncio
    async def test_raised_error_becomes_error_result(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)
        fake_server.session.call_tool = AsyncMock(side_effect=RuntimeError("boom"))

        result = await client.call_tool("echo", {"text": "hi"})

        error = self.assert_error_result(result, "RuntimeError")
        assert error["message"] == "boom"
        await client.close()

    @pytest.mark.asyncio
    async def test_null_response_is_normalized(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)
        fake_server.session.call_tool = AsyncMock(return_value=None)

        result = await client.call_tool("echo", {"text": "hi"})

        error = self.assert_error_result(result, "ToolCallError")
        assert error["message"] == "Tool call failed with null"
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_response_is_normalized(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)
        fake_server.session.call_tool = AsyncMock(return_value={"content": []})

        result = await client.call_tool("echo", {"text": "hi"})

        error = self.assert_error_result(result, "ToolCallError")
        assert "dict" in error["message"]
        await client.close()

    @pytest.mark.asyncio
    async def test_tool_wrapper_calls_through_client(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)
        await client.connect()

        result = await client.tools["echo"].execute(text="wrapped")

        assert self.result_text(result) == "wrapped"
        await client.close()


class TestMCPClientInfo(MCPTestCase):
    """Tests for server snapshots."""

    @pytest.mark.asyncio
    async def test_status_transitions(self, fake_server, stdio_config):
        fake_server.handshake_delay = 0.05
        client = self.create_client(stdio_config)
        assert client.get_info().status == ServerStatus.DISCONNECTED

        connect_task = asyncio.create_task(client.connect())
        await asyncio.sleep(0.01)
        assert client.get_info().status == ServerStatus.LOADING

        await connect_task
        info = client.get_info()
        assert info.status == ServerStatus.CONNECTED
        assert info.name == client.name
        assert info.config == stdio_config
        assert [tool.name for tool in info.tool_info] == ["echo", "ping"]

        await client.disconnect()
        info = client.get_info()
        assert info.status == ServerStatus.DISCONNECTED
        assert info.tool_info == []

    @pytest.mark.asyncio
    async def test_snapshot_is_detached(self, fake_server, stdio_config):
        client = self.create_client(stdio_config)
        await client.connect()

        info = client.get_info()
        await client.disconnect()

        assert len(info.tool_info) == 2
        assert client.tool_info == []

    def test_snapshot_serializes_with_aliases(self, stdio_config):
        client = MCPClient(
            "files", stdio_config, MCPClientOptions(auto_disconnect_seconds=0)
        )

        data = client.get_info().model_dump(by_alias=True, mode="json")

        assert data["status"] == "disconnected"
        assert data["toolInfo"] == []
        assert data["config"]["type"] == "stdio"
        assert data["error"] is None
