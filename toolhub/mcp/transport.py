"""
Transport factory and live client handles for MCP servers.
"""

import asyncio
import os
from contextlib import AbstractAsyncContextManager
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.types import CallToolResult, Implementation, ListToolsResult

from toolhub.exceptions import ConfigurationError, TransportPolicyError
from toolhub.schema import MCPSseConfig, MCPStdioConfig


def build_environment(overrides: Optional[Mapping[str, Optional[str]]]) -> Dict[str, str]:
    """Overlay config entries on the current process environment.

    Config entries win on conflict and entries whose value is ``None`` are
    dropped, so ``PATH`` survives unless the config sets it.
    """
    merged = {**os.environ, **(overrides or {})}
    return {key: value for key, value in merged.items() if value is not None}


def create_transport(
    config: Any, network_only: bool = False
) -> AbstractAsyncContextManager:
    """
    Build the (not yet entered) transport context for a server config.

    Nothing is spawned or opened until the returned context is entered, so
    every error raised here happens before any side effect.

    Raises:
        TransportPolicyError: stdio selected while ``network_only`` is set.
        ConfigurationError: the config is not a known server config.
    """
    if isinstance(config, MCPStdioConfig):
        if network_only:
            raise TransportPolicyError(
                "Stdio transport is not supported", transport="stdio"
            )
        params = StdioServerParameters(
            command=config.command,
            args=list(config.args),
            env=build_environment(config.env),
            cwd=os.getcwd(),
        )
        return stdio_client(params)

    if isinstance(config, MCPSseConfig):
        parsed_url = urlparse(config.url)
        if not parsed_url.scheme or not parsed_url.netloc:
            raise ConfigurationError(f"Invalid URL format: {config.url}", field="url")
        return sse_client(
            config.url, headers=dict(config.headers) if config.headers else None
        )

    raise ConfigurationError(f"Invalid server config: {type(config).__name__}")


def _unwrap_error(error: Exception) -> Exception:
    # anyio task groups wrap a single failure in an ExceptionGroup
    while isinstance(error, ExceptionGroup) and len(error.exceptions) == 1:
        error = error.exceptions[0]
    return error


def _consume_task_result(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class ClientHandle:
    """
    A live MCP session.

    The transport and session contexts are entered and exited by one owner
    task; ``close()`` asks that task to exit them and waits for it.
    """

    def __init__(self, session: ClientSession, stop: asyncio.Event, task: asyncio.Task):
        self._session = session
        self._stop = stop
        self._task = task

    @property
    def session(self) -> ClientSession:
        return self._session

    @property
    def closed(self) -> bool:
        return self._task.done()

    async def list_tools(self) -> ListToolsResult:
        return await self._session.list_tools()

    async def call_tool(
        self, name: str, arguments: Optional[Dict[str, Any]] = None
    ) -> CallToolResult:
        return await self._session.call_tool(name, arguments)

    async def close(self) -> None:
        """Exit the session and transport. Errors raised while exiting propagate."""
        self._stop.set()
        await self._task

    def abort(self) -> None:
        """Ask the owner task to exit without waiting for it."""
        self._stop.set()
        self._task.add_done_callback(_consume_task_result)


async def open_client(
    transport: AbstractAsyncContextManager,
    client_info: Optional[Implementation] = None,
) -> ClientHandle:
    """Enter ``transport``, perform the MCP handshake and return the handle."""
    loop = asyncio.get_running_loop()
    ready: asyncio.Future = loop.create_future()
    stop = asyncio.Event()

    async def run() -> None:
        try:
            async with transport as streams:
                read_stream, write_stream = streams[0], streams[1]
                async with ClientSession(
                    read_stream, write_stream, client_info=client_info
                ) as session:
                    await session.initialize()
                    ready.set_result(session)
                    await stop.wait()
        except Exception as e:
            if ready.done():
                raise
            ready.set_exception(_unwrap_error(e))
        finally:
            if not ready.done():
                ready.cancel()

    task = asyncio.create_task(run())
    try:
        session = await ready
    except BaseException:
        task.cancel()
        task.add_done_callback(_consume_task_result)
        raise
    return ClientHandle(session, stop, task)
