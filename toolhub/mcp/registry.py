import asyncio
import re
from concurrent.futures import Future
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from toolhub.config import Config
from toolhub.logger import logger
from toolhub.mcp.client import MCPClient, MCPClientOptions
from toolhub.mcp.repository import MCPRepository
from toolhub.schema import MCPServerInfo, parse_server_config
from toolhub.tool.mcp import MCPClientTool


def sanitize_tool_name(name: str) -> str:
    """Sanitize a tool name for function-calling APIs."""
    # Replace invalid characters with underscores
    sanitized = re.sub(r"[^a-zA-Z0-9_-]", "_", name)

    # Remove consecutive underscores
    sanitized = re.sub(r"_+", "_", sanitized)

    # Remove leading/trailing underscores
    sanitized = sanitized.strip("_")

    # Truncate to 64 characters if needed
    return sanitized[:64]


class MCPServerRegistry:
    """
    Mapping from server name to ``MCPClient``.

    The mapping is never edited in place: ``apply()`` builds a new one and
    swaps it in, then closes the clients that dropped out. Clients whose
    config did not change are carried over with their live connection.
    """

    def __init__(self, options: Optional[MCPClientOptions] = None):
        self._options = options
        self._clients: Dict[str, MCPClient] = {}
        self._config_callback: Optional[Callable[[str, Optional[Path]], Any]] = None
        self._watched_config: Optional[Config] = None

    @property
    def clients(self) -> Mapping[str, MCPClient]:
        return MappingProxyType(self._clients)

    def get_client(self, name: str) -> Optional[MCPClient]:
        return self._clients.get(name)

    def get_info(self) -> List[MCPServerInfo]:
        return [client.get_info() for client in self._clients.values()]

    def tools_by_server(self) -> Dict[str, Dict[str, MCPClientTool]]:
        return {name: dict(client.tools) for name, client in self._clients.items()}

    def tool_map(self) -> Dict[str, MCPClientTool]:
        """All connected tools under ``mcp_<server>_<tool>`` names."""
        return {
            sanitize_tool_name(f"mcp_{server}_{tool_name}"): tool
            for server, client in self._clients.items()
            for tool_name, tool in client.tools.items()
        }

    async def apply(self, server_configs: Mapping[str, Any]) -> None:
        """
        Replace the server set.

        Raises:
            ConfigurationError: If any config is malformed. Nothing changes then.
        """
        parsed = {
            name: parse_server_config(server_config)
            for name, server_config in server_configs.items()
        }

        current = self._clients
        clients: Dict[str, MCPClient] = {}
        for name, server_config in parsed.items():
            existing = current.get(name)
            if existing is not None and existing.config == server_config:
                clients[name] = existing
            else:
                clients[name] = MCPClient(name, server_config, self._options)
        self._clients = clients

        retired = [
            client for name, client in current.items() if clients.get(name) is not client
        ]
        if retired:
            await asyncio.gather(*(client.close() for client in retired))

        logger.info(
            f"Applied MCP server configuration: {len(clients)} servers, "
            f"{len(retired)} retired",
            {"servers": list(clients)},
        )

    async def connect_all(self) -> None:
        """Connect every server concurrently. Failures stay on each client."""
        await asyncio.gather(*(client.connect() for client in self._clients.values()))

    async def load_from_repository(self, repository: MCPRepository) -> None:
        """Apply the enabled servers stored in ``repository``."""
        records = await repository.select_all_servers()
        await self.apply(
            {record.name: record.config for record in records if record.enabled}
        )

    def watch_config(self, app_config: Config) -> None:
        """Re-apply ``[mcp]`` servers whenever the configuration reloads.

        Must be called from the event loop the clients run on; reloads coming
        from the watchdog thread are handed over to that loop.
        """
        loop = asyncio.get_running_loop()

        def on_change(event_type: str, file_path: Optional[Path]) -> None:
            future = asyncio.run_coroutine_threadsafe(
                self.apply(app_config.mcp_config.servers), loop
            )
            future.add_done_callback(self._log_apply_failure)

        self.unwatch_config()
        app_config.register_change_callback(on_change)
        self._config_callback = on_change
        self._watched_config = app_config

    def unwatch_config(self) -> None:
        if self._watched_config is not None and self._config_callback is not None:
            self._watched_config.unregister_change_callback(self._config_callback)
        self._config_callback = None
        self._watched_config = None

    @staticmethod
    def _log_apply_failure(future: Future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Failed to apply MCP server configuration: {future.exception()}")

    async def shutdown(self) -> None:
        """Close every client and empty the registry."""
        self.unwatch_config()
        clients, self._clients = self._clients, {}
        if clients:
            await asyncio.gather(*(client.close() for client in clients.values()))
        logger.info("MCP server registry shutdown complete")
