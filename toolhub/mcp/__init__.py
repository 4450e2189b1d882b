"""
MCP (Model Context Protocol) client connections.
"""

from .client import MCPClient, MCPClientOptions, create_mcp_client
from .debounce import Debounce
from .locker import Locker
from .registry import MCPServerRegistry
from .repository import MCPRepository, MCPServerRecord
from .transport import ClientHandle, build_environment, create_transport

__all__ = [
    "MCPClient",
    "MCPClientOptions",
    "create_mcp_client",
    "Debounce",
    "Locker",
    "MCPServerRegistry",
    "MCPRepository",
    "MCPServerRecord",
    "ClientHandle",
    "build_environment",
    "create_transport",
]
