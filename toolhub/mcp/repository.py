from typing import List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from toolhub.schema import ServerConfig


class MCPServerRecord(BaseModel):
    """A persisted server entry."""

    id: str
    name: str
    config: ServerConfig
    enabled: bool = Field(True, description="Whether the owner should connect it")


@runtime_checkable
class MCPRepository(Protocol):
    """Storage of server records. Implemented by the application, not here."""

    async def insert_server(
        self, name: str, config: ServerConfig, enabled: bool = True
    ) -> str: ...

    async def select_server_by_id(self, id: str) -> Optional[MCPServerRecord]: ...

    async def select_server_by_name(self, name: str) -> Optional[MCPServerRecord]: ...

    async def select_all_servers(self) -> List[MCPServerRecord]: ...

    async def update_server(
        self,
        id: str,
        name: Optional[str] = None,
        config: Optional[ServerConfig] = None,
        enabled: Optional[bool] = None,
    ) -> None: ...

    async def delete_server(self, id: str) -> None: ...

    async def exists_server_with_name(self, name: str) -> bool: ...
