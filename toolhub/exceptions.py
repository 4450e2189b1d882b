from enum import Enum
from typing import Any, Dict, Optional


class ErrorClassification(Enum):
    """Classification of different types of errors for handling strategies"""

    TRANSIENT = "transient"  # Handshake failures, dropped streams, tool errors
    PERMANENT = "permanent"  # Invalid configuration
    SECURITY = "security"  # Transport forbidden by policy
    VALIDATION = "validation"  # Tool argument validation failures


class ToolHubError(Exception):
    """Base exception for all toolhub errors"""

    def __init__(
        self,
        message: str,
        classification: ErrorClassification = ErrorClassification.PERMANENT,
        cause: Optional[BaseException] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.classification = classification
        self.cause = cause
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization"""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "classification": self.classification.value,
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# Configuration and Validation Errors
class ConfigurationError(ToolHubError):
    """Raised when a server configuration is malformed"""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(
            message, classification=ErrorClassification.PERMANENT, **kwargs
        )
        self.field = field


class ValidationError(ToolHubError):
    """Raised when tool arguments do not match the declared parameters"""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(
            message, classification=ErrorClassification.VALIDATION, **kwargs
        )
        self.field = field


class TransportPolicyError(ToolHubError):
    """Raised when a transport is selected that the global policy forbids"""

    def __init__(self, message: str, transport: Optional[str] = None, **kwargs):
        super().__init__(message, classification=ErrorClassification.SECURITY, **kwargs)
        self.transport = transport


# Connection Errors
class MCPConnectionError(ToolHubError):
    """Raised when connecting to an MCP server fails"""

    def __init__(self, message: str, server_name: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            classification=ErrorClassification.TRANSIENT,
            recoverable=True,
            **kwargs,
        )
        self.server_name = server_name


class CloseError(MCPConnectionError):
    """Raised when tearing down an MCP transport fails"""


# Tool Errors
class ToolError(ToolHubError):
    """Raised when a tool encounters an error"""

    def __init__(self, message: str, tool_name: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            classification=ErrorClassification.TRANSIENT,
            recoverable=True,
            **kwargs,
        )
        self.tool_name = tool_name


class ToolCallError(ToolError):
    """Raised when a remote tool call returns nothing usable"""


class ToolCallAbortedError(ToolError):
    """Raised when a tool call is cancelled before it is issued"""

    def __init__(self, tool_name: str, **kwargs):
        super().__init__(
            f"Tool call aborted: {tool_name}", tool_name=tool_name, **kwargs
        )
