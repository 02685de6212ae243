"""
MCP stdio server - Model Context Protocol tools over stdin/stdout.

Speaks JSON-RPC 2.0 with either newline-delimited or ``Content-Length``
framing, detected from the client's first message.
"""

__version__ = "0.1.0"

from .protocol import (
    MCPRequest,
    MCPResponse,
    MCPError,
    MCPErrorCode,
    MCPServerError,
    EnvelopeError,
    NO_RESPONSE,
    ParamType,
    Tool,
    ToolParameter,
    ToolResult,
    ToolSuccess,
    ToolFailure,
    parse_request,
)
from .server import MCPServer, ServerConfig, create_server
from .tools import (
    BaseTool,
    AddTool,
    ToolRegistry,
    create_default_registry,
)
from .transport import (
    FramingError,
    FramingMode,
    StdioTransport,
)

__all__ = [
    # Protocol
    "MCPRequest",
    "MCPResponse",
    "MCPError",
    "MCPErrorCode",
    "MCPServerError",
    "EnvelopeError",
    "NO_RESPONSE",
    "ParamType",
    "Tool",
    "ToolParameter",
    "ToolResult",
    "ToolSuccess",
    "ToolFailure",
    "parse_request",
    # Server
    "MCPServer",
    "ServerConfig",
    "create_server",
    # Tools
    "BaseTool",
    "AddTool",
    "ToolRegistry",
    "create_default_registry",
    # Transport
    "FramingError",
    "FramingMode",
    "StdioTransport",
]
