"""
MCP Server implementation.

Routes request envelopes to the protocol methods, invokes tools through the
registry and drives the read/dispatch/write loop over a ``StdioTransport``.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from . import __version__
from .protocol import (
    NO_RESPONSE,
    PROTOCOL_VERSION,
    EnvelopeError,
    MCPError,
    MCPErrorCode,
    MCPRequest,
    MCPResponse,
    parse_request,
)
from .tools import BaseTool, ToolRegistry, create_default_registry
from .transport import FramingError, StdioTransport


logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    """Configuration for MCP server."""
    name: str = "mcp-stdio-server"
    version: str = __version__
    protocol_version: str = PROTOCOL_VERSION
    log_level: str = "INFO"
    enable_github_tools: bool = True
    github_token: Optional[str] = None
    github_owner: Optional[str] = None
    github_repo: Optional[str] = None
    github_api_url: str = "https://api.github.com"

    @property
    def github_configured(self) -> bool:
        return bool(self.github_token and self.github_owner and self.github_repo)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "protocol_version": self.protocol_version,
            "log_level": self.log_level,
            "enable_github_tools": self.enable_github_tools,
            "github_owner": self.github_owner,
            "github_repo": self.github_repo,
            "github_api_url": self.github_api_url,
            "github_configured": self.github_configured,
        }

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """Build a configuration from ``MCP_*`` and ``GITHUB_*`` variables."""
        env = os.environ if environ is None else environ
        config = cls()
        config.name = env.get("MCP_SERVER_NAME") or config.name
        config.log_level = (env.get("MCP_LOG_LEVEL") or config.log_level).upper()
        config.github_token = env.get("GITHUB_TOKEN") or None
        config.github_owner = env.get("GITHUB_OWNER") or None
        config.github_repo = env.get("GITHUB_REPO") or None
        config.github_api_url = env.get("GITHUB_API_URL") or config.github_api_url
        disabled = env.get("MCP_DISABLE_GITHUB_TOOLS", "").lower()
        config.enable_github_tools = disabled not in ("1", "true", "yes")
        return config


class MCPServer:
    """
    MCP Server that dispatches requests to protocol methods and tools.

    Requests are handled one at a time; a tool call blocks the loop until it
    returns.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        registry: Optional[ToolRegistry] = None,
    ):
        self.config = config or ServerConfig()
        self.registry = registry if registry is not None else ToolRegistry()
        self.client_name: Optional[str] = None
        self._transport: Optional[StdioTransport] = None
        self._running = False
        self._resources: List[Any] = []
        self._handlers: Dict[str, Callable[[MCPRequest], MCPResponse]] = {
            "initialize": self._handle_initialize,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
            "notifications/initialized": self._handle_initialized,
        }

    def register_tool(self, tool: BaseTool) -> None:
        """Register a tool with the server."""
        self.registry.register(tool)

    def add_resource(self, resource: Any) -> None:
        """Keep an object whose ``close()`` runs when the server shuts down."""
        self._resources.append(resource)

    def close(self) -> None:
        """Close resources held by the server's tools."""
        while self._resources:
            self._resources.pop().close()

    def _handle_initialize(self, request: MCPRequest) -> MCPResponse:
        """Handle initialize request."""
        params = request.params if isinstance(request.params, dict) else {}
        client_info = params.get("clientInfo")
        if self.client_name is None and isinstance(client_info, dict):
            name = client_info.get("name")
            if isinstance(name, str):
                self.client_name = name
                logger.info(f"Detected client: {name}")

        return MCPResponse.success(request.id, {
            "protocolVersion": self.config.protocol_version,
            "capabilities": {
                "tools": {"listChanged": True},
            },
            "serverInfo": {
                "name": self.config.name,
                "version": self.config.version,
            },
        })

    def _handle_initialized(self, request: MCPRequest) -> MCPResponse:
        """Handle initialized notification."""
        logger.info("Client initialized")
        return NO_RESPONSE

    def _handle_list_tools(self, request: MCPRequest) -> MCPResponse:
        """Handle tools/list request."""
        return MCPResponse.success(request.id, {"tools": self.registry.schema_list()})

    def _handle_call_tool(self, request: MCPRequest) -> MCPResponse:
        """
        Handle tools/call request.

        A malformed ``params`` object is a protocol error. An unknown tool or
        a failing tool is reported inside a successful response.
        """
        params = request.params
        if not isinstance(params, dict):
            return _invalid_params(request.id, "Missing params for tools/call")

        name = params.get("name")
        arguments = params.get("arguments")
        if not isinstance(name, str) or not isinstance(arguments, dict):
            return _invalid_params(
                request.id, "Expected params with 'name' and 'arguments' fields"
            )

        try:
            result = self.registry.invoke(name, arguments)
        except Exception as e:
            logger.exception(f"Tool '{name}' raised an exception")
            error = MCPError.from_code(
                MCPErrorCode.INTERNAL_ERROR,
                f"Tool '{name}' failed: {e}",
            )
            return MCPResponse.failure(request.id, error)

        if result.is_error:
            logger.info(f"Tool '{name}' returned a failure: {result.message}")
        return MCPResponse.success(request.id, result.to_dict())

    def process_request(self, request: MCPRequest) -> MCPResponse:
        """Process a single MCP request."""
        handler = self._handlers.get(request.method)

        if handler is None:
            error = MCPError.from_code(
                MCPErrorCode.METHOD_NOT_FOUND,
                f"Method not found: {request.method}",
            )
            return MCPResponse.failure(request.id, error)

        return handler(request)

    def handle_message(self, message: str) -> Optional[MCPResponse]:
        """
        Handle one framed message and return the response to write, if any.

        Envelope errors are answered with ``id: null``. Otherwise a response
        is returned only when the request carried an id.
        """
        try:
            request = parse_request(message)
        except EnvelopeError as e:
            logger.error(f"Parse error: {e.message}")
            return MCPResponse.failure(None, MCPError.from_code(e.code, e.message))

        kind = "notification" if request.is_notification else "request"
        logger.debug(f"Received {kind}: {request.method} (id: {request.id})")

        if request.is_notification:
            try:
                self.process_request(request)
            except Exception:
                logger.exception(f"Error handling notification: {request.method}")
            return None

        response = self.process_request(request)
        if response.is_empty:
            return None
        return response

    def serialize_response(self, response: MCPResponse) -> str:
        """
        Serialize a response for the wire.

        A result that cannot be encoded as JSON is replaced by an
        ``INTERNAL_ERROR`` response for the same id.
        """
        try:
            return response.to_json()
        except (TypeError, ValueError, RecursionError) as e:
            logger.error(f"Could not serialize response (id: {response.id!r}): {e}")
            error = MCPError.from_code(
                MCPErrorCode.INTERNAL_ERROR,
                f"Response could not be serialized: {e}",
            )
            return MCPResponse.failure(response.id, error).to_json()

    def run(self, transport: Optional[StdioTransport] = None) -> None:
        """Run the server main loop until the input stream ends."""
        self._transport = transport or StdioTransport()
        self._running = True

        logger.info(f"MCP Server {self.config.name} v{self.config.version} starting")

        try:
            with self._transport:
                while self._running:
                    try:
                        message = self._transport.read_message()
                    except FramingError as e:
                        logger.error(f"Unrecoverable read error: {e}")
                        break

                    if message is None:
                        logger.info("EOF received, shutting down")
                        break

                    response = self.handle_message(message)
                    if response is not None:
                        self._transport.write_message(self.serialize_response(response))
        finally:
            self._running = False
            self.close()
            logger.info("Server stopped")

    def stop(self) -> None:
        """Signal the server to stop after the current message."""
        self._running = False


def _invalid_params(id: Any, reason: str) -> MCPResponse:
    error = MCPError.from_code(MCPErrorCode.INVALID_PARAMS, f"Invalid params: {reason}")
    return MCPResponse.failure(id, error)


def create_server(
    config: Optional[ServerConfig] = None,
    tools: Optional[List[BaseTool]] = None,
) -> MCPServer:
    """
    Create an MCP server with configuration and tools.

    Args:
        config: Server configuration
        tools: Additional tools to register

    Returns:
        Configured MCPServer instance
    """
    config = config or ServerConfig()
    server = MCPServer(config, registry=create_default_registry())

    if config.enable_github_tools:
        from .github import GithubClient, github_tools
        client = GithubClient(token=config.github_token, base_url=config.github_api_url)
        server.add_resource(client)
        for tool in github_tools(client, config.github_owner, config.github_repo):
            server.register_tool(tool)

    if tools:
        for tool in tools:
            server.register_tool(tool)

    return server
