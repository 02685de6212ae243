"""
MCP Protocol definitions.

Implements the JSON-RPC 2.0 envelopes used by the Model Context Protocol,
the tool descriptor types advertised through ``tools/list`` and the
``ToolResult`` union returned by tool bodies.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"


class MCPErrorCode(Enum):
    """Standard JSON-RPC error codes."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    # Server error range is -32099..-32000
    TOOL_EXECUTION_ERROR = -32000

    @staticmethod
    def is_server_error(code: int) -> bool:
        return -32099 <= code <= -32000


class MCPServerError(Exception):
    """Base class for errors raised by the server package."""


class EnvelopeError(MCPServerError):
    """A message could not be turned into a request envelope."""

    def __init__(self, code: MCPErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class MCPError:
    """MCP Error object."""
    code: int
    message: str
    data: Optional[Any] = None

    @classmethod
    def from_code(cls, code: MCPErrorCode, message: str, data: Any = None) -> "MCPError":
        return cls(code=code.value, message=message, data=data)

    def to_dict(self) -> dict:
        result = {"code": self.code, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result


@dataclass
class MCPRequest:
    """
    MCP Request message.

    A request whose ``id`` is None is a notification and is never answered.
    """
    method: str
    id: Optional[Union[str, int, float]] = None
    params: Optional[Any] = None
    jsonrpc: str = JSONRPC_VERSION

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def to_dict(self) -> dict:
        result = {"jsonrpc": self.jsonrpc}
        if self.id is not None:
            result["id"] = self.id
        result["method"] = self.method
        if self.params is not None:
            result["params"] = self.params
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "MCPRequest":
        return cls(
            jsonrpc=data.get("jsonrpc", JSONRPC_VERSION),
            id=data.get("id"),
            method=data["method"],
            params=data.get("params"),
        )


@dataclass
class MCPResponse:
    """
    MCP Response message.

    Exactly one of ``result`` and ``error`` is serialized. A response built
    with ``none()`` carries neither and only tells the server loop that
    nothing is due; it cannot be serialized.
    """
    id: Optional[Union[str, int, float]] = None
    result: Optional[Any] = None
    error: Optional[MCPError] = None
    jsonrpc: str = JSONRPC_VERSION
    _empty: bool = field(default=False, repr=False, compare=False)

    @property
    def is_empty(self) -> bool:
        return self._empty

    def to_dict(self) -> dict:
        if self._empty:
            raise ValueError("The no-response placeholder cannot be serialized")
        result = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            result["error"] = self.error.to_dict()
        else:
            result["result"] = self.result
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def success(cls, id: Any, result: Any) -> "MCPResponse":
        return cls(id=id, result=result)

    @classmethod
    def failure(cls, id: Any, error: MCPError) -> "MCPResponse":
        return cls(id=id, error=error)

    @classmethod
    def none(cls) -> "MCPResponse":
        return cls(_empty=True)


NO_RESPONSE = MCPResponse.none()


class ParamType(str, Enum):
    """Primitive kinds a tool parameter may declare."""
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


@dataclass
class ToolParameter:
    """
    Tool parameter definition.

    ``items`` is mandatory when ``type`` is ``array`` and forbidden
    otherwise; both mistakes raise ``ValueError`` when the parameter is built.
    """
    name: str
    type: ParamType
    description: str
    required: bool = True
    items: Optional[ParamType] = None

    def __post_init__(self):
        self.type = ParamType(self.type)
        if self.items is not None:
            self.items = ParamType(self.items)
        if self.type is ParamType.ARRAY and self.items is None:
            raise ValueError(
                f"Parameter '{self.name}' is of type 'array' but has no 'items' specification"
            )
        if self.type is not ParamType.ARRAY and self.items is not None:
            raise ValueError(
                f"Parameter '{self.name}' declares 'items' but is of type '{self.type.value}'"
            )

    def to_json_schema(self) -> dict:
        """Convert to JSON schema property."""
        schema = {
            "type": self.type.value,
            "description": self.description,
        }
        if self.type is ParamType.ARRAY:
            if self.items is None:
                raise ValueError(
                    f"Parameter '{self.name}' is of type 'array' but has no 'items' specification"
                )
            schema["items"] = {"type": self.items.value}
        return schema


@dataclass
class Tool:
    """Tool definition for MCP."""
    name: str
    description: str
    parameters: List[ToolParameter] = field(default_factory=list)

    def input_schema(self) -> dict:
        properties = {}
        required = []

        for param in self.parameters:
            properties[param.name] = param.to_json_schema()
            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_dict(self) -> dict:
        """
        Convert to MCP tool definition format.

        The schema is published under both ``inputSchema`` and ``parameters``;
        some editor clients only read the latter.
        """
        schema = self.input_schema()
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": schema,
            "parameters": schema,
        }


class ToolResult:
    """
    Outcome of a single tool invocation.

    Either a ``ToolSuccess`` carrying the result payload or a ``ToolFailure``
    carrying a message and an optional numeric code.
    """

    is_error = False

    @staticmethod
    def success(content: Any) -> "ToolSuccess":
        """Build a success; a plain string becomes one text content block."""
        if isinstance(content, str):
            content = text_content(content)
        return ToolSuccess(content=content)

    @staticmethod
    def failure(message: str, code: Optional[int] = None) -> "ToolFailure":
        return ToolFailure(message=message, code=code)


@dataclass
class ToolSuccess(ToolResult):
    content: Any

    def to_dict(self) -> Any:
        return self.content


@dataclass
class ToolFailure(ToolResult):
    message: str
    code: Optional[int] = None

    is_error = True

    def to_dict(self) -> dict:
        result = text_content(f"Error: {self.message}")
        result["isError"] = True
        if self.code is not None:
            result["_meta"] = {"code": self.code}
        return result


def text_content(text: str) -> dict:
    """Wrap text in the MCP ``tools/call`` content shape."""
    return {"content": [{"type": "text", "text": text}]}


def _is_valid_id(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    return value is None or isinstance(value, (str, int, float))


def parse_request(data: Union[str, bytes, dict]) -> MCPRequest:
    """
    Parse a raw message into a request envelope.

    Raises ``EnvelopeError`` with ``PARSE_ERROR`` for malformed JSON or a
    missing ``method``, and with ``INVALID_REQUEST`` for an unusable ``id``.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except (ValueError, RecursionError) as e:
            raise EnvelopeError(MCPErrorCode.PARSE_ERROR, f"Invalid JSON: {e}")

    if not isinstance(data, dict):
        raise EnvelopeError(MCPErrorCode.PARSE_ERROR, "Message must be a JSON object")

    method = data.get("method")
    if not isinstance(method, str):
        raise EnvelopeError(MCPErrorCode.PARSE_ERROR, "Missing or invalid 'method' field")

    if not _is_valid_id(data.get("id")):
        raise EnvelopeError(
            MCPErrorCode.INVALID_REQUEST,
            "Request 'id' must be a string, a number or null",
        )

    return MCPRequest.from_dict(data)
