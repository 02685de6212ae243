"""
MCP Tools implementation.

Provides the tool base class, the registry the dispatcher invokes tools
through, and the built-in ``add`` tool.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .protocol import ParamType, Tool, ToolParameter, ToolResult


logger = logging.getLogger(__name__)


class BaseTool(ABC):
    """
    Base class for MCP tools.

    Tool bodies report every outcome through the returned ``ToolResult``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Tool description."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> List[ToolParameter]:
        """Tool parameters."""
        pass

    @abstractmethod
    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        """Execute the tool with the given arguments."""
        pass

    def get_definition(self) -> Tool:
        """Get the MCP tool definition."""
        return Tool(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def validate_arguments(self, arguments: Any) -> bool:
        """
        Check that every required parameter is present.

        Types of present values are not checked; that is up to ``execute``.
        """
        if not isinstance(arguments, dict):
            return False
        missing = [
            param.name
            for param in self.parameters
            if param.required and param.name not in arguments
        ]
        if missing:
            logger.debug(f"[{self.name}] Missing required arguments: {', '.join(missing)}")
            return False
        return True


class AddTool(BaseTool):
    """Add two integers."""

    @property
    def name(self) -> str:
        return "add"

    @property
    def description(self) -> str:
        return "Adds two integers and returns their sum"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter("a", ParamType.NUMBER, "First number to add"),
            ToolParameter("b", ParamType.NUMBER, "Second number to add"),
        ]

    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        a = arguments.get("a")
        b = arguments.get("b")
        if not _is_integer(a) or not _is_integer(b):
            return ToolResult.failure("Expected integer arguments 'a' and 'b'")
        return ToolResult.success(str(int(a) + int(b)))


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return value.is_integer()
    return isinstance(value, int)


@dataclass
class ToolRegistry:
    """Registry for managing tools."""
    tools: Dict[str, BaseTool] = field(default_factory=dict)

    def register(self, tool: BaseTool) -> "ToolRegistry":
        """
        Register a tool.

        The schema is built here so that a bad parameter list fails at
        registration rather than on the first ``tools/list``.
        """
        if tool.name in self.tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        tool.get_definition().to_dict()
        self.tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")
        return self

    def register_all(self, tools: Iterable[BaseTool]) -> "ToolRegistry":
        for tool in tools:
            self.register(tool)
        return self

    def get(self, name: str) -> Optional[BaseTool]:
        """Get a tool by name."""
        return self.tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self.tools

    def __len__(self) -> int:
        return len(self.tools)

    def list_tools(self) -> List[BaseTool]:
        """All registered tools, sorted by name."""
        return [self.tools[name] for name in sorted(self.tools)]

    def schema_list(self) -> List[dict]:
        """MCP tool definitions for every registered tool, sorted by name."""
        return [tool.get_definition().to_dict() for tool in self.list_tools()]

    def execute(self, tool: BaseTool, arguments: Dict[str, Any]) -> ToolResult:
        """Run a tool body. Exceptions raised by the body propagate."""
        return tool.execute(arguments)

    def invoke(self, name: str, arguments: Any) -> ToolResult:
        """Look up, validate and execute a tool by name."""
        tool = self.get(name)
        if tool is None:
            return ToolResult.failure(f"Tool not found: {name}")

        if not tool.validate_arguments(arguments):
            required = [p.name for p in tool.parameters if p.required]
            message = f"Invalid arguments for tool '{name}'"
            if required:
                message += f": required parameters are {', '.join(required)}"
            return ToolResult.failure(message)

        return self.execute(tool, arguments)


def create_default_registry() -> ToolRegistry:
    """Create a registry holding the built-in tools."""
    return ToolRegistry().register(AddTool())
