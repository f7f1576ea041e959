from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from .catalog import TOOL_DECLARATIONS, ToolDeclaration, ToolName
from .types import FailureKind, ToolError, ToolResult, output_from_payload

if TYPE_CHECKING:
    from wassist.agent.context import ExecutionContext


class BaseTool(ABC):
    """Abstract base class for all tools"""

    @property
    @abstractmethod
    def tool_name(self) -> ToolName:
        """Registry identifier of the tool"""
        pass

    @property
    def name(self) -> str:
        return self.tool_name.value

    @property
    def declaration(self) -> ToolDeclaration:
        return TOOL_DECLARATIONS[self.tool_name]

    @property
    def description(self) -> str:
        return self.declaration.description

    @staticmethod
    def result(result: str = "", **data: Any) -> ToolResult:
        return ToolResult(result=result, data=data)

    @staticmethod
    def error(error_message: str, kind: FailureKind = FailureKind.TOOL_ERROR) -> ToolError:
        """Create a ToolError output with the given error message"""
        return ToolError(error_message=error_message, kind=kind)


class SchematicTool(BaseTool):
    """Tool with structured input schema support"""

    @property
    def input_schema(self) -> dict[str, Any]:
        return self.declaration.input_schema

    @abstractmethod
    async def call(self, context: 'ExecutionContext', **kwargs) -> ToolResult | ToolError:
        """Execute the tool with provided parameters"""
        raise NotImplementedError("SchematicTool subclasses must implement the call method")


ToolHandler = Callable[[dict[str, Any], 'ExecutionContext'], Awaitable[Any]]


class FunctionTool(SchematicTool):
    """Binds an external provider call to a declared tool.

    The handler follows the provider contract ``invoke(args) -> {success, ...}
    | {error}``; its dict result is translated into a ToolOutput.
    """

    def __init__(self, tool_name: ToolName, handler: ToolHandler):
        self._tool_name = tool_name
        self._handler = handler

    @property
    def tool_name(self) -> ToolName:
        return self._tool_name

    async def call(self, context: 'ExecutionContext', **kwargs) -> ToolResult | ToolError:
        payload = await self._handler(dict(kwargs), context)
        return output_from_payload(payload)
