"""Tool subpackage: the closed tool catalog, tool abstractions and the registry.

- ToolName / TOOL_DECLARATIONS: identifiers and declared input contracts
- BaseTool, SchematicTool, FunctionTool: tool interfaces
- ToolRegistry: read-only lookup consumed by the agent loop and multi-step executor
"""

from .base import BaseTool, FunctionTool, SchematicTool, ToolHandler
from .catalog import (
    NON_PERSISTED_TOOLS,
    SINGLE_SUCCESS_TOOLS,
    TOOL_DECLARATIONS,
    Authorization,
    Authorizations,
    ToolCategory,
    ToolDeclaration,
    ToolName,
)
from .history import ChatHistoryTool
from .registry import ToolRegistry
from .types import (
    FATAL_FAILURE_KINDS,
    FailureKind,
    ToolError,
    ToolOutput,
    ToolOutputType,
    ToolResult,
    output_from_payload,
    validate_tool_output,
)

__all__ = [
    "BaseTool",
    "SchematicTool",
    "FunctionTool",
    "ToolHandler",
    "ChatHistoryTool",
    "ToolRegistry",

    "ToolName",
    "ToolCategory",
    "ToolDeclaration",
    "Authorization",
    "Authorizations",
    "TOOL_DECLARATIONS",
    "NON_PERSISTED_TOOLS",
    "SINGLE_SUCCESS_TOOLS",

    "FATAL_FAILURE_KINDS",
    "FailureKind",
    "ToolOutput",
    "ToolOutputType",
    "ToolResult",
    "ToolError",
    "output_from_payload",
    "validate_tool_output",
]
