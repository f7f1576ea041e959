"""Tool output types shared by the agent loop and the multi-step executor.

Providers speak the dict shape ``{"success": True, ...payload}`` or
``{"success": False, "error": "..."}``; inside the core every invocation
result is a :data:`ToolOutput`.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from typing_extensions import Annotated, Literal


class ToolOutputType(str, Enum):
    """Types of tool outputs"""
    OUTPUT = "output"
    ERROR = "error"


class FailureKind(str, Enum):
    """Closed set of reasons a tool invocation or plan step can fail."""
    TOOL_ERROR = "tool_error"
    UNKNOWN_TOOL = "unknown_tool"
    UNAVAILABLE_TOOL = "unavailable_tool"
    UNEXPECTED_TOOL = "unexpected_tool"
    DUPLICATE = "duplicate"
    INVALID_ARGUMENTS = "invalid_arguments"
    UNRESOLVED_PLACEHOLDER = "unresolved_placeholder"
    AUTHORIZATION = "authorization"
    INCOMPLETE = "incomplete"
    TIMEOUT = "timeout"
    EXCEPTION = "exception"


# Failures that abort a multi-step plan; remaining steps are skipped.
FATAL_FAILURE_KINDS: frozenset[FailureKind] = frozenset({FailureKind.AUTHORIZATION})


class ToolOutputBase(BaseModel):
    """Base class for all tool outputs"""
    model_config = ConfigDict(extra="forbid")

    type: Annotated[ToolOutputType, Field(description="Type of the output")]


class ToolError(ToolOutputBase):
    """Error reported by, or on behalf of, a tool"""
    type: Literal[ToolOutputType.ERROR] = ToolOutputType.ERROR  # type: ignore
    error_message: Annotated[str, Field(description="Error message", min_length=1)]
    kind: Annotated[FailureKind, Field(description="Failure classification", default=FailureKind.TOOL_ERROR)]

    @property
    def success(self) -> bool:
        return False

    @property
    def fatal(self) -> bool:
        return self.kind in FATAL_FAILURE_KINDS

    def to_payload(self) -> dict[str, Any]:
        return {"success": False, "error": self.error_message}


class ToolResult(ToolOutputBase):
    """Successful tool output: a short text plus the provider payload"""
    type: Literal[ToolOutputType.OUTPUT] = ToolOutputType.OUTPUT  # type: ignore
    result: Annotated[str, Field(description="Human readable result", default="")]
    data: Annotated[dict[str, Any], Field(description="Structured payload, e.g. imageUrl", default_factory=dict)]

    @property
    def success(self) -> bool:
        return True

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": True, **self.data}
        if self.result:
            payload.setdefault("result", self.result)
        return payload


ToolOutput = Annotated[
    ToolResult | ToolError,
    Field(discriminator='type')
]

_TOOL_OUTPUT_ADAPTER: TypeAdapter[ToolResult | ToolError] = TypeAdapter(ToolOutput)


def validate_tool_output(data: dict) -> ToolResult | ToolError:
    """Validate and return a ToolOutput instance from raw data."""
    return _TOOL_OUTPUT_ADAPTER.validate_python(data)


def output_from_payload(payload: Any) -> ToolResult | ToolError:
    """Translate a provider's ``{success, ...} | {error}`` dict into a ToolOutput."""
    if isinstance(payload, ToolResult | ToolError):
        return payload
    if not isinstance(payload, dict):
        return ToolResult(result=str(payload) if payload is not None else "")
    error = payload.get("error")
    if payload.get("success") is False or (error and payload.get("success") is not True):
        try:
            kind = FailureKind(payload.get("kind", FailureKind.TOOL_ERROR))
        except ValueError:
            kind = FailureKind.TOOL_ERROR
        return ToolError(error_message=str(error or "Tool reported failure"), kind=kind)
    data = {k: v for k, v in payload.items() if k not in ("success", "error", "kind")}
    text = data.get("text") or data.get("result") or data.get("data") or ""
    return ToolResult(result=text if isinstance(text, str) else str(text), data=data)


__all__ = [
    "FATAL_FAILURE_KINDS",
    "FailureKind",
    "ToolOutputType",
    "ToolOutputBase",
    "ToolError",
    "ToolResult",
    "ToolOutput",
    "validate_tool_output",
    "output_from_payload",
]
