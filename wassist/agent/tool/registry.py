import logging
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from wassist.exceptions import ToolNotBoundError, ToolNotFoundError
from .base import BaseTool, FunctionTool, ToolHandler
from .catalog import TOOL_DECLARATIONS, ToolDeclaration, ToolName

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Read-only map from :class:`ToolName` to the tool bound to it.

    Every name has a declaration; only names with a bound tool are offered to
    the model. Lookups by raw string exist for names coming from an LLM.
    """

    def __init__(self, tools: Iterable[BaseTool]):
        bound: dict[ToolName, BaseTool] = {}
        for tool in tools:
            if tool.tool_name in bound:
                raise ValueError(f"Tool '{tool.name}' registered twice")
            bound[tool.tool_name] = tool
        self._tools: Mapping[ToolName, BaseTool] = MappingProxyType(bound)
        logger.debug(f"Tool registry ready with: {', '.join(t.value for t in self._tools)}")

    @classmethod
    def from_handlers(cls, handlers: Mapping[ToolName, ToolHandler], *tools: BaseTool) -> 'ToolRegistry':
        """Build a registry binding provider handlers, plus ready-made tools."""
        return cls([*tools, *(FunctionTool(name, handler) for name, handler in handlers.items())])

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[ToolName]:
        return list(self._tools)

    def get(self, name: ToolName) -> BaseTool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotBoundError(name.value)
        return tool

    def resolve(self, raw_name: str) -> ToolName:
        """Map an LLM-provided name to a bound tool name.

        Raises:
            ToolNotFoundError: the name is not a known tool.
            ToolNotBoundError: the tool is declared but has no invocation.
        """
        name = ToolName.parse(raw_name)
        if name is None:
            raise ToolNotFoundError(raw_name)
        if name not in self._tools:
            raise ToolNotBoundError(name.value)
        return name

    def lookup(self, raw_name: str) -> BaseTool | None:
        name = ToolName.parse(raw_name)
        return self._tools.get(name) if name is not None else None

    @staticmethod
    def declaration(name: ToolName) -> ToolDeclaration:
        return TOOL_DECLARATIONS[name]

    def function_defs(self, only: Iterable[ToolName] | None = None) -> list[dict[str, Any]]:
        """Function definitions of bound tools, optionally restricted to *only*."""
        names = self.names() if only is None else [n for n in only if n in self._tools]
        return [TOOL_DECLARATIONS[n].function_def() for n in names]

    def catalog(self) -> list[ToolDeclaration]:
        """Declarations of bound tools, used to describe them to the planner."""
        return [TOOL_DECLARATIONS[n] for n in self._tools]
