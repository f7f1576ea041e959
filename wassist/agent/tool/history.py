from typing import TYPE_CHECKING

from wassist.agent.history import ChatHistory
from .base import SchematicTool
from .catalog import ToolName
from .types import ToolError, ToolResult

if TYPE_CHECKING:
    from wassist.agent.context import ExecutionContext


class ChatHistoryTool(SchematicTool):
    """Lets the model read the recent conversation on demand."""

    DEFAULT_LIMIT = 20
    MAX_LIMIT = 100

    def __init__(self, history: ChatHistory):
        self.history = history

    @property
    def tool_name(self) -> ToolName:
        return ToolName.GET_CHAT_HISTORY

    async def call(self, context: 'ExecutionContext', **kwargs) -> ToolResult | ToolError:
        try:
            limit = int(kwargs.get('limit') or self.DEFAULT_LIMIT)
        except (TypeError, ValueError):
            return self.error(f"Invalid limit: {kwargs.get('limit')!r}")
        limit = max(1, min(limit, self.MAX_LIMIT))

        messages = await self.history.get_recent_messages(context.chat_id, limit)
        if not messages:
            return self.result("No previous messages in this chat.", messages=[])
        lines = [f"[{m.role}] {m.content}" for m in messages]
        return self.result(
            "\n".join(lines),
            messages=[{"role": m.role, "content": m.content} for m in messages],
        )
