"""Test doubles: a scripted chat model and provider handlers."""

import asyncio
from typing import Any, Callable

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from pydantic import Field

from wassist.agent.context import ExecutionContext


class FakeChatModel(BaseChatModel):
    """Chat model replaying scripted responses.

    A response may be an ``AIMessage``, a plain string, an exception to raise,
    or a callable receiving the 1-based turn number and returning one of those.
    With ``repeat_last`` the final response is replayed forever.
    """

    responses: list[Any] = Field(default_factory=list)
    repeat_last: bool = False
    delay: float = 0.0
    received: list[list[BaseMessage]] = Field(default_factory=list)
    bound_tools: list[list[Any]] = Field(default_factory=list)

    @property
    def _llm_type(self) -> str:
        return "fake-chat"

    def bind_tools(self, tools: Any, **kwargs: Any) -> 'FakeChatModel':
        self.bound_tools.append(list(tools))
        return self

    def _generate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        raise NotImplementedError("FakeChatModel is async only")

    async def _agenerate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        self.received.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            raise RuntimeError("No scripted response left")
        if self.repeat_last and len(self.responses) == 1:
            response = self.responses[0]
        else:
            response = self.responses.pop(0)
        if callable(response) and not isinstance(response, BaseMessage):
            response = response(len(self.received))
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            response = AIMessage(content=response)
        return ChatResult(generations=[ChatGeneration(message=response)])


def tool_call(name: str, args: dict[str, Any] | None = None, call_id: str | None = None) -> dict[str, Any]:
    return {"name": name, "args": args or {}, "id": call_id or f"call_{name}", "type": "tool_call"}


def calls_message(*calls: dict[str, Any], content: str = "") -> AIMessage:
    return AIMessage(content=content, tool_calls=list(calls))


def returning(payload: dict[str, Any], calls: list | None = None) -> Callable:
    """Async provider handler returning *payload* and recording its args."""
    async def handler(args: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
        if calls is not None:
            calls.append(dict(args))
        return dict(payload)
    return handler
