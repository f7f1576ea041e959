import logging
from typing import Any, Optional
from uuid import UUID

from langchain_core.callbacks import AsyncCallbackHandler
from langchain_core.messages import AIMessage, BaseMessage, ToolMessage
from langchain_core.outputs import LLMResult

from wassist.tracer.context import get_current_span
from wassist.tracer.span import Span, SpanKind

logger = logging.getLogger(__name__)


def _serialize_tool_calls(msg: AIMessage) -> list[dict[str, Any]]:
    return [
        {"name": tc["name"], "args": tc["args"], "id": tc.get("id")}
        for tc in msg.tool_calls
    ]


def _serialize_messages(messages: list[list[BaseMessage]]) -> list[dict[str, Any]]:
    """Convert LangChain messages into plain dicts, keeping tool-call linkage."""
    result: list[dict[str, Any]] = []
    for batch in messages:
        for msg in batch:
            entry: dict[str, Any] = {"role": msg.type, "content": str(msg.content)}
            if isinstance(msg, AIMessage) and msg.tool_calls:
                entry["tool_calls"] = _serialize_tool_calls(msg)
            if isinstance(msg, ToolMessage):
                entry["tool_call_id"] = msg.tool_call_id
                if msg.name:
                    entry["name"] = msg.name
            result.append(entry)
    return result


class TracerCallbackHandler(AsyncCallbackHandler):
    """Attaches LLM request/response data to the active span.

    Model calls made outside any span (or outside an ``LLM_CALL`` / ``PLAN``
    span) are ignored.
    """

    TRACED_KINDS = (SpanKind.LLM_CALL, SpanKind.PLAN)

    def __init__(self) -> None:
        super().__init__()
        self._run_spans: dict[UUID, Span] = {}

    async def on_chat_model_start(
        self,
        serialized: dict[str, Any],
        messages: list[list[BaseMessage]],
        *,
        run_id: UUID,
        parent_run_id: Optional[UUID] = None,
        tags: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        span = get_current_span()
        if span is None or span.kind not in self.TRACED_KINDS:
            return

        self._run_spans[run_id] = span
        invocation_params = kwargs.get("invocation_params") or {}
        span.set_attribute("model", invocation_params.get("model_name") or (serialized or {}).get("name"))

        request_data: dict[str, Any] = {"messages": _serialize_messages(messages)}
        tools = invocation_params.get("tools") or []
        if tools:
            request_data["tools"] = [t.get("function", {}).get("name", "unknown") for t in tools]
        span.set_attribute("request", request_data)

    async def on_llm_end(
        self,
        response: LLMResult,
        *,
        run_id: UUID,
        parent_run_id: Optional[UUID] = None,
        **kwargs: Any,
    ) -> None:
        span = self._run_spans.pop(run_id, None)
        if span is None:
            return

        msg = None
        content = ""
        if response.generations and response.generations[0]:
            gen = response.generations[0][0]
            content = gen.text or ""
            msg = getattr(gen, "message", None)
            if msg is not None:
                content = str(msg.content)

        response_data: dict[str, Any] = {"content": content}
        if isinstance(msg, AIMessage) and msg.tool_calls:
            response_data["tool_calls"] = _serialize_tool_calls(msg)
        span.set_attribute("response", response_data)

        usage = getattr(msg, "usage_metadata", None)
        if usage:
            span.set_attribute("token_usage", {
                "prompt_tokens": usage.get("input_tokens"),
                "completion_tokens": usage.get("output_tokens"),
                "total_tokens": usage.get("total_tokens"),
            })

    async def on_llm_error(
        self,
        error: BaseException,
        *,
        run_id: UUID,
        parent_run_id: Optional[UUID] = None,
        **kwargs: Any,
    ) -> None:
        span = self._run_spans.pop(run_id, None)
        if span is None:
            return
        span.fail(error)
