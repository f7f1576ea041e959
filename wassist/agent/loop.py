"""Bounded function-calling conversation between a request and the chat model.

Each iteration is one model turn. A turn without tool calls ends the loop
with its text; otherwise the requested tools run and their results are fed
back as tool messages. Running out of iterations or time ends the loop with
a failed :class:`AgentResult`, never with an exception.
"""

import asyncio
import json
import logging
from typing import Any, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from wassist.agent.context import ExecutionContext
from wassist.agent.executor import ToolCallRequest, ToolExecutor, ToolScope
from wassist.agent.history import HistoryMessage
from wassist.agent.result import AgentResult
from wassist.agent.tool import Authorizations, ToolName, ToolRegistry
from wassist.tracer import trace_llm

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 8
EXHAUSTED_ERROR = "I couldn't complete the request within the allowed number of steps."
TIMEOUT_ERROR = "The request took too long and was stopped."
DEFAULT_COMPLETION_TEXT = "Done."


def message_text(message: BaseMessage) -> str:
    """Plain text of a model message, whether its content is a string or blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def history_messages(history: Sequence[HistoryMessage]) -> list[BaseMessage]:
    return [
        HumanMessage(content=m.content) if m.role == "user" else AIMessage(content=m.content)
        for m in history
    ]


class AgentLoop:
    def __init__(
            self,
            chat_llm: BaseChatModel,
            registry: ToolRegistry,
            executor: ToolExecutor | None = None,
            max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ):
        self.chat_llm = chat_llm
        self.registry = registry
        self.executor = executor or ToolExecutor(registry)
        self.max_iterations = max_iterations

    async def run(
            self,
            prompt: str,
            context: ExecutionContext,
            system_instruction: str,
            history: Sequence[HistoryMessage] = (),
            tools: Sequence[ToolName] | None = None,
            expected_tool: ToolName | None = None,
            authorizations: Authorizations | None = None,
            max_iterations: int | None = None,
            scope: ToolScope | None = None,
    ) -> AgentResult:
        """Drive the conversation until a final answer or the iteration budget runs out.

        Args:
            prompt: The user's request, or a step prompt in a multi-step plan.
            context: Execution context shared with the caller; tool calls are
                     recorded into it as they happen.
            system_instruction: Rendered system prompt.
            history: Prior chat messages, oldest first, starting with a user turn.
            tools: Tools offered to the model. None offers every bound tool, an
                   empty sequence offers none.
            expected_tool: When set, calls to any other tool are rejected.
            authorizations: Permissions of the sender.
            max_iterations: Overrides the loop's default budget.
            scope: Tool bookkeeping to fill instead of a fresh one built from
                   *expected_tool* and *authorizations*; lets the caller
                   inspect the outputs afterwards.
        """
        budget = max_iterations or self.max_iterations
        tool_defs = self.registry.function_defs(tools)
        model = self.chat_llm.bind_tools(tool_defs) if tool_defs else self.chat_llm
        if scope is None:
            scope = ToolScope(
                authorizations=authorizations or Authorizations(),
                expected_tool=expected_tool,
                first_call_index=len(context.tool_calls),
            )
        messages: list[BaseMessage] = [
            SystemMessage(content=system_instruction),
            *history_messages(history),
            HumanMessage(content=prompt),
        ]

        for iteration in range(1, budget + 1):
            response = await self._model_turn(model, messages)
            messages.append(response)

            if not response.tool_calls:
                if response.invalid_tool_calls:
                    logger.warning(f"Model produced {len(response.invalid_tool_calls)} unparsable tool call(s)")
                    messages.append(HumanMessage(
                        content="Your last tool call had invalid JSON arguments. Try again with valid arguments.",
                    ))
                    continue
                logger.info(f"Agent loop finished after {iteration} iteration(s)")
                return self._final_result(message_text(response), context, iteration)

            requests = [
                ToolCallRequest(name=call["name"], args=dict(call.get("args") or {}), id=call.get("id"))
                for call in response.tool_calls
            ]
            logger.info(f"Iteration {iteration}: model requested {', '.join(r.name for r in requests)}")
            outputs = await self.executor.execute_batch(requests, context, scope)
            for request, output in zip(requests, outputs):
                messages.append(ToolMessage(
                    content=json.dumps(output.to_payload(), ensure_ascii=False, default=str),
                    tool_call_id=request.id or request.name,
                    name=request.name,
                    status="success" if output.success else "error",
                ))

        logger.warning(f"Agent loop exhausted {budget} iteration(s) without a final answer")
        return AgentResult.from_context(
            context,
            success=False,
            error=EXHAUSTED_ERROR,
            iterations=budget,
        )

    @trace_llm("agent_turn")
    async def _model_turn(self, model: Any, messages: list[BaseMessage]) -> AIMessage:
        response = await model.ainvoke(messages)
        assert isinstance(response, AIMessage), f"Expected AIMessage, got {type(response)}"
        return response

    async def run_with_timeout(
            self,
            prompt: str,
            context: ExecutionContext,
            system_instruction: str,
            *,
            timeout_s: float,
            **kwargs: Any,
    ) -> AgentResult:
        """Run the loop under a wall-clock budget.

        On expiry the in-flight model or tool await is cancelled, and the
        result carries whatever the context accumulated until then.
        """
        try:
            return await asyncio.wait_for(
                self.run(prompt, context, system_instruction, **kwargs),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Agent loop timed out after {timeout_s}s with {len(context.tool_calls)} tool call(s)")
            return AgentResult.from_context(context, success=False, timeout=True, error=TIMEOUT_ERROR)

    @staticmethod
    def _final_result(text: str, context: ExecutionContext, iterations: int) -> AgentResult:
        text = text.strip()
        if not text:
            text = "" if not context.generated_assets.is_empty() else DEFAULT_COMPLETION_TEXT
        return AgentResult.from_context(context, success=True, text=text, iterations=iterations)
