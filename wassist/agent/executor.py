"""Invocation of registry tools on behalf of the agent loop and plan steps.

Every invocation goes through :meth:`ToolExecutor.invoke`, which enforces
authorization, contains exceptions, records the call on the execution context
and tracks generated media. Batches requested in one model turn are filtered
for unknown, disallowed and duplicate calls first; the returned outputs line
up with the requested calls one-to-one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from wassist.agent.channel import AckChannel
from wassist.agent.context import ExecutionContext
from wassist.agent.tool import (
    SINGLE_SUCCESS_TOOLS,
    Authorizations,
    FailureKind,
    ToolError,
    ToolName,
    ToolRegistry,
    ToolResult,
)
from wassist.tracer import trace_tool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool call as requested by the model."""
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass
class ToolScope:
    """Per-loop rules and bookkeeping for tool invocations."""
    authorizations: Authorizations = field(default_factory=Authorizations)
    expected_tool: ToolName | None = None
    # Index into ``context.tool_calls`` where this run's calls start.
    first_call_index: int = 0
    acked: set[str] = field(default_factory=set)
    # Latest output per tool among the calls that actually ran.
    results: dict[ToolName, ToolResult] = field(default_factory=dict)
    errors: dict[ToolName, ToolError] = field(default_factory=dict)


class ToolExecutor:
    def __init__(self, registry: ToolRegistry, ack_channel: AckChannel | None = None):
        self.registry = registry
        self.ack_channel = ack_channel

    async def execute_batch(
            self,
            calls: list[ToolCallRequest],
            context: ExecutionContext,
            scope: ToolScope,
    ) -> list[ToolResult | ToolError]:
        """Run the calls of one model turn; outputs follow request order."""
        outputs: list[ToolResult | ToolError | None] = [None] * len(calls)
        runnable: list[tuple[int, ToolName, ToolCallRequest]] = []
        for idx, call in enumerate(calls):
            name, rejection = self._admit(call, context, scope)
            if rejection is not None:
                outputs[idx] = rejection
            else:
                runnable.append((idx, name, call))

        if runnable:
            await self._send_acks(context.chat_id, [(name, call) for _, name, call in runnable], scope)
            results = await asyncio.gather(*(
                self.invoke(name.value, call.args, context, scope) for _, name, call in runnable
            ))
            for (idx, _, _), result in zip(runnable, results):
                outputs[idx] = result

        succeeded = sum(1 for o in outputs if o is not None and o.success)
        logger.debug(f"Batch of {len(calls)} call(s): {succeeded} succeeded, {len(calls) - succeeded} failed")
        return [o for o in outputs if o is not None]

    def _admit(
            self,
            call: ToolCallRequest,
            context: ExecutionContext,
            scope: ToolScope,
    ) -> tuple[ToolName | None, ToolError | None]:
        name = ToolName.parse(call.name)
        if name is None:
            logger.warning(f"Model requested unknown tool: {call.name}")
            return None, ToolError(error_message=f"Unknown tool: {call.name}", kind=FailureKind.UNKNOWN_TOOL)
        if name not in self.registry:
            logger.warning(f"Model requested unavailable tool: {call.name}")
            return None, ToolError(
                error_message=f"Tool {call.name} is not available right now",
                kind=FailureKind.UNAVAILABLE_TOOL,
            )
        if scope.expected_tool is not None and name != scope.expected_tool:
            logger.warning(f"Blocked {name.value}, this step may only use {scope.expected_tool.value}")
            return None, ToolError(
                error_message=f"Only {scope.expected_tool.value} may be used for this step",
                kind=FailureKind.UNEXPECTED_TOOL,
            )
        if name in SINGLE_SUCCESS_TOOLS and name in scope.results:
            logger.warning(f"Blocked repeated {name.value}, it already succeeded in this run")
            return None, ToolError(
                error_message=f"{name.value} already succeeded for this request. Do not repeat it.",
                kind=FailureKind.DUPLICATE,
            )
        declaration = self.registry.declaration(name)
        if not declaration.stochastic and context.has_identical_call(name.value, call.args, scope.first_call_index):
            logger.warning(f"Blocked duplicate call to {name.value} with identical args")
            return None, ToolError(
                error_message="Duplicate tool call blocked. You already executed this tool with these exact arguments.",
                kind=FailureKind.DUPLICATE,
            )
        return name, None

    async def _send_acks(self, chat_id: str, calls: list[tuple[ToolName, ToolCallRequest]], scope: ToolScope) -> None:
        if self.ack_channel is None:
            return
        pending = [(name.value, call.args) for name, call in calls if name.value not in scope.acked]
        if not pending:
            return
        try:
            await self.ack_channel.send_ack(chat_id, pending)
        except Exception:
            logger.exception(f"Failed to send tool acknowledgement to {chat_id}")
        scope.acked.update(name for name, _ in pending)

    @trace_tool()
    async def invoke(
            self,
            tool_name: str,
            args: dict[str, Any],
            context: ExecutionContext,
            scope: ToolScope | None = None,
    ) -> ToolResult | ToolError:
        """Invoke a bound tool and record the outcome on *context*."""
        scope = scope or ToolScope()
        name = ToolName(tool_name)
        tool = self.registry.get(name)
        declaration = self.registry.declaration(name)

        if not scope.authorizations.allows(declaration.authorization):
            logger.warning(f"{tool_name} requires {declaration.authorization.value}, which the sender lacks")
            output: ToolResult | ToolError = ToolError(
                error_message=f"You are not authorized to use {tool_name}",
                kind=FailureKind.AUTHORIZATION,
            )
        elif missing := declaration.missing_arguments(args):
            output = ToolError(
                error_message=f"Missing required argument(s) for {tool_name}: {', '.join(missing)}",
                kind=FailureKind.INVALID_ARGUMENTS,
            )
        else:
            logger.info(f"Executing tool {tool_name}")
            logger.debug(f"{tool_name} args: {args}")
            try:
                output = await tool.call(context, **args)
            except Exception as e:
                logger.exception(f"Tool {tool_name} raised")
                output = ToolError(error_message=f"Tool execution failed: {e}", kind=FailureKind.EXCEPTION)

        self._record(name, args, output, context, scope)
        return output

    @staticmethod
    def _record(
            name: ToolName,
            args: dict[str, Any],
            output: ToolResult | ToolError,
            context: ExecutionContext,
            scope: ToolScope,
    ) -> None:
        payload = output.to_payload()
        context.previous_tool_results[name.value] = payload
        if isinstance(output, ToolError):
            context.record_call(name.value, args, False, output.error_message)
            scope.errors[name] = output
            logger.info(f"Tool {name.value} failed: {output.error_message}")
            return
        context.record_call(name.value, args, True, output.result[:200] or None)
        scope.results[name] = output
        track_assets(name, output, context)


def track_assets(name: ToolName, output: ToolResult, context: ExecutionContext) -> None:
    """Append media produced by a successful tool to the context's assets."""
    data = output.data
    assets = context.generated_assets
    if data.get("imageUrl"):
        assets.images.append({"url": data["imageUrl"], "caption": data.get("caption", ""), "tool": name.value})
    if data.get("videoUrl"):
        assets.videos.append({"url": data["videoUrl"], "caption": data.get("caption", ""), "tool": name.value})
    if data.get("audioUrl"):
        assets.audio.append({"url": data["audioUrl"], "tool": name.value})
    if isinstance(data.get("poll"), dict):
        assets.polls.append(dict(data["poll"]))
