"""Per-chat execution context and its lifecycle.

A context is created fresh for every agent query. When context memory is
enabled it is hydrated from, and saved back to, a :class:`RecordStore`
keyed by chat id.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from typing_extensions import Annotated

from wassist.agent.store import RecordStore
from wassist.agent.tool.types import FailureKind

logger = logging.getLogger(__name__)


class ToolCallRecord(BaseModel):
    """One invocation made during a turn, successful or not."""
    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    success: bool
    summary: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


class GeneratedAssets(BaseModel):
    images: list[dict[str, Any]] = Field(default_factory=list)
    videos: list[dict[str, Any]] = Field(default_factory=list)
    audio: list[dict[str, Any]] = Field(default_factory=list)
    polls: list[dict[str, Any]] = Field(default_factory=list)

    def merged_after(self, earlier: 'GeneratedAssets') -> 'GeneratedAssets':
        return GeneratedAssets(
            images=earlier.images + self.images,
            videos=earlier.videos + self.videos,
            audio=earlier.audio + self.audio,
            polls=earlier.polls + self.polls,
        )

    def latest(self, kind: str) -> dict[str, Any] | None:
        items = getattr(self, kind)
        return items[-1] if items else None

    def is_empty(self) -> bool:
        return not (self.images or self.videos or self.audio or self.polls)


class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepResult(BaseModel):
    """Outcome of one multi-step plan step, referenced by later steps."""
    step_number: int
    tool: str | None = None
    action: str = ""
    status: StepStatus
    text: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    failure_kind: FailureKind | None = None
    tools_used: list[str] = Field(default_factory=list)
    iterations: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCESS

    def primary_output(self) -> Any:
        """The value a bare ``{{stepN}}`` placeholder stands for."""
        for key in ("imageUrl", "videoUrl", "audioUrl", "url"):
            if self.data.get(key):
                return self.data[key]
        if self.text:
            return self.text
        return self.data.get("result")

    def summary(self, limit: int = 200) -> str:
        parts = [f"Step {self.step_number}:"]
        if self.status != StepStatus.SUCCESS:
            parts.append(f"[{self.status.value}] {self.error or ''}".rstrip())
        elif self.text:
            parts.append(self.text[:limit])
        if self.data.get("imageUrl"):
            parts.append("[Created image]")
        if self.data.get("videoUrl"):
            parts.append("[Created video]")
        if self.data.get("audioUrl"):
            parts.append("[Created audio]")
        if isinstance(self.data.get("poll"), dict):
            parts.append(f'[Created poll: "{self.data["poll"].get("question", "")}"]')
        return " ".join(parts)


class ExecutionContext(BaseModel):
    """Accumulated state of one or more agent turns for a chat."""

    chat_id: str
    tool_calls: Annotated[list[ToolCallRecord], Field(
        description="Append-only log of invocations",
        default_factory=list,
    )]
    previous_tool_results: Annotated[dict[str, Any], Field(
        description="Latest result payload per tool name",
        default_factory=dict,
    )]
    step_results: Annotated[dict[int, StepResult], Field(
        description="Results of multi-step plan steps keyed by step number",
        default_factory=dict,
    )]
    generated_assets: GeneratedAssets = Field(default_factory=GeneratedAssets)
    last_command: dict[str, Any] | None = None
    original_input: dict[str, Any] | None = None
    quoted_context: dict[str, Any] | None = None
    audio_url: str | None = None
    suppress_final_response: bool = False
    expected_media_type: str | None = None
    updated_at: datetime = Field(default_factory=datetime.now)

    def record_call(self, tool: str, args: dict[str, Any], success: bool, summary: str | None = None) -> None:
        self.tool_calls.append(ToolCallRecord(tool=tool, args=args, success=success, summary=summary))

    def has_identical_call(self, tool: str, args: dict[str, Any], since: int = 0) -> bool:
        return any(c.tool == tool and c.args == args for c in self.tool_calls[since:])

    def tools_used(self) -> list[str]:
        return list(self.previous_tool_results)


class ContextManager:
    """Creates, hydrates and persists :class:`ExecutionContext` objects."""

    def __init__(self, store: RecordStore[ExecutionContext] | None = None, enabled: bool = False):
        self.store = store
        self.enabled = enabled

    @staticmethod
    def create_initial_context(chat_id: str, options: Any = None) -> ExecutionContext:
        """Build a fresh context; pure, never touches storage."""
        context = ExecutionContext(chat_id=chat_id)
        if options is None:
            return context
        context.last_command = getattr(options, "last_command", None)
        context.original_input = getattr(options, "original_input", None)
        context.quoted_context = getattr(options, "quoted_context", None)
        context.audio_url = getattr(options, "audio_url", None)
        context.suppress_final_response = bool(getattr(options, "suppress_final_response", False))
        context.expected_media_type = getattr(options, "expected_media_type", None)
        return context

    async def load_previous_context(
            self,
            chat_id: str,
            context: ExecutionContext,
            enabled: bool | None = None,
    ) -> ExecutionContext:
        """Merge the stored context into *context*; fresh values win on conflict."""
        if not self._enabled(enabled):
            return context
        try:
            stored = await self.store.get(chat_id)
        except Exception:
            logger.exception(f"Failed to load execution context for {chat_id}, starting fresh")
            return context
        if stored is None:
            return context

        logger.debug(f"Loaded previous context for {chat_id}: {len(stored.tool_calls)} tool call(s)")
        fresh_scalars = {
            key: value
            for key, value in context.model_dump(
                include={"last_command", "original_input", "quoted_context", "audio_url", "expected_media_type"},
            ).items()
            if value is not None
        }
        stored_scalars = stored.model_dump(
            include={"last_command", "original_input", "quoted_context", "audio_url", "expected_media_type"},
        )
        return ExecutionContext(
            chat_id=chat_id,
            tool_calls=[*stored.tool_calls, *context.tool_calls],
            previous_tool_results={**stored.previous_tool_results, **context.previous_tool_results},
            step_results=dict(context.step_results),
            generated_assets=context.generated_assets.merged_after(stored.generated_assets),
            suppress_final_response=context.suppress_final_response,
            **{**stored_scalars, **fresh_scalars},
        )

    async def save_context(self, chat_id: str, context: ExecutionContext, enabled: bool | None = None) -> None:
        """Persist *context*; failures are logged and never propagate."""
        if not self._enabled(enabled):
            return
        context.updated_at = datetime.now()
        try:
            await self.store.set(chat_id, context)
        except Exception:
            logger.exception(f"Failed to save execution context for {chat_id}")

    def _enabled(self, enabled: bool | None) -> bool:
        flag = self.enabled if enabled is None else enabled
        return flag and self.store is not None
