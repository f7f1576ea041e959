"""The per-chat "last command" record backing the retry feature."""

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from typing_extensions import Annotated

from wassist.agent.result import AgentResult
from wassist.agent.store import RecordStore
from wassist.agent.tool import NON_PERSISTED_TOOLS, ToolName

logger = logging.getLogger(__name__)

MULTI_STEP_COMMAND = "multi_step"


class LastCommand(BaseModel):
    tool: Annotated[str, Field(description="Tool name, or 'multi_step' for a whole plan")]
    args: dict[str, Any] = Field(default_factory=dict)
    normalized: Annotated[dict[str, Any] | None, Field(
        description="The normalized inbound message the command was run for",
        default=None,
    )]
    prompt: str | None = None
    failed: bool = False
    image_url: str | None = None
    video_url: str | None = None
    audio_url: str | None = None
    is_multi_step: bool = False
    plan: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


class LastCommandRecorder:
    """Saves the command worth retrying after each agent query."""

    def __init__(self, store: RecordStore[LastCommand] | None):
        self.store = store

    @staticmethod
    def command_for(
            result: AgentResult,
            prompt: str,
            normalized: dict[str, Any] | None = None,
            image_url: str | None = None,
            video_url: str | None = None,
            audio_url: str | None = None,
    ) -> LastCommand | None:
        """Build the record for *result*, or None when nothing is worth retrying."""
        media = dict(image_url=image_url, video_url=video_url, audio_url=audio_url)
        if result.multi_step:
            return LastCommand(
                tool=MULTI_STEP_COMMAND,
                args={"prompt": prompt},
                normalized=normalized,
                prompt=prompt,
                failed=not result.success,
                is_multi_step=True,
                plan=result.plan,
                **media,
            )
        for call in reversed(result.tool_calls):
            if ToolName.parse(call.tool) in NON_PERSISTED_TOOLS:
                continue
            return LastCommand(
                tool=call.tool,
                args=dict(call.args),
                normalized=normalized,
                prompt=prompt,
                failed=not call.success,
                **media,
            )
        return None

    async def record(self, chat_id: str, result: AgentResult, prompt: str, is_retry: bool = False, **kwargs: Any) -> None:
        """Persist the last command of *result*; failures are logged and swallowed."""
        if self.store is None:
            return
        if is_retry:
            logger.debug(f"Not overwriting last command of {chat_id} with a retry execution")
            return
        command = self.command_for(result, prompt, **kwargs)
        if command is None:
            return
        try:
            await self.store.set(chat_id, command)
        except Exception:
            logger.exception(f"Failed to save last command for {chat_id}")
            return
        logger.info(f"Saved last command '{command.tool}' for {chat_id}")
