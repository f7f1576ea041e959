from typing import Any

from pydantic import BaseModel, Field, model_validator
from typing_extensions import Annotated

from wassist.agent.context import ExecutionContext, StepResult, ToolCallRecord


class AgentResult(BaseModel):
    """Terminal value of an agent query."""
    success: bool
    text: str | None = None
    error: str | None = None
    tools_used: list[str] = Field(default_factory=list)
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    tool_results: dict[str, Any] = Field(default_factory=dict)
    timeout: Annotated[bool, Field(description="The call was cut off by its wall-clock budget")] = False
    iterations: int = 0

    multi_step: bool = False
    steps_completed: int = 0
    total_steps: int = 0
    step_results: list[StepResult] = Field(default_factory=list)
    plan: dict[str, Any] | None = None

    image_url: str | None = None
    video_url: str | None = None
    audio_url: str | None = None
    poll: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _check_invariants(self) -> 'AgentResult':
        if self.timeout and self.success:
            raise ValueError("a timed out result can not be successful")
        if not self.success and not self.error:
            raise ValueError("a failed result must carry an error message")
        return self

    @classmethod
    def from_context(cls, context: ExecutionContext, **kwargs: Any) -> 'AgentResult':
        """Build a result mirroring *context*'s calls, results and latest assets."""
        assets = context.generated_assets
        image = assets.latest("images") or {}
        video = assets.latest("videos") or {}
        audio = assets.latest("audio") or {}
        values: dict[str, Any] = dict(
            tools_used=context.tools_used(),
            tool_calls=list(context.tool_calls),
            tool_results=dict(context.previous_tool_results),
            image_url=image.get("url"),
            video_url=video.get("url"),
            audio_url=audio.get("url"),
            poll=assets.latest("polls"),
        )
        values.update(kwargs)
        return cls(**values)
