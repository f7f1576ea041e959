import os

from pydantic import BaseModel, Field
from typing_extensions import Annotated


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class AgentConfig(BaseModel):
    max_iterations: Annotated[int, Field(
        description="Maximum model turns of a single-step agent loop",
        default_factory=lambda: _env_int("AGENT_MAX_ITERATIONS", 8),
        ge=1,
    )]
    timeout_ms: Annotated[int, Field(
        description="Wall-clock budget of a single-step agent call, in milliseconds",
        default_factory=lambda: _env_int("AGENT_TIMEOUT_MS", 240_000),
        gt=0,
    )]
    multi_step_timeout_ms: Annotated[int, Field(
        description="Wall-clock ceiling of a whole multi-step plan, in milliseconds. "
                    "Each step additionally re-uses the single-step budget.",
        default_factory=lambda: _env_int("AGENT_MULTI_STEP_TIMEOUT_MS", 600_000),
        gt=0,
    )]
    step_max_iterations: Annotated[int, Field(
        description="Maximum model turns for a multi-step step routed through the agent loop",
        default=5,
        ge=1,
    )]
    context_memory_enabled: Annotated[bool, Field(
        description="Whether execution context is loaded from and saved to durable storage",
        default_factory=lambda: _env_flag("AGENT_CONTEXT_MEMORY_ENABLED"),
    )]
    history_limit: Annotated[int, Field(
        description="Number of recent chat messages used to seed the agent loop",
        default=20,
        ge=0,
    )]

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000

    @property
    def multi_step_timeout_s(self) -> float:
        return self.multi_step_timeout_ms / 1000


class StorageConfig(BaseModel):
    context_dir: Annotated[str | None, Field(
        description="Directory of persisted execution contexts, None keeps them in memory",
        default=None,
    )]
    last_command_dir: Annotated[str | None, Field(
        description="Directory of persisted last commands, None keeps them in memory",
        default=None,
    )]
