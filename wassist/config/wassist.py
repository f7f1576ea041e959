from pydantic import BaseModel, Field
from typing_extensions import Annotated

from .agent import AgentConfig, StorageConfig
from .llm import ChatConfig


class WassistConfig(BaseModel):
    chat_llm: Annotated[ChatConfig, Field(
        description="Chat model driving the agent loop",
    )]
    planner_llm: Annotated[ChatConfig | None, Field(
        description="Fast model used for the planning call, defaults to chat_llm",
        default=None,
    )]
    agent: Annotated[AgentConfig, Field(
        description="Iteration, timeout and memory budgets of the agent",
        default_factory=AgentConfig,
    )]
    storage: Annotated[StorageConfig, Field(
        description="Where execution contexts and last commands are persisted",
        default_factory=StorageConfig,
    )]
    language: Annotated[str | None, Field(
        description="Default response language code, e.g. 'en' or 'he'",
        default=None,
    )]
    trace_dir: Annotated[str | None, Field(
        description="Directory for YAML trace exports, None disables export",
        default=None,
    )]
