import os
from enum import Enum

from pydantic import BaseModel, Field
from typing_extensions import Annotated, Literal


class ChatLLMType(str, Enum):
    AzureOpenAI = "azure_openai"
    OpenAI = "openai"


class ChatModelConfig(BaseModel):
    """Settings shared by every chat deployment the agent can talk to."""
    model: Annotated[str, Field(
        description="Model identifier sent with every completion request",
    )]
    timeout: Annotated[float, Field(
        description="Per-request timeout in seconds; the agent loop has its own wall-clock budget on top",
        default=180.0,
    )]
    max_retries: Annotated[int, Field(
        description="Client-side retries on connection errors and 5xx responses",
        default=2,
        ge=0,
    )]
    max_completion_tokens: Annotated[int | None, Field(
        description="Upper bound on generated tokens per model turn",
        default=4000,
    )]
    temperature: Annotated[float | None, Field(
        description="Sampling temperature; planning works best close to 0",
        default=0.0,
    )]
    parallel_tool_calls: Annotated[bool, Field(
        description="Let the model request several tools in one turn; they run concurrently",
        default=True,
    )]

    def chat_params(self) -> dict:
        return {
            'max_completion_tokens': self.max_completion_tokens,
            'temperature': self.temperature,
        }

    def tool_params(self) -> dict:
        """Extra parameters for requests that offer tools to the model."""
        return {'parallel_tool_calls': self.parallel_tool_calls}


class OpenAIChatConfig(ChatModelConfig):
    type: Literal[ChatLLMType.OpenAI]
    endpoint: Annotated[str | None, Field(
        description="Base URL of an OpenAI-compatible API, None for api.openai.com",
        default=None,
    )]
    api_key: Annotated[str, Field(
        description="API key, read from OPENAI_API_KEY when omitted",
        default_factory=lambda: os.environ["OPENAI_API_KEY"],
    )]


class AzureOpenAIChatConfig(ChatModelConfig):
    type: Literal[ChatLLMType.AzureOpenAI]
    endpoint: Annotated[str, Field(
        description="Azure OpenAI resource endpoint",
    )]
    deployment: Annotated[str, Field(
        description="Deployment serving the chat model",
    )]
    api_version: Annotated[str, Field(
        description="Azure OpenAI API version",
    )]
    api_key: Annotated[str | None, Field(
        description="API key, read from AZURE_OPENAI_API_KEY when omitted",
        default_factory=lambda: os.environ.get("AZURE_OPENAI_API_KEY"),
    )]


ChatConfig = Annotated[AzureOpenAIChatConfig | OpenAIChatConfig, Field(
    description="Configuration for a chat completion model",
    discriminator="type",
)]
