import json
import logging
from typing import Any, Callable, Sequence

from langchain_core.callbacks import AsyncCallbackManagerForLLMRun, CallbackManagerForLLMRun
from langchain_core.language_models import BaseChatModel, LanguageModelInput
from langchain_core.messages import AIMessage, BaseMessage, convert_to_openai_messages
from langchain_core.outputs import ChatGeneration, ChatResult
from langchain_core.runnables import Runnable
from langchain_core.utils.function_calling import convert_to_openai_tool
from openai import AsyncAzureOpenAI, AsyncOpenAI
from pydantic import ConfigDict, Field

from wassist.config.llm import AzureOpenAIChatConfig, OpenAIChatConfig

logger = logging.getLogger(__name__)

# Type alias for OpenAI clients
AsyncOpenAIClient = AsyncAzureOpenAI | AsyncOpenAI


class OpenAIChatModel(BaseChatModel):
    """Async-only chat model over the OpenAI chat completions API.

    Supports tool binding, so the agent loop can read ``AIMessage.tool_calls``
    the same way regardless of the deployment behind it.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    client: Any = Field(exclude=True)
    model_name: str
    chat_params: dict[str, Any] = Field(default_factory=dict)
    tool_params: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_config(cls, config: AzureOpenAIChatConfig | OpenAIChatConfig, **kwargs: Any) -> 'OpenAIChatModel':
        if isinstance(config, AzureOpenAIChatConfig):
            client = AsyncAzureOpenAI(
                azure_endpoint=config.endpoint,
                azure_deployment=config.deployment,
                api_version=config.api_version,
                api_key=config.api_key,
                timeout=config.timeout,
                max_retries=config.max_retries,
            )
        else:
            client = AsyncOpenAI(
                base_url=config.endpoint,
                api_key=config.api_key,
                timeout=config.timeout,
                max_retries=config.max_retries,
            )
        return cls(
            client=client,
            model_name=config.model,
            chat_params=config.chat_params(),
            tool_params=config.tool_params(),
            **kwargs,
        )

    @property
    def _llm_type(self) -> str:
        return "openai-chat"

    @property
    def _identifying_params(self) -> dict[str, Any]:
        return {"model_name": self.model_name, **self.chat_params}

    def bind_tools(
            self,
            tools: Sequence[dict[str, Any] | type | Callable],
            *,
            tool_choice: str | None = None,
            **kwargs: Any,
    ) -> Runnable[LanguageModelInput, BaseMessage]:
        formatted = [convert_to_openai_tool(tool) for tool in tools]
        if tool_choice:
            kwargs["tool_choice"] = tool_choice
        return super().bind(tools=formatted, **{**self.tool_params, **kwargs})

    def _generate(
            self,
            messages: list[BaseMessage],
            stop: list[str] | None = None,
            run_manager: CallbackManagerForLLMRun | None = None,
            **kwargs: Any,
    ) -> ChatResult:
        raise NotImplementedError("OpenAIChatModel only supports async invocation")

    async def _agenerate(
            self,
            messages: list[BaseMessage],
            stop: list[str] | None = None,
            run_manager: AsyncCallbackManagerForLLMRun | None = None,
            **kwargs: Any,
    ) -> ChatResult:
        params = {**self.chat_params, **kwargs}
        if not params.get("tools"):
            params.pop("tools", None)
            params.pop("tool_choice", None)
            for key in self.tool_params:
                params.pop(key, None)
        if stop:
            params["stop"] = stop
        resp = await self.client.chat.completions.create(
            messages=convert_to_openai_messages(messages),
            model=self.model_name,
            **params,
        )
        choice = resp.choices[0].message
        tool_calls = []
        invalid_tool_calls = []
        for call in choice.tool_calls or []:
            try:
                args = json.loads(call.function.arguments or "{}")
                tool_calls.append({"name": call.function.name, "args": args, "id": call.id, "type": "tool_call"})
            except json.JSONDecodeError as e:
                logger.warning(f"Model returned malformed arguments for {call.function.name}: {e}")
                invalid_tool_calls.append({
                    "name": call.function.name,
                    "args": call.function.arguments,
                    "id": call.id,
                    "error": str(e),
                    "type": "invalid_tool_call",
                })

        usage_metadata = None
        if resp.usage is not None:
            usage_metadata = {
                "input_tokens": resp.usage.prompt_tokens,
                "output_tokens": resp.usage.completion_tokens,
                "total_tokens": resp.usage.total_tokens,
            }
        message = AIMessage(
            content=choice.content or "",
            tool_calls=tool_calls,
            invalid_tool_calls=invalid_tool_calls,
            usage_metadata=usage_metadata,
        )
        return ChatResult(
            generations=[ChatGeneration(message=message)],
            llm_output={"model_name": self.model_name},
        )
