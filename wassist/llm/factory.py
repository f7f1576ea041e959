from langchain_core.language_models import BaseChatModel

from wassist.config.llm import AzureOpenAIChatConfig, ChatConfig, OpenAIChatConfig
from wassist.exceptions import NoChatLLMConfigError
from wassist.tracer import get_active_tracer
from .chat import OpenAIChatModel


class ChatLLMFactory:
    @classmethod
    def build(cls, config: ChatConfig) -> BaseChatModel:
        # Attach the tracer callback so LLM spans record request/response data.
        tracer = get_active_tracer()
        callbacks = [tracer.callback_handler] if tracer is not None else None
        if isinstance(config, AzureOpenAIChatConfig | OpenAIChatConfig):
            return OpenAIChatModel.from_config(config, callbacks=callbacks)
        raise NoChatLLMConfigError(f'Unexpected Config: {config}')

