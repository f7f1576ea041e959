"""Tests for chat model configuration and the OpenAI chat adapter."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from langchain_core.messages import HumanMessage
from pydantic import TypeAdapter, ValidationError
from pyaml_env import parse_config

from wassist.config.llm import AzureOpenAIChatConfig, ChatConfig, OpenAIChatConfig
from wassist.config.wassist import WassistConfig
from wassist.llm.chat import OpenAIChatModel

SEARCH_TOOL = {
    "type": "function",
    "function": {
        "name": "search_web",
        "description": "Search the web",
        "parameters": {"type": "object", "properties": {"query": {"type": "string"}}, "required": ["query"]},
    },
}


def completion(content: str = "", tool_calls: list | None = None, usage: tuple[int, int] | None = None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    usage_ns = None
    if usage is not None:
        usage_ns = SimpleNamespace(prompt_tokens=usage[0], completion_tokens=usage[1], total_tokens=sum(usage))
    return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=usage_ns)


def function_call(name: str, arguments: str, call_id: str):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def model_with(response) -> tuple[OpenAIChatModel, AsyncMock]:
    create = AsyncMock(return_value=response)
    client = Mock()
    client.chat.completions.create = create
    config = OpenAIChatConfig(type="openai", model="gpt-4o-mini", api_key="sk-test")
    model = OpenAIChatModel(
        client=client,
        model_name=config.model,
        chat_params=config.chat_params(),
        tool_params=config.tool_params(),
    )
    return model, create


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestChatConfig:
    def test_discriminated_by_type(self):
        adapter = TypeAdapter(ChatConfig)
        openai = adapter.validate_python({"type": "openai", "model": "gpt-4o", "api_key": "sk"})
        azure = adapter.validate_python({
            "type": "azure_openai", "model": "gpt-4o", "endpoint": "https://x.openai.azure.com",
            "deployment": "chat", "api_version": "2024-06-01", "api_key": "k",
        })
        assert isinstance(openai, OpenAIChatConfig)
        assert isinstance(azure, AzureOpenAIChatConfig)

    def test_api_keys_from_environment(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("AZURE_OPENAI_API_KEY", "az-env")
        assert OpenAIChatConfig(type="openai", model="m").api_key == "sk-env"
        azure = AzureOpenAIChatConfig(
            type="azure_openai", model="m", endpoint="https://e", deployment="d", api_version="v",
        )
        assert azure.api_key == "az-env"

    def test_request_params(self):
        config = OpenAIChatConfig(type="openai", model="m", api_key="k", parallel_tool_calls=False)
        assert config.chat_params() == {"max_completion_tokens": 4000, "temperature": 0.0}
        assert config.tool_params() == {"parallel_tool_calls": False}

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError):
            OpenAIChatConfig(type="openai", model="m", api_key="k", max_retries=-1)

    def test_yaml_with_environment_values(self, monkeypatch):
        monkeypatch.setenv("WASSIST_TEST_MODEL", "gpt-4o-mini")
        data = parse_config(data=(
            "chat_llm:\n"
            "  type: openai\n"
            "  model: ${WASSIST_TEST_MODEL}\n"
            "  api_key: sk-test\n"
            "agent:\n"
            "  max_iterations: 3\n"
        ), tag=None)
        config = WassistConfig.model_validate(data)
        assert config.chat_llm.model == "gpt-4o-mini"
        assert config.planner_llm is None
        assert config.agent.max_iterations == 3


# ---------------------------------------------------------------------------
# Chat adapter
# ---------------------------------------------------------------------------


class TestOpenAIChatModel:
    @pytest.mark.asyncio
    async def test_plain_completion_sends_no_tool_params(self):
        model, create = model_with(completion("hello", usage=(12, 3)))

        message = await model.ainvoke([HumanMessage(content="hi")])

        assert message.content == "hello"
        assert message.usage_metadata["total_tokens"] == 15
        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_completion_tokens"] == 4000
        assert "tools" not in kwargs
        assert "parallel_tool_calls" not in kwargs

    @pytest.mark.asyncio
    async def test_bound_tools_carry_tool_params(self):
        model, create = model_with(completion(tool_calls=[
            function_call("search_web", '{"query": "cats"}', "c1"),
        ]))

        message = await model.bind_tools([SEARCH_TOOL]).ainvoke([HumanMessage(content="search cats")])

        assert message.tool_calls == [{"name": "search_web", "args": {"query": "cats"}, "id": "c1", "type": "tool_call"}]
        kwargs = create.await_args.kwargs
        assert kwargs["tools"][0]["function"]["name"] == "search_web"
        assert kwargs["parallel_tool_calls"] is True

    @pytest.mark.asyncio
    async def test_malformed_arguments_become_invalid_tool_calls(self):
        model, _ = model_with(completion(tool_calls=[
            function_call("search_web", '{"query": ', "c1"),
            function_call("search_web", '{"query": "dogs"}', "c2"),
        ]))

        message = await model.bind_tools([SEARCH_TOOL]).ainvoke([HumanMessage(content="search")])

        assert [c["id"] for c in message.tool_calls] == ["c2"]
        assert [c["id"] for c in message.invalid_tool_calls] == ["c1"]

    @pytest.mark.asyncio
    async def test_provider_errors_propagate(self):
        model, create = model_with(None)
        create.side_effect = RuntimeError("provider 503")
        with pytest.raises(RuntimeError, match="provider 503"):
            await model.ainvoke([HumanMessage(content="hi")])

    def test_sync_invocation_unsupported(self):
        model, _ = model_with(completion("x"))
        with pytest.raises(NotImplementedError):
            model.invoke([HumanMessage(content="hi")])
