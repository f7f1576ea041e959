import json
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import yaml
from langchain_core.messages import AIMessage, HumanMessage

from tests.helpers import FakeChatModel, calls_message, tool_call
from wassist.agent.context import ContextManager
from wassist.agent.factory import create_orchestrator
from wassist.agent.history import MemoryChatHistory
from wassist.agent.loop import EXHAUSTED_ERROR
from wassist.agent.orchestrator import UNEXPECTED_ERROR, AgentOptions, build_planner_input
from wassist.agent.tool import ToolName
from wassist.config.agent import AgentConfig
from wassist.tracer import Tracer, YAMLExporter

SINGLE = '{"isMultiStep": false, "reasoning": "one action"}'


def multi_plan(*steps: dict) -> str:
    return json.dumps({"isMultiStep": True, "steps": list(steps)})


@pytest.fixture
def config() -> AgentConfig:
    return AgentConfig(max_iterations=4, timeout_ms=5_000, multi_step_timeout_ms=10_000, context_memory_enabled=True)


# ---------------------------------------------------------------------------
# Planner input
# ---------------------------------------------------------------------------


class TestBuildPlannerInput:
    def test_no_media(self):
        assert build_planner_input("hello") == "hello"
        assert build_planner_input("hello", AgentOptions()) == "hello"

    def test_media_markers(self):
        assert build_planner_input("animate it", AgentOptions(image_url="u")) == "[Image attached]\nanimate it"
        assert build_planner_input("what's this", AgentOptions(video_url="u")) == "[Video attached]\nwhat's this"
        assert build_planner_input("transcribe", AgentOptions(audio_url="u")) == "[Audio attached]\ntranscribe"

    def test_image_marker_wins(self):
        options = AgentOptions(image_url="u", video_url="v", audio_url="a")
        assert build_planner_input("x", options).startswith("[Image attached]\n")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    @pytest.mark.asyncio
    async def test_single_step(self, handlers, config):
        planner_llm = FakeChatModel(responses=[SINGLE])
        chat_llm = FakeChatModel(responses=[
            calls_message(tool_call("create_image", {"prompt": "a cat"})),
            "",
        ])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=planner_llm, agent_config=config)

        result = await orchestrator.execute_agent_query("create an image of a cat", "chat-1")

        assert result.success
        assert not result.multi_step
        assert result.image_url == "https://cdn/img.png"
        assert result.iterations == 2

    @pytest.mark.asyncio
    async def test_multi_step(self, handlers, config):
        planner_llm = FakeChatModel(responses=[multi_plan(
            {"stepNumber": 1, "tool": None, "action": "Write a two line poem"},
            {"stepNumber": 2, "tool": "text_to_speech", "action": "Read it", "parameters": {"text": "{{step1}}"}},
        )])
        chat_llm = FakeChatModel(responses=["Roses are red"])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=planner_llm, agent_config=config)

        result = await orchestrator.execute_agent_query("write a poem and read it", "chat-1")

        assert result.success
        assert result.multi_step
        assert (result.steps_completed, result.total_steps) == (2, 2)
        assert result.audio_url == "https://cdn/speech.ogg"
        assert len(planner_llm.received) == 1

    @pytest.mark.asyncio
    async def test_malformed_plan_runs_single_step(self, handlers, config):
        planner_llm = FakeChatModel(responses=["Sure! I'll draw that for you."])
        chat_llm = FakeChatModel(responses=["Here you go"])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=planner_llm, agent_config=config)

        result = await orchestrator.execute_agent_query("hello there", "chat-1")

        assert result.success
        assert not result.multi_step
        assert result.text == "Here you go"

    @pytest.mark.asyncio
    async def test_one_step_plan_runs_single_step(self, handlers, config):
        planner_llm = FakeChatModel(responses=[multi_plan({"stepNumber": 1, "tool": "search_web", "action": "Search"})])
        chat_llm = FakeChatModel(responses=["Answer"])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=planner_llm, agent_config=config)

        result = await orchestrator.execute_agent_query("search cats", "chat-1")

        assert not result.multi_step
        assert result.text == "Answer"

    @pytest.mark.asyncio
    async def test_planner_sees_media_marker(self, handlers, config):
        planner_llm = FakeChatModel(responses=[SINGLE])
        chat_llm = FakeChatModel(responses=["A cat"])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=planner_llm, agent_config=config)

        await orchestrator.execute_agent_query("what is this?", "chat-1", AgentOptions(image_url="https://in/x.png"))

        assert planner_llm.received[0][-1].content == "[Image attached]\nwhat is this?"
        assert chat_llm.received[0][-1].content == "what is this?"

    @pytest.mark.asyncio
    async def test_options_override_budget(self, handlers, config):
        chat_llm = FakeChatModel(
            responses=[lambda turn: calls_message(tool_call("search_web", {"query": f"q{turn}"}))],
            repeat_last=True,
        )
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=FakeChatModel(responses=[SINGLE]),
                                           agent_config=config)

        result = await orchestrator.execute_agent_query("search forever", "chat-1", AgentOptions(max_iterations=2))

        assert not result.success
        assert result.error == EXHAUSTED_ERROR
        assert result.iterations == 2

    @pytest.mark.asyncio
    async def test_history_seeds_follow_ups(self, handlers, config):
        history = MemoryChatHistory()
        await history.add_message("chat-1", "user", "draw a dog")
        await history.add_message("chat-1", "assistant", "Here is your dog")
        chat_llm = FakeChatModel(responses=["Another dog coming"])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=FakeChatModel(responses=[SINGLE]),
                                           history=history, agent_config=config)

        await orchestrator.execute_agent_query("another one", "chat-1")

        messages = chat_llm.received[0]
        assert [type(m) for m in messages[1:]] == [HumanMessage, AIMessage, HumanMessage]
        assert ToolName.GET_CHAT_HISTORY in orchestrator.loop.registry


# ---------------------------------------------------------------------------
# Error containment
# ---------------------------------------------------------------------------


class TestErrorContainment:
    @pytest.mark.asyncio
    async def test_planner_failure_falls_back(self, handlers, config):
        planner_llm = FakeChatModel(responses=[ConnectionError("planner down")])
        chat_llm = FakeChatModel(responses=["Still here"])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=planner_llm, agent_config=config)

        result = await orchestrator.execute_agent_query("hi", "chat-1")

        assert result.success
        assert result.text == "Still here"

    @pytest.mark.asyncio
    async def test_model_failure_is_contained(self, handlers, config):
        chat_llm = FakeChatModel(responses=[RuntimeError("provider 500")])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=FakeChatModel(responses=[SINGLE]),
                                           agent_config=config)

        result = await orchestrator.execute_agent_query("hi", "chat-1")

        assert not result.success
        assert result.error == UNEXPECTED_ERROR

    @pytest.mark.asyncio
    async def test_model_failure_in_a_step_keeps_the_plan(self, handlers, config):
        planner_llm = FakeChatModel(responses=[multi_plan(
            {"stepNumber": 1, "tool": "create_image", "action": "Draw a cat", "parameters": {"prompt": "cat"}},
            {"stepNumber": 2, "tool": None, "action": "Write a caption"},
            {"stepNumber": 3, "tool": "search_web", "action": "Search", "parameters": {"query": "cats"}},
        )])
        chat_llm = FakeChatModel(responses=[RuntimeError("provider 503")])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=planner_llm, agent_config=config)

        result = await orchestrator.execute_agent_query("draw a cat, caption it and search cats", "chat-1")

        assert result.success
        assert result.multi_step
        assert (result.steps_completed, result.total_steps) == (2, 3)
        assert result.image_url == "https://cdn/img.png"
        command = await orchestrator.last_commands.store.get("chat-1")
        assert command.is_multi_step

    @pytest.mark.asyncio
    async def test_context_failure_is_contained(self, handlers, config):
        orchestrator = create_orchestrator(FakeChatModel(), handlers, planner_llm=FakeChatModel(), agent_config=config)
        orchestrator.context_manager = Mock(spec=ContextManager)
        orchestrator.context_manager.load_previous_context = AsyncMock(side_effect=RuntimeError("corrupted"))

        result = await orchestrator.execute_agent_query("hi", "chat-1")

        assert not result.success
        assert result.error == UNEXPECTED_ERROR

    @pytest.mark.asyncio
    async def test_tool_failure_is_contained(self, handlers, config):
        async def broken(args, ctx):
            raise ValueError("bad provider response")

        handlers = {**handlers, ToolName.SEARCH_WEB: broken}
        chat_llm = FakeChatModel(responses=[calls_message(tool_call("search_web", {"query": "x"})), "Search failed"])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=FakeChatModel(responses=[SINGLE]),
                                           agent_config=config)

        result = await orchestrator.execute_agent_query("search x", "chat-1")

        assert result.success
        assert result.tool_calls[0].success is False


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    @pytest.mark.asyncio
    async def test_context_saved_on_success(self, handlers, config):
        chat_llm = FakeChatModel(responses=[calls_message(tool_call("search_web", {"query": "x"})), "Found"])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=FakeChatModel(responses=[SINGLE]),
                                           agent_config=config)

        await orchestrator.execute_agent_query("search x", "chat-1")

        stored = await orchestrator.context_manager.store.get("chat-1")
        assert [c.tool for c in stored.tool_calls] == ["search_web"]

    @pytest.mark.asyncio
    async def test_context_not_saved_on_failure(self, handlers, config):
        chat_llm = FakeChatModel(
            responses=[lambda turn: calls_message(tool_call("search_web", {"query": f"q{turn}"}))],
            repeat_last=True,
        )
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=FakeChatModel(responses=[SINGLE]),
                                           agent_config=config)

        result = await orchestrator.execute_agent_query("search forever", "chat-1")

        assert not result.success
        assert await orchestrator.context_manager.store.get("chat-1") is None

    @pytest.mark.asyncio
    async def test_previous_context_is_visible(self, handlers, config):
        chat_llm = FakeChatModel(responses=[
            calls_message(tool_call("create_image", {"prompt": "dog"})), "",
            "I remember the dog",
        ])
        orchestrator = create_orchestrator(
            chat_llm, handlers, planner_llm=FakeChatModel(responses=[SINGLE], repeat_last=True), agent_config=config,
        )

        await orchestrator.execute_agent_query("draw a dog", "chat-1")
        result = await orchestrator.execute_agent_query("what did you draw?", "chat-1")

        assert result.image_url == "https://cdn/img.png"
        assert [c.tool for c in result.tool_calls] == ["create_image"]

    @pytest.mark.asyncio
    async def test_memory_can_be_disabled_per_request(self, handlers, config):
        chat_llm = FakeChatModel(responses=["ok"])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=FakeChatModel(responses=[SINGLE]),
                                           agent_config=config)

        await orchestrator.execute_agent_query("hi", "chat-1", AgentOptions(context_memory=False))

        assert await orchestrator.context_manager.store.get("chat-1") is None

    @pytest.mark.asyncio
    async def test_last_command_saved(self, handlers, config):
        chat_llm = FakeChatModel(responses=[calls_message(tool_call("create_image", {"prompt": "cat"})), ""])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=FakeChatModel(responses=[SINGLE]),
                                           agent_config=config)

        await orchestrator.execute_agent_query("draw a cat", "chat-1", AgentOptions(image_url="https://in/ref.png"))

        command = await orchestrator.last_commands.store.get("chat-1")
        assert command.tool == "create_image"
        assert command.args == {"prompt": "cat"}
        assert command.image_url == "https://in/ref.png"

    @pytest.mark.asyncio
    async def test_retry_keeps_last_command(self, handlers, config):
        chat_llm = FakeChatModel(responses=[calls_message(tool_call("create_image", {"prompt": "cat"})), ""])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=FakeChatModel(responses=[SINGLE]),
                                           agent_config=config)

        await orchestrator.execute_agent_query("draw a cat", "chat-1", AgentOptions(is_retry=True))

        assert await orchestrator.last_commands.store.get("chat-1") is None


# ---------------------------------------------------------------------------
# Tracing
# ---------------------------------------------------------------------------


class TestTracing:
    @pytest.mark.asyncio
    async def test_query_trace_is_exported(self, handlers, config, tmp_path: Path):
        tracer = Tracer(exporter=YAMLExporter(tmp_path))
        token = tracer.activate()
        chat_llm = FakeChatModel(responses=[calls_message(tool_call("create_image", {"prompt": "cat"})), ""])
        orchestrator = create_orchestrator(chat_llm, handlers, planner_llm=FakeChatModel(responses=[SINGLE]),
                                           agent_config=config)

        await orchestrator.execute_agent_query("draw a cat", "972@c.us")
        tracer.deactivate(token)

        files = list(tmp_path.glob("trace_972_c.us_*.yaml"))
        assert len(files) == 1
        with open(files[0], "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        assert data["kind"] == "query"
        assert data["attributes"]["chat_id"] == "972@c.us"
        assert [c["kind"] for c in data["children"]] == ["plan", "llm_call", "tool_call", "llm_call"]
