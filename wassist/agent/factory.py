"""Factory function for assembling an AgentOrchestrator from configuration."""

from typing import Mapping

from langchain_core.language_models import BaseChatModel

from wassist.agent.channel import AckChannel
from wassist.agent.command import LastCommand, LastCommandRecorder
from wassist.agent.context import ContextManager, ExecutionContext
from wassist.agent.executor import ToolExecutor
from wassist.agent.history import ChatHistory, HistoryStrategy
from wassist.agent.loop import AgentLoop
from wassist.agent.multi_step import MultiStepExecutor
from wassist.agent.orchestrator import AgentOrchestrator
from wassist.agent.planner import LLMPlanner
from wassist.agent.prompt import PromptBuilder
from wassist.agent.store import LocalRecordStore, MemoryRecordStore, RecordStore
from wassist.agent.tool import ChatHistoryTool, ToolHandler, ToolName, ToolRegistry
from wassist.config.agent import AgentConfig, StorageConfig


def _store(directory: str | None, model: type) -> RecordStore:
    if directory:
        return LocalRecordStore(directory, model)
    return MemoryRecordStore()


def create_orchestrator(
    chat_llm: BaseChatModel,
    handlers: Mapping[ToolName, ToolHandler],
    planner_llm: BaseChatModel | None = None,
    history: ChatHistory | None = None,
    ack_channel: AckChannel | None = None,
    agent_config: AgentConfig | None = None,
    storage_config: StorageConfig | None = None,
    lang: str = "en",
) -> AgentOrchestrator:
    """Factory function to create an AgentOrchestrator.

    Args:
        chat_llm: Chat model driving the agent loop
        handlers: Provider callables bound to tool names
        planner_llm: Model used for planning, defaults to chat_llm
        history: Chat history collaborator; also backs the get_chat_history tool
        ack_channel: Optional channel notified before tools run
        agent_config: Iteration, timeout and memory budgets
        storage_config: Directories for persisted records, memory stores when unset
        lang: Template language

    Returns:
        AgentOrchestrator wired with planner, agent loop and multi-step executor
    """
    agent_config = agent_config or AgentConfig()
    storage_config = storage_config or StorageConfig()

    builtin = [ChatHistoryTool(history)] if history is not None and ToolName.GET_CHAT_HISTORY not in handlers else []
    registry = ToolRegistry.from_handlers(handlers, *builtin)
    prompts = PromptBuilder(lang)

    executor = ToolExecutor(registry, ack_channel)
    loop = AgentLoop(chat_llm, registry, executor, max_iterations=agent_config.max_iterations)
    multi_step = MultiStepExecutor(
        registry,
        loop,
        prompts,
        executor=executor,
        step_max_iterations=agent_config.step_max_iterations,
        step_timeout_s=agent_config.timeout_s,
        plan_timeout_s=agent_config.multi_step_timeout_s,
    )

    return AgentOrchestrator(
        planner=LLMPlanner(planner_llm or chat_llm, registry, lang=lang),
        loop=loop,
        multi_step=multi_step,
        prompts=prompts,
        context_manager=ContextManager(
            _store(storage_config.context_dir, ExecutionContext),
            enabled=agent_config.context_memory_enabled,
        ),
        history=HistoryStrategy(history, limit=agent_config.history_limit),
        last_commands=LastCommandRecorder(_store(storage_config.last_command_dir, LastCommand)),
        config=agent_config,
    )
