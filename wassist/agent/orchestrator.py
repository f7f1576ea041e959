"""Entry point of an agent query.

The request is planned first; a :class:`MultiStep` decision runs through the
multi-step executor, anything else through a single agent loop. Whatever
happens, the caller gets an :class:`AgentResult` back.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from wassist.agent.command import LastCommandRecorder
from wassist.agent.context import ContextManager, ExecutionContext
from wassist.agent.history import HistoryStrategy
from wassist.agent.loop import AgentLoop
from wassist.agent.multi_step import MultiStepExecutor
from wassist.agent.plan import MultiStep, SingleStep
from wassist.agent.planner import LLMPlanner
from wassist.agent.prompt import PromptBuilder
from wassist.agent.result import AgentResult
from wassist.agent.tool import Authorizations
from wassist.config.agent import AgentConfig
from wassist.tracer import get_current_span, trace_query

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR = "Something went wrong while handling your request. Please try again."


@dataclass
class AgentOptions:
    """Per-request options supplied by the routing layer."""
    language: str | None = None
    authorizations: Authorizations = field(default_factory=Authorizations)
    image_url: str | None = None
    video_url: str | None = None
    audio_url: str | None = None
    use_history: bool = True
    max_iterations: int | None = None
    timeout_ms: int | None = None
    context_memory: bool | None = None
    is_retry: bool = False
    last_command: dict[str, Any] | None = None
    original_input: dict[str, Any] | None = None
    quoted_context: dict[str, Any] | None = None
    suppress_final_response: bool = False
    expected_media_type: str | None = None


def build_planner_input(prompt: str, options: AgentOptions | None = None) -> str:
    """Prefix the request with a marker for the attached media, if any."""
    if options is None:
        return prompt
    if options.image_url:
        return f"[Image attached]\n{prompt}"
    if options.video_url:
        return f"[Video attached]\n{prompt}"
    if options.audio_url:
        return f"[Audio attached]\n{prompt}"
    return prompt


class AgentOrchestrator:
    def __init__(
            self,
            planner: LLMPlanner,
            loop: AgentLoop,
            multi_step: MultiStepExecutor,
            prompts: PromptBuilder,
            context_manager: ContextManager,
            history: HistoryStrategy,
            last_commands: LastCommandRecorder,
            config: AgentConfig | None = None,
    ):
        self.planner = planner
        self.loop = loop
        self.multi_step = multi_step
        self.prompts = prompts
        self.context_manager = context_manager
        self.history = history
        self.last_commands = last_commands
        self.config = config or AgentConfig()

    @trace_query("agent_query")
    async def execute_agent_query(
            self,
            prompt: str,
            chat_id: str,
            options: AgentOptions | None = None,
    ) -> AgentResult:
        """Handle one user request end to end; never raises."""
        options = options or AgentOptions()
        span = get_current_span()
        if span is not None:
            span.set_attribute("chat_id", chat_id)
            span.set_attribute("prompt", prompt)

        try:
            result = await self._execute(prompt, chat_id, options)
        except Exception:
            logger.exception(f"Agent query for {chat_id} failed unexpectedly")
            return AgentResult(success=False, error=UNEXPECTED_ERROR)

        await self.last_commands.record(
            chat_id, result, prompt,
            is_retry=options.is_retry,
            normalized=options.original_input,
            image_url=options.image_url,
            video_url=options.video_url,
            audio_url=options.audio_url,
        )
        return result

    async def _execute(self, prompt: str, chat_id: str, options: AgentOptions) -> AgentResult:
        memory_enabled = (
            self.config.context_memory_enabled if options.context_memory is None else options.context_memory
        )
        context = ContextManager.create_initial_context(chat_id, options)
        context = await self.context_manager.load_previous_context(chat_id, context, memory_enabled)

        decision = await self.planner.decide(build_planner_input(prompt, options))
        match decision:
            case MultiStep(steps=steps):
                logger.info(f"Running {len(steps)}-step plan for {chat_id}")
                result = await self.multi_step.execute(
                    steps,
                    context,
                    language=options.language,
                    authorizations=options.authorizations,
                    plan_timeout_s=self.config.multi_step_timeout_s,
                )
            case SingleStep(fallback=fallback):
                if fallback:
                    logger.info("Planner fell back, running the request as a single step")
                result = await self._single_step(prompt, chat_id, context, options)

        if result.success:
            await self.context_manager.save_context(chat_id, context, memory_enabled)
        return result

    async def _single_step(
            self,
            prompt: str,
            chat_id: str,
            context: ExecutionContext,
            options: AgentOptions,
    ) -> AgentResult:
        seed = await self.history.load(chat_id, prompt, enabled=options.use_history)
        system_instruction = self.prompts.system(options.language, system_context=seed.system_context)
        timeout_ms = options.timeout_ms or self.config.timeout_ms
        return await self.loop.run_with_timeout(
            prompt,
            context,
            system_instruction,
            timeout_s=timeout_ms / 1000,
            history=seed.messages,
            authorizations=options.authorizations,
            max_iterations=options.max_iterations or self.config.max_iterations,
        )
