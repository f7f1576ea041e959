"""Sequential execution of multi-step plans.

Steps run strictly in order; a step may reference the outputs of earlier
steps through ``{{stepN}}`` placeholders. A failed step does not stop the
plan unless its failure kind is fatal, in which case the remaining steps are
skipped. The whole plan runs under one aggregate wall-clock ceiling.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Sequence

from wassist.agent.context import ExecutionContext, StepResult, StepStatus
from wassist.agent.executor import ToolExecutor, ToolScope
from wassist.agent.loop import AgentLoop
from wassist.agent.placeholder import has_placeholders, resolve_placeholders
from wassist.agent.plan import Step
from wassist.agent.prompt import PromptBuilder
from wassist.agent.result import AgentResult
from wassist.agent.tool import (
    FATAL_FAILURE_KINDS,
    Authorizations,
    FailureKind,
    ToolCategory,
    ToolError,
    ToolName,
    ToolRegistry,
    ToolResult,
)
from wassist.exceptions import ToolNotBoundError, ToolNotFoundError, UnresolvedPlaceholderError
from wassist.tracer import trace_step

logger = logging.getLogger(__name__)

DEFAULT_STEP_MAX_ITERATIONS = 5
DEFAULT_STEP_TIMEOUT_S = 240.0
DEFAULT_PLAN_TIMEOUT_S = 600.0
STEP_ERROR = "Something went wrong while running this step."


class MultiStepExecutor:
    def __init__(
            self,
            registry: ToolRegistry,
            loop: AgentLoop,
            prompts: PromptBuilder,
            executor: ToolExecutor | None = None,
            step_max_iterations: int = DEFAULT_STEP_MAX_ITERATIONS,
            step_timeout_s: float = DEFAULT_STEP_TIMEOUT_S,
            plan_timeout_s: float = DEFAULT_PLAN_TIMEOUT_S,
            fatal_kinds: frozenset[FailureKind] = FATAL_FAILURE_KINDS,
    ):
        self.registry = registry
        self.loop = loop
        self.prompts = prompts
        self.executor = executor or loop.executor
        self.step_max_iterations = step_max_iterations
        self.step_timeout_s = step_timeout_s
        self.plan_timeout_s = plan_timeout_s
        self.fatal_kinds = fatal_kinds

    async def execute(
            self,
            steps: Sequence[Step],
            context: ExecutionContext,
            language: str | None = None,
            authorizations: Authorizations | None = None,
            plan_timeout_s: float | None = None,
    ) -> AgentResult:
        """Run *steps* in order and aggregate their outcome into one result."""
        ordered = [
            replace(step, step_number=idx)
            for idx, step in enumerate(sorted(steps, key=lambda s: s.step_number), start=1)
        ]
        authorizations = authorizations or Authorizations()
        timeout_s = plan_timeout_s or self.plan_timeout_s
        context.step_results.clear()
        logger.info(f"Executing multi-step plan with {len(ordered)} step(s)")

        timed_out = False
        try:
            fatal = await asyncio.wait_for(
                self._run_steps(ordered, context, language, authorizations),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Multi-step plan hit its {timeout_s}s ceiling")
            timed_out = True
            fatal = None
            self._mark_unfinished(ordered, context)

        return self._aggregate(ordered, context, fatal, timed_out)

    async def _run_steps(
            self,
            steps: list[Step],
            context: ExecutionContext,
            language: str | None,
            authorizations: Authorizations,
    ) -> StepResult | None:
        """Run the steps; returns the fatal step result that aborted the plan, if any."""
        for idx, step in enumerate(steps):
            result = await self._run_step(
                step, context, language, authorizations,
                step_name=f"step_{step.step_number}",
            )
            context.step_results[step.step_number] = result
            if result.succeeded:
                logger.info(f"Step {step.step_number}/{len(steps)} completed")
                continue

            logger.warning(f"Step {step.step_number}/{len(steps)} failed: {result.error}")
            if result.failure_kind in self.fatal_kinds:
                for skipped in steps[idx + 1:]:
                    context.step_results[skipped.step_number] = StepResult(
                        step_number=skipped.step_number,
                        tool=skipped.tool,
                        action=skipped.action,
                        status=StepStatus.SKIPPED,
                        error=f"Skipped because step {step.step_number} failed",
                    )
                return result
        return None

    @staticmethod
    def _mark_unfinished(steps: list[Step], context: ExecutionContext) -> None:
        in_flight = True
        for step in steps:
            if step.step_number in context.step_results:
                continue
            context.step_results[step.step_number] = StepResult(
                step_number=step.step_number,
                tool=step.tool,
                action=step.action,
                status=StepStatus.FAILED if in_flight else StepStatus.SKIPPED,
                error="Step timed out" if in_flight else "Skipped because the plan timed out",
                failure_kind=FailureKind.TIMEOUT if in_flight else None,
            )
            in_flight = False

    @trace_step(name_kwarg="step_name")
    async def _run_step(
            self,
            step: Step,
            context: ExecutionContext,
            language: str | None,
            authorizations: Authorizations,
            step_name: str = "step",
    ) -> StepResult:
        try:
            return await self._route_step(step, context, language, authorizations)
        except Exception:
            logger.exception(f"Step {step.step_number} raised")
            return self._failed(step, STEP_ERROR, FailureKind.EXCEPTION)

    async def _route_step(
            self,
            step: Step,
            context: ExecutionContext,
            language: str | None,
            authorizations: Authorizations,
    ) -> StepResult:
        try:
            parameters = resolve_placeholders(step.parameters, context.step_results)
        except UnresolvedPlaceholderError as e:
            return self._failed(step, str(e), FailureKind.UNRESOLVED_PLACEHOLDER)
        if has_placeholders(step.parameters):
            logger.debug(f"Step {step.step_number} parameters resolved to {parameters}")
        step = step.resolved(parameters)
        previous = [r.summary() for _, r in sorted(context.step_results.items())]

        if step.tool is None:
            return await self._text_step(step, previous, context, language)

        try:
            name = self.registry.resolve(step.tool)
        except ToolNotFoundError as e:
            return self._failed(step, str(e), FailureKind.UNKNOWN_TOOL)
        except ToolNotBoundError:
            return self._failed(step, f"Tool {step.tool} is not available right now", FailureKind.UNAVAILABLE_TOOL)
        declaration = self.registry.declaration(name)
        if not authorizations.allows(declaration.authorization):
            return self._failed(step, f"You are not authorized to use {step.tool}", FailureKind.AUTHORIZATION)

        if declaration.self_contained and not declaration.missing_arguments(step.parameters):
            logger.info(f"Step {step.step_number}: invoking {name.value} directly")
            output = await self.executor.invoke(
                name.value, step.parameters, context,
                ToolScope(authorizations=authorizations, first_call_index=len(context.tool_calls)),
            )
            return self._from_output(step, output)

        result = await self._loop_step(step, name, previous, context, language, authorizations)
        if (
                not result.succeeded
                and declaration.category == ToolCategory.CREATION
                and result.failure_kind not in self.fatal_kinds
                and not declaration.missing_arguments(step.parameters)
        ):
            logger.warning(f"Step {step.step_number}: {name.value} failed through the agent, invoking it directly")
            output = await self.executor.invoke(
                name.value, step.parameters, context,
                ToolScope(authorizations=authorizations, first_call_index=len(context.tool_calls)),
            )
            return self._from_output(step, output)
        return result

    async def _text_step(
            self,
            step: Step,
            previous: list[str],
            context: ExecutionContext,
            language: str | None,
    ) -> StepResult:
        outcome = await self.loop.run_with_timeout(
            self.prompts.step(step.action, previous),
            context,
            self.prompts.system(language, tools=False),
            timeout_s=self.step_timeout_s,
            tools=[],
            max_iterations=1,
        )
        if not outcome.success:
            kind = FailureKind.TIMEOUT if outcome.timeout else FailureKind.INCOMPLETE
            return self._failed(step, outcome.error or "No answer", kind, iterations=outcome.iterations)
        return StepResult(
            step_number=step.step_number,
            tool=None,
            action=step.action,
            status=StepStatus.SUCCESS,
            text=outcome.text,
            iterations=outcome.iterations,
        )

    async def _loop_step(
            self,
            step: Step,
            name: ToolName,
            previous: list[str],
            context: ExecutionContext,
            language: str | None,
            authorizations: Authorizations,
    ) -> StepResult:
        logger.info(f"Step {step.step_number}: routing {name.value} through the agent")
        scope = ToolScope(
            authorizations=authorizations,
            expected_tool=name,
            first_call_index=len(context.tool_calls),
        )
        outcome = await self.loop.run_with_timeout(
            self.prompts.step(step.action, previous, name.value, step.parameters),
            context,
            self.prompts.system(language, expected_tool=name.value),
            timeout_s=self.step_timeout_s,
            tools=[name],
            max_iterations=self.step_max_iterations,
            scope=scope,
        )
        if name in scope.results:
            result = self._from_output(step, scope.results[name])
            return result.model_copy(update={
                "text": result.text or outcome.text,
                "iterations": outcome.iterations,
            })
        if name in scope.errors:
            error = scope.errors[name]
            return self._failed(step, error.error_message, error.kind, iterations=outcome.iterations)
        if outcome.timeout:
            return self._failed(step, outcome.error or "Step timed out", FailureKind.TIMEOUT)
        return self._failed(
            step,
            outcome.error or f"{name.value} was not called for this step",
            FailureKind.INCOMPLETE,
            iterations=outcome.iterations,
        )

    @staticmethod
    def _from_output(step: Step, output: ToolResult | ToolError) -> StepResult:
        if isinstance(output, ToolError):
            return MultiStepExecutor._failed(step, output.error_message, output.kind)
        return StepResult(
            step_number=step.step_number,
            tool=step.tool,
            action=step.action,
            status=StepStatus.SUCCESS,
            text=output.result or None,
            data=dict(output.data),
            tools_used=[step.tool] if step.tool else [],
        )

    @staticmethod
    def _failed(step: Step, error: str, kind: FailureKind, iterations: int = 0) -> StepResult:
        return StepResult(
            step_number=step.step_number,
            tool=step.tool,
            action=step.action,
            status=StepStatus.FAILED,
            error=error,
            failure_kind=kind,
            iterations=iterations,
        )

    @staticmethod
    def _aggregate(
            steps: list[Step],
            context: ExecutionContext,
            fatal: StepResult | None,
            timed_out: bool,
    ) -> AgentResult:
        results = [context.step_results[s.step_number] for s in steps]
        completed = sum(1 for r in results if r.succeeded)
        lines = []
        for r in results:
            if r.succeeded and r.text:
                lines.append(f"Step {r.step_number}: {r.text}")
            elif r.status == StepStatus.FAILED:
                lines.append(f"Step {r.step_number} failed: {r.error}")
        text = "\n\n".join(lines)

        success = completed > 0 and fatal is None and not timed_out
        error = None
        if fatal is not None:
            error = fatal.error
            text = fatal.error or text
        elif timed_out:
            error = "The plan took too long and was stopped."
        elif not success:
            error = "None of the plan's steps succeeded."

        logger.info(f"Multi-step plan finished: {completed}/{len(steps)} step(s) succeeded")
        return AgentResult.from_context(
            context,
            success=success,
            text=text,
            error=error,
            timeout=timed_out,
            iterations=sum(r.iterations for r in results),
            multi_step=True,
            steps_completed=completed,
            total_steps=len(steps),
            step_results=results,
            plan={"isMultiStep": True, "steps": [s.to_dict() for s in steps]},
        )
