"""Plan types produced by the planner.

``Plan`` mirrors the normalized planner JSON. Dispatch code consumes the
two-variant ``PlanDecision`` instead, obtained through :meth:`Plan.decide`.
"""

from dataclasses import dataclass, field, replace
from typing import Any

MIN_MULTI_STEP_STEPS = 2


@dataclass(frozen=True)
class Step:
    """One unit of a multi-step plan."""
    step_number: int
    action: str
    tool: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    reasoning: str | None = None

    def resolved(self, parameters: dict[str, Any]) -> 'Step':
        """Return a copy carrying substituted parameters."""
        return replace(self, parameters=parameters)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "stepNumber": self.step_number,
            "tool": self.tool,
            "action": self.action,
            "parameters": dict(self.parameters),
        }
        if self.reasoning is not None:
            d["reasoning"] = self.reasoning
        return d


@dataclass(frozen=True)
class SingleStep:
    """Run the request through one agent loop."""
    fallback: bool = False
    reason: str | None = None


@dataclass(frozen=True)
class MultiStep:
    """Run the request as an ordered sequence of at least two steps."""
    steps: tuple[Step, ...]

    def __post_init__(self):
        if len(self.steps) < MIN_MULTI_STEP_STEPS:
            raise ValueError(f"A multi-step plan needs at least {MIN_MULTI_STEP_STEPS} steps")


PlanDecision = SingleStep | MultiStep


@dataclass(frozen=True)
class Plan:
    is_multi_step: bool
    steps: tuple[Step, ...] = ()
    fallback: bool = False
    reasoning: str | None = None

    @classmethod
    def fallback_plan(cls, reason: str | None = None) -> 'Plan':
        return cls(is_multi_step=False, fallback=True, reasoning=reason)

    def decide(self) -> PlanDecision:
        """Collapse the plan into the variant the dispatcher acts on.

        Fewer than two steps never justify multi-step execution, whatever
        ``is_multi_step`` says.
        """
        if self.fallback:
            return SingleStep(fallback=True, reason=self.reasoning)
        if self.is_multi_step and len(self.steps) >= MIN_MULTI_STEP_STEPS:
            return MultiStep(steps=self.steps)
        return SingleStep(reason=self.reasoning)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "isMultiStep": self.is_multi_step,
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.fallback:
            d["fallback"] = True
        if self.reasoning is not None:
            d["reasoning"] = self.reasoning
        return d
