import logging

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from wassist.agent.loop import message_text
from wassist.agent.normalizer import normalize_plan_text
from wassist.agent.plan import Plan, PlanDecision
from wassist.agent.tool import ToolRegistry
from wassist.template import TemplateEnvironment
from wassist.tracer import trace_plan

logger = logging.getLogger(__name__)


class LLMPlanner:
    """Decides whether a request runs as one agent loop or as a multi-step plan.

    Planning is a single stateless model call without chat history. It never
    fails: any model or parsing error yields :meth:`Plan.fallback_plan`.
    """

    TEMPLATE_NAME = "plan.jinja2"

    def __init__(self, chat_llm: BaseChatModel, registry: ToolRegistry, lang: str = "en"):
        self.chat_llm = chat_llm
        self.registry = registry
        template_env = TemplateEnvironment(package_name="wassist.agent", default_lang=lang)
        self.template = template_env.load_template(self.TEMPLATE_NAME, lang=lang)

    @trace_plan("plan")
    async def plan(self, request: str) -> Plan:
        prompt = self.template.render(tools=self.registry.catalog())
        try:
            response = await self.chat_llm.ainvoke([
                SystemMessage(content=prompt),
                HumanMessage(content=request),
            ])
            assert isinstance(response, AIMessage), f"Expected AIMessage, got {type(response)}"
            plan = normalize_plan_text(message_text(response))
        except Exception as e:
            logger.warning(f"Planning failed, falling back to single-step: {e}")
            return Plan.fallback_plan(str(e))

        logger.info(f"Planned {'multi-step' if plan.is_multi_step else 'single-step'} "
                    f"execution with {len(plan.steps)} step(s)")
        logger.debug(f"Plan: {plan.to_dict()}")
        return plan

    async def decide(self, request: str) -> PlanDecision:
        return (await self.plan(request)).decide()
