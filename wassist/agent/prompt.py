from typing import Any, Sequence

from wassist.template import TemplateEnvironment
from wassist.utils.language import response_directive


class PromptBuilder:
    """Renders the agent's system instruction and multi-step step prompts."""

    SYSTEM_TEMPLATE = "agent_system.jinja2"
    STEP_TEMPLATE = "step_prompt.jinja2"

    def __init__(self, lang: str = "en"):
        template_env = TemplateEnvironment(package_name="wassist.agent", default_lang=lang)
        self.system_template = template_env.load_template(self.SYSTEM_TEMPLATE, lang=lang)
        self.step_template = template_env.load_template(self.STEP_TEMPLATE, lang=lang)

    def system(
            self,
            language: str | None = None,
            *,
            tools: bool = True,
            expected_tool: str | None = None,
            system_context: str = "",
            extra_instructions: str = "",
    ) -> str:
        return self.system_template.render(
            tools=tools,
            expected_tool=expected_tool,
            system_context=system_context,
            extra_instructions=extra_instructions,
            language_directive=response_directive(language),
        ).strip()

    def step(
            self,
            action: str,
            previous_steps: Sequence[str] = (),
            tool: str | None = None,
            parameters: dict[str, Any] | None = None,
    ) -> str:
        return self.step_template.render(
            action=action,
            previous_steps=list(previous_steps),
            tool=tool,
            parameters=parameters or {},
        ).strip()
