import asyncio
import importlib
import logging
import sys
from argparse import ArgumentParser
from pathlib import Path

import yaml
from pyaml_env import parse_config as parse_config_with_env

from wassist.agent.channel import LoggingAckChannel
from wassist.agent.factory import create_orchestrator
from wassist.agent.history import MemoryChatHistory
from wassist.agent.orchestrator import AgentOptions
from wassist.agent.tool import ToolHandler, ToolName
from wassist.config.wassist import WassistConfig
from wassist.llm import ChatLLMFactory
from wassist.tracer import Tracer, YAMLExporter

logger = logging.getLogger(__name__)


def load_handlers(target: str | None) -> dict[ToolName, ToolHandler]:
    """Import a ``module:attribute`` mapping of tool names to provider callables.

    Keys may be ``ToolName`` members or their string values.
    """
    if not target:
        return {}
    module_name, _, attr = target.partition(':')
    module = importlib.import_module(module_name)
    return {ToolName(name): handler for name, handler in getattr(module, attr or 'HANDLERS').items()}


async def run(config_path: str, verbosity: int, request: str, chat_id: str, handlers_target: str | None = None):
    openai_logger = logging.getLogger('openai')
    httpx_logger = logging.getLogger('httpx')
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
        openai_logger.setLevel(logging.WARNING)
        httpx_logger.setLevel(logging.WARNING)
    else:
        level = logging.DEBUG
    logging.basicConfig(level=level)

    with open(config_path, 'r', encoding='utf-8') as f:
        config = parse_config_with_env(data=f, tag=None)
        config = WassistConfig.model_validate(config)
        logger.debug(f"Loaded config: {config}")

    # Initialize the tracer before any LLM models are built so that
    # ChatLLMFactory.build() can attach the callback handler.
    trace_dir = Path(config.trace_dir) if config.trace_dir else Path(config_path).parent / "logs"
    tracer = Tracer(exporter=YAMLExporter(output_dir=trace_dir))
    tracer_token = tracer.activate()

    try:
        chat_llm = ChatLLMFactory.build(config.chat_llm)
        planner_llm = ChatLLMFactory.build(config.planner_llm) if config.planner_llm else None
        orchestrator = create_orchestrator(
            chat_llm,
            load_handlers(handlers_target),
            planner_llm=planner_llm,
            history=MemoryChatHistory(),
            ack_channel=LoggingAckChannel(),
            agent_config=config.agent,
            storage_config=config.storage,
        )
        result = await orchestrator.execute_agent_query(
            request, chat_id, AgentOptions(language=config.language),
        )
        yaml.safe_dump(
            result.model_dump(mode='json', exclude_none=True),
            sys.stdout,
            allow_unicode=True,
            sort_keys=False,
        )
    finally:
        tracer.deactivate(tracer_token)


def main():
    parser = ArgumentParser('wassist')
    parser.add_argument('--config', required=True, help="Path to the configuration file")
    parser.add_argument('-v', action='count', default=0, help="Verbosity level. -v for INFO, -vv for DEBUG")
    parser.add_argument('--chat-id', default='cli', help="Chat id the request belongs to")
    parser.add_argument('--tools', help="Tool handlers to bind, as module:attribute")
    parser.add_argument('request', help="Request to execute")
    ns = parser.parse_args()
    asyncio.run(run(ns.config, ns.v, ns.request, ns.chat_id, ns.tools))


if __name__ == "__main__":
    main()
