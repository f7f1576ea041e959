from typing import Callable

import pytest

from tests.helpers import returning
from wassist.agent.context import ExecutionContext
from wassist.agent.tool import ToolName, ToolRegistry


@pytest.fixture
def context() -> ExecutionContext:
    return ExecutionContext(chat_id="chat-1")


@pytest.fixture
def handlers() -> dict[ToolName, Callable]:
    return {
        ToolName.CREATE_IMAGE: returning({"success": True, "imageUrl": "https://cdn/img.png", "caption": "a cat"}),
        ToolName.SEARCH_WEB: returning({"success": True, "text": "Found it"}),
        ToolName.TEXT_TO_SPEECH: returning({"success": True, "audioUrl": "https://cdn/speech.ogg"}),
        ToolName.TRANSLATE_TEXT: returning({"success": True, "text": "Bonjour"}),
        ToolName.SEND_LOCATION: returning({"success": True, "text": "Paris", "latitude": 48.85, "longitude": 2.35}),
    }


@pytest.fixture
def registry(handlers) -> ToolRegistry:
    return ToolRegistry.from_handlers(handlers)
