"""The closed set of tools the assistant can invoke and their declared contracts."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ToolName(str, Enum):
    SEND_LOCATION = "send_location"
    CREATE_IMAGE = "create_image"
    CREATE_VIDEO = "create_video"
    IMAGE_TO_VIDEO = "image_to_video"
    EDIT_IMAGE = "edit_image"
    EDIT_VIDEO = "edit_video"
    CREATE_MUSIC = "create_music"
    CREATE_POLL = "create_poll"
    CREATE_GROUP = "create_group"
    ANALYZE_IMAGE = "analyze_image"
    ANALYZE_VIDEO = "analyze_video"
    TRANSCRIBE_AUDIO = "transcribe_audio"
    TEXT_TO_SPEECH = "text_to_speech"
    TRANSLATE_TEXT = "translate_text"
    SEARCH_WEB = "search_web"
    GET_CHAT_HISTORY = "get_chat_history"
    GET_LONG_TERM_MEMORY = "get_long_term_memory"
    SAVE_USER_PREFERENCE = "save_user_preference"
    RETRY_LAST_COMMAND = "retry_last_command"

    @classmethod
    def parse(cls, raw: str | None) -> 'ToolName | None':
        """Return the member for an LLM-provided name, or None if unknown."""
        if not raw:
            return None
        try:
            return cls(raw.strip())
        except ValueError:
            return None


class ToolCategory(str, Enum):
    LOCATION = "location"
    CREATION = "creation"
    EDITING = "editing"
    ANALYSIS = "analysis"
    AUDIO = "audio"
    TEXT = "text"
    SEARCH = "search"
    CONTEXT = "context"
    META = "meta"


class Authorization(str, Enum):
    """Per-sender permissions checked before a tool runs."""
    MEDIA_CREATION = "media_creation"
    GROUP_CREATION = "group_creation"
    VOICE = "voice_allowed"


@dataclass(frozen=True)
class Authorizations:
    """What the sender of the current request is allowed to trigger."""
    media_creation: bool = True
    group_creation: bool = False
    voice_allowed: bool = True

    def allows(self, required: Authorization | None) -> bool:
        match required:
            case None:
                return True
            case Authorization.MEDIA_CREATION:
                return self.media_creation
            case Authorization.GROUP_CREATION:
                return self.group_creation
            case Authorization.VOICE:
                return self.voice_allowed


@dataclass(frozen=True)
class ToolDeclaration:
    name: ToolName
    description: str
    parameters: dict[str, dict[str, Any]] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    category: ToolCategory = ToolCategory.TEXT
    # Repeating identical arguments may legitimately give a different result.
    stochastic: bool = False
    # Can run straight from planned parameters without a reasoning turn.
    self_contained: bool = False
    authorization: Authorization | None = None

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": self.parameters,
            "required": list(self.required),
        }

    def function_def(self) -> dict[str, Any]:
        """OpenAI-style function definition, as accepted by ``bind_tools``."""
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }

    def missing_arguments(self, args: dict[str, Any]) -> list[str]:
        return [key for key in self.required if args.get(key) in (None, "")]


def _str(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}


_PROVIDER = "Optional provider. Leave empty for the default unless the user names one."

TOOL_DECLARATIONS: dict[ToolName, ToolDeclaration] = {d.name: d for d in [
    ToolDeclaration(
        ToolName.SEND_LOCATION, "Send a random location, optionally inside a region or city.",
        {"region": _str("Specific region or city")},
        category=ToolCategory.LOCATION, stochastic=True, self_contained=True,
    ),
    ToolDeclaration(
        ToolName.CREATE_IMAGE, "Create a NEW image with AI. Use for any request to create, send or draw an image.",
        {"prompt": _str("Image description"), "provider": _str(_PROVIDER)}, ("prompt",),
        category=ToolCategory.CREATION, stochastic=True, self_contained=True,
        authorization=Authorization.MEDIA_CREATION,
    ),
    ToolDeclaration(
        ToolName.CREATE_VIDEO, "Create a NEW video with AI from a text description.",
        {"prompt": _str("Video description"), "provider": _str(_PROVIDER)}, ("prompt",),
        category=ToolCategory.CREATION, stochastic=True, self_contained=True,
        authorization=Authorization.MEDIA_CREATION,
    ),
    ToolDeclaration(
        ToolName.IMAGE_TO_VIDEO, "Animate an attached or previously created image into a video.",
        {"image_url": _str("Image URL"), "prompt": _str("Animation instructions"), "provider": _str(_PROVIDER)},
        ("image_url",),
        category=ToolCategory.CREATION, stochastic=True, self_contained=True,
        authorization=Authorization.MEDIA_CREATION,
    ),
    ToolDeclaration(
        ToolName.EDIT_IMAGE, "Edit an existing image according to instructions.",
        {"image_url": _str("Image URL"), "prompt": _str("Edit instructions")}, ("image_url", "prompt"),
        category=ToolCategory.EDITING, stochastic=True, self_contained=True,
        authorization=Authorization.MEDIA_CREATION,
    ),
    ToolDeclaration(
        ToolName.EDIT_VIDEO, "Edit an existing video according to instructions.",
        {"video_url": _str("Video URL"), "prompt": _str("Edit instructions")}, ("video_url", "prompt"),
        category=ToolCategory.EDITING, stochastic=True, self_contained=True,
        authorization=Authorization.MEDIA_CREATION,
    ),
    ToolDeclaration(
        ToolName.CREATE_MUSIC, "Create a NEW song with melody. Not for writing lyrics only.",
        {"prompt": _str("Song description or lyrics"),
         "make_video": {"type": "boolean", "description": "Also create a music video"}},
        ("prompt",),
        category=ToolCategory.CREATION, stochastic=True, self_contained=True,
        authorization=Authorization.MEDIA_CREATION,
    ),
    ToolDeclaration(
        ToolName.CREATE_POLL, "Create a WhatsApp poll about a topic.",
        {"topic": _str("Poll topic"),
         "num_options": {"type": "integer", "description": "Number of options (2-12)"},
         "with_rhyme": {"type": "boolean", "description": "Make options rhyme"}},
        ("topic",),
        category=ToolCategory.CREATION, stochastic=True, self_contained=True,
    ),
    ToolDeclaration(
        ToolName.CREATE_GROUP, "Create a WhatsApp group with participants. Only for authorized users.",
        {"group_name": _str("Group name"), "participants_description": _str("Who should be in the group")},
        ("group_name",),
        category=ToolCategory.CREATION, authorization=Authorization.GROUP_CREATION,
    ),
    ToolDeclaration(
        ToolName.ANALYZE_IMAGE, "Analyze or describe an image.",
        {"image_url": _str("Image URL to analyze"), "question": _str("Specific question about the image")},
        ("image_url",),
        category=ToolCategory.ANALYSIS, self_contained=True,
    ),
    ToolDeclaration(
        ToolName.ANALYZE_VIDEO, "Analyze or describe a video.",
        {"video_url": _str("Video URL to analyze"), "question": _str("Specific question about the video")},
        ("video_url",),
        category=ToolCategory.ANALYSIS, self_contained=True,
    ),
    ToolDeclaration(
        ToolName.TRANSCRIBE_AUDIO, "Convert speech in an audio file to text.",
        {"audio_url": _str("Audio file URL")}, ("audio_url",),
        category=ToolCategory.AUDIO, self_contained=True, authorization=Authorization.VOICE,
    ),
    ToolDeclaration(
        ToolName.TEXT_TO_SPEECH, "Convert text to speech without translating it.",
        {"text": _str("Text to speak"), "voice": _str("Voice style")}, ("text",),
        category=ToolCategory.AUDIO, self_contained=True, authorization=Authorization.VOICE,
    ),
    ToolDeclaration(
        ToolName.TRANSLATE_TEXT, "Translate text without converting it to speech.",
        {"text": _str("Text to translate"), "target_language": _str("Target language")},
        ("text", "target_language"),
        category=ToolCategory.TEXT, self_contained=True,
    ),
    ToolDeclaration(
        ToolName.SEARCH_WEB, "Search the web for existing content and links.",
        {"query": _str("Search query")}, ("query",),
        category=ToolCategory.SEARCH, self_contained=True,
    ),
    ToolDeclaration(
        ToolName.GET_CHAT_HISTORY, "Retrieve recent messages of this conversation.",
        {"limit": {"type": "integer", "description": "Number of messages (default: 20)"}},
        category=ToolCategory.CONTEXT, self_contained=True,
    ),
    ToolDeclaration(
        ToolName.GET_LONG_TERM_MEMORY, "Access stored user preferences and conversation summaries.",
        {"include_summaries": {"type": "boolean", "description": "Include summaries"},
         "include_preferences": {"type": "boolean", "description": "Include preferences"}},
        category=ToolCategory.CONTEXT, self_contained=True,
    ),
    ToolDeclaration(
        ToolName.SAVE_USER_PREFERENCE, "Save a user preference for future reference.",
        {"preference_key": _str("Preference key"), "preference_value": _str("Preference value")},
        ("preference_key", "preference_value"),
        category=ToolCategory.CONTEXT, self_contained=True,
    ),
    ToolDeclaration(
        ToolName.RETRY_LAST_COMMAND, "Repeat the last command of this chat, optionally with changes.",
        {"modifications": _str("What to change compared to the last command"),
         "provider_override": _str("Provider to use instead of the original one")},
        category=ToolCategory.META, stochastic=True,
    ),
]}

# Tools whose invocation is never saved as the chat's last command.
NON_PERSISTED_TOOLS: frozenset[ToolName] = frozenset({
    ToolName.RETRY_LAST_COMMAND,
    ToolName.GET_CHAT_HISTORY,
    ToolName.SAVE_USER_PREFERENCE,
    ToolName.GET_LONG_TERM_MEMORY,
    ToolName.TRANSCRIBE_AUDIO,
})

# Creation tools are not re-run in the same loop once they succeeded.
SINGLE_SUCCESS_TOOLS: frozenset[ToolName] = frozenset({
    ToolName.CREATE_IMAGE,
    ToolName.CREATE_VIDEO,
    ToolName.EDIT_IMAGE,
    ToolName.EDIT_VIDEO,
    ToolName.IMAGE_TO_VIDEO,
})
