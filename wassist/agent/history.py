"""Chat history collaborator and the policy deciding when to seed the agent with it.

Self-contained requests ("create an image of a cat") run without history so
the model is not distracted by earlier turns. Follow-ups ("another one",
"like before") need it. Acknowledgement messages the bot sent while tools were
running are noise and get filtered out.
"""

import logging
import re
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Literal, Protocol

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class HistoryMessage:
    role: Role
    content: str


class ChatHistory(Protocol):
    async def get_recent_messages(self, chat_id: str, limit: int) -> list[HistoryMessage]:
        """
        Return up to *limit* most recent messages of a chat.
        Returns:
            Messages ordered oldest to newest.
        """
        ...


class MemoryChatHistory:
    """In-process chat history keeping a bounded window per chat."""

    def __init__(self, max_messages: int = 200):
        self.max_messages = max_messages
        self._messages: dict[str, deque[HistoryMessage]] = defaultdict(lambda: deque(maxlen=self.max_messages))

    async def add_message(self, chat_id: str, role: Role, content: str) -> None:
        self._messages[chat_id].append(HistoryMessage(role=role, content=content))

    async def get_recent_messages(self, chat_id: str, limit: int) -> list[HistoryMessage]:
        if limit <= 0:
            return []
        return list(self._messages.get(chat_id, ()))[-limit:]


_SELF_CONTAINED = [re.compile(p, re.IGNORECASE) for p in [
    r"^#?\s*(צור|create|generate|make|draw|תייצר|תצייר)\s+(an?\s+)?(תמונה|image|picture|וידאו|video|שיר|song|music|מוזיקה|drawing|ציור)",
    r"^#?\s*(תמונה|image|picture|וידאו|video|שיר|song)\s+(של|of|about)\s+",
    r"^#?\s*(שלח|send)\s+(an?\s+)?(תמונה|image|וידאו|video)\s+(של|of)\s+",
    r"^#?\s*(שלח|send)\s+(a\s+)?(מיקום|location)",
    r"^#?\s*(מיקום|location)\s+(ב|in|של|of)\s*",
    r"^#?\s*(מה השעה|what time|מה התאריך|what date|what day)",
    r"^#?\s*(צור|create|open|new)\s+(a\s+)?(קבוצה|group)\s+",
    r"^#?\s*(צור|create|make)\s+(a\s+)?(סקר|poll)\s+",
    r"^#?\s*(remind me|תזכיר לי|schedule|set reminder)\s+",
]]

_NEEDS_HISTORY = [re.compile(p, re.IGNORECASE) for p in [
    r"^#?\s*(כן|לא|yes|no|ok|okay|sure|right|exactly|בדיוק)\.?$",
    r"^#?\s*(עוד|continue|more|another|עוד אחד|give me more|what else)\s*[.!?]?$",
    r"^#?\s*(תודה|thanks|thank you|great|awesome)\.?$",
    r"(what i said|מה שאמרתי|מה שכתבתי|earlier|before|previous|קודם|this one|the same|אותו דבר)",
    r"(like (the )?(last|previous)|similar to|כמו ה)",
    r"^#?\s*(again|try again|repeat|שוב|נסה שוב)\s*[.!]?$",
    r"(what do you mean|didn't understand|explain|לא הבנתי|תסביר)",
]]

# Acknowledgements the assistant sends while a tool runs ("Creating image... 🎨").
ACK_PREFIXES: tuple[str, ...] = (
    "יוצר", "מבצע", "חושב", "מנתח", "מחפש", "מתמלל", "מתרגם", "עורך", "ממיר",
    "שולף", "בודק", "שומר", "מתזמן", "מסכם", "שולח", "משכפל", "מערבב",
)
ACK_SUFFIX = re.compile(r"\.\.\.\s*[^\x00-\x7F]{1,3}\s*$")


def is_ack_message(content: str) -> bool:
    text = content.strip()
    return text.startswith(ACK_PREFIXES) or ACK_SUFFIX.search(text) is not None


def is_self_contained(prompt: str) -> bool:
    return any(p.search(prompt.strip()) for p in _SELF_CONTAINED)


def needs_history(prompt: str) -> bool:
    return any(p.search(prompt.strip()) for p in _NEEDS_HISTORY)


@dataclass
class HistorySeed:
    """History to seed an agent loop with."""
    messages: list[HistoryMessage] = field(default_factory=list)
    system_context: str = ""
    loaded: bool = False


class HistoryStrategy:
    def __init__(self, history: ChatHistory | None, limit: int = 20):
        self.history = history
        self.limit = limit

    def should_load(self, prompt: str) -> bool:
        if needs_history(prompt):
            return True
        return not is_self_contained(prompt)

    async def load(self, chat_id: str, prompt: str, enabled: bool = True) -> HistorySeed:
        """Return the history to seed the loop with, or an empty seed.

        A conversation must open with a user turn, so leading assistant
        messages are moved into ``system_context`` instead.
        """
        if not enabled or self.history is None or self.limit <= 0:
            return HistorySeed()
        if not self.should_load(prompt):
            logger.info("Self-contained request, skipping conversation history")
            return HistorySeed()

        try:
            messages = await self.history.get_recent_messages(chat_id, self.limit)
        except Exception:
            logger.exception(f"Failed to load chat history for {chat_id}, continuing without it")
            return HistorySeed()

        filtered = [m for m in messages if not (m.role == "assistant" and is_ack_message(m.content))]
        if len(filtered) != len(messages):
            logger.debug(f"Filtered {len(messages) - len(filtered)} acknowledgement message(s) from history")

        orphaned: list[str] = []
        while filtered and filtered[0].role == "assistant":
            orphaned.append(filtered.pop(0).content)
        system_context = ""
        if orphaned:
            system_context = "Earlier assistant messages in this chat:\n" + "\n".join(f'- "{m}"' for m in orphaned)
        return HistorySeed(messages=filtered, system_context=system_context, loaded=True)
