import logging
from typing import Any, Protocol


class AckChannel(Protocol):
    async def send_ack(self, chat_id: str, tools: list[tuple[str, dict[str, Any]]]) -> None:
        """Tell the user which tools are about to run, before they run."""
        ...


class LoggingAckChannel:
    """Ack channel that only logs, used when no transport is attached."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    async def send_ack(self, chat_id: str, tools: list[tuple[str, dict[str, Any]]]) -> None:
        self.logger.info(f"[{chat_id}] Running: {', '.join(name for name, _ in tools)}")
