"""Per-chat record persistence used for execution contexts and last commands.

Both records are small pydantic models written with last-writer-wins
semantics; a chat has at most one agent call in flight at a time.
"""

import asyncio
import logging
import os
import re
from typing import Generic, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from wassist.exceptions import ContextStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.@-]+")


class RecordStore(Protocol[T]):
    async def get(self, chat_id: str) -> T | None:
        """
        Get the record stored for a chat.
        Returns:
            The record, or None if nothing was stored.
        """
        ...

    async def set(self, chat_id: str, record: T) -> None:
        """
        Store the record of a chat, replacing any previous one.
        """
        ...

    async def delete(self, chat_id: str) -> None:
        ...


class MemoryRecordStore(Generic[T]):
    def __init__(self, records: dict[str, T] | None = None) -> None:
        self.records: dict[str, T] = dict(records or {})

    async def get(self, chat_id: str) -> T | None:
        record = self.records.get(chat_id)
        return record.model_copy(deep=True) if record is not None else None

    async def set(self, chat_id: str, record: T) -> None:
        self.records[chat_id] = record.model_copy(deep=True)

    async def delete(self, chat_id: str) -> None:
        self.records.pop(chat_id, None)


class LocalRecordStore(Generic[T]):
    """Stores one JSON file per chat inside a directory."""

    def __init__(self, directory: str, model: type[T]) -> None:
        self.directory = directory
        self.model = model

    def path_for(self, chat_id: str) -> str:
        return os.path.join(self.directory, f"{_UNSAFE.sub('_', chat_id)}.json")

    def _read(self, chat_id: str) -> T | None:
        path = self.path_for(chat_id)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
        try:
            return self.model.model_validate_json(raw)
        except ValidationError as e:
            raise ContextStoreError(f"Corrupted record for chat {chat_id} at {path}: {e}") from e

    def _write(self, chat_id: str, record: T) -> None:
        os.makedirs(self.directory, exist_ok=True)
        path = self.path_for(chat_id)
        tmp_path = path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(record.model_dump_json(indent=2))
        os.replace(tmp_path, path)

    async def get(self, chat_id: str) -> T | None:
        return await asyncio.to_thread(self._read, chat_id)

    async def set(self, chat_id: str, record: T) -> None:
        await asyncio.to_thread(self._write, chat_id, record)

    async def delete(self, chat_id: str) -> None:
        path = self.path_for(chat_id)
        if os.path.exists(path):
            await asyncio.to_thread(os.remove, path)
