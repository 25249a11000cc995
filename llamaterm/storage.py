from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List

from .errors import StorageError, ValidationError

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
ROLES = ("user", "assistant", "system")

WELCOME_MESSAGE = (
    "Welcome to LlamaTerm v1.0.\n"
    "Type `/config <url>` to connect to your local Llama server.\n"
    "Type `/help` for commands."
)

logger = logging.getLogger("llamaterm.storage")


def utcnow() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


def _append_jsonl(path: Path, payload: Dict) -> None:
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(payload))
        handle.write("\n")


def _iter_jsonl(path: Path) -> Iterable[Dict]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            yield json.loads(line)


@dataclass(frozen=True)
class Message:
    id: int
    role: str
    content: str
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at,
        }

    def to_context(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class MessageStore:
    """
    Append-only message log backed by a JSONL file on disk.

    Each line is either a message record or a ``clear`` marker. Clearing
    rewrites the file to a single marker carrying the last assigned id, so ids
    keep increasing across clears and restarts.
    """

    def __init__(self, root: Path) -> None:
        self.path = root / "messages.jsonl"
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create message directory {self.path.parent}") from exc
        records = self._read_records()
        self._last_id = max((record["id"] for record in records), default=0)
        self._last_created_at = max((record.get("createdAt") or "" for record in records), default="")

    def list_all(self) -> List[Message]:
        with self._lock:
            records = self._read_records()
        messages: List[Message] = []
        for record in records:
            if record.get("type") == "clear":
                messages.clear()
                continue
            try:
                messages.append(
                    Message(
                        id=record["id"],
                        role=record["role"],
                        content=record["content"],
                        created_at=record["createdAt"],
                    )
                )
            except KeyError as exc:
                raise StorageError(f"Malformed message record {record.get('id')} in {self.path}") from exc
        messages.sort(key=_message_sort_key)
        return messages

    def append(self, role: str, content: str) -> Message:
        if role not in ROLES:
            raise ValidationError(f"Unknown role '{role}'.", field="role")
        if not isinstance(content, str):
            raise ValidationError("Message content must be a string.", field="content")
        with self._lock:
            # Never step behind the previous record if the wall clock moves back.
            created_at = max(utcnow(), self._last_created_at)
            message = Message(
                id=self._last_id + 1,
                role=role,
                content=content,
                created_at=created_at,
            )
            record = {"type": "message", **message.to_dict()}
            try:
                _append_jsonl(self.path, record)
            except OSError as exc:
                raise StorageError(f"Cannot append to {self.path}") from exc
            self._last_id = message.id
            self._last_created_at = created_at
        logger.debug("Appended %s message %d (%d chars)", role, message.id, len(content))
        return message

    def clear_all(self) -> None:
        with self._lock:
            marker = {"type": "clear", "id": self._last_id, "createdAt": utcnow()}
            tmp_path = self.path.with_suffix(".tmp")
            try:
                with tmp_path.open("w", encoding="utf-8") as handle:
                    handle.write(json.dumps(marker))
                    handle.write("\n")
                os.replace(tmp_path, self.path)
            except OSError as exc:
                raise StorageError(f"Cannot clear {self.path}") from exc
        logger.info("Cleared message history (last id %d)", marker["id"])

    def _read_records(self) -> List[Dict]:
        try:
            records = list(_iter_jsonl(self.path))
        except (OSError, ValueError) as exc:
            raise StorageError(f"Cannot read messages from {self.path}") from exc
        for record in records:
            if not isinstance(record, dict) or not isinstance(record.get("id"), int):
                raise StorageError(f"Malformed record in {self.path}")
        return records


def _message_sort_key(message: Message) -> tuple:
    return (message.created_at, message.id)


def seed_welcome_message(store: MessageStore) -> bool:
    """
    Append the welcome message if the store holds no messages.

    Returns True when a message was written.
    """
    if store.list_all():
        return False
    store.append("assistant", WELCOME_MESSAGE)
    logger.info("Seeded empty history with welcome message.")
    return True
