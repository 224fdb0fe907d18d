"""
In-memory conversation store.

Histories live in process memory only: there is no eviction, no size bound
and no persistence, so everything is lost when the process restarts.
"""

import threading
import uuid
from typing import Dict, List, Optional


Message = Dict[str, str]


class ConversationStore:
    """Maps a conversation id to its ordered, role-tagged message history."""

    def __init__(self, name: str = "default"):
        self.name = name
        self._conversations: Dict[str, List[Message]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def resolve_id(self, conversation_id: Optional[str]) -> str:
        """Return the client's id, or a fresh one when none was sent."""
        return conversation_id or self.new_id()

    def history(self, conversation_id: str) -> List[Message]:
        """Copy of the stored messages (empty for unknown ids)."""
        with self._lock:
            return [dict(m) for m in self._conversations.get(conversation_id, [])]

    def append(self, conversation_id: str, *messages: Message) -> None:
        with self._lock:
            self._conversations.setdefault(conversation_id, []).extend(
                {"role": m["role"], "content": m["content"]} for m in messages
            )

    def clear(self) -> None:
        with self._lock:
            self._conversations.clear()

    def __contains__(self, conversation_id: str) -> bool:
        with self._lock:
            return conversation_id in self._conversations

    def __len__(self) -> int:
        with self._lock:
            return len(self._conversations)
