"""
Chat transcript store.

Append-only, insertion ordered. Messages are immutable once created.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional, Tuple


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """One transcript entry. timestamp is epoch milliseconds."""

    id: str
    text: str
    role: Role
    timestamp: int


Listener = Callable[[Message], None]


class ChatTranscript:
    """Ordered list of exchanged messages driving the visible transcript."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._messages: List[Message] = []
        self._listeners: List[Listener] = []

    def append(self, text: str, role: Role) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            text=text,
            role=Role(role),
            timestamp=int(self._clock() * 1000),
        )
        self._messages.append(message)
        for listener in list(self._listeners):
            listener(message)
        return message

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener for every appended message. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))
