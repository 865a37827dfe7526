from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from shared.message import Message
from shared.utils import trimmed


class SessionError(Exception):
    """Raised when the session API is driven out of order."""
    pass
class IncompleteIdentityError(SessionError):
    """Join attempted without both a room ID and a username."""
    pass
class NotJoinedError(SessionError):
    """Text sent before joining a room."""
    pass

IDENTITY_REQUIRED_TEXT = "Both room ID and username are required."
NOT_JOINED_TEXT = "Join a room before sending messages."


class ConnectionStatus(str, Enum):
    """Derived connection state shown to the user."""
    AWAITING_INPUT = "AwaitingInput"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    CLOSING = "Closing"
    DISCONNECTED = "Disconnected"
    ERROR = "Error"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS: Dict[ConnectionStatus, str] = {
    ConnectionStatus.AWAITING_INPUT: "Enter room info",
    ConnectionStatus.CONNECTING: "Connecting",
    ConnectionStatus.CONNECTED: "Connected",
    ConnectionStatus.CLOSING: "Closing",
    ConnectionStatus.DISCONNECTED: "Disconnected",
    ConnectionStatus.ERROR: "Error",
}


@dataclass(frozen=True)
class Identity:
    """(room, user) pair that keys a connection. Values are stored trimmed."""
    room_id: str = ""
    user_name: str = ""

    @classmethod
    def from_raw(cls, room_id: Optional[str], user_name: Optional[str]) -> Identity:
        return cls(room_id=trimmed(room_id), user_name=trimmed(user_name))

    @property
    def is_complete(self) -> bool:
        return bool(self.room_id) and bool(self.user_name)

    def log_context(self) -> Dict[str, str]:
        return {"room": self.room_id or "-", "user": self.user_name or "-"}


EMPTY_IDENTITY = Identity()


class Transcript:
    """
    Ordered, id-unique list of messages. Incremental messages keep
    insertion order, a history snapshot replaces everything.
    """

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: List[Message] = []
        self._index: Dict[int, int] = {}  # id -> position
        self.replace(messages)

    def replace(self, messages: Iterable[Message]) -> None:
        """Replace the whole transcript. A repeated id in the snapshot keeps its first position, last value."""
        self.clear()
        for message in messages:
            self.upsert(message)

    def upsert(self, message: Message) -> bool:
        """Insert or replace by id. Returns True if the message was new."""
        position = self._index.get(message.id)
        if position is not None:
            self._messages[position] = message
            return False
        self._index[message.id] = len(self._messages)
        self._messages.append(message)
        return True

    def clear(self) -> None:
        self._messages.clear()
        self._index.clear()

    def get(self, message_id: int) -> Optional[Message]:
        position = self._index.get(message_id)
        return self._messages[position] if position is not None else None

    def ids(self) -> List[int]:
        return [m.id for m in self._messages]

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))


@dataclass(frozen=True)
class SessionView:
    """What the presentation layer reads."""
    status: ConnectionStatus
    transcript: Tuple[Message, ...]
    last_error: Optional[str]
    identity: Identity = EMPTY_IDENTITY

    @property
    def has_session(self) -> bool:
        return self.identity.is_complete
