from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from shared.utils import as_positive_int, now_ms, trimmed, trimmed_or

UNKNOWN_USER = "Unknown"


@dataclass(frozen=True)
class RawHistoryEntry:
    """
    A chat entry as the server sends it, embedded in "history" and
    "message" frames:
    {
    "id":        "INT > 0",
    "roomId":    "STRING",
    "userName":  "STRING",
    "text":      "STRING",
    "timestamp": "NUMBER > 0 | STRING"
    }

    Only `id` has been validated when one of these exists (see
    shared.envelope.parse_entry). Every other field is whatever the
    server sent, or None when it was missing or of the wrong JSON type.
    """
    id: int
    room_id: Optional[str] = None
    user_name: Optional[str] = None
    text: Optional[str] = None
    timestamp: Union[int, float, str, None] = None


@dataclass(frozen=True)
class Message:
    """Canonical transcript entry. `id` is the dedup key."""
    id: int
    user_name: str
    text: str
    timestamp: int  # unix ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'userName': self.user_name,
            'text': self.text,
            'timestamp': self.timestamp,
        }


def _normalize_timestamp(value: Any, received_at: int) -> int:
    exact = as_positive_int(value)
    return exact if exact is not None else received_at


def normalize(entry: RawHistoryEntry, received_at: Optional[int] = None) -> Message:
    """
    Map a wire entry onto a Message. Never raises: each field has its own
    fallback so a damaged entry still renders.

    - userName: trimmed, "Unknown" when empty
    - text: trimmed, "" when empty
    - timestamp: kept when it is a positive whole number, otherwise the
      receipt time (received_at, default now)
    """
    if received_at is None:
        received_at = now_ms()
    return Message(
        id=entry.id,
        user_name=trimmed_or(entry.user_name, UNKNOWN_USER),
        text=trimmed(entry.text),
        timestamp=_normalize_timestamp(entry.timestamp, received_at),
    )
