from __future__ import annotations

from enum import Enum
from typing import Set


class FrameType(str, Enum):
    """Frame kinds of the room chat protocol."""

    # Server-to-client
    JOINED = "joined"        # room entry acknowledged, no payload
    HISTORY = "history"      # full transcript snapshot in "messages"
    MESSAGE = "message"      # single incremental entry in "payload"
    ERROR = "error"          # rejection reason in "message"

    # Client-to-server
    CHAT = "chat"            # outbound text in "text"

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if string is a valid frame type."""
        try:
            cls(value)
            return True
        except ValueError:
            return False


# Frame types a client accepts from the server
INBOUND_FRAMES: Set[FrameType] = {
    FrameType.JOINED,
    FrameType.HISTORY,
    FrameType.MESSAGE,
    FrameType.ERROR,
}

# Close code the server uses to reject a join (bad room or user)
CLOSE_JOIN_REJECTED = 400
# Close code reported when the transport went away without a close frame
CLOSE_ABNORMAL = 1006
CLOSE_NORMAL = 1000
