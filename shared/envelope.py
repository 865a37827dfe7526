from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union
import json

from shared.FrameTypes import INBOUND_FRAMES, FrameType
from shared.log import get_logger
from shared.message import RawHistoryEntry
from shared.utils import as_positive_int, trimmed_or

logger = get_logger(__name__)

DEFAULT_SERVER_ERROR = "Server reported an error."


class TransportDataError(Exception):
    """Inbound payload was not text, the server sent structurally invalid data."""
    pass
class EntryValidationError(Exception):
    """An embedded history entry failed minimum structure (bad id)."""
    pass
class ProtocolRejection(Exception):
    """Server refused the session: an "error" frame or close code 400."""
    def __init__(self, reason: str, code: Optional[int] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = code
class TransportFailure(Exception):
    """The transport itself failed (connect error, unexpected socket error)."""
    pass


@dataclass(frozen=True)
class JoinedFrame:
    """{"type": "joined"}"""
    type: FrameType = field(default=FrameType.JOINED, init=False)


@dataclass(frozen=True)
class HistoryFrame:
    """
    {"type": "history", "messages": [RawHistoryEntry, ...]}

    `entries` only holds entries that passed validation; `dropped`
    counts the ones that did not.
    """
    entries: Tuple[RawHistoryEntry, ...] = ()
    dropped: int = 0
    type: FrameType = field(default=FrameType.HISTORY, init=False)


@dataclass(frozen=True)
class MessageFrame:
    """{"type": "message", "payload": RawHistoryEntry}"""
    entry: RawHistoryEntry
    type: FrameType = field(default=FrameType.MESSAGE, init=False)


@dataclass(frozen=True)
class ErrorFrame:
    """{"type": "error", "message": "STRING"} with the reason already normalized."""
    message: str = DEFAULT_SERVER_ERROR
    type: FrameType = field(default=FrameType.ERROR, init=False)


Frame = Union[JoinedFrame, HistoryFrame, MessageFrame, ErrorFrame]


def parse_entry(data: Any) -> RawHistoryEntry:
    """
    Validate one embedded entry. Only the id is load-bearing: it must be
    a positive whole number. Other fields are kept when they have the
    right JSON type and set to None otherwise, normalize() fills them in.
    """
    if not isinstance(data, dict):
        raise EntryValidationError(f"Entry must be an object, got {type(data).__name__}")

    entry_id = as_positive_int(data.get('id'))
    if entry_id is None:
        raise EntryValidationError(f"Invalid entry id: {data.get('id')!r}")

    def text_field(name: str) -> Optional[str]:
        value = data.get(name)
        return value if isinstance(value, str) else None

    timestamp = data.get('timestamp')
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float, str)):
        timestamp = None

    return RawHistoryEntry(
        id=entry_id,
        room_id=text_field('roomId'),
        user_name=text_field('userName'),
        text=text_field('text'),
        timestamp=timestamp,
    )


def _parse_history(data: Dict[str, Any]) -> Optional[HistoryFrame]:
    raw_entries = data.get('messages')
    if raw_entries is None:
        return HistoryFrame()
    if not isinstance(raw_entries, list):
        logger.warning("Ignoring history frame: 'messages' must be a list")
        return None

    entries: List[RawHistoryEntry] = []
    dropped = 0
    for raw in raw_entries:
        try:
            entries.append(parse_entry(raw))
        except EntryValidationError as e:
            dropped += 1
            logger.debug("Dropped history entry: %s", e)
    if dropped:
        logger.warning("Dropped %d invalid entr%s from history frame", dropped, "y" if dropped == 1 else "ies")
    return HistoryFrame(entries=tuple(entries), dropped=dropped)


def _parse_message(data: Dict[str, Any]) -> Optional[MessageFrame]:
    try:
        return MessageFrame(entry=parse_entry(data.get('payload')))
    except EntryValidationError as e:
        logger.warning("Ignoring message frame: %s", e)
        return None


def _parse_error(data: Dict[str, Any]) -> ErrorFrame:
    return ErrorFrame(message=trimmed_or(data.get('message'), DEFAULT_SERVER_ERROR))


def classify(raw: Any) -> Optional[Frame]:
    """
    Turn one inbound transport frame into a Frame.

    Raises TransportDataError when the frame is not text at all. Returns
    None when the frame should be dropped without telling the user:
    undecodable JSON, a non-object, an unknown "type" (newer servers may
    add kinds) or a known kind whose body is unusable.
    """
    if not isinstance(raw, str):
        raise TransportDataError(f"Expected a text frame, got {type(raw).__name__}")

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, RecursionError) as e:
        logger.debug("Discarding undecodable frame: %s", e)
        return None

    if not isinstance(data, dict):
        logger.debug("Discarding non-object frame")
        return None

    type_value = data.get('type')
    if not isinstance(type_value, str) or not FrameType.is_valid(type_value):
        logger.debug("Ignoring frame of unknown type %r", type_value)
        return None
    frame_type = FrameType(type_value)
    if frame_type not in INBOUND_FRAMES:
        logger.debug("Ignoring client-only frame type %r", type_value)
        return None

    if frame_type is FrameType.JOINED:
        return JoinedFrame()
    if frame_type is FrameType.HISTORY:
        return _parse_history(data)
    if frame_type is FrameType.MESSAGE:
        return _parse_message(data)
    if frame_type is FrameType.ERROR:
        return _parse_error(data)
    raise AssertionError(f"Unhandled inbound frame type: {frame_type}")


def create_chat_frame(text: str) -> str:
    """Encode an outbound chat frame. Raises ValueError for blank text."""
    body = text.strip() if isinstance(text, str) else ""
    if not body:
        raise ValueError("Chat text must not be blank")
    return json.dumps({'type': FrameType.CHAT.value, 'text': body}, separators=(',', ':'))
