import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


_CLOSED = object()


class DummyWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.sent_messages: List[str] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent_messages.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(_CLOSED)

    # server side helpers

    def feed(self, frame: Any) -> None:
        """Queue an inbound frame; dicts are JSON encoded."""
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._inbox.put_nowait(frame)

    def server_close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class DummyConnector:
    """Replaces websockets.connect; records calls and hands out DummyWebSockets."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.sockets: List[DummyWebSocket] = []
        self.fail_with: Optional[BaseException] = None

    async def __call__(self, url: str, **kwargs: Any) -> DummyWebSocket:
        self.calls.append((url, kwargs))
        if self.fail_with is not None:
            raise self.fail_with
        ws = DummyWebSocket(url)
        self.sockets.append(ws)
        return ws

    @property
    def last(self) -> DummyWebSocket:
        return self.sockets[-1]


async def settle(rounds: int = 10) -> None:
    """Let background reader tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def endpoint(room_id: str, user_name: str) -> str:
    return f"ws://test/?roomId={room_id}&userName={user_name}"


def history_entry(id, text="hi", user_name="bob", timestamp=1000, room_id="lobby") -> Dict[str, Any]:
    return {"id": id, "roomId": room_id, "userName": user_name, "text": text, "timestamp": timestamp}


@pytest.fixture
def connector() -> DummyConnector:
    return DummyConnector()
