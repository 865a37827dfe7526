from __future__ import annotations
import asyncio
import itertools
from abc import ABC, abstractmethod
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, InvalidStatus

from client.state import EMPTY_IDENTITY, Identity, SessionError
from shared.FrameTypes import CLOSE_ABNORMAL, CLOSE_NORMAL
from shared.envelope import TransportFailure
from shared.log import get_logger

logger = get_logger(__name__)


EndpointBuilder = Callable[[str, str], str]
Connector = Callable[..., Awaitable[Any]]
InboundData = Union[str, bytes]


class TransportListener(ABC):
    """
    Receives transport events for one connection generation at a time.

    Every callback runs on the event loop and must not block. The
    generation lets the listener double check that the event still
    belongs to the current connection.
    """

    @abstractmethod
    def on_open(self, generation: int) -> None:
        ...

    @abstractmethod
    def on_message(self, generation: int, data: InboundData) -> None:
        ...

    @abstractmethod
    def on_close(self, generation: int, code: int, reason: str) -> None:
        ...

    @abstractmethod
    def on_error(self, generation: int, error: Exception) -> None:
        ...


class ConnectionLink:
    """One WebSocket connection for one identity. Links are never reused."""

    def __init__(self, identity: Identity, url: str, generation: int) -> None:
        self.identity = identity
        self.url = url
        self.generation = generation
        self.websocket: Optional[Any] = None
        self.task: Optional[asyncio.Task] = None
        # Shared by every listener callback of this link; setting it silences all of them
        self.revoked = False
        self.opened = False
        self.finished = False

    @property
    def is_open(self) -> bool:
        return self.websocket is not None and self.opened and not self.finished and not self.revoked

    @property
    def is_live(self) -> bool:
        """Not yet closed from either side."""
        return not self.revoked and not self.finished

    def log_context(self) -> Dict[str, Any]:
        context: Dict[str, Any] = dict(self.identity.log_context())
        context["gen"] = self.generation
        return context

    async def send(self, data: str) -> None:
        if self.websocket is None:
            raise SessionError("Connection is not open")
        await self.websocket.send(data)

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Revoke, close the socket and stop the reader task."""
        self.revoked = True
        websocket = self.websocket
        if websocket is not None:
            try:
                await websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.error(f"Error closing connection: {e}", extra=self.log_context())

        task = self.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task


class ConnectionManager:
    """
    Owns the single current connection, keyed by identity.

    open() starts a connection in the background and returns at once;
    connection failures come back as listener events, nothing is
    retried. close() is the only teardown path: it forgets the current
    link before closing it, so anything the old socket still delivers
    is recognised as stale and dropped.
    """

    def __init__(
        self,
        listener: TransportListener,
        endpoint_builder: EndpointBuilder,
        *,
        connector: Optional[Connector] = None,
        connect_kwargs: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._listener = listener
        self._endpoint_builder = endpoint_builder
        self._connector: Connector = connector or websockets.connect
        self._connect_kwargs = dict(connect_kwargs or {})
        self._generations = itertools.count(1)
        self._link: Optional[ConnectionLink] = None

    @property
    def current(self) -> Optional[ConnectionLink]:
        return self._link

    @property
    def identity(self) -> Identity:
        return self._link.identity if self._link is not None else EMPTY_IDENTITY

    def is_current(self, generation: int) -> bool:
        link = self._link
        return link is not None and link.generation == generation and not link.revoked

    def is_live(self, identity: Identity) -> bool:
        """True if the current link belongs to identity and has not closed."""
        link = self._link
        return link is not None and link.identity == identity and link.is_live

    def open(self, identity: Identity) -> Optional[ConnectionLink]:
        """Start connecting for identity. Incomplete identities get no connection."""
        if not identity.is_complete:
            return None
        if self._link is not None:
            raise SessionError("A connection is already current; close it first")

        url = self._endpoint_builder(identity.room_id, identity.user_name)
        link = ConnectionLink(identity, url, next(self._generations))
        self._link = link
        link.task = asyncio.create_task(self._run(link), name=f"roomchat-conn-{link.generation}")
        logger.info("Opening connection to %s", url, extra=link.log_context())
        return link

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "client closed") -> Optional[ConnectionLink]:
        """Tear down the current link, if any. Safe to call repeatedly."""
        link = self._link
        if link is None:
            return None
        self._link = None
        link.revoked = True
        logger.info("Closing connection", extra=link.log_context())
        await link.close(code=code, reason=reason)
        return link

    async def send(self, data: str) -> bool:
        """Send on the current link. Returns False when there is no open link."""
        link = self._link
        if link is None or not link.is_open:
            logger.debug("Not sending: no open connection")
            return False
        try:
            await link.send(data)
        except ConnectionClosed:
            logger.warning("Connection closed while sending", extra=link.log_context())
            return False
        logger.debug("Sent %d bytes", len(data), extra=link.log_context())
        return True

    # ========================================
    #           READER TASK
    # ========================================

    async def _run(self, link: ConnectionLink) -> None:
        try:
            websocket = await self._connector(link.url, **self._connect_kwargs)
        except asyncio.CancelledError:
            raise
        except InvalidStatus as e:
            status = e.response.status_code
            logger.warning("Handshake rejected with HTTP %s", status, extra=link.log_context())
            self._deliver_close(link, status, f"HTTP {status}")
            return
        except Exception as e:
            logger.warning("Connection failed: %s", e, extra=link.log_context())
            self._deliver(link, "error", TransportFailure(str(e)))
            self._deliver_close(link, CLOSE_ABNORMAL, str(e))
            return

        link.websocket = websocket
        if link.revoked:
            # Superseded while the handshake was in flight
            with suppress(Exception):
                await websocket.close(code=CLOSE_NORMAL, reason="superseded")
            return

        link.opened = True
        logger.info("Connection open", extra=link.log_context())
        self._deliver(link, "open")

        try:
            async for data in websocket:
                self._deliver(link, "message", data)
        except asyncio.CancelledError:
            raise
        except ConnectionClosedError as e:
            logger.debug("Connection closed with error: %s", e, extra=link.log_context())
        except Exception as e:
            logger.error("Unexpected transport error: %s", e, extra=link.log_context())
            self._deliver(link, "error", TransportFailure(str(e)))

        code = getattr(websocket, "close_code", None) or CLOSE_ABNORMAL
        reason = getattr(websocket, "close_reason", None) or ""
        self._deliver_close(link, code, reason)

    def _deliver_close(self, link: ConnectionLink, code: int, reason: str) -> None:
        link.finished = True
        self._deliver(link, "close", code, reason)

    def _deliver(self, link: ConnectionLink, event: str, *args: Any) -> None:
        if link.revoked or self._link is not link:
            logger.debug("Dropping stale %s event", event, extra=link.log_context())
            return
        if event == "close":
            logger.info("Connection closed (code %s)", args[0], extra=link.log_context())
        handler = getattr(self._listener, f"on_{event}")
        try:
            handler(link.generation, *args)
        except Exception:
            logger.exception("Listener failed handling %s event", event, extra=link.log_context())
