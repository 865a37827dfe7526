#!/usr/bin/env python3
"""
roomchat client session

ChatSession is what a front end talks to: join a room, send text, read
the status and transcript. It wires the connection manager (one live
WebSocket per room/user pair) to the session reconciler (the only
writer of transcript and status).

Usage:
    async with ChatSession(load_config()) as session:
        session.subscribe(render)
        await session.join("lobby", "alice")
        await session.send_text("hi")
"""

from __future__ import annotations
import asyncio
from typing import Callable, Optional, Tuple

from client.config import ClientConfig
from client.reconciler import Observer, SessionReconciler
from client.state import (
    EMPTY_IDENTITY,
    IDENTITY_REQUIRED_TEXT,
    NOT_JOINED_TEXT,
    ConnectionStatus,
    Identity,
    IncompleteIdentityError,
    NotJoinedError,
    SessionView,
)
from client.ws_client import ConnectionManager, Connector, EndpointBuilder
from shared.envelope import create_chat_frame
from shared.log import get_logger
from shared.message import Message
from shared.utils import trimmed

logger = get_logger(__name__)


class ChatSession:

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        endpoint_builder: Optional[EndpointBuilder] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._reconciler = SessionReconciler(is_current=self._is_current)
        self._manager = ConnectionManager(
            self._reconciler,
            endpoint_builder or self.config.build_endpoint,
            connector=connector,
            connect_kwargs=self.config.connect_kwargs(),
        )
        # join, leave and close run one at a time
        self._lock = asyncio.Lock()

    def _is_current(self, generation: int) -> bool:
        return self._manager.is_current(generation)

    # ========================================
    #           PRESENTATION READ SIDE
    # ========================================

    @property
    def status(self) -> ConnectionStatus:
        return self._reconciler.status

    @property
    def transcript(self) -> Tuple[Message, ...]:
        return self._reconciler.transcript.snapshot()

    @property
    def last_error(self) -> Optional[str]:
        return self._reconciler.last_error

    @property
    def identity(self) -> Identity:
        return self._reconciler.identity

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    @property
    def reconciler(self) -> SessionReconciler:
        return self._reconciler

    @property
    def can_send(self) -> bool:
        link = self._manager.current
        return link is not None and link.is_open

    def view(self) -> SessionView:
        return self._reconciler.view()

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        return self._reconciler.subscribe(observer)

    # ========================================
    #           ACTIONS
    # ========================================

    async def join(self, room_id: Optional[str], user_name: Optional[str]) -> bool:
        """
        Join room_id as user_name. Returns True if a new connection was
        started, False when the input was incomplete or the same identity
        is already connected.
        """
        identity = Identity.from_raw(room_id, user_name)
        async with self._lock:
            if not identity.is_complete:
                await self._switch_identity(EMPTY_IDENTITY)
                self._reconciler.report(IncompleteIdentityError(IDENTITY_REQUIRED_TEXT))
                return False

            if self._manager.is_live(identity):
                logger.debug("Already joined", extra=identity.log_context())
                return False

            await self._switch_identity(identity)
            self._manager.open(identity)
            return True

    async def leave(self) -> None:
        """Drop the current room and go back to waiting for input."""
        async with self._lock:
            await self._switch_identity(EMPTY_IDENTITY)

    async def _switch_identity(self, identity: Identity) -> None:
        # Old connection is revoked before the state is reset for the new one
        await self._manager.close()
        self._reconciler.reset(identity)

    async def send_text(self, text: str) -> bool:
        """Send a chat line. Returns True if it was handed to the transport."""
        body = trimmed(text)
        if not body:
            return False
        if not self.identity.is_complete:
            self._reconciler.report(NotJoinedError(NOT_JOINED_TEXT))
            return False
        return await self._manager.send(create_chat_frame(body))

    async def close(self) -> None:
        """Shut the session down. The transcript stays readable."""
        async with self._lock:
            link = self._manager.current
            if link is None:
                return
            if not link.is_live:
                await self._manager.close()
                return
            self._reconciler.begin_closing()
            await self._manager.close()
            self._reconciler.mark_closed()

    async def __aenter__(self) -> ChatSession:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
