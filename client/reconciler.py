from __future__ import annotations
from typing import Callable, Dict, List, Optional

from client.state import (
    EMPTY_IDENTITY,
    ConnectionStatus,
    Identity,
    SessionView,
    Transcript,
)
from client.ws_client import InboundData, TransportListener
from shared.FrameTypes import CLOSE_JOIN_REJECTED, INBOUND_FRAMES, FrameType
from shared.envelope import (
    ErrorFrame,
    Frame,
    HistoryFrame,
    JoinedFrame,
    MessageFrame,
    ProtocolRejection,
    TransportDataError,
    TransportFailure,
    classify,
)
from shared.log import get_logger, log_frame
from shared.message import normalize
from shared.utils import now_ms

logger = get_logger(__name__)

MALFORMED_DATA_TEXT = "Received malformed data from server."
JOIN_REJECTED_TEXT = "Connection rejected: verify room ID and username."
CONNECTION_ERROR_TEXT = "Connection error: see log for details."

Observer = Callable[[SessionView], None]


class SessionReconciler(TransportListener):
    """
    Folds transport events and protocol frames into the session state:
    the transcript, the connection status and the last failure.

    Nothing else writes to that state. Every transport callback first
    asks `is_current(generation)` and returns without touching anything
    when the event comes from a connection that has been superseded.
    """

    def __init__(
        self,
        is_current: Optional[Callable[[int], bool]] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._is_current = is_current or (lambda generation: True)
        self._clock = clock
        self.identity: Identity = EMPTY_IDENTITY
        self.status = ConnectionStatus.AWAITING_INPUT
        self.transcript = Transcript()
        self.failure: Optional[Exception] = None
        self._observers: List[Observer] = []

        self._frame_handlers: Dict[FrameType, Callable[..., None]] = {
            FrameType.JOINED: self._on_joined,
            FrameType.HISTORY: self._on_history,
            FrameType.MESSAGE: self._on_message_frame,
            FrameType.ERROR: self._on_error_frame,
        }
        missing = INBOUND_FRAMES - set(self._frame_handlers)
        assert not missing, f"No handler for inbound frames: {missing}"

    # ========================================
    #           READ SIDE
    # ========================================

    @property
    def last_error(self) -> Optional[str]:
        return str(self.failure) if self.failure is not None else None

    def view(self) -> SessionView:
        return SessionView(
            status=self.status,
            transcript=self.transcript.snapshot(),
            last_error=self.last_error,
            identity=self.identity,
        )

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Call observer with a fresh SessionView after every change. Returns an unsubscribe function."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self) -> None:
        if not self._observers:
            return
        view = self.view()
        for observer in list(self._observers):
            try:
                observer(view)
            except Exception:
                logger.exception("Session observer failed")

    # ========================================
    #           SESSION LIFECYCLE
    # ========================================

    def reset(self, identity: Identity) -> None:
        """New identity: forget the previous room's transcript and error."""
        self.identity = identity
        self.transcript.clear()
        self.failure = None
        self.status = ConnectionStatus.CONNECTING if identity.is_complete else ConnectionStatus.AWAITING_INPUT
        logger.debug("Session reset, status %s", self.status.value, extra=identity.log_context())
        self._notify()

    def report(self, failure: Exception) -> None:
        """Surface a failure found outside the transport (bad join input, send without a room)."""
        self.failure = failure
        self._notify()

    def begin_closing(self) -> None:
        self.status = ConnectionStatus.CLOSING
        self._notify()

    def mark_closed(self) -> None:
        self.status = ConnectionStatus.DISCONNECTED
        self._notify()

    # ========================================
    #           TRANSPORT EVENTS
    # ========================================

    def _stale(self, generation: int, event: str) -> bool:
        if self._is_current(generation):
            return False
        logger.debug("Ignoring %s from superseded connection", event, extra={"gen": generation})
        return True

    def on_open(self, generation: int) -> None:
        if self._stale(generation, "open"):
            return
        # Stays Connecting until the server acknowledges the join
        self.failure = None
        self.status = ConnectionStatus.CONNECTING
        self._notify()

    def on_message(self, generation: int, data: InboundData) -> None:
        if self._stale(generation, "frame"):
            return
        try:
            frame = classify(data)
        except TransportDataError as e:
            logger.error("Malformed data from server: %s", e, extra={"gen": generation})
            self.failure = TransportDataError(MALFORMED_DATA_TEXT)
            self._notify()
            return
        if frame is None:
            return

        log_frame(logger, "debug", "Applying frame", frame=frame, gen=generation)
        self.apply(frame)

    def on_close(self, generation: int, code: int, reason: str) -> None:
        if self._stale(generation, "close"):
            return
        if code == CLOSE_JOIN_REJECTED:
            logger.warning("Join rejected by server", extra=self.identity.log_context())
            self.failure = ProtocolRejection(JOIN_REJECTED_TEXT, code=code)
            self.status = ConnectionStatus.ERROR
        else:
            self.status = ConnectionStatus.DISCONNECTED
        self._notify()

    def on_error(self, generation: int, error: Exception) -> None:
        if self._stale(generation, "error"):
            return
        logger.warning("Transport error: %s", error, extra={"gen": generation})
        self.failure = TransportFailure(CONNECTION_ERROR_TEXT)
        self.status = ConnectionStatus.ERROR
        self._notify()

    # ========================================
    #           FRAMES
    # ========================================

    def apply(self, frame: Frame) -> None:
        """Apply an already classified frame to the session state."""
        self._frame_handlers[frame.type](frame)
        self._notify()

    def _on_joined(self, frame: JoinedFrame) -> None:
        self.failure = None
        self.status = ConnectionStatus.CONNECTED

    def _on_history(self, frame: HistoryFrame) -> None:
        received_at = self._clock()
        self.transcript.replace(normalize(entry, received_at) for entry in frame.entries)
        self.failure = None
        self.status = ConnectionStatus.CONNECTED

    def _on_message_frame(self, frame: MessageFrame) -> None:
        message = normalize(frame.entry, self._clock())
        if not self.transcript.upsert(message):
            logger.debug("Replaced message %s in place", message.id)

    def _on_error_frame(self, frame: ErrorFrame) -> None:
        logger.warning("Server error: %s", frame.message, extra=self.identity.log_context())
        self.failure = ProtocolRejection(frame.message)
        self.status = ConnectionStatus.ERROR
