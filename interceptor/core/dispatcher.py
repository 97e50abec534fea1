"""Interception dispatcher: one received frame in, confirmations and events out.

Per frame:

1. Keep-alive or shorter than the minimum header: dropped.
2. RS (record start): remembered under its SIID.
3. Anything else completes a transaction: chunk confirmation if the frame is
   chunk-final, RS lookup, endpoint resolution, record confirmation unless
   the marker says final, then dispatch by operation family.
"""
from __future__ import annotations
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional, Protocol

from .events import PasswordChangeEvent
from .factory import create_resource_event
from .messages import (
    HeaderIdentity,
    InterceptionFrame,
    build_chunk_confirmation,
    build_record_confirmation,
)
from .records import ATTR_PASSWORD, ATTR_USER_ID, OperationCode, OperationFamily, parse_password
from .registry import EndpointConfig, EndpointRegistry
from .sinks import EventSink, PasswordNotifier

logger = logging.getLogger(__name__)


class FrameChannel(Protocol):
    """The parts of a gateway session the dispatcher talks to."""
    identity: HeaderIdentity

    @property
    def encryption_type(self) -> str:
        ...

    def send(self, body: str) -> None:
        ...

    def receive(self) -> str:
        ...


class FrameOutcome(str, Enum):
    KEEPALIVE = "keepalive"
    SHORT = "short"
    RECORD_START = "record_start"
    UNKNOWN_TRANSACTION = "unknown_transaction"
    UNKNOWN_ENDPOINT = "unknown_endpoint"
    UNKNOWN_OPERATION = "unknown_operation"
    PASSWORD_NOTIFIED = "password_notified"
    EVENT_SUBMITTED = "event_submitted"


@dataclass
class InterceptionCounters:
    """Per-worker counters."""
    records_started: int = 0
    records_received: int = 0
    confirmations_sent: int = 0
    events_emitted: int = 0
    frames_skipped: int = 0

    def snapshot(self) -> dict[str, int]:
        return asdict(self)


class InterceptionDispatcher:
    """Pairs RS frames with completions and routes finished records."""

    def __init__(
        self,
        channel: FrameChannel,
        registry: EndpointRegistry,
        sink: EventSink,
        notifier: PasswordNotifier,
        *,
        application: str = "",
    ):
        self.channel = channel
        self.registry = registry
        self.sink = sink
        self.notifier = notifier
        self.application = application
        self.pending: dict[str, str] = {}
        self.counters = InterceptionCounters()
        self._handlers = {
            OperationFamily.PASSWORD: self._handle_password,
            OperationFamily.ACCOUNT: self._handle_resource,
            OperationFamily.CONNECTION: self._handle_resource,
            OperationFamily.GROUP: self._handle_resource,
        }

    def receive_one(self) -> FrameOutcome:
        """Block for the next frame and handle it."""
        return self.handle(self.channel.receive())

    def handle(self, text: str) -> FrameOutcome:
        """Process one received frame body.

        Raises:
            ProtocolError: If the RS trailer or record payload is malformed,
                or the endpoint cannot represent the operation
            StreamError: If a confirmation cannot be written
        """
        frame = InterceptionFrame(text)
        if frame.is_keepalive:
            logger.debug("Keep alive message received")
            return FrameOutcome.KEEPALIVE
        if frame.is_short:
            logger.debug(f"Dropping short frame ({len(frame)} chars)")
            return FrameOutcome.SHORT

        siid = frame.siid
        if frame.is_record_start:
            self.pending[siid] = text
            self.counters.records_started += 1
            return FrameOutcome.RECORD_START

        if self.pending and siid not in self.pending:
            logger.error(
                f"Ignoring message for SIID {siid}: the start message is not found in active transactions"
            )
            return FrameOutcome.UNKNOWN_TRANSACTION

        # The agent holds its next chunk until this confirmation arrives
        if frame.is_chunk_final:
            self._send(build_chunk_confirmation(text))

        rs_text = self.pending.pop(siid, None)
        self.counters.records_received += 1
        if rs_text is None:
            logger.warning(f"No start message for SIID {siid}; skipping completion")
            return FrameOutcome.UNKNOWN_TRANSACTION

        mscs_type, mscs_name = InterceptionFrame(rs_text).managed_system()
        endpoint = self.registry.lookup(mscs_type, mscs_name)
        if endpoint is None:
            logger.warning(
                f"No endpoint registered for managed system {mscs_type}/{mscs_name}; skipping SIID {siid}"
            )
            return FrameOutcome.UNKNOWN_ENDPOINT
        logger.info(f"Received a new interception with SIID {siid} for application {endpoint.name}")

        if frame.needs_record_confirmation:
            self._send(build_record_confirmation(siid, self.channel.identity, self.channel.encryption_type))

        code = OperationCode.parse(frame.type_code)
        if code is None:
            logger.debug(f"Skipping operation: {frame.type_code!r}")
            return FrameOutcome.UNKNOWN_OPERATION

        return self._handlers[code.family](code, frame, endpoint)

    def _send(self, body: str) -> None:
        self.channel.send(body)
        self.counters.confirmations_sent += 1

    def _handle_password(self, code: OperationCode, frame: InterceptionFrame,
                         endpoint: EndpointConfig) -> FrameOutcome:
        attrs = parse_password(frame.payload, endpoint, code.value)
        event = PasswordChangeEvent(
            application=endpoint.name,
            user_id=attrs[ATTR_USER_ID],
            password=attrs[ATTR_PASSWORD],
            siid=frame.siid,
        )
        self.notifier.notify(event.application, event.user_id, event.password, siid=event.siid)
        self.counters.events_emitted += 1
        logger.info(f"Adding a new {code.value} interception with SIID {frame.siid} for processing")
        return FrameOutcome.PASSWORD_NOTIFIED

    def _handle_resource(self, code: OperationCode, frame: InterceptionFrame,
                         endpoint: EndpointConfig) -> FrameOutcome:
        event = create_resource_event(code, frame.payload, endpoint, frame.siid)
        self.sink.submit(event)
        self.counters.events_emitted += 1
        logger.info(f"Adding a new {code.value} interception with SIID {frame.siid} for processing")
        return FrameOutcome.EVENT_SUBMITTED

    def pending_siids(self) -> list[str]:
        return sorted(self.pending)

    def log_counters(self, endpoint: Optional[str] = None) -> None:
        counters = self.counters
        logger.debug(
            f"Counters for {endpoint or self.application} - Init msgs received: {counters.records_started} "
            f"Data received: {counters.records_received} Confirmations sent: {counters.confirmations_sent}"
        )
