"""Blocking gateway session: socket ownership, handshake, framed send/receive.

State machine:

    DISCONNECTED -> CONNECTING -> HANDSHAKING -> READY
          ^                                        |
          +------------- error / close() ----------+

``connect()`` never gives up on its own: it retries with the configured
interval until a socket is open or the stop event is set.
"""
from __future__ import annotations
import logging
import socket
import ssl
import threading
from enum import Enum
from typing import Callable, Optional

from interceptor.config.applications import GatewaySettings
from .codec import ENVELOPE_LENGTH_WIDTH, ENVELOPE_MARKER, decode_hex_length, frame
from .exceptions import CodecError, GatewayConnectionError, ProtocolError, StreamError, WorkerStopped
from .messages import (
    HeaderIdentity,
    build_finish,
    build_init_vector,
    build_session_open,
    generate_siid,
    handshake_reply_marker,
)

logger = logging.getLogger(__name__)

SocketFactory = Callable[[GatewaySettings], socket.socket]


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    READY = "ready"


def open_gateway_socket(settings: GatewaySettings) -> socket.socket:
    """Open a (optionally TLS) TCP connection to the connector gateway.

    Raises:
        OSError: On any connection or TLS failure
    """
    sock = socket.create_connection((settings.host, settings.port), timeout=settings.connect_timeout)
    if settings.tls_enabled:
        context = ssl.create_default_context(cafile=settings.ca_file or None)
        if settings.disable_hostname_verification:
            context.check_hostname = False
        server_hostname = settings.cert_subject or settings.host
        try:
            sock = context.wrap_socket(sock, server_hostname=server_hostname)
        except OSError:
            sock.close()
            raise
    # Steady-state reads block until the gateway sends something
    sock.settimeout(None)
    return sock


class GatewaySession:
    """One connection to the connector gateway for one application."""

    def __init__(
        self,
        settings: GatewaySettings,
        identity: HeaderIdentity,
        *,
        retry_interval: float = 300.0,
        stop_event: Optional[threading.Event] = None,
        socket_factory: Optional[SocketFactory] = None,
    ):
        """Initialize a disconnected session.

        Args:
            settings: Connection parameters for the gateway
            identity: Header identification fields
            retry_interval: Seconds to sleep between connection attempts
            stop_event: Set to abort retries and blocking waits
            socket_factory: Opens the socket (defaults to open_gateway_socket)
        """
        self.settings = settings
        self.identity = identity
        self.retry_interval = retry_interval
        self.stop_event = stop_event or threading.Event()
        self._socket_factory = socket_factory or open_gateway_socket
        self._sock: Optional[socket.socket] = None
        self._lock = threading.Lock()
        self.state = SessionState.DISCONNECTED
        self.siid: Optional[str] = None

    @property
    def application(self) -> str:
        return self.settings.application

    @property
    def encryption_type(self) -> str:
        return self.settings.encryption_type

    @property
    def retry_interval_minutes(self) -> float:
        return self.retry_interval / 60.0

    # ─────────────────────────────────────────────────────────────────────────
    # Connection
    # ─────────────────────────────────────────────────────────────────────────
    def connect(self) -> None:
        """Open the socket, retrying forever until it succeeds.

        Raises:
            WorkerStopped: If the stop event is set before a connection is made
        """
        while True:
            if self.stop_event.is_set():
                raise WorkerStopped(f"Stopped before connecting application {self.application}")
            self.state = SessionState.CONNECTING
            try:
                self._open()
                return
            except GatewayConnectionError as e:
                self.state = SessionState.DISCONNECTED
                logger.error(
                    f"Connection to connector gateway for application {self.application} not available "
                    f"({e}). Retry after {self.retry_interval_minutes:g} minutes."
                )
                self._wait(self.retry_interval)

    def _open(self) -> None:
        last_error: Optional[OSError] = None
        for attempt in range(1, self.settings.socket_connect_retry + 1):
            try:
                sock = self._socket_factory(self.settings)
            except OSError as e:
                last_error = e
                logger.debug(
                    f"Socket attempt {attempt}/{self.settings.socket_connect_retry} to "
                    f"{self.settings.host}:{self.settings.port} failed: {e}"
                )
                continue
            with self._lock:
                self._sock = sock
            # stop() may have run close() before the socket was stored
            if self.stop_event.is_set():
                self.close()
                raise WorkerStopped(f"Stopped while connecting application {self.application}")
            logger.info(f"Connected to connector gateway {self.settings.host}:{self.settings.port} "
                        f"for application {self.application}")
            return
        raise GatewayConnectionError(f"{self.settings.host}:{self.settings.port}: {last_error}")

    def _wait(self, seconds: float) -> None:
        if self.stop_event.wait(seconds):
            raise WorkerStopped(f"Stopped while waiting to reconnect application {self.application}")

    def close(self) -> None:
        """Close the socket; safe to call from another thread to unblock receive()."""
        with self._lock:
            sock, self._sock = self._sock, None
        self.state = SessionState.DISCONNECTED
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            sock.close()
        except OSError as e:
            logger.debug(f"Error closing gateway socket for application {self.application}: {e}")

    # ─────────────────────────────────────────────────────────────────────────
    # Handshake
    # ─────────────────────────────────────────────────────────────────────────
    def handshake(self) -> str:
        """Run the 3-step session handshake and return the session SIID.

        Raises:
            StreamError: On I/O failure; any error is logged and re-raised
        """
        self.state = SessionState.HANDSHAKING
        siid = generate_siid()
        encryption_type = self.encryption_type
        logger.info(f"Starting interception handshake for application {self.application}")
        try:
            self.send(build_session_open(
                siid,
                self.identity,
                encryption_type,
                mscs_name=self.settings.mscs_name,
                mscs_type=self.settings.mscs_type,
                mscs_admin=self.settings.mscs_admin,
                app_user=self.settings.app_user,
                app_password=self.settings.app_password,
                charset=self.settings.charset,
                disable_one_phase_aggregation=self.settings.disable_one_phase_aggregation,
            ))
            self._await_reply(handshake_reply_marker(encryption_type, "CC"))

            self.send(build_init_vector(siid, self.identity, encryption_type))
            self._await_reply(handshake_reply_marker(encryption_type, "IV"))

            self.send(build_finish(siid, self.identity, encryption_type))
        except WorkerStopped:
            raise
        except Exception as e:
            self.state = SessionState.DISCONNECTED
            logger.error(f"Handshake failed for application {self.application}: {e}", exc_info=True)
            raise

        self.siid = siid
        self.state = SessionState.READY
        logger.info(f"Completed interception handshake for application {self.application} (SIID {siid})")
        return siid

    def _await_reply(self, marker: str) -> str:
        """Receive until a frame containing ``marker`` arrives; others are dropped."""
        while True:
            reply = self.receive()
            if marker in reply:
                return reply
            logger.debug(f"Discarding frame while waiting for {marker}: {reply[:40]!r}")

    # ─────────────────────────────────────────────────────────────────────────
    # Framed I/O
    # ─────────────────────────────────────────────────────────────────────────
    def _require_socket(self) -> socket.socket:
        sock = self._sock
        if sock is None:
            raise StreamError(f"No open gateway connection for application {self.application}")
        return sock

    def send(self, body: str) -> None:
        """Frame and write one message body."""
        try:
            data = frame(body.encode(self.settings.charset))
        except UnicodeEncodeError as e:
            raise ProtocolError(f"Message cannot be encoded as {self.settings.charset}: {e}")
        sock = self._require_socket()
        try:
            sock.sendall(data)
        except OSError as e:
            raise StreamError(f"Send failed: {e}") from e

    def receive(self) -> str:
        """Block until one complete frame arrives and return its decoded body."""
        marker = self._recv_exact(len(ENVELOPE_MARKER))
        if marker != ENVELOPE_MARKER.encode("ascii"):
            raise StreamError(f"Lost framing: unexpected envelope marker {marker!r}")
        raw_length = self._recv_exact(ENVELOPE_LENGTH_WIDTH)
        try:
            length = decode_hex_length(raw_length)
        except CodecError as e:
            raise StreamError(f"Lost framing: {e}") from e
        body = self._recv_exact(length) if length else b""
        return body.decode(self.settings.charset, errors="replace")

    def _recv_exact(self, size: int) -> bytes:
        sock = self._require_socket()
        buf = bytearray()
        while len(buf) < size:
            try:
                chunk = sock.recv(size - len(buf))
            except OSError as e:
                raise StreamError(f"Receive failed: {e}") from e
            if not chunk:
                raise StreamError("Connection closed by gateway")
            buf.extend(chunk)
        return bytes(buf)
