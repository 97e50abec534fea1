"""Interceptor-specific exceptions for error handling.

Each class maps to one recovery policy in the receive loop:

- GatewayConnectionError: retried forever with the configured interval
- StreamError: reconnect and re-run the handshake
- ProtocolError (and subclasses): skip the offending frame
- EventSinkError: logged, short pause, loop continues
"""


class InterceptorError(Exception):
    """Base exception for all interceptor operations."""
    pass


class ConfigError(InterceptorError):
    """Application or process configuration is invalid."""
    pass


class GatewayConnectionError(InterceptorError):
    """The connector gateway cannot be reached or refused the session."""
    pass


class StreamError(InterceptorError):
    """I/O failure or lost framing on an established session."""
    pass


class WorkerStopped(InterceptorError):
    """Raised from blocking waits once the worker's stop signal is set."""
    pass


class ProtocolError(InterceptorError):
    """A received frame cannot be processed; the frame is skipped."""
    pass


class CodecError(ProtocolError):
    """Malformed or out-of-range hexadecimal length field."""
    pass


class RecordParseError(ProtocolError):
    """Operation record payload is truncated or malformed.

    Attributes:
        operation: Two-character operation code being parsed
        offset: Byte offset in the payload where parsing failed
    """

    def __init__(self, message: str, operation: str = "", offset: int = -1):
        self.operation = operation
        self.offset = offset
        detail = message
        if operation:
            detail = f"[{operation}] {detail}"
        if offset >= 0:
            detail = f"{detail} (offset {offset})"
        super().__init__(detail)


class UnsupportedOperationError(ProtocolError):
    """The endpoint cannot represent the intercepted operation."""
    pass


class EventSinkError(InterceptorError):
    """Delivery of an event to the downstream sink failed.

    Attributes:
        status_code: HTTP status code (0 when no response was received)
        message: Error message from response
        endpoint: Sink URL that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")
