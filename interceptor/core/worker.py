"""Interceptor workers: one receive loop per primary application.

Loop policy per error kind:

- StreamError: close, reconnect and re-run the handshake
- ProtocolError: log, skip the frame, keep the session
- anything else (including EventSinkError): log, pause briefly, keep the session
- WorkerStopped: leave the loop

Usage:
    service = InterceptorService.from_settings(load_settings())
    service.start()
    ...
    service.stop()
"""
from __future__ import annotations
import logging
import threading
from typing import Any, Callable, Optional

from interceptor.config.applications import (
    ApplicationRecord,
    GatewaySettings,
    YamlConfigSource,
    check_parser_attributes,
)
from interceptor.config.settings import AppConfig
from scripts import audit
from .dispatcher import InterceptionDispatcher
from .exceptions import ProtocolError, StreamError, WorkerStopped
from .messages import HeaderIdentity
from .registry import ConfigSource, EndpointConfig, EndpointRegistry
from .sinks import (
    AuditLogSink,
    AuditPasswordNotifier,
    EventSink,
    HttpEventSink,
    HttpPasswordNotifier,
    PasswordNotifier,
    SinkClient,
)
from .transport import GatewaySession, SessionState

logger = logging.getLogger(__name__)

SessionFactory = Callable[[GatewaySettings, threading.Event], GatewaySession]


class InterceptorWorker(threading.Thread):
    """Runs the receive loop for one primary application until stopped."""

    def __init__(
        self,
        application: ApplicationRecord,
        source: ConfigSource,
        sink: EventSink,
        notifier: PasswordNotifier,
        *,
        identity: Optional[HeaderIdentity] = None,
        retry_interval: float = 300.0,
        error_pause: float = 0.5,
        session_factory: Optional[SessionFactory] = None,
    ):
        super().__init__(name=f"interceptor-{application.name}", daemon=True)
        self.application = application
        self.source = source
        self.sink = sink
        self.notifier = notifier
        self.identity = identity or HeaderIdentity()
        self.retry_interval = retry_interval
        self.error_pause = error_pause
        self.stop_event = threading.Event()

        settings = GatewaySettings.from_application(application)
        self.endpoint = EndpointConfig.from_application(application)
        if session_factory is None:
            self.session = GatewaySession(
                settings,
                self.identity,
                retry_interval=retry_interval,
                stop_event=self.stop_event,
            )
        else:
            self.session = session_factory(settings, self.stop_event)
        self.dispatcher: Optional[InterceptionDispatcher] = None

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────
    def stop(self) -> None:
        """Signal the loop to exit and unblock any pending receive."""
        self.stop_event.set()
        self.session.close()

    def run(self) -> None:
        logger.info(f"Interceptor worker started for application {self.application.name}")
        try:
            self._establish()
            self.dispatcher = InterceptionDispatcher(
                self.session,
                self._build_registry(),
                self.sink,
                self.notifier,
                application=self.application.name,
            )
            self._loop()
        except WorkerStopped:
            pass
        finally:
            self.session.close()
            logger.info(f"Interceptor worker stopped for application {self.application.name}")

    def _establish(self) -> None:
        """Connect and handshake, retrying until it succeeds or the worker stops."""
        while True:
            self.session.connect()
            try:
                self.session.handshake()
                return
            except WorkerStopped:
                raise
            except Exception:
                # handshake() already logged the cause
                self.session.close()
                if self.stop_event.wait(self.retry_interval):
                    raise WorkerStopped(f"Stopped during handshake retry for {self.application.name}")

    def _build_registry(self) -> EndpointRegistry:
        try:
            registry = EndpointRegistry.build(self.application, self.source)
        except Exception as e:
            logger.error(
                f"Failed to load cluster endpoints for application {self.application.name}: {e}; "
                f"using the application alone"
            )
            registry = EndpointRegistry([self.endpoint])
        logger.info(f"Endpoint registry for {self.application.name}: {', '.join(registry.names())}")
        return registry

    # ─────────────────────────────────────────────────────────────────────────
    # Receive loop
    # ─────────────────────────────────────────────────────────────────────────
    def _loop(self) -> None:
        dispatcher = self.dispatcher
        while not self.stop_event.is_set():
            try:
                dispatcher.receive_one()
            except WorkerStopped:
                raise
            except StreamError as e:
                if self.stop_event.is_set():
                    break
                logger.error(
                    f"Connection to connector gateway for application {self.application.name} lost "
                    f"({e}) [thread {threading.get_ident()}]. Reconnecting; retry interval "
                    f"{self.retry_interval / 60.0:g} minutes."
                )
                self.session.close()
                self._establish()
            except ProtocolError as e:
                dispatcher.counters.frames_skipped += 1
                logger.error(f"Skipping interception for application {self.application.name}: {e}")
            except Exception as e:
                logger.error(
                    f"Exception while receiving interceptions for application {self.application.name} "
                    f"[thread {threading.get_ident()}]: {e}",
                    exc_info=True,
                )
                if self.stop_event.wait(self.error_pause):
                    break
            dispatcher.log_counters()

    # ─────────────────────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────────────────────
    @property
    def is_ready(self) -> bool:
        return self.session.state is SessionState.READY

    def status(self) -> dict[str, Any]:
        dispatcher = self.dispatcher
        return {
            "application": self.application.name,
            "alive": self.is_alive(),
            "state": self.session.state.value,
            "siid": self.session.siid,
            "counters": dispatcher.counters.snapshot() if dispatcher else {},
            "pending": dispatcher.pending_siids() if dispatcher else [],
        }


def build_sinks(config: AppConfig) -> tuple[EventSink, PasswordNotifier]:
    """Audit trail always, wrapping downstream HTTP delivery when EVENT_SINK_URL is set."""
    delivery_sink: Optional[EventSink] = None
    delivery_notifier: Optional[PasswordNotifier] = None
    if config.event_sink_enabled:
        client = SinkClient(config.event_sink_url, token=config.event_sink_token or None)
        delivery_sink = HttpEventSink(client)
        delivery_notifier = HttpPasswordNotifier(client)
    return AuditLogSink(delivery_sink), AuditPasswordNotifier(delivery_notifier)


class InterceptorService:
    """Owns one InterceptorWorker per application with interception enabled."""

    def __init__(self, workers: list[InterceptorWorker]):
        self.workers = list(workers)

    @classmethod
    def from_settings(cls, config: AppConfig, source: Optional[YamlConfigSource] = None) -> "InterceptorService":
        """Build workers for every interception application.

        Raises:
            ConfigError: If the applications file or an application is invalid
        """
        audit.configure(config.audit_log_dir)
        source = source or YamlConfigSource.from_file(config.applications_file)
        for app in source.applications():
            check_parser_attributes(app.name, app.attributes)
        sink, notifier = build_sinks(config)
        identity = HeaderIdentity(config.data_center_id, config.app_id, config.workstation_id)

        workers = [
            InterceptorWorker(
                app,
                source,
                sink,
                notifier,
                identity=identity,
                retry_interval=config.retry_interval_seconds,
                error_pause=config.error_pause_seconds,
            )
            for app in source.interception_applications()
        ]
        if not workers:
            logger.warning("No application has interception enabled; nothing to start")
        return cls(workers)

    def start(self) -> None:
        for worker in self.workers:
            worker.start()

    def stop(self, timeout: float = 5.0) -> None:
        for worker in self.workers:
            worker.stop()
        for worker in self.workers:
            if worker.is_alive():
                worker.join(timeout)

    def is_ready(self) -> bool:
        return bool(self.workers) and all(worker.is_ready for worker in self.workers)

    def status(self) -> dict[str, Any]:
        return {
            "ready": self.is_ready(),
            "workers": [worker.status() for worker in self.workers],
        }
