"""Dual-listener startup.

Brings up a TLS listener when certificate loading succeeded and always a
plaintext listener, both serving the same route table.

Failure policy:
- A CertError is logged as a warning and the server runs HTTP-only.
- A bind failure on either listener aborts startup with BootstrapError,
  leaving no listener bound.
"""

import enum
import logging
import threading
import time
from typing import Optional, Union

from dualhttpd.config import ServerConfig
from dualhttpd.httpd import Listener, ListenerBinding, Protocol, TLSListener
from dualhttpd.routes import RouteTable, handler_for
from dualhttpd.tls import CertError, TLSServerConfig

logger = logging.getLogger(__name__)

CertResult = Union[TLSServerConfig, CertError]


class BootstrapState(str, enum.Enum):
    """Startup and lifecycle states, in order."""

    INIT = "init"
    CERT_EVALUATED = "cert_evaluated"
    TLS_BOUND = "tls_bound"
    TLS_SKIPPED = "tls_skipped"
    PLAIN_BOUND = "plain_bound"
    SERVING = "serving"
    STOPPED = "stopped"


class BootstrapError(Exception):
    """A listener could not be bound. Always fatal for startup."""

    def __init__(self, protocol: Protocol, host: str, port: int, cause: OSError):
        self.protocol = protocol
        self.host = host
        self.port = port
        self.cause = cause
        super().__init__(
            f"Failed to bind {protocol.value} listener on {host}:{port}: {cause}"
        )


class RunningServer:
    """Bound listeners plus their lifecycle.

    Created by bootstrap() in the PLAIN_BOUND state; start() moves it to
    SERVING and shutdown() to STOPPED.
    """

    def __init__(
        self,
        listeners: dict,
        routes: RouteTable,
        shutdown_grace: float,
        log: logging.Logger,
        tls_error: Optional[CertError] = None,
    ):
        self.listeners: dict[Protocol, Listener] = listeners
        self.routes = routes
        self.shutdown_grace = shutdown_grace
        self.tls_error = tls_error
        self.state = BootstrapState.PLAIN_BOUND
        self._log = log
        self._threads: list[threading.Thread] = []
        self._stop_requested = threading.Event()
        self._lock = threading.Lock()

    @property
    def tls_enabled(self) -> bool:
        return Protocol.TLS in self.listeners

    @property
    def bindings(self) -> list[ListenerBinding]:
        """Actual bound addresses (resolves port 0 to the assigned port)."""
        return [listener.binding for listener in self.listeners.values()]

    def url(self, protocol: Protocol) -> str:
        """Base URL of a listener.

        Raises:
            KeyError: If no listener is bound for protocol
        """
        return self.listeners[protocol].binding.url

    def _transition(self, state: BootstrapState):
        self._log.debug("Server state: %s -> %s", self.state.value, state.value)
        self.state = state

    def start(self):
        """Run every listener's accept loop on its own thread."""
        with self._lock:
            if self.state is not BootstrapState.PLAIN_BOUND:
                raise RuntimeError(f"Cannot start server in state {self.state.value}")
            for protocol, listener in self.listeners.items():
                thread = threading.Thread(
                    target=listener.serve_forever,
                    name=f"{protocol.value}-accept",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)
                self._log.info("Serving %s", listener.binding.url)
            self._transition(BootstrapState.SERVING)

    def request_stop(self):
        """Ask serve_forever() to return. Safe to call from signal handlers."""
        self._stop_requested.set()

    def serve_forever(self):
        """Start serving and block until request_stop() or Ctrl+C."""
        self.start()
        try:
            while not self._stop_requested.wait(0.5):
                pass
        except KeyboardInterrupt:
            self._log.info("Shutdown requested")
        finally:
            self.shutdown()

    def shutdown(self, grace: Optional[float] = None):
        """Stop accepting, then give in-flight requests time to finish.

        Args:
            grace: Seconds to wait for in-flight requests across all
                listeners (default: shutdown_grace from the configuration)
        """
        with self._lock:
            if self.state is BootstrapState.STOPPED:
                return
            grace = self.shutdown_grace if grace is None else grace
            self._log.info("Shutting down server")

            # Accept loops and listening sockets go first so no new
            # connections are admitted while in-flight requests finish
            if self.state is BootstrapState.SERVING:
                for listener in self.listeners.values():
                    listener.shutdown()
                for thread in self._threads:
                    thread.join()
            for listener in self.listeners.values():
                listener.server_close()

            deadline = time.monotonic() + grace
            for protocol, listener in self.listeners.items():
                remaining = listener.drain(max(0.0, deadline - time.monotonic()))
                if remaining:
                    self._log.warning(
                        "%d %s request(s) still running after %.1fs grace period",
                        remaining, protocol.value, grace,
                    )

            self._stop_requested.set()
            self._transition(BootstrapState.STOPPED)
        self._log.info("Server stopped")


def bootstrap(
    routes: RouteTable,
    cert_result: CertResult,
    config: ServerConfig,
    log: Optional[logging.Logger] = None,
) -> RunningServer:
    """Bind the TLS (if possible) and plaintext listeners.

    Args:
        routes: Route table shared by both listeners
        cert_result: Outcome of certificate loading, either a
            TLSServerConfig or the CertError that prevented one
        config: Host, ports and shutdown policy
        log: Logger for startup messages (default: this module's logger)

    Returns:
        RunningServer with its listeners bound but not yet serving

    Raises:
        BootstrapError: If either listener cannot be bound
    """
    log = log or logger
    state = BootstrapState.INIT

    def transition(new_state: BootstrapState):
        nonlocal state
        log.debug("Bootstrap state: %s -> %s", state.value, new_state.value)
        state = new_state

    handler_class = handler_for(routes)
    listeners: dict[Protocol, Listener] = {}
    tls_error: Optional[CertError] = None

    transition(BootstrapState.CERT_EVALUATED)
    if isinstance(cert_result, CertError):
        tls_error = cert_result
        log.warning("TLS disabled, serving plaintext only: %s", cert_result)
        transition(BootstrapState.TLS_SKIPPED)
    else:
        address = (config.host, config.https_port)
        try:
            listeners[Protocol.TLS] = TLSListener(address, handler_class, cert_result)
        except OSError as e:
            log.error("Cannot bind TLS listener on %s:%d: %s", config.host, config.https_port, e)
            raise BootstrapError(Protocol.TLS, config.host, config.https_port, e) from e
        log.info("TLS enabled, SHA256 %s", cert_result.fingerprint)
        log.info("Bound TLS listener on %s:%d", *listeners[Protocol.TLS].server_address[:2])
        transition(BootstrapState.TLS_BOUND)

    address = (config.host, config.http_port)
    try:
        listeners[Protocol.PLAINTEXT] = Listener(address, handler_class)
    except OSError as e:
        log.error("Cannot bind plaintext listener on %s:%d: %s", config.host, config.http_port, e)
        for listener in listeners.values():
            listener.server_close()
        raise BootstrapError(Protocol.PLAINTEXT, config.host, config.http_port, e) from e
    log.info("Bound plaintext listener on %s:%d", *listeners[Protocol.PLAINTEXT].server_address[:2])
    transition(BootstrapState.PLAIN_BOUND)

    return RunningServer(
        listeners=listeners,
        routes=routes,
        shutdown_grace=config.shutdown_grace,
        log=log,
        tls_error=tls_error,
    )
