"""Plaintext and TLS listeners.

Each listener accepts on its own thread and hands every connection to a
fresh worker thread. The TLS listener runs the handshake on that worker,
so a slow or failing handshake never holds up other connections.
"""

import enum
import logging
import socket
import ssl
import threading
import time
from dataclasses import dataclass
from http.server import ThreadingHTTPServer

from dualhttpd.tls import TLSServerConfig

logger = logging.getLogger(__name__)


class Protocol(str, enum.Enum):
    """Listener protocol."""

    PLAINTEXT = "plaintext"
    TLS = "tls"

    @property
    def scheme(self) -> str:
        return "https" if self is Protocol.TLS else "http"


@dataclass(frozen=True)
class ListenerBinding:
    """Address a listener accepts connections on."""

    host: str
    port: int
    protocol: Protocol

    @property
    def url(self) -> str:
        return f"{self.protocol.scheme}://{self.host}:{self.port}"


class Listener(ThreadingHTTPServer):
    """Thread-per-connection HTTP listener with in-flight request tracking."""

    protocol = Protocol.PLAINTEXT
    daemon_threads = True
    # Draining is bounded by drain() instead of an unbounded join on close
    block_on_close = False

    def __init__(self, server_address, handler_class):
        self._workers: set[threading.Thread] = set()
        self._workers_lock = threading.Lock()
        if ":" in server_address[0]:
            self.address_family = socket.AF_INET6
        super().__init__(server_address, handler_class)

    @property
    def binding(self) -> ListenerBinding:
        host, port = self.server_address[:2]
        return ListenerBinding(host=host, port=port, protocol=self.protocol)

    def process_request(self, request, client_address):
        """Start a worker thread for the connection."""
        worker = threading.Thread(
            target=self._run_worker,
            args=(request, client_address),
            name=f"{self.protocol.value}-{client_address[0]}:{client_address[1]}",
            daemon=self.daemon_threads,
        )
        with self._workers_lock:
            self._workers.add(worker)
        worker.start()

    def _run_worker(self, request, client_address):
        try:
            self.process_request_thread(request, client_address)
        finally:
            with self._workers_lock:
                self._workers.discard(threading.current_thread())

    def handle_error(self, request, client_address):
        """Log handler errors instead of printing tracebacks to stderr."""
        logger.warning(
            "Error handling %s request from %s",
            self.protocol.value, client_address[0], exc_info=True,
        )

    def drain(self, timeout: float) -> int:
        """Wait for in-flight requests to finish.

        Args:
            timeout: Maximum seconds to wait across all workers

        Returns:
            Number of workers still running when the timeout expired
        """
        deadline = time.monotonic() + timeout
        with self._workers_lock:
            workers = list(self._workers)
        for worker in workers:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            worker.join(remaining)
        return sum(1 for worker in workers if worker.is_alive())


class TLSListener(Listener):
    """Listener that terminates TLS on each accepted connection."""

    protocol = Protocol.TLS

    def __init__(self, server_address, handler_class, tls_config: TLSServerConfig):
        self.tls_config = tls_config
        super().__init__(server_address, handler_class)

    def finish_request(self, request, client_address):
        """Handshake on the worker thread, then handle the request."""
        request.settimeout(self.RequestHandlerClass.timeout)
        try:
            tls_request = self.tls_config.context.wrap_socket(request, server_side=True)
        except (ssl.SSLError, OSError) as e:
            logger.debug("TLS handshake with %s failed: %s", client_address[0], e)
            return
        try:
            super().finish_request(tls_request, client_address)
        finally:
            self.shutdown_request(tls_request)
