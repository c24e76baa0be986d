"""Web listener lifecycle: background serving and signal-driven graceful shutdown.

The listener runs ``serve_forever`` on a background thread while the
controlling thread blocks on a queue fed by the SIGINT/SIGTERM handlers and
by the serve thread if the listener dies. The controlling thread wakes up
exactly once, for whichever comes first; later triggers are never read.
"""

import enum
import logging
import queue
import signal
import socket
import ssl
import threading
import time
from socketserver import ThreadingMixIn
from types import FrameType
from typing import Callable
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer

from redis_exporter import constants
from redis_exporter.config import parse_listen_address
from redis_exporter.errors import ServerStartError, ShutdownTimeoutError

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ServerState(enum.Enum):
    INITIALIZING = "initializing"
    SERVING = "serving"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"
    FAILED = "failed"


class ServerClosed(Exception):
    """Raised when the serve loop returns because shutdown was requested."""


class _RequestHandler(WSGIRequestHandler):
    def parse_request(self) -> bool:
        if not super().parse_request():
            return False
        self.server.request_started(self.connection)
        return True

    def log_message(self, format: str, *args) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)


class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """WSGI server handling each connection on its own thread.

    Every accepted connection is tracked; it counts as in flight once its
    request line has been read. On shutdown, connections that have not
    started a request (idle, or stuck in the TLS handshake) are closed, and
    only in-flight requests are waited for. TLS handshakes happen on the
    connection thread, never on the accept loop.
    """

    daemon_threads = True
    allow_reuse_port = False
    ssl_context: ssl.SSLContext | None = None

    def __init__(self, *args, **kwargs) -> None:
        # connection -> whether a request has started on it
        self._connections: dict[socket.socket, bool] = {}
        self._idle = threading.Condition()
        super().__init__(*args, **kwargs)

    def get_request(self) -> tuple[socket.socket, tuple]:
        sock, addr = super().get_request()
        if self.ssl_context is not None:
            sock = self.ssl_context.wrap_socket(
                sock, server_side=True, do_handshake_on_connect=False
            )
        return sock, addr

    def process_request(self, request, client_address) -> None:
        with self._idle:
            self._connections[request] = False
        try:
            super().process_request(request, client_address)
        except BaseException:
            self._connection_done(request)
            raise

    def process_request_thread(self, request, client_address) -> None:
        try:
            super().process_request_thread(request, client_address)
        finally:
            self._connection_done(request)

    def finish_request(self, request, client_address) -> None:
        if isinstance(request, ssl.SSLSocket):
            request.do_handshake()
        super().finish_request(request, client_address)

    def handle_error(self, request, client_address) -> None:
        logger.debug("Error handling request from %s", client_address, exc_info=True)

    def request_started(self, connection: socket.socket) -> None:
        with self._idle:
            if connection in self._connections:
                self._connections[connection] = True

    def _connection_done(self, connection: socket.socket) -> None:
        with self._idle:
            self._connections.pop(connection, None)
            self._idle.notify_all()

    def _inflight(self) -> int:
        return sum(self._connections.values())

    def close_idle_connections(self) -> int:
        """Close connections that have not started a request; returns how many."""
        closed = 0
        with self._idle:
            for connection, started in self._connections.items():
                if started:
                    continue
                try:
                    # plain socket shutdown, bypassing any pending TLS state
                    socket.socket.shutdown(connection, socket.SHUT_RDWR)
                except OSError:
                    pass
                closed += 1
        return closed

    def wait_idle(self, timeout: float) -> bool:
        """Wait until no request is in flight; False if the timeout elapsed first."""
        with self._idle:
            return self._idle.wait_for(lambda: self._inflight() == 0, timeout)


class ThreadingWSGIServerV6(ThreadingWSGIServer):
    address_family = socket.AF_INET6


class MetricsServer:
    """Owns the web listener for the life of the process.

    The server is a use-once state machine::

        INITIALIZING -> SERVING -> SHUTTING_DOWN -> STOPPED
                           |             |
                           +-> FAILED <--+

    The listener is bound, and its TLS context attached, on construction, so
    no thread is ever started with a partially initialized transport.
    """

    def __init__(
        self,
        listen_address: str,
        app: Callable,
        ssl_context: ssl.SSLContext | None = None,
        shutdown_timeout: float = constants.SHUTDOWN_TIMEOUT,
    ) -> None:
        """Bind the listener.

        Args:
            listen_address: ``host:port`` to bind, ``:port`` for all interfaces
            app: WSGI application answering requests
            ssl_context: Server TLS context, ``None`` to serve plaintext
            shutdown_timeout: Seconds in-flight requests get to finish on shutdown

        Raises:
            ConfigParseError: If the listen address is malformed
            ServerStartError: If the address cannot be bound
        """
        self.state = ServerState.INITIALIZING
        self.listen_address = listen_address
        self.shutdown_timeout = shutdown_timeout
        self._events: queue.SimpleQueue[signal.Signals | BaseException] = (
            queue.SimpleQueue()
        )
        self._thread: threading.Thread | None = None

        host, port = parse_listen_address(listen_address)
        server_class = ThreadingWSGIServerV6 if ":" in host else ThreadingWSGIServer
        try:
            self._server = server_class((host, port), _RequestHandler)
        except OSError as e:
            self.state = ServerState.FAILED
            raise ServerStartError(f"Couldn't listen on {listen_address}: {e}") from e

        self._server.set_app(app)
        self._server.ssl_context = ssl_context

    @property
    def tls_enabled(self) -> bool:
        return self._server.ssl_context is not None

    @property
    def server_port(self) -> int:
        return self._server.server_address[1]

    def start(self) -> None:
        """Start serving on a background thread."""
        if self.state is not ServerState.INITIALIZING:
            raise RuntimeError(f"cannot start a server in state {self.state.value}")

        self._thread = threading.Thread(
            target=self._serve, name="metrics-server", daemon=True
        )
        self.state = ServerState.SERVING
        self._thread.start()
        logger.debug(
            "Serving %s on port %d",
            "HTTPS" if self.tls_enabled else "HTTP",
            self.server_port,
        )

    def _serve_forever(self) -> None:
        self._server.serve_forever(poll_interval=constants.SERVE_POLL_INTERVAL)
        raise ServerClosed()

    def _serve(self) -> None:
        try:
            self._serve_forever()
        except ServerClosed:
            logger.debug("Listener closed")
        except Exception as e:
            prefix = "TLS Server error" if self.tls_enabled else "Server error"
            self.notify(ServerStartError(f"{prefix}: {e}"))

    def notify(self, event: signal.Signals | BaseException) -> None:
        """Post a shutdown trigger; only the first one posted is acted on.

        Safe to call from signal handlers and other threads.
        """
        self._events.put(event)

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        self.notify(signal.Signals(signum))

    def install_signal_handlers(self) -> dict[signal.Signals, object]:
        """Route SIGINT and SIGTERM to the notification queue.

        Must be called from the main thread.

        Returns:
            The previous handlers, for ``restore_signal_handlers``
        """
        return {
            signum: signal.signal(signum, self._handle_signal)
            for signum in SHUTDOWN_SIGNALS
        }

    @staticmethod
    def restore_signal_handlers(previous: dict[signal.Signals, object]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def wait(self) -> signal.Signals:
        """Block until a termination signal arrives or the listener fails.

        Returns:
            signal.Signals: The signal that was received

        Raises:
            ServerStartError: If the serve thread stopped with an error
        """
        event = self._events.get()
        if isinstance(event, BaseException):
            self.state = ServerState.FAILED
            raise event
        logger.info("Received %s signal, exiting", event.name)
        return event

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop accepting connections, close idle ones and wait for in-flight requests.

        Args:
            timeout: Override of the shutdown bound, in seconds

        Raises:
            ShutdownTimeoutError: If requests were still running at the deadline
        """
        if self.state is not ServerState.SERVING:
            raise RuntimeError(f"cannot shut down a server in state {self.state.value}")
        if timeout is None:
            timeout = self.shutdown_timeout

        self.state = ServerState.SHUTTING_DOWN
        deadline = time.monotonic() + timeout

        self._server.shutdown()
        if self._thread is not None:
            self._thread.join(max(0.0, deadline - time.monotonic()))
        closed = self._server.close_idle_connections()
        if closed:
            logger.debug("Closed %d idle connection(s)", closed)
        drained = self._server.wait_idle(max(0.0, deadline - time.monotonic()))
        self._server.server_close()

        if not drained or (self._thread is not None and self._thread.is_alive()):
            self.state = ServerState.FAILED
            raise ShutdownTimeoutError(
                f"Server shutdown failed: requests still in flight after {timeout}s"
            )

        self.state = ServerState.STOPPED
        logger.info("Server shut down gracefully")

    def close(self) -> None:
        self._server.server_close()

    def run(self) -> None:
        """Serve until SIGINT or SIGTERM, then shut down gracefully."""
        previous = self.install_signal_handlers()
        try:
            self.start()
            try:
                self.wait()
            except ServerStartError:
                self.close()
                raise
            self.shutdown()
        finally:
            self.restore_signal_handlers(previous)
