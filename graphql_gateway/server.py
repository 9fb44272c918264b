"""
HTTP server wrapper.

Owns the route registry, the Werkzeug server and its lifecycle:
- Builds the Flask dispatch table from the registry (routes CORS-wrapped)
- Serves static files under /static/
- Applies per-phase socket timeouts to every connection
- Drains in-flight requests on shutdown, then force-closes what is left

Lifecycle: CONSTRUCTED -> CONFIGURED -> RUNNING -> SHUTTING_DOWN -> STOPPED
"""

import enum
import os
import signal
import socket
import threading
import time
from http import HTTPStatus
from typing import Callable, Dict, NamedTuple, Optional, Set, Tuple

from flask import Flask
from werkzeug.serving import ThreadedWSGIServer, WSGIRequestHandler

from graphql_gateway import config
from graphql_gateway.cors import cors
from graphql_gateway.logger import get_logger
from graphql_gateway.routes import RouteRegistry

logger = get_logger()

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)

# How often idle connections are swept while draining
DRAIN_POLL_INTERVAL = 0.1
SIGNAL_POLL_INTERVAL = 0.5

MAX_REQUEST_LINE = 65536


class ServerState(enum.Enum):
    CONSTRUCTED = 'constructed'
    CONFIGURED = 'configured'
    RUNNING = 'running'
    SHUTTING_DOWN = 'shutting_down'
    STOPPED = 'stopped'


class ServerStateError(RuntimeError):
    """Raised when an operation is not allowed in the current state."""


class Timeouts(NamedTuple):
    read: float
    write: float
    idle: float
    read_header: float


def _close_socket(conn: socket.socket) -> None:
    # shutdown() wakes up any thread blocked on the socket; close stays with its owner
    try:
        conn.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass


class ConnectionTracker:
    """
    Open and busy connections of a server.

    A connection is busy from the first byte of a request until its
    response has been written.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._open: Set[socket.socket] = set()
        self._busy: Set[socket.socket] = set()
        self._closed: Set[socket.socket] = set()
        self.draining = False

    def add(self, conn: socket.socket) -> None:
        with self._cond:
            self._open.add(conn)

    def discard(self, conn: socket.socket) -> None:
        with self._cond:
            self._open.discard(conn)
            self._busy.discard(conn)
            self._closed.discard(conn)
            self._cond.notify_all()

    def begin(self, conn: socket.socket) -> bool:
        """Mark a connection busy; False if it was already closed for shutdown."""
        with self._cond:
            if conn in self._closed:
                return False
            self._busy.add(conn)
            return True

    def end(self, conn: socket.socket) -> None:
        with self._cond:
            self._busy.discard(conn)
            self._cond.notify_all()

    @property
    def busy_count(self) -> int:
        with self._cond:
            return len(self._busy)

    @property
    def open_count(self) -> int:
        with self._cond:
            return len(self._open)

    def close_idle(self) -> None:
        # Under the lock so a connection cannot turn busy while it is being closed
        with self._cond:
            for conn in self._open - self._busy - self._closed:
                _close_socket(conn)
                self._closed.add(conn)

    def close_all(self) -> int:
        with self._cond:
            for conn in self._open:
                _close_socket(conn)
            self._closed |= self._open
            return len(self._open)

    def drain(self, timeout: float) -> bool:
        """
        Wait for busy connections to finish, closing idle ones as they appear.

        Returns:
            True if everything finished before the timeout
        """
        with self._cond:
            self.draining = True
        deadline = time.monotonic() + timeout

        while True:
            self.close_idle()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return self.busy_count == 0
            with self._cond:
                if self._cond.wait_for(lambda: not self._busy, timeout=min(remaining, DRAIN_POLL_INTERVAL)):
                    break

        self.close_idle()
        return True


class GatewayRequestHandler(WSGIRequestHandler):
    """
    WSGI request handler with per-phase socket timeouts.

    - read_header: request line and headers of the first request
    - idle: waiting for the next request on a keep-alive connection
    - read: while the application consumes the request
    - write: once the response status line is sent
    """

    server: 'GatewayWSGIServer'

    def setup(self):
        super().setup()
        self.requests_handled = 0

    def handle_one_request(self):
        timeouts = self.server.timeouts
        connections = self.server.connections

        self.connection.settimeout(timeouts.idle if self.requests_handled else timeouts.read_header)
        try:
            self.raw_requestline = self.rfile.readline(MAX_REQUEST_LINE + 1)
        except socket.timeout:
            self.close_connection = True
            return

        if not self.raw_requestline:
            self.close_connection = True
            return

        if not connections.begin(self.connection):
            self.close_connection = True
            return

        try:
            if len(self.raw_requestline) > MAX_REQUEST_LINE:
                self.requestline = ''
                self.request_version = ''
                self.command = ''
                self.send_error(HTTPStatus.REQUEST_URI_TOO_LONG)
                return

            self.connection.settimeout(timeouts.read_header)
            if not self.parse_request():
                return

            self.connection.settimeout(timeouts.read)
            self.run_wsgi()
            self.wfile.flush()
        except socket.timeout as e:
            self.log_error("Request timed out: %r", e)
            self.close_connection = True
        finally:
            self.requests_handled += 1
            connections.end(self.connection)

        if connections.draining:
            self.close_connection = True

    def send_response(self, code, message=None):
        self.connection.settimeout(self.server.timeouts.write)
        super().send_response(code, message)


class GatewayWSGIServer(ThreadedWSGIServer):
    """Threaded Werkzeug server serving on an already-bound socket."""

    def __init__(self, host: str, port: int, app, timeouts: Timeouts, fd: int):
        self.timeouts = timeouts
        self.connections = ConnectionTracker()
        super().__init__(host, port, app, handler=GatewayRequestHandler, fd=fd)

    def process_request(self, request, client_address):
        self.connections.add(request)
        super().process_request(request, client_address)

    def shutdown_request(self, request):
        self.connections.discard(request)
        super().shutdown_request(request)


def bind_socket(host: str, port: int) -> socket.socket:
    """
    Bind and listen on host:port.

    Raises:
        OSError: if the address cannot be bound (e.g. port in use)
    """
    family = socket.AF_INET6 if ':' in host else socket.AF_INET
    return socket.create_server((host, port), family=family)


class Server:
    """HTTP server with a route registry and graceful shutdown"""

    def __init__(
        self,
        addr: str,
        read_timeout: float,
        write_timeout: float,
        idle_timeout: float,
        read_header_timeout: float,
        shutdown_grace_period: float = config.SHUTDOWN_GRACE_PERIOD,
        static_dir: str = config.STATIC_DIR
    ):
        self.addr = addr
        self.timeouts = Timeouts(
            read=read_timeout,
            write=write_timeout,
            idle=idle_timeout,
            read_header=read_header_timeout
        )
        self.shutdown_grace_period = shutdown_grace_period
        self.static_dir = static_dir

        self.registry = RouteRegistry()
        self.state = ServerState.CONSTRUCTED
        self.ready = threading.Event()
        self.address: Optional[Tuple[str, int]] = None

        self._app: Optional[Flask] = None
        self._httpd: Optional[GatewayWSGIServer] = None
        self._serve_error: Optional[BaseException] = None

    def handle(self, path: str, handler: Callable) -> None:
        """Register a handler for an exact path."""
        if self.state not in (ServerState.CONSTRUCTED, ServerState.CONFIGURED):
            raise ServerStateError(f"cannot register routes while {self.state.value}")
        self.registry.register(path, handler)
        self.state = ServerState.CONFIGURED

    def build_app(self) -> Flask:
        """
        Build the dispatch table.

        The registry is frozen on first call; later calls return the same app.
        """
        if self._app is not None:
            return self._app

        self.registry.freeze()
        app = Flask(
            __name__,
            static_folder=os.path.abspath(self.static_dir),
            static_url_path='/static'
        )

        # methods=None: the rule matches every verb, so all of them go through cors()
        for route in self.registry:
            app.url_map.add(app.url_rule_class(route.path, endpoint=route.path, methods=None))
            app.view_functions[route.path] = cors(route.handler)

        app.config['GATEWAY_TIMEOUTS'] = self.timeouts

        self._app = app
        return app

    def start(self, shutdown_event: Optional[threading.Event] = None) -> None:
        """
        Bind and serve until the shutdown event is set, then drain.

        Without an event, SIGINT and SIGTERM are hooked to trigger shutdown
        (main thread only).

        Raises:
            OSError: if the address cannot be bound
            ServerStateError: if the server was already started
        """
        if self.state not in (ServerState.CONSTRUCTED, ServerState.CONFIGURED):
            raise ServerStateError(f"cannot start while {self.state.value}")

        previous_handlers: Dict[int, object] = {}
        if shutdown_event is None:
            if threading.current_thread() is not threading.main_thread():
                raise ServerStateError("a shutdown_event is required outside the main thread")
            shutdown_event = threading.Event()
            previous_handlers = self._install_signal_handlers(shutdown_event)

        try:
            app = self.build_app()
            host, port = config.parse_address(self.addr)

            sock = bind_socket(host, port)
            try:
                httpd = GatewayWSGIServer(host, port, app, self.timeouts, fd=sock.fileno())
            finally:
                sock.close()

            self._httpd = httpd
            self.address = httpd.server_address[:2]
            self.state = ServerState.RUNNING
            self.ready.set()

            logger.info(
                "server_starting",
                addr=self.addr,
                port=self.address[1],
                url=f"http://localhost:{self.address[1]}"
            )

            serve_thread = threading.Thread(
                target=self._serve,
                args=(httpd, shutdown_event),
                name='gateway-serve',
                daemon=True
            )
            serve_thread.start()

            # Wake up periodically so signal handlers run on the main thread
            while not shutdown_event.wait(SIGNAL_POLL_INTERVAL):
                pass
            self._shutdown(httpd, serve_thread)
        finally:
            for sig, handler in previous_handlers.items():
                if handler is not None:
                    signal.signal(sig, handler)

        if self._serve_error is not None:
            raise self._serve_error

    def _serve(self, httpd: GatewayWSGIServer, shutdown_event: threading.Event) -> None:
        try:
            httpd.serve_forever()
        except Exception as e:
            logger.error("server_serve_error", error=str(e), exc_info=True)
            self._serve_error = e
        finally:
            shutdown_event.set()

    def _shutdown(self, httpd: GatewayWSGIServer, serve_thread: threading.Thread) -> None:
        self.state = ServerState.SHUTTING_DOWN
        logger.info(
            "server_shutting_down",
            grace_period=self.shutdown_grace_period,
            in_flight=httpd.connections.busy_count
        )

        # Stop accepting, then release the listening socket
        httpd.shutdown()
        serve_thread.join()
        httpd.server_close()

        if not httpd.connections.drain(self.shutdown_grace_period):
            closed = httpd.connections.close_all()
            logger.error(
                "server_shutdown_error",
                error="grace period exceeded",
                grace_period=self.shutdown_grace_period,
                forced_connections=closed
            )

        self.state = ServerState.STOPPED
        logger.info("server_stopped")

    def _install_signal_handlers(self, shutdown_event: threading.Event) -> Dict[int, object]:
        def on_signal(signum, frame):
            shutdown_event.set()

        return {sig: signal.signal(sig, on_signal) for sig in SHUTDOWN_SIGNALS}

    @property
    def in_flight(self) -> int:
        if self._httpd is None:
            return 0
        return self._httpd.connections.busy_count
