"""Telnet-compatible debug stream server.

Usage::

    server = StreamServer(StreamServerConfig(port=65505), provider=provider)
    server.start()
    # ... from the emulator thread ...
    server.broadcast(provider.breakpoint_hit(0, 0xC000))
    # ... on shutdown ...
    server.stop()

A dedicated thread accepts connections and, between accepts, sweeps out
clients whose peer has gone away.  Each new client receives a minimal telnet
negotiation, a hello record and the full snapshot before it joins the
broadcast set.  Delivery is best effort: there is no queue, and a client that
fails a send is dropped.
"""

from __future__ import annotations

import ipaddress
import logging
import socketserver
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .provider import StreamProvider
from .registry import ClientConnection, ConnectionRegistry, encode_line
from .sockutil import SUBSYSTEM, SocketSubsystem, send_all

logger = logging.getLogger(__name__)

DEFAULT_PORT = 65505

IAC = 0xFF
WILL = 0xFB
OPT_ECHO = 0x01
OPT_SUPPRESS_GO_AHEAD = 0x03

TELNET_INIT = bytes([IAC, WILL, OPT_ECHO, IAC, WILL, OPT_SUPPRESS_GO_AHEAD])

ConnectedCallback = Callable[[ClientConnection], None]


class StreamServerError(RuntimeError):
    """Raised when the stream server cannot be started."""


class ServerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class StreamServerConfig:
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    backlog: int = 5
    poll_interval: float = 0.1
    telnet_negotiation: bool = True
    send_goodbye: bool = True


def _is_loopback(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


class _WelcomeHandler(socketserver.BaseRequestHandler):
    """Runs the connection establishment sequence for one accepted client."""

    server: "_ListenerServer"

    def handle(self) -> None:
        owner = self.server.owner
        connection = ClientConnection(self.request, tuple(self.client_address))
        if owner.config.telnet_negotiation:
            self._send(TELNET_INIT)
        provider = owner.provider
        if provider is not None:
            try:
                lines = [provider.hello()] + provider.full_snapshot()
            except Exception:
                logger.exception("failed to build welcome snapshot for %s", connection.peer)
                lines = []
            for line in lines:
                if not self._send(encode_line(line)):
                    break
        owner.registry.add(connection)
        owner._notify_connected(connection)

    def _send(self, data: bytes) -> bool:
        # setup failures are tolerated; sweep or broadcast prunes the client
        return send_all(self.request, data)


class _ListenerServer(socketserver.TCPServer):
    allow_reuse_address = True

    def __init__(self, owner: "StreamServer") -> None:
        self.owner = owner
        self.request_queue_size = owner.config.backlog
        super().__init__((owner.config.host, owner.config.port), _WelcomeHandler)

    def process_request(self, request, client_address) -> None:
        # ownership of an accepted socket passes to the registry on success
        try:
            self.finish_request(request, client_address)
        except Exception:
            self.handle_error(request, client_address)
            self.shutdown_request(request)

    def handle_error(self, request, client_address) -> None:
        logger.exception("error establishing client %s", client_address)

    def service_actions(self) -> None:
        self.owner.registry.sweep_dead()


class StreamServer:
    """Multi-client broadcaster for JSON-lines debug records."""

    def __init__(
        self,
        config: Optional[StreamServerConfig] = None,
        *,
        provider: Optional[StreamProvider] = None,
        on_client_connected: Optional[ConnectedCallback] = None,
        subsystem: Optional[SocketSubsystem] = None,
    ) -> None:
        self.config = config or StreamServerConfig()
        self.provider = provider
        self.on_client_connected = on_client_connected
        self.registry = ConnectionRegistry()
        self.last_error: str = ""
        self._subsystem = subsystem or SUBSYSTEM
        self._state = ServerState.STOPPED
        self._state_lock = threading.Lock()
        self._running = threading.Event()
        self._listener: Optional[_ListenerServer] = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------- properties

    @property
    def state(self) -> ServerState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    @property
    def address(self) -> str:
        return self.config.host

    @property
    def port(self) -> int:
        listener = self._listener
        if listener is not None:
            return listener.server_address[1]
        return self.config.port

    def client_count(self) -> int:
        return self.registry.count()

    # -------------------------------------------------------------- lifecycle

    def start(self) -> None:
        """Bind, listen and launch the accept thread (no-op when running)."""

        with self._state_lock:
            if self._state is not ServerState.STOPPED:
                return
            self._state = ServerState.STARTING
        host, port = self.config.host, self.config.port
        if not _is_loopback(host):
            logger.warning("debug stream bound to non-loopback address %s; clients are not authenticated", host)
        self._subsystem.acquire()
        try:
            listener = _ListenerServer(self)
        except OSError as exc:
            self._subsystem.release()
            self.last_error = f"failed to bind {host}:{port}: {exc}"
            with self._state_lock:
                self._state = ServerState.STOPPED
            logger.error("%s", self.last_error)
            raise StreamServerError(self.last_error) from exc
        self._listener = listener
        self.last_error = ""
        self._thread = threading.Thread(
            target=self._accept_loop,
            name=f"a2stream-accept-{self.port}",
            daemon=True,
        )
        self._running.set()
        self._thread.start()
        with self._state_lock:
            self._state = ServerState.RUNNING
        logger.info("debug stream listening on %s:%d", host, self.port)

    def stop(self) -> None:
        """Stop accepting, close every client and release the socket layer.

        Called from the accept thread (an ``on_client_connected`` callback),
        the shutdown is handed to a helper thread and this returns at once;
        ``state`` reaches ``STOPPED`` shortly after.
        """

        if self._thread is not None and threading.current_thread() is self._thread:
            threading.Thread(target=self.stop, name="a2stream-stop", daemon=True).start()
            return
        with self._state_lock:
            if self._state is not ServerState.RUNNING:
                return
            self._state = ServerState.STOPPING
        self._running.clear()
        listener = self._listener
        if listener is not None:
            listener.shutdown()
            listener.server_close()
        if self._thread is not None:
            self._thread.join()
        self._thread = None
        self._listener = None
        if self.config.send_goodbye and self.provider is not None:
            self.registry.broadcast(self.provider.goodbye())
        closed = self.registry.close_all()
        self._subsystem.release()
        with self._state_lock:
            self._state = ServerState.STOPPED
        logger.info("debug stream stopped (%d client(s) closed)", closed)

    def broadcast(self, data: str) -> int:
        """Send ``data`` as one line to every connected client."""
        if not self._running.is_set():
            return 0
        return self.registry.broadcast(data)

    def __enter__(self) -> "StreamServer":
        self.start()
        return self

    def __exit__(self, *exc_info) -> bool:
        self.stop()
        return False

    # --------------------------------------------------------------- internals

    def _accept_loop(self) -> None:
        listener = self._listener
        if listener is None:
            return
        try:
            listener.serve_forever(poll_interval=self.config.poll_interval)
        except Exception:
            logger.exception("accept loop terminated")
            self._running.clear()

    def _notify_connected(self, connection: ClientConnection) -> None:
        callback = self.on_client_connected
        if callback is None:
            return
        try:
            callback(connection)
        except Exception:
            logger.exception("client-connected callback failed for %s", connection.peer)
