"""Live client connection registry.

All operations take one registry-wide lock.  Sends happen while the lock is
held, so a broadcast never races a sweep closing the same socket.
"""

from __future__ import annotations

import itertools
import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .sockutil import close_quietly, peer_closed, send_all

logger = logging.getLogger(__name__)

CRLF = "\r\n"


class ConnectionState(Enum):
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    DEAD = "dead"


@dataclass(eq=False)
class ClientConnection:
    sock: socket.socket
    address: Tuple[Any, ...] = ()
    client_id: int = 0
    state: ConnectionState = ConnectionState.NEGOTIATING
    connected_at: float = field(default_factory=time.time)

    @property
    def peer(self) -> str:
        if len(self.address) >= 2:
            return f"{self.address[0]}:{self.address[1]}"
        return "?"

    def send(self, data: bytes) -> bool:
        if self.state is ConnectionState.DEAD:
            return False
        return send_all(self.sock, data)

    def is_alive(self) -> bool:
        if self.state is ConnectionState.DEAD:
            return False
        return not peer_closed(self.sock)

    def close(self) -> None:
        if self.state is ConnectionState.DEAD:
            return
        self.state = ConnectionState.DEAD
        close_quietly(self.sock)


def normalise_line(data: str) -> str:
    """Terminate ``data`` with CRLF, converting a bare trailing LF."""
    if not data.endswith("\n"):
        return data + CRLF
    if not data.endswith(CRLF):
        return data[:-1] + CRLF
    return data


def encode_line(data: str) -> bytes:
    """Return ``data`` as CRLF-terminated UTF-8; unencodable characters are escaped."""
    return normalise_line(data).encode("utf-8", errors="backslashreplace")


class ConnectionRegistry:
    """Thread-safe set of live client connections."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: Dict[int, ClientConnection] = {}
        self._ids = itertools.count(1)

    def add(self, connection: ClientConnection) -> ClientConnection:
        with self._lock:
            connection.client_id = next(self._ids)
            connection.state = ConnectionState.ACTIVE
            self._clients[connection.client_id] = connection
            total = len(self._clients)
        logger.info("client %d connected from %s (%d total)", connection.client_id, connection.peer, total)
        return connection

    def remove(self, client_id: int) -> bool:
        with self._lock:
            connection = self._clients.pop(client_id, None)
        if connection is None:
            return False
        connection.close()
        return True

    def broadcast(self, data: str) -> int:
        """Send one line to every live client; return the number reached."""

        payload = encode_line(data)
        delivered = 0
        with self._lock:
            failed: List[int] = []
            for client_id, connection in self._clients.items():
                if connection.send(payload):
                    delivered += 1
                else:
                    failed.append(client_id)
            for client_id in failed:
                self._drop_locked(client_id, "send failed")
        return delivered

    def sweep_dead(self) -> int:
        """Close and remove every client whose peer has gone away."""

        with self._lock:
            dead = [client_id for client_id, conn in self._clients.items() if not conn.is_alive()]
            for client_id in dead:
                self._drop_locked(client_id, "peer closed")
        return len(dead)

    def count(self) -> int:
        with self._lock:
            return len(self._clients)

    def connections(self) -> List[ClientConnection]:
        with self._lock:
            return list(self._clients.values())

    def close_all(self) -> int:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for connection in clients:
            connection.close()
        return len(clients)

    def get(self, client_id: int) -> Optional[ClientConnection]:
        with self._lock:
            return self._clients.get(client_id)

    def _drop_locked(self, client_id: int, reason: str) -> None:
        connection = self._clients.pop(client_id, None)
        if connection is None:
            return
        connection.close()
        logger.info(
            "client %d (%s) dropped: %s (%d remaining)",
            client_id,
            connection.peer,
            reason,
            len(self._clients),
        )
