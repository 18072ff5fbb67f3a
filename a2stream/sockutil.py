"""Platform socket helpers shared by the stream server and registry."""

from __future__ import annotations

import logging
import socket
import threading

logger = logging.getLogger(__name__)

_HAS_DONTWAIT = hasattr(socket, "MSG_DONTWAIT")


class SocketSubsystem:
    """Process-wide, reference counted socket layer handle.

    Every running server holds one reference; the count drops back to zero
    only when the last server stops.  CPython initialises the platform
    socket library on import, so the handle only tracks users.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._refcount = 0

    @property
    def refcount(self) -> int:
        with self._lock:
            return self._refcount

    def acquire(self) -> int:
        with self._lock:
            self._refcount += 1
            if self._refcount == 1:
                logger.debug("socket subsystem in use")
            return self._refcount

    def release(self) -> int:
        with self._lock:
            if self._refcount <= 0:
                return 0
            self._refcount -= 1
            if self._refcount == 0:
                logger.debug("socket subsystem idle")
            return self._refcount


SUBSYSTEM = SocketSubsystem()


def peer_closed(sock: socket.socket) -> bool:
    """Return True when ``sock`` has been closed by its peer or is broken.

    The probe peeks at most one byte and never consumes input.  Callers must
    serialise probes with sends on the same socket.
    """

    if sock.fileno() < 0:
        return True
    try:
        if _HAS_DONTWAIT:
            data = sock.recv(1, socket.MSG_PEEK | socket.MSG_DONTWAIT)
        else:
            sock.setblocking(False)
            try:
                data = sock.recv(1, socket.MSG_PEEK)
            finally:
                sock.setblocking(True)
    except BlockingIOError:
        return False
    except InterruptedError:
        return False
    except OSError:
        return True
    return not data


def send_all(sock: socket.socket, data: bytes) -> bool:
    try:
        sock.sendall(data)
    except OSError as exc:
        logger.debug("send failed on fd %s: %s", sock.fileno(), exc)
        return False
    return True


def close_quietly(sock: socket.socket) -> None:
    try:
        sock.close()
    except OSError:
        pass
