"""Minimal reader for the debug stream.

Connects like a terminal would, discards telnet option negotiation and
yields one decoded line (or parsed :class:`~a2stream.records.Record`) at a
time.  Nothing is ever written back to the server.
"""

from __future__ import annotations

import logging
import socket
from typing import Iterator, Optional

from .records import Record, RecordFormatError, parse_record

logger = logging.getLogger(__name__)

IAC = 0xFF
SB = 0xFA
SE = 0xF0
_OPTION_VERBS = (0xFB, 0xFC, 0xFD, 0xFE)  # WILL WONT DO DONT


class StreamClientError(RuntimeError):
    """Raised when the stream cannot be reached."""


class StreamClient:
    """Line reader for a running :class:`~a2stream.server.StreamServer`."""

    def __init__(self, host: str = "127.0.0.1", port: int = 65505, *, timeout: Optional[float] = 5.0) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.negotiation = bytearray()
        self._sock: Optional[socket.socket] = None
        self._pending = bytearray()
        self._lines = bytearray()
        self._eof = False

    def connect(self) -> None:
        if self._sock is not None:
            return
        try:
            self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as exc:
            raise StreamClientError(f"connect to {self.host}:{self.port} failed: {exc}") from exc
        self._eof = False
        logger.debug("connected to %s:%d", self.host, self.port)

    def close(self) -> None:
        sock = self._sock
        self._sock = None
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass

    def __enter__(self) -> "StreamClient":
        self.connect()
        return self

    def __exit__(self, *exc_info) -> bool:
        self.close()
        return False

    def read_line(self) -> Optional[str]:
        """Return the next line without its terminator, or None at EOF.

        ``socket.timeout`` propagates when the server is silent for longer
        than ``timeout``.
        """

        while True:
            newline = self._lines.find(b"\n")
            if newline >= 0:
                raw = bytes(self._lines[:newline])
                del self._lines[: newline + 1]
                return raw.rstrip(b"\r").decode("utf-8", errors="replace")
            if self._eof:
                if self._lines:
                    raw = bytes(self._lines)
                    self._lines.clear()
                    return raw.rstrip(b"\r").decode("utf-8", errors="replace")
                return None
            self._fill()

    def records(self) -> Iterator[Record]:
        while True:
            line = self.read_line()
            if line is None:
                return
            if not line:
                continue
            try:
                yield parse_record(line)
            except RecordFormatError as exc:
                logger.debug("skipping unparseable line %r: %s", line, exc)

    def _fill(self) -> None:
        if self._sock is None:
            self.connect()
        assert self._sock is not None
        chunk = self._sock.recv(4096)
        if not chunk:
            self._eof = True
            self._strip_telnet(final=True)
            return
        self._pending.extend(chunk)
        self._strip_telnet()

    def _strip_telnet(self, *, final: bool = False) -> None:
        data = self._pending
        idx = 0
        while idx < len(data):
            byte = data[idx]
            if byte != IAC:
                self._lines.append(byte)
                idx += 1
                continue
            if idx + 1 >= len(data):
                break
            verb = data[idx + 1]
            if verb == IAC:
                self._lines.append(IAC)
                idx += 2
            elif verb in _OPTION_VERBS:
                if idx + 2 >= len(data):
                    break
                self.negotiation.extend(data[idx : idx + 3])
                idx += 3
            elif verb == SB:
                end = data.find(bytes([IAC, SE]), idx + 2)
                if end < 0:
                    break
                self.negotiation.extend(data[idx : end + 2])
                idx = end + 2
            else:
                self.negotiation.extend(data[idx : idx + 2])
                idx += 2
        del data[:idx]
        if final and data:
            # truncated command at EOF
            data.clear()
