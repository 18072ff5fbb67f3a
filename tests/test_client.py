import socket
import threading
import time

import pytest

from a2stream.client import StreamClient, StreamClientError


class ScriptedServer:
    """Accepts one connection and writes the given chunks, then closes."""

    def __init__(self, chunks, delay: float = 0.01) -> None:
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self.port = self._sock.getsockname()[1]
        self._sock.listen(1)
        self._chunks = list(chunks)
        self._delay = delay
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            conn, _ = self._sock.accept()
        except OSError:
            return
        with conn:
            for chunk in self._chunks:
                conn.sendall(chunk)
                time.sleep(self._delay)

    def stop(self) -> None:
        self._sock.close()
        self._thread.join(timeout=1.0)


def test_read_line_strips_telnet_negotiation() -> None:
    server = ScriptedServer([b"\xff\xfb\x01\xff\xfb\x03", b'{"a":1}\r\n', b"tail"])
    try:
        with StreamClient("127.0.0.1", server.port, timeout=2.0) as client:
            assert client.read_line() == '{"a":1}'
            assert bytes(client.negotiation) == b"\xff\xfb\x01\xff\xfb\x03"
            assert client.read_line() == "tail"
            assert client.read_line() is None
    finally:
        server.stop()


def test_commands_split_across_chunks() -> None:
    server = ScriptedServer([b"ab\xff", b"\xfb", b"\x01cd\xff\xff\r", b"\n"])
    try:
        with StreamClient("127.0.0.1", server.port, timeout=2.0) as client:
            assert client.read_line() == "abcd\ufffd"
            assert bytes(client.negotiation) == b"\xff\xfb\x01"
    finally:
        server.stop()


def test_subnegotiation_and_two_byte_commands_are_dropped() -> None:
    server = ScriptedServer([b"\xff\xfa\x18\x01\xff\xf0x\xff\xf1y\n"])
    try:
        with StreamClient("127.0.0.1", server.port, timeout=2.0) as client:
            assert client.read_line() == "xy"
            assert bytes(client.negotiation) == b"\xff\xfa\x18\x01\xff\xf0\xff\xf1"
    finally:
        server.stop()


def test_records_skips_garbage_lines() -> None:
    lines = [
        b'{"emu":"apple","cat":"cpu","sec":"reg","fld":"a","val":"3F"}\r\n',
        b"welcome banner\r\n",
        b"\r\n",
        b'{"emu":"apple","cat":"mem","sec":"bank","fld":"mode","val":"00"}\r\n',
    ]
    server = ScriptedServer([b"".join(lines)])
    try:
        with StreamClient("127.0.0.1", server.port, timeout=2.0) as client:
            records = list(client.records())
        assert [(r.category, r.field) for r in records] == [("cpu", "a"), ("mem", "mode")]
    finally:
        server.stop()


def test_connect_failure_raises() -> None:
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    client = StreamClient("127.0.0.1", port, timeout=0.5)
    with pytest.raises(StreamClientError):
        client.connect()
