"""
a2stream - live debug telemetry for Apple II emulators.

Serialises emulator state into JSON-lines records and streams them to any
number of telnet-compatible observers:

    records.py   → wire record formatting and parsing
    machine.py   → emulator accessor protocol, enums, flag bits
    provider.py  → event records and full-state snapshots
    registry.py  → live client set (broadcast, liveness sweep)
    server.py    → listening socket, accept loop, welcome sequence
    client.py    → line reader used by tooling and tests
    cli.py       → ``a2stream serve`` / ``a2stream tail``
"""

__version__ = "0.1.0"

from .records import Record, RecordFormatError, format_record, hex8, hex16, parse_record  # noqa: E402,F401
from .machine import CpuRegisters, MachineAccessor, MachineState  # noqa: E402,F401
from .provider import StreamProvider  # noqa: E402,F401
from .registry import ClientConnection, ConnectionRegistry, ConnectionState  # noqa: E402,F401
from .server import ServerState, StreamServer, StreamServerConfig, StreamServerError  # noqa: E402,F401
from .client import StreamClient, StreamClientError  # noqa: E402,F401

__all__ = [
    "Record",
    "RecordFormatError",
    "format_record",
    "hex8",
    "hex16",
    "parse_record",
    "CpuRegisters",
    "MachineAccessor",
    "MachineState",
    "StreamProvider",
    "ClientConnection",
    "ConnectionRegistry",
    "ConnectionState",
    "ServerState",
    "StreamServer",
    "StreamServerConfig",
    "StreamServerError",
    "StreamClient",
    "StreamClientError",
]
