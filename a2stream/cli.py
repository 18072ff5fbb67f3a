"""a2stream CLI entry point."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
import time
from typing import List

from .client import StreamClient, StreamClientError
from .machine import MachineState
from .provider import StreamProvider
from .records import parse_record, RecordFormatError
from .server import DEFAULT_PORT, StreamServer, StreamServerConfig, StreamServerError

LOG = logging.getLogger("a2stream.cli")

# a 6502 at 1.023 MHz retires roughly this many cycles per 100 ms
_DEMO_CYCLES_PER_TICK = 102_300


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Apple II debug stream")
    parser.add_argument("--log-level", default=os.environ.get("A2STREAM_LOG", "INFO"), help="Logging level (default INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run a stream server against a demo machine")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (loopback by default)")
    serve.add_argument("--port", type=int, default=DEFAULT_PORT, help="Listen port")
    serve.add_argument("--backlog", type=int, default=5, help="Listen backlog")
    serve.add_argument("--poll-interval", type=float, default=0.1, help="Accept/sweep poll interval (seconds)")
    serve.add_argument("--tick", type=float, default=0.5, help="Seconds between demo state broadcasts")
    serve.add_argument("--duration", type=float, default=0.0, help="Stop after N seconds (0 = until interrupted)")

    tail = sub.add_parser("tail", help="Print records from a running stream")
    tail.add_argument("--host", default="127.0.0.1", help="Stream host")
    tail.add_argument("--port", type=int, default=DEFAULT_PORT, help="Stream port")
    tail.add_argument("--raw", action="store_true", help="Print raw JSON lines")
    tail.add_argument("--count", type=int, default=0, help="Exit after N lines (0 = until EOF)")
    tail.add_argument("--timeout", type=float, default=None, help="Give up after N idle seconds")
    return parser


def _demo_tick(machine: MachineState, provider: StreamProvider, server: StreamServer) -> None:
    with machine.lock:
        machine.advance(_DEMO_CYCLES_PER_TICK, pc_delta=3)
        regs = machine.registers()
        machine.set_registers(a=(regs.a + 1) & 0xFF)
    pc_line = provider.cpu_register("pc")
    a_line = provider.cpu_register("a")
    for line in (pc_line, a_line):
        if line is not None:
            server.broadcast(line)
    server.broadcast(provider.trace_exec(machine.registers().pc, "NOP"))


def run_serve(args: argparse.Namespace) -> int:
    machine = MachineState()
    provider = StreamProvider(machine, lock=machine.lock)
    config = StreamServerConfig(
        host=args.host,
        port=args.port,
        backlog=args.backlog,
        poll_interval=args.poll_interval,
    )
    server = StreamServer(
        config,
        provider=provider,
        on_client_connected=lambda conn: LOG.info("observer attached: %s", conn.peer),
    )
    try:
        server.start()
    except StreamServerError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(f"[a2stream] streaming on {args.host}:{server.port}")
    stop = threading.Event()
    deadline = time.monotonic() + args.duration if args.duration > 0 else None
    try:
        while not stop.is_set():
            if deadline is not None and time.monotonic() >= deadline:
                break
            _demo_tick(machine, provider, server)
            wait = args.tick
            if deadline is not None:
                wait = max(0.0, min(wait, deadline - time.monotonic()))
            stop.wait(wait)
    except KeyboardInterrupt:
        print("\n[a2stream] shutting down")
    finally:
        server.stop()
    return 0


def run_tail(args: argparse.Namespace) -> int:
    client = StreamClient(args.host, args.port, timeout=args.timeout)
    try:
        client.connect()
    except StreamClientError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    seen = 0
    try:
        while args.count <= 0 or seen < args.count:
            line = client.read_line()
            if line is None:
                break
            if not line:
                continue
            seen += 1
            if args.raw:
                print(line)
                continue
            try:
                record = parse_record(line)
            except RecordFormatError:
                print(line)
                continue
            extras = " ".join(f"{key}={value}" for key, value in record.extras)
            print(f"{record.category}.{record.section}.{record.field} = {record.value} {extras}".rstrip())
    except KeyboardInterrupt:
        print()
    except OSError as exc:
        LOG.error("stream read failed: %s", exc)
        return 1
    finally:
        client.close()
    return 0


def main(argv: List[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    if args.command == "serve":
        return run_serve(args)
    return run_tail(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
