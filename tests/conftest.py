"""
Pytest configuration and fixtures for a2stream tests.
"""
import time

import pytest

from a2stream.machine import AppMode, CpuRegisters, CpuType, MachineState, MachineType
from a2stream.provider import StreamProvider
from a2stream.server import StreamServer, StreamServerConfig

FIXED_TS = 1700000000123


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def machine() -> MachineState:
    return MachineState(
        regs=CpuRegisters(a=0x3F, x=0x01, y=0xFF, pc=0xC600, sp=0x1FB, ps=0xB1, jammed=False),
        machine=MachineType.APPLE2EENHANCED,
        cpu=CpuType.CPU_65C02,
        mode=AppMode.RUNNING,
        memory_mode=0x41,
        cycles=123456,
    )


@pytest.fixture
def provider(machine) -> StreamProvider:
    return StreamProvider(machine, lock=machine.lock, clock=lambda: FIXED_TS, version="0.1.0")


@pytest.fixture
def server(provider):
    srv = StreamServer(StreamServerConfig(port=0, poll_interval=0.05), provider=provider)
    srv.start()
    try:
        yield srv
    finally:
        srv.stop()
