"""Simulator-facing interface for the debug stream.

The stream never computes machine state; it only reads what the emulator
exposes through a :class:`MachineAccessor`.  This module also carries the
Apple II enumerations and flag bits needed to render that state, plus a
plain :class:`MachineState` container that satisfies the accessor protocol
for tests and the demo server.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Dict, Protocol


class MachineType(IntEnum):
    APPLE2 = 0
    APPLE2PLUS = 1
    APPLE2JPLUS = 2
    APPLE2E = 0x10
    APPLE2EENHANCED = 0x11
    APPLE2C = 0x20
    PRAVETS82 = 0x100
    PRAVETS8M = 0x101
    PRAVETS8A = 0x102
    TK30002E = 0x111
    BASE64A = 0x200


class CpuType(IntEnum):
    CPU_6502 = 1
    CPU_65C02 = 2
    CPU_Z80 = 3


class AppMode(IntEnum):
    LOGO = 0
    PAUSED = 1
    RUNNING = 2
    DEBUG = 3
    STEPPING = 4
    BENCHMARK = 5


# 6502 status register bits
AF_SIGN = 0x80
AF_OVERFLOW = 0x40
AF_RESERVED = 0x20
AF_BREAK = 0x10
AF_DECIMAL = 0x08
AF_INTERRUPT = 0x04
AF_ZERO = 0x02
AF_CARRY = 0x01

# Memory mode bits
MF_80STORE = 0x0001
MF_ALTZP = 0x0002
MF_AUXREAD = 0x0004
MF_AUXWRITE = 0x0008
MF_BANK2 = 0x0010
MF_HIGHRAM = 0x0020
MF_HIRES = 0x0040
MF_PAGE2 = 0x0080
MF_SLOTC3ROM = 0x0100
MF_INTCXROM = 0x0200
MF_WRITERAM = 0x0400

UNKNOWN = "Unknown"

_MACHINE_NAMES: Dict[int, str] = {
    MachineType.APPLE2: "Apple2",
    MachineType.APPLE2PLUS: "Apple2Plus",
    MachineType.APPLE2JPLUS: "Apple2JPlus",
    MachineType.APPLE2E: "Apple2e",
    MachineType.APPLE2EENHANCED: "Apple2eEnhanced",
    MachineType.APPLE2C: "Apple2c",
    MachineType.PRAVETS82: "Pravets82",
    MachineType.PRAVETS8M: "Pravets8M",
    MachineType.PRAVETS8A: "Pravets8A",
    MachineType.TK30002E: "TK30002e",
    MachineType.BASE64A: "Base64A",
}

_CPU_NAMES: Dict[int, str] = {
    CpuType.CPU_6502: "6502",
    CpuType.CPU_65C02: "65C02",
    CpuType.CPU_Z80: "Z80",
}

_MODE_NAMES: Dict[int, str] = {
    AppMode.LOGO: "logo",
    AppMode.RUNNING: "running",
    AppMode.DEBUG: "debug",
    AppMode.STEPPING: "stepping",
    AppMode.PAUSED: "paused",
    AppMode.BENCHMARK: "benchmark",
}


def _lookup(table: Dict[int, str], value: Any, default: str) -> str:
    try:
        return table.get(value, default)
    except TypeError:
        # unhashable values cannot name anything we know about
        return default


def machine_type_name(value: Any) -> str:
    return _lookup(_MACHINE_NAMES, value, UNKNOWN)


def cpu_type_name(value: Any) -> str:
    return _lookup(_CPU_NAMES, value, UNKNOWN)


def app_mode_name(value: Any) -> str:
    return _lookup(_MODE_NAMES, value, "unknown")


def video_mode_name(mem_mode: int) -> str:
    """Derive the coarse video mode from the memory soft-switch bits."""
    if mem_mode & MF_HIRES:
        return "DoubleHiRes" if mem_mode & MF_80STORE else "HiRes"
    return "80ColText" if mem_mode & MF_80STORE else "TextLoRes"


@dataclass(frozen=True)
class CpuRegisters:
    a: int = 0
    x: int = 0
    y: int = 0
    pc: int = 0
    sp: int = 0x01FF
    ps: int = AF_RESERVED | AF_BREAK
    jammed: bool = False


class MachineAccessor(Protocol):
    """Read accessors the emulator exposes to the stream provider."""

    def registers(self) -> CpuRegisters: ...

    def machine_type(self) -> Any: ...

    def cpu_type(self) -> Any: ...

    def app_mode(self) -> Any: ...

    def mem_mode(self) -> int: ...

    def cumulative_cycles(self) -> int: ...


@dataclass
class MachineState:
    """Mutable machine state container implementing :class:`MachineAccessor`.

    ``lock`` is the same re-entrant lock a :class:`~a2stream.provider.StreamProvider`
    can be given, so a producer thread calling :meth:`update` never races a
    snapshot build.
    """

    regs: CpuRegisters = field(default_factory=CpuRegisters)
    machine: Any = MachineType.APPLE2EENHANCED
    cpu: Any = CpuType.CPU_65C02
    mode: Any = AppMode.RUNNING
    memory_mode: int = 0
    cycles: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def registers(self) -> CpuRegisters:
        return self.regs

    def machine_type(self) -> Any:
        return self.machine

    def cpu_type(self) -> Any:
        return self.cpu

    def app_mode(self) -> Any:
        return self.mode

    def mem_mode(self) -> int:
        return self.memory_mode

    def cumulative_cycles(self) -> int:
        return self.cycles

    def set_registers(self, **fields: Any) -> CpuRegisters:
        with self.lock:
            self.regs = replace(self.regs, **fields)
            return self.regs

    def update(self, **fields: Any) -> None:
        with self.lock:
            for name, value in fields.items():
                if not hasattr(self, name) or name == "lock":
                    raise AttributeError(f"unknown machine field '{name}'")
                setattr(self, name, value)

    def advance(self, cycles: int, *, pc_delta: int = 0) -> None:
        with self.lock:
            self.cycles += cycles
            if pc_delta:
                self.regs = replace(self.regs, pc=(self.regs.pc + pc_delta) & 0xFFFF)
