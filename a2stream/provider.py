"""Record producers for the debug stream.

:class:`StreamProvider` turns emulator state (read through a
:class:`~a2stream.machine.MachineAccessor`) and emulator events into wire
lines.  Anything that reads machine state does so under ``lock`` so a
snapshot always reflects a single instant; pass the emulator's own lock when
state is mutated from another thread.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Iterable, List, Optional

from . import __version__
from .machine import (
    AF_BREAK,
    AF_CARRY,
    AF_DECIMAL,
    AF_INTERRUPT,
    AF_OVERFLOW,
    AF_SIGN,
    AF_ZERO,
    MF_80STORE,
    MF_ALTZP,
    MF_AUXREAD,
    MF_AUXWRITE,
    MF_BANK2,
    MF_HIGHRAM,
    MF_HIRES,
    MF_PAGE2,
    MF_WRITERAM,
    CpuRegisters,
    MachineAccessor,
    app_mode_name,
    cpu_type_name,
    machine_type_name,
    video_mode_name,
)
from .records import Record, flag, format_record, hex8, hex16

HELLO_TEXT = "AppleWin Debug Stream"

_STATUS_FLAGS = (
    ("n", AF_SIGN),
    ("v", AF_OVERFLOW),
    ("b", AF_BREAK),
    ("d", AF_DECIMAL),
    ("i", AF_INTERRUPT),
    ("z", AF_ZERO),
    ("c", AF_CARRY),
)

_MEMORY_FLAGS = (
    ("80store", MF_80STORE),
    ("auxRead", MF_AUXREAD),
    ("auxWrite", MF_AUXWRITE),
    ("altZP", MF_ALTZP),
    ("highRam", MF_HIGHRAM),
    ("bank2", MF_BANK2),
    ("writeRam", MF_WRITERAM),
    ("page2", MF_PAGE2),
    ("hires", MF_HIRES),
)


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def _register_values(regs: CpuRegisters) -> List[tuple]:
    return [
        ("a", hex8(regs.a)),
        ("x", hex8(regs.x)),
        ("y", hex8(regs.y)),
        ("pc", hex16(regs.pc)),
        ("sp", hex8(regs.sp)),
        ("p", hex8(regs.ps)),
    ]


class StreamProvider:
    """Builds hello/goodbye messages, event records and full snapshots."""

    def __init__(
        self,
        machine: MachineAccessor,
        *,
        lock: Optional[threading.RLock] = None,
        clock: Optional[Callable[[], int]] = None,
        version: str = __version__,
    ) -> None:
        self.machine = machine
        self.lock = lock if lock is not None else threading.RLock()
        self.clock = clock or timestamp_ms
        self.version = version

    # ------------------------------------------------------------------ system

    def hello(self) -> str:
        extras = {"ver": self.version, "ts": str(self.clock())}
        return format_record("sys", "conn", "hello", HELLO_TEXT, extras)

    def goodbye(self) -> str:
        return format_record("sys", "conn", "goodbye", "", {"ts": str(self.clock())})

    def error(self, message: str) -> str:
        return format_record("sys", "error", "msg", message)

    # --------------------------------------------------------------------- cpu

    def cpu_registers(self) -> List[str]:
        with self.lock:
            regs = self.machine.registers()
        return [format_record("cpu", "reg", name, value) for name, value in _register_values(regs)]

    def cpu_register(self, name: str) -> Optional[str]:
        """Return the record for one register, or None for an unknown name."""
        with self.lock:
            regs = self.machine.registers()
        for reg_name, value in _register_values(regs):
            if reg_name == name:
                return format_record("cpu", "reg", reg_name, value)
        return None

    def cpu_flags(self) -> List[str]:
        with self.lock:
            ps = self.machine.registers().ps
        return [format_record("cpu", "flag", name, flag(ps & mask)) for name, mask in _STATUS_FLAGS]

    def cpu_state(self) -> str:
        with self.lock:
            jammed = self.machine.registers().jammed
        return format_record("cpu", "state", "jammed", flag(jammed))

    # ------------------------------------------------------------------ memory

    def memory_read(self, addr: int, value: int) -> str:
        return format_record("mem", "read", "byte", hex8(value), {"addr": hex16(addr)})

    def memory_write(self, addr: int, value: int) -> str:
        return format_record("mem", "write", "byte", hex8(value), {"addr": hex16(addr)})

    def memory_dump(self, start: int, data: Iterable[int]) -> List[str]:
        return [
            format_record("mem", "dump", "byte", hex8(value), {"addr": hex16(start + offset)})
            for offset, value in enumerate(data)
        ]

    def memory_bank_status(self) -> str:
        with self.lock:
            mode = self.machine.mem_mode()
        return format_record("mem", "bank", "mode", hex8(mode))

    # --------------------------------------------------------------------- i/o

    def soft_switch_read(self, addr: int, value: int) -> str:
        return format_record("io", "sw_read", "val", hex8(value), {"addr": hex16(addr)})

    def soft_switch_write(self, addr: int, value: int) -> str:
        return format_record("io", "sw_write", "val", hex8(value), {"addr": hex16(addr)})

    # ----------------------------------------------------------------- machine

    def machine_info(self) -> str:
        with self.lock:
            machine = self.machine.machine_type()
        return format_record("mach", "info", "type", machine_type_name(machine))

    def machine_status(self, mode: Any) -> str:
        if not isinstance(mode, str):
            mode = app_mode_name(mode)
        return format_record("mach", "status", "mode", mode)

    # ------------------------------------------------------------------- debug

    def breakpoint_hit(self, index: int, addr: int) -> str:
        return format_record("dbg", "bp", "hit", "1", {"addr": hex16(addr), "idx": str(index)})

    def trace_exec(self, addr: int, disasm: str) -> str:
        return format_record("dbg", "trace", "exec", disasm, {"addr": hex16(addr)})

    def trace_memory(self, addr: int, value: int, is_write: bool) -> str:
        extras = {"addr": hex16(addr), "rw": "w" if is_write else "r"}
        return format_record("dbg", "trace", "mem", hex8(value), extras)

    # ---------------------------------------------------------------- snapshot

    def snapshot_records(self) -> List[Record]:
        """Return the full-state snapshot as typed records.

        Order is part of the protocol: machine info, CPU type, video mode,
        run mode, cycles, registers, status flags, CPU state, memory bank
        mode, memory flags.
        """

        with self.lock:
            machine = self.machine.machine_type()
            cpu = self.machine.cpu_type()
            mode = self.machine.app_mode()
            cycles = self.machine.cumulative_cycles()
            regs = self.machine.registers()
            mem_mode = self.machine.mem_mode()

        records = [
            Record.build("mach", "info", "type", machine_type_name(machine)),
            Record.build("mach", "info", "cpuType", cpu_type_name(cpu)),
            Record.build("mach", "info", "videoMode", video_mode_name(mem_mode)),
            Record.build("mach", "status", "mode", app_mode_name(mode)),
            Record.build("mach", "info", "cycles", str(int(cycles))),
        ]
        records.extend(Record.build("cpu", "reg", name, value) for name, value in _register_values(regs))
        records.extend(Record.build("cpu", "flag", name, flag(regs.ps & mask)) for name, mask in _STATUS_FLAGS)
        records.append(Record.build("cpu", "state", "jammed", flag(regs.jammed)))
        records.append(Record.build("mem", "bank", "mode", hex8(mem_mode)))
        records.extend(Record.build("mem", "flag", name, flag(mem_mode & mask)) for name, mask in _MEMORY_FLAGS)
        return records

    def full_snapshot(self) -> List[str]:
        return [record.to_line() for record in self.snapshot_records()]
