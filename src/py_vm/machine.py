"""The machine — coordinator of the simulated memory system.

The machine owns every subsystem and is the single entry point the
shell, the REPL and the web UI talk to:

    Frame table       — share count for every physical frame.
    Physical memory   — the bytes behind each frame.
    Frame allocator   — lowest-free-frame allocation.
    Fault resolver    — segfault vs copy-on-write decisions.
    Process manager   — current process, ready queue, fork/switch.
    Logger            — a record of everything that happened.

It also plays the part of the MMU's dispatch loop: ``access()``
translates a VPN through the current page table and calls the fault
resolver only when translation fails or a write hits a read-only
entry.

Lifecycle::

    SHUTDOWN  →  RUNNING  →  SHUTDOWN

Booting creates the init process (PID 0) with an empty address space.
"""

from __future__ import annotations

from collections import Counter
from enum import StrEnum

from py_vm.config import MachineConfig
from py_vm.logging import EventKind, Logger, LogLevel
from py_vm.memory.allocator import FrameAllocator, OutOfMemoryError
from py_vm.memory.faults import (
    FaultResolution,
    FaultResolver,
    SegmentationFaultError,
    promote_sole_sharer,
)
from py_vm.memory.frames import FrameTable
from py_vm.memory.pagetable import Access, PageTable, PageTableEntry
from py_vm.memory.physical import PhysicalMemory
from py_vm.process.manager import ProcessManager
from py_vm.process.pcb import Process

INIT_PID = 0


class MachineState(StrEnum):
    """Lifecycle phases of the machine."""

    SHUTDOWN = "shutdown"
    RUNNING = "running"


class Machine:
    """The simulated virtual memory system.

    Subsystem references are None while the machine is shut down and
    are created during boot.
    """

    def __init__(self, *, config: MachineConfig | None = None) -> None:
        """Create a machine in the SHUTDOWN state.

        Args:
            config: Machine geometry.  Defaults to ``MachineConfig()``.

        Raises:
            ConfigError: If the configuration is invalid.

        """
        self._config = (config or MachineConfig()).validate()
        self._state: MachineState = MachineState.SHUTDOWN
        self._frames: FrameTable | None = None
        self._physical: PhysicalMemory | None = None
        self._allocator: FrameAllocator | None = None
        self._resolver: FaultResolver | None = None
        self._processes: ProcessManager | None = None
        self._logger = Logger()
        self._fault_stats: Counter[str] = Counter()

    @property
    def state(self) -> MachineState:
        """Return the current machine state."""
        return self._state

    @property
    def config(self) -> MachineConfig:
        """Return the machine geometry."""
        return self._config

    @property
    def logger(self) -> Logger:
        """Return the machine event log."""
        return self._logger

    @property
    def frames(self) -> FrameTable:
        """Return the frame table."""
        self._require_running()
        assert self._frames is not None  # guaranteed by _require_running  # noqa: S101
        return self._frames

    @property
    def physical(self) -> PhysicalMemory:
        """Return physical memory."""
        self._require_running()
        assert self._physical is not None  # noqa: S101
        return self._physical

    @property
    def current(self) -> Process:
        """Return the running process."""
        return self._manager().current

    @property
    def page_table(self) -> PageTable:
        """Return the active page table."""
        return self._manager().page_table

    @property
    def fault_stats(self) -> dict[str, int]:
        """Return counts of fault outcomes since boot."""
        return dict(self._fault_stats)

    def dmesg(self) -> list[str]:
        """Return the formatted event log (like Linux dmesg)."""
        return [str(entry) for entry in self._logger.entries]

    # -- Lifecycle --------------------------------------------------------------

    def boot(self) -> None:
        """Build every subsystem and start the init process.

        Raises:
            RuntimeError: If the machine is already running.

        """
        if self._state is not MachineState.SHUTDOWN:
            msg = f"Cannot boot: machine is {self._state}"
            raise RuntimeError(msg)

        cfg = self._config
        self._frames = FrameTable(total_frames=cfg.total_frames)
        self._physical = PhysicalMemory(total_frames=cfg.total_frames, page_size=cfg.page_size)
        self._allocator = FrameAllocator(self._frames)
        init = Process(
            pid=INIT_PID,
            page_table=PageTable(outer_bits=cfg.outer_bits, inner_bits=cfg.inner_bits),
        )
        self._processes = ProcessManager(frames=self._frames, init=init)
        self._resolver = FaultResolver(
            frames=self._frames,
            allocator=self._allocator,
            physical=self._physical,
            page_tables=self._processes.page_tables,
        )
        self._fault_stats.clear()
        self._state = MachineState.RUNNING

        self._log(
            LogLevel.INFO,
            f"{cfg.total_frames} frames of {cfg.page_size} bytes, "
            f"{cfg.num_pages} virtual pages ({1 << cfg.outer_bits} x {cfg.entries_per_directory})",
            kind=EventKind.BOOT,
        )
        self._log(LogLevel.INFO, f"init process {INIT_PID} running", kind=EventKind.BOOT)

    def shutdown(self) -> None:
        """Tear down every subsystem.

        Raises:
            RuntimeError: If the machine is not running.

        """
        self._require_running()
        self._log(LogLevel.INFO, "machine halted", kind=EventKind.BOOT)
        self._resolver = None
        self._processes = None
        self._allocator = None
        self._physical = None
        self._frames = None
        self._state = MachineState.SHUTDOWN

    # -- Core operations on the current process ---------------------------------

    def translate(self, vpn: int) -> PageTableEntry | None:
        """Translate ``vpn`` through the current page table (no side effects)."""
        return self.page_table.translate(vpn)

    def allocate_frame(self, vpn: int, access: Access) -> int:
        """Map a fresh frame at ``vpn`` in the current process.

        Returns:
            The allocated frame number.

        Raises:
            OutOfMemoryError: If every frame is in use.
            ValueError: If ``vpn`` is out of range or already mapped.

        """
        manager = self._manager()
        assert self._allocator is not None  # noqa: S101
        assert self._physical is not None  # noqa: S101
        try:
            frame = self._allocator.allocate_frame(manager.page_table, vpn, access)
        except OutOfMemoryError as e:
            self._log(LogLevel.ERROR, str(e), kind=EventKind.ALLOC, vpn=vpn)
            raise
        self._physical.zero(frame)
        self._log(
            LogLevel.INFO,
            f"vpn {vpn} -> frame {frame} ({_describe(access)})",
            kind=EventKind.ALLOC,
            vpn=vpn,
        )
        return frame

    def deallocate(self, vpn: int) -> None:
        """Unmap ``vpn`` in the current process.

        If the freed mapping leaves a COW frame with a single sharer,
        that sharer becomes writable.

        Raises:
            ValueError: If ``vpn`` is not mapped.

        """
        manager = self._manager()
        assert self._allocator is not None  # noqa: S101
        assert self._frames is not None  # noqa: S101
        frame = self._allocator.deallocate(manager.page_table, vpn)
        promote_sole_sharer(frame, manager.page_tables(), self._frames)
        self._log(
            LogLevel.INFO,
            f"vpn {vpn} unmapped from frame {frame} (count now {self._frames.count(frame)})",
            kind=EventKind.FREE,
            vpn=vpn,
        )

    def resolve_fault(self, vpn: int, access: Access) -> FaultResolution:
        """Handle a page fault at ``vpn`` in the current process.

        Raises:
            SegmentationFaultError: If the access is illegal.
            OutOfMemoryError: If a COW copy cannot get a frame.

        """
        manager = self._manager()
        assert self._resolver is not None  # noqa: S101
        before = manager.page_table.translate(vpn)
        old_frame = before.pfn if before is not None else None
        try:
            resolution = self._resolver.resolve_fault(manager.page_table, vpn, access)
        except SegmentationFaultError as e:
            self._fault_stats["segfault"] += 1
            self._log(LogLevel.WARNING, str(e), kind=EventKind.FAULT, vpn=vpn)
            raise
        except OutOfMemoryError as e:
            self._fault_stats["oom"] += 1
            self._log(
                LogLevel.ERROR,
                f"COW break on vpn {vpn} failed: {e}",
                kind=EventKind.FAULT,
                vpn=vpn,
            )
            raise

        self._fault_stats[resolution.value] += 1
        match resolution:
            case FaultResolution.COPIED:
                after = manager.page_table.translate(vpn)
                assert after is not None  # noqa: S101
                message = f"COW break on vpn {vpn}: frame {old_frame} copied to frame {after.pfn}"
            case FaultResolution.REUSED:
                message = f"COW break on vpn {vpn}: last sharer of frame {old_frame}, now writable"
            case FaultResolution.SPURIOUS:
                message = f"spurious fault on vpn {vpn} ({_describe(access)})"
        level = LogLevel.DEBUG if resolution is FaultResolution.SPURIOUS else LogLevel.INFO
        self._log(level, message, kind=EventKind.FAULT, vpn=vpn)
        return resolution

    def switch_or_fork(self, pid: int) -> int:
        """Switch to process ``pid``, forking it from the current one if needed.

        Returns:
            The PID of the now-current process.

        """
        manager = self._manager()
        previous = manager.current.pid
        forked = manager.find(pid) is None
        result = manager.switch_or_fork(pid)
        if forked:
            pages = len(manager.page_table)
            self._log(
                LogLevel.INFO,
                f"forked pid {pid} from pid {previous} ({pages} shared pages)",
                kind=EventKind.FORK,
            )
        elif pid != previous:
            self._log(
                LogLevel.INFO,
                f"switched from pid {previous} to pid {pid}",
                kind=EventKind.SWITCH,
            )
        return result

    # -- Dispatch loop ------------------------------------------------------------

    def access(self, vpn: int, access: Access) -> int:
        """Perform a memory access at ``vpn`` and return the frame it hits.

        The fault resolver runs only when translation misses or a write
        hits a non-writable entry.

        Raises:
            SegmentationFaultError: If the access is illegal.
            OutOfMemoryError: If a COW copy cannot get a frame.

        """
        entry = self.translate(vpn)
        if entry is None or (access & Access.WRITE and not entry.writable):
            self.resolve_fault(vpn, access)
            entry = self.translate(vpn)
            assert entry is not None  # noqa: S101
        return entry.pfn

    def read(self, vpn: int, *, offset: int = 0, size: int | None = None) -> bytes:
        """Read bytes from virtual page ``vpn`` of the current process."""
        frame = self.access(vpn, Access.READ)
        return self.physical.read(frame, offset=offset, size=size)

    def write(self, vpn: int, data: bytes, *, offset: int = 0) -> int:
        """Write bytes to virtual page ``vpn`` of the current process.

        Returns:
            The frame the data landed in.

        """
        frame = self.access(vpn, Access.WRITE)
        self.physical.write(frame, data, offset=offset)
        return frame

    # -- Reporting ----------------------------------------------------------------

    def processes(self) -> list[Process]:
        """Return the current process followed by the ready queue."""
        return list(self._manager().processes())

    def process(self, pid: int) -> Process:
        """Return the process with ``pid``.

        Raises:
            ValueError: If no such process exists.

        """
        process = self._manager().find(pid)
        if process is None:
            msg = f"Process {pid} not found"
            raise ValueError(msg)
        return process

    def frame_counts(self) -> dict[int, int]:
        """Return the share count of every frame."""
        return self.frames.snapshot()

    def mappings(self, pid: int | None = None) -> dict[int, PageTableEntry]:
        """Return ``{vpn: entry}`` for every valid entry of a process.

        Args:
            pid: The process to inspect (default: the current process).

        """
        process = self.current if pid is None else self.process(pid)
        return dict(process.page_table.valid_entries())

    def check_consistency(self) -> list[str]:
        """Check the share-count and COW invariants across every process.

        Returns:
            A list of human-readable violations (empty when consistent).

        """
        frames = self.frames
        expected: Counter[int] = Counter()
        problems: list[str] = []
        for process in self._manager().processes():
            for vpn, entry in process.page_table.valid_entries():
                expected[entry.pfn] += 1
                if entry.cow and entry.writable and frames.count(entry.pfn) > 1:
                    problems.append(
                        f"pid {process.pid} vpn {vpn}: "
                        f"writable COW entry on shared frame {entry.pfn}"
                    )
        for frame, count in frames.snapshot().items():
            if count != expected[frame]:
                problems.append(
                    f"frame {frame}: share count {count}, but {expected[frame]} entries map it"
                )
        return problems

    # -- Internals ------------------------------------------------------------

    def _require_running(self) -> None:
        if self._state is not MachineState.RUNNING:
            msg = f"Machine is not running (state: {self._state})"
            raise RuntimeError(msg)

    def _manager(self) -> ProcessManager:
        self._require_running()
        assert self._processes is not None  # noqa: S101
        return self._processes

    def _log(
        self,
        level: LogLevel,
        message: str,
        *,
        kind: EventKind,
        vpn: int | None = None,
    ) -> None:
        pid = self._processes.current.pid if self._processes is not None else None
        self._logger.record(level, kind, message, pid=pid, vpn=vpn)


def _describe(access: Access) -> str:
    """Return ``r``, ``w`` or ``rw`` for an access mode."""
    return ("r" if access & Access.READ else "") + ("w" if access & Access.WRITE else "")
