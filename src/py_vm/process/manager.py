"""Process manager — context switches and copy-on-write fork.

The driver asks for a PID.  If a process with that PID is waiting in
the ready queue, the manager switches to it.  Otherwise it **forks**
the current process and gives the child the requested PID.

Fork does not copy any data.  Parent and child end up with two
separate page tables that point at the same frames:

    parent VPN 3 ──┐
                   ├──→ frame 7  (share count 2)
    child  VPN 3 ──┘

Every page that was writable (or already COW) is made read-only and
marked COW in *both* tables, so whichever process writes first takes
a fault and gets its own copy.  Pages that were read-only to begin
with stay plain read-only; they only gain a sharer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from py_vm.memory.pagetable import PageTable
from py_vm.process.pcb import Process
from py_vm.process.ready import ReadyQueue

if TYPE_CHECKING:
    from collections.abc import Iterator

    from py_vm.memory.frames import FrameTable


class ProcessManager:
    """Own the current process and the ready queue."""

    def __init__(
        self,
        *,
        frames: FrameTable,
        init: Process,
        ready: ReadyQueue | None = None,
    ) -> None:
        """Create a process manager with ``init`` as the running process.

        Args:
            frames: The system frame table (share counts change on fork).
            init: The first process; it becomes current.
            ready: The ready queue collaborator (default: a new, empty one).

        """
        self._frames = frames
        self._ready = ready if ready is not None else ReadyQueue()
        init.dispatch()
        self._current = init

    @property
    def current(self) -> Process:
        """Return the running process."""
        return self._current

    @property
    def page_table(self) -> PageTable:
        """Return the active page table (the page table base register)."""
        return self._current.page_table

    @property
    def ready(self) -> ReadyQueue:
        """Return the ready queue."""
        return self._ready

    def processes(self) -> Iterator[Process]:
        """Yield the current process followed by every ready process."""
        yield self._current
        yield from self._ready

    def page_tables(self) -> Iterator[PageTable]:
        """Yield the page table of every known process."""
        for process in self.processes():
            yield process.page_table

    def find(self, pid: int) -> Process | None:
        """Return the process with ``pid`` (current or ready), or None."""
        if self._current.pid == pid:
            return self._current
        return self._ready.find_by_pid(pid)

    def switch_or_fork(self, pid: int) -> int:
        """Switch to process ``pid``, forking it from the current one if needed.

        Asking for the current process is a no-op.

        Returns:
            The PID of the now-current process.

        """
        if pid == self._current.pid:
            return pid
        target = self._ready.find_by_pid(pid)
        if target is None:
            target = self._fork(pid)
        else:
            self._ready.remove(target)
        self._make_current(target)
        return pid

    def _make_current(self, process: Process) -> None:
        """Queue the running process and dispatch ``process``."""
        previous = self._current
        previous.preempt()
        self._ready.push(previous)
        process.dispatch()
        self._current = process

    def _fork(self, pid: int) -> Process:
        """Build a child of the current process that shares its frames."""
        parent_table = self._current.page_table
        child_table = PageTable(
            outer_bits=parent_table.outer_bits,
            inner_bits=parent_table.inner_bits,
        )

        for outer, parent_dir in parent_table.populated():
            child_dir = child_table.directory(outer, create=True)
            assert child_dir is not None  # noqa: S101
            for inner, parent_entry in enumerate(parent_dir):
                if not parent_entry.valid:
                    continue
                child_entry = child_dir[inner]
                if parent_entry.writable or parent_entry.cow:
                    # Both sides lose write access until a COW break.
                    parent_entry.writable = False
                    parent_entry.cow = True
                    child_entry.cow = True
                child_entry.valid = True
                child_entry.writable = False
                child_entry.pfn = parent_entry.pfn
                self._frames.increment(parent_entry.pfn)

        return Process(pid=pid, page_table=child_table, parent_pid=self._current.pid)
