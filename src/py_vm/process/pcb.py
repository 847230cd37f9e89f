"""Process and Process Control Block (PCB).

In this simulator a process is little more than an address space: a
PID and the page table the MMU walks while the process is running.
Exactly one process is RUNNING at any time; every other process waits
in the ready queue.

State machine::

    READY ⇄ RUNNING

Processes are only ever born by fork (the init process is the one
exception, created at boot) and are never destroyed by the memory
core itself.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from py_vm.memory.pagetable import PageTable


class ProcessState(StrEnum):
    """Lifecycle states of a process.

    - READY: waiting in the ready queue.
    - RUNNING: the current process; its page table is the active one.
    """

    READY = "ready"
    RUNNING = "running"


class Process:
    """A simulated process (the Process Control Block)."""

    def __init__(
        self,
        *,
        pid: int,
        page_table: PageTable,
        parent_pid: int | None = None,
    ) -> None:
        """Create a new process in the READY state.

        Args:
            pid: The process identifier, chosen by the caller.
            page_table: The process's own page table (never shared).
            parent_pid: PID of the parent process, if any.

        """
        self._pid = pid
        self._page_table = page_table
        self._parent_pid = parent_pid
        self._state: ProcessState = ProcessState.READY

    @property
    def pid(self) -> int:
        """Return the process identifier."""
        return self._pid

    @property
    def page_table(self) -> PageTable:
        """Return the process's page table."""
        return self._page_table

    @property
    def parent_pid(self) -> int | None:
        """Return the PID of the parent process, or None for init."""
        return self._parent_pid

    @property
    def state(self) -> ProcessState:
        """Return the current process state."""
        return self._state

    def dispatch(self) -> None:
        """Transition READY → RUNNING.

        Raises:
            RuntimeError: If the process is not READY.

        """
        self._require_state(ProcessState.READY, action="dispatch")
        self._state = ProcessState.RUNNING

    def preempt(self) -> None:
        """Transition RUNNING → READY.

        Raises:
            RuntimeError: If the process is not RUNNING.

        """
        self._require_state(ProcessState.RUNNING, action="preempt")
        self._state = ProcessState.READY

    def _require_state(self, expected: ProcessState, *, action: str) -> None:
        if self._state is not expected:
            msg = (
                f"Cannot {action} process {self._pid}: "
                f"state is {self._state}, expected {expected}"
            )
            raise RuntimeError(msg)

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"Process(pid={self._pid}, state={self._state})"
