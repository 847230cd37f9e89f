"""The ready queue — processes waiting for the CPU.

Processes enter at the back when they are switched out or forked from
and leave from wherever they are when the driver asks for them by PID.
The queue never picks the next process on its own: there is no
scheduling policy in this simulator, only explicit switches.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from py_vm.process.pcb import ProcessState

if TYPE_CHECKING:
    from collections.abc import Iterator

    from py_vm.process.pcb import Process


class ReadyQueue:
    """FIFO container of READY processes, searchable by PID."""

    def __init__(self) -> None:
        """Create an empty ready queue."""
        self._queue: deque[Process] = deque()

    def push(self, process: Process) -> None:
        """Append a READY process to the back of the queue.

        Raises:
            RuntimeError: If the process is not READY or already queued.

        """
        if process.state is not ProcessState.READY:
            msg = f"Cannot queue process {process.pid}: state is {process.state}, expected ready"
            raise RuntimeError(msg)
        if self.find_by_pid(process.pid) is not None:
            msg = f"Process {process.pid} is already in the ready queue"
            raise RuntimeError(msg)
        self._queue.append(process)

    def find_by_pid(self, pid: int) -> Process | None:
        """Return the queued process with ``pid``, or None."""
        for process in self._queue:
            if process.pid == pid:
                return process
        return None

    def remove(self, process: Process) -> None:
        """Unlink a process from the queue.

        Raises:
            ValueError: If the process is not queued.

        """
        self._queue.remove(process)

    def __iter__(self) -> Iterator[Process]:
        """Iterate over queued processes, front to back."""
        return iter(list(self._queue))

    def __len__(self) -> int:
        """Return the number of queued processes."""
        return len(self._queue)
