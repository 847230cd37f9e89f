"""Process subsystem — PCB, ready queue, and fork/switch.

Re-exports public symbols so callers can write::

    from py_vm.process import Process, ProcessManager
"""

from py_vm.process.manager import ProcessManager
from py_vm.process.pcb import Process, ProcessState
from py_vm.process.ready import ReadyQueue

__all__ = [
    "Process",
    "ProcessManager",
    "ProcessState",
    "ReadyQueue",
]
