"""Memory subsystem — frame table, page tables, allocation, and faults.

Re-exports public symbols so callers can write::

    from py_vm.memory import FrameAllocator, PageTable
"""

from py_vm.memory.allocator import FrameAllocator, OutOfMemoryError
from py_vm.memory.faults import (
    FaultResolution,
    FaultResolver,
    SegmentationFaultError,
    promote_sole_sharer,
)
from py_vm.memory.frames import FrameAccountingError, FrameTable
from py_vm.memory.pagetable import Access, PageDirectory, PageTable, PageTableEntry
from py_vm.memory.physical import PhysicalMemory

__all__ = [
    "Access",
    "FaultResolution",
    "FaultResolver",
    "FrameAccountingError",
    "FrameAllocator",
    "FrameTable",
    "OutOfMemoryError",
    "PageDirectory",
    "PageTable",
    "PageTableEntry",
    "PhysicalMemory",
    "SegmentationFaultError",
    "promote_sole_sharer",
]
