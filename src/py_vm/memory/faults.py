"""Page fault resolution — decide whether a faulting access can proceed.

The MMU raises a page fault whenever translation fails or a write hits
a read-only entry.  The handler has to tell apart two very different
situations:

- The access is genuinely illegal (unmapped page, or a write to a page
  that was never writable).  That is a **segmentation fault** and the
  process has to die.
- The page is shared **copy-on-write** after a fork.  The write is
  legal; the kernel just has to give the writer its own copy first.

Classification, in order::

    unmapped                     → SegmentationFaultError
    write, read-only, not COW    → SegmentationFaultError
    write, COW, frame shared     → copy into a fresh frame   (COPIED)
    write, COW, last sharer      → make the entry writable   (REUSED)
    anything else                → nothing to do             (SPURIOUS)

When a COW break leaves the old frame with a single sharer, that
sharer is made writable straight away, so it never pays for a second
fault on a page nobody else can see.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, TypeAlias

from py_vm.memory.pagetable import Access

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from py_vm.memory.allocator import FrameAllocator
    from py_vm.memory.frames import FrameTable
    from py_vm.memory.pagetable import PageTable, PageTableEntry
    from py_vm.memory.physical import PhysicalMemory

# Supplies the page tables of every process that may share a frame.
PageTableSource: TypeAlias = "Callable[[], Iterable[PageTable]]"


class SegmentationFaultError(Exception):
    """Raise when an access touches an unmapped or protected page."""


class FaultResolution(StrEnum):
    """How a resolvable page fault was handled."""

    COPIED = "copied"
    REUSED = "reused"
    SPURIOUS = "spurious"


def promote_sole_sharer(
    frame: int,
    page_tables: Iterable[PageTable],
    frames: FrameTable,
) -> PageTableEntry | None:
    """Make the last COW sharer of a frame writable.

    Does nothing unless the frame has exactly one sharer and that
    sharer's entry is marked COW.

    Returns:
        The promoted entry, or None if nothing changed.

    """
    if frames.count(frame) != 1:
        return None
    for table in page_tables:
        for _vpn, entry in table.valid_entries():
            if entry.pfn == frame:
                if not entry.cow:
                    return None
                entry.cow = False
                entry.writable = True
                return entry
    return None


class FaultResolver:
    """Classify page faults and resolve the copy-on-write ones."""

    def __init__(
        self,
        *,
        frames: FrameTable,
        allocator: FrameAllocator,
        physical: PhysicalMemory | None = None,
        page_tables: PageTableSource | None = None,
    ) -> None:
        """Create a fault resolver.

        Args:
            frames: The system frame table.
            allocator: Used to obtain private frames on a COW break.
            physical: Frame storage; when given, COW breaks copy data.
            page_tables: Returns every live page table.  When given, the
                last sharer of a frame is promoted right after a COW
                break; otherwise it is promoted on its own next write.

        """
        self._frames = frames
        self._allocator = allocator
        self._physical = physical
        self._page_tables = page_tables

    def resolve_fault(self, page_table: PageTable, vpn: int, access: Access) -> FaultResolution:
        """Handle a page fault at ``vpn`` for ``access``.

        Returns:
            How the fault was resolved.

        Raises:
            SegmentationFaultError: If the access is illegal.
            OutOfMemoryError: If a COW copy needs a frame and none is
                free.  No state is changed in that case.

        """
        entry = page_table.translate(vpn)
        if entry is None:
            msg = f"Segmentation fault: virtual page {vpn} is not mapped"
            raise SegmentationFaultError(msg)

        if not access & Access.WRITE or entry.writable:
            return FaultResolution.SPURIOUS

        if not entry.cow:
            msg = f"Segmentation fault: write to read-only virtual page {vpn}"
            raise SegmentationFaultError(msg)

        if self._frames.count(entry.pfn) > 1:
            self._break_cow(page_table, vpn, entry)
            return FaultResolution.COPIED

        entry.cow = False
        entry.writable = True
        return FaultResolution.REUSED

    def _break_cow(self, page_table: PageTable, vpn: int, entry: PageTableEntry) -> None:
        """Give ``vpn`` a private copy of its shared frame."""
        old_frame = entry.pfn
        # Fail before touching anything if there is nowhere to copy to.
        self._allocator.find_free_frame()

        self._frames.decrement(old_frame)
        entry.clear()
        new_frame = self._allocator.allocate_frame(page_table, vpn, Access.READ_WRITE)
        if self._physical is not None:
            self._physical.copy(source=old_frame, destination=new_frame)

        if self._page_tables is not None:
            promote_sole_sharer(old_frame, self._page_tables(), self._frames)
