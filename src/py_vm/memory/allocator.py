"""Frame allocator — hand out free frames and map them into page tables.

The allocator always picks the **lowest-numbered** free frame.  Real
kernels use buddy allocators and per-CPU free lists, but a simulator
whose output is compared line by line needs deterministic placement,
so "smallest free PFN" is the rule.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from py_vm.memory.pagetable import Access

if TYPE_CHECKING:
    from py_vm.memory.frames import FrameTable
    from py_vm.memory.pagetable import PageTable


class OutOfMemoryError(Exception):
    """Raise when no physical frame is free."""


class FrameAllocator:
    """Allocate and release frames on behalf of page tables."""

    def __init__(self, frames: FrameTable) -> None:
        """Create an allocator over a frame table."""
        self._frames = frames

    def find_free_frame(self) -> int:
        """Return the lowest-numbered free frame without claiming it.

        Raises:
            OutOfMemoryError: If every frame is in use.

        """
        frame = self._frames.lowest_free()
        if frame is None:
            msg = f"No free frame: all {self._frames.total_frames} frames are in use"
            raise OutOfMemoryError(msg)
        return frame

    def allocate_frame(self, page_table: PageTable, vpn: int, access: Access) -> int:
        """Map the lowest free frame at ``vpn``.

        Creates the page directory for ``vpn`` if needed, fills in the
        entry and moves the frame's share count from 0 to 1.  The entry
        is writable only if ``access`` includes WRITE.

        Args:
            page_table: The page table to install the mapping into.
            vpn: The virtual page number.
            access: The permissions requested for the page.

        Returns:
            The allocated frame number.

        Raises:
            OutOfMemoryError: If every frame is in use.
            ValueError: If ``vpn`` is already mapped or out of range.

        """
        existing = page_table.translate(vpn)
        if existing is not None:
            msg = f"Virtual page {vpn} is already mapped to frame {existing.pfn}"
            raise ValueError(msg)

        frame = self.find_free_frame()
        entry = page_table.entry(vpn, create=True)
        assert entry is not None  # create=True always yields an entry  # noqa: S101
        entry.valid = True
        entry.writable = bool(access & Access.WRITE)
        entry.cow = False
        entry.pfn = frame
        self._frames.claim(frame)
        return frame

    def deallocate(self, page_table: PageTable, vpn: int) -> int:
        """Unmap ``vpn`` and drop its frame's share count.

        The page directory stays in place even if it is now empty.

        Returns:
            The frame the page was mapped to.

        Raises:
            ValueError: If ``vpn`` is not mapped.

        """
        entry = page_table.translate(vpn)
        if entry is None:
            msg = f"Cannot free virtual page {vpn}: not mapped"
            raise ValueError(msg)
        frame = entry.pfn
        self._frames.decrement(frame)
        entry.clear()
        return frame
