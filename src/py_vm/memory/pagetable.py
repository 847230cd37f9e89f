"""Two-level page table — sparse VPN → PFN translation.

A flat page table needs one entry for every virtual page, even pages
the process never touches.  A **two-level** table splits the virtual
page number into two indices::

    vpn = 0b 0010 0111
             ──── ────
             outer inner

    outer directory[outer]  →  page directory (or None)
    page directory[inner]   →  page table entry

Only the outer directory exists up front.  An inner page directory is
created the first time a page in its range is allocated, so a process
that uses three pages pays for one small directory instead of a full
table.

Design choices:
    - **PageTableEntry is a mutable dataclass.**  Fork and fault
      handling flip bits in place, exactly like the hardware PTE.
    - **Directories are never freed** once created.  Deallocating the
      last page in a directory just leaves it full of invalid entries.
    - **Lazy creation is explicit** — ``directory(outer, create=True)``
      is the only way a new directory appears.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntFlag
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class Access(IntFlag):
    """The kind of memory access that caused an allocation or a fault."""

    READ = 1
    WRITE = 2
    READ_WRITE = READ | WRITE

    @classmethod
    def parse(cls, text: str) -> Access:
        """Parse ``r``, ``w`` or ``rw`` (case-insensitive) into an Access.

        Raises:
            ValueError: If the text is not a known access mode.

        """
        modes = {"r": cls.READ, "w": cls.WRITE, "rw": cls.READ_WRITE, "wr": cls.READ_WRITE}
        mode = modes.get(text.strip().lower())
        if mode is None:
            msg = f"Unknown access mode '{text}' (expected r, w or rw)"
            raise ValueError(msg)
        return mode


@dataclass
class PageTableEntry:
    """A single page table entry.

    Attributes:
        valid: The entry maps a physical frame.
        writable: Writes through this entry are allowed without a fault.
        cow: The frame is shared copy-on-write; a write must fault.
        pfn: The physical frame number (meaningless when invalid).

    """

    valid: bool = False
    writable: bool = False
    cow: bool = False
    pfn: int = 0

    def clear(self) -> None:
        """Reset the entry to its zeroed, invalid state."""
        self.valid = False
        self.writable = False
        self.cow = False
        self.pfn = 0


class PageDirectory:
    """An inner directory — a fixed-size run of page table entries."""

    def __init__(self, *, size: int) -> None:
        """Create a directory of ``size`` invalid entries."""
        self._entries = [PageTableEntry() for _ in range(size)]

    def __getitem__(self, index: int) -> PageTableEntry:
        """Return the entry at an inner index."""
        return self._entries[index]

    def __len__(self) -> int:
        """Return the number of entry slots."""
        return len(self._entries)

    def __iter__(self) -> Iterator[PageTableEntry]:
        """Iterate over every entry slot, valid or not."""
        return iter(self._entries)

    @property
    def valid_count(self) -> int:
        """Return the number of valid entries in this directory."""
        return sum(1 for entry in self._entries if entry.valid)


class PageTable:
    """The outer directory of a process's two-level page table.

    The outer directory holds ``2**outer_bits`` optional links to page
    directories; each page directory holds ``2**inner_bits`` entries.
    """

    def __init__(self, *, outer_bits: int, inner_bits: int) -> None:
        """Create an empty page table with no page directories.

        Args:
            outer_bits: Number of high-order VPN bits indexing the outer directory.
            inner_bits: Number of low-order VPN bits indexing a page directory.

        """
        self._outer_bits = outer_bits
        self._inner_bits = inner_bits
        self._directories: list[PageDirectory | None] = [None] * (1 << outer_bits)

    @property
    def outer_bits(self) -> int:
        """Return the number of VPN bits indexing the outer directory."""
        return self._outer_bits

    @property
    def inner_bits(self) -> int:
        """Return the number of VPN bits indexing a page directory."""
        return self._inner_bits

    @property
    def outer_size(self) -> int:
        """Return the number of slots in the outer directory."""
        return len(self._directories)

    @property
    def directory_size(self) -> int:
        """Return the number of entries in each page directory."""
        return 1 << self._inner_bits

    @property
    def num_pages(self) -> int:
        """Return the size of the virtual address space in pages."""
        return 1 << (self._outer_bits + self._inner_bits)

    def split(self, vpn: int) -> tuple[int, int]:
        """Split a VPN into its (outer, inner) indices.

        Raises:
            ValueError: If the VPN is outside the virtual address space.

        """
        if not 0 <= vpn < self.num_pages:
            msg = f"Virtual page {vpn} is out of range (0..{self.num_pages - 1})"
            raise ValueError(msg)
        return vpn >> self._inner_bits, vpn & (self.directory_size - 1)

    def directory(self, outer: int, *, create: bool = False) -> PageDirectory | None:
        """Return the page directory at an outer index.

        Args:
            outer: The outer directory index.
            create: Create the directory if the slot is empty.

        Returns:
            The page directory, or None if the slot is empty and
            ``create`` is False.

        Raises:
            ValueError: If ``outer`` is not a valid outer index.

        """
        if not 0 <= outer < self.outer_size:
            msg = f"Outer index {outer} is out of range (0..{self.outer_size - 1})"
            raise ValueError(msg)
        directory = self._directories[outer]
        if directory is None and create:
            directory = PageDirectory(size=self.directory_size)
            self._directories[outer] = directory
        return directory

    def entry(self, vpn: int, *, create: bool = False) -> PageTableEntry | None:
        """Return the entry slot for a VPN, valid or not.

        Returns None only when the page directory does not exist and
        ``create`` is False.
        """
        outer, inner = self.split(vpn)
        directory = self.directory(outer, create=create)
        if directory is None:
            return None
        return directory[inner]

    def translate(self, vpn: int) -> PageTableEntry | None:
        """Translate a VPN to its page table entry.

        Pure lookup — never creates a directory.

        Returns:
            The valid entry for the VPN, or None when the directory is
            missing or the entry is invalid.

        Raises:
            ValueError: If the VPN is outside the virtual address space.

        """
        entry = self.entry(vpn)
        if entry is None or not entry.valid:
            return None
        return entry

    def populated(self) -> Iterator[tuple[int, PageDirectory]]:
        """Yield ``(outer_index, directory)`` for every existing directory."""
        for outer, directory in enumerate(self._directories):
            if directory is not None:
                yield outer, directory

    def valid_entries(self) -> Iterator[tuple[int, PageTableEntry]]:
        """Yield ``(vpn, entry)`` for every valid entry in VPN order."""
        for outer, directory in self.populated():
            base = outer << self._inner_bits
            for inner, entry in enumerate(directory):
                if entry.valid:
                    yield base + inner, entry

    def mappings(self) -> dict[int, int]:
        """Return all valid VPN → PFN mappings."""
        return {vpn: entry.pfn for vpn, entry in self.valid_entries()}

    def __len__(self) -> int:
        """Return the number of valid entries."""
        return sum(directory.valid_count for _, directory in self.populated())
