"""Frame table — per-frame share counts for physical memory.

Physical memory is divided into fixed-size **frames**.  After a
copy-on-write fork several page tables can point at the same frame, so
the kernel keeps a **share count** (Linux calls it a *mapcount*) for
every frame:

    count == 0  →  the frame is free
    count == k  →  exactly k valid page table entries reference it

Why a list instead of the usual free set?
    The allocator must always hand out the *lowest-numbered* free
    frame, because placement is part of the observable behaviour of
    the simulator.  A flat list indexed by frame number makes that a
    simple left-to-right scan, and it mirrors the ``mapcounts[]`` array
    a C kernel would keep.
"""


class FrameAccountingError(RuntimeError):
    """Raise when a share count would become inconsistent.

    This is never a user error — it means some code path forgot to
    pair an increment with a decrement.
    """


class FrameTable:
    """Track how many page table entries reference each physical frame."""

    def __init__(self, *, total_frames: int) -> None:
        """Create a frame table where every frame starts free.

        Args:
            total_frames: Total number of frames in physical memory.

        """
        self._counts: list[int] = [0] * total_frames

    @property
    def total_frames(self) -> int:
        """Return the total number of physical frames."""
        return len(self._counts)

    @property
    def free_frames(self) -> int:
        """Return the number of frames with a share count of 0."""
        return self._counts.count(0)

    @property
    def shared_frame_count(self) -> int:
        """Return the number of frames currently shared (count > 1)."""
        return sum(1 for count in self._counts if count > 1)

    def count(self, frame: int) -> int:
        """Return the share count for a physical frame.

        Raises:
            IndexError: If the frame number is out of range.

        """
        return self._counts[self._check(frame)]

    def is_free(self, frame: int) -> bool:
        """Return True if no entry references the frame."""
        return self.count(frame) == 0

    def lowest_free(self) -> int | None:
        """Return the smallest frame number with a count of 0, or None."""
        for frame, count in enumerate(self._counts):
            if count == 0:
                return frame
        return None

    def claim(self, frame: int) -> None:
        """Take a free frame, moving its count from 0 to 1.

        Raises:
            FrameAccountingError: If the frame is already in use.

        """
        if self._counts[self._check(frame)] != 0:
            msg = f"Frame {frame} is already in use (count {self._counts[frame]})"
            raise FrameAccountingError(msg)
        self._counts[frame] = 1

    def increment(self, frame: int) -> None:
        """Add one more sharer to an allocated frame.

        Raises:
            FrameAccountingError: If the frame is free.

        """
        if self._counts[self._check(frame)] == 0:
            msg = f"Frame {frame} is not allocated"
            raise FrameAccountingError(msg)
        self._counts[frame] += 1

    def decrement(self, frame: int) -> int:
        """Drop one sharer from a frame and return the new count.

        A frame whose count reaches 0 is free again.

        Raises:
            FrameAccountingError: If the count is already 0.

        """
        if self._counts[self._check(frame)] == 0:
            msg = f"Frame {frame} share count would drop below zero"
            raise FrameAccountingError(msg)
        self._counts[frame] -= 1
        return self._counts[frame]

    def snapshot(self) -> dict[int, int]:
        """Return every frame's share count as a dict."""
        return dict(enumerate(self._counts))

    def _check(self, frame: int) -> int:
        if not 0 <= frame < len(self._counts):
            msg = f"Frame {frame} is out of range (0..{len(self._counts) - 1})"
            raise IndexError(msg)
        return frame
