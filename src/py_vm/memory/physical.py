"""Simulated physical RAM — one bytearray per frame.

Storage for a frame is created the first time it is touched, so an
idle 128-frame machine costs nothing.  The frame table decides who
owns a frame; this module only holds the bytes.
"""


class PhysicalMemory:
    """Byte storage for every physical frame."""

    def __init__(self, *, total_frames: int, page_size: int) -> None:
        """Create physical memory with the given geometry.

        Args:
            total_frames: Number of frames.
            page_size: Size of each frame in bytes.

        """
        self._total_frames = total_frames
        self._page_size = page_size
        # frame_number → bytearray, created on first touch
        self._frames: dict[int, bytearray] = {}

    @property
    def page_size(self) -> int:
        """Return the frame size in bytes."""
        return self._page_size

    def read(self, frame: int, *, offset: int = 0, size: int | None = None) -> bytes:
        """Read bytes from a frame.

        Args:
            frame: The physical frame number.
            offset: Starting byte within the frame.
            size: Number of bytes to read (default: to the end of the frame).

        Raises:
            ValueError: If the range does not fit inside the frame.

        """
        if size is None:
            size = self._page_size - offset
        self._check_range(offset, size)
        storage = self._ensure_frame(frame)
        return bytes(storage[offset : offset + size])

    def write(self, frame: int, data: bytes, *, offset: int = 0) -> None:
        """Write bytes into a frame.

        Raises:
            ValueError: If the data does not fit inside the frame.

        """
        self._check_range(offset, len(data))
        storage = self._ensure_frame(frame)
        storage[offset : offset + len(data)] = data

    def copy(self, *, source: int, destination: int) -> None:
        """Duplicate the full contents of one frame into another."""
        self._ensure_frame(destination)[:] = self._ensure_frame(source)

    def zero(self, frame: int) -> None:
        """Fill a frame with zero bytes."""
        self._frames.pop(self._check_frame(frame), None)

    def _ensure_frame(self, frame: int) -> bytearray:
        """Get or create the storage for a frame."""
        if self._check_frame(frame) not in self._frames:
            self._frames[frame] = bytearray(self._page_size)
        return self._frames[frame]

    def _check_frame(self, frame: int) -> int:
        if not 0 <= frame < self._total_frames:
            msg = f"Frame {frame} is out of range (0..{self._total_frames - 1})"
            raise IndexError(msg)
        return frame

    def _check_range(self, offset: int, size: int) -> None:
        if offset < 0 or size < 0 or offset + size > self._page_size:
            msg = f"Range offset={offset} size={size} does not fit a {self._page_size}-byte page"
            raise ValueError(msg)
