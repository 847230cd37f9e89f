"""Machine configuration — the fixed geometry of the simulated system.

The page table shape and the size of physical memory are decided once,
when the machine is built, and never change while it runs.  They can
come from keyword arguments or from a small JSON file::

    {"outer_bits": 4, "inner_bits": 4, "total_frames": 128, "page_size": 4096}

Keys missing from the file fall back to the defaults below.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

DEFAULT_OUTER_BITS = 4
DEFAULT_INNER_BITS = 4
DEFAULT_TOTAL_FRAMES = 128
DEFAULT_PAGE_SIZE = 4096


class ConfigError(ValueError):
    """Raise when a machine configuration is invalid or unreadable."""


@dataclass(frozen=True)
class MachineConfig:
    """Geometry of the simulated machine.

    Attributes:
        outer_bits: VPN bits that index the outer page directory.
        inner_bits: VPN bits that index an inner page directory.
        total_frames: Number of physical frames.
        page_size: Bytes per page / frame.

    """

    outer_bits: int = DEFAULT_OUTER_BITS
    inner_bits: int = DEFAULT_INNER_BITS
    total_frames: int = DEFAULT_TOTAL_FRAMES
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def entries_per_directory(self) -> int:
        """Return the number of entries in one inner directory."""
        return 1 << self.inner_bits

    @property
    def num_pages(self) -> int:
        """Return the number of virtual pages per address space."""
        return 1 << (self.outer_bits + self.inner_bits)

    def validate(self) -> MachineConfig:
        """Check every field and return self.

        Raises:
            ConfigError: If a field has the wrong type or is not positive.

        """
        for name in ("outer_bits", "inner_bits", "total_frames", "page_size"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                msg = f"{name} must be a positive integer, got {value!r}"
                raise ConfigError(msg)
        return self


def load_config(path: Path) -> MachineConfig:
    """Load a machine configuration from a JSON file.

    Raises:
        ConfigError: If the file cannot be read or parsed, or holds
            invalid values.

    """
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        msg = f"Cannot load machine config: {e}"
        raise ConfigError(msg) from e
    if not isinstance(data, dict):
        msg = f"Machine config must be a JSON object, got {type(data).__name__}"
        raise ConfigError(msg)

    return MachineConfig(
        outer_bits=data.get("outer_bits", DEFAULT_OUTER_BITS),
        inner_bits=data.get("inner_bits", DEFAULT_INNER_BITS),
        total_frames=data.get("total_frames", DEFAULT_TOTAL_FRAMES),
        page_size=data.get("page_size", DEFAULT_PAGE_SIZE),
    ).validate()
