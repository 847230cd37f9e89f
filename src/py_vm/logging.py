"""Machine event log.

Every allocation, free, fault, fork and switch the machine performs is
recorded as an :class:`Event`, tagged with the process that was current
and, where one is involved, the virtual page it touched.  ``dmesg``
renders the log as text; the shell's ``log`` command narrows it to a
single process or event kind.

Levels order events by how surprising they are: routine mappings are
INFO, spurious faults DEBUG, segmentation faults WARNING and
out-of-memory conditions ERROR.
"""

from collections import Counter
from dataclasses import dataclass
from enum import IntEnum, StrEnum


class LogLevel(IntEnum):
    """Severity levels for events, ordered for filtering."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


class EventKind(StrEnum):
    """What part of the machine an event came from."""

    BOOT = "boot"
    ALLOC = "alloc"
    FREE = "free"
    FAULT = "fault"
    FORK = "fork"
    SWITCH = "switch"


@dataclass(frozen=True)
class Event:
    """One recorded machine event.

    Attributes:
        level: How notable the event is.
        kind: The operation that produced it.
        message: Human-readable description.
        pid: The current process, or None before init exists.
        vpn: The virtual page involved, if any.

    """

    level: LogLevel
    kind: EventKind
    message: str
    pid: int | None = None
    vpn: int | None = None

    def __str__(self) -> str:
        """Format as ``[LEVEL] kind (pid N): message``."""
        tag = f" (pid {self.pid})" if self.pid is not None else ""
        return f"[{self.level.name}] {self.kind}{tag}: {self.message}"


class Logger:
    """Append-only event log for one machine."""

    def __init__(self) -> None:
        """Create an empty log."""
        self._events: list[Event] = []

    @property
    def entries(self) -> list[Event]:
        """Return every event, oldest first."""
        return list(self._events)

    def record(
        self,
        level: LogLevel,
        kind: EventKind,
        message: str,
        *,
        pid: int | None = None,
        vpn: int | None = None,
    ) -> Event:
        """Append an event and return it."""
        event = Event(level=level, kind=kind, message=message, pid=pid, vpn=vpn)
        self._events.append(event)
        return event

    def filter(
        self,
        *,
        min_level: LogLevel | None = None,
        kind: EventKind | None = None,
        pid: int | None = None,
        vpn: int | None = None,
    ) -> list[Event]:
        """Return the events matching every given criterion.

        Args:
            min_level: Keep events at or above this level.
            kind: Keep events of this kind.
            pid: Keep events recorded while this process was current.
            vpn: Keep events that touched this virtual page.

        Returns:
            The matching events, oldest first.

        """
        return [
            event
            for event in self._events
            if (min_level is None or event.level >= min_level)
            and (kind is None or event.kind == kind)
            and (pid is None or event.pid == pid)
            and (vpn is None or event.vpn == vpn)
        ]

    def counts(self) -> Counter[EventKind]:
        """Return how many events of each kind were recorded."""
        return Counter(event.kind for event in self._events)

    def clear(self) -> None:
        """Drop every event."""
        self._events.clear()
