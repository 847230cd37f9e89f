"""The shell — command interpreter for the memory simulator.

The shell reads a command string, splits it into a command name and
arguments, dispatches to the matching handler, and returns a string.
It is the "instruction parser" that drives the machine::

    alloc 3 rw      map a fresh frame at VPN 3, writable
    write 3 hello   store bytes (may trigger a COW break)
    switch 1        switch to PID 1, forking it if it does not exist
    show            print the current page table

Design choices:
    - **Returns strings, not prints.**  This keeps the shell fully
      testable; the REPL and the web UI decide how to display output.
    - **Command dispatch via a dict.**  Adding a command means writing
      a method and adding one dict entry.
    - **Errors become text.**  Segmentation faults and out-of-memory
      conditions are reported, not raised, so a script keeps going.
      Share-count corruption is a bug in the machine, not a user error,
      so it propagates.
"""

from collections.abc import Callable
from typing import TypeAlias

from py_vm.logging import EventKind
from py_vm.machine import Machine, MachineState
from py_vm.memory.allocator import OutOfMemoryError
from py_vm.memory.faults import SegmentationFaultError
from py_vm.memory.pagetable import Access

# Type alias for a command handler: takes a list of args, returns output.
_Handler: TypeAlias = Callable[[list[str]], str]

# Bytes of page content shown by ``read``.
_READ_PREVIEW = 32


class Shell:
    """Command interpreter that operates on a booted machine.

    The constructor refuses a machine that is not running.
    """

    EXIT_SENTINEL = "__EXIT__"

    def __init__(self, *, machine: Machine) -> None:
        """Create a shell attached to a running machine.

        Raises:
            RuntimeError: If the machine is not in the RUNNING state.

        """
        if machine.state is not MachineState.RUNNING:
            msg = f"Shell requires a running machine (state: {machine.state}, not running)"
            raise RuntimeError(msg)

        self._machine = machine
        self._commands: dict[str, _Handler] = {
            "help": self._cmd_help,
            "alloc": self._cmd_alloc,
            "free": self._cmd_free,
            "read": self._cmd_read,
            "write": self._cmd_write,
            "switch": self._cmd_switch,
            "ps": self._cmd_ps,
            "show": self._cmd_show,
            "frames": self._cmd_frames,
            "audit": self._cmd_audit,
            "stats": self._cmd_stats,
            "log": self._cmd_log,
            "exit": self._cmd_exit,
        }

    @property
    def machine(self) -> Machine:
        """Return the machine this shell drives."""
        return self._machine

    @property
    def command_names(self) -> list[str]:
        """Return the sorted list of command names."""
        return sorted(self._commands)

    def execute(self, command: str) -> str:
        """Parse and execute one command.

        Returns:
            The command output, an ``Error: ...`` message, or
            ``Unknown command: ...``.

        """
        parts = command.strip().split()
        if not parts:
            return ""
        name, args = parts[0], parts[1:]
        handler = self._commands.get(name)
        if handler is None:
            return f"Unknown command: {name}"
        try:
            return handler(args)
        except SegmentationFaultError as e:
            return str(e)
        except (OutOfMemoryError, ValueError) as e:
            return f"Error: {e}"

    def run_script(self, script: str) -> list[str]:
        """Execute a script of one command per line.

        Blank lines and lines starting with ``#`` are skipped.  The
        script stops at ``exit``.

        Returns:
            The output of every executed command, in order.

        """
        results: list[str] = []
        for raw in script.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            output = self.execute(line)
            results.append(output)
            if output == self.EXIT_SENTINEL:
                break
        return results

    # -- Command handlers ------------------------------------------------

    def _cmd_help(self, _args: list[str]) -> str:
        """List available commands."""
        return "Available commands: " + ", ".join(self.command_names)

    def _cmd_alloc(self, args: list[str]) -> str:
        """Map a fresh frame at a VPN: ``alloc <vpn> <r|w|rw>``."""
        if len(args) != 2:  # noqa: PLR2004
            return "Usage: alloc <vpn> <r|w|rw>"
        vpn = _parse_int(args[0], what="VPN")
        access = Access.parse(args[1])
        frame = self._machine.allocate_frame(vpn, access)
        return f"vpn {vpn} -> frame {frame}"

    def _cmd_free(self, args: list[str]) -> str:
        """Unmap a VPN: ``free <vpn>``."""
        if len(args) != 1:
            return "Usage: free <vpn>"
        vpn = _parse_int(args[0], what="VPN")
        self._machine.deallocate(vpn)
        return f"vpn {vpn} freed"

    def _cmd_read(self, args: list[str]) -> str:
        """Read a page: ``read <vpn>``."""
        if len(args) != 1:
            return "Usage: read <vpn>"
        vpn = _parse_int(args[0], what="VPN")
        frame = self._machine.access(vpn, Access.READ)
        size = min(_READ_PREVIEW, self._machine.config.page_size)
        data = self._machine.physical.read(frame, size=size)
        text = data.rstrip(b"\x00").decode(errors="replace")
        return f"vpn {vpn} (frame {frame}): {text!r}"

    def _cmd_write(self, args: list[str]) -> str:
        """Write text into a page: ``write <vpn> <text...>``."""
        if not args:
            return "Usage: write <vpn> <text...>"
        vpn = _parse_int(args[0], what="VPN")
        data = " ".join(args[1:]).encode()
        frame = self._machine.write(vpn, data)
        return f"vpn {vpn} (frame {frame}): wrote {len(data)} bytes"

    def _cmd_switch(self, args: list[str]) -> str:
        """Switch to a PID, forking it if needed: ``switch <pid>``."""
        if len(args) != 1:
            return "Usage: switch <pid>"
        pid = _parse_int(args[0], what="PID")
        self._machine.switch_or_fork(pid)
        return f"Running pid {self._machine.current.pid}"

    def _cmd_ps(self, _args: list[str]) -> str:
        """Show every process."""
        lines = ["PID    STATE     PARENT  PAGES"]
        for process in self._machine.processes():
            parent = "-" if process.parent_pid is None else str(process.parent_pid)
            lines.append(
                f"{process.pid:<6} {process.state!s:<9} {parent:<7} {len(process.page_table)}"
            )
        return "\n".join(lines)

    def _cmd_show(self, args: list[str]) -> str:
        """Show a page table: ``show [pid]``."""
        pid = _parse_int(args[0], what="PID") if args else None
        mappings = self._machine.mappings(pid)
        owner = self._machine.current.pid if pid is None else pid
        if not mappings:
            return f"pid {owner}: no pages mapped"
        lines = [f"pid {owner}", "VPN    PFN    FLAGS"]
        for vpn, entry in mappings.items():
            flags = ("w" if entry.writable else "r") + (" cow" if entry.cow else "")
            lines.append(f"{vpn:<6} {entry.pfn:<6} {flags}")
        return "\n".join(lines)

    def _cmd_frames(self, _args: list[str]) -> str:
        """Show share counts for frames in use."""
        frames = self._machine.frames
        used = {frame: count for frame, count in frames.snapshot().items() if count}
        header = f"{frames.free_frames}/{frames.total_frames} frames free"
        if not used:
            return header
        lines = [header, "PFN    COUNT"]
        lines.extend(f"{frame:<6} {count}" for frame, count in used.items())
        return "\n".join(lines)

    def _cmd_audit(self, _args: list[str]) -> str:
        """Check the share-count invariants."""
        problems = self._machine.check_consistency()
        if not problems:
            return "OK: share counts consistent"
        return "\n".join(problems)

    def _cmd_stats(self, _args: list[str]) -> str:
        """Show fault statistics."""
        stats = self._machine.fault_stats
        if not stats:
            return "No faults."
        return "\n".join(f"{name}: {count}" for name, count in sorted(stats.items()))

    def _cmd_log(self, args: list[str]) -> str:
        """Show the event log: ``log [pid|kind]``."""
        if len(args) > 1:
            return "Usage: log [pid|kind]"
        logger = self._machine.logger
        if not args:
            events = logger.entries
        elif args[0] in EventKind:
            events = logger.filter(kind=EventKind(args[0]))
        else:
            events = logger.filter(pid=_parse_int(args[0], what="PID"))
        return "\n".join(str(event) for event in events) if events else "No log entries."

    def _cmd_exit(self, _args: list[str]) -> str:
        """Halt the machine and signal the REPL to stop."""
        self._machine.shutdown()
        return self.EXIT_SENTINEL


def _parse_int(text: str, *, what: str) -> int:
    """Parse a decimal or ``0x`` integer argument.

    Raises:
        ValueError: With a friendly message if the text is not a number.

    """
    try:
        return int(text, 0)
    except ValueError:
        msg = f"invalid {what} '{text}'"
        raise ValueError(msg) from None
