"""Interactive REPL (Read-Eval-Print Loop) for the memory simulator.

The REPL boots a machine, creates a shell, and enters the classic
loop:

    1. **Read** — display a prompt and read user input.
    2. **Eval** — pass the command to ``shell.execute()``.
    3. **Print** — display the result.
    4. **Loop** — repeat until the shell returns the exit sentinel.

The helper functions (``build_prompt``, ``format_banner``) are pure
and testable.  ``run()`` is the I/O entrypoint.
"""

import readline
import sys
from pathlib import Path

from py_vm.config import ConfigError, MachineConfig, load_config
from py_vm.machine import Machine, MachineState
from py_vm.shell import Shell

_BANNER_WIDTH = 38


def format_banner(machine: Machine) -> str:
    """Format the start-up banner and boot log.

    Args:
        machine: A booted machine.

    Returns:
        A formatted string suitable for printing to the console.

    """
    border = "=" * _BANNER_WIDTH
    header = (
        f"\n  {border}\n            PyVM v0.1.0\n"
        f"   A copy-on-write memory simulator\n  {border}\n\n"
    )
    body = "\n".join(f"  {msg}" for msg in machine.dmesg())
    footer = "\nMachine running. Type 'help' for commands, 'exit' to quit.\n"
    return header + body + footer


def build_prompt(machine: Machine) -> str:
    """Build the prompt string showing the current PID.

    Returns:
        A prompt like ``pid 0 $ ``, or ``pyvm $ `` when halted.

    """
    if machine.state is not MachineState.RUNNING:
        return "pyvm $ "
    return f"pid {machine.current.pid} $ "


def _complete_command(shell: Shell, text: str, state: int) -> str | None:
    """Readline callback completing command names."""
    matches = [name for name in shell.command_names if name.startswith(text)]
    return matches[state] if state < len(matches) else None


def run(argv: list[str] | None = None) -> None:
    """Boot the machine and run the interactive REPL.

    An optional first argument names a JSON machine config file.
    """
    args = sys.argv[1:] if argv is None else argv
    try:
        config = load_config(Path(args[0])) if args else MachineConfig()
    except ConfigError as e:
        print(f"Error: {e}")  # noqa: T201
        return

    machine = Machine(config=config)
    machine.boot()
    shell = Shell(machine=machine)

    readline.set_completer(lambda text, state: _complete_command(shell, text, state))
    readline.set_completer_delims(" \t")
    readline.parse_and_bind("tab: complete")

    print(format_banner(machine))  # noqa: T201

    try:
        while machine.state is MachineState.RUNNING:
            try:
                command = input(build_prompt(machine))
            except EOFError:
                # Ctrl+D — graceful exit
                print()  # noqa: T201
                break

            result = shell.execute(command)
            if result == Shell.EXIT_SENTINEL:
                break
            if result:
                print(result)  # noqa: T201

    except KeyboardInterrupt:
        # Ctrl+C — graceful exit
        print("\nInterrupted.")  # noqa: T201

    finally:
        if machine.state is MachineState.RUNNING:
            machine.shutdown()
        print("System halted.")  # noqa: T201
