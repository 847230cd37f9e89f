"""Flask application factory for the PyVM web UI.

The ``create_app`` function boots a machine, creates a shell, and
returns a Flask app with three endpoints:

- ``GET /`` — render the terminal HTML page with the boot log.
- ``POST /api/execute`` — execute a command and return JSON.
- ``GET /api/status`` — return running state, current PID and frame usage.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import Flask, Response, jsonify, render_template, request

from py_vm.machine import Machine, MachineState
from py_vm.shell import Shell

if TYPE_CHECKING:
    from py_vm.config import MachineConfig

_HTTP_BAD_REQUEST = 400


def create_app(config: MachineConfig | None = None) -> Flask:
    """Create and configure the Flask application.

    Boot a machine, create a shell, and wire up routes.

    Args:
        config: Machine geometry (default: ``MachineConfig()``).

    Returns:
        A configured Flask application ready to serve.

    """
    machine = Machine(config=config)
    machine.boot()
    shell = Shell(machine=machine)

    boot_log = "\n".join(machine.dmesg())

    app = Flask(__name__)

    @app.route("/")
    def index() -> str:  # pyright: ignore[reportUnusedFunction]
        """Render the terminal HTML page."""
        return render_template("index.html", boot_log=boot_log)

    @app.route("/api/execute", methods=["POST"])
    def execute() -> tuple[Response, int] | Response:  # pyright: ignore[reportUnusedFunction]
        """Execute a shell command and return JSON output.

        Expects JSON body: ``{"command": "..."}``

        Returns:
            JSON with ``output`` and ``halted`` fields.

        """
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or "command" not in data:
            return jsonify({"error": "Missing 'command' field"}), _HTTP_BAD_REQUEST

        if machine.state is not MachineState.RUNNING:
            return jsonify({"output": "System halted.", "halted": True})

        command: str = str(data["command"])
        result = shell.execute(command)

        if result == Shell.EXIT_SENTINEL:
            return jsonify({"output": "System halted.", "halted": True})

        return jsonify({"output": result, "halted": False})

    @app.route("/api/status")
    def status() -> Response:  # pyright: ignore[reportUnusedFunction]
        """Return machine status for polling.

        Returns:
            JSON with ``running``, ``current_pid``, ``frames`` and ``events``
            (event counts by kind) fields.

        """
        if machine.state is not MachineState.RUNNING:
            return jsonify({"running": False, "current_pid": None, "frames": None})
        frames = machine.frames
        return jsonify(
            {
                "running": True,
                "current_pid": machine.current.pid,
                "frames": {
                    "total": frames.total_frames,
                    "free": frames.free_frames,
                    "shared": frames.shared_frame_count,
                },
                "events": {str(kind): n for kind, n in machine.logger.counts().items()},
            }
        )

    return app


def main() -> None:
    """Run the web UI development server.

    This is the ``py-vm-web`` console entry point.
    """
    app = create_app()
    app.run(debug=True, port=8080)
