"""Runners for the static file server.

ForegroundFileServer binds and serves inside the current process.
BackgroundFileServer spawns ``python -m hopen --internal-serve ...`` detached
from the terminal and waits for the child to report that it has bound.
"""
import os
import signal
import socket
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path

from loguru import logger
from werkzeug.serving import make_server

from config import BASE_DIR, EXIT_PORT_UNAVAILABLE, SERVER_SIGNATURE, WEB_HOST
from core.errors import PortUnavailable, ServerStartError
from core.registry import ServerSession, get_registry, terminate_process
from web.app import create_app

READY_MARKER = "hopen-listening"


def install_shutdown_handlers():
    """Turn SIGTERM into SystemExit so ``finally`` cleanup runs.

    SIGINT keeps its default KeyboardInterrupt.
    """
    if threading.current_thread() is not threading.main_thread():
        return

    def _signal_handler(signum, frame):
        raise SystemExit(0)

    signal.signal(signal.SIGTERM, _signal_handler)


def bind_socket(host, port):
    """Bind and listen on (*host*, *port*); the bind is the authoritative check."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    if os.name == "posix":
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
        sock.listen(128)
    except OSError as e:
        sock.close()
        raise PortUnavailable(port) from e
    return sock


@dataclass
class ServerHandle:
    server: object
    session: ServerSession
    serving: bool = False

    @property
    def port(self):
        return self.session.port


class ForegroundFileServer:
    def __init__(self, host=WEB_HOST):
        self.host = host

    def start(self, directory, port):
        """Bind *port* and prepare to serve *directory*; raises PortUnavailable."""
        sock = bind_socket(self.host, port)
        try:
            server = make_server(self.host, port, create_app(directory), threaded=True, fd=sock.fileno())
        finally:
            # make_server duplicated the descriptor
            sock.close()
        session = ServerSession(pid=os.getpid(), port=port, directory=Path(directory))
        logger.info("Bound {}:{} for {}", self.host, port, directory)
        return ServerHandle(server=server, session=session)

    def serve_forever(self, handle):
        """Block until interrupted (Ctrl+C, SIGTERM) or stopped from another thread."""
        install_shutdown_handlers()
        handle.serving = True
        try:
            handle.server.serve_forever()
        finally:
            handle.serving = False

    def stop(self, handle):
        if handle.serving:
            handle.server.shutdown()
        handle.server.server_close()
        logger.info("Server on port {} stopped", handle.port)


class BackgroundFileServer:
    def __init__(self, settings, python=None):
        self.settings = settings
        self.python = python or sys.executable

    def command(self, directory, port):
        return [
            self.python, "-m", "hopen", SERVER_SIGNATURE,
            "--internal-port", str(port),
            "--internal-dir", str(directory),
        ]

    def log_file_for(self, port):
        return self.settings.logs_dir / f"server-{port}.log"

    def _environment(self):
        env = dict(os.environ)
        paths = [str(BASE_DIR)]
        if env.get("PYTHONPATH"):
            paths.append(env["PYTHONPATH"])
        env["PYTHONPATH"] = os.pathsep.join(paths)
        env["HOPEN_STATE_DIR"] = str(self.settings.state_dir)
        env["HOPEN_REGISTRY"] = self.settings.registry
        return env

    @staticmethod
    def _read_ready_line(stream, timeout):
        lines = []
        reader = threading.Thread(target=lambda: lines.append(stream.readline()), daemon=True)
        reader.start()
        reader.join(timeout)
        if reader.is_alive():
            return None
        return lines[0].decode(errors="replace").strip() if lines else ""

    def start(self, directory, port):
        """Spawn a detached server on *port* and wait until it has bound.

        Raises PortUnavailable if the child lost the bind race, otherwise
        ServerStartError when it dies or does not report in time.
        """
        log_file = self.log_file_for(port)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(log_file, "ab") as log:
            # Never run from the served tree: "-m" puts the cwd first on sys.path
            proc = subprocess.Popen(
                self.command(directory, port),
                cwd=str(BASE_DIR),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=log,
                env=self._environment(),
                start_new_session=True,
            )
        logger.info("Spawned background server PID {} for port {}", proc.pid, port)

        line = self._read_ready_line(proc.stdout, self.settings.startup_timeout)
        if line is None:
            # The reader thread still holds the pipe; it only returns once the child is gone
            terminate_process(proc.pid)
            proc.stdout.close()
            raise ServerStartError(
                f"Server did not start on port {port} within {self.settings.startup_timeout:g}s",
                log_file,
            )

        proc.stdout.close()
        if line.startswith(READY_MARKER):
            session = ServerSession(pid=proc.pid, port=port, directory=Path(directory))
            return ServerHandle(server=proc, session=session)

        try:
            code = proc.wait(timeout=self.settings.startup_timeout)
        except subprocess.TimeoutExpired:
            terminate_process(proc.pid)
            raise ServerStartError(f"Server on port {port} stopped responding", log_file)
        if code == EXIT_PORT_UNAVAILABLE:
            raise PortUnavailable(port)
        raise ServerStartError(f"Server exited with status {code}", log_file)

    def stop(self, handle):
        terminate_process(handle.session.pid)


def run_internal_server(directory, port, settings):
    """Body of the detached child process. Returns the process exit status."""
    registry = get_registry(settings)
    server = ForegroundFileServer(settings.host)
    try:
        handle = server.start(directory, port)
    except PortUnavailable as e:
        logger.error("{}", e)
        return EXIT_PORT_UNAVAILABLE

    registry.record(handle.session)
    try:
        print(f"{READY_MARKER} {port}", flush=True)
        # The parent stops reading after the marker
        os.dup2(sys.stderr.fileno(), sys.stdout.fileno())
        server.serve_forever(handle)
    except KeyboardInterrupt:
        pass
    finally:
        registry.forget(handle.session)
        server.stop(handle)
    return 0
