"""Discovery of the running hopen file server.

Two interchangeable registries share one contract:

  find_running() -> ServerSession | None   (MultipleInstances if ambiguous)
  record(session) / forget(session)        (called by the server process)
  terminate(session)                       (stop the process, then forget it)

SessionFileRegistry (default) keeps one JSON record per server under
``<state_dir>/sessions``, written after the server has bound its port, so the
port and directory are always known. ProcessTableRegistry scans the process
table for the server's command-line signature instead; it needs no state on
disk but may not be able to read another process's sockets or cwd.
"""
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import psutil
from loguru import logger

from config import (
    REGISTRY_PROCESS,
    SERVER_SIGNATURE,
    TERMINATE_TIMEOUT,
)
from core.errors import HopenError, MultipleInstances, UnknownDirectory, UnknownPort


@dataclass
class ServerSession:
    """One running file-server instance."""
    pid: int
    port: Optional[int]
    directory: Optional[Path]
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "pid": self.pid,
            "port": self.port,
            "directory": str(self.directory) if self.directory is not None else None,
            "started_at": self.started_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data):
        directory = data.get("directory")
        return cls(
            pid=int(data["pid"]),
            port=int(data["port"]) if data.get("port") is not None else None,
            directory=Path(directory) if directory else None,
            started_at=datetime.fromisoformat(data["started_at"]),
        )


def _single(sessions):
    if not sessions:
        return None
    if len(sessions) > 1:
        raise MultipleInstances(sessions)
    return sessions[0]


def terminate_process(pid, timeout=TERMINATE_TIMEOUT):
    """SIGTERM *pid*, escalating to SIGKILL after *timeout* seconds.

    A process that is already gone counts as stopped.
    """
    try:
        proc = psutil.Process(pid)
        proc.terminate()
        try:
            proc.wait(timeout=timeout)
        except psutil.TimeoutExpired:
            logger.warning("PID {} ignored SIGTERM for {}s, killing", pid, timeout)
            proc.kill()
            proc.wait(timeout=timeout)
    except psutil.NoSuchProcess:
        logger.info("PID {} already exited", pid)
    except psutil.AccessDenied as e:
        raise HopenError(f"Permission denied stopping server (PID {pid})") from e
    logger.info("Stopped server PID {}", pid)


class SessionFileRegistry:
    """Registry backed by per-process JSON records."""

    def __init__(self, sessions_dir):
        self.sessions_dir = Path(sessions_dir)

    def _path_for(self, pid):
        return self.sessions_dir / f"{pid}.json"

    def record(self, session):
        """Write the record for *session*; call only after the port is bound."""
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        data = session.to_dict()
        try:
            data["create_time"] = psutil.Process(session.pid).create_time()
        except psutil.Error:
            data["create_time"] = None
        path = self._path_for(session.pid)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(path)
        logger.debug("Session record written: {}", path)

    def forget(self, session):
        self._path_for(session.pid).unlink(missing_ok=True)

    def _is_live(self, data):
        pid = int(data["pid"])
        try:
            proc = psutil.Process(pid)
            create_time = proc.create_time()
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True
        recorded = data.get("create_time")
        # PID reuse: same number, different process
        return recorded is None or abs(create_time - float(recorded)) < 1.0

    def _load_live(self):
        if not self.sessions_dir.is_dir():
            return []
        sessions = []
        for path in sorted(self.sessions_dir.glob("*.json")):
            try:
                data = json.loads(path.read_text())
                session = ServerSession.from_dict(data)
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Removing unreadable session record {}: {}", path.name, e)
                path.unlink(missing_ok=True)
                continue
            if not self._is_live(data):
                logger.info("Removing stale session record for PID {}", session.pid)
                path.unlink(missing_ok=True)
                continue
            sessions.append(session)
        return sessions

    def find_running(self):
        return _single(self._load_live())

    def terminate(self, session):
        terminate_process(session.pid)
        self.forget(session)


class ProcessTableRegistry:
    """Registry that recognizes servers by their command line."""

    def __init__(self, signature=SERVER_SIGNATURE, own_pid=None):
        self.signature = signature
        self.own_pid = os.getpid() if own_pid is None else own_pid

    def _matches(self, cmdline):
        if not cmdline or self.signature not in cmdline:
            return False
        return any(os.path.basename(arg).startswith("hopen") for arg in cmdline)

    @staticmethod
    def _arg_value(cmdline, flag):
        for i, arg in enumerate(cmdline):
            if arg == flag and i + 1 < len(cmdline):
                return cmdline[i + 1]
            if arg.startswith(flag + "="):
                return arg.split("=", 1)[1]
        return None

    def _discover_port(self, proc, cmdline):
        try:
            for conn in proc.net_connections(kind="tcp"):
                if conn.status == psutil.CONN_LISTEN and conn.laddr:
                    return conn.laddr.port
        except (psutil.AccessDenied, psutil.NoSuchProcess):
            pass
        declared = self._arg_value(cmdline, "--internal-port")
        if declared and declared.isdigit():
            return int(declared)
        raise UnknownPort(proc.pid)

    def _discover_directory(self, proc, cmdline):
        declared = self._arg_value(cmdline, "--internal-dir")
        if declared:
            return Path(declared)
        try:
            return Path(proc.cwd())
        except (psutil.AccessDenied, psutil.NoSuchProcess):
            raise UnknownDirectory(proc.pid)

    def _session_for(self, proc, cmdline):
        try:
            port = self._discover_port(proc, cmdline)
        except UnknownPort as e:
            logger.warning("{}", e)
            port = None
        try:
            directory = self._discover_directory(proc, cmdline)
        except UnknownDirectory as e:
            logger.warning("{}", e)
            directory = None
        create_time = proc.info.get("create_time")
        started_at = (
            datetime.fromtimestamp(create_time, tz=timezone.utc)
            if create_time else datetime.now(timezone.utc)
        )
        return ServerSession(pid=proc.pid, port=port, directory=directory, started_at=started_at)

    def find_running(self):
        sessions = []
        for proc in psutil.process_iter(["pid", "cmdline", "create_time"]):
            if proc.pid == self.own_pid:
                continue
            cmdline = proc.info.get("cmdline") or []
            if not self._matches(cmdline):
                continue
            sessions.append(self._session_for(proc, cmdline))
        return _single(sessions)

    def record(self, session):
        pass

    def forget(self, session):
        pass

    def terminate(self, session):
        terminate_process(session.pid)


def get_registry(settings):
    if settings.registry == REGISTRY_PROCESS:
        return ProcessTableRegistry()
    return SessionFileRegistry(settings.sessions_dir)
