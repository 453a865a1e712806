"""User-facing failures raised by the session manager.

Every error carries a message naming the offending condition; the CLI prints
it and exits non-zero. Nothing here is retried automatically.
"""


class HopenError(Exception):
    """Base class for all terminal failures of one invocation."""


class NotUnderSiteRoot(HopenError):
    def __init__(self, site_root, current_dir):
        self.site_root = str(site_root)
        self.current_dir = str(current_dir)
        super().__init__(
            f"Current directory is not under the site root\n"
            f"  Site root:         {self.site_root}\n"
            f"  Current directory: {self.current_dir}"
        )


class SiteRootNotFound(HopenError):
    def __init__(self, path):
        self.path = str(path)
        super().__init__(f"Site root does not exist or is not a directory: {self.path}")


class FilenameRequiresSiteRoot(HopenError):
    def __init__(self, filename):
        self.filename = filename
        super().__init__(
            f"Filename {filename!r} requires a site root: pass -r or set HOPEN_SITE_HOME"
        )


class NoHtmlFiles(HopenError):
    def __init__(self, directory):
        self.directory = str(directory)
        super().__init__(
            f"No HTML files (*.html, *.htm) found in {self.directory}"
        )


class NoFreePort(HopenError):
    def __init__(self, start, attempts):
        self.start = start
        self.attempts = attempts
        last = min(start + attempts - 1, 65535)
        super().__init__(f"No available port found in range {start}-{last}")


class PortUnavailable(HopenError):
    def __init__(self, port):
        self.port = port
        super().__init__(f"Port {port} is already in use")


class MultipleInstances(HopenError):
    def __init__(self, sessions):
        self.sessions = list(sessions)
        lines = [
            f"  PID {s.pid}, port {s.port if s.port is not None else 'unknown'}"
            for s in self.sessions
        ]
        pids = " ".join(str(s.pid) for s in self.sessions)
        super().__init__(
            f"{len(self.sessions)} hopen servers are running; refusing to pick one:\n"
            + "\n".join(lines)
            + f"\nStop the extra servers manually (e.g. kill {pids}) and try again."
        )


class InvalidChoice(HopenError):
    def __init__(self, selection):
        self.selection = selection
        super().__init__(f"Invalid choice: {selection!r}")


class UnknownPort(HopenError):
    def __init__(self, pid):
        self.pid = pid
        super().__init__(
            f"Could not determine the port of running server (PID {pid}); "
            f"stop it with 'hopen -e' and try again"
        )


class UnknownDirectory(HopenError):
    def __init__(self, pid):
        self.pid = pid
        super().__init__(f"Could not determine the directory of running server (PID {pid})")


class ServerStartError(HopenError):
    def __init__(self, message, log_file=None):
        self.log_file = log_file
        if log_file:
            message = f"{message}\n  Check logs: {log_file}"
        super().__init__(message)
