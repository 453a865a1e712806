"""TCP port probing on localhost."""
import socket

from loguru import logger

from config import MAX_PORT_ATTEMPTS, WEB_HOST
from core.errors import NoFreePort

MAX_PORT = 65535


class PortProbe:
    """Answers "is anything bound to this port?" and finds the next free one.

    The answer is advisory only: another process can grab a port between the
    probe and the bind, so callers must still treat a failed bind as final.
    """

    def __init__(self, host=WEB_HOST, max_attempts=MAX_PORT_ATTEMPTS, connect_timeout=0.2):
        self.host = host
        self.max_attempts = max_attempts
        self.connect_timeout = connect_timeout

    def _accepts_connections(self, port):
        try:
            with socket.create_connection((self.host, port), timeout=self.connect_timeout):
                return True
        except OSError:
            return False

    def _is_bound(self, port):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((self.host, port))
            except OSError:
                return True
        return False

    def is_listening(self, port):
        """Return True if a listener (or any bound socket) holds *port*."""
        if self._accepts_connections(port):
            return True
        return self._is_bound(port)

    def find_free_port(self, starting_at):
        """Return the first port >= *starting_at* with nothing bound to it."""
        for port in range(starting_at, min(starting_at + self.max_attempts, MAX_PORT + 1)):
            if not self.is_listening(port):
                return port
            logger.debug("Port {} is in use", port)
        raise NoFreePort(starting_at, self.max_attempts)
