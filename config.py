"""Shared configuration for hopen, the local HTML preview server."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger

APP_VERSION = "1.2.0"

# Paths
BASE_DIR = Path(__file__).parent
DEFAULT_STATE_DIR = Path.home() / ".hopen"

# Web server
WEB_HOST = "127.0.0.1"
URL_HOST = "localhost"
DEFAULT_PORT = 8000
MAX_PORT_ATTEMPTS = 101  # 8000-8100 with the default port

# Files that count as servable pages
HTML_EXTENSIONS = (".html", ".htm")
INDEX_FILES = ("index.html", "index.htm")

# Background server process
SERVER_SIGNATURE = "--internal-serve"
EXIT_PORT_UNAVAILABLE = 3
STARTUP_TIMEOUT = 5.0  # seconds to wait for the child to bind
TERMINATE_TIMEOUT = 3.0  # grace period between SIGTERM and SIGKILL

# Registry backends
REGISTRY_SESSION_FILE = "session-file"
REGISTRY_PROCESS = "process"
REGISTRY_CHOICES = (REGISTRY_SESSION_FILE, REGISTRY_PROCESS)

# Log rotation
LOG_ROTATION = "5 MB"
LOG_RETENTION = 5


@dataclass(frozen=True)
class Settings:
    """Per-invocation configuration, passed explicitly to the controller."""
    site_root: Optional[Path] = None
    host: str = WEB_HOST
    default_port: int = DEFAULT_PORT
    max_port_attempts: int = MAX_PORT_ATTEMPTS
    state_dir: Path = DEFAULT_STATE_DIR
    registry: str = REGISTRY_SESSION_FILE
    startup_timeout: float = STARTUP_TIMEOUT

    @property
    def sessions_dir(self):
        return self.state_dir / "sessions"

    @property
    def logs_dir(self):
        return self.state_dir / "logs"


def _parse_port(raw):
    try:
        port = int(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring HOPEN_PORT={!r}: not an integer", raw)
        return DEFAULT_PORT
    if not 1 <= port <= 65535:
        logger.warning("Ignoring HOPEN_PORT={}: out of range", port)
        return DEFAULT_PORT
    return port


def load_settings(environ=None):
    """Build Settings from environment variables.

    HOPEN_SITE_HOME   default site root (used when -r is not given)
    HOPEN_PORT        first port to try (default 8000)
    HOPEN_STATE_DIR   where session records and logs live (default ~/.hopen)
    HOPEN_REGISTRY    "session-file" (default) or "process"
    """
    env = os.environ if environ is None else environ

    site_home = env.get("HOPEN_SITE_HOME", "").strip()
    site_root = Path(site_home).expanduser() if site_home else None

    port = _parse_port(env["HOPEN_PORT"]) if env.get("HOPEN_PORT") else DEFAULT_PORT

    state_raw = env.get("HOPEN_STATE_DIR", "").strip()
    state_dir = Path(state_raw).expanduser() if state_raw else DEFAULT_STATE_DIR

    registry = env.get("HOPEN_REGISTRY", REGISTRY_SESSION_FILE).strip().lower()
    if registry not in REGISTRY_CHOICES:
        logger.warning("Unknown HOPEN_REGISTRY={!r}, using {}", registry, REGISTRY_SESSION_FILE)
        registry = REGISTRY_SESSION_FILE

    return Settings(
        site_root=site_root,
        default_port=port,
        state_dir=state_dir,
        registry=registry,
    )
