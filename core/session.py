"""Start/stop/reuse decisions for the single hopen server.

The controller never talks to the terminal. Interactive steps go through the
injected ``choose(menu)`` and ``confirm(question)`` callables, which makes every
branch testable with plain functions.

States, as seen through the registry:

  NoServer               start a server (or show the startup menu)
  OneServerRunning       reuse it, or show the existing-server menu
  MultipleServersRunning MultipleInstances, nothing is started or stopped
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from loguru import logger

from core.errors import (
    FilenameRequiresSiteRoot,
    HopenError,
    InvalidChoice,
    NoFreePort,
    NoHtmlFiles,
    PortUnavailable,
    SiteRootNotFound,
    UnknownPort,
)
from core.paths import build_url, has_html_files, resolve_url_path


class Action(str, Enum):
    STARTED = "started"
    REUSED = "reused"
    OPENED = "opened"
    STOPPED = "stopped"
    NOTHING_TO_STOP = "nothing_to_stop"
    CANCELLED = "cancelled"


class ExistingServerChoice(Enum):
    OPEN_BROWSER = "1"
    QUIT_SERVER = "2"
    QUIT_AND_RESTART = "3"
    CANCEL = "4"

    @property
    def label(self):
        return {
            "1": "Open in browser",
            "2": "Quit the existing server",
            "3": "Quit and restart here",
            "4": "Cancel and leave everything unchanged",
        }[self.value]


class StartupChoice(Enum):
    START_BACKGROUND = "1"
    START_FOREGROUND = "2"
    CANCEL = "3"

    @property
    def label(self):
        return {
            "1": "Start server in background",
            "2": "Start server in foreground",
            "3": "Cancel",
        }[self.value]


@dataclass
class Menu:
    """A question for the user: some context lines plus the allowed answers."""
    title: str
    details: list
    options: tuple

    def select(self, answer):
        """Map typed input ("2", "quit_server", ...) to one of the options."""
        text = str(answer).strip().lower()
        for option in self.options:
            if text in (option.value, option.name.lower()):
                return option
        raise InvalidChoice(answer)


@dataclass
class SessionRequest:
    current_dir: Path
    filename: Optional[str] = None
    site_root: Optional[Path] = None
    menu: bool = False
    foreground: bool = False
    prompt_browser: bool = False


@dataclass
class SessionResult:
    action: Action
    url: Optional[str] = None
    session: Optional[object] = None
    log_file: Optional[Path] = None
    browser_opened: bool = False
    details: dict = field(default_factory=dict)


def _no_choice(menu):
    raise HopenError("Interactive menu is not available")


def _decline(question):
    return False


class SessionController:
    def __init__(
        self,
        settings,
        registry,
        probe,
        background,
        foreground,
        browser,
        choose=None,
        confirm=None,
        html_check=has_html_files,
        on_started=None,
    ):
        self.settings = settings
        self.registry = registry
        self.probe = probe
        self.background = background
        self.foreground = foreground
        self.browser = browser
        self.choose = choose or _no_choice
        self.confirm = confirm or _decline
        self.html_check = html_check
        self.on_started = on_started

    # --- Exit mode ---

    def stop(self):
        """Terminate the running server; a no-op when there is none."""
        session = self.registry.find_running()
        if session is None:
            logger.info("No server running")
            return SessionResult(Action.NOTHING_TO_STOP)
        self.registry.terminate(session)
        return SessionResult(Action.STOPPED, session=session)

    # --- Normal invocation ---

    def open(self, request):
        current_dir = Path(os.path.realpath(request.current_dir))
        site_root = self._site_root(request, current_dir)
        if request.filename and site_root is None:
            raise FilenameRequiresSiteRoot(request.filename)

        url_path = resolve_url_path(site_root, current_dir, request.filename)
        existing = self.registry.find_running()

        if existing is None:
            if request.menu:
                return self._startup_menu(request, site_root, current_dir, url_path)
            return self._start(request, site_root, current_dir, url_path, request.foreground)

        if not request.menu:
            return self._reuse(existing, url_path)
        return self._existing_menu(request, existing, site_root, current_dir, url_path)

    def _site_root(self, request, current_dir):
        raw = request.site_root or self.settings.site_root
        if not raw:
            return None
        candidate = os.path.join(str(current_dir), os.path.expanduser(str(raw)))
        if not os.path.isdir(candidate):
            raise SiteRootNotFound(raw)
        return Path(os.path.realpath(candidate))

    def _ask(self, menu):
        selection = self.choose(menu)
        if selection not in menu.options:
            raise InvalidChoice(selection)
        return selection

    def _open_browser(self, url, prompt):
        if prompt and not self.confirm(f"Open {url} in browser now?"):
            return False
        return self.browser.open(url)

    # --- NoServer ---

    def _require_html(self, current_dir):
        if not self.html_check(current_dir):
            raise NoHtmlFiles(current_dir)

    def _startup_menu(self, request, site_root, current_dir, url_path):
        self._require_html(current_dir)
        directory = site_root or current_dir
        port = self.probe.find_free_port(self.settings.default_port)
        menu = Menu(
            title="No server currently running.",
            details=[
                ("Directory", str(directory)),
                ("Port", str(port)),
                ("URL", build_url(port, url_path)),
            ],
            options=tuple(StartupChoice),
        )
        choice = self._ask(menu)
        if choice is StartupChoice.CANCEL:
            return SessionResult(Action.CANCELLED)
        foreground = choice is StartupChoice.START_FOREGROUND
        return self._start(request, site_root, current_dir, url_path, foreground)

    def _bind(self, server, directory):
        """Start *server* on the first port that actually binds.

        The probe only suggests a port; losing the bind race to another
        process moves on to the next candidate, within the same scan cap.
        """
        first = self.settings.default_port
        limit = first + self.settings.max_port_attempts
        candidate = first
        while candidate < limit:
            try:
                port = self.probe.find_free_port(candidate)
            except NoFreePort:
                # Report the whole range, not just the part left after a lost race
                raise NoFreePort(first, self.settings.max_port_attempts) from None
            if port >= limit:
                break
            try:
                return server.start(directory, port)
            except PortUnavailable:
                logger.warning("Port {} was taken before the server could bind, trying next", port)
                candidate = port + 1
        raise NoFreePort(first, self.settings.max_port_attempts)

    def _start(self, request, site_root, current_dir, url_path, foreground):
        self._require_html(current_dir)
        directory = site_root or current_dir
        server = self.foreground if foreground else self.background

        handle = self._bind(server, directory)
        session = handle.session
        url = build_url(session.port, url_path)
        logger.info("Server for {} listening on port {}", directory, session.port)

        result = SessionResult(Action.STARTED, url=url, session=session)
        if not foreground:
            result.log_file = server.log_file_for(session.port)
        result.browser_opened = self._open_browser(url, request.prompt_browser)
        if self.on_started is not None:
            self.on_started(result)

        if foreground:
            self.registry.record(session)
            try:
                server.serve_forever(handle)
            except KeyboardInterrupt:
                logger.info("Interrupted, shutting down")
            finally:
                self.registry.forget(session)
                server.stop(handle)
        return result

    # --- OneServerRunning ---

    def _reuse(self, existing, url_path):
        if existing.port is None:
            raise UnknownPort(existing.pid)
        url = build_url(existing.port, url_path)
        logger.info("Reusing server PID {} on port {}", existing.pid, existing.port)
        opened = self.browser.open(url)
        return SessionResult(Action.REUSED, url=url, session=existing, browser_opened=opened)

    def _existing_menu(self, request, existing, site_root, current_dir, url_path):
        url = build_url(existing.port, url_path) if existing.port is not None else None
        details = []
        if existing.directory is not None:
            details.append(("Directory", str(existing.directory)))
        details.append(("PID", str(existing.pid)))
        details.append(("Port", str(existing.port) if existing.port is not None else "unknown"))
        details.append(("URL", url or "unknown"))
        menu = Menu(
            title="An HTTP server is already running!",
            details=details,
            options=tuple(ExistingServerChoice),
        )

        choice = self._ask(menu)
        if choice is ExistingServerChoice.OPEN_BROWSER:
            if url is None:
                raise UnknownPort(existing.pid)
            opened = self.browser.open(url)
            return SessionResult(Action.OPENED, url=url, session=existing, browser_opened=opened)
        if choice is ExistingServerChoice.QUIT_SERVER:
            self.registry.terminate(existing)
            return SessionResult(Action.STOPPED, session=existing)
        if choice is ExistingServerChoice.QUIT_AND_RESTART:
            self.registry.terminate(existing)
            result = self._start(request, site_root, current_dir, url_path, request.foreground)
            result.details["replaced"] = existing
            return result
        return SessionResult(Action.CANCELLED)
