"""Shared test fixtures for pytest suite.

Provides fixtures for:
- site: temp site tree with HTML pages in nested directories
- settings: Settings pointing at a temp state directory
- registry / probe / background / foreground / browser: in-memory fakes
- make_controller: SessionController wired to the fakes
"""
from pathlib import Path

import pytest

from config import Settings
from core.errors import MultipleInstances, NoFreePort, PortUnavailable
from core.registry import ServerSession
from core.session import SessionController
from web.server import ServerHandle


# ---------------------------------------------------------------------------
# Filesystem fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def site(tmp_path):
    """A site root with pages at the top, two levels down, and a text-only dir.

    Returns dict with root, posts (nested dir with HTML) and notes (no HTML).
    """
    root = tmp_path / "www.example.com"
    posts = root / "blog" / "posts"
    notes = root / "notes"
    posts.mkdir(parents=True)
    notes.mkdir()
    (root / "index.html").write_text("<h1>Home</h1>")
    (posts / "article.html").write_text("<h1>Article</h1>")
    (posts / "index.htm").write_text("<h1>Posts</h1>")
    (notes / "readme.txt").write_text("no pages here")
    return {"root": root, "posts": posts, "notes": notes}


@pytest.fixture
def settings(tmp_path):
    return Settings(state_dir=tmp_path / "state", default_port=8000, max_port_attempts=10)


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class FakeRegistry:
    def __init__(self, sessions=None):
        self.sessions = list(sessions or [])
        self.recorded = []
        self.forgotten = []
        self.terminated = []

    def find_running(self):
        if len(self.sessions) > 1:
            raise MultipleInstances(self.sessions)
        return self.sessions[0] if self.sessions else None

    def record(self, session):
        self.recorded.append(session)

    def forget(self, session):
        self.forgotten.append(session)

    def terminate(self, session):
        self.terminated.append(session)
        self.sessions.remove(session)


class FakeProbe:
    def __init__(self, busy=(), max_attempts=10):
        self.busy = set(busy)
        self.max_attempts = max_attempts
        self.calls = []

    def is_listening(self, port):
        return port in self.busy

    def find_free_port(self, starting_at):
        self.calls.append(starting_at)
        for port in range(starting_at, starting_at + self.max_attempts):
            if port not in self.busy:
                return port
        raise NoFreePort(starting_at, self.max_attempts)


class FakeServer:
    """Records starts; ports in *taken* lose the bind race."""

    def __init__(self, taken=(), pid=4242, interrupt=False):
        self.taken = set(taken)
        self.pid = pid
        self.interrupt = interrupt
        self.started = []
        self.served = []
        self.stopped = []

    def start(self, directory, port):
        self.started.append((Path(directory), port))
        if port in self.taken:
            raise PortUnavailable(port)
        session = ServerSession(pid=self.pid, port=port, directory=Path(directory))
        return ServerHandle(server=None, session=session)

    def serve_forever(self, handle):
        self.served.append(handle)
        if self.interrupt:
            raise KeyboardInterrupt

    def stop(self, handle):
        self.stopped.append(handle)

    def log_file_for(self, port):
        return Path("/tmp") / f"server-{port}.log"


class FakeBrowser:
    def __init__(self, result=True):
        self.result = result
        self.opened = []

    def open(self, url):
        self.opened.append(url)
        return self.result


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def background():
    return FakeServer(pid=5151)


@pytest.fixture
def foreground():
    return FakeServer(pid=6262, interrupt=True)


@pytest.fixture
def browser():
    return FakeBrowser()


@pytest.fixture
def make_controller(settings, registry, probe, background, foreground, browser):
    """Build a SessionController around the fakes; keyword args override them."""
    def _make(**overrides):
        kwargs = dict(
            settings=settings,
            registry=registry,
            probe=probe,
            background=background,
            foreground=foreground,
            browser=browser,
        )
        kwargs.update(overrides)
        return SessionController(**kwargs)
    return _make


@pytest.fixture
def make_session():
    def _make(pid=1234, port=8000, directory="/srv/site"):
        return ServerSession(pid=pid, port=port, directory=Path(directory) if directory else None)
    return _make
