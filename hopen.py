"""hopen - start a local HTTP server for HTML files and open the browser.

Usage: hopen [-e] [-f] [-m] [-p] [-r site_home] [-v] [filename]

When a site root is set (via -r or HOPEN_SITE_HOME), the server runs from that
directory and the URL path is (relative path from site root to PWD) + filename:

    site root  /Users/me/www.example.com
    PWD        /Users/me/www.example.com/blog
    filename   post.html
    URL        http://localhost:8000/blog/post.html

If a server is already running it is reused; -m shows a menu instead.
"""
import argparse
import os
import sys
from pathlib import Path

from config import APP_VERSION, SERVER_SIGNATURE, load_settings
from core.browser import BrowserLauncher
from core.errors import HopenError
from core.ports import PortProbe
from core.registry import get_registry
from core.session import Action, SessionController, SessionRequest
from web.app import setup_logging
from web.server import BackgroundFileServer, ForegroundFileServer, run_internal_server


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="hopen",
        description="Start a local HTTP server for HTML files and open it in the browser.",
    )
    parser.add_argument("filename", nargs="?",
                        help="HTML file to open (requires -r or HOPEN_SITE_HOME)")
    parser.add_argument("-r", "--root", dest="site_root",
                        help="site root directory the server runs from "
                             "(default: $HOPEN_SITE_HOME, else the current directory)")
    parser.add_argument("-e", "--exit", action="store_true",
                        help="stop the running server and exit")
    parser.add_argument("-f", "--foreground", action="store_true",
                        help="run the server in the foreground (blocking)")
    parser.add_argument("-m", "--menu", action="store_true",
                        help="show an interactive menu instead of reusing a running server")
    parser.add_argument("-p", "--prompt", action="store_true",
                        help="ask before opening the browser")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="log progress to stderr")
    parser.add_argument("--version", action="version", version=f"hopen {APP_VERSION}")

    # Used when hopen spawns itself as the background server
    parser.add_argument(SERVER_SIGNATURE, dest="internal_serve", action="store_true",
                        help=argparse.SUPPRESS)
    parser.add_argument("--internal-port", type=int, help=argparse.SUPPRESS)
    parser.add_argument("--internal-dir", help=argparse.SUPPRESS)
    return parser.parse_args(argv)


# --- Terminal prompts ---


def prompt_menu(menu):
    """Show *menu* on the terminal and return the chosen option."""
    print(menu.title)
    for label, value in menu.details:
        print(f"  {label}: {value}")
    print()
    print("What would you like to do?")
    for option in menu.options:
        print(f"  {option.value}) {option.label}")
    answer = input(f"Choose [1-{len(menu.options)}]: ")
    return menu.select(answer)


def prompt_yes_no(question):
    """Ask a yes/no question; anything but y/yes means no."""
    answer = input(f"{question} [y/N]: ")
    return answer.strip().lower() in ("y", "yes")


def _announce_start(result):
    session = result.session
    print(f"Serving {session.directory} on port {session.port}")
    print(f"Access at: {result.url}")
    if result.browser_opened:
        print(f"Browser opened at {result.url}")
    if result.log_file is None:
        print("Server running (press Ctrl+C to stop)")


def report(result):
    session = result.session
    if result.action is Action.NOTHING_TO_STOP:
        print("No server running.")
    elif result.action is Action.STOPPED:
        port = session.port if session.port is not None else "unknown"
        print(f"Server stopped (PID: {session.pid}, port: {port})")
    elif result.action is Action.CANCELLED:
        print("Cancelled - no changes made")
    elif result.action is Action.REUSED:
        print(f"Reusing existing server (PID: {session.pid}, port: {session.port})")
    elif result.action is Action.STARTED and result.log_file is not None:
        print(f"Server started (PID: {session.pid})")
        print("To stop the server, run: hopen -e")
        print(f"Logs: {result.log_file}")
    elif result.action is Action.STARTED:
        print("Server stopped")

    if result.browser_opened and result.action in (Action.REUSED, Action.OPENED):
        print(f"Browser opened at {result.url}")


def build_controller(settings):
    return SessionController(
        settings=settings,
        registry=get_registry(settings),
        probe=PortProbe(settings.host, settings.max_port_attempts),
        background=BackgroundFileServer(settings),
        foreground=ForegroundFileServer(settings.host),
        browser=BrowserLauncher(),
        choose=prompt_menu,
        confirm=prompt_yes_no,
        on_started=_announce_start,
    )


def main(argv=None):
    args = parse_args(argv)
    settings = load_settings()

    if args.internal_serve:
        # stderr is the server log file
        setup_logging(verbose=True)
        directory = args.internal_dir or os.getcwd()
        port = args.internal_port or settings.default_port
        return run_internal_server(directory, port, settings)

    setup_logging(settings.logs_dir, verbose=args.verbose)
    controller = build_controller(settings)
    try:
        if args.exit:
            result = controller.stop()
        else:
            result = controller.open(SessionRequest(
                current_dir=Path.cwd(),
                filename=args.filename,
                site_root=Path(args.site_root) if args.site_root else None,
                menu=args.menu,
                foreground=args.foreground,
                prompt_browser=args.prompt,
            ))
    except HopenError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (KeyboardInterrupt, EOFError):
        print("\nCancelled", file=sys.stderr)
        return 130

    report(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
