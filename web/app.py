"""Flask app that serves a directory of static files."""
import logging
import os
import sys
import time

from flask import Flask, abort, g, redirect, request, send_from_directory
from loguru import logger
from werkzeug.utils import safe_join

from config import APP_VERSION, INDEX_FILES, LOG_RETENTION, LOG_ROTATION

ALLOWED_HOSTNAMES = {"localhost", "127.0.0.1", "[::1]"}


def setup_logging(logs_dir=None, verbose=False, log_name="hopen.log"):
    """Configure loguru file + stderr logging with rotation."""
    # Remove default handler
    logger.remove()
    if logs_dir is not None:
        logs_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(logs_dir / log_name),
            rotation=LOG_ROTATION,
            retention=LOG_RETENTION,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        )
    logger.add(
        sys.stderr,
        level="INFO" if verbose else "WARNING",
        format="{time:HH:mm:ss} | {level: <8} | {message}",
    )
    # Requests are logged by the app itself
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    def _exception_hook(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.opt(exception=(exc_type, exc_value, exc_tb)).error(
            "Unhandled exception: {}", exc_value
        )

    sys.excepthook = _exception_hook


def _index_for(directory):
    for name in INDEX_FILES:
        if os.path.isfile(os.path.join(directory, name)):
            return name
    return None


def create_app(directory):
    """Build the static file app rooted at *directory*.

    Existing files are returned as-is, missing paths are 404, and a directory
    serves its index.html/index.htm (no listings).
    """
    root = os.path.abspath(str(directory))
    logger.info("Serving {} (hopen v{})", root, APP_VERSION)

    app = Flask(__name__, static_folder=None)
    app.config["SITE_ROOT"] = root

    # --- Request logging ---
    @app.before_request
    def _log_request():
        g.request_start = time.time()

    @app.after_request
    def _after_request(response):
        duration = time.time() - getattr(g, "request_start", time.time())
        logger.info(
            "{} {} {} {:.0f}ms",
            request.method, request.path, response.status_code,
            duration * 1000,
        )
        return response

    # --- Host header validation (prevent DNS rebinding) ---
    @app.before_request
    def _validate_host():
        hostname = request.host.rsplit(":", 1)[0] if not request.host.endswith("]") else request.host
        if hostname not in ALLOWED_HOSTNAMES:
            abort(403)

    @app.route("/", defaults={"path": ""})
    @app.route("/<path:path>")
    def serve(path):
        target = safe_join(root, path) if path else root
        if target is None:
            abort(404)
        if os.path.isdir(target):
            if not request.path.endswith("/"):
                return redirect(request.path + "/", code=301)
            index = _index_for(target)
            if index is None:
                abort(404)
            return send_from_directory(target, index)
        return send_from_directory(root, path)

    return app
