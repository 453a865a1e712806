"""Open URLs in the user's default browser."""
import webbrowser

from loguru import logger


class BrowserLauncher:
    """Fire-and-forget browser opener; failures are logged, never raised."""

    def open(self, url):
        try:
            opened = webbrowser.open(url)
        except Exception as e:
            logger.warning("Failed to open browser at {}: {}", url, e)
            return False
        if not opened:
            logger.warning("No browser available to open {}", url)
        return bool(opened)
