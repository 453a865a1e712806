"""URL path resolution for a site root that differs from the current directory.

When the server runs from a site root (e.g. a SiteSucker mirror) but the user
is browsing somewhere below it, the browser URL has to include the relative
location:

    site root   /Users/me/www.example.com
    current     /Users/me/www.example.com/blog/posts
    filename    article.html
    url path    /blog/posts/article.html

Usage:
    from core.paths import resolve_url_path, build_url, has_html_files
"""
import os

from config import HTML_EXTENSIONS, URL_HOST
from core.errors import NotUnderSiteRoot


def _normalize(path, base):
    """Absolute, separator-trimmed form of *path*, relative to *base*."""
    return os.path.normpath(os.path.join(str(base), str(path)))


def _is_separator(ch):
    return ch == os.sep or ch == "/" or (os.altsep is not None and ch == os.altsep)


def relative_location(site_root, current_dir):
    """Path segments leading from *site_root* down to *current_dir*.

    Raises NotUnderSiteRoot when *current_dir* is neither the root itself
    nor below it. The comparison is separator-aware, so /var/www2 is not
    considered nested in /var/www.
    """
    root = _normalize(site_root, current_dir)
    here = _normalize(current_dir, current_dir)
    if here == root:
        return []
    prefix = root if root.endswith(os.sep) else root + os.sep
    if not here.startswith(prefix):
        raise NotUnderSiteRoot(root, here)
    return [seg for seg in here[len(prefix):].split(os.sep) if seg]


def resolve_url_path(site_root, current_dir, filename=None):
    """Compose the URL path for *filename* as seen from the server root.

    Returns "" (the server root) when there is no site root, or when both the
    relative location and the filename are empty. Otherwise the result always
    starts with "/". Pure: touches neither the filesystem nor process state.
    """
    if not site_root:
        return ""

    segments = relative_location(site_root, current_dir)

    name = filename or ""
    if name and _is_separator(name[0]):
        name = name[1:]
    if name:
        segments.append(name.replace(os.sep, "/"))

    if not segments:
        return ""
    return "/" + "/".join(segments)


def build_url(port, url_path="", host=URL_HOST):
    return f"http://{host}:{port}{url_path}"


def has_html_files(directory):
    """Check whether *directory* directly contains at least one HTML page."""
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.name.lower().endswith(HTML_EXTENSIONS) and entry.is_file():
                    return True
    except OSError:
        return False
    return False
