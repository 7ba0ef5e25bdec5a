import re
from urllib.parse import urlsplit

# Non-page resources that are never handed to the render engine
BLOCKED_EXTENSIONS = (
    # images
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico", ".bmp", ".avif",
    # documents and media
    ".pdf", ".mp4", ".mp3", ".avi", ".mov", ".wav",
    # archives and binaries
    ".zip", ".rar", ".exe", ".dmg", ".apk", ".iso", ".tar", ".gz", ".7z",
    # fonts
    ".woff", ".woff2", ".ttf", ".eot", ".otf",
    # styles and scripts
    ".css", ".js", ".map",
)

_BLOCKED_EXTENSION_RE = re.compile(
    "(?:" + "|".join(re.escape(ext) for ext in BLOCKED_EXTENSIONS) + r")$",
    re.IGNORECASE,
)


def has_blocked_extension(url: str) -> bool:
    try:
        path = urlsplit(url).path
    except ValueError:
        return False
    return bool(_BLOCKED_EXTENSION_RE.search(path))


def is_crawlable_link(url: str) -> bool:
    """http(s) URL with a host that does not point at a static asset."""
    try:
        parsed = urlsplit(url)
    except ValueError:
        return False

    if parsed.scheme not in ("http", "https"):
        return False

    # لینک‌های خالی یا بی‌دامنه
    if not parsed.netloc:
        return False

    return not has_blocked_extension(url)
