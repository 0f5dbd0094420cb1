"""
URL checks for incoming requests.
"""

from urllib.parse import urlparse


def is_http_url(url: str) -> bool:
    """Returns True for absolute http(s) URLs with a host."""
    try:
        parsed = urlparse(str(url).strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
