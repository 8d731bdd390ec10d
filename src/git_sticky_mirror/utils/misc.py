from typing import Optional
from urllib.parse import urlparse

from .logging import get_logger

logger = get_logger(__name__)

_TRUTHY = {"true", "1", "y", "yes", "on"}
_FALSY = {"false", "0", "n", "no", "off", ""}


def get_url_origin(url: str) -> Optional[str]:
    """Returns SCHEME://HOST[:PORT] for http(s) URLs, None otherwise.

    Examples:
        https://github.com/user/repo.git → https://github.com
        http://localhost:8080/x → http://localhost:8080
        git@github.com:user/repo.git → None
    """
    parsed = urlparse(url.strip())
    if parsed.scheme.lower() not in ("http", "https") or not parsed.hostname:
        return None

    netloc = parsed.hostname.lower()
    if parsed.port:
        netloc += f":{parsed.port}"
    return f"{parsed.scheme.lower()}://{netloc}"


def parse_bool(value: Optional[str]) -> Optional[bool]:
    """Parses a boolean-ish string. Returns None when unset or unrecognized."""
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    return None
