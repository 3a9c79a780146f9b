import re
from urllib.parse import urlsplit

from app.config import settings

LOOPBACK_ORIGIN = re.compile(
    r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d{1,5})?$"
)


def normalize_origin(origin: str | None) -> str | None:
    """Return ``scheme://host[:port]`` or None if ``origin`` is not one.

    Anything carrying a path, query, fragment, credentials or a wildcard is
    rejected outright.
    """
    if not origin or "*" in origin or len(origin) > 255:
        return None
    try:
        parts = urlsplit(origin.strip())
        port = parts.port
    except ValueError:
        return None
    if parts.scheme not in {"http", "https"} or not parts.hostname:
        return None
    if parts.path or parts.query or parts.fragment:
        return None
    if parts.username or parts.password:
        return None
    host = parts.hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    if port is not None:
        return f"{parts.scheme}://{host}:{port}"
    return f"{parts.scheme}://{host}"


class OriginPolicy:
    def __init__(
        self,
        allowed_origins: tuple[str, ...] | list[str] = settings.viewer_allowed_origins,
        allow_loopback: bool = settings.cors_allow_loopback,
    ) -> None:
        normalized = (normalize_origin(o) for o in allowed_origins)
        self.allowed_origins = tuple(sorted({o for o in normalized if o}))
        self.allow_loopback = allow_loopback

    def is_allowed(self, origin: str | None) -> bool:
        normalized = normalize_origin(origin)
        if normalized is None or normalized != origin:
            return False
        if normalized in self.allowed_origins:
            return True
        return self.allow_loopback and bool(LOOPBACK_ORIGIN.match(normalized))

    def frame_ancestors(self, request_origin: str | None = None) -> str:
        sources = ["'self'", *self.allowed_origins]
        if request_origin and self.is_allowed(request_origin):
            if request_origin not in sources:
                sources.append(request_origin)
        return " ".join(sources)
