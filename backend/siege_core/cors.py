from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit


logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_ORIGIN = "https://siege-clan.com"
DEFAULT_ALLOWED_ORIGINS = "http://localhost:5173,http://localhost:8888"
NETLIFY_PREVIEW_REGEX = r"https://[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.netlify\.app"

ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
ALLOWED_HEADERS = ["Content-Type", "Authorization", "x-api-key"]


def validated_allowed_origin() -> str:
    """Return ``ALLOWED_ORIGIN`` normalised to ``scheme://host[:port]``.

    Raises ``ValueError`` for wildcards, non-http(s) schemes, embedded
    credentials, out-of-range ports and anything beyond a bare origin.
    """
    raw = (os.getenv("ALLOWED_ORIGIN") or DEFAULT_ALLOWED_ORIGIN).strip()
    if raw == "*":
        raise ValueError("ALLOWED_ORIGIN cannot be a wildcard")

    parts = urlsplit(raw)
    if parts.scheme not in ("http", "https"):
        raise ValueError(f"ALLOWED_ORIGIN must use http or https: {raw}")
    if parts.username or parts.password:
        raise ValueError("ALLOWED_ORIGIN must not contain credentials")
    if not parts.hostname:
        raise ValueError(f"ALLOWED_ORIGIN is missing a host: {raw}")
    try:
        port = parts.port
    except ValueError as exc:
        raise ValueError(f"ALLOWED_ORIGIN has an invalid port: {raw}") from exc
    if port is not None and not 1 <= port <= 65535:
        raise ValueError(f"ALLOWED_ORIGIN has an invalid port: {raw}")
    if parts.path not in ("", "/") or parts.query or parts.fragment:
        raise ValueError("ALLOWED_ORIGIN must be an origin without path, query or fragment")

    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None:
        return f"{parts.scheme}://{host}:{port}"
    return f"{parts.scheme}://{host}"


def allowed_origins() -> List[str]:
    raw = os.getenv("ALLOWED_ORIGINS") or DEFAULT_ALLOWED_ORIGINS
    origins: List[str] = []
    for item in raw.split(","):
        origin = item.strip().rstrip("/")
        if not origin:
            continue
        if origin == "*":
            raise ValueError("ALLOWED_ORIGINS cannot contain a wildcard")
        if origin not in origins:
            origins.append(origin)
    return origins


def middleware_origins() -> List[str]:
    origins = allowed_origins()
    try:
        primary = validated_allowed_origin()
    except ValueError as exc:
        logger.error("Ignoring ALLOWED_ORIGIN: %s", exc)
    else:
        if primary not in origins:
            origins.insert(0, primary)
    return origins


def is_allowed_origin(origin: Optional[str]) -> bool:
    if not origin:
        return False
    candidate = origin.strip().rstrip("/")
    if candidate in middleware_origins():
        return True
    return re.fullmatch(NETLIFY_PREVIEW_REGEX, candidate) is not None


def cors_settings() -> Dict[str, Any]:
    return {
        "allow_origins": middleware_origins(),
        "allow_origin_regex": NETLIFY_PREVIEW_REGEX,
        "allow_credentials": True,
        "allow_methods": ALLOWED_METHODS,
        "allow_headers": ALLOWED_HEADERS,
    }
