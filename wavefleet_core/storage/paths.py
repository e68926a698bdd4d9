from __future__ import annotations

from pathlib import Path
from typing import Iterable
from urllib.parse import urlparse


def _strip_slashes(value: str) -> str:
    return value.strip("/")


def _join_parts(parts: Iterable[str]) -> str:
    return "/".join(_strip_slashes(part) for part in parts if part)


def has_uri_scheme(value: str) -> bool:
    return bool(urlparse(value).scheme) and "://" in value


def join_uri(base_uri: str, *parts: str) -> str:
    parsed = urlparse(base_uri)
    if parsed.scheme == "file":
        safe_parts = [_strip_slashes(part) for part in parts if part]
        return str(Path(parsed.path).joinpath(*safe_parts))
    if parsed.scheme and parsed.netloc:
        base = base_uri.rstrip("/")
        return f"{base}/{_join_parts(parts)}"
    safe_parts = [_strip_slashes(part) for part in parts if part]
    return str(Path(base_uri).joinpath(*safe_parts))


def control_document_uri(base_uri: str, name: str) -> str:
    return join_uri(base_uri, "control", name)


def local_path(uri: str) -> str | None:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return parsed.path
    if has_uri_scheme(uri):
        return None
    return uri
