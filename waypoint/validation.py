"""Repository reference validation (``host/owner/name``)."""

from __future__ import annotations

import re
from typing import Iterable, NamedTuple
from urllib.parse import urlsplit

_HOST_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$")
_PART_RE = re.compile(r"^[A-Za-z0-9._-]+$")


class RepositoryRef(NamedTuple):
    host: str
    owner: str
    name: str

    @property
    def display(self) -> str:
        return f"{self.owner}/{self.name}"


def parse_repository_ref(
    ref: str, allowed_hosts: Iterable[str] | None = None
) -> RepositoryRef | None:
    """Parse a reference such as ``https://github.com/owner/name``.

    The scheme is optional and one trailing slash is tolerated. Returns None
    when the reference is malformed or its host is not in ``allowed_hosts``.
    """
    if not ref or not ref.strip():
        return None
    candidate = ref.strip()
    if "://" in candidate:
        try:
            parts = urlsplit(candidate)
            port = parts.port
        except ValueError:
            return None
        if parts.scheme not in ("http", "https") or parts.query or parts.fragment:
            return None
        if parts.username or parts.password or port:
            return None
        host = parts.hostname or ""
        path = parts.path
    else:
        host, _, path = candidate.partition("/")
        path = "/" + path
    if path.endswith("/"):
        path = path[:-1]
    segments = path.split("/")[1:]
    if len(segments) != 2:
        return None
    owner, name = segments
    host = host.lower()
    if not _HOST_RE.match(host) or "." not in host:
        return None
    if not _PART_RE.match(owner) or not _PART_RE.match(name):
        return None
    if name in (".", "..") or owner in (".", ".."):
        return None
    hosts = [h.lower() for h in allowed_hosts] if allowed_hosts else []
    if hosts and host not in hosts:
        return None
    return RepositoryRef(host=host, owner=owner, name=name)


def is_valid_repository_ref(ref: str, allowed_hosts: Iterable[str] | None = None) -> bool:
    """Return True if ref is a well-formed ``host/owner/name`` reference."""
    return parse_repository_ref(ref, allowed_hosts) is not None


def repository_display(ref: str) -> str:
    """Return ``owner/name`` for a valid reference, else the input unchanged."""
    parsed = parse_repository_ref(ref)
    return parsed.display if parsed else ref
