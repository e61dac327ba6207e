"""Git repository addresses.

A repository is named either by an absolute URI (``https://host/org/repo.git``,
``ssh://git@host/org/repo``, ``file:///srv/repo``) or by the SCP-like shorthand
git also accepts (``git@github.com:org/repo.git``).  Parsing tries the URI form
first and falls back to the shorthand.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import SplitResult, urlsplit, urlunsplit

from compare_revisions.errors import ConfigurationError

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*$")
_SCP_RE = re.compile(r"^(?:(?P<user>[^@/:]+)@)?(?P<host>[^@/:]+):(?P<path>.+)$")


@dataclass(frozen=True, order=True)
class URIAddress:
    """An absolute URI naming a git repository."""

    scheme: str
    netloc: str
    path: str
    query: str = ""
    fragment: str = ""

    def to_text(self) -> str:
        return urlunsplit(SplitResult(self.scheme, self.netloc, self.path, self.query, self.fragment))

    @property
    def repo_path(self) -> str:
        return self.path


@dataclass(frozen=True, order=True)
class SCPAddress:
    """SCP-style shorthand: ``[user@]host:path``."""

    host: str
    path: str
    user: str | None = None

    def to_text(self) -> str:
        prefix = f"{self.user}@" if self.user else ""
        return f"{prefix}{self.host}:{self.path}"

    @property
    def repo_path(self) -> str:
        return self.path


RepoAddress = URIAddress | SCPAddress


def _parse_uri(text: str) -> URIAddress | None:
    try:
        parts = urlsplit(text)
    except ValueError:
        return None
    if not parts.scheme or not _SCHEME_RE.match(parts.scheme):
        return None
    # "host:path" splits as scheme "host"; absolute URIs always have a
    # hierarchical part starting with "/" or an authority.
    if not parts.netloc and not parts.path.startswith("/"):
        return None
    return URIAddress(
        scheme=parts.scheme,
        netloc=parts.netloc,
        path=parts.path,
        query=parts.query,
        fragment=parts.fragment,
    )


def _parse_scp(text: str) -> SCPAddress | None:
    match = _SCP_RE.match(text)
    if match is None:
        return None
    return SCPAddress(host=match["host"], path=match["path"], user=match["user"])


def parse_address(text: str) -> RepoAddress:
    """Parse *text* as a URI, then as SCP shorthand.

    Raises:
        ConfigurationError: neither form matches.
    """
    text = text.strip()
    address: RepoAddress | None = _parse_uri(text) or _parse_scp(text)
    if address is None:
        raise ConfigurationError(f"not a git repository address: {text!r}")
    return address


def last_path_segment(address: RepoAddress) -> str:
    segments = [s for s in address.repo_path.split("/") if s]
    return segments[-1] if segments else "repo"


def mirror_path(root: Path, address: RepoAddress) -> Path:
    """Deterministic location of the bare mirror of *address* under *root*.

    ``<root>/repos/<sha256(canonical text)>-<last path segment>``
    """
    digest = hashlib.sha256(address.to_text().encode("utf-8")).hexdigest()
    return root / "repos" / f"{digest}-{last_path_segment(address)}"
