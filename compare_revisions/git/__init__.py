"""Git synchronisation: mirrors, worktree checkouts and first-parent logs."""

from compare_revisions.git.address import (
    RepoAddress,
    SCPAddress,
    URIAddress,
    mirror_path,
    parse_address,
)
from compare_revisions.git.models import Branch, Hash, RevSpec, Revision
from compare_revisions.git.runner import GitRunner, SubprocessGitRunner
from compare_revisions.git.store import GitStore

__all__ = [
    "Branch",
    "GitRunner",
    "GitStore",
    "Hash",
    "RepoAddress",
    "RevSpec",
    "Revision",
    "SCPAddress",
    "SubprocessGitRunner",
    "URIAddress",
    "mirror_path",
    "parse_address",
]
