"""Configuration data structures.

``AppConfig`` holds process settings read from the environment.  ``Config``
is the document that says which repository and environments to compare.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from compare_revisions.git.address import RepoAddress
from compare_revisions.policy import RevisionPolicy


@dataclass
class GitConfig:
    """Local git storage configuration."""

    repo_dir: Path = Path("/var/lib/compare-revisions")
    timeout_seconds: int = 300


@dataclass
class APIConfig:
    """REST API configuration."""

    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class AppConfig:
    """Top-level process configuration."""

    config_file: Path = Path("config.yaml")
    git: GitConfig = field(default_factory=GitConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)


@dataclass(frozen=True)
class Environment:
    """A deployment environment: a directory of manifests in the config repo.

    ``branch`` overrides the config repository branch for this environment.
    """

    name: str
    path: str
    branch: str | None = None


@dataclass(frozen=True)
class ConfigRepo:
    """The repository holding the manifests of both environments."""

    url: RepoAddress
    source_env: Environment
    target_env: Environment
    branch: str = "master"
    poll_interval: float = 60.0
    config_path: str | None = None

    def environment(self, name: str) -> Environment | None:
        for env in (self.source_env, self.target_env):
            if env.name == name:
                return env
        return None


@dataclass(frozen=True)
class ImageConfig:
    """Where an image's source lives and how its tags map to revisions."""

    git_url: RepoAddress
    policy: str
    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class Config:
    """A validated configuration document."""

    config_repo: ConfigRepo
    images: dict[str, ImageConfig] = field(default_factory=dict)
    revision_policies: dict[str, RevisionPolicy] = field(default_factory=dict)
