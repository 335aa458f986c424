"""Shared domain models for MauticDeployer."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from mauticdeployer.constants import IMAGE_VARIANT_SUFFIX, MAUTIC_IMAGE_REPOSITORY


def split_package_lines(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [line.strip() for line in value.splitlines() if line.strip()]


def normalize_image_tag(version: str) -> str:
    clean = version.strip()
    if clean.endswith(IMAGE_VARIANT_SUFFIX):
        return clean
    return f"{clean}{IMAGE_VARIANT_SUFFIX}"


@dataclass(frozen=True)
class DeploymentConfig:
    """Validated deployment settings loaded once per run."""

    email_address: str
    mautic_password: str = field(repr=False)
    ip_address: str
    port: int
    mautic_version: str
    mysql_database: str
    mysql_user: str
    mysql_password: str = field(repr=False)
    mysql_root_password: str = field(repr=False)
    domain_name: Optional[str] = None
    mautic_themes: Optional[str] = None
    mautic_plugins: Optional[str] = None
    language_pack_url: Optional[str] = None
    locale: Optional[str] = None
    default_timezone: str = "UTC"
    github_token: Optional[str] = field(default=None, repr=False)

    @property
    def image_tag(self) -> str:
        return normalize_image_tag(self.mautic_version)

    @property
    def image(self) -> str:
        return f"{MAUTIC_IMAGE_REPOSITORY}:{self.image_tag}"

    @property
    def site_url(self) -> str:
        if self.domain_name:
            return f"https://{self.domain_name}"
        return f"http://{self.ip_address}:{self.port}"

    @property
    def theme_lines(self) -> List[str]:
        return split_package_lines(self.mautic_themes)

    @property
    def plugin_lines(self) -> List[str]:
        return split_package_lines(self.mautic_plugins)


@dataclass(frozen=True)
class ProcessResult:
    """Uniform outcome of an external command."""

    success: bool
    output: str
    exit_code: int


@dataclass(frozen=True)
class ContainerInfo:
    """Live snapshot of a container as reported by the runtime."""

    name: str
    image: str
    status: str
    health: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    @property
    def is_healthy(self) -> bool:
        # No healthcheck defined counts as healthy once running.
        return self.is_running and self.health in (None, "healthy")

    @property
    def image_tag(self) -> Optional[str]:
        _, sep, tag = self.image.rpartition(":")
        if not sep or "/" in tag:
            return None
        return tag or None


class PackageKind(str, Enum):
    REGISTRY = "registry"
    URL = "url"


@dataclass(frozen=True)
class PackageSpec:
    """A single installable plugin/theme resolved from one input line."""

    raw: str = field(repr=False)
    kind: PackageKind
    source: str
    directory: Optional[str] = None
    token: Optional[str] = field(default=None, repr=False)
    is_api_zipball: bool = False

    @property
    def display(self) -> str:
        label = self.source
        if self.directory:
            label = f"{label} -> {self.directory}"
        return label


@dataclass(frozen=True)
class PackageInstallResult:
    line: str
    success: bool
    error: Optional[str] = None


@dataclass
class PackageBatchResult:
    """Aggregate outcome of installing a list of packages."""

    label: str
    results: List[PackageInstallResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.success)


class DeploymentState(str, Enum):
    UNINSTALLED = "uninstalled"
    INSTALLING = "installing"
    INSTALLED = "installed"
    STALE = "stale"
    UPDATING = "updating"
    FAILED = "failed"
