"""Package line parsing shared by every plugin/theme install strategy."""

import re
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from mauticdeployer.errors import PackageInstallError
from mauticdeployer.models import PackageKind, PackageSpec

REGISTRY_REFERENCE = re.compile(
    r"^(?P<name>[a-z0-9](?:[_.-]?[a-z0-9]+)*/[a-z0-9](?:(?:[_.]|-{1,2})?[a-z0-9]+)*)"
    r"(?::(?P<constraint>\S+))?$"
)
GITHUB_ARCHIVE_PATH = re.compile(
    r"^/(?P<owner>[^/]+)/(?P<repo>[^/]+)/archive/(?:refs/(?:heads|tags)/)?(?P<ref>.+)\.zip$"
)
SAFE_DIRECTORY = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
GITHUB_HOSTS = {"github.com", "api.github.com", "codeload.github.com", "raw.githubusercontent.com"}
API_HOST = "api.github.com"


def is_github_url(url: str) -> bool:
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return False
    return (hostname or "").lower() in GITHUB_HOSTS


def redact(text: str, secret: Optional[str]) -> str:
    if not secret:
        return text
    return text.replace(secret, "***")


def resolve_package_spec(line: str) -> PackageSpec:
    """Parse one package line into a :class:`PackageSpec`.

    Accepted forms are a registry reference (``vendor/name:constraint``) or an
    http(s) URL. URLs may carry ``directory`` and ``token`` query parameters
    in any order; both are removed from the URL and any other parameters are
    kept. A GitHub ``/archive/...zip`` URL that comes with a token is
    rewritten to the equivalent API zipball endpoint so that private
    repositories can be fetched with the token.
    """
    raw = line.strip()
    if not raw:
        raise PackageInstallError("Empty package line.")

    if "://" not in raw:
        match = REGISTRY_REFERENCE.match(raw)
        if not match:
            raise PackageInstallError(
                f"Invalid package reference '{raw}'. Use `vendor/name:constraint` or an https URL."
            )
        return PackageSpec(raw=raw, kind=PackageKind.REGISTRY, source=raw)

    try:
        parsed = urlparse(raw)
        hostname = parsed.hostname
    except ValueError as exc:
        raise PackageInstallError(f"Invalid package URL '{mask_query(raw)}': {exc}.") from exc
    if parsed.scheme.lower() not in {"http", "https"} or not hostname:
        raise PackageInstallError(f"Invalid package URL '{mask_query(raw)}'.")

    directory = None
    token = None
    kept_params = []
    for key, value in parse_qsl(parsed.query, keep_blank_values=True):
        if key == "directory":
            directory = value.strip() or None
        elif key == "token":
            token = value.strip() or None
        else:
            kept_params.append((key, value))

    if directory is not None and (
        not SAFE_DIRECTORY.match(directory) or directory in {".", ".."}
    ):
        raise PackageInstallError(f"Invalid target directory '{directory}' in package URL.")

    host = hostname.lower()
    path = parsed.path
    netloc = parsed.netloc

    if token and host == "github.com":
        archive = GITHUB_ARCHIVE_PATH.match(path)
        if archive:
            host = API_HOST
            netloc = API_HOST
            path = "/repos/{owner}/{repo}/zipball/{ref}".format(**archive.groupdict())

    source = urlunparse(
        (parsed.scheme.lower(), netloc, path, parsed.params, urlencode(kept_params), "")
    )
    return PackageSpec(
        raw=raw,
        kind=PackageKind.URL,
        source=source,
        directory=directory,
        token=token,
        is_api_zipball=host == API_HOST and "/zipball/" in path,
    )


def mask_query(url: str) -> str:
    return url.split("?", 1)[0] + ("?..." if "?" in url else "")
