"""Plugin, theme and language pack installation into the web container."""

import os
from typing import Callable, Iterable, List, Optional

from mauticdeployer.constants import (
    MAUTIC_ROOT,
    PLUGINS_DIR,
    THEMES_DIR,
    TRANSLATIONS_DIR,
    WEB_CONTAINER,
    WEB_USER,
)
from mauticdeployer.errors import DeployerError, PackageInstallError
from mauticdeployer.models import PackageBatchResult, PackageInstallResult, PackageKind, PackageSpec
from mauticdeployer.services.package_spec import is_github_url, mask_query, redact, resolve_package_spec

PACKAGE_TARGETS = {"plugin": PLUGINS_DIR, "theme": THEMES_DIR}
COMPOSER_TIMEOUT_SECONDS = 600


class PackageInstallerService:
    """Installs third-party packages into the running web container.

    Only the ``runtime`` strategy is implemented: artifacts are fetched on
    the host and copied into the live container. Baking packages into a
    custom image is reserved as the ``image`` strategy name so that a future
    implementation can reuse :func:`resolve_package_spec` unchanged.
    """

    STRATEGIES = {"runtime"}
    RESERVED_STRATEGIES = {"image"}

    def __init__(
        self,
        logger,
        console,
        run_cmd: Callable,
        download_service,
        archive_service,
        filesystem_service,
        application_service,
        staging_dir: str,
        github_token: Optional[str] = None,
        strategy: str = "runtime",
    ):
        if strategy not in self.STRATEGIES:
            if strategy in self.RESERVED_STRATEGIES:
                raise DeployerError(f"Package install strategy '{strategy}' is not implemented yet.")
            raise DeployerError(f"Unknown package install strategy '{strategy}'.")

        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.download_service = download_service
        self.archive_service = archive_service
        self.filesystem_service = filesystem_service
        self.application_service = application_service
        self.staging_dir = staging_dir
        self.github_token = github_token
        self.strategy = strategy

    def install_batch(self, lines: Iterable[str], kind: str) -> PackageBatchResult:
        if kind not in PACKAGE_TARGETS:
            raise DeployerError(f"Unknown package kind '{kind}'.")

        batch = PackageBatchResult(label=f"{kind}s")
        items: List[str] = [line for line in lines if line.strip()]
        for index, line in enumerate(items, start=1):
            spec: Optional[PackageSpec] = None
            try:
                spec = resolve_package_spec(line)
                self.console.print(f"[blue]Installing {kind} {index}/{len(items)}: {spec.display}[/blue]")
                self.install_package(spec, kind)
            except DeployerError as exc:
                batch.results.append(self._failure(kind, line, spec, str(exc)))
                continue
            except Exception as exc:
                self.logger.debug("Unexpected error installing %s", kind, exc_info=True)
                batch.results.append(
                    self._failure(kind, line, spec, f"Unexpected error: {type(exc).__name__}: {exc}")
                )
                continue

            batch.results.append(PackageInstallResult(line=spec.display, success=True))
            self.console.print(f"[green]Installed {kind}: {spec.display}[/green]")

        if batch.results:
            self.logger.info(
                "%s: %s succeeded, %s failed", batch.label, batch.succeeded, batch.failed
            )
        return batch

    def _failure(
        self, kind: str, line: str, spec: Optional[PackageSpec], message: str
    ) -> PackageInstallResult:
        for secret in (spec.token if spec else None, self.github_token):
            message = redact(message, secret)
        label = spec.display if spec else mask_query(line.strip())
        self.logger.error("Failed to install %s %s: %s", kind, label, message)
        self.console.print(f"[red]Failed to install {kind} {label}[/red]")
        return PackageInstallResult(line=label, success=False, error=message)

    def install_package(self, spec: PackageSpec, kind: str):
        if spec.kind == PackageKind.REGISTRY:
            self._install_registry_package(spec)
        else:
            self._install_archive_package(spec, PACKAGE_TARGETS[kind])

        if kind == "plugin":
            self.application_service.clear_cache("before plugin registration")
            self.application_service.register_plugins()
            self.application_service.clear_cache("after plugin registration")
        else:
            self.application_service.clear_cache(f"after {kind} install")

    def install_language_pack(self, url: str, locale: Optional[str] = None):
        """Download a language pack archive into the translations directory.

        Unlike plugins and themes, a failure here is fatal to the run.
        """
        self.console.print(f"[blue]Installing language pack ({locale or 'default locale'})...[/blue]")
        work_dir = self._prepare_work_dir("langpack")
        try:
            archive_path = os.path.join(work_dir, "langpack.zip")
            extract_dir = os.path.join(work_dir, "extracted")
            token = self.github_token if is_github_url(url) else None
            self.download_service.download_file(url, archive_path, "Downloading language pack...", token=token)
            self.archive_service.extract_package(archive_path, extract_dir, "language pack")
            self._copy_into_container(extract_dir, TRANSLATIONS_DIR)
        finally:
            self.filesystem_service.cleanup_dir(work_dir)

        self.console.print("[green]Language pack installed.[/green]")

    def _install_registry_package(self, spec: PackageSpec):
        self.logger.info("Requiring %s with composer", spec.source)
        result = self.run_cmd(
            [
                "docker",
                "exec",
                "--user",
                WEB_USER,
                "--workdir",
                MAUTIC_ROOT,
                WEB_CONTAINER,
                "composer",
                "require",
                spec.source,
                "--no-interaction",
            ],
            check=False,
            timeout=COMPOSER_TIMEOUT_SECONDS,
        )
        if not result.success:
            raise PackageInstallError(f"composer require {spec.source} failed:\n{result.output}")

    def _install_archive_package(self, spec: PackageSpec, base_dir: str):
        work_dir = self._prepare_work_dir("package")
        try:
            target_dir = f"{base_dir}/{spec.directory}" if spec.directory else base_dir
            if spec.directory:
                self._remove_existing(target_dir)

            archive_path = os.path.join(work_dir, "package.zip")
            extract_dir = os.path.join(work_dir, "extracted")
            token = spec.token or (self.github_token if is_github_url(spec.source) else None)
            self.download_service.download_file(
                spec.source, archive_path, f"Downloading {spec.display}", token=token
            )
            self.archive_service.extract_package(archive_path, extract_dir, spec.display)

            content_dir = extract_dir
            if spec.directory:
                wrapper = self.archive_service.find_wrapper_dir(extract_dir)
                if wrapper is not None:
                    self.logger.info(
                        "Unwrapping %sfolder '%s'",
                        "zipball " if spec.is_api_zipball else "",
                        wrapper.name,
                    )
                    content_dir = str(wrapper)

            self._copy_into_container(content_dir, target_dir)
        finally:
            self.filesystem_service.cleanup_dir(work_dir)

    def _prepare_work_dir(self, name: str) -> str:
        work_dir = os.path.join(self.staging_dir, name)
        self.filesystem_service.cleanup_dir(work_dir)
        os.makedirs(work_dir, exist_ok=True)
        return work_dir

    def _remove_existing(self, target_dir: str):
        exists = self.run_cmd(["docker", "exec", WEB_CONTAINER, "test", "-d", target_dir], check=False)
        if not exists.success:
            return
        self.logger.info("Removing existing %s before reinstall", target_dir)
        self.run_cmd(["docker", "exec", "--user", "root", WEB_CONTAINER, "rm", "-rf", target_dir])

    def _copy_into_container(self, source_dir: str, target_dir: str):
        self.run_cmd(["docker", "exec", "--user", "root", WEB_CONTAINER, "mkdir", "-p", target_dir])
        self.run_cmd(["docker", "cp", f"{source_dir}/.", f"{WEB_CONTAINER}:{target_dir}"])

        for cmd in (
            ["chown", "-R", f"{WEB_USER}:{WEB_USER}", target_dir],
            ["chmod", "-R", "755", target_dir],
        ):
            result = self.run_cmd(["docker", "exec", "--user", "root", WEB_CONTAINER] + cmd, check=False)
            if not result.success:
                self.logger.warning("Could not normalize %s: %s", target_dir, result.output)
