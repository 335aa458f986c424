import functools
import logging
import os
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from rich.console import Console

from .constants import (
    COMPOSE_FILE,
    DATA_DIRECTORIES,
    DB_CONTAINER,
    DB_HEALTH_TIMEOUT_SECONDS,
    DEFAULT_CUSTOMISATION_DIR,
    DIR_MODE,
    MANIFEST_FILE,
    STAGING_DIR,
    WEB_CONTAINER,
    WEB_HEALTH_TIMEOUT_SECONDS,
)
from .errors import DeployerError
from .errors_catalog import actionable_error
from .models import DeploymentConfig, DeploymentState, ProcessResult
from .services.application import ApplicationService
from .services.archive import ArchiveService
from .services.certificates import CertificateService
from .services.command_runner import CommandRunner
from .services.docker_runtime import DockerRuntimeService
from .services.download import DownloadService
from .services.environment import StackEnvironmentService
from .services.filesystem import FileSystemService
from .services.manifest import ManifestService
from .services.nginx import NginxVhostService
from .services.package_installer import PackageInstallerService
from .services.state import StateInspectionService

console = Console()
logger = logging.getLogger("mauticdeployer")

Step = Tuple[str, Callable[[], Any], bool]


class MauticDeployer:
    """Converges a host to a running Mautic stack at the configured version."""

    def __init__(
        self,
        config: DeploymentConfig,
        workdir: Optional[str] = None,
        vhost_template: Optional[str] = None,
        customisation_dir: Optional[str] = None,
        skip_ssl: bool = False,
        dry_run: bool = False,
        manifest_file: Optional[str] = None,
    ):
        self.config = config
        self.workdir = os.path.abspath(workdir or os.getcwd())
        self.skip_ssl = skip_ssl
        self.dry_run = dry_run
        self.staging_dir = os.path.join(self.workdir, STAGING_DIR)
        self.manifest_file = manifest_file or os.path.join(self.workdir, MANIFEST_FILE)
        self.run_id = uuid.uuid4().hex[:10]
        self.state: Optional[DeploymentState] = None
        self.current_step_name: Optional[str] = None

        self.manifest_service = ManifestService(
            manifest_file=self.manifest_file,
            logger=logger,
            enabled=not dry_run,
        )
        self.command_runner = CommandRunner(logger=logger, cwd=self.workdir)
        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.archive_service = ArchiveService()
        self.download_service = DownloadService(
            logger=logger,
            console=console,
            requests_module=requests,
        )
        self.docker_runtime_service = DockerRuntimeService(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
            workdir=self.workdir,
        )
        self.state_service = StateInspectionService(
            logger=logger,
            docker_runtime_service=self.docker_runtime_service,
            workdir=self.workdir,
        )
        self.environment_service = StackEnvironmentService(
            logger=logger,
            console=console,
            filesystem_service=self.filesystem_service,
            workdir=self.workdir,
        )
        self.application_service = ApplicationService(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
            filesystem_service=self.filesystem_service,
            staging_dir=self.staging_dir,
            customisation_dir=customisation_dir or DEFAULT_CUSTOMISATION_DIR,
        )
        self.package_installer_service = PackageInstallerService(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
            download_service=self.download_service,
            archive_service=self.archive_service,
            filesystem_service=self.filesystem_service,
            application_service=self.application_service,
            staging_dir=self.staging_dir,
            github_token=config.github_token,
        )
        self.nginx_service = NginxVhostService(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
            template_path=vhost_template,
        )
        self.certificate_service = CertificateService(
            logger=logger,
            console=console,
            run_cmd=self._run_cmd,
        )

    def _run_cmd(self, cmd: List[str], check: bool = True, **kwargs) -> ProcessResult:
        return self.command_runner.run(cmd, check=check, **kwargs)

    def _build_manifest_metadata(self) -> Dict[str, Any]:
        return {
            "workdir": self.workdir,
            "target_version": self.config.mautic_version,
            "domain": self.config.domain_name,
            "site_url": self.config.site_url,
            "ssl_enabled": self._ssl_enabled(),
            "themes": len(self.config.theme_lines),
            "plugins": len(self.config.plugin_lines),
            "language_pack": bool(self.config.language_pack_url),
        }

    def _transition(self, state: DeploymentState):
        previous = self.state.value if self.state else "<none>"
        logger.info("Deployment state: %s -> %s", previous, state.value)
        self.state = state
        self.manifest_service.set_state(state.value)

    def _run_step(self, name: str, callback, *args, critical: bool = True, **kwargs):
        """Run one orchestration step and record it in the manifest.

        Failures of critical steps propagate and abort the run. Best-effort
        steps log the failure and return None.
        """
        self.manifest_service.step_started(name, critical=critical)
        self.current_step_name = name

        try:
            result = callback(*args, **kwargs)
        except Exception as exc:
            self.manifest_service.step_finished(name, "failed" if critical else "warning", error=str(exc))
            if critical:
                raise
            logger.warning("Best-effort step '%s' failed: %s", name, exc)
            console.print(f"[yellow]Warning: {name} failed, continuing.[/yellow]")
            self.current_step_name = None
            return None

        self.manifest_service.step_finished(name, "success")
        self.current_step_name = None
        return result

    def _ssl_enabled(self) -> bool:
        return bool(self.config.domain_name) and not self.skip_ssl

    def _cache_step(self, name: str, reason: str) -> Step:
        return name, functools.partial(self.clear_cache, reason), False

    def install_steps(self) -> List[Step]:
        steps: List[Step] = [
            ("prepare_directories", self.prepare_directories, True),
            ("write_environment_file", self.write_environment_file, True),
            ("check_compose_file", self.check_compose_file, True),
            ("start_containers", self.start_containers, True),
            ("wait_for_database", self.wait_for_database, True),
            ("wait_for_web", self.wait_for_web, True),
        ]
        if self.config.language_pack_url:
            steps.append(("install_language_pack", self.install_language_pack, True))
        steps += [
            ("run_first_install", self.run_first_install, True),
            self._cache_step("clear_cache_after_install", "to apply environment settings"),
            ("fix_media_htaccess", self.fix_media_htaccess, False),
        ]
        if self.config.theme_lines or self.config.plugin_lines:
            steps += [
                ("install_packages", self.install_packages, False),
                self._cache_step("clear_cache_after_packages", "after installing themes/plugins"),
            ]
        steps += [
            ("apply_white_labeling", self.apply_white_labeling, False),
            self._cache_step("clear_cache_after_white_labeling", "after applying white-labeling"),
        ]
        return steps

    def update_steps(self) -> List[Step]:
        return [
            ("pull_image", self.pull_image, True),
            ("update_compose_image", self.update_compose_image, True),
            ("start_containers", self.start_containers, True),
            ("wait_for_web", self.wait_for_web, True),
            ("wait_for_database", self.wait_for_database, True),
            ("verify_running_version", self.verify_running_version, True),
            self._cache_step("clear_cache_after_update", "after update"),
            ("apply_white_labeling", self.apply_white_labeling, False),
            self._cache_step("clear_cache_after_white_labeling", "after applying white-labeling"),
        ]

    def ssl_steps(self) -> List[Step]:
        if not self._ssl_enabled():
            return []
        return [
            ("write_vhost", self.write_vhost, True),
            ("issue_certificate", self.issue_certificate, True),
        ]

    def validate_docker_environment(self):
        self.docker_runtime_service.compose_cmd = self.docker_runtime_service.get_docker_compose_cmd()
        self.docker_runtime_service.validate_environment()

    def detect_state(self) -> DeploymentState:
        return self.state_service.detect_state(self.config.mautic_version)

    def prepare_directories(self):
        logger.info("Preparing data directories in %s", self.workdir)
        self.filesystem_service.ensure_directories(self.workdir, DATA_DIRECTORIES, DIR_MODE)

    def write_environment_file(self):
        self.environment_service.write(self.config)

    def check_compose_file(self):
        compose_path = os.path.join(self.workdir, COMPOSE_FILE)
        if not os.path.isfile(compose_path):
            raise DeployerError(actionable_error("compose_file_missing", path=compose_path))

    def start_containers(self):
        if not self.docker_runtime_service.recreate_containers():
            raise DeployerError(actionable_error("containers_failed_to_start"))

    def wait_for_database(self):
        self._wait_for(DB_CONTAINER, DB_HEALTH_TIMEOUT_SECONDS)

    def wait_for_web(self):
        self._wait_for(WEB_CONTAINER, WEB_HEALTH_TIMEOUT_SECONDS)

    def _wait_for(self, name: str, timeout_seconds: int):
        if not self.docker_runtime_service.wait_for_healthy(name, timeout_seconds=timeout_seconds):
            raise DeployerError(
                actionable_error("container_unhealthy", name=name, timeout=str(timeout_seconds))
            )

    def install_language_pack(self):
        self.package_installer_service.install_language_pack(
            self.config.language_pack_url, locale=self.config.locale
        )

    def run_first_install(self):
        self.application_service.run_installation(self.config)

    def clear_cache(self, reason: str = "") -> bool:
        return self.application_service.clear_cache(reason)

    def fix_media_htaccess(self) -> int:
        return self.application_service.fix_media_htaccess()

    def install_packages(self):
        for label, lines, kind in (
            ("themes", self.config.theme_lines, "theme"),
            ("plugins", self.config.plugin_lines, "plugin"),
        ):
            if not lines:
                continue
            batch = self.package_installer_service.install_batch(lines, kind)
            self.manifest_service.record_packages(label, batch.succeeded, batch.failed)
            if batch.failed:
                console.print(
                    f"[yellow]{batch.failed} of {len(batch.results)} {label} failed to install.[/yellow]"
                )

    def apply_white_labeling(self) -> bool:
        return self.application_service.apply_white_labeling()

    def pull_image(self):
        if not self.docker_runtime_service.pull_image(self.config.image):
            raise DeployerError(f"Failed to pull Docker image {self.config.image}.")

    def update_compose_image(self):
        self.docker_runtime_service.update_compose_image(self.config.image)

    def verify_running_version(self):
        running = self.docker_runtime_service.get_running_version()
        if running != self.config.image_tag:
            raise DeployerError(
                actionable_error(
                    "version_mismatch",
                    name=WEB_CONTAINER,
                    running=running or "none",
                    expected=self.config.image_tag,
                )
            )
        logger.info("%s is running %s", WEB_CONTAINER, running)

    def write_vhost(self):
        return self.nginx_service.write_vhost(self.config.domain_name, self.config.port)

    def issue_certificate(self):
        self.certificate_service.issue_certificate(
            self.config.domain_name,
            self.config.email_address,
            self.nginx_service.site_path(self.config.domain_name),
        )

    def print_plan(self, state: DeploymentState):
        if state == DeploymentState.UNINSTALLED:
            flow, steps = "install", self.install_steps()
        elif state == DeploymentState.STALE:
            flow, steps = "update", self.update_steps()
        else:
            flow, steps = "none", []
        steps = steps + self.ssl_steps()

        console.print(f"[bold blue]Dry run plan ({flow}) for Mautic {self.config.image_tag}[/bold blue]")
        console.print(f"Detected state: {state.value}")
        if not steps:
            console.print("Nothing to do.")
        for index, (name, _, critical) in enumerate(steps, start=1):
            kind = "critical" if critical else "best-effort"
            console.print(f"  {index:>2}. {name} ({kind})")

    def cleanup(self):
        self.filesystem_service.cleanup_dir(self.staging_dir)

    def _execute(self, steps: List[Step]):
        for name, callback, critical in steps:
            self._run_step(name, callback, critical=critical)

    def _collect_diagnostics(self):
        try:
            self.docker_runtime_service.collect_failure_diagnostics()
        except DeployerError as exc:
            logger.warning("Could not collect diagnostics: %s", exc)

    def run(self) -> int:
        exit_code = 1
        manifest_status = "failed"
        manifest_error: Optional[str] = None
        mutated = False

        try:
            logger.info("Starting MauticDeployer for %s...", self.config.site_url)
            self.manifest_service.start_run(run_id=self.run_id, metadata=self._build_manifest_metadata())

            if self.dry_run:
                self.print_plan(self.detect_state())
                manifest_status = "success"
                exit_code = 0
                return exit_code

            self._run_step("validate_docker_environment", self.validate_docker_environment)
            detected = self._run_step("inspect_state", self.detect_state)
            self.manifest_service.set_versions(
                running=self.docker_runtime_service.get_running_version(),
                target=self.config.image_tag,
            )

            mutated = True
            if detected == DeploymentState.UNINSTALLED:
                self.manifest_service.set_flow("install")
                self._transition(DeploymentState.INSTALLING)
                self._execute(self.install_steps())
            elif detected == DeploymentState.STALE:
                self.manifest_service.set_flow("update")
                self._transition(DeploymentState.UPDATING)
                self._execute(self.update_steps())
            else:
                self.manifest_service.set_flow("none")
                console.print(f"[green]Mautic {self.config.image_tag} is already installed and current.[/green]")
            self._transition(DeploymentState.INSTALLED)

            self._execute(self.ssl_steps())

            console.print(f"[bold green]Mautic is available at {self.config.site_url}[/bold green]")
            manifest_status = "success"
            exit_code = 0
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            manifest_status = "aborted"
            manifest_error = "Operation cancelled by user."
            exit_code = 1
            return exit_code
        except DeployerError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            self._transition(DeploymentState.FAILED)
            if mutated:
                self._collect_diagnostics()
            manifest_error = str(exc)
            exit_code = 1
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            self._transition(DeploymentState.FAILED)
            manifest_error = str(exc)
            exit_code = 1
            return exit_code
        finally:
            self.manifest_service.finalize(manifest_status, error=manifest_error)
            if not self.dry_run:
                self.cleanup()
