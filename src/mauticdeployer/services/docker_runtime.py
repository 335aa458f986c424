"""Docker runtime services for MauticDeployer."""

import os
import re
import subprocess
import tempfile
import time
from typing import Callable, List, Optional

from mauticdeployer.constants import (
    COMPOSE_FILE,
    CONTAINER_SETTLE_SECONDS,
    DB_CONTAINER,
    DIAGNOSTIC_DATA_DIRS,
    DIAGNOSTIC_INTERVAL_SECONDS,
    HEALTH_POLL_INTERVAL_SECONDS,
    MAUTIC_IMAGE_REPOSITORY,
    STACK_CONTAINERS,
    STACK_ENV_FILE,
    WEB_CONTAINER,
)
from mauticdeployer.errors import DeployerError
from mauticdeployer.errors_catalog import actionable_error
from mauticdeployer.models import ContainerInfo
from mauticdeployer.services.polling import poll_until

INSPECT_FORMAT = (
    "{{.Name}}|{{.Config.Image}}|{{.State.Status}}|"
    "{{if .State.Health}}{{.State.Health.Status}}{{end}}"
)
COMPOSE_IMAGE_PATTERN = re.compile(re.escape(MAUTIC_IMAGE_REPOSITORY) + r":[^\s\"']+-apache")


class DockerRuntimeService:
    """Inspects, starts, stops and health-polls the stack containers."""

    def __init__(
        self,
        logger,
        console,
        run_cmd: Callable,
        compose_cmd: Optional[List[str]] = None,
        workdir: str = ".",
        subprocess_module=subprocess,
        settle_seconds: float = CONTAINER_SETTLE_SECONDS,
    ):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.workdir = workdir
        self.subprocess = subprocess_module
        self.settle_seconds = settle_seconds
        self.compose_cmd = compose_cmd or ["docker", "compose"]

    def get_docker_compose_cmd(self) -> List[str]:
        try:
            self.subprocess.run(["docker", "compose", "version"], check=True, capture_output=True)
            return ["docker", "compose"]
        except (self.subprocess.CalledProcessError, FileNotFoundError):
            try:
                self.subprocess.run(["docker-compose", "--version"], check=True, capture_output=True)
                return ["docker-compose"]
            except (self.subprocess.CalledProcessError, FileNotFoundError):
                raise DeployerError(
                    "Docker Compose is not available. Install Docker Compose v2 (`docker compose`) "
                    "or v1 (`docker-compose`) and try again."
                )

    def validate_environment(self):
        self.console.print("[blue]Validating Docker environment...[/blue]")
        self.run_cmd(["docker", "--version"])
        self.run_cmd(self.compose_cmd + ["version"])
        info = self.run_cmd(["docker", "info"], check=False)
        if not info.success:
            raise DeployerError("Docker daemon is not running. Start the docker service and try again.")
        self.console.print("[green]Docker is available.[/green]")

    def get_container_info(self, name: str) -> Optional[ContainerInfo]:
        result = self.run_cmd(["docker", "inspect", name, "--format", INSPECT_FORMAT], check=False)
        if not result.success or not result.output:
            return None

        parts = result.output.splitlines()[0].split("|")
        parts += [""] * (4 - len(parts))
        raw_name, image, status, health = (part.strip() for part in parts[:4])
        if health in ("", "<no value>"):
            health = None
        return ContainerInfo(
            name=raw_name.lstrip("/") or name,
            image=image,
            status=status,
            health=health,
        )

    def list_stack_containers(self) -> List[ContainerInfo]:
        containers = []
        for name in STACK_CONTAINERS:
            info = self.get_container_info(name)
            if info is not None:
                containers.append(info)
        return containers

    def get_running_version(self) -> Optional[str]:
        web = self.get_container_info(WEB_CONTAINER)
        if web is None:
            return None
        return web.image_tag

    def pull_image(self, image: str) -> bool:
        self.console.print(f"[blue]Pulling Docker image {image}...[/blue]")
        self.logger.info("Pulling Docker image: %s", image)
        result = self.run_cmd(["docker", "pull", image], check=False)
        if result.success:
            self.logger.info("Successfully pulled %s", image)
            return True

        self.logger.error("Failed to pull %s: %s", image, result.output)
        return False

    def update_compose_image(self, image: str, compose_file: str = COMPOSE_FILE):
        compose_path = os.path.join(self.workdir, compose_file)
        self.logger.info("Updating %s to image %s", compose_path, image)

        try:
            with open(compose_path, "r", encoding="utf-8") as file_obj:
                content = file_obj.read()
        except OSError as exc:
            raise DeployerError(f"Failed to read {compose_path}: {exc}") from exc

        updated, replacements = COMPOSE_IMAGE_PATTERN.subn(image, content)
        if replacements == 0:
            raise DeployerError(
                actionable_error("compose_image_not_found", path=compose_path, image=image)
            )

        fd, temp_path = tempfile.mkstemp(
            prefix=".compose-", suffix=".yml", dir=os.path.dirname(os.path.abspath(compose_path))
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(updated)
            os.replace(temp_path, compose_path)
        except OSError as exc:
            raise DeployerError(f"Failed to update {compose_path}: {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

        self.logger.info("Replaced %s image reference(s) in %s", replacements, compose_path)

    def recreate_containers(self) -> bool:
        """Bring the stack up from scratch and report whether anything runs.

        The exit code of ``up -d`` is not trusted: images may still be pulling
        when it returns non-zero. Actual container state is re-queried and a
        single running container counts as success; health polling decides
        the rest.
        """
        self.console.print("[blue]Recreating Docker containers...[/blue]")

        stop_result = self.run_cmd(self.compose_cmd + ["down"], check=False)
        if not stop_result.success:
            self.logger.info("Stop result: %s", stop_result.output)

        clean_result = self.run_cmd(self.compose_cmd + ["rm", "-f"], check=False)
        if not clean_result.success:
            self.logger.info("Cleanup result: %s", clean_result.output)

        validate_result = self.run_cmd(self.compose_cmd + ["config", "--quiet"], check=False)
        if not validate_result.success:
            self.logger.error("Docker compose validation failed: %s", validate_result.output)
            return False

        up_cmd = list(self.compose_cmd)
        if os.path.exists(os.path.join(self.workdir, STACK_ENV_FILE)):
            up_cmd += ["--env-file", STACK_ENV_FILE]
        up_result = self.run_cmd(up_cmd + ["up", "-d"], check=False)
        self.logger.debug("docker compose up: success=%s output=%s", up_result.success, up_result.output)

        containers = self.list_stack_containers()
        for container in containers:
            self.logger.info(
                "Container %s: %s (%s)", container.name, container.status, container.image
            )

        if any(container.status == "restarting" for container in containers):
            self.logger.warning("Detected restarting containers, collecting database logs...")
            self._log_command_output(
                "Database logs (last 100 lines)",
                ["docker", "logs", DB_CONTAINER, "--tail", "100"],
            )

        if any(container.is_running for container in containers):
            self.console.print("[green]Containers are running. Health checks may still be in progress.[/green]")
            if self.settle_seconds:
                self.logger.info("Waiting %ss for containers to initialize...", self.settle_seconds)
                time.sleep(self.settle_seconds)
            return True

        self.logger.error("Failed to start containers: %s", up_result.output)
        self.collect_failure_diagnostics()
        return False

    def wait_for_healthy(
        self,
        name: str,
        timeout_seconds: float = 300,
        interval_seconds: float = HEALTH_POLL_INTERVAL_SECONDS,
    ) -> bool:
        self.console.print(f"[yellow]Waiting for {name} to be healthy (up to {int(timeout_seconds)}s)...[/yellow]")

        def check(_attempt: int) -> bool:
            info = self.get_container_info(name)
            if info is not None and info.is_healthy:
                return True
            self.logger.info(
                "%s status: %s, health: %s",
                name,
                info.status if info else "unknown",
                (info.health or "none") if info else "unknown",
            )
            return False

        def on_miss(attempt: int, elapsed: int):
            remaining = timeout_seconds - attempt * interval_seconds
            if elapsed % DIAGNOSTIC_INTERVAL_SECONDS == 0 or remaining <= 0:
                self.dump_container_diagnostics(name)

        healthy = poll_until(check, timeout_seconds, interval_seconds, on_miss=on_miss)
        if healthy:
            self.console.print(f"[green]{name} is healthy.[/green]")
            return True

        self.logger.error("Timeout waiting for %s to be healthy", name)
        return False

    def dump_container_diagnostics(self, name: str):
        self._log_command_output(f"{name} recent logs", ["docker", "logs", name, "--tail", "15"])
        self._log_command_output(f"{name} processes", ["docker", "exec", name, "ps", "aux"])
        data_dir = DIAGNOSTIC_DATA_DIRS.get(name)
        if data_dir:
            self._log_command_output(
                f"{name} data directory", ["docker", "exec", name, "ls", "-la", data_dir]
            )

    def collect_failure_diagnostics(self):
        self._log_command_output("All Docker containers", ["docker", "ps", "-a"])
        self._log_command_output(
            "Service logs (last 30 lines each)", self.compose_cmd + ["logs", "--tail", "30"]
        )

    def _log_command_output(self, title: str, cmd: List[str]):
        result = self.run_cmd(cmd, check=False)
        if result.output:
            self.logger.info("%s:\n%s", title, result.output)
