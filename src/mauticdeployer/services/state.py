"""Read-only inspection of what is already deployed on the host."""

import os
from typing import Dict, Optional

from packaging import version

from mauticdeployer.constants import COMPOSE_FILE, DB_CONTAINER, IMAGE_VARIANT_SUFFIX, STACK_ENV_FILE
from mauticdeployer.models import DeploymentState, normalize_image_tag

INSTALL_QUORUM = 3
INSTALL_DATA_DIRECTORIES = ("mautic_data", "mysql_data")


class StateInspectionService:
    """Answers install-vs-update questions from observable host state."""

    def __init__(self, logger, docker_runtime_service, workdir: str = "."):
        self.logger = logger
        self.docker_runtime_service = docker_runtime_service
        self.workdir = workdir

    def installation_checks(self) -> Dict[str, bool]:
        database = self.docker_runtime_service.get_container_info(DB_CONTAINER)
        return {
            "compose_file": os.path.isfile(os.path.join(self.workdir, COMPOSE_FILE)),
            "data_directories": all(
                os.path.isdir(os.path.join(self.workdir, name)) for name in INSTALL_DATA_DIRECTORIES
            ),
            "database_running": database is not None and database.is_running,
            "env_file": os.path.isfile(os.path.join(self.workdir, STACK_ENV_FILE)),
        }

    def is_installed(self) -> bool:
        """Return True when at least three of the four install signals agree."""
        checks = self.installation_checks()
        passed = sum(1 for ok in checks.values() if ok)
        self.logger.info(
            "Installation checks: %s (%s/%s passed)",
            ", ".join(f"{name}={'yes' if ok else 'no'}" for name, ok in checks.items()),
            passed,
            len(checks),
        )
        return passed >= INSTALL_QUORUM

    def needs_update(self, target_version: str) -> bool:
        target_tag = normalize_image_tag(target_version)
        current_tag = self.docker_runtime_service.get_running_version()

        if not current_tag:
            self.logger.info("No running Mautic version detected, update required.")
            return True

        if normalize_image_tag(current_tag) == target_tag:
            self.logger.info("Mautic is up to date (%s).", current_tag)
            return False

        direction = self._describe_change(current_tag, target_tag)
        self.logger.info("Mautic %s required: %s -> %s", direction, current_tag, target_tag)
        return True

    def detect_state(self, target_version: str) -> DeploymentState:
        if not self.is_installed():
            return DeploymentState.UNINSTALLED
        if self.needs_update(target_version):
            return DeploymentState.STALE
        return DeploymentState.INSTALLED

    def _describe_change(self, current_tag: str, target_tag: str) -> str:
        current = self._parse(current_tag)
        target = self._parse(target_tag)
        if current is None or target is None or current == target:
            return "update"
        return "upgrade" if target > current else "downgrade"

    @staticmethod
    def _parse(tag: str) -> Optional[version.Version]:
        raw = tag[: -len(IMAGE_VARIANT_SUFFIX)] if tag.endswith(IMAGE_VARIANT_SUFFIX) else tag
        try:
            return version.parse(raw)
        except version.InvalidVersion:
            return None
