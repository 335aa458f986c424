"""Mautic operations executed inside the running web container."""

import os
from typing import Callable, List

from mauticdeployer.constants import (
    BUNDLES_DIR,
    CACHE_CLEAR_TIMEOUT_SECONDS,
    DEFAULT_CUSTOMISATION_DIR,
    FILE_MODE,
    INSTALL_COMMAND_TIMEOUT_SECONDS,
    MAUTIC_ROOT,
    MEDIA_HTACCESS_DIRS,
    WEB_CONTAINER,
    WEB_USER,
)
from mauticdeployer.errors import DeployerError
from mauticdeployer.errors_catalog import actionable_error
from mauticdeployer.models import DeploymentConfig

MEDIA_HTACCESS = """<IfModule mod_authz_core.c>
    Require all granted
</IfModule>
<IfModule !mod_authz_core.c>
    Order allow,deny
    Allow from all
</IfModule>
"""
BLOCKING_HTACCESS_RULE = "deny from all"
DB_CHECK_SCRIPT = (
    "try { new PDO('mysql:host=' . getenv('MAUTIC_DB_HOST') . ';dbname=' . getenv('MAUTIC_DB_DATABASE'), "
    "getenv('MAUTIC_DB_USER'), getenv('MAUTIC_DB_PASSWORD')); echo 'DB_CONNECTION_OK'; } "
    "catch (Exception $e) { echo 'DB_ERROR: ' . $e->getMessage(); }"
)


def console_cmd(*args: str) -> List[str]:
    """Build a ``bin/console`` invocation run as the web user."""
    return [
        "docker",
        "exec",
        "--user",
        WEB_USER,
        "--workdir",
        MAUTIC_ROOT,
        WEB_CONTAINER,
        "php",
        "./bin/console",
        *args,
    ]


class ApplicationService:
    """First-run install, cache and static asset maintenance for Mautic."""

    def __init__(
        self,
        logger,
        console,
        run_cmd: Callable,
        filesystem_service,
        staging_dir: str,
        customisation_dir: str = DEFAULT_CUSTOMISATION_DIR,
    ):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.filesystem_service = filesystem_service
        self.staging_dir = staging_dir
        self.customisation_dir = customisation_dir

    def run_installation(self, config: DeploymentConfig):
        self.console.print("[blue]Running Mautic installation...[/blue]")

        db_check = self.run_cmd(
            ["docker", "exec", WEB_CONTAINER, "php", "-r", DB_CHECK_SCRIPT], check=False
        )
        self.logger.info("Database connection check: %s", db_check.output or "<no output>")

        self.run_cmd(
            console_cmd("doctrine:migrations:sync-metadata-storage", "--no-interaction"),
            check=False,
        )

        self.logger.info("Site URL: %s", config.site_url)
        self.logger.info("Admin email: %s", config.email_address)
        result = self.run_cmd(
            console_cmd(
                "mautic:install",
                config.site_url,
                f"--admin_email={config.email_address}",
                f"--admin_password={config.mautic_password}",
                "--force",
                "--no-interaction",
                "-vvv",
            ),
            check=False,
            timeout=INSTALL_COMMAND_TIMEOUT_SECONDS,
            redact=[config.mautic_password],
        )
        if result.output:
            self.logger.info("mautic:install output:\n%s", result.output)
        if not result.success:
            raise DeployerError(actionable_error("install_command_failed"))

        self.console.print("[green]Mautic installation completed.[/green]")

    def clear_cache(self, reason: str = "") -> bool:
        label = f" ({reason})" if reason else ""
        self.logger.info("Clearing Mautic cache%s", label)
        result = self.run_cmd(
            [
                "docker",
                "exec",
                WEB_CONTAINER,
                "bash",
                "-c",
                f"rm -rf {MAUTIC_ROOT}/var/cache/prod* {MAUTIC_ROOT}/var/cache/dev* || true",
            ],
            check=False,
            timeout=CACHE_CLEAR_TIMEOUT_SECONDS,
        )
        if not result.success:
            self.logger.warning("Cache clear failed%s: %s", label, result.output)
            return False
        return True

    def register_plugins(self) -> bool:
        """Register installed plugins, falling back to a plain reload."""
        result = self.run_cmd(console_cmd("mautic:plugins:install", "--force"), check=False)
        if result.success:
            self.logger.info("Plugins registered.")
            return True

        self.logger.warning("mautic:plugins:install failed, trying reload: %s", result.output)
        reload_result = self.run_cmd(console_cmd("mautic:plugins:reload"), check=False)
        if reload_result.success:
            self.logger.info("Plugins reloaded.")
            return True

        self.logger.warning("mautic:plugins:reload failed: %s", reload_result.output)
        return False

    def fix_media_htaccess(self) -> int:
        """Replace media ``.htaccess`` files that block all access.

        Returns the number of files rewritten.
        """
        fixed = 0
        for directory in MEDIA_HTACCESS_DIRS:
            target = f"{directory}/.htaccess"
            current = self.run_cmd(["docker", "exec", WEB_CONTAINER, "cat", target], check=False)
            if not current.success or BLOCKING_HTACCESS_RULE not in current.output.lower():
                self.logger.info("%s looks correct.", target)
                continue

            self.logger.warning("Found blocking rule in %s, fixing...", target)
            local_copy = os.path.join(self.staging_dir, "media.htaccess")
            try:
                self.filesystem_service.write_file_atomic(local_copy, MEDIA_HTACCESS, FILE_MODE)
            except DeployerError as exc:
                self.logger.warning("Could not prepare %s: %s", target, exc)
                continue

            copied = self.run_cmd(["docker", "cp", local_copy, f"{WEB_CONTAINER}:{target}"], check=False)
            if not copied.success:
                self.logger.warning("Could not fix %s: %s", target, copied.output)
                continue

            self.run_cmd(
                ["docker", "exec", "--user", "root", WEB_CONTAINER, "chown", f"{WEB_USER}:{WEB_USER}", target],
                check=False,
            )
            fixed += 1
            self.logger.info("Fixed %s", target)
        return fixed

    def apply_white_labeling(self) -> bool:
        """Copy the host customisation overlay into the application bundles."""
        if not os.path.isdir(self.customisation_dir):
            self.logger.info("No customisation directory at %s, skipping overlay.", self.customisation_dir)
            return False

        self.console.print("[blue]Applying white-label customisation...[/blue]")
        result = self.run_cmd(
            ["docker", "cp", f"{self.customisation_dir}/.", f"{WEB_CONTAINER}:{BUNDLES_DIR}"],
            check=False,
        )
        if not result.success:
            self.logger.warning("White-label overlay failed: %s", result.output)
            return False

        self.run_cmd(
            [
                "docker",
                "exec",
                "--user",
                "root",
                WEB_CONTAINER,
                "chown",
                "-R",
                f"{WEB_USER}:{WEB_USER}",
                BUNDLES_DIR,
            ],
            check=False,
        )
        self.console.print("[green]White-label customisation applied.[/green]")
        return True
