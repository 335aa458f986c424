"""Container environment file rendering for MauticDeployer."""

import os

from mauticdeployer.constants import SECRET_FILE_MODE, STACK_ENV_FILE, WEB_CONTAINER
from mauticdeployer.models import DeploymentConfig

DEFAULT_LOCALE = "en"
TRUSTED_PROXIES = '["127.0.0.1","remote_addr","172.16.0.0/12","172.17.0.0/16"]'


def render_stack_env(config: DeploymentConfig) -> str:
    lines = [
        "# Database",
        "MAUTIC_DB_HOST=mysql",
        f"MAUTIC_DB_USER={config.mysql_user}",
        f"MAUTIC_DB_PASSWORD={config.mysql_password}",
        f"MAUTIC_DB_DATABASE={config.mysql_database}",
        "MAUTIC_DB_PORT=3306",
        "",
        "# Mautic",
        f"MAUTIC_TRUSTED_PROXIES='{TRUSTED_PROXIES}'",
        "MAUTIC_RUN_CRON_JOBS=true",
        f"MAUTIC_LOCALE={config.locale or DEFAULT_LOCALE}",
        f"MAUTIC_DEFAULT_TIMEZONE={config.default_timezone}",
        "MAUTIC_API_ENABLED=1",
        "",
        "# Admin",
        f"MAUTIC_ADMIN_EMAIL={config.email_address}",
        f"MAUTIC_ADMIN_PASSWORD={config.mautic_password}",
        "",
        f"DOCKER_MAUTIC_ROLE={WEB_CONTAINER}",
        "MAUTIC_DB_PREFIX=",
        "MAUTIC_INSTALL_FORCE=true",
        "",
        "# MySQL",
        f"MYSQL_ROOT_PASSWORD={config.mysql_root_password}",
        f"MYSQL_DATABASE={config.mysql_database}",
        f"MYSQL_USER={config.mysql_user}",
        f"MYSQL_PASSWORD={config.mysql_password}",
        "",
        "# Deployment",
        f"MAUTIC_VERSION={config.image_tag}",
        f"PORT={config.port}",
    ]
    return "\n".join(lines) + "\n"


class StackEnvironmentService:
    """Writes the env file consumed by docker compose and the containers."""

    def __init__(self, logger, console, filesystem_service, workdir: str = "."):
        self.logger = logger
        self.console = console
        self.filesystem_service = filesystem_service
        self.workdir = workdir

    @property
    def env_path(self) -> str:
        return os.path.join(self.workdir, STACK_ENV_FILE)

    def write(self, config: DeploymentConfig) -> str:
        self.console.print("[blue]Creating environment configuration...[/blue]")
        self.filesystem_service.write_file_atomic(
            self.env_path, render_stack_env(config), SECRET_FILE_MODE
        )
        self.logger.info("Environment file written to %s", self.env_path)
        return self.env_path
