"""Configuration loaders for MauticDeployer."""

import io
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values

from mauticdeployer.errors import ConfigError
from mauticdeployer.errors_catalog import actionable_error
from mauticdeployer.models import DeploymentConfig

REQUIRED_KEYS = (
    "EMAIL_ADDRESS",
    "MAUTIC_PASSWORD",
    "IP_ADDRESS",
    "PORT",
    "MAUTIC_VERSION",
    "MYSQL_DATABASE",
    "MYSQL_USER",
    "MYSQL_PASSWORD",
    "MYSQL_ROOT_PASSWORD",
)


class EnvFileLoader:
    """Reads ``deploy.env`` into a validated :class:`DeploymentConfig`.

    Parsing is delegated to python-dotenv, which handles comments, the
    ``export`` prefix, quoting and multi-line double-quoted values such as
    package lists. Interpolation is disabled so secrets containing ``$`` are
    kept verbatim.
    """

    def parse(self, text: str) -> Dict[str, str]:
        return self._clean(dotenv_values(stream=io.StringIO(text), interpolate=False))

    def load(self, env_path: str) -> DeploymentConfig:
        path = Path(env_path)
        if not path.is_file():
            raise ConfigError(actionable_error("env_file_not_found", path=str(path)))

        try:
            values = dotenv_values(path, interpolate=False, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigError(f"Could not read {path}: {exc}") from exc

        return self.build_config(self._clean(values), source=str(path))

    def build_config(self, values: Dict[str, str], source: str = "deploy.env") -> DeploymentConfig:
        for key in REQUIRED_KEYS:
            if not values.get(key):
                raise ConfigError(actionable_error("missing_required_key", key=key, path=source))

        port_value = values["PORT"]
        try:
            port = int(port_value)
        except ValueError as exc:
            raise ConfigError(f"PORT must be an integer, got '{port_value}'.") from exc
        if not 1 <= port <= 65535:
            raise ConfigError(f"PORT must be between 1 and 65535, got {port}.")

        return DeploymentConfig(
            email_address=values["EMAIL_ADDRESS"],
            mautic_password=values["MAUTIC_PASSWORD"],
            ip_address=values["IP_ADDRESS"],
            port=port,
            mautic_version=values["MAUTIC_VERSION"],
            mysql_database=values["MYSQL_DATABASE"],
            mysql_user=values["MYSQL_USER"],
            mysql_password=values["MYSQL_PASSWORD"],
            mysql_root_password=values["MYSQL_ROOT_PASSWORD"],
            domain_name=values.get("DOMAIN_NAME") or None,
            mautic_themes=values.get("MAUTIC_THEMES") or None,
            mautic_plugins=values.get("MAUTIC_PLUGINS") or None,
            language_pack_url=values.get("MAUTIC_LANGUAGE_PACK_URL") or None,
            locale=values.get("MAUTIC_LOCALE") or None,
            default_timezone=values.get("DEFAULT_TIMEZONE") or "UTC",
            github_token=values.get("GITHUB_TOKEN") or None,
        )

    @staticmethod
    def _clean(values: Dict[str, Optional[str]]) -> Dict[str, str]:
        return {key: value or "" for key, value in values.items()}


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "env_file",
        "workdir",
        "verbose",
        "log_file",
        "vhost_template",
        "customisation_dir",
        "skip_ssl",
        "dry_run",
        "manifest_file",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConfigError(f"Unknown configuration keys: {unknown_list}")

        return parsed
