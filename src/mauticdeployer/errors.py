"""Domain errors for MauticDeployer."""


class DeployerError(RuntimeError):
    """Raised when the deployment cannot continue safely."""


class ConfigError(DeployerError):
    """Raised when deployment configuration is missing or malformed."""


class ConfigWriteError(DeployerError):
    """Raised when a configuration file could not be written and verified."""


class PackageInstallError(DeployerError):
    """Raised when a single plugin/theme package fails to install."""
