import logging
import os

import click
from rich.logging import RichHandler

from .constants import DEPLOY_ENV_FILE
from .core import MauticDeployer
from .errors import DeployerError
from .services.config_loader import ConfigLoader, EnvFileLoader

DEFAULT_CONFIG_FILE = ".mauticdeployer.yml"


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.command()
@click.option(
    "--env-file",
    required=False,
    type=click.Path(),
    help=f"Path to the deployment env file (default: {DEPLOY_ENV_FILE}).",
)
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option(
    "--workdir",
    required=False,
    type=click.Path(file_okay=False),
    help="Directory holding docker-compose.yml and the stack data (default: current directory).",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.option(
    "--vhost-template",
    required=False,
    type=click.Path(dir_okay=False),
    help="Nginx virtual host template with DOMAIN_NAME and PORT placeholders.",
)
@click.option(
    "--customisation-dir",
    required=False,
    type=click.Path(file_okay=False),
    help="Directory copied over the Mautic bundles for white-labeling.",
)
@click.option(
    "--skip-ssl",
    is_flag=True,
    default=None,
    help="Do not write the Nginx virtual host or request a certificate.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=None,
    help="Inspect the host and print the deployment plan without changing anything.",
)
@click.option(
    "--manifest-file",
    required=False,
    type=click.Path(),
    help="Path for the run manifest JSON (default: <workdir>/deploy-manifest.json).",
)
def main(
    env_file,
    config,
    workdir,
    verbose,
    log_file,
    vhost_template,
    customisation_dir,
    skip_ssl,
    dry_run,
    manifest_file,
):
    """Install or update a Mautic Docker stack on this host."""
    logger = logging.getLogger("mauticdeployer")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
    except DeployerError as exc:
        raise click.ClickException(str(exc)) from exc

    workdir = _resolve_option(workdir, config_values, "workdir", default=os.getcwd())
    env_file = _resolve_option(
        env_file,
        config_values,
        "env_file",
        default=os.path.join(workdir, DEPLOY_ENV_FILE),
    )
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    vhost_template = _resolve_option(vhost_template, config_values, "vhost_template")
    customisation_dir = _resolve_option(customisation_dir, config_values, "customisation_dir")
    skip_ssl = bool(_resolve_option(skip_ssl, config_values, "skip_ssl", default=False))
    dry_run = bool(_resolve_option(dry_run, config_values, "dry_run", default=False))
    manifest_file = _resolve_option(manifest_file, config_values, "manifest_file")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    try:
        deployment_config = EnvFileLoader().load(env_file)
        deployer = MauticDeployer(
            config=deployment_config,
            workdir=workdir,
            vhost_template=vhost_template,
            customisation_dir=customisation_dir,
            skip_ssl=skip_ssl,
            dry_run=dry_run,
            manifest_file=manifest_file,
        )
    except DeployerError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(deployer.run())


if __name__ == "__main__":
    main()
