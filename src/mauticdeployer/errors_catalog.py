"""Actionable error catalog for MauticDeployer."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "missing_required_key": {
        "what": "Required variable {key} is not set in {path}.",
        "next": "Add `{key}=<value>` to the deploy env file and run again.",
    },
    "env_file_not_found": {
        "what": "Deploy env file not found: {path}",
        "next": "Create the file or point `--env-file` at an existing one.",
    },
    "compose_file_missing": {
        "what": "Compose file not found: {path}",
        "next": "Copy the stack `docker-compose.yml` into the working directory before deploying.",
    },
    "containers_failed_to_start": {
        "what": "Containers failed to start.",
        "next": "Inspect `docker compose logs` and the compose file, then rerun the deployment.",
    },
    "container_unhealthy": {
        "what": "Container {name} did not become healthy within {timeout}s.",
        "next": "Check `docker logs {name}` and available memory/disk on the host.",
    },
    "install_command_failed": {
        "what": "Mautic installation command failed.",
        "next": "Review the command output above and the database credentials in the deploy env file.",
    },
    "vhost_verification_failed": {
        "what": "Nginx virtual host {path} failed verification: {reason}",
        "next": "Check free disk space and the vhost template, then rerun the deployment.",
    },
    "compose_image_not_found": {
        "what": "No `<version>-apache` Mautic image reference found in {path}.",
        "next": "Pin the web and cron services to a literal tag such as `{image}` and rerun the update.",
    },
    "version_mismatch": {
        "what": "{name} runs image tag {running} instead of {expected} after the update.",
        "next": "Check the image lines in the compose file and run `docker compose up -d` manually.",
    },
    "certificate_failed": {
        "what": "Certificate issuance for {domain} failed.",
        "next": "Make sure the domain resolves to this host and ports 80/443 are open.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
