"""Nginx virtual host writer with write/verify/rename guarantees."""

import os
from importlib import resources
from pathlib import Path
from typing import Callable, Optional

from mauticdeployer.constants import (
    NGINX_SITES_AVAILABLE,
    NGINX_SITES_ENABLED,
    VHOST_CLOSING_TOKEN,
    VHOST_DOMAIN_PLACEHOLDER,
    VHOST_PORT_PLACEHOLDER,
    VHOST_PROXY_DIRECTIVE,
)
from mauticdeployer.errors import ConfigWriteError
from mauticdeployer.errors_catalog import actionable_error

DEFAULT_TEMPLATE = "templates/nginx-virtual-host-template"


def ends_with_closing_token(content: str) -> bool:
    return content.rstrip().endswith(VHOST_CLOSING_TOKEN)


class NginxVhostService:
    """Writes the reverse-proxy virtual host for the stack.

    Templated content never passes through a shell: placeholders are
    substituted in memory, the result is written with a direct file write to
    a temporary path next to the final one, verified, and moved into place
    with ``os.replace``. Readers of the final path therefore only ever see
    the previous file or the complete new one.
    """

    def __init__(
        self,
        logger,
        console,
        run_cmd: Callable,
        template_path: Optional[str] = None,
        sites_available: str = NGINX_SITES_AVAILABLE,
        sites_enabled: str = NGINX_SITES_ENABLED,
    ):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd
        self.template_path = template_path
        self.sites_available = Path(sites_available)
        self.sites_enabled = Path(sites_enabled)

    def site_path(self, domain: str) -> Path:
        return self.sites_available / domain

    def enabled_path(self, domain: str) -> Path:
        return self.sites_enabled / domain

    def load_template(self) -> str:
        if self.template_path:
            try:
                return Path(self.template_path).read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigWriteError(f"Could not read vhost template '{self.template_path}': {exc}") from exc

        return resources.files("mauticdeployer").joinpath(DEFAULT_TEMPLATE).read_text(encoding="utf-8")

    def render(self, domain: str, port: int) -> str:
        template = self.load_template()
        return template.replace(VHOST_DOMAIN_PLACEHOLDER, domain).replace(
            VHOST_PORT_PLACEHOLDER, str(port)
        )

    def write_vhost(self, domain: str, port: int) -> Path:
        self.console.print(f"[blue]Configuring Nginx for {domain}...[/blue]")
        content = self.render(domain, port)

        final_path = self.site_path(domain)
        self._verify_structure(content, final_path)
        temp_path = final_path.with_name(f"{final_path.name}.tmp")
        final_path.parent.mkdir(parents=True, exist_ok=True)

        self.logger.info("Writing configuration to temporary file: %s", temp_path)
        try:
            with open(temp_path, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
        except OSError as exc:
            self._discard(temp_path)
            raise ConfigWriteError(f"Could not write {temp_path}: {exc}") from exc

        self._verify_temp_file(temp_path, content, final_path)

        self.logger.info("Moving configuration to final location: %s", final_path)
        try:
            os.replace(temp_path, final_path)
        except OSError as exc:
            self._discard(temp_path)
            raise ConfigWriteError(f"Could not move {temp_path} to {final_path}: {exc}") from exc

        self._verify_final_file(final_path)
        self.enable_site(domain)
        self.test_config()
        self.reload()

        self.console.print("[green]Nginx configured successfully.[/green]")
        return final_path

    def enable_site(self, domain: str):
        source = self.site_path(domain)
        target = self.enabled_path(domain)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists() or target.is_symlink():
            target.unlink()
            self.logger.debug("Removed existing sites-enabled entry %s", target)
        target.symlink_to(source)
        self.logger.info("Enabled site %s -> %s", target, source)

    def test_config(self):
        result = self.run_cmd(["nginx", "-t"], check=False)
        if not result.success:
            raise ConfigWriteError(f"Nginx configuration test failed: {result.output}")
        self.logger.info("Nginx configuration test passed")

    def reload(self):
        result = self.run_cmd(["systemctl", "reload", "nginx"], check=False)
        if not result.success:
            raise ConfigWriteError(f"Failed to reload Nginx: {result.output}")
        self.logger.info("Nginx reloaded")

    def _verify_temp_file(self, temp_path: Path, expected: str, final_path: Path):
        try:
            written = temp_path.read_bytes()
        except OSError as exc:
            self._discard(temp_path)
            raise ConfigWriteError(f"Could not re-read {temp_path}: {exc}") from exc

        expected_bytes = expected.encode("utf-8")
        expected_lines = expected.split("\n")
        written_lines = written.decode("utf-8", errors="replace").split("\n")

        if len(written_lines) != len(expected_lines) or len(written) != len(expected_bytes):
            self._discard(temp_path)
            reason = (
                f"expected {len(expected_lines)} lines/{len(expected_bytes)} bytes, "
                f"got {len(written_lines)} lines/{len(written)} bytes"
            )
            raise ConfigWriteError(
                actionable_error("vhost_verification_failed", path=str(final_path), reason=reason)
            )

        self.logger.debug("Temporary file verified (%s lines)", len(written_lines))

    def _verify_final_file(self, final_path: Path):
        try:
            content = final_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigWriteError(f"Could not re-read {final_path}: {exc}") from exc
        self._verify_structure(content, final_path)

    def _verify_structure(self, content: str, final_path: Path):
        if VHOST_PROXY_DIRECTIVE not in content:
            raise ConfigWriteError(
                actionable_error(
                    "vhost_verification_failed",
                    path=str(final_path),
                    reason="missing proxy_pass directive",
                )
            )
        if not ends_with_closing_token(content):
            raise ConfigWriteError(
                actionable_error(
                    "vhost_verification_failed",
                    path=str(final_path),
                    reason="file does not end with a closing brace",
                )
            )

    def _discard(self, path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            self.logger.warning("Could not remove %s: %s", path, exc)
