"""TLS certificate issuance through certbot's nginx plugin."""

from pathlib import Path
from typing import Callable

from mauticdeployer.constants import VHOST_TLS_DIRECTIVE
from mauticdeployer.errors import DeployerError
from mauticdeployer.errors_catalog import actionable_error
from mauticdeployer.services.nginx import ends_with_closing_token


class CertificateService:
    """Requests or renews the certificate bound to an already-written vhost."""

    def __init__(self, logger, console, run_cmd: Callable):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd

    def issue_certificate(self, domain: str, email: str, vhost_path: Path) -> bool:
        """Run certbot for *domain* and verify the vhost it rewrote.

        Returns True when a new certificate was installed and False when
        certbot failed but a certificate for the domain already exists.
        """
        self.console.print(f"[blue]Requesting TLS certificate for {domain}...[/blue]")
        result = self.run_cmd(
            [
                "certbot",
                "--nginx",
                "-d",
                domain,
                "--non-interactive",
                "--agree-tos",
                "--email",
                email,
                "--redirect",
                "--keep-until-expiring",
            ],
            check=False,
        )
        self.logger.info("Certbot output:\n%s", result.output)

        if not result.success:
            if self.certificate_exists(domain):
                self.logger.warning("Certificate already exists for %s, continuing.", domain)
                self.console.print(f"[yellow]Certificate for {domain} already exists.[/yellow]")
                self.warn_if_plain_http(domain, vhost_path)
                return False
            self.logger.error("Certbot failed: %s", result.output)
            raise DeployerError(actionable_error("certificate_failed", domain=domain))

        self.verify_vhost(vhost_path)
        self.console.print(f"[green]TLS certificate installed for {domain}.[/green]")
        return True

    def certificate_exists(self, domain: str) -> bool:
        lookup = self.run_cmd(["certbot", "certificates", "-d", domain], check=False)
        if not lookup.success:
            return False
        output = lookup.output
        if "No certificates found" in output:
            return False
        return "Certificate Name:" in output and domain in output

    def warn_if_plain_http(self, domain: str, vhost_path: Path) -> bool:
        try:
            content = Path(vhost_path).read_text(encoding="utf-8")
        except OSError:
            content = ""
        if VHOST_TLS_DIRECTIVE in content:
            return False
        self.logger.warning(
            "%s has no '%s' directive; %s is served over plain HTTP until certbot reinstalls the certificate.",
            vhost_path,
            VHOST_TLS_DIRECTIVE,
            domain,
        )
        self.console.print(
            f"[yellow]{domain} is not served over HTTPS. Run `certbot install --nginx -d {domain}`.[/yellow]"
        )
        return True

    def verify_vhost(self, vhost_path: Path):
        try:
            content = Path(vhost_path).read_text(encoding="utf-8")
        except OSError as exc:
            raise DeployerError(f"Could not read {vhost_path} after certbot: {exc}") from exc

        if VHOST_TLS_DIRECTIVE not in content:
            raise DeployerError(
                actionable_error(
                    "vhost_verification_failed",
                    path=str(vhost_path),
                    reason=f"missing '{VHOST_TLS_DIRECTIVE}' after certbot",
                )
            )
        if not ends_with_closing_token(content):
            raise DeployerError(
                actionable_error(
                    "vhost_verification_failed",
                    path=str(vhost_path),
                    reason="truncated by certbot rewrite",
                )
            )
        self.logger.info("TLS configuration applied by certbot to %s", vhost_path)
