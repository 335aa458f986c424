"""Subprocess execution service for MauticDeployer."""

import subprocess
import time
from typing import Iterable, List, Optional

from mauticdeployer.errors import DeployerError
from mauticdeployer.models import ProcessResult

TIMEOUT_EXIT_CODE = 124


class CommandRunner:
    """Runs external commands with consistent error handling.

    Commands are always passed as argument lists so that no shell ever
    reinterprets quoting inside them. Output is captured with stderr merged
    into stdout and returned as a :class:`ProcessResult`.
    """

    def __init__(self, logger, default_timeout: Optional[float] = None, cwd: Optional[str] = None):
        self.logger = logger
        self.default_timeout = default_timeout
        self.cwd = cwd

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        retry_count: int = 0,
        retry_backoff_seconds: float = 0.0,
        retry_on_returncodes: Optional[Iterable[int]] = None,
        redact: Optional[Iterable[str]] = None,
    ) -> ProcessResult:
        secrets = [secret for secret in (redact or []) if secret]
        cmd_str = self._mask(" ".join(cmd), secrets)
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        max_attempts = max(1, retry_count + 1)
        retry_codes = set(retry_on_returncodes or [])

        for attempt in range(1, max_attempts + 1):
            try:
                completed = subprocess.run(
                    cmd,
                    text=True,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    timeout=effective_timeout,
                    cwd=cwd or self.cwd,
                )
            except FileNotFoundError as exc:
                raise DeployerError(
                    f"Required command not found: {cmd[0]}. Please install it and try again."
                ) from exc
            except subprocess.TimeoutExpired as exc:
                if attempt < max_attempts:
                    self.logger.warning(
                        "Command timed out on attempt %s/%s. Retrying in %.1fs: %s",
                        attempt,
                        max_attempts,
                        retry_backoff_seconds,
                        cmd_str,
                    )
                    time.sleep(retry_backoff_seconds)
                    continue
                if check:
                    raise DeployerError(
                        f"Command timed out after {effective_timeout}s: {cmd_str}"
                    ) from exc
                partial = exc.output or ""
                if isinstance(partial, bytes):
                    partial = partial.decode("utf-8", errors="replace")
                partial = self._mask(partial, secrets)
                self.logger.warning("Command timed out after %ss: %s", effective_timeout, cmd_str)
                return ProcessResult(success=False, output=partial.strip(), exit_code=TIMEOUT_EXIT_CODE)
            except OSError as exc:
                raise DeployerError(f"Failed to execute command: {cmd_str}. {exc}") from exc

            output = self._mask((completed.stdout or "").strip(), secrets)
            if output:
                self.logger.debug("Command output: %s", output)

            if completed.returncode == 0:
                return ProcessResult(success=True, output=output, exit_code=0)

            message = f"Command failed ({completed.returncode}): {cmd_str}"
            if output:
                message = f"{message}\n{output}"

            can_retry = attempt < max_attempts and (
                not retry_codes or completed.returncode in retry_codes
            )
            if can_retry:
                self.logger.warning(
                    "Command failed on attempt %s/%s and will be retried in %.1fs.\n%s",
                    attempt,
                    max_attempts,
                    retry_backoff_seconds,
                    message,
                )
                time.sleep(retry_backoff_seconds)
                continue

            if check:
                raise DeployerError(message)

            self.logger.debug(message)
            return ProcessResult(success=False, output=output, exit_code=completed.returncode)

        raise DeployerError(f"Command failed after retries: {cmd_str}")

    @staticmethod
    def _mask(text: str, secrets: List[str]) -> str:
        for secret in secrets:
            text = text.replace(secret, "***")
        return text
