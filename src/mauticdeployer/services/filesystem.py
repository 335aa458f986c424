"""Filesystem helpers for MauticDeployer."""

import logging
import os
import shutil
import sys
import tempfile
from typing import Iterable

from rich.console import Console

from mauticdeployer.errors import DeployerError


class FileSystemService:
    """Encapsulates file and directory side effects on the host."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def ensure_directories(self, root: str, names: Iterable[str], mode: int):
        for name in names:
            path = os.path.join(root, name)
            try:
                os.makedirs(path, exist_ok=True)
            except OSError as exc:
                raise DeployerError(f"Could not create directory {path}: {exc}") from exc
            self.set_permissions(path, mode)
            self.logger.debug("Ensured directory: %s", path)

    def write_file_atomic(self, path: str, content: str, mode: int):
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(prefix=".tmp-", dir=directory)
        try:
            self.set_permissions(temp_path, mode)
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
            os.replace(temp_path, path)
        except OSError as exc:
            raise DeployerError(f"Could not write {path}: {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    def cleanup_dir(self, path: str):
        if os.path.exists(path):
            try:
                shutil.rmtree(path)
                self.logger.debug("Removed directory: %s", path)
            except OSError as exc:
                message = f"Warning: Could not remove {path}: {exc}"
                self.console.print(f"[yellow]{message}[/yellow]")
                self.logger.warning(message)
