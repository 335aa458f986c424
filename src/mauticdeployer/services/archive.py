"""Validation and unpacking of downloaded plugin, theme and language pack archives."""

import os
import shutil
import zipfile
import zlib
from pathlib import Path
from typing import List, Optional, Tuple

from mauticdeployer.errors import PackageInstallError

SYMLINK_MODE = 0o120000
FILE_TYPE_MASK = 0o170000
ENCRYPTED_FLAG = 0x1


class ArchiveService:
    """Unpacks package archives into a host staging folder.

    Every failure, whether the download is not a ZIP, the archive is corrupt
    or encrypted, or an entry would escape the staging folder, surfaces as
    :class:`PackageInstallError` so callers can fail the single package.
    """

    def is_zip_archive(self, path: str) -> bool:
        return os.path.isfile(path) and zipfile.is_zipfile(path)

    def is_within_dir(self, base_dir: Path, candidate: Path) -> bool:
        return candidate == base_dir or base_dir in candidate.parents

    def ensure_zip_archive(self, path: str, label: str):
        """Delete *path* and raise when it is not a ZIP, e.g. an HTML error page."""
        if self.is_zip_archive(path):
            return
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        raise PackageInstallError(f"Downloaded file for {label} is not a ZIP archive.")

    def extract_package(self, zip_path: str, destination_dir: str, label: str) -> Path:
        self.ensure_zip_archive(zip_path, label)
        base = Path(destination_dir).resolve()
        base.mkdir(parents=True, exist_ok=True)

        try:
            with zipfile.ZipFile(zip_path, "r") as zip_ref:
                for member, target, is_dir in self._plan_entries(zip_ref, base, label):
                    if is_dir:
                        target.mkdir(parents=True, exist_ok=True)
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with zip_ref.open(member, "r") as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst)
        except PackageInstallError:
            raise
        except (zipfile.BadZipFile, zlib.error) as exc:
            raise PackageInstallError(f"Archive for {label} is corrupt: {exc}") from exc
        except (RuntimeError, NotImplementedError) as exc:
            raise PackageInstallError(f"Archive for {label} cannot be unpacked: {exc}") from exc
        except OSError as exc:
            raise PackageInstallError(f"Could not unpack {label} into {base}: {exc}") from exc

        return base

    def _plan_entries(
        self, zip_ref: zipfile.ZipFile, base: Path, label: str
    ) -> List[Tuple[zipfile.ZipInfo, Path, bool]]:
        # Checked up front so a rejected archive leaves nothing behind.
        plan = []
        for member in zip_ref.infolist():
            name = member.filename.replace("\\", "/")
            target = (base / name).resolve()
            if not self.is_within_dir(base, target):
                raise PackageInstallError(f"Archive for {label} has an entry outside its folder: `{name}`.")
            if (member.external_attr >> 16) & FILE_TYPE_MASK == SYMLINK_MODE:
                raise PackageInstallError(f"Archive for {label} contains a symbolic link: `{name}`.")
            if member.flag_bits & ENCRYPTED_FLAG:
                raise PackageInstallError(f"Archive for {label} is password protected: `{name}`.")
            plan.append((member, target, name.endswith("/")))
        return plan

    def find_wrapper_dir(self, extracted_dir: str) -> Optional[Path]:
        """Return the single top-level folder an archive API wrapped content in."""
        items = [item for item in Path(extracted_dir).iterdir() if not item.name.startswith(".")]
        if len(items) == 1 and items[0].is_dir():
            return items[0]
        return None
