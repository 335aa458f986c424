import zipfile

import pytest

from mauticdeployer.errors import PackageInstallError
from mauticdeployer.services.archive import ArchiveService


def _write_zip(path, entries):
    with zipfile.ZipFile(path, "w") as zip_file:
        for name, content in entries.items():
            zip_file.writestr(name, content)
    return path


def _mark_encrypted(path):
    data = bytearray(path.read_bytes())
    data[data.find(b"PK\x03\x04") + 6] |= 0x01
    data[data.find(b"PK\x01\x02") + 8] |= 0x01
    path.write_bytes(bytes(data))
    return path


def test_archive_service_blocks_path_traversal(tmp_path):
    service = ArchiveService()
    zip_path = _write_zip(tmp_path / "malicious.zip", {"../escape.txt": "malicious"})

    with pytest.raises(PackageInstallError, match="outside its folder"):
        service.extract_package(str(zip_path), str(tmp_path / "extract"), "evil plugin")

    assert not (tmp_path / "escape.txt").exists()


def test_archive_service_blocks_symlink_entries(tmp_path):
    service = ArchiveService()

    zip_path = tmp_path / "symlink.zip"
    with zipfile.ZipFile(zip_path, "w") as zip_file:
        info = zipfile.ZipInfo("link")
        info.external_attr = 0o120777 << 16
        zip_file.writestr(info, "/etc/passwd")

    with pytest.raises(PackageInstallError, match="symbolic link"):
        service.extract_package(str(zip_path), str(tmp_path / "extract"), "theme")


def test_rejected_archive_leaves_nothing_extracted(tmp_path):
    service = ArchiveService()
    zip_path = _write_zip(
        tmp_path / "mixed.zip",
        {"FooBundle/Config/config.php": "<?php", "../../escape.txt": "x"},
    )

    with pytest.raises(PackageInstallError):
        service.extract_package(str(zip_path), str(tmp_path / "extract"), "plugin")

    assert list((tmp_path / "extract").iterdir()) == []


def test_password_protected_archive_is_a_package_error(tmp_path):
    service = ArchiveService()
    zip_path = _mark_encrypted(_write_zip(tmp_path / "locked.zip", {"FooBundle/a.php": "<?php"}))

    with pytest.raises(PackageInstallError, match="password protected"):
        service.extract_package(str(zip_path), str(tmp_path / "extract"), "plugin")


def test_html_saved_as_zip_is_rejected_and_deleted(tmp_path):
    service = ArchiveService()

    fake_zip = tmp_path / "plugin.zip"
    fake_zip.write_text("<html>Not Found</html>", encoding="utf-8")

    assert service.is_zip_archive(str(fake_zip)) is False
    with pytest.raises(PackageInstallError, match="not a ZIP archive"):
        service.extract_package(str(fake_zip), str(tmp_path / "extract"), "plugin")
    assert not fake_zip.exists()


def test_find_wrapper_dir_detects_single_synthetic_folder(tmp_path):
    service = ArchiveService()
    zip_path = _write_zip(
        tmp_path / "zipball.zip",
        {"acme-theme-3f2a1b/config.json": "{}", "acme-theme-3f2a1b/html/base.html.twig": ""},
    )

    destination = service.extract_package(str(zip_path), str(tmp_path / "extract"), "theme")

    wrapper = service.find_wrapper_dir(str(destination))
    assert wrapper is not None
    assert wrapper.name == "acme-theme-3f2a1b"
    assert (wrapper / "html" / "base.html.twig").exists()


def test_find_wrapper_dir_ignores_flat_archives(tmp_path):
    service = ArchiveService()

    (tmp_path / "config.json").write_text("{}", encoding="utf-8")
    (tmp_path / "html").mkdir()

    assert service.find_wrapper_dir(str(tmp_path)) is None
