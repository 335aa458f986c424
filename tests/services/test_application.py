import pytest

from mauticdeployer.constants import BUNDLES_DIR, MEDIA_HTACCESS_DIRS, WEB_CONTAINER
from mauticdeployer.errors import DeployerError
from mauticdeployer.models import DeploymentConfig, ProcessResult
from mauticdeployer.services.application import MEDIA_HTACCESS, ApplicationService
from mauticdeployer.services.filesystem import FileSystemService


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


def _config(**overrides):
    values = dict(
        email_address="admin@example.com",
        mautic_password="admin-pass",
        ip_address="203.0.113.10",
        port=8001,
        mautic_version="5.2.1",
        mysql_database="mautic",
        mysql_user="mautic",
        mysql_password="db-pass",
        mysql_root_password="root-pass",
    )
    values.update(overrides)
    return DeploymentConfig(**values)


class ScriptedRunner:
    def __init__(self, handler=None):
        self.calls = []
        self.kwargs = []
        self.handler = handler or (lambda _cmd: ProcessResult(True, "", 0))

    def __call__(self, cmd, check=True, **kwargs):
        self.calls.append(list(cmd))
        self.kwargs.append(kwargs)
        return self.handler(cmd)


def _service(tmp_path, runner, customisation_dir=None):
    return ApplicationService(
        logger=DummyLogger(),
        console=DummyConsole(),
        run_cmd=runner,
        filesystem_service=FileSystemService(logger=DummyLogger(), console=DummyConsole()),
        staging_dir=str(tmp_path / "staging"),
        customisation_dir=customisation_dir or str(tmp_path / "customisation"),
    )


def test_run_installation_uses_site_url_and_redacts_password(tmp_path):
    runner = ScriptedRunner()
    service = _service(tmp_path, runner)

    service.run_installation(_config(domain_name="demo.example.com"))

    install_index = next(index for index, call in enumerate(runner.calls) if "mautic:install" in call)
    install = runner.calls[install_index]
    assert "https://demo.example.com" in install
    assert "--admin_password=admin-pass" in install
    assert runner.kwargs[install_index]["redact"] == ["admin-pass"]
    assert runner.kwargs[install_index]["timeout"] == 320


def test_run_installation_raises_on_failure(tmp_path):
    def handler(cmd):
        if "mautic:install" in cmd:
            return ProcessResult(False, "SQLSTATE[HY000] [2002] Connection refused", 1)
        return ProcessResult(True, "", 0)

    service = _service(tmp_path, ScriptedRunner(handler))

    with pytest.raises(DeployerError, match="installation command failed"):
        service.run_installation(_config())


def test_clear_cache_is_best_effort(tmp_path):
    service = _service(tmp_path, ScriptedRunner(lambda _cmd: ProcessResult(False, "no container", 1)))

    assert service.clear_cache("after install") is False


def test_register_plugins_falls_back_to_reload(tmp_path):
    def handler(cmd):
        if "mautic:plugins:install" in cmd:
            return ProcessResult(False, "boom", 1)
        return ProcessResult(True, "", 0)

    runner = ScriptedRunner(handler)
    service = _service(tmp_path, runner)

    assert service.register_plugins() is True
    assert any("mautic:plugins:reload" in call for call in runner.calls)


def test_fix_media_htaccess_rewrites_blocking_files_only(tmp_path):
    blocked = f"{MEDIA_HTACCESS_DIRS[0]}/.htaccess"

    def handler(cmd):
        if cmd[-2:] == ["cat", blocked]:
            return ProcessResult(True, "Order deny,allow\nDeny from all\n", 0)
        if cmd[-1].endswith(".htaccess") and "cat" in cmd:
            return ProcessResult(True, MEDIA_HTACCESS, 0)
        return ProcessResult(True, "", 0)

    runner = ScriptedRunner(handler)
    service = _service(tmp_path, runner)

    assert service.fix_media_htaccess() == 1
    copies = [call for call in runner.calls if call[:2] == ["docker", "cp"]]
    assert copies == [["docker", "cp", str(tmp_path / "staging" / "media.htaccess"), f"{WEB_CONTAINER}:{blocked}"]]
    assert (tmp_path / "staging" / "media.htaccess").read_text(encoding="utf-8") == MEDIA_HTACCESS


def test_white_labeling_skipped_without_customisation_dir(tmp_path):
    runner = ScriptedRunner()
    service = _service(tmp_path, runner)

    assert service.apply_white_labeling() is False
    assert runner.calls == []


def test_white_labeling_copies_overlay_into_bundles(tmp_path):
    overlay = tmp_path / "customisation"
    (overlay / "CoreBundle" / "Assets").mkdir(parents=True)
    runner = ScriptedRunner()
    service = _service(tmp_path, runner, customisation_dir=str(overlay))

    assert service.apply_white_labeling() is True
    assert runner.calls[0] == ["docker", "cp", f"{overlay}/.", f"{WEB_CONTAINER}:{BUNDLES_DIR}"]
