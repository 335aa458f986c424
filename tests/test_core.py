import json

import pytest

from mauticdeployer.core import MauticDeployer
from mauticdeployer.errors import DeployerError
from mauticdeployer.models import DeploymentConfig, DeploymentState

INSTALL_STEPS = [
    "prepare_directories",
    "write_environment_file",
    "check_compose_file",
    "start_containers",
    "wait_for_database",
    "wait_for_web",
    "install_language_pack",
    "run_first_install",
    "clear_cache",
    "fix_media_htaccess",
    "install_packages",
    "clear_cache",
    "apply_white_labeling",
    "clear_cache",
]

UPDATE_STEPS = [
    "pull_image",
    "update_compose_image",
    "start_containers",
    "wait_for_web",
    "wait_for_database",
    "verify_running_version",
    "clear_cache",
    "apply_white_labeling",
    "clear_cache",
]

STEP_METHODS = sorted(set(INSTALL_STEPS + UPDATE_STEPS + ["write_vhost", "issue_certificate"]))


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


def _deployer(tmp_path, monkeypatch, detected, config=None, **kwargs):
    deployer = MauticDeployer(config=config or _config(), workdir=str(tmp_path), **kwargs)
    calls = []

    def recorder(name):
        def step(*_args, **_kwargs):
            calls.append(name)

        return step

    for name in STEP_METHODS:
        monkeypatch.setattr(deployer, name, recorder(name))

    monkeypatch.setattr(deployer, "validate_docker_environment", lambda: calls.append("validate"))
    monkeypatch.setattr(deployer, "detect_state", lambda: detected)
    monkeypatch.setattr(deployer.docker_runtime_service, "get_running_version", lambda: None)
    monkeypatch.setattr(
        deployer.docker_runtime_service,
        "collect_failure_diagnostics",
        lambda: calls.append("diagnostics"),
    )
    return deployer, calls


def _manifest(tmp_path):
    return json.loads((tmp_path / "deploy-manifest.json").read_text(encoding="utf-8"))


def test_install_flow_runs_steps_in_order(tmp_path, monkeypatch):
    config = _config(
        language_pack_url="https://example.com/de.zip",
        mautic_plugins="https://example.com/foo.zip?directory=FooBundle",
    )
    deployer, calls = _deployer(tmp_path, monkeypatch, DeploymentState.UNINSTALLED, config=config)

    assert deployer.run() == 0
    assert calls == ["validate"] + INSTALL_STEPS
    assert deployer.state == DeploymentState.INSTALLED
    manifest = _manifest(tmp_path)
    assert manifest["status"] == "success"
    assert manifest["flow"] == "install"


def test_install_flow_skips_optional_steps_when_not_configured(tmp_path, monkeypatch):
    deployer, calls = _deployer(tmp_path, monkeypatch, DeploymentState.UNINSTALLED)

    assert deployer.run() == 0
    assert "install_language_pack" not in calls
    assert "install_packages" not in calls
    assert calls.count("clear_cache") == 2


def test_update_flow_runs_steps_in_order(tmp_path, monkeypatch):
    deployer, calls = _deployer(tmp_path, monkeypatch, DeploymentState.STALE)

    assert deployer.run() == 0
    assert calls == ["validate"] + UPDATE_STEPS
    assert _manifest(tmp_path)["flow"] == "update"


def test_current_installation_runs_no_flow(tmp_path, monkeypatch):
    deployer, calls = _deployer(tmp_path, monkeypatch, DeploymentState.INSTALLED)

    assert deployer.run() == 0
    assert calls == ["validate"]


def test_ssl_runs_after_flow_when_domain_configured(tmp_path, monkeypatch):
    deployer, calls = _deployer(
        tmp_path, monkeypatch, DeploymentState.STALE, config=_config(domain_name="demo.example.com")
    )

    assert deployer.run() == 0
    assert calls[-2:] == ["write_vhost", "issue_certificate"]


def test_skip_ssl_disables_vhost_and_certificate(tmp_path, monkeypatch):
    deployer, calls = _deployer(
        tmp_path,
        monkeypatch,
        DeploymentState.STALE,
        config=_config(domain_name="demo.example.com"),
        skip_ssl=True,
    )

    assert deployer.run() == 0
    assert "write_vhost" not in calls


def test_critical_failure_aborts_and_collects_diagnostics(tmp_path, monkeypatch):
    deployer, calls = _deployer(tmp_path, monkeypatch, DeploymentState.UNINSTALLED)

    def failing_start():
        calls.append("start_containers")
        raise DeployerError("Containers failed to start.")

    monkeypatch.setattr(deployer, "start_containers", failing_start)

    assert deployer.run() == 1
    assert "wait_for_database" not in calls
    assert calls[-1] == "diagnostics"
    assert deployer.state == DeploymentState.FAILED
    manifest = _manifest(tmp_path)
    assert manifest["status"] == "failed"
    assert manifest["state"] == "failed"
    assert manifest["steps"][-1]["name"] == "start_containers"
    assert manifest["steps"][-1]["status"] == "failed"


def test_best_effort_failure_is_logged_and_run_continues(tmp_path, monkeypatch):
    deployer, calls = _deployer(tmp_path, monkeypatch, DeploymentState.STALE)

    def failing_overlay():
        raise DeployerError("docker cp failed")

    monkeypatch.setattr(deployer, "apply_white_labeling", failing_overlay)

    assert deployer.run() == 0
    assert calls[-1] == "clear_cache"
    steps = {step["name"]: step for step in _manifest(tmp_path)["steps"]}
    assert steps["apply_white_labeling"]["status"] == "warning"
    assert steps["apply_white_labeling"]["critical"] is False


def test_health_timeout_is_critical(tmp_path, monkeypatch):
    deployer = MauticDeployer(config=_config(), workdir=str(tmp_path))
    monkeypatch.setattr(deployer.docker_runtime_service, "wait_for_healthy", lambda *_args, **_kwargs: False)

    with pytest.raises(DeployerError, match="did not become healthy within 180s"):
        deployer.wait_for_database()


def test_missing_compose_file_is_reported(tmp_path):
    deployer = MauticDeployer(config=_config(), workdir=str(tmp_path))

    with pytest.raises(DeployerError, match="Compose file not found"):
        deployer.check_compose_file()


def test_dry_run_prints_plan_without_mutating(tmp_path, monkeypatch):
    deployer, calls = _deployer(tmp_path, monkeypatch, DeploymentState.UNINSTALLED, dry_run=True)

    assert deployer.run() == 0
    assert calls == []
    assert not (tmp_path / "deploy-manifest.json").exists()


def test_update_fails_when_web_container_keeps_old_image(tmp_path, monkeypatch):
    deployer = MauticDeployer(config=_config(), workdir=str(tmp_path))
    monkeypatch.setattr(deployer.docker_runtime_service, "get_running_version", lambda: "5.1.0-apache")

    with pytest.raises(DeployerError, match="runs image tag 5.1.0-apache instead of 5.2.1-apache"):
        deployer.verify_running_version()


def test_update_accepts_web_container_on_target_image(tmp_path, monkeypatch):
    deployer = MauticDeployer(config=_config(), workdir=str(tmp_path))
    monkeypatch.setattr(deployer.docker_runtime_service, "get_running_version", lambda: "5.2.1-apache")

    deployer.verify_running_version()
