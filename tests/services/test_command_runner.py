import sys

import pytest

from mauticdeployer.errors import DeployerError
from mauticdeployer.services.command_runner import TIMEOUT_EXIT_CODE, CommandRunner


class DummyLogger:
    def __init__(self):
        self.messages = []

    def debug(self, message, *args, **_kwargs):
        self.messages.append(message % args if args else message)

    def warning(self, message, *args, **_kwargs):
        self.messages.append(message % args if args else message)


def test_command_runner_raises_with_combined_output():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(DeployerError, match="boom"):
        runner.run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(1)"],
            check=True,
        )


def test_command_runner_returns_result_when_check_disabled():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run(
        [sys.executable, "-c", "import sys; print('partial'); sys.exit(3)"],
        check=False,
    )

    assert result.success is False
    assert result.exit_code == 3
    assert result.output == "partial"


def test_command_runner_retries_before_success(tmp_path, monkeypatch):
    runner = CommandRunner(logger=DummyLogger())
    monkeypatch.chdir(tmp_path)

    command = [
        sys.executable,
        "-c",
        (
            "from pathlib import Path;"
            "p=Path('retry-counter.txt');"
            "n=int(p.read_text()) if p.exists() else 0;"
            "p.write_text(str(n+1));"
            "import sys; sys.exit(1 if n == 0 else 0)"
        ),
    ]

    result = runner.run(command, check=True, retry_count=1, retry_backoff_seconds=0.0)

    assert result.success is True
    assert (tmp_path / "retry-counter.txt").read_text() == "2"


def test_command_runner_timeout_raises_error():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(DeployerError, match="timed out"):
        runner.run(
            [sys.executable, "-c", "import time; time.sleep(2)"],
            check=True,
            timeout=0.1,
        )


def test_command_runner_timeout_without_check_returns_failure():
    runner = CommandRunner(logger=DummyLogger())

    result = runner.run(
        [sys.executable, "-c", "import time; time.sleep(2)"],
        check=False,
        timeout=0.1,
    )

    assert result.success is False
    assert result.exit_code == TIMEOUT_EXIT_CODE


def test_command_runner_reports_missing_binary():
    runner = CommandRunner(logger=DummyLogger())

    with pytest.raises(DeployerError, match="Required command not found"):
        runner.run(["definitely-not-a-real-binary-for-tests"])


def test_command_runner_masks_redacted_values():
    logger = DummyLogger()
    runner = CommandRunner(logger=logger)

    with pytest.raises(DeployerError) as error:
        runner.run(
            [sys.executable, "-c", "import sys; print(sys.argv[1]); sys.exit(1)", "s3cret-value"],
            check=True,
            redact=["s3cret-value"],
        )

    assert "s3cret-value" not in str(error.value)
    assert "***" in str(error.value)
    assert all("s3cret-value" not in message for message in logger.messages)
