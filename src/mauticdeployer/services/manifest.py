"""Deployment run manifest."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class ManifestService:
    """Records each deployment step and writes the result as JSON."""

    def __init__(self, manifest_file: str, logger, enabled: bool = True):
        self.manifest_file = manifest_file
        self.logger = logger
        self.enabled = enabled
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "flow": None,
            "state": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "metadata": {},
            "versions": {
                "running": None,
                "target": None,
            },
            "steps": [],
            "packages": {},
            "error": None,
        }

    def start_run(self, run_id: str, metadata: Dict[str, Any]):
        self.manifest["run_id"] = run_id
        self.manifest["status"] = "running"
        self.manifest["started_at"] = self._now()
        self.manifest["metadata"] = metadata
        self.write()

    def set_versions(self, running: Optional[str], target: Optional[str]):
        self.manifest["versions"]["running"] = running
        self.manifest["versions"]["target"] = target
        self.write()

    def set_flow(self, flow: str):
        self.manifest["flow"] = flow
        self.write()

    def set_state(self, state: str):
        self.manifest["state"] = state
        self.write()

    def step_started(self, step_name: str, critical: bool = True):
        self.manifest["steps"].append(
            {
                "name": step_name,
                "critical": critical,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "duration_seconds": None,
                "error": None,
            }
        )
        self.write()

    def step_finished(self, step_name: str, status: str, error: Optional[str] = None):
        for step in reversed(self.manifest["steps"]):
            if step["name"] == step_name and step["status"] == "running":
                step["status"] = status
                step["finished_at"] = self._now()
                step["error"] = error
                started_at = datetime.fromisoformat(step["started_at"])
                finished_at = datetime.fromisoformat(step["finished_at"])
                step["duration_seconds"] = (finished_at - started_at).total_seconds()
                break
        self.write()

    def record_packages(self, label: str, succeeded: int, failed: int):
        self.manifest["packages"][label] = {"succeeded": succeeded, "failed": failed}
        self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        self.manifest["status"] = status
        self.manifest["finished_at"] = self._now()
        if self.manifest.get("started_at"):
            started_at = datetime.fromisoformat(self.manifest["started_at"])
            finished_at = datetime.fromisoformat(self.manifest["finished_at"])
            self.manifest["duration_seconds"] = (finished_at - started_at).total_seconds()
        self.manifest["error"] = error
        self.write()

    def write(self):
        if not self.enabled:
            return

        directory = os.path.dirname(os.path.abspath(self.manifest_file))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".deploy-manifest-", suffix=".json", dir=directory)
        except OSError as exc:
            self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)
            return

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.manifest, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.manifest_file)
        except OSError as exc:
            self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
