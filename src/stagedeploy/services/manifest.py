"""Run manifest generation service."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class ManifestService:
    """Collects stage results and writes the run manifest JSON."""

    def __init__(self, manifest_file: str, logger):
        self.manifest_file = manifest_file
        self.logger = logger
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "mode": None,
            "auto_approve": None,
            "outcome": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "settings_file": None,
            "stages": [],
            "outputs": {},
            "error": None,
        }

    def start_run(
        self,
        run_id: str,
        mode: str,
        auto_approve: bool,
        settings_file: Optional[str] = None,
    ):
        self.manifest["run_id"] = run_id
        self.manifest["mode"] = mode
        self.manifest["auto_approve"] = auto_approve
        self.manifest["outcome"] = "running"
        self.manifest["started_at"] = self._now()
        self.manifest["settings_file"] = settings_file
        self.write()

    def stage_started(self, stage_name: str, order: int, kind: str):
        self.manifest["stages"].append(
            {
                "name": stage_name,
                "order": order,
                "kind": kind,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "duration_seconds": None,
                "warnings": [],
                "details": {},
                "error": None,
            }
        )
        self.write()

    def stage_finished(
        self,
        stage_name: str,
        status: str,
        warnings: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        for stage in reversed(self.manifest["stages"]):
            if stage["name"] == stage_name and stage["status"] == "running":
                stage["status"] = status
                stage["finished_at"] = self._now()
                stage["error"] = error
                stage["warnings"] = list(warnings or [])
                if details:
                    stage["details"].update(details)
                started_at = datetime.fromisoformat(stage["started_at"])
                finished_at = datetime.fromisoformat(stage["finished_at"])
                stage["duration_seconds"] = (finished_at - started_at).total_seconds()
                break
        self.write()

    def stage_skipped(self, stage_name: str, order: int, kind: str, reason: str):
        now = self._now()
        self.manifest["stages"].append(
            {
                "name": stage_name,
                "order": order,
                "kind": kind,
                "status": "skipped",
                "started_at": now,
                "finished_at": now,
                "duration_seconds": 0.0,
                "warnings": [],
                "details": {"reason": reason},
                "error": None,
            }
        )
        self.write()

    def set_outputs(self, outputs: Dict[str, Any]):
        self.manifest["outputs"] = dict(outputs)
        self.write()

    def finalize(self, outcome: str, error: Optional[str] = None):
        self.manifest["outcome"] = outcome
        self.manifest["finished_at"] = self._now()
        if self.manifest.get("started_at"):
            started_at = datetime.fromisoformat(self.manifest["started_at"])
            finished_at = datetime.fromisoformat(self.manifest["finished_at"])
            self.manifest["duration_seconds"] = (finished_at - started_at).total_seconds()
        self.manifest["error"] = error
        self.write()

    def write(self):
        os.makedirs(os.path.dirname(self.manifest_file) or ".", exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            prefix="run-manifest-",
            suffix=".json",
            dir=os.path.dirname(self.manifest_file) or ".",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.manifest, file_obj, indent=2, sort_keys=True, default=str)
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
