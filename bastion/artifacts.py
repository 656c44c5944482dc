"""Artifact store for stage reports and gate results.

Reports are held per run identifier. Publication is serialized per run so
stages finishing concurrently never lose a write, and a published report is
never replaced. When ``root_dir`` is set every publication is mirrored to
``<root_dir>/<run_id>/<stage>/`` as JSON plus the raw tool outputs.
"""

import io
import json
import logging
import re
import threading
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from bastion.data_models import GateResult, Report
from bastion.errors import ArtifactError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_name(value: str) -> str:
    return _UNSAFE_CHARS.sub("_", value).strip("._") or "unnamed"


@dataclass(frozen=True)
class Artifact:
    """A published stage report and its gate decision."""
    run_id: str
    stage_name: str
    report: Report
    gate: Optional[GateResult] = None


class ArtifactStore:
    """Thread-safe store of published artifacts keyed by run identifier."""

    def __init__(self, root_dir: Optional[str] = None):
        """
        Initialize artifact store.

        Args:
            root_dir: Optional directory to mirror artifacts to
        """
        self.root_dir = Path(root_dir) if root_dir else None
        self._artifacts: Dict[str, Dict[str, Artifact]] = {}
        self._run_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

        if self.root_dir:
            self.root_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Artifacts will be written to {self.root_dir}")

    def _run_lock(self, run_id: str, create: bool = False) -> Optional[threading.Lock]:
        """Lock guarding one run; only publication registers a new run."""
        with self._lock:
            lock = self._run_locks.get(run_id)
            if lock is None and create:
                lock = threading.Lock()
                self._run_locks[run_id] = lock
                self._artifacts.setdefault(run_id, {})
            return lock

    def publish(self, run_id: str, stage_name: str, report: Report, gate: Optional[GateResult] = None) -> Artifact:
        """
        Publish a stage's report (and gate result) for a run.

        Raises:
            ArtifactError: If the stage already published for this run
        """
        artifact = Artifact(run_id=run_id, stage_name=stage_name, report=report, gate=gate)
        with self._run_lock(run_id, create=True):
            stage_artifacts = self._artifacts[run_id]
            if stage_name in stage_artifacts:
                raise ArtifactError(f"Stage '{stage_name}' already published for run {run_id}")
            stage_artifacts[stage_name] = artifact
            if self.root_dir:
                self._write(artifact)

        logger.info(
            f"Published artifacts for {run_id}/{stage_name}: "
            f"{len(report.findings)} finding(s), {len(report.raw_outputs)} raw output(s)"
        )
        return artifact

    def get(self, run_id: str, stage_name: str) -> Optional[Artifact]:
        lock = self._run_lock(run_id)
        if lock is None:
            return None
        with lock:
            return self._artifacts[run_id].get(stage_name)

    def get_report(self, run_id: str, stage_name: str) -> Optional[Report]:
        artifact = self.get(run_id, stage_name)
        return artifact.report if artifact else None

    def reports(self, run_id: str) -> List[Report]:
        """Reports of a run, in publication order."""
        return [a.report for a in self._snapshot(run_id)]

    def gates(self, run_id: str) -> List[GateResult]:
        return [a.gate for a in self._snapshot(run_id) if a.gate is not None]

    def _snapshot(self, run_id: str) -> List[Artifact]:
        lock = self._run_lock(run_id)
        if lock is None:
            return []
        with lock:
            return list(self._artifacts[run_id].values())

    def list_runs(self) -> List[str]:
        with self._lock:
            return [run_id for run_id, stages in self._artifacts.items() if stages]

    def has_run(self, run_id: str) -> bool:
        with self._lock:
            return bool(self._artifacts.get(run_id))

    def export(self, run_id: str) -> Dict[str, bytes]:
        """
        Export a run's artifacts as downloadable blobs.

        Returns:
            blob name -> bytes. Contains ``<stage>/report.json``,
            ``<stage>/raw/<tool>.txt``, ``full_report.json`` (findings keyed
            by tool across all stages) and ``gates.json``.

        Raises:
            ArtifactError: If nothing was published for the run
        """
        if not self.has_run(run_id):
            raise ArtifactError(f"No artifacts for run {run_id}")

        artifacts = self._snapshot(run_id)

        blobs: Dict[str, bytes] = {}
        full_report: Dict[str, List[Dict]] = {}
        for artifact in artifacts:
            stage_dir = _safe_name(artifact.stage_name)
            blobs[f"{stage_dir}/report.json"] = _dump(artifact.report.to_dict())
            for tool_id, raw in artifact.report.raw_outputs.items():
                blobs[f"{stage_dir}/raw/{_safe_name(tool_id)}.txt"] = (raw or "").encode("utf-8")
            for finding in artifact.report.findings:
                full_report.setdefault(finding.source, []).append(finding.to_dict())

        blobs["full_report.json"] = _dump(full_report)
        blobs["gates.json"] = _dump([a.gate.to_dict() for a in artifacts if a.gate is not None])
        return blobs

    def export_zip(self, run_id: str) -> bytes:
        """Export a run's artifacts as a zip archive.

        Runs published by an earlier process are read back from ``root_dir``.
        """
        if not self.has_run(run_id) and self.root_dir:
            run_dir = self.root_dir / _safe_name(run_id)
            if run_dir.is_dir():
                blobs = {
                    path.relative_to(run_dir).as_posix(): path.read_bytes()
                    for path in sorted(run_dir.rglob("*"))
                    if path.is_file()
                }
            else:
                blobs = self.export(run_id)
        else:
            blobs = self.export(run_id)

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for name, blob in blobs.items():
                archive.writestr(f"{_safe_name(run_id)}/{name}", blob)
        return buffer.getvalue()

    def _write(self, artifact: Artifact) -> None:
        stage_dir = self.root_dir / _safe_name(artifact.run_id) / _safe_name(artifact.stage_name)
        raw_dir = stage_dir / "raw"
        raw_dir.mkdir(parents=True, exist_ok=True)

        (stage_dir / "report.json").write_bytes(_dump(artifact.report.to_dict()))
        if artifact.gate is not None:
            (stage_dir / "gate.json").write_bytes(_dump(artifact.gate.to_dict()))
        for tool_id, raw in artifact.report.raw_outputs.items():
            (raw_dir / f"{_safe_name(tool_id)}.txt").write_text(raw or "", encoding="utf-8")


def _dump(data) -> bytes:
    return json.dumps(data, indent=2).encode("utf-8")
