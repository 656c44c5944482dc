import io
from typing import Any

from flask import Blueprint, current_app, jsonify, send_file

from bastion.artifacts import ArtifactStore
from bastion.errors import ArtifactError
from bastion.exports import export_sarif
from bastion.services.pipeline_service import RunState

main_bp = Blueprint("main", __name__)


def _store() -> ArtifactStore:
    return current_app.extensions["artifact_store"]


def _runs() -> RunState:
    return current_app.extensions["run_state"]


@main_bp.route("/health")
def health() -> Any:
    return jsonify({"status": "ok"})


@main_bp.route("/api/runs")
def list_runs() -> Any:
    store = _store()
    runs = []
    for run_id in store.list_runs():
        run = _runs().get(run_id)
        entry = {"run_id": run_id, "stages": [r.stage_name for r in store.reports(run_id)]}
        if run:
            entry.update(
                pipeline_name=run.pipeline_name,
                verdict=run.verdict.value,
                status_counts=run.status_counts(),
            )
        runs.append(entry)
    return jsonify({"runs": runs})


@main_bp.route("/api/runs/<run_id>")
def get_run(run_id: str) -> Any:
    run = _runs().get(run_id)
    if run is None:
        return jsonify({"error": f"Unknown run: {run_id}"}), 404
    return jsonify(run.to_dict())


@main_bp.route("/api/runs/<run_id>/artifacts")
def list_artifacts(run_id: str) -> Any:
    try:
        files = _store().export(run_id)
    except ArtifactError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"run_id": run_id, "artifacts": sorted(files)})


@main_bp.route("/api/runs/<run_id>/artifacts/<path:name>")
def get_artifact(run_id: str, name: str) -> Any:
    try:
        files = _store().export(run_id)
    except ArtifactError as e:
        return jsonify({"error": str(e)}), 404
    if name not in files:
        return jsonify({"error": f"Unknown artifact: {name}"}), 404
    mimetype = "application/json" if name.endswith(".json") else "text/plain"
    return current_app.response_class(files[name], mimetype=mimetype)


@main_bp.route("/api/runs/<run_id>/artifacts.zip")
def download_artifacts(run_id: str) -> Any:
    try:
        data = _store().export_zip(run_id)
    except ArtifactError as e:
        return jsonify({"error": str(e)}), 404
    return send_file(
        io.BytesIO(data),
        mimetype="application/zip",
        as_attachment=True,
        download_name=f"{run_id}-artifacts.zip",
    )


@main_bp.route("/api/runs/<run_id>/sarif")
def run_sarif(run_id: str) -> Any:
    store = _store()
    if not store.has_run(run_id):
        return jsonify({"error": f"Unknown run: {run_id}"}), 404
    return jsonify(export_sarif(store.reports(run_id)))
