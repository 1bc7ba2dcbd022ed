"""
api.py - 診断・操作用 HTTP API（Flask）

GET  /api/containers              コンテナと entity 割り当ての一覧
POST /api/containers/<name>/map   {"entities": [...], "pid": N}
POST /api/entities                {"id": "...", "priority": "normal"}
GET  /api/bootstatus              boot status プロキシとサブシステムの状態
GET  /api/metrics                 メトリクスのスナップショット
GET  /api/diagnostics             診断イベント
"""

from __future__ import annotations

from typing import Optional

from flask import Flask, jsonify, request

from .errors import ActivityManagerError
from .logging_utils import CorrelationContext, get_structured_logger
from .runtime import ActivityRuntime, get_runtime
from .types import ActivityPriority


logger = get_structured_logger("activitymanager.api")


def _parse_priority(value: object) -> ActivityPriority:
    if isinstance(value, str) and value.upper() in ActivityPriority.__members__:
        return ActivityPriority[value.upper()]
    raise ValueError(f"unknown priority: {value!r}")


def create_app(runtime: Optional[ActivityRuntime] = None) -> Flask:
    app = Flask(__name__)

    def current() -> ActivityRuntime:
        return runtime if runtime is not None else get_runtime()

    @app.errorhandler(ActivityManagerError)
    def handle_activity_manager_error(exc: ActivityManagerError):
        logger.warning("Request rejected: %s", exc, code=exc.code, path=request.path)
        return jsonify({"error": exc.to_dict()}), 400

    @app.route("/api/containers")
    def api_containers():
        return jsonify(current().containers.info_to_dict())

    @app.route("/api/containers/<name>/map", methods=["POST"])
    def api_map_container(name: str):
        data = request.get_json(silent=True) or {}
        entities = data.get("entities", [])
        pid = data.get("pid")
        if not isinstance(entities, list) or not isinstance(pid, int):
            return jsonify({"error": {"message": "'entities' (list) and 'pid' (int) are required"}}), 400

        with CorrelationContext():
            container = current().containers.map_container(name, entities, pid)
        return jsonify(container.to_dict())

    @app.route("/api/entities", methods=["POST"])
    def api_register_entity():
        data = request.get_json(silent=True) or {}
        entity_id = data.get("id")
        if not isinstance(entity_id, str) or not entity_id:
            return jsonify({"error": {"message": "'id' is required"}}), 400
        try:
            priority = _parse_priority(data.get("priority", "none"))
        except ValueError as exc:
            return jsonify({"error": {"message": str(exc)}}), 400

        rt = current()
        entity = rt.entities.register(entity_id)
        if entity.priority != priority:
            entity.set_priority(priority)
            rt.containers.inform_entity_updated(entity)
        return jsonify({"id": entity.name, "priority": entity.priority.label})

    @app.route("/api/bootstatus")
    def api_bootstatus():
        return jsonify(current().info())

    @app.route("/api/metrics")
    def api_metrics():
        return jsonify(current().metrics.snapshot())

    @app.route("/api/diagnostics")
    def api_diagnostics():
        return jsonify(current().diagnostics.as_dict())

    return app
