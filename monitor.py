# monitor.py
# -----------------------------------------------------------------------------
# Proctoring event sink: POST /api/monitor/log
# - Append-only; events are stored as sent (type + details), never interpreted
# - Independent of the attempt lifecycle: no guard, no timer, late events accepted
# - Best effort: store failures are printed and reported as {"success": false}
# -----------------------------------------------------------------------------

import json
from typing import Any, Callable, Dict

from flask import Blueprint, request, jsonify, g


def create_monitor_blueprint(base_path: str, deps: Dict[str, Any], name: str = "monitor") -> Blueprint:
    """
    Required deps: execute
    """
    url_prefix = (base_path.rstrip("/") + "/api/monitor") if base_path else "/api/monitor"
    bp = Blueprint(name, __name__, url_prefix=url_prefix)

    execute: Callable = deps["execute"]

    def _details_text(raw: Any) -> str:
        if raw is None:
            return ""
        if isinstance(raw, (dict, list)):
            raw = json.dumps(raw, ensure_ascii=False)
        return str(raw)

    @bp.post("/log")
    def monitor_log():
        if not getattr(g, "user_id", None):
            return jsonify({"success": False, "error": "unauthorized"}), 401

        data = request.get_json(silent=True)
        if data is None:
            data = request.form.to_dict()
        exam_id = data.get("examId", data.get("exam_id"))
        event_type = str(data.get("eventType") or data.get("event_type") or "")
        try:
            exam_id = int(exam_id)
        except (TypeError, ValueError):
            return jsonify({"success": False, "error": "examId must be an integer"}), 400
        if not event_type.strip():
            return jsonify({"success": False, "error": "eventType is required"}), 400

        try:
            execute("""
                INSERT INTO monitoring_logs (user_id, exam_id, event_type, event_details)
                VALUES (%s, %s, %s, %s);
            """, (g.user_id, exam_id, event_type, _details_text(data.get("details"))))
        except Exception as e:
            print(f"[monitor] event insert failed for user {g.user_id} exam {exam_id}: {e}")
            return jsonify({"success": False}), 500
        return jsonify({"success": True})

    return bp


__all__ = ["create_monitor_blueprint"]
