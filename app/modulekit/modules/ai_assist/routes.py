from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, g, jsonify, request

from app.modulekit.audit import record_event
from app.modulekit.db import db_session
from app.modulekit.errors import ValidationError
from app.modulekit.modules.ai_assist.service import analyze, apply_fix, list_backups, rollback
from app.modulekit.rbac import require_permission
from app.modulekit.utils import optional_str

bp = Blueprint("ai_assist", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _audit(action: str, file_path: str, **metadata) -> None:
    s = db_session()
    record_event(s, actor=g.current_user, action=action, entity_type="File", entity_id=file_path, metadata=metadata or None)
    s.commit()


@bp.post("/analyze")
@require_permission("ai_assist.use")
def analyze_route():
    data = _payload()
    if not data.get("filePath"):
        raise ValidationError("filePath is required")
    result = analyze(
        data["filePath"],
        optional_str(data, "errorMessage"),
        optional_str(data, "stackTrace"),
        data.get("exports"),
    )
    return jsonify({"success": True, **result})


@bp.post("/apply")
@require_permission("ai_assist.use")
def apply_route():
    data = _payload()
    if not data.get("filePath") or not data.get("suggestedFix"):
        raise ValidationError("filePath and suggestedFix are required")
    result = apply_fix(data["filePath"], data["suggestedFix"], data.get("backupId"))
    _audit("ai_assist.apply", result["filePath"], backupId=result["backupId"])
    return jsonify({"success": True, **result})


@bp.post("/rollback")
@require_permission("ai_assist.use")
def rollback_route():
    data = _payload()
    result = rollback(data.get("backupId"), data.get("filePath"))
    _audit("ai_assist.rollback", result["filePath"], backupId=data.get("backupId"))
    return jsonify({"success": True, **result, "restoredAt": datetime.now(timezone.utc).isoformat()})


@bp.get("/backups")
@require_permission("ai_assist.use")
def backups_route():
    return jsonify({"success": True, "backups": list_backups()})
