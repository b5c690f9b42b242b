from __future__ import annotations

from datetime import date, datetime

from flask import Blueprint, g, jsonify, request

from app.modulekit.db import db_session
from app.modulekit.errors import ValidationError
from app.modulekit.modules.reservations.service import (
    change_status,
    create_reservation,
    day_summary,
    get_reservation,
    list_reservations,
    update_notes,
)
from app.modulekit.rbac import require_permission

bp = Blueprint("reservations", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@bp.post("")
def reservations_create():
    s = db_session()
    r = create_reservation(s, _payload())
    s.commit()
    return jsonify({"success": True, "reservation": r.to_dict()}), 201


@bp.get("")
@require_permission("reservations.manage")
def reservations_list():
    s = db_session()
    limit = request.args.get("limit", 50, type=int)
    offset = request.args.get("offset", 0, type=int)
    rows, total = list_reservations(
        s,
        on_date=(request.args.get("date") or "").strip() or None,
        status=(request.args.get("status") or "").strip() or None,
        search=(request.args.get("search") or "").strip() or None,
        limit=limit,
        offset=offset,
    )
    return jsonify(
        {
            "success": True,
            "reservations": [r.to_dict(include_internal=True) for r in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }
    )


@bp.get("/today")
@require_permission("reservations.manage")
def reservations_today():
    s = db_session()
    raw = (request.args.get("date") or "").strip()
    try:
        on_date = date.fromisoformat(raw) if raw else datetime.utcnow().date()
    except ValueError:
        raise ValidationError("date must be YYYY-MM-DD")
    return jsonify({"success": True, "summary": day_summary(s, on_date)})


@bp.get("/<int:reservation_id>")
@require_permission("reservations.manage")
def reservations_detail(reservation_id: int):
    s = db_session()
    r = get_reservation(s, reservation_id)
    return jsonify({"success": True, "reservation": r.to_dict(include_internal=True)})


@bp.post("/<int:reservation_id>/status")
@require_permission("reservations.manage")
def reservations_status(reservation_id: int):
    s = db_session()
    data = _payload()
    r = get_reservation(s, reservation_id, for_update=True)
    change_status(s, r, data.get("status"), actor=g.current_user, reason=data.get("reason"))
    s.commit()
    return jsonify({"success": True, "reservation": r.to_dict(include_internal=True)})


@bp.put("/<int:reservation_id>/notes")
@require_permission("reservations.manage")
def reservations_notes(reservation_id: int):
    s = db_session()
    r = update_notes(s, get_reservation(s, reservation_id, for_update=True), _payload().get("notes"))
    s.commit()
    return jsonify({"success": True, "reservation": r.to_dict(include_internal=True)})
