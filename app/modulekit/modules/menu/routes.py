from __future__ import annotations

from flask import Blueprint, Response, current_app, jsonify, request

from app.modulekit.db import db_session
from app.modulekit.modules.menu.broadcaster import HEARTBEAT_SECONDS, event_stream
from app.modulekit.modules.menu.service import (
    create_category,
    create_item,
    delete_category,
    delete_item,
    get_broadcaster,
    get_category,
    get_full_menu,
    get_item,
    reorder,
    set_availability,
    update_category,
    update_item,
)
from app.modulekit.rbac import require_permission
from app.modulekit.sse import SSE_HEADERS

bp = Blueprint("menu", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _publish(change: str, data: dict) -> None:
    delivered = get_broadcaster().publish(change, data)
    current_app.logger.debug("menu %s delivered to %s subscriber(s)", change, delivered)


@bp.get("")
def menu_get():
    s = db_session()
    include_unavailable = request.args.get("available") not in ("1", "true")
    return jsonify({"success": True, **get_full_menu(s, include_unavailable=include_unavailable)})


@bp.get("/stream")
def menu_stream():
    heartbeat = float(current_app.config.get("MENU_SSE_HEARTBEAT_SECONDS") or HEARTBEAT_SECONDS)
    stream = event_stream(get_broadcaster(), heartbeat=heartbeat)
    return Response(
        stream,
        mimetype="text/event-stream",
        headers=SSE_HEADERS,
    )


@bp.post("/category")
@require_permission("menu.edit")
def category_create():
    s = db_session()
    c = create_category(s, _payload())
    s.commit()
    _publish("category_created", c.to_dict())
    return jsonify({"success": True, "category": c.to_dict()}), 201


@bp.put("/category/<int:category_id>")
@require_permission("menu.edit")
def category_update(category_id: int):
    s = db_session()
    c = update_category(s, get_category(s, category_id), _payload())
    s.commit()
    _publish("category_updated", c.to_dict())
    return jsonify({"success": True, "category": c.to_dict()})


@bp.delete("/category/<int:category_id>")
@require_permission("menu.edit")
def category_delete(category_id: int):
    s = db_session()
    delete_category(s, get_category(s, category_id))
    s.commit()
    _publish("category_deleted", {"id": category_id})
    return jsonify({"success": True, "message": "Category deleted"})


@bp.post("/item")
@require_permission("menu.edit")
def item_create():
    s = db_session()
    item = create_item(s, _payload())
    s.commit()
    _publish("item_created", item.to_dict())
    return jsonify({"success": True, "item": item.to_dict()}), 201


@bp.put("/item/<int:item_id>")
@require_permission("menu.edit")
def item_update(item_id: int):
    s = db_session()
    item = update_item(s, get_item(s, item_id), _payload())
    s.commit()
    _publish("item_updated", item.to_dict())
    return jsonify({"success": True, "item": item.to_dict()})


@bp.delete("/item/<int:item_id>")
@require_permission("menu.edit")
def item_delete(item_id: int):
    s = db_session()
    delete_item(s, get_item(s, item_id))
    s.commit()
    _publish("item_deleted", {"id": item_id})
    return jsonify({"success": True, "message": "Item deleted"})


@bp.patch("/item/<int:item_id>/availability")
@require_permission("menu.edit")
def item_availability(item_id: int):
    s = db_session()
    item = set_availability(s, get_item(s, item_id), _payload().get("available"))
    s.commit()
    _publish("item_availability_changed", {"id": item.id, "available": item.available})
    return jsonify({"success": True, "item": item.to_dict()})


@bp.put("/reorder")
@require_permission("menu.edit")
def menu_reorder():
    s = db_session()
    data = _payload()
    kind = data.get("type")
    changed = reorder(s, kind, data.get("items"))
    s.commit()
    _publish("menu_reordered", {"type": kind})
    return jsonify({"success": True, "message": f"{kind} reordered", "updated": changed})
