"""
Menu CRUD. Service functions only flush; routes commit and then publish the
change so subscribers never see uncommitted state.
"""
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from flask import Flask, current_app
from sqlalchemy import func, select

from app.modulekit.errors import NotFoundError, ValidationError
from app.modulekit.modules.menu.broadcaster import Broadcaster, broadcaster_from_config
from app.modulekit.modules.menu.models import MenuCategory, MenuItem
from app.modulekit.utils import clean_str, optional_str, str_field

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

_MISSING = object()


def get_broadcaster(app: Flask | None = None) -> Broadcaster:
    app = app or current_app._get_current_object()  # type: ignore[attr-defined]
    b = app.extensions.get("menu_broadcaster")
    if b is None:
        b = broadcaster_from_config(app.config)
        app.extensions["menu_broadcaster"] = b
    return b


def _parse_price(value: Any) -> Decimal:
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError("Price is required")
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Price must be a number")
    if not price.is_finite() or price < 0:
        raise ValidationError("Price must be zero or greater")
    return price.quantize(Decimal("0.01"))


def _parse_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{field} must be an integer")


def _parse_flags(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError("dietaryFlags must be an object")
    return json.dumps(value) if value else None


def _field(payload: dict, camel: str, snake: str | None = None):
    if camel in payload:
        return payload[camel]
    if snake and snake in payload:
        return payload[snake]
    return _MISSING


def get_full_menu(s: "Session", *, include_unavailable: bool = True) -> dict:
    categories = s.execute(
        select(MenuCategory).where(MenuCategory.active.is_(True)).order_by(MenuCategory.sort_order, MenuCategory.id)
    ).scalars().all()
    out = []
    total = available = 0
    for c in categories:
        data = c.to_dict()
        items = [i for i in c.items if include_unavailable or i.available]
        data["items"] = [i.to_dict() for i in items]
        total += len(c.items)
        available += sum(1 for i in c.items if i.available)
        out.append(data)
    return {"categories": out, "totalItems": total, "availableItems": available}


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def get_category(s: "Session", category_id: int) -> MenuCategory:
    c = s.get(MenuCategory, category_id)
    if c is None or not c.active:
        raise NotFoundError("Category not found")
    return c


def create_category(s: "Session", payload: dict) -> MenuCategory:
    name = str_field(payload, "name")
    if not name:
        raise ValidationError("Name is required")
    order = _field(payload, "sortOrder", "display_order")
    if order is _MISSING:
        order = s.execute(select(func.count(MenuCategory.id)).where(MenuCategory.active.is_(True))).scalar_one()
    now = datetime.utcnow()
    c = MenuCategory(
        name=name,
        description=optional_str(payload, "description"),
        sort_order=_parse_int(order, "sortOrder"),
        active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(c)
    s.flush()
    return c


def update_category(s: "Session", c: MenuCategory, payload: dict) -> MenuCategory:
    if "name" in payload:
        name = str_field(payload, "name")
        if not name:
            raise ValidationError("Name is required")
        c.name = name
    if "description" in payload:
        c.description = optional_str(payload, "description")
    order = _field(payload, "sortOrder", "display_order")
    if order is not _MISSING:
        c.sort_order = _parse_int(order, "sortOrder")
    if "active" in payload:
        c.active = bool(payload["active"])
    c.updated_at = datetime.utcnow()
    s.flush()
    return c


def delete_category(s: "Session", c: MenuCategory) -> None:
    """Soft delete; the category's items are marked unavailable."""
    now = datetime.utcnow()
    c.active = False
    c.updated_at = now
    for item in c.items:
        item.available = False
        item.updated_at = now
    s.flush()


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


def get_item(s: "Session", item_id: int) -> MenuItem:
    item = s.get(MenuItem, item_id)
    if item is None:
        raise NotFoundError("Item not found")
    return item


def create_item(s: "Session", payload: dict) -> MenuItem:
    name = str_field(payload, "name")
    if not name:
        raise ValidationError("Name is required")
    category_id = _field(payload, "categoryId", "category_id")
    if category_id is _MISSING or category_id is None:
        raise ValidationError("categoryId is required")
    category = get_category(s, _parse_int(category_id, "categoryId"))
    price = _parse_price(payload.get("price"))

    order = _field(payload, "sortOrder", "display_order")
    if order is _MISSING:
        order = len(category.items)
    now = datetime.utcnow()
    item = MenuItem(
        category_id=category.id,
        name=name,
        description=optional_str(payload, "description"),
        price=price,
        image_url=optional_str(payload, "imageUrl", "image_url"),
        dietary_flags_json=_parse_flags(payload.get("dietaryFlags", payload.get("dietary_flags"))),
        available=bool(payload.get("available", True)),
        popular=bool(payload.get("popular", False)),
        sort_order=_parse_int(order, "sortOrder"),
        created_at=now,
        updated_at=now,
    )
    s.add(item)
    s.flush()
    return item


def update_item(s: "Session", item: MenuItem, payload: dict) -> MenuItem:
    category_id = _field(payload, "categoryId", "category_id")
    if category_id is not _MISSING:
        item.category_id = get_category(s, _parse_int(category_id, "categoryId")).id
    if "name" in payload:
        name = str_field(payload, "name")
        if not name:
            raise ValidationError("Name is required")
        item.name = name
    if "description" in payload:
        item.description = optional_str(payload, "description")
    if "price" in payload:
        item.price = _parse_price(payload["price"])
    image_url = _field(payload, "imageUrl", "image_url")
    if image_url is not _MISSING:
        item.image_url = clean_str(image_url, "imageUrl") or None
    flags = _field(payload, "dietaryFlags", "dietary_flags")
    if flags is not _MISSING:
        item.dietary_flags_json = _parse_flags(flags)
    if "available" in payload:
        item.available = bool(payload["available"])
    if "popular" in payload:
        item.popular = bool(payload["popular"])
    order = _field(payload, "sortOrder", "display_order")
    if order is not _MISSING:
        item.sort_order = _parse_int(order, "sortOrder")
    item.updated_at = datetime.utcnow()
    s.flush()
    return item


def delete_item(s: "Session", item: MenuItem) -> None:
    s.delete(item)
    s.flush()


def set_availability(s: "Session", item: MenuItem, available: Any = None) -> MenuItem:
    """Explicit value when given, otherwise toggle."""
    item.available = (not item.available) if available is None else bool(available)
    item.updated_at = datetime.utcnow()
    s.flush()
    return item


def reorder(s: "Session", kind: str, entries: Any) -> int:
    if kind not in ("categories", "items") or not isinstance(entries, list):
        raise ValidationError("Type and items array required")
    model = MenuCategory if kind == "categories" else MenuItem
    changed = 0
    for entry in entries:
        if not isinstance(entry, dict) or "id" not in entry:
            raise ValidationError("Each entry needs an id")
        row = s.get(model, _parse_int(entry["id"], "id"))
        if row is None:
            continue
        order = _field(entry, "sortOrder", "display_order")
        if order is not _MISSING:
            row.sort_order = _parse_int(order, "sortOrder")
        if kind == "items":
            category_id = _field(entry, "categoryId", "category_id")
            if category_id is not _MISSING:
                row.category_id = get_category(s, _parse_int(category_id, "categoryId")).id
        row.updated_at = datetime.utcnow()
        changed += 1
    s.flush()
    return changed
