from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.modulekit.db import db_session
from app.modulekit.errors import ValidationError
from app.modulekit.modules.social.service import (
    add_comment,
    create_post,
    delete_post,
    feed,
    get_visible_post,
    list_comments,
    list_notifications,
    mark_notifications_read,
    serialize_post,
    toggle_dislike,
    toggle_like,
)
from app.modulekit.rbac import current_user, require_login

posts_bp = Blueprint("posts", __name__)
notifications_bp = Blueprint("notifications", __name__)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _viewer_id() -> int | None:
    user = current_user()
    return user.id if user else None


@posts_bp.get("/feed")
def posts_feed():
    s = db_session()
    posts, page, limit = feed(s, request.args.get("page", 1, type=int), request.args.get("limit", 20, type=int))
    viewer = _viewer_id()
    return jsonify(
        {
            "success": True,
            "posts": [serialize_post(p, viewer) for p in posts],
            "page": page,
            "hasMore": len(posts) == limit,
        }
    )


@posts_bp.post("")
@require_login
def posts_create():
    s = db_session()
    post = create_post(s, g.current_user, _payload())
    s.commit()
    return jsonify({"success": True, "post": serialize_post(post, g.current_user.id)}), 201


@posts_bp.get("/<int:post_id>")
def posts_detail(post_id: int):
    s = db_session()
    post = get_visible_post(s, post_id, current_user())
    return jsonify({"success": True, "post": serialize_post(post, _viewer_id())})


@posts_bp.post("/<int:post_id>/like")
@require_login
def posts_like(post_id: int):
    s = db_session()
    post = get_visible_post(s, post_id, g.current_user)
    liked, likes = toggle_like(s, post, g.current_user)
    s.commit()
    return jsonify({"success": True, "liked": liked, "likes": likes})


@posts_bp.post("/<int:post_id>/dislike")
@require_login
def posts_dislike(post_id: int):
    s = db_session()
    post = get_visible_post(s, post_id, g.current_user)
    disliked, dislikes = toggle_dislike(s, post, g.current_user)
    s.commit()
    return jsonify({"success": True, "disliked": disliked, "dislikes": dislikes})


@posts_bp.post("/<int:post_id>/comment")
@require_login
def posts_comment(post_id: int):
    s = db_session()
    post = get_visible_post(s, post_id, g.current_user)
    comment = add_comment(s, post, g.current_user, _payload().get("content"))
    s.commit()
    return jsonify({"success": True, "comment": comment.to_dict()}), 201


@posts_bp.get("/<int:post_id>/comments")
def posts_comments(post_id: int):
    s = db_session()
    post = get_visible_post(s, post_id, current_user())
    comments = list_comments(s, post, request.args.get("limit", 50, type=int))
    return jsonify({"success": True, "comments": [c.to_dict() for c in comments]})


@posts_bp.delete("/<int:post_id>")
@require_login
def posts_delete(post_id: int):
    s = db_session()
    post = get_visible_post(s, post_id, g.current_user)
    delete_post(s, post, g.current_user)
    s.commit()
    return jsonify({"success": True})


@notifications_bp.get("")
@require_login
def notifications_list():
    s = db_session()
    unread_only = request.args.get("unread") in ("1", "true")
    items = list_notifications(s, g.current_user, unread_only=unread_only, limit=request.args.get("limit", 50, type=int))
    return jsonify({"success": True, "notifications": [n.to_dict() for n in items]})


@notifications_bp.post("/read")
@require_login
def notifications_read():
    s = db_session()
    ids = _payload().get("ids")
    if ids is not None:
        if not isinstance(ids, list) or not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
            raise ValidationError("ids must be a list of integers")
    count = mark_notifications_read(s, g.current_user, ids)
    s.commit()
    return jsonify({"success": True, "updated": count})
