from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from app.modulekit.errors import ForbiddenError, NotFoundError, ValidationError
from app.modulekit.modules.social.models import Comment, Notification, Post, PostReaction
from app.modulekit.utils import clean_str, optional_str, str_field

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.modulekit.models import User

logger = logging.getLogger(__name__)

MAX_CONTENT = 5000
POST_TYPES = ("post", "prediction", "group_invite")
VISIBILITIES = ("public", "private")


def _clean_content(raw, *, what: str = "Content") -> str:
    content = clean_str(raw, what.lower())
    if not content:
        raise ValidationError(f"{what} is required")
    if len(content) > MAX_CONTENT:
        raise ValidationError(f"{what} must be at most {MAX_CONTENT} characters")
    return content


def serialize_post(post: Post, viewer_id: int | None = None) -> dict:
    return {
        "id": post.id,
        "content": post.content,
        "type": post.type,
        "visibility": post.visibility,
        "media": post.media,
        "location": post.location,
        "author": post.author.to_public_dict() if post.author else None,
        "likes": post.count_reactions("like"),
        "dislikes": post.count_reactions("dislike"),
        "myReaction": post.reaction_of(viewer_id),
        "createdAt": post.created_at.isoformat() if post.created_at else None,
    }


def notify(
    s: "Session",
    *,
    recipient_id: int,
    sender_id: int | None,
    type: str,
    message: str,
    data: dict | None = None,
) -> Notification | None:
    """
    Best effort. Runs in a savepoint so a failed insert is logged and rolled
    back without touching the caller's pending changes.
    """
    if sender_id is not None and sender_id == recipient_id:
        return None
    try:
        with s.begin_nested():
            n = Notification(
                recipient_id=recipient_id,
                sender_id=sender_id,
                type=type,
                message=message,
                data_json=json.dumps(data) if data else None,
            )
            s.add(n)
        return n
    except SQLAlchemyError:
        logger.exception("Failed to create %s notification for user=%s", type, recipient_id)
        return None


def get_post(s: "Session", post_id: int) -> Post:
    post = s.get(Post, post_id)
    if post is None:
        raise NotFoundError("Post not found")
    return post


def get_visible_post(s: "Session", post_id: int, viewer: "User | None") -> Post:
    post = get_post(s, post_id)
    if post.visibility == "private" and (viewer is None or viewer.id != post.author_id):
        raise NotFoundError("Post not found")
    return post


def feed(s: "Session", page: int = 1, limit: int = 20) -> tuple[list[Post], int, int]:
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or 20), 100))
    stmt = (
        select(Post)
        .where(Post.visibility == "public")
        .order_by(Post.created_at.desc(), Post.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(s.execute(stmt).scalars()), page, limit


def create_post(s: "Session", author: "User", payload: dict) -> Post:
    content = _clean_content(payload.get("content"))
    post_type = str_field(payload, "type", default="post")
    if post_type not in POST_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(POST_TYPES)}")
    visibility = str_field(payload, "visibility", default="public")
    if visibility not in VISIBILITIES:
        raise ValidationError(f"visibility must be one of: {', '.join(VISIBILITIES)}")
    media = payload.get("media")
    if media is not None and not isinstance(media, list):
        raise ValidationError("media must be a list")

    now = datetime.utcnow()
    post = Post(
        author_id=author.id,
        content=content,
        type=post_type,
        visibility=visibility,
        media_json=json.dumps(media) if media else None,
        location=optional_str(payload, "location"),
        created_at=now,
        updated_at=now,
    )
    s.add(post)
    s.flush()
    s.refresh(post)
    return post


def _toggle(s: "Session", post: Post, user: "User", kind: str) -> bool:
    """Returns True when the user ends up with `kind` on the post."""
    existing = s.execute(
        select(PostReaction).where(PostReaction.post_id == post.id, PostReaction.user_id == user.id)
    ).scalar_one_or_none()

    if existing is not None and existing.type == kind:
        post.reactions.remove(existing)
        s.flush()
        return False
    if existing is not None:
        existing.type = kind
    else:
        post.reactions.append(PostReaction(user_id=user.id, type=kind))
    s.flush()
    return True


def toggle_like(s: "Session", post: Post, user: "User") -> tuple[bool, int]:
    liked = _toggle(s, post, user, "like")
    if liked:
        notify(
            s,
            recipient_id=post.author_id,
            sender_id=user.id,
            type="like",
            message=f"{user.public_name} liked your post",
            data={"postId": post.id},
        )
    return liked, post.count_reactions("like")


def toggle_dislike(s: "Session", post: Post, user: "User") -> tuple[bool, int]:
    disliked = _toggle(s, post, user, "dislike")
    return disliked, post.count_reactions("dislike")


def add_comment(s: "Session", post: Post, user: "User", raw_content) -> Comment:
    content = _clean_content(raw_content, what="Comment")
    comment = Comment(post_id=post.id, author_id=user.id, content=content)
    s.add(comment)
    s.flush()
    s.refresh(comment)
    notify(
        s,
        recipient_id=post.author_id,
        sender_id=user.id,
        type="comment",
        message=f"{user.public_name} commented on your post",
        data={"postId": post.id, "commentId": comment.id},
    )
    return comment


def list_comments(s: "Session", post: Post, limit: int = 50) -> list[Comment]:
    limit = max(1, min(int(limit or 50), 200))
    stmt = select(Comment).where(Comment.post_id == post.id).order_by(Comment.created_at.asc(), Comment.id.asc()).limit(limit)
    return list(s.execute(stmt).scalars())


def delete_post(s: "Session", post: Post, user: "User") -> None:
    if post.author_id != user.id:
        raise ForbiddenError("Only the author can delete this post")
    s.delete(post)
    s.flush()


def list_notifications(s: "Session", user: "User", *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    limit = max(1, min(int(limit or 50), 200))
    stmt = select(Notification).where(Notification.recipient_id == user.id)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    return list(s.execute(stmt).scalars())


def mark_notifications_read(s: "Session", user: "User", ids: list[int] | None = None) -> int:
    stmt = update(Notification).where(Notification.recipient_id == user.id, Notification.read.is_(False))
    if ids:
        stmt = stmt.where(Notification.id.in_(ids))
    result = s.execute(stmt.values(read=True))
    return int(result.rowcount or 0)
