from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.modulekit.models import Base, User


class Post(Base):
    __tablename__ = "posts"
    __table_args__ = (
        Index("idx_posts_visibility_created", "visibility", "created_at"),
        CheckConstraint("type IN ('post','prediction','group_invite')", name="ck_posts_type"),
        CheckConstraint("visibility IN ('public','private')", name="ck_posts_visibility"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="post")
    visibility: Mapped[str] = mapped_column(String(16), nullable=False, default="public")
    media_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    author: Mapped[User] = relationship("User", lazy="joined")
    reactions: Mapped[list["PostReaction"]] = relationship(
        "PostReaction", back_populates="post", cascade="all, delete-orphan", lazy="selectin"
    )
    comments: Mapped[list["Comment"]] = relationship(
        "Comment", back_populates="post", cascade="all, delete-orphan", lazy="noload", passive_deletes=True
    )

    @property
    def media(self) -> list:
        if not self.media_json:
            return []
        try:
            data = json.loads(self.media_json)
        except ValueError:
            return []
        return data if isinstance(data, list) else []

    def count_reactions(self, kind: str) -> int:
        return sum(1 for r in self.reactions if r.type == kind)

    def reaction_of(self, user_id: int | None) -> str | None:
        if user_id is None:
            return None
        for r in self.reactions:
            if r.user_id == user_id:
                return r.type
        return None


class PostReaction(Base):
    __tablename__ = "post_reactions"
    __table_args__ = (
        UniqueConstraint("post_id", "user_id", name="uq_post_reactions_post_user"),
        CheckConstraint("type IN ('like','dislike')", name="ck_post_reactions_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    post_id: Mapped[int] = mapped_column(ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    post: Mapped[Post] = relationship("Post", back_populates="reactions")


class Comment(Base):
    __tablename__ = "comments"
    __table_args__ = (Index("idx_comments_post_created", "post_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    post_id: Mapped[int] = mapped_column(ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    post: Mapped[Post] = relationship("Post", back_populates="comments")
    author: Mapped[User] = relationship("User", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "postId": self.post_id,
            "content": self.content,
            "author": self.author.to_public_dict() if self.author else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("idx_notifications_recipient", "recipient_id", "read", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    sender_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)  # like, comment, ...
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        data = None
        if self.data_json:
            try:
                data = json.loads(self.data_json)
            except ValueError:
                data = None
        return {
            "id": self.id,
            "type": self.type,
            "message": self.message,
            "senderId": self.sender_id,
            "data": data,
            "read": self.read,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
