from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from board.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Soft-delete lifecycle
# ---------------------------------------------------------------------------
class Lifecycle(str, enum.Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class SoftDeleteMixin:
    """
    Explicit lifecycle for rows that are hidden rather than removed.

    Every read path filters with ``Model.live()`` so there is exactly one
    definition of "not deleted" per entity.
    """

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    @property
    def status(self) -> Lifecycle:
        return Lifecycle.DELETED if self.deleted_at is not None else Lifecycle.ACTIVE

    @property
    def is_deleted(self) -> bool:
        return self.status is Lifecycle.DELETED

    def soft_delete(self, at: datetime | None = None) -> None:
        self.deleted_at = at or utcnow()

    @classmethod
    def live(cls):
        """SQL predicate selecting rows that have not been soft-deleted."""
        return cls.deleted_at.is_(None)


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------
class User(SoftDeleteMixin, Base):
    """Board member.  ``deleted_at`` marks a withdrawn account."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    nickname: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    profile_image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Post
# ---------------------------------------------------------------------------
class Post(SoftDeleteMixin, Base):
    __tablename__ = "posts"

    __table_args__ = (
        # Live-feed keyset scans: WHERE deleted_at IS NULL AND id < ? ORDER BY id DESC
        Index("ix_posts_deleted_at_id", "deleted_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(26), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True
    )

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )

    def belongs_to(self, user_id: int | None) -> bool:
        return self.user_id == user_id


# ---------------------------------------------------------------------------
# PostImage
# ---------------------------------------------------------------------------
class PostImage(SoftDeleteMixin, Base):
    __tablename__ = "post_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    image_url: Mapped[str] = mapped_column(String(500), nullable=False)
    image_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_main: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    post_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("posts.id"), nullable=False, index=True
    )


# ---------------------------------------------------------------------------
# PostAggregate
# ---------------------------------------------------------------------------
class PostAggregate(Base):
    """
    Per-post counters.  The primary key is the post's own id (assigned,
    never generated) so the row is a strict one-to-one companion of its
    Post.
    """

    __tablename__ = "post_aggregates"

    __table_args__ = (
        CheckConstraint("view_count >= 0", name="ck_post_aggregates_view_count"),
        CheckConstraint("like_count >= 0", name="ck_post_aggregates_like_count"),
        CheckConstraint("comment_count >= 0", name="ck_post_aggregates_comment_count"),
    )

    post_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("posts.id"), primary_key=True, autoincrement=False
    )
    view_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    like_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    comment_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)


# ---------------------------------------------------------------------------
# Comment
# ---------------------------------------------------------------------------
class Comment(SoftDeleteMixin, Base):
    __tablename__ = "comments"

    __table_args__ = (
        Index("ix_comments_post_id_id", "post_id", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=True
    )

    post_id: Mapped[int] = mapped_column(Integer, ForeignKey("posts.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )

    def belongs_to_post(self, post_id: int) -> bool:
        return self.post_id == post_id

    def is_written_by(self, user_id: int | None) -> bool:
        return self.user_id == user_id


# ---------------------------------------------------------------------------
# PostLike
# ---------------------------------------------------------------------------
class PostLike(Base):
    """A live like.  Toggling off removes the row; there is no history."""

    __tablename__ = "post_likes"

    __table_args__ = (
        UniqueConstraint("post_id", "user_id", name="uq_post_likes_post_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    post_id: Mapped[int] = mapped_column(Integer, ForeignKey("posts.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
