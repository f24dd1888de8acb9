from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field, field_validator

ItemT = TypeVar("ItemT")


# --- Post ---

class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=26)
    content: str = Field(min_length=1)
    image_url: str | None = Field(None, max_length=500)


class PostUpdate(BaseModel):
    """
    Partial update.  ``image_url`` semantics: omitted/None keeps the
    current image, ``""`` removes it, any other value replaces it.
    """

    title: str | None = Field(None, min_length=1, max_length=26)
    content: str | None = Field(None, min_length=1)
    image_url: str | None = Field(None, max_length=500)

    def has_any_update(self) -> bool:
        return any(v is not None for v in (self.title, self.content, self.image_url))


# --- Comment ---

class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=1000)

    @field_validator("content")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value


class CommentUpdate(CommentCreate):
    pass


# --- Responses ---

class AuthorInfo(BaseModel):
    nickname: str
    profile_image_url: str | None = None


class PostStats(BaseModel):
    like: int
    comment: int
    view: int


class PostSummary(BaseModel):
    post_id: int
    title: str
    author: AuthorInfo
    created_at: datetime
    stats: PostStats
    is_liked: bool = False


class PostDetail(BaseModel):
    post_id: int
    title: str
    content: str
    image_url: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    author: AuthorInfo
    stats: PostStats
    is_liked: bool
    is_author: bool


class CommentSummary(BaseModel):
    comment_id: int
    content: str
    author: AuthorInfo
    created_at: datetime
    is_author: bool


class LikeResult(BaseModel):
    is_liked: bool
    like_count: int


# --- Pagination ---

class CursorPage(BaseModel, Generic[ItemT]):
    """One keyset page; routers parameterise it with the item schema."""

    items: list[ItemT]
    last_seen_id: int | None
    has_next: bool
    limit: int


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_posts: int
    total_comments: int
    total_likes: int
    total_users: int
    view_cache: dict = {}
