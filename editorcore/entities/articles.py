"""Article entity.

Schema, relations, list filters and payload preparation for the
``articles`` collection.
"""

import math
import os
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from editorcore.core.interfaces import CollectionConfig, FilterColumn, RelationSpec
from editorcore.core.types import Identity, Record
from editorcore.utilities.slug import generate_slug

# Public site root for canonical URLs
ARTICLE_BASE_URL = os.environ.get("EDITORCORE_ARTICLE_BASE_URL", "https://example.com/articles")

WORDS_PER_MINUTE = 200

ArticleStatus = Literal["draft", "pending_approval", "approved", "published", "archived"]


class ArticleDraft(BaseModel):
    """Validation schema for the article editor form."""

    model_config = ConfigDict(extra="allow")

    title: str = Field(min_length=5, max_length=200)
    slug: str | None = Field(default=None, max_length=100, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    excerpt: str | None = Field(default=None, max_length=500)
    content: dict[str, Any] | str
    status: ArticleStatus = "draft"
    category_id: int | str
    meta_title: str | None = Field(default=None, max_length=60)
    meta_description: str | None = Field(default=None, max_length=160)
    canonical_url: str | None = None
    featured_image: str | None = None
    tags: list[str] = []
    meta_keywords: list[str] = []
    co_authors: list[str] = []
    is_featured: bool = False

    @field_validator("slug", "canonical_url", "featured_image", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("canonical_url", "featured_image")
    @classmethod
    def check_url(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return value

    @field_validator("content")
    @classmethod
    def check_content(cls, value: dict[str, Any] | str) -> dict[str, Any] | str:
        if isinstance(value, str) and not value.strip():
            raise ValueError("content is required")
        if isinstance(value, dict) and not value:
            raise ValueError("content is required")
        return value


def word_count(content: Any) -> int | None:
    if isinstance(content, dict):
        count = content.get("wordCount", content.get("word_count"))
        return int(count) if count else None
    if isinstance(content, str) and content.strip():
        return len(content.split())
    return None


def prepare_article(data: Record, identity: Identity, is_update: bool) -> Record:
    """Fill derived fields before an article is written.

    - slug from the title when missing
    - canonical URL from the slug when missing
    - read time in minutes from the content word count
    - blank entries dropped from list fields
    - author defaults to the creating user
    """
    prepared = dict(data)

    if not prepared.get("slug") and prepared.get("title"):
        prepared["slug"] = generate_slug(prepared["title"], max_length=100)

    if not prepared.get("canonical_url") and prepared.get("slug"):
        prepared["canonical_url"] = f"{ARTICLE_BASE_URL.rstrip('/')}/{prepared['slug']}"

    words = word_count(prepared.get("content"))
    if words:
        prepared["read_time"] = math.ceil(words / WORDS_PER_MINUTE)

    for name in ("tags", "meta_keywords", "co_authors"):
        if name in prepared:
            prepared[name] = [item for item in prepared[name] or [] if item]

    if prepared.get("scheduled_at") == "":
        prepared["scheduled_at"] = None

    if not is_update and not prepared.get("author_id"):
        prepared["author_id"] = identity.user_id

    return prepared


ARTICLES = CollectionConfig(
    name="articles",
    entity="article",
    plural="articles",
    relations=(
        RelationSpec("author", "profiles", "author_id", fields=("id", "full_name", "avatar_url")),
        RelationSpec("category", "categories", "category_id", fields=("id", "name", "slug", "color")),
        RelationSpec("co_author_profiles", "profiles", "co_authors", fields=("id", "full_name"), many=True),
    ),
    search_columns=("title", "excerpt"),
    filter_columns={
        "status": FilterColumn("status"),
        "category": FilterColumn("category_id"),
        "author": FilterColumn("author_id"),
        "featured": FilterColumn("is_featured", values={"featured": True, "not-featured": False}),
    },
    schema=ArticleDraft,
    prepare=prepare_article,
    updater_relation=RelationSpec("updater", "profiles", "updated_by", fields=("id", "full_name")),
)
