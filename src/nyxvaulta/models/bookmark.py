"""Bookmark data models."""

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Bookmark(BaseModel):
    """A stored bookmark row as returned by the record store."""

    id: str = Field(..., description="Store-generated identifier")
    user_id: str = Field(..., description="Owner identity, set server-side")
    title: str = Field(..., description="Bookmark title")
    url: str = Field(..., description="The bookmarked URL (presence-checked only)")
    description: Optional[str] = Field(None, description="User notes")
    folder_id: Optional[str] = Field(None, description="Folder reference (unused)")
    tags: Optional[List[str]] = Field(None, description="Ordered tag labels")
    favicon_url: Optional[str] = Field(None, description="Favicon URL (never written)")
    visit_count: int = Field(default=0, description="Visit counter (never incremented)")
    last_visited: Optional[datetime] = Field(None, description="Last visit (never written)")
    is_favorite: bool = Field(default=False, description="Favorite flag")
    created_at: datetime = Field(..., description="Store-set creation timestamp")

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "id": "550e8400-e29b-41d4-a716-446655440000",
                "user_id": "9b2f4c1e-7f7a-4b7e-bb43-2d5f3e1a9c10",
                "title": "CPython Official Repository",
                "url": "https://github.com/python/cpython",
                "description": "Official Python implementation source code",
                "tags": ["programming", "open-source"],
                "visit_count": 0,
                "is_favorite": False,
                "created_at": "2026-02-03T10:30:00Z",
            }
        },
    )


class Folder(BaseModel):
    """A folder row. Persisted and access-controlled but not surfaced anywhere."""

    id: str
    user_id: str
    name: str
    color: str = "#3B82F6"
    created_at: datetime

    model_config = ConfigDict(extra="ignore")


class CreateBookmarkRequest(BaseModel):
    """Request body for creating a bookmark.

    Title and url are optional at the schema level so that a missing value is
    reported as a flat validation error by the bookmark manager rather than a
    field-level schema error. Unknown keys such as ``user_id`` are dropped.
    """

    title: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    folder_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class UpdateBookmarkRequest(BaseModel):
    """Request body for a partial update. Absent keys mean "leave unchanged"."""

    title: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    is_favorite: Optional[bool] = None
    tags: Optional[List[str]] = None
    folder_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("is_favorite", mode="before")
    @classmethod
    def validate_is_favorite(cls, v: Any) -> Any:
        """Reject explicit null for the favorite flag."""
        if v is None:
            raise ValueError("is_favorite cannot be null")
        return v


class _Unset:
    """Marker for a patch field that was not supplied."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class BookmarkPatch:
    """Sparse bookmark update.

    Every field is either ``UNSET`` (leave the column alone) or the new value,
    which may legitimately be ``None`` or an empty list.
    """

    title: Union[str, _Unset] = UNSET
    url: Union[str, _Unset] = UNSET
    description: Union[Optional[str], _Unset] = UNSET
    is_favorite: Union[bool, _Unset] = UNSET
    tags: Union[Optional[List[str]], _Unset] = UNSET
    folder_id: Union[str, _Unset] = UNSET

    @classmethod
    def from_request(cls, request: UpdateBookmarkRequest) -> "BookmarkPatch":
        """Build a patch from the keys actually present in the request body."""
        supplied = request.model_fields_set
        values: Dict[str, Any] = {}
        for name in ("title", "url", "description", "is_favorite", "tags"):
            if name in supplied:
                values[name] = getattr(request, name)

        # A falsy folder reference is ignored rather than clearing the column
        if "folder_id" in supplied and request.folder_id:
            values["folder_id"] = request.folder_id

        return cls(**values)

    def changes(self) -> Dict[str, Any]:
        """Return only the supplied fields, keyed by column name."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.changes()
