"""Pydantic models shared across feed components."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

MAX_IMAGES = 8
MAX_DESCRIPTION = 240


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


class Item(BaseModel):
    """One catalog entry, as written into the feed."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    title: str
    price: Optional[float] = None
    primary_image: str = Field(alias="primaryImage")
    images: List[str] = Field(default_factory=list, max_length=MAX_IMAGES)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION)
    category: str = ""
    url: str = ""  # canonical view URL, used for re-visiting
    outbound_url: str = Field(default="", alias="outboundUrl")
    last_seen: str = Field(default_factory=utc_now_iso, alias="lastSeen")

    def to_feed_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CategoryFeed(BaseModel):
    name: str
    # Stored as plain JSON objects so entries written by older runs survive untouched.
    items: List[Dict[str, Any]] = Field(default_factory=list)


class Feed(BaseModel):
    """The persisted artifact."""

    model_config = ConfigDict(populate_by_name=True)

    generated_at: str = Field(default_factory=utc_now_iso, alias="generatedAt")
    categories: List[CategoryFeed] = Field(default_factory=list)

    def category(self, name: str) -> Optional[CategoryFeed]:
        for entry in self.categories:
            if entry.name == name:
                return entry
        return None

    def item_count(self) -> int:
        return sum(len(c.items) for c in self.categories)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class WorkUnit:
    """One input row: a source URL and an optional explicit category."""

    source_url: str
    category: Optional[str] = None


@dataclass
class PartialItem:
    """Whatever a single extraction strategy managed to fill."""

    title: str = ""
    price: Optional[float] = None
    images: List[str] = field(default_factory=list)
    description: Optional[str] = None

    @property
    def image(self) -> str:
        return self.images[0] if self.images else ""

    def is_sufficient(self) -> bool:
        return bool(self.title) and bool(self.images)

    def fill_from(self, other: "PartialItem") -> None:
        """Fill empty fields from ``other``; values already present win."""
        if not self.title and other.title:
            self.title = other.title
        if self.price is None and other.price is not None:
            self.price = other.price
        if not self.images and other.images:
            self.images = list(other.images)
        if not self.description and other.description:
            self.description = other.description
