"""
CLCA Bridge - ContentDoc Schema

The versioned cross-system content envelope exchanged with CLCA.

Wire format is camelCase JSON (ownerSystem, originalId, rsvpSummary, ...);
Python attributes are snake_case. Use to_wire() for the request body and
ContentDoc.model_validate(payload) to load a stored document.

Feature blocks live under versioned keys. Keys are append-only: a breaking
change to a block introduces ".../v2" next to ".../v1", never a reshaped v1.

Usage:
    doc = ContentDoc(
        id="ttg:event:42",
        title="Board Game Night",
        status="published",
        tags=["content-type:event", "system:ttg"],
        features={EVENT_FEATURE_KEY: {...}},
        owner_system="ttg",
        original_id="event:42",
        created_at="2026-10-01T10:00:00.000Z",
        updated_at="2026-10-02T10:00:00.000Z",
    )
    body = doc.to_wire()
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ContentStatus = Literal["draft", "published", "pending", "archived", "deleted"]

CONTENT_STATUSES: frozenset[str] = frozenset(
    {"draft", "published", "pending", "archived", "deleted"}
)

EVENT_FEATURE_KEY = "feat:event/v1"
GAME_FEATURE_KEY = "feat:game/v1"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready camelCase dict without unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# =============================================================================
# Feature Blocks
# =============================================================================


class EventFeature(_WireModel):
    """Payload of feat:event/v1."""

    start_time: str
    end_time: str
    location: str
    min_players: Optional[int] = None
    max_players: Optional[int] = None


class GameFeature(_WireModel):
    """Payload of feat:game/v1."""

    game_id: str
    game_name: str
    genre: Optional[str] = None
    player_count: Optional[Union[int, str]] = None


# =============================================================================
# Supporting Blocks
# =============================================================================


class RSVPSummary(_WireModel):
    """Snapshot of RSVP counts at mapping time."""

    yes: int = Field(default=0, ge=0)
    no: int = Field(default=0, ge=0)
    maybe: int = Field(default=0, ge=0)
    waitlist: int = Field(default=0, ge=0)
    capacity: Optional[int] = None


class ImageMeta(_WireModel):
    """Reference to an image by URL. Binary payloads are never embedded."""

    url: str
    caption: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


# =============================================================================
# ContentDoc
# =============================================================================


class ContentDoc(_WireModel):
    """
    Canonical content envelope.

    (owner_system, original_id) is the idempotency key; updated_at is the
    conflict-resolution clock on the receiving side.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    id: str = ""
    title: str = ""
    description: Optional[str] = None
    status: ContentStatus = "pending"
    tags: list[str] = Field(default_factory=list)
    features: dict[str, dict[str, Any]] = Field(default_factory=dict)
    rsvp_summary: Optional[RSVPSummary] = None
    images: Optional[list[ImageMeta]] = None
    owner_system: str = ""
    original_id: Optional[str] = None
    owner_url: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def idempotency_key(self) -> tuple[str, Optional[str]]:
        return (self.owner_system, self.original_id)

    @property
    def event_feature(self) -> Optional[dict[str, Any]]:
        return self.features.get(EVENT_FEATURE_KEY)

    @property
    def game_feature(self) -> Optional[dict[str, Any]]:
        return self.features.get(GAME_FEATURE_KEY)


class IngestResult(_WireModel):
    """Body of a 2xx response from the ingest endpoint."""

    status: Literal["created", "updated", "noop"]
    id: str
    ingest_request_id: Optional[str] = None
