"""
CLCA Bridge - Source Records

Event and Game records as read from the TTG stores. These are boundary
types: the pipeline only reads them, it never writes them back. Field
aliases follow the camelCase documents exported from Firestore.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Timestamp = Union[datetime, str, None]


class _SourceModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class RSVP(_SourceModel):
    player_id: Optional[Union[int, str]] = None
    status: str
    participants: Optional[int] = None


class GameSummary(_SourceModel):
    """Denormalized game fields attached to an event."""

    title: Optional[str] = None
    genre: Optional[str] = None
    number_of_players: Optional[Union[int, str]] = None


class ImageRef(_SourceModel):
    url: str
    caption: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


class Event(_SourceModel):
    id: Union[int, str]
    firebase_doc_id: Optional[str] = None
    title: str = ""
    description: str = ""
    date: str = ""
    time: str = ""
    end_time: str = ""
    location: str = ""
    status: str = "upcoming"
    event_type: Optional[str] = None
    game_id: Optional[Union[int, str]] = None
    game_name: Optional[str] = None
    game: Optional[GameSummary] = None
    min_players: Optional[int] = None
    max_players: Optional[int] = None
    rsvps: list[RSVP] = Field(default_factory=list)
    images: list[ImageRef] = Field(default_factory=list)
    created_at: Timestamp = None
    updated_at: Timestamp = None

    @property
    def source_id(self) -> str:
        """Identifier used for logs, sync status and queue lookups."""
        return self.firebase_doc_id or str(self.id)

    @property
    def has_game(self) -> bool:
        # Firestore events default gameId to 0 when no game is attached
        return self.game_id not in (None, "", 0, "0")


class Game(_SourceModel):
    id: Union[int, str]
    title: str = ""
    description: str = ""
    genre: str = ""
    number_of_players: Optional[Union[int, str]] = None
    difficulty: Optional[str] = None
    status: str = "active"
    approved: bool = False
    tags: list[str] = Field(default_factory=list)
    image: Optional[str] = None
    created_at: Timestamp = None
    updated_at: Timestamp = None

    @property
    def source_id(self) -> str:
        return str(self.id)
