"""
CLCA Bridge - ContentDoc Mapper

Converts TTG events and games into ContentDocs for CLCA.

Architecture:
- STATUS_TABLE: the one mapping from TTG status to ContentDoc status, shared
  by events and games
- ContentDocMapper: builds ids, tags, feature blocks and timestamps, then
  validates the result before returning it
- No I/O. The only non-determinism is the "now" fallback for timestamps that
  cannot be parsed, which is logged

Determinism:
    id         = "<ownerSystem>:<contentType>:<localId>"
    originalId = "<contentType>:<localId>"
    tags       = fixed prefix + optional derived tags, always in the same order

Usage:
    mapper = ContentDocMapper(base_url="https://ttg.example.com")
    doc = mapper.map_event(event)
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..models.contentdoc import (
    EVENT_FEATURE_KEY,
    GAME_FEATURE_KEY,
    ContentDoc,
    ContentStatus,
    EventFeature,
    GameFeature,
    ImageMeta,
    RSVPSummary,
)
from ..models.domain import Event, Game
from .contentdoc_validator import DEFAULT_OWNER_SYSTEM, ContentDocValidator

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# TTG status -> ContentDoc status. Event statuses and game catalog statuses
# share this table; anything not listed maps to "pending".
STATUS_TABLE: dict[str, ContentStatus] = {
    "upcoming": "published",
    "active": "published",
    "completed": "archived",
    "inactive": "archived",
    "cancelled": "deleted",
    "draft": "draft",
    "pending": "pending",
}
DEFAULT_CONTENT_STATUS: ContentStatus = "pending"

UNKNOWN_GAME_NAME = "Unknown Game"
DEFAULT_EVENT_TYPE = "game_night"
DEFAULT_DIFFICULTY = "medium"
DEFAULT_BASE_URL = "https://ttg.example.com"

# RSVP status -> summary bucket
RSVP_BUCKETS: dict[str, str] = {
    "confirmed": "yes",
    "declined": "no",
    "cancelled": "no",
    "maybe": "maybe",
    "interested": "maybe",
    "waitlist": "waitlist",
    "waiting": "waitlist",
}

_SLUG_STRIP = re.compile(r"[^\w\s-]")
_SLUG_COLLAPSE = re.compile(r"[\s_-]+")
_WHITESPACE = re.compile(r"\s+")


# =============================================================================
# Pure Helpers
# =============================================================================


def map_status(domain_status: Optional[str]) -> ContentStatus:
    """Map a TTG status to a ContentDoc status (never None)."""
    return STATUS_TABLE.get((domain_status or "").strip().lower(), DEFAULT_CONTENT_STATUS)


def format_iso(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_iso(value: str) -> datetime:
    """datetime.fromisoformat that also accepts a trailing Z."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def create_slug(title: str) -> str:
    """URL-friendly slug: lowercase, punctuation dropped, hyphen-separated."""
    slug = _SLUG_STRIP.sub("", title.lower())
    slug = _SLUG_COLLAPSE.sub("-", slug)
    return slug.strip("-")


def player_count_bucket(number_of_players: Union[int, str, None]) -> Optional[str]:
    """Bucket a "min-max" player range into small/medium/large."""
    if number_of_players is None:
        return None
    text = str(number_of_players)
    if "-" not in text:
        return None
    try:
        low, high = (int(part.strip()) for part in text.split("-", 1))
    except ValueError:
        return None
    if low <= 2 and high <= 4:
        return "small"
    if low <= 4 and high <= 8:
        return "medium"
    return "large"


def _tag(namespace: str, value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return f"{namespace}:{text}"


def _ordered_tags(candidates: Iterable[Optional[str]]) -> list[str]:
    """Drop blanks and repeats, keep first-seen order."""
    seen: set[str] = set()
    tags: list[str] = []
    for tag in candidates:
        if tag and tag not in seen:
            seen.add(tag)
            tags.append(tag)
    return tags


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Mapper
# =============================================================================


class ContentDocMapper:
    """Maps TTG events and games to ContentDocs."""

    def __init__(
        self,
        owner_system: str = DEFAULT_OWNER_SYSTEM,
        base_url: str = DEFAULT_BASE_URL,
        tz_name: str = "UTC",
        validator: Optional[ContentDocValidator] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.owner_system = owner_system
        self.base_url = base_url.rstrip("/")
        self.validator = validator or ContentDocValidator(owner_system)
        self.clock = clock
        try:
            self.tz = ZoneInfo(tz_name)
        except ZoneInfoNotFoundError:
            logger.warning("Unknown timezone %r, falling back to UTC", tz_name)
            self.tz = ZoneInfo("UTC")

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def content_id(self, content_type: str, local_id: Union[int, str]) -> str:
        return f"{self.owner_system}:{content_type}:{local_id}"

    @staticmethod
    def original_id(content_type: str, local_id: Union[int, str]) -> str:
        return f"{content_type}:{local_id}"

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def map_event(self, event: Event) -> ContentDoc:
        """
        Convert a TTG event to a validated ContentDoc.

        Raises:
            ContentDocValidationError: if the mapped document is not sendable
        """
        features = {EVENT_FEATURE_KEY: self._event_feature(event).to_wire()}
        if event.has_game:
            features[GAME_FEATURE_KEY] = self._game_feature_from_event(event).to_wire()

        doc = ContentDoc(
            id=self.content_id("event", event.id),
            title=event.title,
            description=event.description or None,
            status=map_status(event.status),
            tags=self.event_tags(event),
            features=features,
            rsvp_summary=self._rsvp_summary(event),
            images=[
                ImageMeta(url=img.url, caption=img.caption, width=img.width, height=img.height)
                for img in event.images
            ]
            or None,
            owner_system=self.owner_system,
            original_id=self.original_id("event", event.id),
            owner_url=f"{self.base_url}/events/{event.source_id}/{create_slug(event.title)}",
            created_at=self.to_iso(event.created_at),
            updated_at=self.to_iso(event.updated_at),
        )
        return self._validated(doc, event_id=event.source_id)

    def event_tags(self, event: Event) -> list[str]:
        game_genre = event.game.genre if event.game and event.game.genre else None
        location = _WHITESPACE.sub("-", event.location.strip().lower()) if event.location else None
        return _ordered_tags(
            [
                "content-type:event",
                f"system:{self.owner_system}",
                _tag("event-type", event.event_type or DEFAULT_EVENT_TYPE),
                _tag("status", event.status),
                _tag("game-id", event.game_id) if event.has_game else None,
                _tag("game-genre", game_genre.lower() if game_genre else None),
                _tag("location", location),
            ]
        )

    def _event_feature(self, event: Event) -> EventFeature:
        return EventFeature(
            start_time=self.build_iso_timestamp(event.date, event.time),
            end_time=self.build_iso_timestamp(event.date, event.end_time or event.time),
            location=event.location,
            min_players=event.min_players,
            max_players=event.max_players,
        )

    def _game_feature_from_event(self, event: Event) -> GameFeature:
        summary = event.game
        return GameFeature(
            game_id=str(event.game_id),
            game_name=event.game_name or (summary.title if summary else None) or UNKNOWN_GAME_NAME,
            genre=summary.genre if summary else None,
            player_count=event.max_players
            or (summary.number_of_players if summary else None),
        )

    @staticmethod
    def _rsvp_summary(event: Event) -> RSVPSummary:
        counts = {"yes": 0, "no": 0, "maybe": 0, "waitlist": 0}
        for rsvp in event.rsvps:
            bucket = RSVP_BUCKETS.get(rsvp.status.lower())
            if bucket:
                counts[bucket] += 1
        return RSVPSummary(**counts, capacity=event.max_players or None)

    # -------------------------------------------------------------------------
    # Games
    # -------------------------------------------------------------------------

    def map_game(self, game: Game) -> ContentDoc:
        """
        Convert a TTG catalog game to a validated ContentDoc.

        Unapproved games map as drafts; approved games map their catalog
        status through STATUS_TABLE.
        """
        domain_status = game.status if game.approved else "draft"

        doc = ContentDoc(
            id=self.content_id("game", game.id),
            title=game.title,
            description=game.description or None,
            status=map_status(domain_status),
            tags=self.game_tags(game),
            features={
                GAME_FEATURE_KEY: GameFeature(
                    game_id=str(game.id),
                    game_name=game.title or UNKNOWN_GAME_NAME,
                    genre=game.genre or None,
                    player_count=game.number_of_players,
                ).to_wire()
            },
            images=[ImageMeta(url=game.image)] if game.image else None,
            owner_system=self.owner_system,
            original_id=self.original_id("game", game.id),
            owner_url=f"{self.base_url}/games/{game.id}/{create_slug(game.title)}",
            created_at=self.to_iso(game.created_at),
            updated_at=self.to_iso(game.updated_at),
        )
        return self._validated(doc, event_id=game.source_id)

    def game_tags(self, game: Game) -> list[str]:
        bucket = player_count_bucket(game.number_of_players)
        return _ordered_tags(
            [
                "content-type:game",
                f"system:{self.owner_system}",
                _tag("genre", game.genre.lower() if game.genre else None),
                _tag("difficulty", game.difficulty or DEFAULT_DIFFICULTY),
                _tag("status", game.status),
                *(_tag("custom", tag.lower()) for tag in game.tags),
                _tag("player-count", bucket),
            ]
        )

    # -------------------------------------------------------------------------
    # Timestamps
    # -------------------------------------------------------------------------

    def build_iso_timestamp(self, date: str, time: str) -> str:
        """
        Combine TTG date ("2026-11-14") and time ("19:00") into UTC ISO-8601.

        Naive values are read in the configured TTG timezone. Unparseable
        input is logged and replaced with the current time.
        """
        try:
            value = datetime.fromisoformat(f"{date.strip()}T{time.strip()}")
        except (AttributeError, ValueError) as e:
            logger.warning(
                "Failed to parse date/time, using current time: date=%r time=%r error=%s",
                date,
                time,
                e,
            )
            return format_iso(self.clock())

        if value.tzinfo is None:
            value = value.replace(tzinfo=self.tz)
        return format_iso(value)

    def to_iso(self, value: Union[datetime, str, None]) -> str:
        """Normalize a stored timestamp; missing or invalid values become now."""
        if isinstance(value, datetime):
            return format_iso(value)

        if isinstance(value, str) and value.strip():
            try:
                return format_iso(parse_iso(value))
            except ValueError:
                logger.warning("Invalid timestamp %r, using current time", value)

        return format_iso(self.clock())

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _validated(self, doc: ContentDoc, event_id: str) -> ContentDoc:
        try:
            self.validator.validate(doc)
        except Exception:
            logger.error(
                "Failed to map %s to ContentDoc",
                doc.original_id,
                extra={"event_id": event_id, "content_doc_id": doc.id},
            )
            raise

        logger.info(
            "ContentDoc mapped successfully",
            extra={"event_id": event_id, "content_doc_id": doc.id, "status": doc.status},
        )
        return doc
