"""
CLCA Bridge - Data Models
"""

from .contentdoc import (
    EVENT_FEATURE_KEY,
    GAME_FEATURE_KEY,
    ContentDoc,
    ContentStatus,
    EventFeature,
    GameFeature,
    ImageMeta,
    IngestResult,
    RSVPSummary,
)
from .dlq import DLQContext, DLQEntry, DLQProcessResult, DLQStats, ErrorSnapshot, FailedEntry
from .domain import RSVP, Event, Game, GameSummary, ImageRef

__all__ = [
    # ContentDoc
    "ContentDoc",
    "ContentStatus",
    "EventFeature",
    "GameFeature",
    "ImageMeta",
    "IngestResult",
    "RSVPSummary",
    "EVENT_FEATURE_KEY",
    "GAME_FEATURE_KEY",
    # Source records
    "Event",
    "Game",
    "GameSummary",
    "ImageRef",
    "RSVP",
    # Dead letter queue
    "DLQContext",
    "DLQEntry",
    "DLQProcessResult",
    "DLQStats",
    "ErrorSnapshot",
    "FailedEntry",
]
