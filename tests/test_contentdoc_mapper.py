"""
Tests for the ContentDoc Mapper.

Covers ids, status mapping, tags, feature blocks, RSVP summary and
timestamp handling for events and catalog games.
"""

from datetime import datetime, timezone

import pytest

from clca_bridge.core.errors import ContentDocValidationError, ValidationErrorKind
from clca_bridge.models.contentdoc import CONTENT_STATUSES, EVENT_FEATURE_KEY, GAME_FEATURE_KEY
from clca_bridge.services.contentdoc_mapper import (
    STATUS_TABLE,
    ContentDocMapper,
    create_slug,
    format_iso,
    map_status,
    player_count_bucket,
)

# =============================================================================
# Unit Tests: pure helpers
# =============================================================================


class TestMapStatus:
    """Tests for the shared status table."""

    @pytest.mark.parametrize(
        "domain_status, expected",
        [
            ("upcoming", "published"),
            ("active", "published"),
            ("completed", "archived"),
            ("inactive", "archived"),
            ("cancelled", "deleted"),
            ("draft", "draft"),
            ("pending", "pending"),
        ],
    )
    def test_known_statuses(self, domain_status, expected):
        assert map_status(domain_status) == expected

    def test_unknown_and_missing_status_fall_back_to_pending(self):
        assert map_status("postponed") == "pending"
        assert map_status("") == "pending"
        assert map_status(None) == "pending"

    def test_status_is_case_insensitive(self):
        assert map_status("  Upcoming ") == "published"

    def test_every_table_value_is_a_content_status(self):
        assert set(STATUS_TABLE.values()) <= CONTENT_STATUSES


class TestHelpers:
    def test_create_slug(self):
        assert create_slug("Friday Board Game Night!") == "friday-board-game-night"
        assert create_slug("  D&D -- One_Shot  ") == "dd-one-shot"

    def test_format_iso_uses_milliseconds_and_z(self):
        value = datetime(2026, 1, 2, 3, 4, 5, 678900, tzinfo=timezone.utc)
        assert format_iso(value) == "2026-01-02T03:04:05.678Z"

    @pytest.mark.parametrize(
        "players, bucket",
        [
            ("2-4", "small"),
            ("3-4", "medium"),
            ("4-8", "medium"),
            ("2-10", "large"),
            ("5", None),
            (None, None),
            ("a-b", None),
        ],
    )
    def test_player_count_bucket(self, players, bucket):
        assert player_count_bucket(players) == bucket


# =============================================================================
# Unit Tests: events
# =============================================================================


class TestMapEvent:
    """Tests for ContentDocMapper.map_event."""

    def test_identity_fields(self, mapper, make_event):
        doc = mapper.map_event(make_event())

        assert doc.id == "ttg:event:42"
        assert doc.original_id == "event:42"
        assert doc.owner_system == "ttg"
        assert doc.idempotency_key == ("ttg", "event:42")
        assert doc.owner_url == "https://ttg.example.com/events/evt-abc/friday-board-game-night"

    def test_status_and_tags(self, mapper, make_event):
        doc = mapper.map_event(make_event())

        assert doc.status == "published"
        assert doc.tags == [
            "content-type:event",
            "system:ttg",
            "event-type:game_night",
            "status:upcoming",
            "game-id:7",
            "game-genre:strategy",
            "location:main-hall",
        ]

    def test_event_feature_block(self, mapper, make_event):
        doc = mapper.map_event(make_event())

        assert doc.features[EVENT_FEATURE_KEY] == {
            "startTime": "2026-11-14T19:00:00.000Z",
            "endTime": "2026-11-14T23:00:00.000Z",
            "location": "Main Hall",
            "minPlayers": 3,
            "maxPlayers": 4,
        }

    def test_game_feature_block_when_game_attached(self, mapper, make_event):
        doc = mapper.map_event(make_event())

        assert doc.features[GAME_FEATURE_KEY] == {
            "gameId": "7",
            "gameName": "Catan",
            "genre": "Strategy",
            "playerCount": 4,
        }

    def test_no_game_feature_without_game(self, mapper, make_event):
        doc = mapper.map_event(make_event(gameId=0, gameName=None, game=None))

        assert GAME_FEATURE_KEY not in doc.features
        assert not any(tag.startswith("game-") for tag in doc.tags)

    def test_game_name_falls_back_to_unknown(self, mapper, make_event):
        doc = mapper.map_event(make_event(gameName=None, game=None, maxPlayers=None))

        assert doc.features[GAME_FEATURE_KEY] == {"gameId": "7", "gameName": "Unknown Game"}

    def test_rsvp_summary(self, mapper, make_event):
        doc = mapper.map_event(make_event())

        assert doc.rsvp_summary is not None
        assert doc.rsvp_summary.to_wire() == {
            "yes": 2,
            "no": 1,
            "maybe": 1,
            "waitlist": 1,
            "capacity": 4,
        }

    def test_cancelled_event_maps_to_deleted(self, mapper, make_event):
        doc = mapper.map_event(make_event(status="cancelled"))

        assert doc.status == "deleted"
        assert "status:cancelled" in doc.tags

    def test_end_time_falls_back_to_start_time(self, mapper, make_event):
        doc = mapper.map_event(make_event(endTime=""))

        feature = doc.features[EVENT_FEATURE_KEY]
        assert feature["endTime"] == feature["startTime"] == "2026-11-14T19:00:00.000Z"

    def test_naive_time_read_in_configured_timezone(self, clock, make_event):
        mapper = ContentDocMapper(tz_name="America/New_York", clock=clock)

        doc = mapper.map_event(make_event())

        assert doc.features[EVENT_FEATURE_KEY]["startTime"] == "2026-11-15T00:00:00.000Z"

    def test_unparseable_date_uses_clock(self, mapper, make_event):
        doc = mapper.map_event(make_event(date="someday", time="late"))

        assert doc.features[EVENT_FEATURE_KEY]["startTime"] == "2026-10-19T12:00:00.000Z"

    def test_missing_timestamps_use_clock(self, mapper, make_event):
        doc = mapper.map_event(make_event(createdAt=None, updatedAt="not a date"))

        assert doc.created_at == "2026-10-19T12:00:00.000Z"
        assert doc.updated_at == "2026-10-19T12:00:00.000Z"

    def test_mapping_is_deterministic(self, mapper, make_event):
        event = make_event()

        first = mapper.map_event(event)
        second = mapper.map_event(event)

        assert first.to_wire() == second.to_wire()

    def test_invalid_event_raises_validation_error(self, mapper, make_event):
        with pytest.raises(ContentDocValidationError) as exc_info:
            mapper.map_event(make_event(location="  "))

        assert exc_info.value.kind is ValidationErrorKind.INVALID_EVENT_FEATURE

    def test_missing_title_raises_validation_error(self, mapper, make_event):
        with pytest.raises(ContentDocValidationError) as exc_info:
            mapper.map_event(make_event(title=""))

        assert exc_info.value.kind is ValidationErrorKind.MISSING_FIELD
        assert exc_info.value.field == "title"


# =============================================================================
# Unit Tests: games
# =============================================================================


class TestMapGame:
    """Tests for ContentDocMapper.map_game."""

    def test_identity_and_status(self, mapper, make_game):
        doc = mapper.map_game(make_game())

        assert doc.id == "ttg:game:7"
        assert doc.original_id == "game:7"
        assert doc.status == "published"
        assert doc.owner_url == "https://ttg.example.com/games/7/catan"
        assert doc.images is not None and doc.images[0].url == "https://img.example.com/catan.png"

    def test_tags(self, mapper, make_game):
        doc = mapper.map_game(make_game())

        assert doc.tags == [
            "content-type:game",
            "system:ttg",
            "genre:strategy",
            "difficulty:medium",
            "status:active",
            "custom:classic",
            "custom:trading",
            "player-count:medium",
        ]

    def test_duplicate_custom_tags_collapse(self, mapper, make_game):
        doc = mapper.map_game(make_game(tags=["Classic", "classic"]))

        assert doc.tags.count("custom:classic") == 1

    def test_game_feature(self, mapper, make_game):
        doc = mapper.map_game(make_game())

        assert doc.features == {
            GAME_FEATURE_KEY: {
                "gameId": "7",
                "gameName": "Catan",
                "genre": "Strategy",
                "playerCount": "3-4",
            }
        }

    def test_unapproved_game_is_draft(self, mapper, make_game):
        doc = mapper.map_game(make_game(approved=False))

        assert doc.status == "draft"

    def test_inactive_game_is_archived(self, mapper, make_game):
        doc = mapper.map_game(make_game(status="inactive"))

        assert doc.status == "archived"

    def test_default_difficulty(self, mapper, make_game):
        doc = mapper.map_game(make_game(difficulty=None))

        assert "difficulty:medium" in doc.tags
