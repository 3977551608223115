"""
CLCA Bridge - ContentDoc Validator

Rejects malformed ContentDocs before they cost a request against the CLCA
quota. Pure: the result depends only on the document (no network, no clock).

Checks, in order:
    1. id and title present                      -> missing-field
    2. ownerSystem equals the expected system id -> invalid-owner
    3. at least one feature block                -> empty-features
    4. createdAt / updatedAt parse as ISO-8601   -> bad-timestamp
    5. feat:event/v1 (if present) has parseable
       startTime/endTime and a non-blank location -> invalid-event-feature
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ..core.errors import ContentDocValidationError, ValidationErrorKind
from ..models.contentdoc import EVENT_FEATURE_KEY, ContentDoc

DEFAULT_OWNER_SYSTEM = "ttg"


def is_iso_timestamp(value: Any) -> bool:
    """True if value is a string datetime.fromisoformat accepts (a trailing Z included)."""
    if not isinstance(value, str) or not value.strip():
        return False
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        datetime.fromisoformat(text)
    except ValueError:
        return False
    return True


def validate_content_doc(doc: ContentDoc, owner_system: str = DEFAULT_OWNER_SYSTEM) -> None:
    """
    Validate a ContentDoc, raising on the first problem found.

    Raises:
        ContentDocValidationError: with the matching ValidationErrorKind
    """
    for field in ("id", "title"):
        if not (getattr(doc, field) or "").strip():
            raise ContentDocValidationError(
                ValidationErrorKind.MISSING_FIELD,
                f"ContentDoc missing required field: {field}",
                field=field,
            )

    if doc.owner_system != owner_system:
        raise ContentDocValidationError(
            ValidationErrorKind.INVALID_OWNER,
            f'ContentDoc must have ownerSystem set to "{owner_system}"',
            field="ownerSystem",
        )

    if not doc.features:
        raise ContentDocValidationError(
            ValidationErrorKind.EMPTY_FEATURES,
            "ContentDoc must have at least one feature",
            field="features",
        )

    for field, value in (("createdAt", doc.created_at), ("updatedAt", doc.updated_at)):
        if not is_iso_timestamp(value):
            raise ContentDocValidationError(
                ValidationErrorKind.BAD_TIMESTAMP,
                f"ContentDoc {field} must be a valid ISO timestamp",
                field=field,
            )

    event_feature = doc.features.get(EVENT_FEATURE_KEY)
    if event_feature is not None:
        _validate_event_feature(event_feature)


def _validate_event_feature(feature: dict[str, Any]) -> None:
    for key in ("startTime", "endTime"):
        if not is_iso_timestamp(feature.get(key)):
            raise ContentDocValidationError(
                ValidationErrorKind.INVALID_EVENT_FEATURE,
                f"Event feature {key} must be a valid ISO timestamp",
                field=f"features.{EVENT_FEATURE_KEY}.{key}",
            )

    location = feature.get("location")
    if not isinstance(location, str) or not location.strip():
        raise ContentDocValidationError(
            ValidationErrorKind.INVALID_EVENT_FEATURE,
            "Event feature must have a location",
            field=f"features.{EVENT_FEATURE_KEY}.location",
        )


class ContentDocValidator:
    """Validator bound to one expected ownerSystem."""

    def __init__(self, owner_system: str = DEFAULT_OWNER_SYSTEM):
        self.owner_system = owner_system

    def validate(self, doc: ContentDoc) -> None:
        validate_content_doc(doc, self.owner_system)

    def is_valid(self, doc: ContentDoc) -> bool:
        try:
            self.validate(doc)
        except ContentDocValidationError:
            return False
        return True
