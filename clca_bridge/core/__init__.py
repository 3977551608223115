"""
CLCA Bridge - Core Module

Configuration, logging, error taxonomy, metrics and token signing.
"""

from .config import Settings, get_settings, reset_settings
from .errors import (
    ClcaBridgeError,
    ContentDocValidationError,
    IngestConfigurationError,
    IngestError,
    IngestNetworkError,
    IngestProtocolError,
    IngestTimeoutError,
    TokenSigningError,
    ValidationErrorKind,
)
from .metrics import PipelineMetrics, get_metrics
from .security import HS256TokenSigner, TokenSigner, build_ingest_claims

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "reset_settings",
    # Errors
    "ClcaBridgeError",
    "ContentDocValidationError",
    "ValidationErrorKind",
    "IngestError",
    "IngestTimeoutError",
    "IngestNetworkError",
    "IngestProtocolError",
    "IngestConfigurationError",
    "TokenSigningError",
    # Metrics
    "PipelineMetrics",
    "get_metrics",
    # Security
    "TokenSigner",
    "HS256TokenSigner",
    "build_ingest_claims",
]
