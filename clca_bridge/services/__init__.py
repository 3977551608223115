"""
CLCA Bridge - Pipeline Services
"""

from .contentdoc_mapper import STATUS_TABLE, ContentDocMapper, map_status
from .contentdoc_validator import ContentDocValidator, validate_content_doc
from .ingest_client import ClcaIngestClient, HealthStatus
from .sync_orchestrator import ResyncSummary, SyncOrchestrator, SyncOutcome, SyncStatus

__all__ = [
    # Mapping
    "ContentDocMapper",
    "STATUS_TABLE",
    "map_status",
    # Validation
    "ContentDocValidator",
    "validate_content_doc",
    # Delivery
    "ClcaIngestClient",
    "HealthStatus",
    # Orchestration
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncStatus",
    "ResyncSummary",
]
