"""
CLCA Bridge - Content Ingestion Pipeline

Maps TTG events and games into versioned ContentDocs, delivers them to the
CLCA ingest endpoint, and retries failed deliveries through a durable
dead letter queue.
"""

__version__ = "0.1.0"
