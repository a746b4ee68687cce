"""FastAPI routes for the knowledge base ingestion reconciler."""

from kb_ingest.api.routes import files

__all__ = ["files"]
