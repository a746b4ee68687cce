"""FastAPI route handlers."""

from kb_ingest.api.routes import files

__all__ = ["files"]
