"""Settings configuration for the knowledge base ingestion reconciler."""

from pydantic_settings import BaseSettings
from pydantic import Field, ConfigDict
from dotenv import load_dotenv
from typing import Optional

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = ConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # PostgreSQL Configuration (ingestion metadata store)
    database_url: str = Field(..., description="PostgreSQL connection string")
    database_name: str = Field(default="kb_ingest", description="Database name")

    owner_id: str = Field(
        default="default",
        description="Owner whose files and ingestion records this service reconciles",
    )

    # Object Store Configuration (Google Drive v3 compatible)
    object_store_base_url: str = Field(
        default="https://www.googleapis.com/drive/v3",
        description="Base URL for the object store listing API",
    )

    object_store_upload_url: str = Field(
        default="https://www.googleapis.com/upload/drive/v3",
        description="Base URL for the object store resumable upload API",
    )

    object_store_token: str = Field(..., description="Bearer token for the object store")

    object_store_folder: str = Field(
        default="N8N AI Agent",
        description="Name of the folder holding the knowledge base files",
    )

    # Ingestion Worker Configuration
    worker_url: str = Field(
        default="http://localhost:3000/api",
        description="Base URL of the embedding/vectorization worker",
    )

    worker_api_key: Optional[str] = Field(
        default=None, description="API key sent to the ingestion worker"
    )

    ingestion_timeout_seconds: float = Field(
        default=300.0,
        description="How long a pending ingestion job is polled before it is marked failed",
    )

    ingestion_poll_interval_seconds: float = Field(
        default=2.0, description="Delay between ingestion job status polls"
    )

    http_timeout_seconds: float = Field(
        default=60.0, description="Timeout for a single outbound HTTP request"
    )

    # Dashboard Configuration
    recent_upload_window_days: int = Field(
        default=7, description="Trailing window used for the recent uploads count"
    )

    # Upload Configuration
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024, description="Maximum accepted upload size (10MB)"
    )

    upload_chunk_size: int = Field(
        default=256 * 1024, description="Bytes sent per chunk during a streamed upload"
    )

    upload_phase_delay_seconds: float = Field(
        default=0.05,
        description="Pacing of the synthetic preparation and completion progress steps",
    )


def load_settings() -> Settings:
    """Load settings with proper error handling."""
    try:
        return Settings()
    except Exception as e:
        error_msg = f"Failed to load settings: {e}"
        if "database_url" in str(e).lower():
            error_msg += "\nMake sure to set DATABASE_URL in your .env file"
        if "object_store_token" in str(e).lower():
            error_msg += "\nMake sure to set OBJECT_STORE_TOKEN in your .env file"
        raise ValueError(error_msg) from e
