"""Error types raised by ingestion status operations."""

from typing import Optional


class IngestionStatusError(Exception):
    """Base class for expected ingestion status failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SourceUnavailable(IngestionStatusError):
    """One of the two snapshot sources could not be fetched."""

    def __init__(self, source: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"Source '{source}' unavailable: {cause}")
        self.source = source
        self.cause = cause


class AlreadyInProgress(IngestionStatusError):
    """An ingestion for this file is already pending."""

    def __init__(self, file_id: str) -> None:
        super().__init__(f"Ingestion already in progress for file {file_id}")
        self.file_id = file_id


class IngestionFailed(IngestionStatusError):
    """The ingestion worker reported a failure for this file."""

    def __init__(self, file_id: str, error_message: str) -> None:
        super().__init__(f"Ingestion failed for file {file_id}: {error_message}")
        self.file_id = file_id
        self.error_message = error_message


class TransitionRejected(IngestionStatusError):
    """The requested status transition is not legal from the current state."""

    def __init__(self, file_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot move file {file_id} from '{current}' to '{requested}'"
        )
        self.file_id = file_id
        self.current = current
        self.requested = requested


class UploadFailed(IngestionStatusError):
    """A single file in an upload batch failed."""

    def __init__(self, file_name: str, reason: str) -> None:
        super().__init__(f"Upload failed for {file_name}: {reason}")
        self.file_name = file_name
        self.reason = reason


class WorkerUnavailable(IngestionStatusError):
    """The ingestion worker could not be reached or returned garbage."""

    def __init__(self, message: str, *, upstream_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class FileNotFound(IngestionStatusError):
    """Neither the object store listing nor the records know this file."""

    def __init__(self, file_id: str) -> None:
        super().__init__(f"File {file_id} not found")
        self.file_id = file_id
