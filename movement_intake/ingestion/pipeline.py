"""
Document Ingestion Pipeline.

State machine for one draft's document upload:

    idle -> uploading -> analyzing -> completed | error
    error -> idle (user retry)

Every attempt gets a monotonically increasing generation. Selecting a new
document supersedes whatever is in flight; the superseded attempt's outcome is
dropped without a status change.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Union

import structlog

from ..config import Settings, get_settings
from ..models import ExtractionResult, IngestionErrorKind, IngestionStatus
from .fattura_parser import FatturaExtractor
from .validator import UploadValidator, is_xml_document

logger = structlog.get_logger()


class IngestionError(Exception):
    """Asynchronous ingestion failure, surfaced as pipeline state."""

    kind: IngestionErrorKind = IngestionErrorKind.ANALYSIS_FAILED

    def __init__(self, message: str, file_ref: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.file_ref = file_ref


class UploadFailedError(IngestionError):
    """The storage collaborator did not return a file handle."""

    kind = IngestionErrorKind.UPLOAD_FAILED


class AnalysisFailedError(IngestionError):
    """The extractor failed; the stored file handle is kept for retry."""

    kind = IngestionErrorKind.ANALYSIS_FAILED


class RetryNotAllowedError(Exception):
    """Raised when retry is requested while no attempt has failed."""


@dataclass
class UploadedDocument:
    """A document selected by the user, as received."""
    file_name: str
    media_type: str
    content: bytes = b""

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def is_xml(self) -> bool:
        return is_xml_document(self.media_type, self.file_name)


class StorageCollaborator(Protocol):
    async def store(self, document: UploadedDocument) -> str:
        """Persist the document and return an opaque file handle."""
        ...


class ExtractionCollaborator(Protocol):
    async def extract(self, file_ref: str, document: UploadedDocument) -> ExtractionResult:
        """Turn a stored document into an ExtractionResult."""
        ...


@dataclass
class IngestionEvent:
    """Status change emitted to listeners."""
    status: IngestionStatus
    generation: int
    message: str = ""
    error_kind: Optional[IngestionErrorKind] = None
    file_ref: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "generation": self.generation,
            "message": self.message,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "file_ref": self.file_ref,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class IngestionAttempt:
    """One run of the pipeline for one selected document."""
    generation: int
    document: UploadedDocument
    status: IngestionStatus = IngestionStatus.IDLE
    file_ref: Optional[str] = None
    result: Optional[ExtractionResult] = None
    error: Optional[IngestionError] = None
    superseded: bool = False
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def error_kind(self) -> Optional[IngestionErrorKind]:
        return self.error.kind if self.error else None

    @property
    def succeeded(self) -> bool:
        return self.status == IngestionStatus.COMPLETED and not self.superseded


Listener = Callable[[IngestionEvent], None]


class DocumentIngestionPipeline:
    """
    Runs upload and analysis for the documents of one draft.

    XML documents go to the structured extractor, everything else to the AI
    analyzer. Failures become state (``error`` + kind); nothing is retried
    automatically.
    """

    def __init__(
        self,
        storage: StorageCollaborator,
        analyzer: ExtractionCollaborator,
        structured_extractor: Optional[ExtractionCollaborator] = None,
        validator: Optional[UploadValidator] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage
        self.analyzer = analyzer
        self.structured_extractor = structured_extractor or FatturaExtractor()
        self.validator = validator or UploadValidator(self.settings)

        self._generation = 0
        self.current: Optional[IngestionAttempt] = None
        self.listeners: List[Listener] = []

    @property
    def status(self) -> IngestionStatus:
        return self.current.status if self.current else IngestionStatus.IDLE

    @property
    def generation(self) -> int:
        return self._generation

    def add_listener(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def is_current(self, attempt: Union[IngestionAttempt, int]) -> bool:
        generation = attempt.generation if isinstance(attempt, IngestionAttempt) else attempt
        return generation == self._generation

    def reset(self) -> None:
        """Supersede anything in flight and go back to idle."""
        self._generation += 1
        self.current = None
        self._emit(IngestionEvent(IngestionStatus.IDLE, self._generation, "Reset"))

    async def ingest(self, document: UploadedDocument) -> IngestionAttempt:
        """
        Validate, store and analyze a newly selected document.

        Raises:
            DocumentValidationError: before any I/O; the pipeline state is
                left untouched
        """
        self.validator.validate(document.file_name, document.media_type, document.size)

        attempt = self._start(document)
        logger.info(
            "Ingestion started",
            generation=attempt.generation,
            file_name=document.file_name,
            media_type=document.media_type,
            size=document.size,
        )

        self._transition(attempt, IngestionStatus.UPLOADING, "Uploading document")
        try:
            file_ref = await self.storage.store(document)
        except Exception as e:
            if self._discard_if_superseded(attempt, "upload"):
                return attempt
            logger.error(
                "Document upload failed",
                generation=attempt.generation,
                file_name=document.file_name,
                error=str(e),
            )
            return self._fail(attempt, UploadFailedError(f"Upload failed: {e}"))

        if self._discard_if_superseded(attempt, "upload"):
            return attempt

        attempt.file_ref = file_ref
        return await self._analyze(attempt)

    async def retry(self) -> IngestionAttempt:
        """
        Retry the last failed attempt.

        An analysis failure re-runs analysis on the stored file; an upload
        failure re-runs the whole attempt.

        Raises:
            RetryNotAllowedError: the pipeline is not in error
        """
        failed = self.current
        if failed is None or failed.status != IngestionStatus.ERROR:
            raise RetryNotAllowedError("No failed ingestion to retry")

        if failed.file_ref is None:
            # Nothing stored yet: run the full attempt again
            self._transition(failed, IngestionStatus.IDLE, "Retrying upload")
            return await self.ingest(failed.document)

        self._transition(failed, IngestionStatus.IDLE, "Retrying analysis")
        attempt = self._start(failed.document)
        attempt.file_ref = failed.file_ref
        logger.info("Retrying analysis", generation=attempt.generation, file_ref=attempt.file_ref)
        return await self._analyze(attempt)

    async def _analyze(self, attempt: IngestionAttempt) -> IngestionAttempt:
        document = attempt.document
        extractor = self.structured_extractor if document.is_xml else self.analyzer

        self._transition(attempt, IngestionStatus.ANALYZING, "Analyzing document")
        try:
            result = await extractor.extract(attempt.file_ref, document)
        except Exception as e:
            if self._discard_if_superseded(attempt, "analysis"):
                return attempt
            logger.error(
                "Document analysis failed",
                generation=attempt.generation,
                file_ref=attempt.file_ref,
                error=str(e),
            )
            return self._fail(
                attempt,
                AnalysisFailedError(f"Analysis failed: {e}", file_ref=attempt.file_ref),
            )

        if self._discard_if_superseded(attempt, "analysis"):
            return attempt

        attempt.result = result
        attempt.completed_at = datetime.utcnow()
        self._transition(attempt, IngestionStatus.COMPLETED, "Analysis completed")
        logger.info(
            "Ingestion completed",
            generation=attempt.generation,
            channel=result.channel.value,
        )
        return attempt

    def _start(self, document: UploadedDocument) -> IngestionAttempt:
        self._generation += 1
        attempt = IngestionAttempt(generation=self._generation, document=document)
        self.current = attempt
        return attempt

    def _fail(self, attempt: IngestionAttempt, error: IngestionError) -> IngestionAttempt:
        attempt.error = error
        attempt.completed_at = datetime.utcnow()
        self._transition(attempt, IngestionStatus.ERROR, error.message)
        return attempt

    def _discard_if_superseded(self, attempt: IngestionAttempt, phase: str) -> bool:
        if self.is_current(attempt):
            return False
        attempt.superseded = True
        logger.info(
            "Superseded ingestion result discarded",
            generation=attempt.generation,
            current_generation=self._generation,
            phase=phase,
        )
        return True

    def _transition(self, attempt: IngestionAttempt, status: IngestionStatus, message: str) -> None:
        attempt.status = status
        self._emit(IngestionEvent(
            status=status,
            generation=attempt.generation,
            message=message,
            error_kind=attempt.error_kind if status == IngestionStatus.ERROR else None,
            file_ref=attempt.file_ref,
        ))

    def _emit(self, event: IngestionEvent) -> None:
        for listener in self.listeners:
            listener(event)
