"""
FastAPI application for the movement intake engine.
Drafts live in memory for the lifetime of the process.
"""

import json
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import structlog

from .config import get_settings
from .ingestion import (
    DocumentIngestionPipeline,
    DocumentValidationError,
    IngestionAttempt,
    RetryNotAllowedError,
    UploadedDocument,
)
from .integrations import HttpDocumentAnalyzer, LocalDocumentStorage
from .models import (
    ExtractionChannel,
    MovementDraft,
    RegistrySnapshot,
    UnknownFieldError,
    extraction_from_payload,
)
from .reconciliation import DraftValidationError, MergeReport, MovementDraftSession

logger = structlog.get_logger()
settings = get_settings()

# In-memory storage
sessions: dict[str, MovementDraftSession] = {}
submitted: dict[str, Dict[str, Any]] = {}
registry: Optional[RegistrySnapshot] = None
analyzer: Optional[HttpDocumentAnalyzer] = None


def load_registry_file() -> Optional[RegistrySnapshot]:
    """Load the registry snapshot configured by ``registry_path``, if any."""
    path = settings.registry_path
    if path is None or not path.exists():
        return None
    with open(path, encoding="utf-8") as f:
        snapshot = RegistrySnapshot.from_dict(json.load(f))
    logger.info("Registry loaded", path=str(path), suppliers=len(snapshot.suppliers))
    return snapshot


def build_pipeline() -> DocumentIngestionPipeline:
    """Pipeline for a new draft: local storage, FatturaPA parser and HTTP analyzer."""
    global analyzer
    if analyzer is None:
        analyzer = HttpDocumentAnalyzer()
    return DocumentIngestionPipeline(
        storage=LocalDocumentStorage(settings.upload_dir),
        analyzer=analyzer,
        settings=settings,
    )


def commit_movement(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Default commit collaborator: keep the submitted payload in memory."""
    key = payload.get("id") or f"draft-{len(submitted) + 1}"
    submitted[key] = payload
    return payload


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global registry
    logger.info("Starting Movement Intake API")
    settings.upload_dir.mkdir(parents=True, exist_ok=True)
    settings.reports_dir.mkdir(parents=True, exist_ok=True)
    if registry is None:
        registry = load_registry_file()
    yield
    if analyzer is not None:
        await analyzer.close()
    logger.info("Shutting down Movement Intake API")


app = FastAPI(
    title="Movement Intake",
    description="Movement draft intake and reconciliation",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response models
class CreateDraftRequest(BaseModel):
    movement: Optional[Dict[str, Any]] = None  # persisted movement, for edit mode
    today: Optional[date] = None


class FieldsUpdateRequest(BaseModel):
    fields: Dict[str, Any] = Field(default_factory=dict)


class ExtractionRequest(BaseModel):
    channel: ExtractionChannel
    payload: Dict[str, Any]


def get_session(draft_id: str) -> MovementDraftSession:
    if draft_id not in sessions:
        raise HTTPException(404, "Draft not found")
    return sessions[draft_id]


def merge_summary(report: MergeReport) -> Dict[str, Any]:
    return {
        "written": report.written,
        "skipped": report.skipped,
        "cleared": report.cleared,
        "resolutions": {
            name: {
                "matchedId": r.matched_id,
                "matchConfidence": r.match_confidence.value,
                "alternatives": r.alternatives,
            }
            for name, r in report.resolutions.items()
        },
        "rolledBack": report.rolled_back,
        "error": report.error,
    }


def attempt_summary(attempt: IngestionAttempt) -> Dict[str, Any]:
    return {
        "generation": attempt.generation,
        "status": attempt.status.value,
        "fileRef": attempt.file_ref,
        "superseded": attempt.superseded,
        "errorKind": attempt.error_kind.value if attempt.error_kind else None,
        "error": attempt.error.message if attempt.error else None,
    }


# API Endpoints
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat()}


@app.put("/api/registry")
async def update_registry(payload: Dict[str, Any]):
    """Replace the registry snapshot; open drafts are re-checked against it."""
    global registry
    try:
        registry = RegistrySnapshot.from_dict(payload)
    except (KeyError, ValueError) as e:
        raise HTTPException(400, f"Invalid registry: {e}")

    cleared = {}
    for draft_id, session in sessions.items():
        fields = session.set_registry(registry)
        if fields:
            cleared[draft_id] = fields

    return {
        "companies": len(registry.companies),
        "suppliers": len(registry.suppliers),
        "customers": len(registry.customers),
        "reasons": len(registry.reasons),
        "cleared": cleared,
    }


@app.post("/api/drafts")
async def create_draft(request: Optional[CreateDraftRequest] = None):
    """Start a new draft, or an edit-mode draft from a persisted movement."""
    request = request or CreateDraftRequest()
    try:
        if request.movement:
            draft = MovementDraft.from_movement(request.movement)
        else:
            draft = MovementDraft.new(request.today)
    except ValueError as e:
        raise HTTPException(400, str(e))

    session = MovementDraftSession(
        draft=draft,
        registry=registry,
        pipeline=build_pipeline(),
        settings=settings,
    )
    sessions[session.draft_id] = session
    return session.state_dict()


@app.get("/api/drafts/{draft_id}")
async def get_draft(draft_id: str):
    return get_session(draft_id).state_dict()


@app.patch("/api/drafts/{draft_id}/fields")
async def update_fields(draft_id: str, request: FieldsUpdateRequest):
    """Apply user edits in order."""
    session = get_session(draft_id)
    try:
        cleared = session.edit_many(request.fields)
    except UnknownFieldError as e:
        raise HTTPException(400, str(e))
    except DraftValidationError as e:
        raise HTTPException(422, {"message": str(e), "errors": e.errors})

    state = session.state_dict()
    state["cleared"] = cleared
    return state


@app.post("/api/drafts/{draft_id}/extractions")
async def merge_extraction(draft_id: str, request: ExtractionRequest):
    """Merge an extraction produced outside this service."""
    session = get_session(draft_id)
    try:
        result = extraction_from_payload(request.channel, request.payload)
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning("Malformed extraction payload", draft_id=draft_id, channel=request.channel.value, error=str(e))
        raise HTTPException(400, f"Malformed extraction payload: {e}")
    report = session.apply_extraction(result)

    state = session.state_dict()
    state["merge"] = merge_summary(report)
    return state


@app.post("/api/drafts/{draft_id}/documents")
async def upload_document(draft_id: str, file: UploadFile = File(...)):
    """Upload a document and merge what it yields."""
    session = get_session(draft_id)
    content = await file.read()
    document = UploadedDocument(
        file_name=file.filename or "document",
        media_type=file.content_type or "",
        content=content,
    )
    try:
        attempt = await session.ingest(document)
    except DocumentValidationError as e:
        raise HTTPException(400, e.message)

    state = session.state_dict()
    state["attempt"] = attempt_summary(attempt)
    return state


@app.post("/api/drafts/{draft_id}/documents/retry")
async def retry_document(draft_id: str):
    """Retry after a failed upload or analysis."""
    session = get_session(draft_id)
    try:
        attempt = await session.retry_ingestion()
    except RetryNotAllowedError as e:
        raise HTTPException(409, str(e))

    state = session.state_dict()
    state["attempt"] = attempt_summary(attempt)
    return state


@app.post("/api/drafts/{draft_id}/submit")
async def submit_draft(draft_id: str):
    """Validate and commit the draft."""
    session = get_session(draft_id)
    try:
        movement = await session.submit(commit_movement)
    except DraftValidationError as e:
        raise HTTPException(422, {"message": str(e), "errors": e.errors})

    session.audit.export_to_file()
    del sessions[draft_id]
    return {"draftId": draft_id, "movement": movement}


@app.get("/api/drafts/{draft_id}/audit")
async def get_audit(draft_id: str):
    """Audit trail of an open draft."""
    return get_session(draft_id).audit.to_dict()


@app.delete("/api/drafts/{draft_id}")
async def discard_draft(draft_id: str):
    """Cancel the draft."""
    session = get_session(draft_id)
    session.discard()
    del sessions[draft_id]
    return {"draftId": draft_id, "discarded": True}
