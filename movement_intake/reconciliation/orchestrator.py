"""
Movement Draft Session - coordinates one draft from creation to submit.

Every mutation follows the same path:
1. Write the field (user edit or extraction merge)
2. Dependency graph pass (cascading clears + invariants)
3. VAT pass
4. Audit entry

Document ingestion runs through the pipeline; only the result of the
current generation is merged.
"""

import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from ..config import Settings, get_settings
from ..ingestion import (
    DocumentIngestionPipeline,
    DocumentValidationError,
    IngestionAttempt,
    UploadedDocument,
)
from ..models import (
    AuditAction,
    ExtractionResult,
    IngestionStatus,
    MovementDraft,
    RegistrySnapshot,
    VatCode,
)
from ..models.draft import REQUIRED_FIELDS, coerce_value, field_name
from ..utils.audit_logger import AuditLogger
from .dependency_graph import FieldDependencyGraph
from .entity_resolver import EntityResolver
from .merge import DraftMerger, MergeReport
from .vat import refresh_vat

logger = structlog.get_logger()

CommitCallable = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


class DraftValidationError(Exception):
    """Raised when a draft cannot be submitted (or a field value cannot be read)."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        summary = "; ".join(f"{name}: {message}" for name, message in self.errors.items())
        super().__init__(f"Invalid movement draft: {summary}")


def _audit_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "value"):
        return value.value
    return str(value)


class MovementDraftSession:
    """
    Owns one MovementDraft and applies every change through the
    dependency graph and the VAT calculator.
    """

    def __init__(
        self,
        draft: Optional[MovementDraft] = None,
        registry: Optional[RegistrySnapshot] = None,
        pipeline: Optional[DocumentIngestionPipeline] = None,
        resolver: Optional[EntityResolver] = None,
        graph: Optional[FieldDependencyGraph] = None,
        merger: Optional[DraftMerger] = None,
        audit: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.draft = draft or MovementDraft.new()
        self.registry = registry
        self.pipeline = pipeline
        self.resolver = resolver or EntityResolver()
        self.graph = graph or FieldDependencyGraph()
        self.merger = merger or DraftMerger(
            resolver=self.resolver,
            graph=self.graph,
            default_vat_code=VatCode.parse(self.settings.default_structured_vat_code),
        )
        self.audit = audit or AuditLogger(self.draft.draft_id)

        self.audit.record(
            AuditAction.DRAFT_CREATED,
            "Draft created",
            movement_id=self.draft.movement_id,
            mode="edit" if self.draft.movement_id else "new",
        )
        self._enforce()

    @property
    def draft_id(self) -> str:
        return self.draft.draft_id

    @property
    def ingestion_status(self) -> IngestionStatus:
        return self.pipeline.status if self.pipeline else IngestionStatus.IDLE

    def set_registry(self, registry: Optional[RegistrySnapshot]) -> List[str]:
        """Swap in a refreshed registry snapshot and re-check the draft against it."""
        self.registry = registry
        return self._enforce()

    def edit(self, field: str, value: Any) -> List[str]:
        """
        Apply a user edit.

        Args:
            field: Field name (snake_case or camelCase)
            value: Raw value; blank strings clear the field

        Returns:
            Fields cleared as a consequence

        Raises:
            UnknownFieldError: not a draft field
            DraftValidationError: the value cannot be read for that field
        """
        name = field_name(field)
        try:
            coerced = coerce_value(name, value)
        except ValueError as e:
            raise DraftValidationError({name: str(e)}) from e

        draft = self.draft
        previous = getattr(draft, name)
        draft.touched.add(name)
        if name == "vat_amount":
            draft.vat_overridden = coerced is not None

        cleared = self.graph.apply_change(name, coerced, draft, self.registry)
        vat_changed = refresh_vat(draft, [name, *cleared])

        self.audit.record(
            AuditAction.FIELD_CHANGED,
            f"Field {name} changed",
            fields=[name],
            previous=_audit_value(previous),
            value=_audit_value(getattr(draft, name)),
        )
        if cleared:
            self.audit.record(
                AuditAction.DEPENDENTS_CLEARED,
                f"Cleared after {name} change",
                fields=cleared,
                source=name,
            )
        if vat_changed:
            self.audit.record(
                AuditAction.VAT_RECOMPUTED,
                "VAT amount recomputed",
                fields=["vat_amount"],
                vat_amount=_audit_value(draft.vat_amount),
            )
        return cleared

    def edit_many(self, changes: Dict[str, Any]) -> List[str]:
        """Apply several edits in order; unknown names and unreadable values are rejected before anything is written."""
        names = [field_name(name) for name in changes]
        errors: Dict[str, str] = {}
        for name, value in zip(names, changes.values()):
            try:
                coerce_value(name, value)
            except ValueError as e:
                errors[name] = str(e)
        if errors:
            raise DraftValidationError(errors)

        cleared: List[str] = []
        for name, value in zip(names, changes.values()):
            cleared.extend(f for f in self.edit(name, value) if f not in cleared)
        return cleared

    def apply_extraction(
        self,
        result: ExtractionResult,
        generation: Optional[int] = None,
    ) -> MergeReport:
        """Merge an extraction result into the draft."""
        report = self.merger.merge(self.draft, result, self.registry)

        if report.rolled_back:
            self.audit.record(
                AuditAction.MERGE_ROLLED_BACK,
                "Extraction merge failed, draft restored",
                generation=generation,
                success=False,
                error_message=report.error,
                channel=result.channel.value,
            )
            return report

        for entity_type, resolution in report.resolutions.items():
            self.audit.record(
                AuditAction.ENTITY_RESOLVED,
                f"{entity_type.capitalize()} resolution: {resolution.match_confidence.value}",
                generation=generation,
                entity_type=entity_type,
                matched_id=resolution.matched_id,
                confidence=resolution.match_confidence.value,
                alternatives=list(resolution.alternatives),
            )

        self.audit.record(
            AuditAction.EXTRACTION_MERGED,
            f"Extraction merged ({result.channel.value})",
            fields=report.written,
            generation=generation,
            skipped=report.skipped,
            cleared=report.cleared,
            annotations=len(report.annotations),
        )
        return report

    async def ingest(
        self,
        document: UploadedDocument,
        pipeline: Optional[DocumentIngestionPipeline] = None,
    ) -> IngestionAttempt:
        """
        Run a document through the pipeline and merge the result if it is
        still the current attempt.

        Raises:
            DocumentValidationError: the document was rejected before upload
        """
        pipeline = self._pipeline(pipeline)
        try:
            attempt = await pipeline.ingest(document)
        except DocumentValidationError as e:
            self.audit.record(
                AuditAction.INGESTION_FAILED,
                "Document rejected",
                success=False,
                error_message=e.message,
                file_name=document.file_name,
                media_type=document.media_type,
            )
            raise
        return self._after_attempt(attempt, pipeline)

    async def retry_ingestion(
        self,
        pipeline: Optional[DocumentIngestionPipeline] = None,
    ) -> IngestionAttempt:
        """User retry after a failed attempt."""
        pipeline = self._pipeline(pipeline)
        attempt = await pipeline.retry()
        return self._after_attempt(attempt, pipeline)

    def validate(self) -> None:
        """
        Submit-time validation.

        Raises:
            DraftValidationError: with one message per offending field
        """
        draft = self.draft
        errors: Dict[str, str] = {}

        for name in REQUIRED_FIELDS:
            if draft.is_empty(name):
                errors[name] = "This field is required"

        if draft.amount is not None and draft.amount <= 0:
            errors["amount"] = "Amount must be greater than zero"

        if (
            self.settings.enforce_date_order
            and draft.insert_date is not None
            and draft.flow_date is not None
            and draft.insert_date > draft.flow_date
        ):
            errors["flow_date"] = "Flow date cannot be earlier than insert date"

        if draft.customer_id is not None and draft.supplier_id is not None:
            errors["supplier_id"] = "A movement cannot have both a customer and a supplier"

        if errors:
            self.audit.record(
                AuditAction.VALIDATION_FAILED,
                "Draft validation failed",
                fields=list(errors),
                success=False,
                errors=errors,
            )
            raise DraftValidationError(errors)

    async def submit(self, commit: CommitCallable) -> Any:
        """
        Validate and hand the movement payload to the commit collaborator.

        ``commit`` may be sync or async; its return value is passed through.
        A failing commit leaves the draft untouched and editable.
        """
        self.validate()
        payload = self.draft.to_dict()

        result = commit(payload)
        if inspect.isawaitable(result):
            result = await result

        self.audit.record(
            AuditAction.DRAFT_SUBMITTED,
            "Draft submitted",
            movement_id=self.draft.movement_id,
            amount=payload["amount"],
        )
        return result

    def discard(self) -> None:
        """Cancel the draft; anything still in flight is superseded."""
        if self.pipeline is not None:
            self.pipeline.reset()
        self.audit.record(AuditAction.DRAFT_DISCARDED, "Draft discarded")

    def state_dict(self) -> Dict[str, Any]:
        data = self.draft.state_dict()
        data["ingestion"] = {
            "status": self.ingestion_status.value,
            "generation": self.pipeline.generation if self.pipeline else 0,
        }
        if self.pipeline and self.pipeline.current and self.pipeline.current.error:
            error = self.pipeline.current.error
            data["ingestion"]["error"] = {"kind": error.kind.value, "message": error.message}
        return data

    def _pipeline(self, pipeline: Optional[DocumentIngestionPipeline]) -> DocumentIngestionPipeline:
        pipeline = pipeline or self.pipeline
        if pipeline is None:
            raise RuntimeError("No ingestion pipeline configured for this draft")
        self.pipeline = pipeline
        return pipeline

    def _after_attempt(
        self,
        attempt: IngestionAttempt,
        pipeline: DocumentIngestionPipeline,
    ) -> IngestionAttempt:
        if attempt.superseded or not pipeline.is_current(attempt):
            self.audit.record(
                AuditAction.EXTRACTION_DISCARDED,
                "Superseded ingestion result discarded",
                generation=attempt.generation,
            )
            return attempt

        if attempt.error is not None:
            self.audit.record(
                AuditAction.INGESTION_FAILED,
                f"Ingestion failed: {attempt.error.kind.value}",
                generation=attempt.generation,
                success=False,
                error_message=attempt.error.message,
                file_ref=attempt.file_ref,
            )
            return attempt

        if attempt.result is None:
            return attempt

        draft = self.draft
        if attempt.file_ref and "source_document_ref" not in draft.touched and draft.is_initial("source_document_ref"):
            self.graph.apply_change("source_document_ref", attempt.file_ref, draft, self.registry)

        self.apply_extraction(attempt.result, generation=attempt.generation)
        return attempt

    def _enforce(self) -> List[str]:
        cleared = self.graph.enforce_invariants(self.draft, self.registry)
        vat_changed = refresh_vat(self.draft)
        if cleared:
            self.audit.record(
                AuditAction.INVARIANT_ENFORCED,
                "Draft brought back in line with the registry",
                fields=cleared,
            )
        if vat_changed:
            self.audit.record(
                AuditAction.VAT_RECOMPUTED,
                "VAT amount recomputed",
                fields=["vat_amount"],
                vat_amount=_audit_value(self.draft.vat_amount),
            )
        return cleared
