"""Data models for the movement intake engine."""

from .enums import (
    AnnotationKind,
    AuditAction,
    CustomerKind,
    EntityType,
    ExtractionChannel,
    IngestionErrorKind,
    IngestionStatus,
    MatchConfidence,
    MovementType,
    ReasonType,
    VatCode,
)
from .registry import (
    Company,
    Core,
    Customer,
    Iban,
    MovementReason,
    MovementStatus,
    Office,
    RegistrySnapshot,
    Resource,
    Supplier,
    Tag,
)
from .extraction import (
    EntityCandidate,
    EntityResolution,
    ExtractedFields,
    ExtractionResult,
    InvoiceHeader,
    InvoiceLine,
    InvoicePayment,
    StructuredExtraction,
    UnstructuredExtraction,
    extraction_from_payload,
)
from .draft import (
    DraftAnnotation,
    MovementDraft,
    UnknownFieldError,
)
from .audit import AuditEntry

__all__ = [
    # Enums
    "AnnotationKind",
    "AuditAction",
    "CustomerKind",
    "EntityType",
    "ExtractionChannel",
    "IngestionErrorKind",
    "IngestionStatus",
    "MatchConfidence",
    "MovementType",
    "ReasonType",
    "VatCode",
    # Registry
    "Company",
    "Core",
    "Customer",
    "Iban",
    "MovementReason",
    "MovementStatus",
    "Office",
    "RegistrySnapshot",
    "Resource",
    "Supplier",
    "Tag",
    # Extraction
    "EntityCandidate",
    "EntityResolution",
    "ExtractedFields",
    "ExtractionResult",
    "InvoiceHeader",
    "InvoiceLine",
    "InvoicePayment",
    "StructuredExtraction",
    "UnstructuredExtraction",
    "extraction_from_payload",
    # Draft
    "DraftAnnotation",
    "MovementDraft",
    "UnknownFieldError",
    # Audit
    "AuditEntry",
]
