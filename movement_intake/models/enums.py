"""Enumerations for the movement intake engine."""

from decimal import Decimal
from enum import Enum
from typing import Optional


class MovementType(str, Enum):
    """Direction of a movement."""
    INCOME = "income"      # Money in (we issued the document)
    EXPENSE = "expense"    # Money out (we received the document)


class EntityType(str, Enum):
    """
    Which counterparty slot of the draft is in use.

    CUSTOMER: only valid for income movements
    SUPPLIER: only valid for expense movements
    RESOURCE: internal resource, valid for both
    UNSET: no counterparty chosen yet
    """
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    RESOURCE = "resource"
    UNSET = "unset"


class VatCode(str, Enum):
    """
    Italian VAT codes accepted on a movement.

    Rates are tax-inclusive fractions of the net base. Art. 74 and exempt
    operations carry no VAT.
    """
    IVA_22 = "iva_22"
    IVA_10 = "iva_10"
    IVA_4 = "iva_4"
    IVA_ART_74 = "iva_art_74"
    ESENTE = "esente"

    @property
    def rate(self) -> Decimal:
        return _VAT_RATES[self]

    @classmethod
    def parse(cls, value: object) -> "VatCode":
        """Read a code from user or document input; unknown strings mean exempt."""
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
        if key in _VAT_ALIASES:
            return _VAT_ALIASES[key]
        try:
            return cls(key)
        except ValueError:
            return cls.ESENTE

    @classmethod
    def for_rate(cls, rate: Optional[Decimal], tolerance: Decimal = Decimal("0.005")) -> Optional["VatCode"]:
        """Map a rate fraction (0.22) to its code; zero maps to ESENTE."""
        if rate is None:
            return None
        for code in (cls.IVA_22, cls.IVA_10, cls.IVA_4, cls.ESENTE):
            if abs(code.rate - rate) <= tolerance:
                return code
        return None


_VAT_RATES = {
    VatCode.IVA_22: Decimal("0.22"),
    VatCode.IVA_10: Decimal("0.10"),
    VatCode.IVA_4: Decimal("0.04"),
    VatCode.IVA_ART_74: Decimal("0"),
    VatCode.ESENTE: Decimal("0"),
}

_VAT_ALIASES = {
    "exempt": VatCode.ESENTE,
    "art_74": VatCode.IVA_ART_74,
    "22%": VatCode.IVA_22,
    "10%": VatCode.IVA_10,
    "4%": VatCode.IVA_4,
    "0%": VatCode.ESENTE,
}


class MatchConfidence(str, Enum):
    """Confidence of an entity resolution."""
    EXACT = "exact"    # VAT number equality
    FUZZY = "fuzzy"    # Name substring, no VAT confirmation
    NONE = "none"      # Nothing in the registry qualifies


class CustomerKind(str, Enum):
    """Customer registry entry kind."""
    PRIVATE = "private"
    BUSINESS = "business"


class ReasonType(str, Enum):
    """Movement types a reason (causale) can be used with."""
    INCOME = "income"
    EXPENSE = "expense"
    BOTH = "both"


class ExtractionChannel(str, Enum):
    """Which ingestion channel produced an extraction."""
    STRUCTURED = "structured"      # XML e-invoice parser
    UNSTRUCTURED = "unstructured"  # AI document analyzer


class IngestionStatus(str, Enum):
    """State of the document ingestion pipeline."""
    IDLE = "idle"
    UPLOADING = "uploading"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    ERROR = "error"


class IngestionErrorKind(str, Enum):
    """Kind of ingestion failure."""
    VALIDATION_ERROR = "validation_error"
    UPLOAD_FAILED = "upload_failed"
    ANALYSIS_FAILED = "analysis_failed"


class AnnotationKind(str, Enum):
    """Kind of read-only note attached to a draft."""
    CONFIDENCE = "confidence"
    PROCESSING_NOTE = "processing_note"
    ENTITY_SUGGESTION = "entity_suggestion"
    AMBIGUOUS_ENTITY = "ambiguous_entity"
    VAT_MISMATCH = "vat_mismatch"
    SKIPPED_FIELD = "skipped_field"


class AuditAction(str, Enum):
    """Type of audit action."""
    DRAFT_CREATED = "draft_created"
    FIELD_CHANGED = "field_changed"
    DEPENDENTS_CLEARED = "dependents_cleared"
    INVARIANT_ENFORCED = "invariant_enforced"
    VAT_RECOMPUTED = "vat_recomputed"
    ENTITY_RESOLVED = "entity_resolved"
    EXTRACTION_MERGED = "extraction_merged"
    EXTRACTION_DISCARDED = "extraction_discarded"
    MERGE_ROLLED_BACK = "merge_rolled_back"
    INGESTION_FAILED = "ingestion_failed"
    VALIDATION_FAILED = "validation_failed"
    DRAFT_SUBMITTED = "draft_submitted"
    DRAFT_DISCARDED = "draft_discarded"
