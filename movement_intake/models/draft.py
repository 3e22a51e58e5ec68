"""Movement draft: the in-progress record every other component reads and writes."""

import copy
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from ..normalize import clean_text, format_amount, parse_amount, parse_date
from .enums import AnnotationKind, EntityType, MovementType, VatCode


# Fields a user (or an extraction) may write. Bookkeeping attributes are excluded.
EDITABLE_FIELDS = (
    "insert_date",
    "flow_date",
    "type",
    "company_id",
    "core_id",
    "reason_id",
    "entity_type",
    "customer_id",
    "supplier_id",
    "resource_id",
    "office_id",
    "iban_id",
    "amount",
    "vat_type",
    "vat_amount",
    "status_id",
    "tag_id",
    "document_number",
    "notes",
    "source_document_ref",
)

REQUIRED_FIELDS = (
    "insert_date",
    "flow_date",
    "type",
    "company_id",
    "core_id",
    "reason_id",
    "status_id",
    "amount",
)

COMPANY_SCOPED_FIELDS = ("core_id", "resource_id", "office_id", "iban_id")

DATE_FIELDS = ("insert_date", "flow_date")
AMOUNT_FIELDS = ("amount", "vat_amount")

# camelCase names used by the movement API
_CAMEL_NAMES = {
    "insert_date": "insertDate",
    "flow_date": "flowDate",
    "company_id": "companyId",
    "core_id": "coreId",
    "reason_id": "reasonId",
    "entity_type": "entityType",
    "customer_id": "customerId",
    "supplier_id": "supplierId",
    "resource_id": "resourceId",
    "office_id": "officeId",
    "iban_id": "ibanId",
    "vat_type": "vatType",
    "vat_amount": "vatAmount",
    "status_id": "statusId",
    "tag_id": "tagId",
    "document_number": "documentNumber",
    "source_document_ref": "sourceDocumentRef",
}
_SNAKE_NAMES = {camel: snake for snake, camel in _CAMEL_NAMES.items()}


class UnknownFieldError(KeyError):
    """Raised when a caller addresses a field the draft does not have."""

    def __init__(self, field_name: str):
        super().__init__(field_name)
        self.field_name = field_name

    def __str__(self) -> str:
        return f"Unknown movement field: {self.field_name}"


def field_name(name: str) -> str:
    """Accept snake_case or camelCase field names."""
    resolved = _SNAKE_NAMES.get(name, name)
    if resolved not in EDITABLE_FIELDS:
        raise UnknownFieldError(name)
    return resolved


def coerce_value(name: str, value: Any) -> Any:
    """Convert raw input (strings from forms and payloads) to the field's type."""
    if isinstance(value, str) and not value.strip():
        value = None
    if value is None:
        return EntityType.UNSET if name == "entity_type" else None
    if name in DATE_FIELDS:
        parsed = parse_date(value)
        if parsed is None:
            raise ValueError(f"Invalid date for {name}: {value!r}")
        return parsed
    if name in AMOUNT_FIELDS:
        parsed = parse_amount(value)
        if parsed is None:
            raise ValueError(f"Invalid amount for {name}: {value!r}")
        return parsed
    if name == "type":
        return MovementType(value)
    if name == "entity_type":
        return EntityType(value)
    if name == "vat_type":
        return VatCode.parse(value)
    return clean_text(value)


@dataclass
class DraftAnnotation:
    """Read-only caveat surfaced to the user; never a field value."""
    kind: AnnotationKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class MovementDraft:
    """
    Uncommitted movement under construction.

    Amounts are Decimals quantized to cents. ``amount`` is gross (VAT
    included). ``touched`` holds fields the user wrote in this session and
    ``defaulted`` holds fields that only carry a placeholder default; both drive
    the merge rule that extraction never overwrites user intent.
    """
    # Dates
    insert_date: Optional[date] = None
    flow_date: Optional[date] = None

    # Classification
    type: Optional[MovementType] = None
    company_id: Optional[str] = None
    core_id: Optional[str] = None
    reason_id: Optional[str] = None
    status_id: Optional[str] = None
    tag_id: Optional[str] = None

    # Counterparty
    entity_type: EntityType = EntityType.UNSET
    customer_id: Optional[str] = None
    supplier_id: Optional[str] = None
    resource_id: Optional[str] = None

    # Company-scoped extras
    office_id: Optional[str] = None
    iban_id: Optional[str] = None

    # Money
    amount: Optional[Decimal] = None
    vat_type: Optional[VatCode] = None
    vat_amount: Optional[Decimal] = None
    vat_overridden: bool = False

    # Document
    document_number: Optional[str] = None
    notes: Optional[str] = None
    source_document_ref: Optional[str] = None

    # Session bookkeeping
    draft_id: str = field(default_factory=lambda: str(uuid4()))
    movement_id: Optional[str] = None  # set in edit mode only
    touched: Set[str] = field(default_factory=set)
    defaulted: Set[str] = field(default_factory=set)
    annotations: List[DraftAnnotation] = field(default_factory=list)

    @classmethod
    def new(cls, today: Optional[date] = None) -> "MovementDraft":
        """Empty draft for a new movement; dates and type carry placeholder defaults."""
        today = today or date.today()
        return cls(
            insert_date=today,
            flow_date=today,
            type=MovementType.INCOME,
            defaulted={"insert_date", "flow_date", "type"},
        )

    @classmethod
    def from_movement(cls, payload: Dict[str, Any]) -> "MovementDraft":
        """Draft pre-populated from a persisted movement (edit mode)."""
        draft = cls(movement_id=clean_text(payload.get("id")))
        for key, value in payload.items():
            try:
                name = field_name(key)
            except UnknownFieldError:
                continue
            setattr(draft, name, coerce_value(name, value))
        if draft.vat_amount is not None and draft.vat_type is not None:
            from ..reconciliation.vat import compute_vat

            derived = compute_vat(draft.amount, draft.vat_type).vat
            draft.vat_overridden = derived != draft.vat_amount
        elif draft.vat_amount is not None:
            draft.vat_overridden = True
        return draft

    def get(self, name: str) -> Any:
        return getattr(self, field_name(name))

    def is_empty(self, name: str) -> bool:
        value = getattr(self, name)
        return value is None or value == "" or value == EntityType.UNSET

    def is_initial(self, name: str) -> bool:
        """Empty, or still holding a placeholder default."""
        return self.is_empty(name) or name in self.defaulted

    def snapshot(self) -> "MovementDraft":
        return copy.deepcopy(self)

    def restore(self, snapshot: "MovementDraft") -> None:
        for f in fields(self):
            setattr(self, f.name, copy.deepcopy(getattr(snapshot, f.name)))

    def annotate(self, kind: AnnotationKind, message: str, **details: Any) -> DraftAnnotation:
        annotation = DraftAnnotation(kind=kind, message=message, details=details)
        self.annotations.append(annotation)
        return annotation

    def to_dict(self) -> Dict[str, Any]:
        """Movement payload in the shape the commit collaborator expects (camelCase)."""
        return {
            "id": self.movement_id,
            "insertDate": self.insert_date.isoformat() if self.insert_date else None,
            "flowDate": self.flow_date.isoformat() if self.flow_date else None,
            "type": self.type.value if self.type else None,
            "companyId": self.company_id,
            "coreId": self.core_id,
            "reasonId": self.reason_id,
            "statusId": self.status_id,
            "tagId": self.tag_id,
            "entityType": self.entity_type.value,
            "customerId": self.customer_id,
            "supplierId": self.supplier_id,
            "resourceId": self.resource_id,
            "officeId": self.office_id,
            "ibanId": self.iban_id,
            "amount": format_amount(self.amount),
            "vatType": self.vat_type.value if self.vat_type else None,
            "vatAmount": format_amount(self.vat_amount),
            "documentNumber": self.document_number,
            "notes": self.notes,
            "sourceDocumentRef": self.source_document_ref,
        }

    def state_dict(self) -> Dict[str, Any]:
        """Movement payload plus session bookkeeping, for API responses."""
        data = self.to_dict()
        data.update({
            "draftId": self.draft_id,
            "vatOverridden": self.vat_overridden,
            "touched": sorted(self.touched),
            "defaulted": sorted(self.defaulted),
            "annotations": [a.to_dict() for a in self.annotations],
        })
        return data
