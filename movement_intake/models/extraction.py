"""
Extraction results produced by the two ingestion channels.

The structured channel (XML e-invoice parser) and the unstructured channel
(AI document analyzer) return different payloads. Both are wrapped in
``ExtractionResult`` and expose ``proposed_fields()`` so the merge step never
needs to know which channel a value came from.
"""

from dataclasses import dataclass, field
import datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Optional, Union

from ..normalize import (
    clean_text,
    parse_amount,
    parse_date,
    parse_decimal,
    parse_rate,
)
from .enums import ExtractionChannel, MatchConfidence, MovementType, VatCode
from .registry import RegistrySnapshot


@dataclass
class EntityCandidate:
    """A party (supplier or customer) as read from a document. Never persisted."""
    name: Optional[str] = None
    vat_number: Optional[str] = None
    tax_code: Optional[str] = None
    address: Optional[str] = None
    zip_code: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

    @property
    def is_blank(self) -> bool:
        return not (self.name or self.vat_number or self.tax_code)

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> Optional["EntityCandidate"]:
        if not payload:
            return None
        candidate = cls(
            name=clean_text(payload.get("name")),
            vat_number=clean_text(payload.get("vatNumber", payload.get("vat_number"))),
            tax_code=clean_text(payload.get("taxCode", payload.get("tax_code"))),
            address=clean_text(payload.get("address")),
            zip_code=clean_text(payload.get("zipCode", payload.get("zip_code"))),
            city=clean_text(payload.get("city")),
            country=clean_text(payload.get("country")),
        )
        return None if candidate.is_blank else candidate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "vat_number": self.vat_number,
            "tax_code": self.tax_code,
            "address": self.address,
            "zip_code": self.zip_code,
            "city": self.city,
            "country": self.country,
        }


@dataclass
class EntityResolution:
    """Verdict of matching an EntityCandidate against a registry."""
    matched_id: Optional[str] = None
    match_confidence: MatchConfidence = MatchConfidence.NONE
    alternatives: List[str] = field(default_factory=list)

    @property
    def is_match(self) -> bool:
        return self.matched_id is not None and self.match_confidence != MatchConfidence.NONE


@dataclass
class ExtractedFields:
    """Channel-independent view of what an extraction proposes for the draft."""
    amount: Optional[Decimal] = None
    flow_date: Optional[datetime.date] = None
    type: Optional[MovementType] = None
    document_number: Optional[str] = None
    notes: Optional[str] = None
    vat_type: Optional[VatCode] = None
    vat_amount: Optional[Decimal] = None
    supplier: Optional[EntityCandidate] = None
    customer: Optional[EntityCandidate] = None
    confidence: Optional[float] = None
    processing_notes: List[str] = field(default_factory=list)


def _vat_code_from_totals(vat_amount: Optional[Decimal], net_amount: Optional[Decimal]) -> Optional[VatCode]:
    if vat_amount is None or net_amount is None or net_amount <= 0:
        return None
    return VatCode.for_rate(vat_amount / net_amount)


def _movement_type(value: object) -> Optional[MovementType]:
    try:
        return MovementType(str(value).strip().lower())
    except ValueError:
        return None


@dataclass
class InvoiceHeader:
    document_type: Optional[str] = None
    document_number: Optional[str] = None
    document_date: Optional[datetime.date] = None
    total_amount: Optional[Decimal] = None
    vat_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    currency: str = "EUR"
    description: Optional[str] = None


@dataclass
class InvoiceLine:
    description: str = ""
    quantity: Decimal = Decimal("1")
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    vat_rate: Optional[Decimal] = None  # fraction, 0.22
    vat_amount: Optional[Decimal] = None


@dataclass
class InvoicePayment:
    terms: Optional[str] = None
    due_date: Optional[datetime.date] = None
    amount: Optional[Decimal] = None
    method: Optional[str] = None


@dataclass
class StructuredExtraction:
    """Strongly-typed e-invoice content from the XML channel."""
    channel: ClassVar[ExtractionChannel] = ExtractionChannel.STRUCTURED

    invoice: InvoiceHeader = field(default_factory=InvoiceHeader)
    supplier: Optional[EntityCandidate] = None
    customer: Optional[EntityCandidate] = None
    lines: List[InvoiceLine] = field(default_factory=list)
    payment: Optional[InvoicePayment] = None
    notes: List[str] = field(default_factory=list)
    source_file: Optional[str] = None

    def _vat_code(self, default_vat_code: Optional[VatCode]) -> Optional[VatCode]:
        rates = {line.vat_rate for line in self.lines if line.vat_rate is not None}
        if len(rates) > 1:
            # Mixed rates cannot be expressed by one code
            return None
        if rates:
            return VatCode.for_rate(rates.pop())
        derived = _vat_code_from_totals(self.invoice.vat_amount, self.invoice.net_amount)
        if derived is not None:
            return derived
        if self.invoice.vat_amount is not None and self.invoice.vat_amount == 0:
            return VatCode.ESENTE
        return default_vat_code

    def _description(self) -> Optional[str]:
        if self.invoice.description:
            return self.invoice.description
        descriptions = [line.description for line in self.lines if line.description]
        return " | ".join(descriptions[:3]) or None

    def _vat_total(self) -> Optional[Decimal]:
        if self.invoice.vat_amount is not None:
            return self.invoice.vat_amount
        line_vat = [line.vat_amount for line in self.lines if line.vat_amount is not None]
        return sum(line_vat, Decimal("0")) if line_vat else None

    def proposed_fields(
        self,
        registry: Optional[RegistrySnapshot] = None,
        default_vat_code: Optional[VatCode] = VatCode.IVA_22,
    ) -> ExtractedFields:
        movement_type = MovementType.EXPENSE
        if registry is not None and self.supplier is not None:
            # An invoice issued by one of our companies is income
            if registry.company_by_vat(self.supplier.vat_number) is not None:
                movement_type = MovementType.INCOME

        flow_date = self.invoice.document_date
        if self.payment is not None and self.payment.due_date is not None:
            flow_date = self.payment.due_date

        vat_code = self._vat_code(default_vat_code)
        return ExtractedFields(
            amount=self.invoice.total_amount,
            flow_date=flow_date,
            type=movement_type,
            document_number=self.invoice.document_number,
            notes=self._description(),
            vat_type=vat_code,
            vat_amount=self._vat_total(),
            supplier=self.supplier,
            customer=self.customer,
            processing_notes=list(self.notes),
        )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StructuredExtraction":
        """Build from the parse-xml payload shape ({supplier, customer, invoice, lines, payment})."""
        invoice = payload.get("invoice") or {}
        payment = payload.get("payment")
        return cls(
            supplier=EntityCandidate.from_payload(payload.get("supplier")),
            customer=EntityCandidate.from_payload(payload.get("customer")),
            invoice=InvoiceHeader(
                document_type=clean_text(invoice.get("documentType")),
                document_number=clean_text(invoice.get("documentNumber")),
                document_date=parse_date(invoice.get("documentDate")),
                total_amount=parse_amount(invoice.get("totalAmount")),
                vat_amount=parse_amount(invoice.get("vatAmount")),
                net_amount=parse_amount(invoice.get("netAmount")),
                currency=clean_text(invoice.get("currency")) or "EUR",
                description=clean_text(invoice.get("description")),
            ),
            lines=[
                InvoiceLine(
                    description=clean_text(line.get("description")) or "",
                    quantity=parse_decimal(line.get("quantity")) or Decimal("1"),
                    unit_price=parse_amount(line.get("unitPrice")),
                    total_price=parse_amount(line.get("totalPrice")),
                    vat_rate=parse_rate(line.get("vatRate")),
                    vat_amount=parse_amount(line.get("vatAmount")),
                )
                for line in payload.get("lines") or []
            ],
            payment=InvoicePayment(
                terms=clean_text(payment.get("terms")),
                due_date=parse_date(payment.get("dueDate")),
                amount=parse_amount(payment.get("amount")),
                method=clean_text(payment.get("method")),
            ) if payment else None,
            notes=list(payload.get("notes") or []),
        )


@dataclass
class UnstructuredExtraction:
    """Loosely-typed key/value extraction from the AI analyzer."""
    channel: ClassVar[ExtractionChannel] = ExtractionChannel.UNSTRUCTURED

    amount: Optional[Decimal] = None
    date: Optional[datetime.date] = None
    movement_type: Optional[MovementType] = None
    description: Optional[str] = None
    document_number: Optional[str] = None
    supplier_info: Optional[EntityCandidate] = None
    customer_info: Optional[EntityCandidate] = None
    vat_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    vat_rate: Optional[Decimal] = None  # fraction, 0.22
    confidence: Optional[float] = None
    processing_notes: List[str] = field(default_factory=list)
    file_type: Optional[str] = None

    def proposed_fields(
        self,
        registry: Optional[RegistrySnapshot] = None,
        default_vat_code: Optional[VatCode] = None,
    ) -> ExtractedFields:
        amount = self.amount
        if amount is None and self.net_amount is not None and self.vat_amount is not None:
            amount = self.net_amount + self.vat_amount

        vat_code = VatCode.for_rate(self.vat_rate)
        if vat_code is None:
            vat_code = _vat_code_from_totals(self.vat_amount, self.net_amount)

        return ExtractedFields(
            amount=amount,
            flow_date=self.date,
            type=self.movement_type,
            document_number=self.document_number,
            notes=self.description,
            vat_type=vat_code,
            vat_amount=self.vat_amount,
            supplier=self.supplier_info,
            customer=self.customer_info,
            confidence=self.confidence,
            processing_notes=list(self.processing_notes),
        )

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        notes: Optional[List[str]] = None,
        file_type: Optional[str] = None,
    ) -> "UnstructuredExtraction":
        confidence = parse_decimal(payload.get("confidence"))
        if confidence is not None and confidence > 1:
            confidence = confidence / 100
        processing_notes = list(payload.get("processingNotes") or [])
        processing_notes.extend(notes or [])
        return cls(
            amount=parse_amount(payload.get("amount")),
            date=parse_date(payload.get("date")),
            movement_type=_movement_type(payload.get("movementType")),
            description=clean_text(payload.get("description")),
            document_number=clean_text(payload.get("documentNumber")),
            supplier_info=EntityCandidate.from_payload(payload.get("supplierInfo")),
            customer_info=EntityCandidate.from_payload(payload.get("customerInfo")),
            vat_amount=parse_amount(payload.get("vatAmount")),
            net_amount=parse_amount(payload.get("netAmount")),
            vat_rate=parse_rate(payload.get("vatRate")),
            confidence=float(confidence) if confidence is not None else None,
            processing_notes=[str(n) for n in processing_notes if n],
            file_type=file_type or clean_text(payload.get("fileType")),
        )


ExtractionResult = Union[StructuredExtraction, UnstructuredExtraction]


def extraction_from_payload(channel: Union[ExtractionChannel, str], payload: Dict[str, Any]) -> ExtractionResult:
    """Build the tagged variant for a channel name."""
    channel = ExtractionChannel(channel)
    if channel == ExtractionChannel.STRUCTURED:
        return StructuredExtraction.from_payload(payload)
    return UnstructuredExtraction.from_payload(payload)
