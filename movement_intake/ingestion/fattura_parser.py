"""
FatturaPA (Italian electronic invoice) XML parser.
Extracts the structured channel payload from e-invoices.
"""

from decimal import Decimal
from typing import List, Optional, Union
import xml.etree.ElementTree as ET

import structlog

from ..models import (
    EntityCandidate,
    InvoiceHeader,
    InvoiceLine,
    InvoicePayment,
    StructuredExtraction,
)
from ..normalize import clean_text, parse_date, parse_decimal, quantize_amount

logger = structlog.get_logger()

ROOT_TAG = "FatturaElettronica"


class FatturaParseError(Exception):
    """Raised when a document is not a readable FatturaPA invoice."""

    def __init__(self, message: str, source_file: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source_file = source_file


def _local(tag: str) -> str:
    """Tag name without namespace ("{ns}Numero" -> "Numero")."""
    return tag.rsplit("}", 1)[-1]


def _children(element: Optional[ET.Element], name: str) -> List[ET.Element]:
    if element is None:
        return []
    return [child for child in element if _local(child.tag) == name]


def _find(element: Optional[ET.Element], *path: str) -> Optional[ET.Element]:
    """Follow a path of local tag names, first match at each step."""
    current = element
    for name in path:
        matches = _children(current, name)
        if not matches:
            return None
        current = matches[0]
    return current


def _text(element: Optional[ET.Element], *path: str) -> Optional[str]:
    found = _find(element, *path)
    if found is None:
        return None
    return clean_text(found.text)


def _percent(value: Optional[str]) -> Optional[Decimal]:
    """AliquotaIVA is always a percentage ("22.00")."""
    parsed = parse_decimal(value)
    if parsed is None:
        return None
    return parsed / Decimal(100)


class FatturaParser:
    """
    Parser for FatturaPA XML files (FPA12/FPR12).
    Namespace prefixes vary between issuers, so lookups use local tag names.
    """

    def parse_xml(
        self,
        xml_content: Union[str, bytes],
        source_file: Optional[str] = None,
    ) -> StructuredExtraction:
        """
        Parse a FatturaPA XML document.

        Args:
            xml_content: XML content as string or bytes
            source_file: Optional source file name for tracking

        Returns:
            StructuredExtraction with parser warnings in ``notes``

        Raises:
            FatturaParseError: malformed XML or missing FatturaPA structure
        """
        try:
            root = ET.fromstring(xml_content)
        except ET.ParseError as e:
            logger.error("Failed to parse FatturaPA XML", source_file=source_file, error=str(e))
            raise FatturaParseError(f"XML parse error: {e}", source_file) from e

        if _local(root.tag) != ROOT_TAG:
            raise FatturaParseError(
                f"Invalid XML format: {ROOT_TAG} structure not found",
                source_file,
            )

        header = _find(root, "FatturaElettronicaHeader")
        bodies = _children(root, "FatturaElettronicaBody")
        if header is None or not bodies:
            raise FatturaParseError("Invalid XML format: header or body missing", source_file)

        notes: List[str] = []
        if len(bodies) > 1:
            notes.append(f"Batch of {len(bodies)} invoices: only the first one was read")
        body = bodies[0]

        lines = self._extract_lines(body)
        invoice = self._extract_invoice(body, lines, notes)

        extraction = StructuredExtraction(
            invoice=invoice,
            supplier=self._extract_party(_find(header, "CedentePrestatore"), with_address=True),
            customer=self._extract_party(_find(header, "CessionarioCommittente")),
            lines=lines,
            payment=self._extract_payment(body),
            notes=notes,
            source_file=source_file,
        )

        logger.info(
            "FatturaPA parsed",
            source_file=source_file,
            document_number=invoice.document_number,
            total=str(invoice.total_amount) if invoice.total_amount is not None else None,
            lines=len(lines),
        )
        return extraction

    def _extract_party(self, party: Optional[ET.Element], with_address: bool = False) -> Optional[EntityCandidate]:
        """Read CedentePrestatore / CessionarioCommittente."""
        if party is None:
            return None

        anagrafici = _find(party, "DatiAnagrafici")
        name = _text(anagrafici, "Anagrafica", "Denominazione")
        if not name:
            first = _text(anagrafici, "Anagrafica", "Nome") or ""
            last = _text(anagrafici, "Anagrafica", "Cognome") or ""
            name = f"{first} {last}".strip() or None

        candidate = EntityCandidate(
            name=name,
            vat_number=_text(anagrafici, "IdFiscaleIVA", "IdCodice"),
            tax_code=_text(anagrafici, "CodiceFiscale"),
            country=_text(anagrafici, "IdFiscaleIVA", "IdPaese"),
        )
        if with_address:
            sede = _find(party, "Sede")
            candidate.address = _text(sede, "Indirizzo")
            candidate.zip_code = _text(sede, "CAP")
            candidate.city = _text(sede, "Comune")
            candidate.country = _text(sede, "Nazione") or candidate.country or "IT"

        return None if candidate.is_blank else candidate

    def _extract_lines(self, body: ET.Element) -> List[InvoiceLine]:
        lines = []
        for line in _children(_find(body, "DatiBeniServizi"), "DettaglioLinee"):
            total = parse_decimal(_text(line, "PrezzoTotale"))
            rate = _percent(_text(line, "AliquotaIVA"))
            vat = quantize_amount(total * rate) if total is not None and rate is not None else None
            lines.append(InvoiceLine(
                description=_text(line, "Descrizione") or "",
                quantity=parse_decimal(_text(line, "Quantita")) or Decimal("1"),
                unit_price=parse_decimal(_text(line, "PrezzoUnitario")),
                total_price=quantize_amount(total) if total is not None else None,
                vat_rate=rate,
                vat_amount=vat,
            ))
        return lines

    def _extract_invoice(self, body: ET.Element, lines: List[InvoiceLine], notes: List[str]) -> InvoiceHeader:
        document = _find(body, "DatiGenerali", "DatiGeneraliDocumento")

        # DatiRiepilogo carries the authoritative VAT summary; lines are the fallback
        summaries = _children(_find(body, "DatiBeniServizi"), "DatiRiepilogo")
        if summaries:
            net = sum((parse_decimal(_text(s, "ImponibileImporto")) or Decimal("0") for s in summaries), Decimal("0"))
            vat = sum((parse_decimal(_text(s, "Imposta")) or Decimal("0") for s in summaries), Decimal("0"))
        elif lines:
            net = sum((line.total_price or Decimal("0") for line in lines), Decimal("0"))
            vat = sum((line.vat_amount or Decimal("0") for line in lines), Decimal("0"))
        else:
            net = vat = None

        total = parse_decimal(_text(document, "ImportoTotaleDocumento"))
        if total is None and net is not None:
            total = net + vat
            notes.append("ImportoTotaleDocumento missing: total computed from taxable amount and VAT")

        causali = [clean_text(c.text) for c in _children(document, "Causale")]
        description = " ".join(c for c in causali if c) or None

        return InvoiceHeader(
            document_type=_text(document, "TipoDocumento") or "TD01",
            document_number=_text(document, "Numero"),
            document_date=parse_date(_text(document, "Data")),
            total_amount=quantize_amount(total) if total is not None else None,
            vat_amount=quantize_amount(vat) if vat is not None else None,
            net_amount=quantize_amount(net) if net is not None else None,
            currency=_text(document, "Divisa") or "EUR",
            description=description,
        )

    def _extract_payment(self, body: ET.Element) -> Optional[InvoicePayment]:
        dati = _find(body, "DatiPagamento")
        detail = _find(dati, "DettaglioPagamento")
        if detail is None:
            return None

        amount = parse_decimal(_text(detail, "ImportoPagamento"))
        return InvoicePayment(
            terms=_text(dati, "CondizioniPagamento"),
            due_date=parse_date(_text(detail, "DataScadenzaPagamento")),
            amount=quantize_amount(amount) if amount is not None else None,
            method=_text(detail, "ModalitaPagamento"),
        )


class FatturaExtractor:
    """Structured-channel collaborator: reads the uploaded bytes with FatturaParser."""

    def __init__(self, parser: Optional[FatturaParser] = None):
        self.parser = parser or FatturaParser()

    async def extract(self, file_ref: str, document) -> StructuredExtraction:
        return self.parser.parse_xml(document.content, source_file=document.file_name)
