"""
Shared fixtures: a small registry, drafts and FatturaPA documents.
"""

import asyncio
import copy
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from movement_intake.config import Settings
from movement_intake.ingestion import DocumentIngestionPipeline, UploadedDocument
from movement_intake.models import MovementDraft, RegistrySnapshot, UnstructuredExtraction


REGISTRY_PAYLOAD = {
    "companies": [
        {"id": "c1", "name": "Alfa S.p.A.", "vatNumber": "IT11111111111"},
        {"id": "c2", "name": "Beta S.r.l.", "vatNumber": "22222222222"},
    ],
    "cores": [
        {"id": "core1", "companyId": "c1", "name": "Consulting"},
        {"id": "core2", "companyId": "c2", "name": "Retail"},
    ],
    "resources": [
        {"id": "res1", "companyId": "c1", "name": "Luca Verdi"},
        {"id": "res2", "companyId": "c2", "name": "Anna Neri"},
    ],
    "offices": [
        {"id": "off1", "companyId": "c1", "name": "Milano"},
        {"id": "off2", "companyId": "c2", "name": "Torino"},
    ],
    "ibans": [
        {"id": "iban1", "companyId": "c1", "name": "IT60X0542811101000000123456"},
        {"id": "iban2", "companyId": "c2", "name": "IT60X0542811101000000654321"},
    ],
    "suppliers": [
        {"id": "sup1", "name": "ACME S.r.l.", "vatNumber": "01234567890"},
        {"id": "sup2", "name": "Rossi Forniture S.n.c.", "vatNumber": "09876543210"},
        {"id": "sup3", "name": "Rossi Forniture Sud S.r.l.", "vatNumber": "05555555555"},
        {"id": "sup_old", "name": "Vecchia Ditta S.r.l.", "vatNumber": "03333333333", "isActive": False},
    ],
    "customers": [
        {"id": "cust1", "type": "business", "name": "Cliente Uno S.p.A.", "vatNumber": "04444444444"},
        {
            "id": "cust2",
            "type": "private",
            "firstName": "Mario",
            "lastName": "Bianchi",
            "taxCode": "BNCMRA80A01H501U",
        },
    ],
    "reasons": [
        {"id": "r_in", "name": "Vendite", "type": "income"},
        {"id": "r_out", "name": "Acquisti", "type": "expense"},
        {"id": "r_both", "name": "Giroconto", "type": "both"},
    ],
    "statuses": [{"id": "st1", "name": "Da saldare"}],
    "tags": [{"id": "tag1", "name": "Q1"}],
}


FATTURA_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<p:FatturaElettronica versione="FPR12" xmlns:p="http://ivaservizi.agenziaentrate.gov.it/docs/xsd/fatture/v1.2">
  <FatturaElettronicaHeader>
    <CedentePrestatore>
      <DatiAnagrafici>
        <IdFiscaleIVA><IdPaese>IT</IdPaese><IdCodice>{supplier_vat}</IdCodice></IdFiscaleIVA>
        <Anagrafica><Denominazione>{supplier_name}</Denominazione></Anagrafica>
      </DatiAnagrafici>
      <Sede>
        <Indirizzo>Via Roma 1</Indirizzo>
        <CAP>00100</CAP>
        <Comune>Roma</Comune>
        <Nazione>IT</Nazione>
      </Sede>
    </CedentePrestatore>
    <CessionarioCommittente>
      <DatiAnagrafici>
        <IdFiscaleIVA><IdPaese>IT</IdPaese><IdCodice>{customer_vat}</IdCodice></IdFiscaleIVA>
        <Anagrafica><Denominazione>{customer_name}</Denominazione></Anagrafica>
      </DatiAnagrafici>
    </CessionarioCommittente>
  </FatturaElettronicaHeader>
  <FatturaElettronicaBody>
    <DatiGenerali>
      <DatiGeneraliDocumento>
        <TipoDocumento>TD01</TipoDocumento>
        <Divisa>EUR</Divisa>
        <Data>2024-03-15</Data>
        <Numero>{number}</Numero>
        <ImportoTotaleDocumento>{total}</ImportoTotaleDocumento>
        <Causale>Servizi di consulenza</Causale>
      </DatiGeneraliDocumento>
    </DatiGenerali>
    <DatiBeniServizi>
      <DettaglioLinee>
        <NumeroLinea>1</NumeroLinea>
        <Descrizione>Consulenza marzo</Descrizione>
        <Quantita>1.00</Quantita>
        <PrezzoUnitario>{net}</PrezzoUnitario>
        <PrezzoTotale>{net}</PrezzoTotale>
        <AliquotaIVA>22.00</AliquotaIVA>
      </DettaglioLinee>
      <DatiRiepilogo>
        <AliquotaIVA>22.00</AliquotaIVA>
        <ImponibileImporto>{net}</ImponibileImporto>
        <Imposta>{vat}</Imposta>
      </DatiRiepilogo>
    </DatiBeniServizi>
    <DatiPagamento>
      <CondizioniPagamento>TP02</CondizioniPagamento>
      <DettaglioPagamento>
        <ModalitaPagamento>MP05</ModalitaPagamento>
        <DataScadenzaPagamento>2024-04-15</DataScadenzaPagamento>
        <ImportoPagamento>{total}</ImportoPagamento>
      </DettaglioPagamento>
    </DatiPagamento>
  </FatturaElettronicaBody>
</p:FatturaElettronica>
"""


def make_fattura(
    supplier_name="Acme Srl",
    supplier_vat="01234567890",
    customer_name="Alfa S.p.A.",
    customer_vat="11111111111",
    number="FT-1",
    net="1000.00",
    vat="220.00",
    total="1220.00",
) -> bytes:
    return FATTURA_TEMPLATE.format(
        supplier_name=supplier_name,
        supplier_vat=supplier_vat,
        customer_name=customer_name,
        customer_vat=customer_vat,
        number=number,
        net=net,
        vat=vat,
        total=total,
    ).encode("utf-8")


class FakeStorage:
    """Storage collaborator that keeps documents in memory."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.stored = []

    async def store(self, document):
        if self.fail:
            raise OSError("disk full")
        self.stored.append(document)
        return f"uploads/{len(self.stored)}_{document.file_name}"


class GatedAnalyzer:
    """Analyzer whose "slow.pdf" answer waits for the gate to open."""

    def __init__(self):
        self._gate = None

    @property
    def gate(self) -> asyncio.Event:
        # Created on first use so it binds to the running loop
        if self._gate is None:
            self._gate = asyncio.Event()
        return self._gate

    async def extract(self, file_ref, document):
        if document.file_name == "slow.pdf":
            await self.gate.wait()
            return UnstructuredExtraction(amount=Decimal("1.00"))
        return UnstructuredExtraction(amount=Decimal("2.00"))


@pytest.fixture
def registry_payload():
    return copy.deepcopy(REGISTRY_PAYLOAD)


@pytest.fixture
def registry():
    return RegistrySnapshot.from_dict(REGISTRY_PAYLOAD)


@pytest.fixture
def today():
    return date(2024, 3, 1)


@pytest.fixture
def new_draft(today):
    return MovementDraft.new(today)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def fattura_xml():
    return make_fattura()


@pytest.fixture
def xml_document(fattura_xml):
    return UploadedDocument(file_name="FT-1.xml", media_type="text/xml", content=fattura_xml)


@pytest.fixture
def pdf_document():
    return UploadedDocument(file_name="receipt.pdf", media_type="application/pdf", content=b"%PDF-1.4 test")


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def analyzer():
    mock = MagicMock()
    mock.extract = AsyncMock()
    return mock


@pytest.fixture
def pipeline(storage, analyzer, settings):
    return DocumentIngestionPipeline(storage=storage, analyzer=analyzer, settings=settings)


@pytest.fixture
def fattura_factory():
    return make_fattura


@pytest.fixture
def gated_analyzer():
    return GatedAnalyzer()
