"""
Tests for merging extraction results into a draft.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from movement_intake.ingestion import FatturaParser
from movement_intake.models import (
    AnnotationKind,
    EntityCandidate,
    EntityType,
    MatchConfidence,
    MovementDraft,
    MovementType,
    UnstructuredExtraction,
    VatCode,
)
from movement_intake.reconciliation.merge import DraftMerger


@pytest.fixture
def merger():
    return DraftMerger()


@pytest.fixture
def invoice(fattura_xml):
    return FatturaParser().parse_xml(fattura_xml, source_file="FT-1.xml")


def kinds(draft):
    return [a.kind for a in draft.annotations]


class TestDirectFields:
    """Direct field merge rules."""

    def test_user_value_survives_extraction(self, merger, registry, new_draft):
        """An amount the user typed is never overwritten by a later extraction."""
        new_draft.amount = Decimal("500.00")
        new_draft.touched.add("amount")

        report = merger.merge(new_draft, UnstructuredExtraction(amount=Decimal("123.45")), registry)

        assert new_draft.amount == Decimal("500.00")
        assert report.skipped == ["amount"]
        assert AnnotationKind.SKIPPED_FIELD in kinds(new_draft)

    def test_user_cleared_field_stays_empty(self, merger, registry, new_draft):
        new_draft.touched.add("notes")

        merger.merge(new_draft, UnstructuredExtraction(description="Cena clienti"), registry)

        assert new_draft.notes is None

    def test_defaulted_fields_are_replaced(self, merger, registry, new_draft):
        extraction = UnstructuredExtraction(
            amount=Decimal("80.00"),
            date=date(2024, 2, 20),
            movement_type=MovementType.EXPENSE,
            document_number="R-77",
            description="Carburante",
        )
        report = merger.merge(new_draft, extraction, registry)

        assert new_draft.type == MovementType.EXPENSE
        assert new_draft.flow_date == date(2024, 2, 20)
        assert new_draft.amount == Decimal("80.00")
        assert new_draft.document_number == "R-77"
        assert new_draft.notes == "Carburante"
        assert "type" not in new_draft.defaulted
        assert "flow_date" not in new_draft.defaulted
        assert new_draft.insert_date == date(2024, 3, 1)
        assert report.skipped == []

    def test_edit_mode_keeps_persisted_values(self, merger, registry):
        draft = MovementDraft.from_movement({
            "id": "m1",
            "type": "expense",
            "insertDate": "2024-02-01",
            "flowDate": "2024-02-10",
            "amount": "300.00",
            "companyId": "c1",
        })
        extraction = UnstructuredExtraction(amount=Decimal("123.45"), date=date(2024, 3, 1))

        report = merger.merge(draft, extraction, registry)

        assert draft.amount == Decimal("300.00")
        assert draft.flow_date == date(2024, 2, 10)
        assert set(report.skipped) == {"amount", "flow_date"}

    def test_extracted_type_keeps_user_customer(self, merger, registry, new_draft, invoice):
        """A supplier invoice on a new draft must not wipe a customer the user picked."""
        new_draft.customer_id = "cust1"
        new_draft.touched.add("customer_id")

        report = merger.merge(new_draft, invoice, registry)

        assert new_draft.customer_id == "cust1"
        assert new_draft.type == MovementType.INCOME
        assert new_draft.supplier_id is None
        assert "type" in report.skipped
        assert "customer_id" not in report.cleared
        assert new_draft.amount == Decimal("1220.00")
        suggestion = [a for a in new_draft.annotations if a.kind == AnnotationKind.ENTITY_SUGGESTION]
        assert [a.details["candidate"]["name"] for a in suggestion] == ["Acme Srl"]


class TestVatMerge:
    """VAT handling during merge."""

    def test_vat_derived_from_rate(self, merger, registry, new_draft):
        extraction = UnstructuredExtraction(amount=Decimal("122.00"), vat_rate=Decimal("0.22"))
        report = merger.merge(new_draft, extraction, registry)

        assert new_draft.vat_type == VatCode.IVA_22
        assert new_draft.vat_amount == Decimal("22.00")
        assert new_draft.vat_overridden is False
        assert report.vat_recomputed

    def test_vat_amount_without_code_kept_as_override(self, merger, registry, new_draft):
        extraction = UnstructuredExtraction(amount=Decimal("100.00"), vat_amount=Decimal("7.00"))
        merger.merge(new_draft, extraction, registry)

        assert new_draft.vat_type is None
        assert new_draft.vat_amount == Decimal("7.00")
        assert new_draft.vat_overridden is True

    def test_vat_mismatch_annotated(self, merger, registry, new_draft):
        extraction = UnstructuredExtraction(
            amount=Decimal("122.00"),
            vat_rate=Decimal("0.22"),
            vat_amount=Decimal("30.00"),
        )
        merger.merge(new_draft, extraction, registry)

        assert new_draft.vat_amount == Decimal("22.00")
        mismatch = [a for a in new_draft.annotations if a.kind == AnnotationKind.VAT_MISMATCH]
        assert len(mismatch) == 1
        assert mismatch[0].details["document_vat"] == "30.00"

    def test_rounding_difference_not_annotated(self, merger, registry, new_draft):
        extraction = UnstructuredExtraction(
            amount=Decimal("100.00"),
            vat_rate=Decimal("0.22"),
            vat_amount=Decimal("18.04"),
        )
        merger.merge(new_draft, extraction, registry)

        assert AnnotationKind.VAT_MISMATCH not in kinds(new_draft)

    def test_user_vat_amount_survives_extracted_amount(self, merger, registry, new_draft):
        new_draft.vat_type = VatCode.IVA_22
        new_draft.vat_amount = Decimal("5.00")
        new_draft.vat_overridden = True
        new_draft.touched.update({"vat_type", "vat_amount"})

        merger.merge(new_draft, UnstructuredExtraction(amount=Decimal("122.00")), registry)

        assert new_draft.amount == Decimal("122.00")
        assert new_draft.vat_amount == Decimal("5.00")
        assert new_draft.vat_overridden


class TestEntityMerge:
    """Supplier/customer resolution during merge."""

    def test_structured_invoice_resolves_supplier(self, merger, registry, new_draft, invoice):
        report = merger.merge(new_draft, invoice, registry)

        assert new_draft.type == MovementType.EXPENSE
        assert new_draft.entity_type == EntityType.SUPPLIER
        assert new_draft.supplier_id == "sup1"
        assert new_draft.customer_id is None
        assert new_draft.amount == Decimal("1220.00")
        assert new_draft.vat_type == VatCode.IVA_22
        assert new_draft.vat_amount == Decimal("220.00")
        assert new_draft.document_number == "FT-1"
        assert new_draft.flow_date == date(2024, 4, 15)
        assert report.resolutions["supplier"].match_confidence == MatchConfidence.EXACT
        assert AnnotationKind.VAT_MISMATCH not in kinds(new_draft)

    def test_touched_entity_slot_not_overwritten(self, merger, registry, invoice):
        draft = MovementDraft(
            type=MovementType.EXPENSE,
            company_id="c1",
            entity_type=EntityType.RESOURCE,
            resource_id="res1",
            touched={"type", "entity_type", "resource_id"},
        )
        report = merger.merge(draft, invoice, registry)

        assert draft.entity_type == EntityType.RESOURCE
        assert draft.resource_id == "res1"
        assert draft.supplier_id is None
        assert report.resolutions == {}
        assert AnnotationKind.ENTITY_SUGGESTION in kinds(draft)

    def test_fuzzy_customer_match_is_annotated(self, merger, registry, new_draft):
        extraction = UnstructuredExtraction(
            amount=Decimal("610.00"),
            movement_type=MovementType.INCOME,
            customer_info=EntityCandidate(name="Cliente Uno"),
        )
        report = merger.merge(new_draft, extraction, registry)

        assert new_draft.entity_type == EntityType.CUSTOMER
        assert new_draft.customer_id == "cust1"
        assert report.resolutions["customer"].match_confidence == MatchConfidence.FUZZY
        suggestion = [a for a in new_draft.annotations if a.kind == AnnotationKind.ENTITY_SUGGESTION]
        assert suggestion[0].details["matched_id"] == "cust1"

    def test_ambiguous_match_lists_alternatives(self, merger, registry, new_draft):
        extraction = UnstructuredExtraction(
            movement_type=MovementType.EXPENSE,
            supplier_info=EntityCandidate(name="Rossi Forniture"),
        )
        merger.merge(new_draft, extraction, registry)

        assert new_draft.supplier_id == "sup2"
        ambiguous = [a for a in new_draft.annotations if a.kind == AnnotationKind.AMBIGUOUS_ENTITY]
        assert ambiguous[0].details["alternatives"] == ["sup3"]

    def test_unresolved_party_becomes_suggestion(self, merger, registry, new_draft):
        extraction = UnstructuredExtraction(
            movement_type=MovementType.EXPENSE,
            supplier_info=EntityCandidate(name="Nessuno S.r.l.", vat_number="12312312312"),
        )
        report = merger.merge(new_draft, extraction, registry)

        assert new_draft.supplier_id is None
        assert new_draft.entity_type == EntityType.UNSET
        assert report.resolutions["supplier"].match_confidence == MatchConfidence.NONE
        suggestion = [a for a in new_draft.annotations if a.kind == AnnotationKind.ENTITY_SUGGESTION]
        assert suggestion[0].details["candidate"]["vat_number"] == "12312312312"

    def test_without_registry_parties_are_only_suggested(self, merger, new_draft, invoice):
        report = merger.merge(new_draft, invoice, None)

        assert new_draft.supplier_id is None
        assert new_draft.amount == Decimal("1220.00")
        assert report.resolutions == {}
        assert AnnotationKind.ENTITY_SUGGESTION in kinds(new_draft)

    def test_party_without_movement_type_sets_type(self, merger, registry, new_draft):
        """With the type still a placeholder, the extracted supplier decides it."""
        extraction = UnstructuredExtraction(
            amount=Decimal("122.00"),
            supplier_info=EntityCandidate(name="ACME", vat_number="01234567890"),
        )
        report = merger.merge(new_draft, extraction, registry)

        assert new_draft.type == MovementType.EXPENSE
        assert new_draft.entity_type == EntityType.SUPPLIER
        assert new_draft.supplier_id == "sup1"
        assert report.resolutions["supplier"].match_confidence == MatchConfidence.EXACT

    def test_party_ruled_out_by_type_is_suggested(self, merger, registry, new_draft):
        new_draft.defaulted.discard("type")
        new_draft.touched.add("type")
        extraction = UnstructuredExtraction(
            supplier_info=EntityCandidate(name="ACME", vat_number="01234567890"),
        )
        report = merger.merge(new_draft, extraction, registry)

        assert new_draft.type == MovementType.INCOME
        assert new_draft.supplier_id is None
        assert report.resolutions == {}
        suggestion = [a for a in new_draft.annotations if a.kind == AnnotationKind.ENTITY_SUGGESTION]
        assert suggestion[0].details["candidate"]["name"] == "ACME"


class TestAnnotationsAndRollback:
    """Annotations and failure handling."""

    def test_confidence_and_notes(self, merger, registry, new_draft):
        extraction = UnstructuredExtraction(
            amount=Decimal("10.00"),
            confidence=0.85,
            processing_notes=["Low quality scan", "Date inferred from header"],
        )
        merger.merge(new_draft, extraction, registry)

        assert kinds(new_draft).count(AnnotationKind.CONFIDENCE) == 1
        assert kinds(new_draft).count(AnnotationKind.PROCESSING_NOTE) == 2
        # Annotations never leak into field values
        assert new_draft.notes is None

    def test_failure_restores_draft(self, registry, new_draft):
        resolver = MagicMock()
        resolver.resolve.side_effect = RuntimeError("registry unavailable")
        merger = DraftMerger(resolver=resolver)
        extraction = UnstructuredExtraction(
            amount=Decimal("122.00"),
            movement_type=MovementType.EXPENSE,
            supplier_info=EntityCandidate(name="ACME"),
        )

        report = merger.merge(new_draft, extraction, registry)

        assert report.rolled_back
        assert report.error == "registry unavailable"
        assert new_draft.amount is None
        assert new_draft.type == MovementType.INCOME
        assert "type" in new_draft.defaulted
        assert new_draft.annotations == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
