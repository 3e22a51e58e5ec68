"""
Tests for the Field Dependency Graph.
"""

from itertools import permutations

import pytest

from movement_intake.models import EntityType, MovementDraft, MovementType
from movement_intake.models.draft import COMPANY_SCOPED_FIELDS
from movement_intake.reconciliation.dependency_graph import DependencyRule, FieldDependencyGraph


@pytest.fixture
def graph():
    return FieldDependencyGraph()


@pytest.fixture
def scoped_draft():
    return MovementDraft(
        type=MovementType.EXPENSE,
        company_id="c1",
        core_id="core1",
        resource_id="res1",
        office_id="off1",
        iban_id="iban1",
    )


class TestCompanyRule:
    """company_id -> company-scoped references."""

    def test_company_change_clears_scoped_fields(self, graph, registry, scoped_draft):
        cleared = graph.apply_change("company_id", "c2", scoped_draft, registry)

        assert set(cleared) == set(COMPANY_SCOPED_FIELDS)
        for name in COMPANY_SCOPED_FIELDS:
            assert getattr(scoped_draft, name) is None

    def test_same_company_clears_nothing(self, graph, registry, scoped_draft):
        cleared = graph.apply_change("company_id", "c1", scoped_draft, registry)

        assert cleared == []
        assert scoped_draft.core_id == "core1"

    def test_reference_from_other_company_is_nulled(self, graph, registry, scoped_draft):
        cleared = graph.apply_change("office_id", "off2", scoped_draft, registry)

        assert cleared == ["office_id"]
        assert scoped_draft.office_id is None
        assert scoped_draft.resource_id == "res1"

    def test_ownership_not_checked_without_registry(self, graph, scoped_draft):
        assert graph.apply_change("office_id", "off2", scoped_draft) == []
        assert scoped_draft.office_id == "off2"

    def test_company_cleared_drops_scoped_fields(self, graph, registry, scoped_draft):
        graph.apply_change("company_id", None, scoped_draft, registry)

        assert all(getattr(scoped_draft, name) is None for name in COMPANY_SCOPED_FIELDS)


class TestTypeRules:
    """type -> counterparty fields."""

    def test_income_clears_supplier(self, graph, registry):
        draft = MovementDraft(
            type=MovementType.EXPENSE,
            entity_type=EntityType.SUPPLIER,
            supplier_id="sup1",
        )
        cleared = graph.apply_change("type", MovementType.INCOME, draft, registry)

        assert "supplier_id" in cleared
        assert "entity_type" in cleared
        assert draft.supplier_id is None
        assert draft.entity_type == EntityType.UNSET

    def test_expense_clears_customer(self, graph, registry):
        draft = MovementDraft(
            type=MovementType.INCOME,
            entity_type=EntityType.CUSTOMER,
            customer_id="cust1",
        )
        graph.apply_change("type", MovementType.EXPENSE, draft, registry)

        assert draft.customer_id is None
        assert draft.entity_type == EntityType.UNSET

    def test_resource_survives_type_change(self, graph, registry):
        draft = MovementDraft(
            type=MovementType.INCOME,
            company_id="c1",
            entity_type=EntityType.RESOURCE,
            resource_id="res1",
        )
        cleared = graph.apply_change("type", MovementType.EXPENSE, draft, registry)

        assert cleared == []
        assert draft.entity_type == EntityType.RESOURCE
        assert draft.resource_id == "res1"

    def test_incompatible_reason_is_nulled(self, graph, registry):
        draft = MovementDraft(type=MovementType.INCOME, reason_id="r_in")
        cleared = graph.apply_change("type", MovementType.EXPENSE, draft, registry)

        assert "reason_id" in cleared
        assert draft.reason_id is None

    def test_reason_for_both_types_kept(self, graph, registry):
        draft = MovementDraft(type=MovementType.INCOME, reason_id="r_both")
        graph.apply_change("type", MovementType.EXPENSE, draft, registry)

        assert draft.reason_id == "r_both"


class TestEntityTypeRule:
    """entity_type -> customer_id, supplier_id, resource_id."""

    def test_entity_type_change_clears_ids(self, graph, registry):
        draft = MovementDraft(
            type=MovementType.EXPENSE,
            entity_type=EntityType.SUPPLIER,
            supplier_id="sup1",
        )
        cleared = graph.apply_change("entity_type", EntityType.RESOURCE, draft, registry)

        assert cleared == ["supplier_id"]
        assert draft.supplier_id is None

    def test_cleared_fields_lose_touched_mark(self, graph, registry):
        draft = MovementDraft(
            type=MovementType.EXPENSE,
            entity_type=EntityType.SUPPLIER,
            supplier_id="sup1",
            touched={"supplier_id"},
        )
        graph.apply_change("entity_type", EntityType.UNSET, draft, registry)

        assert "supplier_id" not in draft.touched


class TestMutualExclusion:
    """customer_id XOR supplier_id."""

    def test_just_written_field_wins(self, graph):
        draft = MovementDraft()
        graph.apply_change("customer_id", "cust1", draft)
        graph.apply_change("supplier_id", "sup1", draft)

        assert draft.supplier_id == "sup1"
        assert draft.customer_id is None

        graph.apply_change("customer_id", "cust1", draft)
        assert draft.customer_id == "cust1"
        assert draft.supplier_id is None

    def test_default_clears_supplier(self, graph):
        draft = MovementDraft(customer_id="cust1", supplier_id="sup1")
        cleared = graph.enforce_invariants(draft)

        assert cleared == ["supplier_id"]
        assert draft.customer_id == "cust1"

    def test_expense_keeps_supplier(self, graph):
        draft = MovementDraft(type=MovementType.EXPENSE, customer_id="cust1", supplier_id="sup1")
        graph.enforce_invariants(draft)

        assert draft.supplier_id == "sup1"
        assert draft.customer_id is None

    def test_supplier_on_income_is_cleared(self, graph):
        draft = MovementDraft(type=MovementType.INCOME)
        graph.apply_change("supplier_id", "sup1", draft)

        assert draft.supplier_id is None

    def test_never_both_set_for_any_write_order(self, graph, registry):
        writes = [
            ("customer_id", "cust1"),
            ("supplier_id", "sup1"),
            ("type", MovementType.EXPENSE),
            ("entity_type", EntityType.SUPPLIER),
        ]
        for order in permutations(writes):
            draft = MovementDraft()
            for name, value in order:
                graph.apply_change(name, value, draft, registry)
                assert not (draft.customer_id and draft.supplier_id), order


class TestGraphStructure:
    """Rule table validation and traversal."""

    def test_cycle_rejected(self):
        with pytest.raises(ValueError, match="cycle"):
            FieldDependencyGraph([
                DependencyRule("a", ("b",)),
                DependencyRule("b", ("c",)),
                DependencyRule("c", ("a",)),
            ])

    def test_dependents_of(self, graph):
        assert graph.dependents_of("company_id") == set(COMPANY_SCOPED_FIELDS)
        assert graph.dependents_of("type") == {
            "supplier_id",
            "customer_id",
            "entity_type",
            "resource_id",
        }

    def test_idempotent(self, graph, registry, scoped_draft):
        first = graph.apply_change("company_id", "c2", scoped_draft, registry)
        second = graph.apply_change("company_id", "c2", scoped_draft, registry)

        assert first
        assert second == []

    def test_write_removes_default_mark(self, graph, new_draft):
        graph.apply_change("type", MovementType.EXPENSE, new_draft)

        assert "type" not in new_draft.defaulted


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
