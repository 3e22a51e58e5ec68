"""
Tests for the Entity Resolver.
"""

import pytest

from movement_intake.models import EntityCandidate, MatchConfidence
from movement_intake.reconciliation.entity_resolver import EntityResolver


@pytest.fixture
def resolver():
    return EntityResolver()


class TestEntityResolver:
    """Test suite for supplier/customer resolution."""

    def test_exact_vat_match(self, resolver, registry):
        """VAT equality wins regardless of the name."""
        candidate = EntityCandidate(name="Something Else", vat_number="01234567890")
        result = resolver.resolve(candidate, registry.suppliers)

        assert result.matched_id == "sup1"
        assert result.match_confidence == MatchConfidence.EXACT
        assert result.is_match

    def test_vat_compared_without_spaces_case_or_country_prefix(self, resolver, registry):
        candidate = EntityCandidate(vat_number=" it 01234 567890 ")
        result = resolver.resolve(candidate, registry.suppliers)

        assert result.matched_id == "sup1"
        assert result.match_confidence == MatchConfidence.EXACT

    def test_exact_outranks_fuzzy(self, resolver, registry):
        """A name hitting other entries never beats a VAT hit."""
        candidate = EntityCandidate(name="Rossi", vat_number="01234567890")
        result = resolver.resolve(candidate, registry.suppliers)

        assert result.matched_id == "sup1"
        assert result.match_confidence == MatchConfidence.EXACT
        assert result.alternatives == []

    def test_fuzzy_name_substring(self, resolver, registry):
        candidate = EntityCandidate(name="acme")
        result = resolver.resolve(candidate, registry.suppliers)

        assert result.matched_id == "sup1"
        assert result.match_confidence == MatchConfidence.FUZZY

    def test_fuzzy_ambiguity_lists_alternatives(self, resolver, registry):
        """Equally similar hits keep registry order; the others become alternatives."""
        candidate = EntityCandidate(name="Rossi Forniture")
        result = resolver.resolve(candidate, registry.suppliers)

        assert result.match_confidence == MatchConfidence.FUZZY
        assert result.matched_id == "sup2"
        assert result.alternatives == ["sup3"]

    def test_fuzzy_hits_all_reported(self, resolver, registry):
        candidate = EntityCandidate(name="forniture s")
        result = resolver.resolve(candidate, registry.suppliers)

        assert {result.matched_id, *result.alternatives} == {"sup2", "sup3"}

    def test_unknown_vat_falls_back_to_name(self, resolver, registry):
        candidate = EntityCandidate(name="ACME", vat_number="99999999999")
        result = resolver.resolve(candidate, registry.suppliers)

        assert result.matched_id == "sup1"
        assert result.match_confidence == MatchConfidence.FUZZY

    @pytest.mark.parametrize("name", ["", "   "])
    def test_blank_name_never_fuzzy_matches(self, resolver, registry, name):
        candidate = EntityCandidate(name=name, tax_code="XYZ")
        result = resolver.resolve(candidate, registry.suppliers)

        assert result.matched_id is None
        assert result.match_confidence == MatchConfidence.NONE

    def test_inactive_entries_ignored(self, resolver, registry):
        by_vat = resolver.resolve(EntityCandidate(vat_number="03333333333"), registry.suppliers)
        by_name = resolver.resolve(EntityCandidate(name="Vecchia"), registry.suppliers)

        assert by_vat.match_confidence == MatchConfidence.NONE
        assert by_name.match_confidence == MatchConfidence.NONE

    def test_private_customer_display_name(self, resolver, registry):
        candidate = EntityCandidate(name="mario bianchi")
        result = resolver.resolve(candidate, registry.customers)

        assert result.matched_id == "cust2"
        assert result.match_confidence == MatchConfidence.FUZZY

    def test_no_match(self, resolver, registry):
        result = resolver.resolve(EntityCandidate(name="Nessuno S.r.l."), registry.suppliers)

        assert not result.is_match
        assert result.match_confidence == MatchConfidence.NONE

    def test_missing_candidate(self, resolver, registry):
        assert resolver.resolve(None, registry.suppliers).match_confidence == MatchConfidence.NONE


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
