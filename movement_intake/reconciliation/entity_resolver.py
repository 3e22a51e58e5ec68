"""
Entity Resolver.

Matches a party read from a document against the supplier or customer
registry. VAT number equality is an exact match; the candidate name appearing
inside a registry display name is a fuzzy match. Nothing is ever created.
"""

from typing import List, Optional, Sequence

import structlog

from ..models import (
    EntityCandidate,
    EntityResolution,
    MatchConfidence,
)
from ..models.registry import RegistryEntry
from ..utils.text_similarity import contains_name, rank_by_similarity, vat_key

logger = structlog.get_logger()


class EntityResolver:
    """
    Resolves EntityCandidates against one registry list.

    Resolution order (first hit wins):
    1. VAT number equality (case-insensitive, whitespace-stripped) -> EXACT
    2. Candidate name contained in the entry's display name -> FUZZY
    3. Otherwise -> NONE

    Inactive entries never qualify. When several entries fuzzy-match, the one
    most similar to the candidate name wins and the rest become alternatives.
    """

    def resolve(
        self,
        candidate: Optional[EntityCandidate],
        registry: Sequence[RegistryEntry],
    ) -> EntityResolution:
        if candidate is None or candidate.is_blank:
            return EntityResolution()

        active = [entry for entry in registry if entry.is_active]

        exact = self._match_vat(candidate, active)
        if exact is not None:
            logger.debug(
                "Entity resolved by VAT number",
                entity_id=exact.id,
                vat_number=candidate.vat_number,
            )
            return EntityResolution(
                matched_id=exact.id,
                match_confidence=MatchConfidence.EXACT,
            )

        fuzzy = self._match_name(candidate, active)
        if fuzzy:
            best, *others = fuzzy
            logger.debug(
                "Entity resolved by name",
                entity_id=best.id,
                candidate_name=candidate.name,
                alternatives=len(others),
            )
            return EntityResolution(
                matched_id=best.id,
                match_confidence=MatchConfidence.FUZZY,
                alternatives=[entry.id for entry in others],
            )

        logger.debug(
            "Entity not resolved",
            candidate_name=candidate.name,
            vat_number=candidate.vat_number,
        )
        return EntityResolution()

    def _match_vat(
        self,
        candidate: EntityCandidate,
        entries: List[RegistryEntry],
    ) -> Optional[RegistryEntry]:
        wanted = vat_key(candidate.vat_number)
        if not wanted:
            return None
        for entry in entries:
            if vat_key(entry.vat_number) == wanted:
                return entry
        return None

    def _match_name(
        self,
        candidate: EntityCandidate,
        entries: List[RegistryEntry],
    ) -> List[RegistryEntry]:
        """Fuzzy hits ordered best first."""
        if not candidate.name or not candidate.name.strip():
            return []

        hits = [e for e in entries if contains_name(candidate.name, e.display_name)]
        if len(hits) <= 1:
            return hits

        ranking = rank_by_similarity(candidate.name, [e.display_name for e in hits])
        return [hits[index] for index, _score in ranking]
