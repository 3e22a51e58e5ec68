"""
Merge of extraction results into a movement draft.

An extraction only ever fills fields that are still empty (or hold a
placeholder default) and that the user has not written. Entity candidates go
through the resolver, caveats become annotations, and VAT is recomputed once
at the end. A failure restores the pre-merge snapshot.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from ..models import (
    AnnotationKind,
    DraftAnnotation,
    EntityCandidate,
    EntityResolution,
    EntityType,
    ExtractedFields,
    ExtractionResult,
    MatchConfidence,
    MovementDraft,
    MovementType,
    RegistrySnapshot,
    VatCode,
)
from ..models.registry import RegistryEntry
from .dependency_graph import FieldDependencyGraph
from .entity_resolver import EntityResolver
from .vat import VAT_INPUT_FIELDS, compute_vat, refresh_vat

logger = structlog.get_logger()

# Written in this order; type first so its cascade runs before anything else lands
DIRECT_FIELDS = (
    "type",
    "amount",
    "flow_date",
    "document_number",
    "notes",
    "vat_type",
)

ENTITY_FIELDS = frozenset({"entity_type", "customer_id", "supplier_id", "resource_id"})

VAT_TOLERANCE = Decimal("0.01")


def _display(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


@dataclass
class MergeReport:
    """Outcome of one merge."""
    written: List[str] = field(default_factory=list)
    cleared: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    resolutions: Dict[str, EntityResolution] = field(default_factory=dict)
    annotations: List[DraftAnnotation] = field(default_factory=list)
    vat_recomputed: bool = False
    rolled_back: bool = False
    error: Optional[str] = None


class DraftMerger:
    """
    Applies an ExtractionResult to a MovementDraft.

    Merge rules:
    1. Direct fields are written only when empty or defaulted, and untouched
    2. Supplier/customer candidates are resolved against the registry picked
       by the draft type and applied only to an empty, untouched entity slot
    3. Confidence, notes, unresolved parties and VAT disagreements become
       annotations
    4. VAT is recomputed once after all direct writes
    """

    def __init__(
        self,
        resolver: Optional[EntityResolver] = None,
        graph: Optional[FieldDependencyGraph] = None,
        default_vat_code: Optional[VatCode] = VatCode.IVA_22,
    ):
        self.resolver = resolver or EntityResolver()
        self.graph = graph or FieldDependencyGraph()
        self.default_vat_code = default_vat_code

    def merge(
        self,
        draft: MovementDraft,
        result: ExtractionResult,
        registry: Optional[RegistrySnapshot] = None,
    ) -> MergeReport:
        """
        Merge an extraction into the draft.

        Args:
            draft: Draft to update in place
            result: Structured or unstructured extraction
            registry: Snapshot used for entity resolution and invariants

        Returns:
            MergeReport; ``rolled_back`` is set when the draft was restored
        """
        snapshot = draft.snapshot()
        report = MergeReport()

        try:
            proposed = result.proposed_fields(registry, self.default_vat_code)
            self._merge_direct(draft, proposed, registry, report)
            self._merge_entities(draft, proposed, registry, report)
            self._annotate(draft, proposed, report)

            report.vat_recomputed = refresh_vat(draft)
            self._check_vat(draft, proposed, report)

            report.cleared.extend(
                f for f in self.graph.enforce_invariants(draft, registry)
                if f not in report.cleared
            )

        except Exception as e:
            logger.exception(
                "Merge failed, draft restored",
                draft_id=draft.draft_id,
                channel=result.channel.value,
                error=str(e),
            )
            draft.restore(snapshot)
            self.graph.enforce_invariants(draft, registry)
            return MergeReport(rolled_back=True, error=str(e))

        logger.info(
            "Extraction merged",
            draft_id=draft.draft_id,
            channel=result.channel.value,
            written=report.written,
            skipped=report.skipped,
        )
        return report

    def _mergeable(self, draft: MovementDraft, name: str) -> bool:
        return name not in draft.touched and draft.is_initial(name)

    def _write(
        self,
        draft: MovementDraft,
        name: str,
        value: Any,
        registry: Optional[RegistrySnapshot],
        report: MergeReport,
    ) -> bool:
        """
        Write one extracted value through the dependency graph.

        The write is undone when its cascade would clear a field the user
        entered; the field is then reported as skipped.
        """
        protected = set(draft.touched)
        snapshot = draft.snapshot()

        # A VAT amount the user typed outlives amount/vat_type filled in by an extraction
        if name in VAT_INPUT_FIELDS and "vat_amount" not in draft.touched:
            draft.vat_overridden = False
        cleared = self.graph.apply_change(name, value, draft, registry)

        lost = [f for f in cleared if f in protected]
        if lost:
            draft.restore(snapshot)
            if name not in report.skipped:
                report.skipped.append(name)
            logger.info(
                "Extracted value skipped, it would clear user input",
                draft_id=draft.draft_id,
                field=name,
                protected=lost,
            )
            return False

        report.written.append(name)
        report.cleared.extend(f for f in cleared if f not in report.cleared)
        return True

    def _merge_direct(
        self,
        draft: MovementDraft,
        proposed: ExtractedFields,
        registry: Optional[RegistrySnapshot],
        report: MergeReport,
    ) -> None:
        for name in DIRECT_FIELDS:
            value = getattr(proposed, name)
            if value is None:
                continue
            if not self._mergeable(draft, name):
                if getattr(draft, name) != value:
                    report.skipped.append(name)
                continue
            self._write(draft, name, value, registry, report)

        # Without a VAT code the extracted amount can't be derived, so keep it as an override
        if (
            proposed.vat_amount is not None
            and draft.vat_type is None
            and "vat_amount" not in draft.touched
            and draft.vat_amount is None
        ):
            draft.vat_amount = proposed.vat_amount
            draft.vat_overridden = True
            report.written.append("vat_amount")

    def _type_known(self, draft: MovementDraft) -> bool:
        return draft.type is not None and not self._mergeable(draft, "type")

    def _targets(
        self,
        draft: MovementDraft,
        proposed: ExtractedFields,
        registry: RegistrySnapshot,
    ) -> List[Tuple[EntityType, Optional[EntityCandidate], Sequence[RegistryEntry]]]:
        supplier = (EntityType.SUPPLIER, proposed.supplier, registry.suppliers)
        customer = (EntityType.CUSTOMER, proposed.customer, registry.customers)
        if not self._type_known(draft):
            return [supplier, customer]
        if draft.type == MovementType.EXPENSE:
            return [supplier]
        return [customer]

    def _entity_slot_free(self, draft: MovementDraft) -> bool:
        if ENTITY_FIELDS & draft.touched:
            return False
        return (
            draft.customer_id is None
            and draft.supplier_id is None
            and draft.resource_id is None
        )

    def _own_company(self, candidate: EntityCandidate, registry: Optional[RegistrySnapshot]) -> bool:
        return registry is not None and registry.company_by_vat(candidate.vat_number) is not None

    def _merge_entities(
        self,
        draft: MovementDraft,
        proposed: ExtractedFields,
        registry: Optional[RegistrySnapshot],
        report: MergeReport,
    ) -> None:
        if proposed.supplier is None and proposed.customer is None:
            return

        targets = [
            (entity_type, candidate, entries)
            for entity_type, candidate, entries in self._targets(draft, proposed, registry or RegistrySnapshot())
            if candidate is not None and not self._own_company(candidate, registry)
        ]
        targeted = {id(candidate) for _t, candidate, _e in targets}
        # Parties the movement type rules out are still surfaced
        unresolved: List[EntityCandidate] = [
            candidate for candidate in (proposed.supplier, proposed.customer)
            if candidate is not None
            and id(candidate) not in targeted
            and not self._own_company(candidate, registry)
        ]

        if registry is None or not self._entity_slot_free(draft):
            unresolved.extend(candidate for _t, candidate, _e in targets)
            for candidate in unresolved:
                self._suggest(draft, candidate, report)
            return

        for entity_type, candidate, entries in targets:
            resolution = self.resolver.resolve(candidate, entries)
            report.resolutions[entity_type.value] = resolution

            if not resolution.is_match or not self._apply_match(draft, entity_type, resolution, registry, report):
                unresolved.append(candidate)
                continue

            if resolution.match_confidence == MatchConfidence.FUZZY:
                message = f"Matched '{candidate.name}' by name only"
                if resolution.alternatives:
                    message += f"; {len(resolution.alternatives)} other entries also match"
                report.annotations.append(draft.annotate(
                    AnnotationKind.AMBIGUOUS_ENTITY if resolution.alternatives else AnnotationKind.ENTITY_SUGGESTION,
                    message,
                    entity_type=entity_type.value,
                    matched_id=resolution.matched_id,
                    alternatives=list(resolution.alternatives),
                ))
            # First match wins when the type is unknown
            break

        for candidate in unresolved:
            self._suggest(draft, candidate, report)

    def _apply_match(
        self,
        draft: MovementDraft,
        entity_type: EntityType,
        resolution: EntityResolution,
        registry: RegistrySnapshot,
        report: MergeReport,
    ) -> bool:
        """Write a resolved party; the movement type follows it while still a placeholder."""
        movement_type = MovementType.EXPENSE if entity_type == EntityType.SUPPLIER else MovementType.INCOME
        if draft.type != movement_type:
            if self._type_known(draft):
                return False
            if not self._write(draft, "type", movement_type, registry, report):
                return False

        id_field = "supplier_id" if entity_type == EntityType.SUPPLIER else "customer_id"
        self._write(draft, "entity_type", entity_type, registry, report)
        self._write(draft, id_field, resolution.matched_id, registry, report)
        return True

    def _suggest(self, draft: MovementDraft, candidate: EntityCandidate, report: MergeReport) -> None:
        label = candidate.name or candidate.vat_number or candidate.tax_code
        report.annotations.append(draft.annotate(
            AnnotationKind.ENTITY_SUGGESTION,
            f"Party '{label}' not matched to the registry",
            candidate=candidate.to_dict(),
        ))

    def _annotate(self, draft: MovementDraft, proposed: ExtractedFields, report: MergeReport) -> None:
        if proposed.confidence is not None:
            report.annotations.append(draft.annotate(
                AnnotationKind.CONFIDENCE,
                f"Extraction confidence {proposed.confidence:.0%}",
                confidence=proposed.confidence,
            ))

        for note in proposed.processing_notes:
            report.annotations.append(draft.annotate(AnnotationKind.PROCESSING_NOTE, note))

        if report.skipped:
            report.annotations.append(draft.annotate(
                AnnotationKind.SKIPPED_FIELD,
                "Extracted values not applied to fields already set",
                fields={name: _display(getattr(proposed, name, None)) for name in report.skipped},
            ))

    def _check_vat(self, draft: MovementDraft, proposed: ExtractedFields, report: MergeReport) -> None:
        if proposed.vat_amount is None or draft.vat_type is None or draft.amount is None:
            return
        derived = compute_vat(draft.amount, draft.vat_type).vat
        if abs(derived - proposed.vat_amount) > VAT_TOLERANCE:
            report.annotations.append(draft.annotate(
                AnnotationKind.VAT_MISMATCH,
                f"Document VAT {proposed.vat_amount} differs from computed {derived}",
                document_vat=str(proposed.vat_amount),
                computed_vat=str(derived),
                vat_type=draft.vat_type.value,
            ))
