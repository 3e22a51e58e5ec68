"""Reconciliation of extracted and user-entered data into movement drafts."""

from .vat import VatBreakdown, compute_vat, compute_vat_from_net, refresh_vat, vat_code_for_rate
from .entity_resolver import EntityResolver
from .dependency_graph import DEFAULT_RULES, DependencyRule, FieldDependencyGraph
from .merge import DraftMerger, MergeReport
from .orchestrator import DraftValidationError, MovementDraftSession

__all__ = [
    "VatBreakdown",
    "compute_vat",
    "compute_vat_from_net",
    "refresh_vat",
    "vat_code_for_rate",
    "EntityResolver",
    "DEFAULT_RULES",
    "DependencyRule",
    "FieldDependencyGraph",
    "DraftMerger",
    "MergeReport",
    "DraftValidationError",
    "MovementDraftSession",
]
