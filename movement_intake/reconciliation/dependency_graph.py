"""
Field Dependency Graph.

Declarative rules between interdependent draft fields, plus the invariant
pass that runs after every mutation:

- company_id -> core_id, resource_id, office_id, iban_id
- type -> supplier_id (income), customer_id (expense), entity_type when it
  no longer fits the type
- entity_type -> customer_id, supplier_id, resource_id
- customer_id XOR supplier_id, consistent with type
- company-scoped references must belong to the selected company
- reason_id must be usable with the movement type
"""

from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import structlog

from ..models import EntityType, MovementDraft, MovementType, RegistrySnapshot
from ..models.draft import COMPANY_SCOPED_FIELDS

logger = structlog.get_logger()


@dataclass(frozen=True)
class DependencyRule:
    """
    A change on ``source`` clears ``dependents``.

    ``when`` limits the rule to certain new values of the source.
    ``only_values`` limits clearing to dependents currently holding one of
    those values.
    """
    source: str
    dependents: Tuple[str, ...]
    when: Optional[Tuple[Any, ...]] = None
    only_values: Optional[Tuple[Any, ...]] = None

    def fires_for(self, value: Any) -> bool:
        return self.when is None or value in self.when


DEFAULT_RULES: Tuple[DependencyRule, ...] = (
    DependencyRule("company_id", COMPANY_SCOPED_FIELDS),
    DependencyRule("type", ("supplier_id",), when=(MovementType.INCOME,)),
    DependencyRule("type", ("customer_id",), when=(MovementType.EXPENSE,)),
    DependencyRule(
        "type",
        ("entity_type",),
        when=(MovementType.INCOME,),
        only_values=(EntityType.SUPPLIER,),
    ),
    DependencyRule(
        "type",
        ("entity_type",),
        when=(MovementType.EXPENSE,),
        only_values=(EntityType.CUSTOMER,),
    ),
    DependencyRule("entity_type", ("customer_id", "supplier_id", "resource_id")),
)

# Entity types that cannot coexist with a movement type
_INCOMPATIBLE_ENTITY = {
    MovementType.INCOME: EntityType.SUPPLIER,
    MovementType.EXPENSE: EntityType.CUSTOMER,
}


def _empty_value(field_name: str) -> Any:
    return EntityType.UNSET if field_name == "entity_type" else None


def _check_acyclic(rules: Sequence[DependencyRule]) -> None:
    """Raise ValueError if the rule table contains a cycle."""
    edges: Dict[str, Set[str]] = defaultdict(set)
    for rule in rules:
        edges[rule.source].update(rule.dependents)

    visiting: Set[str] = set()
    done: Set[str] = set()

    def visit(node: str, path: List[str]) -> None:
        if node in done:
            return
        if node in visiting:
            cycle = " -> ".join(path + [node])
            raise ValueError(f"Dependency rules contain a cycle: {cycle}")
        visiting.add(node)
        for child in sorted(edges.get(node, ())):
            visit(child, path + [node])
        visiting.discard(node)
        done.add(node)

    for source in list(edges):
        visit(source, [])


class FieldDependencyGraph:
    """
    Applies field changes to a draft and cascades the consequences.

    Every operation is synchronous and idempotent: repeating a change that
    does not alter the stored value clears nothing.
    """

    def __init__(self, rules: Optional[Sequence[DependencyRule]] = None):
        self.rules: Tuple[DependencyRule, ...] = tuple(rules if rules is not None else DEFAULT_RULES)
        _check_acyclic(self.rules)
        self._by_source: Dict[str, List[DependencyRule]] = defaultdict(list)
        for rule in self.rules:
            self._by_source[rule.source].append(rule)

    def apply_change(
        self,
        field: str,
        new_value: Any,
        draft: MovementDraft,
        registry: Optional[RegistrySnapshot] = None,
    ) -> List[str]:
        """
        Write ``new_value`` into ``field`` and clear whatever depends on it.

        Args:
            field: Draft attribute (snake_case)
            new_value: Already-coerced value
            draft: Draft to mutate
            registry: Snapshot used for ownership and reason checks

        Returns:
            Names of the fields cleared as a consequence, in clearing order
        """
        previous = getattr(draft, field)
        setattr(draft, field, new_value)
        draft.defaulted.discard(field)

        cleared: List[str] = []
        if previous != new_value:
            self._cascade(field, new_value, draft, cleared)

        cleared.extend(
            f for f in self.enforce_invariants(draft, registry, written=field)
            if f not in cleared
        )

        if cleared:
            logger.debug(
                "Dependent fields cleared",
                draft_id=draft.draft_id,
                source=field,
                cleared=cleared,
            )
        return cleared

    def enforce_invariants(
        self,
        draft: MovementDraft,
        registry: Optional[RegistrySnapshot] = None,
        written: Optional[str] = None,
    ) -> List[str]:
        """
        Restore the cross-field invariants after any mutation.

        Args:
            draft: Draft to check
            registry: Snapshot for ownership and reason checks (skipped when None)
            written: Field just written by the caller; it wins the
                customer/supplier exclusion

        Returns:
            Names of the fields cleared
        """
        cleared: List[str] = []

        # Customer XOR supplier
        if draft.customer_id is not None and draft.supplier_id is not None:
            if written == "customer_id":
                loser = "supplier_id"
            elif written == "supplier_id":
                loser = "customer_id"
            elif draft.type == MovementType.EXPENSE:
                loser = "customer_id"
            else:
                loser = "supplier_id"
            self._clear(draft, loser, cleared)

        # Counterparty consistent with the movement type
        if draft.type == MovementType.INCOME and draft.supplier_id is not None:
            logger.warning(
                "Supplier not allowed on income movement",
                draft_id=draft.draft_id,
                supplier_id=draft.supplier_id,
            )
            self._clear(draft, "supplier_id", cleared)
        elif draft.type == MovementType.EXPENSE and draft.customer_id is not None:
            logger.warning(
                "Customer not allowed on expense movement",
                draft_id=draft.draft_id,
                customer_id=draft.customer_id,
            )
            self._clear(draft, "customer_id", cleared)

        if draft.type is not None and draft.entity_type == _INCOMPATIBLE_ENTITY.get(draft.type):
            self._clear(draft, "entity_type", cleared)

        if registry is not None:
            # Company-scoped references must belong to the selected company
            for name in COMPANY_SCOPED_FIELDS:
                value = getattr(draft, name)
                if value is not None and not registry.belongs_to_company(name, value, draft.company_id):
                    self._clear(draft, name, cleared)

            if draft.reason_id is not None and draft.type is not None:
                reason = registry.reason(draft.reason_id)
                if reason is not None and not reason.allows(draft.type):
                    self._clear(draft, "reason_id", cleared)

        return cleared

    def dependents_of(self, field: str) -> Set[str]:
        """All fields reachable from ``field`` through the rules."""
        reachable: Set[str] = set()
        queue = deque([field])
        while queue:
            source = queue.popleft()
            for rule in self._by_source.get(source, ()):
                for dependent in rule.dependents:
                    if dependent not in reachable:
                        reachable.add(dependent)
                        queue.append(dependent)
        return reachable

    def _cascade(self, field: str, value: Any, draft: MovementDraft, cleared: List[str]) -> None:
        for rule in self._by_source.get(field, ()):
            if not rule.fires_for(value):
                continue
            for dependent in rule.dependents:
                if rule.only_values is not None and getattr(draft, dependent) not in rule.only_values:
                    continue
                self._clear(draft, dependent, cleared)

    def _clear(self, draft: MovementDraft, name: str, cleared: List[str]) -> None:
        if draft.is_empty(name):
            return
        empty = _empty_value(name)
        setattr(draft, name, empty)
        # A cleared value no longer carries user intent
        draft.touched.discard(name)
        draft.defaulted.discard(name)
        if name not in cleared:
            cleared.append(name)
        self._cascade(name, empty, draft, cleared)
