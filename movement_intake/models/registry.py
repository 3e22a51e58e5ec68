"""Read-only entity registries the draft references."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..normalize import vat_key
from .enums import CustomerKind, MovementType, ReasonType


def _get(payload: Dict[str, Any], snake: str, camel: Optional[str] = None, default: Any = None) -> Any:
    """Read a key in snake_case or camelCase form."""
    if snake in payload:
        return payload[snake]
    if camel and camel in payload:
        return payload[camel]
    return default


@dataclass(frozen=True)
class Company:
    id: str
    name: str = ""
    vat_number: Optional[str] = None


@dataclass(frozen=True)
class CompanyScopedEntity:
    """Base for entities that only exist under one company (cores, resources, offices, IBANs)."""
    id: str
    company_id: str
    name: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class Core(CompanyScopedEntity):
    """Business unit / division of a company."""


@dataclass(frozen=True)
class Resource(CompanyScopedEntity):
    """Internal resource (employee, collaborator) of a company."""


@dataclass(frozen=True)
class Office(CompanyScopedEntity):
    """Operational office of a company."""


@dataclass(frozen=True)
class Iban(CompanyScopedEntity):
    """Bank account of a company."""


@dataclass(frozen=True)
class Supplier:
    id: str
    name: str
    vat_number: Optional[str] = None
    tax_code: Optional[str] = None
    is_active: bool = True

    @property
    def display_name(self) -> str:
        return (self.name or "").strip()


@dataclass(frozen=True)
class Customer:
    id: str
    kind: CustomerKind = CustomerKind.BUSINESS
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    vat_number: Optional[str] = None
    tax_code: Optional[str] = None
    is_active: bool = True

    @property
    def display_name(self) -> str:
        """Private customers are shown as first + last name, businesses by name."""
        if self.kind == CustomerKind.PRIVATE:
            return f"{self.first_name or ''} {self.last_name or ''}".strip()
        return (self.name or "").strip()


@dataclass(frozen=True)
class MovementReason:
    id: str
    name: str = ""
    type: ReasonType = ReasonType.BOTH
    is_active: bool = True

    def allows(self, movement_type: Optional[MovementType]) -> bool:
        if movement_type is None or self.type == ReasonType.BOTH:
            return True
        return self.type.value == movement_type.value


@dataclass(frozen=True)
class MovementStatus:
    id: str
    name: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class Tag:
    id: str
    name: str = ""
    is_active: bool = True


RegistryEntry = Union[Supplier, Customer]


@dataclass(frozen=True)
class RegistrySnapshot:
    """
    Immutable view of the entity registries for one company set.

    A refreshed registry is a new snapshot; resolution and validation calls
    operate on whichever snapshot they were handed.
    """
    companies: List[Company] = field(default_factory=list)
    cores: List[Core] = field(default_factory=list)
    resources: List[Resource] = field(default_factory=list)
    offices: List[Office] = field(default_factory=list)
    ibans: List[Iban] = field(default_factory=list)
    suppliers: List[Supplier] = field(default_factory=list)
    customers: List[Customer] = field(default_factory=list)
    reasons: List[MovementReason] = field(default_factory=list)
    statuses: List[MovementStatus] = field(default_factory=list)
    tags: List[Tag] = field(default_factory=list)

    # Draft field -> registry list holding company-scoped entities
    SCOPED_FIELDS = {
        "core_id": "cores",
        "resource_id": "resources",
        "office_id": "offices",
        "iban_id": "ibans",
    }

    def scoped_owner(self, field_name: str, ref_id: str) -> Optional[str]:
        """Return the company owning a company-scoped reference, or None if unknown."""
        attr = self.SCOPED_FIELDS.get(field_name)
        if attr is None:
            return None
        for entity in getattr(self, attr):
            if entity.id == ref_id:
                return entity.company_id
        return None

    def belongs_to_company(self, field_name: str, ref_id: str, company_id: Optional[str]) -> bool:
        if company_id is None:
            return False
        return self.scoped_owner(field_name, ref_id) == company_id

    def scoped_options(self, field_name: str, company_id: Optional[str]) -> List[CompanyScopedEntity]:
        """Entities selectable for a company-scoped field under the given company."""
        attr = self.SCOPED_FIELDS.get(field_name)
        if attr is None or company_id is None:
            return []
        return [e for e in getattr(self, attr) if e.company_id == company_id and e.is_active]

    def company_by_vat(self, vat_number: Optional[str]) -> Optional[Company]:
        wanted = vat_key(vat_number)
        if not wanted:
            return None
        for company in self.companies:
            if vat_key(company.vat_number) == wanted:
                return company
        return None

    def reason(self, reason_id: str) -> Optional[MovementReason]:
        for reason in self.reasons:
            if reason.id == reason_id:
                return reason
        return None

    def reasons_for(self, movement_type: Optional[MovementType]) -> List[MovementReason]:
        return [r for r in self.reasons if r.is_active and r.allows(movement_type)]

    def supplier(self, supplier_id: str) -> Optional[Supplier]:
        return next((s for s in self.suppliers if s.id == supplier_id), None)

    def customer(self, customer_id: str) -> Optional[Customer]:
        return next((c for c in self.customers if c.id == customer_id), None)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RegistrySnapshot":
        """Build a snapshot from API/JSON payloads (camelCase or snake_case keys)."""

        def scoped(kind, items):
            return [
                kind(
                    id=str(item["id"]),
                    company_id=str(_get(item, "company_id", "companyId", "")),
                    name=_get(item, "name", default="") or "",
                    is_active=bool(_get(item, "is_active", "isActive", True)),
                )
                for item in items or []
            ]

        return cls(
            companies=[
                Company(
                    id=str(item["id"]),
                    name=_get(item, "name", default="") or "",
                    vat_number=_get(item, "vat_number", "vatNumber"),
                )
                for item in payload.get("companies") or []
            ],
            cores=scoped(Core, payload.get("cores")),
            resources=scoped(Resource, payload.get("resources")),
            offices=scoped(Office, payload.get("offices")),
            ibans=scoped(Iban, payload.get("ibans")),
            suppliers=[
                Supplier(
                    id=str(item["id"]),
                    name=_get(item, "name", default="") or "",
                    vat_number=_get(item, "vat_number", "vatNumber"),
                    tax_code=_get(item, "tax_code", "taxCode"),
                    is_active=bool(_get(item, "is_active", "isActive", True)),
                )
                for item in payload.get("suppliers") or []
            ],
            customers=[
                Customer(
                    id=str(item["id"]),
                    kind=CustomerKind(_get(item, "kind", "type", CustomerKind.BUSINESS.value)),
                    name=_get(item, "name"),
                    first_name=_get(item, "first_name", "firstName"),
                    last_name=_get(item, "last_name", "lastName"),
                    vat_number=_get(item, "vat_number", "vatNumber"),
                    tax_code=_get(item, "tax_code", "taxCode"),
                    is_active=bool(_get(item, "is_active", "isActive", True)),
                )
                for item in payload.get("customers") or []
            ],
            reasons=[
                MovementReason(
                    id=str(item["id"]),
                    name=_get(item, "name", default="") or "",
                    type=ReasonType(_get(item, "type", default=ReasonType.BOTH.value)),
                    is_active=bool(_get(item, "is_active", "isActive", True)),
                )
                for item in payload.get("reasons") or []
            ],
            statuses=[
                MovementStatus(id=str(item["id"]), name=_get(item, "name", default="") or "")
                for item in payload.get("statuses") or []
            ],
            tags=[
                Tag(id=str(item["id"]), name=_get(item, "name", default="") or "")
                for item in payload.get("tags") or []
            ],
        )
