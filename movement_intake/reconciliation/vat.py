"""
VAT Calculator.

Splits a VAT-inclusive gross amount into net and VAT for the Italian VAT
codes. Rounding (half-up, cents) is applied to the final results only.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Union

import structlog

from ..models import MovementDraft, VatCode
from ..normalize import ZERO, parse_decimal, parse_rate, quantize_amount

logger = structlog.get_logger()

# Fields whose change triggers a VAT recomputation
VAT_INPUT_FIELDS = frozenset({"amount", "vat_type"})


@dataclass(frozen=True)
class VatBreakdown:
    """Net/VAT split of an amount. ``gross`` is only filled by compute_vat_from_net."""
    net: Decimal
    vat: Decimal
    gross: Optional[Decimal] = None


def _rate(vat_code: Union[VatCode, str, None]) -> Decimal:
    if vat_code is None:
        return Decimal("0")
    return VatCode.parse(vat_code).rate


def compute_vat(gross: object, vat_code: Union[VatCode, str, None]) -> VatBreakdown:
    """
    Split a VAT-inclusive gross amount.

    vat = gross * rate / (1 + rate), net = gross - vat. A missing,
    unparsable or non-positive gross yields (0.00, 0.00).

    Example:
        compute_vat("122", "iva_22") -> VatBreakdown(net=100.00, vat=22.00)
    """
    amount = parse_decimal(gross)
    if amount is None or not amount.is_finite() or amount <= 0:
        return VatBreakdown(net=ZERO, vat=ZERO)

    rate = _rate(vat_code)
    vat = amount * rate / (1 + rate)
    net = amount - vat
    return VatBreakdown(net=quantize_amount(net), vat=quantize_amount(vat))


def compute_vat_from_net(net: object, vat_code: Union[VatCode, str, None]) -> VatBreakdown:
    """Apply VAT to a tax-exclusive base; returns net, vat and gross."""
    base = parse_decimal(net)
    if base is None or not base.is_finite() or base <= 0:
        return VatBreakdown(net=ZERO, vat=ZERO, gross=ZERO)

    rate = _rate(vat_code)
    vat = base * rate
    return VatBreakdown(
        net=quantize_amount(base),
        vat=quantize_amount(vat),
        gross=quantize_amount(base + vat),
    )


def vat_code_for_rate(rate: object) -> Optional[VatCode]:
    """Map "22%", "22", 22 or 0.22 to a VAT code. Zero means exempt; no match is None."""
    return VatCode.for_rate(parse_rate(rate))


def refresh_vat(draft: MovementDraft, changed_fields: Iterable[str] = ()) -> bool:
    """
    Post-mutation VAT pass.

    A change to amount or vat_type drops a manual override. An overridden
    vat_amount is left alone; otherwise it is derived from amount and
    vat_type, or cleared when either is missing.

    Returns:
        True if vat_amount changed
    """
    changed = set(changed_fields)
    if changed & VAT_INPUT_FIELDS:
        draft.vat_overridden = False

    if draft.vat_overridden:
        return False

    previous = draft.vat_amount
    if draft.amount is not None and draft.vat_type is not None:
        draft.vat_amount = compute_vat(draft.amount, draft.vat_type).vat
    else:
        draft.vat_amount = None

    if draft.vat_amount != previous:
        logger.debug(
            "VAT recomputed",
            draft_id=draft.draft_id,
            amount=str(draft.amount) if draft.amount is not None else None,
            vat_type=draft.vat_type.value if draft.vat_type else None,
            vat_amount=str(draft.vat_amount) if draft.vat_amount is not None else None,
        )
        return True
    return False
