"""
Unit price policy and invoice totals
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from backoffice.models.user import Role
from backoffice.services.errors import BadRequestError

_Q2 = Decimal("0.01")

# Largest value a Numeric(12, 2) money column holds
MAX_AMOUNT = Decimal("9999999999.99")


def _q(value: Decimal) -> Decimal:
    return value.quantize(_Q2, rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal("0")
    # str() avoids binary float artifacts, 0.1 -> "0.1"
    return Decimal(str(value))


def resolve_unit_price(
    actor_role: str,
    allow_override: bool,
    catalog_price,
    requested_price,
) -> Decimal:
    """
    Final unit price for one invoice line.

    Resellers get the catalog price when overrides are off, and may only
    mark up when they are on. Admin prices are taken as given.
    """
    catalog = to_decimal(catalog_price)
    requested = to_decimal(requested_price)

    if actor_role != Role.RESELLER.value:
        return requested

    if not allow_override:
        return catalog

    if requested < catalog:
        raise BadRequestError(
            f"Unit price {requested} is below the catalog price {catalog}"
        )
    return requested


@dataclass
class StagedItem:
    product_id: str
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    line_total: Decimal
    tax: Decimal

    @property
    def total_price(self) -> Decimal:
        return _q(self.line_total + self.tax)


@dataclass
class StagedInvoice:
    items: List[StagedItem] = field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    tax_total: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax_total


def stage_items(items: list, invoice_tax_rate: Optional[Decimal] = None) -> StagedInvoice:
    """
    Compute line totals and invoice sums.

    `items` holds dicts with product_id, quantity, unit_price (already
    resolved) and an optional tax_rate that wins over the invoice rate.
    """
    staged = StagedInvoice()
    for item in items:
        rate = item.get("tax_rate")
        if rate is None:
            rate = invoice_tax_rate
        rate = to_decimal(rate)

        unit_price = to_decimal(item["unit_price"])
        line_total = unit_price * item["quantity"]
        tax = line_total * rate / 100

        staged.items.append(StagedItem(
            product_id=item["product_id"],
            quantity=item["quantity"],
            unit_price=unit_price,
            tax_rate=rate,
            line_total=line_total,
            tax=tax,
        ))
        staged.subtotal += line_total
        staged.tax_total += tax

    staged.subtotal = _q(staged.subtotal)
    staged.tax_total = _q(staged.tax_total)
    if staged.total > MAX_AMOUNT or any(i.total_price > MAX_AMOUNT for i in staged.items):
        raise BadRequestError(f"Invoice amounts cannot exceed {MAX_AMOUNT}")
    return staged
