# Overview: Pure money calculations for line items, document totals, and gold exchange.

"""
Goldbill Money Rules (authoritative)

- All amounts are Decimal; floats are converted through str() so 0.1 stays 0.1.
- Line totals are never rounded. Rounding to 2 places (half-up) happens once,
  at the document boundary: subtotal, discount, tax, total, exchange values.
- total_amount = subtotal - discount_amount + tax_amount, exactly, because all
  three terms are already rounded before they are combined.
- Inputs are never rounded to fit storage: weights keep 3 places, rates 4,
  money and percentages 2. Anything finer is refused with a ValidationError.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable

from ..errors import InvalidLineItem, InvalidDiscount, InvalidExchangeInput, ValidationError

CENTS = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

WEIGHT_PLACES = 3
RATE_PLACES = 4
MONEY_PLACES = 2
PERCENT_PLACES = 2


def round2(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_decimal(value, field: str, error_cls=ValidationError) -> Decimal:
    """Coerce JSON/number input to Decimal, rejecting bools, NaN and infinities."""
    if value is None or isinstance(value, bool):
        raise error_cls(field, f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise error_cls(field, f"{field} must be a number")
    if not result.is_finite():
        raise error_cls(field, f"{field} must be a finite number")
    return result


def check_places(value: Decimal, places: int, field: str, error_cls=ValidationError) -> Decimal:
    """Refuse a value the storage column would round."""
    try:
        exact = value.quantize(Decimal(1).scaleb(-places)) == value
    except InvalidOperation:
        exact = False
    if not exact:
        raise error_cls(field, f"{field} allows at most {places} decimal places")
    return value


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class ExchangeResult:
    old_value: Decimal
    difference: Decimal

    @property
    def customer_owes(self) -> bool:
        return self.difference >= ZERO


def compute_line_total(weight, rate, making_charge, wastage_charge, quantity) -> Decimal:
    """(weight * rate + making_charge + wastage_charge) * quantity, unrounded."""
    weight = to_decimal(weight, "weight", InvalidLineItem)
    rate = to_decimal(rate, "rate", InvalidLineItem)
    making_charge = to_decimal(making_charge, "making_charge", InvalidLineItem)
    wastage_charge = to_decimal(wastage_charge, "wastage_charge", InvalidLineItem)

    if weight <= ZERO:
        raise InvalidLineItem("weight", "weight must be greater than 0")
    if rate <= ZERO:
        raise InvalidLineItem("rate", "rate must be greater than 0")
    if making_charge < ZERO:
        raise InvalidLineItem("making_charge", "making_charge cannot be negative")
    if wastage_charge < ZERO:
        raise InvalidLineItem("wastage_charge", "wastage_charge cannot be negative")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidLineItem("quantity", "quantity must be an integer")
    if quantity < 1:
        raise InvalidLineItem("quantity", "quantity must be at least 1")

    return (weight * rate + making_charge + wastage_charge) * quantity


def discount_from_percentage(subtotal: Decimal, discount_percentage) -> Decimal:
    pct = to_decimal(discount_percentage, "discount_percentage", InvalidDiscount)
    if pct < ZERO or pct > HUNDRED:
        raise InvalidDiscount("discount_percentage", "discount_percentage must be between 0 and 100")
    return round2(round2(subtotal) * pct / HUNDRED)


def compute_totals(line_totals: Iterable[Decimal], discount_amount, tax_percentage) -> DocumentTotals:
    """
    Aggregate line totals into subtotal, tax and grand total.

    Raises InvalidDiscount when the discount is negative or larger than the
    subtotal; a negative grand total is never produced.
    """
    subtotal = round2(sum((Decimal(t) for t in line_totals), ZERO))

    discount = round2(to_decimal(discount_amount, "discount_amount", InvalidDiscount))
    if discount < ZERO:
        raise InvalidDiscount("discount_amount", "discount_amount cannot be negative")
    if discount > subtotal:
        raise InvalidDiscount(
            "discount_amount",
            "discount_amount cannot exceed subtotal",
            details={"discount_amount": str(discount), "subtotal": str(subtotal)},
        )

    tax_pct = to_decimal(tax_percentage, "tax_percentage")
    if tax_pct < ZERO:
        raise ValidationError("tax_percentage", "tax_percentage cannot be negative")

    tax_amount = round2((subtotal - discount) * tax_pct / HUNDRED)
    return DocumentTotals(
        subtotal=subtotal,
        discount_amount=discount,
        tax_amount=tax_amount,
        total_amount=subtotal - discount + tax_amount,
    )


def compute_exchange(old_weight, old_rate, new_items_total) -> ExchangeResult:
    """
    Value the surrendered old material against the new items.

    difference >= 0: customer pays the shop; difference < 0: shop pays the customer.
    """
    old_weight = to_decimal(old_weight, "old_material_weight", InvalidExchangeInput)
    old_rate = to_decimal(old_rate, "old_material_rate", InvalidExchangeInput)
    if old_weight <= ZERO:
        raise InvalidExchangeInput("old_material_weight", "old_material_weight must be greater than 0")
    if old_rate < ZERO:
        raise InvalidExchangeInput("old_material_rate", "old_material_rate cannot be negative")

    old_value = round2(old_weight * old_rate)
    difference = round2(Decimal(new_items_total)) - old_value
    return ExchangeResult(old_value=old_value, difference=difference)
