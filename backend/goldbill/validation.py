from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from goldbill.time_utils import parse_iso_datetime
from .errors import ValidationError, InvalidLineItem, InvalidDiscount, InvalidExchangeInput
from .models.documents import (
    VARIANT_INVOICE,
    VARIANT_BILL,
    VARIANT_EXCHANGE_BILL,
    PAYMENT_STATUSES,
)
from .services.calculations import (
    check_places,
    compute_line_total,
    to_decimal,
    ZERO,
    WEIGHT_PLACES,
    RATE_PLACES,
    MONEY_PLACES,
    PERCENT_PLACES,
)


@dataclass(frozen=True)
class VariantRules:
    prefix: str
    deducts_stock: bool
    allows_empty: bool


VARIANTS = {
    VARIANT_INVOICE: VariantRules(prefix="INV", deducts_stock=False, allows_empty=True),
    VARIANT_BILL: VariantRules(prefix="BILL", deducts_stock=True, allows_empty=False),
    VARIANT_EXCHANGE_BILL: VariantRules(prefix="EXB", deducts_stock=True, allows_empty=False),
}

MAX_TEXT_LENGTH = 255

LINE_ITEM_PLACES = {
    "weight": WEIGHT_PLACES,
    "rate": RATE_PLACES,
    "making_charge": MONEY_PLACES,
    "wastage_charge": MONEY_PLACES,
}


@dataclass(frozen=True)
class LineItemInput:
    position: int
    product_id: int | None
    product_name: str | None
    weight: Decimal
    rate: Decimal
    making_charge: Decimal
    wastage_charge: Decimal
    quantity: int
    total: Decimal


@dataclass(frozen=True)
class ExchangeInput:
    old_material_weight: Decimal
    old_material_rate: Decimal
    old_material_purity: str | None = None
    exchange_rate: Decimal | None = None


@dataclass(frozen=True)
class SaleRequest:
    """Validated, normalized createSaleDocument input. Never carries totals."""
    variant: str
    items: list[LineItemInput]
    customer_id: int | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_address: str | None = None
    discount_amount: Decimal | None = None
    discount_percentage: Decimal | None = None
    tax_percentage: Decimal | None = None
    payment_method: str | None = None
    payment_status: str | None = None
    amount_paid: Decimal | None = None
    notes: str | None = None
    exchange: ExchangeInput | None = None
    idempotency_key: str | None = None
    created_at: datetime | None = None

    @property
    def rules(self) -> VariantRules:
        return VARIANTS[self.variant]


def _optional_str(payload: dict, key: str, max_length: int = MAX_TEXT_LENGTH) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(key, f"{key} exceeds max length {max_length}")
    return value


def _optional_decimal(payload: dict, key: str, places: int, error_cls=ValidationError) -> Decimal | None:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return check_places(to_decimal(value, key, error_cls), places, key, error_cls)


def coerce_int(value: Any, field_name: str, error_cls=ValidationError) -> int:
    """
    Strict integer parsing: rejects bools, floats and '12.5' / '1e3' strings.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise error_cls(field_name, f"{field_name} must be an integer")


def _optional_int(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    return coerce_int(value, key)


def parse_line_item(raw: Any, position: int) -> LineItemInput:
    prefix = f"items[{position}]"
    if not isinstance(raw, dict):
        raise InvalidLineItem(prefix, f"{prefix} must be an object")

    product_id = raw.get("product_id")
    if product_id is not None:
        product_id = coerce_int(product_id, f"{prefix}.product_id", InvalidLineItem)

    product_name = raw.get("product_name")
    product_name = str(product_name).strip() if product_name is not None else None
    if not product_name:
        product_name = None
        if product_id is None:
            raise InvalidLineItem(f"{prefix}.product_name", "product_name is required for manual lines")

    quantity = raw.get("quantity", 1)
    quantity = coerce_int(quantity, f"{prefix}.quantity", InvalidLineItem)

    try:
        total = compute_line_total(
            raw.get("weight"),
            raw.get("rate"),
            raw.get("making_charge", 0),
            raw.get("wastage_charge", 0),
            quantity,
        )
    except InvalidLineItem as e:
        raise InvalidLineItem(f"{prefix}.{e.field}", str(e), details={"position": position})

    # Stored values must reproduce the line total exactly
    scaled = {}
    for key, places in LINE_ITEM_PLACES.items():
        field_name = f"{prefix}.{key}"
        value = to_decimal(raw.get(key, 0), field_name, InvalidLineItem)
        scaled[key] = check_places(value, places, field_name, InvalidLineItem)

    return LineItemInput(
        position=position,
        product_id=product_id,
        product_name=product_name,
        weight=scaled["weight"],
        rate=scaled["rate"],
        making_charge=scaled["making_charge"],
        wastage_charge=scaled["wastage_charge"],
        quantity=quantity,
        total=total,
    )


def _parse_exchange(payload: dict) -> ExchangeInput:
    weight = payload.get("old_material_weight")
    rate = payload.get("old_material_rate")
    if weight is None:
        raise InvalidExchangeInput("old_material_weight", "old_material_weight is required for exchange bills")
    if rate is None:
        raise InvalidExchangeInput("old_material_rate", "old_material_rate is required for exchange bills")

    weight = check_places(
        to_decimal(weight, "old_material_weight", InvalidExchangeInput),
        WEIGHT_PLACES, "old_material_weight", InvalidExchangeInput,
    )
    rate = check_places(
        to_decimal(rate, "old_material_rate", InvalidExchangeInput),
        RATE_PLACES, "old_material_rate", InvalidExchangeInput,
    )
    if weight <= ZERO:
        raise InvalidExchangeInput("old_material_weight", "old_material_weight must be greater than 0")
    if rate < ZERO:
        raise InvalidExchangeInput("old_material_rate", "old_material_rate cannot be negative")

    return ExchangeInput(
        old_material_weight=weight,
        old_material_rate=rate,
        old_material_purity=_optional_str(payload, "old_material_purity", 32),
        exchange_rate=_optional_decimal(payload, "exchange_rate", RATE_PLACES, InvalidExchangeInput),
    )


def parse_sale_request(payload: dict) -> SaleRequest:
    """
    Validate a createSaleDocument payload.

    Client-supplied subtotal/tax_amount/total_amount/line totals are ignored;
    they are always recomputed. Raises ValidationError naming the field.
    """
    if not isinstance(payload, dict):
        raise ValidationError("body", "request body must be a JSON object")

    variant = str(payload.get("variant") or "").strip().upper()
    if variant not in VARIANTS:
        raise ValidationError("variant", f"variant must be one of {', '.join(VARIANTS)}")
    rules = VARIANTS[variant]

    raw_items = payload.get("items")
    if raw_items is None:
        raw_items = []
    if not isinstance(raw_items, list):
        raise ValidationError("items", "items must be a list")
    if not raw_items and not rules.allows_empty:
        raise ValidationError("items", f"{variant} requires at least one item")

    items = [parse_line_item(raw, i) for i, raw in enumerate(raw_items)]

    customer_id = _optional_int(payload, "customer_id")
    customer_name = _optional_str(payload, "customer_name")
    if customer_id is None and customer_name is None:
        raise ValidationError("customer_name", "customer_name or customer_id is required")

    payment_status = _optional_str(payload, "payment_status", 16)
    if payment_status is not None:
        payment_status = payment_status.lower()
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError("payment_status", f"payment_status must be one of {', '.join(PAYMENT_STATUSES)}")

    amount_paid = _optional_decimal(payload, "amount_paid", MONEY_PLACES)
    if amount_paid is not None and amount_paid < ZERO:
        raise ValidationError("amount_paid", "amount_paid cannot be negative")

    tax_percentage = _optional_decimal(payload, "tax_percentage", PERCENT_PLACES)
    if tax_percentage is not None and tax_percentage < ZERO:
        raise ValidationError("tax_percentage", "tax_percentage cannot be negative")

    created_at = payload.get("created_at")
    if created_at is not None:
        try:
            created_at = parse_iso_datetime(str(created_at))
        except ValueError:
            raise ValidationError("created_at", "created_at must be an ISO-8601 datetime")

    return SaleRequest(
        variant=variant,
        items=items,
        customer_id=customer_id,
        customer_name=customer_name,
        customer_phone=_optional_str(payload, "customer_phone", 32),
        customer_address=_optional_str(payload, "customer_address", 2000),
        discount_amount=_optional_decimal(payload, "discount_amount", MONEY_PLACES, InvalidDiscount),
        discount_percentage=_optional_decimal(payload, "discount_percentage", PERCENT_PLACES, InvalidDiscount),
        tax_percentage=tax_percentage,
        payment_method=_optional_str(payload, "payment_method", 32),
        payment_status=payment_status,
        amount_paid=amount_paid,
        notes=_optional_str(payload, "notes", 4000),
        exchange=_parse_exchange(payload) if variant == VARIANT_EXCHANGE_BILL else None,
        idempotency_key=_optional_str(payload, "idempotency_key", 128),
        created_at=created_at,
    )
