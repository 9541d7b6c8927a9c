from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import ValidationError


# Maximum amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999
MAX_LINE_QUANTITY = 100_000

PAYMENT_CASH = "CASH"
PAYMENT_CARD = "CARD"
PAYMENT_TRANSFER = "TRANSFER"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CARD, PAYMENT_TRANSFER)

_PAYMENT_ALIASES = {
    "CASH": PAYMENT_CASH,
    "EFECTIVO": PAYMENT_CASH,
    "CARD": PAYMENT_CARD,
    "TARJETA": PAYMENT_CARD,
    "CREDITO": PAYMENT_CARD,
    "DEBITO": PAYMENT_CARD,
    "TRANSFER": PAYMENT_TRANSFER,
    "TRANSFERENCIA": PAYMENT_TRANSFER,
    "BANK": PAYMENT_TRANSFER,
}

_QUANTITY_KEYS = ("quantity", "qty", "cantidad")
_PRODUCT_KEYS = ("product_id", "producto_id")


@dataclass(frozen=True)
class BasketLine:
    """The only basket shape the core accepts."""
    product_id: int
    quantity: int


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion: rejects floats, decimals, booleans and
    scientific notation instead of silently truncating them.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", {"field": field})
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", {"field": field})
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)",
                {"field": field},
            )
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", {"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", {"field": field})
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", {"field": field})
    raise ValidationError(f"{field} must be an integer", {"field": field})


def parse_cents(value: Any, field: str, *, allow_zero: bool = True, required: bool = True) -> int | None:
    """Validate a money amount in cents."""
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required", {"field": field})
        return None
    cents = coerce_int(value, field)
    if cents < 0 or (cents == 0 and not allow_zero):
        qualifier = "zero or positive" if allow_zero else "positive"
        raise ValidationError(f"{field} must be {qualifier}", {"field": field, "value": cents})
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum", {"field": field, "max": MAX_AMOUNT_CENTS})
    return cents


def _pick(raw: dict, keys: tuple[str, ...]):
    for key in keys:
        if key in raw and raw[key] is not None and raw[key] != "":
            return raw[key]
    return None


def normalize_basket(raw_items: Any) -> list[BasketLine]:
    """
    Normalize a loosely-typed request basket into BasketLine items.

    Accepts `quantity`/`qty`/`cantidad` and `product_id`/`producto_id`
    aliases. Lines are kept in request order; duplicates are not merged here
    (allocation sums them, sale lines keep them separate).
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    lines: list[BasketLine] = []
    for index, raw in enumerate(raw_items):
        if isinstance(raw, BasketLine):
            lines.append(raw)
            continue
        if not isinstance(raw, dict):
            raise ValidationError("each item must be an object", {"index": index})

        product_raw = _pick(raw, _PRODUCT_KEYS)
        if product_raw is None:
            raise ValidationError("product_id required", {"index": index})
        product_id = coerce_int(product_raw, "product_id")

        quantity_raw = _pick(raw, _QUANTITY_KEYS)
        if quantity_raw is None:
            raise ValidationError("quantity required", {"index": index, "product_id": product_id})
        quantity = coerce_int(quantity_raw, "quantity")
        if quantity <= 0:
            raise ValidationError(
                "quantity must be positive",
                {"index": index, "product_id": product_id, "quantity": quantity},
            )
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(
                "quantity exceeds maximum",
                {"index": index, "product_id": product_id, "max": MAX_LINE_QUANTITY},
            )
        lines.append(BasketLine(product_id=product_id, quantity=quantity))

    return lines


def sum_by_product(lines: list[BasketLine]) -> dict[int, int]:
    """Total requested units per product, preserving first-seen order."""
    totals: dict[int, int] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def normalize_payment_method(value: Any) -> str:
    s = str(value or "").strip().upper()
    if not s:
        return PAYMENT_CASH
    method = _PAYMENT_ALIASES.get(s)
    if method is None:
        raise ValidationError(
            f"Unsupported payment method: {value}",
            {"allowed": list(PAYMENT_METHODS)},
        )
    return method
