# Overview: Unit price resolution with the basket-wide wholesale threshold.

from __future__ import annotations

from dataclasses import dataclass

from ..errors import NoSellablePriceError, ValidationError
from ..models import Product
from ..models.sales import PRICE_TIER_STANDARD, PRICE_TIER_WHOLESALE
from ..validation import BasketLine


# Total units in the basket (all lines) at which wholesale pricing applies
WHOLESALE_MIN_UNITS = 12


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: int
    unit_price_cents: int
    price_tier: str

    @property
    def extended_cents(self) -> int:
        return self.quantity * self.unit_price_cents


def is_wholesale_basket(basket: list[BasketLine]) -> bool:
    return sum(line.quantity for line in basket) >= WHOLESALE_MIN_UNITS


def resolve_prices(products: dict[int, Product], basket: list[BasketLine]) -> list[PricedLine]:
    """
    One PricedLine per basket line, in basket order.

    At or above the threshold every line whose product has a positive
    wholesale price uses it; the rest fall back to the standard price.
    Raises NoSellablePriceError when the chosen price is not positive.
    """
    wholesale = is_wholesale_basket(basket)
    priced: list[PricedLine] = []
    for line in basket:
        product = products.get(line.product_id)
        if product is None:
            raise ValidationError("Product not found", {"product_id": line.product_id})

        if wholesale and (product.wholesale_price_cents or 0) > 0:
            priced.append(PricedLine(line.product_id, line.quantity, product.wholesale_price_cents, PRICE_TIER_WHOLESALE))
            continue
        if (product.price_cents or 0) > 0:
            priced.append(PricedLine(line.product_id, line.quantity, product.price_cents, PRICE_TIER_STANDARD))
            continue
        raise NoSellablePriceError(
            "Product has no sellable price",
            {"product_id": product.id, "product_name": product.name, "wholesale": wholesale},
        )
    return priced
