# Overview: Allocation engine; makes sure the FRONT location can cover a basket, refilling from RESERVE.

"""
Allocation Engine

Two passes over one locked snapshot:
1. evaluate every product and collect ALL shortages (front + reserve cannot
   cover the request)
2. only if there are none, write one reserve -> front TRANSFER per product
   whose front quantity is short

So a failing basket writes no Movement at all, and a passing one moves
exactly the shortfall. ensure_front_stock() never commits: inside a sale the
transfers roll back together with the sale.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from flask import current_app

from ..extensions import db
from ..errors import InsufficientStockError, ValidationError
from ..models import Product
from ..models.inventory import MOVEMENT_TRANSFER
from ..validation import normalize_basket, sum_by_product
from .concurrency import begin_write, run_with_retry
from .location_service import resolve_locations
from .stock_service import ensure_stock_entries, load_stock_map, record_movement


AUTO_TRANSFER_REASON = "AUTO TRANSFER TO FRONT (POS)"
MANUAL_TRANSFER_REASON = "MANUAL TRANSFER TO FRONT"

SHORTAGE_REASON = "front and reserve stock cannot cover the requested quantity"


@dataclass(frozen=True)
class TransferRecord:
    movement_id: int
    product_id: int
    quantity: int
    source_location_id: int
    destination_location_id: int

    def to_dict(self) -> dict:
        return asdict(self)


def _load_products(product_ids) -> dict[int, Product]:
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(list(product_ids))).all()
    }
    missing = [pid for pid in product_ids if pid not in products]
    if missing:
        raise ValidationError("Product not found", {"product_ids": missing})
    return products


def ensure_front_stock(
    branch_id: int,
    items,
    actor_user_id: int | None,
    reason: str = AUTO_TRANSFER_REASON,
    *,
    now=None,
) -> list[TransferRecord]:
    """
    Guarantee front quantity >= requested for every product in `items`.

    Quantities of repeated products are summed. Raises InsufficientStockError
    with one shortage record per uncoverable product, ConfigurationError when
    the branch lacks a front or reserve location.
    """
    requested = sum_by_product(normalize_basket(items))
    pair = resolve_locations(branch_id)
    front_id, reserve_id = pair.front.id, pair.reserve.id

    products = _load_products(requested.keys())
    ensure_stock_entries(requested.keys(), [front_id, reserve_id])
    front_rows = load_stock_map(requested.keys(), front_id, lock=True)
    reserve_rows = load_stock_map(requested.keys(), reserve_id, lock=True)

    shortages: list[dict] = []
    plan: list[tuple[int, int]] = []
    for product_id, quantity in requested.items():
        front_qty = front_rows[product_id].quantity
        if front_qty >= quantity:
            continue

        shortfall = quantity - front_qty
        reserve_qty = reserve_rows[product_id].quantity
        if reserve_qty < shortfall:
            shortages.append({
                "product_id": product_id,
                "product_name": products[product_id].name,
                "requested": quantity,
                "front_quantity": front_qty,
                "reserve_quantity": reserve_qty,
                "shortfall": shortfall,
                "uncovered": shortfall - reserve_qty,
                "reason": SHORTAGE_REASON,
            })
            continue
        plan.append((product_id, shortfall))

    if shortages:
        raise InsufficientStockError(
            "Insufficient stock for one or more products",
            shortages,
            {"branch_id": branch_id},
        )

    transfers: list[TransferRecord] = []
    for product_id, shortfall in plan:
        movement = record_movement(
            MOVEMENT_TRANSFER,
            product_id,
            shortfall,
            source_location_id=reserve_id,
            destination_location_id=front_id,
            actor_user_id=actor_user_id,
            reason=reason,
            occurred_at=now,
        )
        transfers.append(TransferRecord(
            movement_id=movement.id,
            product_id=product_id,
            quantity=shortfall,
            source_location_id=reserve_id,
            destination_location_id=front_id,
        ))
        current_app.logger.info(
            "Transferred %s unit(s) of product %s reserve->front at branch %s (%s)",
            shortfall, product_id, branch_id, reason,
        )
    return transfers


def transfer_to_front(
    branch_id: int,
    items,
    actor_user_id: int | None = None,
    reason: str | None = None,
    *,
    now=None,
) -> list[TransferRecord]:
    """Manual refill of the front location, committed on its own."""
    lines = normalize_basket(items)
    reason = (reason or "").strip() or MANUAL_TRANSFER_REASON

    def _op():
        begin_write()
        transfers = ensure_front_stock(branch_id, lines, actor_user_id, reason, now=now)
        db.session.commit()
        return transfers

    return run_with_retry(_op)
