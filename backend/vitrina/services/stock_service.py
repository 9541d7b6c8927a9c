# Overview: Stock ledger: StockEntry rows per (product, location) changed only through Movements.

"""
Stock Ledger Invariants (authoritative)

- StockEntry.quantity >= 0 at all times, checked on locked rows before any
  write and backed by a CHECK constraint.
- StockEntry rows are created lazily with quantity 0 and never overwritten on
  create; an existing row always wins.
- Movements are append-only. Applying one is the only way a quantity changes:
    IN        destination += qty
    OUT       source -= qty
    TRANSFER  source -= qty, destination += qty (same transaction)
    ADJUST    exactly one side
- Functions without a commit here run inside the caller's transaction.

Time semantics: all datetimes are UTC-naive.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func

from ..extensions import db
from ..errors import InsufficientStockError, ValidationError
from ..models import Location, Movement, Product, StockEntry
from ..models.inventory import (
    MOVEMENT_ADJUST,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_TRANSFER,
    MOVEMENT_TYPES,
)
from ..validation import MAX_LINE_QUANTITY, coerce_int, parse_cents
from vitrina.time_utils import parse_iso_datetime, utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry


def _parse_occurred_at(value) -> datetime:
    """None -> now; aware datetimes converted to UTC; strings parsed as ISO-8601."""
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            dt = None
        if dt is None:
            raise ValidationError("invalid occurred_at", {"value": value})
        return dt
    raise ValidationError("invalid occurred_at")


# =============================================================================
# STOCK ENTRIES
# =============================================================================

def ensure_stock_entries(product_ids, location_ids) -> None:
    """Create missing (product, location) rows at quantity 0. Idempotent."""
    product_ids = list(dict.fromkeys(product_ids))
    location_ids = list(dict.fromkeys(location_ids))
    if not product_ids or not location_ids:
        return

    existing = set(
        db.session.query(StockEntry.product_id, StockEntry.location_id)
        .filter(
            StockEntry.product_id.in_(product_ids),
            StockEntry.location_id.in_(location_ids),
        )
        .all()
    )
    created = False
    for product_id in product_ids:
        for location_id in location_ids:
            if (product_id, location_id) in existing:
                continue
            db.session.add(StockEntry(
                product_id=product_id,
                location_id=location_id,
                quantity=0,
                is_tracked=False,
            ))
            created = True
    if created:
        db.session.flush()


def load_stock_map(product_ids, location_id: int, *, lock: bool = True) -> dict[int, StockEntry]:
    """StockEntry rows at one location keyed by product id."""
    product_ids = list(dict.fromkeys(product_ids))
    if not product_ids:
        return {}
    query = db.session.query(StockEntry).filter(
        StockEntry.location_id == location_id,
        StockEntry.product_id.in_(product_ids),
    )
    if lock:
        query = lock_for_update(query)
    return {entry.product_id: entry for entry in query.all()}


def get_quantity(product_id: int, location_id: int) -> int:
    """Current quantity; 0 when the row does not exist yet."""
    quantity = (
        db.session.query(StockEntry.quantity)
        .filter_by(product_id=product_id, location_id=location_id)
        .scalar()
    )
    return int(quantity or 0)


# =============================================================================
# MOVEMENTS
# =============================================================================

def _validate_sides(movement_type: str, source_location_id, destination_location_id) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            f"Unsupported movement type: {movement_type}",
            {"allowed": list(MOVEMENT_TYPES)},
        )

    has_source = source_location_id is not None
    has_destination = destination_location_id is not None

    if movement_type == MOVEMENT_IN and (has_source or not has_destination):
        raise ValidationError("IN movements take a destination location only")
    if movement_type == MOVEMENT_OUT and (has_destination or not has_source):
        raise ValidationError("OUT movements take a source location only")
    if movement_type == MOVEMENT_TRANSFER:
        if not (has_source and has_destination):
            raise ValidationError("TRANSFER movements need source and destination locations")
        if source_location_id == destination_location_id:
            raise ValidationError("TRANSFER source and destination must differ")
    if movement_type == MOVEMENT_ADJUST and has_source == has_destination:
        raise ValidationError("ADJUST movements take exactly one location")


def record_movement(
    movement_type: str,
    product_id: int,
    quantity: int,
    *,
    source_location_id: int | None = None,
    destination_location_id: int | None = None,
    actor_user_id: int | None = None,
    reason: str | None = None,
    sale_id: int | None = None,
    unit_cost_cents: int | None = None,
    occurred_at=None,
) -> Movement:
    """
    Validate and apply one movement inside the current transaction.

    The affected StockEntry rows are created if missing, locked, checked and
    updated before the Movement row is appended. Raises InsufficientStockError
    when the source would go negative; nothing is written in that case.
    """
    movement_type = str(movement_type or "").strip().upper()
    _validate_sides(movement_type, source_location_id, destination_location_id)

    quantity = coerce_int(quantity, "quantity")
    if quantity <= 0:
        raise ValidationError("quantity must be positive", {"quantity": quantity})
    if quantity > MAX_LINE_QUANTITY:
        raise ValidationError("quantity exceeds maximum", {"max": MAX_LINE_QUANTITY})

    product = db.session.get(Product, product_id)
    if product is None:
        raise ValidationError("Product not found", {"product_id": product_id})

    location_ids = [loc for loc in (source_location_id, destination_location_id) if loc is not None]
    found = db.session.query(func.count(Location.id)).filter(Location.id.in_(location_ids)).scalar()
    if found != len(location_ids):
        raise ValidationError("Location not found", {"location_ids": location_ids})

    ensure_stock_entries([product_id], location_ids)
    rows = {
        entry.location_id: entry
        for entry in lock_for_update(
            db.session.query(StockEntry).filter(
                StockEntry.product_id == product_id,
                StockEntry.location_id.in_(location_ids),
            )
        ).all()
    }

    if source_location_id is not None:
        source = rows[source_location_id]
        if source.quantity < quantity:
            raise InsufficientStockError(
                "Insufficient stock at source location",
                [{
                    "product_id": product_id,
                    "product_name": product.name,
                    "location_id": source_location_id,
                    "requested": quantity,
                    "available": source.quantity,
                    "shortfall": quantity - source.quantity,
                }],
            )
        source.quantity -= quantity
        source.is_tracked = True

    if destination_location_id is not None:
        destination = rows[destination_location_id]
        destination.quantity += quantity
        destination.is_tracked = True

    movement = Movement(
        type=movement_type,
        product_id=product_id,
        source_location_id=source_location_id,
        destination_location_id=destination_location_id,
        quantity=quantity,
        unit_cost_cents=unit_cost_cents,
        actor_user_id=actor_user_id,
        sale_id=sale_id,
        reason=reason,
        occurred_at=_parse_occurred_at(occurred_at),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def post_movement(
    movement_type: str,
    product_id: int,
    quantity: int,
    **kwargs,
) -> Movement:
    """record_movement in its own committed transaction."""
    def _op():
        begin_write()
        movement = record_movement(movement_type, product_id, quantity, **kwargs)
        db.session.commit()
        return movement

    return run_with_retry(_op)


def receive_stock(
    product_id: int,
    location_id: int,
    quantity: int,
    *,
    unit_cost_cents=None,
    actor_user_id: int | None = None,
    reason: str | None = None,
    occurred_at=None,
) -> Movement:
    """IN movement: goods arriving at a location."""
    cost = parse_cents(unit_cost_cents, "unit_cost_cents", required=False)
    return post_movement(
        MOVEMENT_IN,
        product_id,
        quantity,
        destination_location_id=location_id,
        unit_cost_cents=cost,
        actor_user_id=actor_user_id,
        reason=reason or "RECEIVE",
        occurred_at=occurred_at,
    )


def adjust_stock(
    product_id: int,
    location_id: int,
    delta: int,
    *,
    actor_user_id: int | None = None,
    reason: str | None = None,
    occurred_at=None,
) -> Movement:
    """
    ADJUST movement from a signed delta: positive adds to the location,
    negative removes from it (never below zero).
    """
    delta = coerce_int(delta, "delta")
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required for adjustments")

    sides = {"destination_location_id": location_id} if delta > 0 else {"source_location_id": location_id}
    return post_movement(
        MOVEMENT_ADJUST,
        product_id,
        abs(delta),
        actor_user_id=actor_user_id,
        reason=str(reason).strip(),
        occurred_at=occurred_at,
        **sides,
    )


def list_movements(
    *,
    product_id: int | None = None,
    location_id: int | None = None,
    movement_type: str | None = None,
    sale_id: int | None = None,
    limit: int = 100,
) -> list[Movement]:
    """Newest first."""
    query = db.session.query(Movement)
    if product_id is not None:
        query = query.filter(Movement.product_id == product_id)
    if location_id is not None:
        query = query.filter(db.or_(
            Movement.source_location_id == location_id,
            Movement.destination_location_id == location_id,
        ))
    if movement_type:
        query = query.filter(Movement.type == movement_type.strip().upper())
    if sale_id is not None:
        query = query.filter(Movement.sale_id == sale_id)
    limit = max(1, min(int(limit), 500))
    return query.order_by(Movement.id.desc()).limit(limit).all()


def get_branch_stock(branch_id: int, product_id: int | None = None) -> list[dict]:
    """
    Per-product quantities across every location of a branch.

    Only rows that exist are reported; a product never stocked at the
    branch does not appear.
    """
    query = (
        db.session.query(StockEntry, Location, Product)
        .join(Location, Location.id == StockEntry.location_id)
        .join(Product, Product.id == StockEntry.product_id)
        .filter(Location.branch_id == branch_id)
    )
    if product_id is not None:
        query = query.filter(StockEntry.product_id == product_id)

    by_product: dict[int, dict] = {}
    for entry, location, product in query.order_by(Product.id.asc(), Location.id.asc()).all():
        item = by_product.setdefault(product.id, {
            "product_id": product.id,
            "sku": product.sku,
            "name": product.name,
            "total_quantity": 0,
            "locations": [],
        })
        item["locations"].append({
            "location_id": location.id,
            "location_name": location.name,
            "role": location.role,
            "quantity": entry.quantity,
            "is_tracked": entry.is_tracked,
        })
        item["total_quantity"] += entry.quantity
    return list(by_product.values())
