from __future__ import annotations

from ..extensions import db
from vitrina.time_utils import to_utc_z


MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_TRANSFER = "TRANSFER"
MOVEMENT_ADJUST = "ADJUST"
MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_TRANSFER, MOVEMENT_ADJUST)


class Product(db.Model):
    """
    Product master data, owned by the catalog. Read-only for the POS core.

    Prices are authoritative in cents. wholesale_price_cents only applies
    when the basket reaches the wholesale threshold.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active", "is_active", "is_archived"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    name = db.Column(db.String(255), nullable=False)

    price_cents = db.Column(db.Integer, nullable=True)
    wholesale_price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    @property
    def is_sellable(self) -> bool:
        return bool(self.is_active) and not self.is_archived

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "price_cents": self.price_cents,
            "wholesale_price_cents": self.wholesale_price_cents,
            "is_active": self.is_active,
            "is_archived": self.is_archived,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockEntry(db.Model):
    """
    Current on-hand quantity of one product at one location.

    INVARIANTS:
    - quantity >= 0 at all times (CHECK constraint backs the service guard)
    - created lazily, never overwritten on create, never deleted
    - only changed by applying a Movement
    """
    __tablename__ = "stock_entries"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_stock_entries_product_location"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_entries_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    # False until the first movement touches the row
    is_tracked = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    location = db.relationship("Location")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "is_tracked": self.is_tracked,
            "updated_at": to_utc_z(self.updated_at),
        }


class Movement(db.Model):
    """
    Append-only audit record of a stock change.

    TYPES:
    - IN: destination only (receiving)
    - OUT: source only (sales, shrink)
    - TRANSFER: source -> destination, both updated in the same transaction
    - ADJUST: exactly one side (source decreases, destination increases)
    """
    __tablename__ = "movements"
    __table_args__ = (
        db.Index("ix_movements_product_occurred", "product_id", "occurred_at"),
        db.CheckConstraint("quantity > 0", name="ck_movements_positive_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    source_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)
    destination_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product")
    source_location = db.relationship("Location", foreign_keys=[source_location_id])
    destination_location = db.relationship("Location", foreign_keys=[destination_location_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "product_id": self.product_id,
            "source_location_id": self.source_location_id,
            "destination_location_id": self.destination_location_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "actor_user_id": self.actor_user_id,
            "sale_id": self.sale_id,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
