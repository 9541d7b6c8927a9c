from __future__ import annotations

from ..extensions import db
from vitrina.time_utils import to_utc_z


SALE_STATUS_PENDING = "PENDING"
SALE_STATUS_CONFIRMED = "CONFIRMED"

PRICE_TIER_STANDARD = "STANDARD"
PRICE_TIER_WHOLESALE = "WHOLESALE"


class Sale(db.Model):
    """
    Point-of-sale document.

    LIFECYCLE: PENDING -> CONFIRMED. A PENDING row only exists inside the
    commit transaction; anything visible after commit is CONFIRMED and immutable.
    """
    __tablename__ = "sales"
    __table_args__ = (
        # Cash-session totals scan confirmed sales by operator/branch/time
        db.Index("ix_sales_branch_operator_confirmed", "branch_id", "operator_id", "status", "confirmed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=True, index=True)

    # Optional customer reference (customer records live outside the core)
    customer_id = db.Column(db.Integer, nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    # Amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_PENDING, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    branch = db.relationship("Branch")
    operator = db.relationship("User")

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "operator_id": self.operator_id,
            "cash_session_id": self.cash_session_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleLine(db.Model):
    """One basket line. line_total = quantity * unit_price - discount + tax."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    price_tier = db.Column(db.String(16), nullable=False, default=PRICE_TIER_STANDARD)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "price_tier": self.price_tier,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    Tender recorded against a sale.

    TENDER TYPES:
    - CASH: amount_received may exceed the total; the difference is change
    - CARD: optional processor metadata (brand, last4, auth code, txn id)
    - TRANSFER: bank transfer, exact amount
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    method = db.Column(db.String(16), nullable=False, index=True)

    # Amount applied to the sale
    amount_cents = db.Column(db.Integer, nullable=False)
    amount_received_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    # Card metadata (never the full PAN)
    card_brand = db.Column(db.String(32), nullable=True)
    card_last4 = db.Column(db.String(4), nullable=True)
    auth_code = db.Column(db.String(64), nullable=True)
    processor_txn_id = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "amount_received_cents": self.amount_received_cents,
            "change_cents": self.change_cents,
            "card_brand": self.card_brand,
            "card_last4": self.card_last4,
            "auth_code": self.auth_code,
            "processor_txn_id": self.processor_txn_id,
            "created_at": to_utc_z(self.created_at),
        }
