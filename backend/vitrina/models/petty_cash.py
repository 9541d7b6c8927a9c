from __future__ import annotations

from ..extensions import db
from vitrina.time_utils import to_utc_z


class PettyCashDelivery(db.Model):
    """Float handed to an operator by an authorizer (money in)."""
    __tablename__ = "petty_cash_deliveries"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_petty_cash_deliveries_positive"),
        db.Index("ix_petty_cash_deliveries_branch_operator", "branch_id", "operator_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    authorized_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "operator_id": self.operator_id,
            "authorized_by_user_id": self.authorized_by_user_id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class PettyCashExpense(db.Model):
    """
    Change handed back to a customer during a cash sale (money out).

    Written inside the sale transaction, so it exists iff the sale committed.
    """
    __tablename__ = "petty_cash_expenses"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_petty_cash_expenses_positive"),
        db.Index("ix_petty_cash_expenses_branch_operator", "branch_id", "operator_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "operator_id": self.operator_id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
