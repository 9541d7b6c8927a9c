from __future__ import annotations

from ..extensions import db
from vitrina.time_utils import to_utc_z


CLOSE_REASON_MANUAL = "MANUAL"
CLOSE_REASON_DAY_CHANGE = "DAY_CHANGE"
CLOSE_REASON_CUTOFF = "CUTOFF"
CLOSE_REASONS = (CLOSE_REASON_MANUAL, CLOSE_REASON_DAY_CHANGE, CLOSE_REASON_CUTOFF)


class CashSession(db.Model):
    """
    One operator's cash drawer for one business day at one branch.

    STATES: NO_SESSION -> OPEN (closed_at IS NULL) -> CLOSED.

    INVARIANTS:
    - at most one open session per (operator, branch), backed by a partial
      unique index
    - a closed session is never reopened and its totals never change
    - counted_cash_cents / variance_cents stay NULL on automatic closes
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_sessions_one_open",
            "operator_id",
            "branch_id",
            unique=True,
            sqlite_where=db.text("closed_at IS NULL"),
            postgresql_where=db.text("closed_at IS NULL"),
        ),
        db.Index("ix_cash_sessions_operator_branch_opened", "operator_id", "branch_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    opening_float_cents = db.Column(db.Integer, nullable=False, default=0)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    # Totals by payment method, filled on close
    total_cash_cents = db.Column(db.Integer, nullable=True)
    total_card_cents = db.Column(db.Integer, nullable=True)
    total_transfer_cents = db.Column(db.Integer, nullable=True)
    total_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)

    # Only set by an explicit close with a count
    counted_cash_cents = db.Column(db.Integer, nullable=True)
    variance_cents = db.Column(db.Integer, nullable=True)

    close_reason = db.Column(db.String(16), nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    operator = db.relationship("User", foreign_keys=[operator_id])
    closed_by = db.relationship("User", foreign_keys=[closed_by_user_id])
    branch = db.relationship("Branch")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operator_id": self.operator_id,
            "branch_id": self.branch_id,
            "opening_float_cents": self.opening_float_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "total_cash_cents": self.total_cash_cents,
            "total_card_cents": self.total_card_cents,
            "total_transfer_cents": self.total_transfer_cents,
            "total_cents": self.total_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "counted_cash_cents": self.counted_cash_cents,
            "variance_cents": self.variance_cents,
            "close_reason": self.close_reason,
            "closed_by_user_id": self.closed_by_user_id,
            "is_open": self.is_open,
        }
