from __future__ import annotations

from ..extensions import db
from vitrina.time_utils import to_utc_z


LOCATION_ROLE_FRONT = "FRONT"
LOCATION_ROLE_RESERVE = "RESERVE"
LOCATION_ROLES = (LOCATION_ROLE_FRONT, LOCATION_ROLE_RESERVE)


class Branch(db.Model):
    """
    Physical store: the top-level scope for cash sessions and stock locations.

    Clock settings are optional; when null the application config supplies
    BUSINESS_TIMEZONE and CASH_CUTOFF_TIME.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)

    # IANA timezone name, e.g. "America/Guatemala"
    timezone = db.Column(db.String(64), nullable=True)
    # Daily cash cutoff as "HH:MM" in branch-local time
    cash_cutoff = db.Column(db.String(5), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "timezone": self.timezone,
            "cash_cutoff": self.cash_cutoff,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Location(db.Model):
    """
    Storage or sale point within a branch.

    ROLES:
    - FRONT: sellable display (sales debit stock here)
    - RESERVE: back storage that refills FRONT
    - NULL: neither; resolver falls back to conventional names
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "name", name="uq_locations_branch_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    role = db.Column(db.String(16), nullable=True, index=True)

    branch = db.relationship("Branch", backref=db.backref("locations", lazy=True))

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r} role={self.role} branch_id={self.branch_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "name": self.name,
            "role": self.role,
        }
