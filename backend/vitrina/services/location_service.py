# Overview: Resolves a branch's clock and its FRONT/RESERVE stock locations.

"""
Location Resolver

Every branch needs exactly one sellable FRONT location and one RESERVE
location for allocation to work. Resolution order:
1. explicit role flag on the location
2. conventional name match (case-insensitive) among unflagged locations

Missing, ambiguous or unknown setups raise ConfigurationError; they are an
operational problem, never retried.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..errors import ConfigurationError
from ..models import Branch, Location
from ..models.branches import LOCATION_ROLE_FRONT, LOCATION_ROLE_RESERVE
from vitrina.time_utils import BusinessClock


FRONT_NAMES = ("vitrina", "front", "display")
RESERVE_NAMES = ("bodega", "reserve", "backroom")


@dataclass(frozen=True)
class LocationPair:
    front: Location
    reserve: Location


def get_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id) if branch_id is not None else None
    if not branch:
        raise ConfigurationError("Branch not found", {"branch_id": branch_id})
    if not branch.is_active:
        raise ConfigurationError("Branch is not active", {"branch_id": branch_id})
    return branch


def default_clock() -> BusinessClock:
    """Clock from BUSINESS_TIMEZONE / CASH_CUTOFF_TIME, for queries not scoped to a branch."""
    try:
        return BusinessClock.from_settings(
            current_app.config["BUSINESS_TIMEZONE"],
            current_app.config["CASH_CUTOFF_TIME"],
        )
    except ValueError as e:
        raise ConfigurationError(str(e))


def clock_for_branch(branch: Branch) -> BusinessClock:
    """Branch timezone/cutoff, falling back to BUSINESS_TIMEZONE / CASH_CUTOFF_TIME."""
    tz_name = branch.timezone or current_app.config["BUSINESS_TIMEZONE"]
    cutoff = branch.cash_cutoff or current_app.config["CASH_CUTOFF_TIME"]
    try:
        return BusinessClock.from_settings(tz_name, cutoff)
    except ValueError as e:
        raise ConfigurationError(str(e), {"branch_id": branch.id})


def _pick(locations: list[Location], role: str, names: tuple[str, ...], branch_id: int) -> Location:
    flagged = [loc for loc in locations if loc.role == role]
    if len(flagged) > 1:
        raise ConfigurationError(
            f"More than one {role} location configured",
            {"branch_id": branch_id, "role": role, "location_ids": [loc.id for loc in flagged]},
        )
    if flagged:
        return flagged[0]

    named = [loc for loc in locations if not loc.role and loc.name.strip().lower() in names]
    if len(named) > 1:
        raise ConfigurationError(
            f"Ambiguous {role} location (several name matches)",
            {"branch_id": branch_id, "role": role, "location_ids": [loc.id for loc in named]},
        )
    if not named:
        raise ConfigurationError(
            f"No {role} location configured",
            {"branch_id": branch_id, "role": role},
        )
    return named[0]


def resolve_locations(branch_id: int) -> LocationPair:
    branch = get_branch(branch_id)
    locations = (
        db.session.query(Location)
        .filter(Location.branch_id == branch.id)
        .order_by(Location.id.asc())
        .all()
    )
    front = _pick(locations, LOCATION_ROLE_FRONT, FRONT_NAMES, branch.id)
    reserve = _pick(locations, LOCATION_ROLE_RESERVE, RESERVE_NAMES, branch.id)
    return LocationPair(front=front, reserve=reserve)
