# Overview: Petty-cash recorder: deliveries (money in) and change handed back on cash sales (money out).

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import func

from ..extensions import db
from ..errors import ValidationError
from ..models import PettyCashDelivery, PettyCashExpense, User
from ..validation import parse_cents
from vitrina.time_utils import BusinessClock, utcnow
from .concurrency import begin_write, run_with_retry
from .location_service import clock_for_branch, get_branch


def record_change_expense(
    branch_id: int,
    operator_id: int,
    sale_id: int | None,
    amount_cents: int,
    occurred_at: datetime,
    reason: str | None = None,
) -> PettyCashExpense:
    """Runs inside the sale transaction; no commit."""
    if amount_cents <= 0:
        raise ValidationError("change amount must be positive", {"amount_cents": amount_cents})
    expense = PettyCashExpense(
        branch_id=branch_id,
        operator_id=operator_id,
        sale_id=sale_id,
        amount_cents=amount_cents,
        reason=reason or (f"CHANGE FOR SALE #{sale_id}" if sale_id else "CHANGE"),
        occurred_at=occurred_at,
    )
    db.session.add(expense)
    db.session.flush()
    return expense


def record_delivery(
    branch_id: int,
    operator_id: int,
    amount_cents,
    *,
    authorized_by_user_id: int | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> PettyCashDelivery:
    amount = parse_cents(amount_cents, "amount_cents", allow_zero=False)

    def _op():
        begin_write()
        branch = get_branch(branch_id)
        operator = db.session.get(User, operator_id)
        if operator is None:
            raise ValidationError("Operator not found", {"operator_id": operator_id})
        delivery = PettyCashDelivery(
            branch_id=branch.id,
            operator_id=operator_id,
            authorized_by_user_id=authorized_by_user_id,
            amount_cents=amount,
            reason=(reason or "").strip() or None,
            occurred_at=now or utcnow(),
        )
        db.session.add(delivery)
        db.session.commit()
        return delivery

    return run_with_retry(_op)


def _window(clock: BusinessClock, day: date | None, now: datetime | None) -> tuple[date, datetime, datetime]:
    day = day or clock.business_date(now or utcnow())
    start, end = clock.day_bounds(day)
    return day, start, end


def list_expenses(
    branch_id: int,
    *,
    operator_id: int | None = None,
    day: date | None = None,
    now: datetime | None = None,
) -> list[PettyCashExpense]:
    """Expenses of one business day (today by default), newest first."""
    clock = clock_for_branch(get_branch(branch_id))
    _, start, end = _window(clock, day, now)
    query = db.session.query(PettyCashExpense).filter(
        PettyCashExpense.branch_id == branch_id,
        PettyCashExpense.occurred_at >= start,
        PettyCashExpense.occurred_at < end,
    )
    if operator_id is not None:
        query = query.filter(PettyCashExpense.operator_id == operator_id)
    return query.order_by(PettyCashExpense.occurred_at.desc(), PettyCashExpense.id.desc()).all()


def list_deliveries(
    branch_id: int,
    *,
    operator_id: int | None = None,
    day: date | None = None,
    now: datetime | None = None,
) -> list[PettyCashDelivery]:
    clock = clock_for_branch(get_branch(branch_id))
    _, start, end = _window(clock, day, now)
    query = db.session.query(PettyCashDelivery).filter(
        PettyCashDelivery.branch_id == branch_id,
        PettyCashDelivery.occurred_at >= start,
        PettyCashDelivery.occurred_at < end,
    )
    if operator_id is not None:
        query = query.filter(PettyCashDelivery.operator_id == operator_id)
    return query.order_by(PettyCashDelivery.occurred_at.desc(), PettyCashDelivery.id.desc()).all()


def _sum(model, operator_id: int, branch_id: int, start: datetime, end: datetime) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(model.amount_cents), 0))
        .filter(
            model.branch_id == branch_id,
            model.operator_id == operator_id,
            model.occurred_at >= start,
            model.occurred_at < end,
        )
        .scalar()
    )
    return int(total or 0)


def _latest(model, operator_id: int, branch_id: int):
    return (
        db.session.query(model)
        .filter(model.branch_id == branch_id, model.operator_id == operator_id)
        .order_by(model.occurred_at.desc(), model.id.desc())
        .first()
    )


def get_balance(
    operator_id: int,
    branch_id: int,
    day: date | None = None,
    *,
    now: datetime | None = None,
) -> dict:
    """
    Petty-cash balance = deliveries - change issued, for one business day
    and for the month containing it.
    """
    clock = clock_for_branch(get_branch(branch_id))
    day, day_start, day_end = _window(clock, day, now)
    month_start, month_end = clock.month_bounds(day)

    def _period(start, end) -> dict:
        delivered = _sum(PettyCashDelivery, operator_id, branch_id, start, end)
        change = _sum(PettyCashExpense, operator_id, branch_id, start, end)
        return {
            "delivered_cents": delivered,
            "change_cents": change,
            "balance_cents": delivered - change,
        }

    last_delivery = _latest(PettyCashDelivery, operator_id, branch_id)
    last_expense = _latest(PettyCashExpense, operator_id, branch_id)
    return {
        "operator_id": operator_id,
        "branch_id": branch_id,
        "business_date": day.isoformat(),
        "day": _period(day_start, day_end),
        "month": _period(month_start, month_end),
        "last_delivery": last_delivery.to_dict() if last_delivery else None,
        "last_expense": last_expense.to_dict() if last_expense else None,
    }
