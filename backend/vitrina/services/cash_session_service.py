# Overview: Cash-register session state machine (open, sale gate, automatic and explicit close).

"""
Cash-Register Session Manager

STATES: NO_SESSION -> OPEN -> CLOSED (per operator and branch)

RULES:
- at most one OPEN session per (operator, branch)
- a session belongs to the business day it was opened on; once the branch's
  local date changes (DAY_CHANGE) or local time passes the daily cutoff
  (CUTOFF) it is closed automatically the next time anyone looks at it
- the sale gate checks day change before cutoff
- every close path goes through one guarded UPDATE ... WHERE closed_at IS NULL,
  so closing twice never changes stored totals

All business-day arithmetic uses the branch BusinessClock, never host-local
time. `now` arguments are UTC-naive and default to utcnow().
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    CashGateError,
    GATE_CUTOFF,
    GATE_DAY_CHANGE,
    GATE_NO_SESSION,
    NoOpenSessionError,
    SessionAlreadyOpenError,
    ValidationError,
)
from ..models import Branch, CashSession, Payment, Sale, User
from ..models.cash import CLOSE_REASON_CUTOFF, CLOSE_REASON_DAY_CHANGE, CLOSE_REASON_MANUAL
from ..models.sales import SALE_STATUS_CONFIRMED
from ..validation import PAYMENT_CARD, PAYMENT_CASH, PAYMENT_TRANSFER, parse_cents
from vitrina.time_utils import BusinessClock, to_utc_z, utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry
from .location_service import clock_for_branch, default_clock, get_branch


STATUS_OPEN = "OPEN"
STATUS_CLOSED = "CLOSED"
STATUS_NO_SESSION = "NO_SESSION"

MAX_HISTORY_LIMIT = 100


# =============================================================================
# LOOKUPS
# =============================================================================

def _open_session_query(operator_id: int, branch_id: int):
    return db.session.query(CashSession).filter(
        CashSession.operator_id == operator_id,
        CashSession.branch_id == branch_id,
        CashSession.closed_at.is_(None),
    )


def get_open_session(operator_id: int, branch_id: int, *, lock: bool = False) -> CashSession | None:
    query = _open_session_query(operator_id, branch_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def due_close_reason(cash_session: CashSession, clock: BusinessClock, now: datetime) -> str | None:
    """Why an open session must be closed at `now`, or None if it may stay open."""
    today = clock.business_date(now)
    if clock.business_date(cash_session.opened_at) != today:
        return CLOSE_REASON_DAY_CHANGE
    if now >= clock.cutoff_on(today):
        return CLOSE_REASON_CUTOFF
    return None


def close_instant(cash_session: CashSession, clock: BusinessClock, reason: str, now: datetime) -> datetime:
    """
    closed_at for a close at `now`.

    DAY_CHANGE closes at the local midnight ending the day the session was
    opened on, CUTOFF at today's cutoff, MANUAL at now; clamped to
    [opened_at, now].
    """
    today = clock.business_date(now)
    if reason == CLOSE_REASON_DAY_CHANGE:
        trigger = clock.day_bounds(clock.business_date(cash_session.opened_at))[1]
    elif reason == CLOSE_REASON_CUTOFF:
        trigger = clock.cutoff_on(today)
    else:
        trigger = now
    return max(cash_session.opened_at, min(now, trigger))


def compute_totals(cash_session: CashSession, until: datetime, *, inclusive: bool = False) -> dict:
    """
    Per-method totals of CONFIRMED sales by the session's operator at its
    branch confirmed in [opened_at, until), or [opened_at, until] when
    inclusive (manual closes and running totals at "now").
    """
    upper = Sale.confirmed_at <= until if inclusive else Sale.confirmed_at < until
    rows = (
        db.session.query(Payment.method, func.coalesce(func.sum(Payment.amount_cents), 0))
        .join(Sale, Sale.id == Payment.sale_id)
        .filter(
            Sale.operator_id == cash_session.operator_id,
            Sale.branch_id == cash_session.branch_id,
            Sale.status == SALE_STATUS_CONFIRMED,
            Sale.confirmed_at >= cash_session.opened_at,
            upper,
        )
        .group_by(Payment.method)
        .all()
    )
    by_method = {method: int(total or 0) for method, total in rows}
    cash = by_method.get(PAYMENT_CASH, 0)
    card = by_method.get(PAYMENT_CARD, 0)
    transfer = by_method.get(PAYMENT_TRANSFER, 0)
    return {
        "total_cash_cents": cash,
        "total_card_cents": card,
        "total_transfer_cents": transfer,
        "total_cents": cash + card + transfer,
        "expected_cash_cents": (cash_session.opening_float_cents or 0) + cash,
    }


# =============================================================================
# CLOSE ROUTINE (shared by every close path)
# =============================================================================

def _close_locked(
    cash_session: CashSession,
    reason: str,
    now: datetime,
    *,
    counted_cash_cents: int | None = None,
    closed_by_user_id: int | None = None,
) -> CashSession:
    """
    Close inside the current transaction. No-op on an already closed session.

    The UPDATE only matches while closed_at IS NULL, so of two racing
    closers exactly one writes and the other just reloads the stored row.
    """
    if cash_session.closed_at is not None:
        return cash_session

    clock = clock_for_branch(cash_session.branch)
    closed_at = close_instant(cash_session, clock, reason, now)
    values = compute_totals(cash_session, closed_at, inclusive=reason == CLOSE_REASON_MANUAL)
    values.update(
        closed_at=closed_at,
        close_reason=reason,
        closed_by_user_id=closed_by_user_id,
    )
    if counted_cash_cents is not None:
        values["counted_cash_cents"] = counted_cash_cents
        values["variance_cents"] = counted_cash_cents - values["expected_cash_cents"]

    result = db.session.execute(
        update(CashSession)
        .where(CashSession.id == cash_session.id, CashSession.closed_at.is_(None))
        .values(version_id=CashSession.version_id + 1, **values)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(cash_session)

    if result.rowcount == 1:
        current_app.logger.info(
            "Cash session %s closed (%s) at %s: cash=%s card=%s transfer=%s",
            cash_session.id, reason, to_utc_z(closed_at),
            values["total_cash_cents"], values["total_card_cents"], values["total_transfer_cents"],
        )
    return cash_session


# =============================================================================
# OPERATIONS
# =============================================================================

def open_session(
    operator_id: int,
    branch_id: int,
    opening_float_cents=0,
    *,
    now: datetime | None = None,
) -> CashSession:
    """
    Open a cash session for an operator at a branch.

    An open session that is already due for an automatic close (previous
    day, or past the cutoff) is closed first and does not block the new one.

    Raises:
        ValidationError: negative float or unknown operator
        ConfigurationError: unknown or inactive branch, bad clock settings
        SessionAlreadyOpenError: a usable session is already open
    """
    opening = parse_cents(opening_float_cents, "opening_float_cents")

    def _op():
        moment = now or utcnow()
        begin_write()
        branch = get_branch(branch_id)
        clock = clock_for_branch(branch)
        operator = db.session.get(User, operator_id)
        if operator is None or not operator.is_active:
            raise ValidationError("Operator not found or inactive", {"operator_id": operator_id})

        existing = get_open_session(operator_id, branch.id, lock=True)
        if existing is not None:
            reason = due_close_reason(existing, clock, moment)
            if reason is None:
                raise SessionAlreadyOpenError(
                    "Cash session already open",
                    {"session_id": existing.id, "opened_at": to_utc_z(existing.opened_at)},
                )
            _close_locked(existing, reason, moment)

        cash_session = CashSession(
            operator_id=operator_id,
            branch_id=branch.id,
            opening_float_cents=opening,
            opened_at=moment,
        )
        db.session.add(cash_session)
        try:
            db.session.flush()
        except IntegrityError:
            # Partial unique index: another request opened one concurrently
            db.session.rollback()
            raise SessionAlreadyOpenError(
                "Cash session already open",
                {"operator_id": operator_id, "branch_id": branch_id},
            )
        db.session.commit()
        current_app.logger.info(
            "Cash session %s opened by operator %s at branch %s (float=%s)",
            cash_session.id, operator_id, branch.id, opening,
        )
        return cash_session

    return run_with_retry(_op)


def check_sale_gate(operator_id: int, branch_id: int, now: datetime | None = None) -> CashSession:
    """
    Return the operator's usable open session.

    Runs inside the caller's transaction. When the session is due it is
    closed and COMMITTED before CashGateError is raised, so rolling back the
    rejected sale cannot undo the close.

    Raises:
        CashGateError: NO_SESSION, DAY_CHANGE or CUTOFF
    """
    moment = now or utcnow()
    begin_write()
    branch = get_branch(branch_id)
    clock = clock_for_branch(branch)

    cash_session = get_open_session(operator_id, branch.id, lock=True)
    if cash_session is None:
        raise CashGateError(
            "No open cash session; open the register before selling",
            GATE_NO_SESSION,
            {"operator_id": operator_id, "branch_id": branch.id},
        )

    reason = due_close_reason(cash_session, clock, moment)
    if reason is None:
        return cash_session

    _close_locked(cash_session, reason, moment)
    db.session.commit()
    message = (
        "Cash session closed because the business day changed"
        if reason == GATE_DAY_CHANGE
        else "Cash session closed at the daily cutoff"
    )
    raise CashGateError(
        message,
        GATE_DAY_CHANGE if reason == CLOSE_REASON_DAY_CHANGE else GATE_CUTOFF,
        {"session_id": cash_session.id, "closed_at": to_utc_z(cash_session.closed_at)},
    )


def auto_close_session(session_id: int, reason: str, now: datetime | None = None) -> CashSession:
    """Idempotent automatic close; an already closed session is returned unchanged."""
    if reason not in (CLOSE_REASON_DAY_CHANGE, CLOSE_REASON_CUTOFF):
        raise ValidationError("Invalid auto-close reason", {"reason": reason})

    def _op():
        moment = now or utcnow()
        begin_write()
        cash_session = lock_for_update(db.session.query(CashSession).filter_by(id=session_id)).first()
        if cash_session is None:
            raise NoOpenSessionError("Cash session not found", {"session_id": session_id})
        _close_locked(cash_session, reason, moment)
        db.session.commit()
        return cash_session

    return run_with_retry(_op)


def auto_close_due_sessions(now: datetime | None = None) -> list[CashSession]:
    """
    Periodic trigger: close every open session that is due.

    Each session is closed in its own transaction through auto_close_session.
    """
    moment = now or utcnow()
    open_sessions = (
        db.session.query(CashSession)
        .filter(CashSession.closed_at.is_(None))
        .order_by(CashSession.id.asc())
        .all()
    )
    due: list[tuple[int, str]] = []
    for cash_session in open_sessions:
        reason = due_close_reason(cash_session, clock_for_branch(cash_session.branch), moment)
        if reason is not None:
            due.append((cash_session.id, reason))

    return [auto_close_session(session_id, reason, moment) for session_id, reason in due]


def close_session(
    operator_id: int,
    branch_id: int,
    counted_cash_cents=None,
    *,
    now: datetime | None = None,
    closed_by_user_id: int | None = None,
) -> CashSession:
    """
    Explicit close with an optional drawer count.

    variance = counted - (opening float + cash sales)

    A session already due for an automatic close is closed with that reason
    at its automatic close instant (DAY_CHANGE or CUTOFF), so it never
    spans business days; the drawer count is still recorded.

    Raises:
        NoOpenSessionError: nothing to close
    """
    counted = parse_cents(counted_cash_cents, "counted_cash_cents", required=False)

    def _op():
        moment = now or utcnow()
        begin_write()
        branch = get_branch(branch_id)
        clock = clock_for_branch(branch)
        cash_session = get_open_session(operator_id, branch.id, lock=True)
        if cash_session is None:
            raise NoOpenSessionError(
                "No open cash session",
                {"operator_id": operator_id, "branch_id": branch.id},
            )
        _close_locked(
            cash_session,
            due_close_reason(cash_session, clock, moment) or CLOSE_REASON_MANUAL,
            moment,
            counted_cash_cents=counted,
            closed_by_user_id=closed_by_user_id or operator_id,
        )
        db.session.commit()
        return cash_session

    return run_with_retry(_op)


def get_session_status(operator_id: int, branch_id: int, now: datetime | None = None) -> dict:
    """
    The operator's view of "today's register".

    OPEN (with pending_close_reason when a close is due, and running_totals
    up to now), else CLOSED with the latest session closed today, else
    NO_SESSION. Read-only.
    """
    moment = now or utcnow()
    branch = get_branch(branch_id)
    clock = clock_for_branch(branch)
    today = clock.business_date(moment)

    cash_session = get_open_session(operator_id, branch.id)
    if cash_session is not None:
        return {
            "status": STATUS_OPEN,
            "business_date": today.isoformat(),
            "pending_close_reason": due_close_reason(cash_session, clock, moment),
            "session": cash_session.to_dict(),
            "running_totals": compute_totals(cash_session, moment, inclusive=True),
        }

    start, end = clock.day_bounds(today)
    closed = (
        db.session.query(CashSession)
        .filter(
            CashSession.operator_id == operator_id,
            CashSession.branch_id == branch.id,
            CashSession.closed_at >= start,
            CashSession.closed_at < end,
        )
        .order_by(CashSession.closed_at.desc(), CashSession.id.desc())
        .first()
    )
    if closed is not None:
        return {
            "status": STATUS_CLOSED,
            "business_date": today.isoformat(),
            "pending_close_reason": None,
            "session": closed.to_dict(),
            "running_totals": None,
        }
    return {
        "status": STATUS_NO_SESSION,
        "business_date": today.isoformat(),
        "pending_close_reason": None,
        "session": None,
        "running_totals": None,
    }


def list_sessions(
    branch_id: int | None = None,
    operator_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    *,
    only_open: bool = False,
    limit: int = MAX_HISTORY_LIMIT,
) -> list[CashSession]:
    """
    Closing history, newest first (at most MAX_HISTORY_LIMIT rows).

    date_from / date_to are inclusive business dates matched against the day
    a session was opened, on the branch clock (the app clock when no branch
    is given).
    """
    if date_from and date_to and date_from > date_to:
        raise ValidationError(
            "date_from must not be after date_to",
            {"date_from": date_from.isoformat(), "date_to": date_to.isoformat()},
        )

    query = db.session.query(CashSession)
    if branch_id is not None:
        branch = db.session.get(Branch, branch_id)
        if branch is None:
            raise ValidationError("Branch not found", {"branch_id": branch_id})
        clock = clock_for_branch(branch)
        query = query.filter(CashSession.branch_id == branch.id)
    else:
        clock = default_clock()

    if operator_id is not None:
        query = query.filter(CashSession.operator_id == operator_id)
    if only_open:
        query = query.filter(CashSession.closed_at.is_(None))
    if date_from:
        query = query.filter(CashSession.opened_at >= clock.start_of_day(date_from))
    if date_to:
        query = query.filter(CashSession.opened_at < clock.start_of_day(date_to + timedelta(days=1)))

    limit = max(1, min(int(limit or MAX_HISTORY_LIMIT), MAX_HISTORY_LIMIT))
    return query.order_by(CashSession.opened_at.desc(), CashSession.id.desc()).limit(limit).all()
