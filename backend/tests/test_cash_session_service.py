from datetime import date

import pytest

from vitrina.errors import (
    CashGateError,
    ConfigurationError,
    GATE_CUTOFF,
    GATE_DAY_CHANGE,
    GATE_NO_SESSION,
    NoOpenSessionError,
    SessionAlreadyOpenError,
    ValidationError,
)
from vitrina.models import CashSession, Sale
from vitrina.models.cash import CLOSE_REASON_CUTOFF, CLOSE_REASON_DAY_CHANGE, CLOSE_REASON_MANUAL
from vitrina.services import cash_session_service as svc
from vitrina.services.sales_service import commit_sale


def _session(db_session, session_id):
    db_session.expire_all()
    return db_session.get(CashSession, session_id)


class TestOpenSession:
    def test_open(self, db_session, branch, cashier, local_time):
        opened = svc.open_session(cashier.id, branch.id, 50000, now=local_time(2026, 3, 10, 8, 0))

        assert opened.is_open
        assert opened.opening_float_cents == 50000
        assert opened.opened_at == local_time(2026, 3, 10, 8, 0)

    def test_second_open_same_day_rejected(self, db_session, branch, cashier, local_time):
        svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))

        with pytest.raises(SessionAlreadyOpenError):
            svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 9, 0))

    def test_sessions_are_per_operator(self, db_session, branch, cashier, other_cashier, local_time):
        svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))
        other = svc.open_session(other_cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 5))
        assert other.is_open

    def test_stale_session_is_closed_before_opening(self, db_session, branch, cashier, local_time):
        old = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))

        new = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 11, 8, 0))

        old = _session(db_session, old.id)
        assert old.close_reason == CLOSE_REASON_DAY_CHANGE
        assert old.closed_at == local_time(2026, 3, 11, 0, 0)
        assert _session(db_session, new.id).is_open

    def test_invalid_inputs(self, db_session, branch, cashier, local_time):
        with pytest.raises(ValidationError):
            svc.open_session(cashier.id, branch.id, -1)
        with pytest.raises(ValidationError):
            svc.open_session(999999, branch.id)
        with pytest.raises(ConfigurationError):
            svc.open_session(cashier.id, 999999)


class TestSaleGate:
    def test_no_session(self, db_session, branch, cashier, local_time):
        with pytest.raises(CashGateError) as exc:
            svc.check_sale_gate(cashier.id, branch.id, local_time(2026, 3, 10, 9, 0))
        assert exc.value.reason == GATE_NO_SESSION

    def test_open_session_passes(self, db_session, branch, cashier, local_time):
        opened = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))

        assert svc.check_sale_gate(cashier.id, branch.id, local_time(2026, 3, 10, 20, 59)).id == opened.id

    def test_cutoff_closes_and_rejects(self, db_session, branch, cashier, local_time):
        opened = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))

        with pytest.raises(CashGateError) as exc:
            svc.check_sale_gate(cashier.id, branch.id, local_time(2026, 3, 10, 21, 0))
        db_session.rollback()

        assert exc.value.reason == GATE_CUTOFF
        closed = _session(db_session, opened.id)
        assert closed.close_reason == CLOSE_REASON_CUTOFF
        assert closed.closed_at == local_time(2026, 3, 10, 21, 0)
        assert closed.counted_cash_cents is None

    def test_day_change_is_checked_before_cutoff(self, db_session, branch, cashier, local_time):
        opened = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))

        with pytest.raises(CashGateError) as exc:
            svc.check_sale_gate(cashier.id, branch.id, local_time(2026, 3, 11, 22, 0))
        db_session.rollback()

        assert exc.value.reason == GATE_DAY_CHANGE
        assert _session(db_session, opened.id).close_reason == CLOSE_REASON_DAY_CHANGE

    def test_day_change_rejects_sale_and_keeps_close(self, db_session, branch, locations, cashier, make_product, set_stock, local_time):
        product = make_product(price_cents=1000)
        set_stock(product, locations.front, 5)
        set_stock(product, locations.reserve, 0)
        opened = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))

        with pytest.raises(CashGateError) as exc:
            commit_sale(
                cashier.id, branch.id, [{"product_id": product.id, "quantity": 1}],
                now=local_time(2026, 3, 11, 9, 0),
            )

        assert exc.value.reason == GATE_DAY_CHANGE
        closed = _session(db_session, opened.id)
        assert closed.close_reason == CLOSE_REASON_DAY_CHANGE
        assert closed.closed_at == local_time(2026, 3, 11, 0, 0)
        assert db_session.query(Sale).count() == 0


class TestCloseSession:
    def _sell(self, cashier, branch, product, method, now):
        return commit_sale(
            cashier.id, branch.id, [{"product_id": product.id, "quantity": 1}],
            payment_method=method, now=now,
        )

    def test_manual_close_with_variance(self, db_session, branch, locations, cashier, make_product, set_stock, local_time):
        big = make_product(price_cents=10000)
        small = make_product(price_cents=5000)
        set_stock(big, locations.front, 1)
        set_stock(small, locations.front, 1)
        svc.open_session(cashier.id, branch.id, 50000, now=local_time(2026, 3, 10, 8, 0))
        self._sell(cashier, branch, big, "CASH", local_time(2026, 3, 10, 9, 0))
        self._sell(cashier, branch, small, "CARD", local_time(2026, 3, 10, 9, 30))

        closed = svc.close_session(cashier.id, branch.id, 59000, now=local_time(2026, 3, 10, 18, 0))

        assert closed.close_reason == CLOSE_REASON_MANUAL
        assert closed.total_cash_cents == 10000
        assert closed.total_card_cents == 5000
        assert closed.total_transfer_cents == 0
        assert closed.total_cents == 15000
        assert closed.expected_cash_cents == 60000
        assert closed.counted_cash_cents == 59000
        assert closed.variance_cents == -1000
        assert closed.closed_by_user_id == cashier.id

    def test_totals_only_cover_own_sales(self, db_session, branch, locations, cashier, other_cashier, make_product, set_stock, local_time):
        product = make_product(price_cents=2000)
        set_stock(product, locations.front, 2)
        mine = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))
        svc.open_session(other_cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))
        self._sell(other_cashier, branch, product, "CASH", local_time(2026, 3, 10, 9, 0))

        closed = svc.close_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 18, 0))

        assert closed.id == mine.id
        assert closed.total_cents == 0
        assert closed.variance_cents is None

    def test_close_of_due_session_stays_in_its_business_day(self, db_session, branch, locations, cashier, make_product, set_stock, local_time):
        product = make_product(price_cents=2500)
        set_stock(product, locations.front, 1)
        svc.open_session(cashier.id, branch.id, 10000, now=local_time(2026, 3, 10, 8, 0))
        self._sell(cashier, branch, product, "CASH", local_time(2026, 3, 10, 9, 0))

        closed = svc.close_session(cashier.id, branch.id, 12000, now=local_time(2026, 3, 12, 10, 0))

        assert closed.close_reason == CLOSE_REASON_DAY_CHANGE
        assert closed.closed_at == local_time(2026, 3, 11, 0, 0)
        assert closed.total_cash_cents == 2500
        assert closed.expected_cash_cents == 12500
        assert closed.counted_cash_cents == 12000
        assert closed.variance_cents == -500

    def test_close_after_cutoff_is_a_cutoff_close(self, db_session, branch, cashier, local_time):
        svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))

        closed = svc.close_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 21, 40))

        assert closed.close_reason == CLOSE_REASON_CUTOFF
        assert closed.closed_at == local_time(2026, 3, 10, 21, 0)

    def test_manual_close_counts_sale_at_the_close_instant(self, db_session, branch, locations, cashier, make_product, set_stock, local_time):
        product = make_product(price_cents=700)
        set_stock(product, locations.front, 1)
        noon = local_time(2026, 3, 10, 12, 0)
        svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))
        self._sell(cashier, branch, product, "TRANSFER", noon)

        closed = svc.close_session(cashier.id, branch.id, now=noon)

        assert closed.close_reason == CLOSE_REASON_MANUAL
        assert closed.total_transfer_cents == 700

    def test_close_without_session(self, db_session, branch, cashier, local_time):
        with pytest.raises(NoOpenSessionError):
            svc.close_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 18, 0))


class TestAutoClose:
    def test_auto_close_is_idempotent(self, db_session, branch, cashier, local_time):
        opened = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))

        first = svc.auto_close_session(opened.id, CLOSE_REASON_CUTOFF, local_time(2026, 3, 10, 21, 30))
        closed_at, version = first.closed_at, first.version_id
        second = svc.auto_close_session(opened.id, CLOSE_REASON_DAY_CHANGE, local_time(2026, 3, 11, 9, 0))

        assert second.closed_at == closed_at == local_time(2026, 3, 10, 21, 0)
        assert second.close_reason == CLOSE_REASON_CUTOFF
        assert second.version_id == version

    def test_rejects_manual_reason(self, db_session):
        with pytest.raises(ValidationError):
            svc.auto_close_session(1, CLOSE_REASON_MANUAL)

    def test_unknown_session(self, db_session):
        with pytest.raises(NoOpenSessionError):
            svc.auto_close_session(999999, CLOSE_REASON_CUTOFF)

    def test_closes_only_due_sessions(self, db_session, branch, cashier, other_cashier, local_time):
        stale = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 9, 8, 0))
        fresh = svc.open_session(other_cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))

        closed = svc.auto_close_due_sessions(local_time(2026, 3, 10, 12, 0))

        assert [s.id for s in closed] == [stale.id]
        assert _session(db_session, stale.id).close_reason == CLOSE_REASON_DAY_CHANGE
        assert _session(db_session, fresh.id).is_open

    def test_session_opened_after_cutoff_closes_at_its_open_instant(self, db_session, branch, cashier, local_time):
        opened = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 21, 30))

        [closed] = svc.auto_close_due_sessions(local_time(2026, 3, 10, 21, 45))

        assert closed.id == opened.id
        assert closed.closed_at == local_time(2026, 3, 10, 21, 30)


class TestSessionStatus:
    def test_lifecycle(self, db_session, branch, cashier, local_time):
        status = svc.get_session_status(cashier.id, branch.id, local_time(2026, 3, 10, 7, 0))
        assert status["status"] == svc.STATUS_NO_SESSION
        assert status["business_date"] == "2026-03-10"

        svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))
        status = svc.get_session_status(cashier.id, branch.id, local_time(2026, 3, 10, 12, 0))
        assert status["status"] == svc.STATUS_OPEN
        assert status["pending_close_reason"] is None

        status = svc.get_session_status(cashier.id, branch.id, local_time(2026, 3, 10, 21, 15))
        assert status["pending_close_reason"] == CLOSE_REASON_CUTOFF

        svc.close_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 18, 0))
        status = svc.get_session_status(cashier.id, branch.id, local_time(2026, 3, 10, 19, 0))
        assert status["status"] == svc.STATUS_CLOSED
        assert status["session"]["close_reason"] == CLOSE_REASON_MANUAL

        status = svc.get_session_status(cashier.id, branch.id, local_time(2026, 3, 11, 7, 0))
        assert status["status"] == svc.STATUS_NO_SESSION
        assert status["running_totals"] is None

    def test_open_session_reports_running_totals(self, db_session, branch, locations, cashier, make_product, set_stock, local_time):
        product = make_product(price_cents=1500)
        set_stock(product, locations.front, 2)
        svc.open_session(cashier.id, branch.id, 5000, now=local_time(2026, 3, 10, 8, 0))
        commit_sale(
            cashier.id, branch.id, [{"product_id": product.id, "quantity": 1}],
            now=local_time(2026, 3, 10, 9, 0),
        )

        status = svc.get_session_status(cashier.id, branch.id, local_time(2026, 3, 10, 9, 0))

        totals = status["running_totals"]
        assert totals["total_cash_cents"] == 1500
        assert totals["expected_cash_cents"] == 6500
        assert status["session"]["total_cents"] is None


class TestSessionHistory:
    def _seed(self, branch, cashier, other_cashier, local_time):
        first = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 9, 8, 0))
        svc.close_session(cashier.id, branch.id, now=local_time(2026, 3, 9, 18, 0))
        second = svc.open_session(cashier.id, branch.id, now=local_time(2026, 3, 10, 8, 0))
        third = svc.open_session(other_cashier.id, branch.id, now=local_time(2026, 3, 10, 9, 0))
        return first, second, third

    def test_newest_first_with_filters(self, db_session, branch, cashier, other_cashier, local_time):
        first, second, third = self._seed(branch, cashier, other_cashier, local_time)

        assert [s.id for s in svc.list_sessions(branch.id)] == [third.id, second.id, first.id]
        assert [s.id for s in svc.list_sessions(branch.id, operator_id=cashier.id)] == [second.id, first.id]
        assert [s.id for s in svc.list_sessions(date_from=date(2026, 3, 10), date_to=date(2026, 3, 10))] == [third.id, second.id]
        assert [s.id for s in svc.list_sessions(branch.id, date_to=date(2026, 3, 9))] == [first.id]
        assert [s.id for s in svc.list_sessions(branch.id, only_open=True, limit=1)] == [third.id]

    def test_invalid_filters(self, db_session, branch):
        with pytest.raises(ValidationError):
            svc.list_sessions(date_from=date(2026, 3, 10), date_to=date(2026, 3, 9))
        with pytest.raises(ValidationError):
            svc.list_sessions(999999)
