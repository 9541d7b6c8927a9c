from datetime import date

import pytest

from vitrina.errors import ValidationError
from vitrina.services import petty_cash_service as svc


def test_record_delivery(db_session, branch, cashier, admin, local_time):
    delivery = svc.record_delivery(
        branch.id, cashier.id, 30000,
        authorized_by_user_id=admin.id, reason="  Morning float ", now=local_time(2026, 3, 10, 8, 0),
    )
    assert delivery.amount_cents == 30000
    assert delivery.reason == "Morning float"
    assert delivery.authorized_by_user_id == admin.id


@pytest.mark.parametrize("amount", [0, -5, "12.50", None])
def test_delivery_amount_must_be_positive_cents(db_session, branch, cashier, amount):
    with pytest.raises(ValidationError):
        svc.record_delivery(branch.id, cashier.id, amount)


def test_delivery_for_unknown_operator(db_session, branch):
    with pytest.raises(ValidationError):
        svc.record_delivery(branch.id, 999999, 100)


def test_change_expense_requires_positive_amount(db_session, branch, cashier, local_time):
    with pytest.raises(ValidationError):
        svc.record_change_expense(branch.id, cashier.id, None, 0, local_time(2026, 3, 10, 9, 0))


def test_balance_by_day_and_month(db_session, branch, cashier, other_cashier, local_time):
    svc.record_delivery(branch.id, cashier.id, 50000, now=local_time(2026, 3, 1, 8, 0))
    svc.record_delivery(branch.id, cashier.id, 20000, now=local_time(2026, 3, 10, 8, 0))
    svc.record_delivery(branch.id, other_cashier.id, 99900, now=local_time(2026, 3, 10, 8, 0))
    svc.record_delivery(branch.id, cashier.id, 11100, now=local_time(2026, 2, 28, 23, 59))
    svc.record_change_expense(branch.id, cashier.id, None, 1500, local_time(2026, 3, 10, 10, 0))
    svc.record_change_expense(branch.id, cashier.id, None, 500, local_time(2026, 3, 10, 23, 30))
    svc.record_change_expense(branch.id, cashier.id, None, 700, local_time(2026, 3, 11, 0, 0))
    db_session.commit()

    balance = svc.get_balance(cashier.id, branch.id, now=local_time(2026, 3, 10, 12, 0))

    assert balance["business_date"] == "2026-03-10"
    assert balance["day"] == {"delivered_cents": 20000, "change_cents": 2000, "balance_cents": 18000}
    assert balance["month"] == {"delivered_cents": 70000, "change_cents": 2700, "balance_cents": 67300}
    assert balance["last_delivery"]["amount_cents"] == 20000
    assert balance["last_expense"]["amount_cents"] == 700


def test_balance_for_explicit_day(db_session, branch, cashier, local_time):
    svc.record_delivery(branch.id, cashier.id, 1000, now=local_time(2026, 3, 9, 8, 0))

    balance = svc.get_balance(cashier.id, branch.id, date(2026, 3, 9))

    assert balance["day"]["delivered_cents"] == 1000
    assert balance["business_date"] == "2026-03-09"


def test_empty_balance(db_session, branch, cashier, local_time):
    balance = svc.get_balance(cashier.id, branch.id, now=local_time(2026, 3, 10, 12, 0))
    assert balance["day"]["balance_cents"] == 0
    assert balance["last_delivery"] is None
    assert balance["last_expense"] is None


def test_lists_are_per_day_newest_first(db_session, branch, cashier, other_cashier, local_time):
    svc.record_change_expense(branch.id, cashier.id, None, 100, local_time(2026, 3, 10, 9, 0))
    svc.record_change_expense(branch.id, cashier.id, None, 200, local_time(2026, 3, 10, 11, 0))
    svc.record_change_expense(branch.id, other_cashier.id, None, 300, local_time(2026, 3, 10, 10, 0))
    svc.record_change_expense(branch.id, cashier.id, None, 400, local_time(2026, 3, 9, 11, 0))
    db_session.commit()

    mine = svc.list_expenses(branch.id, operator_id=cashier.id, day=date(2026, 3, 10))
    everyone = svc.list_expenses(branch.id, day=date(2026, 3, 10))

    assert [e.amount_cents for e in mine] == [200, 100]
    assert [e.amount_cents for e in everyone] == [200, 300, 100]
    assert svc.list_deliveries(branch.id, day=date(2026, 3, 10)) == []
