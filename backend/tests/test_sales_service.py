"""
Sale commit protocol tests: allocation inside the sale, pricing, tender,
change expenses and all-or-nothing persistence.
"""

import pytest

from vitrina.errors import InsufficientStockError, NoSellablePriceError, ValidationError
from vitrina.models import Movement, Payment, PettyCashExpense, Sale, SaleLine
from vitrina.models.inventory import MOVEMENT_OUT, MOVEMENT_TRANSFER
from vitrina.models.sales import PRICE_TIER_STANDARD, PRICE_TIER_WHOLESALE, SALE_STATUS_CONFIRMED
from vitrina.services import cash_session_service
from vitrina.services.allocation_service import AUTO_TRANSFER_REASON
from vitrina.services.sales_service import commit_sale, get_sale


@pytest.fixture
def open_register(db_session, branch, locations, cashier, local_time):
    return cash_session_service.open_session(cashier.id, branch.id, 20000, now=local_time(2026, 3, 10, 8, 0))


@pytest.fixture
def noon(local_time):
    return local_time(2026, 3, 10, 12, 0)


def _items(*pairs):
    return [{"product_id": product.id, "quantity": quantity} for product, quantity in pairs]


def test_refills_front_then_debits_it(db_session, branch, locations, cashier, open_register, make_product, set_stock, quantity_of, noon):
    product = make_product(price_cents=1500)
    set_stock(product, locations.front, 2)
    set_stock(product, locations.reserve, 5)

    result = commit_sale(cashier.id, branch.id, _items((product, 4)), now=noon)

    assert [t.quantity for t in result.transfers] == [2]
    assert quantity_of(product, locations.front) == 0
    assert quantity_of(product, locations.reserve) == 3

    movements = db_session.query(Movement).order_by(Movement.id).all()
    assert [(m.type, m.quantity) for m in movements] == [(MOVEMENT_TRANSFER, 2), (MOVEMENT_OUT, 4)]
    assert movements[0].reason == AUTO_TRANSFER_REASON
    assert movements[1].sale_id == result.sale_id
    assert movements[1].reason == f"SALE #{result.sale_id}"

    sale = get_sale(result.sale_id)
    assert sale.status == SALE_STATUS_CONFIRMED
    assert sale.confirmed_at == noon
    assert sale.cash_session_id == open_register.id
    assert sale.total_cents == 6000


def test_shortage_rejects_sale_without_writing(db_session, branch, locations, cashier, open_register, make_product, set_stock, quantity_of, noon):
    product = make_product()
    set_stock(product, locations.front, 0)
    set_stock(product, locations.reserve, 1)

    with pytest.raises(InsufficientStockError) as exc:
        commit_sale(cashier.id, branch.id, _items((product, 3)), now=noon)

    [shortage] = exc.value.shortages
    assert shortage["requested"] == 3
    assert shortage["reserve_quantity"] == 1
    assert shortage["shortfall"] == 3
    assert shortage["uncovered"] == 2
    assert db_session.query(Movement).count() == 0
    assert db_session.query(Sale).count() == 0
    assert quantity_of(product, locations.reserve) == 1


def test_cash_change_becomes_petty_cash_expense(db_session, branch, locations, cashier, open_register, make_product, set_stock, noon):
    product = make_product(price_cents=10000)
    set_stock(product, locations.front, 1)

    result = commit_sale(
        cashier.id, branch.id, _items((product, 1)),
        payment_method="efectivo", amount_received_cents=15000, now=noon,
    )

    assert result.total_cents == 10000
    assert result.change_cents == 5000
    [expense] = db_session.query(PettyCashExpense).all()
    assert expense.amount_cents == 5000
    assert expense.operator_id == cashier.id
    assert expense.sale_id == result.sale_id
    [payment] = db_session.query(Payment).all()
    assert (payment.amount_cents, payment.amount_received_cents, payment.change_cents) == (10000, 15000, 5000)


def test_exact_cash_records_no_expense(db_session, branch, locations, cashier, open_register, make_product, set_stock, noon):
    product = make_product(price_cents=2500)
    set_stock(product, locations.front, 1)

    result = commit_sale(cashier.id, branch.id, _items((product, 1)), now=noon)

    assert result.change_cents == 0
    assert db_session.query(PettyCashExpense).count() == 0


def test_low_tender_rolls_back_transfers(db_session, branch, locations, cashier, open_register, make_product, set_stock, quantity_of, noon):
    product = make_product(price_cents=1000)
    set_stock(product, locations.front, 0)
    set_stock(product, locations.reserve, 5)

    with pytest.raises(ValidationError):
        commit_sale(cashier.id, branch.id, _items((product, 3)), amount_received_cents=2000, now=noon)

    assert quantity_of(product, locations.front) == 0
    assert quantity_of(product, locations.reserve) == 5
    assert db_session.query(Movement).count() == 0
    assert db_session.query(Sale).count() == 0


def test_unpriced_product_rolls_back_whole_sale(db_session, branch, locations, cashier, open_register, make_product, set_stock, quantity_of, noon):
    priced = make_product(price_cents=1000)
    unpriced = make_product(price_cents=0)
    set_stock(priced, locations.reserve, 2)
    set_stock(unpriced, locations.front, 1)

    with pytest.raises(NoSellablePriceError):
        commit_sale(cashier.id, branch.id, _items((priced, 2), (unpriced, 1)), now=noon)

    assert quantity_of(priced, locations.reserve) == 2
    assert db_session.query(Movement).count() == 0
    assert db_session.query(Sale).count() == 0


def test_wholesale_pricing_applies_to_basket(db_session, branch, locations, cashier, open_register, make_product, set_stock, noon):
    bulk = make_product(price_cents=1000, wholesale_price_cents=800)
    plain = make_product(price_cents=500)
    set_stock(bulk, locations.front, 20)
    set_stock(plain, locations.front, 20)

    result = commit_sale(cashier.id, branch.id, _items((bulk, 10), (plain, 2)), now=noon)

    lines = db_session.query(SaleLine).filter_by(sale_id=result.sale_id).order_by(SaleLine.id).all()
    assert [(l.unit_price_cents, l.price_tier) for l in lines] == [
        (800, PRICE_TIER_WHOLESALE),
        (500, PRICE_TIER_STANDARD),
    ]
    assert result.total_cents == 9000


def test_repeated_product_keeps_separate_lines(db_session, branch, locations, cashier, open_register, make_product, set_stock, quantity_of, noon):
    product = make_product(price_cents=300)
    set_stock(product, locations.front, 1)
    set_stock(product, locations.reserve, 4)

    result = commit_sale(cashier.id, branch.id, _items((product, 2), (product, 3)), now=noon)

    assert [t.quantity for t in result.transfers] == [4]
    assert db_session.query(SaleLine).filter_by(sale_id=result.sale_id).count() == 2
    assert quantity_of(product, locations.front) == 0


def test_discount(db_session, branch, locations, cashier, open_register, make_product, set_stock, noon):
    product = make_product(price_cents=1000)
    set_stock(product, locations.front, 3)

    result = commit_sale(cashier.id, branch.id, _items((product, 2)), discount_cents=500, now=noon)
    assert result.total_cents == 1500
    sale = get_sale(result.sale_id)
    assert (sale.subtotal_cents, sale.discount_cents, sale.tax_cents) == (2000, 500, 0)

    with pytest.raises(ValidationError):
        commit_sale(cashier.id, branch.id, _items((product, 1)), discount_cents=1001, now=noon)


def test_card_payment_ignores_tender_and_keeps_metadata(db_session, branch, locations, cashier, open_register, make_product, set_stock, noon):
    product = make_product(price_cents=4200)
    set_stock(product, locations.front, 1)

    result = commit_sale(
        cashier.id, branch.id, _items((product, 1)),
        payment_method="tarjeta", amount_received_cents=99999,
        card_brand=" VISA ", card_last4="4242", auth_code="A1B2",
        now=noon,
    )

    assert result.change_cents == 0
    [payment] = db_session.query(Payment).all()
    assert payment.method == "CARD"
    assert payment.amount_received_cents == 4200
    assert (payment.card_brand, payment.card_last4, payment.auth_code) == ("VISA", "4242", "A1B2")
    assert db_session.query(PettyCashExpense).count() == 0


def test_bad_card_last4(db_session, branch, locations, cashier, open_register, make_product, noon):
    product = make_product()
    with pytest.raises(ValidationError):
        commit_sale(cashier.id, branch.id, _items((product, 1)), payment_method="CARD", card_last4="42", now=noon)


@pytest.mark.parametrize("flags", [{"is_active": False}, {"is_archived": True}])
def test_unsellable_products_rejected(db_session, branch, locations, cashier, open_register, make_product, set_stock, noon, flags):
    product = make_product(**flags)
    set_stock(product, locations.front, 5)

    with pytest.raises(ValidationError):
        commit_sale(cashier.id, branch.id, _items((product, 1)), now=noon)
    assert db_session.query(Sale).count() == 0


def test_sequential_sales_never_oversell(db_session, branch, locations, cashier, open_register, make_product, set_stock, quantity_of, noon):
    product = make_product(price_cents=100)
    set_stock(product, locations.front, 2)
    set_stock(product, locations.reserve, 3)

    sold = 0
    rejected = 0
    for _ in range(7):
        try:
            commit_sale(cashier.id, branch.id, _items((product, 1)), now=noon)
            sold += 1
        except InsufficientStockError:
            rejected += 1

    assert (sold, rejected) == (5, 2)
    assert quantity_of(product, locations.front) == 0
    assert quantity_of(product, locations.reserve) == 0
