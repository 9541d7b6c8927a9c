# Overview: Sale commit protocol; one transaction from cash gate to stock debit.

"""
Sale Commit Protocol

commit_sale() either persists the whole sale (header, lines, payment,
transfers, stock debit, change expense) or nothing. Steps, in order, inside
one transaction:

1. cash gate (may commit an automatic close, then rejects)
2. allocation: refill the front location from reserve, or reject with the
   full shortage list
3. price resolution (wholesale threshold)
4. totals and tender; cash requires amount_received >= total
5. Sale (PENDING) -> SaleLines -> Payment
6. stock debit: one OUT movement per line from the front location on
   locked rows, then the sale flips to CONFIRMED
7. change > 0 on cash -> PettyCashExpense
8. commit, then publish

Step 6 re-checks non-negativity even though step 2 just guaranteed it; a
concurrent writer that slipped past the lock must still not oversell.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..extensions import db
from ..errors import ValidationError
from ..models import Payment, Product, Sale, SaleLine
from ..models.inventory import MOVEMENT_OUT
from ..models.sales import SALE_STATUS_CONFIRMED, SALE_STATUS_PENDING
from ..validation import (
    PAYMENT_CARD,
    PAYMENT_CASH,
    BasketLine,
    normalize_basket,
    normalize_payment_method,
    parse_cents,
)
from vitrina.time_utils import utcnow
from .allocation_service import TransferRecord, ensure_front_stock
from .cash_session_service import check_sale_gate
from .concurrency import begin_write, run_with_retry
from .location_service import resolve_locations
from .petty_cash_service import record_change_expense
from .pricing_service import PricedLine, resolve_prices
from .sale_feed_service import publish_sale_confirmed
from .stock_service import record_movement


@dataclass(frozen=True)
class SaleResult:
    sale_id: int
    total_cents: int
    change_cents: int
    transfers: list[TransferRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "total_cents": self.total_cents,
            "change_cents": self.change_cents,
            "transfers": [t.to_dict() for t in self.transfers],
        }


def _load_sellable_products(lines: list[BasketLine]) -> dict[int, Product]:
    product_ids = list(dict.fromkeys(line.product_id for line in lines))
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    }
    missing = [pid for pid in product_ids if pid not in products]
    if missing:
        raise ValidationError("Product not found", {"product_ids": missing})
    unsellable = [pid for pid in product_ids if not products[pid].is_sellable]
    if unsellable:
        raise ValidationError("Product is inactive or archived", {"product_ids": unsellable})
    return products


def _clean_card_metadata(card_brand, card_last4, auth_code, processor_txn_id) -> dict:
    last4 = str(card_last4).strip() if card_last4 not in (None, "") else None
    if last4 is not None and (len(last4) != 4 or not last4.isdigit()):
        raise ValidationError("card_last4 must be exactly 4 digits")

    def _s(value):
        value = str(value).strip() if value is not None else ""
        return value or None

    return {
        "card_brand": _s(card_brand),
        "card_last4": last4,
        "auth_code": _s(auth_code),
        "processor_txn_id": _s(processor_txn_id),
    }


def _debit_front_stock(sale: Sale, priced: list[PricedLine], front_location_id: int, actor_user_id: int, moment: datetime) -> None:
    """Stock-commit procedure: debit every line, then confirm the sale."""
    for line in priced:
        record_movement(
            MOVEMENT_OUT,
            line.product_id,
            line.quantity,
            source_location_id=front_location_id,
            actor_user_id=actor_user_id,
            sale_id=sale.id,
            reason=f"SALE #{sale.id}",
            occurred_at=moment,
        )
    sale.status = SALE_STATUS_CONFIRMED
    sale.confirmed_at = moment
    db.session.flush()


def commit_sale(
    operator_id: int,
    branch_id: int,
    basket,
    payment_method=PAYMENT_CASH,
    amount_received_cents=None,
    *,
    discount_cents=0,
    customer_id: int | None = None,
    customer_name: str | None = None,
    card_brand: str | None = None,
    card_last4: str | None = None,
    auth_code: str | None = None,
    processor_txn_id: str | None = None,
    now: datetime | None = None,
) -> SaleResult:
    """
    Commit a point-of-sale sale.

    Cash without amount_received is exact tender. Card and transfer
    payments are always recorded for the exact total.

    Raises:
        ValidationError, CashGateError, ConfigurationError,
        InsufficientStockError, PricingError
    """
    lines = normalize_basket(basket)
    method = normalize_payment_method(payment_method)
    received = parse_cents(amount_received_cents, "amount_received_cents", required=False)
    discount = parse_cents(discount_cents, "discount_cents")
    card = _clean_card_metadata(card_brand, card_last4, auth_code, processor_txn_id) if method == PAYMENT_CARD else {}
    customer_name = (customer_name or "").strip() or None

    def _op():
        moment = now or utcnow()
        begin_write()

        cash_session = check_sale_gate(operator_id, branch_id, now=moment)

        products = _load_sellable_products(lines)
        transfers = ensure_front_stock(branch_id, lines, operator_id, now=moment)
        priced = resolve_prices(products, lines)

        subtotal = sum(line.extended_cents for line in priced)
        if discount > subtotal:
            raise ValidationError(
                "discount exceeds subtotal",
                {"discount_cents": discount, "subtotal_cents": subtotal},
            )
        total = subtotal - discount

        if method == PAYMENT_CASH:
            tendered = total if received is None else received
            if tendered < total:
                raise ValidationError(
                    "amount received is less than the sale total",
                    {"total_cents": total, "amount_received_cents": tendered},
                )
            change = tendered - total
        else:
            tendered = total
            change = 0

        sale = Sale(
            branch_id=branch_id,
            operator_id=operator_id,
            cash_session_id=cash_session.id,
            customer_id=customer_id,
            customer_name=customer_name,
            subtotal_cents=subtotal,
            discount_cents=discount,
            tax_cents=0,
            total_cents=total,
            status=SALE_STATUS_PENDING,
            created_at=moment,
        )
        db.session.add(sale)
        db.session.flush()

        for line in priced:
            db.session.add(SaleLine(
                sale_id=sale.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                price_tier=line.price_tier,
                discount_cents=0,
                tax_cents=0,
                line_total_cents=line.extended_cents,
            ))

        db.session.add(Payment(
            sale_id=sale.id,
            method=method,
            amount_cents=total,
            amount_received_cents=tendered,
            change_cents=change,
            created_at=moment,
            **card,
        ))
        db.session.flush()

        front = resolve_locations(branch_id).front
        _debit_front_stock(sale, priced, front.id, operator_id, moment)

        if method == PAYMENT_CASH and change > 0:
            record_change_expense(branch_id, operator_id, sale.id, change, moment)

        db.session.commit()
        return SaleResult(sale_id=sale.id, total_cents=total, change_cents=change, transfers=transfers)

    result = run_with_retry(_op)
    publish_sale_confirmed(result.sale_id, branch_id, operator_id, result.total_cents, result.change_cents)
    return result


def get_sale(sale_id: int) -> Sale | None:
    return db.session.get(Sale, sale_id)
