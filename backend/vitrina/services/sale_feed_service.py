# Overview: Read-only observer of confirmed sales (live dashboards) and the post-commit publish step.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Sale
from ..models.sales import SALE_STATUS_CONFIRMED


DEFAULT_FEED_LIMIT = 50
MAX_FEED_LIMIT = 200


def publish_sale_confirmed(sale_id: int, branch_id: int, operator_id: int, total_cents: int, change_cents: int) -> None:
    """
    Runs after the sale transaction committed. Consumers poll
    list_confirmed_sales_since(); nothing is pushed from here.
    """
    current_app.logger.info(
        "Sale %s confirmed: branch=%s operator=%s total_cents=%s change_cents=%s",
        sale_id, branch_id, operator_id, total_cents, change_cents,
    )


def list_confirmed_sales_since(branch_id: int | None = None, after_id: int = 0, limit: int = DEFAULT_FEED_LIMIT) -> list[Sale]:
    """Confirmed sales with id > after_id, oldest first, so the last id is the next cursor."""
    limit = max(1, min(int(limit or DEFAULT_FEED_LIMIT), MAX_FEED_LIMIT))
    query = db.session.query(Sale).filter(
        Sale.status == SALE_STATUS_CONFIRMED,
        Sale.id > int(after_id or 0),
    )
    if branch_id is not None:
        query = query.filter(Sale.branch_id == branch_id)
    return query.order_by(Sale.id.asc()).limit(limit).all()
