# Overview: Dashboard figures computed from committed transactions and the catalog.

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

from ..models.inventory import Product
from ..models.ledger import Expense
from ..models.sales import Transaction, STATUS_COMPLETED


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


PERIOD_DAYS = {"today": 0, "week": 7, "month": 30}
LOW_STOCK_THRESHOLD = 10


def period_start(period: str, now: datetime, utc_offset: timedelta = timedelta(0)) -> datetime:
    """
    UTC instant of shop-local midnight, 0/7/30 days back.

    now is UTC; utc_offset is the shop's local offset from UTC.
    """
    if period not in PERIOD_DAYS:
        raise ReportError("period must be today, week, or month")
    local_midnight = (now + utc_offset).replace(hour=0, minute=0, second=0, microsecond=0)
    return local_midnight - timedelta(days=PERIOD_DAYS[period]) - utc_offset


def dashboard_stats(
    transactions: list[Transaction],
    products: list[Product],
    *,
    period: str = "today",
    now: datetime,
    top_n: int = 5,
    peak_n: int = 3,
    utc_offset: timedelta = timedelta(0),
    expenses: Sequence[Expense] = (),
) -> dict:
    """
    Sales, transaction count, gross profit, expenses, best sellers and busiest
    hours.

    Profit uses the price and cost captured in each transaction's item
    snapshot, so later catalog edits do not rewrite history. Hours are
    shop-local.
    """
    start = period_start(period, now, utc_offset)
    in_period = [
        t for t in transactions
        if t.status == STATUS_COMPLETED and t.created_at is not None and t.created_at >= start
    ]

    sales = sum(t.total for t in in_period)
    profit = 0
    by_product: dict[str, dict] = {}
    by_hour = {hour: {"hour": hour, "sales": 0, "transactions": 0} for hour in range(24)}

    for t in in_period:
        bucket = by_hour[(t.created_at + utc_offset).hour]
        bucket["sales"] += t.total
        bucket["transactions"] += 1
        for item in t.items:
            profit += (item.product.price - item.product.cost) * item.quantity
            row = by_product.setdefault(item.product_id, {
                "product_id": item.product_id,
                "name": item.product.name,
                "quantity": 0,
                "revenue": 0,
            })
            row["quantity"] += item.quantity
            row["revenue"] += item.subtotal

    spent = sum(e.amount for e in expenses if e.created_at is not None and e.created_at >= start)

    top_products = sorted(by_product.values(), key=lambda r: (-r["revenue"], r["name"]))[:top_n]
    busy_hours = [h for h in by_hour.values() if h["transactions"]]
    peak_hours = sorted(busy_hours, key=lambda h: (-h["transactions"], h["hour"]))[:peak_n]

    return {
        "period": period,
        "start": start.isoformat(),
        "sales": sales,
        "transactions": len(in_period),
        "profit": profit,
        "expenses": spent,
        "net_profit": profit - spent,
        "total_products": len(products),
        "low_stock_products": sum(1 for p in products if p.stock <= LOW_STOCK_THRESHOLD),
        "top_products": top_products,
        "peak_hours": peak_hours,
        "sales_by_hour": list(by_hour.values()),
    }
