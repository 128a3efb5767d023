"""Read-only views computed from a store snapshot.

Nothing here mutates the store or caches results; call again after a
mutation to get fresh numbers.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pandas as pd

import schema
from store import StoreSnapshot

UNKNOWN_PRODUCT = "Unknown product"
UNKNOWN_CATEGORY = "Unknown category"
UNKNOWN_SUPPLIER = "Unknown supplier"

INVENTORY_COLUMNS = [
    "id", "name", "sku", "category", "supplier",
    "price", "quantity", "threshold", "low_stock",
]


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


# --- Name lookups ---
def product_name(snapshot: StoreSnapshot, product_id: str) -> str:
    product = snapshot.product(product_id)
    return product.name if product else UNKNOWN_PRODUCT

def category_name(snapshot: StoreSnapshot, category_id: str) -> str:
    category = snapshot.category(category_id)
    return category.name if category else UNKNOWN_CATEGORY

def supplier_name(snapshot: StoreSnapshot, supplier_id: str) -> str:
    supplier = snapshot.supplier(supplier_id)
    return supplier.name if supplier else UNKNOWN_SUPPLIER


# --- Stock views ---
def low_stock_products(snapshot: StoreSnapshot) -> List[schema.Product]:
    """Products at or below their threshold, out-of-stock ones included."""
    return [p for p in snapshot.products if p.quantity <= p.threshold]

def out_of_stock_products(snapshot: StoreSnapshot) -> List[schema.Product]:
    return [p for p in snapshot.products if p.quantity == 0]

def products_by_category(snapshot: StoreSnapshot) -> Dict[str, List[schema.Product]]:
    """Every category name mapped to its products; empty categories map to []."""
    return {
        category.name: [p for p in snapshot.products if p.category_id == category.id]
        for category in snapshot.categories
    }

def category_stock_distribution(snapshot: StoreSnapshot) -> Dict[str, int]:
    """Units in stock per category name, skipping categories holding nothing."""
    distribution = {
        name: sum(p.quantity for p in products)
        for name, products in products_by_category(snapshot).items()
    }
    return {name: units for name, units in distribution.items() if units > 0}

def total_stock_value(snapshot: StoreSnapshot) -> float:
    return sum(p.price * p.quantity for p in snapshot.products)


# --- Ledger views ---
def recent_transactions(snapshot: StoreSnapshot, limit: int = 5) -> List[schema.Transaction]:
    return sorted(snapshot.transactions, key=lambda t: t.date, reverse=True)[:limit]

def transactions_in_period(
    snapshot: StoreSnapshot, days: int = 7, now: Optional[datetime] = None
) -> List[schema.Transaction]:
    start = _now(now) - timedelta(days=days)
    return [t for t in snapshot.transactions if t.date >= start]

def movement_counts(transactions: Sequence[schema.Transaction]) -> schema.MovementCounts:
    entries = sum(1 for t in transactions if t.type is schema.TransactionType.ENTRY)
    return schema.MovementCounts(entries=entries, exits=len(transactions) - entries)

def daily_movements(
    snapshot: StoreSnapshot, days: int = 7, now: Optional[datetime] = None
) -> List[schema.DayMovement]:
    """Units moved in and out per calendar day (UTC), oldest day first."""
    today = _now(now).date()
    buckets = {
        today - timedelta(days=offset): schema.DayMovement(day=today - timedelta(days=offset))
        for offset in reversed(range(days))
    }
    for t in snapshot.transactions:
        bucket = buckets.get(t.date.date())
        if bucket is None:
            continue
        if t.type is schema.TransactionType.ENTRY:
            bucket.entries += t.quantity
        else:
            bucket.exits += t.quantity
    return list(buckets.values())

def filter_transactions(
    snapshot: StoreSnapshot,
    search: Optional[str] = None,
    type: Optional[schema.TransactionType] = None,
    since: Optional[datetime] = None,
    ascending: bool = False,
) -> List[schema.Transaction]:
    """Transaction history filter: text search on product name and notes."""
    result = list(snapshot.transactions)
    if search:
        needle = search.lower()
        result = [
            t for t in result
            if needle in product_name(snapshot, t.product_id).lower()
            or needle in (t.notes or "").lower()
        ]
    if type is not None:
        result = [t for t in result if t.type == type]
    if since is not None:
        result = [t for t in result if t.date >= since]
    return sorted(result, key=lambda t: t.date, reverse=not ascending)


# --- Reports ---
def _movement_value(snapshot: StoreSnapshot, transaction: schema.Transaction) -> float:
    # valued at today's price; orphaned movements are worth nothing
    product = snapshot.product(transaction.product_id)
    return product.price * transaction.quantity if product else 0.0

def daily_report(snapshot: StoreSnapshot, day: Optional[date] = None) -> schema.DailyReport:
    day = day or _now(None).date()
    todays = sorted(
        (t for t in snapshot.transactions if t.date.date() == day),
        key=lambda t: t.date,
        reverse=True,
    )
    counts = movement_counts(todays)
    value = sum(
        _movement_value(snapshot, t) if t.type is schema.TransactionType.ENTRY
        else -_movement_value(snapshot, t)
        for t in todays
    )
    return schema.DailyReport(
        day=day,
        total_transactions=len(todays),
        entries=counts.entries,
        exits=counts.exits,
        total_value=value,
        transactions=todays,
    )

def annual_report(snapshot: StoreSnapshot, year: int) -> schema.AnnualReport:
    months = [schema.MonthlyStats(month=m) for m in range(1, 13)]
    for t in snapshot.transactions:
        if t.date.year != year:
            continue
        stats = months[t.date.month - 1]
        if t.type is schema.TransactionType.ENTRY:
            stats.entries += 1
            stats.entries_value += _movement_value(snapshot, t)
        else:
            stats.exits += 1
            stats.exits_value += _movement_value(snapshot, t)

    totals = schema.AnnualTotals()
    for stats in months:
        totals.total_transactions += stats.entries + stats.exits
        totals.total_entries += stats.entries
        totals.total_exits += stats.exits
        totals.total_value += stats.entries_value - stats.exits_value
    return schema.AnnualReport(year=year, months=months, totals=totals)

def dashboard_summary(
    snapshot: StoreSnapshot,
    recent_limit: int = 5,
    period_days: int = 7,
    now: Optional[datetime] = None,
) -> schema.DashboardSummary:
    return schema.DashboardSummary(
        total_products=len(snapshot.products),
        total_stock_value=total_stock_value(snapshot),
        low_stock=low_stock_products(snapshot),
        recent_transactions=recent_transactions(snapshot, recent_limit),
        period_movements=movement_counts(transactions_in_period(snapshot, period_days, now)),
        category_distribution=category_stock_distribution(snapshot),
        daily_movements=daily_movements(snapshot, period_days, now),
    )

def inventory_frame(snapshot: StoreSnapshot) -> pd.DataFrame:
    """One row per product with resolved names and stock value."""
    rows = [
        {
            "id": p.id,
            "name": p.name,
            "sku": p.sku,
            "category": category_name(snapshot, p.category_id),
            "supplier": supplier_name(snapshot, p.supplier_id),
            "price": p.price,
            "quantity": p.quantity,
            "threshold": p.threshold,
            "low_stock": p.quantity <= p.threshold,
        }
        for p in snapshot.products
    ]
    df = pd.DataFrame(rows, columns=INVENTORY_COLUMNS)
    df['total_value'] = df['price'] * df['quantity']
    return df
