"""Read-only temporal queries and report views over the inventory state.

Stock at an arbitrary date is derived from the product baseline plus the
signed ledger deltas recorded up to the end of that day. Range totals use
inclusive calendar bounds. Product search filters always run first and the
temporal computation only touches the surviving candidates. Nothing in this
module changes state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, List, Optional, Tuple

from . import log
from .constants import ViewMode, TransactionType
from .ledger import (
    DateRange,
    InventoryState,
    Product,
    ValidationError,
    aggregate,
    end_of_day,
    ensure_initial_stock_computed,
    net_change,
)
from .units import BoxSplit, split_pieces


@dataclass(frozen=True)
class ReportRow:
    """One product line of a check or report view.

    Columns that the view mode does not compute stay ``None``.
    """

    sku: str
    name: str
    stock: Optional[int] = None
    stock_boxes: Optional[int] = None
    stock_pieces: Optional[int] = None
    imported: Optional[int] = None
    sold: Optional[int] = None
    date: str = ""

    def value(self, column: str) -> Any:
        return getattr(self, column)


@dataclass(frozen=True)
class CheckQuery:
    """Point-in-time lookup: stock, or one day's movements, on ``on_date``."""

    sku: str = ""
    name: str = ""
    on_date: Optional[date] = None
    mode: ViewMode = ViewMode.STOCK


@dataclass(frozen=True)
class ReportQuery:
    """Range report between ``date_from`` and ``date_to`` (both inclusive)."""

    sku: str = ""
    name: str = ""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    mode: ViewMode = ViewMode.STOCK


@dataclass(frozen=True)
class DailyStockRow:
    sku: str
    name: str
    levels: Tuple[BoxSplit, ...]


@dataclass(frozen=True)
class DailyStockMatrix:
    """Stock per product for every day of a range, in boxes and pieces."""

    days: Tuple[date, ...]
    rows: Tuple[DailyStockRow, ...]


@dataclass(frozen=True)
class DashboardMetrics:
    total_units: int
    sales_today: int
    imports_today: int


def stock_as_of(state: InventoryState, product: Product, as_of: Optional[date] = None) -> int:
    """Return the stock of ``product`` in pieces at the end of ``as_of``.

    Without a date the live ``product.stock`` is returned. Otherwise the
    result is ``max(0, baseline + net)`` where ``net`` sums the signed
    transactions stamped up to the last instant of ``as_of``, so movements of
    that day are included. An unset baseline is inferred the same way manual
    entries infer it, without storing the result.

    Args:
        state (InventoryState): State providing the ledger.
        product (Product): Product to evaluate.
        as_of (date | None): Calendar day to evaluate.

    Returns:
        int: Stock level in pieces.
    """

    if as_of is None:
        return product.stock
    baseline = ensure_initial_stock_computed(state, product)
    return max(0, baseline + net_change(state, product.sku, until=end_of_day(as_of)))


def matches_product(product: Product, sku_query: str = "", name_query: str = "") -> bool:
    """Case-insensitive substring match on SKU and name; blank queries match all."""

    sku_query = (sku_query or "").strip().lower()
    name_query = (name_query or "").strip().lower()
    if sku_query and sku_query not in product.sku.lower():
        return False
    if name_query and name_query not in (product.name or "").lower():
        return False
    return True


def filter_products(state: InventoryState, sku_query: str = "", name_query: str = "") -> List[Product]:
    """Return catalog products matching both search filters, in catalog order."""

    return [product for product in state.products if matches_product(product, sku_query, name_query)]


def date_range_label(date_from: Optional[date], date_to: Optional[date]) -> str:
    """Describe a report range for the date column."""

    if date_from and date_to:
        return f"{date_from.isoformat()} – {date_to.isoformat()}"
    if date_from:
        return f"From {date_from.isoformat()}"
    if date_to:
        return f"Until {date_to.isoformat()}"
    return ""


def _stock_row(state: InventoryState, product: Product, as_of: Optional[date], label: str) -> ReportRow:
    split = split_pieces(stock_as_of(state, product, as_of), product.pack_size)
    return ReportRow(sku=product.sku, name=product.name, stock_boxes=split.boxes, stock_pieces=split.pieces, date=label)


def _movement_row(
    state: InventoryState,
    product: Product,
    mode: ViewMode,
    date_range: Optional[DateRange],
    label: str,
) -> ReportRow:
    total = aggregate(state, product.sku, TransactionType(mode.value), date_range)
    if mode is ViewMode.IMPORT:
        return ReportRow(sku=product.sku, name=product.name, imported=total, date=label)
    return ReportRow(sku=product.sku, name=product.name, sold=total, date=label)


def _all_row(
    state: InventoryState,
    product: Product,
    as_of: Optional[date],
    date_range: Optional[DateRange],
    label: str,
) -> ReportRow:
    return ReportRow(
        sku=product.sku,
        name=product.name,
        stock=stock_as_of(state, product, as_of),
        imported=aggregate(state, product.sku, TransactionType.IMPORT, date_range),
        sold=aggregate(state, product.sku, TransactionType.SALE, date_range),
        date=label,
    )


def run_check(state: InventoryState, query: CheckQuery) -> List[ReportRow]:
    """Evaluate a point-in-time check for every product matching the filters.

    ``stock`` mode reports boxes and loose pieces at the end of ``on_date``
    (live stock without a date). ``import`` and ``sale`` modes total that
    day's movements, or all movements without a date. ``all`` reports stock in
    pieces together with both totals.
    """

    mode = ViewMode(query.mode)
    label = query.on_date.isoformat() if query.on_date else ""
    day_range = DateRange.single_day(query.on_date) if query.on_date else None
    rows: List[ReportRow] = []
    for product in filter_products(state, query.sku, query.name):
        if mode is ViewMode.STOCK:
            rows.append(_stock_row(state, product, query.on_date, label))
        elif mode in (ViewMode.IMPORT, ViewMode.SALE):
            rows.append(_movement_row(state, product, mode, day_range, label))
        else:
            rows.append(_all_row(state, product, query.on_date, day_range, label))
    log.debug("Check in %s mode produced %d rows", mode.value, len(rows))
    return rows


def build_report(state: InventoryState, query: ReportQuery, *, today: Optional[date] = None) -> List[ReportRow]:
    """Evaluate a range report for every product matching the filters.

    Movement totals cover ``[date_from, date_to]`` inclusively, an unset bound
    being open. Stock columns are taken at the end of ``date_to``, or of
    ``today`` when no upper bound is given.
    """

    mode = ViewMode(query.mode)
    today = today or date.today()
    stock_day = query.date_to or today
    label = date_range_label(query.date_from, query.date_to)
    date_range = None
    if query.date_from is not None or query.date_to is not None:
        date_range = DateRange(start=query.date_from, end=query.date_to)

    rows: List[ReportRow] = []
    for product in filter_products(state, query.sku, query.name):
        if mode is ViewMode.STOCK:
            rows.append(_stock_row(state, product, stock_day, label))
        elif mode in (ViewMode.IMPORT, ViewMode.SALE):
            rows.append(_movement_row(state, product, mode, date_range, label))
        else:
            rows.append(_all_row(state, product, stock_day, date_range, label))
    log.debug("Report in %s mode produced %d rows", mode.value, len(rows))
    return rows


def each_day(date_from: date, date_to: date) -> Tuple[date, ...]:
    """Return every calendar day from ``date_from`` to ``date_to`` inclusive."""

    span = (date_to - date_from).days
    return tuple(date_from + timedelta(days=offset) for offset in range(span + 1))


def daily_stock_matrix(
    state: InventoryState,
    date_from: Optional[date],
    date_to: Optional[date],
    *,
    sku: str = "",
    name: str = "",
) -> DailyStockMatrix:
    """Compute end-of-day stock in boxes and pieces for each day of a range.

    Raises:
        ValidationError: If a bound is missing or the range is empty.
    """

    if date_from is None or date_to is None:
        log.warning("Daily stock export requires both range bounds")
        raise ValidationError("Both a start and an end date are required for the daily stock export")
    if date_from > date_to:
        log.warning("Daily stock export range is empty: %s > %s", date_from, date_to)
        raise ValidationError("The start date must not be after the end date")

    days = each_day(date_from, date_to)
    rows = tuple(
        DailyStockRow(
            sku=product.sku,
            name=product.name,
            levels=tuple(split_pieces(stock_as_of(state, product, day), product.pack_size) for day in days),
        )
        for product in filter_products(state, sku, name)
    )
    return DailyStockMatrix(days=days, rows=rows)


def dashboard_metrics(state: InventoryState, *, today: Optional[date] = None) -> DashboardMetrics:
    """Return total units on hand plus today's sold and imported pieces."""

    today_range = DateRange.single_day(today or date.today())
    sales_today = imports_today = 0
    for transaction in state.transactions:
        if not today_range.contains(transaction.timestamp):
            continue
        if transaction.transaction_type == TransactionType.SALE:
            sales_today += transaction.qty
        else:
            imports_today += transaction.qty
    return DashboardMetrics(
        total_units=sum(product.stock for product in state.products),
        sales_today=sales_today,
        imports_today=imports_today,
    )


__all__ = [
    "ReportRow",
    "CheckQuery",
    "ReportQuery",
    "DailyStockRow",
    "DailyStockMatrix",
    "DashboardMetrics",
    "aggregate",
    "stock_as_of",
    "matches_product",
    "filter_products",
    "date_range_label",
    "run_check",
    "build_report",
    "each_day",
    "daily_stock_matrix",
    "dashboard_metrics",
]
