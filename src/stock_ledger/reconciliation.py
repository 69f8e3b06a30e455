"""Reconciliation of uploaded spreadsheet batches into catalog and ledger state.

Three upload kinds are supported:

* catalog uploads create or rename products and set pack sizes;
* stock-snapshot uploads overwrite current stock with counted ground truth;
* daily-import uploads add stock and append one ``import`` transaction per row.

Rows arrive as mappings from normalized header names (lowercase, whitespace
removed) to raw cell values. Row-level problems never abort a batch: rows
lacking a SKU or name are reported by spreadsheet row number and skipped. Only
an input that is not a sequence of mappings raises, and it does so before any
change is computed. Each function returns the next state together with a
result summary; the state passed in is left untouched.

Daily imports are deliberately not idempotent: uploading the same file twice
records the imports twice.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import log
from .constants import (
    BOX_ALIASES,
    HEADER_ROW_OFFSET,
    IMPORT_SKU_ALIASES,
    LOOSE_PIECE_ALIASES,
    NAME_ALIASES,
    PACK_SIZE_ALIASES,
    SKU_ALIASES,
    TransactionType,
)
from .ledger import (
    InputShapeError,
    InventoryState,
    Product,
    Transaction,
    _resolve_timestamp,
    append_transactions,
    ensure_initial_stock_computed,
    generate_transaction_id,
    local_midnight,
    transactions_for,
)
from .catalog import upsert_record
from .units import coerce_number, to_pieces


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a catalog or stock-snapshot upload."""

    added: int = 0
    updated: int = 0
    missing_rows: Tuple[int, ...] = ()


@dataclass(frozen=True)
class ImportResult:
    """Outcome of a daily-import upload."""

    imported_count: int = 0
    missing_rows: Tuple[int, ...] = ()


def _materialize_rows(rows: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Return ``rows`` as a list after checking every element is a mapping.

    Raises:
        InputShapeError: If ``rows`` is not iterable or yields non-mappings.
    """

    if rows is None or isinstance(rows, (str, bytes, Mapping)):
        log.error("Upload rejected: rows of type %s are not a row sequence", type(rows).__name__)
        raise InputShapeError("Upload rows must be a sequence of mappings")
    try:
        materialized = list(rows)
    except TypeError as exc:
        log.error("Upload rejected: rows of type %s are not iterable", type(rows).__name__)
        raise InputShapeError("Upload rows must be a sequence of mappings") from exc
    for position, row in enumerate(materialized):
        if not isinstance(row, Mapping):
            log.error("Upload rejected: row %d is a %s", position + HEADER_ROW_OFFSET, type(row).__name__)
            raise InputShapeError(f"Row {position + HEADER_ROW_OFFSET} is not a mapping of headers to values")
    return materialized


def _field(row: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    """Return the first non-blank value stored under one of ``aliases``."""

    for alias in aliases:
        value = row.get(alias)
        if value is not None and str(value).strip() != "":
            return value
    return ""


def _text(row: Mapping[str, Any], aliases: Sequence[str]) -> str:
    value = _field(row, aliases)
    # Excel hands whole-number SKUs back as floats.
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _working_products(state: InventoryState) -> Dict[str, Product]:
    return {product.sku: product for product in state.products}


def _log_missing(kind: str, missing: Sequence[int]) -> None:
    if missing:
        preview = ", ".join(str(row) for row in missing[:8])
        more = f" (+{len(missing) - 8} more)" if len(missing) > 8 else ""
        log.warning("%s upload skipped rows missing SKU or name: %s%s", kind, preview, more)


def apply_catalog_upload(
    state: InventoryState,
    rows: Iterable[Mapping[str, Any]],
) -> Tuple[InventoryState, UploadResult]:
    """Merge catalog rows (SKU, name, optional pack size) into the catalog.

    Each accepted row goes through :func:`~stock_ledger.catalog.upsert_record`:
    existing SKUs take the incoming name and, when the row carries a valid
    one, the incoming pack size. New SKUs start with zero stock and a zero
    baseline.

    Args:
        state (InventoryState): Current state.
        rows (Iterable[Mapping[str, Any]]): Decoded spreadsheet rows.

    Returns:
        tuple[InventoryState, UploadResult]: The next state and the counts of
            added and updated products plus skipped row numbers.

    Raises:
        InputShapeError: If ``rows`` is not a sequence of mappings.
    """

    materialized = _materialize_rows(rows)
    products = _working_products(state)
    added = updated = 0
    missing: List[int] = []

    for position, row in enumerate(materialized):
        sku = _text(row, SKU_ALIASES)
        name = _text(row, NAME_ALIASES)
        if not sku or not name:
            missing.append(position + HEADER_ROW_OFFSET)
            continue
        pack_size = _field(row, PACK_SIZE_ALIASES)
        existing = products.get(sku)
        products[sku] = upsert_record(existing, sku, name=name, pack_size=pack_size)
        if existing is None:
            added += 1
        else:
            updated += 1

    next_state = replace(state, products=tuple(products.values()))
    log.info("Catalog upload applied: added=%d updated=%d skipped=%d", added, updated, len(missing))
    _log_missing("Catalog", missing)
    return next_state, UploadResult(added=added, updated=updated, missing_rows=tuple(missing))


def apply_stock_snapshot(
    state: InventoryState,
    rows: Iterable[Mapping[str, Any]],
) -> Tuple[InventoryState, UploadResult]:
    """Overwrite current stock with counted boxes and loose pieces.

    The snapshot is ground truth at upload time, so ``stock`` is replaced
    rather than adjusted. A product whose baseline is unset, or whose SKU has
    no ledger history yet, takes the counted total as its baseline. Products
    with history keep their baseline, which may then drift from the ledger;
    that drift is accepted.

    Raises:
        InputShapeError: If ``rows`` is not a sequence of mappings.
    """

    materialized = _materialize_rows(rows)
    products = _working_products(state)
    added = updated = 0
    missing: List[int] = []

    for position, row in enumerate(materialized):
        sku = _text(row, SKU_ALIASES)
        name = _text(row, NAME_ALIASES)
        if not sku or not name:
            missing.append(position + HEADER_ROW_OFFSET)
            continue

        product = products.get(sku)
        if product is None:
            product = Product(sku=sku, name=name, pack_size=1, stock=0, initial_stock=None)
            added += 1
        else:
            if not product.name:
                product = replace(product, name=name)
            updated += 1

        total = to_pieces(_field(row, BOX_ALIASES), _field(row, LOOSE_PIECE_ALIASES), product.pack_size)
        baseline = product.initial_stock
        if baseline is None or not transactions_for(state, sku):
            baseline = total
        products[sku] = replace(product, stock=total, initial_stock=baseline)

    next_state = replace(state, products=tuple(products.values()))
    log.info("Stock snapshot applied: added=%d updated=%d skipped=%d", added, updated, len(missing))
    _log_missing("Stock snapshot", missing)
    return next_state, UploadResult(added=added, updated=updated, missing_rows=tuple(missing))


def apply_daily_imports(
    state: InventoryState,
    rows: Iterable[Mapping[str, Any]],
    *,
    uploaded_at: Optional[datetime] = None,
) -> Tuple[InventoryState, ImportResult]:
    """Record a batch of received boxes as ``import`` transactions.

    Every accepted row adds ``boxes * pack_size`` pieces to stock and appends
    one transaction. All transactions of a batch share one timestamp: local
    midnight of the upload day. Rows with a box count of zero or less are
    skipped without being reported. Re-uploading the same file records the
    imports again.

    Args:
        state (InventoryState): Current state.
        rows (Iterable[Mapping[str, Any]]): Decoded spreadsheet rows.
        uploaded_at (datetime | None): Upload moment; defaults to now.

    Returns:
        tuple[InventoryState, ImportResult]: The next state and the number of
            transactions appended plus skipped row numbers.

    Raises:
        InputShapeError: If ``rows`` is not a sequence of mappings.
    """

    materialized = _materialize_rows(rows)
    batch_moment = local_midnight(_resolve_timestamp(uploaded_at).astimezone().date())
    products = _working_products(state)
    new_transactions: List[Transaction] = []
    missing: List[int] = []

    for position, row in enumerate(materialized):
        sku = _text(row, IMPORT_SKU_ALIASES)
        name = _text(row, NAME_ALIASES)
        if not sku or not name:
            missing.append(position + HEADER_ROW_OFFSET)
            continue
        boxes = coerce_number(_field(row, BOX_ALIASES))
        if boxes <= 0:
            continue

        product = products.get(sku)
        if product is None:
            product = Product(sku=sku, name=name, pack_size=1, stock=0, initial_stock=0)
        elif not product.name:
            product = replace(product, name=name)
        qty = to_pieces(boxes, 0, product.pack_size)
        if qty <= 0:
            continue

        baseline = ensure_initial_stock_computed(state, product)
        products[sku] = replace(product, stock=product.stock + qty, initial_stock=baseline)
        new_transactions.append(
            Transaction(
                transaction_id=generate_transaction_id(when=batch_moment),
                transaction_type=TransactionType.IMPORT,
                sku=sku,
                name=product.name,
                qty=qty,
                timestamp=batch_moment,
            )
        )

    next_state = append_transactions(
        replace(state, products=tuple(products.values())),
        tuple(new_transactions),
    )
    log.info(
        "Daily imports applied for %s: imported=%d skipped=%d",
        batch_moment.date().isoformat(),
        len(new_transactions),
        len(missing),
    )
    _log_missing("Daily import", missing)
    return next_state, ImportResult(imported_count=len(new_transactions), missing_rows=tuple(missing))


__all__ = [
    "UploadResult",
    "ImportResult",
    "apply_catalog_upload",
    "apply_stock_snapshot",
    "apply_daily_imports",
]
