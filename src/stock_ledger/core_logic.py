"""Controller layer for the stock ledger.

This module owns the single live :class:`~stock_ledger.ledger.InventoryState`
of a session. It consumes the Data Access Layer (DAL) for all I/O and routes
every mutation through the pure transitions of the ledger, catalog, and
reconciliation modules, so that a change is either applied as a whole or not at
all. Each accepted mutation first pushes an undo snapshot of the previous
state.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .catalog import find_by_name, get_product, replace_product
from .constants import EXPECTED_SCHEMA_VERSION, EntryType, TransactionType
from .ledger import (
    ConflictError,
    InsufficientStockError,
    InventoryState,
    MissingReferenceError,
    Product,
    Transaction,
    ValidationError,
    append_transaction,
    ensure_initial_stock_computed,
    generate_transaction_id,
    local_midnight,
)
from .reconciliation import (
    ImportResult,
    UploadResult,
    apply_catalog_upload,
    apply_daily_imports,
    apply_stock_snapshot,
)
from .undo import Snapshot, UndoStack
from .units import normalize_pack_size, to_pieces


@dataclass
class RuntimeContext:
    """Container for configuration, workbook, live state, and undo history.

    ``state`` is replaced wholesale by the controller functions below; it is
    never mutated in place.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    state: InventoryState
    undo: UndoStack


@dataclass(frozen=True)
class EntryCommand:
    """User intent for a manual ``new``, ``import``, or ``sale`` entry.

    ``boxes`` and ``pieces`` are combined with the pack size into a piece
    count. ``entry_date`` defaults to today.
    """

    entry_type: EntryType
    sku: str
    name: str = ""
    boxes: Any = 0
    pieces: Any = 0
    pack_size: Any = None
    entry_date: Optional[date] = None


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings, the ledger workbook, and the undo history.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for controller calls.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
        ValueError: When the undo history file is corrupt.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    state = data_manager.load_state(workbook)
    undo = data_manager.load_undo_stack(settings.undo_file, limit=settings.undo_limit)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook, state=state, undo=undo)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def _resolve_entry_date(entry_date: Optional[date], today: Optional[date]) -> date:
    today = today or date.today()
    if entry_date is None:
        return today
    if entry_date > today:
        log.warning("Entry rejected: date %s is later than today (%s)", entry_date, today)
        raise ValidationError("Entry date must not be later than today")
    return entry_date


def _entry_transaction(transaction_type: TransactionType, product: Product, qty: int, entry_day: date) -> Transaction:
    timestamp = local_midnight(entry_day)
    return Transaction(
        transaction_id=generate_transaction_id(),
        transaction_type=transaction_type,
        sku=product.sku,
        name=product.name,
        qty=qty,
        timestamp=timestamp,
    )


def _apply_new_product(state: InventoryState, command: EntryCommand, entry_day: date) -> Tuple[InventoryState, Optional[Transaction]]:
    sku = (command.sku or "").strip()
    name = (command.name or "").strip()
    if not name:
        log.warning("New product '%s' rejected: missing name", sku)
        raise ValidationError("A product name is required to create a product")
    pack_size = normalize_pack_size(command.pack_size)
    if pack_size is None:
        log.warning("New product '%s' rejected: invalid pack size %r", sku, command.pack_size)
        raise ValidationError("Pack size must be a positive whole number")
    if get_product(state, sku) is not None:
        log.warning("New product rejected: SKU '%s' already exists", sku)
        raise ConflictError(f"Product '{sku}' already exists")

    qty = to_pieces(command.boxes, command.pieces, pack_size)
    product = Product(sku=sku, name=name, pack_size=pack_size, stock=qty, initial_stock=0)
    next_state = replace_product(state, product)
    if qty <= 0:
        return next_state, None
    transaction = _entry_transaction(TransactionType.IMPORT, product, qty, entry_day)
    return append_transaction(next_state, transaction), transaction


def _apply_movement(state: InventoryState, command: EntryCommand, entry_day: date) -> Tuple[InventoryState, Transaction]:
    sku = (command.sku or "").strip()
    name = (command.name or "").strip()
    transaction_type = TransactionType(EntryType(command.entry_type).value)
    entered_pack = normalize_pack_size(command.pack_size)

    product = get_product(state, sku)
    if product is None:
        if not name:
            log.warning("%s entry rejected: unknown SKU '%s' without a name", transaction_type.value, sku)
            raise MissingReferenceError(f"Unknown SKU '{sku}': a product name is required to create it")
        product = Product(sku=sku, name=name, pack_size=entered_pack or 1, stock=0, initial_stock=0)
    elif not product.name and name:
        product = replace(product, name=name)

    pack_size = entered_pack or product.pack_size or 1
    qty = to_pieces(command.boxes, command.pieces, pack_size)
    if qty <= 0:
        log.warning("%s entry for '%s' rejected: quantity %d", transaction_type.value, sku, qty)
        raise ValidationError("Quantity must be greater than zero")

    baseline = ensure_initial_stock_computed(state, product)
    if transaction_type is TransactionType.SALE:
        if qty > product.stock:
            log.warning("Sale of %d pieces of '%s' rejected: only %d in stock", qty, sku, product.stock)
            raise InsufficientStockError(f"Cannot sell {qty} pieces of '{sku}': only {product.stock} in stock")
        stock = product.stock - qty
    else:
        stock = product.stock + qty

    product = replace(product, pack_size=pack_size, stock=stock, initial_stock=baseline)
    transaction = _entry_transaction(transaction_type, product, qty, entry_day)
    return append_transaction(replace_product(state, product), transaction), transaction


def _resolve_sku_by_name(state: InventoryState, command: EntryCommand) -> EntryCommand:
    match = find_by_name(state, command.name)
    if match is None:
        return command
    log.info("Resolved product name '%s' to SKU '%s'", command.name, match.sku)
    return replace(command, sku=match.sku)


def apply_entry(
    state: InventoryState,
    command: EntryCommand,
    *,
    today: Optional[date] = None,
) -> Tuple[InventoryState, Optional[Transaction]]:
    """Compute the state that results from a manual entry.

    ``new`` creates a product with the entered quantity as current stock and a
    zero baseline, and records that quantity as an ``import`` on the entry
    date so the stock invariant holds. ``import`` and ``sale`` adjust stock by
    the entered quantity and append one transaction; a positive entered pack
    size also becomes the product's pack size. When an ``import`` or ``sale``
    carries no SKU, the product whose name matches exactly (ignoring case)
    supplies it. Transactions are stamped at local midnight of the entry date.

    Args:
        state (InventoryState): Current state; never modified.
        command (EntryCommand): Structured intent describing the entry.
        today (date | None): Reference day for the future-date check.

    Returns:
        tuple[InventoryState, Transaction | None]: The next state and the
            recorded transaction. ``new`` with a zero quantity records none.

    Raises:
        ValidationError: If the SKU, a required name, the pack size, or the
            quantity is missing or unusable, or the date is in the future.
        ConflictError: If ``new`` targets an existing SKU.
        MissingReferenceError: If ``import``/``sale`` targets an unknown SKU
            without a name.
        InsufficientStockError: If a sale exceeds current stock.
    """
    try:
        entry_type = EntryType(command.entry_type)
    except ValueError as exc:
        log.error("Unsupported entry type provided: %r", command.entry_type)
        raise ValidationError(f"Unsupported entry type: {command.entry_type}") from exc
    if not (command.sku or "").strip() and entry_type is not EntryType.NEW:
        command = _resolve_sku_by_name(state, command)
    if not (command.sku or "").strip():
        log.warning("%s entry rejected: missing SKU", entry_type.value)
        raise ValidationError("SKU must not be empty")
    entry_day = _resolve_entry_date(command.entry_date, today)

    if entry_type is EntryType.NEW:
        return _apply_new_product(state, command, entry_day)
    return _apply_movement(state, command, entry_day)


def _commit(context: RuntimeContext, next_state: InventoryState, reason: str) -> None:
    context.undo.push(context.state, reason)
    context.state = next_state


def record_entry(context: RuntimeContext, command: EntryCommand, *, today: Optional[date] = None) -> Optional[Transaction]:
    """Apply a manual entry to the live state.

    A rejected entry raises before the undo history or the state is touched.

    Returns:
        Transaction | None: The recorded transaction, if any.
    """
    next_state, transaction = apply_entry(context.state, command, today=today)
    entry_type = EntryType(command.entry_type)
    sku = transaction.sku if transaction is not None else (command.sku or "").strip()
    reason = f"Create product {sku}" if entry_type is EntryType.NEW else f"Record {entry_type.value} {sku}"
    _commit(context, next_state, reason)
    if transaction is None:
        log.info("Created product '%s' without opening stock", sku)
    else:
        log.info(
            "Recorded %s transaction '%s' for '%s' (qty=%d)",
            transaction.transaction_type.value,
            transaction.transaction_id,
            sku,
            transaction.qty,
        )
    return transaction


def upload_catalog(context: RuntimeContext, rows: Iterable[Mapping[str, Any]]) -> UploadResult:
    """Merge a catalog upload into the live state."""
    next_state, result = apply_catalog_upload(context.state, rows)
    _commit(context, next_state, "Upload catalog")
    return result


def upload_stock_snapshot(context: RuntimeContext, rows: Iterable[Mapping[str, Any]]) -> UploadResult:
    """Overwrite live stock levels with a counted stock snapshot."""
    next_state, result = apply_stock_snapshot(context.state, rows)
    _commit(context, next_state, "Upload stock snapshot")
    return result


def upload_daily_imports(
    context: RuntimeContext,
    rows: Iterable[Mapping[str, Any]],
    *,
    uploaded_at: Optional[datetime] = None,
) -> ImportResult:
    """Record a daily-import upload against the live state."""
    next_state, result = apply_daily_imports(context.state, rows, uploaded_at=uploaded_at)
    _commit(context, next_state, "Upload daily imports")
    return result


def undo_last(context: RuntimeContext) -> Optional[Snapshot]:
    """Restore the state captured before the most recent mutation.

    Returns:
        Snapshot | None: The restored snapshot, or ``None`` when the history
            is empty.
    """
    snapshot = context.undo.pop()
    if snapshot is None:
        log.info("Undo requested with an empty history")
        return None
    context.state = snapshot.state
    log.info("Undid '%s' (snapshot taken %s)", snapshot.reason, snapshot.taken_at.isoformat())
    return snapshot


def persist_context(context: RuntimeContext) -> None:
    """Write the live state into the workbook and save it with the undo history.

    Saves always target :attr:`RuntimeContext.settings.data_file` and
    :attr:`RuntimeContext.settings.undo_file`.
    """
    data_manager.write_state(context.workbook, context.state)
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    data_manager.save_undo_stack(context.undo, context.settings.undo_file)
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook and undo history to discard unsaved modifications.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    state = data_manager.load_state(workbook)
    undo = data_manager.load_undo_stack(context.settings.undo_file, limit=context.settings.undo_limit)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook, state=state, undo=undo)


__all__ = [
    "RuntimeContext",
    "EntryCommand",
    "load_runtime_context",
    "ensure_schema_version",
    "apply_entry",
    "record_entry",
    "upload_catalog",
    "upload_stock_snapshot",
    "upload_daily_imports",
    "undo_last",
    "persist_context",
    "refresh_context",
]
