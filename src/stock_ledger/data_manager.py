"""Data access layer for the stock ledger.

This module provides low-level helpers that read from and write to the ledger
workbook and the files around it. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, persisting, and converting the ``Products`` and
   ``Transactions`` sheets to and from :class:`~stock_ledger.ledger.InventoryState`.
3. Upload decoding: turning an uploaded spreadsheet into header-keyed rows.
4. Side files: the JSON undo history and exported report tables.
"""


from __future__ import annotations

import configparser
import csv
import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .constants import COLUMN_LABELS, COLUMNS_BY_MODE, DEFAULT_UNDO_LIMIT, SheetName, TransactionType, ViewMode
from .ledger import InventoryState, Product, Transaction
from .undo import Snapshot, UndoStack
from .units import coerce_number


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
UNDO_FILE_SUFFIX = ".undo.json"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    undo_file: Path
    undo_limit: int = DEFAULT_UNDO_LIMIT


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory contains ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _resolve_against(raw: str, base_path: Optional[Path]) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` and ``UndoFile`` entries are expanded against
    ``base_path`` (the current working directory when omitted). ``UndoFile``
    defaults to the data file name with a ``.undo.json`` suffix and
    ``UndoLimit`` to :data:`~stock_ledger.constants.DEFAULT_UNDO_LIMIT`.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Anchor directory for relative paths.

    Returns:
        ConfigSettings: Immutable settings container with resolved paths.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If ``UndoLimit`` is not a positive integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = _resolve_against(data_file_raw, base_path)
    undo_file_raw = parser.get("System", "UndoFile", fallback="").strip()
    if undo_file_raw:
        undo_file_path = _resolve_against(undo_file_raw, base_path)
    else:
        undo_file_path = data_file_path.with_name(data_file_path.stem + UNDO_FILE_SUFFIX)

    undo_limit = parser.getint("Defaults", "UndoLimit", fallback=DEFAULT_UNDO_LIMIT)
    if undo_limit < 1:
        raise ValueError(f"UndoLimit must be a positive integer, got {undo_limit}")

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        undo_file=undo_file_path,
        undo_limit=undo_limit,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def iter_products(workbook: Workbook) -> Iterable[Product]:
    """Iterate over product records stored on the ``Products`` worksheet.

    The iterator skips the header row and any fully empty rows.
    """

    sheet = workbook[PRODUCTS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(not _is_blank(cell) for cell in raw):
            yield deserialize_product(raw)


def iter_transactions(workbook: Workbook) -> Iterable[Transaction]:
    """Stream transaction records from the ``Transactions`` worksheet.

    Rows are yielded in sheet order, which is the ledger order (most recent
    first). Header and fully empty rows are skipped.
    """

    sheet = workbook[TRANSACTIONS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(not _is_blank(cell) for cell in raw):
            yield deserialize_transaction(raw)


def load_state(workbook: Workbook) -> InventoryState:
    """Build an :class:`InventoryState` from both ledger worksheets."""

    state = InventoryState(
        products=tuple(iter_products(workbook)),
        transactions=tuple(iter_transactions(workbook)),
    )
    log.debug(
        "Loaded %d products and %d transactions from workbook",
        len(state.products),
        len(state.transactions),
    )
    return state


def _rewrite_sheet(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> None:
    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    for row_index, row in enumerate(rows, start=2):
        for column_index, value in enumerate(row, start=1):
            sheet.cell(row=row_index, column=column_index, value=value)


def write_state(workbook: Workbook, state: InventoryState) -> None:
    """Replace the contents of both ledger worksheets with ``state``.

    Header rows and formatting are kept; every data row is rewritten in state
    order so that :func:`load_state` returns an equal state.
    """

    _rewrite_sheet(workbook, PRODUCTS_SHEET, (serialize_product(product) for product in state.products))
    _rewrite_sheet(
        workbook,
        TRANSACTIONS_SHEET,
        (serialize_transaction(transaction) for transaction in state.transactions),
    )


def serialize_product(record: Product) -> list[object]:
    """Convert a product into ``[SKU, ProductName, PackSize, Stock, InitialStock]``.

    An unset baseline is written as an empty cell.
    """

    return [record.sku, record.name, record.pack_size, record.stock, record.initial_stock]


def serialize_transaction(record: Transaction) -> list[object]:
    """Convert a transaction into the ``Transactions`` column order.

    Timestamps are stored as ISO 8601 text including the UTC offset.
    """

    return [
        record.transaction_id,
        record.timestamp.isoformat(),
        TransactionType(record.transaction_type).value,
        record.sku,
        record.name,
        record.qty,
    ]


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _as_int(value: Any, default: int = 0) -> int:
    return int(coerce_number(value, default=default))


def parse_timestamp(value: Any) -> datetime:
    """Read a stored timestamp as a timezone-aware datetime.

    Naive values, such as cells edited by hand in Excel, are taken as local
    time.

    Raises:
        ValueError: If ``value`` is not an ISO 8601 timestamp.
    """

    moment = value if isinstance(value, datetime) else datetime.fromisoformat(str(value).strip())
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment


def deserialize_product(raw_row: Sequence[object]) -> Product:
    """Convert a raw worksheet row into a strongly typed product record.

    Identifier and name cells are coerced to ``str`` because Excel turns
    numeric-looking SKUs into numbers. A blank ``InitialStock`` cell means the
    baseline is unset.
    """

    sku, name, pack_raw, stock_raw, initial_raw, *_ = (*raw_row, None, None, None, None, None)
    return Product(
        sku=_as_text(sku),
        name=_as_text(name),
        pack_size=max(1, _as_int(pack_raw, default=1)),
        stock=max(0, _as_int(stock_raw)),
        initial_stock=None if _is_blank(initial_raw) else max(0, _as_int(initial_raw)),
    )


def deserialize_transaction(raw_row: Sequence[object]) -> Transaction:
    """Convert a raw worksheet row into a strongly typed transaction record."""

    transaction_id, timestamp_raw, type_raw, sku, name, qty_raw, *_ = (*raw_row, None, None, None, None, None, None)
    return Transaction(
        transaction_id=_as_text(transaction_id),
        transaction_type=TransactionType(_as_text(type_raw).lower()),
        sku=_as_text(sku),
        name=_as_text(name),
        qty=_as_int(qty_raw),
        timestamp=parse_timestamp(timestamp_raw),
    )


def product_to_dict(product: Product) -> Dict[str, Any]:
    return {
        "sku": product.sku,
        "name": product.name,
        "pack_size": product.pack_size,
        "stock": product.stock,
        "initial_stock": product.initial_stock,
    }


def transaction_to_dict(transaction: Transaction) -> Dict[str, Any]:
    return {
        "transaction_id": transaction.transaction_id,
        "transaction_type": TransactionType(transaction.transaction_type).value,
        "sku": transaction.sku,
        "name": transaction.name,
        "qty": transaction.qty,
        "timestamp": transaction.timestamp.isoformat(),
    }


def state_to_dict(state: InventoryState) -> Dict[str, Any]:
    """Convert ``state`` into JSON-compatible ``{products, transactions}``."""

    return {
        "products": [product_to_dict(product) for product in state.products],
        "transactions": [transaction_to_dict(transaction) for transaction in state.transactions],
    }


def state_from_dict(payload: Dict[str, Any]) -> InventoryState:
    """Inverse of :func:`state_to_dict`."""

    products = tuple(
        Product(
            sku=item["sku"],
            name=item.get("name", ""),
            pack_size=item.get("pack_size", 1),
            stock=item.get("stock", 0),
            initial_stock=item.get("initial_stock"),
        )
        for item in payload.get("products", ())
    )
    transactions = tuple(
        Transaction(
            transaction_id=item["transaction_id"],
            transaction_type=TransactionType(item["transaction_type"]),
            sku=item["sku"],
            name=item.get("name", ""),
            qty=item["qty"],
            timestamp=parse_timestamp(item["timestamp"]),
        )
        for item in payload.get("transactions", ())
    )
    return InventoryState(products=products, transactions=transactions)


def load_undo_stack(path: Path, *, limit: int = DEFAULT_UNDO_LIMIT) -> UndoStack:
    """Read the persisted undo history, or return an empty stack.

    Raises:
        ValueError: If the file exists but is not a valid undo history.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        return UndoStack(limit=limit)

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        snapshots = [
            Snapshot(
                state=state_from_dict(item["state"]),
                reason=item.get("reason", ""),
                taken_at=parse_timestamp(item["taken_at"]),
            )
            for item in payload.get("snapshots", ())
        ]
    except (KeyError, TypeError, json.JSONDecodeError) as exc:
        log.error("Undo history at '%s' is unreadable: %s", path, exc)
        raise ValueError(f"Corrupt undo history: {path}") from exc
    return UndoStack(limit=limit, snapshots=snapshots)


def save_undo_stack(stack: UndoStack, path: Path) -> None:
    """Write the undo history as JSON next to the workbook."""

    path = Path(path).expanduser().resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "limit": stack.limit,
        "snapshots": [
            {
                "reason": snapshot.reason,
                "taken_at": snapshot.taken_at.isoformat(),
                "state": state_to_dict(snapshot.state),
            }
            for snapshot in stack.snapshots()
        ],
    }
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")


def normalize_header(header: Any) -> str:
    """Lowercase a header cell and strip every whitespace character from it."""

    if header is None:
        return ""
    return "".join(str(header).lower().split())


def rows_from_table(raw_rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    """Key each data row by the normalized header of the first row.

    Blank cells become ``""``, fully blank rows are skipped, and cells under
    an empty header are ignored. When a header repeats, the first column wins.
    """

    if not raw_rows:
        return []
    headers = [normalize_header(cell) for cell in raw_rows[0]]
    records: List[Dict[str, Any]] = []
    for raw in raw_rows[1:]:
        if all(_is_blank(cell) for cell in raw):
            continue
        record: Dict[str, Any] = {}
        for index, header in enumerate(headers):
            if not header:
                continue
            value = raw[index] if index < len(raw) else None
            record.setdefault(header, "" if value is None else value)
        records.append(record)
    return records


def read_upload_rows(path: Path) -> List[Dict[str, Any]]:
    """Decode an uploaded ``.xlsx`` or ``.csv`` file into header-keyed rows.

    Only the first worksheet of a workbook is read. Formula cells yield their
    cached values.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Upload file not found: {path}")

    if path.suffix.lower() == ".csv":
        with path.open(newline="", encoding="utf-8-sig") as handle:
            raw_rows = [list(row) for row in csv.reader(handle)]
    else:
        workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
        try:
            sheet = workbook.worksheets[0]
            raw_rows = [list(row) for row in sheet.iter_rows(values_only=True)]
        finally:
            workbook.close()

    records = rows_from_table(raw_rows)
    log.info("Decoded %d rows from upload '%s'", len(records), path.name)
    return records


def write_table(destination: Path, header: Sequence[str], rows: Iterable[Sequence[Any]], *, title: str = "Report") -> Path:
    """Write a header plus rows as ``.csv`` or, for any other suffix, ``.xlsx``.

    ``None`` values become empty cells.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    cleaned = [["" if value is None else value for value in row] for row in rows]

    if dest.suffix.lower() == ".csv":
        with dest.open("w", newline="", encoding="utf-8-sig") as handle:
            writer = csv.writer(handle)
            writer.writerow(header)
            writer.writerows(cleaned)
    else:
        workbook = openpyxl.Workbook()
        sheet = workbook.active
        sheet.title = title
        sheet.append(list(header))
        for cell in sheet[1]:
            cell.font = Font(bold=True)
        for row in cleaned:
            sheet.append(row)
        workbook.save(dest)

    log.info("Exported %d rows to '%s'", len(cleaned), dest)
    return dest


def export_report(rows: Sequence[Any], mode: ViewMode, destination: Path) -> Path:
    """Export check/report rows using the column set of ``mode``."""

    columns = COLUMNS_BY_MODE[ViewMode(mode)]
    header = [COLUMN_LABELS[column] for column in columns]
    return write_table(destination, header, ([row.value(column) for column in columns] for row in rows))


def export_daily_stock(matrix: Any, destination: Path) -> Path:
    """Export a daily stock matrix with a boxes and a pieces column per day."""

    header = [COLUMN_LABELS["sku"], COLUMN_LABELS["name"]]
    for day in matrix.days:
        header.extend([f"Stock boxes ({day.isoformat()})", f"Stock pieces ({day.isoformat()})"])
    body = []
    for row in matrix.rows:
        line: List[Any] = [row.sku, row.name]
        for level in row.levels:
            line.extend([level.boxes, level.pieces])
        body.append(line)
    return write_table(destination, header, body, title="Daily stock")
