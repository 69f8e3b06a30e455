"""Enumerations and lookup tables shared across the stock ledger modules.

Centralises domain constants so that the data access layer (DAL), the ledger
engine, and the CLI presentation layer rely on a single source of truth for
identifiers, spreadsheet header aliases, and report column layouts.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Uploaded spreadsheets are reported with 1-based row numbers plus the header.
HEADER_ROW_OFFSET = 2

DEFAULT_UNDO_LIMIT = 10


class TransactionType(str, Enum):
    """Enumerate the stock movements recorded in the ledger."""

    IMPORT = "import"
    SALE = "sale"


class EntryType(str, Enum):
    """Enumerate the manual entry kinds accepted by the controller."""

    IMPORT = "import"
    SALE = "sale"
    NEW = "new"


class ViewMode(str, Enum):
    """Enumerate the report views and the aggregate columns they compute."""

    STOCK = "stock"
    IMPORT = "import"
    SALE = "sale"
    ALL = "all"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    TRANSACTIONS = "Transactions"


# Header aliases are matched after normalization (lowercase, no whitespace).
SKU_ALIASES: Sequence[str] = ("sku",)
IMPORT_SKU_ALIASES: Sequence[str] = ("mãsảnphẩm", "masanpham", "sku", "productcode")
NAME_ALIASES: Sequence[str] = ("tênsảnphẩm", "tensanpham", "ten", "name", "productname")
PACK_SIZE_ALIASES: Sequence[str] = ("quycachdonghang", "quycachdongthung", "packsize", "packsz")
BOX_ALIASES: Sequence[str] = ("sốlượngthùng", "soluongthung", "thung", "boxes")
LOOSE_PIECE_ALIASES: Sequence[str] = ("sốlượngchiếc", "soluongchiec", "chiec", "pieces", "loose")


# Worksheet layout of the ledger workbook, in column order.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: ("SKU", "ProductName", "PackSize", "Stock", "InitialStock"),
    SheetName.TRANSACTIONS.value: ("TransactionID", "Timestamp", "TransactionType", "SKU", "ProductName", "Quantity"),
}


COLUMNS_BY_MODE: Mapping[ViewMode, Sequence[str]] = {
    ViewMode.STOCK: ("sku", "name", "stock_boxes", "stock_pieces", "date"),
    ViewMode.IMPORT: ("sku", "name", "imported", "date"),
    ViewMode.SALE: ("sku", "name", "sold", "date"),
    ViewMode.ALL: ("sku", "name", "stock", "imported", "sold", "date"),
}

COLUMN_LABELS: Mapping[str, str] = {
    "sku": "SKU",
    "name": "Product name",
    "stock": "Stock (pcs)",
    "stock_boxes": "Stock (boxes)",
    "stock_pieces": "Stock (pieces)",
    "imported": "Imported (pcs)",
    "sold": "Sold (pcs)",
    "date": "Date",
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "HEADER_ROW_OFFSET",
    "DEFAULT_UNDO_LIMIT",
    "TransactionType",
    "EntryType",
    "ViewMode",
    "SheetName",
    "SHEET_COLUMNS",
    "SKU_ALIASES",
    "IMPORT_SKU_ALIASES",
    "NAME_ALIASES",
    "PACK_SIZE_ALIASES",
    "BOX_ALIASES",
    "LOOSE_PIECE_ALIASES",
    "COLUMNS_BY_MODE",
    "COLUMN_LABELS",
]
