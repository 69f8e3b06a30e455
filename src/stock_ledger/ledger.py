"""Transaction ledger and the immutable inventory state it lives in.

The ledger is the historical truth of the system: an append-only sequence of
signed stock movements. Products carry their current ``stock`` plus a baseline
(``initial_stock``) so that the stock level at any earlier instant can be
derived as ``initial_stock + sum(signed deltas up to that instant)``.

Every function in this module is a pure transition or query over
:class:`InventoryState`; callers receive a new state instead of a mutated one.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple

from . import log
from .constants import TransactionType


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when a required field is missing or a quantity is unusable."""


class ConflictError(BusinessRuleViolation):
    """Raised when creating a product whose SKU already exists."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a sale would drive stock below zero."""


class InputShapeError(BusinessRuleViolation, TypeError):
    """Raised when an upload is not a sequence of row mappings at all."""


class MissingReferenceError(BusinessRuleViolation, KeyError):
    """Raised when a referenced SKU is unknown."""


@dataclass(frozen=True)
class Product:
    """Catalog entry keyed by SKU; quantities are in pieces."""

    sku: str
    name: str
    pack_size: int = 1
    stock: int = 0
    initial_stock: Optional[int] = 0


@dataclass(frozen=True)
class Transaction:
    """A single signed stock movement recorded in the ledger."""

    transaction_id: str
    transaction_type: TransactionType
    sku: str
    name: str
    qty: int
    timestamp: datetime


@dataclass(frozen=True)
class InventoryState:
    """Combined catalog and ledger state replaced as a whole on every change.

    Transactions are stored most recent first. The SKU index cached in
    ``_cache`` is derived lazily and is never part of equality or of a
    ``dataclasses.replace`` copy.
    """

    products: Tuple[Product, ...] = ()
    transactions: Tuple[Transaction, ...] = ()
    _cache: Dict[str, Any] = field(default_factory=dict, init=False, repr=False, compare=False)


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar range; an unset bound is unbounded on that side."""

    start: Optional[date] = None
    end: Optional[date] = None

    @classmethod
    def single_day(cls, day: date) -> "DateRange":
        return cls(start=day, end=day)

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < start_of_day(self.start):
            return False
        if self.end is not None and moment > end_of_day(self.end):
            return False
        return True


def local_midnight(day: date) -> datetime:
    """Return midnight of ``day`` in the local timezone as an aware datetime."""

    return datetime.combine(day, time.min).astimezone()


def start_of_day(day: date) -> datetime:
    return local_midnight(day)


def end_of_day(day: date) -> datetime:
    """Return the last representable instant of ``day`` in local time."""

    return datetime.combine(day, time.max).astimezone()


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current local time as an aware datetime."""

    return candidate if candidate is not None else datetime.now().astimezone()


def generate_transaction_id(*, prefix: str = "T", when: Optional[datetime] = None) -> str:
    """Generate a sortable, collision-resistant transaction identifier.

    Args:
        prefix (str): Designator prepended to the identifier.
        when (datetime | None): Timestamp used for the sortable part. When
            ``None`` the current time is used.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}-{hex}``.

    Upload batches share a single business timestamp, so the random suffix is
    what keeps identifiers unique within a batch.
    """

    when = _resolve_timestamp(when)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:12]}"


def signed_quantity(transaction: Transaction) -> int:
    """Return ``qty`` for imports and ``-qty`` for sales."""

    if transaction.transaction_type == TransactionType.IMPORT:
        return transaction.qty
    return -transaction.qty


def _ensure_sku_index(state: InventoryState) -> Dict[str, List[Transaction]]:
    """Build the SKU -> transactions index for ``state`` on first use."""

    index = state._cache.get("by_sku")
    if index is None:
        index = {}
        for transaction in state.transactions:
            index.setdefault(transaction.sku, []).append(transaction)
        state._cache["by_sku"] = index
        log.debug("Indexed %d transactions across %d SKUs", len(state.transactions), len(index))
    return index


def transactions_for(state: InventoryState, sku: str) -> List[Transaction]:
    """Return every transaction recorded for ``sku`` (most recent first)."""

    return list(_ensure_sku_index(state).get(sku, ()))


def net_change(state: InventoryState, sku: str, *, until: Optional[datetime] = None) -> int:
    """Sum the signed deltas for ``sku``, optionally only up to ``until``."""

    return sum(
        signed_quantity(transaction)
        for transaction in transactions_for(state, sku)
        if until is None or transaction.timestamp <= until
    )


def aggregate(
    state: InventoryState,
    sku: str,
    transaction_type: TransactionType,
    date_range: Optional[DateRange] = None,
) -> int:
    """Sum ``qty`` for one SKU and type, restricted to an inclusive date range.

    Args:
        state (InventoryState): State to read.
        sku (str): Product identifier.
        transaction_type (TransactionType): ``IMPORT`` or ``SALE``.
        date_range (DateRange | None): Calendar range; ``None`` means all time.

    Returns:
        int: Total quantity in pieces.
    """

    return sum(
        transaction.qty
        for transaction in transactions_for(state, sku)
        if transaction.transaction_type == transaction_type
        and (date_range is None or date_range.contains(transaction.timestamp))
    )


def _ensure_id_set(state: InventoryState) -> set:
    ids = state._cache.get("ids")
    if ids is None:
        ids = {transaction.transaction_id for transaction in state.transactions}
        state._cache["ids"] = ids
    return ids


def validate_transaction(state: InventoryState, transaction: Transaction, *, pending_ids: Optional[set] = None) -> None:
    """Check that ``transaction`` may be appended to the ledger of ``state``.

    ``pending_ids`` holds identifiers of the same batch that are not part of
    ``state`` yet, so that identifiers stay unique across the batch too.

    Raises:
        ValidationError: If the quantity is not a positive integer, the SKU is
            empty, the type is not a ledger movement, the timestamp carries no
            timezone, or the identifier is already in use.
    """

    if not transaction.sku:
        log.error("Transaction '%s' rejected: empty SKU", transaction.transaction_id)
        raise ValidationError("Transaction SKU must not be empty")
    try:
        TransactionType(transaction.transaction_type)
    except ValueError as exc:
        log.error(
            "Transaction '%s' rejected: unsupported type %r",
            transaction.transaction_id,
            transaction.transaction_type,
        )
        raise ValidationError(f"Unsupported transaction type: {transaction.transaction_type}") from exc
    if isinstance(transaction.qty, bool) or not isinstance(transaction.qty, int) or transaction.qty <= 0:
        log.error("Transaction '%s' rejected: quantity %r", transaction.transaction_id, transaction.qty)
        raise ValidationError("Quantity must be a whole number greater than zero")
    # Day bounds are aware datetimes; a naive timestamp could never be compared with them.
    if getattr(transaction.timestamp, "tzinfo", None) is None or transaction.timestamp.utcoffset() is None:
        log.error("Transaction '%s' rejected: timestamp %r has no timezone", transaction.transaction_id, transaction.timestamp)
        raise ValidationError("Transaction timestamp must be a timezone-aware datetime")
    if transaction.transaction_id in _ensure_id_set(state) or transaction.transaction_id in (pending_ids or ()):
        log.error("Transaction '%s' rejected: duplicate identifier", transaction.transaction_id)
        raise ValidationError(f"Duplicate transaction id: {transaction.transaction_id}")


def append_transaction(state: InventoryState, transaction: Transaction) -> InventoryState:
    """Return a new state with ``transaction`` prepended to the ledger.

    The state passed in is never modified; a rejected transaction raises
    before anything is built.
    """

    return append_transactions(state, (transaction,))


def append_transactions(state: InventoryState, transactions: Tuple[Transaction, ...]) -> InventoryState:
    """Prepend a batch of transactions; the last one in ``transactions`` ends up first.

    The whole batch is validated before the new state is built, so either
    every transaction lands or none does.
    """

    accepted: List[Transaction] = []
    pending_ids: set = set()
    for transaction in transactions:
        validate_transaction(state, transaction, pending_ids=pending_ids)
        accepted.append(transaction)
        pending_ids.add(transaction.transaction_id)
    return replace(state, transactions=(*reversed(accepted), *state.transactions))


def ensure_initial_stock_computed(state: InventoryState, product: Product) -> int:
    """Return the product's baseline, inferring it when unset.

    The inference assumes ``product.stock`` is accurate right now and
    back-derives the baseline that makes it consistent with the whole recorded
    history: ``max(0, stock - net_change(all time))``. When ``stock`` was
    overwritten independently of the ledger the inferred value drifts; that is
    accepted rather than treated as an error.
    """

    if product.initial_stock is not None:
        return product.initial_stock
    baseline = max(0, product.stock - net_change(state, product.sku))
    log.debug("Inferred baseline %d for SKU '%s'", baseline, product.sku)
    return baseline


__all__ = [
    "BusinessRuleViolation",
    "ValidationError",
    "ConflictError",
    "InsufficientStockError",
    "InputShapeError",
    "MissingReferenceError",
    "Product",
    "Transaction",
    "InventoryState",
    "DateRange",
    "local_midnight",
    "start_of_day",
    "end_of_day",
    "generate_transaction_id",
    "signed_quantity",
    "transactions_for",
    "net_change",
    "aggregate",
    "validate_transaction",
    "append_transaction",
    "append_transactions",
    "ensure_initial_stock_computed",
]
