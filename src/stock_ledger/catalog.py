"""Product catalog operations over :class:`~stock_ledger.ledger.InventoryState`.

The catalog owns product identity (the SKU), display name, pack size, and
stock baseline. Lookups go through a lazily built ``by_sku`` mapping cached on
the state; every write returns a new state.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional

from . import log
from .ledger import InventoryState, MissingReferenceError, Product, ValidationError
from .units import normalize_pack_size


def _ensure_products_index(state: InventoryState) -> Dict[str, Product]:
    index = state._cache.get("products_by_sku")
    if index is None:
        index = {product.sku: product for product in state.products}
        state._cache["products_by_sku"] = index
        log.debug("Indexed %d products", len(index))
    return index


def get_product(state: InventoryState, sku: str) -> Optional[Product]:
    """Return the product stored under ``sku`` or ``None``."""

    return _ensure_products_index(state).get(sku)


def require_product(state: InventoryState, sku: str) -> Product:
    """Resolve a product record by its SKU.

    Raises:
        MissingReferenceError: If ``sku`` is not in the catalog.
    """

    product = get_product(state, sku)
    if product is None:
        log.warning("Product lookup failed for SKU '%s'", sku)
        raise MissingReferenceError(f"Unknown SKU: {sku}")
    return product


def find_by_name(state: InventoryState, name: str) -> Optional[Product]:
    """Return the first product whose name equals ``name``, ignoring case and outer spaces."""

    wanted = (name or "").strip().casefold()
    if not wanted:
        return None
    for product in state.products:
        if (product.name or "").strip().casefold() == wanted:
            return product
    return None


def list_products(state: InventoryState) -> List[Product]:
    """Return a copy of the catalog in stored order."""

    return list(state.products)


def replace_product(state: InventoryState, product: Product) -> InventoryState:
    """Store ``product`` under its SKU, keeping catalog order stable.

    Existing entries are replaced in place; unknown SKUs are appended.
    """

    if get_product(state, product.sku) is None:
        return replace(state, products=(*state.products, product))
    products = tuple(product if existing.sku == product.sku else existing for existing in state.products)
    return replace(state, products=products)


def merge_product(
    product: Product,
    *,
    name: Optional[str] = None,
    pack_size: object = None,
) -> Product:
    """Apply catalog fields to ``product`` without ever losing information.

    The name is overwritten only by a non-empty value and the pack size only
    by a positive integer.
    """

    incoming_name = (name or "").strip()
    incoming_pack = normalize_pack_size(pack_size)
    return replace(
        product,
        name=incoming_name or product.name,
        pack_size=incoming_pack if incoming_pack is not None else product.pack_size,
    )


def upsert_product(
    state: InventoryState,
    sku: str,
    *,
    name: Optional[str] = None,
    pack_size: object = None,
    stock: Optional[int] = None,
    initial_stock: Optional[int] = None,
) -> InventoryState:
    """Insert or merge a product record.

    Args:
        state (InventoryState): Current state.
        sku (str): Catalog key; must be non-empty.
        name (str | None): Display name; ignored when empty for existing SKUs.
        pack_size (object): Pieces per box; ignored unless a positive integer.
        stock (int | None): Explicit stock in pieces; defaults to 0 for new SKUs.
        initial_stock (int | None): Explicit baseline; defaults to 0 for new
            SKUs.

    Returns:
        InventoryState: State containing the merged product.

    Raises:
        ValidationError: If ``sku`` is empty.
    """

    sku = (sku or "").strip()
    product = upsert_record(
        get_product(state, sku),
        sku,
        name=name,
        pack_size=pack_size,
        stock=stock,
        initial_stock=initial_stock,
    )
    return replace_product(state, product)


def upsert_record(
    existing: Optional[Product],
    sku: str,
    *,
    name: Optional[str] = None,
    pack_size: object = None,
    stock: Optional[int] = None,
    initial_stock: Optional[int] = None,
) -> Product:
    """Build the record :func:`upsert_product` stores, given the current one.

    Batch callers that keep their own SKU index use this directly so that a
    whole upload does not rebuild the catalog once per row.

    Raises:
        ValidationError: If ``sku`` is empty.
    """

    sku = (sku or "").strip()
    if not sku:
        log.error("Catalog upsert rejected: empty SKU")
        raise ValidationError("SKU must not be empty")

    if existing is None:
        product = Product(
            sku=sku,
            name=(name or "").strip(),
            pack_size=normalize_pack_size(pack_size) or 1,
            stock=stock if stock is not None else 0,
            initial_stock=initial_stock if initial_stock is not None else 0,
        )
        log.debug("Catalog insert for SKU '%s'", sku)
    else:
        product = merge_product(existing, name=name, pack_size=pack_size)
        if stock is not None:
            product = replace(product, stock=stock)
        if initial_stock is not None:
            product = replace(product, initial_stock=initial_stock)
        log.debug("Catalog update for SKU '%s'", sku)
    return product


__all__ = [
    "get_product",
    "require_product",
    "find_by_name",
    "list_products",
    "replace_product",
    "merge_product",
    "upsert_product",
    "upsert_record",
]
