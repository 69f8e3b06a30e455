"""Unit tests describing the controller contract."""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from unittest.mock import Mock

import pytest

from stock_ledger import catalog, core_logic, data_manager, ledger
from stock_ledger.constants import EntryType, TransactionType
from stock_ledger.ledger import (
    ConflictError,
    InsufficientStockError,
    InventoryState,
    MissingReferenceError,
    Product,
    ValidationError,
)

TODAY = date(2024, 3, 10)
DAY1 = date(2024, 3, 1)


def _invariant_holds(state: InventoryState) -> bool:
    return all(
        product.stock == product.initial_stock + ledger.net_change(state, product.sku)
        for product in state.products
    )


def _entry(entry_type: EntryType, sku: str = "SP-001", **kwargs) -> core_logic.EntryCommand:
    kwargs.setdefault("entry_date", DAY1)
    return core_logic.EntryCommand(entry_type=entry_type, sku=sku, **kwargs)


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def test_ensure_schema_version_accepts_expected(context):
    core_logic.ensure_schema_version(context)


def test_ensure_schema_version_rejects_mismatch(context):
    context.settings = replace(context.settings, schema_version="0.0.1")

    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(context)


def test_persist_context_writes_state_workbook_and_undo(context, monkeypatch):
    write_state = Mock()
    save_workbook = Mock()
    save_undo_stack = Mock()
    monkeypatch.setattr(data_manager, "write_state", write_state)
    monkeypatch.setattr(data_manager, "save_workbook", save_workbook)
    monkeypatch.setattr(data_manager, "save_undo_stack", save_undo_stack)

    core_logic.persist_context(context)

    write_state.assert_called_once_with(context.workbook, context.state)
    save_workbook.assert_called_once_with(context.workbook, destination=context.settings.data_file)
    save_undo_stack.assert_called_once_with(context.undo, context.settings.undo_file)


# ---------------------------------------------------------------------------
# Manual entries
# ---------------------------------------------------------------------------


def test_new_product_records_opening_stock_as_import():
    state, transaction = core_logic.apply_entry(
        InventoryState(),
        _entry(EntryType.NEW, name="Cola", pack_size=20, boxes=5),
        today=TODAY,
    )

    assert catalog.get_product(state, "SP-001") == Product("SP-001", "Cola", 20, 100, 0)
    assert transaction.transaction_type == TransactionType.IMPORT
    assert transaction.qty == 100
    assert transaction.timestamp == ledger.local_midnight(DAY1)
    assert state.transactions == (transaction,)
    assert _invariant_holds(state)


def test_new_product_with_zero_quantity_records_no_transaction():
    state, transaction = core_logic.apply_entry(InventoryState(), _entry(EntryType.NEW, name="Cola", pack_size=6), today=TODAY)

    assert transaction is None
    assert catalog.get_product(state, "SP-001").stock == 0
    assert state.transactions == ()


def test_new_product_with_existing_sku_is_rejected(context):
    context.state = InventoryState(products=(Product("SP-001", "Cola", 20, 40, 40),))
    before = context.state

    with pytest.raises(ConflictError):
        core_logic.record_entry(context, _entry(EntryType.NEW, name="Cola again", pack_size=20, boxes=1), today=TODAY)

    assert context.state is before
    assert len(context.undo) == 0


@pytest.mark.parametrize("fields", [{"name": "", "pack_size": 6}, {"name": "Cola", "pack_size": 0}, {"name": "Cola", "pack_size": "x"}])
def test_new_product_requires_name_and_pack_size(fields):
    with pytest.raises(ValidationError):
        core_logic.apply_entry(InventoryState(), _entry(EntryType.NEW, boxes=1, **fields), today=TODAY)


def test_entries_require_sku():
    with pytest.raises(ValidationError):
        core_logic.apply_entry(InventoryState(), _entry(EntryType.IMPORT, sku=" ", boxes=1), today=TODAY)


def test_entries_without_sku_resolve_product_by_exact_name():
    state = InventoryState(products=(Product("SP-001", "Cola", 20, 40, 40), Product("SP-002", "Cola Zero", 20, 0, 0)))

    state, transaction = core_logic.apply_entry(state, _entry(EntryType.SALE, sku="", name=" cola ", pieces=5), today=TODAY)

    assert transaction.sku == "SP-001"
    assert catalog.get_product(state, "SP-001") == Product("SP-001", "Cola", 20, 35, 40)
    assert _invariant_holds(state)


def test_entries_without_sku_and_unknown_name_are_rejected():
    state = InventoryState(products=(Product("SP-001", "Cola", 20, 40, 40),))

    with pytest.raises(ValidationError):
        core_logic.apply_entry(state, _entry(EntryType.IMPORT, sku="", name="Col", boxes=1), today=TODAY)
    with pytest.raises(ValidationError):
        core_logic.apply_entry(state, _entry(EntryType.NEW, sku="", name="Cola", pack_size=1, boxes=1), today=TODAY)


def test_record_entry_labels_snapshot_with_resolved_sku(context):
    core_logic.record_entry(context, _entry(EntryType.NEW, name="Cola", pack_size=20, boxes=1), today=TODAY)

    transaction = core_logic.record_entry(context, _entry(EntryType.IMPORT, sku="", name="COLA", boxes=1), today=TODAY)

    assert transaction.sku == "SP-001"
    assert context.undo.peek().reason == "Record import SP-001"
    assert catalog.get_product(context.state, "SP-001").stock == 40


def test_entries_reject_future_dates():
    with pytest.raises(ValidationError):
        core_logic.apply_entry(
            InventoryState(),
            _entry(EntryType.NEW, name="Cola", pack_size=1, boxes=1, entry_date=date(2024, 3, 11)),
            today=TODAY,
        )


def test_entries_default_to_today():
    _, transaction = core_logic.apply_entry(
        InventoryState(),
        _entry(EntryType.NEW, name="Cola", pack_size=1, boxes=1, entry_date=None),
        today=TODAY,
    )

    assert transaction.timestamp == ledger.local_midnight(TODAY)


def test_import_adds_stock_with_box_conversion():
    state = InventoryState(products=(Product("SP-001", "Cola", 20, 40, 40),))

    state, transaction = core_logic.apply_entry(state, _entry(EntryType.IMPORT, boxes=2, pieces=3), today=TODAY)

    assert catalog.get_product(state, "SP-001").stock == 83
    assert transaction.qty == 43
    assert _invariant_holds(state)


def test_entered_pack_size_updates_product():
    state = InventoryState(products=(Product("SP-001", "Cola", 20, 0, 0),))

    state, transaction = core_logic.apply_entry(state, _entry(EntryType.IMPORT, boxes=1, pack_size=24), today=TODAY)

    assert catalog.get_product(state, "SP-001").pack_size == 24
    assert transaction.qty == 24


def test_import_of_unknown_sku_requires_name():
    with pytest.raises(MissingReferenceError):
        core_logic.apply_entry(InventoryState(), _entry(EntryType.IMPORT, boxes=1), today=TODAY)


def test_import_of_unknown_sku_with_name_creates_product():
    state, _ = core_logic.apply_entry(InventoryState(), _entry(EntryType.IMPORT, name="Water", boxes=3), today=TODAY)

    assert catalog.get_product(state, "SP-001") == Product("SP-001", "Water", 1, 3, 0)


def test_entry_quantity_must_be_positive():
    state = InventoryState(products=(Product("SP-001", "Cola", 20, 40, 40),))

    with pytest.raises(ValidationError):
        core_logic.apply_entry(state, _entry(EntryType.SALE, boxes=0, pieces=0), today=TODAY)


def test_sale_beyond_stock_is_rejected_and_nothing_changes(context):
    context.state = InventoryState(products=(Product("SP-001", "Cola", 20, 10, 10),))
    before = context.state

    with pytest.raises(InsufficientStockError):
        core_logic.record_entry(context, _entry(EntryType.SALE, pieces=11), today=TODAY)

    assert context.state is before
    assert catalog.get_product(context.state, "SP-001").stock == 10
    assert context.state.transactions == ()
    assert len(context.undo) == 0


def test_sale_infers_unset_baseline_before_changing_stock():
    state = InventoryState(products=(Product("SP-001", "Cola", 1, 10, None),))

    state, _ = core_logic.apply_entry(state, _entry(EntryType.SALE, boxes=4), today=TODAY)

    assert catalog.get_product(state, "SP-001") == Product("SP-001", "Cola", 1, 6, 10)
    assert _invariant_holds(state)


# ---------------------------------------------------------------------------
# Controller and undo
# ---------------------------------------------------------------------------


def test_record_entry_pushes_undo_snapshot(context):
    transaction = core_logic.record_entry(context, _entry(EntryType.NEW, name="Cola", pack_size=20, boxes=1), today=TODAY)

    assert transaction is not None
    assert len(context.undo) == 1
    assert context.undo.peek().reason == "Create product SP-001"
    assert context.undo.peek().state == InventoryState()


def test_undo_last_restores_previous_state(context):
    core_logic.record_entry(context, _entry(EntryType.NEW, name="Cola", pack_size=20, boxes=1), today=TODAY)
    after_create = context.state
    core_logic.record_entry(context, _entry(EntryType.SALE, pieces=5), today=TODAY)

    snapshot = core_logic.undo_last(context)

    assert snapshot.reason == "Record sale SP-001"
    assert context.state == after_create
    assert core_logic.undo_last(context) is not None
    assert context.state == InventoryState()
    assert core_logic.undo_last(context) is None


def test_uploads_push_labelled_snapshots(context, at):
    core_logic.upload_catalog(context, [{"sku": "SP-001", "name": "Cola", "packsize": 10}])
    core_logic.upload_stock_snapshot(context, [{"sku": "SP-001", "name": "Cola", "boxes": 2}])
    result = core_logic.upload_daily_imports(context, [{"sku": "SP-001", "name": "Cola", "boxes": 1}], uploaded_at=at(DAY1))

    assert result.imported_count == 1
    assert [snapshot.reason for snapshot in context.undo.snapshots()] == [
        "Upload catalog",
        "Upload stock snapshot",
        "Upload daily imports",
    ]
    assert catalog.get_product(context.state, "SP-001").stock == 30


def test_rejected_upload_pushes_nothing(context):
    with pytest.raises(ledger.InputShapeError):
        core_logic.upload_catalog(context, "not rows")

    assert len(context.undo) == 0
    assert context.state == InventoryState()


def test_invariant_holds_across_uploads_and_entries(context, at):
    core_logic.upload_catalog(context, [{"sku": "A", "name": "Alpha", "packsize": 12}, {"sku": "B", "name": "Beta"}])
    core_logic.record_entry(context, _entry(EntryType.IMPORT, sku="A", boxes=3), today=TODAY)
    core_logic.record_entry(context, _entry(EntryType.SALE, sku="A", pieces=7, entry_date=date(2024, 3, 2)), today=TODAY)
    core_logic.record_entry(context, _entry(EntryType.NEW, sku="C", name="Gamma", pack_size=6, boxes=2), today=TODAY)
    core_logic.upload_daily_imports(context, [{"sku": "A", "name": "Alpha", "boxes": 1}, {"sku": "D", "name": "Delta", "boxes": 4}], uploaded_at=at(date(2024, 3, 3)))
    core_logic.upload_stock_snapshot(context, [{"sku": "B", "name": "Beta", "boxes": 9}])

    assert catalog.get_product(context.state, "A").stock == 36 - 7 + 12
    assert catalog.get_product(context.state, "B") == Product("B", "Beta", 1, 9, 9)
    assert _invariant_holds(context.state)


def test_snapshot_on_product_with_history_lets_baseline_drift(context):
    """Counted stock replaces the live value but the ledger keeps its history."""

    core_logic.record_entry(context, _entry(EntryType.NEW, name="Cola", pack_size=1, boxes=10), today=TODAY)
    core_logic.upload_stock_snapshot(context, [{"sku": "SP-001", "name": "Cola", "boxes": 8}])

    product = catalog.get_product(context.state, "SP-001")
    assert product.stock == 8
    assert product.initial_stock == 0
    assert ledger.net_change(context.state, "SP-001") == 10
