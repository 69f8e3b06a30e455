"""Command-line entry points for the stock ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the controller,
and printing plain-text tables. Keeping the CLI thin ensures the same parser
configuration can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, log, queries
from .constants import COLUMN_LABELS, COLUMNS_BY_MODE, EntryType, ViewMode
from .ledger import BusinessRuleViolation
from .units import split_pieces


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed.

    Commands flagged with ``mutates`` are schema-checked before they run and
    persisted after they succeed.
    """

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def parse_date(value: str) -> date:
    """``argparse`` type for ISO ``YYYY-MM-DD`` dates."""
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stock-ledger",
        description="Command-line tools for the stock ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as entries, uploads, and undo."""
    specs = {
        "new-product": register_new_product_command(subparsers),
        "import": register_movement_command(subparsers, EntryType.IMPORT),
        "sale": register_movement_command(subparsers, EntryType.SALE),
        "upload-catalog": register_upload_command(
            subparsers, "upload-catalog", "Merge a product catalog spreadsheet.", run_upload_catalog
        ),
        "upload-stock": register_upload_command(
            subparsers, "upload-stock", "Overwrite stock from a counted stock spreadsheet.", run_upload_stock
        ),
        "upload-imports": register_upload_command(
            subparsers, "upload-imports", "Record a daily imports spreadsheet.", run_upload_imports
        ),
        "undo": register_undo_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as checks and reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "check": register_check_command(subparsers),
        "report": register_report_command(subparsers),
        "export-daily": register_export_daily_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
        "log": register_log_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--sku", default="", help="Case-insensitive SKU substring filter.")
    parser.add_argument("--name", default="", help="Case-insensitive product name substring filter.")


def _add_quantity_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--boxes", default="0")
    parser.add_argument("--pieces", default="0", help="Loose pieces on top of whole boxes.")
    parser.add_argument("--date", dest="entry_date", type=parse_date, default=None, help="Entry date (YYYY-MM-DD).")


def register_new_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``new-product``."""
    name = "new-product"
    help_text = "Create a product with its opening stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sku", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--pack-size", required=True)
        _add_quantity_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_entry, mutates=True)


def register_movement_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    entry_type: EntryType,
) -> CommandSpec:
    """Register the parser and executor for ``import`` or ``sale``."""
    name = entry_type.value
    help_text = f"Record a manual {name} entry."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sku", default="", help="Product SKU; looked up from --name when omitted.")
        parser.add_argument("--name", default="", help="Required when the SKU is not in the catalog yet.")
        parser.add_argument("--pack-size", default=None, help="Pieces per box; updates the product when given.")
        _add_quantity_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_entry, mutates=True)


def register_upload_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register the parser and executor for one of the ``upload-*`` commands."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("file", type=Path, help="Spreadsheet to upload (.xlsx or .csv).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=True)


def register_undo_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``undo``."""
    name = "undo"
    help_text = "Revert the most recent change."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_undo, mutates=True)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_filter_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_check_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``check``."""
    name = "check"
    help_text = "Check stock or movements on a single day."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_filter_arguments(parser)
        parser.add_argument("--date", dest="on_date", type=parse_date, default=None)
        parser.add_argument("--mode", choices=[member.value for member in ViewMode], default=ViewMode.STOCK.value)
        parser.add_argument("--export", type=Path, default=None, help="Also write the rows to .xlsx or .csv.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_check)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Report stock or movement totals over a date range."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_filter_arguments(parser)
        parser.add_argument("--from", dest="date_from", type=parse_date, default=None)
        parser.add_argument("--to", dest="date_to", type=parse_date, default=None)
        parser.add_argument("--mode", choices=[member.value for member in ViewMode], default=ViewMode.STOCK.value)
        parser.add_argument("--export", type=Path, default=None, help="Also write the rows to .xlsx or .csv.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report)


def register_export_daily_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-daily``."""
    name = "export-daily"
    help_text = "Export end-of-day stock for every day of a range."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_filter_arguments(parser)
        parser.add_argument("--from", dest="date_from", type=parse_date, required=True)
        parser.add_argument("--to", dest="date_to", type=parse_date, required=True)
        parser.add_argument("output", type=Path, help="Destination .xlsx or .csv file.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_daily)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display total units on hand and today's movements."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the transaction log, most recent first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sku", default="", help="Only show transactions for this exact SKU.")
        parser.add_argument("--limit", type=int, default=50)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def format_table(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Render rows as left-aligned, space-padded plain-text columns."""
    cells = [[str(value) for value in header]]
    cells.extend(["" if value is None else str(value) for value in row] for row in rows)
    widths = [max(len(line[index]) for line in cells) for index in range(len(header))]
    lines = ["  ".join(value.ljust(width) for value, width in zip(line, widths)).rstrip() for line in cells]
    lines.insert(1, "  ".join("-" * width for width in widths))
    return "\n".join(lines)


def print_report_rows(rows: Sequence[queries.ReportRow], mode: ViewMode) -> None:
    columns = COLUMNS_BY_MODE[mode]
    print(format_table([COLUMN_LABELS[column] for column in columns], ([row.value(column) for column in columns] for row in rows)))


def print_upload_result(label: str, result: Any) -> None:
    if hasattr(result, "imported_count"):
        print(f"{label}: imported {result.imported_count}")
    else:
        print(f"{label}: added {result.added}, updated {result.updated}")
    if result.missing_rows:
        print("Skipped rows missing SKU or name: " + ", ".join(str(row) for row in result.missing_rows))


def translate_entry(args: argparse.Namespace) -> core_logic.EntryCommand:
    """Translate CLI args into a manual entry command object."""
    entry_type = EntryType.NEW if args.command == "new-product" else EntryType(args.command)
    return core_logic.EntryCommand(
        entry_type=entry_type,
        sku=args.sku,
        name=args.name,
        boxes=args.boxes,
        pieces=args.pieces,
        pack_size=args.pack_size,
        entry_date=args.entry_date,
    )


def translate_check(args: argparse.Namespace) -> queries.CheckQuery:
    """Translate CLI args into a point-in-time check query."""
    return queries.CheckQuery(sku=args.sku, name=args.name, on_date=args.on_date, mode=ViewMode(args.mode))


def translate_report(args: argparse.Namespace) -> queries.ReportQuery:
    """Translate CLI args into a range report query."""
    return queries.ReportQuery(
        sku=args.sku,
        name=args.name,
        date_from=args.date_from,
        date_to=args.date_to,
        mode=ViewMode(args.mode),
    )


def run_entry(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a manual entry through the controller."""
    command = translate_entry(args)
    transaction = core_logic.record_entry(context, command)
    if transaction is None:
        print(f"Created product {command.sku} with no opening stock")
    else:
        print(f"Recorded {transaction.transaction_type.value} {transaction.transaction_id}: {transaction.qty} pcs of {transaction.sku}")
    return 0


def run_upload_catalog(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the catalog upload workflow."""
    result = core_logic.upload_catalog(context, data_manager.read_upload_rows(args.file))
    print_upload_result("Catalog upload", result)
    return 0


def run_upload_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock snapshot upload workflow."""
    result = core_logic.upload_stock_snapshot(context, data_manager.read_upload_rows(args.file))
    print_upload_result("Stock snapshot upload", result)
    return 0


def run_upload_imports(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the daily imports upload workflow."""
    result = core_logic.upload_daily_imports(context, data_manager.read_upload_rows(args.file))
    print_upload_result("Daily imports upload", result)
    return 0


def run_undo(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Revert the most recent change."""
    snapshot = core_logic.undo_last(context)
    if snapshot is None:
        print("Nothing to undo")
    else:
        print(f"Undid: {snapshot.reason}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print live stock per product in pieces, boxes, and loose pieces."""
    products = queries.filter_products(context.state, args.sku, args.name)
    header = ["SKU", "Product name", "Pack size", "Stock (pcs)", "Stock (boxes)", "Stock (pieces)"]
    body = []
    for product in products:
        split = split_pieces(product.stock, product.pack_size)
        body.append([product.sku, product.name, product.pack_size, product.stock, split.boxes, split.pieces])
    print(format_table(header, body))
    return 0


def run_check(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a point-in-time check and print the rows."""
    query = translate_check(args)
    rows = queries.run_check(context.state, query)
    print_report_rows(rows, query.mode)
    if args.export is not None:
        data_manager.export_report(rows, query.mode, args.export)
    return 0


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a range report and print the rows."""
    query = translate_report(args)
    rows = queries.build_report(context.state, query)
    print_report_rows(rows, query.mode)
    if args.export is not None:
        data_manager.export_report(rows, query.mode, args.export)
    return 0


def run_export_daily(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the daily stock matrix to a spreadsheet."""
    matrix = queries.daily_stock_matrix(context.state, args.date_from, args.date_to, sku=args.sku, name=args.name)
    destination = data_manager.export_daily_stock(matrix, args.output)
    print(f"Exported {len(matrix.rows)} products over {len(matrix.days)} days to {destination}")
    return 0


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the dashboard metrics."""
    metrics = queries.dashboard_metrics(context.state)
    print(f"Store: {context.settings.store_name}")
    print(f"Total units on hand: {metrics.total_units}")
    print(f"Sold today: {metrics.sales_today}")
    print(f"Imported today: {metrics.imports_today}")
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the transaction log."""
    transactions = [
        transaction
        for transaction in context.state.transactions
        if not args.sku or transaction.sku == args.sku
    ][: max(0, args.limit)]
    header = ["Transaction ID", "Timestamp", "Type", "SKU", "Product name", "Quantity"]
    print(
        format_table(
            header,
            (data_manager.serialize_transaction(transaction) for transaction in transactions),
        )
    )
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    spec = command_table.get(args.command)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        if spec is not None and spec.mutates:
            core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and spec is not None and spec.mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
