"""Command-line entry points for StockSnap POS.

The CLI stands in for the point-of-sale screen: it feeds one code (typed or
scanned) into the sale engine, applies the draft edits given as options and
confirms. Everything else is argparse wiring, so the parser configuration can
be reused by tests or another front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import PaymentMethod, SaleState
from .engine import EngineOutcome, SaleEngine
from .payments import build_payment
from .pricing import format_amount
from .session import session_from_settings
from .stores import LoggingNotificationSink, WorkbookStore

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_RULE_VIOLATION = 2
EXIT_MISSING_FILE = 3
EXIT_LOW_STOCK_HALT = 4


SubParsers = argparse._SubParsersAction  # type: ignore[type-arg]
ParserHook = Callable[[argparse.ArgumentParser], None]


@dataclass(frozen=True)
class CommandSpec:
    """One sub-command: how to add its parser and which runner executes it."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stocksnap-pos",
        description="Point-of-sale tools for the StockSnap workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="config.ini to use (searched for from the working directory upward when omitted).",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Attach the sale and report sub-commands to ``parser``."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    sale_commands = register_write_commands(subparsers)
    report_commands = register_read_commands(subparsers)
    return build_command_table([*sale_commands.values(), *report_commands.values()])


def _register_all(subparsers: SubParsers, specs: Sequence[CommandSpec]) -> Dict[str, CommandSpec]:
    for spec in specs:
        spec.register(subparsers)
    return {spec.name: spec for spec in specs}


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Commands that record sales."""
    return _register_all(subparsers, [register_sell_command(subparsers), register_scan_command(subparsers)])


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Read-only listings."""
    specs = [
        register_items_command(subparsers),
        register_log_command(subparsers),
        register_summary_command(subparsers),
    ]
    return _register_all(subparsers, specs)


def add_sale_options(parser: argparse.ArgumentParser) -> None:
    """Options shared by every command that opens a sale draft."""
    parser.add_argument("--quantity", type=int, default=None, help="Units sold (defaults to 1).")
    parser.add_argument(
        "--price",
        type=int,
        default=None,
        help="Unit price in minor units (defaults to the item's sell price).",
    )
    parser.add_argument(
        "--payment",
        choices=[member.value for member in PaymentMethod],
        default=PaymentMethod.CASH.value,
    )
    parser.add_argument("--phone", default=None, help="Customer phone for push-to-pay.")
    parser.add_argument("--transaction-code", dest="transaction_code", default=None)
    parser.add_argument("--note", dest="note", default=None)
    parser.add_argument(
        "--accept-low-stock",
        action="store_true",
        help="Continue when the quantity exceeds the stock on hand.",
    )


def _command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    *hooks: ParserHook,
) -> CommandSpec:
    """Build a :class:`CommandSpec` whose parser is shaped by ``hooks`` in order."""

    def add_to(subparsers: SubParsers) -> argparse.ArgumentParser:
        command_parser = subparsers.add_parser(name, help=help_text)
        for hook in hooks:
            hook(command_parser)
        command_parser.set_defaults(command=name)
        return command_parser

    return CommandSpec(name=name, help_text=help_text, register=add_to, execute=execute)


def _code_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--code", required=True, help="Item code as typed at the till.")


def _payload_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--payload", required=True, help="Raw text read from a label.")


def _low_stock_filter(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--low-stock",
        action="store_true",
        help="Only show items at or below their reorder point.",
    )


def register_sell_command(subparsers: SubParsers) -> CommandSpec:
    return _command("sell", "Sell an item looked up by a typed code.", run_sell, _code_option, add_sale_options)


def register_scan_command(subparsers: SubParsers) -> CommandSpec:
    return _command("scan", "Sell an item from a raw label payload.", run_scan, _payload_option, add_sale_options)


def register_items_command(subparsers: SubParsers) -> CommandSpec:
    return _command(
        "items", "Display active items for the configured user scope.", run_items_report, _low_stock_filter
    )


def register_log_command(subparsers: SubParsers) -> CommandSpec:
    return _command("log", "Display the transaction log.", run_log_report)


def register_summary_command(subparsers: SubParsers) -> CommandSpec:
    return _command("summary", "Show today's and this week's sales with stock totals.", run_summary_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Load the workbook named by ``config_path`` and check its schema version.

    Without ``config_path`` the nearest ``config.ini`` from the working
    directory upward is used.
    """
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    command = getattr(args, "command", None)
    if command is None:
        raise KeyError("No command specified")
    try:
        spec = command_table[command]
    except KeyError:
        raise KeyError(f"Unknown command: {command}") from None
    return spec.execute(context, args)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Index ``specs`` by name, rejecting duplicates."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def build_engine(context: core_logic.RuntimeContext) -> SaleEngine:
    """Assemble a sale engine over the workbook in ``context``."""
    store = WorkbookStore(context)
    return SaleEngine(
        catalog=store,
        ledger=store,
        session=session_from_settings(context.settings),
        notifications=LoggingNotificationSink(),
        legacy_schemes=context.settings.legacy_schemes,
    )


def run_sell(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a sale for a typed code."""
    engine = build_engine(context)
    return complete_sale(engine, engine.lookup_code(args.code), args)


def run_scan(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a sale for a scanned payload."""
    engine = build_engine(context)
    return complete_sale(engine, engine.handle_scan(args.payload), args)


def complete_sale(engine: SaleEngine, opened: Optional[EngineOutcome], args: argparse.Namespace) -> int:
    """Drive an opened draft through editing, the low-stock gate and confirmation."""
    if opened is None:
        log.error("Input was not recognised as an item code")
        return EXIT_RULE_VIOLATION
    if opened.error is not None:
        return report_outcome(opened)

    payment = build_payment(
        PaymentMethod(args.payment),
        phone=args.phone,
        code=args.transaction_code,
        note=args.note,
    )
    outcome = engine.update_draft(quantity=args.quantity, unit_price=args.price, payment=payment)
    if outcome.error is not None:
        return report_outcome(outcome)

    outcome = engine.confirm()
    if outcome.state is SaleState.LOW_STOCK_CONFIRMING and outcome.low_stock is not None:
        if not args.accept_low_stock:
            log.warning("%s Re-run with --accept-low-stock to proceed.", outcome.low_stock.message)
            engine.cancel()
            return EXIT_LOW_STOCK_HALT
        log.info("Low stock acknowledged: %s", outcome.low_stock.message)
        outcome = engine.acknowledge_low_stock()

    return report_outcome(outcome)


def report_outcome(outcome: EngineOutcome) -> int:
    """Print the outcome of a sale attempt and map it to an exit code."""
    for notice in outcome.notices:
        print(f"[NOTICE] {notice}")
    if outcome.error is not None:
        print(f"[ERROR] {outcome.error.message}")
        return EXIT_RULE_VIOLATION
    for warning in outcome.warnings:
        print(f"[WARNING] {warning.message}")
    if outcome.summary is None:
        log.error("Sale ended in unexpected state '%s'", outcome.state.value)
        return EXIT_FAILURE

    summary = outcome.summary
    print(
        f"[SUCCESS] {summary.transaction_id}: {summary.quantity} x {summary.item_title} "
        f"= {format_amount(summary.total_amount)} ({summary.payment_method})"
    )
    return EXIT_OK


def run_items_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List active items in the configured user scope."""
    scope = context.settings.default_user_scope
    if getattr(args, "low_stock", False):
        items = core_logic.list_low_stock_items(context, user_scope=scope)
    else:
        items = core_logic.list_items(context, user_scope=scope)
    for item in items:
        print(
            f"{item.item_id}\t{item.sku or item.legacy_code or '-'}\t{item.title}\t"
            f"{format_amount(item.sell_price)}\tstock={item.quantity_in_stock}"
        )
    log.debug("Listed %d items for scope '%s'", len(items), scope)
    return EXIT_OK


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List the transaction log for the configured user scope."""
    transactions = core_logic.list_transactions(context, user_scope=context.settings.default_user_scope)
    for record in transactions:
        print(
            f"{record.transaction_id}\t{record.timestamp_iso}\t{record.item_id}\t"
            f"{record.quantity} x {record.unit_price}\t{format_amount(record.total_amount)}\t"
            f"{record.payment_method}/{record.payment_status}"
        )
    return EXIT_OK


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the dashboard figures for the configured user scope."""
    summary = core_logic.summarize_sales(context, user_scope=context.settings.default_user_scope)
    print(f"Today: {format_amount(summary.today_revenue)} from {summary.today_sales_count} sales")
    print(f"Last 7 days: {format_amount(summary.week_revenue)}")
    print(f"Stock on hand: {summary.total_stock} units")
    if summary.low_stock_items:
        print("Low stock:")
        for item in summary.low_stock_items:
            print(f"  {item.item_id}\t{item.title}\tstock={item.quantity_in_stock}\treorder={item.reorder_point}")
    if summary.recent_transactions:
        print("Recent transactions:")
        for recent in summary.recent_transactions:
            record = recent.transaction
            print(
                f"  {record.timestamp_iso}\t{recent.item_title}\t{record.quantity}\t"
                f"{format_amount(record.total_amount)}\t{record.payment_status}"
            )
    return EXIT_OK


_ERROR_EXIT_CODES: tuple[tuple[type[Exception], int], ...] = (
    (core_logic.BusinessRuleViolation, EXIT_RULE_VIOLATION),
    (FileNotFoundError, EXIT_MISSING_FILE),
)


def handle_cli_error(error: Exception) -> int:
    """Log ``error`` and return the exit code for its category."""
    log.error("%s", error)
    for error_type, exit_code in _ERROR_EXIT_CODES:
        if isinstance(error, error_type):
            return exit_code
    return EXIT_FAILURE


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - exit codes covered by handle_cli_error tests
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
