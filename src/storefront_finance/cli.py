"""Command-line entry points for the storefront finance package.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the requests consumed by
:class:`~storefront_finance.core_logic.TransactionStore`, and rendering the
results as plain text on stdout.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import DEFAULT_PAGE_SIZE, LinkedEntityType, PaymentMethod, TransactionStatus, TransactionType
from .data_manager import FIELDS_BY_ATTR, Transaction, TransactionFilters
from .export import export_transactions


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="finance-cli",
        description="Command-line tools for the storefront finance transaction store.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini upwards).",
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
    """Declare mutating CLI commands."""
    specs = {
        "add-income": register_add_command(subparsers, TransactionType.INCOME),
        "add-expense": register_add_command(subparsers, TransactionType.EXPENSE),
        "update": register_update_command(subparsers),
        "confirm": register_confirm_command(subparsers),
        "cancel": register_cancel_command(subparsers),
        "delete": register_delete_command(subparsers),
        "reload": register_reload_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "list": register_list_command(subparsers),
        "show": register_show_command(subparsers),
        "summary": register_summary_command(subparsers),
        "payables": register_payables_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    """Attach the listing filter options shared by ``list`` and ``export``."""
    parser.add_argument("--type", choices=[member.value for member in TransactionType], default=None)
    parser.add_argument("--status", choices=[member.value for member in TransactionStatus], default=None)
    parser.add_argument("--from", dest="start_date", default=None, help="Inclusive start date (YYYY-MM-DD).")
    parser.add_argument("--to", dest="end_date", default=None, help="Inclusive end date (YYYY-MM-DD).")
    parser.add_argument("--category", default=None)
    parser.add_argument("--search", default=None, help="Substring of description, id or notes.")
    parser.add_argument("--linked-entity-id", default=None)
    parser.add_argument(
        "--linked-entity-type",
        choices=[member.value for member in LinkedEntityType],
        default=None,
    )


def register_add_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    transaction_type: TransactionType,
) -> CommandSpec:
    """Register the parser and executor for ``add-income`` / ``add-expense``."""
    name = f"add-{transaction_type.value}"
    help_text = f"Record a new {transaction_type.value} transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--description", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--category", required=True)
        parser.add_argument(
            "--status",
            choices=[member.value for member in TransactionStatus],
            default=TransactionStatus.CONFIRMED.value,
        )
        parser.add_argument("--date", dest="transaction_date", default=None, help="Defaults to today.")
        parser.add_argument("--due-date", default=None)
        parser.add_argument("--payment-date", default=None)
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=None,
        )
        parser.add_argument("--notes", default=None)
        parser.add_argument("--linked-entity-id", default=None)
        parser.add_argument(
            "--linked-entity-type",
            choices=[member.value for member in LinkedEntityType],
            default=None,
        )
        parser.add_argument("--receipt-url", default=None)
        parser.add_argument("--related-sale-link", default=None)
        parser.set_defaults(command=name, transaction_type=transaction_type.value)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add)


def register_update_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update``."""
    name = "update"
    help_text = "Change fields of an existing transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("transaction_id")
        parser.add_argument(
            "--set",
            dest="assignments",
            action="append",
            required=True,
            metavar="FIELD=VALUE",
            help="Field assignment; repeat for several fields. An empty value clears the field.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update)


def register_confirm_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``confirm``."""
    name = "confirm"
    help_text = "Mark a transaction as paid."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("transaction_id")
        parser.add_argument("--payment-date", default=None, help="Defaults to today.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_confirm)


def register_cancel_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cancel``."""
    name = "cancel"
    help_text = "Mark a transaction as canceled."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("transaction_id")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cancel)


def register_delete_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete``."""
    name = "delete"
    help_text = "Delete a transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("transaction_id")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete)


def register_reload_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reload``."""
    name = "reload"
    help_text = "Re-read the local cache snapshot from disk."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reload)


def register_list_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``list``."""
    name = "list"
    help_text = "Display one page of transactions and the current balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_filter_arguments(parser)
        parser.add_argument("--page", type=int, default=1)
        parser.add_argument("--page-size", type=int, default=DEFAULT_PAGE_SIZE)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list)


def register_show_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``show``."""
    name = "show"
    help_text = "Display every field of one transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("transaction_id")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_show)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display confirmed income, expense and balance for a period."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--from", dest="start_date", default=None)
        parser.add_argument("--to", dest="end_date", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary)


def register_payables_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``payables``."""
    name = "payables"
    help_text = "Display pending expenses with overdue and due-soon totals."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--today", default=None, help="Reference date (defaults to today).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_payables)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write matching transactions to an .xlsx workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("destination", type=Path)
        add_filter_arguments(parser)
        parser.add_argument("--force", action="store_true", help="Overwrite an existing file.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else None
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


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def translate_filters(args: argparse.Namespace) -> TransactionFilters:
    """Translate CLI args into listing filters."""
    return TransactionFilters(
        type=getattr(args, "type", None),
        status=getattr(args, "status", None),
        start_date=getattr(args, "start_date", None),
        end_date=getattr(args, "end_date", None),
        category=getattr(args, "category", None),
        search=getattr(args, "search", None),
        linked_entity_id=getattr(args, "linked_entity_id", None),
        linked_entity_type=getattr(args, "linked_entity_type", None),
    )


def translate_add(args: argparse.Namespace, today: str) -> core_logic.TransactionDraft:
    """Translate CLI args into a transaction draft."""
    return core_logic.TransactionDraft(
        description=args.description,
        amount=args.amount,
        type=args.transaction_type,
        category=args.category,
        status=args.status,
        transaction_date=args.transaction_date or today,
        due_date=args.due_date,
        payment_date=args.payment_date,
        payment_method=args.payment_method,
        notes=args.notes,
        linked_entity_id=args.linked_entity_id,
        linked_entity_type=args.linked_entity_type,
        receipt_url=args.receipt_url,
        related_sale_link=args.related_sale_link,
    )


def translate_assignments(assignments: Sequence[str]) -> Dict[str, Any]:
    """Translate ``FIELD=VALUE`` pairs into update changes.

    Field names may be given with dashes or underscores; an empty value maps
    to ``None`` so optional fields can be cleared.

    Raises:
        core_logic.ValidationError: If an assignment lacks ``=``.
    """
    changes: Dict[str, Any] = {}
    for assignment in assignments:
        field_name, separator, value = assignment.partition("=")
        if not separator or not field_name.strip():
            raise core_logic.ValidationError(f"Expected FIELD=VALUE, got '{assignment}'")
        changes[field_name.strip().replace("-", "_")] = value if value.strip() else None
    return changes


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def format_amount(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def format_transaction_line(transaction: Transaction) -> str:
    """Render one listing line for a transaction."""
    sign = "+" if transaction.type == TransactionType.INCOME else "-"
    return (
        f"{transaction.id:<12} {transaction.transaction_date}  "
        f"{sign}{format_amount(transaction.amount):>12}  "
        f"{transaction.status.value:<9} {transaction.category:<16} {transaction.description}"
    )


def format_transaction_detail(transaction: Transaction) -> List[str]:
    """Render every set field of a transaction, one per line."""
    lines = []
    for attr, spec in FIELDS_BY_ATTR.items():
        value = getattr(transaction, attr)
        if value is None:
            continue
        if spec.kind == "enum":
            value = value.value
        elif spec.kind == "amount":
            value = format_amount(value)
        lines.append(f"{spec.cache_key:<18} {value}")
    return lines


def format_breakdown(title: str, breakdown: Mapping[str, Decimal]) -> List[str]:
    lines = [f"{title}:"]
    if not breakdown:
        lines.append("  (none)")
    for category, amount in sorted(breakdown.items()):
        lines.append(f"  {category:<20} {format_amount(amount):>12}")
    return lines


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the create workflow via the store."""
    draft = translate_add(args, context.store.normalizer.today())
    created = context.store.create(draft)
    print(f"Created {created.id}")
    return 0


def run_update(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the partial update workflow via the store."""
    changes = translate_assignments(args.assignments)
    updated = context.store.update(args.transaction_id, changes)
    print(f"Updated {updated.id}")
    return 0


def run_confirm(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    updated = context.store.confirm_payment(args.transaction_id, args.payment_date)
    print(f"Confirmed {updated.id} (paid {updated.payment_date})")
    return 0


def run_cancel(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    updated = context.store.cancel(args.transaction_id)
    print(f"Canceled {updated.id}")
    return 0


def run_delete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    context.store.delete(args.transaction_id)
    print(f"Deleted {args.transaction_id}")
    return 0


def run_reload(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    count = context.store.reload()
    print(f"Reloaded {count} cached transactions")
    return 0


def run_list(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the listing workflow and print the page."""
    result = context.store.list(
        translate_filters(args),
        core_logic.Pagination(page=args.page, page_size=args.page_size),
    )
    for transaction in result.items:
        print(format_transaction_line(transaction))
    print(
        f"Page {args.page} of {result.total_pages} ({result.total} transactions). "
        f"Current balance: {format_amount(result.current_balance)}"
    )
    return 0


def run_show(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    transaction = context.store.get_by_id(args.transaction_id)
    for line in format_transaction_detail(transaction):
        print(line)
    return 0


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the period summary workflow."""
    summary = context.store.summarize(args.start_date, args.end_date)
    print(f"Income:          {format_amount(summary.total_income):>12}")
    print(f"Expense:         {format_amount(summary.total_expense):>12}")
    print(f"Balance:         {format_amount(summary.balance):>12}")
    print(f"Pending income:  {format_amount(summary.pending_income):>12}")
    print(f"Pending expense: {format_amount(summary.pending_expense):>12}")
    for line in format_breakdown("Income by category", summary.income_by_category):
        print(line)
    for line in format_breakdown("Expense by category", summary.expense_by_category):
        print(line)
    return 0


def run_payables(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the accounts payable workflow."""
    overview = context.store.payables_overview(args.today)
    for transaction in overview.items:
        due = transaction.due_date or "no due date"
        print(f"{transaction.id:<12} {due:<12} {format_amount(transaction.amount):>12}  {transaction.description}")
    print(f"Pending:  {format_amount(overview.total_pending):>12}")
    print(f"Overdue:  {format_amount(overview.total_overdue):>12}")
    print(f"Due soon: {format_amount(overview.total_due_soon):>12}")
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Export every matching transaction to a workbook."""
    items = context.store.list_all(translate_filters(args))
    path = export_transactions(items, args.destination, overwrite=args.force)
    print(f"Exported {len(items)} transactions to {path}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (core_logic.ValidationError, core_logic.NotFoundError)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
