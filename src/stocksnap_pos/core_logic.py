"""Workbook-backed catalog and ledger logic for StockSnap POS.

This module holds the rules that sit directly on top of the Data Access
Layer: cached catalog queries scoped to a user, code lookup across both the
canonical and the legacy code columns, the stock decrement applied after a
sale, and the append-only sale ledger. The sale engine reaches all of it
through the store adapters in :mod:`stocksnap_pos.stores`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, ErrorKind, PaymentStatus, TransactionType


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced item or transaction is unknown."""


@dataclass(frozen=True)
class FieldError:
    """Structured, field-level error surfaced to the presentation layer."""

    kind: ErrorKind
    field: Optional[str]
    message: str
    bound: Optional[int] = None


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets are keyed by domain area (``items``, ``transactions``) and hold
    precomputed query results so repeated lookups do not rescan the workbook.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_items_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the item cache bucket on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` items, ``active`` items and a
            ``by_id`` lookup dictionary.
    """

    bucket = _get_cache_bucket(context, "items")
    if "all" not in bucket:
        all_items = list(data_manager.iter_items(context.workbook))
        bucket["all"] = all_items
        bucket["active"] = [item for item in all_items if item.is_active]
        bucket["by_id"] = {item.item_id: item for item in all_items}
        log.debug(
            "Populated items cache with %d entries (%d active)",
            len(all_items),
            len(bucket["active"]),
        )
    return bucket


def _ensure_transactions_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the transaction log cache bucket on demand."""

    bucket = _get_cache_bucket(context, "transactions")
    if "all" not in bucket:
        all_transactions = list(data_manager.iter_transactions(context.workbook))
        bucket["all"] = all_transactions
        bucket["by_id"] = {transaction.transaction_id: transaction for transaction in all_transactions}
        log.debug("Populated transactions cache with %d entries", len(all_transactions))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to work on a workbook whose declared schema does not match.

    Raises:
        RuntimeError: If the configured schema version differs from
            ``EXPECTED_SCHEMA_VERSION``.
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


def list_items(
    context: RuntimeContext,
    *,
    user_scope: Optional[str] = None,
    include_inactive: bool = False,
) -> List[data_manager.ItemRow]:
    """Return cached items, optionally restricted to one user scope.

    Inactive items are soft-deleted and hidden unless ``include_inactive`` is
    set.
    """

    cache = _ensure_items_cache(context)
    source = cache["all"] if include_inactive else cache["active"]
    if user_scope is None:
        return list(source)
    return [item for item in source if item.user_scope == user_scope]


def list_low_stock_items(context: RuntimeContext, *, user_scope: str) -> List[data_manager.ItemRow]:
    """Return active items at or below their reorder point, emptiest first."""

    low = [
        item
        for item in list_items(context, user_scope=user_scope)
        if item.quantity_in_stock <= item.reorder_point
    ]
    return sorted(low, key=lambda item: (item.quantity_in_stock, item.title))


def list_transactions(context: RuntimeContext, *, user_scope: Optional[str] = None) -> List[data_manager.TransactionRow]:
    """Return the transaction log in append order."""

    transactions = _ensure_transactions_cache(context)["all"]
    if user_scope is None:
        return list(transactions)
    return [transaction for transaction in transactions if transaction.user_scope == user_scope]


RECENT_TRANSACTION_LIMIT = 10
SUMMARY_WEEK_DAYS = 7
UNKNOWN_ITEM_TITLE = "Unknown item"


@dataclass(frozen=True)
class RecentTransaction:
    """A ledger row paired with the title of the item it sold."""

    transaction: data_manager.TransactionRow
    item_title: str


@dataclass(frozen=True)
class SalesSummary:
    """Headline figures for one user scope at a point in time.

    Revenue and sale counts include confirmed sales only; pending
    mobile-money sales are left out until they are confirmed.
    """

    today_revenue: int
    today_sales_count: int
    week_revenue: int
    total_stock: int
    low_stock_items: tuple[data_manager.ItemRow, ...]
    recent_transactions: tuple[RecentTransaction, ...]


def _parse_timestamp(raw: str) -> datetime:
    """Parse a ledger timestamp; naive values were written in UTC."""

    try:
        moment = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid transaction timestamp: {raw!r}") from exc
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def summarize_sales(
    context: RuntimeContext,
    *,
    user_scope: str,
    now: Optional[datetime] = None,
) -> SalesSummary:
    """Compute the dashboard figures for ``user_scope``.

    "Today" starts at midnight in the timezone of ``now`` (local time when
    omitted). The week window starts at midnight seven days earlier, so it
    always contains today.

    Raises:
        ValueError: If a ledger row carries an unparseable timestamp.
    """

    reference = now if now is not None else _resolve_timestamp(None).astimezone()
    if reference.tzinfo is None:
        reference = reference.astimezone()
    start_of_day = reference.replace(hour=0, minute=0, second=0, microsecond=0)
    start_of_week = start_of_day - timedelta(days=SUMMARY_WEEK_DAYS)

    today_revenue = today_count = week_revenue = 0
    transactions = list_transactions(context, user_scope=user_scope)
    stamped = [(_parse_timestamp(record.timestamp_iso), record) for record in transactions]
    for moment, record in stamped:
        if record.transaction_type != TransactionType.SALE.value:
            continue
        if record.payment_status != PaymentStatus.CONFIRMED.value:
            continue
        if moment >= start_of_week:
            week_revenue += record.total_amount
        if moment >= start_of_day:
            today_revenue += record.total_amount
            today_count += 1

    items_by_id = _ensure_items_cache(context)["by_id"]
    # Newest first; rows sharing a timestamp keep the later-appended one first.
    newest = sorted(reversed(stamped), key=lambda pair: pair[0], reverse=True)
    recent = tuple(
        RecentTransaction(
            transaction=record,
            item_title=items_by_id[record.item_id].title if record.item_id in items_by_id else UNKNOWN_ITEM_TITLE,
        )
        for _, record in newest[:RECENT_TRANSACTION_LIMIT]
    )

    active_items = list_items(context, user_scope=user_scope)
    summary = SalesSummary(
        today_revenue=today_revenue,
        today_sales_count=today_count,
        week_revenue=week_revenue,
        total_stock=sum(item.quantity_in_stock for item in active_items),
        low_stock_items=tuple(list_low_stock_items(context, user_scope=user_scope)),
        recent_transactions=recent,
    )
    log.debug(
        "Summarized scope '%s': %d sales today, week revenue %d",
        user_scope,
        summary.today_sales_count,
        summary.week_revenue,
    )
    return summary


def get_item(context: RuntimeContext, item_id: str) -> data_manager.ItemRow:
    """Resolve an item by its identifier.

    Raises:
        MissingReferenceError: If ``item_id`` is absent from the workbook.
    """

    cache = _ensure_items_cache(context)
    try:
        return cache["by_id"][item_id]
    except KeyError as exc:
        log.warning("Item lookup failed for id '%s'", item_id)
        raise MissingReferenceError(f"Unknown item id: {item_id}") from exc


def get_transaction(context: RuntimeContext, transaction_id: str) -> data_manager.TransactionRow:
    """Retrieve a transaction row by its primary identifier.

    Raises:
        MissingReferenceError: If the log lacks the supplied identifier.
    """

    cache = _ensure_transactions_cache(context)
    try:
        return cache["by_id"][transaction_id]
    except KeyError as exc:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}") from exc


def find_active_item_by_code(
    context: RuntimeContext,
    code: str,
    *,
    user_scope: str,
) -> Optional[data_manager.ItemRow]:
    """Find the active item in ``user_scope`` whose SKU or legacy code is ``code``.

    Items created before the code-format migration may hold the old value in
    either column, so both are searched. A SKU match takes precedence over a
    legacy-code match on a different item.

    Returns:
        ItemRow | None: The matching item, or ``None`` when nothing matches.
    """

    legacy_match: Optional[data_manager.ItemRow] = None
    for item in list_items(context, user_scope=user_scope):
        if item.sku == code:
            log.debug("Code '%s' matched SKU of item '%s'", code, item.item_id)
            return item
        if legacy_match is None and item.legacy_code == code:
            legacy_match = item

    if legacy_match is not None:
        log.debug("Code '%s' matched legacy code of item '%s'", code, legacy_match.item_id)
    else:
        log.info("No active item for code '%s' in scope '%s'", code, user_scope)
    return legacy_match


def decrement_stock(context: RuntimeContext, item_id: str, quantity: int) -> data_manager.ItemRow:
    """Take ``quantity`` units out of stock after a sale.

    Stock is floored at zero while ``quantity_sold`` always grows by the full
    quantity, so overselling after an acknowledged low-stock warning never
    leaves a negative count. Both columns are written in one update. Callers
    that share a context across threads must serialize calls (see
    :class:`stocksnap_pos.stores.WorkbookStore`).

    Returns:
        ItemRow: The item as it reads after the update.

    Raises:
        MissingReferenceError: If ``item_id`` is unknown.
        ValueError: If ``quantity`` is not a positive integer.
    """

    require_positive_quantity(quantity)
    item = get_item(context, item_id)
    updated = replace(
        item,
        quantity_in_stock=max(0, item.quantity_in_stock - quantity),
        quantity_sold=item.quantity_sold + quantity,
    )
    data_manager.update_item(
        context.workbook,
        item_id,
        field_values={
            "QuantityInStock": updated.quantity_in_stock,
            "QuantitySold": updated.quantity_sold,
        },
    )
    _invalidate_cache(context, "items")
    log.info(
        "Decremented stock of item '%s' by %s (remaining=%s, sold=%s)",
        item_id,
        quantity,
        updated.quantity_in_stock,
        updated.quantity_sold,
    )
    return updated


def record_sale_transaction(context: RuntimeContext, record: data_manager.TransactionRow) -> data_manager.TransactionRow:
    """Validate and append a sale row to the ledger.

    Raises:
        BusinessRuleViolation: If the row is not a sale, its total does not
            equal quantity times unit price, or its identifier already exists.
        ValueError: When quantity or money validations fail.
    """

    if record.transaction_type != TransactionType.SALE.value:
        log.error("Refusing to record non-sale transaction type '%s'", record.transaction_type)
        raise BusinessRuleViolation(f"Unsupported transaction type: {record.transaction_type}")
    require_positive_quantity(record.quantity)
    require_nonnegative_money(record.unit_price)
    if record.total_amount != record.quantity * record.unit_price:
        log.error(
            "Sale total mismatch for '%s': %s != %s x %s",
            record.transaction_id,
            record.total_amount,
            record.quantity,
            record.unit_price,
        )
        raise BusinessRuleViolation("Total amount must equal quantity times unit price")
    if record.transaction_id in _ensure_transactions_cache(context)["by_id"]:
        log.error("Duplicate transaction id '%s'", record.transaction_id)
        raise BusinessRuleViolation(f"Duplicate transaction id: {record.transaction_id}")

    data_manager.append_transaction(context.workbook, record)
    _invalidate_cache(context, "transactions")
    log.info(
        "Recorded SALE transaction '%s' for item '%s' (quantity=%s, total=%s, method=%s)",
        record.transaction_id,
        record.item_id,
        record.quantity,
        record.total_amount,
        record.payment_method,
    )
    return record


def build_sale_transaction(
    *,
    user_scope: str,
    item_id: str,
    quantity: int,
    unit_price: int,
    payment_method: str,
    payment_status: str,
    transaction_code: Optional[str] = None,
    phone: Optional[str] = None,
    notes: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.TransactionRow:
    """Materialize a sale into a ledger row with a fresh identifier.

    The total is computed here in integer arithmetic so callers cannot
    disagree with it.
    """

    when = _resolve_timestamp(timestamp)
    return data_manager.TransactionRow(
        transaction_id=generate_transaction_id(when=when),
        timestamp_iso=when.isoformat(),
        transaction_type=TransactionType.SALE.value,
        user_scope=user_scope,
        item_id=item_id,
        quantity=quantity,
        unit_price=unit_price,
        total_amount=quantity * unit_price,
        payment_method=payment_method,
        payment_status=payment_status,
        transaction_code=transaction_code,
        phone=phone,
        notes=notes,
    )


def generate_transaction_id(*, prefix: str = "T", when: Optional[datetime] = None) -> str:
    """Generate a sortable transaction identifier using UTC timestamps.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """

    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a strictly positive integer.

    Raises:
        ValueError: If ``quantity`` is not an ``int`` or is below one.
    """

    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %r", quantity)
        raise ValueError("Quantity must be a whole number greater than zero")


def require_nonnegative_money(amount: int) -> None:
    """Validate that a money amount in minor units is a non-negative integer.

    Raises:
        ValueError: If ``amount`` is not an ``int`` or is negative.
    """

    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        log.error("Monetary value validation failed: %r", amount)
        raise ValueError("Amount must be a whole number of minor units, zero or positive")


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to the configured data file."""

    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly opened workbook and an
            empty cache.
    """

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)
