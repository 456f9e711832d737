"""Data access layer for StockSnap POS.

This module provides low-level helpers that read from and write to the
master ``.xlsx`` workbook holding the item catalog and the sale ledger.
Business rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records, appending rows, and updating
   individual item cells. The transaction log is append-only, so no update
   helper exists for it.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import SCAN_DEBOUNCE_MS, SheetName


CONFIG_FILE_NAME = "config.ini"
ITEMS_SHEET = SheetName.ITEMS.value
TRANSACTION_LOG_SHEET = SheetName.TRANSACTION_LOG.value

ITEM_COLUMNS: tuple[str, ...] = (
    "ItemID",
    "UserScope",
    "SKU",
    "LegacyCode",
    "Title",
    "SellPrice",
    "SellPriceFloor",
    "SellPriceCeiling",
    "QuantityInStock",
    "QuantitySold",
    "ReorderPoint",
    "IsActive",
)

TRANSACTION_COLUMNS: tuple[str, ...] = (
    "TransactionID",
    "Timestamp",
    "TransactionType",
    "UserScope",
    "ItemID",
    "Quantity",
    "UnitPrice",
    "TotalAmount",
    "PaymentMethod",
    "PaymentStatus",
    "TransactionCode",
    "Phone",
    "Notes",
)

_FALSE_STRINGS = {"", "0", "false", "no", "n"}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    default_user_scope: str
    debounce_window_ms: int = SCAN_DEBOUNCE_MS
    legacy_schemes: tuple[str, ...] = ()


@dataclass(frozen=True)
class ItemRow:
    """In-memory view of a row from the ``Items`` sheet.

    Money columns hold integer minor currency units.
    """

    item_id: str
    user_scope: str
    sku: str
    legacy_code: Optional[str]
    title: str
    sell_price: int
    sell_price_floor: int
    sell_price_ceiling: Optional[int]
    quantity_in_stock: int
    quantity_sold: int
    reorder_point: int
    is_active: bool


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``TransactionLog`` sheet."""

    transaction_id: str
    timestamp_iso: str
    transaction_type: str
    user_scope: str
    item_id: str
    quantity: int
    unit_price: int
    total_amount: int
    payment_method: str
    payment_status: str
    transaction_code: Optional[str]
    phone: Optional[str]
    notes: Optional[str]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the working
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


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
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` are mandatory. The ``[Scanner]`` section is
    optional and falls back to the default debounce window and to accepting
    any legacy URI scheme. Relative ``DataFile`` entries are anchored to
    ``base_path`` (or the working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor a relative
            ``DataFile``.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``DebounceWindowMs`` is not a non-negative integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
        default_user_scope = parser.get("Defaults", "UserScope")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    debounce_window_ms = parser.getint("Scanner", "DebounceWindowMs", fallback=SCAN_DEBOUNCE_MS)
    if debounce_window_ms < 0:
        raise ValueError(f"DebounceWindowMs must be zero or positive, got {debounce_window_ms}")

    schemes_raw = parser.get("Scanner", "LegacySchemes", fallback="")
    legacy_schemes = tuple(
        scheme.strip().lower() for scheme in schemes_raw.split(",") if scheme.strip()
    )

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        default_user_scope=default_user_scope,
        debounce_window_ms=debounce_window_ms,
        legacy_schemes=legacy_schemes,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def iter_items(workbook: Workbook) -> Iterable[ItemRow]:
    """Iterate over item records stored on the ``Items`` worksheet.

    The header row and fully empty rows are skipped.

    Yields:
        ItemRow: One structured row for each meaningful record in the sheet.
    """

    sheet = workbook[ITEMS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_item(raw)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRow]:
    """Stream transaction records from the ``TransactionLog`` worksheet."""

    sheet = workbook[TRANSACTION_LOG_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_transaction(raw)


def append_item(workbook: Workbook, record: ItemRow) -> None:
    """Append an item record to the ``Items`` worksheet."""

    sheet = workbook[ITEMS_SHEET]
    sheet.append(serialize_item(record))


def append_transaction(workbook: Workbook, record: TransactionRow) -> None:
    """Append a transaction record to the ``TransactionLog`` worksheet.

    This is the only write path to the ledger sheet.
    """

    sheet = workbook[TRANSACTION_LOG_SHEET]
    sheet.append(serialize_transaction(record))


def update_item(workbook: Workbook, item_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing item.

    The function locates the row whose ``ItemID`` matches ``item_id``,
    validates that each requested column exists in the header row, and writes
    only the supplied values.

    Args:
        workbook (Workbook): Workbook containing the items sheet.
        item_id (str): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the item or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, ITEMS_SHEET, "ItemID", item_id)
    if row_index is None:
        raise KeyError(f"Item not found: {item_id}")

    sheet = workbook[ITEMS_SHEET]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}

    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown item field: {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)
    log.debug("Updated item '%s' columns: %s", item_id, ", ".join(field_values))


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_item(record: ItemRow) -> list[object]:
    """Convert an item dataclass into the ``ITEM_COLUMNS`` ordering."""

    return [
        record.item_id,
        record.user_scope,
        record.sku,
        record.legacy_code,
        record.title,
        record.sell_price,
        record.sell_price_floor,
        record.sell_price_ceiling,
        record.quantity_in_stock,
        record.quantity_sold,
        record.reorder_point,
        record.is_active,
    ]


def serialize_transaction(record: TransactionRow) -> list[object]:
    """Convert a transaction dataclass into the ``TRANSACTION_COLUMNS`` ordering."""

    return [
        record.transaction_id,
        record.timestamp_iso,
        record.transaction_type,
        record.user_scope,
        record.item_id,
        record.quantity,
        record.unit_price,
        record.total_amount,
        record.payment_method,
        record.payment_status,
        record.transaction_code,
        record.phone,
        record.notes,
    ]


def deserialize_item(raw_row: Sequence[object]) -> ItemRow:
    """Convert a raw worksheet row into a strongly typed item record.

    Excel happily stores whole numbers as floats and identifiers as numbers,
    so numeric columns are coerced to ``int`` and text columns to ``str``.
    Missing trailing cells are treated as blank.
    """

    padded = list(raw_row) + [None] * (len(ITEM_COLUMNS) - len(raw_row))
    (
        item_id,
        user_scope,
        sku,
        legacy_code,
        title,
        sell_price,
        sell_price_floor,
        sell_price_ceiling,
        quantity_in_stock,
        quantity_sold,
        reorder_point,
        is_active,
    ) = padded[: len(ITEM_COLUMNS)]

    return ItemRow(
        item_id=str(item_id),
        user_scope=_to_text(user_scope) or "",
        sku=_to_text(sku) or "",
        legacy_code=_to_text(legacy_code),
        title=_to_text(title) or "",
        sell_price=_to_int(sell_price),
        sell_price_floor=_to_int(sell_price_floor),
        sell_price_ceiling=None if sell_price_ceiling in (None, "") else _to_int(sell_price_ceiling),
        quantity_in_stock=_to_int(quantity_in_stock),
        quantity_sold=_to_int(quantity_sold),
        reorder_point=_to_int(reorder_point),
        is_active=_to_bool(is_active),
    )


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    """Convert a raw worksheet row into a strongly typed transaction record."""

    padded = list(raw_row) + [None] * (len(TRANSACTION_COLUMNS) - len(raw_row))
    (
        transaction_id,
        timestamp_iso,
        transaction_type,
        user_scope,
        item_id,
        quantity,
        unit_price,
        total_amount,
        payment_method,
        payment_status,
        transaction_code,
        phone,
        notes,
    ) = padded[: len(TRANSACTION_COLUMNS)]

    return TransactionRow(
        transaction_id=str(transaction_id),
        timestamp_iso=_to_text(timestamp_iso) or "",
        transaction_type=_to_text(transaction_type) or "",
        user_scope=_to_text(user_scope) or "",
        item_id=_to_text(item_id) or "",
        quantity=_to_int(quantity),
        unit_price=_to_int(unit_price),
        total_amount=_to_int(total_amount),
        payment_method=_to_text(payment_method) or "",
        payment_status=_to_text(payment_status) or "",
        transaction_code=_to_text(transaction_code),
        phone=_to_text(phone),
        notes=_to_text(notes),
    )


def _to_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text != "" else None


def _to_int(value: object, default: int = 0) -> int:
    """Coerce a worksheet cell into ``int``; blanks become ``default``.

    Raises:
        ValueError: If the cell is not a number or has a fractional part.
    """

    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return int(value)
    try:
        number = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Expected a whole number, got {value!r}") from exc
    if not number.is_finite() or number % 1 != 0:
        raise ValueError(f"Expected a whole number, got {value!r}")
    return int(number)


def _to_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)
