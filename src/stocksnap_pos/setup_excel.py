"""Bootstrap the StockSnap POS master workbook.

Used as the ``stocksnap-pos-setup`` script and imported by tests, which seed
their own catalogs through :func:`create_master_workbook`.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Iterable, Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from . import data_manager, log
from .constants import SheetName

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.ITEMS.value: data_manager.ITEM_COLUMNS,
    SheetName.TRANSACTION_LOG.value: data_manager.TRANSACTION_COLUMNS,
}

HEADER_FONT = Font(bold=True)
MIN_COLUMN_WIDTH = 12

# Two sellable items for trying the CLI against a fresh workbook.
DEMO_ITEMS: tuple[data_manager.ItemRow, ...] = (
    data_manager.ItemRow(
        item_id="DEMO-001",
        user_scope="shop-1",
        sku="DM-2601-AAA-00001",
        legacy_code="1001",
        title="Demo item",
        sell_price=15000,
        sell_price_floor=10000,
        sell_price_ceiling=20000,
        quantity_in_stock=12,
        quantity_sold=0,
        reorder_point=3,
        is_active=True,
    ),
    data_manager.ItemRow(
        item_id="DEMO-002",
        user_scope="shop-1",
        sku="DM-2601-AAB-00002",
        legacy_code=None,
        title="Demo item (low stock)",
        sell_price=5000,
        sell_price_floor=4500,
        sell_price_ceiling=None,
        quantity_in_stock=1,
        quantity_sold=0,
        reorder_point=2,
        is_active=True,
    ),
)


def _write_header(worksheet: Worksheet, columns: Sequence[str]) -> None:
    for column_index, column_name in enumerate(columns, start=1):
        cell = worksheet.cell(row=1, column=column_index, value=column_name)
        cell.font = HEADER_FONT
        letter = get_column_letter(column_index)
        worksheet.column_dimensions[letter].width = max(MIN_COLUMN_WIDTH, len(column_name) + 2)
    worksheet.freeze_panes = "A2"


def build_workbook(
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    items: Iterable[data_manager.ItemRow] = (),
) -> Workbook:
    """Return an in-memory workbook with one header-only sheet per entry.

    ``items`` are appended to the catalog sheet after the headers.
    """

    workbook = openpyxl.Workbook()
    placeholder = workbook.active
    for sheet_name, columns in sheet_columns.items():
        _write_header(workbook.create_sheet(title=sheet_name), columns)
    if placeholder is not None:
        workbook.remove(placeholder)

    seeded = 0
    for item in items:
        data_manager.append_item(workbook, item)
        seeded += 1
    log.debug("Built workbook with sheets %s and %d seeded items", list(sheet_columns), seeded)
    return workbook


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    items: Iterable[data_manager.ItemRow] = (),
    overwrite: bool = False,
) -> Path:
    """Write a fresh master workbook to ``destination`` and return its path.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is off.
    """

    target = Path(destination).expanduser().resolve()
    if target.exists() and not overwrite:
        raise FileExistsError(f"Master workbook already exists: {target}")

    workbook = build_workbook(sheet_columns=sheet_columns, items=items)
    data_manager.save_workbook(workbook, target)
    log.info("Created master workbook '%s'", target)
    return target


def run_from_config(config_path: Path, *, overwrite: bool = False, demo: bool = False) -> Path:
    """Create the workbook named by ``[System] DataFile`` in ``config_path``."""

    resolved = Path(config_path).expanduser().resolve()
    settings = data_manager.parse_settings(data_manager.read_config(resolved), base_path=resolved.parent)
    items = DEMO_ITEMS if demo else ()
    return create_master_workbook(settings.data_file, items=items, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="stocksnap-pos-setup",
        description="Create the StockSnap POS master workbook named in config.ini.",
    )
    parser.add_argument(
        "--config",
        default=data_manager.CONFIG_FILE_NAME,
        help="Configuration file to read DataFile from (default: config.ini).",
    )
    parser.add_argument("--force", action="store_true", help="Replace an existing workbook.")
    parser.add_argument("--demo", action="store_true", help="Seed two demo items for the default shop.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``stocksnap-pos-setup``."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()
    print(f"StockSnap POS setup using {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force, demo=args.demo)
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Pass --force to replace it.")
        return 1
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"[ERROR] Invalid configuration: {exc}")
        return 1
    except OSError as exc:
        print(f"[ERROR] Could not write workbook: {exc}")
        return 1

    print(f"[SUCCESS] Master workbook ready at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
