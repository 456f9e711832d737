"""Shared pytest fixtures and utilities for StockSnap POS tests."""

from __future__ import annotations

import argparse
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import pytest

from stocksnap_pos import cli, constants, core_logic, data_manager
from stocksnap_pos.engine import SaleEngine
from stocksnap_pos.session import SessionContext
from stocksnap_pos.setup_excel import create_master_workbook

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_USER_SCOPE = "shop-1"
OTHER_USER_SCOPE = "shop-2"
CURRENT_SKU = "MF-2401-X7Q-00001"
LEGACY_CODE = "0042"

_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "UserScope = {user_scope}\n\n"
    "[Scanner]\n"
    "DebounceWindowMs = {debounce_window_ms}\n"
    "LegacySchemes = {legacy_schemes}\n"
)


def make_item(item_id: str = "I-001", **overrides) -> data_manager.ItemRow:
    """Build an item row with sensible defaults for the default user scope."""

    values = dict(
        item_id=item_id,
        user_scope=DEFAULT_USER_SCOPE,
        sku=CURRENT_SKU,
        legacy_code=None,
        title="Maize Flour 2kg",
        sell_price=25000,
        sell_price_floor=20000,
        sell_price_ceiling=30000,
        quantity_in_stock=10,
        quantity_sold=0,
        reorder_point=3,
        is_active=True,
    )
    values.update(overrides)
    return data_manager.ItemRow(**values)


def sample_catalog() -> List[data_manager.ItemRow]:
    """Catalog used by the workbook-backed tests."""

    return [
        make_item("I-001"),
        make_item(
            "I-002",
            sku="",
            legacy_code=LEGACY_CODE,
            title="Cooking Oil 1L",
            sell_price=32000,
            sell_price_floor=30000,
            sell_price_ceiling=None,
            quantity_in_stock=2,
            reorder_point=5,
        ),
        make_item(
            "I-003",
            sku="SG-2402-B01-00007",
            title="Sugar 1kg",
            quantity_in_stock=0,
            is_active=False,
        ),
        make_item(
            "I-004",
            user_scope=OTHER_USER_SCOPE,
            sku="RC-2403-C22-00003",
            title="Rice 5kg",
        ),
    ]


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    user_scope: str
    schema_version: str
    shop_name: str


class FakeClock:
    """Millisecond clock the tests advance by hand."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, milliseconds: float) -> None:
        self.now += milliseconds


class FakeCatalog:
    """In-memory catalog store recording every call."""

    def __init__(
        self,
        items: Iterable[data_manager.ItemRow] = (),
        *,
        journal: Optional[list] = None,
    ) -> None:
        self.items = {item.item_id: item for item in items}
        self.journal = journal if journal is not None else []
        self.lookups: list[tuple[str, str]] = []
        self.decrements: list[tuple[str, int]] = []
        self.lookup_error: Optional[Exception] = None
        self.decrement_error: Optional[Exception] = None

    def find_active_item_by_code(self, code: str, *, user_scope: str) -> Optional[data_manager.ItemRow]:
        self.lookups.append((code, user_scope))
        self.journal.append(("lookup", code))
        if self.lookup_error is not None:
            raise self.lookup_error
        for item in self.items.values():
            if item.is_active and item.user_scope == user_scope and code in (item.sku, item.legacy_code):
                return item
        return None

    def decrement_stock(self, item_id: str, quantity: int) -> data_manager.ItemRow:
        self.decrements.append((item_id, quantity))
        self.journal.append(("decrement", item_id, quantity))
        if self.decrement_error is not None:
            raise self.decrement_error
        item = self.items[item_id]
        updated = replace(
            item,
            quantity_in_stock=max(0, item.quantity_in_stock - quantity),
            quantity_sold=item.quantity_sold + quantity,
        )
        self.items[item_id] = updated
        return updated


class FakeLedger:
    """In-memory, append-only ledger store."""

    def __init__(self, *, journal: Optional[list] = None) -> None:
        self.records: list[data_manager.TransactionRow] = []
        self.journal = journal if journal is not None else []
        self.insert_error: Optional[Exception] = None

    def insert_sale_transaction(self, record: data_manager.TransactionRow) -> str:
        self.journal.append(("insert", record.transaction_id))
        if self.insert_error is not None:
            raise self.insert_error
        self.records.append(record)
        return record.transaction_id


class RecordingSink:
    """Notification sink that keeps the events it receives."""

    def __init__(self) -> None:
        self.events: list = []

    def notify(self, event) -> None:
        self.events.append(event)


# ---------------------------------------------------------------------------
# Workbook and configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        items: Iterable[data_manager.ItemRow] = (),
        filename: str = "master_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, items=items, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook seeded with the sample catalog."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}", items=sample_catalog())


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        user_scope: str = DEFAULT_USER_SCOPE,
        items: Optional[Iterable[data_manager.ItemRow]] = None,
        debounce_window_ms: int = constants.SCAN_DEBOUNCE_MS,
        legacy_schemes: str = "",
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(
            subdir=f"bundle_{bundle_id}",
            items=sample_catalog() if items is None else items,
        )
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                user_scope=user_scope,
                debounce_window_ms=debounce_window_ms,
                legacy_schemes=legacy_schemes,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            user_scope=user_scope,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "master_workbook.xlsx",
        shop_name="Test Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_user_scope=DEFAULT_USER_SCOPE,
    )


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# Sale engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def journal() -> list:
    """Shared call journal used to assert cross-collaborator ordering."""

    return []


@pytest.fixture
def catalog(journal: list) -> FakeCatalog:
    return FakeCatalog(sample_catalog(), journal=journal)


@pytest.fixture
def ledger(journal: list) -> FakeLedger:
    return FakeLedger(journal=journal)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session() -> SessionContext:
    return SessionContext(user_scope=DEFAULT_USER_SCOPE)


@pytest.fixture
def engine(
    catalog: FakeCatalog,
    ledger: FakeLedger,
    session: SessionContext,
    sink: RecordingSink,
    clock: FakeClock,
) -> SaleEngine:
    """Sale engine wired to in-memory collaborators."""

    return SaleEngine(catalog, ledger, session, notifications=sink, clock=clock)


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="stocksnap-pos", description="StockSnap POS")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
