"""Unit tests verifying the catalog and ledger logic with a mocked data access layer."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from conftest import CURRENT_SKU, DEFAULT_USER_SCOPE, make_item

from stocksnap_pos import constants, core_logic, data_manager


@pytest.fixture
def workbook():
    return Mock(name="workbook")


@pytest.fixture
def context(settings, workbook):
    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def catalog_rows(monkeypatch):
    """Serve a fixed catalog through ``data_manager.iter_items``."""

    rows = [
        make_item("I-001"),
        make_item("I-002", sku="OL-2401-AAA-00002", legacy_code=CURRENT_SKU, title="Legacy twin"),
        make_item("I-003", sku="", legacy_code="0042", title="Oil", quantity_in_stock=1, reorder_point=5),
        make_item("I-004", sku="SG-2402-B01-00007", is_active=False),
        make_item("I-005", user_scope="shop-2", sku="RC-2403-C22-00003"),
    ]
    iter_mock = Mock(return_value=rows)
    monkeypatch.setattr(data_manager, "iter_items", iter_mock)
    return iter_mock


def _sale(**overrides) -> data_manager.TransactionRow:
    return core_logic.build_sale_transaction(
        user_scope=DEFAULT_USER_SCOPE,
        item_id=overrides.pop("item_id", "I-001"),
        quantity=overrides.pop("quantity", 2),
        unit_price=overrides.pop("unit_price", 25000),
        payment_method="cash",
        payment_status="confirmed",
        **overrides,
    )


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path):
    """load_runtime_context should assemble settings and workbook into a context."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    parsed_settings = data_manager.ConfigSettings(
        data_file=tmp_path / "master.xlsx",
        shop_name="Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_user_scope=DEFAULT_USER_SCOPE,
    )
    workbook = Mock(name="workbook")

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=parsed_settings)
    open_workbook = Mock(return_value=workbook)

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "open_workbook", open_workbook)

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is parsed_settings
    assert context.workbook is workbook
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    open_workbook.assert_called_once_with(parsed_settings.data_file)


def test_ensure_schema_version_rejects_mismatch(context):
    bad_context = core_logic.RuntimeContext(
        settings=replace(context.settings, schema_version="0.9"),
        workbook=context.workbook,
    )
    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(bad_context)


# ---------------------------------------------------------------------------
# Catalog queries
# ---------------------------------------------------------------------------


def test_list_items_hides_inactive_and_filters_scope(context, catalog_rows):
    items = core_logic.list_items(context, user_scope=DEFAULT_USER_SCOPE)

    assert [item.item_id for item in items] == ["I-001", "I-002", "I-003"]
    everything = core_logic.list_items(context, include_inactive=True)
    assert len(everything) == 5
    catalog_rows.assert_called_once_with(context.workbook)


def test_list_low_stock_items(context, catalog_rows):
    low = core_logic.list_low_stock_items(context, user_scope=DEFAULT_USER_SCOPE)

    assert [item.item_id for item in low] == ["I-003"]


def test_get_item_unknown_raises_missing_reference(context, catalog_rows):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.get_item(context, "I-404")


def test_find_by_code_prefers_sku_over_legacy_match(context, catalog_rows):
    """I-002 carries I-001's SKU as its legacy code; the SKU owner wins."""

    item = core_logic.find_active_item_by_code(context, CURRENT_SKU, user_scope=DEFAULT_USER_SCOPE)

    assert item.item_id == "I-001"


def test_find_by_code_searches_legacy_column(context, catalog_rows):
    item = core_logic.find_active_item_by_code(context, "0042", user_scope=DEFAULT_USER_SCOPE)

    assert item.item_id == "I-003"


@pytest.mark.parametrize(
    "code, scope",
    [
        ("SG-2402-B01-00007", DEFAULT_USER_SCOPE),
        ("RC-2403-C22-00003", DEFAULT_USER_SCOPE),
        ("ZZ-0000-ZZZ-00000", DEFAULT_USER_SCOPE),
        (CURRENT_SKU, "shop-2"),
    ],
)
def test_find_by_code_returns_none_for_inactive_foreign_or_unknown(context, catalog_rows, code, scope):
    assert core_logic.find_active_item_by_code(context, code, user_scope=scope) is None


# ---------------------------------------------------------------------------
# Stock decrement
# ---------------------------------------------------------------------------


def test_decrement_stock_updates_both_counters(monkeypatch, context, catalog_rows):
    update_item = Mock()
    monkeypatch.setattr(data_manager, "update_item", update_item)

    updated = core_logic.decrement_stock(context, "I-001", 4)

    assert updated.quantity_in_stock == 6
    assert updated.quantity_sold == 4
    update_item.assert_called_once_with(
        context.workbook,
        "I-001",
        field_values={"QuantityInStock": 6, "QuantitySold": 4},
    )
    assert "items" not in context._cache


def test_decrement_stock_floors_at_zero(monkeypatch, context, catalog_rows):
    monkeypatch.setattr(data_manager, "update_item", Mock())

    updated = core_logic.decrement_stock(context, "I-003", 3)

    assert updated.quantity_in_stock == 0
    assert updated.quantity_sold == 3


@pytest.mark.parametrize("quantity", [0, -1, 1.5, True])
def test_decrement_stock_rejects_bad_quantities(monkeypatch, context, catalog_rows, quantity):
    update_item = Mock()
    monkeypatch.setattr(data_manager, "update_item", update_item)

    with pytest.raises(ValueError):
        core_logic.decrement_stock(context, "I-001", quantity)
    update_item.assert_not_called()


# ---------------------------------------------------------------------------
# Sale ledger
# ---------------------------------------------------------------------------


def test_build_sale_transaction_computes_total(set_fixed_datetime):
    moment = set_fixed_datetime(datetime(2026, 3, 1, 9, 30, 0, 123456, tzinfo=UTC))

    record = _sale(quantity=3, unit_price=1500, notes="voucher")

    assert record.transaction_id == "T20260301093000123456"
    assert record.timestamp_iso == moment.isoformat()
    assert record.transaction_type == constants.TransactionType.SALE.value
    assert record.total_amount == 4500
    assert record.notes == "voucher"


def test_record_sale_transaction_appends_and_invalidates(monkeypatch, context):
    monkeypatch.setattr(data_manager, "iter_transactions", Mock(return_value=[]))
    append = Mock()
    monkeypatch.setattr(data_manager, "append_transaction", append)
    record = _sale()

    result = core_logic.record_sale_transaction(context, record)

    assert result is record
    append.assert_called_once_with(context.workbook, record)
    assert "transactions" not in context._cache


def test_record_sale_transaction_rejects_inconsistent_total(monkeypatch, context):
    monkeypatch.setattr(data_manager, "iter_transactions", Mock(return_value=[]))
    append = Mock()
    monkeypatch.setattr(data_manager, "append_transaction", append)

    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.record_sale_transaction(context, replace(_sale(), total_amount=1))
    append.assert_not_called()


def test_record_sale_transaction_rejects_duplicates(monkeypatch, context):
    existing = _sale()
    monkeypatch.setattr(data_manager, "iter_transactions", Mock(return_value=[existing]))
    monkeypatch.setattr(data_manager, "append_transaction", Mock())

    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.record_sale_transaction(context, existing)


def test_record_sale_transaction_rejects_non_sales(monkeypatch, context):
    monkeypatch.setattr(data_manager, "append_transaction", Mock())

    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.record_sale_transaction(context, replace(_sale(), transaction_type="restock"))


def test_record_sale_transaction_rejects_negative_price(monkeypatch, context):
    monkeypatch.setattr(data_manager, "append_transaction", Mock())
    record = replace(_sale(quantity=1, unit_price=0), unit_price=-5, total_amount=-5)

    with pytest.raises(ValueError):
        core_logic.record_sale_transaction(context, record)


def test_generate_transaction_id_uses_prefix():
    when = datetime(2026, 1, 2, 3, 4, 5, 6, tzinfo=UTC)

    assert core_logic.generate_transaction_id(prefix="S", when=when) == "S20260102030405000006"


# ---------------------------------------------------------------------------
# Sales summary
# ---------------------------------------------------------------------------

SUMMARY_NOW = datetime(2024, 3, 15, 10, 0, tzinfo=UTC)


def _sale_at(moment: datetime, **overrides) -> data_manager.TransactionRow:
    return _sale(timestamp=moment, **overrides)


@pytest.fixture
def ledger_rows(monkeypatch):
    """Serve the rows appended to the returned list through ``iter_transactions``."""

    rows: list = []
    monkeypatch.setattr(data_manager, "iter_transactions", Mock(side_effect=lambda _: list(rows)))
    return rows


def test_summarize_sales_applies_day_and_week_cutoffs(context, catalog_rows, ledger_rows):
    ledger_rows.extend(
        [
            _sale_at(datetime(2024, 3, 7, 23, 59, 59, tzinfo=UTC), quantity=1),
            _sale_at(datetime(2024, 3, 8, 0, 0, tzinfo=UTC), quantity=1, unit_price=20000),
            _sale_at(datetime(2024, 3, 14, 23, 59, 59, tzinfo=UTC), quantity=2),
            _sale_at(datetime(2024, 3, 15, 0, 0, tzinfo=UTC), quantity=1),
            replace(_sale_at(datetime(2024, 3, 15, 9, 0, tzinfo=UTC), quantity=3), payment_status="pending"),
            replace(_sale_at(datetime(2024, 3, 15, 8, 0, tzinfo=UTC)), user_scope="shop-2"),
        ]
    )

    summary = core_logic.summarize_sales(context, user_scope=DEFAULT_USER_SCOPE, now=SUMMARY_NOW)

    assert summary.today_revenue == 25000
    assert summary.today_sales_count == 1
    assert summary.week_revenue == 25000 + 50000 + 20000
    assert summary.total_stock == 21
    assert [item.item_id for item in summary.low_stock_items] == ["I-003"]


def test_summarize_sales_day_starts_at_midnight_in_reference_timezone(context, catalog_rows, ledger_rows):
    nairobi = timezone(timedelta(hours=3))
    ledger_rows.extend(
        [
            _sale_at(datetime(2024, 3, 14, 20, 59, tzinfo=UTC), quantity=1),
            _sale_at(datetime(2024, 3, 14, 21, 0, tzinfo=UTC), quantity=2),
        ]
    )

    summary = core_logic.summarize_sales(
        context,
        user_scope=DEFAULT_USER_SCOPE,
        now=datetime(2024, 3, 15, 1, 0, tzinfo=nairobi),
    )

    assert summary.today_revenue == 50000
    assert summary.today_sales_count == 1
    assert summary.week_revenue == 75000


def test_summarize_sales_lists_newest_transactions_with_titles(context, catalog_rows, ledger_rows):
    start = datetime(2024, 3, 15, 8, 0, tzinfo=UTC)
    ledger_rows.extend(_sale_at(start + timedelta(minutes=minute)) for minute in range(11))
    ledger_rows.append(_sale_at(start + timedelta(minutes=30), item_id="I-999"))

    summary = core_logic.summarize_sales(context, user_scope=DEFAULT_USER_SCOPE, now=SUMMARY_NOW)

    recent = summary.recent_transactions
    assert len(recent) == core_logic.RECENT_TRANSACTION_LIMIT
    assert recent[0].transaction.item_id == "I-999"
    assert recent[0].item_title == core_logic.UNKNOWN_ITEM_TITLE
    assert recent[1].item_title == "Maize Flour 2kg"
    assert recent[1].transaction.timestamp_iso == (start + timedelta(minutes=10)).isoformat()
    assert recent[-1].transaction.timestamp_iso == (start + timedelta(minutes=2)).isoformat()


def test_summarize_sales_with_empty_ledger(context, catalog_rows, ledger_rows):
    summary = core_logic.summarize_sales(context, user_scope=DEFAULT_USER_SCOPE, now=SUMMARY_NOW)

    assert (summary.today_revenue, summary.today_sales_count, summary.week_revenue) == (0, 0, 0)
    assert summary.recent_transactions == ()


def test_summarize_sales_rejects_corrupt_timestamps(context, catalog_rows, ledger_rows):
    ledger_rows.append(replace(_sale_at(SUMMARY_NOW), timestamp_iso="yesterday"))

    with pytest.raises(ValueError):
        core_logic.summarize_sales(context, user_scope=DEFAULT_USER_SCOPE, now=SUMMARY_NOW)
