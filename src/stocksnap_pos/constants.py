"""Enumerations shared across the StockSnap POS modules.

Centralises domain constants so that the data access layer, the sale engine
and the presentation layer agree on a single set of identifiers. Every
enumeration here is closed: callers compare members, never message text.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Camera frames re-detect the same code; identical codes inside this window are dropped.
SCAN_DEBOUNCE_MS = 2000

CURRENCY_LABEL = "KES"

PUSH_FALLBACK_NOTICE = "Push payment not available yet - recorded as cash"


class PaymentMethod(str, Enum):
    """Enumerate the payment methods an operator can pick for a sale."""

    CASH = "cash"
    MOBILE_MONEY_PUSH = "mobile-money-push"
    MOBILE_MONEY_CODE = "mobile-money-code"
    OTHER = "other"


class PaymentStatus(str, Enum):
    """Enumerate the payment states recorded on a sale."""

    PENDING = "pending"
    CONFIRMED = "confirmed"


class TransactionType(str, Enum):
    """Enumerate the transaction types written to the ledger."""

    SALE = "sale"


class SaleState(str, Enum):
    """States of the sale transaction engine."""

    IDLE = "idle"
    ITEM_RESOLVING = "item_resolving"
    ITEM_PRESENTED = "item_presented"
    VALIDATING = "validating"
    LOW_STOCK_CONFIRMING = "low_stock_confirming"
    PERSISTING = "persisting"
    STOCK_ADJUSTING = "stock_adjusting"
    COMPLETE = "complete"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Closed taxonomy of errors surfaced by the sale engine."""

    ITEM_NOT_FOUND = "item_not_found"
    LOOKUP_ERROR = "lookup_error"
    INVALID_QUANTITY = "invalid_quantity"
    BELOW_FLOOR = "below_floor"
    ABOVE_CEILING = "above_ceiling"
    INVALID_PHONE = "invalid_phone"
    INVALID_CODE = "invalid_code"
    PERSIST_ERROR = "persist_error"
    STOCK_ADJUST_ERROR = "stock_adjust_error"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    ITEMS = "Items"
    TRANSACTION_LOG = "TransactionLog"


__all__ = [
    "CURRENCY_LABEL",
    "EXPECTED_SCHEMA_VERSION",
    "PUSH_FALLBACK_NOTICE",
    "SCAN_DEBOUNCE_MS",
    "ErrorKind",
    "PaymentMethod",
    "PaymentStatus",
    "SaleState",
    "SheetName",
    "TransactionType",
]
