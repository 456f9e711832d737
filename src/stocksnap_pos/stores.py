"""Collaborator interfaces consumed by the sale engine, plus local adapters.

The engine never touches a workbook, a database or a UI toolkit directly.
It talks to four narrow protocols:

* :class:`CatalogStore`: active-item lookup by code and the stock decrement.
* :class:`LedgerStore`: append-only sale insertion.
* :class:`NotificationSink`: fire-and-forget operator notifications.
* :class:`SessionGate`: the signed-in user's scope.

:class:`WorkbookStore` implements the catalog and ledger roles over the
master workbook, and :class:`LoggingNotificationSink` forwards events to the
package logger.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from . import core_logic, log
from .data_manager import ItemRow, TransactionRow


class CatalogStore(Protocol):
    """Item lookup and stock adjustment."""

    def find_active_item_by_code(self, code: str, *, user_scope: str) -> Optional[ItemRow]:
        ...

    def decrement_stock(self, item_id: str, quantity: int) -> ItemRow:
        ...


class LedgerStore(Protocol):
    """Append-only sale persistence. No update or delete entry points."""

    def insert_sale_transaction(self, record: TransactionRow) -> str:
        ...


class SessionGate(Protocol):
    def current_user_scope(self) -> str:
        ...


@dataclass(frozen=True)
class SaleSummary:
    """What the operator is told after a completed sale."""

    transaction_id: str
    item_id: str
    item_title: str
    quantity: int
    unit_price: int
    total_amount: int
    payment_method: str
    remaining_stock: Optional[int]


@dataclass(frozen=True)
class SaleCompleted:
    summary: SaleSummary


@dataclass(frozen=True)
class LowStockAlert:
    item_id: str
    item_title: str
    remaining: int


NotificationEvent = Union[SaleCompleted, LowStockAlert]


class NotificationSink(Protocol):
    def notify(self, event: NotificationEvent) -> None:
        ...


class LoggingNotificationSink:
    """Notification sink that writes events to the package logger."""

    def notify(self, event: NotificationEvent) -> None:
        if isinstance(event, SaleCompleted):
            summary = event.summary
            log.info(
                "Sold %sx %s - total %s (%s)",
                summary.quantity,
                summary.item_title,
                summary.total_amount,
                summary.transaction_id,
            )
        elif isinstance(event, LowStockAlert):
            log.warning("Low stock: %s - %s left", event.item_title, event.remaining)
        else:
            log.debug("Ignoring unknown notification event %r", event)


class WorkbookStore:
    """Catalog and ledger backed by the master workbook.

    Every write is followed by a save when ``autosave`` is on. If the save
    fails the in-memory workbook is reloaded from disk before the error is
    re-raised, so a retried sale cannot leave a stale duplicate row behind.
    Writes are serialized by a lock, which makes the stock decrement's
    read-modify-write atomic for every caller sharing this store.
    """

    def __init__(self, context: core_logic.RuntimeContext, *, autosave: bool = True) -> None:
        self.context = context
        self.autosave = autosave
        self._lock = threading.Lock()

    def find_active_item_by_code(self, code: str, *, user_scope: str) -> Optional[ItemRow]:
        with self._lock:
            return core_logic.find_active_item_by_code(self.context, code, user_scope=user_scope)

    def decrement_stock(self, item_id: str, quantity: int) -> ItemRow:
        with self._lock:
            updated = core_logic.decrement_stock(self.context, item_id, quantity)
            self._save()
            return updated

    def insert_sale_transaction(self, record: TransactionRow) -> str:
        with self._lock:
            core_logic.record_sale_transaction(self.context, record)
            self._save()
            return record.transaction_id

    def _save(self) -> None:
        if not self.autosave:
            return
        try:
            core_logic.persist_context(self.context)
        except OSError:
            log.error("Saving workbook failed; reloading '%s' from disk", self.context.settings.data_file)
            self.context = core_logic.refresh_context(self.context)
            raise
