"""Sale transaction engine.

The engine is the only state machine of the point-of-sale core. It turns a
scanned or typed code into a persisted sale::

    IDLE -> ITEM_RESOLVING -> ITEM_PRESENTED -> VALIDATING
         -> [LOW_STOCK_CONFIRMING] -> PERSISTING -> STOCK_ADJUSTING -> COMPLETE

``FAILED`` is entered when a lookup finds nothing or the ledger insert fails.
Both are recoverable: a failed lookup lets the operator try another code, a
failed insert keeps the draft so the sale can be confirmed again without
re-entering it.

Ordering matters at the end of the flow. Stock is only decremented after the
ledger accepted the sale, and a failed decrement never undoes the sale; it is
reported as a warning and left to reconciliation.

Presentation code reads :attr:`SaleEngine.state`, :attr:`SaleEngine.draft`
and the returned :class:`EngineOutcome`; it changes the draft only through
:meth:`SaleEngine.update_draft`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Tuple

from . import log
from .constants import ErrorKind, PaymentStatus, SaleState
from .core_logic import BusinessRuleViolation, FieldError, build_sale_transaction
from .data_manager import ItemRow, TransactionRow
from .debounce import monotonic_ms
from .identifiers import normalize_manual_code, resolve_scan_payload
from .payments import (
    Cash,
    PAYMENT_TYPES,
    Payment,
    apply_submission_policy,
    derive_payment_status,
    payment_columns,
    validate_payment,
)
from .pricing import PriceCheck, default_price_in_bounds, price_error_message, validate_price
from .session import SessionContext
from .stores import (
    CatalogStore,
    LedgerStore,
    LowStockAlert,
    NotificationEvent,
    NotificationSink,
    SaleCompleted,
    SaleSummary,
)


class InvalidTransitionError(BusinessRuleViolation):
    """Raised when an engine operation is called from a state that forbids it."""


ALLOWED_TRANSITIONS: Dict[SaleState, FrozenSet[SaleState]] = {
    SaleState.IDLE: frozenset({SaleState.ITEM_RESOLVING}),
    SaleState.ITEM_RESOLVING: frozenset({SaleState.ITEM_PRESENTED, SaleState.FAILED}),
    SaleState.ITEM_PRESENTED: frozenset({SaleState.ITEM_PRESENTED, SaleState.VALIDATING, SaleState.IDLE}),
    SaleState.VALIDATING: frozenset(
        {SaleState.ITEM_PRESENTED, SaleState.LOW_STOCK_CONFIRMING, SaleState.PERSISTING}
    ),
    SaleState.LOW_STOCK_CONFIRMING: frozenset(
        {SaleState.PERSISTING, SaleState.ITEM_PRESENTED, SaleState.IDLE}
    ),
    SaleState.PERSISTING: frozenset({SaleState.STOCK_ADJUSTING, SaleState.FAILED}),
    SaleState.STOCK_ADJUSTING: frozenset({SaleState.COMPLETE}),
    SaleState.COMPLETE: frozenset({SaleState.IDLE}),
    SaleState.FAILED: frozenset(
        {SaleState.ITEM_RESOLVING, SaleState.ITEM_PRESENTED, SaleState.VALIDATING, SaleState.IDLE}
    ),
}

_DRAFT_OPEN_STATES = frozenset(
    {
        SaleState.ITEM_PRESENTED,
        SaleState.VALIDATING,
        SaleState.LOW_STOCK_CONFIRMING,
        SaleState.PERSISTING,
        SaleState.STOCK_ADJUSTING,
    }
)

_UNCANCELLABLE_STATES = frozenset({SaleState.PERSISTING, SaleState.STOCK_ADJUSTING})


@dataclass
class SaleDraft:
    """In-progress sale for the presented item."""

    item_id: str
    unit_price: int
    quantity: int = 1
    payment: Payment = field(default_factory=Cash)

    @property
    def total_amount(self) -> int:
        return self.quantity * self.unit_price

    @property
    def payment_status(self) -> PaymentStatus:
        return derive_payment_status(self.payment)


@dataclass(frozen=True)
class LowStockWarning:
    """Confirmation gate shown when a sale asks for more than is in stock."""

    in_stock: int
    requested: int

    @property
    def message(self) -> str:
        return f"Only {self.in_stock} in stock. Continue with {self.requested}?"


@dataclass(frozen=True)
class EngineOutcome:
    """Snapshot returned by every engine operation.

    ``error`` blocks progress and names the offending field; ``warnings`` are
    post-hoc and non-blocking (a failed stock update); ``notices`` are
    informational (the push-to-pay fallback).
    """

    state: SaleState
    draft: Optional[SaleDraft] = None
    item: Optional[ItemRow] = None
    error: Optional[FieldError] = None
    low_stock: Optional[LowStockWarning] = None
    transaction: Optional[TransactionRow] = None
    summary: Optional[SaleSummary] = None
    notices: Tuple[str, ...] = ()
    warnings: Tuple[FieldError, ...] = ()

    @property
    def completed(self) -> bool:
        return self.state is SaleState.COMPLETE


class SaleEngine:
    """Drive one sale at a time from lookup to stock adjustment.

    Args:
        catalog (CatalogStore): Item lookup and stock decrement.
        ledger (LedgerStore): Append-only sale persistence.
        session (SessionContext): User scope and scanner debounce state.
        notifications (NotificationSink | None): Optional fire-and-forget
            sink for completion and low-stock events.
        legacy_schemes (Iterable[str] | None): Accepted schemes for legacy
            label URIs; any scheme when omitted.
        clock (Callable[[], float] | None): Millisecond clock used by the
            scan debouncer.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        ledger: LedgerStore,
        session: SessionContext,
        *,
        notifications: Optional[NotificationSink] = None,
        legacy_schemes: Optional[Iterable[str]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.catalog = catalog
        self.ledger = ledger
        self.session = session
        self.notifications = notifications
        self.legacy_schemes = tuple(legacy_schemes or ())
        self._clock = clock or monotonic_ms
        self._state = SaleState.IDLE
        self._item: Optional[ItemRow] = None
        self._draft: Optional[SaleDraft] = None
        self._error: Optional[FieldError] = None
        self._low_stock_acknowledged = False

    # ------------------------------------------------------------------
    # Read-only view for the presentation layer
    # ------------------------------------------------------------------

    @property
    def state(self) -> SaleState:
        return self._state

    @property
    def item(self) -> Optional[ItemRow]:
        return self._item

    @property
    def draft(self) -> Optional[SaleDraft]:
        if self._draft is None:
            return None
        return replace(self._draft)

    @property
    def is_busy(self) -> bool:
        """``True`` while a sale sheet is open, including a failed insert awaiting retry."""

        if self._state in _DRAFT_OPEN_STATES:
            return True
        return self._state is SaleState.FAILED and self._draft is not None

    def check_price(self) -> PriceCheck:
        """Validate the draft price as it stands, for live field feedback."""

        item, draft = self._require_draft()
        return validate_price(item, draft.unit_price)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def handle_scan(self, raw_payload: Optional[str], *, now: Optional[float] = None) -> Optional[EngineOutcome]:
        """Handle a camera payload.

        Returns ``None`` when the payload is ignored: a sale is already open,
        the payload is not an item code, or it repeats the last scan inside
        the debounce window.
        """

        if self.is_busy:
            log.debug("Ignoring scan while a sale is open (state=%s)", self._state.value)
            return None

        code = resolve_scan_payload(raw_payload, legacy_schemes=self.legacy_schemes)
        if code is None:
            return None

        moment = self._clock() if now is None else now
        debouncer = self.session.debouncer
        if not debouncer.should_process(code, moment):
            return None
        debouncer.record(code, moment)

        return self._resolve(code)

    def lookup_code(self, raw_code: Optional[str]) -> Optional[EngineOutcome]:
        """Handle a code typed by the operator.

        Manual entry is a deliberate action, so it skips the debouncer and
        leaves the camera's last-scan record untouched. Returns ``None`` when
        a sale is already open or the input is blank.
        """

        if self.is_busy:
            log.debug("Ignoring manual lookup while a sale is open (state=%s)", self._state.value)
            return None

        code = normalize_manual_code(raw_code, legacy_schemes=self.legacy_schemes)
        if code is None:
            return None

        return self._resolve(code)

    # ------------------------------------------------------------------
    # Draft editing and confirmation
    # ------------------------------------------------------------------

    def update_draft(
        self,
        *,
        quantity: Optional[int] = None,
        unit_price: Optional[int] = None,
        payment: Optional[Payment] = None,
    ) -> EngineOutcome:
        """Edit the open draft.

        A quantity below one is rejected with ``INVALID_QUANTITY`` and leaves
        the draft unchanged. The returned outcome also carries the live price
        error, if any, so the confirm action can be disabled.

        Raises:
            InvalidTransitionError: If no draft is open for editing.
            TypeError: If ``quantity`` or ``unit_price`` is not an ``int``, or
                ``payment`` is not a payment type.
        """

        self._require_editable()
        item, draft = self._require_draft()
        if quantity is not None:
            _require_int(quantity, "quantity")
        if unit_price is not None:
            _require_int(unit_price, "unit_price")
        if payment is not None and not isinstance(payment, PAYMENT_TYPES):
            raise TypeError(f"payment must be one of Cash, PushToPay, CodeEntry or Other, got {type(payment).__name__}")

        self._transition(SaleState.ITEM_PRESENTED)

        if quantity is not None and quantity < 1:
            log.warning("Rejected draft quantity %s for item '%s'", quantity, item.item_id)
            self._error = FieldError(
                kind=ErrorKind.INVALID_QUANTITY,
                field="quantity",
                message="Quantity must be at least 1.",
                bound=1,
            )
            return self._outcome()

        if quantity is not None and quantity != draft.quantity:
            draft.quantity = quantity
            self._low_stock_acknowledged = False
        if unit_price is not None:
            draft.unit_price = unit_price
        if payment is not None:
            draft.payment = payment

        self._error = _price_field_error(validate_price(item, draft.unit_price))
        return self._outcome()

    def confirm(self) -> EngineOutcome:
        """Validate the draft and, unless gated by low stock, record the sale.

        Also used to retry after a failed ledger insert; validation runs again
        because the item or the draft may have changed.
        """

        self._require_editable()
        item, draft = self._require_draft()
        self._transition(SaleState.VALIDATING)

        try:
            error = self._validate(item, draft)
        except Exception:
            self._transition(SaleState.ITEM_PRESENTED)
            raise
        if error is not None:
            self._error = error
            self._transition(SaleState.ITEM_PRESENTED)
            return self._outcome()
        self._error = None

        if draft.quantity > item.quantity_in_stock and not self._low_stock_acknowledged:
            log.info(
                "Low-stock gate for item '%s': requested %s, in stock %s",
                item.item_id,
                draft.quantity,
                item.quantity_in_stock,
            )
            self._transition(SaleState.LOW_STOCK_CONFIRMING)
            return self._outcome()

        return self._persist(item, draft)

    def acknowledge_low_stock(self) -> EngineOutcome:
        """Proceed past the low-stock gate."""

        self._require_state(SaleState.LOW_STOCK_CONFIRMING)
        item, draft = self._require_draft()
        self._low_stock_acknowledged = True
        return self._persist(item, draft)

    def decline_low_stock(self) -> EngineOutcome:
        """Return from the low-stock gate to the draft."""

        self._require_state(SaleState.LOW_STOCK_CONFIRMING)
        self._transition(SaleState.ITEM_PRESENTED)
        return self._outcome()

    def cancel(self) -> EngineOutcome:
        """Discard the open draft without side effects.

        Raises:
            InvalidTransitionError: Once persisting has begun.
        """

        if self._state in _UNCANCELLABLE_STATES:
            raise InvalidTransitionError(f"Cannot cancel a sale while {self._state.value}")
        if self._draft is not None:
            log.info("Sale of item '%s' cancelled", self._draft.item_id)
        self.reset()
        return self._outcome()

    def reset(self) -> None:
        """Return to ``IDLE`` and forget the current item and draft."""

        self._state = SaleState.IDLE
        self._item = None
        self._draft = None
        self._error = None
        self._low_stock_acknowledged = False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, code: str) -> EngineOutcome:
        self._transition(SaleState.ITEM_RESOLVING)
        self._item = None
        self._draft = None
        self._error = None
        user_scope = self.session.current_user_scope()

        try:
            item = self.catalog.find_active_item_by_code(code, user_scope=user_scope)
        except Exception:
            log.exception("Catalog lookup failed for code '%s'", code)
            return self._fail(FieldError(ErrorKind.LOOKUP_ERROR, "code", "Error looking up item"))

        if item is None or not item.is_active:
            return self._fail(FieldError(ErrorKind.ITEM_NOT_FOUND, "code", "Item not in system"))

        if not default_price_in_bounds(item):
            log.warning(
                "Item '%s' default price %s is outside its own bounds",
                item.item_id,
                item.sell_price,
            )

        self._item = item
        self._draft = SaleDraft(item_id=item.item_id, unit_price=item.sell_price)
        self._low_stock_acknowledged = False
        self._transition(SaleState.ITEM_PRESENTED)
        log.debug("Presented item '%s' for code '%s'", item.item_id, code)
        return self._outcome()

    def _validate(self, item: ItemRow, draft: SaleDraft) -> Optional[FieldError]:
        if draft.quantity < 1:
            return FieldError(ErrorKind.INVALID_QUANTITY, "quantity", "Quantity must be at least 1.", bound=1)

        price_error = _price_field_error(validate_price(item, draft.unit_price))
        if price_error is not None:
            return price_error

        check = validate_payment(draft.payment)
        if not check.ok:
            return check.error
        draft.payment = check.payment
        return None

    def _persist(self, item: ItemRow, draft: SaleDraft) -> EngineOutcome:
        self._transition(SaleState.PERSISTING)
        payment, notices = apply_submission_policy(draft.payment)
        transaction_code, phone, notes = payment_columns(payment)
        record = build_sale_transaction(
            user_scope=self.session.current_user_scope(),
            item_id=item.item_id,
            quantity=draft.quantity,
            unit_price=draft.unit_price,
            payment_method=payment.method.value,
            payment_status=derive_payment_status(payment).value,
            transaction_code=transaction_code,
            phone=phone,
            notes=notes,
        )

        try:
            transaction_id = self.ledger.insert_sale_transaction(record)
        except Exception as exc:
            log.exception("Ledger insert failed for item '%s'", item.item_id)
            self._error = FieldError(ErrorKind.PERSIST_ERROR, None, f"Could not record sale: {exc}")
            self._transition(SaleState.FAILED)
            return self._outcome(notices=tuple(notices))

        if transaction_id and transaction_id != record.transaction_id:
            record = replace(record, transaction_id=transaction_id)

        self._transition(SaleState.STOCK_ADJUSTING)
        warnings = []
        remaining: Optional[int] = None
        try:
            remaining = self.catalog.decrement_stock(item.item_id, draft.quantity).quantity_in_stock
        except Exception as exc:
            log.exception("Stock update failed after sale '%s'", record.transaction_id)
            warnings.append(
                FieldError(
                    ErrorKind.STOCK_ADJUST_ERROR,
                    None,
                    f"Sale recorded. Stock update failed: {exc}",
                )
            )

        self._transition(SaleState.COMPLETE)
        summary = SaleSummary(
            transaction_id=record.transaction_id,
            item_id=item.item_id,
            item_title=item.title,
            quantity=record.quantity,
            unit_price=record.unit_price,
            total_amount=record.total_amount,
            payment_method=record.payment_method,
            remaining_stock=remaining,
        )
        self._notify(SaleCompleted(summary=summary))
        if remaining is not None and remaining <= item.reorder_point:
            self._notify(LowStockAlert(item_id=item.item_id, item_title=item.title, remaining=remaining))

        outcome = EngineOutcome(
            state=SaleState.COMPLETE,
            item=item,
            transaction=record,
            summary=summary,
            notices=tuple(notices),
            warnings=tuple(warnings),
        )
        self.reset()
        return outcome

    def _notify(self, event: NotificationEvent) -> None:
        if self.notifications is None:
            return
        try:
            self.notifications.notify(event)
        except Exception:
            log.warning("Notification sink failed for %r", event, exc_info=True)

    def _fail(self, error: FieldError) -> EngineOutcome:
        log.info("Sale engine failed: %s (%s)", error.kind.value, error.message)
        self._error = error
        self._transition(SaleState.FAILED)
        return self._outcome()

    def _transition(self, target: SaleState) -> None:
        allowed = ALLOWED_TRANSITIONS.get(self._state, frozenset())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Sale engine cannot move from '{self._state.value}' to '{target.value}'"
            )
        log.debug("Sale engine %s -> %s", self._state.value, target.value)
        self._state = target

    def _require_state(self, expected: SaleState) -> None:
        if self._state is not expected:
            raise InvalidTransitionError(
                f"Operation requires state '{expected.value}', engine is '{self._state.value}'"
            )

    def _require_editable(self) -> None:
        if self._state is SaleState.ITEM_PRESENTED:
            return
        if self._state is SaleState.FAILED and self._draft is not None:
            return
        raise InvalidTransitionError(f"No sale draft is open (state '{self._state.value}')")

    def _require_draft(self) -> Tuple[ItemRow, SaleDraft]:
        if self._item is None or self._draft is None:
            raise InvalidTransitionError("No sale draft is open")
        return self._item, self._draft

    def _outcome(self, *, notices: Tuple[str, ...] = ()) -> EngineOutcome:
        low_stock = None
        if self._state is SaleState.LOW_STOCK_CONFIRMING and self._item is not None and self._draft is not None:
            low_stock = LowStockWarning(in_stock=self._item.quantity_in_stock, requested=self._draft.quantity)
        return EngineOutcome(
            state=self._state,
            draft=self.draft,
            item=self._item,
            error=self._error,
            low_stock=low_stock,
            notices=notices,
        )


def _price_field_error(check: PriceCheck) -> Optional[FieldError]:
    if check.ok or check.reason is None:
        return None
    return FieldError(
        kind=check.reason,
        field="unit_price",
        message=price_error_message(check) or "Price out of bounds",
        bound=check.bound,
    )


def _require_int(value: object, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
