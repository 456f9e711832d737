"""Payment method validation for sale drafts.

A payment is one variant of a closed union, each carrying exactly the fields
its method needs::

    Cash | PushToPay(phone) | CodeEntry(code) | Other(note)

Validation is pure and is re-run at confirm time. Push-to-pay has no gateway
behind it yet; :func:`apply_submission_policy` records such sales as cash and
hands back a notice for the operator.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import ClassVar, List, Optional, Tuple, Union

from . import log
from .constants import PUSH_FALLBACK_NOTICE, ErrorKind, PaymentMethod, PaymentStatus
from .core_logic import BusinessRuleViolation, FieldError


PHONE_PATTERN = re.compile(r"^\+254[17]\d{8}$")
TRANSACTION_CODE_PATTERN = re.compile(r"^[A-Z0-9]{10}$")
_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class Cash:
    method: ClassVar[PaymentMethod] = PaymentMethod.CASH


@dataclass(frozen=True)
class PushToPay:
    """Push-to-pay request sent to the customer's phone."""

    phone: str
    method: ClassVar[PaymentMethod] = PaymentMethod.MOBILE_MONEY_PUSH


@dataclass(frozen=True)
class CodeEntry:
    """Mobile money paid out-of-band; the operator types the receipt code."""

    code: str
    method: ClassVar[PaymentMethod] = PaymentMethod.MOBILE_MONEY_CODE


@dataclass(frozen=True)
class Other:
    note: Optional[str] = None
    method: ClassVar[PaymentMethod] = PaymentMethod.OTHER


Payment = Union[Cash, PushToPay, CodeEntry, Other]
PAYMENT_TYPES: Tuple[type, ...] = (Cash, PushToPay, CodeEntry, Other)


@dataclass(frozen=True)
class PaymentCheck:
    """Outcome of :func:`validate_payment`.

    ``payment`` holds the normalized variant when ``ok`` is true and the
    original input otherwise.
    """

    ok: bool
    payment: Payment
    error: Optional[FieldError] = None


def normalize_phone(raw: str) -> str:
    """Normalize a local mobile number to ``+254`` form.

    Accepts ``0712345678``, ``712345678``, ``254712345678`` and
    ``+254712345678``; spaces, dashes and brackets are ignored. Unknown shapes
    are returned as ``+<digits>`` so that validation can reject them.
    """

    digits = _NON_DIGITS.sub("", raw)
    if digits.startswith("254") and len(digits) == 12:
        return f"+{digits}"
    if digits.startswith("0") and len(digits) == 10:
        return f"+254{digits[1:]}"
    if len(digits) == 9:
        return f"+254{digits}"
    return f"+{digits}"


def is_valid_phone(raw: str) -> bool:
    return bool(PHONE_PATTERN.match(normalize_phone(raw)))


def normalize_transaction_code(raw: str) -> str:
    return raw.strip().upper()


def is_valid_transaction_code(raw: str) -> bool:
    return bool(TRANSACTION_CODE_PATTERN.match(normalize_transaction_code(raw)))


def validate_payment(payment: Payment) -> PaymentCheck:
    """Validate and normalize the method-specific fields of ``payment``.

    Raises:
        BusinessRuleViolation: If ``payment`` is not one of the known variants.
    """

    if isinstance(payment, Cash):
        return PaymentCheck(ok=True, payment=payment)

    if isinstance(payment, PushToPay):
        if not is_valid_phone(payment.phone):
            log.warning("Rejected push-to-pay phone number '%s'", payment.phone)
            return PaymentCheck(
                ok=False,
                payment=payment,
                error=FieldError(
                    kind=ErrorKind.INVALID_PHONE,
                    field="phone",
                    message="Enter a valid mobile number, e.g. 0712 345 678.",
                ),
            )
        return PaymentCheck(ok=True, payment=PushToPay(phone=normalize_phone(payment.phone)))

    if isinstance(payment, CodeEntry):
        if not is_valid_transaction_code(payment.code):
            log.warning("Rejected mobile money transaction code '%s'", payment.code)
            return PaymentCheck(
                ok=False,
                payment=payment,
                error=FieldError(
                    kind=ErrorKind.INVALID_CODE,
                    field="transaction_code",
                    message="Transaction code must be 10 letters or digits.",
                ),
            )
        return PaymentCheck(ok=True, payment=CodeEntry(code=normalize_transaction_code(payment.code)))

    if isinstance(payment, Other):
        note = payment.note.strip() if payment.note else None
        return PaymentCheck(ok=True, payment=Other(note=note or None))

    log.error("Unsupported payment variant provided: %r", payment)
    raise BusinessRuleViolation(f"Unsupported payment variant: {payment!r}")


def derive_payment_status(payment: Payment) -> PaymentStatus:
    """Return the payment status a sale with ``payment`` is recorded under.

    Push-to-pay would stay pending until the gateway confirmed it. Codes are
    treated as proof of a completed payment and reconciled out-of-band.
    """

    if isinstance(payment, PushToPay):
        return PaymentStatus.PENDING
    return PaymentStatus.CONFIRMED


def apply_submission_policy(payment: Payment) -> Tuple[Payment, List[str]]:
    """Apply the push-to-pay fallback at submission time.

    Returns:
        tuple[Payment, list[str]]: The payment to persist and any non-blocking
            notices for the operator. Push-to-pay becomes :class:`Cash` and the
            phone number is dropped.
    """

    if isinstance(payment, PushToPay):
        log.info("Push-to-pay unavailable; recording sale as cash")
        return Cash(), [PUSH_FALLBACK_NOTICE]
    return payment, []


def payment_columns(payment: Payment) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Return ``(transaction_code, phone, notes)`` for the ledger row."""

    if isinstance(payment, CodeEntry):
        return payment.code, None, None
    if isinstance(payment, PushToPay):
        return None, payment.phone, None
    if isinstance(payment, Other):
        return None, None, payment.note
    return None, None, None


def build_payment(
    method: PaymentMethod,
    *,
    phone: Optional[str] = None,
    code: Optional[str] = None,
    note: Optional[str] = None,
) -> Payment:
    """Assemble the variant for ``method`` from loosely supplied form fields.

    Fields that do not belong to ``method`` are dropped, so an invalid
    combination cannot be constructed.
    """

    method = PaymentMethod(method)
    if method is PaymentMethod.CASH:
        return Cash()
    if method is PaymentMethod.MOBILE_MONEY_PUSH:
        return PushToPay(phone=phone or "")
    if method is PaymentMethod.MOBILE_MONEY_CODE:
        return CodeEntry(code=code or "")
    return Other(note=note)
