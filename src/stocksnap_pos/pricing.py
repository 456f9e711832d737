"""Price bounds enforced on every sale.

Sellers may type any price, but the floor is a hard block with no override,
and the optional ceiling is enforced the same way. The check runs while the
operator edits the draft and again at confirm time, because the item can
change between the two.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from . import log
from .constants import CURRENCY_LABEL, ErrorKind
from .data_manager import ItemRow


@dataclass(frozen=True)
class PriceCheck:
    """Outcome of :func:`validate_price`."""

    ok: bool
    reason: Optional[ErrorKind] = None
    bound: Optional[int] = None


PRICE_OK = PriceCheck(ok=True)


def validate_price(item: ItemRow, proposed_price: int) -> PriceCheck:
    """Validate ``proposed_price`` against the item's floor and ceiling.

    Args:
        item (ItemRow): Item being sold.
        proposed_price (int): Unit price in minor currency units.

    Returns:
        PriceCheck: ``ok`` on the closed interval ``[floor, ceiling]``;
            otherwise ``BELOW_FLOOR`` or ``ABOVE_CEILING`` with the violated
            bound.
    """

    if proposed_price < item.sell_price_floor:
        log.warning(
            "Price %s below floor %s for item '%s'",
            proposed_price,
            item.sell_price_floor,
            item.item_id,
        )
        return PriceCheck(ok=False, reason=ErrorKind.BELOW_FLOOR, bound=item.sell_price_floor)

    ceiling = item.sell_price_ceiling
    if ceiling is not None and proposed_price > ceiling:
        log.warning(
            "Price %s above ceiling %s for item '%s'",
            proposed_price,
            ceiling,
            item.item_id,
        )
        return PriceCheck(ok=False, reason=ErrorKind.ABOVE_CEILING, bound=ceiling)

    return PRICE_OK


def default_price_in_bounds(item: ItemRow) -> bool:
    """Report whether the item's own default price respects its bounds."""

    return validate_price(item, item.sell_price).ok


def format_amount(amount: int) -> str:
    return f"{CURRENCY_LABEL} {amount:,}"


def price_error_message(check: PriceCheck) -> Optional[str]:
    """Render the operator-facing message for a failed :class:`PriceCheck`."""

    if check.ok or check.bound is None:
        return None
    if check.reason is ErrorKind.BELOW_FLOOR:
        return f"Min price: {format_amount(check.bound)}"
    return f"Max price: {format_amount(check.bound)}"
