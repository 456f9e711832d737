"""Identifier resolution for scanned and typed item codes.

Two code shapes reach the till:

* the legacy URI printed on early QR labels, ``<scheme>://item/<code>``;
* the current bare SKU, ``XX-####-AAA-#####`` (prefix letters, a
  date-derived segment, an alphanumeric segment and a numeric sequence).

Items created before the label migration can carry either value in either
catalog column, which is why lookups must try both the SKU and the legacy
code (see :func:`stocksnap_pos.core_logic.find_active_item_by_code`).
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from . import log


LEGACY_URI_PATTERN = re.compile(
    r"^(?P<scheme>[A-Za-z][A-Za-z0-9+.\-]*)://item/(?P<code>.+)$"
)
CURRENT_CODE_PATTERN = re.compile(r"^[A-Z]{2}-\d{4}-[A-Z0-9]{3}-\d{5}$")


def parse_legacy_uri(raw: str, *, legacy_schemes: Optional[Iterable[str]] = None) -> Optional[str]:
    """Extract the code from a legacy ``<scheme>://item/<code>`` payload.

    Args:
        raw (str): Raw payload, surrounding whitespace allowed.
        legacy_schemes (Iterable[str] | None): Accepted schemes compared
            case-insensitively. ``None`` or empty accepts any scheme.

    Returns:
        str | None: The stripped code, case preserved, or ``None`` when the
            payload is not a legacy URI for an accepted scheme.
    """

    match = LEGACY_URI_PATTERN.match(raw.strip())
    if match is None:
        return None

    allowed = {scheme.lower() for scheme in legacy_schemes or ()}
    if allowed and match.group("scheme").lower() not in allowed:
        log.debug("Ignoring legacy URI with unsupported scheme '%s'", match.group("scheme"))
        return None

    code = match.group("code").strip()
    return code or None


def parse_current_code(raw: str) -> Optional[str]:
    """Return the upper-cased SKU when ``raw`` matches the current format."""

    candidate = raw.strip().upper()
    if CURRENT_CODE_PATTERN.match(candidate):
        return candidate
    return None


def resolve_scan_payload(raw: Optional[str], *, legacy_schemes: Optional[Iterable[str]] = None) -> Optional[str]:
    """Resolve a camera payload into a canonical lookup code.

    Anything that is neither shape is "not a code" and yields ``None``; the
    scanner sees plenty of unrelated QR codes and they are not errors.
    """

    if not raw:
        return None

    code = parse_legacy_uri(raw, legacy_schemes=legacy_schemes)
    if code is not None:
        return code
    return parse_current_code(raw)


def normalize_manual_code(raw: Optional[str], *, legacy_schemes: Optional[Iterable[str]] = None) -> Optional[str]:
    """Normalize a code typed by the operator.

    Recognised shapes are canonicalised like scans. Other non-empty text is
    looked up literally because the operator entered it on purpose.
    """

    if raw is None:
        return None
    stripped = raw.strip()
    if not stripped:
        return None

    resolved = resolve_scan_payload(stripped, legacy_schemes=legacy_schemes)
    return resolved if resolved is not None else stripped


def is_item_code(raw: Optional[str], *, legacy_schemes: Optional[Iterable[str]] = None) -> bool:
    return resolve_scan_payload(raw, legacy_schemes=legacy_schemes) is not None
