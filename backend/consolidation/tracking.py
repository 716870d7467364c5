"""Identifiers printed on labels and shown to buyers."""

import re
import uuid

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def short_order_id(order_id: uuid.UUID | str) -> str:
    """First 8 hex chars of the order UUID, upper-cased (what support staff read out)."""
    return str(order_id).replace("-", "")[:8].upper()


def _clean(code: str | None, fallback: str) -> str:
    cleaned = _NON_ALNUM.sub("", (code or "").upper())
    return cleaned or fallback


def generate_hybrid_tracking_id(
    department_code: str | None,
    commune_code: str | None,
    po_number: str,
    china_tracking_number: str,
    order_ref: str,
) -> str:
    """
    [departmentCode][communeCode]-[poNumber]-[trackingNumber]-[orderRef]

    Orders without a destination get XX placeholders for each missing code.
    """
    destination = f"{_clean(department_code, 'XX')}{_clean(commune_code, 'XX')}"
    return f"{destination}-{po_number}-{china_tracking_number.strip()}-{order_ref}"


def pickup_qr_code(order_ref: str, token: str) -> str:
    """PICKUP-[orderRef]-[token], upper-cased so scanners and typed codes compare equal."""
    return f"PICKUP-{order_ref}-{token}".upper()


def normalize_qr_code(code: str | None) -> str:
    return (code or "").strip().upper()
