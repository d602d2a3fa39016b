from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from gate_office.exceptions import MalformedLineError
from gate_office.services.record_store import PurchaseOrderRecord

ZERO = Decimal('0')


def to_quantity(value: Any) -> Decimal:
    """Parse a user-entered quantity. Blank or non-numeric input counts as zero."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = Decimal(str(value))
    else:
        raw = str(value).strip()
        if raw == '':
            return ZERO
        try:
            parsed = Decimal(raw)
        except InvalidOperation:
            return ZERO
    if not parsed.is_finite():
        return ZERO
    return parsed


def compute_remaining(initial_remaining_qty: Any, receiving_now_qty: Any) -> Decimal:
    initial = max(to_quantity(initial_remaining_qty), ZERO)
    receiving = max(to_quantity(receiving_now_qty), ZERO)
    return max(ZERO, initial - receiving)


@dataclass(frozen=True)
class ReceiptEntry:
    item_code: str
    item_name: str
    ordered_qty: Decimal
    previously_received_qty: Decimal
    initial_remaining_qty: Decimal
    uom: str = 'NOS'
    receiving_now_qty: Decimal = ZERO

    @property
    def remaining_qty(self) -> Decimal:
        return compute_remaining(self.initial_remaining_qty, self.receiving_now_qty)

    def with_receiving_now(self, qty: Any) -> ReceiptEntry:
        return replace(self, receiving_now_qty=to_quantity(qty))


def entries_from_purchase_order(po: PurchaseOrderRecord) -> list[ReceiptEntry]:
    entries: list[ReceiptEntry] = []
    for index, item in enumerate(po.items):
        if not (item.item_code or '').strip():
            raise MalformedLineError(f'Line {index} of {po.po_number} has no item code', index=index)
        entries.append(
            ReceiptEntry(
                item_code=item.item_code,
                item_name=item.item_name,
                ordered_qty=to_quantity(item.ordered_qty),
                previously_received_qty=to_quantity(item.previously_received_qty),
                initial_remaining_qty=max(to_quantity(item.remaining_qty), ZERO),
                uom=item.uom,
            )
        )
    return entries


def has_any_positive_receipt(entries: Iterable[ReceiptEntry]) -> bool:
    return any(to_quantity(entry.receiving_now_qty) > 0 for entry in entries)


def to_submission_payload(entries: Iterable[ReceiptEntry]) -> list[dict[str, Any]]:
    lines: list[dict[str, Any]] = []
    for index, entry in enumerate(entries):
        if not (entry.item_code or '').strip():
            raise MalformedLineError(f'Receipt line {index} has no item code', index=index)
        received = to_quantity(entry.receiving_now_qty)
        # Zero-quantity lines are never persisted.
        if received <= 0:
            continue
        lines.append(
            {
                'po_item_code': entry.item_code,
                'item_name': entry.item_name,
                'ordered_qty': entry.ordered_qty,
                'received_qty': received,
                'uom': entry.uom,
            }
        )
    return lines
