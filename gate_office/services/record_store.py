from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from gate_office.models import EntryStatus, EntryType, PurchaseOrderStatus, StepKind


@dataclass(frozen=True)
class SessionRecord:
    id: int
    entry_type: EntryType
    status: EntryStatus


@dataclass(frozen=True)
class PurchaseOrderItem:
    item_code: str
    item_name: str
    ordered_qty: Decimal
    previously_received_qty: Decimal
    remaining_qty: Decimal
    uom: str = 'NOS'


@dataclass(frozen=True)
class PurchaseOrderRecord:
    po_number: str
    supplier_code: str
    supplier_name: str
    items: list[PurchaseOrderItem] = field(default_factory=list)
    status: PurchaseOrderStatus = PurchaseOrderStatus.OPEN


class RecordStore(Protocol):
    """Create/read/update access to gate entries and their step records.

    Implementations raise NotFoundError, ValidationError or ServerError from
    gate_office.exceptions; nothing else is part of the contract.
    """

    def create_session(self, *, entry_type: EntryType, payload: dict[str, Any]) -> SessionRecord: ...

    def fetch_session(self, *, session_id: int) -> SessionRecord: ...

    def fetch_step_record(self, *, session_id: int, step_kind: StepKind) -> dict[str, Any]: ...

    def create_step_record(self, *, session_id: int, step_kind: StepKind, payload: dict[str, Any]) -> dict[str, Any]: ...

    def update_step_record(self, *, session_id: int, step_kind: StepKind, payload: dict[str, Any]) -> dict[str, Any]: ...

    def fetch_purchase_orders(self, *, supplier_code: str) -> list[PurchaseOrderRecord]: ...

    def fetch_purchase_order(self, *, po_number: str) -> PurchaseOrderRecord: ...

    def complete_session(self, *, session_id: int) -> SessionRecord: ...

    def cancel_session(self, *, session_id: int) -> SessionRecord: ...


def _decimal(value: Any) -> Decimal:
    return Decimal(str(value)) if value not in (None, '') else Decimal('0')


def session_from_row(row: dict[str, Any]) -> SessionRecord:
    return SessionRecord(id=int(row['id']), entry_type=EntryType(row['entry_type']), status=EntryStatus(row['status']))


def purchase_order_from_row(row: dict[str, Any]) -> PurchaseOrderRecord:
    return PurchaseOrderRecord(
        po_number=row['po_number'],
        supplier_code=row['supplier_code'],
        supplier_name=row.get('supplier_name') or '',
        status=PurchaseOrderStatus(row.get('status') or PurchaseOrderStatus.OPEN.value),
        items=[
            PurchaseOrderItem(
                item_code=item.get('po_item_code') or '',
                item_name=item.get('item_name') or '',
                ordered_qty=_decimal(item.get('ordered_qty')),
                previously_received_qty=_decimal(item.get('received_qty')),
                remaining_qty=_decimal(item.get('remaining_qty')),
                uom=item.get('uom') or 'NOS',
            )
            for item in row.get('items') or []
        ],
    )


def purchase_orders_from_rows(rows: list[dict[str, Any]]) -> list[PurchaseOrderRecord]:
    return [purchase_order_from_row(row) for row in rows]
