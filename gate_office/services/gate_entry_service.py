from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from gate_office.exceptions import NotFoundError, ValidationError
from gate_office.logging_config import get_logger
from gate_office.models import (
    EntryStatus,
    EntryType,
    GateEntry,
    GateEntryStep,
    PoReceipt,
    PoReceiptLine,
    PurchaseOrder,
    PurchaseOrderStatus,
    StepKind,
)
from gate_office.services.entry_flows import get_flow

logger = get_logger('services.gate_entry_service')

REQUIRED_FIELDS: dict[StepKind, dict[str, str]] = {
    StepKind.VEHICLE_DRIVER: {
        'vehicle_number': 'Vehicle number is required',
        'driver_name': 'Driver name is required',
    },
    StepKind.SECURITY_CHECK: {
        'inspected_by_name': 'Inspector name is required',
        'seal_no_before': 'Seal number is required',
    },
    StepKind.WEIGHMENT: {
        'gross_weight': 'Gross weight is required',
        'tare_weight': 'Tare weight is required',
    },
    StepKind.QUALITY_CONTROL: {'qc_status': 'QC status is required'},
    StepKind.DAILY_NEED: {'category': 'Category is required', 'description': 'Description is required'},
    StepKind.MAINTENANCE: {'category': 'Category is required', 'description': 'Description is required'},
    StepKind.CONSTRUCTION: {'category': 'Category is required', 'description': 'Description is required'},
    StepKind.PERSON_ENTRY: {'person_name': 'Person name is required', 'person_type': 'Person type is required'},
    StepKind.ATTACHMENTS: {},
}

QC_STATUSES = {'ACCEPTED', 'REJECTED', 'ON_HOLD'}
PERSON_TYPES = {'VISITOR', 'LABOUR'}
CLOSED_ENTRY_STATUSES = {EntryStatus.COMPLETED, EntryStatus.CANCELLED}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _parse_qty(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def _jsonable(payload: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(payload, default=str))


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _qty_text(value: Decimal) -> str:
    return format(value.normalize(), 'f')


def validate_step_payload(step_kind: StepKind, payload: dict[str, Any]) -> dict[str, str]:
    errors: dict[str, str] = {}
    for name, message in REQUIRED_FIELDS.get(step_kind, {}).items():
        if _is_blank(payload.get(name)):
            errors[name] = message

    if step_kind == StepKind.WEIGHMENT and not errors:
        gross = _parse_qty(payload.get('gross_weight'))
        tare = _parse_qty(payload.get('tare_weight'))
        if gross is None or gross < 0:
            errors['gross_weight'] = 'Gross weight must be a non-negative number'
        if tare is None or tare < 0:
            errors['tare_weight'] = 'Tare weight must be a non-negative number'
        if not errors and gross < tare:
            errors['gross_weight'] = 'Gross weight cannot be less than tare weight'
    elif step_kind == StepKind.QUALITY_CONTROL and 'qc_status' not in errors:
        if str(payload.get('qc_status')).upper() not in QC_STATUSES:
            errors['qc_status'] = 'QC status must be ACCEPTED, REJECTED or ON_HOLD'
    elif step_kind == StepKind.PERSON_ENTRY and 'person_type' not in errors:
        if str(payload.get('person_type')).upper() not in PERSON_TYPES:
            errors['person_type'] = 'Person type must be VISITOR or LABOUR'
    elif step_kind == StepKind.ATTACHMENTS:
        if not isinstance(payload.get('files'), list):
            errors['files'] = 'Attachments must be a list of files'
    return errors


def _get_entry(db: Session, session_id: int) -> GateEntry:
    entry = db.execute(select(GateEntry).where(GateEntry.id == session_id)).scalar_one_or_none()
    if not entry:
        raise NotFoundError('Gate entry not found')
    return entry


def _writable_entry(db: Session, session_id: int) -> GateEntry:
    entry = _get_entry(db, session_id)
    if entry.status in CLOSED_ENTRY_STATUSES:
        raise ValidationError({'general': f'Gate entry is {entry.status.value.lower()} and cannot be edited'})
    return entry


def _check_step_in_flow(entry: GateEntry, step_kind: StepKind) -> None:
    if step_kind not in get_flow(entry.entry_type).steps:
        raise ValidationError({'general': f'{step_kind.value} is not a step of {entry.entry_type.value} entries'})


def _touch(entry: GateEntry) -> None:
    entry.updated_at = _now()
    if entry.status == EntryStatus.DRAFT:
        entry.status = EntryStatus.IN_PROGRESS


def serialize_entry(entry: GateEntry) -> dict[str, Any]:
    return {
        'id': entry.id,
        'entry_type': entry.entry_type.value,
        'status': entry.status.value,
        'completed_at': entry.completed_at.isoformat() if entry.completed_at else None,
    }


def _get_step(db: Session, session_id: int, step_kind: StepKind) -> GateEntryStep | None:
    return db.execute(
        select(GateEntryStep).where(GateEntryStep.gate_entry_id == session_id, GateEntryStep.step_kind == step_kind)
    ).scalar_one_or_none()


def _serialize_step(step: GateEntryStep) -> dict[str, Any]:
    return {'id': step.id, 'step_kind': step.step_kind.value, **step.payload}


def create_gate_entry(db: Session, *, entry_type: EntryType, payload: dict[str, Any]) -> GateEntry:
    flow = get_flow(entry_type)
    first_step = flow.steps[0]
    errors = validate_step_payload(first_step, payload)
    if errors:
        raise ValidationError(errors)

    entry = GateEntry(entry_type=flow.entry_type, status=EntryStatus.DRAFT)
    db.add(entry)
    db.flush()
    db.add(GateEntryStep(gate_entry_id=entry.id, step_kind=first_step, payload=_jsonable(payload)))
    db.flush()
    logger.info('gate_entry_created', extra={'session_id': entry.id, 'entry_type': flow.entry_type.value})
    return entry


def get_gate_entry(db: Session, *, session_id: int) -> GateEntry:
    return _get_entry(db, session_id)


def get_step_record(db: Session, *, session_id: int, step_kind: StepKind) -> dict[str, Any]:
    entry = _get_entry(db, session_id)
    if step_kind == StepKind.REVIEW:
        return full_view(db, entry=entry)
    if step_kind == StepKind.PO_RECEIPT:
        receipts = _receipts_for_entry(db, session_id)
        if not receipts:
            raise NotFoundError('PO receipts not found for this gate entry')
        return {'receipts': [_serialize_receipt(receipt) for receipt in receipts]}
    step = _get_step(db, session_id, step_kind)
    if not step:
        raise NotFoundError(f'{step_kind.value} record not found')
    return _serialize_step(step)


def create_step_record(db: Session, *, session_id: int, step_kind: StepKind, payload: dict[str, Any]) -> dict[str, Any]:
    entry = _writable_entry(db, session_id)
    _check_step_in_flow(entry, step_kind)
    if step_kind == StepKind.REVIEW:
        raise ValidationError({'general': 'The review step cannot be written'})
    if step_kind == StepKind.PO_RECEIPT:
        receipt = _save_receipt(db, entry=entry, payload=payload, existing=None)
        _touch(entry)
        db.flush()
        return _serialize_receipt(receipt)

    errors = validate_step_payload(step_kind, payload)
    if errors:
        raise ValidationError(errors)
    if _get_step(db, session_id, step_kind):
        raise ValidationError({'general': f'{step_kind.value} record already exists for this gate entry'})

    step = GateEntryStep(gate_entry_id=entry.id, step_kind=step_kind, payload=_jsonable(payload))
    db.add(step)
    _touch(entry)
    db.flush()
    logger.info('step_record_created', extra={'session_id': entry.id, 'step_kind': step_kind.value})
    return _serialize_step(step)


def update_step_record(db: Session, *, session_id: int, step_kind: StepKind, payload: dict[str, Any]) -> dict[str, Any]:
    entry = _writable_entry(db, session_id)
    _check_step_in_flow(entry, step_kind)
    if step_kind == StepKind.REVIEW:
        raise ValidationError({'general': 'The review step cannot be written'})
    if step_kind == StepKind.PO_RECEIPT:
        existing = _find_receipt(db, entry=entry, payload=payload)
        receipt = _save_receipt(db, entry=entry, payload=payload, existing=existing)
        _touch(entry)
        db.flush()
        return _serialize_receipt(receipt)

    step = _get_step(db, session_id, step_kind)
    if not step:
        raise NotFoundError(f'{step_kind.value} record not found')
    errors = validate_step_payload(step_kind, payload)
    if errors:
        raise ValidationError(errors)
    step.payload = _jsonable(payload)
    step.updated_at = _now()
    _touch(entry)
    db.flush()
    logger.info('step_record_updated', extra={'session_id': entry.id, 'step_kind': step_kind.value})
    return _serialize_step(step)


def complete_gate_entry(db: Session, *, session_id: int) -> GateEntry:
    entry = _get_entry(db, session_id)
    if entry.status == EntryStatus.COMPLETED:
        return entry
    if entry.status == EntryStatus.CANCELLED:
        raise ValidationError({'general': 'Gate entry is cancelled and cannot be completed'})

    errors: dict[str, str] = {}
    for step_kind in get_flow(entry.entry_type).recorded_steps():
        if step_kind == StepKind.ATTACHMENTS:
            continue
        if step_kind == StepKind.PO_RECEIPT:
            present = bool(_receipts_for_entry(db, session_id))
        else:
            present = _get_step(db, session_id, step_kind) is not None
        if not present:
            errors[step_kind.value] = f'{step_kind.value} data not found. Please complete it first.'
    if errors:
        raise ValidationError(errors)

    entry.status = EntryStatus.COMPLETED
    entry.completed_at = _now()
    entry.updated_at = entry.completed_at
    db.flush()
    logger.info('gate_entry_completed', extra={'session_id': entry.id})
    return entry


def cancel_gate_entry(db: Session, *, session_id: int) -> GateEntry:
    entry = _get_entry(db, session_id)
    if entry.status == EntryStatus.COMPLETED:
        raise ValidationError({'general': 'Completed gate entries cannot be cancelled'})
    entry.status = EntryStatus.CANCELLED
    entry.updated_at = _now()
    db.flush()
    logger.info('gate_entry_cancelled', extra={'session_id': entry.id})
    return entry


def full_view(db: Session, *, entry: GateEntry) -> dict[str, Any]:
    steps: dict[str, Any] = {}
    for step in db.execute(select(GateEntryStep).where(GateEntryStep.gate_entry_id == entry.id)).scalars().all():
        steps[step.step_kind.value] = _serialize_step(step)
    receipts = _receipts_for_entry(db, entry.id)
    if receipts:
        steps[StepKind.PO_RECEIPT.value] = {'receipts': [_serialize_receipt(receipt) for receipt in receipts]}
    return {**serialize_entry(entry), 'steps': steps}


def _serialize_order(order: PurchaseOrder) -> dict[str, Any]:
    return {
        'po_number': order.po_number,
        'supplier_code': order.supplier_code,
        'supplier_name': order.supplier_name,
        'status': order.status.value,
        'items': [
            {
                'po_item_code': line.po_item_code,
                'item_name': line.item_name,
                'ordered_qty': _qty_text(line.ordered_qty),
                'received_qty': _qty_text(line.received_qty_total),
                'remaining_qty': _qty_text(max(line.ordered_qty - line.received_qty_total, Decimal('0'))),
                'uom': line.uom,
            }
            for line in order.lines
        ],
    }


def list_open_purchase_orders(db: Session, *, supplier_code: str) -> list[dict[str, Any]]:
    code = (supplier_code or '').strip()
    if not code:
        raise ValidationError({'supplier_code': 'Supplier code is required'})
    orders = db.execute(
        select(PurchaseOrder)
        .where(PurchaseOrder.supplier_code == code, PurchaseOrder.status == PurchaseOrderStatus.OPEN)
        .order_by(PurchaseOrder.po_number.asc())
    ).scalars().all()
    return [_serialize_order(order) for order in orders]


def get_purchase_order(db: Session, *, po_number: str) -> dict[str, Any]:
    """A purchase order by number, open or closed."""
    order = db.execute(
        select(PurchaseOrder).where(PurchaseOrder.po_number == (po_number or '').strip())
    ).scalar_one_or_none()
    if not order:
        raise NotFoundError(f'Purchase order {po_number} not found')
    return _serialize_order(order)


def _receipts_for_entry(db: Session, session_id: int) -> list[PoReceipt]:
    return list(
        db.execute(select(PoReceipt).where(PoReceipt.gate_entry_id == session_id).order_by(PoReceipt.id.asc()))
        .scalars()
        .all()
    )


def _serialize_receipt(receipt: PoReceipt) -> dict[str, Any]:
    return {
        'id': receipt.id,
        'po_number': receipt.purchase_order.po_number,
        'supplier_code': receipt.supplier_code,
        'supplier_name': receipt.supplier_name,
        'items': [
            {
                'po_item_code': line.purchase_order_line.po_item_code,
                'item_name': line.purchase_order_line.item_name,
                'ordered_qty': _qty_text(line.ordered_qty),
                'received_qty': _qty_text(line.received_qty),
                'uom': line.purchase_order_line.uom,
            }
            for line in receipt.lines
        ],
    }


def _find_receipt(db: Session, *, entry: GateEntry, payload: dict[str, Any]) -> PoReceipt:
    receipt_id = payload.get('receipt_id')
    query = select(PoReceipt).where(PoReceipt.gate_entry_id == entry.id)
    if receipt_id is not None:
        query = query.where(PoReceipt.id == receipt_id)
    else:
        query = query.join(PurchaseOrder, PurchaseOrder.id == PoReceipt.purchase_order_id).where(
            PurchaseOrder.po_number == (payload.get('po_number') or '')
        )
    receipt = db.execute(query).scalar_one_or_none()
    if not receipt:
        raise NotFoundError('PO receipt not found')
    return receipt


def _save_receipt(
    db: Session,
    *,
    entry: GateEntry,
    payload: dict[str, Any],
    existing: PoReceipt | None,
) -> PoReceipt:
    errors: dict[str, str] = {}
    po_number = (payload.get('po_number') or '').strip()
    supplier_code = (payload.get('supplier_code') or '').strip()
    supplier_name = (payload.get('supplier_name') or '').strip()
    if not po_number:
        errors['po_number'] = 'PO number is required'
    if not supplier_code:
        errors['supplier_code'] = 'Supplier code is required'
    if not supplier_name:
        errors['supplier_name'] = 'Supplier name is required'
    if errors:
        raise ValidationError(errors)

    order = db.execute(select(PurchaseOrder).where(PurchaseOrder.po_number == po_number)).scalar_one_or_none()
    if not order or order.supplier_code != supplier_code:
        raise ValidationError({'po_number': f'Purchase order {po_number} not found for supplier {supplier_code}'})
    if existing is None and order.status != PurchaseOrderStatus.OPEN:
        raise ValidationError({'po_number': f'Purchase order {po_number} is closed'})
    if existing is not None and existing.purchase_order_id != order.id:
        raise ValidationError({'po_number': 'A saved receipt cannot be moved to another purchase order'})
    if existing is None:
        duplicate = db.execute(
            select(PoReceipt.id).where(PoReceipt.gate_entry_id == entry.id, PoReceipt.purchase_order_id == order.id)
        ).scalar_one_or_none()
        if duplicate:
            raise ValidationError({'general': f'A receipt for {po_number} already exists on this gate entry'})

    lines_by_code = {line.po_item_code: line for line in order.lines}
    received_by_code: dict[str, Decimal] = {}
    for item in payload.get('items') or []:
        code = (item.get('po_item_code') or '').strip()
        qty = _parse_qty(item.get('received_qty'))
        if code not in lines_by_code:
            errors[f'item_{code}'] = f'Item {code} is not on purchase order {po_number}'
        elif qty is None or qty < 0:
            errors[f'item_{code}'] = 'Received quantity must be a non-negative number'
        elif qty > 0:
            received_by_code[code] = received_by_code.get(code, Decimal('0')) + qty
    if not errors and not received_by_code:
        errors['items'] = 'Please enter received quantities for at least one item'
    if errors:
        raise ValidationError(errors)

    if existing is not None:
        for line in existing.lines:
            line.purchase_order_line.received_qty_total -= line.received_qty
        existing.lines.clear()
        db.flush()
        receipt = existing
        receipt.supplier_name = supplier_name
        receipt.updated_at = _now()
    else:
        receipt = PoReceipt(
            gate_entry_id=entry.id,
            purchase_order_id=order.id,
            supplier_code=supplier_code,
            supplier_name=supplier_name,
        )
        db.add(receipt)

    # Over-receipt against the remaining quantity is accepted.
    for code, qty in received_by_code.items():
        po_line = lines_by_code[code]
        receipt.lines.append(
            PoReceiptLine(purchase_order_line=po_line, ordered_qty=po_line.ordered_qty, received_qty=qty)
        )
        po_line.received_qty_total += qty

    fully_received = all(line.received_qty_total >= line.ordered_qty for line in order.lines)
    order.status = PurchaseOrderStatus.CLOSED if fully_received else PurchaseOrderStatus.OPEN
    db.flush()
    logger.info(
        'po_receipt_saved',
        extra={'session_id': entry.id, 'po_number': po_number, 'updated': existing is not None, 'po_status': order.status.value},
    )
    return receipt
