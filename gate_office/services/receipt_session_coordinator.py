from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from gate_office.exceptions import (
    NotFoundError,
    ReceiptFormError,
    ServerError,
    StepActionError,
    StepLockedError,
    ValidationError,
)
from gate_office.logging_config import LogContext, get_logger
from gate_office.models import StepKind
from gate_office.services.quantity_reconciler import (
    ZERO,
    ReceiptEntry,
    entries_from_purchase_order,
    has_any_positive_receipt,
    to_quantity,
    to_submission_payload,
)
from gate_office.services.record_store import PurchaseOrderRecord
from gate_office.services.step_mode_resolver import StepMode

if TYPE_CHECKING:
    from gate_office.services.session_state_machine import SessionStateMachine

logger = get_logger('services.receipt_session_coordinator')

SERVER_ERROR_MESSAGE = 'Cannot save the receipt at the moment. Please try again later.'


def _new_form_id() -> str:
    return uuid4().hex[:12]


@dataclass
class ReceiptForm:
    id: str = field(default_factory=_new_form_id)
    supplier_name: str = ''
    supplier_code: str = ''
    po_number: str | None = None
    entries: list[ReceiptEntry] = field(default_factory=list)
    record_id: int | None = None
    persisted: bool = False
    fill_data: bool = False
    missing_record: bool = False


@dataclass(frozen=True)
class ValidationResult:
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class FormSubmissionStatus:
    form_id: str
    position: int
    status: str
    errors: dict[str, str] = field(default_factory=dict)
    message: str | None = None

    @property
    def failed(self) -> bool:
        return self.status in ('failed', 'pending')

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {'form': self.position, 'status': self.status}
        if self.errors:
            payload['errors'] = dict(self.errors)
        if self.message:
            payload['message'] = self.message
        return payload


class ReceiptSessionCoordinator:
    """Purchase-order receipt forms of one po-receipt step.

    Each form picks its own purchase order and edits its own entries. Forms are
    submitted one at a time in insertion order; a form that was saved is never
    sent again, so a retry after a partial failure resumes at the failed form.
    """

    def __init__(self, machine: SessionStateMachine) -> None:
        self.machine = machine
        self.forms: list[ReceiptForm] = []

    @property
    def _mode(self) -> StepMode:
        return self.machine.resolution.mode

    def _writable(self, form: ReceiptForm) -> bool:
        if self.machine.resolution.blocking or form.persisted or form.missing_record:
            return False
        return self._mode != StepMode.VIEW_LOCKED or form.fill_data

    def get_form(self, form_id: str) -> ReceiptForm:
        for form in self.forms:
            if form.id == form_id:
                return form
        raise ReceiptFormError(f'Unknown receipt form {form_id}', form_id=form_id)

    def _require_writable(self, form_id: str) -> ReceiptForm:
        form = self.get_form(form_id)
        if not self._writable(form):
            raise StepLockedError(f'Receipt form {form_id} is read-only')
        return form

    def on_mode_changed(self) -> None:
        resolution = self.machine.resolution
        if resolution.mode == StepMode.EDIT_ACTIVE:
            for form in self.forms:
                if not form.missing_record:
                    form.persisted = False
        if resolution.editable and not self.forms:
            self.forms.append(ReceiptForm())

    def add_form(self) -> ReceiptForm:
        if self.machine.resolution.blocking:
            raise StepLockedError('Receipt step is blocked until the record loads')
        if self._mode == StepMode.VIEW_LOCKED and not any(form.fill_data for form in self.forms):
            raise StepLockedError('Cannot add a purchase order to a locked receipt step')
        # Under a locked step only fill-data forms are writable.
        form = ReceiptForm(fill_data=self._mode == StepMode.VIEW_LOCKED)
        self.forms.append(form)
        return form

    def remove_form(self, form_id: str) -> None:
        form = self.get_form(form_id)
        if len(self.forms) == 1:
            raise ReceiptFormError('At least one purchase order form is required', form_id=form_id)
        if form.persisted or form.record_id is not None:
            raise StepLockedError(f'Receipt form {form_id} is already saved')
        self.forms.remove(form)

    def request_fill_data(self, form_id: str) -> ReceiptForm:
        form = self.get_form(form_id)
        if not form.missing_record:
            raise StepActionError(f'Receipt form {form_id} has no missing record to fill')
        form.missing_record = False
        form.fill_data = True
        form.persisted = False
        # The saved receipt points at a purchase order the store no longer has.
        form.record_id = None
        form.po_number = None
        form.entries = []
        return form

    def set_supplier(self, form_id: str, *, supplier_code: str | None = None, supplier_name: str | None = None) -> ReceiptForm:
        form = self._require_writable(form_id)
        if supplier_name is not None:
            form.supplier_name = supplier_name
        if supplier_code is not None and supplier_code != form.supplier_code:
            form.supplier_code = supplier_code
            form.po_number = None
            form.entries = []
        return form

    def list_purchase_orders(self, form_id: str) -> list[PurchaseOrderRecord]:
        form = self.get_form(form_id)
        if not form.supplier_code.strip():
            raise ValidationError({f'{form.id}_supplier_code': 'Please enter supplier code'})
        return self.machine.store.fetch_purchase_orders(supplier_code=form.supplier_code.strip())

    def select_purchase_order(self, form_id: str, po: PurchaseOrderRecord) -> ReceiptForm:
        form = self._require_writable(form_id)
        entries = entries_from_purchase_order(po)
        form.po_number = po.po_number
        form.supplier_code = po.supplier_code
        form.supplier_name = po.supplier_name
        form.entries = entries
        return form

    def update_receiving_qty(self, form_id: str, item_code: str, qty: Any) -> ReceiptEntry:
        form = self._require_writable(form_id)
        for index, entry in enumerate(form.entries):
            if entry.item_code == item_code:
                form.entries[index] = entry.with_receiving_now(qty)
                return form.entries[index]
        raise ReceiptFormError(f'Item {item_code} is not on the selected purchase order', form_id=form_id)

    def pending_forms(self) -> list[ReceiptForm]:
        return [form for form in self.forms if self._writable(form)]

    def validate_all(self) -> ValidationResult:
        errors: dict[str, str] = {}
        pending = self.pending_forms()
        if not pending and self.machine.resolution.submit_verb is not None:
            errors['general'] = 'Add at least one purchase order'
        for form in pending:
            if not form.supplier_name.strip():
                errors[f'{form.id}_supplier_name'] = 'Please enter supplier name'
            if not form.supplier_code.strip():
                errors[f'{form.id}_supplier_code'] = 'Please enter supplier code'
            if not form.po_number:
                errors[f'{form.id}_po_number'] = 'Please select a purchase order'
            if not form.entries:
                errors[f'{form.id}_items'] = 'The selected purchase order has no items'
            elif not has_any_positive_receipt(form.entries):
                errors[f'{form.id}_received'] = 'Please enter received quantities for at least one item'
                for entry in form.entries:
                    errors[f'{form.id}_item_{entry.item_code}'] = 'Please enter received quantity'
        return ValidationResult(errors=errors)

    def payload_for(self, form: ReceiptForm) -> dict[str, Any]:
        payload: dict[str, Any] = {
            'po_number': form.po_number,
            'supplier_code': form.supplier_code.strip(),
            'supplier_name': form.supplier_name.strip(),
            'items': to_submission_payload(form.entries),
        }
        if form.record_id is not None:
            payload['receipt_id'] = form.record_id
        return payload

    def submit_all(self) -> list[FormSubmissionStatus]:
        store = self.machine.store
        session_id = self.machine.session_id
        statuses: list[FormSubmissionStatus] = []
        stopped = False

        for position, form in enumerate(self.forms, start=1):
            if form.persisted:
                statuses.append(FormSubmissionStatus(form_id=form.id, position=position, status='ok'))
                continue
            if not self._writable(form):
                statuses.append(FormSubmissionStatus(form_id=form.id, position=position, status='skipped'))
                continue
            if stopped:
                statuses.append(FormSubmissionStatus(form_id=form.id, position=position, status='pending'))
                continue

            payload = self.payload_for(form)
            with LogContext.bind(form_id=form.id):
                try:
                    if form.record_id is not None:
                        record = store.update_step_record(
                            session_id=session_id,
                            step_kind=StepKind.PO_RECEIPT,
                            payload=payload,
                        )
                    else:
                        record = store.create_step_record(
                            session_id=session_id,
                            step_kind=StepKind.PO_RECEIPT,
                            payload=payload,
                        )
                except ValidationError as exc:
                    status = FormSubmissionStatus(
                        form_id=form.id, position=position, status='failed', errors=exc.field_errors
                    )
                except ServerError:
                    status = FormSubmissionStatus(
                        form_id=form.id, position=position, status='failed', message=SERVER_ERROR_MESSAGE
                    )
                except NotFoundError as exc:
                    status = FormSubmissionStatus(
                        form_id=form.id, position=position, status='failed', message=exc.detail
                    )
                else:
                    form.persisted = True
                    form.fill_data = False
                    form.record_id = record.get('id', form.record_id)
                    status = FormSubmissionStatus(form_id=form.id, position=position, status='ok')

                if status.status == 'failed':
                    stopped = True
                    logger.warning(
                        'receipt_form_submit_failed',
                        extra={'position': position, 'po_number': form.po_number, 'errors': status.errors},
                    )
                else:
                    logger.info('receipt_form_submitted', extra={'position': position, 'po_number': form.po_number})
            statuses.append(status)

        return statuses

    def load_existing(self, receipts: list[dict[str, Any]]) -> None:
        """Rebuild forms from a fetched po-receipt record.

        Each receipt is matched against its purchase order, open or closed. A
        purchase order the store no longer has leaves the form flagged
        missing_record; any other lookup failure propagates.
        """
        forms: list[ReceiptForm] = []
        for receipt in receipts:
            form = ReceiptForm(
                supplier_name=receipt.get('supplier_name') or '',
                supplier_code=receipt.get('supplier_code') or '',
                po_number=receipt.get('po_number'),
                record_id=receipt.get('id'),
                persisted=True,
            )
            try:
                po = self.machine.store.fetch_purchase_order(po_number=form.po_number or '')
            except NotFoundError:
                logger.warning('receipt_po_missing', extra={'po_number': form.po_number})
                form.missing_record = True
                form.persisted = False
                form.entries = _entries_from_receipt(receipt)
            else:
                form.entries = _entries_against_order(po, receipt)
            forms.append(form)
        self.forms = forms


def _own_quantities(receipt: dict[str, Any]) -> dict[str, Any]:
    return {line.get('po_item_code'): to_quantity(line.get('received_qty')) for line in receipt.get('items') or []}


def _entries_against_order(po: PurchaseOrderRecord, receipt: dict[str, Any]) -> list[ReceiptEntry]:
    own_by_code = _own_quantities(receipt)
    entries = []
    for entry in entries_from_purchase_order(po):
        # The store already counts this session's receipt as received.
        own = own_by_code.get(entry.item_code, ZERO)
        previously = max(entry.previously_received_qty - own, ZERO)
        entries.append(
            replace(
                entry,
                previously_received_qty=previously,
                initial_remaining_qty=max(entry.ordered_qty - previously, ZERO),
                receiving_now_qty=own,
            )
        )
    return entries


def _entries_from_receipt(receipt: dict[str, Any]) -> list[ReceiptEntry]:
    return [
        ReceiptEntry(
            item_code=line.get('po_item_code') or '',
            item_name=line.get('item_name') or '',
            ordered_qty=to_quantity(line.get('ordered_qty')),
            previously_received_qty=ZERO,
            initial_remaining_qty=to_quantity(line.get('ordered_qty')),
            uom=line.get('uom') or 'NOS',
            receiving_now_qty=to_quantity(line.get('received_qty')),
        )
        for line in receipt.get('items') or []
    ]
