from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gate_office.exceptions import NotFoundError, ValidationError
from gate_office.models import Base, EntryStatus, EntryType, PurchaseOrder, PurchaseOrderLine, PurchaseOrderStatus, StepKind
from gate_office.services import gate_entry_service as service
from gate_office.services.entry_flows import RAW_MATERIAL_FLOW
from gate_office.services.session_state_machine import SessionStateMachine
from gate_office.services.sql_record_store import SqlRecordStore
from gate_office.services.step_mode_resolver import StepMode

VEHICLE = {'vehicle_number': 'KA-01-1234', 'driver_name': 'Ravi'}


def _session_factory():
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def _seed_order(db, po_number: str = 'PO-1', ordered: str = '100', received: str = '20') -> PurchaseOrder:
    order = PurchaseOrder(po_number=po_number, supplier_code='S100', supplier_name='Acme Metals', status=PurchaseOrderStatus.OPEN)
    order.lines.append(
        PurchaseOrderLine(
            po_item_code='I1',
            item_name='Steel rod',
            uom='KG',
            ordered_qty=Decimal(ordered),
            received_qty_total=Decimal(received),
        )
    )
    db.add(order)
    db.flush()
    return order


def _receipt(po_number: str = 'PO-1', qty: str = '30', **extra) -> dict:
    return {
        'po_number': po_number,
        'supplier_code': 'S100',
        'supplier_name': 'Acme Metals',
        'items': [{'po_item_code': 'I1', 'received_qty': qty}],
        **extra,
    }


class GateEntryServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _session_factory()()

    def tearDown(self) -> None:
        self.db.close()


class GateEntryStepTests(GateEntryServiceTestCase):
    def test_create_entry_stores_first_step(self) -> None:
        entry = service.create_gate_entry(self.db, entry_type=EntryType.DAILY_NEED, payload=VEHICLE)

        self.assertEqual(entry.status, EntryStatus.DRAFT)
        record = service.get_step_record(self.db, session_id=entry.id, step_kind=StepKind.VEHICLE_DRIVER)
        self.assertEqual(record['vehicle_number'], 'KA-01-1234')

    def test_create_entry_validates_first_step(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            service.create_gate_entry(self.db, entry_type=EntryType.PERSON, payload={'person_name': 'Meena', 'person_type': 'GUEST'})

        self.assertIn('person_type', ctx.exception.field_errors)

    def test_missing_step_record_is_not_found(self) -> None:
        entry = service.create_gate_entry(self.db, entry_type=EntryType.DAILY_NEED, payload=VEHICLE)

        with self.assertRaises(NotFoundError):
            service.get_step_record(self.db, session_id=entry.id, step_kind=StepKind.SECURITY_CHECK)
        with self.assertRaises(NotFoundError):
            service.get_gate_entry(self.db, session_id=entry.id + 1)

    def test_step_record_create_then_update(self) -> None:
        entry = service.create_gate_entry(self.db, entry_type=EntryType.DAILY_NEED, payload=VEHICLE)
        payload = {'inspected_by_name': 'Anil', 'seal_no_before': 'S-9'}

        service.create_step_record(self.db, session_id=entry.id, step_kind=StepKind.SECURITY_CHECK, payload=payload)
        self.assertEqual(entry.status, EntryStatus.IN_PROGRESS)
        with self.assertRaises(ValidationError):
            service.create_step_record(self.db, session_id=entry.id, step_kind=StepKind.SECURITY_CHECK, payload=payload)

        updated = service.update_step_record(
            self.db,
            session_id=entry.id,
            step_kind=StepKind.SECURITY_CHECK,
            payload={**payload, 'seal_no_before': 'S-10'},
        )
        self.assertEqual(updated['seal_no_before'], 'S-10')

    def test_update_of_missing_step_is_not_found(self) -> None:
        entry = service.create_gate_entry(self.db, entry_type=EntryType.DAILY_NEED, payload=VEHICLE)

        with self.assertRaises(NotFoundError):
            service.update_step_record(
                self.db,
                session_id=entry.id,
                step_kind=StepKind.SECURITY_CHECK,
                payload={'inspected_by_name': 'Anil', 'seal_no_before': 'S-9'},
            )

    def test_step_outside_flow_is_rejected(self) -> None:
        entry = service.create_gate_entry(
            self.db, entry_type=EntryType.PERSON, payload={'person_name': 'Meena', 'person_type': 'visitor'}
        )

        with self.assertRaises(ValidationError):
            service.create_step_record(
                self.db,
                session_id=entry.id,
                step_kind=StepKind.DAILY_NEED,
                payload={'category': 'Stationery', 'description': 'Printer paper'},
            )

    def test_weighment_gross_below_tare(self) -> None:
        errors = service.validate_step_payload(StepKind.WEIGHMENT, {'gross_weight': '400', 'tare_weight': '500'})

        self.assertEqual(list(errors), ['gross_weight'])


class GateEntryLifecycleTests(GateEntryServiceTestCase):
    def test_complete_needs_every_recorded_step(self) -> None:
        entry = service.create_gate_entry(self.db, entry_type=EntryType.MAINTENANCE, payload=VEHICLE)

        with self.assertRaises(ValidationError) as ctx:
            service.complete_gate_entry(self.db, session_id=entry.id)
        self.assertEqual(set(ctx.exception.field_errors), {'security-check', 'maintenance'})

        service.create_step_record(
            self.db,
            session_id=entry.id,
            step_kind=StepKind.SECURITY_CHECK,
            payload={'inspected_by_name': 'Anil', 'seal_no_before': 'S-9'},
        )
        service.create_step_record(
            self.db,
            session_id=entry.id,
            step_kind=StepKind.MAINTENANCE,
            payload={'category': 'Electrical', 'description': 'Panel repair'},
        )
        completed = service.complete_gate_entry(self.db, session_id=entry.id)

        self.assertEqual(completed.status, EntryStatus.COMPLETED)
        self.assertIsNotNone(completed.completed_at)
        view = service.get_step_record(self.db, session_id=entry.id, step_kind=StepKind.REVIEW)
        self.assertEqual(view['status'], 'COMPLETED')
        self.assertIn('maintenance', view['steps'])

    def test_completed_entry_is_read_only(self) -> None:
        entry = service.create_gate_entry(
            self.db, entry_type=EntryType.PERSON, payload={'person_name': 'Meena', 'person_type': 'LABOUR'}
        )
        service.complete_gate_entry(self.db, session_id=entry.id)

        with self.assertRaises(ValidationError):
            service.update_step_record(
                self.db,
                session_id=entry.id,
                step_kind=StepKind.PERSON_ENTRY,
                payload={'person_name': 'Meena K', 'person_type': 'LABOUR'},
            )
        with self.assertRaises(ValidationError):
            service.cancel_gate_entry(self.db, session_id=entry.id)

    def test_cancelled_entry_cannot_complete(self) -> None:
        entry = service.create_gate_entry(self.db, entry_type=EntryType.DAILY_NEED, payload=VEHICLE)
        service.cancel_gate_entry(self.db, session_id=entry.id)

        self.assertEqual(entry.status, EntryStatus.CANCELLED)
        with self.assertRaises(ValidationError):
            service.complete_gate_entry(self.db, session_id=entry.id)


class PurchaseOrderReceiptTests(GateEntryServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.order = _seed_order(self.db)
        self.entry = service.create_gate_entry(self.db, entry_type=EntryType.RAW_MATERIAL, payload=VEHICLE)

    def _open_line(self) -> dict:
        [row] = service.list_open_purchase_orders(self.db, supplier_code='S100')
        return row['items'][0]

    def test_open_orders_report_remaining_quantity(self) -> None:
        line = self._open_line()

        self.assertEqual(line['ordered_qty'], '100')
        self.assertEqual(line['received_qty'], '20')
        self.assertEqual(line['remaining_qty'], '80')
        self.assertEqual(service.list_open_purchase_orders(self.db, supplier_code='S999'), [])
        with self.assertRaises(ValidationError):
            service.list_open_purchase_orders(self.db, supplier_code='  ')

    def test_receipt_adds_to_received_total(self) -> None:
        record = service.create_step_record(
            self.db, session_id=self.entry.id, step_kind=StepKind.PO_RECEIPT, payload=_receipt(qty='30')
        )

        self.assertEqual(record['items'][0]['received_qty'], '30')
        self.assertEqual(self._open_line()['remaining_qty'], '50')
        fetched = service.get_step_record(self.db, session_id=self.entry.id, step_kind=StepKind.PO_RECEIPT)
        self.assertEqual([receipt['id'] for receipt in fetched['receipts']], [record['id']])

    def test_update_replaces_previous_quantity(self) -> None:
        record = service.create_step_record(
            self.db, session_id=self.entry.id, step_kind=StepKind.PO_RECEIPT, payload=_receipt(qty='30')
        )

        service.update_step_record(
            self.db,
            session_id=self.entry.id,
            step_kind=StepKind.PO_RECEIPT,
            payload=_receipt(qty='40', receipt_id=record['id']),
        )

        self.assertEqual(self._open_line()['received_qty'], '60')

    def test_duplicate_receipt_for_same_order_is_rejected(self) -> None:
        service.create_step_record(self.db, session_id=self.entry.id, step_kind=StepKind.PO_RECEIPT, payload=_receipt())

        with self.assertRaises(ValidationError):
            service.create_step_record(self.db, session_id=self.entry.id, step_kind=StepKind.PO_RECEIPT, payload=_receipt())

    def test_all_zero_receipt_is_rejected(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            service.create_step_record(
                self.db, session_id=self.entry.id, step_kind=StepKind.PO_RECEIPT, payload=_receipt(qty='0')
            )

        self.assertIn('items', ctx.exception.field_errors)

    def test_over_receipt_closes_order(self) -> None:
        service.create_step_record(
            self.db, session_id=self.entry.id, step_kind=StepKind.PO_RECEIPT, payload=_receipt(qty='90')
        )

        self.assertEqual(self.order.status, PurchaseOrderStatus.CLOSED)
        self.assertEqual(self.order.lines[0].received_qty_total, Decimal('110'))
        self.assertEqual(service.list_open_purchase_orders(self.db, supplier_code='S100'), [])

    def test_receipt_for_unknown_order(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            service.create_step_record(
                self.db, session_id=self.entry.id, step_kind=StepKind.PO_RECEIPT, payload=_receipt(po_number='PO-404')
            )

        self.assertIn('po_number', ctx.exception.field_errors)

    def test_no_receipts_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            service.get_step_record(self.db, session_id=self.entry.id, step_kind=StepKind.PO_RECEIPT)

    def test_closed_order_is_found_by_number(self) -> None:
        service.create_step_record(
            self.db, session_id=self.entry.id, step_kind=StepKind.PO_RECEIPT, payload=_receipt(qty='80')
        )

        row = service.get_purchase_order(self.db, po_number='PO-1')

        self.assertEqual(row['status'], 'CLOSED')
        self.assertEqual(row['items'][0]['received_qty'], '100')
        self.assertEqual(row['items'][0]['remaining_qty'], '0')
        with self.assertRaises(NotFoundError):
            service.get_purchase_order(self.db, po_number='PO-404')



class SqlRecordStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = _session_factory()
        with self.session_factory() as db:
            _seed_order(db)
            db.commit()
        self.store = SqlRecordStore(self.session_factory)

    def test_writes_are_committed(self) -> None:
        record = self.store.create_session(entry_type=EntryType.RAW_MATERIAL, payload=VEHICLE)
        self.store.create_step_record(session_id=record.id, step_kind=StepKind.PO_RECEIPT, payload=_receipt(qty=Decimal('30')))

        self.assertEqual(self.store.fetch_session(session_id=record.id).status, EntryStatus.IN_PROGRESS)
        [order] = self.store.fetch_purchase_orders(supplier_code='S100')
        self.assertEqual(order.items[0].remaining_qty, Decimal('50'))

    def test_failed_write_is_rolled_back(self) -> None:
        record = self.store.create_session(entry_type=EntryType.RAW_MATERIAL, payload=VEHICLE)

        with self.assertRaises(ValidationError):
            self.store.create_step_record(session_id=record.id, step_kind=StepKind.WEIGHMENT, payload={'gross_weight': '10'})
        with self.assertRaises(NotFoundError):
            self.store.fetch_step_record(session_id=record.id, step_kind=StepKind.WEIGHMENT)

        cancelled = self.store.cancel_session(session_id=record.id)
        self.assertEqual(cancelled.status, EntryStatus.CANCELLED)

    def test_saved_receipt_on_a_closed_order_can_be_edited_after_resume(self) -> None:
        record = self.store.create_session(entry_type=EntryType.RAW_MATERIAL, payload=VEHICLE)
        self.store.create_step_record(session_id=record.id, step_kind=StepKind.PO_RECEIPT, payload=_receipt(qty='80'))
        self.assertEqual(self.store.fetch_purchase_orders(supplier_code='S100'), [])
        self.assertEqual(self.store.fetch_purchase_order(po_number='PO-1').status, PurchaseOrderStatus.CLOSED)

        machine = SessionStateMachine.resume(RAW_MATERIAL_FLOW, self.store, record.id)
        view = machine.enter_step(3)
        [form] = machine.receipts.forms
        [entry] = form.entries

        self.assertFalse(view.resolution.blocking)
        self.assertFalse(form.missing_record)
        self.assertTrue(form.persisted)
        self.assertEqual(entry.previously_received_qty, Decimal('20'))
        self.assertEqual(entry.initial_remaining_qty, Decimal('80'))
        self.assertEqual(entry.receiving_now_qty, Decimal('80'))
        self.assertEqual(entry.remaining_qty, Decimal('0'))

        self.assertEqual(machine.request_edit().resolution.mode, StepMode.EDIT_ACTIVE)
        entry = machine.receipts.update_receiving_qty(form.id, 'I1', '70')
        self.assertEqual(entry.remaining_qty, Decimal('10'))
        result = machine.submit_step(3)

        self.assertTrue(result.ok, result)
        order = self.store.fetch_purchase_order(po_number='PO-1')
        self.assertEqual(order.status, PurchaseOrderStatus.OPEN)
        self.assertEqual(order.items[0].previously_received_qty, Decimal('90'))
        [receipt] = self.store.fetch_step_record(session_id=record.id, step_kind=StepKind.PO_RECEIPT)['receipts']
        self.assertEqual(receipt['items'][0]['received_qty'], '70')

    def test_unknown_order_number_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self.store.fetch_purchase_order(po_number='PO-404')


if __name__ == '__main__':
    unittest.main()
