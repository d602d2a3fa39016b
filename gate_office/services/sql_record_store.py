from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.orm import Session

from gate_office.models import EntryType, StepKind
from gate_office.services import gate_entry_service
from gate_office.services.record_store import (
    PurchaseOrderRecord,
    SessionRecord,
    purchase_order_from_row,
    purchase_orders_from_rows,
    session_from_row,
)


class SqlRecordStore:
    """Record store backed directly by the gate office database."""

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        if session_factory is None:
            from gate_office.db import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory

    @contextmanager
    def _session(self, *, write: bool) -> Iterator[Session]:
        with self.session_factory() as db:
            try:
                yield db
                if write:
                    db.commit()
            except Exception:
                db.rollback()
                raise

    def create_session(self, *, entry_type: EntryType, payload: dict[str, Any]) -> SessionRecord:
        with self._session(write=True) as db:
            entry = gate_entry_service.create_gate_entry(db, entry_type=entry_type, payload=payload)
            return session_from_row(gate_entry_service.serialize_entry(entry))

    def fetch_session(self, *, session_id: int) -> SessionRecord:
        with self._session(write=False) as db:
            entry = gate_entry_service.get_gate_entry(db, session_id=session_id)
            return session_from_row(gate_entry_service.serialize_entry(entry))

    def fetch_step_record(self, *, session_id: int, step_kind: StepKind) -> dict[str, Any]:
        with self._session(write=False) as db:
            return gate_entry_service.get_step_record(db, session_id=session_id, step_kind=step_kind)

    def create_step_record(self, *, session_id: int, step_kind: StepKind, payload: dict[str, Any]) -> dict[str, Any]:
        with self._session(write=True) as db:
            return gate_entry_service.create_step_record(db, session_id=session_id, step_kind=step_kind, payload=payload)

    def update_step_record(self, *, session_id: int, step_kind: StepKind, payload: dict[str, Any]) -> dict[str, Any]:
        with self._session(write=True) as db:
            return gate_entry_service.update_step_record(db, session_id=session_id, step_kind=step_kind, payload=payload)

    def fetch_purchase_orders(self, *, supplier_code: str) -> list[PurchaseOrderRecord]:
        with self._session(write=False) as db:
            rows = gate_entry_service.list_open_purchase_orders(db, supplier_code=supplier_code)
        return purchase_orders_from_rows(rows)

    def fetch_purchase_order(self, *, po_number: str) -> PurchaseOrderRecord:
        with self._session(write=False) as db:
            row = gate_entry_service.get_purchase_order(db, po_number=po_number)
        return purchase_order_from_row(row)

    def complete_session(self, *, session_id: int) -> SessionRecord:
        with self._session(write=True) as db:
            entry = gate_entry_service.complete_gate_entry(db, session_id=session_id)
            return session_from_row(gate_entry_service.serialize_entry(entry))

    def cancel_session(self, *, session_id: int) -> SessionRecord:
        with self._session(write=True) as db:
            entry = gate_entry_service.cancel_gate_entry(db, session_id=session_id)
            return session_from_row(gate_entry_service.serialize_entry(entry))
