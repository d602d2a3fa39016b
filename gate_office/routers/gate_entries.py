from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gate_office.config import settings
from gate_office.db import get_db
from gate_office.models import EntryType, StepKind
from gate_office.services import gate_entry_service

router = APIRouter(prefix=settings.api_prefix, tags=['gate-entries'])


class CreateGateEntryRequest(BaseModel):
    entry_type: EntryType
    payload: dict[str, Any] = Field(default_factory=dict)


@router.post('/gate-entries', status_code=status.HTTP_201_CREATED)
def create_gate_entry(body: CreateGateEntryRequest, db: Session = Depends(get_db)):
    entry = gate_entry_service.create_gate_entry(db, entry_type=body.entry_type, payload=body.payload)
    db.commit()
    return gate_entry_service.serialize_entry(entry)


@router.get('/gate-entries/{session_id}')
def get_gate_entry(session_id: int, db: Session = Depends(get_db)):
    entry = gate_entry_service.get_gate_entry(db, session_id=session_id)
    return gate_entry_service.serialize_entry(entry)


@router.get('/gate-entries/{session_id}/steps/{step_kind}')
def get_step_record(session_id: int, step_kind: StepKind, db: Session = Depends(get_db)):
    return gate_entry_service.get_step_record(db, session_id=session_id, step_kind=step_kind)


@router.post('/gate-entries/{session_id}/steps/{step_kind}', status_code=status.HTTP_201_CREATED)
def create_step_record(
    session_id: int,
    step_kind: StepKind,
    payload: dict[str, Any] | None = Body(default=None),
    db: Session = Depends(get_db),
):
    record = gate_entry_service.create_step_record(db, session_id=session_id, step_kind=step_kind, payload=payload or {})
    db.commit()
    return record


@router.put('/gate-entries/{session_id}/steps/{step_kind}')
def update_step_record(
    session_id: int,
    step_kind: StepKind,
    payload: dict[str, Any] | None = Body(default=None),
    db: Session = Depends(get_db),
):
    record = gate_entry_service.update_step_record(db, session_id=session_id, step_kind=step_kind, payload=payload or {})
    db.commit()
    return record


@router.post('/gate-entries/{session_id}/complete')
def complete_gate_entry(session_id: int, db: Session = Depends(get_db)):
    entry = gate_entry_service.complete_gate_entry(db, session_id=session_id)
    db.commit()
    return gate_entry_service.serialize_entry(entry)


@router.post('/gate-entries/{session_id}/cancel')
def cancel_gate_entry(session_id: int, db: Session = Depends(get_db)):
    entry = gate_entry_service.cancel_gate_entry(db, session_id=session_id)
    db.commit()
    return gate_entry_service.serialize_entry(entry)


@router.get('/po/open-pos')
def list_open_purchase_orders(supplier_code: str = Query(''), db: Session = Depends(get_db)):
    return gate_entry_service.list_open_purchase_orders(db, supplier_code=supplier_code)


@router.get('/po/purchase-orders/{po_number}')
def get_purchase_order(po_number: str, db: Session = Depends(get_db)):
    return gate_entry_service.get_purchase_order(db, po_number=po_number)
