from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only autoincrements INTEGER primary keys.
BigIntPk = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class EntryType(str, Enum):
    RAW_MATERIAL = 'RAW_MATERIAL'
    DAILY_NEED = 'DAILY_NEED'
    MAINTENANCE = 'MAINTENANCE'
    CONSTRUCTION = 'CONSTRUCTION'
    PERSON = 'PERSON'


class EntryStatus(str, Enum):
    DRAFT = 'DRAFT'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'


class StepKind(str, Enum):
    VEHICLE_DRIVER = 'vehicle-driver'
    SECURITY_CHECK = 'security-check'
    PO_RECEIPT = 'po-receipt'
    WEIGHMENT = 'weighment'
    QUALITY_CONTROL = 'quality-control'
    DAILY_NEED = 'daily-need'
    MAINTENANCE = 'maintenance'
    CONSTRUCTION = 'construction'
    PERSON_ENTRY = 'person-entry'
    ATTACHMENTS = 'attachments'
    REVIEW = 'review'


class PurchaseOrderStatus(str, Enum):
    OPEN = 'OPEN'
    CLOSED = 'CLOSED'


class GateEntry(Base):
    __tablename__ = 'gate_entries'

    id: Mapped[int] = mapped_column(BigIntPk, primary_key=True)
    entry_type: Mapped[EntryType] = mapped_column(SQLEnum(EntryType, name='gate_entry_type'), nullable=False)
    status: Mapped[EntryStatus] = mapped_column(
        SQLEnum(EntryStatus, name='gate_entry_status'),
        nullable=False,
        default=EntryStatus.DRAFT,
        server_default='DRAFT',
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    steps: Mapped[list[GateEntryStep]] = relationship(back_populates='gate_entry', cascade='all, delete-orphan')


class GateEntryStep(Base):
    __tablename__ = 'gate_entry_steps'
    __table_args__ = (UniqueConstraint('gate_entry_id', 'step_kind', name='gate_entry_steps_entry_kind_uniq'),)

    id: Mapped[int] = mapped_column(BigIntPk, primary_key=True)
    gate_entry_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('gate_entries.id', ondelete='CASCADE'), nullable=False)
    step_kind: Mapped[StepKind] = mapped_column(SQLEnum(StepKind, name='gate_entry_step_kind'), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    gate_entry: Mapped[GateEntry] = relationship(back_populates='steps')


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'

    id: Mapped[int] = mapped_column(BigIntPk, primary_key=True)
    po_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    supplier_code: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    supplier_name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        SQLEnum(PurchaseOrderStatus, name='purchase_order_status'),
        nullable=False,
        default=PurchaseOrderStatus.OPEN,
        server_default='OPEN',
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    lines: Mapped[list[PurchaseOrderLine]] = relationship(
        back_populates='purchase_order',
        cascade='all, delete-orphan',
        order_by='PurchaseOrderLine.id',
    )


class PurchaseOrderLine(Base):
    __tablename__ = 'purchase_order_lines'
    __table_args__ = (UniqueConstraint('purchase_order_id', 'po_item_code', name='purchase_order_lines_order_item_uniq'),)

    id: Mapped[int] = mapped_column(BigIntPk, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False)
    po_item_code: Mapped[str] = mapped_column(Text, nullable=False)
    item_name: Mapped[str] = mapped_column(Text, nullable=False)
    uom: Mapped[str] = mapped_column(Text, nullable=False, default='NOS', server_default='NOS')
    ordered_qty: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    received_qty_total: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal('0'), server_default='0')

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates='lines')


class PoReceipt(Base):
    __tablename__ = 'po_receipts'
    __table_args__ = (UniqueConstraint('gate_entry_id', 'purchase_order_id', name='po_receipts_entry_order_uniq'),)

    id: Mapped[int] = mapped_column(BigIntPk, primary_key=True)
    gate_entry_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('gate_entries.id', ondelete='CASCADE'), nullable=False)
    purchase_order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('purchase_orders.id'), nullable=False)
    supplier_code: Mapped[str] = mapped_column(Text, nullable=False)
    supplier_name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    purchase_order: Mapped[PurchaseOrder] = relationship()
    lines: Mapped[list[PoReceiptLine]] = relationship(
        back_populates='receipt',
        cascade='all, delete-orphan',
        order_by='PoReceiptLine.id',
    )


class PoReceiptLine(Base):
    __tablename__ = 'po_receipt_lines'
    __table_args__ = (UniqueConstraint('receipt_id', 'purchase_order_line_id', name='po_receipt_lines_receipt_line_uniq'),)

    id: Mapped[int] = mapped_column(BigIntPk, primary_key=True)
    receipt_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('po_receipts.id', ondelete='CASCADE'), nullable=False)
    purchase_order_line_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey('purchase_order_lines.id', ondelete='CASCADE'),
        nullable=False,
    )
    ordered_qty: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    received_qty: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)

    receipt: Mapped[PoReceipt] = relationship(back_populates='lines')
    purchase_order_line: Mapped[PurchaseOrderLine] = relationship()
