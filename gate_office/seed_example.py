from decimal import Decimal

from sqlalchemy import select

from gate_office.db import SessionLocal, engine
from gate_office.models import Base, PurchaseOrder, PurchaseOrderLine

DEMO_ORDERS = [
    ('PO-1001', 'S100', 'Acme Metals', [('RM-STEEL-12', 'Steel rod 12mm', 'KG', '1000'), ('RM-STEEL-16', 'Steel rod 16mm', 'KG', '500')]),
    ('PO-1002', 'S100', 'Acme Metals', [('RM-WIRE-02', 'Binding wire', 'KG', '120')]),
    ('PO-2001', 'S200', 'Deccan Cement', [('RM-CEM-53', 'Cement OPC 53', 'BAG', '400')]),
]


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        for po_number, supplier_code, supplier_name, lines in DEMO_ORDERS:
            order = db.execute(select(PurchaseOrder).where(PurchaseOrder.po_number == po_number)).scalar_one_or_none()
            if order:
                continue
            order = PurchaseOrder(po_number=po_number, supplier_code=supplier_code, supplier_name=supplier_name)
            for item_code, item_name, uom, ordered_qty in lines:
                order.lines.append(
                    PurchaseOrderLine(
                        po_item_code=item_code,
                        item_name=item_name,
                        uom=uom,
                        ordered_qty=Decimal(ordered_qty),
                        received_qty_total=Decimal('0'),
                    )
                )
            db.add(order)
        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
