"""Invoice repository - Database operations for invoices"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Invoice


class InvoiceRepository:
    """Repository for invoice database operations"""

    @staticmethod
    def insert(db: Session, invoice: Invoice) -> Invoice:
        db.add(invoice)
        db.commit()
        db.refresh(invoice)
        return invoice

    @staticmethod
    def update(db: Session, invoice: Invoice, **updates) -> Invoice:
        """Raises StaleDataError when the invoice changed since it was loaded"""
        for key, value in updates.items():
            setattr(invoice, key, value)
        db.commit()
        db.refresh(invoice)
        return invoice

    @staticmethod
    def get(db: Session, invoice_id: int, for_update: bool = False) -> Optional[Invoice]:
        query = db.query(Invoice).filter(Invoice.id == invoice_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_by_number(db: Session, invoice_number: str) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.invoice_number == invoice_number).first()

    @staticmethod
    def get_by_payment_reference(
        db: Session,
        order_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> Optional[Invoice]:
        """Find the invoice an external order or invoice belongs to"""
        if order_id:
            invoice = db.query(Invoice).filter(Invoice.external_order_id == order_id).first()
            if invoice:
                return invoice
        if invoice_id:
            return db.query(Invoice).filter(Invoice.external_invoice_id == invoice_id).first()
        return None

    @staticmethod
    def query(
        db: Session,
        status: Optional[str] = None,
        contract_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Invoice]:
        query = db.query(Invoice)
        if status:
            query = query.filter(Invoice.status == status)
        if contract_id is not None:
            query = query.filter(Invoice.contract_id == contract_id)
        query = query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
        if limit:
            query = query.limit(limit)
        return query.all()
