"""Payment attempt repository - the saga ledger for artifact creation"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import PaymentAttempt


class PaymentAttemptRepository:
    """Repository for payment attempt database operations"""

    @staticmethod
    def get_by_key(db: Session, idempotency_key: str, for_update: bool = False) -> Optional[PaymentAttempt]:
        query = db.query(PaymentAttempt).filter(PaymentAttempt.idempotency_key == idempotency_key)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def insert(db: Session, attempt: PaymentAttempt) -> PaymentAttempt:
        db.add(attempt)
        db.commit()
        db.refresh(attempt)
        return attempt

    @staticmethod
    def update(db: Session, attempt: PaymentAttempt, **updates) -> PaymentAttempt:
        for key, value in updates.items():
            setattr(attempt, key, value)
        db.commit()
        db.refresh(attempt)
        return attempt

    @staticmethod
    def query(
        db: Session,
        statuses: Optional[list[str]] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
    ) -> list[PaymentAttempt]:
        query = db.query(PaymentAttempt)
        if statuses:
            query = query.filter(PaymentAttempt.status.in_(statuses))
        if entity_type:
            query = query.filter(PaymentAttempt.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(PaymentAttempt.entity_id == entity_id)
        return query.order_by(PaymentAttempt.created_at.asc(), PaymentAttempt.id.asc()).all()
