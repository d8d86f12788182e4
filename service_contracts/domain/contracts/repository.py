"""Contract repository - Database operations for contracts"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ...models import Contract, NumberSequence
from ...shared.money import round_money

ORDERABLE_FIELDS = {"created_at", "updated_at", "start_date", "end_date", "contract_number", "total_contract_value"}


class SequenceRepository:
    """Monotonic named counters in the number_sequences table"""

    @staticmethod
    def next_sequence_value(db: Session, name: str) -> int:
        """
        Increment and return the named counter.

        The UPDATE takes a row lock held until the caller's transaction ends, so
        concurrent allocations are serialized by the database.
        """
        result = db.execute(
            update(NumberSequence)
            .where(NumberSequence.name == name)
            .values(value=NumberSequence.value + 1)
        )
        if result.rowcount == 0:
            # First allocation for this counter; a concurrent first insert fails
            # with IntegrityError and the caller falls back
            db.add(NumberSequence(name=name, value=1))
            db.flush()
            return 1
        return db.query(NumberSequence.value).filter(NumberSequence.name == name).scalar()


class ContractRepository:
    """Repository for contract database operations"""

    @staticmethod
    def insert(db: Session, contract: Contract) -> Contract:
        """Persist a new contract"""
        db.add(contract)
        db.commit()
        db.refresh(contract)
        return contract

    @staticmethod
    def update(db: Session, contract: Contract, **updates) -> Contract:
        """
        Apply field updates and commit.

        Raises sqlalchemy.orm.exc.StaleDataError when another transaction bumped
        the version since this contract was loaded.
        """
        for key, value in updates.items():
            if not hasattr(contract, key):
                raise AttributeError(f"Contract has no field {key}")
            setattr(contract, key, value)

        db.commit()
        db.refresh(contract)
        return contract

    @staticmethod
    def get(db: Session, contract_id: int, for_update: bool = False) -> Optional[Contract]:
        """Get a contract by ID, optionally locking the row for a status change"""
        query = db.query(Contract).filter(Contract.id == contract_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_by_number(db: Session, contract_number: str) -> Optional[Contract]:
        return db.query(Contract).filter(Contract.contract_number == contract_number).first()

    @staticmethod
    def get_by_public_id(db: Session, public_id: str) -> Optional[Contract]:
        """Get a contract by public UUID"""
        return db.query(Contract).filter(Contract.public_id == public_id).first()

    @staticmethod
    def get_by_payment_reference(
        db: Session,
        order_id: Optional[str] = None,
        payment_link_id: Optional[str] = None,
        contract_number: Optional[str] = None,
    ) -> Optional[Contract]:
        """Find the contract an external payment belongs to"""
        if order_id:
            contract = db.query(Contract).filter(Contract.payment_order_id == order_id).first()
            if contract:
                return contract
        if payment_link_id:
            contract = db.query(Contract).filter(Contract.payment_link_id == payment_link_id).first()
            if contract:
                return contract
        if contract_number:
            return db.query(Contract).filter(Contract.contract_number == contract_number).first()
        return None

    @staticmethod
    def query(
        db: Session,
        filters: Optional[dict] = None,
        order: str = "-created_at",
        limit: Optional[int] = None,
    ) -> list[Contract]:
        """
        List contracts matching equality filters.

        `order` is a field name, prefixed with "-" for descending.
        """
        query = db.query(Contract)
        for key, value in (filters or {}).items():
            if value is None:
                continue
            column = getattr(Contract, key)
            if isinstance(value, (list, tuple, set, frozenset)):
                query = query.filter(column.in_(list(value)))
            else:
                query = query.filter(column == value)

        field = order.lstrip("-")
        if field not in ORDERABLE_FIELDS:
            raise ValueError(f"Cannot order contracts by {field}")
        column = getattr(Contract, field)
        query = query.order_by(column.desc() if order.startswith("-") else column.asc(), Contract.id)

        if limit:
            query = query.limit(limit)
        return query.all()

    @staticmethod
    def overdue_unsigned(db: Session, today: date, statuses: Iterable[str]) -> list[Contract]:
        """Contracts still awaiting a signature whose end date has passed"""
        return (
            db.query(Contract)
            .filter(Contract.status.in_(list(statuses)))
            .filter(Contract.end_date.isnot(None))
            .filter(Contract.end_date < today)
            .order_by(Contract.id)
            .all()
        )

    @staticmethod
    def count_by_status(db: Session) -> dict[str, int]:
        rows = db.query(Contract.status, func.count(Contract.id)).group_by(Contract.status).all()
        return {status: count for status, count in rows}

    @staticmethod
    def total_value(db: Session, exclude_statuses: tuple = ("cancelled",)) -> Decimal:
        """Sum of total_contract_value across contracts not in the excluded statuses"""
        total = (
            db.query(func.sum(Contract.total_contract_value))
            .filter(Contract.status.notin_(exclude_statuses))
            .scalar()
        )
        return round_money(total or 0)
