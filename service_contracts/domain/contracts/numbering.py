"""
Numbering Service

Allocates human-readable identifiers of the form PREFIX-YY-NNNN from a
database sequence. When the sequence cannot be read the service degrades to a
timestamp-derived number with exactly 8 digits. Primary numbers never exceed 7
digits, so a fallback number is always distinguishable and can never be
re-issued by the sequence once the database recovers.

Fallback numbers are derived from the microsecond clock of one process; two
machines allocating in the same microsecond window (mod 10^8) would collide.
The unique index on the number column turns such a collision into an insert
failure rather than a duplicate.
"""

import calendar
import logging
import re
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import CONTRACT_NUMBER_PREFIX
from ...exceptions import NumberingUnavailable
from ...shared.timeutils import utcnow
from .repository import SequenceRepository

logger = logging.getLogger(__name__)

NUMBER_PATTERN = re.compile(r"^[A-Z]{2,4}-\d{2}-\d{4,8}$")
PRIMARY_MAX_DIGITS = 7
FALLBACK_DIGITS = 8


def is_fallback_number(number: str) -> bool:
    """True for numbers allocated in degraded mode"""
    return len(number.rsplit("-", 1)[-1]) == FALLBACK_DIGITS


class NumberingService:
    """Allocate PREFIX-YY-NNNN numbers for one named sequence"""

    def __init__(
        self,
        db: Session,
        prefix: str = CONTRACT_NUMBER_PREFIX,
        sequence_name: str = "contract_number",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not re.match(r"^[A-Z]{2,4}$", prefix):
            raise ValueError(f"Number prefix must be 2-4 uppercase letters, got {prefix!r}")
        self.db = db
        self.prefix = prefix
        self.sequence_name = sequence_name
        self.clock = clock or utcnow
        self.repo = SequenceRepository()

    def allocate(self) -> str:
        """Next number from the sequence, or a fallback number in degraded mode"""
        now = self.clock()
        year = now.strftime("%y")
        try:
            value = self._next_value()
        except (SQLAlchemyError, NumberingUnavailable) as e:
            self.db.rollback()
            number = self._fallback_number(now)
            logger.warning(
                f"⚠️ Numbering sequence '{self.sequence_name}' unavailable, degraded mode: "
                f"issued fallback number {number} ({e})"
            )
            return number

        number = f"{self.prefix}-{year}-{value:04d}"
        logger.info(f"✅ Allocated {number}")
        return number

    def _next_value(self) -> int:
        value = self.repo.next_sequence_value(self.db, self.sequence_name)
        if value is None or value < 1:
            raise NumberingUnavailable(f"Sequence '{self.sequence_name}' returned {value!r}")
        if len(str(value)) > PRIMARY_MAX_DIGITS:
            raise NumberingUnavailable(f"Sequence '{self.sequence_name}' exhausted at {value}")
        return value

    def _fallback_number(self, now: datetime) -> str:
        micros = calendar.timegm(now.utctimetuple()) * 1_000_000 + now.microsecond
        digits = f"{micros % 10**FALLBACK_DIGITS:0{FALLBACK_DIGITS}d}"
        return f"{self.prefix}-{now.strftime('%y')}-{digits}"
