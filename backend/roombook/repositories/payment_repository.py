# backend/roombook/repositories/payment_repository.py
"""
Payment Repository

Lookups by idempotency key, by gateway reference, by booking and by credit
purchase. Both unique guards (idempotency key, one active payment per
booking) surface as ``UniqueViolation`` with the constraint name set.
"""

import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import ACTIVE_PAYMENT_STATUSES
from ..core.exceptions import RepositoryException
from ..models.payment import (
    PAYMENT_ACTIVE_BOOKING_INDEX,
    PAYMENT_IDEMPOTENCY_CONSTRAINT,
    Payment,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    constraint_signatures = {
        PAYMENT_IDEMPOTENCY_CONSTRAINT: "payments.idempotency_key",
        PAYMENT_ACTIVE_BOOKING_INDEX: "payments.booking_id",
    }

    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def find_by_idempotency_key(self, idempotency_key: str) -> Optional[Payment]:
        try:
            return (
                self.db.query(Payment)
                .filter(Payment.idempotency_key == idempotency_key)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading payment %s: %s", idempotency_key, str(e))
            raise RepositoryException("Failed to load payment") from e

    def find_active_for_booking(self, booking_id: str) -> Optional[Payment]:
        try:
            return (
                self.db.query(Payment)
                .filter(
                    Payment.booking_id == booking_id,
                    Payment.status.in_(ACTIVE_PAYMENT_STATUSES),
                )
                .order_by(Payment.created_at.desc())
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading active payment for %s: %s", booking_id, str(e))
            raise RepositoryException("Failed to load payment") from e

    def find_by_external_id(self, external_id: str) -> Optional[Payment]:
        try:
            return self.db.query(Payment).filter(Payment.external_id == external_id).first()
        except SQLAlchemyError as e:
            self.logger.error("Error loading payment by external id %s: %s", external_id, str(e))
            raise RepositoryException("Failed to load payment") from e

    def list_for_booking(self, booking_id: str) -> List[Payment]:
        return self.find_by(booking_id=booking_id)

    def find_active_for_purchase(self, purchase_id: str) -> Optional[Payment]:
        try:
            return (
                self.db.query(Payment)
                .filter(
                    Payment.purchase_id == purchase_id,
                    Payment.status.in_(ACTIVE_PAYMENT_STATUSES),
                )
                .order_by(Payment.created_at.desc())
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading active payment for %s: %s", purchase_id, str(e))
            raise RepositoryException("Failed to load payment") from e

    def list_for_purchase(self, purchase_id: str) -> List[Payment]:
        return self.find_by(purchase_id=purchase_id)

    def update_status(
        self,
        payment_id: str,
        from_statuses: Iterable[str],
        **values: Any,
    ) -> bool:
        """Guarded status write, same contract as the booking transition."""
        allowed = [getattr(s, "value", s) for s in from_statuses]
        try:
            self.db.flush()
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status.in_(allowed))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error("Error updating payment %s: %s", payment_id, str(e))
            raise RepositoryException("Failed to update payment") from e
        self.expire_cached(payment_id)
        return bool(result.rowcount)
