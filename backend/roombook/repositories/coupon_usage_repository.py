# backend/roombook/repositories/coupon_usage_repository.py
"""
Coupon Usage Repository

Rows are unique on ``(user_id, coupon_code, context)``. Restoring a usage
flips it to RESTORED instead of deleting it; a later redemption re-claims the
RESTORED row with a guarded UPDATE.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import CouponUsageStatus
from ..core.exceptions import RepositoryException
from ..models.coupon import COUPON_USAGE_UNIQUE_CONSTRAINT, CouponUsage
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CouponUsageRepository(BaseRepository[CouponUsage]):
    constraint_signatures = {
        COUPON_USAGE_UNIQUE_CONSTRAINT: (
            "coupon_usages.user_id, coupon_usages.coupon_code, coupon_usages.context"
        ),
    }

    def __init__(self, db: Session):
        super().__init__(db, CouponUsage)

    def find_usage(self, user_id: str, coupon_code: str, context: str) -> Optional[CouponUsage]:
        try:
            return (
                self.db.query(CouponUsage)
                .filter(
                    CouponUsage.user_id == user_id,
                    CouponUsage.coupon_code == coupon_code,
                    CouponUsage.context == context,
                )
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading coupon usage for %s: %s", coupon_code, str(e))
            raise RepositoryException("Failed to load coupon usage") from e

    def claim_restored(
        self,
        user_id: str,
        coupon_code: str,
        context: str,
        booking_id: Optional[str],
        purchase_id: Optional[str] = None,
    ) -> bool:
        """RESTORED -> USED for the tuple, pointing it at the new booking or purchase."""
        try:
            result = self.db.execute(
                update(CouponUsage)
                .where(
                    CouponUsage.user_id == user_id,
                    CouponUsage.coupon_code == coupon_code,
                    CouponUsage.context == context,
                    CouponUsage.status == CouponUsageStatus.RESTORED.value,
                )
                .values(
                    status=CouponUsageStatus.USED.value,
                    booking_id=booking_id,
                    purchase_id=purchase_id,
                    restored_at=None,
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error("Error re-claiming coupon usage %s: %s", coupon_code, str(e))
            raise RepositoryException("Failed to claim coupon usage") from e
        return bool(result.rowcount)

    def find_used_by_booking(self, booking_id: str) -> List[CouponUsage]:
        try:
            return (
                self.db.query(CouponUsage)
                .filter(
                    CouponUsage.booking_id == booking_id,
                    CouponUsage.status == CouponUsageStatus.USED.value,
                )
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading coupon usages for booking %s: %s", booking_id, str(e))
            raise RepositoryException("Failed to load coupon usages") from e

    def find_used_by_purchase(self, purchase_id: str) -> List[CouponUsage]:
        try:
            return (
                self.db.query(CouponUsage)
                .filter(
                    CouponUsage.purchase_id == purchase_id,
                    CouponUsage.status == CouponUsageStatus.USED.value,
                )
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(
                "Error loading coupon usages for purchase %s: %s", purchase_id, str(e)
            )
            raise RepositoryException("Failed to load coupon usages") from e

    def mark_restored(self, usage_id: str, now: datetime) -> bool:
        """USED -> RESTORED. False when someone else restored it first."""
        try:
            result = self.db.execute(
                update(CouponUsage)
                .where(
                    CouponUsage.id == usage_id,
                    CouponUsage.status == CouponUsageStatus.USED.value,
                )
                .values(status=CouponUsageStatus.RESTORED.value, restored_at=now)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error("Error restoring coupon usage %s: %s", usage_id, str(e))
            raise RepositoryException("Failed to restore coupon usage") from e
        self.expire_cached(usage_id)
        return bool(result.rowcount)
