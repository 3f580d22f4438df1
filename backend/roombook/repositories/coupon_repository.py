# backend/roombook/repositories/coupon_repository.py
"""
Coupon Repository

Coupon definitions plus the guarded global redemption counter. Per-user
redemptions live in ``CouponUsageRepository``.
"""

import logging
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.coupon import Coupon
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CouponRepository(BaseRepository[Coupon]):
    constraint_signatures = {"coupons_code_key": "coupons.code"}

    def __init__(self, db: Session):
        super().__init__(db, Coupon)

    def get_by_code(self, code: str) -> Optional[Coupon]:
        try:
            return self.db.query(Coupon).filter(Coupon.code == code.strip().upper()).first()
        except SQLAlchemyError as e:
            self.logger.error("Error loading coupon %s: %s", code, str(e))
            raise RepositoryException("Failed to load coupon") from e

    def increment_uses(self, coupon_id: str) -> bool:
        """Count one redemption unless ``max_uses`` is already reached."""
        try:
            result = self.db.execute(
                update(Coupon)
                .where(
                    Coupon.id == coupon_id,
                    or_(Coupon.max_uses.is_(None), Coupon.current_uses < Coupon.max_uses),
                )
                .values(current_uses=Coupon.current_uses + 1)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error("Error incrementing coupon %s uses: %s", coupon_id, str(e))
            raise RepositoryException("Failed to update coupon usage counter") from e
        self.expire_cached(coupon_id)
        return bool(result.rowcount)

    def decrement_uses(self, coupon_id: str) -> bool:
        try:
            result = self.db.execute(
                update(Coupon)
                .where(Coupon.id == coupon_id, Coupon.current_uses > 0)
                .values(current_uses=Coupon.current_uses - 1)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error("Error decrementing coupon %s uses: %s", coupon_id, str(e))
            raise RepositoryException("Failed to update coupon usage counter") from e
        self.expire_cached(coupon_id)
        return bool(result.rowcount)
