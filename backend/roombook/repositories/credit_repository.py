# backend/roombook/repositories/credit_repository.py
"""
Credit Repository

Balance reads and the two guarded writes on ``credits.remaining_amount``.
Debits and restores are single conditional UPDATE statements; a rowcount of
zero means the row changed under us and the caller must abort.
"""

from datetime import datetime
import logging
from typing import Iterable, List

from sqlalchemy import case, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import CreditStatus
from ..core.exceptions import RepositoryException
from ..models.credit import Credit
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CreditRepository(BaseRepository[Credit]):
    def __init__(self, db: Session):
        super().__init__(db, Credit)

    def list_candidates(
        self,
        user_id: str,
        room_id: str,
        room_tier: int,
        now: datetime,
        for_update: bool = False,
    ) -> List[Credit]:
        """
        Unexpired credits with balance that the room/tier restriction allows.

        Usage-type compatibility depends on the booking window and is checked
        by the caller. Ordered nearest-expiry first, no-expiry last.
        """
        try:
            query = (
                self.db.query(Credit)
                .filter(
                    Credit.user_id == user_id,
                    Credit.status == CreditStatus.CONFIRMED.value,
                    Credit.remaining_amount > 0,
                    or_(Credit.expires_at.is_(None), Credit.expires_at > now),
                    or_(Credit.room_id.is_(None), Credit.room_id == room_id),
                    or_(Credit.tier.is_(None), Credit.tier <= room_tier),
                )
                .order_by(Credit.expires_at.asc().nullslast(), Credit.created_at, Credit.id)
            )
            if for_update:
                query = query.with_for_update()
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error("Error loading credits for user %s: %s", user_id, str(e))
            raise RepositoryException("Failed to load credits") from e

    def get_many(self, credit_ids: Iterable[str], for_update: bool = False) -> List[Credit]:
        ids = list(credit_ids)
        if not ids:
            return []
        try:
            query = self.db.query(Credit).filter(Credit.id.in_(ids)).order_by(Credit.id)
            if for_update:
                query = query.with_for_update()
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error("Error loading credits %s: %s", ids, str(e))
            raise RepositoryException("Failed to load credits") from e

    def debit(self, credit_id: str, amount: int, now: datetime) -> bool:
        """
        Take ``amount`` from a credit if it still has that much.

        A credit drained to zero becomes USED.
        """
        new_remaining = Credit.remaining_amount - amount
        try:
            result = self.db.execute(
                update(Credit)
                .where(
                    Credit.id == credit_id,
                    Credit.status == CreditStatus.CONFIRMED.value,
                    Credit.remaining_amount >= amount,
                )
                .values(
                    remaining_amount=new_remaining,
                    status=case(
                        (new_remaining == 0, CreditStatus.USED.value),
                        else_=Credit.status,
                    ),
                    used_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error("Error debiting credit %s: %s", credit_id, str(e))
            raise RepositoryException("Failed to debit credit") from e
        self.expire_cached(credit_id)
        return bool(result.rowcount)

    def restore(self, credit_id: str, amount: int, now: datetime) -> bool:
        """Give ``amount`` back to a credit unless that would exceed its grant."""
        try:
            result = self.db.execute(
                update(Credit)
                .where(
                    Credit.id == credit_id,
                    Credit.remaining_amount + amount <= Credit.amount,
                )
                .values(
                    remaining_amount=Credit.remaining_amount + amount,
                    status=CreditStatus.CONFIRMED.value,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error("Error restoring credit %s: %s", credit_id, str(e))
            raise RepositoryException("Failed to restore credit") from e
        self.expire_cached(credit_id)
        return bool(result.rowcount)
