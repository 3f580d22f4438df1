# backend/roombook/repositories/credit_purchase_repository.py
"""
Credit Purchase Repository

Row locks for the webhook and one guarded status write. The status write
is the only place a purchase changes state, so a confirmation delivered
twice grants the credit once.
"""

import logging
from typing import Any, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.credit_purchase import CreditPurchase
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CreditPurchaseRepository(BaseRepository[CreditPurchase]):
    def __init__(self, db: Session):
        super().__init__(db, CreditPurchase)

    def get_for_update(self, purchase_id: str) -> Optional[CreditPurchase]:
        return self.get_by_id(purchase_id, for_update=True)

    def transition_status(
        self,
        purchase_id: str,
        from_statuses: Iterable[str],
        **values: Any,
    ) -> bool:
        """Update the purchase only while it is still in ``from_statuses``."""
        allowed = [getattr(s, "value", s) for s in from_statuses]
        try:
            self.db.flush()
            result = self.db.execute(
                update(CreditPurchase)
                .where(CreditPurchase.id == purchase_id, CreditPurchase.status.in_(allowed))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error("Error updating credit purchase %s: %s", purchase_id, str(e))
            raise RepositoryException("Failed to update credit purchase") from e
        self.expire_cached(purchase_id)
        return bool(result.rowcount)
