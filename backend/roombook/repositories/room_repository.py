# backend/roombook/repositories/room_repository.py
"""Room lookups, including the row lock that serializes bookings per room."""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.room import Room
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class RoomRepository(BaseRepository[Room]):
    def __init__(self, db: Session):
        super().__init__(db, Room)

    def get_active(self, room_id: str) -> Optional[Room]:
        try:
            return (
                self.db.query(Room)
                .filter(Room.id == room_id, Room.is_active.is_(True))
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading room %s: %s", room_id, str(e))
            raise RepositoryException("Failed to load room") from e

    def lock_for_booking(self, room_id: str) -> Optional[Room]:
        """
        Take a row lock on the room for the rest of the transaction.

        Concurrent booking creations for the same room queue behind this lock,
        so the overlap re-check that follows sees every committed booking.
        """
        return self.get_by_id(room_id, for_update=True)
