"""Repository for key/value operational settings."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.setting import Setting
from .base_repository import BaseRepository


class SettingRepository(BaseRepository[Setting]):
    """Data access helper for ``settings`` rows."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, Setting)

    def get_by_key(self, key: str) -> Optional[Setting]:
        result = self.db.query(Setting).filter(Setting.key == key).first()
        return cast(Optional[Setting], result)

    def get_values(self, keys: Iterable[str]) -> Dict[str, str]:
        wanted = list(keys)
        try:
            rows = self.db.query(Setting.key, Setting.value).filter(Setting.key.in_(wanted)).all()
        except SQLAlchemyError as exc:
            self.logger.warning("Failed to read settings %s: %s", wanted, str(exc))
            raise RepositoryException("Failed to read settings") from exc
        return {str(key): str(value) for key, value in rows}

    def upsert(
        self,
        *,
        key: str,
        value: str,
        updated_by: Optional[str],
        updated_at: datetime,
    ) -> Setting:
        record = self.get_by_key(key)
        if record is None:
            record = Setting(key=key, value=value, updated_by=updated_by, updated_at=updated_at)
            self.db.add(record)
        else:
            record.value = value
            record.updated_by = updated_by
            record.updated_at = updated_at
        self.db.flush()
        return record


__all__ = ["SettingRepository"]
