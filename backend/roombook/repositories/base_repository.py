# backend/roombook/repositories/base_repository.py
"""
Base Repository Pattern

Provides the foundation for all repository classes with:
- Common CRUD operations
- Type safety with generics
- Transaction support (managed by services)
- Translation of store constraint violations into typed errors

Constraint violations are classified once, here, into ``UniqueViolation``
and ``OverlapViolation``. Callers never inspect driver messages.
"""

import logging
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import OverlapViolation, RepositoryException, UniqueViolation
from ..database import get_dialect_name
from ..models.booking import BOOKING_OVERLAP_CONSTRAINT

# Type variable for generic model support
T = TypeVar("T")

logger = logging.getLogger(__name__)


def constraint_name_from_error(exc: IntegrityError) -> Optional[str]:
    """Return the violated constraint name reported by the driver, if any."""
    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    return str(name) if name else None


def classify_integrity_error(
    exc: IntegrityError,
    signatures: Optional[Dict[str, str]] = None,
) -> RepositoryException:
    """
    Map an IntegrityError to a typed repository error.

    ``signatures`` maps constraint names to the text SQLite puts in its error
    message (SQLite does not report constraint names for unique violations).
    """
    text = str(getattr(exc, "orig", exc))
    name = constraint_name_from_error(exc)
    if not name:
        for candidate, signature in (signatures or {}).items():
            if signature and signature in text:
                name = candidate
                break
    if name is None and BOOKING_OVERLAP_CONSTRAINT in text:
        name = BOOKING_OVERLAP_CONSTRAINT

    if name == BOOKING_OVERLAP_CONSTRAINT or "exclusion constraint" in text.lower():
        return OverlapViolation(f"Overlapping booking rejected: {text}", constraint=name)

    pgcode = getattr(getattr(exc, "orig", None), "pgcode", None)
    if pgcode == "23505" or "unique" in text.lower() or "duplicate key" in text.lower():
        return UniqueViolation(f"Unique constraint violated: {text}", constraint=name)

    return RepositoryException(f"Integrity constraint violated: {text}")


class BaseRepository(Generic[T]):
    """
    Concrete base repository implementation with common data access patterns.

    Repositories never commit: the service layer owns transaction boundaries.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    # constraint name -> SQLite error text fragment
    constraint_signatures: Dict[str, str] = {}

    def __init__(self, db: Session, model: Type[T]):
        """
        Initialize repository with database session and model.

        Args:
            db: SQLAlchemy session (managed by service layer)
            model: SQLAlchemy model class
        """
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    @property
    def is_postgres(self) -> bool:
        return self.dialect_name == "postgresql"

    def get_by_id(self, id: str, for_update: bool = False) -> Optional[T]:
        """
        Retrieve an entity by its primary key.

        ``for_update`` takes a row lock for the rest of the caller's transaction.
        """
        try:
            query = self.db.query(self.model).filter(self.model.id == id)
            if for_update:
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error("Error getting %s by id %s: %s", self.model.__name__, id, str(e))
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}") from e

    def create(self, **kwargs: Any) -> T:
        """
        Create a new entity inside a SAVEPOINT.

        Note: Does NOT commit. A constraint violation rolls back only the
        savepoint, so the caller's transaction stays usable and can react to
        the typed error.
        """
        entity = self.model(**kwargs)
        try:
            with self.db.begin_nested():
                self.db.add(entity)
                self.db.flush()
            return entity
        except IntegrityError as exc:
            error = classify_integrity_error(exc, self.constraint_signatures)
            self.logger.info(
                "Integrity error creating %s: %s", self.model.__name__, type(error).__name__
            )
            raise error from exc
        except SQLAlchemyError as e:
            self.logger.error("Error creating %s: %s", self.model.__name__, str(e))
            raise RepositoryException(f"Failed to create {self.model.__name__}") from e

    def flush(self) -> None:
        """Flush pending ORM changes, translating constraint violations."""
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise classify_integrity_error(exc, self.constraint_signatures) from exc

    def update(self, id: str, **kwargs: Any) -> Optional[T]:
        """
        Update an existing entity.

        Only updates provided fields, preserves others.
        """
        try:
            entity = self.get_by_id(id)
            if not entity:
                return None

            for key, value in kwargs.items():
                if hasattr(entity, key):
                    setattr(entity, key, value)

            self.db.flush()
            return entity
        except IntegrityError as exc:
            raise classify_integrity_error(exc, self.constraint_signatures) from exc
        except SQLAlchemyError as e:
            self.logger.error("Error updating %s %s: %s", self.model.__name__, id, str(e))
            raise RepositoryException(f"Failed to update {self.model.__name__}") from e

    def exists(self, **kwargs: Any) -> bool:
        """Check if an entity exists with given criteria."""
        try:
            return self.db.query(self.model).filter_by(**kwargs).first() is not None
        except SQLAlchemyError as e:
            self.logger.error("Error checking existence: %s", str(e))
            raise RepositoryException("Failed to check existence") from e

    def count(self, **kwargs: Any) -> int:
        """Count entities matching given criteria."""
        try:
            return self.db.query(self.model).filter_by(**kwargs).count()
        except SQLAlchemyError as e:
            self.logger.error("Error counting records: %s", str(e))
            raise RepositoryException("Failed to count records") from e

    def find_by(self, **kwargs: Any) -> List[T]:
        """
        Find entities by given criteria.

        Args:
            **kwargs: Filter criteria (exact match)

        Returns:
            List of matching entities
        """
        try:
            return self.db.query(self.model).filter_by(**kwargs).all()
        except SQLAlchemyError as e:
            self.logger.error("Error finding by criteria: %s", str(e))
            raise RepositoryException("Failed to find records") from e

    def find_one_by(self, **kwargs: Any) -> Optional[T]:
        """Find a single entity by given criteria."""
        try:
            return self.db.query(self.model).filter_by(**kwargs).first()
        except SQLAlchemyError as e:
            self.logger.error("Error finding one by criteria: %s", str(e))
            raise RepositoryException("Failed to find record") from e

    def expire_cached(self, id: str) -> None:
        """Expire the in-session instance for ``id`` after a Core-level UPDATE."""
        instance = self.db.identity_map.get(self.db.identity_key(self.model, id))
        if instance is not None:
            self.db.expire(instance)

    def _build_query(self) -> Query:
        return self.db.query(self.model)
