"""
Base Repository - common database operations for tenant-scoped models
Every PromoPal table carries a ``user_id`` owning-business column; the
``*_owned`` helpers apply that scope so services never touch another
business's rows.
"""

from abc import ABC, abstractmethod
from typing import TypeVar, Generic, List, Optional, Dict, Any, Type
from sqlalchemy.orm import Session, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import desc, asc
from dataclasses import dataclass
from enum import Enum
import logging

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class PaginationParams:
    page: int = 1
    per_page: int = 50

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


@dataclass
class PaginatedResult(Generic[T]):
    """One page of a query plus totals"""
    items: List[T]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return (self.total + self.per_page - 1) // self.per_page if self.per_page > 0 else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository with CRUD operations.

    Writes flush but never commit; the calling service owns the transaction
    boundary and calls commit()/rollback() explicitly.
    """

    def __init__(self, session: Session, model_class: Type[T]):
        self.session = session
        self.model_class = model_class

    # CREATE

    def create(self, **kwargs) -> T:
        """
        Create a new entity and flush to assign its id.

        Raises:
            SQLAlchemyError: If the insert fails
        """
        try:
            entity = self.model_class(**kwargs)
            self.session.add(entity)
            self.session.flush()
            logger.debug(f"Created {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    # READ

    def get_by_id(self, entity_id: int) -> Optional[T]:
        return self.session.get(self.model_class, entity_id)

    def get_owned(self, entity_id: int, user_id: int) -> Optional[T]:
        """Get an entity by id only if it belongs to ``user_id``."""
        entity = self.get_by_id(entity_id)
        if entity is None or getattr(entity, 'user_id', None) != user_id:
            return None
        return entity

    def find_by(self, **filters) -> List[T]:
        return self._build_query(filters).all()

    def find_one_by(self, **filters) -> Optional[T]:
        return self._build_query(filters).first()

    def exists(self, **filters) -> bool:
        return self._build_query(filters).first() is not None

    def count(self, **filters) -> int:
        return self._build_query(filters).count()

    def get_paginated(self,
                      pagination: PaginationParams,
                      filters: Optional[Dict[str, Any]] = None,
                      order_by: Optional[str] = None,
                      order: SortOrder = SortOrder.ASC) -> PaginatedResult[T]:
        query = self._build_query(filters)

        if order_by:
            order_field = getattr(self.model_class, order_by, None)
            if order_field is not None:
                query = query.order_by(
                    desc(order_field) if order == SortOrder.DESC else asc(order_field)
                )

        total = query.count()
        items = query.offset(pagination.offset).limit(pagination.per_page).all()
        return PaginatedResult(items=items, total=total, page=pagination.page,
                               per_page=pagination.per_page)

    # UPDATE

    def update(self, entity: T, **updates) -> T:
        """
        Apply field updates to an entity and flush.

        Unknown field names are ignored.
        """
        try:
            for field, value in updates.items():
                if hasattr(entity, field):
                    setattr(entity, field, value)
            self.session.flush()
            logger.debug(f"Updated {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    # DELETE

    def delete(self, entity: T) -> bool:
        try:
            self.session.delete(entity)
            self.session.flush()
            logger.debug(f"Deleted {self.model_class.__name__} with id {entity.id}")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {self.model_class.__name__}: {e}")
            self.session.rollback()
            return False

    # Transaction management

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()

    def flush(self) -> None:
        self.session.flush()

    # Helpers

    def _build_query(self, filters: Optional[Dict[str, Any]] = None) -> Query:
        """
        Build a query from field filters.

        Lists become IN clauses and None becomes IS NULL.
        """
        query = self.session.query(self.model_class)

        for field, value in (filters or {}).items():
            column = getattr(self.model_class, field, None)
            if column is None:
                continue
            if isinstance(value, (list, tuple, set)):
                query = query.filter(column.in_(list(value)))
            elif value is None:
                query = query.filter(column.is_(None))
            else:
                query = query.filter(column == value)

        return query

    @abstractmethod
    def search(self, query: str, user_id: int) -> List[T]:
        """Free-text search within one business's rows"""
        pass
