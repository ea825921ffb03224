"""
Data-access boundary for the booking resolver.

The resolver only talks to the store through three operations:
a conditional insert, a filtered query and a status update. The
storage layer's uniqueness constraint is the real serialization
point; nothing here takes locks.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from loguru import logger
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import StoreUnavailable

# A filter value is either a plain value (equality) or an (op, value) pair.
FilterValue = Union[Any, Tuple[str, Any]]
Ordering = Sequence[Tuple[str, str]]

_OPERATORS = {
    "eq": lambda col, v: col == v,
    "ne": lambda col, v: col != v,
    "in": lambda col, v: col.in_(list(v)),
    "gt": lambda col, v: col > v,
    "gte": lambda col, v: col >= v,
    "lt": lambda col, v: col < v,
    "lte": lambda col, v: col <= v,
}


@dataclass
class InsertResult:
    """Outcome of insert_if_absent: the stored row, or a uniqueness conflict."""

    success: bool
    row: Optional[Any] = None

    @property
    def conflict(self) -> bool:
        return not self.success


class DataStore(Protocol):
    def insert_if_absent(
        self, table: type, row: Dict[str, Any], unique_key_columns: Sequence[str]
    ) -> InsertResult:
        ...

    def query(
        self,
        table: type,
        filters: Dict[str, FilterValue],
        ordering: Optional[Ordering] = None,
    ) -> List[Any]:
        ...

    def update_status(
        self,
        table: type,
        row_id: int,
        patch: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[Any]:
        ...


def known_columns(table: type, values: Dict[str, Any]) -> Dict[str, Any]:
    """
    Keep only keys that are real columns of ``table``.

    Unknown fields are dropped at the store boundary and logged.
    """
    columns = {c.key for c in inspect(table).column_attrs}
    unknown = set(values) - columns
    if unknown:
        logger.warning(f"Ignoring unknown fields for {table.__tablename__}: {sorted(unknown)}")
    return {k: v for k, v in values.items() if k in columns}


class SqlAlchemyStore:
    """
    DataStore backed by a SQLAlchemy session.

    Parameters
    ----------
    db : Session
        Session owned by the caller (one per request).
    """

    def __init__(self, db: Session):
        self.db = db

    def _column(self, table: type, name: str):
        try:
            return getattr(table, name)
        except AttributeError:
            raise ValueError(f"{table.__tablename__} has no column '{name}'")

    def insert_if_absent(
        self, table: type, row: Dict[str, Any], unique_key_columns: Sequence[str]
    ) -> InsertResult:
        """
        Insert ``row`` unless it collides with a unique constraint.

        Parameters
        ----------
        table : type
            Mapped model class.
        row : Dict[str, Any]
            Column values for the new row.
        unique_key_columns : Sequence[str]
            Columns of the uniqueness constraint guarding this insert.

        Returns
        -------
        InsertResult
            success=True with the refreshed row, or success=False when the
            database rejected the insert as a duplicate.

        Raises
        ------
        StoreUnavailable
            For any database failure other than a uniqueness violation.
        """
        instance = table(**known_columns(table, row))
        self.db.add(instance)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            key = {c: row.get(c) for c in unique_key_columns}
            logger.info(f"Insert into {table.__tablename__} rejected by unique key {key}")
            return InsertResult(success=False)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning(f"Insert into {table.__tablename__} failed: {exc}")
            raise StoreUnavailable("Booking store unavailable, please retry") from exc

        self.db.refresh(instance)
        return InsertResult(success=True, row=instance)

    def query(
        self,
        table: type,
        filters: Dict[str, FilterValue],
        ordering: Optional[Ordering] = None,
    ) -> List[Any]:
        """
        Read rows matching every filter.

        ``filters`` maps a column name to a value (equality) or to an
        ``(op, value)`` tuple where op is one of eq, ne, in, gt, gte, lt, lte.
        ``ordering`` is a sequence of ``(column, "asc"|"desc")`` pairs.
        """
        q = self.db.query(table)
        for name, value in filters.items():
            column = self._column(table, name)
            if isinstance(value, tuple):
                op, operand = value
                q = q.filter(_OPERATORS[op](column, operand))
            else:
                q = q.filter(column == value)

        for name, direction in ordering or ():
            column = self._column(table, name)
            q = q.order_by(column.desc() if direction == "desc" else column.asc())

        try:
            return q.all()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning(f"Query on {table.__tablename__} failed: {exc}")
            raise StoreUnavailable("Booking store unavailable, please retry") from exc

    def get(self, table: type, row_id: int) -> Optional[Any]:
        rows = self.query(table, {"id": row_id})
        return rows[0] if rows else None

    def update_status(
        self,
        table: type,
        row_id: int,
        patch: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[Any]:
        """
        Apply ``patch`` to one row, optionally only if it still matches ``expected``.

        The update is a single conditional UPDATE statement, so two
        callers racing on the same row cannot both apply a change that
        was computed from the same prior state.

        Returns
        -------
        Optional[Any]
            The refreshed row, or None when no row matched (missing id,
            or the row no longer matched ``expected``).
        """
        values = known_columns(table, patch)
        q = self.db.query(table).filter(self._column(table, "id") == row_id)
        for name, value in (expected or {}).items():
            q = q.filter(self._column(table, name) == value)

        try:
            updated = q.update(values, synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning(f"Update on {table.__tablename__}#{row_id} failed: {exc}")
            raise StoreUnavailable("Booking store unavailable, please retry") from exc

        if not updated:
            return None
        self.db.expire_all()
        return self.get(table, row_id)
