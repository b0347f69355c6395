"""
Record store for caller-owned tables.

Enrichment targets live in tables this service does not own and whose schema
may drift. The store exposes column introspection explicitly so the update
path never has to interpret database error text.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Set

from sqlalchemy import MetaData, Table, select, update
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from prospector.core.exceptions import MissingColumnError, PersistenceError

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Keyed record store over dynamically named tables."""

    @abstractmethod
    async def describe_columns(self, table_name: str) -> Set[str]:
        """Column names of a table."""
        pass

    @abstractmethod
    async def exists(self, table_name: str, record_id: str) -> bool:
        """Whether a row with this id is visible."""
        pass

    @abstractmethod
    async def update(self, table_name: str, record_id: str, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Update one row by id and return the rows after the update.

        Raises MissingColumnError naming the first column in `values`
        the table does not have; nothing is written in that case.
        """
        pass


class SQLRecordStore(RecordStore):
    """
    RecordStore backed by SQLAlchemy table reflection.

    Reflected tables are cached for the lifetime of the store, which is one
    request. Every database failure surfaces as PersistenceError with the
    session rolled back.
    """

    # Key column types the record id is converted to before binding
    KEY_TYPES = (int, uuid.UUID)

    def __init__(self, session: AsyncSession, id_column: str = "id"):
        self.session = session
        self.id_column = id_column
        self._tables: Dict[str, Table] = {}

    async def _rollback(self, table_name: str, error: SQLAlchemyError) -> None:
        logger.error(f"Record store operation on '{table_name}' failed: {error}")
        await self.session.rollback()

    async def _reflect(self, table_name: str) -> Table:
        if table_name in self._tables:
            return self._tables[table_name]

        try:
            conn = await self.session.connection()
            table = await conn.run_sync(
                lambda sync_conn: Table(table_name, MetaData(), autoload_with=sync_conn)
            )
        except NoSuchTableError as e:
            raise PersistenceError(f"Table '{table_name}' does not exist") from e
        except SQLAlchemyError as e:
            await self._rollback(table_name, e)
            raise PersistenceError(f"Could not inspect table '{table_name}': {e}") from e

        self._tables[table_name] = table
        return table

    def _key_value(self, table: Table, record_id: str) -> Any:
        if self.id_column not in table.c:
            raise MissingColumnError(table.name, self.id_column)
        try:
            python_type = table.c[self.id_column].type.python_type
        except NotImplementedError:
            return record_id

        if python_type not in self.KEY_TYPES:
            return record_id
        try:
            return python_type(str(record_id).strip())
        except ValueError as e:
            raise PersistenceError(
                f"Invalid id '{record_id}' for table '{table.name}': expected {python_type.__name__}"
            ) from e

    def _key_clause(self, table: Table, record_id: str):
        return table.c[self.id_column] == self._key_value(table, record_id)

    async def describe_columns(self, table_name: str) -> Set[str]:
        table = await self._reflect(table_name)
        return {column.name for column in table.columns}

    async def exists(self, table_name: str, record_id: str) -> bool:
        table = await self._reflect(table_name)
        key = self._key_clause(table, record_id)
        query = select(table.c[self.id_column]).where(key).limit(1)
        try:
            conn = await self.session.connection()
            result = await conn.execute(query)
            found = result.first() is not None
            # End the read transaction so the next poll sees newly committed rows
            await self.session.commit()
        except SQLAlchemyError as e:
            await self._rollback(table_name, e)
            raise PersistenceError(f"Row check on '{table_name}' failed: {e}") from e
        return found

    async def update(self, table_name: str, record_id: str, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        columns = await self.describe_columns(table_name)
        for column in values:
            if column not in columns:
                raise MissingColumnError(table_name, column)

        table = await self._reflect(table_name)
        key = self._key_clause(table, record_id)
        try:
            conn = await self.session.connection()
            await conn.execute(update(table).where(key).values(**values))
            result = await conn.execute(select(table).where(key))
            rows = [dict(row._mapping) for row in result]
            await self.session.commit()
        except SQLAlchemyError as e:
            await self._rollback(table_name, e)
            raise PersistenceError(f"Update of '{table_name}' failed: {e}") from e
        return rows
