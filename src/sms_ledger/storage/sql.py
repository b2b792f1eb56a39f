import asyncio
from collections.abc import Mapping
from typing import Any

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from sms_ledger.logger import get_logger

from .base import Record, Storage, StorageError

logger = get_logger(__name__)

TRANSACTIONS = "transactions"

metadata = MetaData()

transactions_table = Table(
    TRANSACTIONS,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, default=1),
    Column("amount", Float, nullable=False, index=True),
    Column("direction", String(16), nullable=False),
    # ISO-8601 text so ordering and range filters work on every backend
    Column("occurred_at", String(32), nullable=False, index=True),
    Column("time_of_day", String(16)),
    Column("category_id", Integer, nullable=False),
    Column("subcategory", String(128)),
    Column("merchant_name", String(255)),
    Column("description", Text),
    Column("bank_name", String(64)),
    Column("account_fragment", String(16)),
    Column("source_text", Text),
    Column("confidence", Float),
    Column("anomaly_tags", Text),
    Column("model_insight", Text),
    Column("counterparty", String(255)),
    Column("available_balance", Float),
    Column("payment_method", String(64)),
    Column("location", String(255)),
    Column("reference_number", String(64)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


def build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            # One shared connection or every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def _where(clause: str, args: Mapping[str, Any] | None):
    condition = text(clause)
    if args:
        condition = condition.bindparams(**args)
    return condition


class SqlStorage(Storage):
    """Storage on SQLAlchemy Core; blocking calls run in a worker thread."""

    def __init__(self, database_url: str | None = None, engine: Engine | None = None):
        if engine is None and database_url is None:
            raise ValueError("database_url or engine is required")
        self.engine = engine or build_engine(database_url)
        self.tables = {TRANSACTIONS: transactions_table}

    def init_schema(self) -> None:
        metadata.create_all(self.engine)
        logger.info(f"Storage ready: {self.engine.url.render_as_string(hide_password=True)}")

    def _table(self, name: str) -> Table:
        table = self.tables.get(name)
        if table is None:
            raise StorageError(f"Unknown table: {name}")
        return table

    async def _run(self, operation: str, fn, *args) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as e:
            logger.error(f"Storage {operation} failed: {e}")
            raise StorageError(f"{operation} failed: {e}") from e

    async def query(
        self,
        table: str,
        where: str | None = None,
        args: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        stmt = select(self._table(table))
        if where:
            stmt = stmt.where(_where(where, args))
        if order_by:
            stmt = stmt.order_by(text(order_by))
        if limit is not None:
            stmt = stmt.limit(limit)

        def run() -> list[Record]:
            with self.engine.connect() as conn:
                return [dict(row) for row in conn.execute(stmt).mappings()]

        return await self._run("query", run)

    async def insert(self, table: str, record: Mapping[str, Any]) -> int:
        values = {key: value for key, value in record.items() if not (key == "id" and value is None)}
        stmt = insert(self._table(table)).values(**values)

        def run() -> int:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
                return int(result.inserted_primary_key[0])

        return await self._run("insert", run)

    async def update(
        self,
        table: str,
        patch: Mapping[str, Any],
        where: str,
        args: Mapping[str, Any] | None = None,
    ) -> int:
        if not patch:
            return 0
        stmt = update(self._table(table)).where(_where(where, args)).values(**patch)

        def run() -> int:
            with self.engine.begin() as conn:
                return conn.execute(stmt).rowcount

        return await self._run("update", run)

    async def delete(self, table: str, where: str | None = None, args: Mapping[str, Any] | None = None) -> int:
        stmt = delete(self._table(table))
        if where:
            stmt = stmt.where(_where(where, args))

        def run() -> int:
            with self.engine.begin() as conn:
                return conn.execute(stmt).rowcount

        return await self._run("delete", run)

    async def close(self) -> None:
        await asyncio.to_thread(self.engine.dispose)
