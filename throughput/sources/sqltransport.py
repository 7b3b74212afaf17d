import asyncio
import logging
from pathlib import Path
from typing import Iterable, Mapping, Optional

from sqlalchemy import column, create_engine, func, inspect, select, table
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from ..components.errors import InvalidEnvironment, QueryFailureReason, SourceUnavailable
from ..components.logs import configure_logging
from .protocols import BaseCounterSource, is_infrastructure_queue

configure_logging()
logger = logging.getLogger(__name__)


def connect_args(url: URL, timeout: Optional[float]) -> dict:
    """
    Driver arguments bounding how long connecting, and where supported each statement, may
    take. Unknown drivers get none.
    """
    if timeout is None:
        return {}

    seconds = max(int(timeout), 1)
    driver = (url.get_backend_name(), url.get_driver_name())

    if driver == ("sqlite", "pysqlite"):
        return {"timeout": timeout}
    if driver in (("postgresql", "psycopg2"), ("postgresql", "psycopg")):
        return {"connect_timeout": seconds, "options": f"-c statement_timeout={seconds * 1000}"}
    if driver in (("mysql", "mysqldb"), ("mysql", "pymysql")):
        return {"connect_timeout": seconds, "read_timeout": seconds}
    if driver in (("mssql", "pyodbc"), ("mssql", "pymssql")):
        return {"timeout": seconds}
    return {}


class QueueTableSource(BaseCounterSource):
    """
    Queue tables of a database backed transport. Every table holding all of the transport's
    columns is a queue, and its counter is the highest sequence value inserted so far.

    SQLAlchemy is synchronous, so every database round trip runs in a worker thread.
    """

    transport = "SqlTransport"

    def __init__(
        self,
        url: str,
        counter_column: str = "RowVersion",
        required_columns: Iterable[str] = ("RowVersion",),
        name: Optional[str] = None,
        timeout: Optional[float] = 30,
    ):
        super().__init__()
        try:
            parsed = make_url(url)
        except ArgumentError as err:
            raise InvalidEnvironment(
                "The database connection string could not be parsed."
            ) from err

        self.url = parsed
        self.timeout = timeout
        self.counter_column = counter_column
        self.required_columns = {c.lower() for c in required_columns} | {counter_column.lower()}
        self.name = name or Path(parsed.database or "database").stem
        self.report_method = f"{parsed.get_backend_name()} database {self.name}"
        self.tables: dict[str, tuple[Optional[str], str]] = {}
        self._engine: Optional[Engine] = None

    @classmethod
    def from_params(cls, params, timeout: Optional[float] = 30) -> list["QueueTableSource"]:
        return [
            cls(url, params.counter_column, params.required_columns, timeout=timeout)
            for url in params.urls
        ]

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            options = {"connect_args": connect_args(self.url, self.timeout)}
            if self.timeout is not None and self.url.get_backend_name() != "sqlite":
                options["pool_timeout"] = self.timeout
            self._engine = create_engine(self.url, **options)
        return self._engine

    def close(self):
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def include_queue(self, name: str) -> bool:
        _, table_name = self.tables.get(name, (None, name))
        return not is_infrastructure_queue(table_name)

    def _discover(self) -> dict[str, tuple[Optional[str], str]]:
        inspector = inspect(self.engine)
        default_schema = inspector.default_schema_name
        found = {}

        for schema in inspector.get_schema_names():
            if schema == "information_schema":
                continue
            for table_name in inspector.get_table_names(schema=schema):
                columns = {c["name"].lower() for c in inspector.get_columns(table_name, schema)}
                if not self.required_columns <= columns:
                    continue

                key = table_name if schema == default_schema else f"{schema}.{table_name}"
                found[key] = (None if schema == default_schema else schema, table_name)

        return found

    def _read(self) -> dict[str, Optional[int]]:
        tables = self._discover()

        missing = set(self.tables) - set(tables)
        if missing:
            logger.info("Queue tables deleted", {"source": self.name, "tables": sorted(missing)})
            self.deleted_queues = self.deleted_queues | missing
        self.tables.update(tables)

        counters: dict[str, Optional[int]] = {}
        with self.engine.connect() as conn:
            for key, (schema, table_name) in sorted(tables.items()):
                queue_table = table(table_name, column(self.counter_column), schema=schema)
                query = select(func.max(queue_table.c[self.counter_column]))
                try:
                    value = conn.execute(query).scalar()
                except SQLAlchemyError as err:
                    logger.warning(
                        "Unable to read queue table",
                        {"source": self.name, "table": key, "error": str(err)},
                    )
                    conn.rollback()
                    value = None
                counters[key] = int(value) if value is not None else None

        return counters

    async def get_snapshot(self) -> Mapping[str, Optional[int]]:
        try:
            counters = await asyncio.wait_for(asyncio.to_thread(self._read), self.timeout)
        except asyncio.TimeoutError as err:
            raise SourceUnavailable(
                f"Database '{self.name}' did not answer within {self.timeout}s",
                QueryFailureReason.TIMEOUT,
            ) from err
        except SQLAlchemyError as err:
            raise SourceUnavailable(
                f"Could not access database '{self.name}': {err}", QueryFailureReason.NETWORK
            ) from err

        if not counters and not self.tables:
            raise InvalidEnvironment(
                f"Could not find any queue tables in database '{self.name}'."
            )
        return counters
