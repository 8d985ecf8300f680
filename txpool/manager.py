"""
Transaction manager: a fixed pool of transactional connections plus one
always-on "basic" connection for simple non-transactional queries.

    manager = TransactionManager(Settings(host="db", user="app", dbname="shop"))
    await manager.init()

    conn = await manager.begin()
    try:
        await manager.insert(conn, "orders", {"sku": "A-1", "qty": 2})
        await manager.commit(conn)
    except Exception:
        await manager.rollback(conn)
        raise

    async with manager.transaction() as conn:
        row = await conn.fetch_one("SELECT count(*) AS n FROM orders")

begin() returns a Lease on a pooled connection. commit() and rollback()
retire the lease and hand the connection back to circulation, even when the
COMMIT/ROLLBACK statement itself fails. A retired lease is rejected with
InvalidHandleError.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from txpool.config import Settings
from txpool.connection import Connection
from txpool.convert import convert_row
from txpool.driver.base import Driver, QueryInfo
from txpool.errors import (
    DBConnectionError,
    EmptyInsertError,
    InvalidHandleError,
    NotConnectedError,
    PoolClosedError,
    QueryError,
)
from txpool.events import EventEmitter
from txpool.logger import setup_logger
from txpool.pool import ConnectionPool, Lease
from txpool.values import build_insert, check_identifier, eligible_fields

logger = setup_logger(__name__, include_location=True)

AUTOCOMMIT_OFF_SQL = "SET autocommit = 0"

Handle = Union[Connection, Lease]


def default_driver_factory() -> Driver:
    from txpool.driver.postgres import PsycopgDriver
    return PsycopgDriver()


class TransactionManager(EventEmitter):
    """
    Handles a queue of transactions and a pool of database connections.

    Events:
        init  - initialization finished
        error - a connection reported an error (connect, reconnect, session setup)
        close - the manager was closed
    """

    def __init__(
            self,
            settings: Optional[Settings] = None,
            driver_factory: Optional[Callable[[], Driver]] = None,
            **options,
    ):
        super().__init__()
        if settings is None:
            settings = Settings(**options)
        elif options:
            settings = Settings(**{**settings.model_dump(), "log": settings.log, **options})
        self.settings = settings
        self.autoconvert = settings.metadata
        self.poolsize = settings.poolsize
        self.log = settings.log or logger
        self.conn: Optional[Connection] = None
        self.pool = ConnectionPool(name="txpool", log=self.log)
        self._driver_factory = driver_factory or default_driver_factory
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def closed(self) -> bool:
        return self._closed

    def stats(self) -> Dict[str, Any]:
        return {
            **self.pool.stats(),
            "poolsize": self.poolsize,
            "initialized": self._initialized,
            "closed": self._closed,
            "basic": self.conn.state.value if self.conn is not None else None,
        }

    def create_connection(self, name: str, session_sql: Sequence[str] = ()) -> Connection:
        conn = Connection(
            self._driver_factory(),
            self.settings.driver_config(),
            name=name,
            reconnect_attempts=self.settings.reconnect_attempts,
            reconnect_delay=self.settings.reconnect_delay,
            session_sql=session_sql,
            log=self.log,
        )
        conn.manager = self
        conn.on("error", self._on_connection_error)
        return conn

    async def init(self) -> None:
        """
        Open the basic connection, then every pool connection, then switch
        autocommit off on each pooled connection. Calling it again after a
        successful run does nothing.
        """
        if self._closed:
            raise PoolClosedError("The transaction manager is closed.")
        async with self._init_lock:
            if self._initialized:
                return

            basic = self.create_connection("basic")
            try:
                await basic.connect()
            except DBConnectionError as e:
                self.log.error(f"TransactionManager failed to connect: {e}")
                await self._close_connections([basic])
                raise
            if self._closed:
                await self._close_connections([basic])
                raise PoolClosedError("The transaction manager was closed during initialization.")
            self.conn = basic

            conns = [
                self.create_connection(f"pool-{i}", session_sql=(AUTOCOMMIT_OFF_SQL,))
                for i in range(1, self.poolsize + 1)
            ]
            results = await asyncio.gather(*(c.connect() for c in conns), return_exceptions=True)
            failures = [r for r in results if isinstance(r, BaseException)]
            if failures:
                self.log.error(f"TransactionManager failed to open {len(failures)} pool connection(s): {failures[0]}")
                await self._close_connections([basic] + conns)
                self.conn = None
                raise failures[0]

            await asyncio.gather(*(self._disable_autocommit(c) for c in conns))

            if self._closed:
                await self._close_connections([basic] + conns)
                self.conn = None
                raise PoolClosedError("The transaction manager was closed during initialization.")
            for conn in conns:
                self.pool.add(conn)

            self._initialized = True
            self.log.info("TransactionManager initialized.")
            self.emit("init")

    async def basic(self) -> Connection:
        """Get the basic, non-transactional connection. (Only for simple queries.)"""
        if self.conn is not None and self.conn.connected:
            return self.conn
        raise NotConnectedError("The transaction manager is not connected to a database.")

    async def begin(self) -> Lease:
        """Begin a transaction. Waits in line while every pooled connection is in use."""
        if self._closed:
            raise PoolClosedError("The transaction manager is closed.")
        return await self.pool.acquire()

    async def commit(self, conn: Lease) -> None:
        await self._final_command("COMMIT", conn)

    async def rollback(self, conn: Lease) -> None:
        await self._final_command("ROLLBACK", conn)

    async def command(self, conn: Handle, sql: str, params: Optional[Mapping[str, Any]] = None) -> QueryInfo:
        """Perform an SQL command (no rows returned, use for INSERT/UPDATE queries)."""
        return await conn.command(sql, params)

    async def fetch_array(self, conn: Handle, sql: str,
                          params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Fetch all result rows."""
        result = await conn.query(sql, params)
        metadata = result.info.metadata if result.info is not None else None
        if self.autoconvert and metadata:
            for row in result.rows:
                convert_row(row, metadata)
        return result.rows

    async def fetch_one(self, conn: Handle, sql: str,
                        params: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Fetch the first result row, or None when there is none."""
        result = await conn.query(sql, params)
        if not result.rows:
            return None
        row = result.rows[0]
        metadata = result.info.metadata if result.info is not None else None
        if self.autoconvert and metadata:
            convert_row(row, metadata)
        return row

    async def insert(self, conn: Handle, table: str, obj: Any,
                     throw_if_empty: bool = True) -> Optional[QueryInfo]:
        """
        Insert the string, number, boolean, null and date fields of obj into
        table. Fields of any other type are skipped.
        """
        check_identifier(table, allow_schema=True)
        values = eligible_fields(obj)
        if not values:
            if throw_if_empty:
                raise EmptyInsertError(f"Nothing to insert into {table}: no fields with a supported value type.")
            return None
        sql, params = build_insert(table, values)
        return await conn.command(sql, params)

    async def close(self) -> None:
        """Close all connections. Pending begin() calls fail with PoolClosedError."""
        if self._closed:
            return
        self._closed = True
        self._initialized = False
        conns = self.pool.close()
        if self.conn is not None:
            conns.insert(0, self.conn)
        await self._close_connections(conns)
        self.log.info("TransactionManager closed.")
        self.emit("close")
        self.remove_all_listeners()

    @asynccontextmanager
    async def transaction(self):
        """Commit on normal exit, roll back and re-raise on error."""
        conn = await self.begin()
        try:
            yield conn
        except BaseException:
            if self.pool.is_current(conn):
                try:
                    await self.rollback(conn)
                except QueryError as e:
                    self.log.error(f"Rollback after failed transaction on {conn.name} failed: {e}")
            raise
        else:
            if self.pool.is_current(conn):
                await self.commit(conn)

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _final_command(self, cmd: str, lease: Lease) -> None:
        if self.pool.closed:
            raise PoolClosedError("The transaction manager is closed.")
        if not self.pool.is_current(lease):
            raise InvalidHandleError(f"{lease!r} is not an open transaction of this manager.")
        try:
            await lease.connection.command(cmd)
        finally:
            if self.pool.is_current(lease):
                self.pool.release(lease)

    async def _disable_autocommit(self, conn: Connection) -> None:
        try:
            await conn.command(AUTOCOMMIT_OFF_SQL)
        except QueryError as e:
            # the connection still joins the pool
            self.log.error(f"Could not disable autocommit on {conn.name}: {e}")
            self.emit("error", e)

    async def _close_connections(self, conns: List[Connection]) -> None:
        results = await asyncio.gather(*(c.close() for c in conns), return_exceptions=True)
        for conn, result in zip(conns, results):
            if isinstance(result, Exception):
                self.log.warning(f"Error while closing {conn.name}: {result}")

    def _on_connection_error(self, error: BaseException) -> None:
        self.emit("error", error)
