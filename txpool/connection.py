"""
One database session owned by the pool.

A Connection wraps a Driver instance and tracks its health:

    CONNECTING ──connect ok──▶ READY ──unexpected close──▶ RECONNECTING
                                  ▲                             │
                                  └────────reconnect ok─────────┘
    any state ──close()──▶ CLOSED

Statements are only sent while READY. A statement issued in any other
state fails immediately with QueryError. After reconnect_attempts failed
attempts the connection stays RECONNECTING; the next statement issued on it
starts a new round of attempts.

session_sql holds statements replayed on every re-established session
before it is marked READY again (the manager uses it to keep autocommit off
on pooled connections).
"""
import asyncio
import itertools
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence

from txpool.driver.base import Driver, QueryInfo, QueryResult
from txpool.errors import ErrorInfo, ErrorKind, QueryError, connection_error, query_error
from txpool.events import EventEmitter
from txpool.logger import setup_logger

logger = setup_logger(__name__, include_location=True)

_ids = itertools.count(1)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    READY = "ready"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class Connection(EventEmitter):

    def __init__(
            self,
            driver: Driver,
            config: Mapping[str, Any],
            name: Optional[str] = None,
            reconnect_attempts: int = 3,
            reconnect_delay: float = 1.0,
            session_sql: Sequence[str] = (),
            log=None,
    ):
        super().__init__()
        self.id = next(_ids)
        self.name = name or f"conn-{self.id}"
        self.driver = driver
        self.config: Dict[str, Any] = dict(config)
        self.state = ConnectionState.CONNECTING
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.session_sql = list(session_sql)
        self.log = log or logger
        self.manager = None
        self._closing = False
        self._reconnect_task: Optional[asyncio.Task] = None
        self.driver.on("close", self._on_driver_close)

    def __repr__(self):
        return f"<Connection {self.name} state={self.state.value}>"

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.READY

    async def connect(self) -> None:
        """Open the session. Raises DBConnectionError and emits 'error' on failure."""
        try:
            await self.driver.connect(self.config)
        except Exception as e:
            self.emit("error", e)
            raise connection_error(e) from e
        if self._closing:
            # closed while the connect was in flight
            await self.driver.close()
            return
        self.state = ConnectionState.READY
        self.emit("ready")

    async def query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> QueryResult:
        """Run a row-returning statement; rows are returned unconverted."""
        self._ensure_ready(sql)
        try:
            return await self.driver.query(sql, params or {})
        except Exception as e:
            raise query_error(e, sql) from e

    async def command(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> QueryInfo:
        """Run a statement without result rows; returns its info record."""
        result = await self.query(sql, params)
        info = result.info or QueryInfo()
        if info.num_rows is not None:
            info.num_rows = int(info.num_rows)
        if info.affected_rows is not None:
            info.affected_rows = int(info.affected_rows)
        if info.insert_id is not None:
            info.insert_id = int(info.insert_id)
        return info

    async def close(self) -> None:
        """End the session for good; no reconnection happens afterwards."""
        if self.state is ConnectionState.CLOSED:
            return
        self._closing = True
        self.state = ConnectionState.CLOSED
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
        self.driver.off("close", self._on_driver_close)
        try:
            await self.driver.close()
        finally:
            self.remove_all_listeners()

    # Manager-bound shortcuts: conn.fetch_one(sql) is manager.fetch_one(conn, sql).
    # Pooled connections are committed through their Lease.

    def _bound(self):
        if self.manager is None:
            raise QueryError(f"Connection {self.name} is not attached to a transaction manager")
        return self.manager

    async def fetch_array(self, sql: str, params: Optional[Mapping[str, Any]] = None):
        return await self._bound().fetch_array(self, sql, params)

    async def fetch_one(self, sql: str, params: Optional[Mapping[str, Any]] = None):
        return await self._bound().fetch_one(self, sql, params)

    async def insert(self, table: str, obj: Any, throw_if_empty: bool = True):
        return await self._bound().insert(self, table, obj, throw_if_empty)

    def _ensure_ready(self, sql: str) -> None:
        if self.state is ConnectionState.READY:
            return
        if self.state is ConnectionState.RECONNECTING and not self._reconnecting:
            self.log.info(f"Connection {self.name} is in use again, restarting reconnect attempts.")
            self._start_reconnect()
        info = ErrorInfo(
            kind=ErrorKind.DB_CONNECTION,
            retryable=self.state is ConnectionState.RECONNECTING,
            code=f"CONN_{self.state.value.upper()}",
            message=f"Connection {self.name} is {self.state.value}",
            details={"sql": sql},
        )
        raise QueryError(info.message, info=info)

    def _on_driver_close(self) -> None:
        if self._closing or self.state is not ConnectionState.READY:
            return
        self.state = ConnectionState.RECONNECTING
        self.log.warning(f"Connection {self.name} closed unexpectedly, reconnecting.")
        self.emit("close")
        self._start_reconnect()

    @property
    def _reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def _start_reconnect(self) -> None:
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect())

    async def _reconnect(self) -> None:
        for attempt in range(1, self.reconnect_attempts + 1):
            if self._closing:
                return
            try:
                await self.driver.connect(self.config)
            except Exception as e:
                self.log.warning(
                    f"Reconnect attempt {attempt}/{self.reconnect_attempts} for {self.name} failed: {e}"
                )
                self.emit("error", e)
                if attempt < self.reconnect_attempts:
                    await asyncio.sleep(self.reconnect_delay)
                continue
            if self._closing:
                await self.driver.close()
                return
            await self._replay_session()
            self.state = ConnectionState.READY
            self.log.info(f"Connection {self.name} re-established.")
            self.emit("ready")
            return
        self.log.error(f"Giving up reconnecting {self.name} after {self.reconnect_attempts} attempts.")

    async def _replay_session(self) -> None:
        for sql in self.session_sql:
            try:
                await self.driver.query(sql, {})
            except Exception as e:
                error = query_error(e, sql)
                self.log.error(f"Could not restore session setting on {self.name}: {error}")
                self.emit("error", error)
