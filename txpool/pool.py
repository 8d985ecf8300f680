"""
Idle connections and the FIFO queue of callers waiting for one.

All mutations happen in plain (non-async) methods, so each one runs within a
single event loop step and the idle/borrowed/waiting bookkeeping is never
observed half-updated. Only acquire() suspends, and only while its own
future sits in the waiter queue.

Every acquire() returns a fresh Lease. A borrowed connection has exactly one
current lease; releasing it retires the lease, and a connection handed on to
a waiter gets a new one. A retired lease can no longer release or run
statements on the connection.

Accounting invariant for every pooled connection:

    idle_count + borrowed_count == size
"""
import asyncio
import itertools
from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Optional, Set, Union

from txpool.connection import Connection
from txpool.driver.base import QueryInfo, QueryResult
from txpool.errors import InvalidHandleError, PoolClosedError
from txpool.logger import setup_logger

logger = setup_logger(__name__, include_location=True)

_lease_ids = itertools.count(1)


class Lease:
    """
    One holder's claim on a pooled connection, valid from acquire() until the
    matching release(). Attribute access falls through to the connection.
    """

    def __init__(self, connection: Connection):
        self.connection = connection
        self.lease_id = next(_lease_ids)
        self.released = False

    def __repr__(self):
        state = "released" if self.released else "active"
        return f"<Lease {self.lease_id} {self.connection.name} {state}>"

    def __getattr__(self, name):
        return getattr(self.connection, name)

    def _check(self) -> None:
        if self.released:
            raise InvalidHandleError(
                f"Lease {self.lease_id} on {self.connection.name} was already released"
            )

    async def query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> QueryResult:
        self._check()
        return await self.connection.query(sql, params)

    async def command(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> QueryInfo:
        self._check()
        return await self.connection.command(sql, params)

    # Manager-bound shortcuts: lease.commit() is manager.commit(lease)

    async def fetch_array(self, sql: str, params: Optional[Mapping[str, Any]] = None):
        return await self.connection._bound().fetch_array(self, sql, params)

    async def fetch_one(self, sql: str, params: Optional[Mapping[str, Any]] = None):
        return await self.connection._bound().fetch_one(self, sql, params)

    async def insert(self, table: str, obj: Any, throw_if_empty: bool = True):
        return await self.connection._bound().insert(self, table, obj, throw_if_empty)

    async def commit(self) -> None:
        await self.connection._bound().commit(self)

    async def rollback(self) -> None:
        await self.connection._bound().rollback(self)


class ConnectionPool:

    def __init__(self, name: str = "txpool", log=None):
        self.name = name
        self.log = log or logger
        self._members: Set[Connection] = set()
        self._idle: Deque[Connection] = deque()
        # borrowed connection -> its current lease
        self._leases: Dict[Connection, Lease] = {}
        self._waiters: Deque[asyncio.Future] = deque()
        self._closed = False

    @property
    def size(self) -> int:
        return len(self._members)

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def borrowed_count(self) -> int:
        return len(self._leases)

    @property
    def waiting_count(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    @property
    def closed(self) -> bool:
        return self._closed

    def is_borrowed(self, conn: Union[Connection, Lease]) -> bool:
        if isinstance(conn, Lease):
            conn = conn.connection
        return conn in self._leases

    def is_current(self, lease: Any) -> bool:
        """True while lease is the live claim on its connection."""
        return isinstance(lease, Lease) and self._leases.get(lease.connection) is lease

    def stats(self) -> Dict[str, int]:
        return {
            "size": self.size,
            "idle": self.idle_count,
            "borrowed": self.borrowed_count,
            "waiting": self.waiting_count,
        }

    def add(self, conn: Connection) -> None:
        """Register a new connection as a pool member and put it into circulation."""
        if self._closed:
            raise PoolClosedError(f"Pool {self.name} is closed")
        if conn in self._members:
            raise InvalidHandleError(f"{conn!r} is already a member of pool {self.name}")
        self._members.add(conn)
        self._circulate(conn)

    async def acquire(self) -> Lease:
        """
        Take an idle connection, or wait in line for the next released one.
        There is no timeout: the caller waits until a connection is released
        or the pool is closed.
        """
        if self._closed:
            raise PoolClosedError(f"Pool {self.name} is closed")
        # _circulate() serves waiters before refilling _idle, so a non-empty
        # idle deque means nobody is waiting
        if self._idle:
            return self._lease(self._idle.popleft())

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self.log.info(f"Pool {self.name}: transaction queued, pool is empty ({self.waiting_count} waiting).")
        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # handed a connection in the same step the caller was cancelled
                self.release(waiter.result())
            else:
                self._discard_waiter(waiter)
            raise

    def release(self, lease: Lease) -> None:
        """
        Retire a lease and return its connection. The oldest live waiter
        receives the connection under a new lease; only with no one waiting
        does it go back to the idle deque.
        """
        if not self.is_current(lease):
            raise InvalidHandleError(f"{lease!r} is not a current lease of pool {self.name}")
        conn = lease.connection
        lease.released = True
        del self._leases[conn]
        if self._closed:
            return
        self._circulate(conn)

    def close(self) -> List[Connection]:
        """
        Stop circulation. Pending waiters fail with PoolClosedError and
        outstanding leases are retired.
        Returns every member connection, idle or borrowed, for shutdown.
        """
        if self._closed:
            return []
        self._closed = True
        error = PoolClosedError(f"Pool {self.name} closed while waiting for a connection")
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(error)
        for lease in self._leases.values():
            lease.released = True
        members = list(self._idle) + [c for c in self._members if c not in self._idle]
        self._idle.clear()
        self._leases.clear()
        self._members.clear()
        return members

    def _lease(self, conn: Connection) -> Lease:
        lease = Lease(conn)
        self._leases[conn] = lease
        return lease

    def _circulate(self, conn: Connection) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            waiter.set_result(self._lease(conn))
            self.log.info(f"Pool {self.name}: starting queued transaction on {conn.name}.")
            return
        self._idle.append(conn)

    def _discard_waiter(self, waiter: asyncio.Future) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass
