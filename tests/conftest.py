import asyncio

import pytest

from txpool import Settings, TransactionManager
from txpool.driver.base import Driver, QueryInfo, QueryResult


class FakeDriverError(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


class FakeDriver(Driver):
    """In-memory driver: records statements and answers from a shared script."""

    def __init__(self, factory=None, index=0):
        super().__init__()
        self.index = index
        self.factory = factory
        self.statements = []
        self.config = None
        self.connect_count = 0
        self.close_count = 0
        self.fail_connect = 0
        self.results = factory.results if factory else {}
        self.fail_on = factory.fail_on if factory else {}
        self._connected = False

    @property
    def connected(self):
        return self._connected

    async def connect(self, config):
        self.config = dict(config)
        self.connect_count += 1
        await asyncio.sleep(0)
        if self.factory is not None:
            self.factory.connect_log.append(self.index)
        if self.fail_connect:
            self.fail_connect -= 1
            err = FakeDriverError("connection refused", sqlstate="08001")
            self.emit("error", err)
            raise err
        self._connected = True
        self.emit("ready")

    async def query(self, sql, params=None):
        self.statements.append((sql, dict(params or {})))
        await asyncio.sleep(0)
        if not self._connected:
            raise FakeDriverError("connection is closed", sqlstate="08003")
        if sql in self.fail_on:
            raise self.fail_on[sql]
        result = self.results.get(sql)
        if result is None:
            return QueryResult(rows=[], info=QueryInfo(num_rows="0", affected_rows="1", insert_id="7"))
        # fresh row dicts per call, conversion mutates them
        return QueryResult(rows=[dict(row) for row in result.rows], info=result.info)

    async def close(self):
        self.close_count += 1
        self._connected = False
        self.emit("close")

    def drop(self):
        """Simulate the server going away."""
        self._connected = False
        self.emit("close")

    def sql(self):
        return [statement for statement, _ in self.statements]


class FakeDriverFactory:

    def __init__(self):
        self.drivers = []
        self.connect_log = []
        self.results = {}
        self.fail_on = {}
        self.fail_connect = set()

    def __call__(self):
        driver = FakeDriver(self, index=len(self.drivers))
        if driver.index in self.fail_connect:
            driver.fail_connect = 1
        self.drivers.append(driver)
        return driver

    @property
    def basic(self):
        return self.drivers[0]

    @property
    def pooled(self):
        return self.drivers[1:]

    def manager(self, **options):
        options.setdefault("reconnect_delay", 0)
        return TransactionManager(Settings(**options), driver_factory=self)

    async def start(self, **options):
        manager = self.manager(**options)
        await manager.init()
        return manager


@pytest.fixture
def fake():
    return FakeDriverFactory()
