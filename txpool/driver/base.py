"""
Driver capability used by the pool.

The pool never speaks a wire protocol itself. A driver opens one session,
runs statements on it, and signals lifecycle events:

    ready  - emitted once after every successful connect()
    error  - emitted with the exception when connect() fails
    close  - emitted when the session ends, expectedly or not
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from txpool.events import EventEmitter


@dataclass
class ColumnMeta:
    type: str


@dataclass
class QueryInfo:
    num_rows: Any = None
    affected_rows: Any = None
    insert_id: Any = None
    metadata: Optional[Dict[str, ColumnMeta]] = None


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    info: Optional[QueryInfo] = None

    def __len__(self):
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def __getitem__(self, index):
        return self.rows[index]


class Driver(EventEmitter, ABC):

    @property
    @abstractmethod
    def connected(self) -> bool:
        """True while the session is open."""

    @abstractmethod
    async def connect(self, config: Mapping[str, Any]) -> None:
        """Open the session. Must emit 'ready' on success, 'error' and raise on failure."""

    @abstractmethod
    async def query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> QueryResult:
        """Run one statement on this session."""

    @abstractmethod
    async def close(self) -> None:
        """End the session. Must emit 'close'."""
