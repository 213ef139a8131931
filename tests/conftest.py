"""Shared fixtures for mindsync tests."""

from __future__ import annotations

import pytest

from mindsync.graph.state import MapState
from mindsync.merge import MergeEngine
from mindsync.oplog import InMemoryOperationLog, OperationLog, SqliteOperationLog
from mindsync.rollback import RollbackEngine

from tests.utils import Author


@pytest.fixture(params=["memory", "sqlite"])
def log(request: pytest.FixtureRequest) -> OperationLog:
    match request.param:
        case "memory":
            return InMemoryOperationLog()
        case "sqlite":
            backend = SqliteOperationLog()
            request.addfinalizer(backend.close)
            return backend
        case _:
            raise ValueError(request.param)


@pytest.fixture
def memory_log() -> InMemoryOperationLog:
    return InMemoryOperationLog()


@pytest.fixture
def state() -> MapState:
    return MapState("m1")


@pytest.fixture
def engine(memory_log: InMemoryOperationLog) -> MergeEngine:
    return MergeEngine(memory_log)


@pytest.fixture
def rollback_engine(memory_log: InMemoryOperationLog) -> RollbackEngine:
    return RollbackEngine(memory_log)


@pytest.fixture
def alice() -> Author:
    return Author("alice")


@pytest.fixture
def bob() -> Author:
    return Author("bob")
