from mindsync.broadcast import (
    Broadcaster,
    ConnectionRegistry,
    InMemoryConnectionRegistry,
    Session,
)
from mindsync.clock import ClockOrdering, VectorClock, is_causally_ready
from mindsync.config import (
    JournalConfig,
    MailboxConfig,
    MergeConfig,
    MindsyncConfig,
    SyncConfig,
    discover_config,
    load_config,
)
from mindsync.exceptions import InvalidOperationError, MindsyncError, StorageError
from mindsync.graph import (
    Edge,
    GraphSnapshot,
    GraphStats,
    MapInfo,
    MapState,
    MapStats,
    Node,
    NodeStyle,
    Position,
    Shape,
    ValidationReport,
    validate_graph,
)
from mindsync.hub import SyncHub
from mindsync.merge import MergeEngine
from mindsync.oplog import (
    InMemoryOperationLog,
    MapSnapshot,
    OperationLog,
    SqliteOperationLog,
    open_operation_log,
)
from mindsync.operations import (
    EdgeData,
    MergeResult,
    NodeData,
    Operation,
    OperationKind,
    OperationRecord,
    OperationStats,
    OperationStatus,
    RejectReason,
    RollbackReason,
    RollbackResult,
)
from mindsync.rollback import RollbackEngine

__all__ = [
    "Broadcaster",
    "ClockOrdering",
    "ConnectionRegistry",
    "Edge",
    "EdgeData",
    "GraphSnapshot",
    "GraphStats",
    "InMemoryConnectionRegistry",
    "InMemoryOperationLog",
    "InvalidOperationError",
    "JournalConfig",
    "MailboxConfig",
    "MapInfo",
    "MapSnapshot",
    "MapState",
    "MapStats",
    "MergeConfig",
    "MergeEngine",
    "MergeResult",
    "MindsyncConfig",
    "MindsyncError",
    "Node",
    "NodeData",
    "NodeStyle",
    "Operation",
    "OperationKind",
    "OperationLog",
    "OperationRecord",
    "OperationStats",
    "OperationStatus",
    "Position",
    "RejectReason",
    "RollbackEngine",
    "RollbackReason",
    "RollbackResult",
    "Session",
    "Shape",
    "SqliteOperationLog",
    "StorageError",
    "SyncConfig",
    "SyncHub",
    "ValidationReport",
    "VectorClock",
    "discover_config",
    "is_causally_ready",
    "load_config",
    "open_operation_log",
    "validate_graph",
]
