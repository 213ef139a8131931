"""msgpack frames exchanged with clients.

Inbound frames are validated here, at the transport boundary: anything
that cannot become an ``Operation`` raises ``InvalidOperationError`` and
never reaches the merge engine. Semantic checks (label length, position
values, graph invariants) stay with the merge engine.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import msgpack

from mindsync.clock import VectorClock
from mindsync.exceptions import InvalidOperationError
from mindsync.graph.model import GraphSnapshot, MapInfo, Position, Shape
from mindsync.operations import (
    EdgeData,
    EntityKind,
    MergeResult,
    NodeData,
    Operation,
    OperationData,
    OperationKind,
    OperationRecord,
    RollbackResult,
    new_operation_id,
)


def encode(frame: dict[str, Any]) -> bytes:
    return msgpack.packb(frame, use_bin_type=True)


def decode_frame(data: bytes) -> dict[str, Any]:
    try:
        frame = msgpack.unpackb(data, raw=False)
    except (msgpack.UnpackException, ValueError, TypeError) as exc:
        msg = f"Undecodable frame: {exc}"
        raise InvalidOperationError(msg) from exc
    if not isinstance(frame, dict) or not isinstance(frame.get("kind"), str):
        msg = "Frame must be a map with a 'kind'"
        raise InvalidOperationError(msg)
    return frame


def _field[T](data: Mapping[str, Any], name: str, kind: type[T], *, required: bool = True) -> T | None:
    value = data.get(name)
    if value is None:
        if required:
            msg = f"Missing field '{name}'"
            raise InvalidOperationError(msg)
        return None
    if not isinstance(value, kind):
        msg = f"Field '{name}' must be {kind.__name__}, got {type(value).__name__}"
        raise InvalidOperationError(msg)
    return value


def _clock(value: Any) -> VectorClock:
    if value is None:
        return VectorClock()
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, int) and not isinstance(v, bool) and v >= 0
        for k, v in value.items()
    ):
        msg = "Clock must map client ids to non-negative integers"
        raise InvalidOperationError(msg)
    return VectorClock.from_dict(value)


def _node_data(kind: OperationKind, data: Mapping[str, Any]) -> NodeData:
    position = _field(data, "position", dict, required=False)
    if position is not None and not {"x", "y"} <= position.keys():
        msg = "Position needs 'x' and 'y'"
        raise InvalidOperationError(msg)
    shape = _field(data, "shape", str, required=False)
    if shape is not None and shape not in {s.value for s in Shape}:
        msg = f"Unknown shape '{shape}'"
        raise InvalidOperationError(msg)
    return NodeData(
        node_id=_field(data, "node_id", str, required=kind is not OperationKind.ADD_NODE),
        label=_field(data, "label", str, required=False),
        position=Position(x=position["x"], y=position["y"]) if position is not None else None,
        color=_field(data, "color", str, required=False),
        shape=Shape(shape) if shape is not None else None,
    )


def _edge_data(kind: OperationKind, data: Mapping[str, Any]) -> EdgeData:
    edge_id = _field(data, "edge_id", str, required=False)
    by_pair = kind is OperationKind.ADD_EDGE or edge_id is None
    return EdgeData(
        edge_id=edge_id,
        source=_field(data, "source", str, required=by_pair),
        target=_field(data, "target", str, required=by_pair),
    )


def operation_from_frame(frame: Mapping[str, Any]) -> Operation:
    type_name = _field(frame, "type", str)
    try:
        kind = OperationKind(type_name)
    except ValueError:
        msg = f"Unknown operation type '{type_name}'"
        raise InvalidOperationError(msg) from None

    data = _field(frame, "data", dict)
    payload: OperationData
    match kind.entity_kind:
        case EntityKind.node:
            payload = _node_data(kind, data)
        case EntityKind.edge:
            payload = _edge_data(kind, data)

    return Operation(
        kind=kind,
        map_id=_field(frame, "map_id", str),
        client_id=_field(frame, "client_id", str),
        clock=_clock(frame.get("clock")),
        data=payload,
        operation_id=_field(frame, "operation_id", str, required=False) or new_operation_id(),
        session_id=_field(frame, "session_id", str, required=False),
    )


def sync_request(frame: Mapping[str, Any]) -> tuple[str, int]:
    """``(map_id, since)`` of a catch-up request."""
    since = _field(frame, "since", int, required=False) or 0
    return _field(frame, "map_id", str), since


def snapshot_request(frame: Mapping[str, Any]) -> str:
    return _field(frame, "map_id", str)


def decode_operation(data: bytes) -> Operation:
    frame = decode_frame(data)
    if frame["kind"] != "operation":
        msg = f"Expected an operation frame, got '{frame['kind']}'"
        raise InvalidOperationError(msg)
    return operation_from_frame(frame)


def operation_frame(operation: Operation) -> bytes:
    return encode({"kind": "operation", **operation.to_dict()})


def result_frame(result: MergeResult) -> bytes:
    return encode({"kind": "result", **result.to_dict()})


def applied_frame(operation: Operation, result: MergeResult) -> bytes:
    return encode({
        "kind": "applied",
        "operation": operation.to_dict(),
        "entity": result.entity.to_dict() if result.entity is not None else None,
        "merged_clock": result.merged_clock.to_dict() if result.merged_clock is not None else None,
        "sequence": result.sequence,
    })


def rolled_back_frame(map_id: str, result: RollbackResult) -> bytes:
    return encode({"kind": "rolled_back", "map_id": map_id, **result.to_dict()})


def operations_frame(map_id: str, records: Iterable[OperationRecord]) -> bytes:
    return encode({
        "kind": "operations",
        "map_id": map_id,
        "operations": [r.to_dict() for r in records],
    })


def snapshot_frame(snapshot: GraphSnapshot) -> bytes:
    return encode({"kind": "snapshot", **snapshot.to_dict()})


def info_frame(info: MapInfo) -> bytes:
    return encode({"kind": "info", **info.to_dict()})


def error_frame(message: str) -> bytes:
    return encode({"kind": "error", "message": message})
