from __future__ import annotations

from typing import Any

import msgpack
import pytest

from mindsync.codec import (
    applied_frame,
    decode_frame,
    decode_operation,
    encode,
    error_frame,
    operation_frame,
    operations_frame,
    result_frame,
    sync_request,
)
from mindsync.exceptions import InvalidOperationError
from mindsync.graph.model import Position, Shape
from mindsync.operations import (
    EdgeData,
    MergeResult,
    NodeData,
    OperationKind,
    RejectReason,
)

from tests.utils import Author, record, vc


def frame(**overrides: Any) -> dict[str, Any]:
    base: dict[str, Any] = {
        "kind": "operation",
        "type": "UPDATE_NODE",
        "map_id": "m1",
        "client_id": "alice",
        "clock": {"alice": 2},
        "data": {"node_id": "n1", "label": "hello"},
    }
    base.update(overrides)
    return base


def test_decode_operation() -> None:
    op = decode_operation(encode(frame(operation_id="op-1", session_id="s1")))
    assert op.kind is OperationKind.UPDATE_NODE
    assert op.map_id == "m1"
    assert op.client_id == "alice"
    assert op.clock == vc(alice=2)
    assert op.data == NodeData(node_id="n1", label="hello")
    assert op.operation_id == "op-1"
    assert op.session_id == "s1"


def test_missing_operation_id_is_generated() -> None:
    op = decode_operation(encode(frame()))
    assert op.operation_id.startswith("op_")


def test_add_node_without_id_and_with_style() -> None:
    op = decode_operation(encode(frame(
        type="ADD_NODE",
        data={"label": "root", "position": {"x": 1.5, "y": -2}, "shape": "diamond"},
    )))
    assert op.data == NodeData(label="root", position=Position(1.5, -2), shape=Shape.diamond)


def test_missing_clock_is_empty() -> None:
    raw = frame()
    del raw["clock"]
    assert decode_operation(encode(raw)).clock == vc()


def test_edge_operations() -> None:
    add = decode_operation(encode(frame(type="ADD_EDGE", data={"source": "a", "target": "b"})))
    assert add.data == EdgeData(source="a", target="b")

    by_id = decode_operation(encode(frame(type="DELETE_EDGE", data={"edge_id": "e1"})))
    assert by_id.data == EdgeData(edge_id="e1")

    with pytest.raises(InvalidOperationError, match="source"):
        decode_operation(encode(frame(type="ADD_EDGE", data={"edge_id": "e1", "target": "b"})))
    with pytest.raises(InvalidOperationError, match="source"):
        decode_operation(encode(frame(type="DELETE_EDGE", data={})))


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"type": "RENAME_MAP"}, "Unknown operation type"),
        ({"type": None}, "Missing field 'type'"),
        ({"map_id": 7}, "Field 'map_id' must be str"),
        ({"client_id": None}, "Missing field 'client_id'"),
        ({"data": "n1"}, "Field 'data' must be dict"),
        ({"clock": {"alice": -1}}, "Clock"),
        ({"clock": {"alice": True}}, "Clock"),
        ({"clock": [1, 2]}, "Clock"),
        ({"data": {"label": "no id"}}, "Missing field 'node_id'"),
        ({"data": {"node_id": "n1", "shape": "hexagon"}}, "Unknown shape"),
        ({"data": {"node_id": "n1", "position": {"x": 1}}}, "Position"),
        ({"data": {"node_id": "n1", "label": 3}}, "Field 'label' must be str"),
    ],
)
def test_malformed_operations_are_rejected(overrides: dict[str, Any], message: str) -> None:
    with pytest.raises(InvalidOperationError, match=message):
        decode_operation(encode(frame(**overrides)))


def test_undecodable_frames() -> None:
    with pytest.raises(InvalidOperationError, match="Undecodable"):
        decode_frame(b"\xc1")
    with pytest.raises(InvalidOperationError, match="kind"):
        decode_frame(encode([1, 2, 3]))  # type: ignore[arg-type]
    with pytest.raises(InvalidOperationError, match="kind"):
        decode_frame(encode({"type": "ADD_NODE"}))
    with pytest.raises(InvalidOperationError, match="Expected an operation frame"):
        decode_operation(encode({"kind": "sync", "map_id": "m1"}))


def test_operation_frame_decodes_back() -> None:
    op = Author("alice", session_id="s1").add_node("n1", "root", position=Position(3, 4))
    assert decode_operation(operation_frame(op)) == op


def test_result_frame() -> None:
    result = MergeResult(
        accepted=False,
        operation_id="op-1",
        map_id="m1",
        reason=RejectReason.would_create_cycle,
        detail="cycle",
        cycle=("a", "b"),
    )
    data = msgpack.unpackb(result_frame(result))
    assert data["kind"] == "result"
    assert data["accepted"] is False
    assert data["reason"] == "would_create_cycle"
    assert data["cycle"] == ["a", "b"]


def test_applied_frame_carries_entity_and_sequence() -> None:
    op = Author("alice").add_node("n1")
    result = MergeResult(
        accepted=True, operation_id=op.operation_id, map_id="m1",
        merged_clock=vc(alice=1), sequence=4,
    )
    data = msgpack.unpackb(applied_frame(op, result))
    assert data["kind"] == "applied"
    assert data["operation"]["type"] == "ADD_NODE"
    assert data["merged_clock"] == {"alice": 1}
    assert data["sequence"] == 4
    assert data["entity"] is None


def test_operations_and_error_frames() -> None:
    data = msgpack.unpackb(operations_frame("m1", [record(1), record(2)]))
    assert data["kind"] == "operations"
    assert [r["sequence"] for r in data["operations"]] == [1, 2]

    assert msgpack.unpackb(error_frame("boom")) == {"kind": "error", "message": "boom"}


def test_sync_request() -> None:
    assert sync_request({"kind": "sync", "map_id": "m1"}) == ("m1", 0)
    assert sync_request({"kind": "sync", "map_id": "m1", "since": 12}) == ("m1", 12)
    with pytest.raises(InvalidOperationError):
        sync_request({"kind": "sync"})
