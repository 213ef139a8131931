from __future__ import annotations

import math
from dataclasses import replace

import pytest

from mindsync.config import MergeConfig
from mindsync.exceptions import StorageError
from mindsync.graph.invariants import (
    build_adjacency,
    build_reverse_adjacency,
    find_orphans,
    find_roots,
)
from mindsync.graph.model import Position, Shape
from mindsync.graph.state import MapState
from mindsync.merge import MergeEngine
from mindsync.oplog import InMemoryOperationLog
from mindsync.operations import (
    NodeData,
    Operation,
    OperationKind,
    OperationRecord,
    RejectReason,
)

from tests.utils import Author, node, vc


async def test_add_node_fills_defaults(engine: MergeEngine, state: MapState, alice: Author) -> None:
    result = await engine.merge(state, alice.add_node("a"))
    assert result.accepted
    assert result.sequence == 1
    assert result.merged_clock == vc(alice=1)

    added = state.active_node("a")
    assert added is not None
    assert added.label == "New Node"
    assert added.position == Position(0, 0)
    assert added.style.color == "#3b82f6"
    assert added.style.shape is Shape.circle
    assert added.created_by == "alice"
    assert state.version == 1
    assert state.stats.node_count == 1
    assert state.stats.total_operations == 1


async def test_add_node_generates_id(
    engine: MergeEngine, state: MapState, alice: Author, memory_log: InMemoryOperationLog
) -> None:
    op = alice.add_node(None, "anonymous")
    result = await engine.merge(state, op)
    assert result.accepted
    assert result.entity is not None
    assert result.entity.id.startswith("node_")

    record = await memory_log.get(op.operation_id)
    assert record is not None
    assert record.entity_id == result.entity.id
    assert record.payload["node_id"] == result.entity.id
    assert record.payload["label"] == "anonymous"
    assert record.previous_state is None


async def test_record_carries_client_metadata(
    engine: MergeEngine, state: MapState, memory_log: InMemoryOperationLog
) -> None:
    author = Author("carol", session_id="s-1")
    author.issue(OperationKind.ADD_NODE, NodeData(node_id="x"))
    op = author.add_node("a")
    await engine.merge(state, op)

    record = await memory_log.get(op.operation_id)
    assert record is not None
    assert record.client_id == "carol"
    assert record.session_id == "s-1"
    assert record.client_sequence == 2
    assert record.sequence == 1


async def test_concurrent_update_last_writer_wins(
    engine: MergeEngine, state: MapState, alice: Author, bob: Author
) -> None:
    await engine.merge(state, alice.add_node("n", "start"))
    bob.observe(state.clock)

    first = await engine.merge(state, alice.update_node("n", "from alice"))
    assert first.accepted
    assert not first.conflict

    second = await engine.merge(state, bob.update_node("n", "from bob"))
    assert second.accepted
    assert second.conflict

    updated = state.active_node("n")
    assert updated is not None
    assert updated.label == "from bob"
    assert updated.last_modified_by == "bob"
    assert updated.version == 3
    assert updated.clock == vc(alice=2, bob=1)
    assert state.clock == vc(alice=2, bob=1)


async def test_update_only_touches_provided_fields(
    engine: MergeEngine, state: MapState, alice: Author, memory_log: InMemoryOperationLog
) -> None:
    await engine.merge(state, alice.add_node("n", "label", color="#000000"))
    before = state.active_node("n")
    assert before is not None

    op = alice.update_node("n", shape=Shape.diamond)
    await engine.merge(state, op)

    after = state.active_node("n")
    assert after is not None
    assert after.label == "label"
    assert after.style.color == "#000000"
    assert after.style.shape is Shape.diamond

    record = await memory_log.get(op.operation_id)
    assert record is not None
    assert record.previous_state == before.to_dict()
    assert record.payload == {
        "node_id": "n", "label": None, "position": None, "color": None, "shape": "diamond",
    }


async def test_move_node_only_changes_position(
    engine: MergeEngine, state: MapState, alice: Author
) -> None:
    await engine.merge(state, alice.add_node("n", "label"))
    result = await engine.merge(state, alice.move_node("n", 10, 20))
    assert result.accepted
    moved = state.active_node("n")
    assert moved is not None
    assert moved.position == Position(10, 20)
    assert moved.label == "label"


async def test_move_without_position_is_invalid(
    engine: MergeEngine, state: MapState, alice: Author
) -> None:
    await engine.merge(state, alice.add_node("n"))
    result = await engine.merge(state, alice.issue(OperationKind.MOVE_NODE, NodeData(node_id="n")))
    assert not result.accepted
    assert result.reason is RejectReason.invalid_position


async def test_non_finite_position_is_invalid(
    engine: MergeEngine, state: MapState, alice: Author
) -> None:
    result = await engine.merge(state, alice.add_node("n", position=Position(math.nan, 0)))
    assert result.reason is RejectReason.invalid_position
    assert state.node("n") is None


@pytest.mark.parametrize("x", [2**64, -(2**60), 1e300, math.inf])
async def test_out_of_range_position_is_invalid(
    engine: MergeEngine, state: MapState, alice: Author, x: float
) -> None:
    await engine.merge(state, alice.add_node("n"))
    result = await engine.merge(state, alice.move_node("n", x, 0))
    assert result.reason is RejectReason.invalid_position
    assert state.active_node("n").position == Position(0, 0)


async def test_label_limit(state: MapState, alice: Author, memory_log: InMemoryOperationLog) -> None:
    engine = MergeEngine(memory_log, MergeConfig(max_label_length=5))
    result = await engine.merge(state, alice.add_node("n", "too long"))
    assert result.reason is RejectReason.content_too_long

    assert (await engine.merge(state, alice.add_node("n", "short"))).accepted
    result = await engine.merge(state, alice.update_node("n", "way too long"))
    assert result.reason is RejectReason.content_too_long
    assert state.active_node("n").label == "short"


async def test_stale_operation_is_rejected(
    engine: MergeEngine, state: MapState, alice: Author
) -> None:
    await engine.merge(state, alice.add_node("a"))
    await engine.merge(state, alice.add_node("b"))

    stale = Operation(
        kind=OperationKind.UPDATE_NODE,
        map_id="m1",
        client_id="alice",
        clock=vc(alice=1),
        data=NodeData(node_id="a", label="old"),
    )
    result = await engine.merge(state, stale)
    assert not result.accepted
    assert result.reason is RejectReason.stale
    assert state.version == 2


async def test_node_ahead_of_operation_is_stale(engine: MergeEngine, alice: Author) -> None:
    state = MapState("m1")
    state.apply(nodes=[replace(node("a"), clock=vc(alice=3))])

    result = await engine.merge(state, alice.update_node("a", "late"))
    assert result.reason is RejectReason.stale
    assert state.active_node("a").label == "a"


async def test_resubmitted_operation_is_not_applied_twice(
    engine: MergeEngine, state: MapState, alice: Author
) -> None:
    op = alice.add_node("a")
    assert (await engine.merge(state, op)).accepted
    again = await engine.merge(state, op)
    assert not again.accepted
    assert again.reason is RejectReason.already_exists
    assert state.version == 1
    assert state.stats.total_operations == 1


async def test_add_existing_node_is_rejected(
    engine: MergeEngine, state: MapState, alice: Author
) -> None:
    await engine.merge(state, alice.add_node("a"))
    result = await engine.merge(state, alice.add_node("a"))
    assert result.reason is RejectReason.already_exists


async def test_deleted_node_can_be_added_again(
    engine: MergeEngine, state: MapState, alice: Author
) -> None:
    await engine.merge(state, alice.add_node("a", "first"))
    await engine.merge(state, alice.delete_node("a"))
    result = await engine.merge(state, alice.add_node("a", "second"))
    assert result.accepted
    revived = state.active_node("a")
    assert revived is not None
    assert revived.label == "second"
    assert revived.version == 3
    assert state.stats.node_count == 1


async def test_missing_targets_are_not_found(
    engine: MergeEngine, state: MapState, alice: Author
) -> None:
    await engine.merge(state, alice.add_node("a"))
    for op in (
        alice.update_node("ghost", "x"),
        alice.move_node("ghost", 1, 1),
        alice.delete_node("ghost"),
        alice.add_edge("a", "ghost"),
        alice.delete_edge("e-ghost"),
        alice.delete_edge(source="a", target="ghost"),
    ):
        result = await engine.merge(state, op)
        assert result.reason is RejectReason.not_found, op.kind


async def test_edge_rules(engine: MergeEngine, state: MapState, alice: Author) -> None:
    for node_id in ("a", "b", "c"):
        await engine.merge(state, alice.add_node(node_id))

    assert (await engine.merge(state, alice.add_edge("a", "a"))).reason is RejectReason.self_loop

    first = await engine.merge(state, alice.add_edge("a", "b", "e1"))
    assert first.accepted
    assert (await engine.merge(state, alice.add_edge("a", "b"))).reason is RejectReason.duplicate_edge
    assert (await engine.merge(state, alice.add_edge("b", "a"))).reason is RejectReason.duplicate_edge
    assert (await engine.merge(state, alice.add_edge("b", "c", "e1"))).reason is RejectReason.already_exists

    assert (await engine.merge(state, alice.add_edge("b", "c"))).accepted
    result = await engine.merge(state, alice.add_edge("c", "a"))
    assert result.reason is RejectReason.would_create_cycle
    assert result.cycle == ("a", "b", "c")
    assert state.stats.edge_count == 2


async def test_concurrent_edges_cannot_close_a_cycle(
    engine: MergeEngine, state: MapState, alice: Author, bob: Author
) -> None:
    await engine.merge(state, alice.add_node("a"))
    await engine.merge(state, alice.add_node("b"))
    await engine.merge(state, alice.add_node("c"))
    await engine.merge(state, alice.add_edge("a", "b"))
    bob.observe(state.clock)

    assert (await engine.merge(state, alice.add_edge("b", "c"))).accepted
    result = await engine.merge(state, bob.add_edge("c", "a"))
    assert not result.accepted
    assert result.reason is RejectReason.would_create_cycle
    assert result.cycle == ("a", "b", "c")


async def test_edge_ids_are_generated(engine: MergeEngine, state: MapState, alice: Author) -> None:
    await engine.merge(state, alice.add_node("a"))
    await engine.merge(state, alice.add_node("b"))
    result = await engine.merge(state, alice.add_edge("a", "b"))
    assert result.entity is not None
    assert result.entity.id.startswith("edge_")


async def test_delete_node_cascades_to_edges(
    engine: MergeEngine, state: MapState, alice: Author, memory_log: InMemoryOperationLog
) -> None:
    for node_id in ("a", "b", "c"):
        await engine.merge(state, alice.add_node(node_id))
    await engine.merge(state, alice.add_edge("a", "b", "e1"))
    await engine.merge(state, alice.add_edge("c", "a", "e2"))
    await engine.merge(state, alice.add_edge("c", "b", "e3"))

    op = alice.delete_node("a")
    result = await engine.merge(state, op)
    assert result.accepted
    assert state.active_node("a") is None
    assert state.node("a").deleted
    assert [e.id for e in state.active_edges()] == ["e3"]
    assert state.stats.node_count == 2
    assert state.stats.edge_count == 1
    assert "a" not in state.children

    record = await memory_log.get(op.operation_id)
    assert record is not None
    assert {e["id"] for e in record.previous_state["incident_edges"]} == {"e1", "e2"}


async def test_delete_edge_by_pair_in_either_direction(
    engine: MergeEngine, state: MapState, alice: Author
) -> None:
    await engine.merge(state, alice.add_node("a"))
    await engine.merge(state, alice.add_node("b"))
    await engine.merge(state, alice.add_edge("a", "b", "e1"))

    result = await engine.merge(state, alice.delete_edge(source="b", target="a"))
    assert result.accepted
    assert result.entity.id == "e1"
    assert state.active_edge("e1") is None
    assert state.stats.edge_count == 0
    assert (await engine.merge(state, alice.add_edge("b", "a"))).accepted


async def test_concurrent_add_is_flagged(
    engine: MergeEngine, state: MapState, alice: Author, bob: Author
) -> None:
    await engine.merge(state, alice.add_node("a"))
    result = await engine.merge(state, bob.add_node("b"))
    assert result.accepted
    assert result.conflict
    assert state.clock == vc(alice=1, bob=1)


async def test_failed_append_leaves_state_untouched(state: MapState, alice: Author) -> None:
    class FailingLog(InMemoryOperationLog):
        async def append(self, record: OperationRecord) -> None:
            raise StorageError("disk full")

    engine = MergeEngine(FailingLog())
    with pytest.raises(StorageError):
        await engine.merge(state, alice.add_node("a"))

    assert state.node("a") is None
    assert state.version == 0
    assert state.clock == vc()
    assert state.stats.total_operations == 0


async def test_replay_rebuilds_identical_state(
    engine: MergeEngine,
    state: MapState,
    alice: Author,
    bob: Author,
    memory_log: InMemoryOperationLog,
) -> None:
    for node_id in ("a", "b", "c"):
        await engine.merge(state, alice.add_node(node_id))
    await engine.merge(state, alice.add_edge("a", "b"))
    await engine.merge(state, bob.add_edge("b", "c"))
    await engine.merge(state, bob.update_node("a", "renamed", color="#ff0000"))
    await engine.merge(state, alice.delete_node("c"))
    await engine.merge(state, alice.add_node(None, "generated"))

    rebuilt = MapState("m1")
    for record in await memory_log.find_since("m1", 0):
        assert engine.replay(rebuilt, record)

    assert rebuilt.to_dict() == state.to_dict()


async def test_replay_reports_inapplicable_record(
    engine: MergeEngine, state: MapState, alice: Author, memory_log: InMemoryOperationLog
) -> None:
    await engine.merge(state, alice.add_node("a"))
    await engine.merge(state, alice.update_node("a", "x"))
    update = (await memory_log.find_since("m1", 1))[0]
    assert not engine.replay(MapState("m1"), update)


async def test_second_of_two_concurrent_updates_wins(engine: MergeEngine, state: MapState) -> None:
    seed = Operation(
        kind=OperationKind.ADD_NODE,
        map_id="m1",
        client_id="server",
        clock=vc(),
        data=NodeData(node_id="n", label="seed"),
    )
    assert (await engine.merge(state, seed)).accepted

    x = Author("X")
    y = Author("Y")
    assert (await engine.merge(state, x.update_node("n", "A"))).accepted
    second = await engine.merge(state, y.update_node("n", "B"))
    assert second.accepted
    assert second.conflict

    assert state.active_node("n").label == "B"
    assert state.clock == vc(X=1, Y=1)


async def test_deleting_a_node_updates_orphans(
    engine: MergeEngine, state: MapState, alice: Author
) -> None:
    for node_id in ("root", "n", "leaf", "other"):
        await engine.merge(state, alice.add_node(node_id))
    await engine.merge(state, alice.add_edge("root", "n"))
    await engine.merge(state, alice.add_edge("n", "leaf"))
    await engine.merge(state, alice.add_edge("root", "other"))

    result = await engine.merge(state, alice.delete_node("n"))
    assert result.accepted
    assert state.stats.edge_count == 1

    nodes = state.active_nodes()
    adjacency = build_adjacency(nodes, state.active_edges())
    roots = find_roots(nodes, build_reverse_adjacency(nodes, state.active_edges()))
    assert sorted(roots) == ["leaf", "root"]
    assert find_orphans(nodes, adjacency, roots) == []
    assert "n" not in {n.id for n in nodes}


async def test_incident_edges_follow_the_active_neighbourhood(
    engine: MergeEngine, state: MapState, alice: Author
) -> None:
    for node_id in ("a", "b", "c", "d"):
        await engine.merge(state, alice.add_node(node_id))
    await engine.merge(state, alice.add_edge("a", "b", "e1"))
    await engine.merge(state, alice.add_edge("c", "a", "e2"))
    await engine.merge(state, alice.add_edge("b", "d", "e3"))

    assert sorted(e.id for e in state.incident_edges("a")) == ["e1", "e2"]
    assert [e.id for e in state.incident_edges("d")] == ["e3"]

    await engine.merge(state, alice.delete_edge("e1"))
    assert [e.id for e in state.incident_edges("a")] == ["e2"]
    assert [e.id for e in state.incident_edges("b")] == ["e3"]

    await engine.merge(state, alice.delete_node("c"))
    assert state.incident_edges("a") == []
    assert state.incident_edges("c") == []
