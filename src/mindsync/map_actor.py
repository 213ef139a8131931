"""One actor per map: the single authority that serializes its operations.

The actor recovers its ``MapState`` from the latest snapshot plus the
applied operations logged after it, then handles one message at a time.
Replies go to the ``reply_to`` ref carried by each request; engine
failures are answered with a ``Failure`` instead of killing the actor.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from mindsync.config import MergeConfig
from mindsync.core.actor import ActorContext
from mindsync.core.behavior import Behavior
from mindsync.core.ref import ActorRef
from mindsync.exceptions import MindsyncError
from mindsync.graph.state import MapState
from mindsync.merge import MergeEngine
from mindsync.oplog import MapSnapshot, OperationLog
from mindsync.operations import Operation, OperationStatus
from mindsync.rollback import RollbackEngine


@dataclass(frozen=True)
class ApplyOperation:
    operation: Operation
    reply_to: ActorRef[Any]


@dataclass(frozen=True)
class RollbackOperation:
    operation_id: str
    reply_to: ActorRef[Any]


@dataclass(frozen=True)
class GetSnapshot:
    reply_to: ActorRef[Any]


@dataclass(frozen=True)
class GetMapInfo:
    reply_to: ActorRef[Any]


@dataclass(frozen=True)
class Failure:
    """Reply sent when a request failed with an exception.

    ``fatal`` is set when the actor could not recover its state and must
    be respawned.
    """

    error: Exception
    fatal: bool = False


type MapMessage = ApplyOperation | RollbackOperation | GetSnapshot | GetMapInfo


async def recover(map_id: str, log: OperationLog, engine: MergeEngine) -> MapState:
    """Rebuild a map's state from its snapshot and the operations logged after it."""
    logger = logging.getLogger(f"mindsync.map.{map_id}")
    snapshot = await log.load_snapshot(map_id)
    if snapshot is not None:
        state = MapState.from_dict(snapshot.state)
        logger.debug("Recovering from snapshot at sequence %d", snapshot.sequence)
    else:
        state = MapState(map_id)

    records = await log.find_since(map_id, state.last_sequence)
    replayed = 0
    for record in records:
        if record.status is OperationStatus.applied and engine.replay(state, record):
            replayed += 1
    if records:
        logger.debug(
            "Recovered: replayed %d of %d operation(s) to sequence %d",
            replayed, len(records), state.last_sequence,
        )
    return state


def map_actor(
    map_id: str,
    log: OperationLog,
    *,
    merge_config: MergeConfig | None = None,
    snapshot_every: int = 50,
) -> Behavior[MapMessage]:
    logger = logging.getLogger(f"mindsync.map.{map_id}")
    merge_engine = MergeEngine(log, merge_config)
    rollback_engine = RollbackEngine(log)

    async def save_snapshot(state: MapState) -> bool:
        try:
            await log.save_snapshot(MapSnapshot(
                map_id=map_id,
                sequence=state.last_sequence,
                state=state.to_dict(),
                timestamp=time.time(),
            ))
        except MindsyncError:
            logger.warning("Snapshot at sequence %d failed, will retry", state.last_sequence)
            return False
        logger.debug("Snapshot saved at sequence %d", state.last_sequence)
        return True

    async def setup(ctx: ActorContext[MapMessage]) -> Behavior[MapMessage]:
        try:
            state = await recover(map_id, log, merge_engine)
        except Exception as exc:
            logger.exception("Cannot recover map %s", map_id)
            return failed(exc)
        return active(state, 0)

    def report(operation_id: str, error: Exception) -> None:
        if isinstance(error, MindsyncError):
            logger.warning("Operation %s failed: %s", operation_id, error)
        else:
            logger.exception("Operation %s failed unexpectedly", operation_id)

    def active(state: MapState, since_snapshot: int) -> Behavior[MapMessage]:
        async def receive(
            ctx: ActorContext[MapMessage], msg: MapMessage
        ) -> Behavior[MapMessage]:
            match msg:
                case ApplyOperation(operation=operation, reply_to=reply_to):
                    try:
                        result = await merge_engine.merge(state, operation)
                    except Exception as exc:
                        report(operation.operation_id, exc)
                        reply_to.tell(Failure(exc))
                        return Behavior.same()
                    reply_to.tell(result)
                    if not result.accepted:
                        return Behavior.same()
                    pending = since_snapshot + 1
                    if pending >= snapshot_every and await save_snapshot(state):
                        pending = 0
                    return active(state, pending)

                case RollbackOperation(operation_id=operation_id, reply_to=reply_to):
                    try:
                        result = await rollback_engine.rollback(state, operation_id)
                    except Exception as exc:
                        report(operation_id, exc)
                        reply_to.tell(Failure(exc))
                        return Behavior.same()
                    reply_to.tell(result)
                    if result.success and await save_snapshot(state):
                        return active(state, 0)
                    return Behavior.same()

                case GetSnapshot(reply_to=reply_to):
                    reply_to.tell(state.snapshot())
                    return Behavior.same()

                case GetMapInfo(reply_to=reply_to):
                    reply_to.tell(state.info())
                    return Behavior.same()

        return Behavior.receive(receive)

    def failed(error: Exception) -> Behavior[MapMessage]:
        async def receive(
            ctx: ActorContext[MapMessage], msg: MapMessage
        ) -> Behavior[MapMessage]:
            msg.reply_to.tell(Failure(error, fatal=True))
            return Behavior.same()

        return Behavior.receive(receive)

    return Behavior.setup(setup)
