"""Vector clocks for causal ordering of map operations.

One authoritative clock is kept per map; every operation carries the clock
its originating client believed was current when it issued the operation.
Missing entries count as zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ClockOrdering(Enum):
    """Causal relation of a clock to another one."""

    before = "before"
    after = "after"
    concurrent = "concurrent"
    equal = "equal"


@dataclass(slots=True)
class VectorClock:
    clock: dict[str, int] = field(default_factory=dict)

    def get(self, client_id: str) -> int:
        return self.clock.get(client_id, 0)

    def increment(self, client_id: str) -> VectorClock:
        new_clock = dict(self.clock)
        new_clock[client_id] = new_clock.get(client_id, 0) + 1
        return VectorClock(new_clock)

    def merge(self, other: VectorClock) -> VectorClock:
        all_clients = set(self.clock) | set(other.clock)
        return VectorClock({
            client: max(self.get(client), other.get(client))
            for client in sorted(all_clients)
        })

    def compare(self, other: VectorClock) -> ClockOrdering:
        """Relation of ``self`` to ``other`` over the union of their keys.

        ``after`` means ``self`` has seen everything ``other`` has and more.
        """
        self_greater = False
        other_greater = False
        for client in set(self.clock) | set(other.clock):
            mine, theirs = self.get(client), other.get(client)
            if mine > theirs:
                self_greater = True
            elif theirs > mine:
                other_greater = True

        match (self_greater, other_greater):
            case (True, True):
                return ClockOrdering.concurrent
            case (True, False):
                return ClockOrdering.after
            case (False, True):
                return ClockOrdering.before
            case _:
                return ClockOrdering.equal

    def dominates(self, other: VectorClock) -> bool:
        return self.compare(other) is ClockOrdering.after

    def concurrent(self, other: VectorClock) -> bool:
        return self.compare(other) is ClockOrdering.concurrent

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VectorClock):
            return False
        return self.compare(other) is ClockOrdering.equal

    def __hash__(self) -> int:
        return hash(tuple(sorted((k, v) for k, v in self.clock.items() if v)))

    def __repr__(self) -> str:
        items = ", ".join(f"{k}:{v}" for k, v in sorted(self.clock.items()))
        return f"VectorClock({{{items}}})"

    def to_dict(self) -> dict[str, int]:
        return dict(self.clock)

    @classmethod
    def from_dict(cls, data: dict[str, int] | None) -> VectorClock:
        return cls(dict(data or {}))


def is_causally_ready(op_clock: VectorClock, current: VectorClock) -> bool:
    """Whether the receiver has already seen, in aggregate, everything ``op_clock`` depends on.

    This is a coarse map-level admissibility check. Out-of-order operations
    are not buffered.
    """
    return op_clock.compare(current) in (ClockOrdering.before, ClockOrdering.equal)
