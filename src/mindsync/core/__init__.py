from mindsync.core.actor import ActorCell, ActorContext
from mindsync.core.behavior import Behavior, Signal
from mindsync.core.mailbox import Mailbox
from mindsync.core.ref import ActorId, ActorRef, LocalActorRef
from mindsync.core.system import ActorSystem

__all__ = [
    "ActorCell",
    "ActorContext",
    "ActorId",
    "ActorRef",
    "ActorSystem",
    "Behavior",
    "LocalActorRef",
    "Mailbox",
    "Signal",
]
