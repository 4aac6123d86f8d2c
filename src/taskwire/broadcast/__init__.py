from taskwire.broadcast.forwarder import (
    MessageForwarder,
    create_forwarder,
    forward_message,
    run_forwarder_supervised,
)
from taskwire.broadcast.registry import BroadcastMessage, BroadcastRegistry, Outbox, user_key

__all__ = [
    "BroadcastMessage",
    "BroadcastRegistry",
    "MessageForwarder",
    "Outbox",
    "create_forwarder",
    "forward_message",
    "run_forwarder_supervised",
    "user_key",
]
