"""Operator presence tracking and websocket fanout."""

from chatqueue.infra.realtime.broadcaster import OperatorBroadcaster
from chatqueue.infra.realtime.presence import PresenceRegistry

__all__ = ["OperatorBroadcaster", "PresenceRegistry"]
