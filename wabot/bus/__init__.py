"""Message bus module for decoupled channel-orchestrator communication."""

from wabot.bus.events import InboundMessage, OutboundMessage
from wabot.bus.queue import MessageBus

__all__ = ["MessageBus", "InboundMessage", "OutboundMessage"]
