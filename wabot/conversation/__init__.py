"""Conversation message orchestration."""

from wabot.conversation.batcher import BatchScheduler, PendingBatch
from wabot.conversation.commands import CommandInterpreter, CommandResult, Directive
from wabot.conversation.dedup import DedupCache
from wabot.conversation.orchestrator import ConversationOrchestrator
from wabot.conversation.orders import OrderDraft, OrderLogger
from wabot.conversation.pause import PauseRegistry
from wabot.conversation.sender import SafeSender
from wabot.conversation.turn import TurnOutcome, TurnProcessor

__all__ = [
    "BatchScheduler",
    "CommandInterpreter",
    "CommandResult",
    "ConversationOrchestrator",
    "DedupCache",
    "Directive",
    "OrderDraft",
    "OrderLogger",
    "PauseRegistry",
    "PendingBatch",
    "SafeSender",
    "TurnOutcome",
    "TurnProcessor",
]
