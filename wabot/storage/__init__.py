"""File-backed persistence for transcripts and orders."""

from wabot.storage.conversations import ConversationStore
from wabot.storage.orders import OrderStore

__all__ = ["ConversationStore", "OrderStore"]
