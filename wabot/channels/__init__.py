"""Chat channels."""

from wabot.channels.base import BaseChannel
from wabot.channels.manager import ChannelManager

__all__ = ["BaseChannel", "ChannelManager"]
