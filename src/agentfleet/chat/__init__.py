"""Per-session chat transcripts built from agent output."""

from agentfleet.chat.adapter import ChatAdapter, ChatMessage

__all__ = ["ChatAdapter", "ChatMessage"]
