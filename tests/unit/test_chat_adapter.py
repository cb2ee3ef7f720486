"""Tests for agentfleet.chat.adapter."""

from __future__ import annotations

import asyncio

import pytest

from agentfleet.chat.adapter import ChatAdapter, ChatMessage

DEBOUNCE = 0.02


class TestDirectMessages:
    def test_roles_and_ordering(self) -> None:
        chat = ChatAdapter()
        chat.add_user_message("s1", "build it")
        chat.add_agent_message("s1", "done")
        chat.add_system_message("s1", "exited")

        messages = chat.get_messages("s1")
        assert [(m.role, m.text) for m in messages] == [
            ("user", "build it"),
            ("agent", "done"),
            ("system", "exited"),
        ]
        assert [m.id for m in messages] == ["msg-1", "msg-2", "msg-3"]
        assert chat.has_agent_message("s1")
        assert not chat.has_agent_message("s2")

    def test_get_messages_returns_copy(self) -> None:
        chat = ChatAdapter()
        chat.add_user_message("s1", "hi")
        chat.get_messages("s1").clear()
        assert len(chat.get_messages("s1")) == 1

    def test_to_dict(self) -> None:
        msg = ChatMessage("msg-1", "s1", "agent", "ok", timestamp=5)
        assert msg.to_dict() == {"id": "msg-1", "sessionId": "s1", "role": "agent", "text": "ok", "timestamp": 5}

    def test_listeners_and_unsubscribe(self) -> None:
        chat = ChatAdapter()
        seen: list[str] = []
        unsubscribe = chat.on_message("s1", lambda m: seen.append(m.text))
        chat.on_message("s1", lambda m: 1 / 0)

        chat.add_agent_message("s1", "one")
        chat.add_agent_message("s2", "elsewhere")
        unsubscribe()
        chat.add_agent_message("s1", "two")

        assert seen == ["one"]
        assert [m.text for m in chat.get_messages("s1")] == ["one", "two"]


class TestPtyOutput:
    @pytest.mark.asyncio
    async def test_fragments_coalesce_after_silence(self) -> None:
        chat = ChatAdapter(debounce=DEBOUNCE)
        chat.process_pty_output("s1", "\x1b[32mHel")
        chat.process_pty_output("s1", "lo\x1b[0m\r\n")
        assert chat.get_messages("s1") == []

        await asyncio.sleep(DEBOUNCE * 5)
        assert [m.text for m in chat.get_messages("s1")] == ["Hello"]

    @pytest.mark.asyncio
    async def test_blank_output_adds_nothing(self) -> None:
        chat = ChatAdapter(debounce=DEBOUNCE)
        chat.process_pty_output("s1", "\x1b[2J\r\n   ")
        await asyncio.sleep(DEBOUNCE * 5)
        assert chat.get_messages("s1") == []

    @pytest.mark.asyncio
    async def test_flush_now(self) -> None:
        chat = ChatAdapter(debounce=10)
        chat.process_pty_output("s1", "partial")
        message = chat.flush("s1")
        assert message is not None and message.text == "partial"
        assert chat.flush("s1") is None

    @pytest.mark.asyncio
    async def test_clear_session_cancels_pending(self) -> None:
        chat = ChatAdapter(debounce=DEBOUNCE)
        chat.add_user_message("s1", "hi")
        chat.process_pty_output("s1", "pending text")
        chat.clear_session("s1")
        await asyncio.sleep(DEBOUNCE * 5)
        assert chat.get_messages("s1") == []
