"""
Test the tutoring session engine: exchanges, streaming and duration.
"""

import pytest

from socratic_tutor.core.errors import AccessDenied, InvalidState
from socratic_tutor.engines import prompts
from socratic_tutor.engines.types import Attachment

from conftest import OTHER_USER_ID, USER_ID


async def _collect(stream):
    return [event async for event in stream]


@pytest.mark.asyncio
class TestSessions:

    async def test_start_session_with_subject(self, services):
        chat = await services.sessions.start_session(USER_ID, "mathematics")

        assert chat.id is not None
        assert chat.user_id == USER_ID
        assert chat.subject == "mathematics"
        assert chat.difficulty == "intermediate"
        assert chat.is_active is True

        progress = await services.progression.get_subject_progress(USER_ID, "mathematics")
        assert progress["total_sessions"] == 1

    async def test_start_general_session(self, services):
        chat = await services.sessions.start_session(USER_ID)
        assert chat.subject is None
        assert await services.progression.get_progress(USER_ID) == []

    async def test_list_sessions_with_preview(self, services):
        first = await services.sessions.start_session(USER_ID, "mathematics")
        second = await services.sessions.start_session(USER_ID)
        await services.sessions.start_session(OTHER_USER_ID)
        await services.sessions.submit_message(first.id, USER_ID, "What is algebra?")

        sessions = await services.sessions.list_sessions(USER_ID)

        assert [item["id"] for item in sessions] == [first.id, second.id]
        assert sessions[0]["message_count"] == 2
        assert sessions[0]["last_message"]["is_user_message"] is False
        assert sessions[1]["subject"] == "general"
        assert sessions[1]["last_message"] is None

    async def test_list_sessions_filters(self, services):
        math = await services.sessions.start_session(USER_ID, "mathematics")
        await services.sessions.start_session(USER_ID, "history")
        await services.sessions.submit_message(math.id, USER_ID, "Tell me about triangles")

        assert [s["id"] for s in await services.sessions.list_sessions(USER_ID, subject="mathematics")] == [math.id]
        assert [s["id"] for s in await services.sessions.list_sessions(USER_ID, search="triangle")] == [math.id]

    async def test_end_session(self, services):
        chat = await services.sessions.start_session(USER_ID)
        await services.sessions.end_session(chat.id, USER_ID)

        assert await services.sessions.list_sessions(USER_ID) == []
        with pytest.raises(InvalidState):
            await services.sessions.submit_message(chat.id, USER_ID, "hello?")

    async def test_foreign_session_denied(self, services):
        chat = await services.sessions.start_session(USER_ID)

        with pytest.raises(AccessDenied):
            await services.sessions.list_messages(chat.id, OTHER_USER_ID)
        with pytest.raises(AccessDenied):
            await services.sessions.submit_message(chat.id, OTHER_USER_ID, "hi")
        with pytest.raises(AccessDenied):
            await services.sessions.end_session(chat.id, OTHER_USER_ID)
        with pytest.raises(AccessDenied):
            await services.sessions.list_messages(9999, USER_ID)

    async def test_get_session_checks_owner(self, services):
        chat = await services.sessions.start_session(USER_ID, "mathematics")

        assert (await services.sessions.get_session(chat.id, USER_ID)).id == chat.id
        with pytest.raises(AccessDenied):
            await services.sessions.get_session(chat.id, OTHER_USER_ID)


@pytest.mark.asyncio
class TestBufferedExchange:

    async def test_exchange_persists_both_messages(self, services, fake_generator):
        chat = await services.sessions.start_session(USER_ID, "mathematics")
        fake_generator.reply = "Excellent. What does a function take as input?"

        result = await services.sessions.submit_message(chat.id, USER_ID, "What is a function in algebra?")

        assert result.user_message.is_user_message is True
        assert result.user_message.message_type == "question"
        assert result.user_message.concepts == ["algebra", "function"]
        assert result.user_message.reply_pending is False
        assert result.assistant_message.content == fake_generator.reply
        assert result.assistant_message.message_type == "question"
        assert result.fallback_used is False

        messages = await services.sessions.list_messages(chat.id, USER_ID)
        assert [m.is_user_message for m in messages] == [True, False]

    async def test_bookkeeping(self, services):
        chat = await services.sessions.start_session(USER_ID, "mathematics")

        result = await services.sessions.submit_message(chat.id, USER_ID, "I think algebra is hard")

        assert result.xp_awarded is not None
        assert result.xp_awarded.current_xp == 10
        progress = await services.progression.get_subject_progress(USER_ID, "mathematics")
        assert progress["total_messages"] == 1
        assert progress["concepts_learned"] == ["algebra"]
        assert progress["progress"] == 5

        sessions = await services.sessions.list_sessions(USER_ID)
        assert sessions[0]["concepts_learned"] == ["algebra"]
        assert sessions[0]["last_message_at"] is not None

    async def test_general_session_awards_no_xp(self, services):
        chat = await services.sessions.start_session(USER_ID)
        result = await services.sessions.submit_message(chat.id, USER_ID, "hello")
        assert result.xp_awarded is None

    async def test_generation_error_uses_fallback(self, services, fake_generator):
        chat = await services.sessions.start_session(USER_ID, "history")
        fake_generator.fail_with()

        result = await services.sessions.submit_message(chat.id, USER_ID, "Why did the war start?")

        assert result.fallback_used is True
        assert result.assistant_message.content == prompts.fallback_reply("history")
        messages = await services.sessions.list_messages(chat.id, USER_ID)
        assert len(messages) == 2

    async def test_empty_generation_uses_fallback(self, services, fake_generator):
        chat = await services.sessions.start_session(USER_ID)
        fake_generator.reply = "   "

        result = await services.sessions.submit_message(chat.id, USER_ID, "hello")
        assert result.assistant_message.content == prompts.fallback_reply(None)

    async def test_prompt_uses_recent_window(self, services, fake_generator):
        chat = await services.sessions.start_session(USER_ID, "mathematics")
        for index in range(1, 5):
            await services.sessions.submit_message(chat.id, USER_ID, f"note number {index}")
        await services.sessions.submit_message(chat.id, USER_ID, "note number 5")

        prompt = fake_generator.prompts[-1]
        assert "Student: note number 1" not in prompt
        assert "Student: note number 2" in prompt
        assert "Student: note number 4" in prompt
        assert prompt.startswith("You are 'AI Professor', a Socratic tutor specialized in mathematics")

    async def test_attachments_stored_without_data(self, services):
        chat = await services.sessions.start_session(USER_ID)
        image = Attachment(mime_type="image/png", data="aGVsbG8=", name="graph.png")

        result = await services.sessions.submit_message(chat.id, USER_ID, "What does this show?", [image])

        assert result.user_message.to_dict()["attachments"] == [{"name": "graph.png", "mime_type": "image/png"}]
        assert "aGVsbG8=" not in str(result.user_message.attachments)


@pytest.mark.asyncio
class TestStreamedExchange:

    async def test_event_order(self, services, fake_generator):
        chat = await services.sessions.start_session(USER_ID, "mathematics")
        fake_generator.chunks = ["Try ", "drawing ", "it."]

        events = await _collect(services.sessions.submit_message_streamed(chat.id, USER_ID, "How?"))

        assert [e.event for e in events] == ["user_message", "chunk", "chunk", "chunk", "done"]
        done = events[-1]
        assert done.data["content"] == "Try drawing it."
        assert done.data["assistant_message"]["message_type"] == "hint"
        assert done.data["xp_awarded"]["current_xp"] == 10

    async def test_empty_then_error_persists_one_fallback(self, services, fake_generator):
        chat = await services.sessions.start_session(USER_ID, "mathematics")
        fake_generator.chunks = []
        fake_generator.fail_with()

        events = await _collect(services.sessions.submit_message_streamed(chat.id, USER_ID, "Help?"))

        assert [e.event for e in events] == ["user_message", "error"]
        fallback = prompts.fallback_reply("mathematics")
        assert events[-1].data["content"] == fallback

        messages = await services.sessions.list_messages(chat.id, USER_ID)
        replies = [m for m in messages if not m.is_user_message]
        assert len(replies) == 1
        assert replies[0].content == fallback

    async def test_empty_stream_without_error(self, services, fake_generator):
        chat = await services.sessions.start_session(USER_ID)
        fake_generator.chunks = ["", "  "]

        events = await _collect(services.sessions.submit_message_streamed(chat.id, USER_ID, "Hi"))
        assert events[-1].event == "error"
        assert events[-1].data["content"] == prompts.fallback_reply(None)

    async def test_abandoned_stream_completes_in_background(self, services, fake_generator):
        chat = await services.sessions.start_session(USER_ID, "mathematics")
        fake_generator.chunks = ["Partial ", "reply ", "never finished"]

        stream = services.sessions.submit_message_streamed(chat.id, USER_ID, "Explain algebra")
        assert (await stream.__anext__()).event == "user_message"
        assert (await stream.__anext__()).data["content"] == "Partial "
        await stream.aclose()

        await services.sessions.drain()

        messages = await services.sessions.list_messages(chat.id, USER_ID)
        assert len(messages) == 2
        assert messages[0].reply_pending is False
        assert messages[1].content == "Partial"
        assert messages[1].analysis["interrupted"] is True

        progress = await services.progression.get_subject_progress(USER_ID, "mathematics")
        assert progress["xp"] == 10

    async def test_abandoned_before_any_chunk_uses_fallback(self, services):
        chat = await services.sessions.start_session(USER_ID, "history")

        stream = services.sessions.submit_message_streamed(chat.id, USER_ID, "Start")
        await stream.__anext__()
        await stream.aclose()
        await services.sessions.drain()

        messages = await services.sessions.list_messages(chat.id, USER_ID)
        assert messages[-1].content == prompts.fallback_reply("history")

    async def test_foreign_session_denied_before_any_event(self, services):
        chat = await services.sessions.start_session(USER_ID)
        stream = services.sessions.submit_message_streamed(chat.id, OTHER_USER_ID, "hi")

        with pytest.raises(AccessDenied):
            await stream.__anext__()
        assert services.sessions.pending_completions == 0


@pytest.mark.asyncio
class TestDuration:

    async def test_only_delta_is_credited(self, services):
        chat = await services.sessions.start_session(USER_ID, "mathematics")
        sessions = services.sessions

        assert (await sessions.update_duration(chat.id, USER_ID, 60))["credited"] == 60
        assert (await sessions.update_duration(chat.id, USER_ID, 60))["credited"] == 0
        assert (await sessions.update_duration(chat.id, USER_ID, 30))["credited"] == 0
        result = await sessions.update_duration(chat.id, USER_ID, 90)
        assert result == {"session_id": chat.id, "duration": 90, "credited": 30}

        progress = await services.progression.get_subject_progress(USER_ID, "mathematics")
        assert progress["total_time_spent"] == 90

    async def test_general_session_duration(self, services):
        chat = await services.sessions.start_session(USER_ID)
        result = await services.sessions.update_duration(chat.id, USER_ID, 45)
        assert result["duration"] == 45

    async def test_foreign_session_denied(self, services):
        chat = await services.sessions.start_session(USER_ID)
        with pytest.raises(AccessDenied):
            await services.sessions.update_duration(chat.id, OTHER_USER_ID, 10)

    async def test_negative_duration_rejected(self, services):
        chat = await services.sessions.start_session(USER_ID)
        with pytest.raises(ValueError):
            await services.sessions.update_duration(chat.id, USER_ID, -1)
