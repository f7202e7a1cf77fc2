"""End-to-end tests for PacedConversation."""

import json

import pytest

from paced_turns.conversation import PacedConversation
from paced_turns.interfaces.chat import ChatResponse
from paced_turns.interfaces.events import MessageKind


def make_conversation(scheduler, delivered, rng, transport=None, events=None, image_generator=None, **config):
    config.setdefault("enabled", True)
    config.setdefault("min_delay_ms", 1000)
    config.setdefault("max_delay_ms", 1000)
    config.setdefault("follow_up_delay_ms", 2000)
    return PacedConversation(
        config=config,
        sink=delivered.append,
        transport=transport,
        scheduler=scheduler,
        emit=events,
        image_generator=image_generator,
        rng=rng,
        clock=scheduler.time,
    )


async def byte_source(*fragments):
    for fragment in fragments:
        yield fragment


class TestPacedConversationDelivery:
    """Tests for delivering responses."""

    @pytest.mark.asyncio
    async def test_unsplit_response_delivered_immediately(self, scheduler, delivered, events, rng):
        conversation = make_conversation(scheduler, delivered, rng, events=events)
        paced = await conversation.handle_response(ChatResponse(content="Just one message."))

        assert paced is False
        assert [d.content for d in delivered] == ["Just one message."]
        assert delivered[0].metadata is None
        assert events.of("message_complete")[0]["group_id"] is None
        assert conversation.history.as_request_messages() == [
            {"role": "assistant", "content": "Just one message."},
        ]

    @pytest.mark.asyncio
    async def test_disabled_delivers_whole(self, scheduler, delivered, rng):
        conversation = make_conversation(scheduler, delivered, rng, enabled=False)
        await conversation.handle_response(ChatResponse(content="A\nB", turns=[]))
        assert [d.content for d in delivered] == ["A\nB"]

    @pytest.mark.asyncio
    async def test_paced_response(self, scheduler, delivered, rng):
        conversation = make_conversation(scheduler, delivered, rng)
        paced = await conversation.handle_response(ChatResponse(content="Hi there.\nHow are you?", turns=[]))

        assert paced is True
        assert delivered == []
        scheduler.advance(0)
        assert [d.content for d in delivered] == ["Hi there."]
        scheduler.advance(1.0)
        assert [d.content for d in delivered] == ["Hi there.", "How are you?"]

        assert conversation.history.as_request_messages() == [
            {"role": "assistant", "content": "Hi there. How are you?"},
        ]

    @pytest.mark.asyncio
    async def test_stream_to_delivery(self, scheduler, delivered, rng):
        conversation = make_conversation(scheduler, delivered, rng)
        chunks = [
            {"choices": [{"delta": {"content": "First.\n"}}]},
            {"choices": [{"delta": {"content": "Second.", "turns": ["First.", "Second."]}}]},
        ]
        source = byte_source(*[f"data: {json.dumps(c)}\n".encode() for c in chunks], b"data: [DONE]\n")

        await conversation.consume_stream(source)
        scheduler.run_all()

        assert [d.content for d in delivered] == ["First.", "Second."]

    @pytest.mark.asyncio
    async def test_image_generation(self, scheduler, delivered, rng):
        prompts = []
        conversation = make_conversation(scheduler, delivered, rng, image_generator=prompts.append)
        await conversation.handle_response(ChatResponse(content="Look\nHere", turns=[], image_prompt="a cat"))
        scheduler.run_all()

        assert [d.kind for d in delivered] == [MessageKind.TEXT, MessageKind.TEXT, MessageKind.IMAGE]
        assert prompts == ["a cat"]

    @pytest.mark.asyncio
    async def test_async_image_generator(self, scheduler, delivered, rng):
        prompts = []

        async def generate(prompt):
            prompts.append(prompt)

        conversation = make_conversation(scheduler, delivered, rng, image_generator=generate)
        await conversation.handle_response(ChatResponse(content="Here you go.", image_prompt="a dog"))
        await conversation.wait_idle()
        assert prompts == ["a dog"]


class TestPacedConversationFollowUps:
    """Tests for follow-ups driven by delivered responses."""

    @pytest.mark.asyncio
    async def test_follow_up_after_last_turn(self, scheduler, delivered, events, rng, fake_transport):
        transport = fake_transport(ChatResponse(content="One more thing."))
        conversation = make_conversation(scheduler, delivered, rng, transport, events)
        await conversation.handle_response(ChatResponse(content="A\nB", turns=[], has_next=True))

        scheduler.advance(0)
        assert not conversation.follow_ups.has_pending

        scheduler.advance(1.0)
        assert conversation.follow_ups.has_pending

        scheduler.advance(2.0)
        await conversation.wait_idle()

        assert transport.calls == 1
        assert [d.content for d in delivered] == ["A", "B", "One more thing."]
        assert "follow_up_start" in events.names()

    @pytest.mark.asyncio
    async def test_image_suppresses_follow_up(self, scheduler, delivered, rng, fake_transport):
        transport = fake_transport()
        conversation = make_conversation(scheduler, delivered, rng, transport)
        await conversation.handle_response(
            ChatResponse(content="Look\nHere", turns=[], image_prompt="a cat", has_next=True)
        )
        scheduler.run_all()
        await conversation.wait_idle()

        assert not conversation.follow_ups.has_pending
        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_follow_up_chain_limited(self, scheduler, delivered, rng, fake_transport):
        transport = fake_transport(ChatResponse(content="More...", has_next=True))
        conversation = make_conversation(scheduler, delivered, rng, transport, max_sequential_follow_ups=2)
        await conversation.handle_response(ChatResponse(content="Start.", has_next=True))

        for _ in range(6):
            scheduler.advance(2.0)
            await conversation.wait_idle()

        assert transport.calls == 2
        assert [d.content for d in delivered] == ["Start.", "More...", "More..."]

    @pytest.mark.asyncio
    async def test_user_message_cancels_everything(self, scheduler, delivered, events, rng, fake_transport):
        transport = fake_transport()
        conversation = make_conversation(scheduler, delivered, rng, transport, events, max_turns=5)
        await conversation.handle_response(ChatResponse(content="A\nB\nC", turns=[], has_next=True))
        scheduler.advance(0)

        canceled = conversation.on_user_message("stop")
        assert canceled == 2
        assert not conversation.is_active()

        scheduler.advance(10.0)
        await conversation.wait_idle()

        assert [d.content for d in delivered] == ["A"]
        assert transport.calls == 0
        assert conversation.follow_ups.sequential_count == 0
        assert conversation.history.as_request_messages()[-1] == {"role": "user", "content": "stop"}

    @pytest.mark.asyncio
    async def test_user_message_cancels_armed_follow_up(self, scheduler, delivered, rng, fake_transport):
        transport = fake_transport()
        conversation = make_conversation(scheduler, delivered, rng, transport)
        await conversation.handle_response(ChatResponse(content="Thinking...", has_next=True))
        assert conversation.follow_ups.has_pending

        conversation.on_user_message("never mind")
        scheduler.advance(5.0)
        await conversation.wait_idle()

        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_no_transport_means_no_follow_ups(self, scheduler, delivered, rng):
        conversation = make_conversation(scheduler, delivered, rng)
        await conversation.handle_response(ChatResponse(content="Done?", has_next=True))
        assert conversation.follow_ups is None
        assert not conversation.is_active()


class TestPacedConversationControl:
    """Tests for status and reconfiguration."""

    def test_get_status(self, scheduler, delivered, rng, fake_transport):
        conversation = make_conversation(scheduler, delivered, rng, fake_transport())
        status = conversation.get_status()
        assert status["enabled"] is True
        assert status["queue_status"].length == 0
        assert status["follow_up_pending"] is False
        assert status["sequential_follow_ups"] == 0

    def test_update_config(self, scheduler, delivered, rng, fake_transport):
        conversation = make_conversation(scheduler, delivered, rng, fake_transport())
        conversation.update_config({"enabled": True, "max_sequential_follow_ups": 0})
        assert conversation.config.max_sequential_follow_ups == 0
        assert conversation.orchestrator.config is conversation.config
        assert conversation.follow_ups.config is conversation.config

    def test_boolean_config(self, scheduler, delivered):
        conversation = PacedConversation(config=True, scheduler=scheduler)
        assert conversation.config.enabled is True
        assert conversation.config.max_turns == 3
