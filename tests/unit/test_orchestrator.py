"""Tests for the conversation orchestrator: single-shot and streaming turns."""

from __future__ import annotations

import pytest

from tally.assistant.events import ChunkEvent, CompleteEvent, ConnectedEvent, ErrorEvent
from tally.assistant.prompts import CLARIFICATION_PROMPT, TOOL_CALLS_PLACEHOLDER
from tally.core.errors import ProviderRateLimitError, ValidationError
from tally.ledger.history import ChatHistoryRepository
from tally.ledger.repository import LedgerRepository
from tests.fixtures.providers import MockProvider, Step, tool_call

_LUNCH = tool_call(
    "add_transaction",
    {
        "amount": 12.5,
        "description": "Lunch",
        "transaction_type": "expense",
        "category_name": "Dining",
    },
)


async def _history(factory, user_id):
    async with factory() as session:
        return await ChatHistoryRepository(session).list(user_id)


async def _transactions(factory, user_id):
    async with factory() as session:
        items, _ = await LedgerRepository(session).list_transactions(user_id)
        return items


async def _collect(agen):
    return [event async for event in agen]


class TestRespond:
    async def test_plain_answer_is_persisted(self, make_services, user_id):
        provider = MockProvider(steps=["You have spent nothing yet."])
        services = await make_services(provider)

        reply = await services.orchestrator.respond("How am I doing?", user_id)

        assert reply.content == "You have spent nothing yet."
        assert reply.rounds == 0
        page = await _history(services.db_factory, user_id)
        assert page.total == 1
        assert page.items[0].user_message == "How am I doing?"
        assert page.items[0].assistant_response == "You have spent nothing yet."

    async def test_prompt_has_snapshot_and_tools(self, make_services, user_id):
        provider = MockProvider(steps=["ok"])
        services = await make_services(provider)

        await services.orchestrator.respond("  hi  ", user_id)

        [call] = provider.call_log
        system, user = call["messages"][0], call["messages"][-1]
        assert system.role == "system"
        assert "Total spending this month" in system.content
        assert user.content == "hi"
        assert {t["name"] for t in call["tools"]} >= {"add_transaction", "get_budgets"}

    async def test_recent_turns_are_replayed(self, make_services, user_id):
        provider = MockProvider(steps=["first answer", "second answer"])
        services = await make_services(provider)

        await services.orchestrator.respond("first", user_id)
        await services.orchestrator.respond("second", user_id)

        messages = provider.call_log[1]["messages"]
        assert [(m.role, m.content) for m in messages[1:]] == [
            ("user", "first"),
            ("assistant", "first answer"),
            ("user", "second"),
        ]

    async def test_tool_round_then_answer(self, make_services, user_id):
        provider = MockProvider(
            steps=[Step(tool_calls=(_LUNCH,)), "Added $12.50 for lunch."]
        )
        services = await make_services(provider)

        reply = await services.orchestrator.respond("I spent 12.50 on lunch", user_id)

        assert reply.content == "Added $12.50 for lunch."
        assert reply.rounds == 1
        assert [r.success for r in reply.tool_results] == [True]
        [txn] = await _transactions(services.db_factory, user_id)
        assert txn.description == "Lunch"

        followup = provider.call_log[1]["messages"]
        assert followup[-2].role == "assistant"
        assert followup[-2].content == TOOL_CALLS_PLACEHOLDER
        assert followup[-1].content.startswith("Tool execution results:")
        assert "- add_transaction: Success" in followup[-1].content

    async def test_failed_tool_is_reported_to_engine(self, make_services, user_id):
        bad = tool_call("delete_transaction", {"transaction_id": "missing"})
        provider = MockProvider(steps=[Step(tool_calls=(bad,)), "I couldn't find it."])
        services = await make_services(provider)

        reply = await services.orchestrator.respond("delete that", user_id)

        assert reply.content == "I couldn't find it."
        assert reply.tool_results[0].success is False
        feedback = provider.call_log[1]["messages"][-1].content
        assert "- delete_transaction: Failed" in feedback

    async def test_unknown_category_lists_existing_and_writes_nothing(
        self, make_services, user_id
    ):
        misfiled = tool_call(
            "add_transaction",
            {
                "amount": 40,
                "description": "Weekly shop",
                "transaction_type": "expense",
                "category_name": "Llama Grooming",
            },
        )
        provider = MockProvider(
            steps=[Step(tool_calls=(misfiled,)), "Which category should I use?"]
        )
        services = await make_services(provider)
        async with services.db_factory() as session, session.begin():
            await LedgerRepository(session).create_category(user_id, "Pets")

        reply = await services.orchestrator.respond("log my shop", user_id)

        assert reply.content == "Which category should I use?"
        assert reply.tool_results[0].success is False
        feedback = provider.call_log[1]["messages"][-1].content
        assert "- add_transaction: Failed" in feedback
        assert "Existing categories: " in feedback
        assert 'No category matches "Llama Grooming"' in feedback
        assert "Pets" in feedback
        assert (await _history(services.db_factory, user_id)).total == 1
        assert await _transactions(services.db_factory, user_id) == []

    async def test_round_limit_falls_back_to_summary(self, make_services, user_id):
        loop = Step(tool_calls=(tool_call("get_budgets"),))
        provider = MockProvider(steps=[loop, loop, loop])
        services = await make_services(provider, max_tool_rounds=2)

        reply = await services.orchestrator.respond("budgets?", user_id)

        assert reply.rounds == 2
        assert len(provider.call_log) == 3
        assert reply.content.startswith("Here is what I did for you:")
        assert "- get_budgets (done)" in reply.content
        assert (await _history(services.db_factory, user_id)).total == 1

    async def test_empty_answer_asks_for_clarification(self, make_services, user_id):
        services = await make_services(MockProvider(steps=["   "]))
        reply = await services.orchestrator.respond("hmm", user_id)
        assert reply.content == CLARIFICATION_PROMPT

    @pytest.mark.parametrize("message", ["", "   ", "x" * 1001])
    async def test_invalid_message(self, make_services, user_id, message):
        provider = MockProvider()
        services = await make_services(provider)
        with pytest.raises(ValidationError):
            await services.orchestrator.respond(message, user_id)
        assert provider.call_log == []

    async def test_engine_failure_persists_nothing(self, make_services, user_id):
        provider = MockProvider(error=ProviderRateLimitError("mock"))
        services = await make_services(provider)
        with pytest.raises(ProviderRateLimitError):
            await services.orchestrator.respond("hi", user_id)
        assert (await _history(services.db_factory, user_id)).total == 0

    async def test_usage_is_recorded(self, make_services, user_id):
        services = await make_services(MockProvider(steps=["two words"]))
        await services.orchestrator.respond("hi", user_id)
        assert services.provider_manager.total_cost > 0


class TestStream:
    async def test_event_order_and_completeness(self, make_services, user_id):
        provider = MockProvider(steps=["You are on track this month."])
        services = await make_services(provider)

        events = await _collect(services.orchestrator.stream("status?", user_id))

        assert isinstance(events[0], ConnectedEvent)
        assert isinstance(events[-1], CompleteEvent)
        chunks = [e.content for e in events if isinstance(e, ChunkEvent)]
        assert len(chunks) == 6
        assert "".join(chunks) == events[-1].full_response
        assert events[-1].full_response == "You are on track this month."
        assert provider.streams_closed == 1
        page = await _history(services.db_factory, user_id)
        assert page.items[0].assistant_response == "You are on track this month."

    async def test_rounds_are_separated(self, make_services, user_id):
        provider = MockProvider(
            steps=[Step(text="Let me add that.", tool_calls=(_LUNCH,)), "Done."]
        )
        services = await make_services(provider)

        events = await _collect(services.orchestrator.stream("lunch 12.50", user_id))

        complete = events[-1]
        assert isinstance(complete, CompleteEvent)
        assert complete.full_response == "Let me add that.\n\nDone."
        chunks = [e.content for e in events if isinstance(e, ChunkEvent)]
        assert "".join(chunks) == complete.full_response
        assert provider.call_log[1]["messages"][-2].content == "Let me add that."
        assert len(await _transactions(services.db_factory, user_id)) == 1

    async def test_round_limit_fallback_is_streamed(self, make_services, user_id):
        loop = Step(tool_calls=(tool_call("get_budgets"),))
        provider = MockProvider(steps=[loop, loop])
        services = await make_services(provider, max_tool_rounds=1)

        events = await _collect(services.orchestrator.stream("budgets?", user_id))

        assert events[-1].full_response.startswith("Here is what I did for you:")
        chunks = [e.content for e in events if isinstance(e, ChunkEvent)]
        assert "".join(chunks) == events[-1].full_response

    async def test_abandoned_stream_persists_nothing(self, make_services, user_id):
        provider = MockProvider(steps=["one two three four"])
        services = await make_services(provider)

        agen = services.orchestrator.stream("hi", user_id)
        assert isinstance(await anext(agen), ConnectedEvent)
        assert isinstance(await anext(agen), ChunkEvent)
        await agen.aclose()

        assert provider.streams_closed == 1
        assert (await _history(services.db_factory, user_id)).total == 0

    async def test_disconnect_before_persist(self, make_services, user_id):
        services = await make_services(MockProvider(steps=["all done"]))

        async def gone() -> bool:
            return True

        events = await _collect(
            services.orchestrator.stream("hi", user_id, is_disconnected=gone)
        )

        assert not any(isinstance(e, CompleteEvent) for e in events)
        assert (await _history(services.db_factory, user_id)).total == 0

    async def test_stalled_engine_times_out(self, make_services, user_id):
        provider = MockProvider(steps=["Hello there friend"], stall_after=1)
        services = await make_services(provider, stream_idle_timeout=0.05)

        events = await _collect(services.orchestrator.stream("hi", user_id))

        assert [type(e) for e in events] == [ConnectedEvent, ChunkEvent, ErrorEvent]
        assert events[-1].message == (
            "The assistant took too long to respond. Please try again."
        )
        assert provider.streams_closed == 1
        assert (await _history(services.db_factory, user_id)).total == 0

    async def test_trickling_engine_hits_overall_timeout(
        self, make_services, user_id
    ):
        provider = MockProvider(steps=[" ".join(["a"] * 40)], delay=0.05)
        services = await make_services(
            provider, engine_timeout=0.3, stream_idle_timeout=0.2
        )

        events = await _collect(services.orchestrator.stream("hi", user_id))

        chunks = [e for e in events if isinstance(e, ChunkEvent)]
        assert 1 < len(chunks) < 40
        assert isinstance(events[-1], ErrorEvent)
        assert not any(isinstance(e, CompleteEvent) for e in events)
        assert events[-1].message == (
            "The assistant took too long to respond. Please try again."
        )
        assert provider.streams_closed == 1
        assert (await _history(services.db_factory, user_id)).total == 0

    async def test_engine_error_ends_with_one_error(self, make_services, user_id):
        provider = MockProvider(error=ProviderRateLimitError("mock"))
        services = await make_services(provider)

        events = await _collect(services.orchestrator.stream("hi", user_id))

        assert [type(e) for e in events] == [ConnectedEvent, ErrorEvent]
        assert "too many requests" in events[-1].message

    async def test_oversized_message_is_an_error_event(self, make_services, user_id):
        provider = MockProvider()
        services = await make_services(provider, max_message_length=10)

        events = await _collect(services.orchestrator.stream("x" * 11, user_id))

        assert [type(e) for e in events] == [ConnectedEvent, ErrorEvent]
        assert events[-1].message == "Message must not exceed 10 characters."
        assert provider.call_log == []

    async def test_malformed_tool_call_is_an_error_event(self, make_services, user_id):
        broken = tool_call("add_transaction", "{not json")
        services = await make_services(MockProvider(steps=[Step(tool_calls=(broken,))]))

        events = await _collect(services.orchestrator.stream("hi", user_id))

        assert isinstance(events[-1], ErrorEvent)
        assert len(await _transactions(services.db_factory, user_id)) == 0

    async def test_empty_answer_streams_clarification(self, make_services, user_id):
        services = await make_services(MockProvider(steps=[""], default=""))
        events = await _collect(services.orchestrator.stream("hmm", user_id))
        assert events[-1].full_response == CLARIFICATION_PROMPT


class TestRespondStream:
    async def test_callback_sees_every_event(self, make_services, user_id):
        services = await make_services(MockProvider(steps=["a b"]))
        seen = []

        full = await services.orchestrator.respond_stream("hi", user_id, seen.append)

        assert full == "a b"
        assert [e.type for e in seen] == ["connected", "chunk", "chunk", "complete"]

    async def test_async_callback_and_error(self, make_services, user_id):
        services = await make_services(
            MockProvider(error=ProviderRateLimitError("mock"))
        )
        seen = []

        async def on_event(event):
            seen.append(event)

        full = await services.orchestrator.respond_stream("hi", user_id, on_event)

        assert full is None
        assert seen[-1].type == "error"
