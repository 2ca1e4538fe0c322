from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from stash.ai.gemini_client import GeminiRequestError, GeminiResult, GeminiToolCall
from stash.ai.orchestrator import FALLBACK_REPLY, ChatOrchestrator, Stage, history_messages
from stash.errors import TooManyActionsError

TODAY = date(2026, 10, 19)


def _run(coro):
    return asyncio.run(coro)


class StubGeminiClient:
    def __init__(self, results):
        self.results = list(results)
        self.calls = 0
        self.requests = []

    async def generate_with_tools(self, system_prompt, conversation_messages, tool_schemas, **kwargs):
        self.requests.append(
            {
                "system_prompt": system_prompt,
                "messages": list(conversation_messages),
                "tool_schemas": tool_schemas,
                "mode": kwargs.get("function_calling_mode", "AUTO"),
            }
        )
        result = self.results[self.calls]
        self.calls += 1
        if isinstance(result, Exception):
            raise result
        return result


def _calls(*calls):
    return GeminiResult(
        text_response="",
        tool_calls=[GeminiToolCall(name=name, arguments=args) for name, args in calls],
    )


def test_plain_reply_uses_single_pass(store, user_id) -> None:
    client = StubGeminiClient([GeminiResult(text_response="Hi! How can I help?", tool_calls=[])])

    result = _run(ChatOrchestrator(client, store).run(user_id, "hello", [], today=TODAY))

    assert result.reply == "Hi! How can I help?"
    assert result.stages == [Stage.DRAFTING, Stage.DONE]
    assert client.calls == 1
    assert [(turn["role"], turn["message"]) for turn in store.turns] == [
        ("user", "hello"),
        ("assistant", "Hi! How can I help?"),
    ]


def test_first_pass_sees_system_history_then_message(store, user_id) -> None:
    store.add_goal(user_id, "Laptop", 1000, 900)
    client = StubGeminiClient([GeminiResult(text_response="ok", tool_calls=[])])
    history = [
        {"role": "user", "message": "I earned $600 from crypto"},
        {"role": "assistant", "message": "Should I proceed?"},
    ]

    _run(ChatOrchestrator(client, store).run(user_id, "yes", history, today=TODAY))

    request = client.requests[0]
    assert "Laptop: $900.00 / $1000.00" in request["system_prompt"]
    assert [message["role"] for message in request["messages"]] == ["user", "assistant", "user"]
    assert request["messages"][-1]["content"] == "yes"
    assert {schema["name"] for schema in request["tool_schemas"]} == {"add_income", "update_goal_progress"}


def test_tool_calls_execute_then_second_pass_gets_outcomes(store, user_id) -> None:
    goal = store.add_goal(user_id, "Laptop", 1000, 900)
    client = StubGeminiClient(
        [
            _calls(
                ("add_income", {"amount": 600, "source": "crypto"}),
                ("update_goal_progress", {"goal_name": "laptop", "amount_to_add": 50}),
            ),
            GeminiResult(text_response="Added your income and moved $50 to Laptop.", tool_calls=[]),
        ]
    )

    result = _run(ChatOrchestrator(client, store).run(user_id, "yes", [], today=TODAY))

    assert result.reply == "Added your income and moved $50 to Laptop."
    assert [outcome.kind for outcome in result.outcomes] == ["success", "success"]
    assert len(store.income) == 1
    assert goal["current_amount"] == Decimal("950.00")
    assert result.stages == [Stage.DRAFTING, Stage.EXECUTING, Stage.FINALIZING, Stage.DONE]

    second = client.requests[1]
    assert second["mode"] == "NONE"
    echoed, tool_turn = second["messages"][-2:]
    assert echoed["role"] == "assistant"
    assert [part["functionCall"]["name"] for part in echoed["parts"]] == ["add_income", "update_goal_progress"]
    assert tool_turn["role"] == "tool"
    assert tool_turn["results"][0] == ("add_income", "Success: Added $600.00 from crypto on 2026-10-19")
    assert tool_turn["results"][1][1].startswith('Success: Added $50.00 to "Laptop". New progress: 95%')


def test_reused_orchestrator_reports_each_turn_separately(store, user_id) -> None:
    store.add_goal(user_id, "Laptop", 1000, 100)
    client = StubGeminiClient(
        [
            _calls(("update_goal_progress", {"goal_name": "laptop", "amount_to_add": 50})),
            GeminiResult(text_response="Moved $50 to Laptop.", tool_calls=[]),
            GeminiResult(text_response="Anything else?", tool_calls=[]),
        ]
    )
    orchestrator = ChatOrchestrator(client, store)

    first = _run(orchestrator.run(user_id, "move 50 to laptop", [], today=TODAY))
    second = _run(orchestrator.run(user_id, "thanks", [], today=TODAY))

    assert first.stages == [Stage.DRAFTING, Stage.EXECUTING, Stage.FINALIZING, Stage.DONE]
    assert second.stages == [Stage.DRAFTING, Stage.DONE]
    assert not hasattr(orchestrator, "stage")


def test_chained_goal_updates_see_earlier_writes(store, user_id) -> None:
    goal = store.add_goal(user_id, "Laptop", 1000, 0)
    client = StubGeminiClient(
        [
            _calls(
                ("update_goal_progress", {"goal_name": "Laptop", "amount_to_add": 900}),
                ("update_goal_progress", {"goal_name": "Laptop", "amount_to_add": 700}),
            ),
            GeminiResult(text_response="done", tool_calls=[]),
        ]
    )

    result = _run(ChatOrchestrator(client, store).run(user_id, "yes", [], today=TODAY))

    # 900 + 700 = 1600 > 1500, so the second call trips the overshoot guard.
    assert [outcome.kind for outcome in result.outcomes] == ["success", "warning"]
    assert goal["current_amount"] == Decimal("900.00")


def test_failed_call_does_not_stop_later_calls(store, user_id) -> None:
    client = StubGeminiClient(
        [
            _calls(
                ("add_income", {"amount": 500000, "source": "crypto"}),
                ("wire_money", {"to": "attacker"}),
                ("add_income", {"amount": 20, "source": "bounty"}),
            ),
            GeminiResult(text_response="Partly done.", tool_calls=[]),
        ]
    )

    result = _run(ChatOrchestrator(client, store).run(user_id, "yes", [], today=TODAY))

    assert [outcome.kind for outcome in result.outcomes] == ["rejected", "security", "success"]
    assert [row["amount"] for row in store.income] == [Decimal("20.00")]


def test_more_than_three_calls_rejected_without_mutation(store, user_id) -> None:
    goal = store.add_goal(user_id, "Laptop", 1000, 0)
    client = StubGeminiClient(
        [
            _calls(
                ("add_income", {"amount": 10, "source": "bounty"}),
                ("add_income", {"amount": 20, "source": "bounty"}),
                ("update_goal_progress", {"goal_name": "Laptop", "amount_to_add": 5}),
                ("add_income", {"amount": 30, "source": "bounty"}),
            ),
        ]
    )

    with pytest.raises(TooManyActionsError):
        _run(ChatOrchestrator(client, store).run(user_id, "do all of it", [], today=TODAY))

    assert client.calls == 1
    assert store.income == []
    assert goal["current_amount"] == Decimal("0")
    assert store.turns == []


def test_model_failure_in_second_pass_keeps_applied_actions(store, user_id) -> None:
    client = StubGeminiClient(
        [
            _calls(("add_income", {"amount": 10, "source": "bounty"})),
            GeminiRequestError(503, "unavailable"),
        ]
    )

    with pytest.raises(GeminiRequestError):
        _run(ChatOrchestrator(client, store).run(user_id, "yes", [], today=TODAY))

    assert len(store.income) == 1
    assert store.turns == []


def test_empty_final_text_falls_back(store, user_id) -> None:
    client = StubGeminiClient(
        [
            _calls(("add_income", {"amount": 10, "source": "bounty"})),
            GeminiResult(text_response="", tool_calls=[]),
        ]
    )

    result = _run(ChatOrchestrator(client, store).run(user_id, "yes", [], today=TODAY))

    assert result.reply == FALLBACK_REPLY


def test_history_messages_maps_roles_and_keeps_newest() -> None:
    history = [
        {"role": "user", "message": "one"},
        {"role": "assistant", "message": "  "},
        {"role": "assistant", "message": "two"},
        {"role": "user", "message": "three"},
    ]

    assert history_messages(history, 2) == [
        {"role": "assistant", "content": "two"},
        {"role": "user", "content": "three"},
    ]
    assert history_messages(history, 0) == []
