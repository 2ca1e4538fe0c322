"""Two-pass tool-calling protocol behind `POST /chat`.

Pass 1 lets the model either answer or propose action calls. Proposed calls
are checked against the per-turn ceiling, executed one by one, and their
outcome strings are handed back to the model in pass 2 for the final reply.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol
from uuid import UUID

from stash.ai.actions import MAX_ACTIONS_PER_MESSAGE, ActionCall, action_schemas
from stash.ai.context import FinancialSnapshot, assemble_snapshot
from stash.ai.executor import ActionOutcome, dispatch_action
from stash.ai.gemini_client import GeminiResult
from stash.ai.prompt import build_system_prompt
from stash.errors import TooManyActionsError
from stash.store import Store

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I could not generate a response."


class ModelClient(Protocol):
    async def generate_with_tools(
        self,
        system_prompt: str,
        conversation_messages: list[dict[str, Any]],
        tool_schemas: list[dict[str, Any]],
        *,
        function_calling_mode: str = "AUTO",
    ) -> GeminiResult: ...


class Stage(str, enum.Enum):
    DRAFTING = "drafting"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass
class ChatTurnResult:
    reply: str
    snapshot: FinancialSnapshot
    calls: list[ActionCall] = field(default_factory=list)
    outcomes: list[ActionOutcome] = field(default_factory=list)
    stages: list[Stage] = field(default_factory=list)


def history_messages(history: list[dict[str, str]], limit: int) -> list[dict[str, str]]:
    """Map `{role, message}` history items to model messages, newest `limit` kept."""
    messages: list[dict[str, str]] = []
    for item in history:
        role = "assistant" if item.get("role") == "assistant" else "user"
        content = str(item.get("message") or "").strip()
        if content:
            messages.append({"role": role, "content": content})

    if limit < 1:
        return []
    return messages[-limit:]


class ChatOrchestrator:
    def __init__(
        self,
        model_client: ModelClient,
        store: Store,
        *,
        max_actions: int = MAX_ACTIONS_PER_MESSAGE,
        history_limit: int = 20,
    ) -> None:
        self.model_client = model_client
        self.store = store
        self.max_actions = max_actions
        self.history_limit = history_limit

    async def run(
        self,
        user_id: UUID,
        message: str,
        history: list[dict[str, str]] | None = None,
        *,
        today: date | None = None,
    ) -> ChatTurnResult:
        """Run one chat turn and record it.

        Raises `TooManyActionsError` before anything executes, and lets model
        and store failures propagate. Actions already applied stay applied.
        """
        stages = [Stage.DRAFTING]
        snapshot = await assemble_snapshot(self.store, user_id, today=today)
        system_prompt = build_system_prompt(snapshot)
        schemas = action_schemas()

        conversation_messages: list[dict[str, Any]] = history_messages(history or [], self.history_limit)
        conversation_messages.append({"role": "user", "content": message})

        first = await self.model_client.generate_with_tools(
            system_prompt=system_prompt,
            conversation_messages=conversation_messages,
            tool_schemas=schemas,
        )

        calls = [ActionCall(name=call.name, arguments=dict(call.arguments)) for call in first.tool_calls]
        outcomes: list[ActionOutcome] = []
        reply = first.text_response

        if calls:
            if len(calls) > self.max_actions:
                logger.warning(
                    "User %s turn proposed %d actions (limit %d); nothing executed",
                    user_id,
                    len(calls),
                    self.max_actions,
                )
                raise TooManyActionsError(len(calls), self.max_actions)

            stages.append(Stage.EXECUTING)
            # Sequential: a later call may depend on what an earlier one wrote.
            for call in calls:
                outcomes.append(await dispatch_action(self.store, user_id, call, today=today))

            stages.append(Stage.FINALIZING)
            call_parts = first.raw_parts or [
                {"functionCall": {"name": call.name, "args": call.arguments}} for call in calls
            ]
            conversation_messages.append({"role": "assistant", "parts": call_parts})
            conversation_messages.append(
                {
                    "role": "tool",
                    "results": [(call.name, outcome.render()) for call, outcome in zip(calls, outcomes)],
                }
            )
            second = await self.model_client.generate_with_tools(
                system_prompt=system_prompt,
                conversation_messages=conversation_messages,
                tool_schemas=schemas,
                function_calling_mode="NONE",
            )
            if second.tool_calls:
                logger.warning("Ignoring %d action calls proposed while finalizing", len(second.tool_calls))
            reply = second.text_response

        reply = reply.strip() or FALLBACK_REPLY

        await self.store.append_turns(user_id, [("user", message), ("assistant", reply)])
        stages.append(Stage.DONE)
        logger.debug("Chat turn for %s went through %s", user_id, [stage.value for stage in stages])

        return ChatTurnResult(
            reply=reply,
            snapshot=snapshot,
            calls=calls,
            outcomes=outcomes,
            stages=stages,
        )
