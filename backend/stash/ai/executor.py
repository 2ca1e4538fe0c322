"""Guarded execution of catalog actions.

Every call yields an `ActionOutcome`; nothing raised here aborts the chat turn
except programming errors. Outcomes are rendered as text for the model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from stash.ai.actions import (
    INCOME_DATE_WINDOW_DAYS,
    OVERSHOOT_RATIO,
    ActionArgumentError,
    ActionCall,
    AddIncomeArgs,
    UnknownActionError,
    UpdateGoalProgressArgs,
    parse_action,
)
from stash.errors import StoreError
from stash.store import Store
from stash.utils import money, progress_percent, quantize_amount, today as current_date

logger = logging.getLogger(__name__)

OutcomeKind = Literal["success", "warning", "rejected", "security"]

_PREFIXES: dict[str, str] = {
    "success": "Success",
    "warning": "Warning",
    "rejected": "Error",
    "security": "Security Error",
}


@dataclass(frozen=True)
class ActionOutcome:
    kind: OutcomeKind
    message: str

    @property
    def applied(self) -> bool:
        return self.kind == "success"

    def render(self) -> str:
        return f"{_PREFIXES[self.kind]}: {self.message}"


def resolve_goal(goals: list[dict[str, Any]], goal_name: str) -> dict[str, Any] | None:
    """Exact case-insensitive match first, then substring containment either way.

    With several candidates the first in `goals` order wins.
    """
    query = goal_name.strip().lower()

    for goal in goals:
        if str(goal["name"]).lower() == query:
            return goal

    for goal in goals:
        candidate = str(goal["name"]).lower()
        if query in candidate or candidate in query:
            return goal

    return None


def _resolve_income_date(requested: date | None, today: date) -> date:
    if requested is None:
        return today
    if requested > today or requested < today - timedelta(days=INCOME_DATE_WINDOW_DAYS):
        raise ActionArgumentError("Invalid date. Date must be within the last year and not in the future")
    return requested


async def _add_income(store: Store, user_id: UUID, args: AddIncomeArgs, today: date) -> ActionOutcome:
    try:
        income_date = _resolve_income_date(args.income_date, today)
    except ActionArgumentError as exc:
        return ActionOutcome("rejected", str(exc))

    amount = quantize_amount(args.amount)
    try:
        await store.insert_income(
            user_id,
            amount=amount,
            source=args.source,
            income_date=income_date,
            notes=args.notes,
        )
    except StoreError:
        logger.exception("Income insert failed for user %s", user_id)
        return ActionOutcome("rejected", "Failed to add income: database error")

    return ActionOutcome(
        "success",
        f"Added ${money(amount)} from {args.source} on {income_date.isoformat()}",
    )


async def _update_goal_progress(store: Store, user_id: UUID, args: UpdateGoalProgressArgs) -> ActionOutcome:
    try:
        goals = await store.list_goals(user_id, status="active")
    except StoreError:
        logger.exception("Goal lookup failed for user %s", user_id)
        return ActionOutcome("rejected", "Failed to update goal: database error")

    if not goals:
        return ActionOutcome("rejected", "You have no active goals yet. Create a goal first")

    goal = resolve_goal(goals, args.goal_name)
    if goal is None:
        available = ", ".join(str(item["name"]) for item in goals)
        return ActionOutcome(
            "rejected",
            f'Could not find goal "{args.goal_name}". Your active goals are: {available}',
        )

    name = str(goal["name"])
    current = Decimal(str(goal["current_amount"]))
    target = Decimal(str(goal["target_amount"]))
    delta = args.amount_to_add
    new_amount = current + delta

    if new_amount < 0:
        return ActionOutcome(
            "rejected",
            f'Cannot subtract ${money(abs(delta))} from "{name}" - current balance is only ${money(current)}',
        )

    if new_amount > target * OVERSHOOT_RATIO:
        logger.warning("Overshoot guard tripped for goal %s (new amount %s, target %s)", goal["id"], new_amount, target)
        return ActionOutcome(
            "warning",
            f'Adding ${money(delta)} would bring "{name}" to ${money(new_amount)}, which is more than 50% '
            f"over your target of ${money(target)}. No changes were made. "
            "Please confirm with the user whether this is correct before trying again.",
        )

    new_amount = quantize_amount(new_amount)
    completed = new_amount >= target
    status = "completed" if completed else str(goal["status"])

    try:
        updated = await store.update_goal_amount(
            goal["id"],
            user_id,
            current_amount=new_amount,
            status=status,
        )
    except StoreError:
        logger.exception("Goal update failed for goal %s", goal["id"])
        return ActionOutcome("rejected", "Failed to update goal: database error")

    if updated is None:
        return ActionOutcome("rejected", f'Failed to update goal "{name}": goal no longer available')

    verb = "Added" if delta >= 0 else "Removed"
    preposition = "to" if delta >= 0 else "from"
    note = " Goal completed!" if completed else ""
    return ActionOutcome(
        "success",
        f'{verb} ${money(abs(delta))} {preposition} "{name}". '
        f"New progress: {progress_percent(new_amount, target)}% (${money(new_amount)}/${money(target)}){note}",
    )


async def dispatch_action(
    store: Store,
    user_id: UUID,
    call: ActionCall,
    *,
    today: date | None = None,
) -> ActionOutcome:
    """Validate one model-proposed call and apply it when every guardrail passes."""
    try:
        payload = parse_action(call)
    except UnknownActionError as exc:
        logger.warning("Rejected call to unknown action %r for user %s", call.name, user_id)
        return ActionOutcome("security", str(exc))
    except ActionArgumentError as exc:
        return ActionOutcome("rejected", str(exc))

    if isinstance(payload, AddIncomeArgs):
        outcome = await _add_income(store, user_id, payload, today or current_date())
    elif isinstance(payload, UpdateGoalProgressArgs):
        outcome = await _update_goal_progress(store, user_id, payload)
    else:
        raise TypeError(f"No executor for {type(payload).__name__}")

    logger.info("Action %s for user %s -> %s", call.name, user_id, outcome.kind)
    return outcome
