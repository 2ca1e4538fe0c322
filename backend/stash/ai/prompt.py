"""System prompt for the action-taking assistant."""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal

from stash.ai.actions import (
    INCOME_SOURCES,
    MAX_ACTIONS_PER_MESSAGE,
    MAX_GOAL_UPDATE,
    MAX_INCOME_AMOUNT,
)
from stash.ai.context import FinancialSnapshot, GoalProgress
from stash.utils import money

LARGE_AMOUNT_CONFIRMATION = Decimal("10000")
UNCONFIRMED_CEILING = Decimal("1000")

SYSTEM_PROMPT_BASE = f"""
You are a helpful financial advisor for Stash with the ability to take actions using available functions.

AVAILABLE FUNCTIONS YOU MUST USE:
- add_income: When user mentions earning/receiving money, call this function. Sources: {", ".join(INCOME_SOURCES)}.
- update_goal_progress: When user mentions adding money to (or taking money from) a goal, call this function

CONFIRMATION FLOW:
1. When user requests an action, describe it and ask for confirmation before executing
2. When user responds with affirmative (yes, proceed, go ahead, do it, sure, ok), IMMEDIATELY call the function
3. When user responds with negative (no, cancel, don't, stop), DO NOT call the function and acknowledge cancellation
4. When user response is unclear (maybe, not sure, let me think), DO NOT call the function and ask for clarification

Examples:
User: "I earned $600 from crypto"
You: "I'll add $600 from crypto to your income. Should I proceed?"
User: "Yes" / "Go ahead" / "Do it"
You: [CALL add_income function]

User: "No" / "Cancel"
You: "Understood, I won't add that. Let me know if you change your mind."

If a function result starts with "Error" or "Warning", nothing was changed: explain it to the user plainly.
""".strip()

SECURITY_RULES = f"""
SECURITY RULES:
- Amounts must be under ${MAX_INCOME_AMOUNT} for income, under ${MAX_GOAL_UPDATE} for goal updates
- If amount seems unusually large (over ${LARGE_AMOUNT_CONFIRMATION}), ask for confirmation first
- Maximum {MAX_ACTIONS_PER_MESSAGE} function calls per message
- NEVER call functions without confirmation for amounts over ${UNCONFIRMED_CEILING}
""".strip()

_TOTAL_RE = re.compile(
    r"^- Total income in last 30 days: \$(?P<total>-?\d+\.\d{2}) \((?P<count>\d+) entr(?:y|ies)\)$"
)
_GOAL_RE = re.compile(
    r"^- (?P<name>.+): \$(?P<current>-?\d+\.\d{2}) / \$(?P<target>\d+\.\d{2}) "
    r"\((?P<percent>-?\d+)% complete\)(?: - Deadline: (?P<deadline>\d{4}-\d{2}-\d{2}))?$"
)


def _single_line(text: str) -> str:
    return " ".join(text.split())


def _goal_line(goal: GoalProgress) -> str:
    line = (
        f"- {_single_line(goal.name)}: ${money(goal.current)} / ${money(goal.target)} "
        f"({goal.progress_percent}% complete)"
    )
    if goal.deadline:
        deadline = goal.deadline.isoformat() if isinstance(goal.deadline, date) else str(goal.deadline)
        line += f" - Deadline: {deadline}"
    return line


def render_snapshot(snapshot: FinancialSnapshot) -> str:
    entries = "entry" if snapshot.income_count == 1 else "entries"
    lines = [
        "Current User's Financial Situation:",
        f"- Total income in last 30 days: ${money(snapshot.total_income_last_30_days)} "
        f"({snapshot.income_count} {entries})",
        f"- Active savings goals: {len(snapshot.goals)}",
        "",
    ]
    if snapshot.goals:
        lines.append("Active Goals:")
        lines.extend(_goal_line(goal) for goal in snapshot.goals)
    else:
        lines.append("No active goals yet")
    return "\n".join(lines)


def parse_snapshot(prompt: str) -> FinancialSnapshot:
    """Read the snapshot section back out of a rendered prompt."""
    total: Decimal | None = None
    count = 0
    goals: list[GoalProgress] = []
    in_goals = False

    for raw_line in prompt.splitlines():
        line = raw_line.strip()
        if line == "Active Goals:":
            in_goals = True
            continue
        if in_goals:
            match = _GOAL_RE.match(line)
            if match is None:
                in_goals = False
                continue
            deadline = match.group("deadline")
            goals.append(
                GoalProgress(
                    name=match.group("name"),
                    target=Decimal(match.group("target")),
                    current=Decimal(match.group("current")),
                    progress_percent=int(match.group("percent")),
                    deadline=date.fromisoformat(deadline) if deadline else None,
                )
            )
            continue

        match = _TOTAL_RE.match(line)
        if match is not None:
            total = Decimal(match.group("total"))
            count = int(match.group("count"))

    if total is None:
        raise ValueError("Prompt does not contain a financial snapshot")

    return FinancialSnapshot(total_income_last_30_days=total, income_count=count, goals=goals)


def build_system_prompt(snapshot: FinancialSnapshot) -> str:
    """Policy text, the user's current numbers, then the hard limits."""
    return f"{SYSTEM_PROMPT_BASE}\n\n{render_snapshot(snapshot)}\n\n{SECURITY_RULES}"
