"""Per-request financial snapshot for the assistant prompt."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from stash.store import Store
from stash.utils import progress_percent, quantize_amount, today as current_date

SNAPSHOT_WINDOW_DAYS = 30


@dataclass(frozen=True)
class GoalProgress:
    name: str
    target: Decimal
    current: Decimal
    progress_percent: int
    deadline: date | None = None


@dataclass(frozen=True)
class FinancialSnapshot:
    total_income_last_30_days: Decimal
    income_count: int
    goals: list[GoalProgress] = field(default_factory=list)


async def assemble_snapshot(
    store: Store,
    user_id: UUID,
    *,
    today: date | None = None,
) -> FinancialSnapshot:
    """Sum the last 30 days of income and list active goals. Read-only, never cached."""
    end = today or current_date()
    start = end - timedelta(days=SNAPSHOT_WINDOW_DAYS)

    income_rows = await store.list_income_between(user_id, start, end)
    total = sum((Decimal(str(row["amount"])) for row in income_rows), Decimal("0"))

    goals: list[GoalProgress] = []
    for row in await store.list_goals(user_id, status="active"):
        target = quantize_amount(Decimal(str(row["target_amount"])))
        current = quantize_amount(Decimal(str(row["current_amount"])))
        goals.append(
            GoalProgress(
                name=str(row["name"]),
                target=target,
                current=current,
                # target > 0 is guaranteed when goals are created
                progress_percent=progress_percent(current, target),
                deadline=row.get("deadline"),
            )
        )

    return FinancialSnapshot(
        total_income_last_30_days=quantize_amount(total),
        income_count=len(income_rows),
        goals=goals,
    )
