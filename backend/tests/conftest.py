from __future__ import annotations

import os
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-stash-assistant-tests")
os.environ.setdefault("JWT_ALGORITHM", "HS256")

from stash.errors import StoreError


class FakeStore:
    """In-memory stand-in for PostgresStore, scoped by user like the real one."""

    def __init__(self):
        self.income: list[dict] = []
        self.goals: dict[UUID, dict] = {}
        self.turns: list[dict] = []
        self.fail_writes = False
        self._tick = 0

    def _next_timestamp(self):
        self._tick += 1
        return datetime(2026, 1, 1, 12, 0) + timedelta(seconds=self._tick)

    def add_goal(self, user_id, name, target, current="0", status="active", deadline=None):
        goal_id = uuid4()
        self.goals[goal_id] = {
            "id": goal_id,
            "user_id": user_id,
            "name": name,
            "target_amount": Decimal(str(target)),
            "current_amount": Decimal(str(current)),
            "status": status,
            "deadline": deadline,
            "created_at": self._next_timestamp(),
        }
        return self.goals[goal_id]

    def add_income(self, user_id, amount, income_date: date, source="freelance"):
        row = {
            "id": uuid4(),
            "user_id": user_id,
            "amount": Decimal(str(amount)),
            "source": source,
            "date": income_date,
            "notes": None,
            "created_at": self._next_timestamp(),
        }
        self.income.append(row)
        return row

    async def list_income_between(self, user_id, start, end):
        rows = [row for row in self.income if row["user_id"] == user_id and start <= row["date"] <= end]
        return sorted(rows, key=lambda row: row["date"], reverse=True)

    async def list_goals(self, user_id, status="active"):
        rows = [row for row in self.goals.values() if row["user_id"] == user_id and row["status"] == status]
        return sorted(rows, key=lambda row: row["created_at"], reverse=True)

    async def insert_income(self, user_id, *, amount, source, income_date, notes):
        if self.fail_writes:
            raise StoreError("insert failed")
        row = self.add_income(user_id, amount, income_date, source=source)
        row["notes"] = notes
        return row

    async def update_goal_amount(self, goal_id, user_id, *, current_amount, status):
        if self.fail_writes:
            raise StoreError("update failed")
        row = self.goals.get(goal_id)
        if row is None or row["user_id"] != user_id:
            return None
        row.update({"current_amount": current_amount, "status": status})
        return row

    async def append_turns(self, user_id, turns):
        for role, message in turns:
            self.turns.append(
                {
                    "id": len(self.turns) + 1,
                    "user_id": user_id,
                    "role": role,
                    "message": message,
                    "timestamp": self._next_timestamp(),
                }
            )

    async def recent_turns(self, user_id, limit=50):
        rows = [row for row in self.turns if row["user_id"] == user_id]
        return rows[-limit:]


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def user_id() -> UUID:
    return uuid4()
