"""Postgres-backed store for income, goals and chat history.

Every query is scoped by `user_id`; the database's own row ownership rules
apply on top of that.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol
from uuid import UUID

import psycopg
from fastapi import Depends

from .database import get_db_connection
from .errors import StoreError

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any


class Store(Protocol):
    async def list_income_between(self, user_id: UUID, start: date, end: date) -> list[dict[str, Any]]: ...

    async def list_goals(self, user_id: UUID, status: str = "active") -> list[dict[str, Any]]: ...

    async def insert_income(
        self,
        user_id: UUID,
        *,
        amount: Decimal,
        source: str,
        income_date: date,
        notes: str | None,
    ) -> dict[str, Any]: ...

    async def update_goal_amount(
        self,
        goal_id: UUID,
        user_id: UUID,
        *,
        current_amount: Decimal,
        status: str,
    ) -> dict[str, Any] | None: ...

    async def append_turns(self, user_id: UUID, turns: list[tuple[str, str]]) -> None: ...

    async def recent_turns(self, user_id: UUID, limit: int = 50) -> list[dict[str, Any]]: ...


class PostgresStore:
    def __init__(self, connection: AsyncConnection) -> None:
        self.connection = connection

    @asynccontextmanager
    async def _cursor(self) -> AsyncIterator[Any]:
        try:
            async with self.connection.cursor() as cursor:
                yield cursor
        except psycopg.Error as exc:
            raise StoreError(str(exc)) from exc

    async def list_income_between(self, user_id: UUID, start: date, end: date) -> list[dict[str, Any]]:
        """Income rows dated within [start, end], newest first."""
        async with self._cursor() as cursor:
            await cursor.execute(
                """
                SELECT id, user_id, amount, source, date, notes, created_at
                FROM income
                WHERE user_id = %s
                  AND date >= %s
                  AND date <= %s
                ORDER BY date DESC
                """,
                (user_id, start, end),
            )
            return list(await cursor.fetchall())

    async def list_goals(self, user_id: UUID, status: str = "active") -> list[dict[str, Any]]:
        async with self._cursor() as cursor:
            await cursor.execute(
                """
                SELECT id, user_id, name, target_amount, current_amount, status, deadline, created_at
                FROM goals
                WHERE user_id = %s
                  AND status = %s
                ORDER BY created_at DESC
                """,
                (user_id, status),
            )
            return list(await cursor.fetchall())

    async def insert_income(
        self,
        user_id: UUID,
        *,
        amount: Decimal,
        source: str,
        income_date: date,
        notes: str | None,
    ) -> dict[str, Any]:
        async with self._cursor() as cursor:
            await cursor.execute(
                """
                INSERT INTO income (user_id, amount, source, date, notes)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING id, user_id, amount, source, date, notes, created_at
                """,
                (user_id, amount, source, income_date, notes),
            )
            row = await cursor.fetchone()

        if row is None:
            raise StoreError("Income insert returned no row")
        return row

    async def update_goal_amount(
        self,
        goal_id: UUID,
        user_id: UUID,
        *,
        current_amount: Decimal,
        status: str,
    ) -> dict[str, Any] | None:
        """Set a goal's saved amount and status; None when the goal is not the user's."""
        async with self._cursor() as cursor:
            await cursor.execute(
                """
                UPDATE goals
                SET current_amount = %s,
                    status = %s,
                    updated_at = NOW()
                WHERE id = %s
                  AND user_id = %s
                RETURNING id, user_id, name, target_amount, current_amount, status, deadline, created_at
                """,
                (current_amount, status, goal_id, user_id),
            )
            return await cursor.fetchone()

    async def append_turns(self, user_id: UUID, turns: list[tuple[str, str]]) -> None:
        """Append (role, message) turns in one statement so an exchange lands together."""
        if not turns:
            return

        placeholders = ", ".join(["(%s, %s, %s, clock_timestamp())"] * len(turns))
        params: list[Any] = []
        for role, message in turns:
            params.extend([user_id, role, message])

        async with self._cursor() as cursor:
            await cursor.execute(
                f"INSERT INTO chat_history (user_id, role, message, timestamp) VALUES {placeholders}",
                tuple(params),
            )

    async def recent_turns(self, user_id: UUID, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent `limit` turns in chronological order."""
        if limit < 1:
            return []

        async with self._cursor() as cursor:
            await cursor.execute(
                """
                SELECT id, role, message, timestamp
                FROM chat_history
                WHERE user_id = %s
                ORDER BY timestamp DESC, id DESC
                LIMIT %s
                """,
                (user_id, limit),
            )
            rows = await cursor.fetchall()

        return list(reversed(rows))


async def get_store(connection: AsyncConnection = Depends(get_db_connection)) -> PostgresStore:
    return PostgresStore(connection)
