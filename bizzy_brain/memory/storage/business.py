from __future__ import annotations

from typing import Dict, List, Optional

import aiosqlite

from .utils import _sqlite_memory_connection

_PROFILE_COLUMNS = (
    "business_id, user_id, name, business_type, industry, location, team_size, "
    "has_viewed_integrations_page, onboarding_completed_once"
)


def _profile_row(row: aiosqlite.Row) -> Dict[str, object]:
    return {
        "business_id": str(row["business_id"]),
        "user_id": str(row["user_id"]),
        "name": str(row["name"]),
        "business_type": str(row["business_type"]),
        "industry": str(row["industry"]),
        "location": str(row["location"]),
        "team_size": int(row["team_size"]) if row["team_size"] is not None else None,
        "has_viewed_integrations_page": bool(row["has_viewed_integrations_page"]),
        "onboarding_completed_once": bool(row["onboarding_completed_once"]),
    }


def _optional_float(value: object) -> float | None:
    return float(value) if value is not None else None  # type: ignore[arg-type]


class MemoryBusinessMixin:
    async def upsert_business_profile(
        self,
        business_id: str,
        user_id: str,
        *,
        name: str = "",
        business_type: str = "",
        industry: str = "",
        location: str = "",
        team_size: int | None = None,
        has_viewed_integrations_page: bool = False,
        onboarding_completed_once: bool = False,
    ) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO business_profiles (
                    business_id, user_id, name, business_type, industry, location, team_size,
                    has_viewed_integrations_page, onboarding_completed_once, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                ON CONFLICT(business_id) DO UPDATE SET
                    user_id = excluded.user_id,
                    name = excluded.name,
                    business_type = excluded.business_type,
                    industry = excluded.industry,
                    location = excluded.location,
                    team_size = excluded.team_size,
                    has_viewed_integrations_page = excluded.has_viewed_integrations_page,
                    onboarding_completed_once = excluded.onboarding_completed_once,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    business_id,
                    user_id,
                    name,
                    business_type,
                    industry,
                    location,
                    team_size,
                    1 if has_viewed_integrations_page else 0,
                    1 if onboarding_completed_once else 0,
                ),
            )
            await db.commit()

    async def get_business_profile(
        self,
        business_id: str | None = None,
        user_id: str | None = None,
    ) -> Optional[Dict[str, object]]:
        if business_id:
            where, param = "business_id = ?", business_id
        elif user_id:
            where, param = "user_id = ?", user_id
        else:
            return None
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT {_PROFILE_COLUMNS} FROM business_profiles WHERE {where} ORDER BY created_at LIMIT 1",
                (param,),
            ) as cursor:
                row = await cursor.fetchone()
        return _profile_row(row) if row is not None else None

    async def set_accounting_connection(self, business_id: str, connected: bool, provider: str = "quickbooks") -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            if connected:
                await db.execute(
                    """
                    INSERT INTO accounting_connections (business_id, provider, connected_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(business_id) DO UPDATE SET provider = excluded.provider
                    """,
                    (business_id, provider),
                )
            else:
                await db.execute("DELETE FROM accounting_connections WHERE business_id = ?", (business_id,))
            await db.commit()

    async def has_accounting_connection(self, business_id: str) -> bool:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT 1 FROM accounting_connections WHERE business_id = ? LIMIT 1",
                (business_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return row is not None

    async def save_kpi_snapshot(
        self,
        business_id: str,
        month: str,
        *,
        total_revenue: float | None = None,
        total_expenses: float | None = None,
        net_profit: float | None = None,
        profit_margin: float | None = None,
        top_spending_category: str | None = None,
    ) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO kpi_snapshots (
                    business_id, month, total_revenue, total_expenses, net_profit, profit_margin, top_spending_category
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(business_id, month) DO UPDATE SET
                    total_revenue = excluded.total_revenue,
                    total_expenses = excluded.total_expenses,
                    net_profit = excluded.net_profit,
                    profit_margin = excluded.profit_margin,
                    top_spending_category = excluded.top_spending_category
                """,
                (business_id, month, total_revenue, total_expenses, net_profit, profit_margin, top_spending_category),
            )
            await db.commit()

    async def list_kpi_snapshots(self, business_id: str, limit: int) -> List[Dict[str, object]]:
        """Newest month first."""
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT month, total_revenue, total_expenses, net_profit, profit_margin, top_spending_category
                FROM kpi_snapshots
                WHERE business_id = ?
                ORDER BY month DESC
                LIMIT ?
                """,
                (business_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {
                "month": str(row["month"]),
                "total_revenue": _optional_float(row["total_revenue"]),
                "total_expenses": _optional_float(row["total_expenses"]),
                "net_profit": _optional_float(row["net_profit"]),
                "profit_margin": _optional_float(row["profit_margin"]),
                "top_spending_category": row["top_spending_category"],
            }
            for row in rows
        ]

    async def save_forecast_point(
        self,
        business_id: str,
        month: str,
        *,
        cash_in: float | None = None,
        cash_out: float | None = None,
        net_cash: float | None = None,
    ) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO forecast_points (business_id, month, cash_in, cash_out, net_cash)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(business_id, month) DO UPDATE SET
                    cash_in = excluded.cash_in,
                    cash_out = excluded.cash_out,
                    net_cash = excluded.net_cash
                """,
                (business_id, month, cash_in, cash_out, net_cash),
            )
            await db.commit()

    async def list_forecast_points(self, business_id: str, limit: int) -> List[Dict[str, object]]:
        """Ascending by month."""
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT month, cash_in, cash_out, net_cash
                FROM forecast_points
                WHERE business_id = ?
                ORDER BY month ASC
                LIMIT ?
                """,
                (business_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {
                "month": str(row["month"]),
                "cash_in": _optional_float(row["cash_in"]),
                "cash_out": _optional_float(row["cash_out"]),
                "net_cash": _optional_float(row["net_cash"]),
            }
            for row in rows
        ]

    async def add_suggested_move(self, business_id: str, title: str, rationale: str = "") -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                "INSERT INTO suggested_moves (business_id, title, rationale) VALUES (?, ?, ?)",
                (business_id, title, rationale),
            )
            await db.commit()
            return int(cursor.lastrowid)

    async def list_suggested_moves(self, business_id: str, limit: int) -> List[Dict[str, object]]:
        async with _sqlite_memory_connection(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT move_id, title, rationale
                FROM suggested_moves
                WHERE business_id = ?
                ORDER BY move_id DESC
                LIMIT ?
                """,
                (business_id, max(1, int(limit))),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            {"move_id": int(row["move_id"]), "title": str(row["title"]), "rationale": str(row["rationale"])}
            for row in rows
        ]
