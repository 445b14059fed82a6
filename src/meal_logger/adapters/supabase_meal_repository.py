"""Supabase (hosted Postgres) repository for meals."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from postgrest.exceptions import APIError
from supabase import Client

from meal_logger.domain.meals import DateRange, MealRecord, MealType, MealUpdate
from meal_logger.services.meals import MealRepository

SCHEMA_SQL = """
create table if not exists users (
    id uuid primary key,
    email text not null unique,
    password_hash text not null,
    name text not null,
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now()
);
create table if not exists meals (
    id uuid primary key,
    user_id uuid references users (id) on delete set null,
    meal_type text not null
        check (meal_type in ('BREAKFAST', 'BRUNCH', 'LUNCH', 'DINNER', 'SNACK')),
    description text not null,
    estimated_carbs double precision not null check (estimated_carbs >= 0),
    estimated_sugar double precision not null default 0,
    ai_summary text,
    photo_url text,
    carb_source text,
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now()
);
create index if not exists meals_created_at_idx on meals (created_at desc);
create index if not exists meals_user_id_idx on meals (user_id);
"""

_COLUMNS = (
    "id, user_id, meal_type, description, estimated_carbs, estimated_sugar, "
    "ai_summary, photo_url, carb_source, created_at, updated_at"
)

_RANGE_NOT_SATISFIABLE = "PGRST103"


@dataclass
class SupabaseMealRepository(MealRepository):
    """Supabase implementation for meals."""

    client: Client

    def ensure_schema(self) -> None:
        """Create the meals table through the exec_sql RPC when it is missing."""
        try:
            self.client.table("meals").select("id").limit(1).execute()
        except Exception:
            self.client.rpc("exec_sql", {"query": SCHEMA_SQL}).execute()

    def insert(self, record: MealRecord) -> MealRecord:
        """Insert a meal row and return the stored record."""
        response = (
            self.client.table("meals")
            .insert(
                {
                    "id": str(record.id),
                    "user_id": str(record.user_id) if record.user_id else None,
                    "meal_type": record.meal_type.value,
                    "description": record.description,
                    "estimated_carbs": record.estimated_carbs,
                    "estimated_sugar": record.estimated_sugar,
                    "ai_summary": record.ai_summary,
                    "photo_url": record.photo_url,
                    "carb_source": record.carb_source,
                    "created_at": record.created_at.isoformat(),
                    "updated_at": record.updated_at.isoformat(),
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create meal")
        return _parse_meal(response.data[0])

    def list_meals(
        self,
        offset: int,
        limit: int,
        date_range: DateRange | None,
        user_id: UUID | None,
        unowned_only: bool = False,
    ) -> tuple[list[MealRecord], int]:
        """Return a newest-first page and the exact match count.

        PostgREST answers a page that starts past the last row with
        PGRST103; that page is empty and the total comes from a head query.
        """
        query = _filter_meals(
            self.client.table("meals").select(_COLUMNS, count="exact"),
            date_range,
            user_id,
            unowned_only,
        )
        try:
            response = (
                query.order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
        except APIError as exc:
            if exc.code != _RANGE_NOT_SATISFIABLE:
                raise
            head = _filter_meals(
                self.client.table("meals").select("id", count="exact", head=True),
                date_range,
                user_id,
                unowned_only,
            ).execute()
            return [], head.count or 0
        rows = response.data or []
        total = response.count if response.count is not None else len(rows)
        return [_parse_meal(row) for row in rows], total

    def get(self, meal_id: UUID) -> MealRecord | None:
        """Return a meal by id."""
        response = (
            self.client.table("meals")
            .select(_COLUMNS)
            .eq("id", str(meal_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_meal(response.data[0])

    def update(
        self, meal_id: UUID, update: MealUpdate, updated_at: datetime
    ) -> MealRecord | None:
        """Update the provided columns and return the new row."""
        payload: dict[str, object] = {"updated_at": updated_at.isoformat()}
        for name, value in update.changes().items():
            payload[name] = (
                value.value if isinstance(value, MealType) else value
            )
        response = (
            self.client.table("meals").update(payload).eq("id", str(meal_id)).execute()
        )
        if not response.data:
            return None
        return _parse_meal(response.data[0])

    def delete(self, meal_id: UUID) -> bool:
        """Delete a meal row."""
        response = self.client.table("meals").delete().eq("id", str(meal_id)).execute()
        return bool(response.data)


def _filter_meals(
    query: Any,
    date_range: DateRange | None,
    user_id: UUID | None,
    unowned_only: bool,
) -> Any:
    if user_id is not None:
        query = query.eq("user_id", str(user_id))
    elif unowned_only:
        query = query.is_("user_id", "null")
    if date_range is not None:
        query = query.gte("created_at", date_range.start.isoformat()).lt(
            "created_at", date_range.end.isoformat()
        )
    return query


def _parse_meal(row: dict[str, object]) -> MealRecord:
    return MealRecord(
        id=UUID(str(row["id"])),
        user_id=UUID(str(row["user_id"])) if row.get("user_id") else None,
        meal_type=MealType.parse(str(row["meal_type"])),
        description=str(row.get("description", "")),
        estimated_carbs=float(row.get("estimated_carbs") or 0.0),
        estimated_sugar=float(row.get("estimated_sugar") or 0.0),
        ai_summary=row.get("ai_summary"),
        photo_url=row.get("photo_url"),
        carb_source=row.get("carb_source"),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        updated_at=datetime.fromisoformat(str(row["updated_at"])),
    )
