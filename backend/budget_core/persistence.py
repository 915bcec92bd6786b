from __future__ import annotations

import json
from enum import Enum
from typing import Any

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .schemas import UserSettings, UserSettingsUpdate
from .store import store


class EntityType(str, Enum):
    transactions = "transactions"
    categories = "categories"
    goals = "goals"
    system_budgets = "system_budgets"
    custom_budgets = "custom_budgets"


_RESERVED = {"id", "user_id", "created_at", "updated_at"}


_LABELS = {
    EntityType.transactions: "transaction",
    EntityType.categories: "category",
    EntityType.goals: "goal",
    EntityType.system_budgets: "system budget",
    EntityType.custom_budgets: "custom budget",
}


def _entity_label(entity: EntityType) -> str:
    return _LABELS[entity]


def _encode(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in jsonable_encoder(data).items() if k not in _RESERVED}


def _matches(row: dict[str, Any], criteria: dict[str, Any]) -> bool:
    return all(row.get(key) == value for key, value in criteria.items())


class Persistence:
    def list_entities(self, entity: EntityType, user_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def filter_entities(self, entity: EntityType, user_id: str, criteria: dict[str, Any]) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get_entity(self, entity: EntityType, user_id: str, entity_id: str) -> dict[str, Any]:
        raise NotImplementedError

    def create_entity(self, entity: EntityType, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def update_entity(self, entity: EntityType, user_id: str, entity_id: str, data: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def delete_entity(self, entity: EntityType, user_id: str, entity_id: str) -> None:
        raise NotImplementedError

    def get_user_settings(self, user_id: str) -> UserSettings:
        raise NotImplementedError

    def update_user_settings(self, user_id: str, payload: UserSettingsUpdate) -> UserSettings:
        raise NotImplementedError


class InMemoryPersistence(Persistence):
    def _owned(self, entity: EntityType, user_id: str, entity_id: str) -> dict[str, Any]:
        row = store.table(entity.value).get(str(entity_id))
        if not row or row["user_id"] != user_id:
            raise HTTPException(status_code=404, detail=f"{_entity_label(entity)} not found: {entity_id}")
        return row

    def list_entities(self, entity: EntityType, user_id: str) -> list[dict[str, Any]]:
        rows = [dict(r) for r in store.table(entity.value).values() if r["user_id"] == user_id]
        return sorted(rows, key=lambda r: r.get("created_at") or "", reverse=True)

    def filter_entities(self, entity: EntityType, user_id: str, criteria: dict[str, Any]) -> list[dict[str, Any]]:
        wanted = jsonable_encoder(criteria)
        return [r for r in self.list_entities(entity, user_id) if _matches(r, wanted)]

    def get_entity(self, entity: EntityType, user_id: str, entity_id: str) -> dict[str, Any]:
        return dict(self._owned(entity, user_id, entity_id))

    def create_entity(self, entity: EntityType, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        entity_id = store.make_id()
        now = store.now()
        row = {**_encode(data), "id": entity_id, "user_id": user_id, "created_at": now, "updated_at": now}
        store.table(entity.value)[entity_id] = row
        return dict(row)

    def update_entity(self, entity: EntityType, user_id: str, entity_id: str, data: dict[str, Any]) -> dict[str, Any]:
        row = self._owned(entity, user_id, entity_id)
        row.update(_encode(data))
        row["updated_at"] = store.now()
        return dict(row)

    def delete_entity(self, entity: EntityType, user_id: str, entity_id: str) -> None:
        self._owned(entity, user_id, entity_id)
        del store.table(entity.value)[str(entity_id)]

    def get_user_settings(self, user_id: str) -> UserSettings:
        return UserSettings(**store.user_settings.get(user_id, {}))

    def update_user_settings(self, user_id: str, payload: UserSettingsUpdate) -> UserSettings:
        current = store.user_settings.setdefault(user_id, {})
        current.update(jsonable_encoder(payload.model_dump(exclude_unset=True, exclude_none=True)))
        return UserSettings(**current)


class PostgresPersistence(Persistence):
    _COLUMNS = "id, user_id, data, created_at, updated_at"

    def __init__(self, database_url: str) -> None:
        self.engine: Engine = create_engine(database_url, future=True, pool_pre_ping=True)

    def _run(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(text(sql), params or {})
                if result.returns_rows:
                    return [dict(row._mapping) for row in result.fetchall()]
                return []
        except SQLAlchemyError as exc:
            raise HTTPException(status_code=500, detail=f"postgres error: {exc.__class__.__name__}") from exc

    @staticmethod
    def _to_row(record: dict[str, Any]) -> dict[str, Any]:
        data = record["data"]
        if isinstance(data, str):
            data = json.loads(data)
        return {
            **data,
            "id": str(record["id"]),
            "user_id": record["user_id"],
            "created_at": jsonable_encoder(record["created_at"]),
            "updated_at": jsonable_encoder(record["updated_at"]),
        }

    def list_entities(self, entity: EntityType, user_id: str) -> list[dict[str, Any]]:
        rows = self._run(
            f"""
            select {self._COLUMNS}
            from entities
            where entity_type = :entity_type and user_id = :user_id
            order by created_at desc
            """,
            {"entity_type": entity.value, "user_id": user_id},
        )
        return [self._to_row(r) for r in rows]

    def filter_entities(self, entity: EntityType, user_id: str, criteria: dict[str, Any]) -> list[dict[str, Any]]:
        rows = self._run(
            f"""
            select {self._COLUMNS}
            from entities
            where entity_type = :entity_type and user_id = :user_id and data @> cast(:criteria as jsonb)
            order by created_at desc
            """,
            {"entity_type": entity.value, "user_id": user_id, "criteria": json.dumps(jsonable_encoder(criteria))},
        )
        return [self._to_row(r) for r in rows]

    def get_entity(self, entity: EntityType, user_id: str, entity_id: str) -> dict[str, Any]:
        rows = self._run(
            f"""
            select {self._COLUMNS}
            from entities
            where id = cast(:id as uuid) and entity_type = :entity_type and user_id = :user_id
            limit 1
            """,
            {"id": str(entity_id), "entity_type": entity.value, "user_id": user_id},
        )
        if not rows:
            raise HTTPException(status_code=404, detail=f"{_entity_label(entity)} not found: {entity_id}")
        return self._to_row(rows[0])

    def create_entity(self, entity: EntityType, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        row = self._run(
            f"""
            insert into entities (id, user_id, entity_type, data)
            values (cast(:id as uuid), :user_id, :entity_type, cast(:data as jsonb))
            returning {self._COLUMNS}
            """,
            {"id": store.make_id(), "user_id": user_id, "entity_type": entity.value, "data": json.dumps(_encode(data))},
        )[0]
        return self._to_row(row)

    def update_entity(self, entity: EntityType, user_id: str, entity_id: str, data: dict[str, Any]) -> dict[str, Any]:
        rows = self._run(
            f"""
            update entities
            set data = data || cast(:patch as jsonb), updated_at = now()
            where id = cast(:id as uuid) and entity_type = :entity_type and user_id = :user_id
            returning {self._COLUMNS}
            """,
            {"id": str(entity_id), "entity_type": entity.value, "user_id": user_id, "patch": json.dumps(_encode(data))},
        )
        if not rows:
            raise HTTPException(status_code=404, detail=f"{_entity_label(entity)} not found: {entity_id}")
        return self._to_row(rows[0])

    def delete_entity(self, entity: EntityType, user_id: str, entity_id: str) -> None:
        rows = self._run(
            """
            delete from entities
            where id = cast(:id as uuid) and entity_type = :entity_type and user_id = :user_id
            returning id
            """,
            {"id": str(entity_id), "entity_type": entity.value, "user_id": user_id},
        )
        if not rows:
            raise HTTPException(status_code=404, detail=f"{_entity_label(entity)} not found: {entity_id}")

    def get_user_settings(self, user_id: str) -> UserSettings:
        rows = self._run("select data from user_settings where user_id = :user_id limit 1", {"user_id": user_id})
        if not rows:
            return UserSettings()
        data = rows[0]["data"]
        return UserSettings(**(json.loads(data) if isinstance(data, str) else data))

    def update_user_settings(self, user_id: str, payload: UserSettingsUpdate) -> UserSettings:
        patch = jsonable_encoder(payload.model_dump(exclude_unset=True, exclude_none=True))
        self._run(
            """
            insert into user_settings (user_id, data)
            values (:user_id, cast(:patch as jsonb))
            on conflict (user_id) do update
              set data = user_settings.data || excluded.data, updated_at = now()
            """,
            {"user_id": user_id, "patch": json.dumps(patch)},
        )
        return self.get_user_settings(user_id)


def get_persistence() -> Persistence:
    if settings.storage_backend == "postgres":
        return PostgresPersistence(settings.database_url)
    return InMemoryPersistence()
