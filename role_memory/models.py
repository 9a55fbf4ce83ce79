from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from peewee import (
    AutoField,
    CharField,
    DatabaseError,
    DateTimeField,
    IntegrityError,
    InterfaceError,
    Model,
    OperationalError,
    SqliteDatabase,
    TextField,
)

LOGGER = logging.getLogger(__name__)


def utcnow_naive() -> datetime:
    """Return current UTC time without tzinfo for SQLite storage."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RoleMemoryError(Exception):
    pass


class StoreUnavailable(RoleMemoryError):
    """The database could not be reached or refused the operation."""


class WriteFailed(RoleMemoryError):
    """A single record could not be written."""


@dataclass
class RoleRecord:
    guild_id: str
    user_id: str
    role_ids: List[str] = field(default_factory=list)
    display_name: str = ""


def _create_models(db: SqliteDatabase) -> type:
    class BaseModel(Model):
        created_at = DateTimeField(default=utcnow_naive)
        updated_at = DateTimeField(default=utcnow_naive)

        class Meta:
            database = db

    class MemberRoles(BaseModel):
        id = AutoField()
        guild_id = CharField()
        user_id = CharField()
        role_ids = TextField()
        display_name = CharField(null=True)

        class Meta:
            table_name = "member_roles"
            indexes = ((("guild_id", "user_id"), True),)

    return MemberRoles


class RoleStore:
    """Role sets keyed by (guild_id, user_id), one row per pair."""

    def __init__(self, db: SqliteDatabase):
        self.db = db
        self.MemberRoles = _create_models(db)

    def create_tables(self):
        try:
            self.db.connect(reuse_if_open=True)
            self.db.create_tables([self.MemberRoles])
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailable(f"Cannot open role store: {exc}") from exc

    def close(self):
        if not self.db.is_closed():
            self.db.close()

    def upsert(self, record: RoleRecord):
        if not record.role_ids:
            raise ValueError(
                f"Refusing to store empty role set for user {record.user_id}"
            )
        model = self.MemberRoles
        payload = json.dumps(list(record.role_ids))
        now = utcnow_naive()
        try:
            model.insert(
                guild_id=record.guild_id,
                user_id=record.user_id,
                role_ids=payload,
                display_name=record.display_name,
                created_at=now,
                updated_at=now,
            ).on_conflict(
                conflict_target=[model.guild_id, model.user_id],
                update={
                    model.role_ids: payload,
                    model.display_name: record.display_name,
                    model.updated_at: now,
                },
            ).execute()
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailable(str(exc)) from exc
        except (IntegrityError, DatabaseError) as exc:
            raise WriteFailed(
                f"Failed writing roles for {record.user_id} in {record.guild_id}: {exc}"
            ) from exc

    def get(self, guild_id: str, user_id: str) -> Optional[RoleRecord]:
        model = self.MemberRoles
        try:
            row = model.get_or_none(
                (model.guild_id == guild_id) & (model.user_id == user_id)
            )
        except (OperationalError, InterfaceError, DatabaseError) as exc:
            raise StoreUnavailable(str(exc)) from exc
        if row is None:
            return None
        try:
            role_ids = [str(rid) for rid in json.loads(row.role_ids or "[]")]
        except ValueError:
            LOGGER.warning(
                "Discarding unreadable role set for user %s in guild %s",
                user_id,
                guild_id,
            )
            role_ids = []
        return RoleRecord(
            guild_id=row.guild_id,
            user_id=row.user_id,
            role_ids=role_ids,
            display_name=row.display_name or "",
        )

    def count(self, guild_id: str) -> int:
        model = self.MemberRoles
        try:
            return model.select().where(model.guild_id == guild_id).count()
        except (OperationalError, InterfaceError, DatabaseError) as exc:
            raise StoreUnavailable(str(exc)) from exc


def init_role_store(path: str) -> RoleStore:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    store = RoleStore(SqliteDatabase(path))
    store.create_tables()
    return store
