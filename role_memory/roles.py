from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Protocol

from .models import RoleMemoryError, RoleRecord, WriteFailed

LOGGER = logging.getLogger(__name__)


class DirectoryFetchFailed(RoleMemoryError):
    """The guild member list could not be retrieved."""


class RoleGrantFailed(RoleMemoryError):
    """Restoring roles to a rejoining member failed."""


class RoleStoreLike(Protocol):
    def upsert(self, record: RoleRecord) -> None: ...

    def get(self, guild_id: str, user_id: str) -> Optional[RoleRecord]: ...


GrantRoles = Callable[[List[str]], Awaitable[List[Any]]]


@dataclass
class MemberInfo:
    member_id: str
    role_ids: List[str]
    display_name: str = ""


@dataclass
class SnapshotResult:
    recorded: int = 0
    skipped: int = 0
    failed: List[str] = field(default_factory=list)


def recordable_role_ids(role_ids: Iterable[Any], everyone_role_id: Any) -> List[str]:
    everyone = str(everyone_role_id)
    kept: List[str] = []
    for role_id in role_ids:
        rid = str(role_id)
        if rid == everyone or rid in kept:
            continue
        kept.append(rid)
    return kept


def members_from_guild(members: Iterable[Any]) -> List[MemberInfo]:
    return [
        MemberInfo(
            member_id=str(member.id),
            role_ids=[str(role.id) for role in member.roles],
            display_name=str(getattr(member, "display_name", "") or ""),
        )
        for member in members
    ]


async def snapshot_members(
    store: RoleStoreLike,
    guild_id: Any,
    everyone_role_id: Any,
    members: Iterable[MemberInfo],
) -> SnapshotResult:
    """Record the assignable roles of every member in a guild.

    A member holding only the everyone-role is skipped. A WriteFailed for one
    member is logged and the snapshot carries on; StoreUnavailable propagates
    and aborts the run. Yields to the event loop before each member.
    """
    gid = str(guild_id)
    result = SnapshotResult()
    for member in members:
        await asyncio.sleep(0)
        role_ids = recordable_role_ids(member.role_ids, everyone_role_id)
        if not role_ids:
            result.skipped += 1
            continue
        record = RoleRecord(
            guild_id=gid,
            user_id=member.member_id,
            role_ids=role_ids,
            display_name=member.display_name,
        )
        try:
            store.upsert(record)
        except WriteFailed as exc:
            LOGGER.warning(
                "Failed recording roles for %s (%s) in guild %s: %s",
                member.display_name,
                member.member_id,
                gid,
                exc,
            )
            result.failed.append(member.member_id)
            continue
        result.recorded += 1
    LOGGER.info(
        "Snapshot for guild %s: %s recorded, %s skipped, %s failed",
        gid,
        result.recorded,
        result.skipped,
        len(result.failed),
    )
    return result


async def restore_member(
    store: RoleStoreLike,
    guild_id: Any,
    member_id: Any,
    grant: GrantRoles,
) -> Optional[List[Any]]:
    """Grant the recorded roles back to a member.

    Returns None when nothing is recorded, otherwise whatever the grant
    callable reports as actually granted.
    """
    record = store.get(str(guild_id), str(member_id))
    if record is None or not record.role_ids:
        LOGGER.debug("No recorded roles for %s in guild %s", member_id, guild_id)
        return None
    return list(await grant(list(record.role_ids)) or [])
