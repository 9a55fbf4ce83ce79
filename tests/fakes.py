from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Dict, List, Optional

import discord


def forbidden(message: str = "Missing Permissions") -> discord.Forbidden:
    response = SimpleNamespace(status=403, reason="Forbidden")
    return discord.Forbidden(response, message)


@dataclass
class FakeRole:
    id: int
    name: str
    assignable: bool = True

    def is_assignable(self) -> bool:
        return self.assignable


@dataclass
class FakeMember:
    id: int
    roles: List[FakeRole]
    guild: "FakeGuild"
    display_name: str = ""
    added_roles: List[List[int]] = field(default_factory=list)
    fail_add: Optional[Exception] = None

    async def add_roles(self, *roles: FakeRole, reason: Optional[str] = None):
        if self.fail_add is not None:
            raise self.fail_add
        self.added_roles.append([role.id for role in roles])
        for role in roles:
            if role not in self.roles:
                self.roles.append(role)


@dataclass
class FakeGuild:
    id: int
    roles: List[FakeRole] = field(default_factory=list)
    members: Dict[int, FakeMember] = field(default_factory=dict)
    name: str = "TestGuild"
    chunk_error: Optional[Exception] = None
    chunk_calls: int = 0

    def __post_init__(self):
        self.everyone = FakeRole(self.id, "@everyone")

    @property
    def default_role(self) -> FakeRole:
        return self.everyone

    def get_role(self, role_id: int) -> Optional[FakeRole]:
        if role_id == self.id:
            return self.everyone
        for role in self.roles:
            if role.id == role_id:
                return role
        return None

    def add_member(self, member_id: int, role_ids: List[int], display_name: str = ""):
        roles = [self.get_role(role_id) for role_id in role_ids]
        member = FakeMember(
            id=member_id,
            roles=[role for role in roles if role is not None],
            guild=self,
            display_name=display_name or f"user{member_id}",
        )
        self.members[member_id] = member
        return member

    async def chunk(self, cache: bool = True):
        self.chunk_calls += 1
        if self.chunk_error is not None:
            raise self.chunk_error
        return list(self.members.values())


@dataclass
class FakeChannel:
    sent: List[str] = field(default_factory=list)

    async def send(self, content=None, **kwargs):
        self.sent.append(content)
