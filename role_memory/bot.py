from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Dict, Iterable, List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from .config import BotConfig, load_config
from .health import HealthServer
from .models import RoleMemoryError, RoleStore, init_role_store
from .roles import (
    DirectoryFetchFailed,
    RoleGrantFailed,
    SnapshotResult,
    members_from_guild,
    restore_member,
    snapshot_members,
)

# Default to INFO until the configured level is applied at startup
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s"
)
LOGGER = logging.getLogger(__name__)

INDEX_FAILURE_MESSAGE = "An error occurred while indexing roles."
RESTORE_REASON = "Restoring roles recorded by /index"


def user_label(user_id: int, member: Any | None = None) -> str:
    name = getattr(member, "display_name", None) if member else None
    return f"{name} ({user_id})" if name else str(user_id)


def guild_label(guild: Any | None) -> str:
    if guild is None:
        return "unknown-guild"
    name = getattr(guild, "name", None)
    return f"{name} ({guild.id})" if name else str(guild.id)


def format_snapshot_summary(result: SnapshotResult) -> str:
    message = f"Successfully indexed roles for {result.recorded} members."
    if result.failed:
        message += f" Could not record {len(result.failed)} members; see bot logs."
    return message


async def fetch_all_members(guild: Any) -> List[Any]:
    try:
        members = await guild.chunk(cache=True)
    except (discord.HTTPException, discord.ClientException, asyncio.TimeoutError) as exc:
        raise DirectoryFetchFailed(
            f"Could not fetch members for guild {guild.id}: {exc}"
        ) from exc
    return list(members or [])


async def grant_roles(member: Any, role_ids: Iterable[str]) -> List[int]:
    guild = member.guild
    roles = []
    for role_id in role_ids:
        try:
            role = guild.get_role(int(role_id))
        except ValueError:
            role = None
        if role is None:
            LOGGER.warning(
                "Recorded role %s no longer exists in guild %s; skipping for %s",
                role_id,
                guild.id,
                user_label(member.id, member),
            )
            continue
        if not role.is_assignable():
            LOGGER.warning(
                "Role %s (%s) is not assignable by the bot; skipping for %s",
                role.name,
                role.id,
                user_label(member.id, member),
            )
            continue
        roles.append(role)
    if not roles:
        return []
    try:
        await member.add_roles(*roles, reason=RESTORE_REASON)
    except discord.HTTPException as exc:
        raise RoleGrantFailed(
            f"Couldn't add roles to {user_label(member.id, member)}: {exc}"
        ) from exc
    return [role.id for role in roles]


class RoleMemoryBot(commands.Bot):
    def __init__(self, config: BotConfig, store: Optional[RoleStore] = None):
        intents = discord.Intents.default()
        intents.members = True
        intents.guilds = True
        super().__init__(command_prefix="!", intents=intents)
        self.config = config
        self.store = store or init_role_store(config.database_path)
        self.health_server = HealthServer(
            self,
            host=config.health_host,
            port=config.health_port,
            maintenance_endpoint=config.maintenance_endpoint,
        )
        self.snapshot_locks: Dict[int, asyncio.Lock] = {}

    def snapshot_lock(self, guild_id: int) -> asyncio.Lock:
        return self.snapshot_locks.setdefault(guild_id, asyncio.Lock())

    async def setup_hook(self) -> None:
        await self.health_server.start()

    async def close(self) -> None:
        await self.health_server.stop()
        self.store.close()
        await super().close()

    async def sync_commands_for_guild(self, guild_id: int) -> bool:
        guild = self.get_guild(guild_id)
        if guild is None:
            LOGGER.warning("Cannot sync commands: guild %s not available", guild_id)
            return False
        self.tree.copy_global_to(guild=guild)
        await self.tree.sync(guild=guild)
        LOGGER.info("Synced application commands for guild %s", guild_label(guild))
        return True

    async def _sync_commands_for_all_guilds(self):
        for guild in self.guilds:
            try:
                await self.sync_commands_for_guild(guild.id)
            except Exception as exc:
                LOGGER.warning(
                    "Failed to sync commands for guild %s: %s", guild_label(guild), exc
                )

    async def on_ready(self):
        LOGGER.info("Bot ready as %s", self.user)
        await self._sync_commands_for_all_guilds()

    async def on_guild_join(self, guild: discord.Guild):
        LOGGER.info("New guild joined: %s", guild_label(guild))
        try:
            await self.sync_commands_for_guild(guild.id)
        except Exception as exc:
            LOGGER.warning(
                "Failed to sync commands for guild %s: %s", guild_label(guild), exc
            )

    async def run_snapshot(self, guild: Any) -> SnapshotResult:
        members = await fetch_all_members(guild)
        LOGGER.info(
            "Indexing roles for %s members in guild %s", len(members), guild_label(guild)
        )
        return await snapshot_members(
            self.store,
            guild.id,
            guild.default_role.id,
            members_from_guild(members),
        )

    async def on_member_join(self, member: discord.Member):
        guild = member.guild
        try:
            granted = await restore_member(
                self.store, guild.id, member.id, partial(grant_roles, member)
            )
        except RoleGrantFailed as exc:
            LOGGER.warning("%s", exc)
            return
        except RoleMemoryError as exc:
            LOGGER.error(
                "Error restoring roles for %s in guild %s: %s",
                user_label(member.id, member),
                guild_label(guild),
                exc,
            )
            return
        if granted:
            LOGGER.info(
                "Restored roles %s for %s in guild %s",
                granted,
                user_label(member.id, member),
                guild_label(guild),
            )
        elif granted is not None:
            LOGGER.info(
                "No recorded roles could be restored for %s in guild %s",
                user_label(member.id, member),
                guild_label(guild),
            )


async def send_final_message(interaction: Any, content: str):
    try:
        await interaction.edit_original_response(content=content)
        return
    except discord.HTTPException as exc:
        LOGGER.warning("Could not edit deferred reply, posting instead: %s", exc)
    channel = interaction.channel
    if channel is not None:
        await channel.send(content)


# Command registrations
async def setup_commands(bot: RoleMemoryBot):
    tree = bot.tree

    @bot.listen("on_interaction")
    async def log_app_command(interaction: discord.Interaction):
        if interaction.type != discord.InteractionType.application_command:
            return
        cmd = interaction.command
        data = getattr(interaction, "namespace", None)
        try:
            payload = vars(data) if data else {}
        except TypeError:
            payload = str(data)
        uid = int(getattr(interaction.user, "id", 0) or 0)
        LOGGER.info(
            "Slash command %s by %s in %s with options %s",
            cmd.qualified_name if cmd else "unknown",
            user_label(uid, interaction.user),
            guild_label(interaction.guild),
            payload,
        )

    @tree.error
    async def on_app_command_error(
        interaction: discord.Interaction, error: app_commands.AppCommandError
    ):
        if isinstance(error, app_commands.CheckFailure):
            message = "You do not have permission to use this command."
        else:
            LOGGER.error("Unhandled command error: %s", error, exc_info=error)
            message = "An unexpected error occurred."
        try:
            if interaction.response.is_done():
                await interaction.followup.send(message, ephemeral=True)
            else:
                await interaction.response.send_message(message, ephemeral=True)
        except Exception as exc:
            LOGGER.warning("Failed sending error response for command: %s", exc)

    @app_commands.default_permissions(manage_roles=True)
    @app_commands.guild_only()
    @tree.command(
        name="index", description="Index all users and their roles in the server"
    )
    async def index(interaction: discord.Interaction):
        guild = interaction.guild
        if guild is None:
            await interaction.response.send_message(
                "Commands must be used inside a guild.", ephemeral=True
            )
            return
        lock = bot.snapshot_lock(guild.id)
        if lock.locked():
            await interaction.response.send_message(
                "Role indexing is already running for this server.", ephemeral=True
            )
            return
        async with lock:
            await interaction.response.defer(thinking=True)
            try:
                result = await bot.run_snapshot(guild)
                message = format_snapshot_summary(result)
            except Exception as exc:
                LOGGER.exception(
                    "Indexing roles failed for guild %s: %s", guild_label(guild), exc
                )
                message = INDEX_FAILURE_MESSAGE
        await send_final_message(interaction, message)

    @app_commands.default_permissions(manage_roles=True)
    @app_commands.guild_only()
    @tree.command(name="saved_roles", description="Show the roles recorded for a member")
    @app_commands.describe(user="Member to look up (defaults to you)")
    async def saved_roles(
        interaction: discord.Interaction, user: Optional[discord.Member] = None
    ):
        guild = interaction.guild
        if guild is None:
            await interaction.response.send_message(
                "Commands must be used inside a guild.", ephemeral=True
            )
            return
        target = user or interaction.user
        try:
            record = bot.store.get(str(guild.id), str(target.id))
            total = bot.store.count(str(guild.id))
        except RoleMemoryError as exc:
            LOGGER.error("Saved roles lookup failed in %s: %s", guild_label(guild), exc)
            await interaction.response.send_message(
                "Could not read saved roles right now.", ephemeral=True
            )
            return
        label = user_label(target.id, target)
        if record is None:
            await interaction.response.send_message(
                f"No roles recorded for {label}. {total} members recorded in this server.",
                ephemeral=True,
            )
            return
        mentions = ", ".join(f"<@&{role_id}>" for role_id in record.role_ids)
        await interaction.response.send_message(
            f"Recorded roles for {label}: {mentions}", ephemeral=True
        )


async def main():
    bot_config = load_config()
    logging.getLogger().setLevel(bot_config.log_level)
    LOGGER.setLevel(bot_config.log_level)
    bot = RoleMemoryBot(bot_config)
    await setup_commands(bot)
    async with bot:
        await bot.start(bot_config.token)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
