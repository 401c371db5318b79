from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from .config import Config, ConfigError, load_config
from .durations import format_duration
from .manager import GiveawayError, GiveawayManager, parse_reaction_emoji
from .messages import build_pending_embed, giveaway_list_line
from .models import EntryMode
from .storage import ModuleStorage
from .validation import validate_duration

PERMISSION_LOG = logging.getLogger("giveaway.permissions")
ENV_PATH = Path(".env")

log = logging.getLogger(__name__)


def _load_env_file(path: Path = ENV_PATH) -> None:
    if not path.exists():
        return
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value and ((value[0] == value[-1]) and value.startswith(("'", '"'))):
            value = value[1:-1]
        os.environ.setdefault(key, value)


def configure_logging(level: str) -> None:
    console_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_dir = Path("logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / "log.txt", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


class GiveawayBot(commands.Bot):
    def __init__(self, config: Config, storage: ModuleStorage) -> None:
        intents = discord.Intents.default()

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            application_id=config.application_id,
        )
        self.config = config
        self.manager = GiveawayManager(self, config, storage)

    async def setup_hook(self) -> None:
        await self.tree.sync()
        dev_guild_id = self.config.permissions.development_guild_id
        if dev_guild_id:
            guild = discord.Object(dev_guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s)", self.user, self.user.id)  # type: ignore[union-attr]
        report = await self.manager.recover()
        if report is not None:
            log.info(
                "Startup recovery armed %s timer(s) and ended %s overdue giveaway(s).",
                len(report.scheduled),
                len(report.processed),
            )

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        await self.manager.gateway.dispatch_reaction(payload)

    async def close(self) -> None:
        self.manager.scheduler.shutdown()
        await super().close()


async def admin_required(
    interaction: discord.Interaction, manager: GiveawayManager
) -> Optional[str]:
    command_name = getattr(getattr(interaction, "command", None), "name", "unknown")
    user = interaction.user
    user_id = getattr(user, "id", "unknown")

    guild = interaction.guild
    if guild is None:
        PERMISSION_LOG.debug(
            "Denied command %s for user %s: non-guild context.",
            command_name,
            user_id,
        )
        return "This command can only be used inside a guild."

    member: Optional[discord.Member]
    if isinstance(user, discord.Member):
        member = user
    else:
        member = guild.get_member(user.id)
        if member is None:
            try:
                member = await guild.fetch_member(user.id)
            except (discord.NotFound, discord.Forbidden, discord.HTTPException):
                member = None

    if member is None:
        PERMISSION_LOG.warning(
            "Denied command %s for user %s: unable to resolve guild member.",
            command_name,
            user_id,
        )
        return "You do not have permission to manage giveaways."

    if not manager.is_admin(
        member,
        guild_owner_id=getattr(guild, "owner_id", None),
        base_permissions=getattr(interaction, "permissions", None),
    ):
        PERMISSION_LOG.warning(
            "Denied command %s for user %s: missing giveaway admin rights (roles=%s).",
            command_name,
            member.id,
            [role.id for role in member.roles],
        )
        return "You do not have permission to manage giveaways."

    PERMISSION_LOG.debug(
        "Authorized command %s for user %s.", command_name, member.id
    )
    return None


def build_bot(config_path: Path) -> GiveawayBot:
    _load_env_file()
    config = load_config(config_path)
    configure_logging(config.logging.level)
    storage = ModuleStorage(config.data_dir)
    return GiveawayBot(config, storage)


def register_commands(bot: GiveawayBot) -> None:
    manager = bot.manager
    defaults = bot.config.giveaway_defaults

    @bot.tree.command(name="giveaway-create", description="Create a giveaway draft.")
    @app_commands.describe(
        title="Title shown on the announcement.",
        duration="How long the giveaway runs, e.g. 1d2h30m or 01:30:00.",
        winners="Number of winners.",
        mode="How members enter the giveaway.",
        question="Trivia or competition question.",
        answer="Expected answer (case-insensitive).",
        attempts="Maximum answer attempts per member (0 for unlimited).",
        emoji="Reaction emoji for reaction mode.",
        required_role="Only members with this role may enter.",
        blocked_role="Members with this role may not enter.",
        live_leaderboard="Show the live leaderboard in competition mode.",
    )
    async def giveaway_create(
        interaction: discord.Interaction,
        title: str,
        duration: Optional[str] = None,
        winners: app_commands.Range[int, 1, 100] = 1,
        mode: EntryMode = EntryMode.BUTTON,
        question: Optional[str] = None,
        answer: Optional[str] = None,
        attempts: Optional[int] = None,
        emoji: Optional[str] = None,
        required_role: Optional[discord.Role] = None,
        blocked_role: Optional[discord.Role] = None,
        live_leaderboard: bool = True,
    ) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return

        changes: dict = {
            "title": title,
            "winner_count": winners,
            "entry_mode": mode,
            "live_leaderboard": live_leaderboard,
        }
        if duration is not None:
            duration_ms = validate_duration(duration, defaults.max_duration_ms)
            if duration_ms is None:
                await interaction.response.send_message(
                    "Invalid duration. Use a format like `1d2h30m`, `45m` or `01:30:00` "
                    f"(at most {defaults.max_duration_days} days).",
                    ephemeral=True,
                )
                return
            changes["duration_ms"] = duration_ms
        if question is not None:
            changes["trivia_question"] = question.strip()
        if answer is not None:
            changes["trivia_answer"] = answer.strip()
        if attempts is not None:
            changes["max_trivia_attempts"] = attempts
        if required_role is not None:
            changes["required_roles"] = [required_role.id]
        if blocked_role is not None:
            changes["blocked_roles"] = [blocked_role.id]

        try:
            if emoji is not None:
                identifier, display = parse_reaction_emoji(emoji)
                changes["reaction_identifier"] = identifier
                changes["reaction_display_emoji"] = display
            pending = await manager.create_pending(
                interaction.guild.id, interaction.user.id, **changes
            )
        except GiveawayError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return

        await interaction.response.send_message(
            "Draft created. Set prizes with `/giveaway-prize`, then `/giveaway-start`.",
            embed=build_pending_embed(pending),
            ephemeral=True,
        )

    @bot.tree.command(name="giveaway-prize", description="Set the prize for a winner slot.")
    @app_commands.describe(
        draft_id="Identifier of the draft.",
        slot="Winner slot (1 for the first prize).",
        prize="Prize text. Only revealed to the winner.",
    )
    async def giveaway_prize(
        interaction: discord.Interaction,
        draft_id: str,
        slot: app_commands.Range[int, 1, 100],
        prize: str,
    ) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        try:
            pending = await manager.set_prize(
                interaction.guild.id, draft_id.strip(), slot - 1, prize
            )
        except GiveawayError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return
        await interaction.response.send_message(
            f"Prize for slot {slot} saved.", embed=build_pending_embed(pending), ephemeral=True
        )

    @bot.tree.command(name="giveaway-start", description="Announce a ready giveaway draft.")
    @app_commands.describe(
        draft_id="Identifier of the draft.",
        channel="Channel for the announcement. Defaults to the current channel.",
    )
    async def giveaway_start(
        interaction: discord.Interaction,
        draft_id: str,
        channel: Optional[discord.TextChannel] = None,
    ) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True)
        target_id = channel.id if channel else interaction.channel_id
        try:
            giveaway = await manager.start_pending(
                interaction.guild.id,
                draft_id.strip(),
                target_id,
                creator_name=str(interaction.user),
            )
        except GiveawayError as exc:
            await interaction.followup.send(str(exc), ephemeral=True)
            return
        duration_ms = int((giveaway.end_time - giveaway.start_time).total_seconds() * 1000)
        await interaction.followup.send(
            f"Giveaway **{giveaway.title}** started in <#{giveaway.channel_id}> "
            f"for {format_duration(duration_ms)} (ID `{giveaway.id}`).",
            ephemeral=True,
        )

    @bot.tree.command(name="giveaway-drafts", description="List giveaway drafts.")
    async def giveaway_drafts(interaction: discord.Interaction) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        drafts = await manager.list_pending(interaction.guild.id)
        if not drafts:
            await interaction.response.send_message("No drafts found.", ephemeral=True)
            return
        lines = [
            f"- **{draft.title}** (`{draft.id}`) • {draft.status.value}" for draft in drafts
        ]
        await interaction.response.send_message("\n".join(lines), ephemeral=True)

    @bot.tree.command(name="giveaway-discard", description="Delete a giveaway draft.")
    @app_commands.describe(draft_id="Identifier of the draft.")
    async def giveaway_discard(interaction: discord.Interaction, draft_id: str) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        if await manager.discard_pending(interaction.guild.id, draft_id.strip()):
            await interaction.response.send_message("Draft discarded.", ephemeral=True)
        else:
            await interaction.response.send_message(
                "Giveaway not found. It may have been deleted.", ephemeral=True
            )

    @bot.tree.command(name="giveaway-cancel", description="Cancel a running giveaway.")
    @app_commands.describe(giveaway_id="Identifier of the giveaway.")
    async def giveaway_cancel(interaction: discord.Interaction, giveaway_id: str) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True)
        if await manager.cancel(interaction.guild.id, giveaway_id.strip()):
            await interaction.followup.send("Giveaway cancelled.", ephemeral=True)
        else:
            await interaction.followup.send(
                "That giveaway could not be cancelled. It may have ended or been deleted.",
                ephemeral=True,
            )

    @bot.tree.command(name="giveaway-end", description="End a giveaway now and draw winners.")
    @app_commands.describe(giveaway_id="Identifier of the giveaway.")
    async def giveaway_end(interaction: discord.Interaction, giveaway_id: str) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True)
        giveaway = await manager.force_finish(interaction.guild.id, giveaway_id.strip())
        if giveaway is None:
            await interaction.followup.send(
                "That giveaway has already ended or no longer exists.", ephemeral=True
            )
            return
        await interaction.followup.send(
            f"Giveaway **{giveaway.title}** ended with {len(giveaway.winners)} winner(s).",
            ephemeral=True,
        )

    @bot.tree.command(name="giveaway-list", description="List giveaways in this server.")
    @app_commands.describe(active_only="Only show giveaways that are still running.")
    async def giveaway_list(
        interaction: discord.Interaction, active_only: bool = False
    ) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        giveaways = await manager.list_giveaways(interaction.guild.id, active_only=active_only)
        if not giveaways:
            await interaction.response.send_message("No giveaways found.", ephemeral=True)
            return
        lines = [f"- {giveaway_list_line(giveaway)}" for giveaway in giveaways[:20]]
        await interaction.response.send_message("\n".join(lines), ephemeral=True)

    @bot.tree.command(name="giveaway-remove", description="Delete a giveaway record.")
    @app_commands.describe(giveaway_id="Identifier of the giveaway.")
    async def giveaway_remove(interaction: discord.Interaction, giveaway_id: str) -> None:
        error = await admin_required(interaction, manager)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        if await manager.remove(interaction.guild.id, giveaway_id.strip()):
            await interaction.response.send_message("Giveaway removed.", ephemeral=True)
        else:
            await interaction.response.send_message(
                "Giveaway not found. It may have been deleted.", ephemeral=True
            )


async def main() -> None:
    parser = argparse.ArgumentParser(description="Discord Giveaway Bot")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config") / "config.yaml",
        help="Path to the bot configuration file.",
    )
    args = parser.parse_args()

    try:
        bot = build_bot(args.config)
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    register_commands(bot)

    async with bot:
        await bot.start(bot.config.token)


if __name__ == "__main__":
    asyncio.run(main())
