from __future__ import annotations

import discord

from .models import EntryMode, Giveaway
from .validation import EntryRejection

MODAL_TITLE_LIMIT = 45


def _role_ids(user) -> list[int]:
    return [role.id for role in getattr(user, "roles", [])]


class GiveawayView(discord.ui.View):
    def __init__(self, manager, giveaway_id: str, entry_mode: EntryMode) -> None:
        super().__init__(timeout=None)
        self.manager = manager
        self.giveaway_id = giveaway_id
        self.entry_mode = entry_mode

        if entry_mode is EntryMode.BUTTON:
            enter_button = discord.ui.Button(
                label="Enter 🎉",
                style=discord.ButtonStyle.success,
                custom_id=f"giveaway:enter:{giveaway_id}",
            )
            enter_button.callback = self.enter_callback  # type: ignore[assignment]
            self.add_item(enter_button)
        elif entry_mode in (EntryMode.TRIVIA, EntryMode.COMPETITION):
            is_competition = entry_mode is EntryMode.COMPETITION
            answer_button = discord.ui.Button(
                label="🏆 Answer" if is_competition else "❓ Answer Trivia",
                style=discord.ButtonStyle.primary,
                custom_id=f"giveaway:{entry_mode.value}:{giveaway_id}",
            )
            answer_button.callback = self.answer_callback  # type: ignore[assignment]
            self.add_item(answer_button)

    async def enter_callback(self, interaction: discord.Interaction) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            await interaction.response.send_message(
                "You can only join giveaways from a guild.", ephemeral=True
            )
            return
        response = await self.manager.enter_button(
            interaction.guild.id,
            self.giveaway_id,
            interaction.user.id,
            _role_ids(interaction.user),
        )
        await interaction.response.send_message(response, ephemeral=True)

    async def answer_callback(self, interaction: discord.Interaction) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            await interaction.response.send_message(
                "You can only join giveaways from a guild.", ephemeral=True
            )
            return
        result = await self.manager.check_answer_entry(
            interaction.guild.id,
            self.giveaway_id,
            interaction.user.id,
            _role_ids(interaction.user),
            self.entry_mode,
        )
        if isinstance(result, EntryRejection):
            await interaction.response.send_message(result.message, ephemeral=True)
            return
        if not result.trivia_question:
            await interaction.response.send_message(
                "This giveaway doesn't have a question set up correctly.", ephemeral=True
            )
            return
        await interaction.response.send_modal(AnswerModal(self.manager, result))


class AnswerModal(discord.ui.Modal):
    def __init__(self, manager, giveaway: Giveaway) -> None:
        prefix = "Competition: " if giveaway.entry_mode is EntryMode.COMPETITION else "Trivia: "
        title = f"{prefix}{giveaway.title}"
        if len(title) > MODAL_TITLE_LIMIT:
            title = title[: MODAL_TITLE_LIMIT - 3] + "..."
        super().__init__(title=title, custom_id=f"giveaway:answer:{giveaway.id}")
        self.manager = manager
        self.giveaway_id = giveaway.id
        self.entry_mode = giveaway.entry_mode
        self.answer = discord.ui.TextInput(
            label=(giveaway.trivia_question or "Answer")[:MODAL_TITLE_LIMIT],
            style=discord.TextStyle.short,
            required=True,
            max_length=200,
        )
        self.add_item(self.answer)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        if self.entry_mode is EntryMode.COMPETITION:
            submit = self.manager.submit_competition_answer
        else:
            submit = self.manager.submit_trivia_answer
        response = await submit(
            interaction.guild.id,
            self.giveaway_id,
            interaction.user.id,
            _role_ids(interaction.user),
            self.answer.value,
        )
        await interaction.followup.send(response, ephemeral=True)


class ClaimView(discord.ui.View):
    def __init__(self, manager, giveaway_id: str) -> None:
        super().__init__(timeout=None)
        self.manager = manager
        self.giveaway_id = giveaway_id

        claim_button = discord.ui.Button(
            label="🎁 Claim Prize",
            style=discord.ButtonStyle.success,
            custom_id=f"giveaway:claim:{giveaway_id}",
        )
        claim_button.callback = self.claim_callback  # type: ignore[assignment]
        self.add_item(claim_button)

    async def claim_callback(self, interaction: discord.Interaction) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            await interaction.response.send_message("Guild members only.", ephemeral=True)
            return
        is_admin = self.manager.is_admin(
            interaction.user,
            guild_owner_id=getattr(interaction.guild, "owner_id", None),
            base_permissions=getattr(interaction, "permissions", None),
            role_ids=_role_ids(interaction.user),
        )
        response = await self.manager.claim_prize(
            interaction.guild.id, self.giveaway_id, interaction.user.id, is_admin=is_admin
        )
        await interaction.response.send_message(response, ephemeral=True)
