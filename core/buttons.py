import typing

import discord

from core.commands import CommandExecutorService, InteractionContext, NeedleCommand
from core.models import getLogger

logger = getLogger(__name__)


class NeedleButton:
    """
    A button the bot attaches to messages.

    Presses are routed by `custom_id` from `NeedleBot.on_interaction`, so a button keeps
    working for messages sent before a restart.
    """

    custom_id: str = ""

    def __init__(self, bot, command_executor: typing.Optional[CommandExecutorService] = None):
        self.bot = bot
        self.command_executor = command_executor or CommandExecutorService()

    def __repr__(self):
        return f"<{type(self).__name__} custom_id={self.custom_id!r}>"

    def get_builder(self, label: str = "") -> discord.ui.Button:
        raise NotImplementedError

    async def press(self, context: InteractionContext) -> None:
        raise NotImplementedError

    async def resolve_command(self, context: InteractionContext) -> typing.Optional[NeedleCommand]:
        """Returns the command backing this button if the presser may run it here, otherwise replies."""
        command = self.bot.get_needle_command(self.custom_id)
        interaction = context.interaction
        has_permission = await command.has_permission_to_execute_here(interaction.user, interaction.channel)
        if not has_permission:
            await context.reply_in_secret(context.settings["error_insufficient_user_perms"])
            return None
        return command


class CloseButton(NeedleButton):
    custom_id = "close"

    def get_builder(self, label: str = "") -> discord.ui.Button:
        return discord.ui.Button(
            custom_id=self.custom_id,
            label=label or None,
            style=discord.ButtonStyle.success,
            emoji="\N{CARD FILE BOX}",
        )

    async def press(self, context: InteractionContext) -> None:
        if not context.is_in_guild():
            return

        close_command = await self.resolve_command(context)
        if close_command is None:
            return

        await self.command_executor.execute(close_command, context)


class TitleButton(NeedleButton):
    custom_id = "title"

    def get_builder(self, label: str = "") -> discord.ui.Button:
        return discord.ui.Button(
            custom_id=self.custom_id,
            label=label or None,
            style=discord.ButtonStyle.primary,
            emoji="\N{PENCIL}",
        )

    async def press(self, context: InteractionContext) -> None:
        if not context.is_in_guild():
            return

        title_command = await self.resolve_command(context)
        if title_command is None:
            return

        channel = context.interaction.channel
        current = channel.name if isinstance(channel, discord.Thread) else ""
        await context.interaction.response.send_modal(TitleModal(self, title_command, current))


class TitleModal(discord.ui.Modal, title="Change thread title"):
    new_title = discord.ui.TextInput(label="New title", max_length=100)

    def __init__(self, button: TitleButton, command: NeedleCommand, current: str = ""):
        super().__init__()
        self.button = button
        self.command = command
        self.new_title.default = current or None

    async def on_submit(self, interaction: discord.Interaction) -> None:
        context = InteractionContext(self.button.bot, interaction)
        await self.button.command_executor.execute(self.command, context, value=self.new_title.value)
