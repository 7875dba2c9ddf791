import typing

import discord

from core.checks import can_manage_thread, check_permissions
from core.config import GuildConfigManager
from core.models import ToggleOption, getLogger
from core.utils import clamp_with_ellipsis, try_react
from core.variables import MessageVariables

logger = getLogger(__name__)


class InteractionContext:
    """
    Everything a command or button needs to answer one interaction.

    Parameters
    ----------
    bot : NeedleBot
        The bot the interaction was received by.
    interaction : discord.Interaction
        The slash command, button press or modal submission.
    """

    def __init__(self, bot, interaction: discord.Interaction):
        self.bot = bot
        self.interaction = interaction
        self.variables = MessageVariables.from_interaction(interaction)
        if interaction.guild_id is not None:
            self.settings = bot.configs.get(interaction.guild_id).settings
        else:
            self.settings = dict(GuildConfigManager.default_settings)

    def is_in_guild(self) -> bool:
        return self.interaction.guild is not None and isinstance(self.interaction.user, discord.Member)

    async def reply_in_secret(self, content: str) -> None:
        await self._reply(content, ephemeral=True)

    async def reply_in_public(self, content: str) -> None:
        await self._reply(content, ephemeral=False)

    async def _reply(self, content: str, *, ephemeral: bool) -> None:
        content = clamp_with_ellipsis(await self.variables.replace(content), 2000)
        if self.interaction.response.is_done():
            await self.interaction.followup.send(content, ephemeral=ephemeral)
        else:
            await self.interaction.response.send_message(content, ephemeral=ephemeral)


class NeedleCommand:
    name: str = ""
    description: str = ""
    # None means everyone may run the command
    default_permissions: typing.Optional[discord.Permissions] = None

    def __init__(self, bot):
        self.bot = bot

    def __repr__(self):
        return f"<{type(self).__name__} name={self.name!r}>"

    async def has_permission_to_execute_here(
        self, member: typing.Union[discord.Member, discord.User], channel
    ) -> bool:
        return await check_permissions(self.bot, member, channel, self.default_permissions)

    async def execute(self, context: InteractionContext, **options) -> None:
        raise NotImplementedError


class ThreadCommand(NeedleCommand):
    """Base for commands that act on the thread they are used in."""

    async def get_thread(self, context: InteractionContext) -> typing.Optional[discord.Thread]:
        interaction = context.interaction
        thread = interaction.channel
        if not isinstance(thread, discord.Thread):
            await context.reply_in_secret(context.settings["error_only_in_thread"])
            return None
        if not can_manage_thread(interaction.user, thread):
            await context.reply_in_secret(context.settings["error_insufficient_user_perms"])
            return None
        return thread


class CloseCommand(ThreadCommand):
    name = "close"
    description = "Archives the current thread"

    async def execute(self, context: InteractionContext, **options) -> None:
        thread = await self.get_thread(context)
        if thread is None:
            return

        await context.reply_in_public(context.settings["success_thread_archived"])

        channel_config = self.bot.configs.get(thread.guild.id).find_channel(thread.parent_id)
        if channel_config is not None and channel_config.status_reactions == ToggleOption.ON:
            await self.update_status_reaction(thread, context.settings)

        logger.debug("Archiving thread %s.", thread.id)
        await thread.edit(archived=True)

    @staticmethod
    async def update_status_reaction(thread: discord.Thread, settings: typing.Dict[str, str]) -> bool:
        starter = thread.starter_message
        if starter is None and thread.parent is not None:
            try:
                starter = await thread.parent.fetch_message(thread.id)
            except discord.HTTPException:
                logger.debug("Starter message of thread %s is gone.", thread.id)
                return False
        if starter is None:
            return False

        try:
            await starter.remove_reaction(settings["emoji_unanswered"], thread.guild.me)
        except (discord.HTTPException, TypeError) as e:
            logger.warning("Failed to remove reaction %s: %s.", settings["emoji_unanswered"], e)
        return await try_react(starter, settings["emoji_archived"])


class TitleCommand(ThreadCommand):
    name = "title"
    description = "Sets the title of the current thread"

    async def execute(self, context: InteractionContext, *, value: str = "", **options) -> None:
        thread = await self.get_thread(context)
        if thread is None:
            return

        value = value.strip()
        if not value:
            return await context.reply_in_secret(context.settings["error_title_empty"])

        name = clamp_with_ellipsis(value, 100)
        if name != thread.name:
            logger.debug("Renaming thread %s.", thread.id)
            await thread.edit(name=name)
        await context.reply_in_secret(context.settings["success_thread_title_changed"])


class CommandExecutorService:
    """Runs a command on behalf of a slash command, button or modal."""

    async def execute(self, command: NeedleCommand, context: InteractionContext, **options) -> None:
        try:
            await command.execute(context, **options)
        except Exception:
            logger.error("Unexpected exception while running %s.", command.name, exc_info=True)
            await context.reply_in_secret(context.settings["error_unknown"])
