from typing import Literal, Optional

import discord
from discord import app_commands
from discord.ext import commands

from core.commands import InteractionContext
from core.config import AutothreadChannelConfig, GuildConfigManager
from core.models import InvalidConfigError, ReplyMessageOption, ToggleOption, getLogger
from core.threads import THREADABLE_KINDS, classify_channel
from core.variables import MessageVariables

logger = getLogger(__name__)

ButtonColor = Literal["blurple", "green", "grey", "red"]


class AutoThread(commands.Cog):
    """Creates threads for messages in configured channels and manages them."""

    autothread = app_commands.Group(
        name="autothread",
        description="Configure automatic threads in this server.",
        guild_only=True,
        default_permissions=discord.Permissions(manage_channels=True),
    )

    def __init__(self, bot):
        self.bot = bot

    # ----- events -----

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        await self.bot.wait_for_connected()
        if not await self.bot.threads.should_have_thread(message):
            return
        await self.bot.threads.create_or_update_thread_on_message(message, MessageVariables(message))

    @commands.Cog.listener()
    async def on_message_edit(self, before: discord.Message, after: discord.Message):
        await self.bot.wait_for_connected()
        if after.guild is None or not after.flags.has_thread:
            return
        if before.content == after.content and before.embeds == after.embeds:
            return
        if classify_channel(after.channel) not in THREADABLE_KINDS:
            return

        channel_config = self.bot.threads.get_channel_config(after)
        if channel_config is None:
            return
        if after.author.bot and not channel_config.include_bots:
            return

        await self.bot.threads.create_or_update_thread_on_message(after, MessageVariables(after))

    # ----- thread commands -----

    async def _run(self, interaction: discord.Interaction, name: str, **options) -> None:
        context = InteractionContext(self.bot, interaction)
        command = self.bot.get_needle_command(name)
        if not await command.has_permission_to_execute_here(interaction.user, interaction.channel):
            return await context.reply_in_secret(context.settings["error_insufficient_user_perms"])
        await self.bot.command_executor.execute(command, context, **options)

    @app_commands.command(name="close", description="Archives the current thread.")
    @app_commands.guild_only()
    async def close_thread(self, interaction: discord.Interaction):
        await self._run(interaction, "close")

    @app_commands.command(name="title", description="Sets the title of the current thread.")
    @app_commands.describe(value="The new title of the thread.")
    @app_commands.guild_only()
    async def title(self, interaction: discord.Interaction, value: app_commands.Range[str, 1, 100]):
        await self._run(interaction, "title", value=value)

    # ----- configuration -----

    @autothread.command(name="enable", description="Automatically create threads in a channel.")
    @app_commands.describe(
        channel="The channel to create threads in.",
        custom_title="Title of new threads, may contain variables and a /regex/.",
        regex_join_text="Text placed between the matches of the title regex.",
        title_max_length="The maximum length of generated titles.",
        custom_reply="Message sent in new threads instead of the default one.",
        no_reply="Send no message and no buttons in new threads.",
        default_reply="Go back to the server's default thread message.",
        slowmode="Slowmode of new threads in seconds.",
        autojoin_role="Members with this role are added to every new thread.",
        clear_autojoin_role="Stop adding a role's members to new threads.",
        status_reactions="React to the original message with the thread status.",
        include_bots="Create threads for messages sent by bots as well.",
        close_button_text="Label of the archive button.",
        hide_close_button="Do not show the archive button.",
        close_button_color="Color of the archive button.",
        title_button_text="Label of the edit title button.",
        hide_title_button="Do not show the edit title button.",
        title_button_color="Color of the edit title button.",
    )
    async def autothread_enable(
        self,
        interaction: discord.Interaction,
        channel: discord.TextChannel,
        custom_title: Optional[str] = None,
        regex_join_text: Optional[str] = None,
        title_max_length: Optional[app_commands.Range[int, 1, 100]] = None,
        custom_reply: Optional[str] = None,
        no_reply: bool = False,
        default_reply: bool = False,
        slowmode: Optional[app_commands.Range[int, 0, 21600]] = None,
        autojoin_role: Optional[discord.Role] = None,
        clear_autojoin_role: bool = False,
        status_reactions: Optional[bool] = None,
        include_bots: Optional[bool] = None,
        close_button_text: Optional[str] = None,
        hide_close_button: bool = False,
        close_button_color: Optional[ButtonColor] = None,
        title_button_text: Optional[str] = None,
        hide_title_button: bool = False,
        title_button_color: Optional[ButtonColor] = None,
    ):
        """Enable or update auto-threading for a channel. Options left out keep their current value."""
        exclusive = {
            ("custom_reply", "no_reply", "default_reply"): (custom_reply is not None, no_reply, default_reply),
            ("autojoin_role", "clear_autojoin_role"): (autojoin_role is not None, clear_autojoin_role),
            ("close_button_text", "hide_close_button"): (close_button_text is not None, hide_close_button),
            ("title_button_text", "hide_title_button"): (title_button_text is not None, hide_title_button),
        }
        for names, used in exclusive.items():
            if sum(used) > 1:
                error = InvalidConfigError(
                    "Only one of " + ", ".join(f"`{name}`" for name in names) + " can be used at a time."
                )
                return await interaction.response.send_message(embed=error.embed, ephemeral=True)

        changes = {
            "custom_title": custom_title,
            "regex_join_text": regex_join_text,
            "title_max_length": title_max_length,
            "slowmode": slowmode,
            "include_bots": include_bots,
            "close_button_text": "" if hide_close_button else close_button_text,
            "close_button_style": close_button_color,
            "title_button_text": "" if hide_title_button else title_button_text,
            "title_button_style": title_button_color,
        }
        changes = {k: v for k, v in changes.items() if v is not None}
        if custom_reply is not None:
            changes["custom_reply"] = custom_reply
            changes["reply_type"] = ReplyMessageOption.CUSTOM
        elif no_reply:
            changes["custom_reply"] = ""
            changes["reply_type"] = ReplyMessageOption.CUSTOM
        elif default_reply:
            changes["reply_type"] = ReplyMessageOption.DEFAULT
        if autojoin_role is not None:
            changes["autojoin_role_id"] = autojoin_role.id
        elif clear_autojoin_role:
            changes["autojoin_role_id"] = None
        if status_reactions is not None:
            changes["status_reactions"] = ToggleOption.ON if status_reactions else ToggleOption.OFF

        guild_config = self.bot.configs.get(interaction.guild_id)
        existing = guild_config.find_channel(channel.id)
        if existing is not None:
            channel_config = existing.edit(**changes)
        else:
            channel_config = AutothreadChannelConfig(channel_id=channel.id, **changes)

        await self.bot.configs.set_channel_config(interaction.guild_id, channel_config)
        verb = "Updated" if existing is not None else "Enabled"
        embed = discord.Embed(
            title="Success",
            color=discord.Color.green(),
            description=f"{verb} automatic threads in {channel.mention}.",
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @autothread.command(name="disable", description="Stop creating threads in a channel.")
    @app_commands.describe(channel="The channel to stop creating threads in.")
    async def autothread_disable(self, interaction: discord.Interaction, channel: discord.TextChannel):
        if await self.bot.configs.remove_channel_config(interaction.guild_id, channel.id):
            embed = discord.Embed(
                title="Success",
                color=discord.Color.green(),
                description=f"Disabled automatic threads in {channel.mention}.",
            )
        else:
            embed = discord.Embed(
                title="Error",
                color=discord.Color.red(),
                description=f"Automatic threads are not enabled in {channel.mention}.",
            )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @autothread.command(name="list", description="Show the channels with automatic threads.")
    async def autothread_list(self, interaction: discord.Interaction):
        guild_config = self.bot.configs.get(interaction.guild_id)
        if not guild_config.thread_channels:
            return await interaction.response.send_message(
                "Automatic threads are not enabled in any channel.", ephemeral=True
            )

        embed = discord.Embed(title="Automatic threads", color=discord.Color.blurple())
        for config in guild_config.thread_channels[:25]:
            lines = [
                f"Title: `{config.custom_title}`",
                f"Reply: {config.reply_type.value}",
                f"Slowmode: {config.slowmode}s" if config.slowmode else "Slowmode: off",
                f"Status reactions: {config.status_reactions.value}",
            ]
            if config.autojoin_role_id is not None:
                lines.append(f"Auto-join: <@&{config.autojoin_role_id}>")
            channel = interaction.guild.get_channel(config.channel_id)
            name = f"#{channel.name}" if channel is not None else str(config.channel_id)
            embed.add_field(name=name, value="\n".join(lines), inline=False)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @autothread.command(name="setting", description="Change a message or emoji used by the bot.")
    @app_commands.describe(key="The setting to change.", value="The new value, leave empty to reset it.")
    @app_commands.choices(
        key=[app_commands.Choice(name=k, value=k) for k in sorted(GuildConfigManager.default_settings)]
    )
    async def autothread_setting(
        self, interaction: discord.Interaction, key: str, value: Optional[str] = None
    ):
        try:
            if value is None:
                value = await self.bot.configs.reset_setting(interaction.guild_id, key)
                description = f"`{key}` had been reset to default."
            else:
                await self.bot.configs.set_setting(interaction.guild_id, key, value)
                description = f"Set `{key}` to `{value}`."
            embed = discord.Embed(title="Success", color=discord.Color.green(), description=description)
        except InvalidConfigError as exc:
            embed = exc.embed
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot):
    await bot.add_cog(AutoThread(bot))
