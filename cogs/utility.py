from typing import Literal, Optional

import discord
from discord import app_commands
from discord.ext import commands

from core.models import InvalidConfigError, getLogger

logger = getLogger(__name__)

ConfigKey = Literal["log_thread_creation", "thread_log_interval", "pin_notice_delay"]

_thread_log_keys = {"log_thread_creation", "thread_log_interval"}


async def is_bot_owner(interaction: discord.Interaction) -> bool:
    return await interaction.client.is_owner(interaction.user)


class Utility(commands.Cog):
    """Bot wide settings, restricted to the bot owners."""

    config = app_commands.Group(name="config", description="Change bot wide settings.")

    def __init__(self, bot):
        self.bot = bot

    def _apply_thread_log(self, key: str) -> None:
        if key in _thread_log_keys:
            self.bot.threads.configure(
                self.bot.config["log_thread_creation"],
                self.bot.config.get_seconds("thread_log_interval"),
            )

    @config.command(name="set", description="Set a bot wide setting.")
    @app_commands.describe(key="The setting to change.", value="The new value.")
    @app_commands.check(is_bot_owner)
    async def config_set(self, interaction: discord.Interaction, key: ConfigKey, value: str):
        try:
            self.bot.config.set(key, value)
        except InvalidConfigError as exc:
            return await interaction.response.send_message(embed=exc.embed, ephemeral=True)

        await self.bot.config.update()
        self._apply_thread_log(key)
        embed = discord.Embed(
            title="Success",
            color=discord.Color.green(),
            description=f"Set `{key}` to `{self.bot.config[key]}`.",
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @config.command(name="remove", description="Reset a bot wide setting to its default.")
    @app_commands.describe(key="The setting to reset.")
    @app_commands.check(is_bot_owner)
    async def config_remove(self, interaction: discord.Interaction, key: ConfigKey):
        self.bot.config.remove(key)
        await self.bot.config.update()
        self._apply_thread_log(key)
        embed = discord.Embed(
            title="Success",
            color=discord.Color.green(),
            description=f"`{key}` has been reset to `{self.bot.config[key]}`.",
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @config.command(name="get", description="Show the bot wide settings.")
    @app_commands.describe(key="Only show this setting.")
    @app_commands.check(is_bot_owner)
    async def config_get(self, interaction: discord.Interaction, key: Optional[ConfigKey] = None):
        keys = [key] if key is not None else sorted(self.bot.config.public_keys)
        embed = discord.Embed(title="Settings", color=discord.Color.blurple())
        for name in keys:
            embed.add_field(name=name, value=f"`{self.bot.config[name]}`", inline=False)
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot):
    await bot.add_cog(Utility(bot))
