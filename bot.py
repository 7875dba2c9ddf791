__version__ = "1.0.0"


import asyncio
import os
import sys
import typing

import discord
from colorama import init
from discord import app_commands
from discord.ext import commands

from core.buttons import CloseButton, NeedleButton, TitleButton
from core.clients import ApiClient, MongoDBClient
from core.commands import (
    CloseCommand,
    CommandExecutorService,
    InteractionContext,
    NeedleCommand,
    TitleCommand,
)
from core.config import ConfigManager, GuildConfigManager
from core.models import configure_logging, getLogger
from core.threads import ThreadCreationService

init()

logger = getLogger(__name__)


temp_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "temp")


class NeedleBot(commands.Bot):
    def __init__(self):
        self.config = ConfigManager(self)
        self.config.populate_cache()
        self.configs = GuildConfigManager(self)

        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True

        super().__init__(command_prefix=commands.when_mentioned, intents=intents, help_command=None)
        self._api = None
        self.loaded_cogs = ["cogs.autothread", "cogs.utility"]
        self._connected = None
        self._started = False

        self.command_executor = CommandExecutorService()
        self.needle_commands: typing.Dict[str, NeedleCommand] = {
            command.name: command for command in (CloseCommand(self), TitleCommand(self))
        }
        self.buttons: typing.Dict[str, NeedleButton] = {
            button.custom_id: button
            for button in (CloseButton(self, self.command_executor), TitleButton(self, self.command_executor))
        }
        self.threads = ThreadCreationService(self)

        if not os.path.exists(temp_dir):
            os.mkdir(temp_dir)
        self.log_file_path = os.path.join(temp_dir, "needle.log")
        configure_logging(self)

        self.tree.on_error = self.on_app_command_error
        self.startup()

    def startup(self):
        logger.line()
        logger.info("Needle v%s starting.", __version__)
        logger.line()
        logger.info("discord.py: v%s", discord.__version__)
        logger.line()

    async def load_extensions(self):
        for cog in self.loaded_cogs:
            if cog in self.extensions:
                continue
            logger.debug("Loading %s.", cog)
            try:
                await self.load_extension(cog)
                logger.debug("Successfully loaded %s.", cog)
            except Exception:
                logger.exception("Failed to load %s.", cog)
        logger.line("debug")

    @property
    def api(self) -> ApiClient:
        if self._api is None:
            if self.config["database_type"].lower() == "mongodb":
                self._api = MongoDBClient(self)
            else:
                logger.critical("Invalid database type.")
                raise RuntimeError
        return self._api

    @property
    def token(self) -> str:
        token = self.config["token"]
        if token is None:
            logger.critical("TOKEN must be set, set this as bot token found on the Discord Developer Portal.")
            sys.exit(0)
        return token

    @property
    def bot_owner_ids(self) -> typing.Set[int]:
        owner_ids = set()
        if self.config["owners"] is not None:
            owner_ids = set(map(int, str(self.config["owners"]).split(",")))
        if self.owner_id is not None:
            owner_ids.add(self.owner_id)
        return owner_ids

    async def is_owner(self, user: discord.abc.User) -> bool:
        if user.id in self.bot_owner_ids:
            return True
        return await super().is_owner(user)

    def get_needle_command(self, name: str) -> NeedleCommand:
        return self.needle_commands[name]

    def get_button(self, custom_id: str) -> NeedleButton:
        return self.buttons[custom_id]

    def run(self):
        async def runner():
            async with self:
                self._connected = asyncio.Event()
                try:
                    await self.start(self.token)
                except discord.PrivilegedIntentsRequired:
                    logger.critical(
                        "Privileged intents are not explicitly granted in the discord developers dashboard."
                    )
                except discord.LoginFailure:
                    logger.critical("The bot token was rejected by Discord.")
                except Exception:
                    logger.critical("Stopped by an unexpected exception.", exc_info=True)
                finally:
                    if not self.is_closed():
                        await self.close()

        try:
            asyncio.run(runner(), debug=bool(os.getenv("DEBUG_ASYNCIO")))
        except (KeyboardInterrupt, SystemExit):
            logger.info("Shutting down.")
        finally:
            logger.debug("Event loop closed.")

    async def close(self):
        self.threads.stop()
        await super().close()

    async def wait_for_connected(self) -> None:
        await self.wait_until_ready()
        await self._connected.wait()
        await self.config.wait_until_ready()

    async def on_connect(self):
        try:
            await self.api.validate_database_connection()
        except Exception:
            logger.debug("Logging out due to failed database connection.")
            return await self.close()

        logger.debug("Connected to gateway.")
        await self.config.refresh()
        await self.configs.refresh()
        await self.load_extensions()
        self._connected.set()

    async def on_ready(self):
        """Bot startup, starts the thread counter log."""

        await self.wait_for_connected()

        if self._started:
            logger.line()
            logger.warning("Bot restarted due to internal discord reloading.")
            logger.line()
            return

        logger.line()
        logger.debug("Client ready.")
        logger.info("Logged in as: %s", self.user)
        logger.info("Bot ID: %s", self.user.id)
        logger.info("Guilds: %d", len(self.guilds))
        logger.info("Auto-threading configured in %d guild(s).", len(self.configs))
        logger.line()

        synced = await self.tree.sync()
        logger.info("Synced %d application command(s).", len(synced))

        # stored settings are only known after refresh in on_connect
        self.threads.configure(
            self.config["log_thread_creation"], self.config.get_seconds("thread_log_interval")
        )
        self._started = True

    async def on_guild_remove(self, guild: discord.Guild):
        logger.info("Removed from guild %s, deleting its configuration.", guild.id)
        await self.api.delete_guild_config(guild.id)

    async def on_interaction(self, interaction: discord.Interaction):
        if interaction.type != discord.InteractionType.component:
            return

        custom_id = (interaction.data or {}).get("custom_id")
        button = self.buttons.get(custom_id)
        if button is None:
            return

        logger.debug("Button %s pressed by %s.", custom_id, interaction.user)
        await button.press(InteractionContext(self, interaction))

    async def on_error(self, event_method, *args, **kwargs):
        logger.error("Ignoring exception in %s.", event_method)
        logger.error("Unexpected exception:", exc_info=sys.exc_info())

    async def on_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            logger.warning("CheckFailure: %s", error)
        else:
            logger.error("Unexpected exception:", exc_info=error)

        context = InteractionContext(self, interaction)
        key = "error_insufficient_user_perms" if isinstance(error, app_commands.CheckFailure) else "error_unknown"
        await context.reply_in_secret(context.settings[key])


def main():
    try:
        # noinspection PyUnresolvedReferences
        import uvloop  # type: ignore

        logger.debug("Setting up with uvloop.")
        uvloop.install()
    except ImportError:
        pass

    bot = NeedleBot()
    bot.run()


if __name__ == "__main__":
    main()
