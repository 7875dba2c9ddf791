import asyncio
import typing
from enum import Enum

import discord
from discord.ext import tasks

from core.config import AutothreadChannelConfig
from core.models import InvalidConfigError, ReplyMessageOption, ToggleOption, getLogger
from core.utils import (
    REGEX_RESULT,
    clamp_with_ellipsis,
    clean_mentions,
    extract_regex,
    get_required_permissions,
    human_permission,
    missing_permissions,
    plural,
    regex_matches,
    try_react,
)
from core.variables import MessageVariables

logger = getLogger(__name__)

MESSAGE_MAX_LENGTH = 2000
BUTTON_LABEL_MAX_LENGTH = 80
DEFAULT_THREAD_NAME = "New Thread"


class ChannelKind(Enum):
    TEXT = "text"
    NEWS = "news"
    THREAD = "thread"
    VOICE = "voice"
    OTHER = "other"


_channel_kinds = {
    discord.ChannelType.text: ChannelKind.TEXT,
    discord.ChannelType.news: ChannelKind.NEWS,
    discord.ChannelType.public_thread: ChannelKind.THREAD,
    discord.ChannelType.private_thread: ChannelKind.THREAD,
    discord.ChannelType.news_thread: ChannelKind.THREAD,
    discord.ChannelType.voice: ChannelKind.VOICE,
    discord.ChannelType.stage_voice: ChannelKind.VOICE,
}

THREADABLE_KINDS = {ChannelKind.TEXT, ChannelKind.NEWS}


def classify_channel(channel) -> ChannelKind:
    """Maps a platform channel onto the few kinds auto-threading cares about."""
    return _channel_kinds.get(getattr(channel, "type", None), ChannelKind.OTHER)


button_styles = {
    "blurple": discord.ButtonStyle.primary,
    "green": discord.ButtonStyle.success,
    "grey": discord.ButtonStyle.secondary,
    "red": discord.ButtonStyle.danger,
}


def get_button_style(setting: str) -> discord.ButtonStyle:
    try:
        return button_styles[setting.lower()]
    except KeyError:
        raise InvalidConfigError(f"Invalid button color: {setting.lower()}")


class ThreadCreationService:
    """
    Creates, renames and decorates threads for messages in auto-threading channels.

    Parameters
    ----------
    bot : NeedleBot
        Provides `configs`, `config`, `user` and the button registry.
    log_amount_of_created_threads : bool
        Whether `start` should schedule the periodic creation counter log.
    """

    def __init__(self, bot, log_amount_of_created_threads: bool = True):
        self.bot = bot
        self.log_amount_of_created_threads = log_amount_of_created_threads
        self.threads_created_count = 0
        self.last_log_time = discord.utils.utcnow()
        self.log_interval = 60.0
        # message id -> [lock, number of callers holding or waiting for it]
        self._message_locks: typing.Dict[int, list] = {}

    # ----- lifecycle -----

    def start(self, interval: float = 60.0) -> None:
        if not self.log_amount_of_created_threads or self.log_created_threads.is_running():
            return
        self.log_interval = interval
        self.last_log_time = discord.utils.utcnow()
        self.log_created_threads.change_interval(seconds=interval)
        self.log_created_threads.start()
        logger.debug("Logging created threads every %.1f second(s).", interval)

    def stop(self) -> None:
        if self.log_created_threads.is_running():
            self.log_created_threads.cancel()

    def configure(self, enabled: bool, interval: float) -> None:
        """Applies the `log_thread_creation` and `thread_log_interval` settings to the counter log."""
        self.log_amount_of_created_threads = enabled
        if not enabled:
            self.stop()
        elif self.log_created_threads.is_running():
            self.log_interval = interval
            self.log_created_threads.change_interval(seconds=interval)
        else:
            self.start(interval)

    @tasks.loop(minutes=1)
    async def log_created_threads(self):
        self.log_threads_created()

    @log_created_threads.before_loop
    async def before_log_created_threads(self):
        # the first iteration would otherwise fire immediately and report nothing
        await asyncio.sleep(self.log_interval)

    def log_threads_created(self) -> str:
        now = discord.utils.utcnow()
        elapsed = (now - self.last_log_time).total_seconds() / 60
        line = (
            f"[{now.strftime('%H:%M:%S')}] Created {self.threads_created_count} threads "
            f"in the last {elapsed:.2f} minute(s)."
        )
        logger.info(line)

        self.threads_created_count = 0
        self.last_log_time = now
        return line

    # ----- message handling -----

    def get_channel_config(self, message: discord.Message) -> typing.Optional[AutothreadChannelConfig]:
        if message.guild is None:
            return None
        return self.bot.configs.get(message.guild.id).find_channel(message.channel.id)

    async def should_have_thread(self, message: discord.Message) -> bool:
        if message.is_system():
            return False
        if message.guild is None:
            return False
        if classify_channel(message.channel) not in THREADABLE_KINDS:
            return False
        if message.guild.unavailable:
            return False
        if self.bot.user is not None and message.author.id == self.bot.user.id:
            return False
        if message.flags.has_thread:
            return False

        channel_config = self.get_channel_config(message)
        if channel_config is None:
            return False
        if not channel_config.include_bots and message.author.bot:
            return False

        return True

    def _acquire_entry(self, message_id: int) -> asyncio.Lock:
        entry = self._message_locks.get(message_id)
        if entry is None:
            entry = self._message_locks[message_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        return entry[0]

    def _release_entry(self, message_id: int) -> None:
        entry = self._message_locks[message_id]
        entry[1] -= 1
        if entry[1] == 0:
            del self._message_locks[message_id]

    async def create_or_update_thread_on_message(
        self, message: discord.Message, variables: MessageVariables
    ) -> typing.Optional[discord.Thread]:
        """
        Creates a thread for `message`, or renames the existing one if its title changed.

        Processing of a single message is serialised, so a creation racing an edit of the
        same message sees the thread created by the first one and only renames it.

        Returns
        -------
        Optional[discord.Thread]
            The newly created thread, `None` when nothing was created.
        """
        lock = self._acquire_entry(message.id)
        try:
            async with lock:
                return await self._create_or_update(message, variables)
        finally:
            self._release_entry(message.id)

    async def _create_or_update(
        self, message: discord.Message, variables: MessageVariables
    ) -> typing.Optional[discord.Thread]:
        if classify_channel(message.channel) not in THREADABLE_KINDS:
            return None

        guild_config = self.bot.configs.get(message.guild.id)
        channel_config = guild_config.find_channel(message.channel.id)
        if channel_config is None:
            return None

        bot_member = message.guild.me
        if channel_config.reply_type == ReplyMessageOption.DEFAULT:
            raw_reply = guild_config.settings["success_thread_created"]
        else:
            raw_reply = channel_config.custom_reply

        bot_permissions = message.channel.permissions_for(bot_member)
        required = get_required_permissions(channel_config.slowmode, raw_reply)
        missing = missing_permissions(bot_permissions, required)
        if missing:
            await self.report_missing_permissions(message.channel, missing)
            return None

        name = await self.get_thread_name(message, channel_config, variables)

        if message.flags.has_thread or message.thread is not None:
            message = await message.fetch()
            thread = message.thread
            if thread is None or thread.name == name:
                return None

            logger.debug("Renaming thread %s.", thread.id)
            await thread.edit(name=name)
            return None

        thread = await message.create_thread(
            name=name,
            auto_archive_duration=message.channel.default_auto_archive_duration or 1440,
            slowmode_delay=channel_config.slowmode or None,
        )
        self.threads_created_count += 1
        logger.debug("Created thread %s in channel %s.", thread.id, message.channel.id)

        variables.set_thread(thread)

        if channel_config.autojoin_role_id is not None:
            role = message.guild.get_role(channel_config.autojoin_role_id)
            if role is not None:
                await self.add_members(thread, role.members)

        if channel_config.status_reactions == ToggleOption.ON:
            # failure is logged by try_react and otherwise ignored
            await try_react(message, guild_config.settings["emoji_unanswered"])

        reply = await variables.replace(raw_reply)
        if reply.strip():
            view = await self.get_button_view(channel_config, variables)
            kwargs = {"content": clamp_with_ellipsis(reply, MESSAGE_MAX_LENGTH)}
            if view is not None:
                kwargs["view"] = view
            msg = await thread.send(**kwargs)

            if thread.permissions_for(bot_member).manage_messages:
                await msg.pin()
                await asyncio.sleep(self.bot.config.get_seconds("pin_notice_delay"))
                await self.try_delete_pin_notice(thread)

        return thread

    @staticmethod
    async def report_missing_permissions(channel, missing: typing.List[str]) -> None:
        names = [human_permission(name) for name in missing]
        header = f"Missing {plural('permission', len(names))}:"
        logger.info("Cannot create threads in %s, %s", channel.id, ", ".join(names))
        await channel.send(header + "\n    - " + "\n    - ".join(names))

    @staticmethod
    async def add_members(thread: discord.Thread, members: typing.Iterable[discord.Member]) -> int:
        """Adds every member to the thread concurrently, returns how many additions failed."""
        results = await asyncio.gather(
            *(thread.add_user(member) for member in members), return_exceptions=True
        )
        failed = sum(1 for result in results if isinstance(result, Exception))
        if failed:
            logger.warning("Failed to add %d of %d member(s) to thread %s.", failed, len(results), thread.id)
        return failed

    @staticmethod
    async def try_delete_pin_notice(thread: discord.Thread) -> bool:
        try:
            async for latest in thread.history(limit=1):
                if latest.type == discord.MessageType.pins_add:
                    await latest.delete()
                    return True
        except discord.HTTPException as e:
            logger.warning("Failed to delete pin notice in thread %s: %s.", thread.id, e)
        return False

    # ----- titles and buttons -----

    async def get_thread_name(
        self, message: discord.Message, config: AutothreadChannelConfig, variables: MessageVariables
    ) -> str:
        content = self.get_message_content(message, variables)
        result = extract_regex(config.custom_title)
        matches = result.regex and regex_matches(result.regex, content, result.is_global)
        raw_title = result.input_with_regex_variable.replace(
            REGEX_RESULT, config.regex_join_text.join(matches) if matches else "", 1
        ).replace("\n", " ")

        title = await variables.replace(raw_title)
        output = clamp_with_ellipsis(title, config.title_max_length)
        return output if output.strip() else DEFAULT_THREAD_NAME

    @staticmethod
    def get_message_content(message: discord.Message, variables: MessageVariables) -> str:
        embed_content = ""
        for embed in message.embeds:
            field_content = "".join(f"{field.name}\n{field.value}\n\n" for field in embed.fields)
            footer = embed.footer.text if embed.footer and embed.footer.text else ""
            embed_content += clean_mentions(
                f"{embed.title or ''}\n\n{embed.description or ''}\n\n{field_content}{footer}\n\n",
                message.guild,
            )

        return variables.remove_from(message.clean_content + "\n\n" + embed_content)

    async def get_button_view(
        self, config: AutothreadChannelConfig, variables: MessageVariables
    ) -> typing.Optional[discord.ui.View]:
        close_text = clamp_with_ellipsis(await variables.replace(config.close_button_text), BUTTON_LABEL_MAX_LENGTH)
        title_text = clamp_with_ellipsis(await variables.replace(config.title_button_text), BUTTON_LABEL_MAX_LENGTH)
        close_style = get_button_style(config.close_button_style)
        title_style = get_button_style(config.title_button_style)

        buttons = []
        if close_text:
            close_button = self.bot.get_button("close").get_builder(close_text)
            close_button.style = close_style
            buttons.append(close_button)
        if title_text:
            title_button = self.bot.get_button("title").get_builder(title_text)
            title_button.style = title_style
            buttons.append(title_button)

        if not buttons:
            return None

        view = discord.ui.View(timeout=None)
        for button in buttons:
            view.add_item(button)
        # presses are routed by custom id, the view itself must not be tracked
        view.stop()
        return view
