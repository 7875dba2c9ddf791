import asyncio
import json
import os
import typing
from copy import deepcopy
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv
import emoji
import isodate

from core.models import InvalidConfigError, ReplyMessageOption, ToggleOption, Default, getLogger
from core.utils import strtobool

logger = getLogger(__name__)
load_dotenv()


class ConfigManager:
    """
    Process-wide settings.

    Values come from the defaults below, then the environment (and `.env`), then
    `config.json` next to `bot.py`, then the database. Only `public_keys` and
    `private_keys` are stored in the database, `public_keys` can be changed at runtime
    through `/config`.
    """

    public_keys = {
        # thread creation
        "log_thread_creation": True,
        "thread_log_interval": "PT1M",
        "pin_notice_delay": "PT0.1S",
    }

    private_keys = {
        "owners": None,
    }

    protected_keys = {
        # database
        "connection_uri": None,
        "database_type": "mongodb",
        # bot
        "token": None,
        # logging
        "log_level": "INFO",
        "discord_log_level": "INFO",
        "stream_log_format": "plain",
        "file_log_format": "plain",
    }

    time_deltas = {"thread_log_interval", "pin_notice_delay"}

    booleans = {"log_thread_creation"}

    defaults = {**public_keys, **private_keys, **protected_keys}
    all_keys = set(defaults.keys())

    def __init__(self, bot):
        self.bot = bot
        self._cache = {}
        self.ready_event = asyncio.Event()

    def __repr__(self):
        return repr(self._cache)

    @classmethod
    def _known(cls, data: typing.Dict[str, typing.Any]) -> typing.Dict[str, typing.Any]:
        return {k.lower(): v for k, v in data.items() if k.lower() in cls.all_keys}

    def populate_cache(self) -> dict:
        data = deepcopy(self.defaults)
        data.update(self._known(dict(os.environ)))

        config_json = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config.json")
        if os.path.exists(config_json):
            logger.debug("Loading settings from config.json.")
            with open(config_json, "r", encoding="utf-8") as f:
                try:
                    data.update(self._known(json.load(f)))
                except json.JSONDecodeError:
                    logger.critical("config.json is not valid JSON, ignoring it.", exc_info=True)

        self._cache = data
        return self._cache

    async def update(self):
        """Writes the runtime editable values to the database."""
        await self.bot.api.update_config(self.filter_default(self._cache))

    async def refresh(self) -> dict:
        """Merges the values stored in the database into the cache."""
        stored = self.filter_valid(await self.bot.api.get_config())
        self._cache.update(stored)
        if not self.ready_event.is_set():
            self.ready_event.set()
            logger.debug("Loaded %d stored setting(s).", len(stored))
        return self._cache

    async def wait_until_ready(self) -> None:
        await self.ready_event.wait()

    def _check_key(self, key: str) -> str:
        key = key.lower()
        if key not in self.all_keys:
            raise InvalidConfigError(f'Configuration "{key}" is invalid.')
        return key

    def __getitem__(self, key: str) -> typing.Any:
        return self.get(key)

    def get(self, key: str) -> typing.Any:
        """Returns the value of `key`, durations as timedeltas and booleans as bools."""
        key = self._check_key(key)
        value = self._cache.setdefault(key, deepcopy(self.defaults[key]))

        try:
            if key in self.time_deltas and not isinstance(value, (isodate.Duration, timedelta)):
                return isodate.parse_duration(value)
            if key in self.booleans:
                return strtobool(value)
        except (isodate.ISO8601Error, TypeError, ValueError):
            logger.warning('Invalid value "%s" for %s, using the default.', value, key)
            self.remove(key)
            return self.get(key)
        return value

    def get_seconds(self, key: str) -> float:
        value = self.get(key)
        if isinstance(value, isodate.Duration):
            value = value.totimedelta(start=datetime.now(timezone.utc))
        return value.total_seconds()

    def set(self, key: str, item: typing.Any) -> None:
        """Validates and caches `item`. Call `update` to persist it."""
        key = self._check_key(key)
        if key in self.time_deltas:
            try:
                isodate.parse_duration(item)
            except (isodate.ISO8601Error, TypeError):
                raise InvalidConfigError("Unrecognized time, please use an ISO-8601 duration such as `PT1M`.")
        elif key in self.booleans:
            try:
                item = strtobool(item)
            except ValueError:
                raise InvalidConfigError("Must be a yes/no value.")

        logger.info("Setting %s.", key)
        self._cache[key] = item

    def remove(self, key: str) -> typing.Any:
        """Resets `key` to its default and returns that default."""
        key = self._check_key(key)
        logger.info("Resetting %s.", key)
        self._cache[key] = deepcopy(self.defaults[key])
        return self._cache[key]

    @classmethod
    def filter_valid(cls, data: typing.Dict[str, typing.Any]) -> typing.Dict[str, typing.Any]:
        """Keeps the keys that may be stored in the database."""
        return {
            k.lower(): v
            for k, v in data.items()
            if k.lower() in cls.public_keys or k.lower() in cls.private_keys
        }

    @classmethod
    def filter_default(cls, data: typing.Dict[str, typing.Any]) -> typing.Dict[str, typing.Any]:
        filtered = {}
        for k, v in data.items():
            default = cls.defaults.get(k.lower(), Default)
            if default is Default:
                logger.error("Unexpected configuration detected: %s.", k)
            elif v != default:
                filtered[k.lower()] = v
        return filtered


@dataclass(frozen=True)
class AutothreadChannelConfig:
    channel_id: int
    reply_type: ReplyMessageOption = ReplyMessageOption.DEFAULT
    custom_reply: str = ""
    custom_title: str = "$USER_NICKNAME ($DATE)"
    regex_join_text: str = ""
    title_max_length: int = 50
    slowmode: int = 0
    autojoin_role_id: typing.Optional[int] = None
    status_reactions: ToggleOption = ToggleOption.OFF
    include_bots: bool = False
    close_button_text: str = "Archive thread"
    close_button_style: str = "green"
    title_button_text: str = "Edit title"
    title_button_style: str = "blurple"

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        data = asdict(self)
        data["channel_id"] = str(self.channel_id)
        data["reply_type"] = self.reply_type.value
        data["status_reactions"] = self.status_reactions.value
        if self.autojoin_role_id is not None:
            data["autojoin_role_id"] = str(self.autojoin_role_id)
        return data

    @classmethod
    def from_dict(cls, data: typing.Dict[str, typing.Any]) -> "AutothreadChannelConfig":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["channel_id"] = int(values["channel_id"])
        if values.get("autojoin_role_id") is not None:
            values["autojoin_role_id"] = int(values["autojoin_role_id"])
        if "reply_type" in values:
            values["reply_type"] = ReplyMessageOption(values["reply_type"])
        if "status_reactions" in values:
            values["status_reactions"] = ToggleOption(values["status_reactions"])
        return cls(**values)

    def edit(self, **changes) -> "AutothreadChannelConfig":
        return replace(self, **changes)


@dataclass
class GuildConfig:
    guild_id: int
    settings: typing.Dict[str, str] = field(default_factory=dict)
    thread_channels: typing.List[AutothreadChannelConfig] = field(default_factory=list)

    def find_channel(self, channel_id: int) -> typing.Optional[AutothreadChannelConfig]:
        return next((c for c in self.thread_channels if c.channel_id == channel_id), None)

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        return {
            "guild_id": str(self.guild_id),
            "settings": GuildConfigManager.filter_default(self.settings),
            "thread_channels": [c.to_dict() for c in self.thread_channels],
        }


class GuildConfigManager:
    """Per-guild auto-threading configuration, cached in memory and stored in the `guilds` collection."""

    default_settings = {
        "success_thread_created": "Thread automatically created by $USER in $CHANNEL",
        "success_thread_archived": "Thread was archived by $USER. Anyone can send a message to unarchive it.",
        "success_thread_title_changed": "Thread title changed.",
        "error_insufficient_user_perms": "You do not have permission to do that.",
        "error_only_in_thread": "This command can only be used inside a thread.",
        "error_title_empty": "The new thread title cannot be empty.",
        "error_unknown": "Something went wrong, please try again later.",
        "emoji_unanswered": "\N{LARGE YELLOW CIRCLE}",
        "emoji_archived": "\N{WHITE HEAVY CHECK MARK}",
    }

    emojis = {"emoji_unanswered", "emoji_archived"}

    def __init__(self, bot):
        self.bot = bot
        self._cache: typing.Dict[int, GuildConfig] = {}

    def __repr__(self):
        return repr(self._cache)

    def __len__(self):
        return len(self._cache)

    def get(self, guild_id: int) -> GuildConfig:
        config = self._cache.get(guild_id)
        if config is None:
            config = GuildConfig(guild_id, settings=dict(self.default_settings))
            self._cache[guild_id] = config
        return config

    def load(self, data: typing.Dict[str, typing.Any]) -> GuildConfig:
        guild_id = int(data["guild_id"])
        settings = dict(self.default_settings)
        settings.update(
            {k: v for k, v in (data.get("settings") or {}).items() if k in self.default_settings}
        )
        channels = []
        for raw in data.get("thread_channels") or []:
            try:
                channels.append(AutothreadChannelConfig.from_dict(raw))
            except (KeyError, ValueError, TypeError):
                logger.warning("Skipping invalid channel config in guild %s: %s.", guild_id, raw)
        config = GuildConfig(guild_id, settings=settings, thread_channels=channels)
        self._cache[guild_id] = config
        return config

    async def refresh(self) -> None:
        for data in await self.bot.api.get_guild_configs():
            self.load(data)
        logger.debug("Loaded configuration for %d guild(s).", len(self._cache))

    async def update(self, guild_id: int) -> None:
        await self.bot.api.update_guild_config(guild_id, self.get(guild_id).to_dict())

    async def set_channel_config(self, guild_id: int, channel_config: AutothreadChannelConfig) -> None:
        config = self.get(guild_id)
        config.thread_channels = [
            c for c in config.thread_channels if c.channel_id != channel_config.channel_id
        ]
        config.thread_channels.append(channel_config)
        logger.info("Enabling auto-threading in channel %s.", channel_config.channel_id)
        await self.update(guild_id)

    async def remove_channel_config(self, guild_id: int, channel_id: int) -> bool:
        config = self.get(guild_id)
        before = len(config.thread_channels)
        config.thread_channels = [c for c in config.thread_channels if c.channel_id != channel_id]
        if len(config.thread_channels) == before:
            return False
        logger.info("Disabling auto-threading in channel %s.", channel_id)
        await self.update(guild_id)
        return True

    async def set_setting(self, guild_id: int, key: str, value: str) -> None:
        key = key.lower()
        if key not in self.default_settings:
            raise InvalidConfigError(f'Setting "{key}" is invalid.')
        if key in self.emojis and not self.is_valid_emoji(value):
            raise InvalidConfigError(f'"{value}" is not a valid emoji.')
        self.get(guild_id).settings[key] = value
        await self.update(guild_id)

    async def reset_setting(self, guild_id: int, key: str) -> str:
        key = key.lower()
        if key not in self.default_settings:
            raise InvalidConfigError(f'Setting "{key}" is invalid.')
        self.get(guild_id).settings[key] = self.default_settings[key]
        await self.update(guild_id)
        return self.default_settings[key]

    @staticmethod
    def is_valid_emoji(value: str) -> bool:
        # custom guild emojis look like <:name:id> or <a:name:id>
        if value.startswith("<") and value.endswith(">") and value.count(":") == 2:
            return True
        return emoji.is_emoji(value)

    @classmethod
    def filter_default(cls, settings: typing.Dict[str, str]) -> typing.Dict[str, str]:
        return {k: v for k, v in settings.items() if cls.default_settings.get(k, Default) != v}
