from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import discord
import pytest

from core.buttons import CloseButton, TitleButton
from core.config import AutothreadChannelConfig, GuildConfigManager
from core.threads import ThreadCreationService


GUILD_ID = 1000
CHANNEL_ID = 2000
BOT_ID = 1
AUTHOR_ID = 42


class FakeBot:
    def __init__(self) -> None:
        self.user = SimpleNamespace(id=BOT_ID)
        self.api = SimpleNamespace(update_guild_config=AsyncMock())
        self.configs = GuildConfigManager(self)
        self.config = SimpleNamespace(get_seconds=lambda key: 0)
        self.buttons = {"close": CloseButton(self), "title": TitleButton(self)}
        self.needle_commands = {}
        self.is_owner = AsyncMock(return_value=False)

    def get_button(self, custom_id):
        return self.buttons[custom_id]

    def get_needle_command(self, name):
        return self.needle_commands[name]


def _history(messages):
    def history(limit=100):
        async def gen():
            for message in messages[:limit]:
                yield message

        return gen()

    return history


@pytest.fixture
def bot():
    return FakeBot()


@pytest.fixture
def service(bot):
    return ThreadCreationService(bot, log_amount_of_created_threads=False)


@pytest.fixture
def channel_config(bot):
    config = AutothreadChannelConfig(channel_id=CHANNEL_ID)
    bot.configs.get(GUILD_ID).thread_channels.append(config)
    return config


@pytest.fixture
def make_thread():
    def factory(name="Thread", permissions=None, notices=()):
        sent = SimpleNamespace(pin=AsyncMock())
        return SimpleNamespace(
            id=3000,
            name=name,
            mention="<#3000>",
            send=AsyncMock(return_value=sent),
            edit=AsyncMock(),
            add_user=AsyncMock(),
            permissions_for=lambda member: permissions or discord.Permissions.none(),
            history=_history(list(notices)),
            sent=sent,
        )

    return factory


@pytest.fixture
def make_message(make_thread):
    def factory(
        content="Need help with X",
        channel_type=discord.ChannelType.text,
        permissions=None,
        thread=None,
        has_thread=False,
        author_bot=False,
        embeds=(),
    ):
        author = SimpleNamespace(
            id=AUTHOR_ID,
            bot=author_bot,
            name="needler",
            display_name="Needler",
            mention=f"<@{AUTHOR_ID}>",
        )
        guild = SimpleNamespace(
            id=GUILD_ID,
            name="Guild",
            unavailable=False,
            me=SimpleNamespace(id=BOT_ID),
            get_member=lambda member_id: author if member_id == AUTHOR_ID else None,
            get_role=lambda role_id: None,
        )
        if permissions is None:
            permissions = discord.Permissions.all()
        channel = SimpleNamespace(
            id=CHANNEL_ID,
            type=channel_type,
            mention=f"<#{CHANNEL_ID}>",
            default_auto_archive_duration=1440,
            permissions_for=lambda member: permissions,
            send=AsyncMock(),
        )
        created = thread or make_thread()
        message = SimpleNamespace(
            id=5000,
            content=content,
            clean_content=content,
            embeds=list(embeds),
            author=author,
            guild=guild,
            channel=channel,
            flags=SimpleNamespace(has_thread=has_thread),
            thread=thread if has_thread else None,
            created_at=datetime(2024, 5, 17, 12, 30, tzinfo=timezone.utc),
            jump_url=f"https://discord.com/channels/{GUILD_ID}/{CHANNEL_ID}/5000",
            is_system=lambda: False,
            create_thread=AsyncMock(return_value=created),
            add_reaction=AsyncMock(),
        )
        message.fetch = AsyncMock(return_value=message)
        return message

    return factory
