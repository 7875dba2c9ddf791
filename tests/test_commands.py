from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from core.buttons import TitleModal
from core.checks import can_manage_thread, check_permissions
from core.commands import (
    CloseCommand,
    CommandExecutorService,
    InteractionContext,
    TitleCommand,
)
from core.config import AutothreadChannelConfig
from core.models import ToggleOption

from conftest import AUTHOR_ID, CHANNEL_ID, GUILD_ID


def _member(member_id=AUTHOR_ID):
    member = MagicMock(spec=discord.Member)
    member.id = member_id
    member.name = "needler"
    member.display_name = "Needler"
    member.mention = f"<@{member_id}>"
    return member


def _thread(name="Old title", owner_id=AUTHOR_ID, permissions=None):
    thread = MagicMock(spec=discord.Thread)
    thread.id = 3000
    thread.name = name
    thread.mention = "<#3000>"
    thread.owner_id = owner_id
    thread.parent_id = CHANNEL_ID
    thread.guild = SimpleNamespace(id=GUILD_ID, me=SimpleNamespace(id=1))
    thread.edit = AsyncMock()
    thread.permissions_for = MagicMock(return_value=permissions or discord.Permissions.none())
    thread.starter_message = None
    thread.parent = None
    return thread


def _interaction(channel, user=None, done=False):
    return SimpleNamespace(
        user=user if user is not None else _member(),
        channel=channel,
        guild=SimpleNamespace(id=GUILD_ID, name="Guild"),
        guild_id=GUILD_ID,
        created_at=datetime(2024, 5, 17, 12, 30, tzinfo=timezone.utc),
        response=SimpleNamespace(
            is_done=lambda: done,
            send_message=AsyncMock(),
            send_modal=AsyncMock(),
        ),
        followup=SimpleNamespace(send=AsyncMock()),
    )


@pytest.fixture
def commands(bot):
    bot.needle_commands = {"close": CloseCommand(bot), "title": TitleCommand(bot)}
    return bot.needle_commands


# ----- checks -----


@pytest.mark.asyncio
async def test_check_permissions(bot):
    channel = SimpleNamespace(permissions_for=lambda member: discord.Permissions(manage_threads=True))
    required = discord.Permissions(manage_threads=True)

    assert await check_permissions(bot, _member(), channel, None) is True
    assert await check_permissions(bot, _member(), channel, required) is True
    assert await check_permissions(bot, SimpleNamespace(id=5), channel, required) is False
    assert await check_permissions(bot, _member(), None, required) is False

    stricter = discord.Permissions(manage_threads=True, manage_channels=True)
    assert await check_permissions(bot, _member(), channel, stricter) is False

    admin = SimpleNamespace(permissions_for=lambda member: discord.Permissions(administrator=True))
    assert await check_permissions(bot, _member(), admin, stricter) is True


@pytest.mark.asyncio
async def test_check_permissions_owner(bot):
    bot.is_owner = AsyncMock(return_value=True)
    assert await check_permissions(bot, SimpleNamespace(id=5), None, discord.Permissions.all()) is True


def test_can_manage_thread():
    member = _member()
    assert can_manage_thread(member, _thread(owner_id=AUTHOR_ID)) is True
    assert can_manage_thread(member, _thread(owner_id=7)) is False
    assert can_manage_thread(member, _thread(owner_id=7, permissions=discord.Permissions(manage_threads=True)))


# ----- context -----


@pytest.mark.asyncio
async def test_context_replies(bot):
    interaction = _interaction(_thread())
    context = InteractionContext(bot, interaction)

    assert context.is_in_guild()
    assert context.variables.thread is interaction.channel

    await context.reply_in_secret("Hi $USER in $THREAD")
    interaction.response.send_message.assert_awaited_once_with(f"Hi <@{AUTHOR_ID}> in <#3000>", ephemeral=True)


@pytest.mark.asyncio
async def test_context_uses_followup_after_response(bot):
    interaction = _interaction(_thread(), done=True)

    await InteractionContext(bot, interaction).reply_in_public("x" * 2100)

    content = interaction.followup.send.await_args.args[0]
    assert len(content) == 2000
    assert interaction.followup.send.await_args.kwargs == {"ephemeral": False}


def test_context_outside_guild(bot):
    interaction = _interaction(SimpleNamespace(), user=SimpleNamespace(id=5, name="x", mention="<@5>"))
    interaction.guild = None
    interaction.guild_id = None

    context = InteractionContext(bot, interaction)
    assert not context.is_in_guild()
    assert context.settings["error_unknown"] == "Something went wrong, please try again later."


# ----- close -----


@pytest.mark.asyncio
async def test_close_archives_thread(bot, commands):
    thread = _thread()
    interaction = _interaction(thread)

    await commands["close"].execute(InteractionContext(bot, interaction))

    interaction.response.send_message.assert_awaited_once_with(
        f"Thread was archived by <@{AUTHOR_ID}>. Anyone can send a message to unarchive it.", ephemeral=False
    )
    thread.edit.assert_awaited_once_with(archived=True)


@pytest.mark.asyncio
async def test_close_outside_thread(bot, commands):
    interaction = _interaction(SimpleNamespace(id=CHANNEL_ID, mention=f"<#{CHANNEL_ID}>"))

    await commands["close"].execute(InteractionContext(bot, interaction))

    interaction.response.send_message.assert_awaited_once_with(
        "This command can only be used inside a thread.", ephemeral=True
    )


@pytest.mark.asyncio
async def test_close_by_stranger(bot, commands):
    thread = _thread(owner_id=7)
    interaction = _interaction(thread)

    await commands["close"].execute(InteractionContext(bot, interaction))

    interaction.response.send_message.assert_awaited_once_with(
        "You do not have permission to do that.", ephemeral=True
    )
    thread.edit.assert_not_awaited()


@pytest.mark.asyncio
async def test_close_updates_status_reaction(bot, commands):
    bot.configs.get(GUILD_ID).thread_channels.append(
        AutothreadChannelConfig(channel_id=CHANNEL_ID, status_reactions=ToggleOption.ON)
    )
    starter = SimpleNamespace(remove_reaction=AsyncMock(), add_reaction=AsyncMock())
    thread = _thread()
    thread.parent = SimpleNamespace(fetch_message=AsyncMock(return_value=starter))

    await commands["close"].execute(InteractionContext(bot, _interaction(thread)))

    thread.parent.fetch_message.assert_awaited_once_with(3000)
    starter.remove_reaction.assert_awaited_once_with("\N{LARGE YELLOW CIRCLE}", thread.guild.me)
    starter.add_reaction.assert_awaited_once_with("\N{WHITE HEAVY CHECK MARK}")
    thread.edit.assert_awaited_once_with(archived=True)


# ----- title -----


@pytest.mark.asyncio
async def test_title_renames_thread(bot, commands):
    thread = _thread()
    interaction = _interaction(thread)

    await commands["title"].execute(InteractionContext(bot, interaction), value="  New title ")

    thread.edit.assert_awaited_once_with(name="New title")
    interaction.response.send_message.assert_awaited_once_with("Thread title changed.", ephemeral=True)


@pytest.mark.asyncio
async def test_title_unchanged_is_not_edited(bot, commands):
    thread = _thread(name="Same")

    await commands["title"].execute(InteractionContext(bot, _interaction(thread)), value="Same")

    thread.edit.assert_not_awaited()


@pytest.mark.asyncio
async def test_title_empty(bot, commands):
    thread = _thread()
    interaction = _interaction(thread)

    await commands["title"].execute(InteractionContext(bot, interaction), value="   ")

    interaction.response.send_message.assert_awaited_once_with(
        "The new thread title cannot be empty.", ephemeral=True
    )
    thread.edit.assert_not_awaited()


# ----- executor -----


@pytest.mark.asyncio
async def test_executor_reports_failures(bot):
    interaction = _interaction(_thread())
    command = SimpleNamespace(name="boom", execute=AsyncMock(side_effect=RuntimeError("boom")))

    await CommandExecutorService().execute(command, InteractionContext(bot, interaction), value="x")

    command.execute.assert_awaited_once()
    interaction.response.send_message.assert_awaited_once_with(
        "Something went wrong, please try again later.", ephemeral=True
    )


# ----- buttons -----


@pytest.mark.asyncio
async def test_close_button_archives(bot, commands):
    thread = _thread()

    await bot.get_button("close").press(InteractionContext(bot, _interaction(thread)))

    thread.edit.assert_awaited_once_with(archived=True)


@pytest.mark.asyncio
async def test_buttons_ignore_presses_outside_guild(bot, commands):
    thread = _thread()
    interaction = _interaction(thread, user=SimpleNamespace(id=5, name="x", mention="<@5>"))

    await bot.get_button("close").press(InteractionContext(bot, interaction))
    await bot.get_button("title").press(InteractionContext(bot, interaction))

    thread.edit.assert_not_awaited()
    interaction.response.send_message.assert_not_awaited()
    interaction.response.send_modal.assert_not_awaited()


@pytest.mark.asyncio
async def test_button_denied_by_default_permissions(bot, commands):
    commands["close"].default_permissions = discord.Permissions(manage_threads=True)
    thread = _thread()
    thread.permissions_for = MagicMock(return_value=discord.Permissions.none())
    interaction = _interaction(thread)

    await bot.get_button("close").press(InteractionContext(bot, interaction))

    interaction.response.send_message.assert_awaited_once_with(
        "You do not have permission to do that.", ephemeral=True
    )
    thread.edit.assert_not_awaited()


@pytest.mark.asyncio
async def test_title_button_opens_modal(bot, commands):
    interaction = _interaction(_thread(name="Current"))

    await bot.get_button("title").press(InteractionContext(bot, interaction))

    modal = interaction.response.send_modal.await_args.args[0]
    assert isinstance(modal, TitleModal)
    assert modal.new_title.default == "Current"
    assert modal.command is commands["title"]


def test_button_builders(bot):
    close = bot.get_button("close").get_builder("Archive")
    title = bot.get_button("title").get_builder("")

    assert (close.custom_id, close.label, close.style) == ("close", "Archive", discord.ButtonStyle.success)
    assert (title.custom_id, title.label, title.style) == ("title", None, discord.ButtonStyle.primary)
