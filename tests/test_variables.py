from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import discord
import pytest

from core.variables import MessageVariables


def _message(nickname="Needler"):
    author = SimpleNamespace(id=42, name="needler", display_name="needler", mention="<@42>")
    member = SimpleNamespace(id=42, name="needler", display_name=nickname, mention="<@42>")
    guild = SimpleNamespace(
        id=1000,
        name="Needle Guild",
        get_member=lambda id_: member,
        fetch_member=AsyncMock(),
    )
    return SimpleNamespace(
        author=author,
        guild=guild,
        channel=SimpleNamespace(mention="<#2000>"),
        created_at=datetime(2024, 5, 17, 9, 5, tzinfo=timezone.utc),
        jump_url="https://discord.com/channels/1000/2000/5000",
    )


@pytest.mark.asyncio
async def test_replace_all_variables():
    variables = MessageVariables(_message())
    template = "$USER|$USER_NAME|$USER_NICKNAME|$CHANNEL|$GUILD|$DATE|$TIME|$MESSAGE_LINK"

    assert await variables.replace(template) == (
        "<@42>|needler|Needler|<#2000>|Needle Guild|2024-05-17|09:05|"
        "https://discord.com/channels/1000/2000/5000"
    )


@pytest.mark.asyncio
async def test_replace_without_variables():
    variables = MessageVariables(_message())

    assert await variables.replace("plain text") == "plain text"
    assert await variables.replace("") == ""
    assert await variables.replace(None) == ""


@pytest.mark.asyncio
async def test_values_are_not_expanded_again():
    variables = MessageVariables(_message(nickname="$USER $GUILD"))

    assert await variables.replace("[$USER_NICKNAME]") == "[$USER $GUILD]"


@pytest.mark.asyncio
async def test_thread_variable_after_creation():
    variables = MessageVariables(_message())
    assert await variables.replace("in $THREAD") == "in "

    variables.set_thread(SimpleNamespace(mention="<#3000>"))
    assert await variables.replace("in $THREAD") == "in <#3000>"


@pytest.mark.asyncio
async def test_nickname_falls_back_to_fetch():
    message = _message()
    fetched = SimpleNamespace(display_name="Fetched")
    message.guild.get_member = lambda id_: None
    message.guild.fetch_member = AsyncMock(return_value=fetched)
    variables = MessageVariables(message)

    assert await variables.replace("$USER_NICKNAME") == "Fetched"
    assert await variables.replace("$USER_NICKNAME") == "Fetched"
    message.guild.fetch_member.assert_awaited_once_with(42)


@pytest.mark.asyncio
async def test_nickname_when_member_is_gone():
    message = _message()
    response = SimpleNamespace(status=404, reason="Not Found")
    message.guild.get_member = lambda id_: None
    message.guild.fetch_member = AsyncMock(side_effect=discord.NotFound(response, "Unknown Member"))

    assert await MessageVariables(message).replace("$USER_NICKNAME") == "needler"


def test_remove_from():
    variables = MessageVariables(_message())

    assert variables.remove_from("hi $USER_NICKNAME and $REGEXRESULT!") == "hi  and !"
    assert variables.remove_from("$USERNAME") == "NAME"
    assert variables.remove_from(None) == ""


def test_remove_from_names_joined_by_removal():
    variables = MessageVariables(_message())

    assert variables.remove_from("hi $US$USERER") == "hi "
