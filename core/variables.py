import re
import typing
from datetime import datetime

import discord

from core.models import getLogger
from core.utils import REGEX_RESULT

logger = getLogger(__name__)


class MessageVariables:
    """
    Resolves `$VARIABLE` placeholders in reply and title templates.

    One instance lives for one message (or one interaction). A thread is attached with
    `set_thread` once it exists, until then `$THREAD` resolves to an empty string.
    """

    # longest first so $USER never eats the prefix of $USER_NICKNAME
    names = (
        "$USER_NICKNAME",
        "$MESSAGE_LINK",
        "$USER_NAME",
        "$CHANNEL",
        "$THREAD",
        "$GUILD",
        "$USER",
        "$DATE",
        "$TIME",
    )
    _pattern = re.compile("|".join(re.escape(name) for name in names))
    _removable = re.compile("|".join(re.escape(name) for name in (REGEX_RESULT, *names)))

    def __init__(
        self,
        message: typing.Optional[discord.Message] = None,
        *,
        author: typing.Union[discord.Member, discord.User, None] = None,
        channel=None,
        guild: typing.Optional[discord.Guild] = None,
        created_at: typing.Optional[datetime] = None,
    ):
        self.message = message
        self.author = author if author is not None else getattr(message, "author", None)
        self.channel = channel if channel is not None else getattr(message, "channel", None)
        self.guild = guild if guild is not None else getattr(message, "guild", None)
        self.created_at = created_at if created_at is not None else getattr(message, "created_at", None)
        self.thread: typing.Optional[discord.Thread] = None
        self._nickname: typing.Optional[str] = None

    @classmethod
    def from_interaction(cls, interaction: discord.Interaction) -> "MessageVariables":
        variables = cls(
            author=interaction.user,
            channel=interaction.channel,
            guild=interaction.guild,
            created_at=interaction.created_at,
        )
        if isinstance(interaction.channel, discord.Thread):
            variables.set_thread(interaction.channel)
        return variables

    def set_thread(self, thread: discord.Thread) -> "MessageVariables":
        self.thread = thread
        return self

    async def _author_nickname(self) -> str:
        if self._nickname is not None:
            return self._nickname

        author = self.author
        if author is None:
            return ""
        if not isinstance(author, discord.Member) and self.guild is not None:
            member = self.guild.get_member(author.id)
            if member is None:
                try:
                    member = await self.guild.fetch_member(author.id)
                except discord.HTTPException:
                    logger.debug("Could not fetch member %s, using the global name.", author.id)
            if member is not None:
                author = member

        self._nickname = author.display_name
        return self._nickname

    async def resolve(self) -> typing.Dict[str, str]:
        created_at = self.created_at or discord.utils.utcnow()
        return {
            "$USER_NICKNAME": await self._author_nickname(),
            "$MESSAGE_LINK": self.message.jump_url if self.message is not None else "",
            "$USER_NAME": self.author.name if self.author is not None else "",
            "$CHANNEL": self.channel.mention if self.channel is not None else "",
            "$THREAD": self.thread.mention if self.thread is not None else "",
            "$GUILD": self.guild.name if self.guild is not None else "",
            "$USER": self.author.mention if self.author is not None else "",
            "$DATE": created_at.strftime("%Y-%m-%d"),
            "$TIME": created_at.strftime("%H:%M"),
        }

    async def replace(self, template: typing.Optional[str]) -> str:
        if not template:
            return ""
        if "$" not in template:
            return template

        values = await self.resolve()
        return self._pattern.sub(lambda m: values[m.group(0)], template)

    def remove_from(self, text: typing.Optional[str]) -> str:
        """Strips every variable name from user supplied text so it cannot be expanded later."""
        if not text:
            return ""
        # removing one name can join its neighbours into another, e.g. "$US$USERER"
        while True:
            stripped = self._removable.sub("", text)
            if stripped == text:
                return stripped
            text = stripped
