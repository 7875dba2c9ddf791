import typing

import discord

from core.models import getLogger

logger = getLogger(__name__)


async def check_permissions(
    bot,
    member: typing.Union[discord.Member, discord.User],
    channel: typing.Optional[discord.abc.GuildChannel],
    required: typing.Optional[discord.Permissions],
) -> bool:
    """Logic for checking whether a member may run a command in a channel"""
    if await bot.is_owner(member):
        # Bot owner(s) have absolute power over the bot
        return True

    if required is None or required.value == 0:
        return True

    if not isinstance(member, discord.Member) or channel is None:
        return False

    permissions = channel.permissions_for(member)
    if permissions.administrator:
        logger.debug("Allowed due to administrator.")
        return True

    return permissions >= required


def can_manage_thread(member: discord.Member, thread: discord.Thread) -> bool:
    """Thread owners and members with Manage Threads in the thread may close or rename it."""
    if thread.owner_id == member.id:
        return True
    return thread.permissions_for(member).manage_threads
