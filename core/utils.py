import re
import typing

import discord

from core.models import getLogger


__all__ = [
    "strtobool",
    "clamp_with_ellipsis",
    "plural",
    "human_permission",
    "extract_regex",
    "regex_matches",
    "clean_mentions",
    "get_required_permissions",
    "missing_permissions",
    "try_react",
]


logger = getLogger(__name__)

REGEX_RESULT = "$REGEXRESULT"

# "/pattern/flags" embedded anywhere in a title template
_regex_marker = re.compile(r"/((?:\\/|[^/])+)/([gimsuy]*)")

_regex_flags = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
}


class ExtractedRegex(typing.NamedTuple):
    regex: typing.Optional[re.Pattern]
    is_global: bool
    input_with_regex_variable: str


def strtobool(val) -> bool:
    if isinstance(val, bool):
        return val
    val = str(val).lower()
    if val in ("y", "yes", "t", "true", "on", "1", "enable"):
        return True
    if val in ("n", "no", "f", "false", "off", "0", "disable"):
        return False
    raise ValueError(f"invalid truth value {val!r}")


def clamp_with_ellipsis(text: str, max_length: int) -> str:
    """
    Reduces the string to exactly `max_length` characters, ending in "..." when trimmed.

    Unlike a display truncation this never strips whitespace, so the result length
    is predictable for platform limits.
    """
    if len(text) <= max_length:
        return text
    if max_length <= 3:
        return "..."[:max_length]
    return text[: max_length - 3] + "..."


def plural(word: str, count: int) -> str:
    return word if count == 1 else word + "s"


def human_permission(name: str) -> str:
    """`create_public_threads` -> `Create Public Threads`"""
    return name.replace("_", " ").title()


def extract_regex(text: str) -> ExtractedRegex:
    """
    Finds a `/pattern/flags` marker in `text`.

    Parameters
    ----------
    text : str
        A title template, e.g. ``"Help: /X|Y/"``.

    Returns
    -------
    ExtractedRegex
        The compiled pattern (or `None`), whether the `g` flag was present and the
        template with the marker replaced by ``$REGEXRESULT``. Invalid patterns are
        logged and the template is returned unchanged.
    """
    match = _regex_marker.search(text or "")
    if match is None:
        return ExtractedRegex(None, False, text or "")

    pattern, flag_text = match.groups()
    flags = 0
    for flag in flag_text:
        flags |= _regex_flags.get(flag, 0)

    try:
        regex = re.compile(pattern, flags)
    except re.error as e:
        logger.warning("Invalid title regex %r: %s.", pattern, e)
        return ExtractedRegex(None, False, text)

    replaced = text[: match.start()] + REGEX_RESULT + text[match.end() :]
    return ExtractedRegex(regex, "g" in flag_text, replaced)


def regex_matches(
    regex: re.Pattern, content: str, is_global: bool = False
) -> typing.Optional[typing.List[str]]:
    """
    Global patterns yield every full match, others the first match followed by its groups.
    Returns `None` when nothing matched.
    """
    if is_global:
        found = [m.group(0) for m in regex.finditer(content)]
        return found or None

    match = regex.search(content)
    if match is None:
        return None
    return [match.group(0), *(group or "" for group in match.groups())]


_mention = re.compile(r"<(@[!&]?|#)(\d{15,20})>")


def clean_mentions(text: str, guild: typing.Optional[discord.Guild]) -> str:
    """Replaces raw user, role and channel mentions with readable names, like `Message.clean_content`."""

    def resolve(match: re.Match) -> str:
        kind, id_ = match.group(1), int(match.group(2))
        if kind == "#":
            channel = guild and guild.get_channel_or_thread(id_)
            return f"#{channel.name}" if channel else "#deleted-channel"
        if kind == "@&":
            role = guild and guild.get_role(id_)
            return f"@{role.name}" if role else "@deleted-role"
        member = guild and guild.get_member(id_)
        return f"@{member.display_name}" if member else match.group(0)

    return _mention.sub(resolve, text)


def get_required_permissions(slowmode: int = 0, reply: typing.Optional[str] = None) -> discord.Permissions:
    permissions = discord.Permissions(
        view_channel=True,
        send_messages_in_threads=True,
        create_public_threads=True,
        read_message_history=True,
    )
    if slowmode and slowmode > 0:
        permissions.manage_threads = True
    if reply and ("@everyone" in reply or "@here" in reply or "<@&" in reply):
        permissions.mention_everyone = True
    return permissions


def missing_permissions(
    actual: discord.Permissions, required: discord.Permissions
) -> typing.List[str]:
    return [name for name, value in required if value and not getattr(actual, name)]


async def try_react(message: discord.Message, emoji: typing.Optional[str]) -> bool:
    if not emoji:
        return False
    try:
        await message.add_reaction(emoji)
    except (discord.HTTPException, TypeError) as e:
        logger.warning("Failed to add reaction %s: %s.", emoji, e)
        return False
    return True
