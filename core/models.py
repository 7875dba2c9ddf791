import json
import logging
import os
import sys
import typing
from enum import Enum
from logging.handlers import RotatingFileHandler

import discord
from colorama import Fore, Style
from discord.ext import commands


LOG_FORMAT = "%(asctime)s %(name)s[%(lineno)d] - %(levelname)s: %(message)s"

logging_levels = {
    name: getattr(logging, name) for name in ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")
}


class NeedleLogger(logging.Logger):
    def line(self, level: str = "info") -> None:
        """Separator between start-up sections."""
        self.log(logging.DEBUG if level == "debug" else logging.INFO, "-" * 25)


class ColourFormatter(logging.Formatter):
    """Colours console lines per level, unless `NO_COLOR` is set."""

    colours = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.LIGHTGREEN_EX,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Style.BRIGHT,
    }

    def __init__(self):
        super().__init__(LOG_FORMAT, datefmt="%m/%d/%y %H:%M:%S")

    def format(self, record):
        line = super().format(record)
        if os.environ.get("NO_COLOR"):
            return line
        return f"{self.colours.get(record.levelno, '')}{line}{Style.RESET_ALL}"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, for log collectors."""

    def format(self, record) -> str:
        entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "loggerName": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def create_log_handler(
    filename: typing.Optional[str] = None,
    *,
    level: int = logging.DEBUG,
    format: str = "plain",
    max_bytes: int = 28000000,
    backup_count: int = 1,
) -> logging.Handler:
    """
    Creates a stdout handler, or a rotating file handler when `filename` is given.

    Parameters
    ----------
    filename : Optional[str]
        Path of the log file.
    level : int
        Minimum level the handler emits.
    format : str
        `"plain"` or `"json"`.
    """
    if filename is None:
        handler = logging.StreamHandler(stream=sys.stdout)
        formatter = ColourFormatter()
    else:
        handler = RotatingFileHandler(
            filename, encoding="utf-8", maxBytes=max_bytes, backupCount=backup_count
        )
        formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    if format == "json":
        formatter = JsonFormatter()

    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


logging.setLoggerClass(NeedleLogger)
log_level = logging.INFO
loggers = set()

ch = create_log_handler(level=log_level)
ch_debug: typing.Optional[logging.Handler] = None


def getLogger(name=None) -> NeedleLogger:
    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    for handler in (ch, ch_debug):
        if handler is not None and handler not in logger.handlers:
            logger.addHandler(handler)
    loggers.add(logger)
    return logger


def _configured_level(bot, key: str) -> int:
    text = str(bot.config[key]).upper()
    if text in logging_levels:
        return logging_levels[text]
    default = bot.config.remove(key)
    getLogger(__name__).warning("Invalid %s %r, using %s.", key, text, default)
    return logging_levels[default]


def configure_logging(bot) -> None:
    """
    Applies `log_level`, `discord_log_level` and the two log formats from `bot.config`,
    and starts writing a debug log to `bot.log_file_path`.
    """
    global ch_debug, log_level

    log_level = _configured_level(bot, "log_level")
    discord_level = _configured_level(bot, "discord_log_level")

    if bot.config["stream_log_format"] == "json":
        ch.setFormatter(JsonFormatter())
    ch.setLevel(log_level)
    ch_debug = create_log_handler(bot.log_file_path, format=bot.config["file_log_format"])

    for log in loggers:
        log.setLevel(log_level)
        log.addHandler(ch_debug)

    # the console only shows discord.py from INFO up, the file keeps its debug output
    discord_logger = logging.getLogger("discord")
    discord_logger.setLevel(discord_level)
    discord_logger.addHandler(create_log_handler(level=max(discord_level, logging.INFO)))
    discord_logger.addHandler(ch_debug)

    logger = getLogger(__name__)
    logger.line()
    logger.info("Logging level: %s", logging.getLevelName(log_level))
    logger.info("Discord logging level: %s", logging.getLevelName(discord_level))
    logger.info("Log file: %s", bot.log_file_path)
    logger.debug("Successfully configured logging.")


class InvalidConfigError(commands.BadArgument):
    def __init__(self, msg, *args):
        super().__init__(msg, *args)
        self.msg = msg

    @property
    def embed(self):
        return discord.Embed(title="Error", description=self.msg, color=discord.Color.red())


class _Default:
    pass


Default = _Default()


class ReplyMessageOption(str, Enum):
    DEFAULT = "default"
    CUSTOM = "custom"


class ToggleOption(str, Enum):
    ON = "on"
    OFF = "off"
