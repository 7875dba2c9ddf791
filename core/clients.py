import sys
import typing
from typing import Union

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConfigurationError

from core.models import getLogger

logger = getLogger(__name__)


class ApiClient:
    """
    Storage backend for the bot wide settings document and the per guild configurations.

    Parameters
    ----------
    bot : Bot
        The Needle bot.
    db : AsyncIOMotorDatabase
        The database holding the `config` and `guilds` collections.
    """

    def __init__(self, bot, db):
        self.bot = bot
        self.db = db

    async def validate_database_connection(self):
        return NotImplemented

    async def get_config(self) -> dict:
        return NotImplemented

    async def update_config(self, data: dict):
        return NotImplemented

    async def get_guild_configs(self) -> typing.List[dict]:
        return NotImplemented

    async def update_guild_config(self, guild_id: Union[int, str], data: dict):
        return NotImplemented

    async def delete_guild_config(self, guild_id: Union[int, str]) -> bool:
        return NotImplemented


class MongoDBClient(ApiClient):
    """Stores the bot config document in `config` and one document per guild in `guilds`."""

    database_name = "needle_bot"

    # substring of the driver error -> what the operator should check
    connection_hints = {
        "ServerSelectionTimeoutError": "The database did not answer, check that it allows connections from this host.",
        "OperationFailure": "The credentials in CONNECTION_URI were rejected, check the user name and password.",
    }

    def __init__(self, bot):
        uri = bot.config["connection_uri"]
        if uri is None:
            logger.critical("CONNECTION_URI is not set, Needle cannot store its configuration.")
            raise RuntimeError("CONNECTION_URI is not set")

        try:
            client = AsyncIOMotorClient(uri)
        except ConfigurationError as e:
            logger.critical("CONNECTION_URI could not be parsed: %s", e)
            sys.exit(0)

        super().__init__(bot, client[self.database_name])

    @property
    def guilds(self):
        return self.db.guilds

    async def validate_database_connection(self, *, ssl_retry=True):
        try:
            await self.db.command("ping")
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.critical("Could not reach the database. %s", error)

            if ssl_retry and "CERTIFICATE_VERIFY_FAILED" in error:
                logger.warning(
                    "Retrying without certificate verification, update certifi or remove the "
                    "proxy intercepting TLS to get rid of this."
                )
                client = AsyncIOMotorClient(self.bot.config["connection_uri"], tlsAllowInvalidCertificates=True)
                self.db = client[self.database_name]
                return await self.validate_database_connection(ssl_retry=False)

            for marker, hint in self.connection_hints.items():
                if marker in error:
                    logger.critical(hint)
            raise

        logger.debug("Connected to the database.")

    async def get_config(self) -> dict:
        query = {"bot_id": self.bot.user.id}
        document = await self.db.config.find_one(query, {"_id": 0})
        if document is None:
            logger.debug("No stored config for bot %s yet, creating it.", self.bot.user.id)
            # insert_one adds an _id to the dict it is given
            await self.db.config.insert_one(dict(query))
            return dict(query)
        return document

    async def update_config(self, data: dict):
        """Stores the runtime editable keys in `data` and clears the ones left out."""
        stored = self.bot.config.filter_valid(data)
        editable = self.bot.config.filter_valid(dict.fromkeys(self.bot.config.all_keys))
        cleared = {key: "" for key in editable if key not in stored}

        update = {}
        if stored:
            update["$set"] = stored
        if cleared:
            update["$unset"] = cleared
        if update:
            await self.db.config.update_one({"bot_id": self.bot.user.id}, update, upsert=True)

    async def get_guild_configs(self) -> typing.List[dict]:
        return await self.guilds.find({}, {"_id": 0}).to_list(None)

    async def update_guild_config(self, guild_id: Union[int, str], data: dict):
        return await self.guilds.update_one({"guild_id": str(guild_id)}, {"$set": data}, upsert=True)

    async def delete_guild_config(self, guild_id: Union[int, str]) -> bool:
        result = await self.guilds.delete_one({"guild_id": str(guild_id)})
        return result.deleted_count == 1
