"""
Annotation repository - durable participant -> JSON blob storage
"""

from abc import ABC, abstractmethod
from typing import Optional, Union
import logging

import orjson
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from core.cache import RedisManager
from core.database import DatabaseManager
from providers.exceptions import StorageError
from ..models.annotation import AnnotationBlob


logger = logging.getLogger(__name__)


class AnnotationRepository(ABC):
    """
    Key -> JSON string store holding one annotation blob per participant

    Subclasses only move raw strings; (de)serialization and error
    wrapping live here.
    """

    @abstractmethod
    async def read_raw(self, participant_id: str) -> Optional[Union[str, bytes]]:
        """Stored JSON for a participant, or None"""

    @abstractmethod
    async def write_raw(self, participant_id: str, data: str) -> None:
        """Replace the stored JSON for a participant"""

    async def load(self, participant_id: str) -> AnnotationBlob:
        """
        A participant's annotation blob ({} when nothing is stored)

        Raises:
            StorageError: backend failure or unreadable stored data
        """
        try:
            raw = await self.read_raw(participant_id)
        except StorageError:
            raise
        except (RedisError, PyMongoError, OSError) as e:
            logger.error(f"Annotation read failed for participant {participant_id}: {e}")
            raise StorageError(f"Annotation read failed for participant {participant_id}: {e}") from e

        if not raw:
            return {}

        try:
            blob = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.error(f"Stored annotations for participant {participant_id} are not valid JSON: {e}")
            raise StorageError(f"Stored annotations for participant {participant_id} are corrupt") from e

        if not isinstance(blob, dict):
            raise StorageError(f"Stored annotations for participant {participant_id} are not an object")
        return blob

    async def save(self, participant_id: str, blob: AnnotationBlob) -> None:
        """
        Raises:
            StorageError: backend failure
        """
        data = orjson.dumps(blob).decode()
        try:
            await self.write_raw(participant_id, data)
        except StorageError:
            raise
        except (RedisError, PyMongoError, OSError) as e:
            logger.error(f"Annotation write failed for participant {participant_id}: {e}")
            raise StorageError(f"Annotation write failed for participant {participant_id}: {e}") from e


class RedisAnnotationRepository(AnnotationRepository):
    """Blob stored as a string value under <prefix><participantId>"""

    def __init__(self, redis_manager: RedisManager, key_prefix: str = "annotations:"):
        self.redis_manager = redis_manager
        self.key_prefix = key_prefix

    def key(self, participant_id: str) -> str:
        return f"{self.key_prefix}{participant_id}"

    async def read_raw(self, participant_id: str) -> Optional[Union[str, bytes]]:
        return await self.redis_manager.client.get(self.key(participant_id))

    async def write_raw(self, participant_id: str, data: str) -> None:
        await self.redis_manager.client.set(self.key(participant_id), data)


class MongoAnnotationRepository(AnnotationRepository):
    """Blob stored as {_id: participantId, data: <JSON string>}"""

    def __init__(self, db_manager: DatabaseManager, collection_name: str = "annotations"):
        self.db_manager = db_manager
        self.collection_name = collection_name

    @property
    def collection(self):
        return self.db_manager.get_collection(self.collection_name)

    async def read_raw(self, participant_id: str) -> Optional[Union[str, bytes]]:
        doc = await self.collection.find_one({"_id": participant_id}, {"data": 1})
        return doc.get("data") if doc else None

    async def write_raw(self, participant_id: str, data: str) -> None:
        await self.collection.replace_one(
            {"_id": participant_id},
            {"_id": participant_id, "data": data},
            upsert=True
        )
