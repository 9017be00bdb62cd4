"""
Annotation service - append-only notes overlaid onto aggregated records
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional
import asyncio
import logging

from bs4 import BeautifulSoup
from pydantic import ValidationError

from core.config import AnnotationConfig
from core.metrics import annotation_writes
from providers.bundle import is_error_record, resource_id
from providers.exceptions import StorageError
from ..models.annotation import AnnotationBlob, AnnotationRecord, UpsertAnnotationRequest, utc_now
from ..repositories.annotation_repository import AnnotationRepository


logger = logging.getLogger(__name__)


def strip_markup(text: str) -> str:
    """Plain text content of a possibly HTML-formatted note"""
    return BeautifulSoup(text, "html.parser").get_text()


class AnnotationService:
    """Service layer for annotation reads, writes and the result overlay"""

    def __init__(self, repository: AnnotationRepository, config: Optional[AnnotationConfig] = None):
        self.repository = repository
        self.config = config or AnnotationConfig()
        # participant id -> [lock, number of writers holding or waiting on it]
        self._locks: Dict[str, list] = {}

    @asynccontextmanager
    async def _participant_lock(self, participant_id: str) -> AsyncIterator[None]:
        """Serialize writers per participant; the lock is dropped once no writer needs it"""
        slot = self._locks.setdefault(participant_id, [asyncio.Lock(), 0])
        slot[1] += 1
        try:
            async with slot[0]:
                yield
        finally:
            slot[1] -= 1
            if slot[1] == 0:
                del self._locks[participant_id]

    async def upsert_annotation(self, participant_id: str, provider_name: str,
                                resource_id: str, text: str) -> AnnotationRecord:
        """
        Append a note to the history of one record

        The participant's blob is read, modified and written back under a
        per-participant lock so concurrent writers never lose an update.

        Raises:
            StorageError: the store could not be read or written
        """
        request = UpsertAnnotationRequest(
            participant_id=participant_id,
            provider_name=provider_name,
            resource_id=resource_id,
            text=text
        )
        clean_text = strip_markup(request.text)

        async with self._participant_lock(request.participant_id):
            try:
                blob = await self.repository.load(request.participant_id)

                now = utc_now()
                by_resource = blob.setdefault(request.provider_name, {})
                if not isinstance(by_resource, dict):
                    raise StorageError(
                        f"Stored annotations for {request.participant_id}/{request.provider_name} are not a mapping"
                    )
                existing = by_resource.get(request.resource_id)
                try:
                    record = AnnotationRecord.model_validate(existing) if existing else AnnotationRecord(created=now)
                except ValidationError as e:
                    raise StorageError(
                        f"Stored annotation for {request.provider_name}/{request.resource_id} is malformed: {e}"
                    ) from e
                record.append(clean_text, updated=now)
                by_resource[request.resource_id] = record.model_dump()

                await self.repository.save(request.participant_id, blob)
            except StorageError:
                annotation_writes.labels(status='error').inc()
                raise

        annotation_writes.labels(status='success').inc()
        logger.info(
            f"Annotated {request.provider_name}/{request.resource_id} for participant "
            f"{request.participant_id} ({len(record.history)} entries)"
        )
        return record

    async def get_annotations(self, participant_id: str) -> AnnotationBlob:
        """The participant's full annotation blob"""
        return await self.repository.load(participant_id)

    async def overlay(self, participant_id: str, result: Dict[str, Any]) -> Dict[str, Any]:
        """
        Attach stored annotations to the matching entries of an aggregation result

        Entries are looked up by (result key, resource id); error records are
        skipped. The result is mutated in place and returned.

        Raises:
            StorageError: the store could not be read
        """
        blob = await self.repository.load(participant_id)
        if not blob:
            return result

        attached = 0
        for name, value in result.items():
            if not isinstance(value, dict) or is_error_record(value):
                continue
            by_resource = blob.get(name)
            if not by_resource:
                continue
            for entry in value.get('entry') or []:
                rid = resource_id(entry)
                if rid is not None and rid in by_resource:
                    entry[self.config.entry_field] = by_resource[rid]
                    attached += 1

        logger.debug(f"Attached {attached} annotations for participant {participant_id}")
        return result
