"""
Participant service - the public entry points of the engine
"""

from typing import Any, Dict, List, Optional
import logging

from providers.base_branch import ErrorRecord
from providers.exceptions import FetchError, MalformedProviderSpec, StorageError
from providers.fetcher import Transport
from providers.registry import ProviderRegistry
from domains.annotation.models.annotation import AnnotationBlob, AnnotationRecord
from domains.annotation.services.annotation_service import AnnotationService
from .aggregation_service import AggregationService, CONFIGURED_DEADLINE


logger = logging.getLogger(__name__)


class ParticipantService:
    """Registry queries, aggregated data with annotations, and reference lookups"""

    def __init__(self, registry: ProviderRegistry, aggregation_service: AggregationService,
                 annotation_service: AnnotationService, transport: Transport):
        self.registry = registry
        self.aggregation = aggregation_service
        self.annotations = annotation_service
        self.transport = transport

    # Registry queries
    def provider_names(self) -> List[str]:
        return self.registry.provider_names()

    def participants(self) -> Dict[str, Dict[str, Any]]:
        return self.registry.participants()

    def participants_by_id(self) -> Dict[str, str]:
        return self.registry.participants_by_id()

    def providers_for_participant(self, participant_id: str) -> List[Dict[str, Any]]:
        return self.registry.providers_for_participant(participant_id)

    async def get_aggregated_data(self, participant_id: str, deadline: Any = CONFIGURED_DEADLINE) -> Dict[str, Any]:
        """
        All provider data for a participant with stored annotations attached

        An annotation store failure does not fail the request; the result is
        returned without annotations.
        """
        result = await self.aggregation.aggregate(participant_id, deadline=deadline)
        try:
            return await self.annotations.overlay(participant_id, result)
        except StorageError as e:
            logger.error(f"Returning participant {participant_id} data without annotations: {e}")
            return result

    async def upsert_annotation(self, participant_id: str, provider_name: str,
                                resource_id: str, text: str) -> AnnotationRecord:
        return await self.annotations.upsert_annotation(participant_id, provider_name, resource_id, text)

    async def get_annotations(self, participant_id: str) -> AnnotationBlob:
        return await self.annotations.get_annotations(participant_id)

    async def get_reference(self, provider_name: str, reference_path: str) -> Dict[str, Any]:
        """
        Resolve a reference against one provider's refPath

        Returns {} for an unknown provider or one without a refPath, and an
        error record when the upstream GET fails.
        """
        try:
            spec = self.registry.get_provider(provider_name)
        except MalformedProviderSpec as e:
            logger.warning(f"Reference lookup skipped: {e}")
            return {}

        path: Optional[str] = spec.reference_path_for(reference_path)
        if path is None:
            logger.warning(f"Provider '{provider_name}' has no refPath")
            return {}

        try:
            return await self.transport.get(spec.base, path)
        except FetchError as e:
            logger.error(f"Reference {reference_path} from '{provider_name}' failed: {e}")
            return ErrorRecord(error=e, provider_name=provider_name).to_dict()
