"""
Tests for the participant service entry points.
"""
import pytest

from conftest import BASE, FakeTransport, make_bundle, make_entry, make_patient
from core.config import AggregationConfig, AnnotationConfig
from domains.annotation.services.annotation_service import AnnotationService
from domains.participant.services.aggregation_service import AggregationService
from domains.participant.services.participant_service import ParticipantService
from providers.exceptions import FetchError
from providers.fetcher import PaginatingFetcher
from providers.registry import ProviderRegistry


GROUP_URL = f"{BASE}/Patient/x/$everything"
CLINIC_C_URL = "http://clinic-c.test/fhir/Patient/y/$everything"
REFERENCE_URL = "http://clinic-c.test/fhir/Organization/7"


@pytest.fixture
def transport():
    return FakeTransport({
        GROUP_URL: make_bundle([make_patient("x"), make_entry("Observation", "r1")]),
        CLINIC_C_URL: make_bundle([make_patient("y"), make_entry("Condition", "c1")]),
        REFERENCE_URL: {"resourceType": "Organization", "id": "7", "name": "Clinic C"},
    })


@pytest.fixture
def service(clinic_registry_data, transport, memory_repository):
    registry = ProviderRegistry(clinic_registry_data["providers"], clinic_registry_data["participants"])
    aggregation = AggregationService(registry, PaginatingFetcher(transport), AggregationConfig(request_deadline=None))
    annotations = AnnotationService(memory_repository, AnnotationConfig(entry_field="annotation"))
    return ParticipantService(registry, aggregation, annotations, transport)


@pytest.mark.asyncio
async def test_aggregated_data_carries_annotations(service):
    await service.upsert_annotation("P1", "clinicC", "c1", "<i>reviewed</i>")

    result = await service.get_aggregated_data("P1")

    condition = result["clinicC"]["entry"][1]
    assert condition["annotation"]["history"][0]["text"] == "reviewed"
    assert set(result) == {"clinicA", "clinicB", "clinicC"}


@pytest.mark.asyncio
async def test_annotation_store_failure_returns_plain_result(service, memory_repository):
    memory_repository.fail = True

    result = await service.get_aggregated_data("P1")

    assert result["clinicC"]["total"] == 2
    assert "annotation" not in result["clinicC"]["entry"][1]


@pytest.mark.asyncio
async def test_get_reference(service, transport):
    body = await service.get_reference("clinicC", "Organization/7")

    assert body["name"] == "Clinic C"
    assert transport.calls == [REFERENCE_URL]


@pytest.mark.asyncio
async def test_get_reference_without_ref_path_or_provider(service, transport):
    assert await service.get_reference("clinicA", "Organization/7") == {}
    assert await service.get_reference("ghost", "Organization/7") == {}
    assert transport.calls == []


@pytest.mark.asyncio
async def test_get_reference_failure_is_an_error_record(service, transport):
    transport.responses[REFERENCE_URL] = FetchError("GET failed", url=REFERENCE_URL, status=502, attempts=2)

    body = await service.get_reference("clinicC", "Organization/7")

    assert body["providerName"] == "clinicC"
    assert body["error"]["status"] == 502


def test_registry_passthroughs(service):
    assert service.provider_names() == ["clinicA", "clinicB", "clinicC"]
    assert service.participants_by_id()["P1"] == "Pat Doe"
    assert len(service.providers_for_participant("P1")) == 3
    assert "P2" in service.participants()
