"""
Pytest fixtures shared by the aggregation engine tests.
"""
import asyncio
import copy
from typing import Any, Dict, List, Optional, Union

import pytest

from domains.annotation.repositories.annotation_repository import AnnotationRepository
from providers.exceptions import FetchError, StorageError
from providers.transport import resolve_url


BASE = "http://fhir.test"


def make_entry(resource_type: str, resource_id: Optional[str], **fields) -> Dict[str, Any]:
    resource = {"resourceType": resource_type, **fields}
    if resource_id is not None:
        resource["id"] = resource_id
    return {"resource": resource}


def make_patient(patient_id: str = "pat-1") -> Dict[str, Any]:
    return make_entry("Patient", patient_id, name=[{"family": "Doe"}])


def make_bundle(entries: List[Dict[str, Any]], next_url: Optional[str] = None) -> Dict[str, Any]:
    bundle = {"resourceType": "Bundle", "total": len(entries), "entry": entries, "link": []}
    if next_url:
        bundle["link"].append({"relation": "next", "url": next_url})
    return bundle


class FakeTransport:
    """Transport returning canned bodies keyed by full URL; unknown URLs 404"""

    def __init__(self, responses: Optional[Dict[str, Union[Dict, Exception]]] = None,
                 delays: Optional[Dict[str, float]] = None):
        self.responses = responses or {}
        self.delays = delays or {}
        self.calls: List[str] = []

    async def get(self, base: str, path: str) -> Dict[str, Any]:
        url = resolve_url(base, path)
        self.calls.append(url)
        if url in self.delays:
            await asyncio.sleep(self.delays[url])

        response = self.responses.get(url)
        if response is None:
            raise FetchError(f"GET {url} returned 404", url=url, status=404)
        if isinstance(response, Exception):
            raise response
        return copy.deepcopy(response)


class MemoryAnnotationRepository(AnnotationRepository):
    """In-memory store; yields to the loop on every call so writers interleave"""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.fail = False

    async def read_raw(self, participant_id: str) -> Optional[str]:
        await asyncio.sleep(0)
        if self.fail:
            raise StorageError("store unavailable")
        return self.data.get(participant_id)

    async def write_raw(self, participant_id: str, data: str) -> None:
        await asyncio.sleep(0)
        if self.fail:
            raise StorageError("store unavailable")
        self.data[participant_id] = data


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def memory_repository() -> MemoryAnnotationRepository:
    return MemoryAnnotationRepository()


@pytest.fixture
def clinic_registry_data() -> Dict[str, Dict[str, Any]]:
    """Providers clinicA/clinicB share group 'g1'; clinicC is a plain provider"""
    providers = {
        "clinicA": {"base": BASE, "path": "Patient/{0}/$everything", "group": "g1",
                    "randLow": 0.0, "randHigh": 0.5},
        "clinicB": {"base": BASE, "path": "Patient/{0}/$everything", "group": "g1",
                    "randLow": 0.5, "randHigh": 1.0},
        "clinicC": {"base": "http://clinic-c.test", "path": "fhir/Patient/{0}/$everything",
                    "refPath": "fhir/{0}"},
    }
    participants = {
        "P1": {
            "name": "Pat Doe",
            "providers": [
                {"providerName": "clinicA", "patientId": "x"},
                {"providerName": "clinicB", "patientId": "x"},
                {"providerName": "clinicC", "patientId": "y"},
            ],
        },
        "P2": {"name": "Nobody", "providers": []},
    }
    return {"providers": providers, "participants": participants}
