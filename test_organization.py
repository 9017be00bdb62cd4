"""
Tests for regrouping a provider bundle by organization.
"""
import pytest

from conftest import make_bundle, make_entry, make_patient
from providers.bundle import reference_key
from providers.organization import OrganizationReorganizer, ResourceKind


def ref(target: str):
    return {"reference": target}


@pytest.fixture
def provider_bundle():
    return make_bundle([
        make_patient("x"),
        make_entry("Organization", "o1", name="clinicA",
                   identifier=[{"system": "http://sys", "value": "ORG-A"}]),
        make_entry("Organization", "o2", name="clinicB",
                   identifier=[{"system": "http://sys", "value": "ORG-B"}]),
        make_entry("Encounter", "e1", serviceProvider=ref("Organization/o1")),
        make_entry("Encounter", "e2", serviceProvider=ref("Organization?identifier=http://sys|ORG-B")),
        make_entry("Observation", "obs1", encounter=ref("Encounter/e1")),
        make_entry("Observation", "obs2", context=ref("urn:uuid:e2")),
        make_entry("Claim", "c1", provider=ref("Organization/o2")),
        make_entry("ExplanationOfBenefit", "eob1", claim=ref("Claim/c1")),
        make_entry("ExplanationOfBenefit", "eob2", organization=ref("Organization/o1")),
        make_entry("Observation", "obs3"),
        make_entry("Condition", "cond1", encounter=ref("Encounter/unknown")),
    ])


def ids(bundle):
    return [e["resource"]["id"] for e in bundle["entry"]]


def test_entries_grouped_by_organization(provider_bundle):
    result = OrganizationReorganizer().reorganize(provider_bundle)

    assert set(result) == {"clinicA", "clinicB"}
    assert ids(result["clinicA"]) == ["x", "e1", "obs1", "eob2"]
    assert ids(result["clinicB"]) == ["x", "e2", "obs2", "c1", "eob1"]
    assert result["clinicA"]["total"] == 4
    assert result["clinicB"]["total"] == 5
    assert all(b["resourceType"] == "Bundle" for b in result.values())


def test_unresolved_entries_are_dropped(provider_bundle):
    result, dropped = OrganizationReorganizer().reorganize_with_diagnostics(provider_bundle)

    assert ids({"entry": dropped}) == ["obs3", "cond1"]

    # every non-Patient, non-Organization entry is placed or dropped, exactly once
    placed = [rid for bundle in result.values() for rid in ids(bundle)[1:]]
    expected = [
        e["resource"]["id"] for e in provider_bundle["entry"]
        if e["resource"]["resourceType"] not in ("Patient", "Organization")
    ]
    assert sorted(placed + ids({"entry": dropped})) == sorted(expected)


def test_claim_prefers_organization_over_provider():
    bundle = make_bundle([
        make_patient("x"),
        make_entry("Organization", "o1", name="clinicA"),
        make_entry("Organization", "o2", name="clinicB"),
        make_entry("Claim", "c1", organization=ref("Organization/o1"), provider=ref("Organization/o2")),
    ])

    result = OrganizationReorganizer().reorganize(bundle)

    assert list(result) == ["clinicA"]


def test_bundle_without_organizations_yields_nothing():
    bundle = make_bundle([make_patient("x"), make_entry("Observation", "obs1")])
    assert OrganizationReorganizer().reorganize(bundle) == {}


def test_resource_kind_dispatch():
    assert ResourceKind.of(make_entry("Encounter", "e1")) is ResourceKind.ENCOUNTER
    assert ResourceKind.of(make_entry("MedicationRequest", "m1")) is ResourceKind.OTHER


def test_reference_key_forms():
    assert reference_key("Organization/123") == "123"
    assert reference_key("urn:uuid:abc") == "abc"
    assert reference_key("Organization?identifier=http://sys|ORG-A") == "ORG-A"
    assert reference_key(None) is None
