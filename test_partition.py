"""
Tests for the deterministic partition of a group's bundle.
"""
import pytest

from conftest import BASE, make_bundle, make_entry, make_patient
from providers.partition import PartitionAssigner, record_random
from providers.registry import ProviderSpec


def spec(name: str, low: float, high: float) -> ProviderSpec:
    return ProviderSpec(name=name, base=BASE, path="Patient/{0}", group="g1", randLow=low, randHigh=high)


def ids(bundle):
    return [e["resource"]["id"] for e in bundle["entry"]]


@pytest.fixture
def group_bundle():
    return make_bundle([
        make_patient("x"),
        make_entry("Observation", "r1"),
        make_entry("Observation", "r2"),
        make_entry("Observation", "r3"),
        make_entry("Observation", "r4"),
    ])


@pytest.fixture
def fixed_values():
    values = {"r1": 0.1, "r2": 0.4, "r3": 0.6, "r4": 0.9}
    return PartitionAssigner(random_fn=values.__getitem__)


def test_disjoint_ranges(group_bundle, fixed_values):
    result = fixed_values.partition(group_bundle, [spec("clinicA", 0.0, 0.5), spec("clinicB", 0.5, 1.0)])

    assert ids(result["clinicA"]) == ["x", "r1", "r2"]
    assert ids(result["clinicB"]) == ["x", "r3", "r4"]
    assert result["clinicA"]["total"] == 3
    assert result["clinicB"]["total"] == 3


def test_overlapping_ranges_duplicate_entries(group_bundle, fixed_values):
    result = fixed_values.partition(group_bundle, [spec("clinicA", 0.0, 0.7), spec("clinicB", 0.3, 1.0)])

    assert ids(result["clinicA"]) == ["x", "r1", "r2", "r3"]
    assert ids(result["clinicB"]) == ["x", "r2", "r3", "r4"]


def test_gaps_drop_entries(group_bundle, fixed_values):
    result = fixed_values.partition(group_bundle, [spec("clinicA", 0.0, 0.2), spec("clinicB", 0.8, 1.0)])

    assert ids(result["clinicA"]) == ["x", "r1"]
    assert ids(result["clinicB"]) == ["x", "r4"]


def test_range_upper_bound_is_exclusive():
    assigner = PartitionAssigner(random_fn=lambda rid: 0.5)
    bundle = make_bundle([make_patient("x"), make_entry("Observation", "r1")])

    result = assigner.partition(bundle, [spec("clinicA", 0.0, 0.5), spec("clinicB", 0.5, 1.0)])

    assert ids(result["clinicA"]) == ["x"]
    assert ids(result["clinicB"]) == ["x", "r1"]


def test_record_random_is_reproducible():
    value = record_random("obs-123")
    assert 0.0 <= value < 1.0
    assert record_random("obs-123") == value
    assert record_random("obs-124") != value


def test_partition_is_deterministic_and_covers_every_entry():
    entries = [make_patient("x")] + [make_entry("Observation", f"obs-{i}") for i in range(50)]
    providers = [spec("clinicA", 0.0, 0.5), spec("clinicB", 0.5, 1.0)]
    assigner = PartitionAssigner()

    first = assigner.partition(make_bundle(entries), providers)
    second = assigner.partition(make_bundle(entries), providers)

    assert {k: ids(v) for k, v in first.items()} == {k: ids(v) for k, v in second.items()}
    a_ids = set(ids(first["clinicA"])) - {"x"}
    b_ids = set(ids(first["clinicB"])) - {"x"}
    assert a_ids.isdisjoint(b_ids)
    assert a_ids | b_ids == {f"obs-{i}" for i in range(50)}


def test_outputs_do_not_share_entries(group_bundle):
    assigner = PartitionAssigner(random_fn=lambda rid: 0.5)
    result = assigner.partition(group_bundle, [spec("clinicA", 0.0, 1.0), spec("clinicB", 0.0, 1.0)])

    result["clinicA"]["entry"][0]["annotation"] = {"created": "now", "history": []}
    result["clinicA"]["entry"][1]["annotation"] = {"created": "now", "history": []}

    assert "annotation" not in result["clinicB"]["entry"][0]
    assert "annotation" not in result["clinicB"]["entry"][1]
    assert "annotation" not in group_bundle["entry"][0]


def test_missing_patient_still_partitions():
    assigner = PartitionAssigner(random_fn=lambda rid: 0.2)
    bundle = make_bundle([make_entry("Observation", "r1")])

    result = assigner.partition(bundle, [spec("clinicA", 0.0, 0.5)])

    assert ids(result["clinicA"]) == ["r1"]


def test_empty_provider_list_is_rejected(group_bundle):
    with pytest.raises(ValueError):
        PartitionAssigner().partition(group_bundle, [])
