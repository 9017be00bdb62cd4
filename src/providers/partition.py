"""
Partition Assigner

Splits one bundle fetched for a provider group into per-provider views so a
single upstream feed can stand in for several data sources.
"""

import logging
import random
from typing import Any, Callable, Dict, List

from .bundle import add_entry, new_bundle, resource_id, resource_type
from .registry import ProviderSpec

logger = logging.getLogger(__name__)


def record_random(record_id: str) -> float:
    """
    Reproducible value in [0, 1) for a record id.

    random.Random seeds from a str via SHA-512 of its bytes, so the value is
    the same across calls, processes and PYTHONHASHSEED settings.
    """
    return random.Random(record_id).random()


class PartitionAssigner:
    """Assigns each non-Patient entry to the providers whose range holds its value"""

    def __init__(self, random_fn: Callable[[str], float] = record_random):
        self.random_fn = random_fn

    def partition(self, bundle: Dict[str, Any],
                  providers: List[ProviderSpec]) -> Dict[str, Dict[str, Any]]:
        """
        Partition `bundle` across `providers` (all from one group).

        Every output bundle starts with the Patient entry. Ranges may overlap
        or leave gaps; an entry lands in zero, one or several outputs.
        """
        if not providers:
            raise ValueError("partition requires at least one provider")

        entries = bundle.get('entry') or []
        patient = None
        others = []
        for entry in entries:
            if patient is None and resource_type(entry) == 'Patient':
                patient = entry
            else:
                others.append(entry)

        if patient is None:
            logger.warning(f"No Patient entry in bundle partitioned for {[p.name for p in providers]}")

        results = {}
        for provider in providers:
            results[provider.name] = new_bundle([dict(patient)] if patient is not None else [])

        for entry in others:
            rid = resource_id(entry)
            if rid is None:
                continue
            value = self.random_fn(rid)
            for provider in providers:
                if provider.in_range(value):
                    add_entry(results[provider.name], dict(entry))

        return results
